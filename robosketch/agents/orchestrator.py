"""
Orchestrator Agent — pipeline coordinator.

Dispatch order: description → (code ‖ BOM → images [‖ OBJ model]) → assembly.
Generators raise typed PipelineErrors; whether a failure degrades to a
default or aborts the request is decided here from STAGE_POLICY.
"""
import asyncio
import json
import re
import time
from dataclasses import dataclass, field
from typing import Any, Callable

from robosketch.config import CONFIG
from robosketch.errors import JSONParseError, PipelineError
from robosketch.logger import PipelineLogger
from robosketch.metrics import PipelineMetrics
from robosketch.types import GeneratedImages, ProjectRequest, ProjectResult, flatten_bom

MODEL = CONFIG.model
VISION_MODEL = CONFIG.vision_model


# ── JSON extraction ───────────────────────────────────────────

_FENCED = re.compile(r"```(?:json)?\s*\n(.*?)```", re.DOTALL)
_FENCE_OPEN = re.compile(r"```(?:json)?\s*\n")


def _clean_json(raw: str) -> str:
    """Strip comments and trailing commas, the usual LLM JSON quirks."""
    raw = re.sub(r"/\*.*?\*/", "", raw, flags=re.DOTALL)    # block comments
    raw = re.sub(r"(^|[\s,{\[])//[^\n]*", r"\1", raw)       # line comments, not URLs
    raw = re.sub(r",\s*([}\]])", r"\1", raw)                # trailing commas
    return raw.strip()


def _repair_truncated_json(text: str) -> str:
    """Close a JSON document cut off mid-value by dropping the partial tail."""
    text = text.rstrip()
    # unclosed string
    if text.count('"') % 2 != 0:
        text = text[:text.rfind('"')]
    text = re.sub(r"[,:\s]*$", "", text)
    # dangling key, object or array entry
    text = re.sub(r',\s*"[^"]*"\s*$', "", text)
    text = re.sub(r",\s*\{[^}]*$", "", text)
    text = re.sub(r",\s*\[[^\]]*$", "", text)
    text = text.rstrip(", \n\t")
    text += "]" * max(0, text.count("[") - text.count("]"))
    text += "}" * max(0, text.count("{") - text.count("}"))
    return text


def _loads(candidate: str) -> tuple[bool, Any]:
    try:
        return True, json.loads(candidate)
    except json.JSONDecodeError:
        return False, None


def parse_json_response(text: str) -> Any:
    """Extract JSON from a model response. Handles fences, prose, truncation."""
    text = (text or "").strip()
    if not text:
        raise JSONParseError("Empty model response")

    ok, value = _loads(text)
    if ok:
        return value

    for m in _FENCED.finditer(text):
        ok, value = _loads(_clean_json(m.group(1)))
        if ok:
            return value

    # Unclosed fence: response was cut at max_tokens
    fence = _FENCE_OPEN.search(text)
    if fence:
        raw = _clean_json(text[fence.end():])
        for candidate in (raw, _repair_truncated_json(raw)):
            ok, value = _loads(candidate)
            if ok:
                return value
        for trim in range(1, min(500, len(raw))):
            ok, value = _loads(_repair_truncated_json(raw[:-trim]))
            if ok:
                return value

    # Bracket matching, outermost opener first
    openers = []
    for sc, ec in (("{", "}"), ("[", "]")):
        pos = text.find(sc)
        if pos >= 0:
            openers.append((pos, sc, ec))
    openers.sort()
    for s, _sc, ec in openers:
        e = text.rfind(ec)
        if e > s:
            ok, value = _loads(_clean_json(text[s:e + 1]))
            if ok:
                return value
        ok, value = _loads(_repair_truncated_json(_clean_json(text[s:])))
        if ok:
            return value

    raise JSONParseError(f"JSON parse failed: {text[:150]}...", raw_text=text)


def strip_fences(text: str) -> str:
    """Remove a markdown code fence wrapped around the whole text."""
    text = (text or "").strip()
    if text.startswith("```"):
        lines = text.split("\n")
        body = lines[1:-1] if lines[-1].strip() == "```" else lines[1:]
        return "\n".join(body).strip("\n")
    return text


# ── Messages & policy ─────────────────────────────────────────

@dataclass
class AgentMessage:
    """Inter-agent typed message envelope; doubles as the call outcome."""
    from_agent: str
    to_agent: str
    task: str
    payload: dict = field(default_factory=dict)
    status: str = "pending"
    result: Any = None
    error: str | None = None
    error_type: str | None = None
    exception: PipelineError | None = field(default=None, repr=False)
    duration_ms: int = 0


FAIL_SOFT = "fail_soft"
FAIL_HARD = "fail_hard"

STAGE_POLICY = {
    "describer": FAIL_SOFT,
    "bom": FAIL_SOFT,
    "coder": FAIL_HARD,
    "illustrator": FAIL_SOFT,
    "modeler": FAIL_SOFT,
    "assembler": FAIL_HARD,
}

STAGE_LABELS = {
    "describer": "Description",
    "bom": "Bill of materials",
    "coder": "Code",
    "illustrator": "Images",
    "modeler": "3D model",
    "assembler": "Assembly instructions",
}


def fallback_description(request: ProjectRequest) -> str:
    return f"Robot project based on your description: {request.description}"


# ── Orchestrator ──────────────────────────────────────────────

class Orchestrator:
    def __init__(self, log: PipelineLogger | None = None, metrics: PipelineMetrics | None = None,
                 generate_obj_model: bool = CONFIG.generate_obj_model):
        self.log = log or PipelineLogger()
        self.metrics = metrics or PipelineMetrics()
        self.generate_obj_model = generate_obj_model
        self.agents: dict[str, Any] = {}
        self.message_log: list[AgentMessage] = []
        self.on_status: Callable[[str], None] | None = None

    def register_agent(self, name: str, agent):
        self.agents[name] = agent

    def _status(self, msg: str):
        self.log.info("project.status", message=msg)
        if self.on_status:
            self.on_status(msg)

    async def run(self, request: ProjectRequest) -> ProjectResult:
        t0 = time.monotonic()
        result = ProjectResult(description=request.description, platform=request.platform)
        self._status(f"🧠 Analyzing: '{request.description[:60]}'")

        try:
            # ── 1. Description (everything downstream depends on it) ──
            result.project_description = await self._resolve(AgentMessage(
                "orchestrator", "describer", "describe_project", {"request": request}),
                request, result)
            self._status("📋 Project description ready")

            # ── 2. Code ‖ (BOM → images) ──
            self._status("🔩 Sourcing components and generating control code...")
            code, (bom, images) = await asyncio.gather(
                self._resolve(AgentMessage(
                    "orchestrator", "coder", "generate_code",
                    {"description": result.project_description, "platform": request.platform}),
                    request, result),
                self._source_and_illustrate(result.project_description, request, result),
            )
            result.code = code
            result.bill_of_materials = bom
            result.images = images
            self._status(f"   ✅ {len(bom)} components (${result.total_cost_usd:,.2f} est)")

            # ── 3. Assembly (needs every other output) ──
            self._status("🔧 Drafting assembly instructions...")
            result.assembly_instructions = await self._resolve(AgentMessage(
                "orchestrator", "assembler", "write_instructions",
                {"description": result.project_description, "bom": bom,
                 "code": code.source, "circuit_diagram": images.circuit_diagram,
                 "model_3d": images.model_3d}),
                request, result)
        except PipelineError as e:
            result.status = "error"
            total_ms = int((time.monotonic() - t0) * 1000)
            self.log.pipeline_failed(e.stage or e.agent, str(e), total_ms)
            self.metrics.record_build(total_ms, "error", request.platform.value)
            self._status(f"❌ {e}")
            raise

        result.status = "ready" if not result.warnings else "partial"
        total_ms = int((time.monotonic() - t0) * 1000)
        self.log.pipeline_done(result.status, total_ms, parts=len(result.bill_of_materials),
                               cost_usd=result.total_cost_usd, warnings=len(result.warnings))
        self.metrics.record_build(total_ms, result.status, request.platform.value)
        self._status(f"{'✅' if result.status == 'ready' else '⚠️'} Project {result.status}")
        return result

    async def _source_and_illustrate(self, description: str, request: ProjectRequest,
                                     result: ProjectResult) -> tuple[list, GeneratedImages]:
        bom = await self._resolve(AgentMessage(
            "orchestrator", "bom", "select_components", {"description": description}),
            request, result)
        bom_text = flatten_bom(bom)

        jobs = [self._resolve(AgentMessage(
            "orchestrator", "illustrator", "generate_images",
            {"description": description, "bom_text": bom_text}),
            request, result)]
        if self.generate_obj_model and "modeler" in self.agents:
            jobs.append(self._resolve(AgentMessage(
                "orchestrator", "modeler", "generate_obj",
                {"description": description, "bom_text": bom_text}),
                request, result))
        outputs = await asyncio.gather(*jobs)

        images = outputs[0]
        if len(outputs) > 1 and outputs[1]:
            images.model_3d, images.model_3d_filename = outputs[1]
        return bom, images

    async def _resolve(self, msg: AgentMessage, request: ProjectRequest,
                       result: ProjectResult) -> Any:
        """Dispatch, then apply the stage policy to a failed outcome."""
        outcome = await self._dispatch(msg)
        if outcome.status == "done":
            return outcome.result

        agent = msg.to_agent
        if STAGE_POLICY.get(agent, FAIL_HARD) == FAIL_HARD:
            raise outcome.exception or PipelineError(outcome.error or "failed", agent=agent)

        label = STAGE_LABELS.get(agent, agent)
        result.warnings.append(f"{label}: {outcome.error}")
        self.log.agent_fallback(agent, outcome.error or "")
        self.metrics.record_fallback(agent)
        return self._fallback(agent, request)

    @staticmethod
    def _fallback(agent: str, request: ProjectRequest) -> Any:
        if agent == "describer":
            return fallback_description(request)
        if agent == "bom":
            return []
        if agent == "illustrator":
            return GeneratedImages()
        return None

    async def _dispatch(self, msg: AgentMessage) -> AgentMessage:
        self.message_log.append(msg)
        agent = self.agents.get(msg.to_agent)
        if not agent:
            msg.status = "error"
            msg.error = f"Agent '{msg.to_agent}' not registered"
            msg.error_type = "ConfigurationError"
            return msg

        msg.status = "in_progress"
        self.log.agent_start(msg.to_agent, msg.task)
        t0 = time.monotonic()
        try:
            msg.result = await agent.handle(msg)
            msg.status = "done"
        except Exception as e:
            err = e if isinstance(e, PipelineError) else PipelineError(
                f"{type(e).__name__}: {e}", agent=msg.to_agent, stage="unexpected")
            msg.status = "error"
            msg.error = str(err)
            msg.error_type = type(err).__name__
            msg.exception = err
        msg.duration_ms = int((time.monotonic() - t0) * 1000)

        if msg.status == "done":
            self.log.agent_done(msg.to_agent, msg.duration_ms)
        else:
            self.log.agent_error(msg.to_agent, msg.error, msg.duration_ms, msg.error_type)
        self.metrics.record_agent(msg.to_agent, msg.duration_ms, error=msg.status != "done")
        return msg

    def agent_log(self) -> list[dict]:
        return [
            {"agent": m.to_agent, "task": m.task, "status": m.status,
             "duration_ms": m.duration_ms, "error": m.error}
            for m in self.message_log
        ]
