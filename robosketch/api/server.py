"""
FastAPI server — RoboSketch web surface.

GET  /                  → single-page front-end
POST /projects          → full pipeline, JSON result
POST /projects/stream   → same pipeline as Server-Sent Events
POST /projects/archive  → ZIP download for a finished result
GET  /health            → key presence and configured models
GET  /metrics           → pipeline metrics snapshot
"""
import asyncio
import json
from pathlib import Path

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse, Response, StreamingResponse
from pydantic import BaseModel, ConfigDict, Field, field_validator

from robosketch import __version__
from robosketch.config import CONFIG, load_anthropic_key, load_openai_key
from robosketch.errors import PackagingError, PipelineError
from robosketch.logger import PipelineLogger
from robosketch.metrics import PipelineMetrics
from robosketch.middleware import ConcurrencyLimitMiddleware, RequestTracingMiddleware
from robosketch.packager import ARCHIVE_FILENAME, build_archive
from robosketch.providers import ImageClient, LLMClient
from robosketch.types import EncodedImage, Platform, ProjectRequest, ProjectResult
from robosketch.agents.orchestrator import Orchestrator
from robosketch.agents.description_agent import DescriptionAgent
from robosketch.agents.bom_agent import BOMAgent
from robosketch.agents.coder.code_agent import CodeAgent
from robosketch.agents.illustrator.image_agent import ImageAgent
from robosketch.agents.modeler.obj_agent import OBJModelAgent
from robosketch.agents.assembler.assembly_agent import AssemblyAgent

STATIC_DIR = Path(__file__).resolve().parent.parent / "static"
UNKNOWN_ERROR = "An unknown error occurred during project generation."

app = FastAPI(
    title="RoboSketch",
    description=(
        "Turns a short robot idea (and an optional sketch) into a project description, "
        "bill of materials, control code, concept and circuit images, and assembly "
        "instructions, downloadable as a ZIP."
    ),
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Request-Id", "X-Duration-Ms", "Content-Disposition"],
)
app.add_middleware(ConcurrencyLimitMiddleware, max_concurrent=CONFIG.max_concurrent_builds)
app.add_middleware(RequestTracingMiddleware)


class ProjectRequestModel(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    description: str = Field(
        ..., min_length=CONFIG.description_min_chars, max_length=CONFIG.description_max_chars,
        description="What the robot should do",
    )
    platform: Platform = Field(..., description="Raspberry Pi, Arduino or MicroBit")
    image: str | None = Field(None, description="Optional sketch as a base64 data URI")

    @field_validator("image")
    @classmethod
    def _check_image(cls, value: str | None) -> str | None:
        if value:
            EncodedImage.from_data_uri(value)
        return value or None

    def to_request(self) -> ProjectRequest:
        return ProjectRequest(
            description=self.description,
            platform=self.platform,
            image=EncodedImage.from_data_uri(self.image) if self.image else None,
        )


def create_orchestrator(log: PipelineLogger | None = None) -> Orchestrator:
    log = log or PipelineLogger()
    llm = LLMClient(log=log)
    orch = Orchestrator(log=log)
    orch.register_agent("describer", DescriptionAgent(llm))
    orch.register_agent("bom", BOMAgent(llm))
    orch.register_agent("coder", CodeAgent(llm))
    orch.register_agent("illustrator", ImageAgent(ImageClient(), log=log))
    orch.register_agent("modeler", OBJModelAgent(llm))
    orch.register_agent("assembler", AssemblyAgent(llm))
    return orch



def _request_log(http_request: Request) -> PipelineLogger:
    """Log under the X-Request-Id the tracing middleware assigned."""
    return PipelineLogger(pipeline_id=getattr(http_request.state, "request_id", ""))

@app.get("/", include_in_schema=False)
async def index():
    return FileResponse(STATIC_DIR / "index.html", media_type="text/html")


@app.post("/projects")
async def generate_project(req: ProjectRequestModel, http_request: Request):
    """Generate a complete project. Fatal stage failures come back as success=false."""
    orch = create_orchestrator(_request_log(http_request))
    try:
        result = await orch.run(req.to_request())
    except PipelineError as e:
        return JSONResponse(status_code=502, content={"success": False, "error": str(e)})
    except Exception as e:
        orch.log.error("api.unexpected", error=f"{type(e).__name__}: {e}")
        return JSONResponse(status_code=500, content={"success": False, "error": UNKNOWN_ERROR})
    return {"success": True, "data": result.to_dict(), "agentLog": orch.agent_log()}


## ── SSE Streaming Generation ─────────────────────────────────

def _sse(event: str, data: dict) -> str:
    return f"event: {event}\ndata: {json.dumps(data)}\n\n"


@app.post("/projects/stream")
async def generate_project_stream(req: ProjectRequestModel, http_request: Request):
    """Server-Sent Events: status updates, then result or error, then done."""
    request = req.to_request()
    log = _request_log(http_request)

    async def event_generator():
        orch = create_orchestrator(log)
        queue: asyncio.Queue = asyncio.Queue()
        orch.on_status = lambda msg: queue.put_nowait(("status", {"message": msg}))

        async def run_pipeline():
            try:
                result = await orch.run(request)
                queue.put_nowait(("result", {"success": True, "data": result.to_dict()}))
            except PipelineError as e:
                queue.put_nowait(("error", {"success": False, "error": str(e)}))
            except Exception as e:
                orch.log.error("api.unexpected", error=f"{type(e).__name__}: {e}")
                queue.put_nowait(("error", {"success": False, "error": UNKNOWN_ERROR}))
            queue.put_nowait(("done", {}))

        task = asyncio.create_task(run_pipeline())
        while True:
            event, data = await queue.get()
            yield _sse(event, data)
            if event == "done":
                break
        await task

    return StreamingResponse(event_generator(), media_type="text/event-stream")


## ── Archive ──────────────────────────────────────────────────

@app.post("/projects/archive")
async def project_archive(payload: dict):
    """Package a result (as returned by /projects) into a ZIP."""
    try:
        result = ProjectResult.from_dict(payload.get("data", payload))
    except (AttributeError, KeyError, TypeError, ValueError) as e:
        return JSONResponse(status_code=422, content={
            "success": False, "error": f"Invalid project result: {e}"})
    try:
        archive = await build_archive(result)
    except PackagingError as e:
        return JSONResponse(status_code=500, content={"success": False, "error": str(e)})
    PipelineMetrics().record_archive()
    return Response(
        content=archive,
        media_type="application/zip",
        headers={"Content-Disposition": f'attachment; filename="{ARCHIVE_FILENAME}"'},
    )


## ── Ops ──────────────────────────────────────────────────────

@app.get("/health")
async def health():
    has_text_key = load_anthropic_key() is not None
    return {
        "status": "ok" if has_text_key else "no_api_key",
        "anthropic_key": has_text_key,
        "openai_key": load_openai_key() is not None,
        "models": {
            "text": CONFIG.model,
            "vision": CONFIG.vision_model,
            "image": CONFIG.image_model,
            "image_fallback": CONFIG.image_fallback_model,
        },
    }


@app.get("/metrics")
async def metrics():
    return PipelineMetrics().snapshot()
