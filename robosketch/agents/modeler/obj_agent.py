"""
OBJ Model Agent — a rough Wavefront OBJ mesh of the robot.

Optional stage: off in the default pipeline, run by the `obj` CLI
command or when RSK_OBJ_MODEL is set.
"""
import re

from robosketch.config import CONFIG
from robosketch.errors import ModelGenerationError, PipelineError
from robosketch.providers import LLMClient
from robosketch.agents.orchestrator import AgentMessage, strip_fences, MODEL

SYSTEM = (
    "You are a 3D modeling assistant. Output ONLY valid Wavefront OBJ text "
    "(o, v, vn, f lines and # comments). No markdown, no explanation."
)


def obj_filename(description: str) -> str:
    """robot_<description, lowercased and sanitized, at most 30 chars>.obj"""
    slug = re.sub(r"[^a-z0-9]+", "_", description.lower()).strip("_")[:30].rstrip("_")
    return f"robot_{slug or 'model'}.obj"


def _looks_like_obj(text: str) -> bool:
    return any(line.startswith(("v ", "f ")) for line in text.splitlines())


class OBJModelAgent:
    def __init__(self, client: LLMClient | None = None):
        self.client = client or LLMClient()

    @staticmethod
    def build_prompt(description: str, bom_text: str) -> str:
        return f"""Create a simple low-poly 3D model of this robot in Wavefront OBJ format.

Robot: {description}

Components:
{bom_text or "(not available)"}

Requirements:
- One named object ("o") per major part: chassis, wheels or legs, controller board, sensors
- Vertex normals ("vn") and faces ("f") referencing them
- Units in millimetres, the robot resting on the XZ plane
- Under 400 vertices in total"""

    async def handle(self, msg: AgentMessage) -> tuple[str, str]:
        description = msg.payload.get("description", "")
        try:
            text = await self.client.complete(
                SYSTEM, self.build_prompt(description, msg.payload.get("bom_text", "")),
                model=MODEL, max_tokens=CONFIG.max_tokens_obj,
                temperature=CONFIG.temperature_obj, agent="modeler",
            )
        except PipelineError as e:
            raise ModelGenerationError(f"3D model request failed: {e}") from e

        content = strip_fences(text)
        if not content:
            raise ModelGenerationError("Empty OBJ model")
        if not _looks_like_obj(content):
            raise ModelGenerationError("Response contains no OBJ vertices or faces")
        return content + "\n", obj_filename(description)
