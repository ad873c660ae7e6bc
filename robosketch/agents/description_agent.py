"""
Description Agent — turns the user's idea (and optional sketch) into a
project description every later stage uses as shared context.

Uses the vision model when a sketch is attached, the text model otherwise.
Structured descriptions ({goals, scope, keyFeatures}) are flattened to
text; a non-JSON reply is taken verbatim.
"""
import json

from robosketch.config import CONFIG
from robosketch.errors import DescriptionError, JSONParseError, PipelineError, SchemaError
from robosketch.providers import LLMClient
from robosketch.types import ProjectRequest
from robosketch.validators import require_valid
from robosketch.agents.orchestrator import AgentMessage, parse_json_response, MODEL, VISION_MODEL

SYSTEM = 'You are an expert roboticist. Respond with valid JSON containing a "projectDescription" field.'


def _join(value) -> str:
    if isinstance(value, list):
        return "; ".join(str(v) for v in value)
    return str(value)


def flatten_description(value) -> str:
    """Coerce whatever the model put in projectDescription into text."""
    if isinstance(value, dict):
        parts = []
        if value.get("goals"):
            parts.append(f"Goals: {_join(value['goals'])}")
        if value.get("scope"):
            parts.append(f"Scope: {_join(value['scope'])}")
        if value.get("keyFeatures"):
            parts.append(f"Key Features: {_join(value['keyFeatures'])}")
        return "\n".join(parts) if parts else json.dumps(value)
    if value is None:
        return ""
    return str(value).strip()


class DescriptionAgent:
    def __init__(self, client: LLMClient | None = None):
        self.client = client or LLMClient()

    @staticmethod
    def build_prompt(request: ProjectRequest) -> str:
        image_note = " and an uploaded image" if request.has_image else ""
        return (
            "You are an expert roboticist that can generate a clear project description "
            f"for a robot design based on a user description{image_note}. The project "
            "description should briefly define the goals, scope and key features of the robot. "
            f"The control code will target a {request.platform.value}.\n\n"
            f"User description: {request.description}\n\n"
            'Return ONLY a JSON object: {"projectDescription": "..."}'
        )

    async def handle(self, msg: AgentMessage) -> str:
        request: ProjectRequest = msg.payload["request"]
        images = (request.image,) if request.has_image else ()
        try:
            text = await self.client.complete(
                SYSTEM, self.build_prompt(request),
                model=VISION_MODEL if images else MODEL,
                max_tokens=CONFIG.max_tokens_description,
                temperature=CONFIG.temperature_description,
                images=images, agent="describer",
            )
        except PipelineError as e:
            raise DescriptionError(f"Description request failed: {e}") from e

        if not text.strip():
            raise DescriptionError("Empty response from the model")
        try:
            parsed = parse_json_response(text)
        except JSONParseError:
            # Prose instead of JSON is still a description
            return text.strip()

        try:
            require_valid("description", parsed)
        except SchemaError as e:
            raise DescriptionError(f"Unusable description: {e}") from e

        description = flatten_description(parsed["projectDescription"])
        if not description:
            raise DescriptionError("Response had no projectDescription")
        return description
