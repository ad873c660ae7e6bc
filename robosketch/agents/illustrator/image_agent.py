"""
Image Agent — concept render and circuit diagram.

Both images are generated concurrently. Each one tries the primary image
model, then exactly once the fallback model; if both fail the slot is
left empty. A successful image can get one refinement pass through the
primary model's edit endpoint; a failed refinement keeps the original.
"""
import asyncio

from robosketch.config import CONFIG
from robosketch.errors import ImageGenerationError
from robosketch.logger import PipelineLogger
from robosketch.metrics import PipelineMetrics
from robosketch.providers import ImageClient
from robosketch.types import EncodedImage, GeneratedImages
from robosketch.agents.orchestrator import AgentMessage

LEGIBILITY = """TEXT READABILITY REQUIREMENTS (highest priority):
- Every label must be sharp and legible: sans-serif, high contrast, no artistic effects
- Text must not overlap wires, parts or other text
- Component names and model numbers clearly visible"""


def concept_prompt(description: str, bom_text: str) -> str:
    return f"""{LEGIBILITY}

Create a detailed concept image of a robot based on this description: {description}

Include ALL components from this Bill of Materials:
{bom_text or "(components not available)"}

Show the robot as a real, buildable prototype: clean neutral background, professional
technical product photography, every BOM component visible and properly mounted,
realistic proportions, photorealistic rendering."""


def circuit_prompt(description: str, bom_text: str) -> str:
    return f"""{LEGIBILITY}
- Black lines and text on a white background only
- Pin numbers next to every connection point, voltage levels (5V, 3.3V, GND) prominent

Create a professional engineering schematic for this robot: {description}

Components to include and connect:
{bom_text or "(components not available)"}

Use standard electronic symbols (IEEE/IEC), complete electrical connections,
microcontroller pinouts, power supply connections, a grid, and a title block with the
component list, laid out like a KiCad or Eagle schematic that could be built from."""


def concept_refinement_prompt(description: str, bom_text: str) -> str:
    return f"""PHOTOREALISTIC ENHANCEMENT:
- Make this look like a real photograph of a working robot prototype
- Realistic materials (brushed aluminum, matte plastic, PCB copper), studio lighting, shadows
- Real manufacturing details: screw heads, connector types, wire routing
- Keep every component identifiable and matching the Bill of Materials:
{bom_text}
{LEGIBILITY}

BASE DESCRIPTION: {description}"""


def circuit_refinement_prompt(description: str, bom_text: str) -> str:
    return f"""PROFESSIONAL SCHEMATIC ENHANCEMENT:
- Redraw as a clean engineering schematic with perfectly legible text
- Minimum 12pt-equivalent labels, black on white, no text crossing wires
- Every Bill of Materials component present and connected:
{bom_text}
- Pin numbers, voltage indicators and component values clearly readable

PROJECT CONTEXT: {description}"""


class ImageAgent:
    def __init__(self, client: ImageClient | None = None, log: PipelineLogger | None = None,
                 refine: bool = CONFIG.refine_images):
        self.client = client or ImageClient()
        self.log = log or PipelineLogger()
        self.refine = refine
        self.metrics = PipelineMetrics()

    async def handle(self, msg: AgentMessage) -> GeneratedImages:
        description = msg.payload.get("description", "")
        bom_text = msg.payload.get("bom_text", "")
        concept, circuit = await asyncio.gather(
            self.generate_image("concept", concept_prompt(description, bom_text),
                                concept_refinement_prompt(description, bom_text)),
            self.generate_image("circuit", circuit_prompt(description, bom_text),
                                circuit_refinement_prompt(description, bom_text)),
        )
        return GeneratedImages(concept_image=concept, circuit_diagram=circuit)

    async def generate_image(self, kind: str, prompt: str, refinement_prompt: str) -> EncodedImage:
        """Never raises on provider failure; an empty image is a valid result."""
        try:
            image, tier = await self._generate_with_fallback(kind, prompt)
        except ImageGenerationError as e:
            self.log.error("image.failed", "illustrator", kind=kind, error=str(e))
            self.metrics.record_image(kind, "empty")
            return EncodedImage.empty()
        base = image
        if self.refine and image:
            image = await self._refine(kind, image, refinement_prompt)
        self.metrics.record_image(kind, tier, refined=image is not base)
        return image

    async def _generate_with_fallback(self, kind: str, prompt: str) -> tuple[EncodedImage, str]:
        primary, secondary = CONFIG.image_model, CONFIG.image_fallback_model
        # Any primary failure gets exactly one secondary attempt.
        try:
            return await self.client.generate(
                prompt, model=primary, quality=CONFIG.image_quality), "primary"
        except Exception as e:
            self.log.image_fallback(kind, primary, secondary, str(e))
        try:
            return await self.client.generate(
                prompt, model=secondary, quality=CONFIG.image_fallback_quality), "secondary"
        except Exception as e:
            raise ImageGenerationError(
                f"{kind} image failed on {primary} and {secondary}: {e}", kind) from e

    async def _refine(self, kind: str, image: EncodedImage, prompt: str) -> EncodedImage:
        try:
            refined = await self.client.refine(
                image, prompt, model=CONFIG.image_model, quality=CONFIG.image_quality)
        except Exception as e:
            self.log.warn("image.refine_failed", "illustrator", kind=kind, error=str(e))
            return image
        return refined or image
