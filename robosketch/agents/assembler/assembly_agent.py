"""
Assembly Agent — step-by-step build guide.

Runs last: it sees the description, the BOM, the control code, the
circuit diagram (as an image block) and the OBJ model when there is one.
The returned markdown is reconciled against the BOM so that every
component and its quantity appear in the text.
"""
import re

from robosketch.config import CONFIG
from robosketch.errors import AssemblyError, PipelineError
from robosketch.providers import LLMClient
from robosketch.types import AssemblyInstructions, BOMItem, EncodedImage, InstructionsFormat, flatten_bom
from robosketch.validators import require_valid
from robosketch.agents.orchestrator import AgentMessage, parse_json_response, MODEL, VISION_MODEL

MAX_CODE_CHARS = 6000
MAX_OBJ_CHARS = 2000
CHECKLIST_HEADING = "## Component Checklist"

SECTIONS = (
    ("Overview", "the robot's goal and purpose; anti-static, battery and soldering safety"),
    ("Tools & Materials", "every tool and consumable, e.g. 'Phillips screwdriver #1', '22 AWG wire stripper'"),
    ("Component Inventory & Verification", "every BOM part with its quantity, e.g. '2 × DC Motors'; label and pre-test parts"),
    ("Mechanical Assembly", "orientation, screw sizes, torque and alignment for each mechanical part"),
    ("Electrical Wiring", "wire colour, connector type, pin label, gauge and length for every connection"),
    ("Circuit Verification", "continuity and voltage checks with expected values"),
    ("Firmware Upload & Setup", "connect the board, upload the code, configure settings"),
    ("Calibration", "sensor and actuator calibration with tolerances"),
    ("Validation Tests", "objective, steps, expected result and pass criteria for each test"),
    ("Common Issues & Fixes", "symptom, cause and resolution"),
    ("Maintenance & Safety", "battery care, cleaning, inspection"),
    ("Final Component Verification", "component-by-component checklist against the BOM"),
    ("Build Completion", "a short 'Build Complete' summary"),
)

SYSTEM = (
    "You are an expert robotics engineer and technical documentation specialist. "
    'Respond ONLY with valid JSON containing "assemblyInstructions" (string, Markdown) and '
    '"assemblyInstructionsFormat" ("pdf" or "markdown"). Every component in the Bill of '
    "Materials must be used in the steps, referenced by its exact name and quantity."
)


def _excerpt(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    return text[:limit] + f"\n... [{len(text) - limit} more characters]"


def _mentions_quantity(text: str, item: BOMItem) -> bool:
    """True if some line names the component together with its quantity."""
    name = item.component.lower()
    qty = re.compile(rf"(?<![\d.]){item.quantity}(?![\d.])")
    return any(name in line.lower() and qty.search(line) for line in text.splitlines())


def reconcile_instructions(text: str, bom: list[BOMItem]) -> str:
    """Append a checklist entry for each BOM item the text misses or miscounts."""
    missing = [item for item in bom if item.component and not _mentions_quantity(text, item)]
    if not missing:
        return text
    lines = [f"- [ ] {item.quantity} × {item.component}" for item in missing]
    if CHECKLIST_HEADING in text:
        return text.rstrip() + "\n" + "\n".join(lines) + "\n"
    return text.rstrip() + f"\n\n{CHECKLIST_HEADING}\n\n" + "\n".join(lines) + "\n"


class AssemblyAgent:
    def __init__(self, client: LLMClient | None = None,
                 attach_circuit_image: bool = CONFIG.attach_circuit_image):
        self.client = client or LLMClient()
        self.attach_circuit_image = attach_circuit_image

    @staticmethod
    def build_prompt(description: str, bom_text: str, code: str, has_diagram: bool,
                     model_3d: str = "") -> str:
        sections = "\n".join(
            f"{i}. **{title}**: {detail}" for i, (title, detail) in enumerate(SECTIONS, 1))
        obj_block = (f"```obj\n{_excerpt(model_3d, MAX_OBJ_CHARS)}\n```" if model_3d else "[none]")
        return f"""Generate extremely detailed, step-by-step assembly instructions for building the described robot.
Each step must be explicit, practical and testable.

### Context

Project Description:
{description}

Bill of Materials:
{bom_text or "[not available]"}

Circuit Diagram: {"[attached image]" if has_diagram else "[none]"}

Control Code:
```
{_excerpt(code, MAX_CODE_CHARS) if code else "[none]"}
```

Robot 3D Model (OBJ):
{obj_block}

### BOM Integration Rules
- Every component in the Bill of Materials must appear in the assembly steps.
- Reference each quantity explicitly, e.g. "Install 2 × DC 6V motors on each side of the chassis."
- For repeated parts, describe each installation or group them ("Repeat for all 4 wheels").
- If a BOM component is not used during assembly, say why in a note.
- Ignore prices and vendor links; focus on usage, quantity and placement.
- Check mechanical fit (shaft diameters, screw sizes) and electrical compatibility (voltages, connectors, current).

### Sections (in order)
{sections}

### Style
- Markdown numbering (1., 1.1.), imperative verbs, component names exactly as in the BOM.
- State assumptions where a detail is missing.

Return only the JSON object."""

    async def handle(self, msg: AgentMessage) -> AssemblyInstructions:
        bom: list[BOMItem] = msg.payload.get("bom") or []
        diagram: EncodedImage = msg.payload.get("circuit_diagram") or EncodedImage.empty()
        images = (diagram,) if diagram and self.attach_circuit_image else ()
        prompt = self.build_prompt(
            msg.payload.get("description", ""), flatten_bom(bom),
            msg.payload.get("code") or "", bool(images), msg.payload.get("model_3d") or "",
        )
        try:
            text = await self.client.complete(
                SYSTEM, prompt,
                model=VISION_MODEL if images else MODEL,
                max_tokens=CONFIG.max_tokens_assembly,
                temperature=CONFIG.temperature_assembly,
                images=images, agent="assembler",
            )
            parsed = parse_json_response(text)
            require_valid("assembly", parsed)
        except PipelineError as e:
            raise AssemblyError(f"Failed to generate assembly instructions: {e}") from e

        return AssemblyInstructions(
            text=reconcile_instructions(parsed["assemblyInstructions"].strip(), bom),
            format=InstructionsFormat.coerce(parsed.get("assemblyInstructionsFormat")),
        )
