"""
BOM Agent — builds the bill of materials from the project description.

Asks the model for 8-15 affordable components from well-known hobby
retailers with explicit quantities and USD prices, then keeps only the
records that pass validation.
"""
from robosketch.config import CONFIG
from robosketch.errors import BillOfMaterialsError, PipelineError
from robosketch.providers import LLMClient
from robosketch.types import BOMItem
from robosketch.validators import require_valid, validate_bom_item
from robosketch.agents.orchestrator import AgentMessage, parse_json_response, MODEL

PREFERRED_SOURCES = ("Adafruit", "SparkFun", "Pimoroni", "Mouser", "DigiKey")
MIN_COMPONENTS = 8
MAX_COMPONENTS = 15

SYSTEM = (
    "You are an expert robotics engineer. Respond with valid JSON containing a "
    '"billOfMaterials" array with objects that have "component", "description", '
    '"quantity", "link", and "approximatePriceUSD" fields. NO markdown fences. NO explanation.'
)


class BOMAgent:
    def __init__(self, client: LLMClient | None = None):
        self.client = client or LLMClient()

    @staticmethod
    def build_prompt(description: str) -> str:
        return f"""You are an expert robotics engineer who specializes in creating Bills of Materials for open-source robot projects.

Based on the project description, generate a Bill of Materials with {MIN_COMPONENTS}-{MAX_COMPONENTS} affordable, open-source friendly components.

Rules:
- Prefer parts sold by {", ".join(PREFERRED_SOURCES)}; "link" must be a product or search URL on one of them.
- Every item needs an explicit positive whole-number "quantity" (e.g. 2 motors, 4 wheels, 8 screws).
- "approximatePriceUSD" is the unit price as a number, no currency symbol.
- Include the controller board, power, motors/actuators, sensors, chassis, wiring and fasteners.

Format:
{{"billOfMaterials": [{{"component": "Micro Servo SG90", "description": "9 g hobby servo for the gripper", "quantity": 2, "link": "https://www.adafruit.com/product/169", "approximatePriceUSD": 5.95}}]}}

Project Description: {description}"""

    async def handle(self, msg: AgentMessage) -> list[BOMItem]:
        description = msg.payload.get("description", "")
        try:
            text = await self.client.complete(
                SYSTEM, self.build_prompt(description),
                model=MODEL, max_tokens=CONFIG.max_tokens_bom,
                temperature=CONFIG.temperature_bom, agent="bom",
            )
            parsed = parse_json_response(text)
            # A bare top-level array is accepted as the list itself
            raw_items = (parsed.get("billOfMaterials") or []) if isinstance(parsed, dict) else parsed
            require_valid("bom", raw_items)
        except PipelineError as e:
            raise BillOfMaterialsError(f"Bill of materials unavailable: {e}") from e

        items = []
        for i, raw in enumerate(raw_items):
            errors = validate_bom_item(raw)
            if errors:
                self.client.log.warn("bom.item_dropped", "bom", index=i, errors=errors)
                continue
            items.append(BOMItem.from_dict(raw))
        return items
