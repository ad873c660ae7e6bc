"""
Code Agent — control code for the chosen platform.

Python for Raspberry Pi, C++ for Arduino and micro:bit. The code is not
checked beyond being non-empty; correctness is the model's job.
"""
from robosketch.config import CONFIG
from robosketch.errors import CodeGenerationError, PipelineError
from robosketch.providers import LLMClient
from robosketch.types import GeneratedCode, Platform
from robosketch.validators import require_valid
from robosketch.agents.orchestrator import AgentMessage, parse_json_response, strip_fences, MODEL

PLATFORM_NOTES = {
    Platform.RASPBERRY_PI: (
        "Python 3 for Raspberry Pi OS. Use gpiozero (or RPi.GPIO where gpiozero lacks support), "
        "a main() entry point, and clean GPIO shutdown on KeyboardInterrupt."
    ),
    Platform.ARDUINO: (
        "An Arduino C++ sketch with setup() and loop(). Use only the standard Arduino core "
        "plus widely available libraries (Servo, Wire, NewPing); name every pin as a constant."
    ),
    Platform.MICROBIT: (
        "C++ for the BBC micro:bit using the CODAL MicroBit runtime (MicroBit uBit; "
        "uBit.init(); main loop with uBit.sleep). Name every pin as a constant."
    ),
}

SYSTEM = (
    "You are an expert embedded developer who writes working robot control code. "
    'Respond ONLY with a JSON object: {"code": "<complete source file>"}. '
    "Escape newlines and quotes so the JSON is valid."
)


class CodeAgent:
    def __init__(self, client: LLMClient | None = None):
        self.client = client or LLMClient()

    @staticmethod
    def build_prompt(description: str, platform: Platform) -> str:
        return (
            "You are an expert in generating code for robots. Based on the description of the "
            "robot and the platform, generate the complete code to control the robot.\n\n"
            f"Robot Description: {description}\n"
            f"Platform: {platform.value}\n"
            f"Language and conventions: {PLATFORM_NOTES[platform]}\n\n"
            "Comment each hardware connection with the pin it uses. "
            "Return one complete source file."
        )

    async def handle(self, msg: AgentMessage) -> GeneratedCode:
        platform = Platform(msg.payload["platform"])
        try:
            text = await self.client.complete(
                SYSTEM, self.build_prompt(msg.payload.get("description", ""), platform),
                model=MODEL, max_tokens=CONFIG.max_tokens_code,
                temperature=CONFIG.temperature_code, agent="coder",
            )
            parsed = parse_json_response(text)
            require_valid("code", parsed)
        except PipelineError as e:
            raise CodeGenerationError(f"Failed to generate code: {e}", platform.value) from e
        return GeneratedCode(source=strip_fences(parsed["code"]), platform=platform)
