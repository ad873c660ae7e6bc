"""
Config — centralized configuration with env overrides.

All pipeline parameters are configurable via RSK_* environment variables
with sensible defaults. API keys are read from the environment lazily,
when a provider client is first built, so importing the package never
requires credentials.
"""
import os
from dataclasses import dataclass

from robosketch.errors import ConfigurationError


def _flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class PipelineConfig:
    """Immutable pipeline configuration. Env vars override defaults."""

    # Text models
    model: str = os.getenv("RSK_MODEL", "claude-opus-4-6")
    vision_model: str = os.getenv("RSK_VISION_MODEL", "claude-sonnet-4-5")
    max_tokens_description: int = int(os.getenv("RSK_TOKENS_DESC", "1500"))
    max_tokens_bom: int = int(os.getenv("RSK_TOKENS_BOM", "4096"))
    max_tokens_code: int = int(os.getenv("RSK_TOKENS_CODE", "8192"))
    max_tokens_assembly: int = int(os.getenv("RSK_TOKENS_ASM", "8192"))
    max_tokens_obj: int = int(os.getenv("RSK_TOKENS_OBJ", "4096"))
    temperature_description: float = float(os.getenv("RSK_TEMP_DESC", "0.7"))
    temperature_bom: float = float(os.getenv("RSK_TEMP_BOM", "0.7"))
    temperature_code: float = float(os.getenv("RSK_TEMP_CODE", "0.4"))
    temperature_assembly: float = float(os.getenv("RSK_TEMP_ASM", "0.55"))
    temperature_obj: float = float(os.getenv("RSK_TEMP_OBJ", "0.3"))

    # Image models
    image_model: str = os.getenv("RSK_IMAGE_MODEL", "gpt-image-1")
    image_fallback_model: str = os.getenv("RSK_IMAGE_FALLBACK_MODEL", "dall-e-3")
    image_size: str = os.getenv("RSK_IMAGE_SIZE", "1024x1024")
    image_quality: str = os.getenv("RSK_IMAGE_QUALITY", "high")
    image_fallback_quality: str = os.getenv("RSK_IMAGE_FALLBACK_QUALITY", "hd")
    refine_images: bool = _flag("RSK_REFINE_IMAGES", "true")

    # Optional stages
    generate_obj_model: bool = _flag("RSK_OBJ_MODEL", "false")
    attach_circuit_image: bool = _flag("RSK_ATTACH_CIRCUIT", "true")

    # Retry (text calls only; image fallback is its own protocol)
    max_retries: int = int(os.getenv("RSK_MAX_RETRIES", "2"))
    retry_base_ms: int = int(os.getenv("RSK_RETRY_BASE_MS", "1000"))
    http_timeout_s: float = float(os.getenv("RSK_HTTP_TIMEOUT", "60"))

    # Input bounds
    description_min_chars: int = int(os.getenv("RSK_DESC_MIN", "10"))
    description_max_chars: int = int(os.getenv("RSK_DESC_MAX", "500"))

    # Packaging
    placeholder_concept_url: str = os.getenv(
        "RSK_PLACEHOLDER_CONCEPT", "https://picsum.photos/seed/robot-concept/600/400")
    placeholder_circuit_url: str = os.getenv(
        "RSK_PLACEHOLDER_CIRCUIT", "https://picsum.photos/seed/circuit-diagram/600/400")

    # Server
    host: str = os.getenv("RSK_HOST", "0.0.0.0")
    port: int = int(os.getenv("RSK_PORT", "8000"))
    max_concurrent_builds: int = int(os.getenv("RSK_MAX_BUILDS", "2"))

    # Logging
    log_level: str = os.getenv("RSK_LOG_LEVEL", "info")


# Singleton
CONFIG = PipelineConfig()


def load_anthropic_key() -> str | None:
    return os.environ.get("ANTHROPIC_API_KEY") or None


def load_openai_key() -> str | None:
    return os.environ.get("OPENAI_API_KEY") or None


def ensure_anthropic_key() -> str:
    """Return the text-model API key or fail with a configuration error."""
    key = load_anthropic_key()
    if not key:
        raise ConfigurationError(
            "No Anthropic API key found. Set ANTHROPIC_API_KEY to generate projects."
        )
    return key


def ensure_openai_key() -> str:
    key = load_openai_key()
    if not key:
        raise ConfigurationError(
            "No OpenAI API key found. Set OPENAI_API_KEY to enable image generation."
        )
    return key
