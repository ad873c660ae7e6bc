"""
Provider adapters — the only modules that talk to external model APIs.

LLMClient wraps the Anthropic Messages API for every text/vision call
(retry with exponential backoff on transient failures). ImageClient wraps
the OpenAI Images API and normalizes both of its response shapes (inline
base64 and remote URL) to a single EncodedImage before anything else
sees them.
"""
import asyncio
import base64
import binascii

import anthropic
import httpx
import openai

from robosketch.config import CONFIG, ensure_anthropic_key, ensure_openai_key
from robosketch.errors import ProviderError
from robosketch.logger import PipelineLogger
from robosketch.types import EncodedImage

_TRANSIENT = (anthropic.RateLimitError, anthropic.InternalServerError, anthropic.APIConnectionError)


def image_block(image: EncodedImage) -> dict:
    """Anthropic content block for an inline image."""
    return {
        "type": "image",
        "source": {"type": "base64", "media_type": image.media_type, "data": image.data},
    }


class LLMClient:
    """Async text/vision completion with retry. Returns raw response text."""

    def __init__(self, client=None, log: PipelineLogger | None = None,
                 max_retries: int = CONFIG.max_retries, retry_base_ms: int = CONFIG.retry_base_ms):
        self._client = client
        self.log = log or PipelineLogger()
        self.max_retries = max_retries
        self.retry_base_ms = retry_base_ms

    @property
    def client(self):
        if self._client is None:
            self._client = anthropic.AsyncAnthropic(
                api_key=ensure_anthropic_key(), timeout=CONFIG.http_timeout_s * 5)
        return self._client

    async def complete(self, system: str, prompt: str, *, model: str = CONFIG.model,
                       max_tokens: int = 4096, temperature: float | None = None,
                       images: tuple[EncodedImage, ...] = (), agent: str = "") -> str:
        content = [image_block(img) for img in images if img]
        content.append({"type": "text", "text": prompt})
        kwargs = {
            "model": model,
            "max_tokens": max_tokens,
            "system": system,
            "messages": [{"role": "user", "content": content}],
        }
        if temperature is not None:
            kwargs["temperature"] = temperature

        for attempt in range(self.max_retries + 1):
            try:
                resp = await self.client.messages.create(**kwargs)
                break
            except _TRANSIENT as e:
                if attempt == self.max_retries:
                    raise ProviderError(
                        f"{model} unavailable after {attempt + 1} attempts: {e}",
                        provider="anthropic", model=model,
                    ) from e
                delay_ms = self.retry_base_ms * (2 ** attempt)
                self.log.retry(agent, attempt + 1, delay_ms, type(e).__name__)
                await asyncio.sleep(delay_ms / 1000)
            except anthropic.APIError as e:
                raise ProviderError(f"{model} request failed: {e}",
                                    provider="anthropic", model=model) from e

        text = "".join(
            getattr(block, "text", "") for block in resp.content
            if getattr(block, "type", "text") == "text"
        )
        if getattr(resp, "stop_reason", None) == "max_tokens":
            self.log.warn("api.truncated", agent, model=model, max_tokens=max_tokens)
        return text


async def fetch_image(url: str, http: httpx.AsyncClient | None = None,
                      timeout: float = CONFIG.http_timeout_s) -> EncodedImage:
    """Download a remote image and embed it as an EncodedImage."""
    try:
        if http is not None:
            r = await http.get(url)
        else:
            async with httpx.AsyncClient(timeout=timeout, follow_redirects=True) as client:
                r = await client.get(url)
        r.raise_for_status()
    except httpx.HTTPError as e:
        raise ProviderError(f"Failed to fetch image from {url}: {e}", provider="http") from e
    media_type = r.headers.get("content-type", "image/png").split(";")[0].strip() or "image/png"
    return EncodedImage.from_bytes(r.content, media_type)


class ImageClient:
    """Image generation adapter. Every return value is an EncodedImage."""

    def __init__(self, client=None, http: httpx.AsyncClient | None = None):
        self._client = client
        self.http = http

    @property
    def client(self):
        if self._client is None:
            self._client = openai.AsyncOpenAI(
                api_key=ensure_openai_key(), timeout=CONFIG.http_timeout_s * 3)
        return self._client

    @staticmethod
    def returns_inline(model: str) -> bool:
        return model.startswith("gpt-image")

    async def generate(self, prompt: str, *, model: str, quality: str,
                       size: str = CONFIG.image_size) -> EncodedImage:
        kwargs = {"model": model, "prompt": prompt, "n": 1, "size": size, "quality": quality}
        if not self.returns_inline(model):
            kwargs["response_format"] = "url"
            kwargs["style"] = "natural"
        try:
            resp = await self.client.images.generate(**kwargs)
        except openai.OpenAIError as e:
            raise ProviderError(f"{model} image generation failed: {e}",
                                provider="openai", model=model) from e
        return await self._normalize(resp, model)

    async def refine(self, image: EncodedImage, prompt: str, *, model: str, quality: str,
                     size: str = CONFIG.image_size) -> EncodedImage:
        """Re-submit an existing image with an enhancement prompt."""
        upload = (f"base.{image.extension}", image.to_bytes(), image.media_type)
        try:
            resp = await self.client.images.edit(
                model=model, image=upload, prompt=prompt, n=1, size=size, quality=quality,
            )
        except openai.OpenAIError as e:
            raise ProviderError(f"{model} image refinement failed: {e}",
                                provider="openai", model=model) from e
        return await self._normalize(resp, model)

    async def _normalize(self, resp, model: str) -> EncodedImage:
        item = resp.data[0] if getattr(resp, "data", None) else None
        if item is None:
            raise ProviderError(f"{model} returned no image", provider="openai", model=model)
        if getattr(item, "b64_json", None):
            try:
                raw = base64.b64decode(item.b64_json, validate=True)
            except (binascii.Error, ValueError) as e:
                raise ProviderError(f"{model} returned undecodable image data: {e}",
                                    provider="openai", model=model) from e
            return EncodedImage.from_bytes(raw, "image/png")
        if getattr(item, "url", None):
            return await fetch_image(item.url, self.http)
        raise ProviderError(f"{model} returned neither image data nor URL",
                            provider="openai", model=model)
