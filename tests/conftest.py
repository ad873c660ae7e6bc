"""
Shared fakes: Anthropic/OpenAI clients that never touch the network.
"""
import base64
import io
import sys
from pathlib import Path
from types import SimpleNamespace
from unittest.mock import AsyncMock

sys.path.insert(0, str(Path(__file__).parent.parent))

import pytest

from robosketch.logger import PipelineLogger
from robosketch.metrics import PipelineMetrics
from robosketch.providers import ImageClient, LLMClient

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 16


def text_reply(text: str, stop_reason: str = "end_turn"):
    return SimpleNamespace(content=[SimpleNamespace(type="text", text=text)], stop_reason=stop_reason)


def image_reply(raw: bytes = PNG_BYTES):
    return SimpleNamespace(data=[SimpleNamespace(b64_json=base64.b64encode(raw).decode(), url=None)])


@pytest.fixture
def quiet_log():
    return PipelineLogger(stream=io.StringIO())


@pytest.fixture
def make_llm(quiet_log):
    """LLMClient replying with each item in turn; exception items are raised."""
    def factory(*replies, max_retries=0):
        side_effect = [text_reply(r) if isinstance(r, str) else r for r in replies]
        fake = SimpleNamespace(messages=SimpleNamespace(create=AsyncMock(side_effect=side_effect)))
        return LLMClient(client=fake, log=quiet_log, max_retries=max_retries, retry_base_ms=0)
    return factory


@pytest.fixture
def make_image_client():
    """ImageClient over a fake OpenAI client; returns (client, generate_mock, edit_mock)."""
    def factory(generate=None, edit=None):
        gen = AsyncMock(side_effect=generate if generate is not None else lambda **kw: image_reply())
        ed = AsyncMock(side_effect=edit if edit is not None else lambda **kw: image_reply(b"refined"))
        fake = SimpleNamespace(images=SimpleNamespace(generate=gen, edit=ed))
        return ImageClient(client=fake), gen, ed
    return factory


@pytest.fixture(autouse=True)
def fresh_metrics():
    PipelineMetrics().reset()
    yield
    PipelineMetrics().reset()
