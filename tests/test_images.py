"""
Image generation tests — two-tier model fallback, refinement, normalization.
"""
import asyncio
import sys
from pathlib import Path
from types import SimpleNamespace

sys.path.insert(0, str(Path(__file__).parent.parent))

import httpx
import openai
import pytest

from robosketch.agents.orchestrator import AgentMessage
from robosketch.agents.illustrator.image_agent import ImageAgent, concept_prompt, circuit_prompt
from robosketch.config import CONFIG
from robosketch.errors import ProviderError
from robosketch.metrics import PipelineMetrics
from robosketch.providers import ImageClient, fetch_image
from robosketch.types import EncodedImage
from conftest import PNG_BYTES, image_reply


def failing(*_args, **_kwargs):
    raise openai.OpenAIError("model unavailable")


def models_called(mock):
    return [c.kwargs["model"] for c in mock.call_args_list]


class TestTwoTierFallback:
    def test_primary_success(self, make_image_client, quiet_log):
        client, gen, _ = make_image_client()
        agent = ImageAgent(client, log=quiet_log, refine=False)
        image = asyncio.run(agent.generate_image("concept", "a robot", "refine"))
        assert image.to_bytes() == PNG_BYTES
        assert models_called(gen) == [CONFIG.image_model]

    def test_secondary_after_primary_failure(self, make_image_client, quiet_log):
        client, gen, _ = make_image_client(generate=[openai.OpenAIError("down"), image_reply()])
        agent = ImageAgent(client, log=quiet_log, refine=False)
        image = asyncio.run(agent.generate_image("circuit", "a schematic", "refine"))
        assert image
        assert models_called(gen) == [CONFIG.image_model, CONFIG.image_fallback_model]
        fallback_kwargs = gen.call_args_list[1].kwargs
        assert fallback_kwargs["quality"] == CONFIG.image_fallback_quality
        assert fallback_kwargs["style"] == "natural"
        assert fallback_kwargs["response_format"] == "url"

    def test_both_fail_gives_empty_after_two_attempts(self, make_image_client, quiet_log):
        client, gen, edit = make_image_client(generate=failing)
        agent = ImageAgent(client, log=quiet_log)
        image = asyncio.run(agent.generate_image("concept", "a robot", "refine"))
        assert image == EncodedImage.empty()
        assert gen.await_count == 2
        edit.assert_not_awaited()

    def test_missing_key_degrades(self, monkeypatch, quiet_log):
        monkeypatch.delenv("OPENAI_API_KEY", raising=False)
        agent = ImageAgent(ImageClient(), log=quiet_log)
        image = asyncio.run(agent.generate_image("concept", "a robot", "refine"))
        assert not image

    def test_handle_never_raises(self, make_image_client, quiet_log):
        client, gen, _ = make_image_client(generate=failing)
        msg = AgentMessage("test", "illustrator", "generate_images",
                           {"description": "rover", "bom_text": "- 2 × Wheel"})
        images = asyncio.run(ImageAgent(client, log=quiet_log).handle(msg))
        assert not images.concept_image and not images.circuit_diagram
        assert gen.await_count == 4

    def test_undecodable_primary_falls_back(self, make_image_client, quiet_log):
        bad = SimpleNamespace(data=[SimpleNamespace(b64_json="abc", url=None)])
        client, gen, _ = make_image_client(generate=[bad, image_reply()])
        agent = ImageAgent(client, log=quiet_log, refine=False)
        image = asyncio.run(agent.generate_image("concept", "a robot", "refine"))
        assert image.to_bytes() == PNG_BYTES
        assert models_called(gen) == [CONFIG.image_model, CONFIG.image_fallback_model]

    def test_unexpected_primary_error_falls_back(self, make_image_client, quiet_log):
        client, gen, _ = make_image_client(generate=[KeyError("data"), image_reply()])
        agent = ImageAgent(client, log=quiet_log, refine=False)
        image = asyncio.run(agent.generate_image("circuit", "a schematic", "refine"))
        assert image
        assert gen.await_count == 2

    def test_one_broken_kind_keeps_the_other(self, make_image_client, quiet_log):
        def generate(**kwargs):
            if "schematic" in kwargs["prompt"]:
                raise RuntimeError("sdk bug")
            return image_reply()

        client, _, _ = make_image_client(generate=generate)
        msg = AgentMessage("test", "illustrator", "generate_images",
                           {"description": "rover", "bom_text": "- 2 × Wheel"})
        images = asyncio.run(ImageAgent(client, log=quiet_log, refine=False).handle(msg))
        assert images.concept_image.to_bytes() == PNG_BYTES
        assert not images.circuit_diagram

    def test_tiers_recorded(self, make_image_client, quiet_log):
        client, _, _ = make_image_client(generate=[openai.OpenAIError("down"), image_reply()])
        agent = ImageAgent(client, log=quiet_log, refine=False)
        asyncio.run(agent.generate_image("circuit", "a schematic", "refine"))
        client_ok, _, _ = make_image_client()
        asyncio.run(ImageAgent(client_ok, log=quiet_log).generate_image("concept", "p", "r"))
        images = PipelineMetrics().snapshot()["images"]
        assert images["circuit"] == {"secondary": 1}
        assert images["concept"] == {"primary": 1, "refined": 1}


class TestRefinement:
    def test_refined_replaces_original(self, make_image_client, quiet_log):
        client, _, edit = make_image_client()
        image = asyncio.run(ImageAgent(client, log=quiet_log).generate_image("concept", "p", "r"))
        assert image.to_bytes() == b"refined"
        assert edit.call_args.kwargs["prompt"] == "r"

    def test_failed_refinement_keeps_original(self, make_image_client, quiet_log):
        client, _, edit = make_image_client(edit=failing)
        image = asyncio.run(ImageAgent(client, log=quiet_log).generate_image("concept", "p", "r"))
        assert image.to_bytes() == PNG_BYTES
        edit.assert_awaited_once()

    def test_refinement_disabled(self, make_image_client, quiet_log):
        client, _, edit = make_image_client()
        asyncio.run(ImageAgent(client, log=quiet_log, refine=False).generate_image("c", "p", "r"))
        edit.assert_not_awaited()


class TestPrompts:
    def test_bom_in_prompts(self):
        assert "- 2 × Wheel" in concept_prompt("rover", "- 2 × Wheel")
        assert "- 2 × Wheel" in circuit_prompt("rover", "- 2 × Wheel")
        assert "schematic" in circuit_prompt("rover", "")


class TestNormalization:
    def test_url_response_is_downloaded(self):
        def handler(request):
            assert request.url.host == "images.example.com"
            return httpx.Response(200, content=b"jpegdata", headers={"content-type": "image/jpeg"})

        async def go():
            async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
                resp = SimpleNamespace(data=[SimpleNamespace(b64_json=None,
                                                             url="https://images.example.com/a.jpg")])
                return await ImageClient(client=object(), http=http)._normalize(resp, "dall-e-3")

        image = asyncio.run(go())
        assert image.media_type == "image/jpeg"
        assert image.to_bytes() == b"jpegdata"

    def test_empty_response_raises(self):
        with pytest.raises(ProviderError):
            asyncio.run(ImageClient(client=object())._normalize(SimpleNamespace(data=[]), "gpt-image-1"))

    def test_undecodable_b64_raises_provider_error(self):
        resp = SimpleNamespace(data=[SimpleNamespace(b64_json="abc", url=None)])
        with pytest.raises(ProviderError):
            asyncio.run(ImageClient(client=object())._normalize(resp, "gpt-image-1"))

    def test_fetch_failure_raises(self):
        async def go():
            transport = httpx.MockTransport(lambda request: httpx.Response(404))
            async with httpx.AsyncClient(transport=transport) as http:
                return await fetch_image("https://picsum.photos/x", http)

        with pytest.raises(ProviderError):
            asyncio.run(go())

    def test_inline_models(self):
        assert ImageClient.returns_inline("gpt-image-1")
        assert not ImageClient.returns_inline("dall-e-3")
