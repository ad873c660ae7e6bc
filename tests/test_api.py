"""
API server unit tests — endpoint validation without model calls.
Tests request/response shapes, error handling, and middleware.
"""
import asyncio
import io
import json
import sys
import zipfile
from pathlib import Path
from types import SimpleNamespace
from unittest.mock import AsyncMock, patch

sys.path.insert(0, str(Path(__file__).parent.parent))

import httpx
import pytest
from starlette.applications import Starlette
from starlette.middleware import Middleware
from starlette.responses import JSONResponse, StreamingResponse
from starlette.routing import Route
from starlette.testclient import TestClient

from robosketch.agents.orchestrator import Orchestrator
from robosketch.api.server import app
from robosketch.config import CONFIG
from robosketch.errors import CodeGenerationError
from robosketch.metrics import PipelineMetrics
from robosketch.middleware import ConcurrencyLimitMiddleware
from robosketch.types import (
    AssemblyInstructions, BOMItem, EncodedImage, GeneratedCode, GeneratedImages, Platform,
)

VALID = {"description": "a robot that follows a black line", "platform": "Arduino"}


@pytest.fixture
def client():
    return TestClient(app)


def agent(result=None, error=None):
    async def handle(msg):
        if error:
            raise error
        return result
    return SimpleNamespace(handle=handle)


def fake_orchestrator(quiet_log, **overrides):
    agents = {
        "describer": agent("A line follower"),
        "bom": agent([BOMItem("Micro Servo SG90", "servo", 2, "", 5.95)]),
        "coder": agent(GeneratedCode("void loop() {}", Platform.ARDUINO)),
        "illustrator": agent(GeneratedImages(
            concept_image=EncodedImage.from_bytes(b"concept"),
            circuit_diagram=EncodedImage.from_bytes(b"circuit"))),
        "assembler": agent(AssemblyInstructions("1. Fit 2 × Micro Servo SG90")),
    }
    agents.update(overrides)
    orch = Orchestrator(log=quiet_log, generate_obj_model=False)
    for name, a in agents.items():
        orch.register_agent(name, a)
    return orch


async def staggered_posts(asgi_app, path, count, payload=None, gap_s=0.05):
    """POST `count` times, `gap_s` apart, all in flight together; returns status codes."""
    transport = httpx.ASGITransport(app=asgi_app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as http:
        async def post(delay):
            await asyncio.sleep(delay)
            return (await http.post(path, json=payload)).status_code
        return list(await asyncio.gather(*(post(i * gap_s) for i in range(count))))


class TestHealthEndpoint:
    def test_health(self, client, monkeypatch):
        monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
        r = client.get("/health")
        assert r.status_code == 200
        data = r.json()
        assert data["status"] == "no_api_key"
        assert data["anthropic_key"] is False
        assert "image" in data["models"]

    def test_has_request_id(self, client):
        r = client.get("/health")
        assert "x-request-id" in r.headers
        assert "x-duration-ms" in r.headers


class TestMetricsEndpoint:
    def test_metrics(self, client):
        r = client.get("/metrics")
        assert r.status_code == 200
        data = r.json()
        assert "uptime_s" in data
        assert "total_builds" in data
        assert "agents" in data


class TestIndex:
    def test_serves_page(self, client):
        r = client.get("/")
        assert r.status_code == 200
        assert "text/html" in r.headers["content-type"]
        assert "RoboSketch" in r.text


class TestProjectValidation:
    def test_missing_fields(self, client):
        assert client.post("/projects", json={}).status_code == 422

    def test_too_short(self, client):
        r = client.post("/projects", json={"description": "robot", "platform": "Arduino"})
        assert r.status_code == 422

    def test_too_long(self, client):
        r = client.post("/projects", json={"description": "x" * 501, "platform": "Arduino"})
        assert r.status_code == 422

    def test_unknown_platform(self, client):
        r = client.post("/projects", json={**VALID, "platform": "ESP32"})
        assert r.status_code == 422

    def test_bad_image(self, client):
        r = client.post("/projects", json={**VALID, "image": "not a data uri"})
        assert r.status_code == 422


class TestProjectGeneration:
    def test_success(self, client, quiet_log):
        with patch("robosketch.api.server.create_orchestrator",
                   return_value=fake_orchestrator(quiet_log)):
            r = client.post("/projects", json=VALID)
        assert r.status_code == 200
        body = r.json()
        assert body["success"] is True
        data = body["data"]
        assert data["code"]["filename"] == "code.cpp"
        assert data["totalCostUSD"] == pytest.approx(11.90)
        assert data["images"]["conceptImage"].startswith("data:image/png;base64,")
        assert data["status"] == "ready"

    def test_sketch_reaches_pipeline(self, client, quiet_log):
        orch = fake_orchestrator(quiet_log)
        seen = {}

        async def describe(msg):
            seen["request"] = msg.payload["request"]
            return "From a sketch"
        orch.register_agent("describer", SimpleNamespace(handle=describe))

        uri = EncodedImage.from_bytes(b"sketch", "image/png").data_uri
        with patch("robosketch.api.server.create_orchestrator", return_value=orch):
            r = client.post("/projects", json={**VALID, "image": uri})
        assert r.json()["success"] is True
        assert seen["request"].has_image

    def test_fatal_stage_failure(self, client, quiet_log):
        orch = fake_orchestrator(quiet_log, coder=agent(error=CodeGenerationError("no code today")))
        with patch("robosketch.api.server.create_orchestrator", return_value=orch):
            r = client.post("/projects", json=VALID)
        assert r.status_code == 502
        assert r.json() == {"success": False, "error": "no code today"}

    def test_unexpected_failure(self, client, quiet_log):
        broken = SimpleNamespace(run=AsyncMock(side_effect=RuntimeError("kaboom")), log=quiet_log)
        with patch("robosketch.api.server.create_orchestrator", return_value=broken):
            r = client.post("/projects", json=VALID)
        assert r.status_code == 500
        assert r.json()["success"] is False
        assert "kaboom" not in r.json()["error"]

    def test_request_id_names_project_log(self, client, quiet_log):
        with patch("robosketch.api.server.create_orchestrator",
                   return_value=fake_orchestrator(quiet_log)) as factory:
            r = client.post("/projects", json=VALID, headers={"X-Request-Id": "req42"})
        assert r.headers["x-request-id"] == "req42"
        assert factory.call_args.args[0].pipeline_id == "req42"


class TestStream:
    def events(self, text):
        out = []
        for block in text.strip().split("\n\n"):
            lines = dict(line.split(": ", 1) for line in block.splitlines())
            out.append((lines["event"], json.loads(lines["data"])))
        return out

    def test_stream_result(self, client, quiet_log):
        with patch("robosketch.api.server.create_orchestrator",
                   return_value=fake_orchestrator(quiet_log)):
            r = client.post("/projects/stream", json=VALID)
        assert r.headers["content-type"].startswith("text/event-stream")
        events = self.events(r.text)
        assert events[0][0] == "status"
        assert [e for e, _ in events[-2:]] == ["result", "done"]
        assert events[-2][1]["data"]["platform"] == "Arduino"

    def test_stream_error(self, client, quiet_log):
        orch = fake_orchestrator(quiet_log, coder=agent(error=CodeGenerationError("no code")))
        with patch("robosketch.api.server.create_orchestrator", return_value=orch):
            r = client.post("/projects/stream", json=VALID)
        events = self.events(r.text)
        assert [e for e, _ in events[-2:]] == ["error", "done"]
        assert events[-2][1]["error"] == "no code"


class TestArchiveEndpoint:
    def test_zip_download(self, client, quiet_log):
        with patch("robosketch.api.server.create_orchestrator",
                   return_value=fake_orchestrator(quiet_log)):
            result = client.post("/projects", json=VALID).json()
        r = client.post("/projects/archive", json=result)
        assert r.status_code == 200
        assert r.headers["content-type"] == "application/zip"
        assert 'filename="robosketch-project.zip"' in r.headers["content-disposition"]
        names = zipfile.ZipFile(io.BytesIO(r.content)).namelist()
        assert "code.cpp" in names
        assert "images/concept.png" in names
        assert PipelineMetrics().snapshot()["archives"] == 1

    def test_invalid_result(self, client):
        r = client.post("/projects/archive", json={"description": "x"})
        assert r.status_code == 422
        assert r.json()["success"] is False

    def test_bad_bom_quantity_rejected(self, client, quiet_log):
        with patch("robosketch.api.server.create_orchestrator",
                   return_value=fake_orchestrator(quiet_log)):
            result = client.post("/projects", json=VALID).json()
        result["data"]["billOfMaterials"][0]["quantity"] = -3
        r = client.post("/projects/archive", json=result)
        assert r.status_code == 422
        assert "quantity" in r.json()["error"]


class TestConcurrencyLimit:
    def make_app(self, max_concurrent):
        async def generate(request):
            return JSONResponse({"ok": True})
        return Starlette(
            routes=[Route("/projects", generate, methods=["POST"]),
                    Route("/health", generate, methods=["GET"])],
            middleware=[Middleware(ConcurrencyLimitMiddleware, max_concurrent=max_concurrent)],
        )

    def test_rejects_when_full(self):
        r = TestClient(self.make_app(0)).post("/projects", json={})
        assert r.status_code == 429
        assert r.headers["retry-after"] == "30"
        assert PipelineMetrics().snapshot()["rejected"] == 1

    def test_other_paths_unlimited(self):
        assert TestClient(self.make_app(0)).get("/health").status_code == 200

    def test_allows_under_limit(self):
        assert TestClient(self.make_app(1)).post("/projects", json={}).status_code == 200

    def test_streamed_build_holds_slot_until_done(self):
        running = {"now": 0, "peak": 0}

        async def stream(request):
            async def body():
                running["now"] += 1
                running["peak"] = max(running["peak"], running["now"])
                await asyncio.sleep(0.2)
                running["now"] -= 1
                yield "event: done\ndata: {}\n\n"
            return StreamingResponse(body(), media_type="text/event-stream")

        limited = Starlette(
            routes=[Route("/projects/stream", stream, methods=["POST"])],
            middleware=[Middleware(ConcurrencyLimitMiddleware, max_concurrent=2)],
        )
        statuses = asyncio.run(staggered_posts(limited, "/projects/stream", 5))
        assert sorted(statuses) == [200, 200, 429, 429, 429]
        assert running["peak"] == 2

    def test_server_caps_streaming_pipelines(self, quiet_log):
        running = {"now": 0, "peak": 0}

        async def slow_describe(msg):
            running["now"] += 1
            running["peak"] = max(running["peak"], running["now"])
            await asyncio.sleep(0.3)
            running["now"] -= 1
            return "A line follower"

        def build(*_args):
            return fake_orchestrator(quiet_log, describer=SimpleNamespace(handle=slow_describe))

        with patch("robosketch.api.server.create_orchestrator", side_effect=build):
            statuses = asyncio.run(staggered_posts(app, "/projects/stream", 5, payload=VALID))
        limit = CONFIG.max_concurrent_builds
        assert statuses.count(200) == limit
        assert statuses.count(429) == 5 - limit
        assert running["peak"] == limit
        assert PipelineMetrics().snapshot()["rejected"] == 5 - limit
