"""
JSON-lines event log for project generation.

Every line carries the project id and milliseconds since the project
started, so the interleaved output of parallel stages can be untangled
with jq. Lines below RSK_LOG_LEVEL are dropped.
"""
import json
import sys
import time
import uuid
from datetime import datetime, timezone

from robosketch.config import CONFIG

LEVELS = {"debug": 10, "info": 20, "warn": 30, "error": 40}


class PipelineLogger:
    def __init__(self, pipeline_id: str = "", stream=None, level: str = ""):
        self.pipeline_id = pipeline_id or uuid.uuid4().hex[:8]
        self.stream = stream or sys.stderr
        self.threshold = LEVELS.get((level or CONFIG.log_level).lower(), LEVELS["info"])
        self._t0 = time.monotonic()

    def _emit(self, level: str, event: str, agent: str = "", **fields):
        if LEVELS[level] < self.threshold:
            return
        line = {
            "ts": datetime.now(timezone.utc).isoformat(timespec="milliseconds"),
            "level": level,
            "project": self.pipeline_id,
            "t_ms": int((time.monotonic() - self._t0) * 1000),
            "event": event,
        }
        if agent:
            line["stage"] = agent
        line.update(fields)
        print(json.dumps(line, default=str), file=self.stream, flush=True)

    def debug(self, event: str, agent: str = "", **kw):
        self._emit("debug", event, agent, **kw)

    def info(self, event: str, agent: str = "", **kw):
        self._emit("info", event, agent, **kw)

    def warn(self, event: str, agent: str = "", **kw):
        self._emit("warn", event, agent, **kw)

    def error(self, event: str, agent: str = "", **kw):
        self._emit("error", event, agent, **kw)

    # Stage lifecycle

    def agent_start(self, agent: str, task: str):
        self.debug("stage.start", agent, task=task)

    def agent_done(self, agent: str, duration_ms: int, **fields):
        self.info("stage.done", agent, duration_ms=duration_ms, **fields)

    def agent_error(self, agent: str, error: str, duration_ms: int, error_type: str = ""):
        self.error("stage.failed", agent, error=error, error_type=error_type,
                   duration_ms=duration_ms)

    def agent_fallback(self, agent: str, reason: str):
        """A fail-soft stage was replaced by its default output."""
        self.warn("stage.degraded", agent, reason=reason)

    # Providers

    def retry(self, agent: str, attempt: int, delay_ms: int, reason: str):
        self.warn("provider.retry", agent, attempt=attempt, delay_ms=delay_ms, reason=reason)

    def image_fallback(self, kind: str, primary: str, secondary: str, reason: str):
        self.warn("image.fallback", "illustrator", kind=kind, primary=primary,
                  secondary=secondary, reason=reason)

    # Project outcome

    def pipeline_done(self, status: str, total_ms: int, parts: int = 0, cost_usd: float = 0,
                      warnings: int = 0):
        self.info("project.done", status=status, total_ms=total_ms, parts=parts,
                  cost_usd=round(cost_usd, 2), warnings=warnings)

    def pipeline_failed(self, stage: str, error: str, total_ms: int):
        self.error("project.failed", failed_stage=stage, error=error, total_ms=total_ms)
