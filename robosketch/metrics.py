"""
In-process counters for the /metrics endpoint.

Stage timings, degraded (fail-soft) stages, which image model tier
produced each picture, and project outcomes by platform. One instance
per process; tests call reset().
"""
import time
import threading
from collections import Counter, defaultdict
from dataclasses import dataclass


@dataclass
class StageStats:
    calls: int = 0
    total_ms: int = 0
    errors: int = 0
    fallbacks: int = 0

    def as_dict(self) -> dict:
        calls = max(1, self.calls)
        return {
            "calls": self.calls,
            "avg_ms": round(self.total_ms / calls),
            "error_rate": round(self.errors / calls, 3),
            "fallbacks": self.fallbacks,
        }


# Where an image came from: the primary model, the fallback model, or nowhere.
IMAGE_TIERS = ("primary", "secondary", "empty")


class PipelineMetrics:
    _instance = None
    _lock = threading.Lock()

    def __new__(cls):
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = super().__new__(cls)
                    cls._instance.reset()
        return cls._instance

    def reset(self):
        self._stages: dict[str, StageStats] = defaultdict(StageStats)
        self._images: dict[str, Counter] = defaultdict(Counter)
        self._outcomes: Counter = Counter()
        self._platforms: Counter = Counter()
        self._build_ms_total = 0
        self._archives = 0
        self._rejected = 0
        self._start = time.time()

    def record_agent(self, agent: str, duration_ms: int, error: bool = False):
        with self._lock:
            stats = self._stages[agent]
            stats.calls += 1
            stats.total_ms += duration_ms
            stats.errors += int(error)

    def record_fallback(self, agent: str):
        with self._lock:
            self._stages[agent].fallbacks += 1

    def record_image(self, kind: str, tier: str, refined: bool = False):
        if tier not in IMAGE_TIERS:
            raise ValueError(f"unknown image tier {tier!r}")
        with self._lock:
            self._images[kind][tier] += 1
            if refined:
                self._images[kind]["refined"] += 1

    def record_build(self, duration_ms: int, status: str = "ready", platform: str = ""):
        with self._lock:
            self._outcomes[status] += 1
            if platform:
                self._platforms[platform] += 1
            self._build_ms_total += duration_ms

    def record_archive(self):
        with self._lock:
            self._archives += 1

    def record_rejection(self):
        with self._lock:
            self._rejected += 1

    def snapshot(self) -> dict:
        with self._lock:
            builds = sum(self._outcomes.values())
            return {
                "uptime_s": round(time.time() - self._start, 1),
                "total_builds": builds,
                "failed_builds": self._outcomes["error"],
                "partial_builds": self._outcomes["partial"],
                "avg_build_ms": round(self._build_ms_total / builds) if builds else 0,
                "platforms": dict(self._platforms),
                "archives": self._archives,
                "rejected": self._rejected,
                "agents": {name: s.as_dict() for name, s in self._stages.items()},
                "images": {kind: dict(c) for kind, c in self._images.items()},
            }
