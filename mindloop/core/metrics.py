import time
from collections import deque
from typing import Any, Deque, Dict, Optional

import psutil

ROLLING_SIZE = 30
RATE_WINDOW_S = 60.0
TIMINGS = ("decide_ms", "action_ms", "tick_ms")


class MetricsRecorder:
    """What the loop is doing right now, plus rolling latency and rate figures."""

    def __init__(self):
        self.activity: Dict[str, Any] = {"phase": "idle", "detail": None, "since": time.time()}
        self.timings: Dict[str, Deque[float]] = {k: deque(maxlen=ROLLING_SIZE) for k in TIMINGS}
        self.action_times: Deque[float] = deque(maxlen=200)
        self.thought_times: Deque[float] = deque(maxlen=200)
        self._process = psutil.Process()

    def set_activity(self, phase: str, detail: Optional[str] = None):
        self.activity = {"phase": str(phase), "detail": None if detail is None else str(detail), "since": time.time()}

    def record_timing(self, name: str, ms: float):
        if name not in self.timings or not isinstance(ms, (int, float)):
            return
        self.timings[name].append(max(0.0, float(ms)))

    def record_count(self, name: str):
        t = time.time()
        if name == "action":
            self.action_times.append(t)
        elif name == "thought":
            self.thought_times.append(t)

    def resource_usage(self) -> Dict[str, float]:
        vm = psutil.virtual_memory()
        return {
            "rss_mb": self._process.memory_info().rss / 1024 / 1024,
            "cpu_percent": psutil.cpu_percent(interval=None),
            "system_free_mb": vm.available / 1024 / 1024,
            "system_total_mb": vm.total / 1024 / 1024,
        }

    def snapshot(self) -> Dict[str, Any]:
        cutoff = time.time() - RATE_WINDOW_S
        actions = sum(1 for t in self.action_times if t >= cutoff)
        thoughts = sum(1 for t in self.thought_times if t >= cutoff)
        latency = {}
        for name, samples in self.timings.items():
            latency["avg_" + name] = round(sum(samples) / len(samples)) if samples else None
            latency["last_" + name] = samples[-1] if samples else None
        return {
            "activity": dict(self.activity),
            "speed": {"actions_per_minute": actions, "thoughts_per_minute": thoughts},
            "latency": latency,
            "resource": self.resource_usage(),
        }
