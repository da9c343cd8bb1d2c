from __future__ import annotations
import threading
from collections import deque
from .types import PerformanceStats


class PerformanceMonitor:
    """Tracks stage timings and frame admission counters."""

    def __init__(self, history_len: int = 200):
        self.detect_ms = deque(maxlen=history_len)
        self.extract_ms = deque(maxlen=history_len)
        self.classify_ms = deque(maxlen=history_len)
        self.total_ms = deque(maxlen=history_len)
        self.frames_submitted = 0
        self.frames_admitted = 0
        self.frames_dropped = 0
        self._lock = threading.Lock()

    def record(self, stats: PerformanceStats):
        with self._lock:
            self.detect_ms.append(stats.t_detect_ms)
            self.extract_ms.append(stats.t_extract_ms)
            self.classify_ms.append(stats.t_classify_ms)
            self.total_ms.append(stats.t_total_ms)

    def count_frame(self, admitted: bool):
        with self._lock:
            self.frames_submitted += 1
            if admitted:
                self.frames_admitted += 1
            else:
                self.frames_dropped += 1

    def summary(self) -> dict:
        def avg(q):
            return float(sum(q) / len(q)) if q else 0.0
        with self._lock:
            return {
                "avg_detect_ms": avg(self.detect_ms),
                "avg_extract_ms": avg(self.extract_ms),
                "avg_classify_ms": avg(self.classify_ms),
                "avg_total_ms": avg(self.total_ms),
                "frames_submitted": self.frames_submitted,
                "frames_admitted": self.frames_admitted,
                "frames_dropped": self.frames_dropped,
            }
