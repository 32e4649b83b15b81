from __future__ import annotations

import math
import time
from collections import Counter, defaultdict, deque
from contextlib import contextmanager
from typing import Any, Deque, Dict, Iterator, Optional


class Metrics:
    """Process-wide counters and latency samples for one deployment run.

    Counters are flat (`tx_sent_total`), reason counters are grouped
    (`deploy_fail_by_reason` -> {"reverted": 1}), and samples keep the last
    `max_samples` observations per name. `snapshot()` is what ends up in
    run_meta.json.
    """

    def __init__(self, max_samples: int = 500) -> None:
        self.max_samples = int(max_samples)
        self._counters: Counter = Counter()
        self._reasons: Dict[str, Counter] = defaultdict(Counter)
        self._samples: Dict[str, Deque[float]] = {}

    def reset(self) -> None:
        self._counters.clear()
        self._reasons.clear()
        self._samples.clear()

    def inc(self, name: str, n: int = 1) -> None:
        if name:
            self._counters[str(name)] += int(n)

    def inc_reason(self, group: str, reason: str, n: int = 1) -> None:
        if group and reason:
            self._reasons[str(group)][str(reason)] += int(n)

    def count(self, name: str, reason: Optional[str] = None) -> int:
        if reason is None:
            return int(self._counters.get(str(name), 0))
        return int(self._reasons.get(str(name), Counter()).get(str(reason), 0))

    def observe(self, name: str, value: float) -> None:
        if not name:
            return
        try:
            v = float(value)
        except (TypeError, ValueError):
            return
        if math.isnan(v):
            return
        bucket = self._samples.get(str(name))
        if bucket is None:
            bucket = self._samples[str(name)] = deque(maxlen=self.max_samples)
        bucket.append(v)

    @contextmanager
    def timer(self, name: str) -> Iterator[None]:
        """Observe the block's wall time in ms under `name`, even when it raises."""
        t0 = time.perf_counter()
        try:
            yield
        finally:
            self.observe(name, (time.perf_counter() - t0) * 1000.0)

    @staticmethod
    def _median(vals: Deque[float]) -> Optional[float]:
        if not vals:
            return None
        v = sorted(vals)
        mid = len(v) // 2
        return float(v[mid]) if len(v) % 2 else (v[mid - 1] + v[mid]) / 2.0

    def snapshot(self) -> Dict[str, Any]:
        return {
            "counters": dict(self._counters),
            "reason_counters": {g: dict(c) for g, c in self._reasons.items()},
            "histograms": {
                name: {
                    "count": len(vals),
                    "p50": self._median(vals),
                    "max": max(vals) if vals else None,
                    "total": float(sum(vals)),
                }
                for name, vals in self._samples.items()
            },
        }


METRICS = Metrics()
