"""Operation timing sinks."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Protocol

logger = logging.getLogger(__name__)


class MetricsSink(Protocol):
    def record_operation(self, name: str, duration_ms: float) -> None:  # pragma: no cover - interface
        """Record one completed operation."""


@dataclass
class OperationStats:
    count: int = 0
    total_ms: float = 0.0
    max_ms: float = 0.0

    @property
    def mean_ms(self) -> float:
        return self.total_ms / self.count if self.count else 0.0


class InMemoryMetrics:
    """Aggregates counts and durations per operation name."""

    def __init__(self) -> None:
        self._stats: Dict[str, OperationStats] = {}

    def record_operation(self, name: str, duration_ms: float) -> None:
        stats = self._stats.setdefault(name, OperationStats())
        stats.count += 1
        stats.total_ms += duration_ms
        stats.max_ms = max(stats.max_ms, duration_ms)

    def get(self, name: str) -> OperationStats:
        return self._stats.get(name, OperationStats())

    def summary(self) -> Dict[str, Dict[str, float]]:
        return {
            name: {
                "count": stats.count,
                "total_ms": round(stats.total_ms, 3),
                "mean_ms": round(stats.mean_ms, 3),
                "max_ms": round(stats.max_ms, 3),
            }
            for name, stats in sorted(self._stats.items())
        }


def record_safely(sink: MetricsSink | None, name: str, duration_ms: float) -> None:
    """Forward to the sink; a failing sink never affects the caller."""

    if sink is None:
        return
    try:
        sink.record_operation(name, duration_ms)
    except Exception:  # noqa: BLE001 - sinks are fire-and-forget
        logger.debug("metrics sink rejected %s", name, exc_info=True)
