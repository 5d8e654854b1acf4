"""
In-process counters and timers for graph operations.

Queries, traversals, embedding generation and snapshot runs report here.
The numbers are exposed through the CLI ``stats`` command and are reset
per process.
"""

import threading
import time
from collections import defaultdict
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Iterator


@dataclass
class TimingStats:
    """Running latency statistics for one timer."""

    count: int = 0
    total_ms: float = 0.0
    min_ms: float = float("inf")
    max_ms: float = 0.0

    @property
    def avg_ms(self) -> float:
        return self.total_ms / self.count if self.count else 0.0

    def record(self, duration_ms: float) -> None:
        self.count += 1
        self.total_ms += duration_ms
        self.min_ms = min(self.min_ms, duration_ms)
        self.max_ms = max(self.max_ms, duration_ms)

    def copy(self) -> "TimingStats":
        return TimingStats(self.count, self.total_ms, self.min_ms, self.max_ms)

    def to_dict(self) -> dict:
        return {
            "count": self.count,
            "total_ms": round(self.total_ms, 2),
            "avg_ms": round(self.avg_ms, 2),
            "min_ms": round(self.min_ms, 2) if self.count else 0.0,
            "max_ms": round(self.max_ms, 2),
        }


class Metrics:
    """
    Thread-safe counter and timer registry.

    One shared instance is reachable through ``Metrics.get()``; tests may
    construct private instances.

    Example:
        >>> metrics = Metrics.get()
        >>> metrics.increment("nodes_created")
        >>> with metrics.timer("traversal_ms"):
        ...     engine.traverse(ctx, request)
    """

    _instance: "Metrics | None" = None
    _instance_lock = threading.Lock()

    def __init__(self) -> None:
        self._counters: dict[str, int] = defaultdict(int)
        self._timings: dict[str, TimingStats] = defaultdict(TimingStats)
        self._lock = threading.Lock()

    @classmethod
    def get(cls) -> "Metrics":
        """Return the shared instance, creating it on first use."""
        with cls._instance_lock:
            if cls._instance is None:
                cls._instance = cls()
            return cls._instance

    @classmethod
    def reset(cls) -> None:
        """Clear the shared instance's counters and timers."""
        instance = cls._instance
        if instance is not None:
            with instance._lock:
                instance._counters.clear()
                instance._timings.clear()

    def increment(self, name: str, value: int = 1) -> int:
        with self._lock:
            self._counters[name] += value
            return self._counters[name]

    def get_counter(self, name: str) -> int:
        with self._lock:
            return self._counters.get(name, 0)

    def observe(self, name: str, duration_ms: float) -> None:
        with self._lock:
            self._timings[name].record(duration_ms)

    def get_timing(self, name: str) -> TimingStats | None:
        """Return a copy of the stats for a timer, or None if never observed."""
        with self._lock:
            stats = self._timings.get(name)
            return stats.copy() if stats is not None else None

    @contextmanager
    def timer(self, name: str) -> Iterator[None]:
        """Record the wall time of the enclosed block under ``name``."""
        start = time.perf_counter()
        try:
            yield
        finally:
            self.observe(name, (time.perf_counter() - start) * 1000)

    def snapshot(self) -> dict:
        with self._lock:
            return {
                "counters": dict(self._counters),
                "timings": {
                    name: stats.to_dict() for name, stats in self._timings.items()
                },
            }


def increment_embeddings_generated(count: int = 1) -> None:
    Metrics.get().increment("embeddings_generated", count)


def increment_embeddings_skipped(count: int = 1) -> None:
    Metrics.get().increment("embeddings_skipped", count)


def increment_snapshot_outcome(status: str) -> None:
    Metrics.get().increment(f"snapshots_{status}")


@contextmanager
def time_query() -> Iterator[None]:
    """Count and time one graph query."""
    metrics = Metrics.get()
    metrics.increment("queries")
    with metrics.timer("query_latency_ms"):
        yield


@contextmanager
def time_traversal() -> Iterator[None]:
    """Count and time one traversal or path search."""
    metrics = Metrics.get()
    metrics.increment("traversals")
    with metrics.timer("traversal_latency_ms"):
        yield
