"""
Timing hooks around homomorphic stages.

Nothing here changes what the wrapped operation returns or raises.
"""
import logging
import time
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Tuple, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Timer:
    """Context manager for timing operations."""

    def __init__(self, name: str = "Operation"):
        self.name = name
        self.start_time: Optional[float] = None
        self.elapsed: Optional[float] = None

    def __enter__(self) -> "Timer":
        self.start_time = time.perf_counter()
        return self

    def __exit__(self, *args) -> None:
        self.elapsed = time.perf_counter() - self.start_time

    @property
    def elapsed_ms(self) -> float:
        """Get elapsed time in milliseconds."""
        if self.elapsed is None:
            if self.start_time is not None:
                return (time.perf_counter() - self.start_time) * 1000
            return 0.0
        return self.elapsed * 1000


def measure(label: str, thunk: Callable[[], T]) -> Tuple[T, float]:
    """
    Run ``thunk`` once and time it.

    Args:
        label: Stage name used in the debug log
        thunk: Zero-argument callable performing the operation

    Returns:
        Tuple of (thunk result, elapsed seconds)
    """
    start = time.perf_counter()
    result = thunk()
    elapsed = time.perf_counter() - start
    logger.debug("%s took %.3fms", label, elapsed * 1000)
    return result, elapsed


@dataclass
class StageTiming:
    label: str
    elapsed_ms: float


@dataclass
class StageRecorder:
    """
    Collects per-stage timings for one or more matching calls.

    Pass an instance to the evaluator to get XOR/AND/popcount timings back,
    the way the benchmark prints them.
    """
    stages: List[StageTiming] = field(default_factory=list)

    def run(self, label: str, thunk: Callable[[], T]) -> T:
        result, elapsed = measure(label, thunk)
        self.stages.append(StageTiming(label=label, elapsed_ms=elapsed * 1000))
        return result

    def total_ms(self, label: Optional[str] = None) -> float:
        return sum(
            s.elapsed_ms for s in self.stages if label is None or s.label == label
        )

    def as_dict(self) -> dict:
        """Total milliseconds per stage label."""
        totals: dict = {}
        for s in self.stages:
            totals[s.label] = totals.get(s.label, 0.0) + s.elapsed_ms
        return totals

    def clear(self) -> None:
        self.stages.clear()
