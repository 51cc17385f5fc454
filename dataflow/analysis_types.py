"""Analysis data types (pure data, no business logic)."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from . import constants


class Direction(Enum):
    """Direction in which stores flow through the CFG."""

    FORWARD = "forward"
    BACKWARD = "backward"


@dataclass(frozen=True)
class AnalysisConfig:
    """Groups fixpoint engine configuration."""

    # None means plain join everywhere; otherwise widen on back edges once the
    # loop head has been processed this many times.
    widening_threshold: int | None = None
    max_iterations: int = constants.DATAFLOW_MAX_ITERATIONS
    debug: bool = False


@dataclass
class AnalysisStats:
    """Counters collected while running to a fixpoint."""

    direction: str = ""
    block_count: int = 0
    iterations: int = 0
    node_visits: int = 0
    widenings: int = 0
    elapsed: float = 0.0

    def report(self) -> str:
        lines = [
            "═══ Analysis Statistics ═══",
            f"  Direction:   {self.direction}",
            f"  Blocks:      {self.block_count}",
            f"  Iterations:  {self.iterations}",
            f"  Node visits: {self.node_visits}",
            f"  Widenings:   {self.widenings}",
            f"  Elapsed:     {self.elapsed * 1000:>8.1f}ms",
        ]
        return "\n".join(lines)
