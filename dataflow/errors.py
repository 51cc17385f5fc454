"""Errors surfaced by the dataflow core."""

from __future__ import annotations


class MalformedCFGError(Exception):
    """Raised when a CFG cannot be analysed: missing entry/exit blocks,
    dangling branch targets, orphaned nodes or a fixpoint that never settles."""

    pass


class LatticeContractViolation(Exception):
    """Raised in debug mode when a join is smaller than one of its inputs."""

    pass
