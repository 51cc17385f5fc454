"""Worklist fixpoint engine — one driver for forward and backward analyses.

The driver is parameterized by a direction strategy that decides where the
iteration starts, in which order nodes are walked, which neighbours receive
the outgoing stores and how blocks are prioritized on the worklist.
"""

from __future__ import annotations

import heapq
import itertools
import logging
import time
from abc import ABC, abstractmethod
from collections import defaultdict
from typing import Any, Generic, Iterator, TypeVar

from .analysis_types import AnalysisConfig, AnalysisStats, Direction
from .cfg import Block, BlockKind, ControlFlowGraph, EdgeLabel
from .errors import LatticeContractViolation, MalformedCFGError
from .ir import IRInstruction, SyntaxRef
from .result import AnalysisResult
from .transfer import (
    BackwardTransferFunction,
    TransferFunction,
    TransferInput,
    TransferResult,
)

logger = logging.getLogger(__name__)

V = TypeVar("V")
S = TypeVar("S")


class Worklist:
    """Blocks pending re-processing, popped by priority then insertion order.

    Adding a block that is already queued is a no-op.
    """

    def __init__(self, priorities: dict[int, int]):
        self._priorities = priorities
        self._heap: list[tuple[int, int, Block]] = []
        self._queued: set[int] = set()
        self._seq = itertools.count()

    def add(self, block: Block) -> None:
        if block.block_id in self._queued:
            return
        self._queued.add(block.block_id)
        priority = self._priorities.get(block.block_id, len(self._priorities))
        heapq.heappush(self._heap, (priority, next(self._seq), block))

    def pop(self) -> Block:
        _, _, block = heapq.heappop(self._heap)
        self._queued.discard(block.block_id)
        return block

    def __contains__(self, block: Block) -> bool:
        return block.block_id in self._queued

    def __len__(self) -> int:
        return len(self._heap)

    def __bool__(self) -> bool:
        return bool(self._heap)


class _DirectionStrategy(ABC):
    direction: Direction

    @abstractmethod
    def priorities(self, cfg: ControlFlowGraph) -> dict[int, int]: ...

    @abstractmethod
    def seed(self, analysis: Analysis, cfg: ControlFlowGraph) -> dict[Block, Any]:
        """Initial stores of the start blocks."""
        ...

    @abstractmethod
    def node_order(self, block: Block) -> list[IRInstruction]: ...

    @abstractmethod
    def keep_pair(self, block: Block, is_last: bool) -> bool: ...

    @abstractmethod
    def outgoing(
        self,
        analysis: Analysis,
        block: Block,
        current: TransferInput,
        last_result: TransferResult | None,
    ) -> Iterator[tuple[Block, TransferInput]]: ...


class _ForwardStrategy(_DirectionStrategy):
    direction = Direction.FORWARD

    def priorities(self, cfg: ControlFlowGraph) -> dict[int, int]:
        return {b.block_id: i for i, b in enumerate(cfg.depth_first_order())}

    def seed(self, analysis: Analysis, cfg: ControlFlowGraph) -> dict[Block, Any]:
        store = analysis.transfer_function.initial_store(
            cfg.underlying_ast, list(cfg.parameters)
        )
        return {cfg.entry_block(): store}

    def node_order(self, block: Block) -> list[IRInstruction]:
        return block.nodes

    def keep_pair(self, block: Block, is_last: bool) -> bool:
        if not is_last:
            return False
        return block.kind == BlockKind.CONDITIONAL or any(
            e.target.kind == BlockKind.CONDITIONAL for e in block.normal_edges()
        )

    def outgoing(self, analysis, block, current, last_result):
        for edge in block.edges:
            if edge.label == EdgeLabel.THEN:
                yield edge.target, TransferInput(analysis, current.then_store())
            elif edge.label == EdgeLabel.ELSE:
                yield edge.target, TransferInput(analysis, current.else_store())
            elif edge.label == EdgeLabel.EXCEPTIONAL:
                store = (
                    _exceptional_store(last_result, edge.exception_type)
                    if last_result is not None
                    else current.regular_store()
                )
                yield edge.target, TransferInput(analysis, store)
            elif (
                edge.target.kind == BlockKind.CONDITIONAL
                and current.contains_two_stores()
            ):
                yield edge.target, current
            else:
                yield edge.target, TransferInput(analysis, current.regular_store())


class _BackwardStrategy(_DirectionStrategy):
    direction = Direction.BACKWARD

    def priorities(self, cfg: ControlFlowGraph) -> dict[int, int]:
        postorder = list(reversed(cfg.depth_first_order()))
        return {b.block_id: i for i, b in enumerate(postorder)}

    def seed(self, analysis: Analysis, cfg: ControlFlowGraph) -> dict[Block, Any]:
        tf = analysis.transfer_function
        stores = {
            cfg.regular_exit_block(): tf.initial_normal_exit_store(
                cfg.underlying_ast, cfg.return_nodes()
            )
        }
        exceptional_exit = cfg.exceptional_exit_block()
        if exceptional_exit is not None:
            stores[exceptional_exit] = tf.initial_exceptional_exit_store(
                cfg.underlying_ast
            )
        return stores

    def node_order(self, block: Block) -> list[IRInstruction]:
        return list(reversed(block.nodes))

    def keep_pair(self, block: Block, is_last: bool) -> bool:
        return False

    def outgoing(self, analysis, block, current, last_result):
        for predecessor in block.predecessors:
            yield predecessor, TransferInput(analysis, current.regular_store())


_STRATEGIES: dict[Direction, type[_DirectionStrategy]] = {
    Direction.FORWARD: _ForwardStrategy,
    Direction.BACKWARD: _BackwardStrategy,
}


def _exceptional_store(result: TransferResult, exception_type: str | None):
    """Store routed along an exceptional edge labelled *exception_type*.

    An exact entry wins; otherwise every store the node may leave with is
    joined, which over-approximates whichever one the exception carries.
    """
    stores = result.exceptional_stores
    if exception_type in stores:
        return stores[exception_type]
    joined = result.regular_store()
    for store in stores.values():
        joined = joined.least_upper_bound(store)
    return joined


class Analysis(Generic[V, S]):
    """Runs a transfer function to a fixpoint over one CFG at a time."""

    def __init__(
        self,
        transfer_function: TransferFunction,
        direction: Direction = Direction.FORWARD,
        config: AnalysisConfig | None = None,
    ):
        if direction == Direction.BACKWARD and not isinstance(
            transfer_function, BackwardTransferFunction
        ):
            raise TypeError(
                f"Backward analysis needs a BackwardTransferFunction, "
                f"got {type(transfer_function).__name__}"
            )
        self.transfer_function = transfer_function
        self.config = config or AnalysisConfig()
        self._strategy = _STRATEGIES[direction]()
        self._cfg: ControlFlowGraph | None = None
        self._is_running = False
        self._node_values: dict[int, V] = {}
        self._stores: dict[int, TransferInput] = {}
        self._tree_lookup: dict[SyntaxRef, IRInstruction] = {}
        self._final_local_values: dict[str, V] = {}
        self._priorities: dict[int, int] = {}
        self._visits: dict[int, int] = defaultdict(int)
        self._worklist = Worklist({})
        self.stats = AnalysisStats(direction=direction.value)

    @property
    def direction(self) -> Direction:
        return self._strategy.direction

    @property
    def is_running(self) -> bool:
        return self._is_running

    # ── Fixpoint ─────────────────────────────────────────────────

    def perform_analysis(self, cfg: ControlFlowGraph) -> AnalysisResult:
        """Run to a fixpoint over *cfg* and return the frozen result."""
        _validate(cfg)
        self._cfg = cfg
        self._node_values = {}
        self._stores = {}
        self._tree_lookup = {}
        self._final_local_values = {}
        self._visits = defaultdict(int)
        self._priorities = self._strategy.priorities(cfg)
        self._worklist = Worklist(self._priorities)
        self.stats = AnalysisStats(
            direction=self.direction.value, block_count=len(cfg.blocks)
        )

        logger.info(
            "Starting %s analysis on CFG with %d blocks",
            self.direction.value,
            len(cfg.blocks),
        )
        started = time.perf_counter()
        self._is_running = True
        try:
            for block, store in self._strategy.seed(self, cfg).items():
                self._stores[block.block_id] = TransferInput(self, store)
                self._worklist.add(block)
            self._iterate()
        finally:
            self._is_running = False
            self.stats.elapsed = time.perf_counter() - started

        logger.info(
            "%s analysis converged after %d iterations (%d widenings)",
            self.direction.value.capitalize(),
            self.stats.iterations,
            self.stats.widenings,
        )
        return self.get_result()

    def _iterate(self) -> None:
        while self._worklist:
            block = self._worklist.pop()
            self.stats.iterations += 1
            if self.stats.iterations > self.config.max_iterations:
                logger.warning(
                    "Analysis did not converge within %d block visits (last: %s)",
                    self.config.max_iterations,
                    block.label,
                )
                raise MalformedCFGError(
                    f"Fixpoint not reached within {self.config.max_iterations} "
                    f"block visits; a cycle needs a lattice with widening"
                )
            self._visits[block.block_id] += 1
            logger.debug(
                "Processing block %s (visit %d)",
                block.label,
                self._visits[block.block_id],
            )
            self._process_block(block)

    def _process_block(self, block: Block) -> None:
        current = self._stores[block.block_id].copy()
        nodes = self._strategy.node_order(block)
        values_changed = False
        last_result: TransferResult | None = None
        for i, node in enumerate(nodes):
            result = self._call_transfer_function(node, current)
            values_changed = self._record(node, result) or values_changed
            last_result = result
            keep_pair = self._strategy.keep_pair(block, i == len(nodes) - 1)
            current = TransferInput.from_result(self, result, keep_pair)

        for target, out in self._strategy.outgoing(self, block, current, last_result):
            self._merge(block, target, out, force=values_changed)

    def _call_transfer_function(
        self, node: IRInstruction, transfer_input: TransferInput
    ) -> TransferResult:
        self.stats.node_visits += 1
        return self.transfer_function.visit(node, transfer_input)

    def _record(self, node: IRInstruction, result: TransferResult) -> bool:
        """Index the node's trees and store its value; True if the value moved."""
        for tree in node.trees():
            self._tree_lookup[tree] = node
        if result.value is None:
            return False
        previous = self._node_values.get(node.node_id)
        self._node_values[node.node_id] = result.value
        return previous is None or previous != result.value

    def _merge(
        self, source: Block, target: Block, out: TransferInput, force: bool
    ) -> None:
        previous = self._stores.get(target.block_id)
        if previous is None:
            merged = out.copy()
        elif self._should_widen(source, target, previous):
            merged = previous.widened_upper_bound(out)
            self.stats.widenings += 1
            logger.debug("Widening at %s (from %s)", target.label, source.label)
            self._check_upper_bound(target, previous, out, merged)
        else:
            merged = previous.least_upper_bound(out)
            self._check_upper_bound(target, previous, out, merged)

        changed = previous is None or merged != previous
        if changed:
            self._stores[target.block_id] = merged
        if changed or force:
            self._worklist.add(target)

    def _should_widen(
        self, source: Block, target: Block, previous: TransferInput
    ) -> bool:
        threshold = self.config.widening_threshold
        if threshold is None:
            return False
        is_back_edge = self._priorities.get(target.block_id, 0) <= self._priorities.get(
            source.block_id, 0
        )
        return (
            is_back_edge
            and self._visits[target.block_id] >= threshold
            and previous.supports_widening()
        )

    def _check_upper_bound(
        self,
        target: Block,
        previous: TransferInput,
        out: TransferInput,
        merged: TransferInput,
    ) -> None:
        if not self.config.debug:
            return
        if merged.least_upper_bound(previous) != merged or (
            merged.least_upper_bound(out) != merged
        ):
            logger.error("Join at block %s lost information", target.label)
            raise LatticeContractViolation(
                f"Join at block {target.label} is not an upper bound of its "
                f"inputs: {previous!r} ⊔ {out!r} = {merged!r}"
            )

    # ── Hooks for transfer functions ─────────────────────────────

    def set_final_local_value(self, name: str, value: V) -> None:
        """Record the value of an effectively-final local (only while running)."""
        if self._is_running:
            self._final_local_values[name] = value

    def get_operand_value(self, node: IRInstruction, register: Any) -> V | None:
        """Abstract value of the node that produced *register* for *node*."""
        block = node.block()
        if block is None or block.graph is None or not isinstance(register, str):
            return None
        definition = block.graph.definition_of(register)
        if definition is None:
            return None
        return self._node_values.get(definition.node_id)

    # ── Local re-run (used by AnalysisResult) ───────────────────

    def run_analysis_for(
        self,
        node: IRInstruction,
        before: bool,
        block_input: TransferInput,
        node_values: dict[int, V],
    ) -> S | None:
        """Store immediately before or after *node*, replaying its block only.

        Stores are reported in execution order for both directions. The
        given node values stand in for the engine's own while replaying, and
        nothing is recorded.
        """
        block = node.block()
        if block is None:
            return None
        saved_values, saved_running = self._node_values, self._is_running
        self._node_values, self._is_running = node_values, False
        try:
            if self.direction == Direction.FORWARD:
                return self._replay_forward(block, node, before, block_input)
            return self._replay_backward(block, node, before, block_input)
        finally:
            self._node_values, self._is_running = saved_values, saved_running

    def _replay_forward(self, block, node, before, block_input):
        current = block_input.copy()
        for i, candidate in enumerate(block.nodes):
            if candidate.node_id == node.node_id and before:
                return current.regular_store()
            result = self.transfer_function.visit(candidate, current)
            keep_pair = self._strategy.keep_pair(block, i == len(block.nodes) - 1)
            current = TransferInput.from_result(self, result, keep_pair)
            if candidate.node_id == node.node_id:
                return current.regular_store()
        return None

    def _replay_backward(self, block, node, before, block_input):
        current = block_input.copy()
        for candidate in reversed(block.nodes):
            if candidate.node_id == node.node_id and not before:
                return current.regular_store()
            result = self.transfer_function.visit(candidate, current)
            current = TransferInput(self, result.regular_store())
            if candidate.node_id == node.node_id:
                return current.regular_store()
        return None

    # ── Visualizer boundary (read-only) ─────────────────────────

    def get_value(self, node: IRInstruction) -> V | None:
        return self._node_values.get(node.node_id)

    def get_input(self, block: Block) -> TransferInput | None:
        return self._stores.get(block.block_id)

    @property
    def node_values(self) -> dict[int, V]:
        return dict(self._node_values)

    @property
    def stores(self) -> dict[int, TransferInput]:
        return dict(self._stores)

    @property
    def tree_lookup(self) -> dict[SyntaxRef, IRInstruction]:
        return dict(self._tree_lookup)

    @property
    def final_local_values(self) -> dict[str, V]:
        return dict(self._final_local_values)

    @property
    def cfg(self) -> ControlFlowGraph | None:
        return self._cfg

    def get_result(self) -> AnalysisResult:
        return AnalysisResult(
            node_values=dict(self._node_values),
            stores=dict(self._stores),
            tree_lookup=dict(self._tree_lookup),
            final_local_values=dict(self._final_local_values),
        )


class ForwardAnalysis(Analysis[V, S]):
    def __init__(
        self, transfer_function: TransferFunction, config: AnalysisConfig | None = None
    ):
        super().__init__(transfer_function, Direction.FORWARD, config)


class BackwardAnalysis(Analysis[V, S]):
    def __init__(
        self,
        transfer_function: BackwardTransferFunction,
        config: AnalysisConfig | None = None,
    ):
        super().__init__(transfer_function, Direction.BACKWARD, config)


def _validate(cfg: ControlFlowGraph) -> None:
    if cfg.entry_block() is None:
        raise MalformedCFGError(f"CFG has no entry block '{cfg.entry}'")
    if cfg.regular_exit_block() is None:
        raise MalformedCFGError(f"CFG has no exit block '{cfg.regular_exit}'")
    for block in cfg.blocks.values():
        if block.kind == BlockKind.SPECIAL and block.nodes:
            raise MalformedCFGError(f"Special block {block.label} holds nodes")
        for node in block.nodes:
            if node.block() is not block:
                raise MalformedCFGError(
                    f"Node {node} is listed in {block.label} but owned by "
                    f"{node.block()!r}"
                )
