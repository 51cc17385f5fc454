"""AnalysisResult — the query surface published once an analysis converges."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Generic, TypeVar, Union

from .ir import IRInstruction, SyntaxRef

if TYPE_CHECKING:
    from .transfer import TransferInput

logger = logging.getLogger(__name__)

V = TypeVar("V")
S = TypeVar("S")

NodeOrTree = Union[IRInstruction, SyntaxRef]


class AnalysisResult(Generic[V, S]):
    """Node values, block input stores, tree index and final-local values.

    Every map is keyed by identity: nodes by ``node_id``, blocks by
    ``block_id``, trees by their ``SyntaxRef``.  Before/after store queries
    replay the owning block through the analysis that produced its input
    store, so a combined result can answer for every CFG it was built from.
    """

    def __init__(
        self,
        node_values: dict[int, V] | None = None,
        stores: dict[int, TransferInput] | None = None,
        tree_lookup: dict[SyntaxRef, IRInstruction] | None = None,
        final_local_values: dict[str, V] | None = None,
    ):
        self.node_values: dict[int, V] = dict(node_values or {})
        self.stores: dict[int, TransferInput] = dict(stores or {})
        self.tree_lookup: dict[SyntaxRef, IRInstruction] = dict(tree_lookup or {})
        self.final_local_values: dict[str, V] = dict(final_local_values or {})

    def get_node_for_tree(self, tree: SyntaxRef) -> IRInstruction | None:
        return self.tree_lookup.get(tree)

    def get_value(self, target: NodeOrTree) -> V | None:
        node = self._resolve(target)
        if node is None:
            return None
        return self.node_values.get(node.node_id)

    def get_store_before(self, target: NodeOrTree) -> S | None:
        return self._run_analysis_for(target, before=True)

    def get_store_after(self, target: NodeOrTree) -> S | None:
        return self._run_analysis_for(target, before=False)

    def get_final_local_values(self) -> dict[str, V]:
        return dict(self.final_local_values)

    def combine(self, other: AnalysisResult) -> None:
        """Merge *other* into this result; on a key collision *other* wins."""
        self.node_values.update(other.node_values)
        self.stores.update(other.stores)
        self.tree_lookup.update(other.tree_lookup)
        self.final_local_values.update(other.final_local_values)

    def _resolve(self, target: NodeOrTree) -> IRInstruction | None:
        if isinstance(target, SyntaxRef):
            return self.tree_lookup.get(target)
        return target

    def _run_analysis_for(self, target: NodeOrTree, before: bool) -> S | None:
        node = self._resolve(target)
        if node is None:
            return None
        block = node.block()
        if block is None:
            return None
        block_input = self.stores.get(block.block_id)
        if block_input is None or block_input.analysis is None:
            logger.debug("No store for block %s; it was never reached", block.label)
            return None
        return block_input.analysis.run_analysis_for(
            node, before, block_input, self.node_values
        )

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, AnalysisResult):
            return NotImplemented
        return (
            self.node_values == other.node_values
            and self.stores == other.stores
            and self.tree_lookup == other.tree_lookup
            and self.final_local_values == other.final_local_values
        )

    def __repr__(self) -> str:
        return (
            f"AnalysisResult(nodes={len(self.node_values)}, "
            f"blocks={len(self.stores)}, trees={len(self.tree_lookup)}, "
            f"finals={len(self.final_local_values)})"
        )
