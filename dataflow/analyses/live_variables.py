"""Live variables — backward analysis over sets of local names."""

from __future__ import annotations

from typing import Sequence

from ..cfg import ControlFlowGraph, UnderlyingAST
from ..ir import IRInstruction, Opcode
from ..lattice import Store
from ..transfer import BackwardTransferFunction, RegularTransferResult


class LiveVarStore(Store):
    def __init__(self, live: set[str] | frozenset[str] = frozenset()):
        self.live: set[str] = set(live)

    def add(self, name: str) -> None:
        self.live.add(name)

    def kill(self, name: str) -> None:
        self.live.discard(name)

    def copy(self) -> LiveVarStore:
        return LiveVarStore(self.live)

    def least_upper_bound(self, other: LiveVarStore) -> LiveVarStore:
        return LiveVarStore(self.live | other.live)

    def __contains__(self, name: str) -> bool:
        return name in self.live

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, LiveVarStore):
            return NotImplemented
        return self.live == other.live

    def __repr__(self) -> str:
        return "{" + ", ".join(sorted(self.live)) + "}"


class LiveVarTransfer(BackwardTransferFunction[None, LiveVarStore]):
    """A write kills its target; a local read and every node consuming
    operand registers make the locals they read live.

    Operand registers are resolved through their defining nodes, so the
    variables read by a whole expression become live at the node consuming it.
    """

    def initial_store(
        self, underlying_ast: UnderlyingAST, parameters: Sequence[str]
    ) -> LiveVarStore:
        return LiveVarStore()

    def initial_normal_exit_store(
        self, underlying_ast: UnderlyingAST, return_nodes: list[IRInstruction]
    ) -> LiveVarStore:
        return LiveVarStore()

    def initial_exceptional_exit_store(self, underlying_ast: UnderlyingAST) -> LiveVarStore:
        return LiveVarStore()

    def visit_node(self, node, transfer_input):
        store = transfer_input.regular_store()
        if node.opcode == Opcode.STORE_VAR:
            store.kill(node.operands[0])
        block = node.block()
        graph = block.graph if block is not None else None
        if node.opcode == Opcode.LOAD_VAR:
            store.add(node.operands[0])
        elif graph is not None:
            for operand in node.operands:
                for name in _variables_read(graph, operand, node):
                    store.add(name)
        return RegularTransferResult(None, store)


def _variables_read(graph: ControlFlowGraph, operand, consumer: IRInstruction) -> set[str]:
    """Locals whose current value *consumer* still needs through *operand*.

    A read is dropped when the local is written again between the read and
    *consumer*: the register already holds the old value. Node ids follow
    lowering order, so "between" compares ids.
    """
    if not isinstance(operand, str):
        return set()
    names: set[str] = set()
    pending = [operand]
    seen: set[str] = set()
    while pending:
        register = pending.pop()
        if register in seen:
            continue
        seen.add(register)
        definition = graph.definition_of(register)
        if definition is None:
            continue
        if definition.opcode != Opcode.LOAD_VAR:
            pending.extend(op for op in definition.operands if isinstance(op, str))
            continue
        name = definition.operands[0]
        if not _written_between(graph, name, definition, consumer):
            names.add(name)
    return names


def _written_between(
    graph: ControlFlowGraph, name: str, first: IRInstruction, last: IRInstruction
) -> bool:
    return any(
        node.opcode == Opcode.STORE_VAR
        and node.operands[:1] == [name]
        and first.node_id < node.node_id < last.node_id
        for node in graph.all_nodes()
    )
