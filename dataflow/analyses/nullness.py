"""Nullness — forward analysis that refines references at null checks."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Sequence

from ..cfg import UnderlyingAST
from ..ir import IRInstruction, Opcode
from ..lattice import AbstractValue, Store
from ..transfer import (
    ConditionalTransferResult,
    RegularTransferResult,
    TransferFunction,
    TransferInput,
)
from .. import constants

logger = logging.getLogger(__name__)


class NullnessKind(str, Enum):
    NULL = "null"
    NON_NULL = "non_null"
    MAYBE_NULL = "maybe_null"


@dataclass(frozen=True)
class Nullness(AbstractValue):
    """``NULL`` and ``NON_NULL`` are incomparable; both sit below ``MAYBE_NULL``."""

    kind: NullnessKind

    def least_upper_bound(self, other: Nullness) -> Nullness:
        return self if self == other else MAYBE_NULL

    def __str__(self) -> str:
        return self.kind.value


NULL = Nullness(NullnessKind.NULL)
NON_NULL = Nullness(NullnessKind.NON_NULL)
MAYBE_NULL = Nullness(NullnessKind.MAYBE_NULL)


class NullnessStore(Store):
    """Variable name → Nullness; variables not yet assigned are absent."""

    def __init__(self, contents: dict[str, Nullness] | None = None):
        self.contents: dict[str, Nullness] = dict(contents or {})

    def get(self, name: str) -> Nullness | None:
        return self.contents.get(name)

    def set(self, name: str, value: Nullness) -> None:
        self.contents[name] = value

    def copy(self) -> NullnessStore:
        return NullnessStore(self.contents)

    def least_upper_bound(self, other: NullnessStore) -> NullnessStore:
        joined = dict(self.contents)
        for name, value in other.contents.items():
            mine = joined.get(name)
            joined[name] = value if mine is None else mine.least_upper_bound(value)
        return NullnessStore(joined)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, NullnessStore):
            return NotImplemented
        return self.contents == other.contents

    def __repr__(self) -> str:
        body = ", ".join(f"{k}={v}" for k, v in sorted(self.contents.items()))
        return f"{{{body}}}"


class NullnessTransfer(TransferFunction[Nullness, NullnessStore]):
    """Tracks locals; ``x != null`` and ``x == null`` split the store."""

    def initial_store(
        self, underlying_ast: UnderlyingAST, parameters: Sequence[str]
    ) -> NullnessStore:
        return NullnessStore({name: MAYBE_NULL for name in parameters})

    def _operand(self, node: IRInstruction, transfer_input: TransferInput, register):
        value = transfer_input.analysis.get_operand_value(node, register)
        return value if value is not None else MAYBE_NULL

    def visit_const(self, node, transfer_input):
        value = NULL if node.operands[0] == constants.NULL_LITERAL else NON_NULL
        return RegularTransferResult(value, transfer_input.regular_store())

    def visit_new_object(self, node, transfer_input):
        return RegularTransferResult(NON_NULL, transfer_input.regular_store())

    def visit_new_array(self, node, transfer_input):
        return RegularTransferResult(NON_NULL, transfer_input.regular_store())

    def visit_binop(self, node, transfer_input):
        return RegularTransferResult(NON_NULL, transfer_input.regular_store())

    def visit_unop(self, node, transfer_input):
        return RegularTransferResult(NON_NULL, transfer_input.regular_store())

    def visit_load_var(self, node, transfer_input):
        store = transfer_input.regular_store()
        return RegularTransferResult(store.get(node.operands[0]) or MAYBE_NULL, store)

    def visit_declare_var(self, node, transfer_input):
        store = transfer_input.regular_store()
        store.set(node.operands[0], MAYBE_NULL)
        return RegularTransferResult(None, store)

    def visit_store_var(self, node, transfer_input):
        name, reg = node.operands[:2]
        value = self._operand(node, transfer_input, reg)
        store = transfer_input.regular_store()
        store.set(name, value)
        return RegularTransferResult(value, store)

    def visit_call_method(self, node, transfer_input):
        # A call that returns normally had a non-null receiver
        store = transfer_input.regular_store()
        unrefined = store.copy()
        receiver = self._local_read_by(node, node.operands[0])
        if receiver is not None:
            store.set(receiver, NON_NULL)
        return RegularTransferResult(
            MAYBE_NULL, store, {constants.ANY_EXCEPTION: unrefined}
        )

    def visit_call_function(self, node, transfer_input):
        return RegularTransferResult(MAYBE_NULL, transfer_input.regular_store())

    def visit_call_unknown(self, node, transfer_input):
        return RegularTransferResult(MAYBE_NULL, transfer_input.regular_store())

    def visit_compare(self, node, transfer_input):
        op, lhs_reg, rhs_reg = node.operands[:3]
        if op not in ("==", "!="):
            return RegularTransferResult(NON_NULL, transfer_input.regular_store())

        checked = None
        if self._is_null_literal(node, rhs_reg):
            checked = self._local_read_by(node, lhs_reg)
        elif self._is_null_literal(node, lhs_reg):
            checked = self._local_read_by(node, rhs_reg)
        if checked is None:
            return RegularTransferResult(NON_NULL, transfer_input.regular_store())

        then_store = transfer_input.then_store().copy()
        else_store = transfer_input.else_store().copy()
        non_null_store, null_store = (
            (then_store, else_store) if op == "!=" else (else_store, then_store)
        )
        non_null_store.set(checked, NON_NULL)
        null_store.set(checked, NULL)
        logger.debug("Refining %s at %s", checked, node)
        return ConditionalTransferResult(NON_NULL, then_store, else_store)

    def _definition(self, node: IRInstruction, register) -> IRInstruction | None:
        block = node.block()
        if block is None or block.graph is None or not isinstance(register, str):
            return None
        return block.graph.definition_of(register)

    def _is_null_literal(self, node: IRInstruction, register) -> bool:
        definition = self._definition(node, register)
        return (
            definition is not None
            and definition.opcode == Opcode.CONST
            and definition.operands[:1] == [constants.NULL_LITERAL]
        )

    def _local_read_by(self, node: IRInstruction, register) -> str | None:
        """Name of the local whose read produced *register*, if any."""
        definition = self._definition(node, register)
        if definition is None or definition.opcode != Opcode.LOAD_VAR:
            return None
        return definition.operands[0]
