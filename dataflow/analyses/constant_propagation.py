"""Constant propagation — forward analysis over the flat integer lattice.

Lattice: ``⊥ < k < ⊤`` for every constant ``k``.  A variable missing from a
store is ``⊥`` (not yet assigned on any path reaching the point).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Sequence

from ..cfg import UnderlyingAST
from ..ir import IRInstruction
from ..lattice import AbstractValue, Store
from ..transfer import RegularTransferResult, TransferFunction, TransferInput
from .. import constants

logger = logging.getLogger(__name__)

_INT_MIN = -(2**31)


class ConstantKind(str, Enum):
    BOTTOM = "bottom"
    CONSTANT = "constant"
    TOP = "top"


@dataclass(frozen=True)
class Constant(AbstractValue):
    kind: ConstantKind
    value: int | bool | None = None

    @classmethod
    def top(cls) -> Constant:
        return cls(ConstantKind.TOP)

    @classmethod
    def bottom(cls) -> Constant:
        return cls(ConstantKind.BOTTOM)

    @classmethod
    def of(cls, value: int | bool) -> Constant:
        return cls(ConstantKind.CONSTANT, value)

    def is_constant(self) -> bool:
        return self.kind == ConstantKind.CONSTANT

    def least_upper_bound(self, other: Constant) -> Constant:
        if self.kind == ConstantKind.BOTTOM:
            return other
        if other.kind == ConstantKind.BOTTOM:
            return self
        if self == other:
            return self
        return Constant.top()

    def __str__(self) -> str:
        if self.kind == ConstantKind.CONSTANT:
            return str(self.value).lower() if isinstance(self.value, bool) else str(self.value)
        return "⊤" if self.kind == ConstantKind.TOP else "⊥"


class ConstantPropagationStore(Store):
    """Variable name → Constant."""

    def __init__(self, contents: dict[str, Constant] | None = None):
        self.contents: dict[str, Constant] = dict(contents or {})

    def get(self, name: str) -> Constant:
        return self.contents.get(name, Constant.bottom())

    def set(self, name: str, value: Constant) -> None:
        self.contents[name] = value

    def copy(self) -> ConstantPropagationStore:
        # Constants are immutable; a shallow dict copy is a deep copy
        return ConstantPropagationStore(self.contents)

    def least_upper_bound(self, other: ConstantPropagationStore) -> ConstantPropagationStore:
        joined = dict(self.contents)
        for name, value in other.contents.items():
            joined[name] = self.get(name).least_upper_bound(value)
        return ConstantPropagationStore(joined)

    def _defined(self) -> dict[str, Constant]:
        return {k: v for k, v in self.contents.items() if v.kind != ConstantKind.BOTTOM}

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ConstantPropagationStore):
            return NotImplemented
        return self._defined() == other._defined()

    def __repr__(self) -> str:
        body = ", ".join(f"{k}={v}" for k, v in sorted(self._defined().items()))
        return f"{{{body}}}"


def _wrap_int32(value: int) -> int:
    return (value - _INT_MIN) % 2**32 + _INT_MIN


def _java_div(lhs: int, rhs: int) -> int:
    quotient = abs(lhs) // abs(rhs)
    return quotient if (lhs >= 0) == (rhs >= 0) else -quotient


def _java_rem(lhs: int, rhs: int) -> int:
    return lhs - _java_div(lhs, rhs) * rhs


_ARITHMETIC = {
    "+": lambda a, b: a + b,
    "-": lambda a, b: a - b,
    "*": lambda a, b: a * b,
    "/": _java_div,
    "%": _java_rem,
}

_COMPARISONS = {
    "==": lambda a, b: a == b,
    "!=": lambda a, b: a != b,
    "<": lambda a, b: a < b,
    "<=": lambda a, b: a <= b,
    ">": lambda a, b: a > b,
    ">=": lambda a, b: a >= b,
}


def _parse_literal(text: str) -> Constant:
    if text == constants.TRUE_LITERAL:
        return Constant.of(True)
    if text == constants.FALSE_LITERAL:
        return Constant.of(False)
    try:
        return Constant.of(_wrap_int32(int(text.replace("_", ""), 0)))
    except ValueError:
        return Constant.top()


class ConstantPropagationTransfer(TransferFunction[Constant, ConstantPropagationStore]):
    """Evaluates integer literals, ``+ - * / %`` and comparisons."""

    def initial_store(
        self, underlying_ast: UnderlyingAST, parameters: Sequence[str]
    ) -> ConstantPropagationStore:
        return ConstantPropagationStore({name: Constant.top() for name in parameters})

    def _operand(self, node: IRInstruction, transfer_input: TransferInput, register) -> Constant:
        value = transfer_input.analysis.get_operand_value(node, register)
        return value if value is not None else Constant.top()

    def visit_const(self, node, transfer_input):
        value = _parse_literal(str(node.operands[0]))
        return RegularTransferResult(value, transfer_input.regular_store())

    def visit_load_var(self, node, transfer_input):
        store = transfer_input.regular_store()
        return RegularTransferResult(store.get(node.operands[0]), store)

    def visit_binop(self, node, transfer_input):
        op, lhs_reg, rhs_reg = node.operands[:3]
        lhs = self._operand(node, transfer_input, lhs_reg)
        rhs = self._operand(node, transfer_input, rhs_reg)
        return RegularTransferResult(
            self._evaluate(op, lhs, rhs, _ARITHMETIC), transfer_input.regular_store()
        )

    def visit_compare(self, node, transfer_input):
        op, lhs_reg, rhs_reg = node.operands[:3]
        lhs = self._operand(node, transfer_input, lhs_reg)
        rhs = self._operand(node, transfer_input, rhs_reg)
        return RegularTransferResult(
            self._evaluate(op, lhs, rhs, _COMPARISONS), transfer_input.regular_store()
        )

    def visit_unop(self, node, transfer_input):
        op, reg = node.operands[:2]
        operand = self._operand(node, transfer_input, reg)
        value = Constant.top()
        if operand.kind == ConstantKind.BOTTOM:
            value = operand
        elif operand.is_constant():
            if op == "-" and not isinstance(operand.value, bool):
                value = Constant.of(_wrap_int32(-operand.value))
            elif op == "!" and isinstance(operand.value, bool):
                value = Constant.of(not operand.value)
        return RegularTransferResult(value, transfer_input.regular_store())

    def visit_store_var(self, node, transfer_input):
        name, reg = node.operands[:2]
        value = self._operand(node, transfer_input, reg)
        store = transfer_input.regular_store()
        store.set(name, value)
        block = node.block()
        graph = block.graph if block is not None else None
        if graph is not None and graph.is_effectively_final(name):
            transfer_input.analysis.set_final_local_value(name, value)
        return RegularTransferResult(value, store)

    def _evaluate(self, op: str, lhs: Constant, rhs: Constant, table) -> Constant:
        if ConstantKind.BOTTOM in (lhs.kind, rhs.kind):
            return Constant.bottom()
        fn = table.get(op)
        if fn is None or not (lhs.is_constant() and rhs.is_constant()):
            return Constant.top()
        if isinstance(lhs.value, bool) != isinstance(rhs.value, bool):
            return Constant.top()
        if table is _ARITHMETIC:
            if isinstance(lhs.value, bool) or (op in ("/", "%") and rhs.value == 0):
                return Constant.top()
            return Constant.of(_wrap_int32(fn(lhs.value, rhs.value)))
        if isinstance(lhs.value, bool) and op not in ("==", "!="):
            return Constant.top()
        return Constant.of(fn(lhs.value, rhs.value))
