"""Transfer inputs and results, and the transfer-function visitor.

A :class:`TransferInput` carries the store(s) arriving at a node; a
:class:`TransferResult` carries the value computed for the node together with
the store(s) leaving it.  Both are handed around by transfer of ownership:
a handler may mutate the input it receives and must not keep it afterwards.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, Callable, Generic, Sequence, TypeVar

from .ir import IRInstruction, Opcode

if TYPE_CHECKING:
    from .analysis import Analysis
    from .cfg import UnderlyingAST

V = TypeVar("V")
S = TypeVar("S")


class TransferInput(Generic[V, S]):
    """Either a single store or a ``{then, else}`` pair of stores."""

    def __init__(
        self,
        analysis: Analysis | None,
        store: S | None = None,
        *,
        then_store: S | None = None,
        else_store: S | None = None,
    ):
        self.analysis = analysis
        if store is not None:
            self._store: S | None = store
            self._then_store: S | None = None
            self._else_store: S | None = None
            return
        if then_store is None or else_store is None:
            raise ValueError("TransferInput needs a store or both then/else stores")
        self._store = None
        self._then_store = then_store
        self._else_store = else_store

    @classmethod
    def from_result(
        cls, analysis: Analysis | None, result: TransferResult, keep_pair: bool
    ) -> TransferInput:
        """Input for whatever follows a node that produced *result*."""
        if keep_pair and result.contains_two_stores():
            return cls(
                analysis,
                then_store=result.then_store(),
                else_store=result.else_store(),
            )
        return cls(analysis, result.regular_store())

    def contains_two_stores(self) -> bool:
        return self._store is None

    def regular_store(self) -> S:
        if self._store is not None:
            return self._store
        return self._then_store.least_upper_bound(self._else_store)

    def then_store(self) -> S:
        return self._store if self._store is not None else self._then_store

    def else_store(self) -> S:
        return self._store if self._store is not None else self._else_store

    def copy(self) -> TransferInput:
        if self._store is not None:
            return TransferInput(self.analysis, self._store.copy())
        return TransferInput(
            self.analysis,
            then_store=self._then_store.copy(),
            else_store=self._else_store.copy(),
        )

    def least_upper_bound(self, other: TransferInput) -> TransferInput:
        return self._pointwise(other, lambda a, b: a.least_upper_bound(b))

    def widened_upper_bound(self, other: TransferInput) -> TransferInput:
        return self._pointwise(other, lambda a, b: a.widened_upper_bound(b))

    def supports_widening(self) -> bool:
        return self.then_store().supports_widening()

    def _pointwise(self, other: TransferInput, op: Callable[[Any, Any], Any]):
        if not self.contains_two_stores() and not other.contains_two_stores():
            return TransferInput(self.analysis, op(self._store, other._store))
        return TransferInput(
            self.analysis,
            then_store=op(self.then_store(), other.then_store()),
            else_store=op(self.else_store(), other.else_store()),
        )

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, TransferInput):
            return NotImplemented
        return (
            self.then_store() == other.then_store()
            and self.else_store() == other.else_store()
        )

    def __repr__(self) -> str:
        if self._store is not None:
            return f"TransferInput({self._store!r})"
        return f"TransferInput(then={self._then_store!r}, else={self._else_store!r})"


class TransferResult(ABC, Generic[V, S]):
    """Value of a node plus the store(s) that leave it."""

    def __init__(self, value: V | None, exceptional_stores: dict[str, S] | None = None):
        self.value = value
        self.exceptional_stores: dict[str, S] = dict(exceptional_stores or {})

    @abstractmethod
    def regular_store(self) -> S: ...

    @abstractmethod
    def then_store(self) -> S: ...

    @abstractmethod
    def else_store(self) -> S: ...

    @abstractmethod
    def contains_two_stores(self) -> bool: ...

    def exceptional_store(self, exception_type: str) -> S:
        """Store along the edge for *exception_type*; the regular store if unset."""
        store = self.exceptional_stores.get(exception_type)
        return store if store is not None else self.regular_store()


class RegularTransferResult(TransferResult[V, S]):
    def __init__(
        self,
        value: V | None,
        store: S,
        exceptional_stores: dict[str, S] | None = None,
    ):
        super().__init__(value, exceptional_stores)
        self.store = store

    def regular_store(self) -> S:
        return self.store

    def then_store(self) -> S:
        return self.store

    def else_store(self) -> S:
        return self.store

    def contains_two_stores(self) -> bool:
        return False

    def __repr__(self) -> str:
        return f"RegularTransferResult(value={self.value!r}, store={self.store!r})"


class ConditionalTransferResult(TransferResult[V, S]):
    """Result of a condition that refines its two outgoing stores differently."""

    def __init__(
        self,
        value: V | None,
        then_store: S,
        else_store: S,
        exceptional_stores: dict[str, S] | None = None,
    ):
        super().__init__(value, exceptional_stores)
        self._then_store = then_store
        self._else_store = else_store

    def regular_store(self) -> S:
        return self._then_store.least_upper_bound(self._else_store)

    def then_store(self) -> S:
        return self._then_store

    def else_store(self) -> S:
        return self._else_store

    def contains_two_stores(self) -> bool:
        return True

    def __repr__(self) -> str:
        return (
            f"ConditionalTransferResult(value={self.value!r}, "
            f"then={self._then_store!r}, else={self._else_store!r})"
        )


# One handler per node variant; control pseudo-instructions never reach a
# transfer function and fall back to visit_node.
_VISIT_METHODS: dict[Opcode, str] = {
    Opcode.CONST: "visit_const",
    Opcode.LOAD_VAR: "visit_load_var",
    Opcode.LOAD_FIELD: "visit_load_field",
    Opcode.LOAD_INDEX: "visit_load_index",
    Opcode.NEW_OBJECT: "visit_new_object",
    Opcode.NEW_ARRAY: "visit_new_array",
    Opcode.BINOP: "visit_binop",
    Opcode.COMPARE: "visit_compare",
    Opcode.UNOP: "visit_unop",
    Opcode.CALL_FUNCTION: "visit_call_function",
    Opcode.CALL_METHOD: "visit_call_method",
    Opcode.CALL_UNKNOWN: "visit_call_unknown",
    Opcode.DECLARE_VAR: "visit_declare_var",
    Opcode.STORE_VAR: "visit_store_var",
    Opcode.STORE_FIELD: "visit_store_field",
    Opcode.STORE_INDEX: "visit_store_index",
    Opcode.RETURN: "visit_return",
    Opcode.THROW: "visit_throw",
    Opcode.SYMBOLIC: "visit_symbolic",
}


class TransferFunction(ABC, Generic[V, S]):
    """Visitor over node variants.

    Subclasses implement :meth:`initial_store` and override the ``visit_*``
    handlers for the variants they care about; everything else passes the
    incoming store through unchanged with no value.
    """

    @abstractmethod
    def initial_store(self, underlying_ast: UnderlyingAST, parameters: Sequence[str]) -> S:
        """Store at the method entry."""
        ...

    def visit(self, node: IRInstruction, transfer_input: TransferInput) -> TransferResult:
        handler = getattr(self, _VISIT_METHODS.get(node.opcode, "visit_node"))
        return handler(node, transfer_input)

    def visit_node(self, node: IRInstruction, transfer_input: TransferInput) -> TransferResult:
        return RegularTransferResult(None, transfer_input.regular_store())

    def visit_const(self, node, transfer_input):
        return self.visit_node(node, transfer_input)

    def visit_load_var(self, node, transfer_input):
        return self.visit_node(node, transfer_input)

    def visit_load_field(self, node, transfer_input):
        return self.visit_node(node, transfer_input)

    def visit_load_index(self, node, transfer_input):
        return self.visit_node(node, transfer_input)

    def visit_new_object(self, node, transfer_input):
        return self.visit_node(node, transfer_input)

    def visit_new_array(self, node, transfer_input):
        return self.visit_node(node, transfer_input)

    def visit_binop(self, node, transfer_input):
        return self.visit_node(node, transfer_input)

    def visit_compare(self, node, transfer_input):
        return self.visit_node(node, transfer_input)

    def visit_unop(self, node, transfer_input):
        return self.visit_node(node, transfer_input)

    def visit_call_function(self, node, transfer_input):
        return self.visit_node(node, transfer_input)

    def visit_call_method(self, node, transfer_input):
        return self.visit_node(node, transfer_input)

    def visit_call_unknown(self, node, transfer_input):
        return self.visit_node(node, transfer_input)

    def visit_declare_var(self, node, transfer_input):
        return self.visit_node(node, transfer_input)

    def visit_store_var(self, node, transfer_input):
        return self.visit_node(node, transfer_input)

    def visit_store_field(self, node, transfer_input):
        return self.visit_node(node, transfer_input)

    def visit_store_index(self, node, transfer_input):
        return self.visit_node(node, transfer_input)

    def visit_return(self, node, transfer_input):
        return self.visit_node(node, transfer_input)

    def visit_throw(self, node, transfer_input):
        return self.visit_node(node, transfer_input)

    def visit_symbolic(self, node, transfer_input):
        return self.visit_node(node, transfer_input)


class BackwardTransferFunction(TransferFunction[V, S]):
    """Transfer function of a backward analysis; also seeds both exits."""

    @abstractmethod
    def initial_normal_exit_store(
        self, underlying_ast: UnderlyingAST, return_nodes: list[IRInstruction]
    ) -> S: ...

    @abstractmethod
    def initial_exceptional_exit_store(self, underlying_ast: UnderlyingAST) -> S: ...
