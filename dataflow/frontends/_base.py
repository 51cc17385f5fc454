"""BaseFrontend — tree-sitter method body → IR lowering infrastructure."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable

from ..ir import (
    NO_SOURCE_LOCATION,
    THROWING_OPCODES,
    IRInstruction,
    Opcode,
    SourceLocation,
    SyntaxRef,
)
from .. import constants

logger = logging.getLogger(__name__)


@dataclass
class LoweredMethod:
    """IR of one method body plus the names of its formal parameters."""

    name: str
    instructions: list[IRInstruction] = field(default_factory=list)
    parameters: list[str] = field(default_factory=list)


@dataclass
class CatchClause:
    """One ``catch`` of a try statement, in grammar-neutral form."""

    body: Any = None
    variable: str | None = None
    types: list[str] = field(default_factory=lambda: [constants.DEFAULT_CATCH_TYPE])


@dataclass(frozen=True)
class _JumpTargets:
    continue_label: str
    break_label: str
    # finally bodies already pending when the loop was entered
    finally_depth: int = 0


@dataclass(frozen=True)
class _PendingFinally:
    body: Any
    # handler frames outside the try; exceptions from the body go there
    handler_depth: int


class BaseFrontend(ABC):
    """Base class for tree-sitter frontends that lower one method at a time.

    Subclasses populate ``_STMT_DISPATCH`` and ``_EXPR_DISPATCH`` tables and
    override field-name constants where the grammar differs from the
    defaults.  The method entry and exit are left to the CFG; the lowered
    body starts with its first statement.

    Every emitted node carries the ``SyntaxRef`` of the tree it evaluates.
    Throwing nodes emitted inside a ``try`` body also carry the catch labels
    their exceptions are routed to, keyed by exception type.
    """

    # ── overridable constants ────────────────────────────────────

    IF_CONDITION_FIELD: str = "condition"
    IF_CONSEQUENCE_FIELD: str = "consequence"
    IF_ALTERNATIVE_FIELD: str = "alternative"

    WHILE_CONDITION_FIELD: str = "condition"
    WHILE_BODY_FIELD: str = "body"

    FOR_INIT_FIELD: str = "init"
    FOR_CONDITION_FIELD: str = "condition"
    FOR_UPDATE_FIELD: str = "update"
    FOR_BODY_FIELD: str = "body"

    BINARY_LEFT_FIELD: str = "left"
    BINARY_OPERATOR_FIELD: str = "operator"
    BINARY_RIGHT_FIELD: str = "right"

    UNARY_OPERATOR_FIELD: str = "operator"
    UNARY_OPERAND_FIELD: str = "operand"

    ASSIGN_LEFT_FIELD: str = "left"
    ASSIGN_RIGHT_FIELD: str = "right"

    # Value thrown by a bare ``throw`` with no operand
    MISSING_THROWABLE: str = constants.NULL_LITERAL

    COMMENT_TYPES: frozenset[str] = frozenset({"comment"})

    def __init__(self):
        self._reg_counter: int = 0
        self._label_counter: int = 0
        self._instructions: list[IRInstruction] = []
        self._definitions: dict[str, IRInstruction] = {}
        self._parameters: list[str] = []
        self._source: bytes = b""
        self._jump_targets: list[_JumpTargets] = []
        self._finally_stack: list[_PendingFinally] = []
        # innermost last; each frame maps exception type -> catch label
        self._handler_stack: list[dict[str, str]] = []
        self._STMT_DISPATCH: dict[str, Callable] = {}
        self._EXPR_DISPATCH: dict[str, Callable] = {}

    # ── emission ─────────────────────────────────────────────────

    def _fresh_reg(self) -> str:
        reg = f"%{self._reg_counter}"
        self._reg_counter += 1
        return reg

    def _fresh_label(self, prefix: str = "L") -> str:
        label = f"{prefix}_{self._label_counter}"
        self._label_counter += 1
        return label

    def _labels(self, *prefixes: str) -> list[str]:
        return [self._fresh_label(prefix) for prefix in prefixes]

    def _emit(
        self,
        opcode: Opcode,
        *,
        result_reg: str = "",
        operands: list[Any] | None = None,
        label: str = "",
        node=None,
        location_node=None,
    ) -> IRInstruction:
        """Append an instruction.

        *node* is the tree the instruction evaluates (recorded as its
        ``tree``); *location_node* only contributes a source location.
        """
        located = node if node is not None else location_node
        inst = IRInstruction(
            opcode=opcode,
            result_reg=result_reg or None,
            operands=list(operands or []),
            label=label or None,
            source_location=(
                self._source_loc(located) if located is not None else NO_SOURCE_LOCATION
            ),
            tree=self._tree_ref(node) if node is not None else None,
            exception_targets=(
                self._current_exception_targets() if opcode in THROWING_OPCODES else {}
            ),
        )
        self._instructions.append(inst)
        if inst.result_reg:
            self._definitions[inst.result_reg] = inst
        return inst

    def _value(
        self, opcode: Opcode, operands: list[Any], node=None, location_node=None
    ) -> str:
        """Emit a value-producing instruction into a fresh register."""
        reg = self._fresh_reg()
        self._emit(
            opcode,
            result_reg=reg,
            operands=operands,
            node=node,
            location_node=location_node,
        )
        return reg

    def _place(self, label: str) -> None:
        self._emit(Opcode.LABEL, label=label)

    def _jump(self, label: str, location_node=None) -> None:
        self._emit(Opcode.BRANCH, label=label, location_node=location_node)

    def _branch(self, cond_reg: str, then_label: str, else_label: str, node) -> None:
        self._emit(
            Opcode.BRANCH_IF,
            operands=[cond_reg],
            label=f"{then_label},{else_label}",
            location_node=node,
        )

    def _alias(self, reg: str, node) -> None:
        """Record that *node* evaluates to the same node as *reg*."""
        inst = self._definitions.get(reg)
        if inst is not None:
            inst.alias_trees = inst.alias_trees + [self._tree_ref(node)]

    def _current_exception_targets(self) -> dict[str, str]:
        targets: dict[str, str] = {}
        # outer frames first so the innermost handler for a type wins
        for frame in self._handler_stack:
            targets.update(frame)
        return targets

    def _tree_ref(self, node) -> SyntaxRef:
        return SyntaxRef.of(node, self._source)

    def _node_text(self, node) -> str:
        return self._source[node.start_byte : node.end_byte].decode("utf-8")

    def _source_loc(self, node) -> SourceLocation:
        (start_row, start_col), (end_row, end_col) = node.start_point, node.end_point
        return SourceLocation(
            start_line=start_row + 1,
            start_col=start_col,
            end_line=end_row + 1,
            end_col=end_col,
        )

    # ── entry point ──────────────────────────────────────────────

    def lower_method(self, method_node, source: bytes) -> LoweredMethod:
        """Lower one method declaration into a fresh instruction list."""
        self._reg_counter = 0
        self._label_counter = 0
        self._instructions = []
        self._definitions = {}
        self._parameters = []
        self._source = source
        self._jump_targets = []
        self._finally_stack = []
        self._handler_stack = []

        name = self._method_name(method_node)
        self._lower_params(method_node)
        body = self._method_body(method_node)
        if body is not None:
            self._lower_block(body)
        logger.info(
            "Lowered method %s: %d instructions, %d parameters",
            name,
            len(self._instructions),
            len(self._parameters),
        )
        return LoweredMethod(name, self._instructions, self._parameters)

    @abstractmethod
    def _method_name(self, method_node) -> str: ...

    @abstractmethod
    def _method_body(self, method_node): ...

    @abstractmethod
    def _lower_params(self, method_node) -> None:
        """Collect formal parameter names into ``self._parameters``."""
        ...

    @abstractmethod
    def _lower_store_target(self, target, val_reg: str, parent_node, location_node=None):
        """Store *val_reg* into whatever *target* designates."""
        ...

    # ── dispatch ─────────────────────────────────────────────────

    def _lower_block(self, node):
        """Lower a block of statements, or a lone statement used as a body."""
        if node.type != "block" and node.type in self._STMT_DISPATCH:
            self._STMT_DISPATCH[node.type](node)
            return
        for child in node.named_children:
            self._lower_stmt(child)

    def _lower_stmt(self, node):
        if node.type in self.COMMENT_TYPES:
            return
        handler = self._STMT_DISPATCH.get(node.type)
        if handler is None:
            self._lower_expr(node)
        else:
            handler(node)

    def _lower_expr(self, node) -> str:
        """Lower an expression and return the register holding its value."""
        handler = self._EXPR_DISPATCH.get(node.type)
        if handler is not None:
            return handler(node)
        logger.debug("No lowering for %s; emitting a symbolic value", node.type)
        return self._value(Opcode.SYMBOLIC, [f"unsupported:{node.type}"], node)

    # ── expressions ──────────────────────────────────────────────

    def _lower_const_literal(self, node) -> str:
        return self._value(Opcode.CONST, [self._node_text(node)], node)

    def _lower_identifier(self, node) -> str:
        return self._value(Opcode.LOAD_VAR, [self._node_text(node)], node)

    def _lower_paren(self, node) -> str:
        inner = node.named_children[0] if node.named_children else None
        if inner is None:
            return self._lower_const_literal(node)
        reg = self._lower_expr(inner)
        self._alias(reg, node)
        return reg

    def _lower_binop(self, node) -> str:
        """Comparisons become COMPARE; every other binary operator BINOP."""
        lhs = self._lower_expr(node.child_by_field_name(self.BINARY_LEFT_FIELD))
        op = self._node_text(node.child_by_field_name(self.BINARY_OPERATOR_FIELD))
        rhs = self._lower_expr(node.child_by_field_name(self.BINARY_RIGHT_FIELD))
        opcode = Opcode.COMPARE if op in constants.COMPARISON_OPERATORS else Opcode.BINOP
        return self._value(opcode, [op, lhs, rhs], node)

    def _lower_unop(self, node) -> str:
        op = self._node_text(node.child_by_field_name(self.UNARY_OPERATOR_FIELD))
        operand = self._lower_expr(node.child_by_field_name(self.UNARY_OPERAND_FIELD))
        return self._value(Opcode.UNOP, [op, operand], node)

    def _lower_update_expr(self, node) -> str:
        """``i++`` and friends: read, add or subtract one, write back.

        The expression's tree goes to the node holding its value: the
        updated value for the prefix form, the value read for the postfix.
        """
        if not node.named_children:
            return self._lower_const_literal(node)
        target = node.named_children[0]
        text = self._node_text(node)
        is_prefix = text.startswith(("++", "--"))
        old = self._lower_expr(target)
        one = self._value(Opcode.CONST, ["1"])
        new = self._value(
            Opcode.BINOP,
            ["+" if "++" in text else "-", old, one],
            node if is_prefix else None,
            location_node=node,
        )
        self._lower_store_target(target, new, None, location_node=node)
        if is_prefix:
            return new
        self._alias(old, node)
        return old

    # ── statements ───────────────────────────────────────────────

    def _lower_expression_statement(self, node):
        if node.named_children:
            self._lower_stmt(node.named_children[0])

    def _lower_return(self, node):
        """The returned value is computed before any enclosing finally runs."""
        values = node.named_children
        operands = [self._lower_expr(values[0])] if values else []
        self._lower_pending_finally(0)
        self._emit(Opcode.RETURN, operands=operands, node=node)

    def _lower_throw(self, node):
        values = node.named_children
        thrown = (
            self._lower_expr(values[0])
            if values
            else self._value(Opcode.CONST, [self.MISSING_THROWABLE])
        )
        self._emit(Opcode.THROW, operands=[thrown], node=node)

    def _lower_arm(self, label: str, body, exit_label: str) -> None:
        self._place(label)
        self._lower_block(body)
        self._jump(exit_label)

    def _lower_if(self, node):
        condition = self._lower_expr(node.child_by_field_name(self.IF_CONDITION_FIELD))
        alternative = node.child_by_field_name(self.IF_ALTERNATIVE_FIELD)
        then_label, else_label, end_label = self._labels("if_true", "if_false", "if_end")

        self._branch(condition, then_label, else_label if alternative else end_label, node)
        self._lower_arm(
            then_label, node.child_by_field_name(self.IF_CONSEQUENCE_FIELD), end_label
        )
        if alternative:
            self._lower_arm(else_label, alternative, end_label)
        self._place(end_label)

    def _lower_loop_body(self, body, continue_label: str, break_label: str) -> None:
        self._jump_targets.append(
            _JumpTargets(continue_label, break_label, len(self._finally_stack))
        )
        self._lower_block(body)
        self._jump_targets.pop()

    def _lower_while(self, node):
        cond_label, body_label, end_label = self._labels(
            "while_cond", "while_body", "while_end"
        )
        self._place(cond_label)
        condition = self._lower_expr(node.child_by_field_name(self.WHILE_CONDITION_FIELD))
        self._branch(condition, body_label, end_label, node)

        self._place(body_label)
        self._lower_loop_body(
            node.child_by_field_name(self.WHILE_BODY_FIELD), cond_label, end_label
        )
        self._jump(cond_label)
        self._place(end_label)

    def _lower_do_while(self, node):
        body_label, cond_label, end_label = self._labels("do_body", "do_cond", "do_end")
        self._place(body_label)
        self._lower_loop_body(
            node.child_by_field_name(self.WHILE_BODY_FIELD), cond_label, end_label
        )

        self._place(cond_label)
        condition = self._lower_expr(node.child_by_field_name(self.WHILE_CONDITION_FIELD))
        self._branch(condition, body_label, end_label, node)
        self._place(end_label)

    def _lower_c_style_for(self, node):
        """``for (init; cond; update) body``; a missing condition loops forever."""
        for init in node.children_by_field_name(self.FOR_INIT_FIELD):
            self._lower_stmt(init)

        cond_label, body_label, end_label = self._labels("for_cond", "for_body", "for_end")
        self._place(cond_label)
        cond_node = node.child_by_field_name(self.FOR_CONDITION_FIELD)
        if cond_node is None:
            self._jump(body_label)
        else:
            self._branch(self._lower_expr(cond_node), body_label, end_label, node)

        self._place(body_label)
        updates = node.children_by_field_name(self.FOR_UPDATE_FIELD)
        update_label = self._fresh_label("for_update") if updates else cond_label
        body = node.child_by_field_name(self.FOR_BODY_FIELD)
        if body is not None:
            self._lower_loop_body(body, update_label, end_label)
        if updates:
            self._place(update_label)
            for update in updates:
                self._lower_expr(update)
        self._jump(cond_label)
        self._place(end_label)

    def _lower_break(self, node):
        if not self._jump_targets:
            self._value(Opcode.SYMBOLIC, ["break_outside_loop_or_switch"], node)
            return
        targets = self._jump_targets[-1]
        self._lower_pending_finally(targets.finally_depth)
        self._jump(targets.break_label, location_node=node)

    def _lower_continue(self, node):
        if not self._jump_targets:
            self._value(Opcode.SYMBOLIC, ["continue_outside_loop"], node)
            return
        targets = self._jump_targets[-1]
        self._lower_pending_finally(targets.finally_depth)
        self._jump(targets.continue_label, location_node=node)

    def _lower_pending_finally(self, depth: int) -> None:
        """Inline the finally bodies entered above *depth*, innermost first.

        Each copy is lowered as if outside its own try: a jump inside it only
        runs the outer finally bodies, and its exceptions skip its handlers.
        """
        finally_stack, handler_stack = self._finally_stack, self._handler_stack
        for index in range(len(finally_stack) - 1, depth - 1, -1):
            pending = finally_stack[index]
            self._finally_stack = finally_stack[:index]
            self._handler_stack = handler_stack[: pending.handler_depth]
            self._lower_block(pending.body)
        self._finally_stack, self._handler_stack = finally_stack, handler_stack

    def _lower_try_catch(
        self,
        node,
        body_node,
        catch_clauses: list[CatchClause],
        finally_node=None,
    ):
        """Lower try/catch/finally into labelled blocks.

        Throwing nodes of the try body are routed to the catch labels by
        exception type.  With a ``finally``, any exception escaping the body
        or a handler runs a copy of the finally body and is rethrown; normal
        completion falls into a second copy.  A return, break or continue
        leaving the try inlines the finally body before it jumps.
        """
        body_label = self._fresh_label("try_body")
        catch_labels = [self._fresh_label(f"catch_{i}") for i in range(len(catch_clauses))]
        finally_label, rethrow_label = (
            self._labels("try_finally", "try_finally_exc") if finally_node else ("", "")
        )
        end_label = self._fresh_label("try_end")
        exit_label = finally_label or end_label

        if finally_node:
            self._finally_stack.append(
                _PendingFinally(finally_node, len(self._handler_stack))
            )
            self._handler_stack.append({constants.ANY_EXCEPTION: rethrow_label})

        routes: dict[str, str] = {}
        for clause, catch_label in zip(catch_clauses, catch_labels):
            for exc_type in clause.types:
                routes.setdefault(exc_type, catch_label)
        self._place(body_label)
        self._handler_stack.append(routes)
        if body_node is not None:
            self._lower_block(body_node)
        self._handler_stack.pop()
        self._jump(exit_label)

        for clause, catch_label in zip(catch_clauses, catch_labels):
            self._place(catch_label)
            caught = self._value(
                Opcode.SYMBOLIC,
                [f"{constants.CAUGHT_EXCEPTION_PREFIX}:{'|'.join(clause.types)}"],
                location_node=node,
            )
            if clause.variable:
                self._emit(Opcode.STORE_VAR, operands=[clause.variable, caught])
            if clause.body is not None:
                self._lower_block(clause.body)
            self._jump(exit_label)

        if finally_node:
            self._finally_stack.pop()
            self._handler_stack.pop()
            self._place(rethrow_label)
            self._lower_block(finally_node)
            pending = self._value(Opcode.SYMBOLIC, [constants.RETHROW_MARKER])
            self._emit(Opcode.THROW, operands=[pending])

            self._place(finally_label)
            self._lower_block(finally_node)

        self._place(end_label)
