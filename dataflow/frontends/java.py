"""JavaFrontend — tree-sitter Java method body → IR lowering."""

from __future__ import annotations

from typing import Callable

from ._base import BaseFrontend, CatchClause
from ..ir import Opcode

_INTEGER_LITERALS = (
    "decimal_integer_literal",
    "hex_integer_literal",
    "octal_integer_literal",
    "binary_integer_literal",
)
_OTHER_LITERALS = (
    "decimal_floating_point_literal",
    "string_literal",
    "character_literal",
    "true",
    "false",
    "null_literal",
)


class JavaFrontend(BaseFrontend):
    """Lowers one Java ``method_declaration`` into flattened TAC IR."""

    COMMENT_TYPES = frozenset({"comment", "line_comment", "block_comment"})

    def __init__(self):
        super().__init__()
        self._EXPR_DISPATCH: dict[str, Callable] = {
            **{kind: self._lower_const_literal for kind in _INTEGER_LITERALS},
            **{kind: self._lower_const_literal for kind in _OTHER_LITERALS},
            "identifier": self._lower_identifier,
            "this": self._lower_identifier,
            "binary_expression": self._lower_binop,
            "unary_expression": self._lower_unop,
            "update_expression": self._lower_update_expr,
            "parenthesized_expression": self._lower_paren,
            "cast_expression": self._lower_cast_expr,
            "ternary_expression": self._lower_ternary,
            "assignment_expression": self._lower_assignment_expr,
            "method_invocation": self._lower_method_invocation,
            "object_creation_expression": self._lower_object_creation,
            "field_access": self._lower_field_access,
            "array_access": self._lower_array_access,
            "array_creation_expression": self._lower_array_creation,
        }
        self._STMT_DISPATCH: dict[str, Callable] = {
            "block": self._lower_block,
            "expression_statement": self._lower_expression_statement,
            "local_variable_declaration": self._lower_local_var_decl,
            "if_statement": self._lower_if,
            "while_statement": self._lower_while,
            "do_statement": self._lower_do_while,
            "for_statement": self._lower_c_style_for,
            "break_statement": self._lower_break,
            "continue_statement": self._lower_continue,
            "return_statement": self._lower_return,
            "throw_statement": self._lower_throw,
            "try_statement": self._lower_try,
            ";": lambda _: None,
        }

    # ── method shape ─────────────────────────────────────────────

    def _method_name(self, method_node) -> str:
        name_node = method_node.child_by_field_name("name")
        return self._node_text(name_node) if name_node else "__anon"

    def _method_body(self, method_node):
        return method_node.child_by_field_name("body")

    def _lower_params(self, method_node) -> None:
        params_node = method_node.child_by_field_name("parameters")
        if params_node is None:
            return
        for param in params_node.named_children:
            name_node = self._param_name_node(param)
            if name_node is not None:
                self._parameters.append(self._node_text(name_node))

    @staticmethod
    def _param_name_node(param):
        if param.type == "formal_parameter":
            return param.child_by_field_name("name")
        if param.type == "spread_parameter":
            # varargs: the name sits inside a variable_declarator
            for child in param.named_children:
                if child.type == "variable_declarator":
                    return child.child_by_field_name("name")
        return None

    # ── declarations and assignment ──────────────────────────────

    def _lower_local_var_decl(self, node):
        declarators = [c for c in node.named_children if c.type == "variable_declarator"]
        for declarator in declarators:
            name_node = declarator.child_by_field_name("name")
            if name_node is None:
                continue
            name = self._node_text(name_node)
            value_node = declarator.child_by_field_name("value")
            if value_node is None:
                self._emit(Opcode.DECLARE_VAR, operands=[name], node=declarator)
                continue
            self._emit(
                Opcode.STORE_VAR,
                operands=[name, self._lower_expr(value_node)],
                node=declarator,
            )

    def _lower_assignment_expr(self, node) -> str:
        """``x = v`` stores v; ``x op= v`` stores ``x op v``."""
        left = node.child_by_field_name(self.ASSIGN_LEFT_FIELD)
        right = node.child_by_field_name(self.ASSIGN_RIGHT_FIELD)
        op_node = node.child_by_field_name("operator")
        op = self._node_text(op_node) if op_node else "="
        if op == "=":
            value = self._lower_expr(right)
        else:
            current = self._lower_expr(left)
            operand = self._lower_expr(right)
            value = self._value(
                Opcode.BINOP, [op.removesuffix("="), current, operand], location_node=node
            )
        self._lower_store_target(left, value, node)
        return value

    def _lower_store_target(self, target, val_reg: str, parent_node, location_node=None):
        while target.type == "parenthesized_expression" and target.named_children:
            target = target.named_children[0]

        if target.type == "field_access":
            receiver = self._lower_expr(target.child_by_field_name("object"))
            field_name = self._node_text(target.child_by_field_name("field"))
            opcode, operands = Opcode.STORE_FIELD, [receiver, field_name, val_reg]
        elif target.type == "array_access":
            array = self._lower_expr(target.child_by_field_name("array"))
            index = self._lower_expr(target.child_by_field_name("index"))
            opcode, operands = Opcode.STORE_INDEX, [array, index, val_reg]
        else:
            opcode, operands = Opcode.STORE_VAR, [self._node_text(target), val_reg]
        self._emit(opcode, operands=operands, node=parent_node, location_node=location_node)

    # ── calls and allocation ─────────────────────────────────────

    def _lower_args(self, args_node) -> list[str]:
        if args_node is None:
            return []
        return [self._lower_expr(arg) for arg in args_node.named_children]

    def _lower_method_invocation(self, node) -> str:
        name_node = node.child_by_field_name("name")
        method_name = self._node_text(name_node) if name_node else "unknown"
        receiver_node = node.child_by_field_name("object")
        args_node = node.child_by_field_name("arguments")

        if receiver_node is None:
            return self._value(
                Opcode.CALL_FUNCTION, [method_name, *self._lower_args(args_node)], node
            )
        receiver = self._lower_expr(receiver_node)
        return self._value(
            Opcode.CALL_METHOD,
            [receiver, method_name, *self._lower_args(args_node)],
            node,
        )

    def _lower_object_creation(self, node) -> str:
        type_node = node.child_by_field_name("type")
        type_name = self._node_text(type_node) if type_node else "Object"
        args = self._lower_args(node.child_by_field_name("arguments"))
        return self._value(Opcode.NEW_OBJECT, [type_name, *args], node)

    def _lower_array_creation(self, node) -> str:
        type_node = node.child_by_field_name("type")
        type_name = self._node_text(type_node) if type_node else "Object"
        sizes = [
            self._lower_expr(dim.named_children[0])
            for dim in node.children
            if dim.type == "dimensions_expr" and dim.named_children
        ]
        return self._value(Opcode.NEW_ARRAY, [type_name, *sizes], node)

    # ── member and element reads ─────────────────────────────────

    def _lower_field_access(self, node) -> str:
        receiver_node = node.child_by_field_name("object")
        field_node = node.child_by_field_name("field")
        if receiver_node is None or field_node is None:
            return self._lower_const_literal(node)
        receiver = self._lower_expr(receiver_node)
        return self._value(Opcode.LOAD_FIELD, [receiver, self._node_text(field_node)], node)

    def _lower_array_access(self, node) -> str:
        array_node = node.child_by_field_name("array")
        index_node = node.child_by_field_name("index")
        if array_node is None or index_node is None:
            return self._lower_const_literal(node)
        array = self._lower_expr(array_node)
        index = self._lower_expr(index_node)
        return self._value(Opcode.LOAD_INDEX, [array, index], node)

    # ── value-preserving wrappers ────────────────────────────────

    def _lower_cast_expr(self, node) -> str:
        value_node = node.child_by_field_name("value")
        if value_node is None:
            return self._lower_const_literal(node)
        reg = self._lower_expr(value_node)
        self._alias(reg, node)
        return reg

    def _lower_ternary(self, node) -> str:
        """``c ? a : b`` becomes a diamond writing a synthetic local."""
        condition = self._lower_expr(node.child_by_field_name("condition"))
        true_label, false_label, end_label = self._labels(
            "ternary_true", "ternary_false", "ternary_end"
        )
        result_var = f"__ternary_{self._label_counter}"

        self._branch(condition, true_label, false_label, node)
        for label, field_name in ((true_label, "consequence"), (false_label, "alternative")):
            self._place(label)
            arm = self._lower_expr(node.child_by_field_name(field_name))
            self._emit(Opcode.STORE_VAR, operands=[result_var, arm])
            self._jump(end_label)

        self._place(end_label)
        return self._value(Opcode.LOAD_VAR, [result_var], node)

    # ── try/catch/finally ────────────────────────────────────────

    def _lower_try(self, node):
        clauses: list[CatchClause] = []
        finally_body = None
        for child in node.named_children:
            if child.type == "catch_clause":
                clauses.append(self._catch_clause(child))
            elif child.type == "finally_clause":
                finally_body = next(
                    (c for c in child.named_children if c.type == "block"), None
                )
        self._lower_try_catch(
            node, node.child_by_field_name("body"), clauses, finally_body
        )

    def _catch_clause(self, clause) -> CatchClause:
        """Catch types are reduced to their simple names."""
        caught = CatchClause(body=clause.child_by_field_name("body"))
        param = next(
            (c for c in clause.named_children if c.type == "catch_formal_parameter"),
            None,
        )
        if param is None:
            return caught
        name_node = param.child_by_field_name("name")
        if name_node is not None:
            caught.variable = self._node_text(name_node)
        catch_type = next((c for c in param.named_children if c.type == "catch_type"), None)
        if catch_type is not None and catch_type.named_children:
            caught.types = [
                self._node_text(t).rsplit(".", 1)[-1] for t in catch_type.named_children
            ]
        return caught
