"""Tests for JavaFrontend — tree-sitter Java method body to IR lowering."""

from __future__ import annotations

import pytest
from tree_sitter_language_pack import get_parser

from dataflow.builder import find_class, find_method, get_method_cfg
from dataflow.frontends import SUPPORTED_LANGUAGES, get_frontend
from dataflow.frontends.java import JavaFrontend
from dataflow.ir import IRInstruction, Opcode


def _lower_java(body: str, signature: str = "void test()"):
    source = f"class Test {{ {signature} {{ {body} }} }}".encode("utf-8")
    tree = get_parser("java").parse(source)
    method = find_method(find_class(tree.root_node, "Test", source), "test", source)
    return JavaFrontend().lower_method(method, source)


def _parse_java(body: str, signature: str = "void test()") -> list[IRInstruction]:
    return _lower_java(body, signature).instructions


def _opcodes(instructions: list[IRInstruction]) -> list[Opcode]:
    return [inst.opcode for inst in instructions]


def _find_all(instructions: list[IRInstruction], opcode: Opcode) -> list[IRInstruction]:
    return [inst for inst in instructions if inst.opcode == opcode]


def _labels(instructions: list[IRInstruction]) -> list[str]:
    return [inst.label for inst in _find_all(instructions, Opcode.LABEL)]


class TestFrontendRegistry:
    def test_java_is_supported(self):
        assert "java" in SUPPORTED_LANGUAGES
        assert isinstance(get_frontend("java"), JavaFrontend)

    def test_unknown_language(self):
        with pytest.raises(ValueError, match="cobol"):
            get_frontend("cobol")


class TestJavaMethodShape:
    def test_empty_body(self):
        lowered = _lower_java("")
        assert lowered.name == "test"
        assert lowered.instructions == []

    def test_parameters(self):
        lowered = _lower_java("", signature="void test(int a, String b)")
        assert lowered.parameters == ["a", "b"]

    def test_no_entry_label_is_emitted(self):
        instructions = _parse_java("int x = 1;")
        assert Opcode.LABEL not in _opcodes(instructions)


class TestJavaVariables:
    def test_local_variable_declaration(self):
        instructions = _parse_java("int x = 10;")
        const, store = instructions
        assert const.opcode == Opcode.CONST
        assert const.operands == ["10"]
        assert const.tree.node_type == "decimal_integer_literal"
        assert store.opcode == Opcode.STORE_VAR
        assert store.operands == ["x", const.result_reg]
        assert store.tree.node_type == "variable_declarator"
        assert store.tree.text == "x = 10"

    def test_variable_without_initializer(self):
        instructions = _parse_java("int x;")
        assert _opcodes(instructions) == [Opcode.DECLARE_VAR]
        assert instructions[0].operands == ["x"]

    def test_assignment_expression(self):
        instructions = _parse_java("int x; x = 5;")
        store = _find_all(instructions, Opcode.STORE_VAR)[0]
        assert store.operands[0] == "x"
        assert store.tree.node_type == "assignment_expression"

    def test_compound_assignment(self):
        instructions = _parse_java("int x = 1; x += 2;")
        binop = _find_all(instructions, Opcode.BINOP)[0]
        assert binop.operands[0] == "+"
        assert binop.tree is None
        assert _find_all(instructions, Opcode.STORE_VAR)[-1].tree.node_type == (
            "assignment_expression"
        )

    def test_postfix_increment(self):
        instructions = _parse_java("int i = 0; i++;")
        binop = _find_all(instructions, Opcode.BINOP)[0]
        assert binop.operands[0] == "+"
        assert binop.tree is None
        assert _find_all(instructions, Opcode.STORE_VAR)[-1].operands == [
            "i",
            binop.result_reg,
        ]
        # i++ evaluates to the value read before the write
        load = _find_all(instructions, Opcode.LOAD_VAR)[0]
        assert [t.node_type for t in load.alias_trees] == ["update_expression"]

    def test_prefix_increment(self):
        instructions = _parse_java("int i = 0; --i;")
        binop = _find_all(instructions, Opcode.BINOP)[0]
        assert binop.operands[0] == "-"
        assert binop.tree.node_type == "update_expression"
        assert _find_all(instructions, Opcode.LOAD_VAR)[0].alias_trees == []


class TestJavaExpressions:
    def test_arithmetic(self):
        instructions = _parse_java("int x = 1 + 2 * 3;")
        ops = [inst.operands[0] for inst in _find_all(instructions, Opcode.BINOP)]
        assert ops == ["*", "+"]

    def test_comparison_is_compare(self):
        instructions = _parse_java("boolean b = 1 < 2;")
        assert _find_all(instructions, Opcode.COMPARE)[0].operands[0] == "<"
        assert _find_all(instructions, Opcode.BINOP) == []

    def test_unary(self):
        instructions = _parse_java("boolean b = !true;")
        unop = _find_all(instructions, Opcode.UNOP)[0]
        assert unop.operands[0] == "!"

    def test_parenthesized_expression_is_an_alias(self):
        instructions = _parse_java("int x = (1 + 2);")
        binop = _find_all(instructions, Opcode.BINOP)[0]
        assert binop.tree.node_type == "binary_expression"
        assert [t.node_type for t in binop.alias_trees] == ["parenthesized_expression"]

    def test_cast_expression_is_an_alias(self):
        instructions = _parse_java("long y = (long) x;", signature="void test(int x)")
        load = _find_all(instructions, Opcode.LOAD_VAR)[0]
        assert [t.node_type for t in load.alias_trees] == ["cast_expression"]

    def test_null_literal(self):
        instructions = _parse_java("Object o = null;")
        assert _find_all(instructions, Opcode.CONST)[0].operands == ["null"]

    def test_ternary_expression(self):
        instructions = _parse_java(
            "int y = c ? 1 : 2;", signature="void test(boolean c)"
        )
        assert Opcode.BRANCH_IF in _opcodes(instructions)
        result = [
            inst
            for inst in _find_all(instructions, Opcode.LOAD_VAR)
            if inst.tree is not None and inst.tree.node_type == "ternary_expression"
        ]
        assert len(result) == 1

    def test_fallback_symbolic_for_unsupported(self):
        instructions = _parse_java("Runnable r = () -> {};")
        symbolic = _find_all(instructions, Opcode.SYMBOLIC)[0]
        assert symbolic.operands == ["unsupported:lambda_expression"]


class TestJavaObjects:
    def test_method_call_on_object(self):
        instructions = _parse_java("o.f(1);", signature="void test(Object o)")
        call = _find_all(instructions, Opcode.CALL_METHOD)[0]
        load, const = instructions[0], instructions[1]
        assert call.operands == [load.result_reg, "f", const.result_reg]
        assert call.tree.node_type == "method_invocation"

    def test_standalone_method_call(self):
        instructions = _parse_java("f();")
        call = _find_all(instructions, Opcode.CALL_FUNCTION)[0]
        assert call.operands == ["f"]

    def test_object_creation(self):
        instructions = _parse_java("Object o = new Object();")
        assert _find_all(instructions, Opcode.NEW_OBJECT)[0].operands == ["Object"]

    def test_field_access_and_assignment(self):
        instructions = _parse_java(
            "int v = p.x; p.x = 1;", signature="void test(Point p)"
        )
        assert _find_all(instructions, Opcode.LOAD_FIELD)[0].operands[1] == "x"
        assert _find_all(instructions, Opcode.STORE_FIELD)[0].operands[1] == "x"

    def test_arrays(self):
        instructions = _parse_java("int[] a = new int[3]; a[0] = a[1];")
        new_array = _find_all(instructions, Opcode.NEW_ARRAY)[0]
        assert new_array.operands[0] == "int"
        assert len(new_array.operands) == 2
        assert len(_find_all(instructions, Opcode.LOAD_INDEX)) == 1
        assert len(_find_all(instructions, Opcode.STORE_INDEX)) == 1


class TestJavaControlFlow:
    def test_if_without_else(self):
        instructions = _parse_java("if (c) { f(); }", signature="void test(boolean c)")
        branch = _find_all(instructions, Opcode.BRANCH_IF)[0]
        assert branch.label == "if_true_0,if_end_2"
        assert _labels(instructions) == ["if_true_0", "if_end_2"]

    def test_if_else(self):
        instructions = _parse_java(
            "if (c) { f(); } else { g(); }", signature="void test(boolean c)"
        )
        branch = _find_all(instructions, Opcode.BRANCH_IF)[0]
        assert branch.label == "if_true_0,if_false_1"
        assert _labels(instructions) == ["if_true_0", "if_false_1", "if_end_2"]

    def test_while_loop(self):
        instructions = _parse_java(
            "while (c) { f(); }", signature="void test(boolean c)"
        )
        assert _labels(instructions) == ["while_cond_0", "while_body_1", "while_end_2"]
        assert _find_all(instructions, Opcode.BRANCH)[-1].label == "while_cond_0"

    def test_do_while_loop(self):
        instructions = _parse_java("do { f(); } while (c);", signature="void test(boolean c)")
        assert _labels(instructions) == ["do_body_0", "do_cond_1", "do_end_2"]
        assert _find_all(instructions, Opcode.BRANCH_IF)[0].label == "do_body_0,do_end_2"

    def test_c_style_for_loop(self):
        instructions = _parse_java("for (int i = 0; i < 3; i++) { f(i); }")
        assert _labels(instructions) == [
            "for_cond_0",
            "for_body_1",
            "for_update_3",
            "for_end_2",
        ]
        assert _find_all(instructions, Opcode.STORE_VAR)[0].operands[0] == "i"

    def test_break_and_continue(self):
        instructions = _parse_java(
            "while (c) { if (d) { break; } continue; }",
            signature="void test(boolean c, boolean d)",
        )
        targets = [inst.label for inst in _find_all(instructions, Opcode.BRANCH)]
        assert "while_end_2" in targets
        assert "while_cond_0" in targets

    def test_break_outside_loop(self):
        instructions = _parse_java("break;")
        assert _find_all(instructions, Opcode.SYMBOLIC)[0].operands == [
            "break_outside_loop_or_switch"
        ]

    def test_return(self):
        instructions = _parse_java("return 1;", signature="int test()")
        ret = instructions[-1]
        assert ret.opcode == Opcode.RETURN
        assert ret.operands == [instructions[0].result_reg]
        assert ret.tree.node_type == "return_statement"


class TestJavaExceptions:
    def test_throw_statement(self):
        instructions = _parse_java("throw new RuntimeException();")
        assert _opcodes(instructions) == [Opcode.NEW_OBJECT, Opcode.THROW]

    def test_try_catch_routes_throwing_nodes(self):
        instructions = _parse_java("try { f(); } catch (IOException e) { g(); }")
        call_f, call_g = _find_all(instructions, Opcode.CALL_FUNCTION)
        assert call_f.exception_targets == {"IOException": "catch_0_1"}
        assert call_g.exception_targets == {}

    def test_catch_binds_exception_variable(self):
        instructions = _parse_java("try { f(); } catch (IOException e) { g(); }")
        caught = _find_all(instructions, Opcode.SYMBOLIC)[0]
        assert caught.operands == ["caught_exception:IOException"]
        store = _find_all(instructions, Opcode.STORE_VAR)[0]
        assert store.operands == ["e", caught.result_reg]

    def test_multi_catch(self):
        instructions = _parse_java(
            "try { f(); } catch (IOException | RuntimeException e) { }"
        )
        call = _find_all(instructions, Opcode.CALL_FUNCTION)[0]
        assert call.exception_targets == {
            "IOException": "catch_0_1",
            "RuntimeException": "catch_0_1",
        }

    def test_nested_try_prefers_innermost_handler(self):
        instructions = _parse_java(
            "try { try { f(); } catch (IOException e) { } } "
            "catch (IOException e) { } catch (Exception e) { }"
        )
        call = _find_all(instructions, Opcode.CALL_FUNCTION)[0]
        outer = call.exception_targets["Exception"]
        inner = call.exception_targets["IOException"]
        assert outer == "catch_1_2"
        assert inner == "catch_0_5"

    def test_finally_rethrows(self):
        instructions = _parse_java(
            "try { f(); } catch (IOException e) { } finally { g(); }"
        )
        call_f = _find_all(instructions, Opcode.CALL_FUNCTION)[0]
        assert call_f.exception_targets == {
            "Throwable": "try_finally_exc_3",
            "IOException": "catch_0_1",
        }
        assert _find_all(instructions, Opcode.THROW)
        marker = [
            inst
            for inst in _find_all(instructions, Opcode.SYMBOLIC)
            if inst.operands == ["rethrow_after_finally"]
        ]
        assert len(marker) == 1
        # the finally body is lowered on both the normal and the exceptional path
        calls_g = [
            inst for inst in _find_all(instructions, Opcode.CALL_FUNCTION)
            if inst.operands == ["g"]
        ]
        assert len(calls_g) == 2


class TestJavaFinallyOnJumps:
    def test_return_runs_finally_before_leaving(self):
        instructions = [
            inst
            for inst in _parse_java(
                "try { return x; } finally { x = 2; }", signature="int test(int x)"
            )
            if inst.opcode != Opcode.LABEL
        ]
        assert _opcodes(instructions)[:4] == [
            Opcode.LOAD_VAR,
            Opcode.CONST,
            Opcode.STORE_VAR,
            Opcode.RETURN,
        ]
        load, ret = instructions[0], instructions[3]
        # the returned value is read before the finally body writes x
        assert ret.operands == [load.result_reg]

    def test_finally_store_is_on_the_path_to_exit(self):
        cfg = get_method_cfg(
            "class Test { int test(int x) { try { return x; } finally { x = 2; } } }"
        )
        ret = cfg.return_nodes()[0]
        block = ret.block()
        assert [n.opcode for n in block.nodes] == [
            Opcode.LOAD_VAR,
            Opcode.CONST,
            Opcode.STORE_VAR,
            Opcode.RETURN,
        ]
        assert block.nodes[2].operands[0] == "x"
        assert cfg.predecessors(block) == [cfg.entry_block()]
        assert cfg.successors(block) == [cfg.regular_exit_block()]

    def test_return_in_catch_runs_finally(self):
        instructions = _parse_java(
            "try { f(); } catch (IOException e) { return; } finally { g(); }"
        )
        ret = _find_all(instructions, Opcode.RETURN)[0]
        before_return = instructions[instructions.index(ret) - 1]
        assert before_return.opcode == Opcode.CALL_FUNCTION
        assert before_return.operands == ["g"]
        # normal path, exceptional path and the return
        calls_g = [
            inst for inst in _find_all(instructions, Opcode.CALL_FUNCTION)
            if inst.operands == ["g"]
        ]
        assert len(calls_g) == 3

    def test_nested_finally_bodies_run_innermost_first(self):
        instructions = _parse_java(
            "try { try { return; } finally { f(); } } finally { g(); }"
        )
        ret = _find_all(instructions, Opcode.RETURN)[0]
        call_f, call_g = instructions[instructions.index(ret) - 2 : instructions.index(ret)]
        assert call_f.operands == ["f"]
        assert call_g.operands == ["g"]
        # an exception in the inlined inner finally still reaches the outer one
        assert call_f.exception_targets == {"Throwable": "try_finally_exc_2"}
        assert call_g.exception_targets == {}

    def test_break_runs_finally_inside_the_loop(self):
        instructions = _parse_java(
            "while (c) { try { break; } finally { g(); } }",
            signature="void test(boolean c)",
        )
        call_g = [
            inst for inst in _find_all(instructions, Opcode.CALL_FUNCTION)
            if inst.operands == ["g"]
        ][0]
        after = instructions[instructions.index(call_g) + 1]
        assert after.opcode == Opcode.BRANCH
        assert after.label == "while_end_2"

    def test_continue_runs_finally(self):
        instructions = _parse_java(
            "while (c) { try { continue; } finally { g(); } }",
            signature="void test(boolean c)",
        )
        calls_g = [
            inst for inst in _find_all(instructions, Opcode.CALL_FUNCTION)
            if inst.operands == ["g"]
        ]
        assert len(calls_g) == 3
        after = instructions[instructions.index(calls_g[0]) + 1]
        assert after.label == "while_cond_0"

    def test_break_inside_a_loop_within_try_skips_finally(self):
        instructions = _parse_java(
            "try { while (c) { break; } } finally { g(); }",
            signature="void test(boolean c)",
        )
        calls_g = [
            inst for inst in _find_all(instructions, Opcode.CALL_FUNCTION)
            if inst.operands == ["g"]
        ]
        assert len(calls_g) == 2
