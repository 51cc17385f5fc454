"""Tests for the CFG model and the IR → block builder."""

import pytest

from dataflow.cfg import BlockKind, EdgeLabel, SpecialKind, build_cfg
from dataflow.errors import MalformedCFGError
from dataflow.ir import IRInstruction, Opcode


def _make_instructions(*specs):
    """Helper: build IRInstruction list from (opcode, kwargs) tuples."""
    return [IRInstruction(opcode=op, **kw) for op, kw in specs]


def _edge_labels(block):
    return [(e.label, e.target.label, e.exception_type) for e in block.edges]


class TestLinearCfg:
    def test_single_block_between_entry_and_exit(self):
        instructions = _make_instructions(
            (Opcode.CONST, {"result_reg": "%0", "operands": ["3"]}),
            (Opcode.STORE_VAR, {"operands": ["x", "%0"]}),
            (Opcode.RETURN, {"operands": ["%0"]}),
        )
        cfg = build_cfg(instructions)
        body = cfg.blocks["__block_0"]

        assert cfg.entry_block().successors() == [body]
        assert body.kind == BlockKind.REGULAR
        assert [n.opcode for n in body.nodes] == [
            Opcode.CONST,
            Opcode.STORE_VAR,
            Opcode.RETURN,
        ]
        assert body.successors() == [cfg.regular_exit_block()]

    def test_empty_method_wires_entry_to_exit(self):
        cfg = build_cfg([])
        assert cfg.entry_block().successors() == [cfg.regular_exit_block()]
        assert list(cfg.all_nodes()) == []

    def test_special_blocks(self):
        cfg = build_cfg([])
        assert cfg.entry_block().is_special(SpecialKind.ENTRY)
        assert cfg.regular_exit_block().is_special(SpecialKind.EXIT)
        assert cfg.exceptional_exit_block().is_special(SpecialKind.EXCEPTIONAL_EXIT)

    def test_fallthrough_between_labels(self):
        instructions = _make_instructions(
            (Opcode.LABEL, {"label": "block_a"}),
            (Opcode.CONST, {"result_reg": "%0", "operands": ["1"]}),
            (Opcode.LABEL, {"label": "block_b"}),
            (Opcode.RETURN, {"operands": ["%0"]}),
        )
        cfg = build_cfg(instructions)
        assert cfg.blocks["block_a"].successors() == [cfg.blocks["block_b"]]
        assert cfg.blocks["block_b"].predecessors == [cfg.blocks["block_a"]]

    def test_input_instructions_are_not_mutated(self):
        instructions = _make_instructions(
            (Opcode.CONST, {"result_reg": "%0", "operands": ["1"]}),
            (Opcode.RETURN, {"operands": ["%0"]}),
        )
        cfg = build_cfg(instructions)
        assert all(inst.node_id == -1 for inst in instructions)
        assert all(inst.block() is None for inst in instructions)
        assert all(node.node_id >= 0 for node in cfg.all_nodes())

    def test_nodes_know_their_block_and_have_unique_ids(self):
        instructions = _make_instructions(
            (Opcode.CONST, {"result_reg": "%0", "operands": ["1"]}),
            (Opcode.CONST, {"result_reg": "%1", "operands": ["2"]}),
            (Opcode.RETURN, {"operands": ["%1"]}),
        )
        first = build_cfg(instructions)
        second = build_cfg(instructions)
        for block in first.all_blocks():
            for node in block.nodes:
                assert node.block() is block
        ids = [n.node_id for n in first.all_nodes()] + [
            n.node_id for n in second.all_nodes()
        ]
        assert len(ids) == len(set(ids))

    def test_block_ids_are_unique_across_graphs(self):
        first = build_cfg([])
        second = build_cfg([])
        ids = [b.block_id for b in first.all_blocks() + second.all_blocks()]
        assert len(ids) == len(set(ids))


class TestConditionalCfg:
    def _diamond(self):
        return _make_instructions(
            (Opcode.LABEL, {"label": "start"}),
            (Opcode.CONST, {"result_reg": "%0", "operands": ["true"]}),
            (Opcode.BRANCH_IF, {"operands": ["%0"], "label": "then_block, else_block"}),
            (Opcode.LABEL, {"label": "then_block"}),
            (Opcode.BRANCH, {"label": "merge"}),
            (Opcode.LABEL, {"label": "else_block"}),
            (Opcode.BRANCH, {"label": "merge"}),
            (Opcode.LABEL, {"label": "merge"}),
            (Opcode.RETURN, {"operands": ["%0"]}),
        )

    def test_branch_if_appends_conditional_block(self):
        cfg = build_cfg(self._diamond())
        start = cfg.blocks["start"]
        cond = cfg.blocks["start.1"]

        assert start.successors() == [cond]
        assert cond.kind == BlockKind.CONDITIONAL
        assert cond.nodes == []
        assert cond.condition == "%0"
        assert cond.successor(EdgeLabel.THEN) is cfg.blocks["then_block"]
        assert cond.successor(EdgeLabel.ELSE) is cfg.blocks["else_block"]

    def test_branches_converge(self):
        cfg = build_cfg(self._diamond())
        merge = cfg.blocks["merge"]
        assert set(p.label for p in merge.predecessors) == {"then_block", "else_block"}

    def test_branch_if_without_two_targets_is_malformed(self):
        instructions = _make_instructions(
            (Opcode.CONST, {"result_reg": "%0", "operands": ["true"]}),
            (Opcode.BRANCH_IF, {"operands": ["%0"], "label": "only"}),
            (Opcode.LABEL, {"label": "only"}),
        )
        with pytest.raises(MalformedCFGError):
            build_cfg(instructions)

    def test_unknown_branch_target_is_malformed(self):
        instructions = _make_instructions(
            (Opcode.BRANCH, {"label": "nowhere"}),
        )
        with pytest.raises(MalformedCFGError, match="nowhere"):
            build_cfg(instructions)


class TestExceptionalCfg:
    def test_throwing_node_gets_its_own_block(self):
        instructions = _make_instructions(
            (Opcode.CONST, {"result_reg": "%0", "operands": ["1"]}),
            (Opcode.CALL_FUNCTION, {"result_reg": "%1", "operands": ["f", "%0"]}),
            (Opcode.RETURN, {"operands": ["%1"]}),
        )
        cfg = build_cfg(instructions)
        regular, call, tail = (
            cfg.blocks["__block_0"],
            cfg.blocks["__block_0.1"],
            cfg.blocks["__block_0.2"],
        )

        assert call.kind == BlockKind.EXCEPTIONAL
        assert [n.opcode for n in call.nodes] == [Opcode.CALL_FUNCTION]
        assert regular.successors() == [call]
        assert _edge_labels(call) == [
            (EdgeLabel.EXCEPTIONAL, "exceptional_exit", "Throwable"),
            (EdgeLabel.UNCONDITIONAL, "__block_0.2", None),
        ] or _edge_labels(call) == [
            (EdgeLabel.UNCONDITIONAL, "__block_0.2", None),
            (EdgeLabel.EXCEPTIONAL, "exceptional_exit", "Throwable"),
        ]
        assert tail.successors() == [cfg.regular_exit_block()]

    def test_exception_targets_become_typed_edges(self):
        instructions = _make_instructions(
            (
                Opcode.CALL_FUNCTION,
                {
                    "result_reg": "%0",
                    "operands": ["f"],
                    "exception_targets": {"IOException": "handler"},
                },
            ),
            (Opcode.RETURN, {"operands": ["%0"]}),
            (Opcode.LABEL, {"label": "handler"}),
            (Opcode.RETURN, {"operands": []}),
        )
        cfg = build_cfg(instructions)
        call = cfg.blocks["__block_0"]
        exceptional = {
            (e.exception_type, e.target.label) for e in call.exceptional_edges()
        }
        assert exceptional == {
            ("IOException", "handler"),
            ("Throwable", "exceptional_exit"),
        }

    def test_catch_all_handler_suppresses_exceptional_exit_edge(self):
        instructions = _make_instructions(
            (
                Opcode.CALL_FUNCTION,
                {
                    "result_reg": "%0",
                    "operands": ["f"],
                    "exception_targets": {"Throwable": "handler"},
                },
            ),
            (Opcode.LABEL, {"label": "handler"}),
        )
        cfg = build_cfg(instructions)
        call = cfg.blocks["__block_0"]
        assert [e.target.label for e in call.exceptional_edges()] == ["handler"]

    def test_throw_has_no_normal_successor(self):
        instructions = _make_instructions(
            (Opcode.NEW_OBJECT, {"result_reg": "%0", "operands": ["Error"]}),
            (Opcode.THROW, {"operands": ["%0"]}),
        )
        cfg = build_cfg(instructions)
        throw_block = next(
            b for b in cfg.all_blocks() if b.nodes and b.nodes[0].opcode == Opcode.THROW
        )
        assert throw_block.normal_edges() == []
        assert [e.target for e in throw_block.exceptional_edges()] == [
            cfg.exceptional_exit_block()
        ]


class TestCfgQueries:
    def test_depth_first_order_appends_unreachable_blocks(self):
        instructions = _make_instructions(
            (Opcode.BRANCH, {"label": "end"}),
            (Opcode.LABEL, {"label": "dead"}),
            (Opcode.CONST, {"result_reg": "%0", "operands": ["1"]}),
            (Opcode.LABEL, {"label": "end"}),
            (Opcode.RETURN, {"operands": []}),
        )
        cfg = build_cfg(instructions)
        order = cfg.depth_first_order()

        assert order[0] is cfg.entry_block()
        assert [b.label for b in order[:4]] == ["entry", "__block_0", "end", "exit"]
        assert [b.label for b in order[4:]] == ["dead", "exceptional_exit"]

    def test_definition_of_register(self):
        instructions = _make_instructions(
            (Opcode.CONST, {"result_reg": "%0", "operands": ["1"]}),
            (Opcode.STORE_VAR, {"operands": ["x", "%0"]}),
        )
        cfg = build_cfg(instructions)
        assert cfg.definition_of("%0").opcode == Opcode.CONST
        assert cfg.definition_of("x") is None

    def test_effectively_final_locals(self):
        instructions = _make_instructions(
            (Opcode.CONST, {"result_reg": "%0", "operands": ["1"]}),
            (Opcode.STORE_VAR, {"operands": ["x", "%0"]}),
            (Opcode.STORE_VAR, {"operands": ["y", "%0"]}),
            (Opcode.STORE_VAR, {"operands": ["y", "%0"]}),
            (Opcode.STORE_VAR, {"operands": ["p", "%0"]}),
        )
        cfg = build_cfg(instructions, parameters=["p"])
        assert cfg.is_effectively_final("x")
        assert not cfg.is_effectively_final("y")
        assert not cfg.is_effectively_final("p")

    def test_return_nodes(self):
        instructions = _make_instructions(
            (Opcode.CONST, {"result_reg": "%0", "operands": ["true"]}),
            (Opcode.BRANCH_IF, {"operands": ["%0"], "label": "a,b"}),
            (Opcode.LABEL, {"label": "a"}),
            (Opcode.RETURN, {"operands": ["%0"]}),
            (Opcode.LABEL, {"label": "b"}),
            (Opcode.RETURN, {"operands": ["%0"]}),
        )
        cfg = build_cfg(instructions)
        returns = cfg.return_nodes()
        assert len(returns) == 2
        assert {n.block().label for n in returns} == {"a", "b"}

    def test_text_dump_lists_blocks_and_edges(self):
        instructions = _make_instructions(
            (Opcode.CONST, {"result_reg": "%0", "operands": ["1"]}),
            (Opcode.RETURN, {"operands": ["%0"]}),
        )
        text = str(build_cfg(instructions))
        assert "[entry] special" in text
        assert "%0 = const 1" in text
        assert "succs=exit" in text
