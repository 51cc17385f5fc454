"""CFG model and CFG Builder (linear IR → labelled blocks)."""

from __future__ import annotations

import itertools
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterator, Sequence

from .errors import MalformedCFGError
from .ir import THROWING_OPCODES, IRInstruction, Opcode, SyntaxRef
from . import constants

logger = logging.getLogger(__name__)

# Ids are unique per process so that results from different CFGs can be combined
_BLOCK_IDS = itertools.count()
_NODE_IDS = itertools.count()


class BlockKind(str, Enum):
    REGULAR = "regular"
    CONDITIONAL = "conditional"
    EXCEPTIONAL = "exceptional"
    SPECIAL = "special"


class SpecialKind(str, Enum):
    ENTRY = "entry"
    EXIT = "exit"
    EXCEPTIONAL_EXIT = "exceptional_exit"


class EdgeLabel(str, Enum):
    UNCONDITIONAL = "unconditional"
    THEN = "then"
    ELSE = "else"
    EXCEPTIONAL = "exceptional"


class ASTKind(str, Enum):
    METHOD = "method"
    ARBITRARY_CODE = "arbitrary_code"


@dataclass(frozen=True)
class UnderlyingAST:
    """The source construct a CFG was built from."""

    kind: ASTKind = ASTKind.ARBITRARY_CODE
    code: SyntaxRef | None = None
    method_name: str = ""
    class_name: str = ""


@dataclass(frozen=True)
class Edge:
    target: Block
    label: EdgeLabel = EdgeLabel.UNCONDITIONAL
    exception_type: str | None = None


@dataclass(eq=False, repr=False)
class Block:
    label: str
    kind: BlockKind = BlockKind.REGULAR
    nodes: list[IRInstruction] = field(default_factory=list)
    edges: list[Edge] = field(default_factory=list)
    predecessors: list[Block] = field(default_factory=list)
    special_kind: SpecialKind | None = None
    condition: str | None = None  # register tested by a conditional block
    block_id: int = field(default_factory=lambda: next(_BLOCK_IDS))
    graph: ControlFlowGraph | None = None

    def successors(self) -> list[Block]:
        return [edge.target for edge in self.edges]

    def successor(self, label: EdgeLabel) -> Block | None:
        """The first successor reached through an edge labelled *label*."""
        return next((e.target for e in self.edges if e.label == label), None)

    def normal_edges(self) -> list[Edge]:
        return [e for e in self.edges if e.label != EdgeLabel.EXCEPTIONAL]

    def exceptional_edges(self) -> list[Edge]:
        return [e for e in self.edges if e.label == EdgeLabel.EXCEPTIONAL]

    def is_special(self, special_kind: SpecialKind) -> bool:
        return self.kind == BlockKind.SPECIAL and self.special_kind == special_kind

    def last_node(self) -> IRInstruction | None:
        return self.nodes[-1] if self.nodes else None

    def __repr__(self) -> str:
        return f"Block({self.label!r}, {self.kind.value}, id={self.block_id})"


@dataclass(eq=False)
class ControlFlowGraph:
    blocks: dict[str, Block] = field(default_factory=dict)
    entry: str = constants.CFG_ENTRY_LABEL
    regular_exit: str = constants.CFG_EXIT_LABEL
    exceptional_exit: str = constants.CFG_EXCEPTIONAL_EXIT_LABEL
    underlying_ast: UnderlyingAST = field(default_factory=UnderlyingAST)
    parameters: list[str] = field(default_factory=list)
    definitions: dict[str, IRInstruction] = field(default_factory=dict, repr=False)

    def entry_block(self) -> Block | None:
        return self.blocks.get(self.entry)

    def regular_exit_block(self) -> Block | None:
        return self.blocks.get(self.regular_exit)

    def exceptional_exit_block(self) -> Block | None:
        return self.blocks.get(self.exceptional_exit)

    def all_blocks(self) -> list[Block]:
        return list(self.blocks.values())

    def all_nodes(self) -> Iterator[IRInstruction]:
        return (node for block in self.blocks.values() for node in block.nodes)

    def successors(self, block: Block) -> list[Block]:
        return block.successors()

    def predecessors(self, block: Block) -> list[Block]:
        return list(block.predecessors)

    def return_nodes(self) -> list[IRInstruction]:
        return [node for node in self.all_nodes() if node.opcode == Opcode.RETURN]

    def definition_of(self, register: str) -> IRInstruction | None:
        """The node whose result lands in *register*."""
        return self.definitions.get(register)

    def is_effectively_final(self, name: str) -> bool:
        """A local is effectively final when it is written exactly once."""
        if name in self.parameters:
            return False
        writes = [
            node
            for node in self.all_nodes()
            if node.opcode == Opcode.STORE_VAR and node.operands[:1] == [name]
        ]
        return len(writes) == 1

    def depth_first_order(self) -> list[Block]:
        """Blocks in reverse postorder from the entry; unreachable ones last."""
        entry = self.entry_block()
        visited: set[int] = set()
        postorder: list[Block] = []
        stack: list[tuple[Block, Iterator[Block]]] = []
        if entry is not None:
            visited.add(entry.block_id)
            stack.append((entry, iter(entry.successors())))
        while stack:
            block, children = stack[-1]
            child = next((c for c in children if c.block_id not in visited), None)
            if child is None:
                stack.pop()
                postorder.append(block)
                continue
            visited.add(child.block_id)
            stack.append((child, iter(child.successors())))

        order = list(reversed(postorder))
        order.extend(b for b in self.blocks.values() if b.block_id not in visited)
        return order

    def __str__(self) -> str:
        lines = []
        for label, block in self.blocks.items():
            preds = (
                ", ".join(p.label for p in block.predecessors)
                if block.predecessors
                else "(none)"
            )
            succs = (
                ", ".join(_edge_summary(e) for e in block.edges)
                if block.edges
                else "(none)"
            )
            lines.append(f"[{label}] {block.kind.value}  preds={preds}  succs={succs}")
            for inst in block.nodes:
                lines.append(f"  {inst}")
            if block.condition:
                lines.append(f"  branch_if {block.condition}")
            lines.append("")
        return "\n".join(lines)


def _edge_summary(edge: Edge) -> str:
    if edge.label == EdgeLabel.UNCONDITIONAL:
        return edge.target.label
    if edge.label == EdgeLabel.EXCEPTIONAL:
        return f"{edge.exception_type}:{edge.target.label}"
    return f"{edge.label.value}:{edge.target.label}"


@dataclass
class _Segment:
    """A labelled run of instructions between control transfers."""

    label: str
    body: list[IRInstruction] = field(default_factory=list)
    terminator: IRInstruction | None = None

    def is_empty(self) -> bool:
        return not self.label and not self.body and self.terminator is None


def build_cfg(
    instructions: Sequence[IRInstruction],
    underlying_ast: UnderlyingAST | None = None,
    parameters: Sequence[str] = (),
) -> ControlFlowGraph:
    """Partition instructions into blocks and wire labelled edges.

    The instructions are copied; every node in the result carries a fresh
    ``node_id`` and a back reference to its block.
    """
    cfg = ControlFlowGraph(
        underlying_ast=underlying_ast or UnderlyingAST(),
        parameters=list(parameters),
    )
    entry = Block(
        label=constants.CFG_ENTRY_LABEL,
        kind=BlockKind.SPECIAL,
        special_kind=SpecialKind.ENTRY,
    )
    exit_block = Block(
        label=constants.CFG_EXIT_LABEL,
        kind=BlockKind.SPECIAL,
        special_kind=SpecialKind.EXIT,
    )
    exceptional_exit = Block(
        label=constants.CFG_EXCEPTIONAL_EXIT_LABEL,
        kind=BlockKind.SPECIAL,
        special_kind=SpecialKind.EXCEPTIONAL_EXIT,
    )
    _register(cfg, entry)

    # Phase 1: split into segments
    segments = _split_segments(instructions)

    # Phase 2: create blocks per segment
    built: list[tuple[_Segment, list[Block]]] = []
    first_block_of: dict[str, Block] = {}
    for segment in segments:
        chunks = _build_segment_blocks(segment)
        for chunk in chunks:
            _register(cfg, chunk)
        first_block_of[segment.label] = chunks[0]
        built.append((segment, chunks))

    _register(cfg, exit_block)
    _register(cfg, exceptional_exit)

    def resolve(label: str) -> Block:
        target = first_block_of.get(label)
        if target is None:
            raise MalformedCFGError(f"Branch target '{label}' does not exist")
        return target

    # Phase 3: wire edges
    _add_edge(entry, built[0][1][0] if built else exit_block)
    for i, (segment, chunks) in enumerate(built):
        for current, following in zip(chunks, chunks[1:]):
            _add_edge(current, following)
        for chunk in chunks:
            if chunk.kind == BlockKind.EXCEPTIONAL:
                _wire_exceptional(chunk, resolve, exceptional_exit)

        last = chunks[-1]
        term = segment.terminator
        fallthrough = built[i + 1][1][0] if i + 1 < len(built) else exit_block

        if term is None:
            _add_edge(last, fallthrough)
        elif term.opcode == Opcode.BRANCH:
            _add_edge(last, resolve(term.label or ""))
        elif term.opcode == Opcode.BRANCH_IF:
            targets = [t.strip() for t in (term.label or "").split(",")]
            if len(targets) != 2:
                raise MalformedCFGError(
                    f"Conditional branch needs then/else targets, got {term.label!r}"
                )
            _add_edge(last, resolve(targets[0]), EdgeLabel.THEN)
            _add_edge(last, resolve(targets[1]), EdgeLabel.ELSE)
        elif term.opcode == Opcode.RETURN:
            _add_edge(last, exit_block)
        # THROW: exceptional successors only

    # Phase 4: index register definitions
    for node in cfg.all_nodes():
        if node.result_reg:
            cfg.definitions[node.result_reg] = node

    logger.info(
        "Built CFG with %d blocks and %d nodes",
        len(cfg.blocks),
        sum(len(b.nodes) for b in cfg.blocks.values()),
    )
    return cfg


def _split_segments(instructions: Sequence[IRInstruction]) -> list[_Segment]:
    segments: list[_Segment] = []
    current = _Segment(label="")

    def close() -> None:
        nonlocal current
        if not current.is_empty():
            segments.append(current)
        current = _Segment(label="")

    for inst in instructions:
        if inst.opcode == Opcode.LABEL:
            close()
            current = _Segment(label=inst.label or "")
        elif inst.opcode in (Opcode.BRANCH, Opcode.BRANCH_IF):
            current.terminator = inst
            close()
        elif inst.opcode in (Opcode.RETURN, Opcode.THROW):
            current.body.append(inst)
            current.terminator = inst
            close()
        else:
            current.body.append(inst)
    close()

    for i, segment in enumerate(segments):
        if not segment.label:
            segment.label = f"{constants.BLOCK_LABEL_PREFIX}{i}"
    return segments


def _build_segment_blocks(segment: _Segment) -> list[Block]:
    """Regular runs of nodes, one exceptional block per throwing node."""
    chunks: list[Block] = []
    run: list[IRInstruction] = []

    def chunk_label() -> str:
        return segment.label if not chunks else f"{segment.label}.{len(chunks)}"

    def flush() -> None:
        nonlocal run
        if run:
            chunks.append(_make_block(chunk_label(), BlockKind.REGULAR, run))
            run = []

    for inst in segment.body:
        if inst.opcode in THROWING_OPCODES:
            flush()
            chunks.append(_make_block(chunk_label(), BlockKind.EXCEPTIONAL, [inst]))
        else:
            run.append(inst)
    flush()

    term = segment.terminator
    if term is not None and term.opcode == Opcode.BRANCH_IF:
        block = _make_block(chunk_label(), BlockKind.CONDITIONAL, [])
        block.condition = str(term.operands[0]) if term.operands else None
        chunks.append(block)

    if not chunks:
        chunks.append(_make_block(segment.label, BlockKind.REGULAR, []))
    return chunks


def _make_block(label: str, kind: BlockKind, insts: list[IRInstruction]) -> Block:
    block = Block(label=label, kind=kind)
    for inst in insts:
        node = inst.model_copy(update={"node_id": next(_NODE_IDS)})
        node._block = block
        block.nodes.append(node)
    return block


def _wire_exceptional(block: Block, resolve, exceptional_exit: Block) -> None:
    node = block.nodes[0]
    for exception_type, catch_label in node.exception_targets.items():
        _add_edge(block, resolve(catch_label), EdgeLabel.EXCEPTIONAL, exception_type)
    if constants.ANY_EXCEPTION not in node.exception_targets:
        _add_edge(
            block, exceptional_exit, EdgeLabel.EXCEPTIONAL, constants.ANY_EXCEPTION
        )


def _register(cfg: ControlFlowGraph, block: Block) -> None:
    block.graph = cfg
    cfg.blocks[block.label] = block


def _add_edge(
    src: Block,
    dst: Block,
    label: EdgeLabel = EdgeLabel.UNCONDITIONAL,
    exception_type: str | None = None,
) -> None:
    edge = Edge(target=dst, label=label, exception_type=exception_type)
    if edge not in src.edges:
        src.edges.append(edge)
    if src not in dst.predecessors:
        dst.predecessors.append(src)
