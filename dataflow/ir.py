"""IR Design — flattened three-address code whose instructions are the CFG nodes."""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ConfigDict, PrivateAttr

if TYPE_CHECKING:
    from .cfg import Block


class Opcode(str, Enum):
    # Value producers
    CONST = "CONST"
    LOAD_VAR = "LOAD_VAR"
    LOAD_FIELD = "LOAD_FIELD"
    LOAD_INDEX = "LOAD_INDEX"
    NEW_OBJECT = "NEW_OBJECT"
    NEW_ARRAY = "NEW_ARRAY"
    BINOP = "BINOP"
    COMPARE = "COMPARE"
    UNOP = "UNOP"
    CALL_FUNCTION = "CALL_FUNCTION"
    CALL_METHOD = "CALL_METHOD"
    CALL_UNKNOWN = "CALL_UNKNOWN"
    # Value consumers
    DECLARE_VAR = "DECLARE_VAR"
    STORE_VAR = "STORE_VAR"
    STORE_FIELD = "STORE_FIELD"
    STORE_INDEX = "STORE_INDEX"
    RETURN = "RETURN"
    THROW = "THROW"
    # Special
    SYMBOLIC = "SYMBOLIC"
    # Control pseudo-instructions (consumed by the CFG builder)
    BRANCH_IF = "BRANCH_IF"
    BRANCH = "BRANCH"
    LABEL = "LABEL"


# Nodes that may raise and therefore get an exceptional block of their own
THROWING_OPCODES: frozenset[Opcode] = frozenset(
    {
        Opcode.CALL_FUNCTION,
        Opcode.CALL_METHOD,
        Opcode.CALL_UNKNOWN,
        Opcode.NEW_OBJECT,
        Opcode.THROW,
    }
)


class SourceLocation(BaseModel):
    """1-based line, 0-based column span of the tree a node came from.

    All zeros means the node was synthesized by lowering.
    """

    model_config = ConfigDict(frozen=True)

    start_line: int
    start_col: int
    end_line: int
    end_col: int

    def is_unknown(self) -> bool:
        return self == NO_SOURCE_LOCATION

    def __str__(self) -> str:
        if self.is_unknown():
            return "<synthetic>"
        return f"L{self.start_line}:{self.start_col}..L{self.end_line}:{self.end_col}"


NO_SOURCE_LOCATION = SourceLocation(start_line=0, start_col=0, end_line=0, end_col=0)


class SyntaxRef(BaseModel):
    """Hashable handle on a source AST tree.

    tree-sitter hands out a fresh Python object every time a child is
    accessed, so trees are identified by their grammar type and byte span.
    """

    model_config = ConfigDict(frozen=True)

    node_type: str
    start_byte: int
    end_byte: int
    text: str = ""

    @classmethod
    def of(cls, node, source: bytes | None = None) -> SyntaxRef:
        """Build a handle from a tree-sitter node.

        *source* is the parsed buffer; without it the node's own text is used.
        """
        if source is not None:
            text = source[node.start_byte : node.end_byte].decode("utf-8")
        else:
            text = node.text.decode("utf-8") if node.text is not None else ""
        return cls(
            node_type=node.type,
            start_byte=node.start_byte,
            end_byte=node.end_byte,
            text=text,
        )

    def __str__(self) -> str:
        return f"{self.node_type}[{self.start_byte}:{self.end_byte}] {self.text!r}"


class IRInstruction(BaseModel):
    opcode: Opcode
    result_reg: str | None = None
    operands: list[Any] = []
    label: str | None = None  # for LABEL / branch targets
    source_location: SourceLocation = NO_SOURCE_LOCATION
    tree: SyntaxRef | None = None
    alias_trees: list[SyntaxRef] = []
    # exception type -> catch label, for nodes inside a try body
    exception_targets: dict[str, str] = {}
    node_id: int = -1

    _block: Any = PrivateAttr(default=None)

    def block(self) -> Block | None:
        """The block owning this node, or ``None`` before CFG construction."""
        return self._block

    def trees(self) -> list[SyntaxRef]:
        """Every source tree that evaluates to this node."""
        primary = [self.tree] if self.tree is not None else []
        return primary + list(self.alias_trees)

    def __str__(self) -> str:
        if self.opcode == Opcode.LABEL:
            return f"{self.label}:"
        assigned = f"{self.result_reg} = " if self.result_reg else ""
        words = [self.opcode.value.lower(), *map(str, self.operands)]
        if self.label:
            words.append(self.label)
        text = assigned + " ".join(words)
        if self.source_location.is_unknown():
            return text
        return f"{text}  # {self.source_location}"
