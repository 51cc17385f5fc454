"""CFG Builder — Java source → method CFG."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from tree_sitter import Node

from .cfg import ASTKind, ControlFlowGraph, UnderlyingAST, build_cfg
from .frontends import get_frontend
from .ir import SyntaxRef
from .parser import Parser, TreeSitterParserFactory
from . import constants

logger = logging.getLogger(__name__)

_CLASS_NODE_TYPES: frozenset[str] = frozenset(
    {"class_declaration", "interface_declaration", "enum_declaration", "record_declaration"}
)
_METHOD_NODE_TYPES: frozenset[str] = frozenset(
    {"method_declaration", "constructor_declaration"}
)


@dataclass(frozen=True)
class ProcessingEnvironment:
    """The parsed buffer and its language."""

    source: bytes
    language: str = "java"


def build(root_tree, env: ProcessingEnvironment, method_tree, class_tree) -> ControlFlowGraph:
    """Build the CFG of *method_tree*, a method declared in *class_tree*.

    *root_tree* is the tree-sitter ``Tree`` (or its root node) that both
    declarations come from.
    """
    root = getattr(root_tree, "root_node", root_tree)
    if root is None or method_tree is None or class_tree is None:
        raise ValueError("build needs a root tree, a method tree and a class tree")

    frontend = get_frontend(env.language)
    lowered = frontend.lower_method(method_tree, env.source)
    underlying_ast = UnderlyingAST(
        kind=ASTKind.METHOD,
        code=SyntaxRef.of(method_tree, env.source),
        method_name=lowered.name,
        class_name=_declared_name(class_tree, env.source),
    )
    return build_cfg(lowered.instructions, underlying_ast, lowered.parameters)


def get_method_cfg(
    source: str | bytes,
    method: str = constants.DEFAULT_METHOD_NAME,
    clazz: str = constants.DEFAULT_CLASS_NAME,
    language: str = "java",
) -> ControlFlowGraph:
    """Parse *source* and build the CFG of ``clazz.method``.

    Raises ``ValueError`` if the class or the method does not exist.
    """
    data = source.encode("utf-8") if isinstance(source, str) else source
    tree = Parser(TreeSitterParserFactory()).parse(data, language)
    class_tree = find_class(tree.root_node, clazz, data)
    if class_tree is None:
        raise ValueError(f"Class '{clazz}' not found in source")
    method_tree = find_method(class_tree, method, data)
    if method_tree is None:
        raise ValueError(f"Method '{method}' not found in class '{clazz}'")
    logger.info("Building CFG for %s.%s", clazz, method)
    return build(tree, ProcessingEnvironment(data, language), method_tree, class_tree)


def find_class(node: Node, name: str, source: bytes) -> Node | None:
    """Depth-first search for a type declaration called *name*."""
    if node.type in _CLASS_NODE_TYPES and _declared_name(node, source) == name:
        return node
    for child in node.named_children:
        found = find_class(child, name, source)
        if found is not None:
            return found
    return None


def find_method(class_node: Node, name: str, source: bytes) -> Node | None:
    """The first method of *class_node* (not of nested classes) called *name*."""
    body = class_node.child_by_field_name("body")
    if body is None:
        return None
    return next(
        (
            child
            for child in body.named_children
            if child.type in _METHOD_NODE_TYPES
            and _declared_name(child, source) == name
        ),
        None,
    )


def _declared_name(node: Node, source: bytes) -> str:
    name_node = node.child_by_field_name("name")
    if name_node is None:
        return ""
    return source[name_node.start_byte : name_node.end_byte].decode("utf-8")
