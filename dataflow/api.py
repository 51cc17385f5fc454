"""Composable API functions for the source → CFG → analysis pipeline.

Each function is one stage of the pipeline and is callable on its own.
"""

from __future__ import annotations

import logging

from .analysis import Analysis
from .builder import find_class, find_method, get_method_cfg
from .cfg import ControlFlowGraph
from .frontends import get_frontend
from .ir import IRInstruction
from .parser import Parser, TreeSitterParserFactory
from .result import AnalysisResult
from . import constants

logger = logging.getLogger(__name__)


def lower_method(
    source: str,
    method: str = constants.DEFAULT_METHOD_NAME,
    clazz: str = constants.DEFAULT_CLASS_NAME,
    language: str = "java",
) -> list[IRInstruction]:
    """Parse source and lower one method body to IR instructions.

    Args:
        source: The source code text.
        method: Name of the method to lower.
        clazz: Name of the class declaring it.
        language: Source language name.

    Returns:
        A list of IR instructions (before CFG construction).

    Raises:
        ValueError: If the class or method is not found.
    """
    logger.info("Lowering %s.%s (%s)", clazz, method, language)
    data = source.encode("utf-8")
    tree = Parser(TreeSitterParserFactory()).parse(data, language)
    class_tree = find_class(tree.root_node, clazz, data)
    if class_tree is None:
        raise ValueError(f"Class '{clazz}' not found in source")
    method_tree = find_method(class_tree, method, data)
    if method_tree is None:
        raise ValueError(f"Method '{method}' not found in class '{clazz}'")
    return get_frontend(language).lower_method(method_tree, data).instructions


def dump_ir(
    source: str,
    method: str = constants.DEFAULT_METHOD_NAME,
    clazz: str = constants.DEFAULT_CLASS_NAME,
    language: str = "java",
) -> str:
    """Lower one method and return a human-readable text dump, one line each."""
    instructions = lower_method(source, method, clazz, language)
    return "\n".join(f"  {inst}" for inst in instructions)


def build_cfg_from_source(
    source: str,
    method: str = constants.DEFAULT_METHOD_NAME,
    clazz: str = constants.DEFAULT_CLASS_NAME,
    language: str = "java",
) -> ControlFlowGraph:
    """Parse, lower and build the CFG of one method."""
    return get_method_cfg(source, method, clazz, language)


def dump_cfg(
    source: str,
    method: str = constants.DEFAULT_METHOD_NAME,
    clazz: str = constants.DEFAULT_CLASS_NAME,
    language: str = "java",
) -> str:
    """Build a method CFG and return its text representation."""
    return str(build_cfg_from_source(source, method, clazz, language))


def analyze_source(
    source: str,
    analysis: Analysis,
    method: str = constants.DEFAULT_METHOD_NAME,
    clazz: str = constants.DEFAULT_CLASS_NAME,
    language: str = "java",
) -> AnalysisResult:
    """Build the CFG of ``clazz.method`` and run *analysis* over it.

    Composes: build_cfg_from_source → Analysis.perform_analysis.

    Args:
        source: The source code text.
        analysis: A configured forward or backward analysis.
        method: Name of the method to analyse.
        clazz: Name of the class declaring it.
        language: Source language name.

    Returns:
        The converged AnalysisResult.
    """
    cfg = build_cfg_from_source(source, method, clazz, language)
    result = analysis.perform_analysis(cfg)
    logger.info("Analysis stats:\n%s", analysis.stats.report())
    return result
