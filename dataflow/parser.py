"""Source text → tree-sitter syntax tree."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod

import tree_sitter
import tree_sitter_language_pack

logger = logging.getLogger(__name__)


class ParserFactory(ABC):
    """Supplies a tree-sitter parser for a grammar name such as ``"java"``."""

    @abstractmethod
    def get_parser(self, language: str) -> tree_sitter.Parser: ...


class TreeSitterParserFactory(ParserFactory):
    """Grammars come from tree-sitter-language-pack; one parser per language."""

    def __init__(self):
        self._parsers: dict[str, tree_sitter.Parser] = {}

    def get_parser(self, language: str) -> tree_sitter.Parser:
        if language not in self._parsers:
            self._parsers[language] = tree_sitter_language_pack.get_parser(language)
        return self._parsers[language]


class Parser:
    def __init__(self, parser_factory: ParserFactory):
        self._factory = parser_factory

    def parse(self, source: str | bytes, language: str) -> tree_sitter.Tree:
        """Parse *source*; text is encoded as UTF-8 first.

        Syntax errors do not raise: tree-sitter recovers and the resulting
        tree contains ``ERROR`` nodes, which is logged as a warning.
        """
        data = source if isinstance(source, bytes) else source.encode("utf-8")
        tree = self._factory.get_parser(language).parse(data)
        logger.debug("Parsed %d bytes of %s", len(data), language)
        if tree.root_node.has_error:
            logger.warning("%s source contains syntax errors", language)
        return tree
