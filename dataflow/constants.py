"""Named constants — eliminates magic strings across the codebase."""

from __future__ import annotations

CFG_ENTRY_LABEL = "entry"
CFG_EXIT_LABEL = "exit"
CFG_EXCEPTIONAL_EXIT_LABEL = "exceptional_exit"
BLOCK_LABEL_PREFIX = "__block_"

DATAFLOW_MAX_ITERATIONS = 10_000

ANY_EXCEPTION = "Throwable"

COMPARISON_OPERATORS: frozenset[str] = frozenset({"==", "!=", "<", "<=", ">", ">="})

NULL_LITERAL = "null"
TRUE_LITERAL = "true"
FALSE_LITERAL = "false"

DEFAULT_METHOD_NAME = "test"
DEFAULT_CLASS_NAME = "Test"

CAUGHT_EXCEPTION_PREFIX = "caught_exception"
RETHROW_MARKER = "rethrow_after_finally"
DEFAULT_CATCH_TYPE = "Exception"
