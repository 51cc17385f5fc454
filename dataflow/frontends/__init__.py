"""Tree-sitter frontends that lower a single method body to IR."""

from __future__ import annotations

import importlib

from ._base import BaseFrontend, LoweredMethod

# Lazy imports so that only the requested grammar's frontend is loaded
_FRONTEND_CLASSES: dict[str, str] = {
    "java": "java.JavaFrontend",
}


def get_frontend(language: str) -> BaseFrontend:
    """Instantiate the frontend for *language*.

    Raises ``ValueError`` if *language* has no registered frontend.
    """
    entry = _FRONTEND_CLASSES.get(language)
    if entry is None:
        raise ValueError(f"Unsupported language for frontend: {language}")
    module_name, class_name = entry.split(".")
    mod = importlib.import_module(f".{module_name}", package=__package__)
    cls = getattr(mod, class_name)
    return cls()


SUPPORTED_LANGUAGES: tuple[str, ...] = tuple(_FRONTEND_CLASSES.keys())

__all__ = [
    "BaseFrontend",
    "LoweredMethod",
    "get_frontend",
    "SUPPORTED_LANGUAGES",
]
