"""Declarações de stacks e bindings em YAML/JSON."""

from .loader import Declarations, apply_overrides, load_declarations, parse_document, parse_overrides

__all__ = [
    "Declarations",
    "apply_overrides",
    "load_declarations",
    "parse_document",
    "parse_overrides",
]
