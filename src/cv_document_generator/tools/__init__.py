"""Deterministic tools for sanitizing, compiling and rendering CV documents."""

from .compiler import CompilationEngine, select_strategy, toolchain_available
from .sanitizer import sanitize_source

__all__ = [
    "CompilationEngine",
    "sanitize_source",
    "select_strategy",
    "toolchain_available",
]
