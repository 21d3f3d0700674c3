"""Turn raw CV material into a compiled, one-to-two page PDF resume."""

__version__ = "0.1.0"
