"""LLM-backed agents for profile extraction and LaTeX synthesis."""
