"""Strip markdown code-fence wrappers from completion-service output."""

from __future__ import annotations

import re

_LEADING_FENCE_RE = re.compile(r"\A(?:```|~~~)(?:[A-Za-z0-9_+.-]*[ \t]*(?:\r?\n|\Z))?")
_TRAILING_FENCE_RE = re.compile(r"(?:```|~~~)\Z")


def sanitize_source(text: str | None) -> str:
    """Remove leading/trailing fenced-block delimiters and outer whitespace.

    Repeats until nothing changes, so nested wrappers are removed too and
    ``sanitize_source(sanitize_source(x)) == sanitize_source(x)``. The payload
    between the fences is left untouched.
    """
    if not text:
        return ""
    current = text
    while True:
        stripped = current.strip()
        stripped = _LEADING_FENCE_RE.sub("", stripped, count=1)
        stripped = _TRAILING_FENCE_RE.sub("", stripped.rstrip(), count=1)
        stripped = stripped.strip()
        if stripped == current:
            return stripped
        current = stripped
