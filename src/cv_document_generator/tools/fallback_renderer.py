"""In-process fallback renderer: LaTeX → Markdown → PDF.

Used only when no LaTeX toolchain is installed. The conversion understands the
small LaTeX subset the synthesizer is told to use (sections, itemize, bold,
italics, links); layout fidelity is much lower than pdflatex.
"""

from __future__ import annotations

import logging
import re
import unicodedata
from pathlib import Path

from markdown_pdf import MarkdownPdf, Section

logger = logging.getLogger(__name__)

_COMMENT_RE = re.compile(r"(?<!\\)%.*$", re.MULTILINE)
_BODY_RE = re.compile(r"\\begin\{document\}(.*?)(?:\\end\{document\}|\Z)", re.DOTALL)
_DROP_ENV_RE = re.compile(r"\\begin\{(wrapfigure|figure|minipage|tikzpicture)\*?\}.*?\\end\{\1\*?\}", re.DOTALL)
_LIST_ENV_RE = re.compile(r"\\(begin|end)\{(itemize|enumerate|description|center|flushleft|flushright)\}(\[[^\]]*\])?")
_ITEM_RE = re.compile(r"^\s*\\item(\[[^\]]*\])?\s*", re.MULTILINE)
_SPACING_RE = re.compile(r"\\(vspace|hspace|setlength|addtolength|renewcommand|newcommand)\*?(\{[^{}]*\})+")
_SIZE_RE = re.compile(
    r"\\(tiny|scriptsize|footnotesize|small|normalsize|large|Large|LARGE|huge|Huge"
    r"|noindent|centering|hfill|vfill|newline|linebreak|par|medskip|smallskip|bigskip"
    r"|maketitle|clearpage|newpage|raggedright|bfseries|itshape|sffamily)\b"
)
_INCLUDEGRAPHICS_RE = re.compile(r"\\includegraphics(\[[^\]]*\])?\{[^}]*\}")
_GENERIC_ARG_RE = re.compile(r"\\[a-zA-Z]+\*?(\[[^\]]*\])?\{([^{}]*)\}")
_GENERIC_CMD_RE = re.compile(r"\\[a-zA-Z]+\*?")
_ACCENT_RE = re.compile(r"\\(['`^\"~])\{?([A-Za-z])\}?")
_ACCENTS = {"'": "\u0301", "`": "\u0300", "^": "\u0302", "\"": "\u0308", "~": "\u0303"}

_SYMBOLS = [
    ("\\&", "&"), ("\\%", "%"), ("\\$", "$"), ("\\#", "#"), ("\\_", "_"),
    ("\\{", "{"), ("\\}", "}"), ("\\textbar", "|"), ("\\textbullet", "•"),
    ("\\LaTeX", "LaTeX"), ("\\TeX", "TeX"), ("---", "—"), ("--", "–"), ("~", " "),
]


def _find_group_end(text: str, start: int) -> int:
    """Return the index just past the brace group opening at ``start``."""
    depth = 0
    for i in range(start, len(text)):
        ch = text[i]
        if ch == "\\":
            continue
        if ch == "{" and (i == 0 or text[i - 1] != "\\"):
            depth += 1
        elif ch == "}" and text[i - 1] != "\\":
            depth -= 1
            if depth == 0:
                return i + 1
    return -1


def _replace_command(text: str, name: str, before: str, after: str, nargs: int = 1) -> str:
    """Replace ``\\name{arg}`` (balanced braces) with ``before + arg + after``.

    With ``nargs=2`` the second argument is used as the visible text and the
    first is available as ``{0}`` in ``before``/``after``.
    """
    pattern = re.compile(r"\\" + name + r"\*?\s*(?=\{)")
    while True:
        m = pattern.search(text)
        if not m:
            return text
        args: list[str] = []
        pos = m.end()
        for _ in range(nargs):
            end = _find_group_end(text, pos) if pos < len(text) and text[pos] == "{" else -1
            if end == -1:
                break
            args.append(text[pos + 1:end - 1])
            pos = end
        if len(args) != nargs:
            # Unbalanced input: drop the command name and keep going.
            text = text[:m.start()] + text[m.end():]
            continue
        visible = args[-1].strip()
        replacement = before.replace("{0}", args[0]) + visible + after.replace("{0}", args[0])
        text = text[:m.start()] + replacement + text[pos:]


def _extract_body(source: str) -> str:
    m = _BODY_RE.search(source)
    return m.group(1) if m else source


def latex_to_markdown(source: str) -> str:
    """Convert the CV LaTeX subset to Markdown."""
    if not source:
        return ""

    text = _COMMENT_RE.sub("", source)
    text = _extract_body(text)
    text = _DROP_ENV_RE.sub("", text)
    text = _INCLUDEGRAPHICS_RE.sub("", text)
    text = _SPACING_RE.sub("", text)
    text = _SIZE_RE.sub("", text)

    # Headings: \section{Title} -> ## Title on its own line
    for level, name in (("###", "subsubsection"), ("##", "subsection"), ("#", "section")):
        text = _replace_command(text, name, f"\n\n{level}# ", "\n\n")

    text = _replace_command(text, "href", "[", "]({0})", nargs=2)
    text = _replace_command(text, "url", "<", ">")
    text = _replace_command(text, "textbf", "**", "**")
    for name in ("textit", "emph", "textsl"):
        text = _replace_command(text, name, "*", "*")
    text = _replace_command(text, "texttt", "`", "`")

    text = _LIST_ENV_RE.sub("\n", text)
    text = _ITEM_RE.sub("\n- ", text)
    text = re.sub(r"\\\\(\[[^\]]*\])?", "\n\n", text)

    text = _ACCENT_RE.sub(lambda m: unicodedata.normalize("NFC", m.group(2) + _ACCENTS[m.group(1)]), text)
    for latex, plain in _SYMBOLS:
        text = text.replace(latex, plain)

    # Remaining commands: keep their argument text, drop the command
    previous = None
    while previous != text:
        previous = text
        text = _GENERIC_ARG_RE.sub(r"\2", text)
    text = _GENERIC_CMD_RE.sub("", text)
    text = re.sub(r"(?<!\\)[{}]", "", text)

    markdown = "\n".join(line.strip() for line in text.splitlines())
    markdown = re.sub(r"\n{3,}", "\n\n", markdown)
    return markdown.strip() + "\n"


def render_pdf(source: str, pdf_path: str | Path, *, title: str = "") -> Path:
    """Render LaTeX source to ``pdf_path`` without any external toolchain."""
    markdown = latex_to_markdown(source)
    if not markdown.strip():
        raise ValueError("LaTeX source has no renderable content")

    pdf = MarkdownPdf(toc_level=0)
    pdf.add_section(Section(markdown, toc=False))
    if title:
        pdf.meta["title"] = title
    pdf.meta["creator"] = "cv-document-generator (fallback renderer)"

    out = Path(pdf_path)
    pdf.save(str(out))
    logger.info("Fallback renderer wrote %s from %d chars of Markdown", out, len(markdown))
    return out
