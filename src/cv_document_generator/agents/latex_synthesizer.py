"""LaTeXSynthesizer agent — writes an ATS-friendly LaTeX CV from a profile."""

from __future__ import annotations

import logging

import autogen

from ..config import build_role_llm_config
from ..models import (
    PhotoRef,
    PipelineStage,
    ProjectConfig,
    ServiceError,
    StructuredProfile,
    SynthesisError,
)
from ..tools.completion import AgentCompletionClient, Attachment, CompletionClient, classify_service_error
from ..tools.sanitizer import sanitize_source

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = """\
You are an expert in professional CVs optimised for Applicant Tracking Systems
(ATS). You write complete, compilable LaTeX documents that are easy for an ATS
to parse while staying visually clean. You answer with LaTeX code only.
"""

# Section headings in document order, per language.
SECTION_HEADINGS: dict[str, list[str]] = {
    "en": [
        "PROFILE",
        "PROFESSIONAL EXPERIENCE",
        "EDUCATION",
        "TECHNICAL SKILLS",
        "PROJECTS",
        "INTERESTS",
    ],
    "fr": [
        "PROFIL",
        "EXPÉRIENCE PROFESSIONNELLE",
        "FORMATION",
        "COMPÉTENCES TECHNIQUES",
        "PROJETS",
        "CENTRES D'INTÉRÊT",
    ],
}

_BABEL_OPTIONS = {"en": "english", "fr": "french"}

_LANGUAGE_NAMES = {"en": "English", "fr": "French"}

ALLOWED_PACKAGES = [
    r"\usepackage[utf8]{inputenc}",
    r"\usepackage[T1]{fontenc}",
    r"\usepackage[<babel>]{babel}",
    r"\usepackage[margin=2cm]{geometry}",
    r"\usepackage{helvet}",
    r"\usepackage{graphicx} (photo only)",
    r"\usepackage{wrapfig} (photo only)",
    r"\usepackage{enumitem}",
    r"\usepackage{hyperref}",
    r"\usepackage{xcolor}",
]

_LATEX_MARKERS = ("\\documentclass", "\\begin{document}", "\\section", "\\begin{", "\\textbf")


def _looks_like_latex(text: str) -> bool:
    """Heuristic check that text is LaTeX."""
    return any(m in text for m in _LATEX_MARKERS)


def build_photo_instructions(photo: PhotoRef) -> str:
    """Instructions for placing the photo by its logical file name."""
    return (
        "A professional photo is attached and must be included in the CV.\n"
        f'The photo file will be named "{photo.file_name}" in the same directory '
        "as the LaTeX file.\n"
        f"Include it with \\includegraphics{{{photo.file_name}}}: file name only, "
        "never a directory or absolute path.\n"
        "Place it at the top of the document in \\begin{wrapfigure}{r}{3.5cm}, "
        "at most 3cm x 3.5cm, as a simple rectangle that does not disturb the "
        "text flow read by the ATS.\n"
    )


def build_synthesis_prompt(
    profile: StructuredProfile,
    photo: PhotoRef | None = None,
    *,
    language: str = "en",
    max_pages: int = 2,
) -> str:
    """Build the full synthesis instruction for one profile."""
    headings = SECTION_HEADINGS.get(language, SECTION_HEADINGS["en"])
    babel = _BABEL_OPTIONS.get(language, "english")
    language_name = _LANGUAGE_NAMES.get(language, "English")
    packages = "\n".join(f"   - {p.replace('<babel>', babel)}" for p in ALLOWED_PACKAGES)
    heading_list = "\n".join(f"   {i}. {h}" for i, h in enumerate(headings, 1))

    parts: list[str] = []
    if photo is not None:
        parts.append(build_photo_instructions(photo))

    parts.append(f"""\
Generate an ATS-friendly CV in LaTeX from the following data.

CV DATA:
{profile.to_prompt_json()}

CRITICAL ATS RULES:

1. Document structure:
   - Use ONLY \\documentclass[11pt,a4paper]{{article}}.
   - Do NOT use fancy classes such as moderncv or altacv.
   - Simple linear structure: header, then sections, then content.
   - Margins: geometry with margin=2cm.
   - Font: \\usepackage{{helvet}} with \\renewcommand{{\\familydefault}}{{\\sfdefault}}.

2. Section headings, EXACTLY these names and in this order
   (omit PROJECTS when there are no projects):
{heading_list}

3. Content formatting:
   - A single main column for all text (only the photo may float).
   - NO multi-column layouts (no multicol, no paracol, no side-by-side minipages).
   - NO tables for body content (no tabular, tabularx or longtable).
   - Use plain lists with \\begin{{itemize}} and \\item.
   - Every experience follows this format:
     * Line 1: \\textbf{{Job title}} -- Company
     * Line 2: \\textit{{Start date -- End date}} (use "Present" for current roles)
     * Then \\begin{{itemize}} with achievements.

4. Keywords and wording:
   - Start EVERY experience bullet point with an action verb.
   - Put technical keywords directly in the text, never in graphics.
   - Use Context + Action + Result for each achievement, quantified when the data allows.
   - Skills are plain text, comma-separated or in a simple list.

5. Allowed packages:
{packages}

6. Header:
   - Name in large bold: \\textbf{{\\Large Full Name}}.
   - Email and phone on one line: \\href{{mailto:email}}{{email}} | phone.
   - Everything must be extractable as plain text.

7. NEVER use: multiple columns, tables for experiences or skills, progress
   bars or skill graphics, decorative fonts, complex headers/footers, coloured
   boxes, decorative images, undefined acronyms.

TECHNICAL CONSTRAINTS:
- The LaTeX must be COMPLETE, VALID and compile immediately with pdflatex.
- Include every package you use in the preamble.
- Do not add LaTeX comments.
- Escape LaTeX special characters in the data (& % $ # _ {{ }}).
- Do not invent employers, schools, dates or degrees that are not in the data.
- Write the document in {language_name} with UTF-8 encoding.
- At most {max_pages} page(s); prefer a single page when the content allows.

OUTPUT:
Return ONLY the complete LaTeX code, ready to compile.
- Start directly with \\documentclass.
- End with \\end{{document}}.
- No markdown, no code fences, no explanations.
""")
    return "\n".join(parts)


def make_latex_synthesizer(config: ProjectConfig) -> autogen.AssistantAgent:
    """Create the LaTeXSynthesizer agent."""
    return autogen.AssistantAgent(
        name="LaTeXSynthesizer",
        system_message=SYSTEM_PROMPT,
        llm_config=build_role_llm_config("synthesizer", config),
        is_termination_msg=lambda _msg: False,
    )


def make_synthesizer_client(config: ProjectConfig) -> AgentCompletionClient:
    return AgentCompletionClient(lambda: make_latex_synthesizer(config))


class LatexSynthesizer:
    """Synthesis adapter: profile (+ photo) → LaTeX source text.

    The returned source is not validated beyond a sanity check; the
    compilation engine is the authority on whether it is correct.
    """

    def __init__(
        self,
        client: CompletionClient,
        *,
        language: str = "en",
        max_pages: int = 2,
    ) -> None:
        self.client = client
        self.language = language
        self.max_pages = max_pages

    def synthesize(
        self,
        profile: StructuredProfile,
        photo: PhotoRef | None = None,
    ) -> str | ServiceError | SynthesisError:
        prompt = build_synthesis_prompt(
            profile, photo, language=self.language, max_pages=self.max_pages,
        )

        attachment = None
        if photo is not None:
            try:
                attachment = Attachment(
                    data=photo.path.read_bytes(),
                    mime_type=photo.mime_type,
                    file_name=photo.file_name,
                )
            except OSError as e:
                # The photo still goes into the workspace at compile time.
                logger.warning("Could not attach photo %s to the request: %s", photo.path, e)

        try:
            raw = self.client.complete(prompt, attachment)
        except Exception as e:
            failure = classify_service_error(e, PipelineStage.SYNTHESIS)
            logger.error("Synthesis request failed: %s", failure.message)
            return failure

        source = sanitize_source(raw)
        if not source:
            return SynthesisError(message="Completion service returned an empty LaTeX source", raw_text=raw)
        if not _looks_like_latex(source):
            return SynthesisError(message="Completion service response does not look like LaTeX", raw_text=raw)

        logger.info("Synthesized LaTeX source (%d chars)", len(source))
        return source
