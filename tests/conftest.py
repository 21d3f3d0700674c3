"""Shared test fixtures."""

from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import Any

import pytest

from cv_document_generator.models import ProjectConfig
from cv_document_generator.tools.completion import Attachment

FIXTURES_DIR = Path(__file__).parent / "fixtures"
SAMPLE_LOGS = FIXTURES_DIR / "sample_logs"
SAMPLE_PROFILES = FIXTURES_DIR / "sample_profiles"

# 1x1 transparent PNG
PNG_BYTES = bytes.fromhex(
    "89504e470d0a1a0a0000000d4948445200000001000000010806000000"
    "1f15c4890000000d49444154789c6360000002000154a24f5d00000000"
    "49454e44ae426082"
)

CV_LATEX = r"""\documentclass[11pt,a4paper]{article}
\usepackage[utf8]{inputenc}
\usepackage[T1]{fontenc}
\usepackage[margin=2cm]{geometry}
\usepackage{hyperref}

\begin{document}

\textbf{\Large Jane Doe}\\
\href{mailto:jane.doe@example.com}{jane.doe@example.com} | +33 6 12 34 56 78

\section*{PROFILE}
Backend engineer with eight years of experience building payment systems.

\section*{PROFESSIONAL EXPERIENCE}
\textbf{Senior Backend Engineer} -- Acme Payments\\
\textit{2021-03 -- Present}
\begin{itemize}
  \item Led the migration of the billing platform to event sourcing.
  \item Reduced invoice latency by 40\% with batched writes.
\end{itemize}

\section*{EDUCATION}
\textbf{MSc Computer Science} -- Universit\'e de Lyon\\
\textit{2015 -- 2017}

\section*{TECHNICAL SKILLS}
Python, Go, PostgreSQL

\section*{INTERESTS}
Climbing, Chess

\end{document}
"""


class FakeCompletionClient:
    """Completion client that replays canned replies and records requests."""

    def __init__(self, replies: list[Any] | None = None) -> None:
        self.replies = list(replies or [])
        self.calls: list[tuple[str, Attachment | None]] = []

    def complete(self, instruction: str, attachment: Attachment | None = None) -> str:
        self.calls.append((instruction, attachment))
        if not self.replies:
            raise AssertionError("FakeCompletionClient ran out of replies")
        reply = self.replies.pop(0)
        if isinstance(reply, BaseException):
            raise reply
        return reply


def write_fake_engine(path: Path, body: str) -> Path:
    """Write an executable shell script standing in for pdflatex."""
    path.write_text("#!/bin/sh\n" + body, encoding="utf-8")
    path.chmod(0o755)
    return path


requires_posix = pytest.mark.skipif(sys.platform == "win32", reason="fake engines are POSIX shell scripts")


@pytest.fixture
def fixtures_dir() -> Path:
    return FIXTURES_DIR


@pytest.fixture
def success_log_path() -> Path:
    return SAMPLE_LOGS / "success.log"


@pytest.fixture
def error_log_path() -> Path:
    return SAMPLE_LOGS / "error.log"


@pytest.fixture
def sample_profile_path() -> Path:
    return SAMPLE_PROFILES / "jane_doe.yaml"


@pytest.fixture
def sample_profile_dict() -> dict[str, Any]:
    return {
        "name": "  Jane Doe ",
        "email": "jane.doe@example.com",
        "phone": "+33 6 12 34 56 78",
        "summary": "Backend engineer with eight years of experience building payment systems.",
        "experiences": [
            {
                "title": "Senior Backend Engineer",
                "company": "Acme Payments",
                "startDate": "2021-03",
                "endDate": None,
                "description": "Led the migration of the billing platform to event sourcing.",
                "current": True,
            },
            {
                "title": "Backend Engineer",
                "company": "Globex",
                "startDate": "2017",
                "endDate": "2021",
                "description": "Built the invoicing API.",
                "current": False,
            },
            {"title": "Intern", "company": "", "startDate": "2016"},
        ],
        "education": [
            {"degree": "MSc Computer Science", "school": "Université de Lyon", "startDate": "2015", "endDate": "2017"},
        ],
        "skills": ["Python", " Go ", "", "PostgreSQL"],
        "passions": ["Climbing", "Chess"],
        "projects": [],
    }


@pytest.fixture
def sample_profile_json(sample_profile_dict) -> str:
    return json.dumps(sample_profile_dict, ensure_ascii=False)


@pytest.fixture
def cv_latex() -> str:
    return CV_LATEX


@pytest.fixture
def png_photo(tmp_path: Path) -> Path:
    photo = tmp_path / "Me.PNG"
    photo.write_bytes(PNG_BYTES)
    return photo


@pytest.fixture
def tmp_output_dir(tmp_path: Path) -> Path:
    out = tmp_path / "output"
    out.mkdir()
    return out


@pytest.fixture
def no_engine_config() -> ProjectConfig:
    """Config whose primary toolchain cannot be found on PATH."""
    return ProjectConfig(engine="definitely-not-a-latex-engine")
