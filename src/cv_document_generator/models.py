"""Pydantic models for the CV document generator pipeline."""

from __future__ import annotations

import mimetypes
from enum import Enum
from pathlib import Path
from typing import Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class Severity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class PipelineStage(str, Enum):
    EXTRACTION = "extraction"
    SYNTHESIS = "synthesis"
    COMPILATION = "compilation"


class FailureKind(str, Enum):
    SERVICE = "service"
    PARSE = "parse"
    SYNTHESIS = "synthesis"
    COMPILATION = "compilation"
    IO = "io"
    CANCELLED = "cancelled"


class ServiceErrorKind(str, Enum):
    AUTH_INVALID = "auth_invalid"
    QUOTA_EXCEEDED = "quota_exceeded"
    BAD_REQUEST = "bad_request"
    TIMEOUT = "timeout"
    UNKNOWN = "unknown"


class RendererKind(str, Enum):
    PDFLATEX = "pdflatex"
    FALLBACK = "fallback"


# ---------------------------------------------------------------------------
# Structured profile
# ---------------------------------------------------------------------------

def _clean_str(value: Any) -> str | None:
    """Trim a scalar; empty or missing values become ``None``."""
    if value is None:
        return None
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        value = str(value)
    if not isinstance(value, str):
        return None
    value = value.strip()
    return value or None


def _clean_str_list(values: Any, *, unique: bool = False) -> list[str]:
    """Keep non-empty trimmed strings in order; ``unique`` also drops repeats."""
    if not isinstance(values, (list, tuple, set)):
        return []
    cleaned: list[str] = []
    for item in values:
        text = _clean_str(item)
        if text and not (unique and text in cleaned):
            cleaned.append(text)
    return cleaned


class _ProfileEntry(BaseModel):
    """Shared config: camelCase on the wire, snake_case in Python."""
    model_config = ConfigDict(populate_by_name=True)


class Experience(_ProfileEntry):
    """A single work experience entry."""
    title: str
    company: str
    start_date: str | None = Field(default=None, alias="startDate")
    end_date: str | None = Field(default=None, alias="endDate")
    description: str = ""
    current: bool = False

    @model_validator(mode="after")
    def _current_has_no_end(self) -> Experience:
        if self.current:
            self.end_date = None
        return self


class Education(_ProfileEntry):
    """A single education entry."""
    degree: str
    school: str
    start_date: str | None = Field(default=None, alias="startDate")
    end_date: str | None = Field(default=None, alias="endDate")
    description: str | None = None


class Project(_ProfileEntry):
    """A single project entry."""
    name: str
    description: str
    technologies: list[str] = Field(default_factory=list)
    link: str | None = None


class StructuredProfile(_ProfileEntry):
    """Canonical representation of a person's professional background."""
    name: str | None = None
    email: str | None = None
    phone: str | None = None
    summary: str | None = None
    experiences: list[Experience] = Field(default_factory=list)
    education: list[Education] = Field(default_factory=list)
    projects: list[Project] = Field(default_factory=list)
    skills: list[str] = Field(default_factory=list)
    passions: list[str] = Field(default_factory=list)

    def to_prompt_json(self) -> str:
        """Serialize with the camelCase field names used in prompts."""
        return self.model_dump_json(by_alias=True, indent=2)


_REQUIRED_ENTRY_FIELDS: dict[str, tuple[str, str]] = {
    "experiences": ("title", "company"),
    "education": ("degree", "school"),
    "projects": ("name", "description"),
}

_ENTRY_ALIASES = {"start_date": "startDate", "end_date": "endDate"}


def _normalize_entry(raw: Any, required: tuple[str, str]) -> dict[str, Any] | None:
    if not isinstance(raw, dict):
        return None
    entry: dict[str, Any] = {}
    for key, value in raw.items():
        key = _ENTRY_ALIASES.get(key, key)
        if key == "technologies":
            entry[key] = _clean_str_list(value, unique=True)
        elif key == "current":
            entry[key] = value is True or (isinstance(value, str) and value.strip().lower() == "true")
        else:
            entry[key] = _clean_str(value)
    if not all(entry.get(field) for field in required):
        return None
    return {k: v for k, v in entry.items() if v is not None}


def normalize_profile(data: dict[str, Any] | StructuredProfile) -> StructuredProfile:
    """Apply the profile invariants to raw service output or a hand-made profile.

    Entries missing one of their identifying fields are dropped, scalars are
    trimmed, and empty skills/passions are removed.
    """
    if isinstance(data, StructuredProfile):
        data = data.model_dump(by_alias=True)

    normalized: dict[str, Any] = {
        key: _clean_str(data.get(key)) for key in ("name", "email", "phone", "summary")
    }
    for key, required in _REQUIRED_ENTRY_FIELDS.items():
        raw_entries = data.get(key) or []
        if not isinstance(raw_entries, list):
            raw_entries = []
        entries = [_normalize_entry(raw, required) for raw in raw_entries]
        normalized[key] = [e for e in entries if e is not None]
    normalized["skills"] = _clean_str_list(data.get("skills"))
    normalized["passions"] = _clean_str_list(data.get("passions"))
    return StructuredProfile.model_validate(normalized)


# ---------------------------------------------------------------------------
# Inputs
# ---------------------------------------------------------------------------

_PHOTO_MIME_TYPES = {
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".gif": "image/gif",
    ".webp": "image/webp",
}

_TEXT_SUFFIXES = {".txt", ".md", ".markdown", ".text"}


class PhotoRef(BaseModel):
    """A profile photo and the bare file name the LaTeX source will use."""
    path: Path
    file_name: str

    @field_validator("file_name")
    @classmethod
    def _bare_file_name(cls, value: str) -> str:
        if not value or "/" in value or "\\" in value or value in (".", ".."):
            raise ValueError(f"photo file_name must be a bare file name, got {value!r}")
        return value

    @classmethod
    def from_path(cls, path: str | Path) -> PhotoRef:
        path = Path(path)
        return cls(path=path, file_name=f"profile-photo{path.suffix.lower()}")

    @property
    def mime_type(self) -> str:
        return _PHOTO_MIME_TYPES.get(self.path.suffix.lower(), "image/jpeg")


class SourceMaterial(BaseModel):
    """Raw CV content: either plain text or binary data with its mime type."""
    text: str | None = None
    data: bytes | None = None
    mime_type: str | None = None

    @model_validator(mode="after")
    def _exactly_one_form(self) -> SourceMaterial:
        if (self.text is None) == (self.data is None):
            raise ValueError("SourceMaterial needs exactly one of 'text' or 'data'")
        if self.data is not None and not self.mime_type:
            raise ValueError("binary SourceMaterial requires a mime_type")
        return self

    @classmethod
    def from_file(cls, path: str | Path) -> SourceMaterial:
        path = Path(path)
        if path.suffix.lower() in _TEXT_SUFFIXES:
            return cls(text=path.read_text(encoding="utf-8", errors="replace"))
        mime_type, _ = mimetypes.guess_type(path.name)
        return cls(data=path.read_bytes(), mime_type=mime_type or "application/octet-stream")


class GenerationRequest(BaseModel):
    """One pipeline invocation's input."""
    profile: StructuredProfile
    photo: PhotoRef | None = None


# ---------------------------------------------------------------------------
# Compilation
# ---------------------------------------------------------------------------

class CompilationWarning(BaseModel):
    """A single warning or error from LaTeX compilation."""
    file: str = Field(default="", description="Source file")
    line: int | None = Field(default=None, description="Line number")
    message: str = Field(..., description="Warning/error message")
    severity: Severity = Field(default=Severity.WARNING)
    context: str = Field(default="", description="+-5 line window around the error")


class CompilationResult(BaseModel):
    """A successfully compiled CV."""
    pdf_path: str = Field(..., description="Path to the generated PDF")
    source_path: str = Field(..., description="Path to the retained LaTeX source")
    workspace: str = Field(..., description="Per-invocation workspace directory")
    renderer: RendererKind = RendererKind.PDFLATEX
    degraded: bool = Field(default=False, description="True when the fallback renderer was used")
    warnings: list[CompilationWarning] = Field(default_factory=list)
    page_count: int | None = None
    log_excerpt: str = ""


# ---------------------------------------------------------------------------
# Failure taxonomy
# ---------------------------------------------------------------------------

class PipelineFailure(BaseModel):
    """Base for every typed failure returned by the pipeline stages."""
    kind: FailureKind
    stage: PipelineStage
    message: str


class ServiceError(PipelineFailure):
    kind: Literal[FailureKind.SERVICE] = FailureKind.SERVICE
    subkind: ServiceErrorKind = ServiceErrorKind.UNKNOWN
    status_code: int | None = None


class ParseError(PipelineFailure):
    kind: Literal[FailureKind.PARSE] = FailureKind.PARSE
    stage: PipelineStage = PipelineStage.EXTRACTION
    raw_text: str = ""


class SynthesisError(PipelineFailure):
    kind: Literal[FailureKind.SYNTHESIS] = FailureKind.SYNTHESIS
    stage: PipelineStage = PipelineStage.SYNTHESIS
    raw_text: str = ""


class CompilationError(PipelineFailure):
    kind: Literal[FailureKind.COMPILATION] = FailureKind.COMPILATION
    stage: PipelineStage = PipelineStage.COMPILATION
    diagnostic_text: str = ""
    retained_source_path: str
    errors: list[CompilationWarning] = Field(default_factory=list)


class WorkspaceError(PipelineFailure):
    """Filesystem failure while preparing or cleaning a workspace or asset."""
    kind: Literal[FailureKind.IO] = FailureKind.IO
    stage: PipelineStage = PipelineStage.COMPILATION
    path: str = ""
    retained_source_path: str | None = None


class CancelledError(PipelineFailure):
    kind: Literal[FailureKind.CANCELLED] = FailureKind.CANCELLED


AnyFailure = Union[
    ServiceError, ParseError, SynthesisError, CompilationError, WorkspaceError, CancelledError,
]


# ---------------------------------------------------------------------------
# Project configuration (loaded from YAML / Hydra)
# ---------------------------------------------------------------------------

class AzureConfig(BaseModel):
    """Azure OpenAI connection settings."""
    api_key: str = Field(default="", description="Azure OpenAI API key")
    api_version: str = Field(default="", description="API version")
    endpoint: str = Field(default="", description="Azure endpoint URL")


class ModelEndpointOverride(BaseModel):
    """Per-model endpoint settings that take precedence over ``azure``."""
    endpoint: str = ""
    api_key: str | None = None
    api_version: str | None = None
    api_type: str | None = None


class ModelConfig(BaseModel):
    """LLM model configuration per role."""
    default: str = Field(default="gpt-4o", description="Default model")
    extractor: str | None = Field(default=None)
    synthesizer: str | None = Field(default=None)
    overrides: dict[str, ModelEndpointOverride] = Field(default_factory=dict)


class ProjectConfig(BaseModel):
    """Full project configuration."""
    project_name: str = Field(default="cv-document")
    output_dir: str = Field(default="output/", description="Parent directory for workspaces")
    language: str = Field(default="en", description="en | fr")
    max_pages: int = Field(default=2, description="Page budget given to the synthesizer")

    # Compilation
    engine: str = Field(default="pdflatex", description="Primary LaTeX toolchain executable")
    main_name: str = Field(default="cv", description="Base name of the .tex/.pdf files")
    compile_passes: int = Field(default=2)
    compile_timeout: int = Field(default=120, description="Seconds per compiler pass")
    max_output_bytes: int = Field(default=10 * 1024 * 1024)
    fallback_enabled: bool = Field(default=True, description="Use the in-process renderer without pdflatex")

    # Completion service
    azure: AzureConfig = Field(default_factory=AzureConfig)
    models: ModelConfig = Field(default_factory=ModelConfig)
    timeout: int = Field(default=60, description="Seconds per completion-service call")
    seed: int = Field(default=42)
