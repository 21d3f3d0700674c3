"""LaTeX compilation engine with scratch workspaces and a fallback renderer.

Each call to :meth:`CompilationEngine.compile` gets its own uuid-named
workspace under the output directory. ``pdflatex`` is used when its version
probe succeeds; otherwise the in-process fallback renderer produces a
degraded PDF. A pdflatex failure is reported as a ``CompilationError`` and is
never retried with the fallback.
"""

from __future__ import annotations

import logging
import re
import shutil
import subprocess
import tempfile
import threading
import time
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Protocol, Union

from ..models import (
    CancelledError,
    CompilationError,
    CompilationResult,
    CompilationWarning,
    PhotoRef,
    PipelineStage,
    ProjectConfig,
    RendererKind,
    Severity,
    WorkspaceError,
)
from .fallback_renderer import render_pdf
from .page_counter import count_pages

logger = logging.getLogger(__name__)

CompileOutcome = Union[CompilationResult, CompilationError, WorkspaceError, CancelledError]

_POLL_INTERVAL = 0.2
_PROBE_TIMEOUT = 10

# ---------------------------------------------------------------------------
# Tool availability
# ---------------------------------------------------------------------------


def _find_engine(engine: str) -> str | None:
    """Find the LaTeX engine executable."""
    path = shutil.which(engine)
    if path:
        return path
    path = shutil.which(f"{engine}.exe")
    return path


def toolchain_available(engine_cmd: str) -> bool:
    """Cheap ``<engine> --version`` probe."""
    try:
        proc = subprocess.run(
            [engine_cmd, "--version"],
            capture_output=True,
            text=True,
            timeout=_PROBE_TIMEOUT,
            stdin=subprocess.DEVNULL,
        )
    except (OSError, subprocess.TimeoutExpired) as e:
        logger.debug("Toolchain probe for %s failed: %s", engine_cmd, e)
        return False
    return proc.returncode == 0


# ---------------------------------------------------------------------------
# Log parsing
# ---------------------------------------------------------------------------

_ERROR_RE = re.compile(r"^!\s*(.*)", re.MULTILINE)
_LINE_RE = re.compile(r"^l\.(\d+)\s*(.*)", re.MULTILINE)
_WARNING_RE = re.compile(
    r"(?:LaTeX|Package|Class)\s+(?:\w+\s+)?Warning[:\s]*(.*?)(?:\n(?!\s)|$)",
    re.MULTILINE | re.DOTALL,
)


def _extract_context(tex_content: str, line_num: int, window: int = 5) -> str:
    """Extract +-window lines around a line number."""
    lines = tex_content.split("\n")
    start = max(0, line_num - 1 - window)
    end = min(len(lines), line_num + window)
    context_lines: list[str] = []
    for i in range(start, end):
        marker = ">>>" if i == line_num - 1 else "   "
        context_lines.append(f"{marker} {i + 1:4d} | {lines[i]}")
    return "\n".join(context_lines)


def parse_log(
    log_path: str | Path,
    tex_content: str = "",
    *,
    tex_name: str = "cv.tex",
) -> tuple[list[CompilationWarning], list[CompilationWarning]]:
    """Parse a LaTeX .log file for errors and warnings."""
    log = Path(log_path)
    if not log.exists():
        return [], []

    # pdflatex logs are not guaranteed to be valid UTF-8
    log_text = log.read_text(encoding="latin-1")
    errors: list[CompilationWarning] = []
    warnings: list[CompilationWarning] = []

    for em in _ERROR_RE.finditer(log_text):
        line_num = None
        context = ""
        after_error = log_text[em.end():em.end() + 500]
        line_match = _LINE_RE.search(after_error)
        if line_match:
            line_num = int(line_match.group(1))
        if line_num and tex_content:
            context = _extract_context(tex_content, line_num)

        errors.append(CompilationWarning(
            file=tex_name,
            line=line_num,
            message=em.group(1).strip(),
            severity=Severity.ERROR,
            context=context,
        ))

    for wm in _WARNING_RE.finditer(log_text):
        msg = wm.group(1).strip().replace("\n", " ")
        if msg:
            warnings.append(CompilationWarning(file=tex_name, message=msg, severity=Severity.WARNING))

    return errors, warnings


def format_diagnostics(errors: list[CompilationWarning], output_tail: str = "") -> str:
    """Format compilation errors with source context for a human reader."""
    parts: list[str] = []
    for i, err in enumerate(errors, 1):
        parts.append(f"Error {i}: {err.message}")
        if err.line:
            parts.append(f"  Line: {err.line}")
        if err.context:
            parts.append(f"  Context:\n{err.context}")
        parts.append("")

    if output_tail:
        parts.append("Compiler output (tail):")
        parts.append(output_tail)

    return "\n".join(parts).strip() or "No diagnostics available."


# ---------------------------------------------------------------------------
# Workspace
# ---------------------------------------------------------------------------


@dataclass
class Workspace:
    """A scratch directory owned by exactly one compilation."""

    root: Path
    main_name: str = "cv"

    @classmethod
    def allocate(cls, parent: Path, main_name: str, invocation_id: str) -> Workspace:
        parent.mkdir(parents=True, exist_ok=True)
        root = parent / f"{main_name}-{invocation_id}"
        root.mkdir(exist_ok=False)
        logger.debug("Allocated workspace %s", root)
        return cls(root=root, main_name=main_name)

    @property
    def tex_path(self) -> Path:
        return self.root / f"{self.main_name}.tex"

    @property
    def pdf_path(self) -> Path:
        return self.root / f"{self.main_name}.pdf"

    @property
    def log_path(self) -> Path:
        return self.root / f"{self.main_name}.log"

    def write_source(self, source: str) -> Path:
        self.tex_path.write_text(source, encoding="utf-8")
        return self.tex_path

    def stage_photo(self, photo: PhotoRef) -> Path:
        dest = self.root / photo.file_name
        shutil.copyfile(photo.path, dest)
        return dest

    def cleanup(self, keep: set[str]) -> list[str]:
        """Delete every entry except the names in ``keep``; return what was removed."""
        removed: list[str] = []
        for entry in sorted(self.root.iterdir()):
            if entry.name in keep:
                continue
            if entry.is_dir() and not entry.is_symlink():
                shutil.rmtree(entry)
            else:
                entry.unlink()
            removed.append(entry.name)
        if removed:
            logger.debug("Removed %d auxiliary file(s) from %s: %s", len(removed), self.root, removed)
        return removed

    def discard(self) -> None:
        shutil.rmtree(self.root, ignore_errors=True)


def _is_pdf(path: Path) -> bool:
    if not path.exists() or path.stat().st_size == 0:
        return False
    with open(path, "rb") as f:
        return f.read(5) == b"%PDF-"


# ---------------------------------------------------------------------------
# Strategies
# ---------------------------------------------------------------------------


class CompilerStrategy(Protocol):
    """Turns the source already written into a workspace into a PDF."""

    renderer: RendererKind

    def run(
        self,
        workspace: Workspace,
        source: str,
        cancel_event: threading.Event | None = None,
    ) -> CompilationResult | CompilationError | CancelledError: ...


@dataclass
class _PassOutcome:
    returncode: int | None
    output: str
    timed_out: bool = False
    cancelled: bool = False


def _terminate(proc: subprocess.Popen) -> None:
    proc.terminate()
    try:
        proc.wait(timeout=5)
    except subprocess.TimeoutExpired:
        proc.kill()
        proc.wait()


class PdflatexStrategy:
    """Primary toolchain: repeated pdflatex passes in the workspace."""

    renderer = RendererKind.PDFLATEX

    def __init__(
        self,
        engine_cmd: str,
        *,
        passes: int = 2,
        timeout: int = 120,
        max_output_bytes: int = 10 * 1024 * 1024,
    ) -> None:
        self.engine_cmd = engine_cmd
        self.passes = max(1, passes)
        self.timeout = timeout
        self.max_output_bytes = max_output_bytes

    def _run_pass(
        self,
        workspace: Workspace,
        cancel_event: threading.Event | None,
    ) -> _PassOutcome:
        """Run one pdflatex pass, polling for cancellation and the deadline.

        ``communicate()`` buffers the whole compiler output in memory; only the
        last ``max_output_bytes`` are kept afterwards. pdflatex writes its full
        transcript to the .log file, so its console output stays small.
        """
        cmd = [
            self.engine_cmd,
            "-interaction=nonstopmode",
            "-halt-on-error",
            workspace.tex_path.name,
        ]
        proc = subprocess.Popen(
            cmd,
            cwd=str(workspace.root),
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
        )
        deadline = time.monotonic() + self.timeout
        while True:
            try:
                raw, _ = proc.communicate(timeout=_POLL_INTERVAL)
                break
            except subprocess.TimeoutExpired:
                if cancel_event is not None and cancel_event.is_set():
                    _terminate(proc)
                    return _PassOutcome(returncode=None, output="", cancelled=True)
                if time.monotonic() >= deadline:
                    _terminate(proc)
                    return _PassOutcome(returncode=None, output="", timed_out=True)

        raw = raw or b""
        if len(raw) > self.max_output_bytes:
            raw = raw[-self.max_output_bytes:]
        return _PassOutcome(returncode=proc.returncode, output=raw.decode("utf-8", errors="replace"))

    def run(
        self,
        workspace: Workspace,
        source: str,
        cancel_event: threading.Event | None = None,
    ) -> CompilationResult | CompilationError | CancelledError:
        outcome: _PassOutcome | None = None
        for pass_num in range(1, self.passes + 1):
            logger.info("pdflatex pass %d/%d in %s", pass_num, self.passes, workspace.root)
            outcome = self._run_pass(workspace, cancel_event)
            if outcome.cancelled:
                return CancelledError(
                    stage=PipelineStage.COMPILATION,
                    message=f"Compilation cancelled during pass {pass_num}",
                )
            if outcome.timed_out:
                return CompilationError(
                    message=f"Compilation timed out after {self.timeout}s (pass {pass_num})",
                    diagnostic_text=f"pdflatex did not finish within {self.timeout}s",
                    retained_source_path=str(workspace.tex_path),
                )
            if outcome.returncode != 0:
                break

        assert outcome is not None
        errors, warnings = parse_log(workspace.log_path, source, tex_name=workspace.tex_path.name)

        if outcome.returncode != 0 or not _is_pdf(workspace.pdf_path):
            if not errors:
                errors.append(CompilationWarning(
                    message="PDF file was not generated" if outcome.returncode == 0
                    else f"pdflatex exited with status {outcome.returncode}",
                    severity=Severity.ERROR,
                ))
            logger.error(
                "pdflatex failed: returncode=%s, errors=%d, source kept at %s",
                outcome.returncode, len(errors), workspace.tex_path,
            )
            return CompilationError(
                message=errors[0].message,
                diagnostic_text=format_diagnostics(errors, outcome.output[-2000:]),
                retained_source_path=str(workspace.tex_path),
                errors=errors,
            )

        page_count = count_pages(workspace.pdf_path, workspace.log_path)
        workspace.cleanup({workspace.tex_path.name, workspace.pdf_path.name})
        logger.info("pdflatex finished: %s (%s page(s))", workspace.pdf_path, page_count or "?")
        return CompilationResult(
            pdf_path=str(workspace.pdf_path),
            source_path=str(workspace.tex_path),
            workspace=str(workspace.root),
            renderer=self.renderer,
            warnings=warnings,
            page_count=page_count,
        )


class FallbackRendererStrategy:
    """Secondary renderer used only when pdflatex is absent."""

    renderer = RendererKind.FALLBACK

    def __init__(self, render: Callable[..., Path] = render_pdf, *, title: str = "") -> None:
        self.render = render
        self.title = title

    def run(
        self,
        workspace: Workspace,
        source: str,
        cancel_event: threading.Event | None = None,
    ) -> CompilationResult | CompilationError | CancelledError:
        if cancel_event is not None and cancel_event.is_set():
            return CancelledError(stage=PipelineStage.COMPILATION, message="Compilation cancelled")

        try:
            self.render(source, workspace.pdf_path, title=self.title)
        except Exception as e:
            logger.error("Fallback renderer failed: %s", e)
            return CompilationError(
                message=f"Fallback renderer failed: {e}",
                diagnostic_text=f"The in-process renderer could not render the source: {e}",
                retained_source_path=str(workspace.tex_path),
            )
        if not _is_pdf(workspace.pdf_path):
            return CompilationError(
                message="Fallback renderer did not produce a PDF",
                retained_source_path=str(workspace.tex_path),
            )

        workspace.cleanup({workspace.tex_path.name, workspace.pdf_path.name})
        logger.warning("Rendered %s with the fallback renderer (reduced fidelity)", workspace.pdf_path)
        return CompilationResult(
            pdf_path=str(workspace.pdf_path),
            source_path=str(workspace.tex_path),
            workspace=str(workspace.root),
            renderer=self.renderer,
            degraded=True,
            page_count=count_pages(workspace.pdf_path),
            log_excerpt="pdflatex not available; rendered with the in-process fallback",
        )


def select_strategy(config: ProjectConfig) -> CompilerStrategy | None:
    """Pick the strategy for one invocation; ``None`` if nothing can render."""
    engine_cmd = _find_engine(config.engine)
    if engine_cmd and toolchain_available(engine_cmd):
        return PdflatexStrategy(
            engine_cmd,
            passes=config.compile_passes,
            timeout=config.compile_timeout,
            max_output_bytes=config.max_output_bytes,
        )
    if config.fallback_enabled:
        logger.warning("%s not found on PATH, falling back to the in-process renderer", config.engine)
        return FallbackRendererStrategy(title=config.project_name)
    return None


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


class CompilationEngine:
    """Compiles LaTeX source into a PDF inside a fresh workspace per call."""

    def __init__(
        self,
        config: ProjectConfig,
        *,
        output_dir: str | Path | None = None,
        strategy_selector: Callable[[ProjectConfig], CompilerStrategy | None] = select_strategy,
    ) -> None:
        self.config = config
        self.output_dir = Path(output_dir if output_dir is not None else config.output_dir)
        self.strategy_selector = strategy_selector

    def _persist_source(self, source: str, invocation_id: str, workspace: Workspace | None) -> str | None:
        """Make sure the source exists somewhere a human can find it."""
        candidates: list[Path] = []
        if workspace is not None:
            candidates.append(workspace.tex_path)
        candidates.append(self.output_dir / f"{self.config.main_name}-{invocation_id}.tex")
        candidates.append(Path(tempfile.gettempdir()) / f"{self.config.main_name}-{invocation_id}.tex")

        for path in candidates:
            try:
                if path.exists() and path.read_text(encoding="utf-8") == source:
                    return str(path)
                path.parent.mkdir(parents=True, exist_ok=True)
                path.write_text(source, encoding="utf-8")
            except OSError as e:
                logger.warning("Could not persist LaTeX source to %s: %s", path, e)
                continue
            logger.info("LaTeX source saved for manual compilation: %s", path)
            return str(path)
        return None

    def compile(
        self,
        source: str,
        photo: PhotoRef | None = None,
        cancel_event: threading.Event | None = None,
    ) -> CompileOutcome:
        invocation_id = uuid.uuid4().hex
        try:
            workspace = Workspace.allocate(self.output_dir, self.config.main_name, invocation_id)
        except OSError as e:
            return WorkspaceError(
                message=f"Could not create a workspace in {self.output_dir}: {e}",
                path=str(self.output_dir),
                retained_source_path=self._persist_source(source, invocation_id, None),
            )

        try:
            workspace.write_source(source)
            if photo is not None:
                workspace.stage_photo(photo)

            if cancel_event is not None and cancel_event.is_set():
                outcome: CompileOutcome = CancelledError(
                    stage=PipelineStage.COMPILATION, message="Compilation cancelled before start",
                )
            else:
                strategy = self.strategy_selector(self.config)
                if strategy is None:
                    outcome = CompilationError(
                        message=f"{self.config.engine} not found on PATH and the fallback renderer is disabled",
                        diagnostic_text="Install a TeX distribution or enable fallback_enabled.",
                        retained_source_path=str(workspace.tex_path),
                    )
                else:
                    outcome = strategy.run(workspace, source, cancel_event)
        except OSError as e:
            logger.error("Filesystem error while compiling in %s: %s", workspace.root, e)
            return WorkspaceError(
                message=f"Filesystem error during compilation: {e}",
                path=str(getattr(e, "filename", None) or workspace.root),
                retained_source_path=self._persist_source(source, invocation_id, workspace),
            )
        except Exception:
            self._persist_source(source, invocation_id, workspace)
            raise

        if isinstance(outcome, CancelledError):
            workspace.discard()
            logger.info("Compilation cancelled, workspace %s discarded", workspace.root)
        return outcome
