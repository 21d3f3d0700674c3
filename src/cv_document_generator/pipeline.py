"""Pipeline — sequential orchestration for CV document generation.

Stage 1: EXTRACTION   — raw CV → StructuredProfile (optional)
Stage 2: SYNTHESIS    — StructuredProfile (+ photo) → LaTeX source
Stage 3: COMPILATION  — LaTeX source → PDF in a per-invocation workspace

Each stage returns either its value or a typed failure; the first failure
ends the run and is returned to the caller unchanged. Nothing is retried.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from pathlib import Path
from typing import Any, Union

from .agents.latex_synthesizer import LatexSynthesizer, make_synthesizer_client
from .agents.profile_extractor import ProfileExtractor, make_extractor_client
from .logging_config import PipelineCallbacks, RichCallbacks
from .models import (
    AnyFailure,
    CancelledError,
    CompilationResult,
    GenerationRequest,
    PhotoRef,
    PipelineFailure,
    PipelineStage,
    ProjectConfig,
    SourceMaterial,
    StructuredProfile,
    WorkspaceError,
    normalize_profile,
)
from .tools.compiler import CompilationEngine, CompileOutcome
from .tools.completion import CompletionClient

logger = logging.getLogger(__name__)

GenerateOutcome = Union[CompilationResult, AnyFailure]

_POLL_INTERVAL = 0.1


def _cancelled(cancel_event: threading.Event | None, stage: PipelineStage) -> CancelledError | None:
    if cancel_event is not None and cancel_event.is_set():
        return CancelledError(stage=stage, message=f"Cancelled before {stage.value}")
    return None


def _call_cancellable(
    stage: PipelineStage,
    cancel_event: threading.Event | None,
    fn: Any,
    *args: Any,
) -> Any:
    """Run a completion-service call, returning early if ``cancel_event`` fires.

    The call runs on a worker thread; once cancelled its reply is discarded
    and the thread ends when the request returns or hits the client timeout.
    """
    if cancel_event is None:
        return fn(*args)
    pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"cvgen-{stage.value}")
    future = pool.submit(fn, *args)
    try:
        while True:
            try:
                return future.result(timeout=_POLL_INTERVAL)
            except FutureTimeout:
                if cancel_event.is_set():
                    logger.info("Abandoning in-flight %s request", stage.value)
                    return CancelledError(stage=stage, message=f"Cancelled during {stage.value}")
    finally:
        pool.shutdown(wait=False)


class Pipeline:
    """Orchestrates extraction, synthesis and compilation for one config.

    The completion clients and the compilation engine are injected; when
    omitted they are built from ``config``. A ``Pipeline`` holds no
    per-invocation state, so one instance can serve concurrent calls.
    """

    def __init__(
        self,
        config: ProjectConfig,
        *,
        config_dir: Path | None = None,
        extractor_client: CompletionClient | None = None,
        synthesizer_client: CompletionClient | None = None,
        engine: CompilationEngine | None = None,
        callbacks: PipelineCallbacks | None = None,
    ) -> None:
        self.config = config
        self.config_dir = config_dir or Path(".")
        self.callbacks = callbacks or RichCallbacks()

        self.output_dir = self.config_dir / config.output_dir

        self.extractor = ProfileExtractor(extractor_client or make_extractor_client(config))
        self.synthesizer = LatexSynthesizer(
            synthesizer_client or make_synthesizer_client(config),
            language=config.language,
            max_pages=config.max_pages,
        )
        self.engine = engine or CompilationEngine(config, output_dir=self.output_dir)

    # -----------------------------------------------------------------------
    # Single stages
    # -----------------------------------------------------------------------

    def _finish(self, stage: PipelineStage, outcome: Any) -> None:
        failed = isinstance(outcome, PipelineFailure)
        if failed:
            self.callbacks.on_error(outcome.message)
        self.callbacks.on_stage_end(stage.value.upper(), not failed)

    def extract(
        self,
        source: SourceMaterial,
        cancel_event: threading.Event | None = None,
    ) -> StructuredProfile | AnyFailure:
        """Stage 1: extract a normalized profile from raw material."""
        self.callbacks.on_stage_start("EXTRACTION", "Extracting profile from source material")
        outcome = _call_cancellable(PipelineStage.EXTRACTION, cancel_event, self.extractor.extract, source)
        self._finish(PipelineStage.EXTRACTION, outcome)
        return outcome

    def synthesize(
        self,
        profile: StructuredProfile | dict[str, Any],
        photo: PhotoRef | None = None,
        cancel_event: threading.Event | None = None,
    ) -> str | AnyFailure:
        """Stage 2: write LaTeX source for a profile from either origin."""
        profile = normalize_profile(profile)
        self.callbacks.on_stage_start("SYNTHESIS", "Generating LaTeX source")
        if photo is not None and not photo.path.is_file():
            outcome: str | AnyFailure = WorkspaceError(
                stage=PipelineStage.SYNTHESIS,
                message=f"Photo not found: {photo.path}",
                path=str(photo.path),
            )
        else:
            outcome = _call_cancellable(
                PipelineStage.SYNTHESIS, cancel_event, self.synthesizer.synthesize, profile, photo
            )
        self._finish(PipelineStage.SYNTHESIS, outcome)
        return outcome

    def compile(
        self,
        source: str,
        photo: PhotoRef | None = None,
        cancel_event: threading.Event | None = None,
    ) -> CompileOutcome:
        """Stage 3: compile LaTeX source into a PDF."""
        self.callbacks.on_stage_start("COMPILATION", "Compiling LaTeX to PDF")
        outcome = self.engine.compile(source, photo, cancel_event)
        if isinstance(outcome, CompilationResult) and outcome.degraded:
            self.callbacks.on_warning(
                "pdflatex unavailable: the PDF was produced by the fallback renderer (reduced fidelity)"
            )
        self._finish(PipelineStage.COMPILATION, outcome)
        return outcome

    # -----------------------------------------------------------------------
    # Full runs
    # -----------------------------------------------------------------------

    def generate(
        self,
        profile: StructuredProfile | dict[str, Any],
        photo: PhotoRef | None = None,
        cancel_event: threading.Event | None = None,
    ) -> GenerateOutcome:
        """Synthesis then compilation for an existing profile."""
        cancelled = _cancelled(cancel_event, PipelineStage.SYNTHESIS)
        if cancelled:
            return cancelled

        source = self.synthesize(profile, photo, cancel_event)
        if isinstance(source, PipelineFailure):
            return source

        cancelled = _cancelled(cancel_event, PipelineStage.COMPILATION)
        if cancelled:
            return cancelled

        result = self.compile(source, photo, cancel_event)
        if isinstance(result, CompilationResult):
            logger.info("Generated %s (renderer=%s)", result.pdf_path, result.renderer.value)
        return result

    def generate_request(
        self,
        request: GenerationRequest,
        cancel_event: threading.Event | None = None,
    ) -> GenerateOutcome:
        return self.generate(request.profile, request.photo, cancel_event)

    def generate_from_raw(
        self,
        source: SourceMaterial,
        photo: PhotoRef | None = None,
        cancel_event: threading.Event | None = None,
    ) -> GenerateOutcome:
        """Extraction, then the same path as :meth:`generate`."""
        cancelled = _cancelled(cancel_event, PipelineStage.EXTRACTION)
        if cancelled:
            return cancelled

        profile = self.extract(source, cancel_event)
        if isinstance(profile, PipelineFailure):
            return profile

        return self.generate(profile, photo, cancel_event)
