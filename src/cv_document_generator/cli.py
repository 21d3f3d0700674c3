"""CLI entry point using Hydra.

Usage examples:
  cvgen mode=run input_file=cv.pdf photo=me.jpg
  cvgen mode=generate profile_file=profile.yaml language=fr
  cvgen mode=extract input_file=cv.txt
  cvgen mode=synthesize profile_file=profile.json
  cvgen mode=compile source_file=output/cv.tex
  cvgen mode=generate profile_file=profile.yaml config_file=cvgen.yaml
  cvgen --config-dir my_conf --config-name config mode=run input_file=cv.pdf
"""

from __future__ import annotations

import sys
import warnings
from pathlib import Path
from typing import Any

import hydra
from omegaconf import DictConfig, OmegaConf

from ._hydra_conf import CLI_ONLY_KEYS, register_configs
from .config import apply_azure_fallbacks, load_config, load_profile_file
from .logging_config import RichCallbacks, console, setup_logging
from .models import (
    CompilationError,
    CompilationResult,
    PhotoRef,
    PipelineFailure,
    ProjectConfig,
    ServiceError,
    SourceMaterial,
    StructuredProfile,
    WorkspaceError,
)

register_configs()

# Suppress Hydra 1.1 deprecation warning about automatic schema matching.
warnings.filterwarnings("ignore", category=UserWarning, message=r"(?s).*ConfigStore schema.*")

# ---------------------------------------------------------------------------
# Hydra DictConfig -> Pydantic ProjectConfig bridge
# ---------------------------------------------------------------------------


def _to_project_config(cfg: DictConfig) -> ProjectConfig:
    """Convert a Hydra DictConfig to a Pydantic ProjectConfig.

    With ``config_file=<path>`` the project settings come from that YAML file
    (``${ENV_VAR}`` references resolved) instead of the Hydra config.
    """
    config_file = cfg.get("config_file")
    if config_file:
        return load_config(_require(cfg, "config_file"))
    container: dict[str, Any] = OmegaConf.to_container(cfg, resolve=True)  # type: ignore[assignment]
    for key in CLI_ONLY_KEYS:
        container.pop(key, None)
    config = ProjectConfig.model_validate(container)
    return apply_azure_fallbacks(config)


def _require(cfg: DictConfig, key: str) -> Path:
    value = cfg.get(key)
    if not value:
        console.print(f"[red]Mode {cfg.get('mode')!r} requires {key}=<path>[/]")
        sys.exit(1)
    path = Path(hydra.utils.to_absolute_path(str(value)))
    if not path.exists():
        console.print(f"[red]File not found: {path}[/]")
        sys.exit(1)
    return path


def _photo(cfg: DictConfig) -> PhotoRef | None:
    return PhotoRef.from_path(_require(cfg, "photo")) if cfg.get("photo") else None


def _build_pipeline(cfg: DictConfig):
    from .pipeline import Pipeline

    config = _to_project_config(cfg)
    return Pipeline(config, config_dir=Path(hydra.utils.get_original_cwd()), callbacks=RichCallbacks())


# ---------------------------------------------------------------------------
# Result reporting
# ---------------------------------------------------------------------------


def _report_failure(failure: PipelineFailure) -> None:
    console.print(f"\n[bold red]{failure.stage.value.capitalize()} failed ({failure.kind.value}).[/]")
    console.print(f"  [red]{failure.message}[/]")
    if isinstance(failure, ServiceError):
        console.print(f"  Service error: {failure.subkind.value}")
    elif isinstance(failure, CompilationError):
        console.print(f"\n{failure.diagnostic_text}\n")
        console.print(f"  LaTeX source kept at: [bold]{failure.retained_source_path}[/]")
        console.print(f"  Retry manually with: pdflatex {Path(failure.retained_source_path).name}")
    elif isinstance(failure, WorkspaceError) and failure.retained_source_path:
        console.print(f"  LaTeX source kept at: [bold]{failure.retained_source_path}[/]")


def _report_result(outcome: Any) -> None:
    if isinstance(outcome, PipelineFailure):
        _report_failure(outcome)
        sys.exit(1)
    assert isinstance(outcome, CompilationResult)
    console.print("\n[bold green]CV generated successfully![/]")
    console.print(f"  PDF: {outcome.pdf_path}")
    console.print(f"  LaTeX: {outcome.source_path}")
    console.print(f"  Pages: {outcome.page_count or 'unknown'}")
    if outcome.degraded:
        console.print("  [yellow]Rendered without pdflatex: layout fidelity is reduced.[/]")


# ---------------------------------------------------------------------------
# Mode handlers
# ---------------------------------------------------------------------------


def _run_mode(cfg: DictConfig) -> None:
    source = SourceMaterial.from_file(_require(cfg, "input_file"))
    pipeline = _build_pipeline(cfg)
    _report_result(pipeline.generate_from_raw(source, _photo(cfg)))


def _generate_mode(cfg: DictConfig) -> None:
    profile = load_profile_file(_require(cfg, "profile_file"))
    pipeline = _build_pipeline(cfg)
    _report_result(pipeline.generate(profile, _photo(cfg)))


def _extract_mode(cfg: DictConfig) -> None:
    source = SourceMaterial.from_file(_require(cfg, "input_file"))
    pipeline = _build_pipeline(cfg)
    profile = pipeline.extract(source)
    if isinstance(profile, PipelineFailure):
        _report_failure(profile)
        sys.exit(1)
    assert isinstance(profile, StructuredProfile)

    pipeline.output_dir.mkdir(parents=True, exist_ok=True)
    out = pipeline.output_dir / "profile.json"
    out.write_text(profile.model_dump_json(by_alias=True, indent=2), encoding="utf-8")
    console.print(f"[green]Profile written to {out}[/]")
    console.print(f"  Experiences: {len(profile.experiences)}")
    console.print(f"  Education: {len(profile.education)}")
    console.print(f"  Projects: {len(profile.projects)}")
    console.print(f"  Skills: {', '.join(profile.skills) or 'none'}")


def _synthesize_mode(cfg: DictConfig) -> None:
    profile = load_profile_file(_require(cfg, "profile_file"))
    pipeline = _build_pipeline(cfg)
    source = pipeline.synthesize(profile, _photo(cfg))
    if isinstance(source, PipelineFailure):
        _report_failure(source)
        sys.exit(1)

    pipeline.output_dir.mkdir(parents=True, exist_ok=True)
    out = pipeline.output_dir / f"{pipeline.config.main_name}.tex"
    out.write_text(source, encoding="utf-8")
    console.print(f"[green]LaTeX source written to {out}[/]")


def _compile_mode(cfg: DictConfig) -> None:
    from .tools.compiler import CompilationEngine

    source_path = _require(cfg, "source_file")
    config = _to_project_config(cfg)
    output_dir = Path(hydra.utils.get_original_cwd()) / config.output_dir
    engine = CompilationEngine(config, output_dir=output_dir)
    _report_result(engine.compile(source_path.read_text(encoding="utf-8"), _photo(cfg)))


_MODE_DISPATCH: dict[str, Any] = {
    "run": _run_mode,
    "generate": _generate_mode,
    "extract": _extract_mode,
    "synthesize": _synthesize_mode,
    "compile": _compile_mode,
}


# ---------------------------------------------------------------------------
# Hydra entry point
# ---------------------------------------------------------------------------


@hydra.main(config_path=None, config_name="config", version_base=None)
def hydra_entry(cfg: DictConfig) -> None:
    """Hydra-managed CLI entry point."""
    setup_logging(verbose=cfg.get("verbose", False), quiet=cfg.get("quiet", False))

    mode = cfg.get("mode", "run")
    handler = _MODE_DISPATCH.get(mode)
    if handler is None:
        console.print(f"[red]Unknown mode: {mode!r}. Choose from: {', '.join(_MODE_DISPATCH)}[/]")
        sys.exit(1)

    handler(cfg)


def main() -> None:
    """Package entry point (``[project.scripts]`` target)."""
    hydra_entry()  # pylint: disable=no-value-for-parameter
