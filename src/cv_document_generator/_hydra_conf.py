"""Hydra structured config dataclasses.

These mirror the Pydantic ``ProjectConfig`` for Hydra schema validation.
At runtime the Hydra DictConfig is converted to ``ProjectConfig`` via
``cli._to_project_config()``.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from hydra.core.config_store import ConfigStore


@dataclass
class AzureConf:
    api_key: str = "${oc.env:AZURE_OPENAI_API_KEY,''}"
    api_version: str = "${oc.env:AZURE_OPENAI_API_VERSION,''}"
    endpoint: str = "${oc.env:AZURE_OPENAI_ENDPOINT,''}"


@dataclass
class ModelEndpointOverrideConf:
    endpoint: str = ""
    api_key: str | None = None
    api_version: str | None = None
    api_type: str | None = None


@dataclass
class ModelConf:
    default: str = "gpt-4o"
    extractor: str | None = None
    synthesizer: str | None = None
    overrides: dict[str, ModelEndpointOverrideConf] = field(default_factory=dict)


@dataclass
class CvgenConf:
    # --- CLI-only fields ---
    mode: str = "run"  # run | generate | extract | synthesize | compile
    input_file: str | None = None  # raw CV for run / extract
    profile_file: str | None = None  # profile YAML/JSON for generate / synthesize
    source_file: str | None = None  # .tex for compile
    config_file: str | None = None  # project YAML replacing the settings below
    photo: str | None = None
    verbose: bool = False
    quiet: bool = False

    # --- ProjectConfig fields ---
    project_name: str = "cv-document"
    output_dir: str = "output/"
    language: str = "en"
    max_pages: int = 2

    # Compilation
    engine: str = "pdflatex"
    main_name: str = "cv"
    compile_passes: int = 2
    compile_timeout: int = 120
    max_output_bytes: int = 10 * 1024 * 1024
    fallback_enabled: bool = True

    # Completion service
    azure: AzureConf = field(default_factory=AzureConf)
    models: ModelConf = field(default_factory=ModelConf)
    timeout: int = 60
    seed: int = 42


# Keys in CvgenConf that are NOT part of ProjectConfig.
CLI_ONLY_KEYS = frozenset({
    "mode", "input_file", "profile_file", "source_file", "config_file", "photo", "verbose", "quiet",
})


def register_configs() -> None:
    """Register the structured config schema with Hydra's ConfigStore.

    Two entries are stored:
    - ``cvgen_schema`` — referenced by user config files via ``defaults: [cvgen_schema]``
    - ``config`` — fallback when no ``--config-dir`` is provided
    """
    cs = ConfigStore.instance()
    cs.store(name="cvgen_schema", node=CvgenConf)
    cs.store(name="config", node=CvgenConf)
