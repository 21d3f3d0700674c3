"""Tests for the Hydra-based CLI (cli.py)."""

from __future__ import annotations

from pathlib import Path

import pytest
from hydra import compose, initialize_config_dir
from omegaconf import OmegaConf

import cv_document_generator
from cv_document_generator._hydra_conf import CLI_ONLY_KEYS, CvgenConf, register_configs
from cv_document_generator.cli import _MODE_DISPATCH, _report_result, _to_project_config
from cv_document_generator.models import CompilationError, ProjectConfig

CONF_DIR = str(Path(cv_document_generator.__file__).resolve().parent / "conf")


class TestDefaultConfig:
    """Verify the package's conf/config.yaml loads correctly."""

    def test_default_config_loads(self):
        register_configs()
        with initialize_config_dir(config_dir=CONF_DIR, version_base=None):
            cfg = compose(config_name="config")
            assert cfg.mode == "run"
            assert cfg.engine == "pdflatex"
            assert cfg.fallback_enabled is True
            assert cfg.photo is None

    def test_overrides(self):
        register_configs()
        with initialize_config_dir(config_dir=CONF_DIR, version_base=None):
            cfg = compose(config_name="config", overrides=["mode=generate", "language=fr", "max_pages=1"])
            assert cfg.mode == "generate"
            pc = _to_project_config(cfg)
            assert pc.language == "fr"
            assert pc.max_pages == 1

    def test_default_config_converts_to_project_config(self, monkeypatch):
        monkeypatch.setenv("AZURE_OPENAI_API_KEY", "test")
        monkeypatch.setenv("AZURE_OPENAI_API_VERSION", "2024-01-01")
        monkeypatch.setenv("AZURE_OPENAI_ENDPOINT", "https://test.openai.azure.com/")

        register_configs()
        with initialize_config_dir(config_dir=CONF_DIR, version_base=None):
            cfg = compose(config_name="config")
            pc = _to_project_config(cfg)
            assert isinstance(pc, ProjectConfig)
            assert pc.project_name == "cv-document"
            assert pc.azure.api_key == "test"
            assert pc.azure.endpoint == "https://test.openai.azure.com"


class TestModeDispatch:
    def test_all_modes_present(self):
        assert set(_MODE_DISPATCH.keys()) == {"run", "generate", "extract", "synthesize", "compile"}

    def test_all_modes_are_callable(self):
        for name, handler in _MODE_DISPATCH.items():
            assert callable(handler), f"Handler for mode {name!r} is not callable"


class TestCliOnlyKeys:
    def test_cli_keys_not_in_project_config(self):
        pc_fields = set(ProjectConfig.model_fields.keys())
        for key in CLI_ONLY_KEYS:
            assert key not in pc_fields, f"CLI-only key {key!r} found in ProjectConfig"

    def test_cli_keys_in_conf(self):
        conf_fields = set(CvgenConf.__dataclass_fields__)
        for key in CLI_ONLY_KEYS:
            assert key in conf_fields, f"CLI-only key {key!r} not found in CvgenConf"

    def test_project_fields_mirrored(self):
        conf_fields = set(CvgenConf.__dataclass_fields__) - CLI_ONLY_KEYS
        assert conf_fields == set(ProjectConfig.model_fields.keys())

    def test_minimal_dictconfig_converts(self):
        cfg = OmegaConf.create({"mode": "compile", "source_file": "cv.tex", "engine": "lualatex"})
        pc = _to_project_config(cfg)
        assert pc.engine == "lualatex"


class TestReportResult:
    def test_failure_exits_nonzero(self):
        failure = CompilationError(message="Undefined control sequence", retained_source_path="/tmp/cv.tex")
        with pytest.raises(SystemExit) as exc_info:
            _report_result(failure)
        assert exc_info.value.code == 1


class TestConfigFile:
    def test_config_file_replaces_project_settings(self, tmp_path: Path, monkeypatch):
        monkeypatch.setenv("CV_KEY", "from-env")
        path = tmp_path / "cvgen.yaml"
        path.write_text("language: fr\nmax_pages: 1\nazure:\n  api_key: ${CV_KEY}\n", encoding="utf-8")
        cfg = OmegaConf.create({"mode": "generate", "config_file": str(path), "language": "en"})

        pc = _to_project_config(cfg)

        assert pc.language == "fr"
        assert pc.max_pages == 1
        assert pc.azure.api_key == "from-env"

    def test_missing_config_file_exits(self, tmp_path: Path):
        cfg = OmegaConf.create({"mode": "generate", "config_file": str(tmp_path / "missing.yaml")})
        with pytest.raises(SystemExit) as exc_info:
            _to_project_config(cfg)
        assert exc_info.value.code == 1
