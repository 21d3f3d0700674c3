"""Tests for logging_config.py — log levels and progress callbacks."""

from __future__ import annotations

import logging

from cv_document_generator.logging_config import RichCallbacks, SilentCallbacks, setup_logging


class TestSetupLogging:
    def test_verbose(self):
        setup_logging(verbose=True)
        assert logging.getLogger().level == logging.DEBUG
        assert logging.getLogger("autogen").level == logging.DEBUG

    def test_quiet(self):
        setup_logging(quiet=True)
        assert logging.getLogger().level == logging.ERROR
        assert logging.getLogger("httpx").level == logging.WARNING

    def test_default(self):
        setup_logging()
        assert logging.getLogger().level == logging.INFO
        assert logging.getLogger("openai").level == logging.WARNING


class TestCallbacks:
    def test_silent_callbacks_log(self, caplog):
        callbacks = SilentCallbacks()
        with caplog.at_level(logging.DEBUG, logger="cvgen.progress"):
            callbacks.on_stage_start("SYNTHESIS", "Generating LaTeX source")
            callbacks.on_warning("degraded output")
            callbacks.on_error("compilation failed")
        messages = [r.getMessage() for r in caplog.records]
        assert "SYNTHESIS started: Generating LaTeX source" in messages
        assert "degraded output" in messages
        assert any(r.levelno == logging.ERROR for r in caplog.records)

    def test_rich_callbacks_print(self, capsys):
        callbacks = RichCallbacks()
        callbacks.on_stage_end("COMPILATION", False)
        callbacks.on_warning("pdflatex unavailable")
        out = capsys.readouterr().out
        assert "COMPILATION" in out
        assert "FAILED" in out
        assert "pdflatex unavailable" in out
