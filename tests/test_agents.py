"""Tests for the extraction and synthesis adapters with a fake completion client."""

from __future__ import annotations

import json
from pathlib import Path

import httpx
import openai
import pytest

from conftest import CV_LATEX, FakeCompletionClient
from cv_document_generator.agents.latex_synthesizer import (
    SECTION_HEADINGS,
    LatexSynthesizer,
    build_synthesis_prompt,
)
from cv_document_generator.agents.profile_extractor import (
    EXTRACTION_PROMPT,
    ProfileExtractor,
    _parse_profile_json,
)
from cv_document_generator.models import (
    ParseError,
    PhotoRef,
    PipelineStage,
    ServiceError,
    ServiceErrorKind,
    SourceMaterial,
    StructuredProfile,
    SynthesisError,
    normalize_profile,
)

_REQUEST = httpx.Request("POST", "https://api.example.com/v1/chat/completions")


class TestParseProfileJson:
    def test_plain_json(self):
        assert _parse_profile_json('{"name": "Jane"}') == {"name": "Jane"}

    def test_prose_around_json(self):
        assert _parse_profile_json('Here you go: {"name": "Jane"} Thanks!') == {"name": "Jane"}

    def test_not_an_object(self):
        assert _parse_profile_json('["Jane"]') is None
        assert _parse_profile_json("no json here") is None


class TestProfileExtractor:
    def test_text_source(self, sample_profile_json):
        client = FakeCompletionClient([f"```json\n{sample_profile_json}\n```"])
        profile = ProfileExtractor(client).extract(SourceMaterial(text="Jane Doe, engineer"))

        assert isinstance(profile, StructuredProfile)
        assert profile.name == "Jane Doe"
        assert len(profile.experiences) == 2
        assert profile.skills == ["Python", "Go", "PostgreSQL"]

        instruction, attachment = client.calls[0]
        assert instruction.startswith(EXTRACTION_PROMPT)
        assert instruction.endswith("Jane Doe, engineer")
        assert attachment is None

    def test_binary_source_attached(self, sample_profile_json):
        client = FakeCompletionClient([sample_profile_json])
        source = SourceMaterial(data=b"%PDF-1.4 cv", mime_type="application/pdf")
        profile = ProfileExtractor(client).extract(source)

        assert isinstance(profile, StructuredProfile)
        instruction, attachment = client.calls[0]
        assert instruction == EXTRACTION_PROMPT
        assert attachment.data == b"%PDF-1.4 cv"
        assert attachment.mime_type == "application/pdf"

    def test_invalid_json_is_parse_error(self):
        client = FakeCompletionClient(["I could not read this CV, sorry."])
        result = ProfileExtractor(client).extract(SourceMaterial(text="cv"))
        assert isinstance(result, ParseError)
        assert result.stage == PipelineStage.EXTRACTION
        assert result.raw_text == "I could not read this CV, sorry."

    def test_unknown_and_malformed_fields_tolerated(self):
        reply = '{"name": "Jane", "age": 41, "experiences": [{"title": "T", "company": "C", "current": {"x": 1}}]}'
        result = ProfileExtractor(FakeCompletionClient([reply])).extract(SourceMaterial(text="cv"))
        assert isinstance(result, StructuredProfile)
        assert result.experiences[0].current is False

    def test_service_error_classified(self):
        exc = openai.RateLimitError("slow down", response=httpx.Response(429, request=_REQUEST), body=None)
        result = ProfileExtractor(FakeCompletionClient([exc])).extract(SourceMaterial(text="cv"))
        assert isinstance(result, ServiceError)
        assert result.subkind == ServiceErrorKind.QUOTA_EXCEEDED
        assert result.stage == PipelineStage.EXTRACTION


class TestBuildSynthesisPrompt:
    def test_contains_profile_and_rules(self, sample_profile_dict):
        profile = normalize_profile(sample_profile_dict)
        prompt = build_synthesis_prompt(profile)
        assert "Acme Payments" in prompt
        assert "\\documentclass[11pt,a4paper]{article}" in prompt
        assert "margin=2cm" in prompt
        assert "NO multi-column layouts" in prompt
        assert "At most 2 page(s)" in prompt
        for heading in SECTION_HEADINGS["en"]:
            assert heading in prompt

    def test_french_headings(self, sample_profile_dict):
        prompt = build_synthesis_prompt(normalize_profile(sample_profile_dict), language="fr", max_pages=1)
        assert "EXPÉRIENCE PROFESSIONNELLE" in prompt
        assert "\\usepackage[french]{babel}" in prompt
        assert "At most 1 page(s)" in prompt

    @pytest.mark.parametrize("language,option", [("en", "english"), ("fr", "french")])
    def test_babel_package_line(self, language, option):
        prompt = build_synthesis_prompt(StructuredProfile(name="J"), language=language)
        lines = [line.strip() for line in prompt.splitlines() if "usepackage[" in line and "babel" in line]
        assert lines == [f"- \\usepackage[{option}]{{babel}}"]

    def test_photo_instructions(self, tmp_path: Path):
        photo = PhotoRef.from_path(tmp_path / "portrait.jpeg")
        prompt = build_synthesis_prompt(StructuredProfile(name="Jane"), photo)
        assert "\\includegraphics{profile-photo.jpeg}" in prompt
        assert str(tmp_path) not in prompt

    def test_no_photo_instructions_without_photo(self):
        prompt = build_synthesis_prompt(StructuredProfile(name="Jane"))
        assert "includegraphics{profile-photo" not in prompt


class TestLatexSynthesizer:
    def test_returns_sanitized_source(self):
        client = FakeCompletionClient([f"```latex\n{CV_LATEX}\n```"])
        source = LatexSynthesizer(client).synthesize(StructuredProfile(name="Jane Doe"))
        assert source == CV_LATEX.strip()

    def test_photo_attached(self, png_photo):
        client = FakeCompletionClient([CV_LATEX])
        photo = PhotoRef.from_path(png_photo)
        LatexSynthesizer(client).synthesize(StructuredProfile(name="Jane Doe"), photo)
        _, attachment = client.calls[0]
        assert attachment.mime_type == "image/png"
        assert attachment.file_name == "profile-photo.png"
        assert attachment.data == png_photo.read_bytes()

    def test_unreadable_photo_still_synthesizes(self, tmp_path: Path):
        client = FakeCompletionClient([CV_LATEX])
        photo = PhotoRef.from_path(tmp_path / "missing.jpg")
        source = LatexSynthesizer(client).synthesize(StructuredProfile(name="Jane"), photo)
        assert isinstance(source, str)
        assert client.calls[0][1] is None

    @pytest.mark.parametrize("reply", ["", "```latex\n```", "   "])
    def test_empty_output_is_synthesis_error(self, reply):
        result = LatexSynthesizer(FakeCompletionClient([reply])).synthesize(StructuredProfile(name="Jane"))
        assert isinstance(result, SynthesisError)
        assert result.stage == PipelineStage.SYNTHESIS

    def test_non_latex_output_is_synthesis_error(self):
        reply = "Sorry, I cannot help with that."
        result = LatexSynthesizer(FakeCompletionClient([reply])).synthesize(StructuredProfile(name="Jane"))
        assert isinstance(result, SynthesisError)
        assert result.raw_text == reply

    def test_auth_failure(self):
        exc = openai.AuthenticationError("bad key", response=httpx.Response(401, request=_REQUEST), body=None)
        result = LatexSynthesizer(FakeCompletionClient([exc])).synthesize(StructuredProfile(name="Jane"))
        assert isinstance(result, ServiceError)
        assert result.subkind == ServiceErrorKind.AUTH_INVALID
        assert result.stage == PipelineStage.SYNTHESIS

    def test_profile_json_in_prompt(self, sample_profile_dict):
        client = FakeCompletionClient([CV_LATEX])
        profile = normalize_profile(sample_profile_dict)
        LatexSynthesizer(client).synthesize(profile)
        instruction, _ = client.calls[0]
        assert json.loads(profile.to_prompt_json())["name"] == "Jane Doe"
        assert profile.to_prompt_json() in instruction
