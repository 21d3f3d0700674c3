"""ProfileExtractor agent — turns a raw CV into a StructuredProfile."""

from __future__ import annotations

import json
import logging

import autogen

from ..config import build_role_llm_config
from ..models import (
    ParseError,
    PipelineStage,
    ProjectConfig,
    ServiceError,
    SourceMaterial,
    StructuredProfile,
    normalize_profile,
)
from ..tools.completion import AgentCompletionClient, Attachment, CompletionClient, classify_service_error
from ..tools.sanitizer import sanitize_source

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = """\
You are an expert CV analyst. You extract structured, complete and accurate
information from CVs and answer with JSON only.
"""

EXTRACTION_PROMPT = """\
Analyse the provided CV and extract the following information as strict JSON
(no markdown, no code fences):

{
  "name": "Full name of the person",
  "email": "Email address",
  "phone": "Phone number",
  "summary": "Professional summary or career objective (2-3 sentences)",
  "experiences": [
    {
      "title": "Job title",
      "company": "Company name",
      "startDate": "Start date (YYYY-MM or YYYY)",
      "endDate": "End date (YYYY-MM or YYYY) or null if ongoing",
      "description": "Detailed responsibilities and achievements",
      "current": false
    }
  ],
  "education": [
    {
      "degree": "Degree obtained",
      "school": "Institution name",
      "startDate": "Start date (YYYY-MM or YYYY)",
      "endDate": "End date (YYYY-MM or YYYY)",
      "description": "Description or honours, if any"
    }
  ],
  "skills": ["Skill 1", "Skill 2"],
  "passions": ["Interest 1", "Interest 2"],
  "projects": [
    {
      "name": "Project name",
      "description": "Project description",
      "technologies": ["Tech 1", "Tech 2"],
      "link": "Project URL if available"
    }
  ]
}

Rules:
1. Extract ALL information available in the CV.
2. If a value is missing, use null for single values and [] for lists.
3. Dates use YYYY-MM when the month is known, otherwise YYYY.
4. For an ongoing position set "endDate": null and "current": true.
5. Structure experience descriptions clearly (responsibilities, achievements, context).
6. Include both technical and soft skills.
7. Extract passions, hobbies or interests when they are mentioned.
8. Return ONLY the JSON object, with no explanation before or after it.
9. The JSON must be valid and directly parseable.
"""


def make_profile_extractor(config: ProjectConfig) -> autogen.AssistantAgent:
    """Create the ProfileExtractor agent."""
    return autogen.AssistantAgent(
        name="ProfileExtractor",
        system_message=SYSTEM_PROMPT,
        llm_config=build_role_llm_config("extractor", config),
        # Multimodal content lists are not string-comparable.
        is_termination_msg=lambda _msg: False,
    )


def make_extractor_client(config: ProjectConfig) -> AgentCompletionClient:
    return AgentCompletionClient(lambda: make_profile_extractor(config))


def _parse_profile_json(text: str) -> dict | None:
    """Parse the service reply, tolerating prose around the JSON object."""
    candidates = [text]
    if "{" in text:
        candidates.append(text[text.find("{"):text.rfind("}") + 1])
    for candidate in candidates:
        try:
            data = json.loads(candidate)
        except ValueError:
            continue
        if isinstance(data, dict):
            return data
    return None


class ProfileExtractor:
    """Extraction adapter: raw source material → normalized profile."""

    def __init__(self, client: CompletionClient) -> None:
        self.client = client

    def extract(self, source: SourceMaterial) -> StructuredProfile | ServiceError | ParseError:
        if source.text is not None:
            instruction = f"{EXTRACTION_PROMPT}\n\nCV content:\n{source.text}"
            attachment = None
        else:
            instruction = EXTRACTION_PROMPT
            attachment = Attachment(
                data=source.data or b"",
                mime_type=source.mime_type or "application/octet-stream",
                file_name="cv-source",
            )

        try:
            raw = self.client.complete(instruction, attachment)
        except Exception as e:
            failure = classify_service_error(e, PipelineStage.EXTRACTION)
            logger.error("Extraction request failed: %s", failure.message)
            return failure

        cleaned = sanitize_source(raw)
        data = _parse_profile_json(cleaned)
        if data is None:
            logger.error("Extraction response is not a JSON object: %.200s", raw)
            return ParseError(message="Could not parse the completion-service response as a profile", raw_text=raw)

        try:
            profile = normalize_profile(data)
        except ValueError as e:
            logger.error("Extraction response does not match the profile schema: %s", e)
            return ParseError(message=f"Profile schema mismatch: {e}", raw_text=raw)

        logger.info(
            "Extracted profile: %d experience(s), %d education, %d project(s), %d skill(s)",
            len(profile.experiences), len(profile.education), len(profile.projects), len(profile.skills),
        )
        return profile
