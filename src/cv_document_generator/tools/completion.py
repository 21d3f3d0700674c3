"""Completion-service client used by the extraction and synthesis agents.

The adapters only see the :class:`CompletionClient` protocol, so tests and
alternative providers can substitute their own implementation. The default
:class:`AgentCompletionClient` drives a fresh AG2 ``AssistantAgent`` per call.
"""

from __future__ import annotations

import base64
import logging
from dataclasses import dataclass
from typing import Any, Callable, Protocol

import autogen
import httpx
import openai

from ..models import PipelineStage, ServiceError, ServiceErrorKind

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Attachment:
    """Inline binary content sent alongside an instruction."""
    data: bytes
    mime_type: str
    file_name: str = "attachment"

    def data_uri(self) -> str:
        encoded = base64.b64encode(self.data).decode("ascii")
        return f"data:{self.mime_type};base64,{encoded}"


class CompletionClient(Protocol):
    """Request = instruction text (+ optional attachment), response = free text."""

    def complete(self, instruction: str, attachment: Attachment | None = None) -> str: ...


# ---------------------------------------------------------------------------
# Message building
# ---------------------------------------------------------------------------


def build_message_content(
    instruction: str, attachment: Attachment | None = None,
) -> str | list[dict[str, Any]]:
    """Build OpenAI-style message content, multimodal when an attachment is given."""
    if attachment is None:
        return instruction

    if attachment.mime_type.startswith("image/"):
        part: dict[str, Any] = {
            "type": "image_url",
            "image_url": {"url": attachment.data_uri()},
        }
    else:
        part = {
            "type": "file",
            "file": {"filename": attachment.file_name, "file_data": attachment.data_uri()},
        }
    return [{"type": "text", "text": instruction}, part]


def _extract_text(response: Any) -> str:
    """Extract the reply text from an AG2 chat response."""
    if hasattr(response, "summary") and response.summary:
        return str(response.summary)
    if hasattr(response, "chat_history") and response.chat_history:
        last = response.chat_history[-1]
        content = last.get("content", "") if isinstance(last, dict) else last
        return "" if content is None else str(content)
    return "" if response is None else str(response)


def _make_orchestrator() -> autogen.UserProxyAgent:
    """Create the sending side of a one-turn chat."""
    return autogen.UserProxyAgent(
        name="Orchestrator",
        human_input_mode="NEVER",
        code_execution_config=False,
        is_termination_msg=lambda _msg: False,
    )


class AgentCompletionClient:
    """Completion client backed by a per-call AG2 ``AssistantAgent``.

    ``agent_factory`` builds a new agent each time, so concurrent pipeline
    runs never share conversation state.
    """

    def __init__(self, agent_factory: Callable[[], autogen.AssistantAgent]) -> None:
        self.agent_factory = agent_factory

    def complete(self, instruction: str, attachment: Attachment | None = None) -> str:
        agent = self.agent_factory()
        orchestrator = _make_orchestrator()
        content = build_message_content(instruction, attachment)
        message: str | dict[str, Any] = content if isinstance(content, str) else {"content": content}

        logger.debug(
            "Sending request to %s (attachment=%s)",
            agent.name, attachment.mime_type if attachment else None,
        )
        response = orchestrator.initiate_chat(agent, message=message, max_turns=1, silent=True)
        return _extract_text(response)


# ---------------------------------------------------------------------------
# Error classification
# ---------------------------------------------------------------------------

_STATUS_KINDS: dict[int, ServiceErrorKind] = {
    400: ServiceErrorKind.BAD_REQUEST,
    401: ServiceErrorKind.AUTH_INVALID,
    403: ServiceErrorKind.AUTH_INVALID,
    404: ServiceErrorKind.BAD_REQUEST,
    408: ServiceErrorKind.TIMEOUT,
    413: ServiceErrorKind.BAD_REQUEST,
    415: ServiceErrorKind.BAD_REQUEST,
    422: ServiceErrorKind.BAD_REQUEST,
    429: ServiceErrorKind.QUOTA_EXCEEDED,
    504: ServiceErrorKind.TIMEOUT,
}

_TIMEOUT_TYPES: tuple[type[BaseException], ...] = (
    openai.APITimeoutError,
    httpx.TimeoutException,
    TimeoutError,
)


def _status_of(exc: BaseException) -> int | None:
    for attr in ("status_code", "status", "code"):
        value = getattr(exc, attr, None)
        if isinstance(value, int):
            return value
    response = getattr(exc, "response", None)
    value = getattr(response, "status_code", None)
    return value if isinstance(value, int) else None


def classify_service_error(exc: BaseException, stage: PipelineStage) -> ServiceError:
    """Map a provider exception to a ``ServiceError`` using its reported status."""
    if isinstance(exc, _TIMEOUT_TYPES):
        return ServiceError(
            stage=stage,
            subkind=ServiceErrorKind.TIMEOUT,
            message=f"Completion service timed out: {exc}",
        )

    status = _status_of(exc)
    if isinstance(exc, (openai.AuthenticationError, openai.PermissionDeniedError)):
        subkind = ServiceErrorKind.AUTH_INVALID
    elif isinstance(exc, openai.RateLimitError):
        subkind = ServiceErrorKind.QUOTA_EXCEEDED
    elif isinstance(exc, openai.BadRequestError):
        subkind = ServiceErrorKind.BAD_REQUEST
    else:
        subkind = _STATUS_KINDS.get(status, ServiceErrorKind.UNKNOWN) if status else ServiceErrorKind.UNKNOWN

    messages = {
        ServiceErrorKind.AUTH_INVALID: "Invalid completion-service credentials or API not enabled",
        ServiceErrorKind.QUOTA_EXCEEDED: "Completion-service quota exceeded, try again later",
        ServiceErrorKind.BAD_REQUEST: "Completion service rejected the request (check the input format)",
        ServiceErrorKind.TIMEOUT: "Completion service timed out",
        ServiceErrorKind.UNKNOWN: "Completion service request failed",
    }
    return ServiceError(
        stage=stage,
        subkind=subkind,
        status_code=status,
        message=f"{messages[subkind]}: {exc}",
    )
