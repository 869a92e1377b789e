"""Adapters for the remote extraction service.

A service receives recent user turns plus already-known facts and returns the
raw payload ``{facts, mentionedKeys, continuity, error}``. Transport problems
are raised as :class:`ExtractionServiceError`; a payload with a non-null
``error`` field is returned as-is and judged by the client.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Protocol

import groq
import httpx
from groq import AsyncGroq

from .result import ErrorKind

logger = logging.getLogger(__name__)

TRANSIENT_STATUS_CODES = {408, 429, 502, 503, 504}


@dataclass(frozen=True)
class ExtractionRequest:
    """What the extraction service is told about the conversation."""

    subject_name: str
    recent_user_turns: list[str]
    identity: str
    subject: str
    last_assistant_turn: str | None = None
    known_facts: list[dict[str, str]] = field(default_factory=list)

    def to_payload(self) -> dict[str, Any]:
        """Request body in the service's wire format."""
        return {
            "subjectName": self.subject_name,
            "recentUserMessages": list(self.recent_user_turns),
            "lastAssistantMessage": self.last_assistant_turn,
            "existingMemories": list(self.known_facts),
            "userId": self.identity,
            "subjectId": self.subject,
        }


class ExtractionServiceError(Exception):
    """Raised when the service could not be reached or answered badly."""

    def __init__(
        self,
        kind: ErrorKind,
        detail: str,
        *,
        status: int | None = None,
        transient: bool = False,
    ) -> None:
        super().__init__(detail)
        self.kind = kind
        self.detail = detail
        self.status = status
        self.transient = transient


class ExtractionService(Protocol):
    """Anything that can answer an extraction request."""

    async def extract(self, request: ExtractionRequest) -> Any:
        """Return the raw response payload."""
        ...


class UnavailableExtractionService:
    """Stands in when no remote backend is configured.

    Every call fails with ``LOCAL_ONLY`` so the client goes straight to the
    local rules.
    """

    async def extract(self, request: ExtractionRequest) -> Any:
        raise ExtractionServiceError(ErrorKind.LOCAL_ONLY, "No extraction service configured")


class HttpExtractionService:
    """Calls an extraction endpoint over HTTP (e.g. an edge function)."""

    def __init__(
        self,
        url: str,
        token: str | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the HTTP adapter.

        Args:
            url: Endpoint accepting a JSON POST.
            token: Bearer token identifying the acting user.
            client: Optional shared client; one is created per call otherwise.
        """
        self.url = url
        self.token = token
        self._client = client

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    async def extract(self, request: ExtractionRequest) -> Any:
        if self._client is not None:
            return await self._post(self._client, request)
        async with httpx.AsyncClient() as client:
            return await self._post(client, request)

    async def _post(self, client: httpx.AsyncClient, request: ExtractionRequest) -> Any:
        try:
            response = await client.post(
                self.url, json=request.to_payload(), headers=self._headers()
            )
        except httpx.TimeoutException as e:
            raise ExtractionServiceError(
                ErrorKind.TIMEOUT, f"Request timed out: {e}", transient=True
            ) from e
        except httpx.RequestError as e:
            raise ExtractionServiceError(
                ErrorKind.TRANSPORT, f"Request failed: {e}", transient=True
            ) from e

        if not response.is_success:
            raise ExtractionServiceError(
                ErrorKind.TRANSPORT,
                f"HTTP {response.status_code}: {response.text[:200]}",
                status=response.status_code,
                transient=response.status_code in TRANSIENT_STATUS_CODES,
            )

        try:
            return response.json()
        except ValueError as e:
            raise ExtractionServiceError(
                ErrorKind.MALFORMED, f"Response is not JSON: {e}"
            ) from e


EXTRACTION_PROMPT = """You are a memory extraction system. Extract ONLY stable, factual information the user explicitly stated about {subject_name}.

Rules:
- Never guess, infer or assume information
- Never store emotions, insults or one-off moods
- Keys are short snake_case and stable (e.g. "occupation", "medical_diabetes")
- Values are concise (max ~180 characters)
- If a known fact was mentioned again without new content, list its key in "mentionedKeys"

Categories: identity, relationships, history, health, timeline, location,
work_career, family, interests_hobbies, preferences, boundaries, loss_grief,
patterns, goals, context.

If the user states the person died, include:
{{"category": "loss_grief", "key": "is_deceased", "value": "true", "importance": 5, "confidence": 5}}

Return ONLY valid JSON:
{{
  "facts": [
    {{"category": "<category>", "key": "<key>", "value": "<value>", "importance": 1-5, "confidence": 1-5}}
  ],
  "mentionedKeys": ["<existing key>"],
  "continuity": {{
    "summary": "<rolling recap>",
    "openLoops": ["<unresolved thread>"],
    "nextQuestion": "<best next question>",
    "currentGoal": "<user's current goal>",
    "lastAdvice": "<last advice given>"
  }}
}}
If there is nothing new, return {{"facts": [], "mentionedKeys": []}}.
"""


class GroqExtractionService:
    """Performs the extraction with an LLM through Groq."""

    def __init__(
        self,
        llm_client: AsyncGroq,
        model: str = "llama-3.1-70b-versatile",
    ) -> None:
        """Initialize the service.

        Args:
            llm_client: The Groq client for LLM calls.
            model: The model to use for extraction.
        """
        self.client = llm_client
        self.model = model

    def _format_request(self, request: ExtractionRequest) -> str:
        """Format the conversation and known facts for the prompt."""
        lines = [f"Person: {request.subject_name}", "", "Recent user messages:"]
        lines += [f"{i}. {turn}" for i, turn in enumerate(request.recent_user_turns, 1)]
        if request.last_assistant_turn:
            lines += ["", "Last assistant message:", request.last_assistant_turn]
        if request.known_facts:
            lines += ["", "Known facts:"]
            lines += [f"- {f.get('key')}: {f.get('value')}" for f in request.known_facts]
        return "\n".join(lines)

    async def extract(self, request: ExtractionRequest) -> Any:
        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {
                        "role": "system",
                        "content": EXTRACTION_PROMPT.format(subject_name=request.subject_name),
                    },
                    {"role": "user", "content": self._format_request(request)},
                ],
                temperature=0.1,  # Low temperature for consistent extraction
            )
        except groq.APITimeoutError as e:
            raise ExtractionServiceError(
                ErrorKind.TIMEOUT, f"LLM call timed out: {e}", transient=True
            ) from e
        except groq.APIConnectionError as e:
            raise ExtractionServiceError(
                ErrorKind.TRANSPORT, f"LLM call failed: {e}", transient=True
            ) from e
        except groq.APIStatusError as e:
            raise ExtractionServiceError(
                ErrorKind.TRANSPORT,
                f"LLM call failed: HTTP {e.status_code}",
                status=e.status_code,
                transient=e.status_code in TRANSIENT_STATUS_CODES,
            ) from e

        content = response.choices[0].message.content or ""
        return self._parse_response(content)

    def _parse_response(self, content: str) -> Any:
        """Parse the LLM response into a payload.

        Raises:
            ExtractionServiceError: If the content is not valid JSON.
        """
        json_str = content.strip()
        if json_str.startswith("```"):
            # The LLM might wrap it in a markdown code block
            lines = [line for line in json_str.split("\n") if not line.startswith("```")]
            json_str = "\n".join(lines)

        try:
            return json.loads(json_str)
        except json.JSONDecodeError as e:
            logger.warning(f"Failed to parse extraction response: {e}")
            raise ExtractionServiceError(
                ErrorKind.MALFORMED, f"LLM returned invalid JSON: {e}"
            ) from e

