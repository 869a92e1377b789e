"""Tests for the extraction service adapters."""

import json
from unittest.mock import AsyncMock, Mock

import groq
import httpx
import pytest

from keepsake.memory import (
    ErrorKind,
    ExtractionRequest,
    ExtractionServiceError,
    GroqExtractionService,
    HttpExtractionService,
)
from keepsake.memory.service import UnavailableExtractionService

URL = "https://example.test/functions/v1/extract-memories"


@pytest.fixture
def request_() -> ExtractionRequest:
    return ExtractionRequest(
        subject_name="Mom",
        recent_user_turns=["She was a nurse for thirty years"],
        identity="u1",
        subject="mom",
        known_facts=[{"key": "hobby_gardening", "value": "loves gardening", "category": "interests"}],
    )


def http_service(handler, token: str | None = "secret") -> HttpExtractionService:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return HttpExtractionService(URL, token=token, client=client)


def make_response(content: str) -> Mock:
    """Create a mock LLM response."""
    response = Mock()
    response.choices = [Mock()]
    response.choices[0].message.content = content
    return response


class TestHttpExtractionService:
    """Tests for HttpExtractionService."""

    @pytest.mark.asyncio
    async def test_posts_request(self, request_: ExtractionRequest):
        """The request body and bearer token are sent."""
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["auth"] = request.headers.get("Authorization")
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"facts": [], "mentionedKeys": []})

        payload = await http_service(handler).extract(request_)

        assert payload == {"facts": [], "mentionedKeys": []}
        assert seen["auth"] == "Bearer secret"
        assert seen["body"]["subjectName"] == "Mom"
        assert seen["body"]["recentUserMessages"] == ["She was a nurse for thirty years"]
        assert seen["body"]["existingMemories"][0]["key"] == "hobby_gardening"

    @pytest.mark.asyncio
    async def test_no_token(self, request_: ExtractionRequest):
        def handler(request: httpx.Request) -> httpx.Response:
            assert "Authorization" not in request.headers
            return httpx.Response(200, json={})

        assert await http_service(handler, token=None).extract(request_) == {}

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status,transient", [(503, True), (429, True), (400, False), (401, False)])
    async def test_status_errors(self, request_: ExtractionRequest, status: int, transient: bool):
        service = http_service(lambda request: httpx.Response(status, text="nope"))

        with pytest.raises(ExtractionServiceError) as exc_info:
            await service.extract(request_)

        assert exc_info.value.kind is ErrorKind.TRANSPORT
        assert exc_info.value.status == status
        assert exc_info.value.transient is transient

    @pytest.mark.asyncio
    async def test_connect_error_is_transient(self, request_: ExtractionRequest):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(ExtractionServiceError) as exc_info:
            await http_service(handler).extract(request_)

        assert exc_info.value.kind is ErrorKind.TRANSPORT
        assert exc_info.value.transient

    @pytest.mark.asyncio
    async def test_timeout(self, request_: ExtractionRequest):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        with pytest.raises(ExtractionServiceError) as exc_info:
            await http_service(handler).extract(request_)

        assert exc_info.value.kind is ErrorKind.TIMEOUT

    @pytest.mark.asyncio
    async def test_non_json_body(self, request_: ExtractionRequest):
        service = http_service(lambda request: httpx.Response(200, text="<html>"))

        with pytest.raises(ExtractionServiceError) as exc_info:
            await service.extract(request_)

        assert exc_info.value.kind is ErrorKind.MALFORMED


class TestGroqExtractionService:
    """Tests for GroqExtractionService."""

    def test_default_model(self):
        """Default model is llama-3.1-70b-versatile."""
        assert GroqExtractionService(AsyncMock()).model == "llama-3.1-70b-versatile"

    @pytest.mark.asyncio
    async def test_parses_json(self, request_: ExtractionRequest):
        mock_client = AsyncMock()
        mock_client.chat.completions.create = AsyncMock(
            return_value=make_response('{"facts": [{"key": "occupation", "value": "nurse"}]}')
        )

        payload = await GroqExtractionService(mock_client).extract(request_)

        assert payload["facts"][0]["key"] == "occupation"
        kwargs = mock_client.chat.completions.create.await_args.kwargs
        assert "Mom" in kwargs["messages"][0]["content"]
        assert "hobby_gardening" in kwargs["messages"][1]["content"]

    @pytest.mark.asyncio
    async def test_strips_code_fence(self, request_: ExtractionRequest):
        mock_client = AsyncMock()
        mock_client.chat.completions.create = AsyncMock(
            return_value=make_response('```json\n{"facts": [], "mentionedKeys": []}\n```')
        )

        payload = await GroqExtractionService(mock_client).extract(request_)

        assert payload == {"facts": [], "mentionedKeys": []}

    @pytest.mark.asyncio
    async def test_invalid_json(self, request_: ExtractionRequest):
        mock_client = AsyncMock()
        mock_client.chat.completions.create = AsyncMock(
            return_value=make_response("I could not find any facts.")
        )

        with pytest.raises(ExtractionServiceError) as exc_info:
            await GroqExtractionService(mock_client).extract(request_)

        assert exc_info.value.kind is ErrorKind.MALFORMED

    @pytest.mark.asyncio
    async def test_api_timeout(self, request_: ExtractionRequest):
        mock_client = AsyncMock()
        mock_client.chat.completions.create = AsyncMock(
            side_effect=groq.APITimeoutError(request=httpx.Request("POST", URL))
        )

        with pytest.raises(ExtractionServiceError) as exc_info:
            await GroqExtractionService(mock_client).extract(request_)

        assert exc_info.value.kind is ErrorKind.TIMEOUT
        assert exc_info.value.transient


@pytest.mark.asyncio
async def test_unavailable_service(request_: ExtractionRequest):
    """Without a backend every call fails without retry."""
    with pytest.raises(ExtractionServiceError) as exc_info:
        await UnavailableExtractionService().extract(request_)

    assert not exc_info.value.transient
    assert exc_info.value.kind is ErrorKind.LOCAL_ONLY
