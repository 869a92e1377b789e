"""Remote extraction with bounded retries and a local fallback."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Sequence
from typing import Any

from ..logging import EventLog
from .facts import FactStore
from .heuristics import LocalExtractor
from .models import ContinuityDelta, ExtractionOutcome, Fact, FactCandidate
from .result import ErrorKind, Result
from .service import ExtractionRequest, ExtractionService, ExtractionServiceError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 20.0
DEFAULT_BACKOFF = (0.25, 0.8)


def _first(data: dict[str, Any], *names: str) -> Any:
    for name in names:
        if name in data:
            return data[name]
    return None


def _text(value: Any) -> str:
    return value.strip() if isinstance(value, str) else ""


def _score(value: Any, default: float) -> float:
    try:
        score = float(value)
    except (TypeError, ValueError):
        return default
    return min(max(score, 1), 5)


def parse_fact(item: Any) -> FactCandidate | None:
    """Shape one service fact into a candidate, None if unusable."""
    if not isinstance(item, dict):
        return None
    key = _text(item.get("key"))
    value = item.get("value")
    if isinstance(value, bool):
        value = str(value).lower()
    elif isinstance(value, (int, float)):
        value = str(value)
    value = _text(value)
    if not key or not value:
        return None
    return FactCandidate(
        category=_text(item.get("category")) or "context",
        key=key,
        value=value,
        importance=int(_score(item.get("importance"), 3)),
        confidence=_score(item.get("confidence"), 3),
    )


def parse_continuity(data: Any) -> ContinuityDelta | None:
    """Read a continuity block written in camelCase or snake_case."""
    if not isinstance(data, dict):
        return None
    loops = _first(data, "openLoops", "open_loops") or []
    if not isinstance(loops, list):
        loops = []
    return ContinuityDelta(
        summary=_text(_first(data, "summary", "summaryUpdate", "summary_update")),
        open_loops=tuple(_text(loop) for loop in loops if _text(loop)),
        next_question=_text(_first(data, "nextQuestion", "next_question")),
        current_goal=_text(_first(data, "currentGoal", "current_goal")),
        last_advice=_text(_first(data, "lastAdvice", "last_advice")),
    )


def parse_payload(payload: Any) -> Result[ExtractionOutcome]:
    """Normalize a raw service response.

    A non-null ``error`` is a declared failure. Anything that is not an object
    with list-valued facts and mentioned keys is malformed. Individual
    unusable fact items are skipped.
    """
    if not isinstance(payload, dict):
        return Result.failure(ErrorKind.MALFORMED, f"Expected object, got {type(payload).__name__}")

    declared = payload.get("error")
    if declared not in (None, ""):
        return Result.failure(ErrorKind.DECLARED, str(declared))

    raw_facts = _first(payload, "facts", "memories")
    raw_keys = _first(payload, "mentionedKeys", "mentioned_keys")
    raw_facts = [] if raw_facts is None else raw_facts
    raw_keys = [] if raw_keys is None else raw_keys
    if not isinstance(raw_facts, list) or not isinstance(raw_keys, list):
        return Result.failure(ErrorKind.MALFORMED, "facts and mentionedKeys must be lists")

    facts = []
    for item in raw_facts:
        fact = parse_fact(item)
        if fact is None:
            logger.warning(f"Skipping invalid fact item: {item!r}")
            continue
        facts.append(fact)

    return Result.success(
        ExtractionOutcome(
            facts=facts,
            mentioned_keys=[_text(k) for k in raw_keys if _text(k)],
            continuity=parse_continuity(payload.get("continuity")),
        )
    )


class ExtractionClient:
    """Asks the remote service for facts, falling back to local rules.

    One logical attempt per call: transient transport errors are retried a
    bounded number of times, all within a single hard timeout. Any failure
    runs the local extractor over every user turn and upserts what it finds.
    """

    def __init__(
        self,
        service: ExtractionService,
        facts: FactStore,
        local: LocalExtractor | None = None,
        log: EventLog | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        max_retries: int = 2,
        backoff: Sequence[float] = DEFAULT_BACKOFF,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.service = service
        self.facts = facts
        self.log = log or EventLog()
        self.local = local or LocalExtractor(log=self.log)
        self.timeout = timeout
        self.max_retries = max_retries
        self.backoff = tuple(backoff) or (0.0,)
        self.sleep = sleep

    async def request_extraction(
        self,
        subject_name: str,
        recent_user_turns: list[str],
        last_assistant_turn: str | None,
        known_facts: list[Fact],
        identity: str,
        subject: str,
    ) -> ExtractionOutcome:
        """Run one extraction. Never raises.

        Returns:
            The service's candidates on success. On failure, the locally
            extracted candidates (already upserted) and an error code.
        """
        request = ExtractionRequest(
            subject_name=subject_name,
            recent_user_turns=[t for t in recent_user_turns if t and t.strip()],
            identity=identity,
            subject=subject,
            last_assistant_turn=last_assistant_turn,
            known_facts=[fact.as_known() for fact in known_facts],
        )
        self.log.detail(
            "extraction_started", identity=identity, subject=subject,
            count=len(request.recent_user_turns), known=len(request.known_facts),
        )

        started = time.monotonic()
        result = await self.call_service(request)
        if result.ok:
            result = parse_payload(result.value)
        duration_ms = (time.monotonic() - started) * 1000

        if result.ok and result.value is not None:
            outcome = result.value
            self.log.log(
                "extraction_succeeded", identity=identity, subject=subject,
                duration_ms=duration_ms, count=len(outcome.facts),
            )
            return outcome

        assert result.error is not None
        code = result.detail if result.error is ErrorKind.DECLARED and result.detail else result.error.value
        if result.error is ErrorKind.LOCAL_ONLY:
            self.log.log("extraction_local_only", identity=identity, subject=subject)
        else:
            self.log.warning(
                "extraction_failed", identity=identity, subject=subject,
                duration_ms=duration_ms, error=code, kind=result.error.value, detail=result.detail,
            )
        return await self._fallback(request, code)

    async def call_service(self, request: ExtractionRequest) -> Result[Any]:
        """Call the service under the hard timeout."""
        try:
            payload = await asyncio.wait_for(self._attempt(request), timeout=self.timeout)
        except asyncio.TimeoutError:
            return Result.failure(ErrorKind.TIMEOUT, f"No response within {self.timeout}s")
        except ExtractionServiceError as e:
            return Result.failure(e.kind, e.detail)
        except Exception as e:
            logger.warning(f"Unexpected extraction error: {e!r}")
            return Result.failure(ErrorKind.UNEXPECTED, str(e))
        return Result.success(payload)

    async def _attempt(self, request: ExtractionRequest) -> Any:
        attempt = 0
        while True:
            try:
                return await self.service.extract(request)
            except ExtractionServiceError as e:
                if not e.transient or attempt >= self.max_retries:
                    raise
                delay = self.backoff[min(attempt, len(self.backoff) - 1)]
                attempt += 1
                self.log.detail(
                    "extraction_retry", identity=request.identity, subject=request.subject,
                    attempt=attempt, delay=delay, error=e.detail,
                )
                await self.sleep(delay)

    async def _fallback(self, request: ExtractionRequest, code: str) -> ExtractionOutcome:
        by_key: dict[str, FactCandidate] = {}
        for turn in request.recent_user_turns:
            for fact in self.local.extract(turn, request.subject_name):
                # Later turns are newer; their version of a key wins
                by_key.pop(fact.key, None)
                by_key[fact.key] = fact
        facts = list(by_key.values())

        await self.facts.upsert_facts(request.identity, request.subject, facts)
        self.log.log(
            "extraction_fallback", identity=request.identity, subject=request.subject,
            count=len(facts), error=code,
        )
        return ExtractionOutcome(facts=facts, error=code, fallback_used=True)
