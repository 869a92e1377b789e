"""Memory pipeline: one entry point over extraction, storage and display."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from groq import AsyncGroq

from ..logging import EventLog
from .client import ExtractionClient
from .consolidate import GENERAL, consolidate, primary_id, underlying_ids
from .continuity import ContinuityManager
from .facts import FactStore
from .models import DisplayMemory, DisplaySection, ExtractionOutcome
from .result import ErrorKind, Result
from .service import (
    ExtractionService,
    GroqExtractionService,
    HttpExtractionService,
    UnavailableExtractionService,
)
from .store import MemoryStore
from .transcript import TranscriptSource, TranscriptStore, select_window

if TYPE_CHECKING:
    from ..config import MemoryConfig

logger = logging.getLogger(__name__)


class MemoryPipeline:
    """Captures facts from conversation turns and serves them for display.

    Capture is best-effort: :meth:`extract` never raises, and :meth:`capture`
    runs it in the background so a chat reply is never held up by it.
    """

    def __init__(
        self,
        store: MemoryStore,
        client: ExtractionClient,
        facts: FactStore,
        continuity: ContinuityManager,
        transcripts: TranscriptSource | None = None,
        log: EventLog | None = None,
        recent_turns: int = 6,
        known_facts_limit: int = 25,
    ) -> None:
        self.store = store
        self.client = client
        self.facts = facts
        self.continuity = continuity
        self.transcripts = transcripts
        self.log = log or EventLog()
        self.recent_turns = recent_turns
        self.known_facts_limit = known_facts_limit
        self._tasks: set[asyncio.Task[ExtractionOutcome]] = set()

    def _window(self, identity: str, subject: str) -> tuple[list[str], str | None]:
        if self.transcripts is None:
            return [], None
        turns = self.transcripts.get_turns(identity, subject, limit=self.recent_turns * 4)
        return select_window(turns, self.recent_turns)

    async def extract(
        self,
        identity: str,
        subject: str,
        subject_name: str,
        user_turns: list[str] | None = None,
        last_assistant_turn: str | None = None,
    ) -> ExtractionOutcome:
        """Run one extraction for a subject and persist what it yields.

        Args:
            identity: Acting user.
            subject: Subject the conversation is about.
            subject_name: Display name of the subject.
            user_turns: Recent user turns, oldest first. Read from the
                transcript source when omitted.
            last_assistant_turn: Latest assistant reply, for context.

        Returns:
            The extraction outcome. ``skipped`` is set when capture is
            disabled for the subject; ``error`` carries any failure code.
        """
        try:
            return await self._extract(
                identity, subject, subject_name, user_turns, last_assistant_turn
            )
        except Exception as e:
            logger.exception("Memory extraction failed")
            self.log.warning("pipeline_failed", identity=identity, subject=subject, error=str(e))
            return ExtractionOutcome(error=ErrorKind.UNEXPECTED.value)

    async def _extract(
        self,
        identity: str,
        subject: str,
        subject_name: str,
        user_turns: list[str] | None,
        last_assistant_turn: str | None,
    ) -> ExtractionOutcome:
        if not await self.continuity.is_enabled(identity, subject):
            self.log.log("capture_skipped", identity=identity, subject=subject, reason="disabled")
            return ExtractionOutcome(skipped=True)

        if user_turns is None:
            user_turns, window_assistant = self._window(identity, subject)
            last_assistant_turn = last_assistant_turn or window_assistant
        user_turns = [turn for turn in user_turns if turn and turn.strip()]
        if not user_turns:
            return ExtractionOutcome()

        known = await self.facts.list_facts(identity, subject, self.known_facts_limit)
        outcome = await self.client.request_extraction(
            subject_name=subject_name,
            recent_user_turns=user_turns,
            last_assistant_turn=last_assistant_turn,
            known_facts=known,
            identity=identity,
            subject=subject,
        )

        if not outcome.fallback_used:
            upserted = await self.facts.upsert_facts(identity, subject, outcome.facts)
            touched = await self.facts.touch_facts(identity, subject, outcome.mentioned_keys)
            for result in (upserted, touched):
                if not result.ok and outcome.error is None and result.error is not None:
                    outcome.error = result.error.value

        merged = await self.continuity.merge_continuity(identity, subject, outcome.continuity)
        if not merged.ok and outcome.error is None and merged.error is not None:
            outcome.error = merged.error.value

        return outcome

    def capture(
        self,
        identity: str,
        subject: str,
        subject_name: str,
        user_turns: list[str] | None = None,
        last_assistant_turn: str | None = None,
    ) -> asyncio.Task[ExtractionOutcome]:
        """Schedule :meth:`extract` in the background and return its task."""
        task = asyncio.create_task(
            self.extract(identity, subject, subject_name, user_turns, last_assistant_turn)
        )
        self._tasks.add(task)
        task.add_done_callback(self._on_capture_done)
        return task

    def _on_capture_done(self, task: asyncio.Task[ExtractionOutcome]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"Background capture failed: {exc!r}")

    @property
    def pending(self) -> int:
        """Number of captures still running."""
        return len(self._tasks)

    async def drain(self) -> None:
        """Wait for every scheduled capture to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def display(
        self, identity: str, subject: str, limit: int | None = None
    ) -> list[DisplaySection]:
        """Stored facts for a subject, consolidated into display sections."""
        facts = await self.facts.list_facts(identity, subject, limit)
        return consolidate(facts, last=(GENERAL,), log=self.log)

    async def delete_memory(self, identity: str, memory: DisplayMemory) -> Result[int]:
        """Delete every stored fact a display item stands for."""
        ids = [fact_id for fact_id in underlying_ids(memory) if fact_id is not None]
        return await self.facts.delete_facts(identity, ids)

    async def edit_memory(self, identity: str, memory: DisplayMemory, value: str) -> Result[bool]:
        """Edit the value of the display item's primary fact."""
        fact_id = primary_id(memory)
        if fact_id is None:
            return Result.success(False)
        return await self.facts.edit_fact(identity, fact_id, value=value)

    async def set_enabled(self, identity: str, subject: str, enabled: bool) -> Result[bool]:
        return await self.continuity.set_enabled(identity, subject, enabled)

    def close(self) -> None:
        self.store.close()


def create_service(config: MemoryConfig) -> ExtractionService:
    """Build the extraction service selected by ``config.backend``."""
    if config.backend == "http" and config.service_url:
        return HttpExtractionService(config.service_url, token=config.service_token)
    if config.backend == "groq":
        return GroqExtractionService(
            AsyncGroq(api_key=config.groq_api_key), model=config.groq_model
        )
    return UnavailableExtractionService()


def build_pipeline(config: MemoryConfig) -> MemoryPipeline:
    """Wire a pipeline from configuration."""
    log = EventLog(log_dir=config.log_dir, verbose=config.verbose)

    store = MemoryStore(config.db_path)
    store.init_db()

    facts = FactStore(store, log=log)
    client = ExtractionClient(
        create_service(config),
        facts,
        log=log,
        timeout=config.timeout,
        max_retries=config.max_retries,
        backoff=config.backoff,
    )

    return MemoryPipeline(
        store=store,
        client=client,
        facts=facts,
        continuity=ContinuityManager(store, log=log),
        transcripts=TranscriptStore(config.transcripts_dir),
        log=log,
        recent_turns=config.recent_turns,
        known_facts_limit=config.known_facts_limit,
    )
