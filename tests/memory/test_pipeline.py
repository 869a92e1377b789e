"""Tests for MemoryPipeline."""

import asyncio
from datetime import datetime, timedelta, timezone
from pathlib import Path
from unittest.mock import AsyncMock

import pytest

from keepsake.config import MemoryConfig
from keepsake.memory import (
    ContinuityManager,
    ErrorKind,
    ExtractionClient,
    ExtractionServiceError,
    FactCandidate,
    FactStore,
    MemoryPipeline,
    MemoryStore,
    TranscriptStore,
    build_pipeline,
)
from keepsake.memory.service import HttpExtractionService, UnavailableExtractionService

TURN = "She had kidney failure when she was 10"


class Clock:
    """Deterministic clock that advances one second per call."""

    def __init__(self) -> None:
        self.now = datetime(2024, 1, 1, 10, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        self.now += timedelta(seconds=1)
        return self.now


@pytest.fixture
def store(tmp_path: Path) -> MemoryStore:
    store = MemoryStore(tmp_path / "memory.db")
    store.init_db()
    yield store
    store.close()


@pytest.fixture
def service() -> AsyncMock:
    service = AsyncMock()
    service.extract.return_value = {"facts": [], "mentionedKeys": []}
    return service


@pytest.fixture
def transcripts(tmp_path: Path) -> TranscriptStore:
    return TranscriptStore(tmp_path / "transcripts")


@pytest.fixture
def pipeline(store: MemoryStore, service: AsyncMock, transcripts: TranscriptStore) -> MemoryPipeline:
    clock = Clock()
    facts = FactStore(store, clock=clock)
    client = ExtractionClient(service, facts, sleep=AsyncMock())
    return MemoryPipeline(
        store=store,
        client=client,
        facts=facts,
        continuity=ContinuityManager(store, clock=clock),
        transcripts=transcripts,
    )


class TestExtract:
    """Tests for extract."""

    @pytest.mark.asyncio
    async def test_success_persists_everything(self, pipeline: MemoryPipeline, service: AsyncMock):
        """Facts are upserted, mentions touched and continuity merged."""
        await pipeline.facts.upsert_facts(
            "u1", "mom", [FactCandidate("work_career", "occupation", "nurse")]
        )
        before = (await pipeline.facts.list_facts("u1", "mom"))[0]
        service.extract.return_value = {
            "facts": [{"category": "health", "key": "medical_kidney_failure",
                       "value": "kidney failure", "confidence": 4}],
            "mentionedKeys": ["occupation"],
            "continuity": {"summary": "Childhood illness", "openLoops": ["hospital stay"]},
        }

        outcome = await pipeline.extract("u1", "mom", "Mom", [TURN])

        assert outcome.error is None
        stored = {f.key: f for f in await pipeline.facts.list_facts("u1", "mom")}
        assert stored["medical_kidney_failure"].value == "kidney failure"
        assert stored["occupation"].last_mentioned_at > before.last_mentioned_at

        state = await pipeline.continuity.get_continuity("u1", "mom")
        assert state.summary == "Childhood illness"
        assert state.open_loops == ["hospital stay"]

    @pytest.mark.asyncio
    async def test_known_facts_sent(self, pipeline: MemoryPipeline, service: AsyncMock):
        await pipeline.facts.upsert_facts(
            "u1", "mom", [FactCandidate("work_career", "occupation", "nurse")]
        )

        await pipeline.extract("u1", "mom", "Mom", [TURN])

        request = service.extract.await_args.args[0]
        assert [f["key"] for f in request.known_facts] == ["occupation"]

    @pytest.mark.asyncio
    async def test_disabled_subject_skipped(self, pipeline: MemoryPipeline, service: AsyncMock):
        """A disabled subject stores nothing new but keeps showing old facts."""
        await pipeline.facts.upsert_facts(
            "u1", "mom", [FactCandidate("work_career", "occupation", "nurse")]
        )
        await pipeline.set_enabled("u1", "mom", False)
        pipeline.facts.upsert_facts = AsyncMock()

        outcome = await pipeline.extract("u1", "mom", "Mom", [TURN])

        assert outcome.skipped
        pipeline.facts.upsert_facts.assert_not_awaited()
        service.extract.assert_not_awaited()
        assert [f.key for f in await pipeline.facts.list_facts("u1", "mom")] == ["occupation"]

    @pytest.mark.asyncio
    async def test_failure_falls_back_and_creates_continuity(
        self, pipeline: MemoryPipeline, service: AsyncMock
    ):
        service.extract.side_effect = ExtractionServiceError(ErrorKind.TRANSPORT, "HTTP 500")

        outcome = await pipeline.extract("u1", "mom", "Mom", [TURN])

        assert outcome.fallback_used
        assert outcome.error == "transport_error"
        stored = {f.key for f in await pipeline.facts.list_facts("u1", "mom")}
        assert "medical_kidney_failure" in stored
        assert pipeline.store.get_continuity("u1", "mom") is not None

    @pytest.mark.asyncio
    async def test_no_turns(self, pipeline: MemoryPipeline, service: AsyncMock):
        outcome = await pipeline.extract("u1", "mom", "Mom", ["", "   "])

        assert outcome.facts == []
        assert outcome.error is None
        service.extract.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_reads_transcript_window(
        self, pipeline: MemoryPipeline, service: AsyncMock, transcripts: TranscriptStore
    ):
        """Without explicit turns the transcript supplies them."""
        transcripts.add_turn("u1", "mom", "user", "Tell me about my mom")
        transcripts.add_turn("u1", "mom", "assistant", "What was she like?")
        transcripts.add_turn("u1", "mom", "user", TURN)

        await pipeline.extract("u1", "mom", "Mom")

        request = service.extract.await_args.args[0]
        assert request.recent_user_turns == ["Tell me about my mom", TURN]
        assert request.last_assistant_turn == "What was she like?"

    @pytest.mark.asyncio
    async def test_never_raises(self, pipeline: MemoryPipeline):
        pipeline.continuity.is_enabled = AsyncMock(side_effect=RuntimeError("boom"))

        outcome = await pipeline.extract("u1", "mom", "Mom", [TURN])

        assert outcome.error == ErrorKind.UNEXPECTED.value


class TestCapture:
    """Tests for background capture."""

    @pytest.mark.asyncio
    async def test_capture_and_drain(self, pipeline: MemoryPipeline, service: AsyncMock):
        service.extract.return_value = {
            "facts": [{"category": "family", "key": "family_sons", "value": "has two sons"}],
            "mentionedKeys": [],
        }

        task = pipeline.capture("u1", "mom", "Mom", ["She has two sons and a daughter"])
        assert isinstance(task, asyncio.Task)

        await pipeline.drain()

        assert pipeline.pending == 0
        assert task.result().error is None
        assert [f.key for f in await pipeline.facts.list_facts("u1", "mom")] == ["family_sons"]

    @pytest.mark.asyncio
    async def test_capture_is_fire_and_forget(self, pipeline: MemoryPipeline, service: AsyncMock):
        """capture returns before extraction completes."""
        started = asyncio.Event()
        release = asyncio.Event()

        async def slow(request):
            started.set()
            await release.wait()
            return {"facts": [], "mentionedKeys": []}

        service.extract.side_effect = slow

        pipeline.capture("u1", "mom", "Mom", [TURN])
        await started.wait()
        assert pipeline.pending == 1

        release.set()
        await pipeline.drain()
        assert pipeline.pending == 0


class TestDisplayOperations:
    """Tests for display, delete and edit."""

    async def _seed(self, pipeline: MemoryPipeline) -> None:
        await pipeline.facts.upsert_facts(
            "u1", "mom",
            [
                FactCandidate("Medical History", "medical_kidney_failure", "kidney failure", importance=4),
                FactCandidate("Age Reference", "age_at_kidney_failure", "kidney failure at age 10"),
                FactCandidate("context", "note", "likes tea in the morning", importance=2),
            ],
        )

    @pytest.mark.asyncio
    async def test_display(self, pipeline: MemoryPipeline):
        await self._seed(pipeline)

        sections = await pipeline.display("u1", "mom")

        assert [s.category for s in sections] == ["Health", "General"]
        merged = sections[0].memories[0]
        assert merged.value == "kidney failure — Age 10"
        assert len(merged.source_fact_ids) == 2

    @pytest.mark.asyncio
    async def test_delete_merged_memory_removes_all_sources(self, pipeline: MemoryPipeline):
        await self._seed(pipeline)
        merged = (await pipeline.display("u1", "mom"))[0].memories[0]

        result = await pipeline.delete_memory("u1", merged)

        assert result.value == 2
        assert [f.key for f in await pipeline.facts.list_facts("u1", "mom")] == ["note"]

    @pytest.mark.asyncio
    async def test_edit_memory_targets_primary(self, pipeline: MemoryPipeline):
        await self._seed(pipeline)
        merged = (await pipeline.display("u1", "mom"))[0].memories[0]

        result = await pipeline.edit_memory("u1", merged, "chronic kidney failure")

        assert result.value is True
        stored = {f.key: f.value for f in await pipeline.facts.list_facts("u1", "mom")}
        assert stored["medical_kidney_failure"] == "chronic kidney failure"
        assert stored["age_at_kidney_failure"] == "kidney failure at age 10"


class TestBuildPipeline:
    """Tests for build_pipeline."""

    def test_http_backend(self, tmp_path: Path):
        config = MemoryConfig(
            db_path=tmp_path / "memory.db",
            transcripts_dir=tmp_path / "transcripts",
            backend="http",
            service_url="https://example.test/extract",
            timeout=5.0,
        )

        pipeline = build_pipeline(config)

        assert isinstance(pipeline.client.service, HttpExtractionService)
        assert pipeline.client.timeout == 5.0
        assert (tmp_path / "memory.db").exists()
        pipeline.close()

    @pytest.mark.asyncio
    async def test_local_backend_falls_back(self, tmp_path: Path):
        config = MemoryConfig(
            db_path=tmp_path / "memory.db",
            transcripts_dir=tmp_path / "transcripts",
            backend="local",
        )
        pipeline = build_pipeline(config)
        assert isinstance(pipeline.client.service, UnavailableExtractionService)

        outcome = await pipeline.extract("u1", "mom", "Mom", [TURN])

        assert outcome.fallback_used
        assert outcome.error == ErrorKind.LOCAL_ONLY.value
        pipeline.close()
