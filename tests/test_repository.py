"""Tests for write-through persistence on SQLite (aiosqlite)."""
import pytest
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

from voter_gate.database import build_session_maker, init_db
from voter_gate.exceptions import AlreadyVotedError, DuplicateIdError
from voter_gate.registry import VoterRegistry
from voter_gate.repository import VoterRecordRepository

from tests.conftest import DIM, make_record


@pytest.fixture
async def session_maker():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    await init_db(engine)
    yield build_session_maker(engine)
    await engine.dispose()


class TestRepository:
    async def test_create_and_get(self, session_maker):
        record = make_record()
        async with session_maker() as session:
            await VoterRecordRepository.create(session, record)
            row = await VoterRecordRepository.get_by_id(session, record.id)

        assert row.to_record() == record

    async def test_mark_voted_is_conditional(self, session_maker):
        async with session_maker() as session:
            await VoterRecordRepository.create(session, make_record())
            assert await VoterRecordRepository.mark_voted(session, "VOT12345678") is True
            assert await VoterRecordRepository.mark_voted(session, "VOT12345678") is False

    async def test_delete_all(self, session_maker):
        async with session_maker() as session:
            await VoterRecordRepository.create(session, make_record("AAA11111"))
            await VoterRecordRepository.create(session, make_record("BBB22222"))
            assert await VoterRecordRepository.delete_all(session) == 2
            assert await VoterRecordRepository.get_all(session) == []


class TestPersistentRegistry:
    async def test_state_survives_reload(self, session_maker):
        registry = VoterRegistry(embedding_dim=DIM, session_maker=session_maker)
        await registry.register(make_record())
        await registry.mark_voted("VOT12345678")

        reloaded = VoterRegistry(embedding_dim=DIM, session_maker=session_maker)
        assert await reloaded.load() == 1
        record = reloaded.find("VOT12345678")
        assert record.has_voted is True
        assert len(record.biometric_template) == DIM

    async def test_duplicate_detected_by_database(self, session_maker):
        booth_a = VoterRegistry(embedding_dim=DIM, session_maker=session_maker)
        booth_b = VoterRegistry(embedding_dim=DIM, session_maker=session_maker)

        await booth_a.register(make_record())
        with pytest.raises(DuplicateIdError):
            await booth_b.register(make_record())
        assert booth_b.count() == 0

    async def test_vote_from_another_process_is_denied(self, session_maker):
        setup = VoterRegistry(embedding_dim=DIM, session_maker=session_maker)
        await setup.register(make_record())

        booth_a = VoterRegistry(embedding_dim=DIM, session_maker=session_maker)
        booth_b = VoterRegistry(embedding_dim=DIM, session_maker=session_maker)
        await booth_a.load()
        await booth_b.load()

        await booth_a.mark_voted("VOT12345678")
        with pytest.raises(AlreadyVotedError):
            await booth_b.mark_voted("VOT12345678")
        assert booth_b.find("VOT12345678").has_voted is True

    async def test_reset_clears_database(self, session_maker):
        registry = VoterRegistry(embedding_dim=DIM, session_maker=session_maker)
        await registry.register(make_record())
        await registry.reset()

        reloaded = VoterRegistry(embedding_dim=DIM, session_maker=session_maker)
        assert await reloaded.load() == 0
