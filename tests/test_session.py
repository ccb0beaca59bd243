"""Tests for the booth verification state machine."""
import asyncio
import threading

import pytest

from voter_gate.exceptions import DimensionMismatchError, SessionStateError
from voter_gate.schemas import AttemptOutcome, SearchOutcome
from voter_gate.session import SessionManager, SessionState, VerificationSession

from tests.conftest import FakeFaceDetector, make_embedding, make_record, shifted

CLOSE = b"close-face"
FAR = b"far-face"
NO_FACE = b"empty-frame"
WRONG_MODEL = b"wrong-model"


@pytest.fixture
def detector(enrolled_embedding):
    return FakeFaceDetector({
        CLOSE: shifted(enrolled_embedding, 0.3),
        FAR: shifted(enrolled_embedding, 0.8),
        WRONG_MODEL: make_embedding(dim=512),
    })


@pytest.fixture
async def enrolled(registry, enrolled_embedding):
    return await registry.register(make_record("V1000000", embedding=enrolled_embedding))


@pytest.fixture
def session(registry, detector):
    return VerificationSession(registry, detect_face=detector, timeout=5)


class TestSearch:
    def test_starts_in_search(self, session):
        assert session.state == SessionState.SEARCH

    def test_unknown_voter_stays_in_search(self, session):
        assert session.search("NOPE00000") == SearchOutcome.NOT_FOUND
        assert session.state == SessionState.SEARCH
        assert session.voter is None

    async def test_found_voter_moves_to_verify(self, session, enrolled):
        assert session.search("V1000000") == SearchOutcome.FOUND
        assert session.state == SessionState.VERIFY
        assert session.voter == enrolled

    async def test_voter_who_voted_stays_in_search(self, session, registry, enrolled):
        await registry.mark_voted(enrolled.id)
        assert session.search("V1000000") == SearchOutcome.ALREADY_VOTED
        assert session.state == SessionState.SEARCH

    async def test_cannot_search_twice(self, session, enrolled):
        session.search("V1000000")
        with pytest.raises(SessionStateError):
            session.search("V1000000")


class TestCapture:
    async def test_capture_requires_verify_state(self, session):
        with pytest.raises(SessionStateError):
            await session.capture(CLOSE)

    async def test_end_to_end_admission(self, session, registry, enrolled):
        session.search("V1000000")
        attempt = await session.capture(CLOSE)

        assert attempt.outcome == AttemptOutcome.ADMITTED
        assert attempt.distance == pytest.approx(0.3)
        assert attempt.score == 70
        assert attempt.ballot.voter_id == "V1000000"
        assert attempt.ballot.token.startswith("SECURE-")
        assert session.state == SessionState.RESULT
        assert registry.find("V1000000").has_voted is True

        second = session.next_voter()
        assert second.search("V1000000") == SearchOutcome.ALREADY_VOTED

    async def test_non_match_keeps_voter_eligible(self, session, registry, enrolled):
        session.search("V1000000")
        attempt = await session.capture(FAR)

        assert attempt.outcome == AttemptOutcome.NO_MATCH
        assert attempt.score == 20
        assert attempt.ballot is None
        assert session.state == SessionState.VERIFY
        assert registry.find("V1000000").has_voted is False

    async def test_unbounded_retries_then_success(self, session, enrolled):
        session.search("V1000000")
        for _ in range(5):
            assert (await session.capture(FAR)).outcome == AttemptOutcome.NO_MATCH
        assert (await session.capture(CLOSE)).outcome == AttemptOutcome.ADMITTED

    async def test_no_face_is_distinct_from_non_match(self, session, registry, enrolled):
        session.search("V1000000")
        attempt = await session.capture(NO_FACE)

        assert attempt.outcome == AttemptOutcome.NO_FACE_DETECTED
        assert attempt.distance is None
        assert session.state == SessionState.VERIFY
        assert registry.find("V1000000").has_voted is False

    async def test_lost_race_is_a_denial(self, session, registry, detector, enrolled):
        other_booth = VerificationSession(registry, detect_face=detector)
        session.search("V1000000")
        other_booth.search("V1000000")

        assert (await other_booth.capture(CLOSE)).outcome == AttemptOutcome.ADMITTED
        attempt = await session.capture(CLOSE)

        assert attempt.outcome == AttemptOutcome.DENIED_ALREADY_VOTED
        assert session.state == SessionState.VERIFY

    async def test_concurrent_booths_admit_once(self, registry, detector, enrolled):
        booths = [VerificationSession(registry, detect_face=detector) for _ in range(5)]
        for booth in booths:
            booth.search("V1000000")

        attempts = await asyncio.gather(*(booth.capture(CLOSE) for booth in booths))
        outcomes = [a.outcome for a in attempts]

        assert outcomes.count(AttemptOutcome.ADMITTED) == 1
        assert outcomes.count(AttemptOutcome.DENIED_ALREADY_VOTED) == 4

    async def test_dimension_mismatch_aborts(self, session, registry, enrolled):
        session.search("V1000000")
        with pytest.raises(DimensionMismatchError):
            await session.capture(WRONG_MODEL)

        assert session.state == SessionState.ABORTED
        assert registry.find("V1000000").has_voted is False
        assert session.next_voter().state == SessionState.SEARCH

    async def test_timeout_is_reported_and_retryable(self, registry, enrolled):
        release = threading.Event()

        def slow_detector(image):
            release.wait(1)
            return None

        session = VerificationSession(registry, detect_face=slow_detector, timeout=0.05)
        session.search("V1000000")
        try:
            attempt = await session.capture(CLOSE)
        finally:
            release.set()

        assert attempt.outcome == AttemptOutcome.CAPTURE_FAILED
        assert session.state == SessionState.VERIFY

    async def test_cancelled_capture_leaves_state_untouched(self, registry, enrolled, enrolled_embedding):
        release = threading.Event()

        def blocking_detector(image):
            release.wait(1)
            return enrolled_embedding

        session = VerificationSession(registry, detect_face=blocking_detector, timeout=5)
        session.search("V1000000")

        task = asyncio.create_task(session.capture(CLOSE))
        await asyncio.sleep(0.01)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        release.set()

        assert session.state == SessionState.VERIFY
        assert session.last_attempt is None
        assert registry.find("V1000000").has_voted is False

    async def test_cancel_after_match_still_admits(self, session, registry, detector, enrolled):
        session.search("V1000000")

        # Hold the registry so the capture parks on the vote step
        await registry._write_lock.acquire()
        task = asyncio.create_task(session.capture(CLOSE))
        for _ in range(100):
            if detector.calls:
                break
            await asyncio.sleep(0.01)
        await asyncio.sleep(0.05)

        task.cancel()
        registry._write_lock.release()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert registry.find("V1000000").has_voted is True
        assert session.state == SessionState.RESULT
        assert session.ballot is not None
        assert session.ballot.voter_id == "V1000000"
        assert session.last_attempt.outcome == AttemptOutcome.ADMITTED
        assert session.last_attempt.ballot == session.ballot


class TestNextVoter:
    async def test_only_allowed_after_result(self, session, enrolled):
        with pytest.raises(SessionStateError):
            session.next_voter()
        session.search("V1000000")
        with pytest.raises(SessionStateError):
            session.next_voter()

    async def test_returns_fresh_session(self, session, enrolled):
        session.search("V1000000")
        await session.capture(CLOSE)

        fresh = session.next_voter()
        assert fresh is not session
        assert fresh.state == SessionState.SEARCH
        assert fresh.voter is None
        assert fresh.ballot is None


class TestSessionManager:
    async def test_open_get_next_close(self, registry, detector, enrolled):
        manager = SessionManager(registry, detect_face=detector)
        session_id, session = manager.open()
        assert manager.get(session_id) is session

        session.search("V1000000")
        await session.capture(CLOSE)

        fresh = manager.next_voter(session_id)
        assert manager.get(session_id) is fresh
        assert fresh.state == SessionState.SEARCH

        assert manager.close(session_id) is True
        assert manager.get(session_id) is None
        assert manager.close(session_id) is False
        assert len(manager) == 0

    async def test_idle_sessions_expire(self, registry, detector):
        now = [1000.0]
        manager = SessionManager(registry, detect_face=detector, idle_timeout=60, clock=lambda: now[0])
        idle_id, _ = manager.open()
        busy_id, _ = manager.open()

        now[0] += 45
        assert manager.get(busy_id) is not None

        now[0] += 30
        assert manager.get(idle_id) is None
        assert manager.get(busy_id) is not None
        assert len(manager) == 1

    async def test_expiry_keeps_recorded_vote(self, registry, detector, enrolled):
        now = [0.0]
        manager = SessionManager(registry, detect_face=detector, idle_timeout=60, clock=lambda: now[0])
        session_id, session = manager.open()
        session.search("V1000000")
        await session.capture(CLOSE)

        now[0] += 61
        assert manager.expire_idle() == 1
        assert manager.get(session_id) is None
        assert registry.find("V1000000").has_voted is True

    def test_zero_timeout_disables_expiry(self, registry, detector):
        now = [0.0]
        manager = SessionManager(registry, detect_face=detector, idle_timeout=0, clock=lambda: now[0])
        session_id, _ = manager.open()
        now[0] += 10 ** 6
        assert manager.expire_idle() == 0
        assert manager.get(session_id) is not None
