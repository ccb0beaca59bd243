"""
Voting booth verification session

Per-voter state machine:

    SEARCH --found--> VERIFY --admitted--> RESULT
                       |  ^
                       +--+  no face / no match / denied / capture failed

A fatal condition (dimension mismatch, registry corruption) moves the session
to ABORTED and re-raises. RESULT and ABORTED are left only through
next_voter(), which hands back a fresh session in SEARCH.
"""
import asyncio
import logging
import time
import uuid
from enum import Enum
from typing import Callable, Dict, Optional, Tuple

from voter_gate.capabilities import FaceDetector, run_capability
from voter_gate.config import CAPABILITY_TIMEOUT_SEC, SESSION_IDLE_TIMEOUT_SEC
from voter_gate.exceptions import (
    AlreadyVotedError,
    CaptureTimeoutError,
    DimensionMismatchError,
    NotFoundError,
    SessionStateError,
)
from voter_gate.matcher import BiometricMatcher
from voter_gate.registry import VoterRegistry
from voter_gate.schemas import (
    AttemptOutcome,
    BallotToken,
    SearchOutcome,
    VerificationAttempt,
    VoterRecord,
)

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    SEARCH = "search"
    VERIFY = "verify"
    RESULT = "result"
    ABORTED = "aborted"


class VerificationSession:
    """Search -> live capture -> match -> admit/deny for one voter."""

    def __init__(
        self,
        registry: VoterRegistry,
        detect_face: FaceDetector,
        matcher: Optional[BiometricMatcher] = None,
        timeout: Optional[float] = CAPABILITY_TIMEOUT_SEC
    ):
        self.registry = registry
        self.detect_face = detect_face
        self.matcher = matcher or BiometricMatcher()
        self.timeout = timeout

        self.state = SessionState.SEARCH
        self.voter: Optional[VoterRecord] = None
        self.last_attempt: Optional[VerificationAttempt] = None
        self.ballot: Optional[BallotToken] = None

    def _require(self, state: SessionState, operation: str) -> None:
        if self.state != state:
            raise SessionStateError(operation, self.state.value)

    def search(self, voter_id: str) -> SearchOutcome:
        """Look the voter up; only a registered voter who has not voted moves on to VERIFY."""
        self._require(SessionState.SEARCH, "search")

        try:
            record = self.registry.find(voter_id)
        except NotFoundError:
            logger.info(f"Search: voter {voter_id} not found")
            return SearchOutcome.NOT_FOUND

        if record.has_voted:
            logger.info(f"Search: voter {voter_id} has already voted")
            return SearchOutcome.ALREADY_VOTED

        self.voter = record
        self.state = SessionState.VERIFY
        return SearchOutcome.FOUND

    async def capture(self, image: bytes) -> VerificationAttempt:
        """
        Run one live capture against the stored template.

        Recoverable outcomes keep the session in VERIFY so the operator can
        retry as often as needed. Cancelling the awaiting task before the
        match decision leaves both the session and the registry untouched.
        Cancelling after a match lets the vote complete and records the
        outcome on the session before CancelledError propagates.

        Raises:
            SessionStateError: If the session is not in VERIFY
            DimensionMismatchError: Live and stored embeddings differ in length
        """
        self._require(SessionState.VERIFY, "capture")
        voter_id = self.voter.id

        try:
            embedding = await run_capability(self.detect_face, image, "Face detection", self.timeout)
        except CaptureTimeoutError as e:
            return self._finish(VerificationAttempt(
                voter_id=voter_id,
                outcome=AttemptOutcome.CAPTURE_FAILED,
                message=e.message
            ))

        if embedding is None:
            logger.info(f"Capture for {voter_id}: no face detected")
            return self._finish(VerificationAttempt(
                voter_id=voter_id,
                outcome=AttemptOutcome.NO_FACE_DETECTED,
                message="Please look directly at the camera and try again."
            ))

        live_embedding = tuple(float(x) for x in embedding)

        try:
            result = self.matcher.compare(live_embedding, self.voter.biometric_template)
        except DimensionMismatchError:
            self._abort(f"embedding dimension mismatch for voter {voter_id}")
            raise

        attempt = VerificationAttempt(
            voter_id=voter_id,
            outcome=AttemptOutcome.NO_MATCH,
            live_embedding=live_embedding,
            distance=result.distance,
            score=result.score,
        )

        if not result.is_match:
            logger.info(f"Capture for {voter_id}: no match (distance {result.distance:.4f}, {result.score}%)")
            attempt.message = "Face does not match the stored ID photo."
            return self._finish(attempt)

        # The vote transition must complete even if the operator cancels now
        vote = asyncio.ensure_future(self.registry.mark_voted(voter_id))
        try:
            await asyncio.shield(vote)
        except asyncio.CancelledError:
            # Cancelled after the match decision: let the vote land, then
            # record the outcome before propagating the cancellation
            try:
                await vote
            except AlreadyVotedError:
                self._deny(attempt)
            except NotFoundError:
                self._abort(f"voter {voter_id} disappeared from the registry")
            else:
                self._admit(attempt)
            raise
        except AlreadyVotedError:
            return self._deny(attempt)
        except NotFoundError:
            self._abort(f"voter {voter_id} disappeared from the registry")
            raise

        return self._admit(attempt)

    def _admit(self, attempt: VerificationAttempt) -> VerificationAttempt:
        self.ballot = BallotToken.issue(attempt.voter_id)
        attempt.outcome = AttemptOutcome.ADMITTED
        attempt.ballot = self.ballot
        attempt.message = "Identity verified"
        self.state = SessionState.RESULT
        logger.info(f"Voter {attempt.voter_id} admitted (distance {attempt.distance:.4f}, {attempt.score}%)")
        return self._finish(attempt)

    def _deny(self, attempt: VerificationAttempt) -> VerificationAttempt:
        logger.warning(f"Capture for {attempt.voter_id}: matched but voter already voted, denying")
        attempt.outcome = AttemptOutcome.DENIED_ALREADY_VOTED
        attempt.message = "This voter ID has already been used to vote."
        return self._finish(attempt)

    def _finish(self, attempt: VerificationAttempt) -> VerificationAttempt:
        self.last_attempt = attempt
        return attempt

    def _abort(self, reason: str) -> None:
        logger.error(f"Session aborted: {reason}")
        self.state = SessionState.ABORTED
        self.last_attempt = None

    def next_voter(self) -> "VerificationSession":
        """Discard this session and return a fresh one in SEARCH."""
        if self.state not in (SessionState.RESULT, SessionState.ABORTED):
            raise SessionStateError("process next voter", self.state.value)

        self.voter = None
        self.last_attempt = None
        return VerificationSession(
            registry=self.registry,
            detect_face=self.detect_face,
            matcher=self.matcher,
            timeout=self.timeout
        )


class SessionManager:
    """
    Open booth sessions keyed by id, for the HTTP surface.

    A session untouched for idle_timeout seconds is dropped the next time
    any session is opened or looked up. Dropping a session never touches the
    registry: a recorded vote stays recorded, an unfinished one was never made.
    """

    def __init__(
        self,
        registry: VoterRegistry,
        detect_face: FaceDetector,
        matcher: Optional[BiometricMatcher] = None,
        idle_timeout: Optional[float] = SESSION_IDLE_TIMEOUT_SEC,
        clock: Callable[[], float] = time.monotonic
    ):
        self.registry = registry
        self.detect_face = detect_face
        self.matcher = matcher or BiometricMatcher()
        self.idle_timeout = idle_timeout
        self._clock = clock
        self._sessions: Dict[str, VerificationSession] = {}
        self._last_used: Dict[str, float] = {}

    def _touch(self, session_id: str) -> None:
        self._last_used[session_id] = self._clock()

    def expire_idle(self) -> int:
        """Drop sessions idle for longer than idle_timeout. Returns the number dropped."""
        if not self.idle_timeout:
            return 0

        cutoff = self._clock() - self.idle_timeout
        stale = [sid for sid, used in self._last_used.items() if used < cutoff]
        for sid in stale:
            self.close(sid)

        if stale:
            logger.info(f"Expired {len(stale)} idle booth sessions")
        return len(stale)

    def open(self) -> Tuple[str, VerificationSession]:
        self.expire_idle()
        session_id = str(uuid.uuid4())
        session = VerificationSession(self.registry, self.detect_face, self.matcher)
        self._sessions[session_id] = session
        self._touch(session_id)
        return session_id, session

    def get(self, session_id: str) -> Optional[VerificationSession]:
        self.expire_idle()
        session = self._sessions.get(session_id)
        if session is not None:
            self._touch(session_id)
        return session

    def next_voter(self, session_id: str) -> Optional[VerificationSession]:
        session = self.get(session_id)
        if session is None:
            return None
        fresh = session.next_voter()
        self._sessions[session_id] = fresh
        return fresh

    def close(self, session_id: str) -> bool:
        self._last_used.pop(session_id, None)
        return self._sessions.pop(session_id, None) is not None

    def __len__(self) -> int:
        return len(self._sessions)
