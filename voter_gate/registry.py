"""
Voter Registry

Authoritative store of voter records. The four mutation-relevant operations
(register, find, mark_voted, reset) are the only way to touch records.

Concurrency model:
- All writes run under one asyncio lock, so two booth sessions for the same
  voter can never both observe has_voted == False and both succeed.
- Records are frozen and published with a single dict assignment, so find()
  never sees a half-built record and needs no lock.
- With a session maker, writes go to the database first; a storage failure
  leaves the in-memory map untouched.
"""
import asyncio
import logging
from typing import Dict, List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import async_sessionmaker

from voter_gate.config import EMBEDDING_DIM
from voter_gate.exceptions import (
    AlreadyVotedError,
    DimensionMismatchError,
    DuplicateIdError,
    NotFoundError,
    PersistenceError,
)
from voter_gate.repository import VoterRecordRepository
from voter_gate.schemas import RegistryStats, VoterRecord

logger = logging.getLogger(__name__)


class VoterRegistry:
    """
    In-memory voter registry with optional write-through persistence.

    Must be used from a single event loop.
    """

    def __init__(
        self,
        embedding_dim: int = EMBEDDING_DIM,
        session_maker: Optional[async_sessionmaker] = None
    ):
        self.embedding_dim = embedding_dim
        self._session_maker = session_maker
        self._records: Dict[str, VoterRecord] = {}
        self._write_lock = asyncio.Lock()

    @property
    def persistent(self) -> bool:
        return self._session_maker is not None

    async def load(self) -> int:
        """Warm the in-memory map from the database. Returns the number loaded."""
        if not self.persistent:
            return 0

        async with self._write_lock:
            async with self._session_maker() as session:
                rows = await VoterRecordRepository.get_all(session)

            records = {}
            for row in rows:
                record = row.to_record()
                if len(record.biometric_template) != self.embedding_dim:
                    raise DimensionMismatchError(self.embedding_dim, len(record.biometric_template))
                records[record.id] = record
            self._records = records

        logger.info(f"Loaded {len(self._records)} voters from database")
        return len(self._records)

    async def register(self, record: VoterRecord) -> VoterRecord:
        """
        Insert a new voter.

        Raises:
            ValueError: If the id is empty
            DimensionMismatchError: If the template length is wrong
            DuplicateIdError: If the id is already registered
        """
        if not record.id or not record.id.strip():
            raise ValueError("Voter id must be non-empty")

        if len(record.biometric_template) != self.embedding_dim:
            raise DimensionMismatchError(self.embedding_dim, len(record.biometric_template))

        if record.has_voted:
            record = record.model_copy(update={"has_voted": False})

        async with self._write_lock:
            if record.id in self._records:
                raise DuplicateIdError(record.id)

            if self.persistent:
                try:
                    async with self._session_maker() as session:
                        await VoterRecordRepository.create(session, record)
                except IntegrityError:
                    raise DuplicateIdError(record.id)
                except Exception as e:
                    logger.error(f"Failed to persist voter {record.id}: {e}")
                    raise PersistenceError(f"Failed to store voter {record.id}", operation="register")

            self._records[record.id] = record

        logger.info(f"Registered voter {record.id}")
        return record

    def find(self, voter_id: str) -> VoterRecord:
        """
        Exact-match lookup.

        Raises:
            NotFoundError: If no voter has this id
        """
        record = self._records.get(voter_id)
        if record is None:
            raise NotFoundError(voter_id)
        return record

    async def mark_voted(self, voter_id: str) -> VoterRecord:
        """
        Perform the single has_voted transition for a voter.

        Raises:
            NotFoundError: If the voter does not exist
            AlreadyVotedError: If the voter has already voted; the existing
                record is attached and left unchanged
        """
        async with self._write_lock:
            record = self.find(voter_id)
            if record.has_voted:
                raise AlreadyVotedError(voter_id, record)

            if self.persistent:
                await self._persist_vote(record)

            voted = record.model_copy(update={"has_voted": True})
            self._records[voter_id] = voted

        logger.info(f"Voter {voter_id} marked as voted")
        return voted

    async def _persist_vote(self, record: VoterRecord) -> None:
        try:
            async with self._session_maker() as session:
                transitioned = await VoterRecordRepository.mark_voted(session, record.id)
                if transitioned:
                    return
                row = await VoterRecordRepository.get_by_id(session, record.id)
        except Exception as e:
            logger.error(f"Failed to persist vote for {record.id}: {e}")
            raise PersistenceError(f"Failed to record vote for {record.id}", operation="mark_voted")

        if row is not None and row.has_voted:
            # Another process already flipped it; adopt the stored state
            voted = record.model_copy(update={"has_voted": True})
            self._records[record.id] = voted
            raise AlreadyVotedError(record.id, voted)

        raise PersistenceError(f"Voter {record.id} missing from database", operation="mark_voted")

    async def reset(self) -> int:
        """
        Clear the whole registry. Administrative only.

        Returns:
            Number of records removed
        """
        async with self._write_lock:
            if self.persistent:
                try:
                    async with self._session_maker() as session:
                        await VoterRecordRepository.delete_all(session)
                except Exception as e:
                    logger.error(f"Failed to reset database: {e}")
                    raise PersistenceError("Failed to reset registry", operation="reset")

            removed = len(self._records)
            self._records = {}

        logger.warning(f"Registry reset, {removed} voters removed")
        return removed

    def list_records(self, skip: int = 0, limit: int = 100) -> List[VoterRecord]:
        records = sorted(self._records.values(), key=lambda r: r.registered_at)
        return records[skip:skip + limit]

    def count(self) -> int:
        return len(self._records)

    def stats(self) -> RegistryStats:
        records = list(self._records.values())
        voted = sum(1 for r in records if r.has_voted)
        return RegistryStats(total=len(records), voted=voted, pending=len(records) - voted)
