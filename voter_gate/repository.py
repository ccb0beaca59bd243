"""
Voter Records Repository

Database operations for the voters table using SQLAlchemy async.
"""
from typing import Optional, List
from sqlalchemy import select, update, delete
from sqlalchemy.ext.asyncio import AsyncSession
import logging

from voter_gate.models import VoterRecordDB
from voter_gate.schemas import VoterRecord

logger = logging.getLogger(__name__)


class VoterRecordRepository:
    """
    Repository class for voters table operations.

    All methods are async and require an AsyncSession.
    """

    @staticmethod
    async def create(session: AsyncSession, record: VoterRecord) -> VoterRecordDB:
        """Insert a new voter row and commit."""
        db_record = VoterRecordDB.from_record(record)

        session.add(db_record)
        await session.commit()
        await session.refresh(db_record)

        logger.info(f"Created DB record for voter {record.id}")
        return db_record

    @staticmethod
    async def get_by_id(session: AsyncSession, voter_id: str) -> Optional[VoterRecordDB]:
        """Get a voter row by its id."""
        result = await session.execute(
            select(VoterRecordDB).where(VoterRecordDB.id == voter_id)
        )
        return result.scalar_one_or_none()

    @staticmethod
    async def get_all(session: AsyncSession) -> List[VoterRecordDB]:
        """Get every voter row in registration order."""
        result = await session.execute(
            select(VoterRecordDB).order_by(VoterRecordDB.registered_at)
        )
        return list(result.scalars().all())

    @staticmethod
    async def mark_voted(session: AsyncSession, voter_id: str) -> bool:
        """
        Flip has_voted for a voter that has not voted yet.

        The WHERE clause makes the transition conditional, so concurrent
        writers cannot both succeed.

        Returns:
            True if this call performed the transition, False otherwise
        """
        result = await session.execute(
            update(VoterRecordDB)
            .where(VoterRecordDB.id == voter_id)
            .where(VoterRecordDB.has_voted == False)  # noqa: E712
            .values(has_voted=True)
        )
        await session.commit()

        if result.rowcount > 0:
            logger.info(f"Marked voter {voter_id} as voted in DB")
            return True
        return False

    @staticmethod
    async def delete_all(session: AsyncSession) -> int:
        """Remove every voter row. Administrative reset only."""
        result = await session.execute(delete(VoterRecordDB))
        await session.commit()
        logger.warning(f"Deleted {result.rowcount} voter rows")
        return result.rowcount
