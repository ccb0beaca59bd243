"""
SQLAlchemy ORM Models for the voter registry

Defines the voters table:
CREATE TABLE voters (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    date_of_birth TEXT NOT NULL,
    address TEXT NOT NULL,
    photo_reference TEXT NOT NULL,
    biometric_template JSON NOT NULL,
    has_voted BOOLEAN NOT NULL DEFAULT false,
    registered_at TIMESTAMP NOT NULL
);
"""
from datetime import datetime
from sqlalchemy import Column, String, Boolean, DateTime, Text, JSON

from voter_gate.database import Base
from voter_gate.schemas import VoterRecord


class VoterRecordDB(Base):
    """
    SQLAlchemy model for the voters table.

    The template is written once at insert; only has_voted is ever updated.
    """
    __tablename__ = "voters"

    id = Column(String(64), primary_key=True)
    name = Column(Text, nullable=False)
    date_of_birth = Column(Text, nullable=False)
    address = Column(Text, nullable=False)
    photo_reference = Column(Text, nullable=False)
    biometric_template = Column(JSON, nullable=False)
    has_voted = Column(Boolean, default=False, nullable=False)
    registered_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    def __repr__(self):
        return f"<VoterRecordDB(id={self.id}, name='{self.name}', has_voted={self.has_voted})>"

    @classmethod
    def from_record(cls, record: VoterRecord) -> "VoterRecordDB":
        return cls(
            id=record.id,
            name=record.name,
            date_of_birth=record.date_of_birth,
            address=record.address,
            photo_reference=record.photo_reference,
            biometric_template=list(record.biometric_template),
            has_voted=record.has_voted,
            registered_at=record.registered_at
        )

    def to_record(self) -> VoterRecord:
        return VoterRecord(
            id=self.id,
            name=self.name,
            date_of_birth=self.date_of_birth,
            address=self.address,
            photo_reference=self.photo_reference,
            biometric_template=tuple(self.biometric_template),
            has_voted=self.has_voted,
            registered_at=self.registered_at
        )
