"""
Pydantic models for voter records, verification results and API schemas
"""
import json
import secrets
import string
import time
from datetime import datetime
from enum import Enum
from typing import List, Optional, Tuple

from pydantic import BaseModel, Field

from voter_gate.config import UNKNOWN


# ============================================================================
# Domain models
# ============================================================================

class VoterRecord(BaseModel):
    """
    A registered voter.

    Immutable: the registry replaces the whole record when the vote flag
    flips, it never edits one in place.
    """
    id: str = Field(..., min_length=1, description="Document id, registry primary key")
    name: str = Field(default=UNKNOWN)
    date_of_birth: str = Field(default=UNKNOWN)
    address: str = Field(default=UNKNOWN)
    photo_reference: str = Field(..., description="Opaque reference to the enrollment image")
    biometric_template: Tuple[float, ...] = Field(..., description="Face embedding captured at enrollment")
    has_voted: bool = Field(default=False)
    registered_at: datetime = Field(default_factory=datetime.utcnow)

    class Config:
        frozen = True


class ExtractedFields(BaseModel):
    """Structured identity fields read from document text."""
    id: str = UNKNOWN
    name: str = UNKNOWN
    date_of_birth: str = UNKNOWN
    address: str = UNKNOWN

    @property
    def missing_fields(self) -> List[str]:
        return [
            field_name
            for field_name in ("id", "name", "date_of_birth")
            if getattr(self, field_name) == UNKNOWN
        ]


class MatchOutcome(BaseModel):
    """Result of comparing two embeddings."""
    distance: float = Field(..., ge=0)
    is_match: bool
    score: int = Field(..., ge=0, le=100, description="Confidence percentage")


class SearchOutcome(str, Enum):
    FOUND = "found"
    NOT_FOUND = "not_found"
    ALREADY_VOTED = "already_voted"


class AttemptOutcome(str, Enum):
    ADMITTED = "admitted"
    NO_MATCH = "no_match"
    NO_FACE_DETECTED = "no_face_detected"
    DENIED_ALREADY_VOTED = "denied_already_voted"
    CAPTURE_FAILED = "capture_failed"


class BallotToken(BaseModel):
    """One-time admission token handed to an admitted voter."""
    voter_id: str
    token: str
    timestamp: int = Field(..., description="Issue time in epoch milliseconds")

    @classmethod
    def issue(cls, voter_id: str) -> "BallotToken":
        alphabet = string.ascii_lowercase + string.digits
        suffix = "".join(secrets.choice(alphabet) for _ in range(9))
        return cls(
            voter_id=voter_id,
            token=f"SECURE-{suffix}",
            timestamp=int(time.time() * 1000)
        )

    def payload(self) -> str:
        """JSON payload suitable for encoding into a QR code."""
        return json.dumps({"id": self.voter_id, "token": self.token, "timestamp": self.timestamp})


class VerificationAttempt(BaseModel):
    """A single capture-and-compare step. Not persisted."""
    voter_id: str
    outcome: AttemptOutcome
    live_embedding: Optional[Tuple[float, ...]] = None
    distance: Optional[float] = None
    score: int = 0
    ballot: Optional[BallotToken] = None
    message: str = ""


# ============================================================================
# API schemas
# ============================================================================

class VoterOut(BaseModel):
    """Schema for a voter record response (template omitted)"""
    id: str = Field(..., description="Document id")
    name: str = Field(..., description="Extracted name")
    date_of_birth: str = Field(..., description="Extracted date of birth")
    address: str = Field(..., description="Extracted address")
    photo_reference: str = Field(..., description="Reference to the enrollment photo")
    has_voted: bool = Field(..., description="Whether the voter has been admitted")
    registered_at: datetime = Field(..., description="Timestamp when the voter was enrolled")

    class Config:
        json_schema_extra = {
            "example": {
                "id": "VOT12345678",
                "name": "Jane Doe",
                "date_of_birth": "01/02/1990",
                "address": "Extracted from ID",
                "photo_reference": "3f2a9c1e.jpg",
                "has_voted": False,
                "registered_at": "2024-01-15T10:30:00"
            }
        }

    @classmethod
    def from_record(cls, record: VoterRecord) -> "VoterOut":
        return cls(
            id=record.id,
            name=record.name,
            date_of_birth=record.date_of_birth,
            address=record.address,
            photo_reference=record.photo_reference,
            has_voted=record.has_voted,
            registered_at=record.registered_at
        )


class VoterList(BaseModel):
    """Schema for listing registered voters"""
    total_count: int = Field(..., description="Total number of voters")
    voters: List[VoterOut] = Field(..., description="List of voters")


class EnrollResponse(BaseModel):
    """Schema for enrollment response"""
    success: bool = Field(..., description="Whether the voter was registered")
    message: str = Field(..., description="Status message")
    voter: Optional[VoterOut] = Field(default=None, description="Registered voter")
    missing_fields: List[str] = Field(default_factory=list, description="Fields left as 'unknown'")
    processing_time_ms: float = Field(..., description="Processing time in milliseconds")


class RegistryStats(BaseModel):
    """Schema for registry status counters"""
    total: int
    voted: int
    pending: int


class SessionOpened(BaseModel):
    session_id: str
    state: str


class SearchRequest(BaseModel):
    voter_id: str = Field(..., min_length=1, description="Voter id as printed on the document")


class SearchResponse(BaseModel):
    """Schema for booth search response"""
    session_id: str
    state: str
    outcome: SearchOutcome
    voter: Optional[VoterOut] = None


class CaptureResponse(BaseModel):
    """Schema for booth capture response"""
    session_id: str
    state: str
    outcome: AttemptOutcome
    distance: Optional[float] = Field(default=None, description="Euclidean distance (lower is better)")
    score: int = Field(..., ge=0, le=100, description="Match score percentage")
    message: str = ""
    ballot: Optional[BallotToken] = None
    qr_payload: Optional[str] = Field(default=None, description="Ballot token encoded for a QR code")
    processing_time_ms: float

    class Config:
        json_schema_extra = {
            "example": {
                "session_id": "550e8400-e29b-41d4-a716-446655440000",
                "state": "result",
                "outcome": "admitted",
                "distance": 0.3,
                "score": 70,
                "message": "Identity verified",
                "ballot": {"voter_id": "VOT12345678", "token": "SECURE-k3j9x0a1b", "timestamp": 1705314600000},
                "qr_payload": "{\"id\": \"VOT12345678\", \"token\": \"SECURE-k3j9x0a1b\", \"timestamp\": 1705314600000}",
                "processing_time_ms": 245.5
            }
        }


class ResetResponse(BaseModel):
    success: bool
    removed: int


class ErrorResponse(BaseModel):
    """Schema for error responses"""
    error: str = Field(..., description="Error type")
    detail: str = Field(..., description="Detailed error message")

    class Config:
        json_schema_extra = {
            "example": {
                "error": "NoFaceDetectedError",
                "detail": "No face detected in the provided image"
            }
        }
