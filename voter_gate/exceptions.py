"""
Error taxonomy for the Voter Gate service.

All service-specific exceptions inherit from VoterGateError. Everything except
DimensionMismatchError and PersistenceError is an expected, recoverable outcome
that the booth or enrollment flow surfaces to the operator.
"""
from typing import Any, Optional


class VoterGateError(Exception):
    """
    Base exception for all service errors.

    Attributes:
        message: Human-readable error message
        details: Additional error details (for debugging)
        recoverable: Whether the operator can recover by retrying
    """

    def __init__(
        self,
        message: str,
        details: Optional[dict[str, Any]] = None,
        recoverable: bool = True
    ):
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.recoverable = recoverable

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


class NotFoundError(VoterGateError):
    """No voter is registered under the given id."""

    def __init__(self, voter_id: str):
        super().__init__(f"Voter '{voter_id}' not found", details={"voter_id": voter_id})
        self.voter_id = voter_id


class DuplicateIdError(VoterGateError):
    """A voter with the same id is already registered."""

    def __init__(self, voter_id: str):
        super().__init__(f"Voter '{voter_id}' is already registered", details={"voter_id": voter_id})
        self.voter_id = voter_id


class AlreadyVotedError(VoterGateError):
    """
    The voter has already been admitted.

    Carries the existing (unchanged) record so callers can tell a genuine
    double submission apart from a fresh success.
    """

    def __init__(self, voter_id: str, record=None):
        super().__init__(f"Voter '{voter_id}' has already voted", details={"voter_id": voter_id})
        self.voter_id = voter_id
        self.record = record


class NoFaceDetectedError(VoterGateError):
    """The face capability found no face in the image."""

    def __init__(self, message: str = "No face detected in the provided image"):
        super().__init__(message)


class DimensionMismatchError(VoterGateError):
    """
    Two embeddings of different length were compared, or a template does not
    match the registry dimensionality. Indicates an enrollment/runtime model
    mismatch; never recoverable by retry.
    """

    def __init__(self, expected: int, actual: int):
        super().__init__(
            f"Embedding dimension mismatch: expected {expected}, got {actual}",
            details={"expected": expected, "actual": actual},
            recoverable=False
        )
        self.expected = expected
        self.actual = actual


class ExtractionIncompleteError(VoterGateError):
    """Required fields could not be read from the document."""

    def __init__(self, missing_fields: list[str]):
        super().__init__(
            f"Could not extract required fields: {', '.join(missing_fields)}",
            details={"missing_fields": missing_fields}
        )
        self.missing_fields = missing_fields


class CaptureTimeoutError(VoterGateError):
    """An OCR or face-embedding call did not finish in time."""

    def __init__(self, capability: str, timeout_sec: float):
        super().__init__(
            f"{capability} did not complete within {timeout_sec:g}s",
            details={"capability": capability, "timeout_sec": timeout_sec}
        )


class SessionStateError(VoterGateError):
    """An operation was requested in a state that does not allow it."""

    def __init__(self, operation: str, state: str):
        super().__init__(
            f"Cannot {operation} while session is in state '{state}'",
            details={"operation": operation, "state": state}
        )


class PersistenceError(VoterGateError):
    """The backing database rejected a write."""

    def __init__(self, message: str, operation: Optional[str] = None):
        details = {"operation": operation} if operation else None
        super().__init__(message, details=details, recoverable=False)
