"""Shared fixtures. External capabilities are replaced by plain fakes."""
import os
import tempfile

# Keep test runs away from the real data directory and database
os.environ.setdefault("VOTER_GATE_DATA_DIR", tempfile.mkdtemp(prefix="voter_gate_test_"))
os.environ.setdefault("PERSISTENCE_ENABLED", "0")

import pytest

from voter_gate.registry import VoterRegistry
from voter_gate.schemas import VoterRecord

DIM = 128

ID_CARD_TEXT = """ELECTION COMMISSION
Jane Doe
Voter ID VOT12345678
DOB: 01/02/1990
"""


def make_embedding(base: float = 0.05, dim: int = DIM) -> list:
    return [base] * dim


def shifted(embedding: list, distance: float) -> list:
    """Copy of embedding moved by exactly `distance` along the first axis."""
    moved = list(embedding)
    moved[0] += distance
    return moved


def make_record(voter_id: str = "VOT12345678", embedding=None, **overrides) -> VoterRecord:
    fields = dict(
        id=voter_id,
        name="Jane Doe",
        date_of_birth="01/02/1990",
        address="Extracted from ID",
        photo_reference="photo.jpg",
        biometric_template=tuple(embedding if embedding is not None else make_embedding()),
    )
    fields.update(overrides)
    return VoterRecord(**fields)


class FakeFaceDetector:
    """Returns a canned embedding per image, None for unknown images."""

    def __init__(self, faces=None):
        self.faces = dict(faces or {})
        self.calls = 0

    def __call__(self, image: bytes):
        self.calls += 1
        return self.faces.get(image)


class FakeTextRecognizer:
    def __init__(self, text: str = ID_CARD_TEXT):
        self.text = text

    def __call__(self, image: bytes) -> str:
        return self.text


@pytest.fixture
def registry():
    return VoterRegistry(embedding_dim=DIM)


@pytest.fixture
def enrolled_embedding():
    return make_embedding()
