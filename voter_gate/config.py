"""
Configuration settings for the Voter Gate service
"""
import os
from pathlib import Path

# Base directories
BASE_DIR = Path(__file__).resolve().parent.parent
DATA_DIR = Path(os.getenv("VOTER_GATE_DATA_DIR", BASE_DIR / "data"))
PHOTOS_DIR = DATA_DIR / "photos"

# Ensure directories exist
DATA_DIR.mkdir(parents=True, exist_ok=True)
PHOTOS_DIR.mkdir(exist_ok=True)


def _get_bool_env(key: str, default: bool) -> bool:
    value = os.getenv(key, "").strip().lower()
    if value in ("1", "true", "yes", "on"):
        return True
    if value in ("0", "false", "no", "off"):
        return False
    return default


# =============================================================================
# Persistence
# =============================================================================

# The registry is authoritative in memory; the database is a write-through copy
PERSISTENCE_ENABLED = _get_bool_env("PERSISTENCE_ENABLED", True)
DATABASE_URL = os.getenv(
    "DATABASE_URL",
    f"sqlite+aiosqlite:///{DATA_DIR / 'voters.db'}"
)
DB_POOL_SIZE = int(os.getenv("DB_POOL_SIZE", "5"))
DB_MAX_OVERFLOW = int(os.getenv("DB_MAX_OVERFLOW", "10"))

# =============================================================================
# Biometrics
# =============================================================================

# Facenet produces 128-dimensional embeddings
FACE_RECOGNITION_MODEL = os.getenv("FACE_RECOGNITION_MODEL", "Facenet")

# SSD is a fast single-shot detector, good enough for a booth webcam
FACE_DETECTOR_BACKEND = os.getenv("FACE_DETECTOR_BACKEND", "ssd")

# Every stored template and every live capture must have this length
EMBEDDING_DIM = int(os.getenv("EMBEDDING_DIM", "128"))

# Euclidean distance below this value counts as the same person.
# Lower distance = more similar.
MATCH_THRESHOLD = 0.6

# =============================================================================
# Text recognition
# =============================================================================
OCR_LANGUAGE = os.getenv("OCR_LANGUAGE", "eng")
TESSERACT_CMD = os.getenv("TESSERACT_CMD", "")

# Sentinel for fields the extractor could not find
UNKNOWN = "unknown"
ADDRESS_PLACEHOLDER = "Extracted from ID"

# =============================================================================
# Orchestration
# =============================================================================

# Upper bound for a single OCR or face-embedding call
CAPABILITY_TIMEOUT_SEC = float(os.getenv("CAPABILITY_TIMEOUT_SEC", "30"))

# Booth sessions idle longer than this are dropped; 0 disables expiry
SESSION_IDLE_TIMEOUT_SEC = float(os.getenv("SESSION_IDLE_TIMEOUT_SEC", "1800"))

# Image preprocessing
MAX_IMAGE_SIZE = (1024, 1024)
SUPPORTED_FORMATS = {".jpg", ".jpeg", ".png", ".webp", ".bmp"}

# =============================================================================
# API Configuration
# =============================================================================
ADMIN_TOKEN = os.getenv("ADMIN_TOKEN", "")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

API_TITLE = "Voter Gate API"
API_DESCRIPTION = """
Identity verification for one-person-one-vote admission control.

## Features
- **Enroll Voter**: Register a voter from a scanned ID (OCR fields + face template)
- **Lookup**: List registered voters or fetch one by id
- **Booth Sessions**: Search a voter, capture a live face, admit or deny
- **Admin Reset**: Clear the registry (requires admin token)

## Matching
- **Face Embedding**: DeepFace (Facenet, 128-d, L2-normalized)
- **Decision**: Euclidean distance < 0.6
- **Guarantee**: a voter is admitted at most once
"""
API_VERSION = "1.0.0"
