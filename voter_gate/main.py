"""
Voter Gate API

Identity verification for one-person-one-vote admission control,
powered by DeepFace and Tesseract, with an optional SQL-backed registry.

Endpoints:
- POST /voters/enroll - Enroll a voter from a scanned ID
- GET /voters - List registered voters
- GET /voters/{voter_id} - Get one voter
- POST /booth/sessions - Open a booth session
- POST /booth/sessions/{session_id}/search - Search a voter
- POST /booth/sessions/{session_id}/capture - Verify a live capture
- POST /booth/sessions/{session_id}/next - Process next voter
- POST /admin/reset - Clear the registry
"""
import logging
import secrets
import time
import uuid
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

from fastapi import Depends, FastAPI, File, Header, HTTPException, Query, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse

from voter_gate.config import (
    ADMIN_TOKEN,
    API_DESCRIPTION,
    API_TITLE,
    API_VERSION,
    FACE_DETECTOR_BACKEND,
    FACE_RECOGNITION_MODEL,
    LOG_LEVEL,
    MATCH_THRESHOLD,
    PERSISTENCE_ENABLED,
    PHOTOS_DIR,
    SUPPORTED_FORMATS,
)
from voter_gate.database import async_session_maker, close_db, init_db
from voter_gate.enrollment import EnrollmentWorkflow
from voter_gate.exceptions import (
    AlreadyVotedError,
    CaptureTimeoutError,
    DimensionMismatchError,
    DuplicateIdError,
    ExtractionIncompleteError,
    NoFaceDetectedError,
    NotFoundError,
    PersistenceError,
    SessionStateError,
    VoterGateError,
)
from voter_gate.face_service import face_service
from voter_gate.ocr_service import ocr_service
from voter_gate.registry import VoterRegistry
from voter_gate.schemas import (
    CaptureResponse,
    EnrollResponse,
    ErrorResponse,
    RegistryStats,
    ResetResponse,
    SearchRequest,
    SearchResponse,
    SessionOpened,
    VoterList,
    VoterOut,
)
from voter_gate.session import SessionManager, VerificationSession

# Configure logging
logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

# Process-wide collaborators
registry = VoterRegistry(session_maker=async_session_maker if PERSISTENCE_ENABLED else None)
enrollment = EnrollmentWorkflow(registry, recognize_text=ocr_service, detect_face=face_service)
sessions = SessionManager(registry, detect_face=face_service)

ERROR_STATUS = {
    NotFoundError: 404,
    DuplicateIdError: 409,
    AlreadyVotedError: 409,
    SessionStateError: 409,
    NoFaceDetectedError: 422,
    ExtractionIncompleteError: 422,
    CaptureTimeoutError: 504,
    DimensionMismatchError: 500,
    PersistenceError: 500,
}


def get_registry() -> VoterRegistry:
    return registry


def get_enrollment() -> EnrollmentWorkflow:
    return enrollment


def get_sessions() -> SessionManager:
    return sessions


def get_photos_dir() -> Path:
    return PHOTOS_DIR


def get_admin_token() -> str:
    return ADMIN_TOKEN


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    # Startup
    logger.info("Starting Voter Gate API...")
    logger.info(f"Model: {FACE_RECOGNITION_MODEL}")
    logger.info(f"Detector: {FACE_DETECTOR_BACKEND}")

    if registry.persistent:
        await init_db()
        await registry.load()

    logger.info(f"Registry has {registry.count()} voters")
    yield

    # Shutdown
    if registry.persistent:
        await close_db()
    logger.info("Shutting down Voter Gate API...")


# Create FastAPI app
app = FastAPI(
    title=API_TITLE,
    description=API_DESCRIPTION,
    version=API_VERSION,
    lifespan=lifespan
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def validate_image_file(file: UploadFile) -> str:
    """Validate uploaded image file and return its extension."""
    if not file.filename:
        raise HTTPException(
            status_code=400,
            detail="No filename provided"
        )

    # Check file extension
    ext = "." + file.filename.lower().split(".")[-1] if "." in file.filename else ""
    if ext not in SUPPORTED_FORMATS:
        raise HTTPException(
            status_code=400,
            detail=f"Unsupported file format. Supported: {', '.join(sorted(SUPPORTED_FORMATS))}"
        )

    # Check content type
    if file.content_type and not file.content_type.startswith("image/"):
        raise HTTPException(
            status_code=400,
            detail="File must be an image"
        )
    return ext


async def read_image(file: UploadFile) -> bytes:
    try:
        image_bytes = await file.read()
    except Exception as e:
        raise HTTPException(status_code=400, detail=f"Failed to read image: {str(e)}")

    if len(image_bytes) == 0:
        raise HTTPException(status_code=400, detail="Empty image file")
    return image_bytes


def require_session(session_id: str, manager: SessionManager) -> VerificationSession:
    session = manager.get(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail=f"Session '{session_id}' not found")
    return session


@app.get("/", include_in_schema=False)
async def root(reg: VoterRegistry = Depends(get_registry)):
    """Root endpoint with API info."""
    return {
        "name": API_TITLE,
        "version": API_VERSION,
        "model": FACE_RECOGNITION_MODEL,
        "detector": FACE_DETECTOR_BACKEND,
        "threshold": MATCH_THRESHOLD,
        "total_voters": reg.count(),
        "endpoints": {
            "enroll": "POST /voters/enroll",
            "list": "GET /voters",
            "open_session": "POST /booth/sessions",
            "search": "POST /booth/sessions/{session_id}/search",
            "capture": "POST /booth/sessions/{session_id}/capture",
            "next": "POST /booth/sessions/{session_id}/next"
        }
    }


@app.get("/health")
async def health_check(
    reg: VoterRegistry = Depends(get_registry),
    manager: SessionManager = Depends(get_sessions)
):
    """Health check endpoint."""
    return {
        "status": "healthy",
        "model_loaded": face_service.model_loaded,
        "persistent": reg.persistent,
        "total_voters": reg.count(),
        "open_sessions": len(manager)
    }


# ============================================================================
# ENROLLMENT
# ============================================================================
@app.post(
    "/voters/enroll",
    response_model=EnrollResponse,
    responses={
        400: {"model": ErrorResponse, "description": "Invalid input"},
        409: {"model": ErrorResponse, "description": "Voter already registered"},
        422: {"model": ErrorResponse, "description": "No id or no face found"},
        500: {"model": ErrorResponse, "description": "ID photo could not be stored"}
    },
    summary="Enroll a voter from a scanned ID",
    description="""
    Register a voter from one image of their ID document.

    **Pipeline:**
    1. OCR and heuristic field extraction (id, name, date of birth)
    2. Face detection and embedding on the same image
    3. Record assembly and registration

    The voter is committed immediately; review extracted fields before uploading
    if a confirmation step is needed.
    """
)
async def enroll_voter(
    image: UploadFile = File(..., description="Scanned voter ID"),
    workflow: EnrollmentWorkflow = Depends(get_enrollment),
    photos_dir: Path = Depends(get_photos_dir)
):
    """Enroll a voter and store the ID photo."""
    start_time = time.time()

    ext = validate_image_file(image)
    image_bytes = await read_image(image)

    # The photo is written first so a committed voter always has one
    photo_reference = f"{uuid.uuid4().hex}{ext}"
    photo_path = photos_dir / photo_reference
    try:
        photo_path.write_bytes(image_bytes)
    except OSError as e:
        logger.error(f"Failed to store ID photo {photo_reference}: {e}")
        raise PersistenceError("Failed to store ID photo", operation="store_photo")

    try:
        result = await workflow.enroll(image_bytes, photo_reference)
    except BaseException:
        photo_path.unlink(missing_ok=True)
        raise

    processing_time = (time.time() - start_time) * 1000
    logger.info(f"Enrolled voter {result.record.id} in {processing_time:.1f}ms")

    return EnrollResponse(
        success=True,
        message=f"Voter {result.record.name} ({result.record.id}) has been added to the system",
        voter=VoterOut.from_record(result.record),
        missing_fields=result.missing_fields,
        processing_time_ms=round(processing_time, 2)
    )


# ============================================================================
# LOOKUP
# ============================================================================
@app.get(
    "/voters",
    response_model=VoterList,
    summary="List registered voters"
)
async def list_voters(
    skip: int = Query(0, ge=0, description="Number of voters to skip"),
    limit: int = Query(100, ge=1, le=1000, description="Maximum number of voters to return"),
    reg: VoterRegistry = Depends(get_registry)
):
    """List voters in registration order."""
    records = reg.list_records(skip=skip, limit=limit)
    return VoterList(
        total_count=reg.count(),
        voters=[VoterOut.from_record(r) for r in records]
    )


@app.get("/stats", response_model=RegistryStats, summary="Registry status counters")
async def registry_stats(reg: VoterRegistry = Depends(get_registry)):
    return reg.stats()


@app.get(
    "/voters/{voter_id}",
    response_model=VoterOut,
    responses={404: {"model": ErrorResponse, "description": "Voter not found"}},
    summary="Get a voter"
)
async def get_voter(voter_id: str, reg: VoterRegistry = Depends(get_registry)):
    return VoterOut.from_record(reg.find(voter_id))


@app.get(
    "/voters/{voter_id}/photo",
    responses={404: {"model": ErrorResponse, "description": "Voter or photo not found"}},
    summary="Get a voter's enrollment photo"
)
async def get_voter_photo(
    voter_id: str,
    reg: VoterRegistry = Depends(get_registry),
    photos_dir: Path = Depends(get_photos_dir)
):
    record = reg.find(voter_id)
    path = photos_dir / record.photo_reference
    if not path.is_file():
        raise HTTPException(status_code=404, detail=f"Photo for voter '{voter_id}' not found")
    return FileResponse(path)


# ============================================================================
# BOOTH SESSIONS
# ============================================================================
@app.post("/booth/sessions", response_model=SessionOpened, summary="Open a booth session")
async def open_session(manager: SessionManager = Depends(get_sessions)):
    session_id, session = manager.open()
    logger.info(f"Opened booth session {session_id}")
    return SessionOpened(session_id=session_id, state=session.state.value)


@app.post(
    "/booth/sessions/{session_id}/search",
    response_model=SearchResponse,
    responses={409: {"model": ErrorResponse, "description": "Session not in search state"}},
    summary="Search a voter by id"
)
async def search_voter(
    session_id: str,
    request: SearchRequest,
    manager: SessionManager = Depends(get_sessions)
):
    session = require_session(session_id, manager)
    outcome = session.search(request.voter_id)
    return SearchResponse(
        session_id=session_id,
        state=session.state.value,
        outcome=outcome,
        voter=VoterOut.from_record(session.voter) if session.voter else None
    )


@app.post(
    "/booth/sessions/{session_id}/capture",
    response_model=CaptureResponse,
    responses={
        400: {"model": ErrorResponse, "description": "Invalid input"},
        409: {"model": ErrorResponse, "description": "Session not in verify state"},
        500: {"model": ErrorResponse, "description": "Session aborted"}
    },
    summary="Verify a live capture",
    description="""
    Compare a live face capture against the searched voter's stored template.

    **Outcomes:**
    - `admitted`: match, vote recorded, ballot token issued
    - `no_match`, `no_face_detected`, `capture_failed`: retry allowed
    - `denied_already_voted`: the voter was admitted elsewhere meanwhile
    """
)
async def capture_and_verify(
    session_id: str,
    image: UploadFile = File(..., description="Live face capture"),
    manager: SessionManager = Depends(get_sessions)
):
    start_time = time.time()
    session = require_session(session_id, manager)

    validate_image_file(image)
    image_bytes = await read_image(image)

    attempt = await session.capture(image_bytes)

    processing_time = (time.time() - start_time) * 1000
    return CaptureResponse(
        session_id=session_id,
        state=session.state.value,
        outcome=attempt.outcome,
        distance=round(attempt.distance, 4) if attempt.distance is not None else None,
        score=attempt.score,
        message=attempt.message,
        ballot=attempt.ballot,
        qr_payload=attempt.ballot.payload() if attempt.ballot else None,
        processing_time_ms=round(processing_time, 2)
    )


@app.post(
    "/booth/sessions/{session_id}/next",
    response_model=SessionOpened,
    responses={409: {"model": ErrorResponse, "description": "Current voter not finished"}},
    summary="Process next voter"
)
async def next_voter(session_id: str, manager: SessionManager = Depends(get_sessions)):
    require_session(session_id, manager)
    session = manager.next_voter(session_id)
    return SessionOpened(session_id=session_id, state=session.state.value)


@app.delete("/booth/sessions/{session_id}", summary="Close a booth session")
async def close_session(session_id: str, manager: SessionManager = Depends(get_sessions)):
    if not manager.close(session_id):
        raise HTTPException(status_code=404, detail=f"Session '{session_id}' not found")
    return {"success": True, "closed_id": session_id}


# ============================================================================
# ADMINISTRATION
# ============================================================================
@app.post(
    "/admin/reset",
    response_model=ResetResponse,
    responses={403: {"model": ErrorResponse, "description": "Invalid admin token"}},
    summary="Clear the registry"
)
async def reset_registry(
    x_admin_token: Optional[str] = Header(default=None),
    expected_token: str = Depends(get_admin_token),
    reg: VoterRegistry = Depends(get_registry)
):
    if not expected_token or not x_admin_token or not secrets.compare_digest(x_admin_token, expected_token):
        raise HTTPException(status_code=403, detail="Admin token required")

    removed = await reg.reset()
    return ResetResponse(success=True, removed=removed)


# Exception handlers
@app.exception_handler(HTTPException)
async def http_exception_handler(request, exc):
    """Custom HTTP exception handler."""
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": "HTTPException",
            "detail": exc.detail
        }
    )


@app.exception_handler(VoterGateError)
async def voter_gate_exception_handler(request, exc):
    """Map the error taxonomy to HTTP status codes."""
    status_code = ERROR_STATUS.get(type(exc), 500)
    if status_code >= 500:
        logger.error(f"{type(exc).__name__}: {exc}")
    return JSONResponse(
        status_code=status_code,
        content={
            "error": type(exc).__name__,
            "detail": exc.message
        }
    )


@app.exception_handler(ValueError)
async def value_error_handler(request, exc):
    return JSONResponse(
        status_code=400,
        content={
            "error": "ValueError",
            "detail": str(exc)
        }
    )


@app.exception_handler(Exception)
async def general_exception_handler(request, exc):
    """General exception handler."""
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={
            "error": "InternalServerError",
            "detail": "An unexpected error occurred"
        }
    )


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
