"""
Voter enrollment

Builds a voter record from one scanned ID image and commits it to the
registry. Every step is fail-fast: nothing is written unless text extraction,
face embedding and registration all succeed.
"""
import logging
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel

from voter_gate.capabilities import FaceDetector, TextRecognizer, run_capability
from voter_gate.config import CAPABILITY_TIMEOUT_SEC, UNKNOWN
from voter_gate.exceptions import ExtractionIncompleteError, NoFaceDetectedError
from voter_gate.extractor import TextFieldExtractor
from voter_gate.registry import VoterRegistry
from voter_gate.schemas import VoterRecord

logger = logging.getLogger(__name__)


class EnrollmentResult(BaseModel):
    record: VoterRecord
    missing_fields: List[str] = []


class EnrollmentWorkflow:
    """
    OCR + extraction + face embedding + registration.

    The workflow commits as soon as all steps succeed. Any human review of
    the extracted fields has to happen before calling enroll().
    """

    def __init__(
        self,
        registry: VoterRegistry,
        recognize_text: TextRecognizer,
        detect_face: FaceDetector,
        extractor: Optional[TextFieldExtractor] = None,
        timeout: Optional[float] = CAPABILITY_TIMEOUT_SEC
    ):
        self.registry = registry
        self.recognize_text = recognize_text
        self.detect_face = detect_face
        self.extractor = extractor or TextFieldExtractor()
        self.timeout = timeout

    async def enroll(self, image: bytes, photo_reference: str) -> EnrollmentResult:
        """
        Enroll a voter from an ID document image.

        Raises:
            ExtractionIncompleteError: If no document id could be read
            NoFaceDetectedError: If the document photo holds no face
            DuplicateIdError: If the id is already registered
            DimensionMismatchError: If the embedding has the wrong length
        """
        # 1. Text extraction
        text = await run_capability(self.recognize_text, image, "Text recognition", self.timeout)
        fields = self.extractor.extract(text)

        if fields.id == UNKNOWN:
            raise ExtractionIncompleteError(["id"])

        # 2. Face embedding
        embedding = await run_capability(self.detect_face, image, "Face detection", self.timeout)
        if embedding is None:
            raise NoFaceDetectedError("No face detected in the ID document. Please upload a clearer image.")

        # 3. Assemble
        record = VoterRecord(
            id=fields.id,
            name=fields.name,
            date_of_birth=fields.date_of_birth,
            address=fields.address,
            photo_reference=photo_reference,
            biometric_template=tuple(float(x) for x in embedding),
            has_voted=False,
            registered_at=datetime.utcnow()
        )

        # 4. Commit
        record = await self.registry.register(record)

        missing = fields.missing_fields
        if missing:
            logger.warning(f"Voter {record.id} enrolled with missing fields: {missing}")

        return EnrollmentResult(record=record, missing_fields=missing)
