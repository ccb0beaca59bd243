"""
Bounded execution of external capabilities

OCR and face embedding are slow, blocking calls. They run in a worker thread
under a timeout so a stuck model can never hang a booth session, and the
awaiting task can be cancelled by the operator at any time.
"""
import asyncio
import logging
from typing import Callable, Optional, Sequence, TypeVar

from voter_gate.config import CAPABILITY_TIMEOUT_SEC
from voter_gate.exceptions import CaptureTimeoutError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# recognize_text(image) -> text
TextRecognizer = Callable[[bytes], str]

# detect_face(image) -> embedding or None
FaceDetector = Callable[[bytes], Optional[Sequence[float]]]


async def run_capability(
    func: Callable[[bytes], T],
    image: bytes,
    name: str,
    timeout: Optional[float] = CAPABILITY_TIMEOUT_SEC
) -> T:
    """
    Run a blocking capability in a thread with a timeout.

    Raises:
        CaptureTimeoutError: If the call does not finish within the timeout
    """
    try:
        return await asyncio.wait_for(asyncio.to_thread(func, image), timeout=timeout)
    except asyncio.TimeoutError:
        logger.warning(f"{name} timed out after {timeout}s")
        raise CaptureTimeoutError(name, timeout)
