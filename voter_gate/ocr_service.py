"""
Text recognition service using Tesseract

Wraps pytesseract as the OCR capability used during enrollment.
"""
import logging

import pytesseract
from PIL import Image

from voter_gate.config import OCR_LANGUAGE, TESSERACT_CMD
from voter_gate.face_service import load_image

logger = logging.getLogger(__name__)


class TextRecognitionService:
    """Recognize printed text on a scanned ID document."""

    def __init__(self, language: str = OCR_LANGUAGE, tesseract_cmd: str = TESSERACT_CMD):
        self.language = language
        if tesseract_cmd:
            pytesseract.pytesseract.tesseract_cmd = tesseract_cmd

    def recognize_text(self, image_bytes: bytes) -> str:
        """
        Run OCR over an image.

        Args:
            image_bytes: Raw image bytes

        Returns:
            Recognized text, lines separated by newlines

        Raises:
            ValueError: If the bytes cannot be decoded as an image
        """
        image = Image.fromarray(load_image(image_bytes))
        text = pytesseract.image_to_string(image, lang=self.language)
        logger.debug(f"OCR produced {len(text.splitlines())} lines")
        return text

    __call__ = recognize_text


# Singleton instance
ocr_service = TextRecognitionService()
