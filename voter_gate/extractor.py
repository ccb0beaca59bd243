"""
Voter ID text field extraction

Turns raw OCR text into structured identity fields using simple line
heuristics. Extraction never fails: a field that cannot be found keeps the
"unknown" sentinel.

Known limitations, kept on purpose:
- the address is not parsed, only marked as coming from the document
- the name heuristic is naive and can pick up label noise
"""
import logging
import re
from typing import List, Sequence, Union

from voter_gate.config import ADDRESS_PLACEHOLDER, UNKNOWN
from voter_gate.schemas import ExtractedFields

logger = logging.getLogger(__name__)

# At least 3 uppercase letters immediately followed by at least 5 digits
ID_PATTERN = re.compile(r"[A-Z]{3,}[0-9]{5,}")

# DD-MM-YYYY or DD/MM/YYYY shaped token, no calendar validation
DATE_PATTERN = re.compile(r"\d{2}[-/]\d{2}[-/]\d{4}")

NAME_KEYWORDS = re.compile(r"name|voter|:", re.IGNORECASE)
MIN_NAME_LENGTH = 3


def split_lines(text: Union[str, Sequence[str]]) -> List[str]:
    """Split text into stripped, non-empty lines."""
    if isinstance(text, str):
        raw_lines = text.split("\n")
    else:
        raw_lines = list(text)
    return [line.strip() for line in raw_lines if line and line.strip()]


def _first_match(pattern: re.Pattern, lines: List[str]) -> str:
    for line in lines:
        match = pattern.search(line)
        if match:
            return match.group(0)
    return UNKNOWN


def _extract_name(lines: List[str]) -> str:
    for line in lines:
        lowered = line.lower()
        if "name" not in lowered and "voter" not in lowered:
            continue
        candidate = NAME_KEYWORDS.sub("", line).strip()
        if len(candidate) >= MIN_NAME_LENGTH:
            return candidate

    # Fallback: the second line of a card is usually the holder's name
    if len(lines) > 1:
        return lines[1]
    return UNKNOWN


def extract_fields(text: Union[str, Sequence[str]]) -> ExtractedFields:
    """
    Extract id, name, date of birth and address from recognized text.

    Args:
        text: Raw OCR output, either one string or a sequence of lines

    Returns:
        ExtractedFields with the sentinel for anything not found
    """
    lines = split_lines(text)

    voter_id = _first_match(ID_PATTERN, lines)
    date_of_birth = _first_match(DATE_PATTERN, lines)
    name = _extract_name(lines)

    found_any = any(value != UNKNOWN for value in (voter_id, date_of_birth, name))
    address = ADDRESS_PLACEHOLDER if found_any else UNKNOWN

    fields = ExtractedFields(
        id=voter_id,
        name=name,
        date_of_birth=date_of_birth,
        address=address
    )

    if fields.missing_fields:
        logger.debug(f"Extraction incomplete, missing: {fields.missing_fields}")

    return fields


class TextFieldExtractor:
    """Callable wrapper so the extractor can be swapped like the other collaborators."""

    def extract(self, text: Union[str, Sequence[str]]) -> ExtractedFields:
        return extract_fields(text)

    __call__ = extract
