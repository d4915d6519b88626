"""
Validation of section names and entry ids.

Names are checked before they reach any adapter so every backend sees the
same rules: a section name must be usable as a table, collection, directory
and Redis key prefix; an entry id must be usable as a file name.
"""

import re

from .domain.exceptions import ValidationException

MAX_NAME_LENGTH = 255
# File systems cap names at 255 bytes; ids also carry a ".json.tmp" suffix.
MAX_ID_BYTES = 240

SECTION_NAME_PATTERN = re.compile(r"^[A-Za-z0-9_][A-Za-z0-9_\-]*$")
FORBIDDEN_ID_CHARACTERS = ("/", "\\", "\x00")
RESERVED_IDS = {".", ".."}


def validate_section_name(name: str) -> str:
    """
    Validate a section name.

    Args:
        name: Candidate section name

    Returns:
        The name, unchanged

    Raises:
        ValidationException: If the name is empty, too long or contains
            characters outside [A-Za-z0-9_-]
    """
    if not isinstance(name, str) or not name:
        raise ValidationException("section", name, "must be a non-empty string")
    if len(name) > MAX_NAME_LENGTH:
        raise ValidationException(
            "section", name, f"must be at most {MAX_NAME_LENGTH} characters"
        )
    if not SECTION_NAME_PATTERN.match(name):
        raise ValidationException(
            "section",
            name,
            "may only contain letters, digits, '_' and '-' and must not start with '-'",
        )
    return name


def validate_entry_id(entry_id: str) -> str:
    """
    Validate an entry id.

    Raises:
        ValidationException: If the id is empty, too long, reserved or
            contains a path separator or NUL
    """
    if not isinstance(entry_id, str) or not entry_id:
        raise ValidationException("entry_id", entry_id, "must be a non-empty string")
    if len(entry_id.encode("utf-8")) > MAX_ID_BYTES:
        raise ValidationException(
            "entry_id", entry_id, f"must be at most {MAX_ID_BYTES} bytes in UTF-8"
        )
    if entry_id in RESERVED_IDS:
        raise ValidationException("entry_id", entry_id, "is reserved")
    if any(ch in entry_id for ch in FORBIDDEN_ID_CHARACTERS):
        raise ValidationException(
            "entry_id", entry_id, "must not contain path separators or NUL"
        )
    return entry_id
