"""Utility functions for sanitization and validation."""

from typing import Any, Dict

import bleach

from exam_grading.errors import InvalidInput


def sanitize_feedback(text: str) -> str:
    """Sanitize grader feedback text.

    Allows basic text but removes any HTML/script content.
    """
    # For feedback, we strip all HTML to plain text
    sanitized = bleach.clean(text, tags=[], strip=True)
    return sanitized.strip()


def validate_marks(marks: float, max_marks: float) -> bool:
    """Validate that a manually awarded score is within the question's range.

    Raises:
        InvalidInput: If marks fall outside [0, max_marks]
    """
    if marks < 0 or marks > max_marks:
        raise InvalidInput(f"Marks {marks} out of range [0, {max_marks}]")

    return True


def validate_answer_map(answers: Any) -> Dict[str, str]:
    """Check the shape of a candidate answer map and return a clean copy.

    Keys are question ids (ints or numeric strings), values are strings.
    A null answer is stored as the empty string.
    """
    if not isinstance(answers, dict):
        raise InvalidInput("answers must be an object keyed by question id")

    cleaned: Dict[str, str] = {}
    for key, value in answers.items():
        qid = str(key).strip()
        if not qid.isdigit():
            raise InvalidInput(f"Invalid question id in answers: {key!r}")
        if qid in cleaned:
            raise InvalidInput(f"Duplicate answer for question {qid}")
        if value is None:
            value = ""
        if not isinstance(value, str):
            raise InvalidInput(f"Answer for question {qid} must be a string")
        cleaned[qid] = value
    return cleaned
