"""Decides when a candidate may see results and correct answers."""

from datetime import datetime
from typing import Optional

from exam_grading.models import Exam, ResultRelease, Submission


def is_release_due(exam: Exam, now: datetime) -> bool:
    """True for a SCHEDULED exam whose release date has passed."""
    return (
        exam.result_release == ResultRelease.SCHEDULED
        and exam.scheduled_release_date is not None
        and exam.scheduled_release_date <= now
    )


def initial_release_state(exam: Exam, now: datetime) -> bool:
    """Value of `results_released` at the moment a submission is finalized.

    INSTANT releases immediately, DELAYED waits for an admin, SCHEDULED
    waits for its date (and is released at once if that date already passed).
    """
    if exam.result_release == ResultRelease.INSTANT:
        return True
    if exam.result_release == ResultRelease.SCHEDULED:
        return is_release_due(exam, now)
    return False


def results_visible(exam: Optional[Exam], submission: Submission, now: datetime) -> bool:
    """Whether the owning candidate may see results for this submission right now."""
    if submission.results_released:
        return True
    if submission.release_withheld:
        return False
    # Scheduled exams become visible on their date even before the sweep runs
    return exam is not None and is_release_due(exam, now) and submission.submitted_at is not None
