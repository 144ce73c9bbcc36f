"""Submission lifecycle: start, draft, finalize, manual grade, regrade, release, read.

Every operation takes the caller's `AuthContext` explicitly. Authorization and
input checks run before any grading, and each submission is written in a
single commit so a failed operation leaves the stored record untouched.
"""

import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from sqlalchemy import delete, update
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session

from exam_grading import config
from exam_grading.errors import Conflict, ExamUnavailable, Forbidden, Internal, InvalidInput, StaleWrite
from exam_grading.models import (
    Exam,
    Question,
    QuestionType,
    Submission,
    SubmissionStatus,
    User,
)
from exam_grading.schemas import AuthContext, QuestionResult
from exam_grading.services import repository
from exam_grading.services.release_policy import initial_release_state, results_visible
from exam_grading.services.scoring import GradeResult, calculate_grade, manual_seed
from exam_grading.utils import sanitize_feedback, validate_answer_map, validate_marks

logger = logging.getLogger("exam_grading.submissions")

# Tries at an optimistic write before a concurrent update is reported as a conflict
WRITE_ATTEMPTS = 3


# --- Authorization helpers ---


def _require_admin(auth: AuthContext) -> None:
    if not auth.is_admin:
        raise Forbidden("Access denied")


def _require_owner_or_admin(auth: AuthContext, submission: Submission) -> None:
    if submission.candidate_id != auth.user_id and not auth.is_admin:
        raise Forbidden("Access denied")


# --- Grading helpers ---


def _grade(questions: Sequence[Question], answers: Dict[str, Any], seed: Dict[str, QuestionResult]) -> GradeResult:
    try:
        return calculate_grade(questions, answers, seed)
    except ValueError as e:
        raise Internal(f"Could not grade submission: {e}") from e


def _grading_patch(grade: GradeResult, exam: Exam, current_status: SubmissionStatus) -> Dict[str, Any]:
    status = grade.status
    # REVIEWED sits on top of GRADED and survives a recompute that is still fully graded
    if current_status == SubmissionStatus.REVIEWED and grade.graded:
        status = SubmissionStatus.REVIEWED
    return {
        "question_results": grade.results_as_json(),
        "score": grade.score,
        "max_score": grade.max_score,
        "status": status,
        "graded": grade.graded,
        "exam_version": exam.version,
    }


def _changed_fields(submission: Submission, patch: Dict[str, Any]) -> List[str]:
    return [field for field, value in patch.items() if getattr(submission, field) != value]


def _check_answers_against_exam(answers: Dict[str, str], questions: Sequence[Question]) -> None:
    known = {str(q.id) for q in questions}
    unknown = sorted(set(answers) - known, key=int)
    if unknown:
        raise InvalidInput(f"Answers reference questions not in this exam: {', '.join(unknown)}")


def _read_modify_write(
    session: Session,
    submission_id: int,
    build_patch: Callable[[Submission], Optional[Dict[str, Any]]],
) -> Tuple[Submission, bool]:
    """Optimistic update of one submission. Returns (submission, written).

    `build_patch` runs its checks against the stored record and returns the
    fields to change, or nothing to skip the write. If another request commits
    first, the record is re-read and `build_patch` runs again on fresh data.
    """
    for attempt in range(1, WRITE_ATTEMPTS + 1):
        submission = repository.get_submission(session, submission_id)
        patch = build_patch(submission)
        if not patch:
            return submission, False
        try:
            return repository.update_submission(session, submission, patch), True
        except StaleWrite:
            if attempt == WRITE_ATTEMPTS:
                raise
            logger.warning(
                "Submission %s changed during update, retrying (%s/%s)", submission_id, attempt, WRITE_ATTEMPTS
            )
    raise StaleWrite(f"Submission {submission_id} was modified by another request")


# --- Candidate operations ---


def start_attempt(
    session: Session, auth: AuthContext, exam_id: int, now: Optional[datetime] = None
) -> Tuple[Submission, bool]:
    """Start or resume an attempt. Returns (submission, resumed)."""
    exam = repository.get_exam_with_questions(session, exam_id)[0]
    if not exam.published and not auth.is_admin:
        raise ExamUnavailable("Exam is not available")

    existing = repository.find_active_submission(session, exam_id, auth.user_id)
    if existing:
        return existing, True

    submission = Submission(
        exam_id=exam_id,
        candidate_id=auth.user_id,
        exam_version=exam.version,
        answers={},
        answers_draft={},
        question_results={},
        status=SubmissionStatus.UNGRADED,
        started_at=now or datetime.utcnow(),
    )
    submission, created = repository.create_submission(session, submission)
    if created:
        logger.info("Started submission %s (exam=%s candidate=%s)", submission.id, exam_id, auth.user_id)
    return submission, not created


def save_draft(session: Session, auth: AuthContext, submission_id: int, answers: Any) -> Submission:
    """Overwrite the autosaved draft. Rejected with Conflict once the submission is finalized."""

    def build_patch(submission: Submission) -> Dict[str, Any]:
        _require_owner_or_admin(auth, submission)
        cleaned = validate_answer_map(answers)
        if submission.status != SubmissionStatus.UNGRADED:
            raise Conflict("Submission already finalized")
        return {"answers_draft": cleaned}

    return _read_modify_write(session, submission_id, build_patch)[0]


def finalize(
    session: Session,
    auth: AuthContext,
    submission_id: int,
    answers: Any,
    time_spent_ms: Optional[int] = None,
    now: Optional[datetime] = None,
) -> Submission:
    """Submit an attempt: score it, set its status and initial release flag.

    Finalizing is one-way. When two finalizes race, the loser re-reads the
    stored record, finds it already finalized and gets a Conflict.
    """
    now = now or datetime.utcnow()

    def build_patch(submission: Submission) -> Dict[str, Any]:
        _require_owner_or_admin(auth, submission)
        cleaned = validate_answer_map(answers)
        if time_spent_ms is not None and time_spent_ms < 0:
            raise InvalidInput("time_spent_ms must not be negative")
        if submission.status != SubmissionStatus.UNGRADED:
            raise Conflict("Submission already finalized")

        exam, questions = repository.get_exam_with_questions(session, submission.exam_id)
        _check_answers_against_exam(cleaned, questions)

        grade = _grade(questions, cleaned, {})
        patch = _grading_patch(grade, exam, submission.status)
        patch.update(
            {
                "answers": cleaned,
                "answers_draft": {},
                "results_released": initial_release_state(exam, now),
                "submitted_at": now,
                "time_spent_ms": time_spent_ms,
            }
        )
        return patch

    submission, _ = _read_modify_write(session, submission_id, build_patch)
    logger.info(
        "Finalized submission %s: score=%s/%s status=%s released=%s",
        submission.id,
        submission.score,
        submission.max_score,
        submission.status.value,
        submission.results_released,
    )
    return submission


def submit_exam(
    session: Session,
    auth: AuthContext,
    exam_id: int,
    answers: Any,
    time_spent_ms: Optional[int] = None,
    now: Optional[datetime] = None,
) -> Submission:
    """One-shot submit by exam id: resume or start the active attempt, then finalize it."""
    submission, _ = start_attempt(session, auth, exam_id, now=now)
    return finalize(session, auth, submission.id, answers, time_spent_ms, now=now)


# --- Admin grading operations ---


def manual_grade(
    session: Session,
    auth: AuthContext,
    submission_id: int,
    question_id: int,
    result: Any,
) -> Submission:
    """Record a grader's mark for one THEORY question and recompute the whole submission.

    The recompute starts from the marks stored at write time, so graders
    marking different questions concurrently do not overwrite each other.
    """
    _require_admin(auth)
    try:
        result = result if isinstance(result, QuestionResult) else QuestionResult.model_validate(result)
    except ValueError as e:
        raise InvalidInput(f"Invalid result: {e}") from e
    feedback = sanitize_feedback(result.feedback) if result.feedback else None

    def build_patch(submission: Submission) -> Dict[str, Any]:
        if submission.status == SubmissionStatus.UNGRADED:
            raise Conflict("Submission has not been finalized")

        exam, questions = repository.get_exam_with_questions(session, submission.exam_id)
        question = next((q for q in questions if q.id == question_id), None)
        if question is None:
            raise InvalidInput(f"Question {question_id} is not part of this exam")
        if question.type != QuestionType.THEORY:
            raise InvalidInput(f"Question {question_id} is auto-scored and cannot be graded manually")
        validate_marks(result.score, question.points)

        seed = manual_seed(submission.question_results)
        seed[str(question_id)] = QuestionResult(score=result.score, is_correct=result.is_correct, feedback=feedback)
        grade = _grade(questions, submission.answers, seed)
        return _grading_patch(grade, exam, submission.status)

    submission, _ = _read_modify_write(session, submission_id, build_patch)
    logger.info(
        "Manually graded question %s on submission %s: score=%s status=%s",
        question_id,
        submission.id,
        submission.score,
        submission.status.value,
    )
    return submission


def _regrade_patch(session: Session, submission: Submission) -> Optional[Dict[str, Any]]:
    exam, questions = repository.get_exam_with_questions(session, submission.exam_id)
    grade = _grade(questions, submission.answers, manual_seed(submission.question_results))
    patch = _grading_patch(grade, exam, submission.status)
    changed = _changed_fields(submission, patch)
    if not changed:
        logger.debug("Regrade of submission %s changed nothing", submission.id)
        return None
    logger.info("Regrading submission %s (changed: %s)", submission.id, ", ".join(changed))
    return patch


def regrade(session: Session, auth: AuthContext, submission_id: int) -> Tuple[Submission, bool]:
    """Recompute a finalized submission against the current exam. Returns (submission, changed)."""
    _require_admin(auth)

    def build_patch(submission: Submission) -> Optional[Dict[str, Any]]:
        if submission.status == SubmissionStatus.UNGRADED:
            raise Conflict("Submission has not been finalized")
        return _regrade_patch(session, submission)

    return _read_modify_write(session, submission_id, build_patch)


def regrade_all(session: Session, auth: AuthContext, chunk_size: Optional[int] = None) -> Dict[str, int]:
    """Regrade every finalized submission, one commit per submission.

    A failure on one submission is logged and counted; the rest still run.
    """
    _require_admin(auth)
    chunk_size = chunk_size or config.BATCH_CHUNK_SIZE
    processed = changed = failed = 0

    for ids in repository.iter_submission_ids(session, chunk_size, finalized_only=True):
        for submission_id in ids:
            processed += 1
            try:
                _, written = _read_modify_write(
                    session, submission_id, lambda submission: _regrade_patch(session, submission)
                )
                if written:
                    changed += 1
            except Exception:
                session.rollback()
                failed += 1
                logger.exception("Regrade failed for submission %s", submission_id)
        session.expunge_all()

    logger.info("Regrade-all finished: processed=%s changed=%s failed=%s", processed, changed, failed)
    return {"processed": processed, "changed": changed, "failed": failed}


def mark_reviewed(session: Session, auth: AuthContext, submission_id: int) -> Submission:
    """Admin acknowledgement on a fully graded submission."""
    _require_admin(auth)

    def build_patch(submission: Submission) -> Optional[Dict[str, Any]]:
        if submission.status == SubmissionStatus.REVIEWED:
            return None
        if submission.status != SubmissionStatus.GRADED:
            raise Conflict("Only fully graded submissions can be marked reviewed")
        return {"status": SubmissionStatus.REVIEWED}

    submission, written = _read_modify_write(session, submission_id, build_patch)
    if written:
        logger.info("Submission %s marked reviewed", submission.id)
    return submission


# --- Release operations ---


def release(session: Session, auth: AuthContext, submission_id: int, released: bool = True) -> Submission:
    """Set or withdraw the release of one finalized submission. Scores are left alone.

    Withdrawing also holds the results back from a scheduled release that is
    already due, until an admin releases them again.
    """
    _require_admin(auth)

    def build_patch(submission: Submission) -> Optional[Dict[str, Any]]:
        if submission.status == SubmissionStatus.UNGRADED:
            raise Conflict("Submission has not been finalized")
        patch = {"results_released": released, "release_withheld": not released}
        return patch if _changed_fields(submission, patch) else None

    submission, written = _read_modify_write(session, submission_id, build_patch)
    if written:
        logger.info("Submission %s results_released=%s", submission.id, released)
    return submission


def _release_in_chunks(session: Session, exam_id: Optional[int] = None, skip_withheld: bool = False) -> int:
    released = 0
    for ids in repository.iter_submission_ids(
        session,
        config.BATCH_CHUNK_SIZE,
        exam_id=exam_id,
        released=False,
        withheld=False if skip_withheld else None,
        finalized_only=True,
    ):
        try:
            result = session.exec(
                update(Submission)
                .where(Submission.id.in_(ids))
                .values(
                    results_released=True,
                    release_withheld=False,
                    revision=Submission.revision + 1,
                    updated_at=datetime.utcnow(),
                )
                .execution_options(synchronize_session=False)
            )
            session.commit()
            released += result.rowcount
        except SQLAlchemyError:
            session.rollback()
            logger.exception("Failed to release submissions %s..%s", ids[0], ids[-1])
    session.expire_all()
    return released


def release_exam(session: Session, auth: AuthContext, exam_id: int) -> int:
    """Release every finalized, unreleased submission of one exam, withdrawn ones included."""
    _require_admin(auth)
    repository.get_exam_with_questions(session, exam_id)
    count = _release_in_chunks(session, exam_id=exam_id)
    logger.info("Released %s submissions for exam %s", count, exam_id)
    return count


def release_all(session: Session, auth: AuthContext) -> int:
    """Release every finalized, unreleased submission, withdrawn ones included."""
    _require_admin(auth)
    count = _release_in_chunks(session)
    logger.info("Released %s submissions across all exams", count)
    return count


def sweep_scheduled_releases(session: Session, now: Optional[datetime] = None) -> int:
    """Release submissions of every SCHEDULED exam whose date has passed.

    Submissions an admin withdrew are left alone. Meant for a periodic job;
    `release_all_scheduled` is the admin-triggered entry point.
    """
    now = now or datetime.utcnow()
    total = 0
    for exam in repository.list_due_scheduled_exams(session, now):
        count = _release_in_chunks(session, exam_id=exam.id, skip_withheld=True)
        if count:
            logger.info("Scheduled release for exam %s released %s submissions", exam.id, count)
        total += count
    return total


def release_all_scheduled(session: Session, auth: AuthContext, now: Optional[datetime] = None) -> int:
    _require_admin(auth)
    return sweep_scheduled_releases(session, now)


# --- Reads ---


def _question_view(question: Question, include_answer: bool) -> Dict[str, Any]:
    view = {
        "id": question.id,
        "type": question.type.value,
        "text": question.text,
        "options": question.options,
        "points": question.points,
    }
    if include_answer:
        view["correct_answer"] = question.correct_answer
    return view


def _submission_view(submission: Submission, visible: bool, candidate: Optional[User] = None) -> Dict[str, Any]:
    data = submission.model_dump(mode="json")
    if not visible:
        # Nothing that reveals marking leaves before release
        data.pop("question_results", None)
        data.pop("score", None)
    if candidate is not None:
        data["candidate"] = {"id": candidate.id, "name": candidate.name, "email": candidate.email}
    return data


def read_submission(
    session: Session, auth: AuthContext, submission_id: int, now: Optional[datetime] = None
) -> Dict[str, Any]:
    """Submission detail with its exam. Candidates get a redacted view until release."""
    submission = repository.get_submission(session, submission_id)
    _require_owner_or_admin(auth, submission)

    exam = session.get(Exam, submission.exam_id)
    questions: List[Question] = []
    if exam is not None:
        questions = repository.get_exam_with_questions(session, exam.id)[1]

    visible = auth.is_admin or results_visible(exam, submission, now or datetime.utcnow())
    candidate = session.get(User, submission.candidate_id) if auth.is_admin else None

    data = _submission_view(submission, visible, candidate)
    data["exam"] = {
        "id": submission.exam_id,
        "title": exam.title if exam else None,
        "pass_mark": exam.pass_mark if exam else None,
        "result_release": exam.result_release.value if exam else None,
        "questions": [_question_view(q, visible) for q in questions],
    }
    return data


def list_history(session: Session, auth: AuthContext, now: Optional[datetime] = None) -> List[Dict[str, Any]]:
    """The caller's own submissions, newest first, each redacted like the detail view."""
    now = now or datetime.utcnow()
    items, _ = repository.list_submissions(session, candidate_id=auth.user_id, limit=None)
    exams: Dict[int, Optional[Exam]] = {}
    history = []
    for submission in items:
        if submission.exam_id not in exams:
            exams[submission.exam_id] = session.get(Exam, submission.exam_id)
        visible = auth.is_admin or results_visible(exams[submission.exam_id], submission, now)
        history.append(_submission_view(submission, visible))
    return history


def list_for_admin(
    session: Session,
    auth: AuthContext,
    exam_id: Optional[int] = None,
    status: Optional[SubmissionStatus] = None,
    page: int = 1,
    limit: Optional[int] = None,
) -> Dict[str, Any]:
    _require_admin(auth)
    limit = min(limit or config.DEFAULT_PAGE_SIZE, config.MAX_PAGE_SIZE)
    if page < 1 or limit < 1:
        raise InvalidInput("page and limit must be positive")

    items, total = repository.list_submissions(session, exam_id=exam_id, status=status, page=page, limit=limit)
    users = repository.get_users(session, (s.candidate_id for s in items))
    return {
        "data": [_submission_view(s, True, users.get(s.candidate_id)) for s in items],
        "pagination": {
            "total": total,
            "page": page,
            "limit": limit,
            "total_pages": (total + limit - 1) // limit,
        },
    }


# --- Deletes ---


def delete_submission(session: Session, auth: AuthContext, submission_id: int) -> None:
    _require_admin(auth)
    submission = repository.get_submission(session, submission_id)
    repository.delete_submission(session, submission)
    logger.info("Deleted submission %s", submission_id)


def delete_submissions(session: Session, auth: AuthContext, ids: Sequence[int]) -> int:
    """Bulk delete in chunks; a failing chunk is logged and skipped."""
    _require_admin(auth)
    if not ids:
        raise InvalidInput("Missing ids")
    ids = list(dict.fromkeys(ids))
    deleted = 0
    for start in range(0, len(ids), config.BATCH_CHUNK_SIZE):
        chunk = ids[start : start + config.BATCH_CHUNK_SIZE]
        try:
            result = session.exec(delete(Submission).where(Submission.id.in_(chunk)))
            session.commit()
            deleted += result.rowcount
        except SQLAlchemyError:
            session.rollback()
            logger.exception("Failed to delete submissions %s", chunk)
    session.expire_all()
    logger.info("Bulk deleted %s submissions", deleted)
    return deleted
