"""Persistence helpers for exams and submissions.

Every call goes to the database; nothing is cached between requests.
"""

import logging
from datetime import datetime
from typing import Dict, Iterable, Iterator, List, Optional, Tuple

from sqlalchemy import func, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import Session, select

from exam_grading.errors import Internal, NotFound, StaleWrite
from exam_grading.models import (
    FINALIZED_STATUSES,
    Exam,
    Question,
    ResultRelease,
    Submission,
    SubmissionStatus,
    User,
)

logger = logging.getLogger("exam_grading.repository")


def get_exam_with_questions(session: Session, exam_id: int) -> Tuple[Exam, List[Question]]:
    """Return the exam and its questions in exam order, or raise NotFound."""
    exam = session.get(Exam, exam_id)
    if not exam:
        raise NotFound("Exam not found")
    questions = session.exec(
        select(Question).where(Question.exam_id == exam_id).order_by(Question.position, Question.id)
    ).all()
    return exam, list(questions)


def get_submission(session: Session, submission_id: int) -> Submission:
    submission = session.get(Submission, submission_id)
    if not submission:
        raise NotFound("Submission not found")
    return submission


def find_active_submission(session: Session, exam_id: int, candidate_id: int) -> Optional[Submission]:
    stmt = select(Submission).where(
        (Submission.exam_id == exam_id)
        & (Submission.candidate_id == candidate_id)
        & (Submission.status == SubmissionStatus.UNGRADED)
    )
    return session.exec(stmt).first()


def create_submission(session: Session, submission: Submission) -> Tuple[Submission, bool]:
    """Insert a new active attempt unless one already exists.

    Returns (submission, created). When a concurrent request won the race the
    unique index on active attempts rejects this insert and the winner is returned.
    """
    session.add(submission)
    try:
        session.commit()
    except IntegrityError:
        session.rollback()
        existing = find_active_submission(session, submission.exam_id, submission.candidate_id)
        if existing is None:
            raise Internal("Could not create submission")
        return existing, False
    except SQLAlchemyError as e:
        session.rollback()
        logger.exception("Failed to create submission for exam %s", submission.exam_id)
        raise Internal("Could not create submission") from e
    session.refresh(submission)
    return submission, True


def update_submission(session: Session, submission: Submission, patch: Dict) -> Submission:
    """Apply all fields in `patch` and commit them together.

    The UPDATE only matches the revision `submission` was read at. If another
    writer committed in between nothing is written and StaleWrite is raised.
    """
    expected = submission.revision
    values = dict(patch, updated_at=datetime.utcnow(), revision=expected + 1)
    stmt = (
        update(Submission)
        .where((Submission.id == submission.id) & (Submission.revision == expected))
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    try:
        result = session.exec(stmt)
        if result.rowcount == 0:
            session.rollback()
            raise StaleWrite(f"Submission {submission.id} was modified by another request")
        session.commit()
    except SQLAlchemyError as e:
        session.rollback()
        logger.exception("Failed to update submission %s", submission.id)
        raise Internal("Could not save submission") from e
    session.refresh(submission)
    return submission


def delete_submission(session: Session, submission: Submission) -> None:
    session.delete(submission)
    try:
        session.commit()
    except SQLAlchemyError as e:
        session.rollback()
        raise Internal("Could not delete submission") from e


def _apply_filters(stmt, exam_id: Optional[int], candidate_id: Optional[int], status: Optional[SubmissionStatus]):
    if exam_id is not None:
        stmt = stmt.where(Submission.exam_id == exam_id)
    if candidate_id is not None:
        stmt = stmt.where(Submission.candidate_id == candidate_id)
    if status is not None:
        stmt = stmt.where(Submission.status == status)
    return stmt


def list_submissions(
    session: Session,
    exam_id: Optional[int] = None,
    candidate_id: Optional[int] = None,
    status: Optional[SubmissionStatus] = None,
    page: int = 1,
    limit: Optional[int] = 50,
) -> Tuple[List[Submission], int]:
    """Newest first. Returns (items on this page, total matching); limit=None returns everything."""
    stmt = _apply_filters(select(Submission), exam_id, candidate_id, status)
    stmt = stmt.order_by(Submission.submitted_at.desc(), Submission.id.desc())
    if limit is not None:
        stmt = stmt.offset((page - 1) * limit).limit(limit)
    items = session.exec(stmt).all()

    count_stmt = _apply_filters(select(func.count()).select_from(Submission), exam_id, candidate_id, status)
    total = session.exec(count_stmt).one()
    return list(items), total


def iter_submission_ids(
    session: Session,
    chunk_size: int,
    exam_id: Optional[int] = None,
    released: Optional[bool] = None,
    withheld: Optional[bool] = None,
    finalized_only: bool = False,
) -> Iterator[List[int]]:
    """Yield submission ids in ascending chunks.

    Each chunk is fetched with a fresh query keyed on the last id seen, so
    callers can commit between chunks without holding a long transaction.
    """
    last_id = 0
    while True:
        stmt = select(Submission.id).where(Submission.id > last_id)
        if exam_id is not None:
            stmt = stmt.where(Submission.exam_id == exam_id)
        if released is not None:
            stmt = stmt.where(Submission.results_released == released)
        if withheld is not None:
            stmt = stmt.where(Submission.release_withheld == withheld)
        if finalized_only:
            stmt = stmt.where(Submission.status.in_(FINALIZED_STATUSES))
        ids = list(session.exec(stmt.order_by(Submission.id).limit(chunk_size)).all())
        if not ids:
            return
        yield ids
        last_id = ids[-1]


def list_due_scheduled_exams(session: Session, now: datetime) -> List[Exam]:
    stmt = select(Exam).where(
        (Exam.result_release == ResultRelease.SCHEDULED)
        & (Exam.scheduled_release_date.is_not(None))
        & (Exam.scheduled_release_date <= now)
    )
    return list(session.exec(stmt).all())


def get_users(session: Session, user_ids: Iterable[int]) -> Dict[int, User]:
    ids = set(user_ids)
    if not ids:
        return {}
    users = session.exec(select(User).where(User.id.in_(ids))).all()
    return {u.id: u for u in users}
