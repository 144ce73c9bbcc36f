"""SQLModel models for exam submissions, grading and result release."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import JSON, Column, Index, UniqueConstraint
from sqlalchemy import text as sa_text
from sqlmodel import Field, SQLModel


class UserRole(str, Enum):
    CANDIDATE = "CANDIDATE"
    ADMIN = "ADMIN"
    SUPERADMIN = "SUPERADMIN"


class QuestionType(str, Enum):
    MCQ = "MCQ"
    SBA = "SBA"
    THEORY = "THEORY"


class ResultRelease(str, Enum):
    INSTANT = "INSTANT"
    DELAYED = "DELAYED"
    SCHEDULED = "SCHEDULED"


class SubmissionStatus(str, Enum):
    UNGRADED = "UNGRADED"
    PENDING_MANUAL_REVIEW = "PENDING_MANUAL_REVIEW"
    GRADED = "GRADED"
    REVIEWED = "REVIEWED"


ADMIN_ROLES = {UserRole.ADMIN, UserRole.SUPERADMIN}

# Statuses a submission can be in once it has been finalized
FINALIZED_STATUSES = (
    SubmissionStatus.PENDING_MANUAL_REVIEW,
    SubmissionStatus.GRADED,
    SubmissionStatus.REVIEWED,
)


class User(SQLModel, table=True):
    """Application user that can log in as a candidate or an administrator."""

    __table_args__ = (UniqueConstraint("email", name="uq_user_email"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    name: str
    email: str  # must be unique
    password_hash: str
    role: UserRole = Field(default=UserRole.CANDIDATE)
    is_active: bool = Field(default=True)
    created_at: datetime = Field(default_factory=datetime.utcnow)


class Exam(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    title: str
    description: Optional[str] = None
    pass_mark: float = Field(default=0)
    result_release: ResultRelease = Field(default=ResultRelease.INSTANT)
    scheduled_release_date: Optional[datetime] = None
    published: bool = Field(default=False)
    # Bumped whenever questions or answer keys are edited
    version: int = Field(default=1)
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class Question(SQLModel, table=True):
    """A question belonging to an exam. `position` gives the exam order."""

    id: Optional[int] = Field(default=None, primary_key=True)
    exam_id: int = Field(foreign_key="exam.id", index=True)
    position: int = Field(default=0)
    type: QuestionType
    text: str
    options: list = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    # An option for MCQ/SBA, a model answer / rubric for THEORY
    correct_answer: Optional[str] = None
    points: float = Field(gt=0)


class Submission(SQLModel, table=True):
    """One candidate attempt at an exam, from start through grading and release."""

    __table_args__ = (
        # At most one active attempt per (exam, candidate)
        Index(
            "uq_submission_active_attempt",
            "exam_id",
            "candidate_id",
            unique=True,
            sqlite_where=sa_text("status = 'UNGRADED'"),
            postgresql_where=sa_text("status = 'UNGRADED'"),
        ),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    exam_id: int = Field(foreign_key="exam.id", index=True)
    candidate_id: int = Field(foreign_key="user.id", index=True)
    exam_version: int = Field(default=1)

    # question id (as str) -> raw answer
    answers: dict = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))
    answers_draft: dict = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))
    # question id (as str) -> {"score", "is_correct", "feedback"}
    question_results: dict = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))

    score: float = Field(default=0)
    max_score: float = Field(default=0)
    status: SubmissionStatus = Field(default=SubmissionStatus.UNGRADED, index=True)
    graded: bool = Field(default=False)
    results_released: bool = Field(default=False)
    # Set when an admin withdraws results; a due schedule no longer reveals them
    release_withheld: bool = Field(default=False)
    # Bumped on every write; updates only apply against the revision they read
    revision: int = Field(default=0)

    started_at: datetime = Field(default_factory=datetime.utcnow)
    submitted_at: Optional[datetime] = None
    time_spent_ms: Optional[int] = None
    updated_at: datetime = Field(default_factory=datetime.utcnow)
