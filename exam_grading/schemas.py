"""Request/response schemas and the typed shapes stored in submission JSON columns."""

from typing import Dict, Optional

from pydantic import BaseModel, Field

from exam_grading.models import ADMIN_ROLES, UserRole


class AuthContext(BaseModel):
    """Who is calling. Passed explicitly into every lifecycle operation."""

    user_id: int
    role: UserRole

    @property
    def is_admin(self) -> bool:
        return self.role in ADMIN_ROLES


class QuestionResult(BaseModel):
    """Per-question outcome. `is_correct=None` means no determinate signal yet."""

    score: float = Field(ge=0)
    is_correct: Optional[bool] = None
    feedback: Optional[str] = None


# --- Request bodies ---


class LoginIn(BaseModel):
    email: str
    password: str


class StartAttemptIn(BaseModel):
    exam_id: int


class DraftIn(BaseModel):
    submission_id: int
    answers: Dict[str, Optional[str]]


class FinalizeIn(BaseModel):
    # Either an attempt started through /attempts/start, or an exam id for one-shot submit
    submission_id: Optional[int] = None
    exam_id: Optional[int] = None
    answers: Dict[str, Optional[str]] = Field(default_factory=dict)
    time_spent_ms: Optional[int] = Field(default=None, ge=0)


class ManualGradeIn(BaseModel):
    question_id: int
    result: QuestionResult


class ReleaseIn(BaseModel):
    released: bool = True
