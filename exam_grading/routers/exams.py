"""Exam-level result release."""

from fastapi import APIRouter, Depends
from sqlmodel import Session

from exam_grading.database import get_session
from exam_grading.deps import get_auth_context
from exam_grading.schemas import AuthContext
from exam_grading.services import submission_service

router = APIRouter()


@router.post("/{exam_id}/release")
def api_release_exam(
    exam_id: int,
    auth: AuthContext = Depends(get_auth_context),
    session: Session = Depends(get_session),
):
    released = submission_service.release_exam(session, auth, exam_id)
    return {"success": True, "released": released}
