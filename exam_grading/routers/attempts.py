"""Attempt start/resume."""

from fastapi import APIRouter, Body, Depends
from sqlmodel import Session

from exam_grading.database import get_session
from exam_grading.deps import get_auth_context
from exam_grading.schemas import AuthContext, StartAttemptIn
from exam_grading.services import submission_service

router = APIRouter()


@router.post("/start")
def api_start_attempt(
    payload: StartAttemptIn = Body(...),
    auth: AuthContext = Depends(get_auth_context),
    session: Session = Depends(get_session),
):
    submission, resumed = submission_service.start_attempt(session, auth, payload.exam_id)
    return {
        "submission_id": submission.id,
        "exam_id": submission.exam_id,
        "answers_draft": submission.answers_draft or {},
        "started_at": submission.started_at,
        "resumed": resumed,
    }
