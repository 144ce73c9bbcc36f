"""Submission endpoints: finalize, draft, grading, release and reads.

Static paths (draft, release-all, ...) are declared before the `/{submission_id}` routes.
"""

from typing import List, Optional

from fastapi import APIRouter, Body, Depends, Query
from sqlmodel import Session

from exam_grading.database import get_session
from exam_grading.deps import get_auth_context
from exam_grading.errors import InvalidInput
from exam_grading.models import SubmissionStatus
from exam_grading.schemas import AuthContext, DraftIn, FinalizeIn, ManualGradeIn, ReleaseIn
from exam_grading.services import submission_service

router = APIRouter()


def _parse_ids(ids: Optional[str]) -> List[int]:
    if not ids:
        raise InvalidInput("Missing ids")
    try:
        return [int(part) for part in ids.split(",") if part.strip()]
    except ValueError:
        raise InvalidInput("ids must be a comma-separated list of integers")


# --- Collection routes ---


@router.get("")
def api_list_submissions(
    mode: Optional[str] = Query(None),
    exam_id: Optional[int] = Query(None),
    status: Optional[SubmissionStatus] = Query(None),
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1),
    auth: AuthContext = Depends(get_auth_context),
    session: Session = Depends(get_session),
):
    """`mode=history` lists the caller's own submissions; otherwise the admin listing."""
    if mode == "history":
        return submission_service.list_history(session, auth)
    return submission_service.list_for_admin(session, auth, exam_id=exam_id, status=status, page=page, limit=limit)


@router.post("")
def api_finalize(
    payload: FinalizeIn = Body(...),
    auth: AuthContext = Depends(get_auth_context),
    session: Session = Depends(get_session),
):
    if payload.submission_id is not None:
        submission = submission_service.finalize(
            session, auth, payload.submission_id, payload.answers, payload.time_spent_ms
        )
    elif payload.exam_id is not None:
        submission = submission_service.submit_exam(
            session, auth, payload.exam_id, payload.answers, payload.time_spent_ms
        )
    else:
        raise InvalidInput("submission_id or exam_id is required")
    # Respond with the same (possibly redacted) view a later GET would return
    return submission_service.read_submission(session, auth, submission.id)


@router.delete("")
def api_bulk_delete(
    ids: Optional[str] = Query(None),
    auth: AuthContext = Depends(get_auth_context),
    session: Session = Depends(get_session),
):
    deleted = submission_service.delete_submissions(session, auth, _parse_ids(ids))
    return {"success": True, "deleted": deleted}


@router.post("/draft")
def api_save_draft(
    payload: DraftIn = Body(...),
    auth: AuthContext = Depends(get_auth_context),
    session: Session = Depends(get_session),
):
    submission = submission_service.save_draft(session, auth, payload.submission_id, payload.answers)
    return {"success": True, "saved_at": submission.updated_at}


@router.post("/release-all")
def api_release_all(auth: AuthContext = Depends(get_auth_context), session: Session = Depends(get_session)):
    released = submission_service.release_all(session, auth)
    return {"success": True, "released": released}


@router.post("/release-scheduled")
def api_release_scheduled(auth: AuthContext = Depends(get_auth_context), session: Session = Depends(get_session)):
    released = submission_service.release_all_scheduled(session, auth)
    return {"success": True, "released": released}


@router.post("/regrade-all")
def api_regrade_all(auth: AuthContext = Depends(get_auth_context), session: Session = Depends(get_session)):
    summary = submission_service.regrade_all(session, auth)
    return {"success": True, **summary}


# --- Single submission routes ---


@router.get("/{submission_id}")
def api_get_submission(
    submission_id: int,
    auth: AuthContext = Depends(get_auth_context),
    session: Session = Depends(get_session),
):
    return submission_service.read_submission(session, auth, submission_id)


@router.delete("/{submission_id}")
def api_delete_submission(
    submission_id: int,
    auth: AuthContext = Depends(get_auth_context),
    session: Session = Depends(get_session),
):
    submission_service.delete_submission(session, auth, submission_id)
    return {"success": True}


@router.post("/{submission_id}/grade")
def api_manual_grade(
    submission_id: int,
    payload: ManualGradeIn = Body(...),
    auth: AuthContext = Depends(get_auth_context),
    session: Session = Depends(get_session),
):
    submission_service.manual_grade(session, auth, submission_id, payload.question_id, payload.result)
    return submission_service.read_submission(session, auth, submission_id)


@router.post("/{submission_id}/regrade")
def api_regrade(
    submission_id: int,
    auth: AuthContext = Depends(get_auth_context),
    session: Session = Depends(get_session),
):
    _, changed = submission_service.regrade(session, auth, submission_id)
    return {"changed": changed, "submission": submission_service.read_submission(session, auth, submission_id)}


@router.post("/{submission_id}/release")
def api_release(
    submission_id: int,
    payload: Optional[ReleaseIn] = Body(None),
    auth: AuthContext = Depends(get_auth_context),
    session: Session = Depends(get_session),
):
    released = payload.released if payload else True
    submission = submission_service.release(session, auth, submission_id, released)
    return {"success": True, "results_released": submission.results_released}


@router.post("/{submission_id}/review")
def api_mark_reviewed(
    submission_id: int,
    auth: AuthContext = Depends(get_auth_context),
    session: Session = Depends(get_session),
):
    submission = submission_service.mark_reviewed(session, auth, submission_id)
    return {"success": True, "status": submission.status.value}
