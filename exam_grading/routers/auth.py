"""Minimal session login so requests carry an identity into the grading services."""

from fastapi import APIRouter, Body, Depends, Request
from sqlmodel import Session, select

from exam_grading.auth_utils import verify_password
from exam_grading.database import get_session
from exam_grading.deps import get_auth_context
from exam_grading.errors import NotFound, Unauthorized
from exam_grading.models import User
from exam_grading.schemas import AuthContext, LoginIn

router = APIRouter()


def _user_json(user: User) -> dict:
    return {"id": user.id, "name": user.name, "email": user.email, "role": user.role.value}


@router.post("/login")
def login(request: Request, payload: LoginIn = Body(...), session: Session = Depends(get_session)):
    email = payload.email.strip().lower()
    user = session.exec(select(User).where(User.email == email)).first()
    if not user or not user.is_active or not verify_password(payload.password, user.password_hash):
        raise Unauthorized("Invalid email or password")
    request.session["user_id"] = user.id
    return _user_json(user)


@router.post("/logout")
def logout(request: Request):
    request.session.clear()
    return {"success": True}


@router.get("/me")
def me(auth: AuthContext = Depends(get_auth_context), session: Session = Depends(get_session)):
    user = session.get(User, auth.user_id)
    if not user:
        raise NotFound("User not found")
    return _user_json(user)
