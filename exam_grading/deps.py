"""Shared FastAPI dependencies for database access and authentication."""

from typing import Optional

from fastapi import Depends, Request
from sqlmodel import Session

from exam_grading.database import get_session
from exam_grading.errors import Unauthorized
from exam_grading.models import User
from exam_grading.schemas import AuthContext


def get_current_user(request: Request, session: Session = Depends(get_session)) -> Optional[User]:
    """Return the currently logged-in user based on the session cookie, if any."""
    user_id = request.session.get("user_id")
    if not user_id:
        return None

    user = session.get(User, user_id)
    if not user or not user.is_active:
        # Clear any stale session
        request.session.clear()
        return None
    return user


def get_auth_context(request: Request, current_user: Optional[User] = Depends(get_current_user)) -> AuthContext:
    """Ensure that a user is logged in and describe them to the services."""
    if current_user is None:
        raise Unauthorized("Unauthorized")
    auth = AuthContext(user_id=current_user.id, role=current_user.role)
    # Error handlers look here to decide how much detail to show
    request.state.auth = auth
    return auth
