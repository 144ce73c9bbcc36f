"""FastAPI entrypoint for the exam submission grading service."""

import logging

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.sessions import SessionMiddleware

from exam_grading.config import SESSION_SECRET
from exam_grading.database import create_db_and_tables
from exam_grading.errors import GradingError
from exam_grading.routers import attempts as attempts_router_module
from exam_grading.routers import auth as auth_router_module
from exam_grading.routers import exams as exams_router_module
from exam_grading.routers import submissions as submissions_router_module

logger = logging.getLogger("exam_grading")

app = FastAPI(title="Exam Grading & Result Release")


def _caller_is_admin(request: Request) -> bool:
    auth = getattr(request.state, "auth", None)
    return bool(auth and auth.is_admin)


@app.exception_handler(GradingError)
async def grading_error_handler(request: Request, exc: GradingError):
    """Render service errors as {"error": message}; admins also get the cause of 500s."""
    content = {"error": exc.message}
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        if _caller_is_admin(request) and exc.__cause__ is not None:
            content["detail"] = repr(exc.__cause__)
    return JSONResponse(status_code=exc.status_code, content=content)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Malformed request bodies and query params are a 400, not FastAPI's default 422."""
    messages = []
    for error in exc.errors():
        field_path = [str(part) for part in error.get("loc", []) if part != "body"]
        field = ".".join(field_path) or "request"
        messages.append(f"{field}: {error.get('msg', 'Invalid input')}")
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"error": "; ".join(messages) or "Invalid input"},
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """Unmatched routes, wrong methods and any HTTPException share the {error} shape."""
    return JSONResponse(status_code=exc.status_code, content={"error": exc.detail}, headers=exc.headers)


# Session middleware for simple cookie-based authentication
app.add_middleware(SessionMiddleware, secret_key=SESSION_SECRET)

# Routers
app.include_router(auth_router_module.router, prefix="/auth", tags=["auth"])
app.include_router(attempts_router_module.router, prefix="/attempts", tags=["attempts"])
app.include_router(submissions_router_module.router, prefix="/submissions", tags=["submissions"])
app.include_router(exams_router_module.router, prefix="/exams", tags=["exams"])


@app.get("/health")
def health():
    return {"status": "ok"}


@app.on_event("startup")
def on_startup():
    """Initialize database schema."""
    create_db_and_tables()
