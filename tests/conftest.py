import asyncio
import sys
from pathlib import Path

import pytest
from sqlmodel import Session, SQLModel, create_engine, text


def _ensure_package_on_path():
    repo_root = Path(__file__).resolve().parent.parent
    if str(repo_root) not in sys.path:
        sys.path.insert(0, str(repo_root))
    return repo_root


_ensure_package_on_path()

# ============================================================================
# IN-MEMORY DATABASE FOR TESTING
# ============================================================================

import httpx
from sqlalchemy.pool import StaticPool

from exam_grading.auth_utils import hash_password
from exam_grading.models import (
    Exam,
    Question,
    QuestionType,
    ResultRelease,
    User,
    UserRole,
)
from exam_grading.schemas import AuthContext

# StaticPool keeps every connection on the same in-memory database
test_engine = create_engine(
    "sqlite:///:memory:",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

TEST_PASSWORD = "testpass123"
# bcrypt is slow on purpose; hash once for every fixture user
TEST_PASSWORD_HASH = hash_password(TEST_PASSWORD)


@pytest.fixture(scope="session", autouse=True)
def setup_test_db():
    """Create all tables in the test database once per session."""
    SQLModel.metadata.create_all(test_engine)
    yield
    SQLModel.metadata.drop_all(test_engine)


@pytest.fixture(autouse=True)
def cleanup_db_between_tests():
    """Clean up test data after each test."""
    yield

    # Clean up in FK-safe order
    with Session(test_engine) as session:
        session.exec(text("DELETE FROM submission"))
        session.exec(text("DELETE FROM question"))
        session.exec(text("DELETE FROM exam"))
        session.exec(text("DELETE FROM user"))
        session.commit()


@pytest.fixture
def session():
    """Provide a database session for tests."""
    with Session(test_engine) as session:
        yield session


# ============================================================================
# FASTAPI APP & TEST CLIENT
# ============================================================================

from exam_grading.database import get_session
from exam_grading.main import app


class SyncClientWrapper:
    """Drive an httpx.AsyncClient from synchronous tests."""

    def __init__(self, async_client, loop):
        self.async_client = async_client
        self.loop = loop

    def get(self, *args, **kwargs):
        return self.loop.run_until_complete(self.async_client.get(*args, **kwargs))

    def post(self, *args, **kwargs):
        return self.loop.run_until_complete(self.async_client.post(*args, **kwargs))

    def put(self, *args, **kwargs):
        return self.loop.run_until_complete(self.async_client.put(*args, **kwargs))

    def delete(self, *args, **kwargs):
        return self.loop.run_until_complete(self.async_client.delete(*args, **kwargs))


@pytest.fixture
def client():
    """Test client over the ASGI app, sharing the in-memory database."""

    def override_get_session():
        with Session(test_engine) as session:
            yield session

    app.dependency_overrides[get_session] = override_get_session

    loop = asyncio.new_event_loop()
    transport = httpx.ASGITransport(app=app)
    async_client = httpx.AsyncClient(transport=transport, base_url="http://testserver")

    yield SyncClientWrapper(async_client, loop)

    loop.run_until_complete(async_client.aclose())
    loop.close()
    app.dependency_overrides.clear()


def login(client, email, password=TEST_PASSWORD):
    response = client.post("/auth/login", json={"email": email, "password": password})
    assert response.status_code == 200, response.text
    return response


# ============================================================================
# ENTITY FIXTURES
# ============================================================================


def _create_user(name, email, role):
    with Session(test_engine) as session:
        user = User(name=name, email=email, password_hash=TEST_PASSWORD_HASH, role=role)
        session.add(user)
        session.commit()
        session.refresh(user)
        user_id = user.id

    with Session(test_engine) as session:
        return session.get(User, user_id)


@pytest.fixture
def admin_user():
    return _create_user("Admin User", "admin@example.com", UserRole.ADMIN)


@pytest.fixture
def superadmin_user():
    return _create_user("Super Admin", "root@example.com", UserRole.SUPERADMIN)


@pytest.fixture
def candidate_user():
    return _create_user("Alice Candidate", "alice@example.com", UserRole.CANDIDATE)


@pytest.fixture
def other_candidate():
    return _create_user("Bob Candidate", "bob@example.com", UserRole.CANDIDATE)


@pytest.fixture
def admin_auth(admin_user):
    return AuthContext(user_id=admin_user.id, role=admin_user.role)


@pytest.fixture
def candidate_auth(candidate_user):
    return AuthContext(user_id=candidate_user.id, role=candidate_user.role)


@pytest.fixture
def other_auth(other_candidate):
    return AuthContext(user_id=other_candidate.id, role=other_candidate.role)


def create_exam(questions, result_release=ResultRelease.INSTANT, published=True, scheduled_release_date=None):
    """Create an exam with questions given as dicts; returns (exam_id, [question ids in order])."""
    with Session(test_engine) as session:
        exam = Exam(
            title="Test Exam",
            pass_mark=5,
            result_release=result_release,
            scheduled_release_date=scheduled_release_date,
            published=published,
        )
        session.add(exam)
        session.commit()
        session.refresh(exam)
        exam_id = exam.id

        question_ids = []
        for position, fields in enumerate(questions):
            question = Question(exam_id=exam_id, position=position, **fields)
            session.add(question)
            session.commit()
            session.refresh(question)
            question_ids.append(question.id)

    return exam_id, question_ids


def mcq(correct="B", points=10, text="Pick one"):
    return {"type": QuestionType.MCQ, "text": text, "options": ["A", "B", "C", "D"], "correct_answer": correct, "points": points}


def sba(correct="A", points=4, text="Single best answer"):
    return {"type": QuestionType.SBA, "text": text, "options": ["A", "B", "C"], "correct_answer": correct, "points": points}


def theory(points=5, text="Explain"):
    return {"type": QuestionType.THEORY, "text": text, "correct_answer": "Model answer", "points": points}


@pytest.fixture
def mcq_exam():
    """One MCQ worth 10 points, correct answer B."""
    return create_exam([mcq()])


@pytest.fixture
def mixed_exam():
    """MCQ (10 points, B) followed by a THEORY question (5 points)."""
    return create_exam([mcq(), theory()])


@pytest.fixture
def delayed_exam():
    return create_exam([mcq(), theory()], result_release=ResultRelease.DELAYED)
