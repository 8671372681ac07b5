import os

# must be set before the application modules are imported
os.environ.setdefault("ENV", "test")
os.environ.setdefault("DATABASE_URL", "sqlite://")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, create_engine

from eksetasi import models
from eksetasi.auth import SessionContext, create_token
from eksetasi.database import create_db_and_tables, get_session
from eksetasi.main import app, _auth_rate_limiter
from eksetasi.permissions import Role
from eksetasi.services import PWD_CTX

PASSWORD = "password123"
_PASSWORD_HASH = PWD_CTX.hash(PASSWORD)


@pytest.fixture()
def engine():
    """A fresh in-memory database per test, shared across threads."""
    eng = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    create_db_and_tables(eng)
    yield eng
    eng.dispose()


@pytest.fixture()
def session(engine):
    with Session(engine) as s:
        yield s


@pytest.fixture()
def client(engine):
    def _get_session():
        with Session(engine) as s:
            yield s

    app.dependency_overrides[get_session] = _get_session
    _auth_rate_limiter.reset()
    yield TestClient(app)
    app.dependency_overrides.clear()
    _auth_rate_limiter.reset()


class Factory:
    """Creates committed rows in short-lived sessions and returns plain values."""

    def __init__(self, engine):
        self.engine = engine
        self._seq = 0

    def _next(self) -> int:
        self._seq += 1
        return self._seq

    def user(self, role: Role = Role.STUDENT, name: str = None, email: str = None) -> SessionContext:
        n = self._next()
        with Session(self.engine) as s:
            u = models.User(
                name=name or f"User {role.value.title()} {n}",
                email=email or f"{role.value.lower()}{n}@example.com",
                password_hash=_PASSWORD_HASH,
                role=role,
            )
            s.add(u)
            s.commit()
            s.refresh(u)
            return SessionContext.from_user(u)

    def question(self, creator: SessionContext, correct: str = "a", keys=("a", "b", "c"),
                 category: str = "General", difficulty=models.Difficulty.MEDIUM,
                 explanation: str = "Because it is.") -> int:
        n = self._next()
        with Session(self.engine) as s:
            q = models.Question(
                text=f"Question {n}?",
                explanation=explanation,
                category=category,
                difficulty=difficulty,
                created_by_id=creator.user_id,
            )
            q.options = [
                models.QuestionOption(key=k, text=f"Option {k}", is_correct=(k == correct), position=i)
                for i, k in enumerate(keys)
            ]
            s.add(q)
            s.commit()
            return q.id

    def exam(self, creator: SessionContext, question_ids, passing_score: int = 60,
             max_attempts: int = None, is_active: bool = True, **kwargs) -> int:
        n = self._next()
        with Session(self.engine) as s:
            exam = models.Exam(
                title=f"Exam {n}",
                description="Demo exam",
                time_limit=30,
                passing_score=passing_score,
                max_attempts=max_attempts,
                is_active=is_active,
                created_by_id=creator.user_id,
                **kwargs,
            )
            exam.questions = [
                models.ExamQuestion(question_id=qid, order=i)
                for i, qid in enumerate(question_ids, start=1)
            ]
            s.add(exam)
            s.commit()
            return exam.id

    @staticmethod
    def headers(ctx: SessionContext) -> dict:
        """Bearer header for `ctx` without a database round trip."""
        user = models.User(id=ctx.user_id, name=ctx.name, email=ctx.email, role=ctx.role, password_hash="")
        return {"Authorization": f"Bearer {create_token(user)}"}


@pytest.fixture()
def factory(engine):
    return Factory(engine)
