"""SQLModel data models.

This module defines the application's database tables using SQLModel.
Each class maps to a table and uses relationships where appropriate.
Option keys (`QuestionOption.key`) are only unique within their
question; they are what clients send back as the selected option.
"""

from typing import Optional, Dict, List
from enum import Enum
from datetime import datetime, timezone
from sqlalchemy import Column, JSON, UniqueConstraint
from sqlmodel import SQLModel, Field, Relationship

from .permissions import Role


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes (SQLite drops tzinfo on read)."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


class Difficulty(str, Enum):
    EASY = "EASY"
    MEDIUM = "MEDIUM"
    HARD = "HARD"


class AttemptStatus(str, Enum):
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"


class User(SQLModel, table=True):
    """A registered user.

    Fields:
    - `email`: unique login name
    - `password_hash`: hashed password string (never store plaintext)
    - `role`: fixed permission set, see `permissions.ROLE_PERMISSIONS`
    """
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str
    email: str = Field(index=True, nullable=False, unique=True)
    password_hash: str
    role: Role = Field(default=Role.STUDENT)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class Question(SQLModel, table=True):
    """A multiple-choice question in the shared question bank."""
    id: Optional[int] = Field(default=None, primary_key=True)
    text: str
    explanation: Optional[str] = None
    category: str = Field(index=True)
    difficulty: Difficulty = Field(default=Difficulty.MEDIUM)
    created_by_id: Optional[int] = Field(default=None, foreign_key='user.id')
    created_at: datetime = Field(default_factory=utcnow)
    options: List['QuestionOption'] = Relationship(
        back_populates='question',
        sa_relationship_kwargs={'order_by': 'QuestionOption.position', 'cascade': 'all, delete-orphan'},
    )

    def correct_option(self) -> Optional['QuestionOption']:
        return next((o for o in self.options if o.is_correct), None)


class QuestionOption(SQLModel, table=True):
    """Possible answer for a `Question`.

    `is_correct` marks the single correct option; `position` keeps the
    authoring order.
    """
    __table_args__ = (UniqueConstraint('question_id', 'key'),)

    id: Optional[int] = Field(default=None, primary_key=True)
    question_id: Optional[int] = Field(default=None, foreign_key='question.id')
    key: str
    text: str
    is_correct: bool = False
    position: int = 0
    question: Optional[Question] = Relationship(back_populates='options')


class Exam(SQLModel, table=True):
    """An ordered set of questions with timing and pass rules."""
    id: Optional[int] = Field(default=None, primary_key=True)
    title: str
    description: str = ''
    instructions: Optional[str] = None
    time_limit: int = 60
    passing_score: int = 60
    max_attempts: Optional[int] = None
    is_active: bool = True
    available_from: Optional[datetime] = None
    available_until: Optional[datetime] = None
    created_by_id: Optional[int] = Field(default=None, foreign_key='user.id')
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    questions: List['ExamQuestion'] = Relationship(
        back_populates='exam',
        sa_relationship_kwargs={'order_by': 'ExamQuestion.order', 'cascade': 'all, delete-orphan'},
    )


class ExamQuestion(SQLModel, table=True):
    """Link between an exam and a question with its 1-based position."""
    __table_args__ = (UniqueConstraint('exam_id', 'question_id'),)

    id: Optional[int] = Field(default=None, primary_key=True)
    exam_id: Optional[int] = Field(default=None, foreign_key='exam.id')
    question_id: int = Field(foreign_key='question.id')
    order: int
    exam: Optional[Exam] = Relationship(back_populates='questions')
    question: Optional[Question] = Relationship()


class Attempt(SQLModel, table=True):
    """One learner's submission event for one exam.

    `answers` maps question id (as a string, JSON keys) to the selected
    option key. The unique `attempt_number` per exam/student is what
    keeps concurrent submissions from both passing a max-attempts check.
    """
    __table_args__ = (UniqueConstraint('exam_id', 'student_id', 'attempt_number'),)

    id: Optional[int] = Field(default=None, primary_key=True)
    student_id: int = Field(foreign_key='user.id', index=True)
    exam_id: int = Field(foreign_key='exam.id', index=True)
    attempt_number: int = 1
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    answers: Dict[str, str] = Field(default_factory=dict, sa_column=Column(JSON))
    score: int = 0
    status: AttemptStatus = Field(default=AttemptStatus.IN_PROGRESS)
    created_at: datetime = Field(default_factory=utcnow)
    result: Optional['Result'] = Relationship(
        back_populates='attempt',
        sa_relationship_kwargs={'uselist': False},
    )


class Result(SQLModel, table=True):
    """The immutable grade record derived from one completed `Attempt`."""
    id: Optional[int] = Field(default=None, primary_key=True)
    attempt_id: Optional[int] = Field(default=None, foreign_key='attempt.id', unique=True)
    student_id: int = Field(foreign_key='user.id', index=True)
    exam_id: int = Field(foreign_key='exam.id', index=True)
    score: int
    percentage: int
    passed: bool
    feedback: str
    created_at: datetime = Field(default_factory=utcnow)
    attempt: Optional[Attempt] = Relationship(back_populates='result')
