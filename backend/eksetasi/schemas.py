"""Pydantic request/response schemas used by the API.

Schemas keep API input/output shapes stable and provide validation for
controller handlers and tests. Anything that fails here is reported as a
VALIDATION error with per-field messages before a service runs.
"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, EmailStr, Field, field_validator, model_validator

from .models import Difficulty, as_utc
from .permissions import Role


class RegisterIn(BaseModel):
    """Payload for user registration."""
    name: str = Field(min_length=2, max_length=50, pattern=r"^[a-zA-Z\s\-\.']+$")
    email: EmailStr
    password: str = Field(min_length=6, max_length=128)


class LoginIn(BaseModel):
    email: EmailStr
    password: str = Field(min_length=1)


class ProfileUpdateIn(BaseModel):
    name: Optional[str] = Field(default=None, min_length=2, max_length=50)
    email: Optional[EmailStr] = None


class RoleUpdateIn(BaseModel):
    role: Role


class OptionIn(BaseModel):
    """One answer option; `id` is the key clients submit back."""
    id: str = Field(min_length=1, max_length=20)
    text: str = Field(min_length=1, max_length=500)
    is_correct: bool = False


def _check_options(options: List[OptionIn]) -> List[OptionIn]:
    if len(options) < 2:
        raise ValueError("At least 2 options are required")
    if len(options) > 6:
        raise ValueError("Maximum 6 options allowed")
    if sum(1 for o in options if o.is_correct) != 1:
        raise ValueError("Exactly one option must be marked as correct")
    keys = [o.id for o in options]
    if len(set(keys)) != len(keys):
        raise ValueError("Option ids must be unique within a question")
    return options


class QuestionIn(BaseModel):
    """Request format for creating a question."""
    text: str = Field(min_length=1, max_length=1000)
    options: List[OptionIn]
    explanation: Optional[str] = Field(default=None, max_length=1000)
    category: str = Field(min_length=1, max_length=50)
    difficulty: Difficulty = Difficulty.MEDIUM

    @field_validator('options')
    @classmethod
    def validate_options(cls, v):
        return _check_options(v)


class QuestionUpdateIn(BaseModel):
    text: Optional[str] = Field(default=None, min_length=1, max_length=1000)
    options: Optional[List[OptionIn]] = None
    explanation: Optional[str] = Field(default=None, max_length=1000)
    category: Optional[str] = Field(default=None, min_length=1, max_length=50)
    difficulty: Optional[Difficulty] = None

    @field_validator('options')
    @classmethod
    def validate_options(cls, v):
        return _check_options(v) if v is not None else v


class _ExamWindow(BaseModel):
    available_from: Optional[datetime] = None
    available_until: Optional[datetime] = None

    @model_validator(mode='after')
    def check_window(self):
        opens, closes = as_utc(self.available_from), as_utc(self.available_until)
        if opens and closes and opens >= closes:
            raise ValueError("available_from must be before available_until")
        return self


class ExamIn(_ExamWindow):
    """Request format for assembling an exam from existing questions."""
    title: str = Field(min_length=1, max_length=200)
    description: str = Field(default='', max_length=1000)
    instructions: Optional[str] = Field(default=None, max_length=2000)
    time_limit: int = Field(ge=1, le=480)
    passing_score: int = Field(ge=0, le=100)
    max_attempts: Optional[int] = Field(default=None, ge=1, le=10)
    question_ids: List[int] = Field(min_length=1, max_length=100)
    is_active: bool = True

    @field_validator('question_ids')
    @classmethod
    def unique_questions(cls, v):
        if len(set(v)) != len(v):
            raise ValueError("Question ids must not repeat")
        return v


class ExamUpdateIn(_ExamWindow):
    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, max_length=1000)
    instructions: Optional[str] = Field(default=None, max_length=2000)
    time_limit: Optional[int] = Field(default=None, ge=1, le=480)
    passing_score: Optional[int] = Field(default=None, ge=0, le=100)
    max_attempts: Optional[int] = Field(default=None, ge=1, le=10)
    is_active: Optional[bool] = None


class AnswerIn(BaseModel):
    """Single submitted answer: the selected option key for a question."""
    question_id: int
    selected_option: str = Field(min_length=1)


class SubmissionIn(BaseModel):
    """Request model for submitting an exam.

    An empty `answers` list is accepted (a timed-out exam with nothing
    answered) and simply scores 0.
    """
    answers: List[AnswerIn] = Field(default_factory=list)
    time_spent: float = Field(ge=0, le=500)
    submitted_at: Optional[datetime] = None
