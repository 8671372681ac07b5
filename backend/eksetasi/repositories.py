"""Repository classes encapsulating database operations.

Each repository is small and focused on a single aggregate (users,
questions, exams, attempts). Repositories return SQLModel objects and
perform commits/refreshes where appropriate; the one multi-row write
that must be atomic (attempt plus result) lives in
`AttemptRepository.create_completed`.
"""

from datetime import datetime
from typing import List, Optional, Sequence
from sqlmodel import Session, select
from sqlalchemy import func
from . import models
from .models import AttemptStatus


class UserRepository:
    """CRUD operations for `User` objects."""
    def __init__(self, session: Session):
        self.session = session

    def create(self, user: models.User) -> models.User:
        """Persist a new user and return the managed instance."""
        self.session.add(user)
        self.session.commit()
        self.session.refresh(user)
        return user

    def save(self, user: models.User) -> models.User:
        user.updated_at = models.utcnow()
        return self.create(user)

    def get_by_email(self, email: str) -> Optional[models.User]:
        """Return a `User` by email or `None` if not found."""
        stmt = select(models.User).where(models.User.email == email.lower())
        return self.session.exec(stmt).first()

    def get(self, user_id: int) -> Optional[models.User]:
        """Get a `User` by primary key."""
        return self.session.get(models.User, user_id)

    def list_all(self) -> List[models.User]:
        stmt = select(models.User).order_by(models.User.created_at.desc(), models.User.id.desc())
        return self.session.exec(stmt).all()

    def count(self, since: Optional[datetime] = None) -> int:
        stmt = select(func.count()).select_from(models.User)
        if since is not None:
            stmt = stmt.where(models.User.created_at >= since)
        return self.session.exec(stmt).one()

    def content_counts(self, user_id: int) -> dict:
        """Questions and exams created by the user, and attempts made."""
        def _count(model, column):
            stmt = select(func.count()).select_from(model).where(column == user_id)
            return self.session.exec(stmt).one()
        return {
            'created_questions': _count(models.Question, models.Question.created_by_id),
            'created_exams': _count(models.Exam, models.Exam.created_by_id),
            'attempts': _count(models.Attempt, models.Attempt.student_id),
        }

    def recent(self, limit: int = 10) -> List[models.User]:
        stmt = select(models.User).order_by(models.User.created_at.desc(), models.User.id.desc()).limit(limit)
        return self.session.exec(stmt).all()


class QuestionRepository:
    """CRUD operations for `Question` and its `QuestionOption` rows."""
    def __init__(self, session: Session):
        self.session = session

    def create(self, question: models.Question, options: List[models.QuestionOption]) -> models.Question:
        """Create a question together with its options in one commit."""
        question.options = options
        self.session.add(question)
        self.session.commit()
        self.session.refresh(question)
        return question

    def save(self, question: models.Question) -> models.Question:
        self.session.add(question)
        self.session.commit()
        self.session.refresh(question)
        return question

    def replace_options(self, question: models.Question, options: List[models.QuestionOption]) -> None:
        """Swap the option set without committing.

        Old rows are deleted and flushed first so reused keys do not trip
        the per-question unique constraint.
        """
        for old in list(question.options):
            self.session.delete(old)
        question.options = []
        self.session.flush()
        question.options = options

    def delete(self, question: models.Question) -> None:
        self.session.delete(question)
        self.session.commit()

    def get(self, question_id: int) -> Optional[models.Question]:
        """Fetch a question by id."""
        return self.session.get(models.Question, question_id)

    def get_many(self, question_ids: Sequence[int]) -> List[models.Question]:
        """Return the questions whose id is in `question_ids` (any order)."""
        if not question_ids:
            return []
        stmt = select(models.Question).where(models.Question.id.in_(list(question_ids)))
        return self.session.exec(stmt).all()

    def list(self, created_by_id: Optional[int] = None, category: Optional[str] = None) -> List[models.Question]:
        stmt = select(models.Question)
        if created_by_id is not None:
            stmt = stmt.where(models.Question.created_by_id == created_by_id)
        if category:
            stmt = stmt.where(models.Question.category == category)
        stmt = stmt.order_by(models.Question.created_at.desc(), models.Question.id.desc())
        return self.session.exec(stmt).all()

    def list_categories(self) -> List[str]:
        stmt = select(models.Question.category).distinct().order_by(models.Question.category)
        return self.session.exec(stmt).all()

    def exam_count(self, question_id: int) -> int:
        """Number of exams that reference the question."""
        stmt = select(func.count()).select_from(models.ExamQuestion).where(
            models.ExamQuestion.question_id == question_id)
        return self.session.exec(stmt).one()

    def has_attempts(self, question_id: int) -> bool:
        """True if any exam using this question has been attempted.

        Such questions are part of grade history and must not change.
        """
        stmt = (
            select(models.Attempt.id)
            .join(models.ExamQuestion, models.ExamQuestion.exam_id == models.Attempt.exam_id)
            .where(models.ExamQuestion.question_id == question_id)
        )
        return self.session.exec(stmt).first() is not None

    def count(self, since: Optional[datetime] = None) -> int:
        stmt = select(func.count()).select_from(models.Question)
        if since is not None:
            stmt = stmt.where(models.Question.created_at >= since)
        return self.session.exec(stmt).one()

    def recent(self, limit: int = 10) -> List[models.Question]:
        stmt = select(models.Question).order_by(models.Question.created_at.desc(), models.Question.id.desc()).limit(limit)
        return self.session.exec(stmt).all()


class ExamRepository:
    """Persist exams and their ordered question links."""
    def __init__(self, session: Session):
        self.session = session

    def create(self, exam: models.Exam, question_ids: Sequence[int]) -> models.Exam:
        """Create `exam` and link `question_ids` with sequential 1-based order."""
        exam.questions = [
            models.ExamQuestion(question_id=qid, order=idx)
            for idx, qid in enumerate(question_ids, start=1)
        ]
        self.session.add(exam)
        self.session.commit()
        self.session.refresh(exam)
        return exam

    def save(self, exam: models.Exam) -> models.Exam:
        exam.updated_at = models.utcnow()
        self.session.add(exam)
        self.session.commit()
        self.session.refresh(exam)
        return exam

    def delete(self, exam: models.Exam) -> None:
        self.session.delete(exam)
        self.session.commit()

    def get(self, exam_id: int) -> Optional[models.Exam]:
        return self.session.get(models.Exam, exam_id)

    def list(self, created_by_id: Optional[int] = None, is_active: Optional[bool] = None) -> List[models.Exam]:
        stmt = select(models.Exam)
        if created_by_id is not None:
            stmt = stmt.where(models.Exam.created_by_id == created_by_id)
        if is_active is not None:
            stmt = stmt.where(models.Exam.is_active == is_active)
        stmt = stmt.order_by(models.Exam.created_at.desc(), models.Exam.id.desc())
        return self.session.exec(stmt).all()

    def count(self, since: Optional[datetime] = None) -> int:
        stmt = select(func.count()).select_from(models.Exam)
        if since is not None:
            stmt = stmt.where(models.Exam.created_at >= since)
        return self.session.exec(stmt).one()

    def recent(self, limit: int = 10) -> List[models.Exam]:
        stmt = select(models.Exam).order_by(models.Exam.created_at.desc(), models.Exam.id.desc()).limit(limit)
        return self.session.exec(stmt).all()


class AttemptRepository:
    """Attempts and their results."""
    def __init__(self, session: Session):
        self.session = session

    def create_completed(self, attempt: models.Attempt, result: models.Result) -> models.Result:
        """Write a completed attempt and its result in a single transaction.

        The attempt is flushed to obtain its id, the result is linked to
        it and both are committed together. Any failure rolls back both
        rows and re-raises; callers never see a half-written submission.
        """
        try:
            self.session.add(attempt)
            self.session.flush()
            result.attempt_id = attempt.id
            self.session.add(result)
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise
        self.session.refresh(result)
        return result

    def count_completed(self, exam_id: int, student_id: int) -> int:
        stmt = select(func.count()).select_from(models.Attempt).where(
            models.Attempt.exam_id == exam_id,
            models.Attempt.student_id == student_id,
            models.Attempt.status == AttemptStatus.COMPLETED,
        )
        return self.session.exec(stmt).one()

    def next_attempt_number(self, exam_id: int, student_id: int) -> int:
        stmt = select(func.max(models.Attempt.attempt_number)).where(
            models.Attempt.exam_id == exam_id,
            models.Attempt.student_id == student_id,
        )
        current = self.session.exec(stmt).one()
        return (current or 0) + 1

    def list_completed(self, exam_id: Optional[int] = None, student_id: Optional[int] = None,
                       exam_ids: Optional[Sequence[int]] = None) -> List[models.Attempt]:
        """Completed attempts, newest first (`created_at` then `id` descending)."""
        stmt = select(models.Attempt).where(models.Attempt.status == AttemptStatus.COMPLETED)
        if exam_id is not None:
            stmt = stmt.where(models.Attempt.exam_id == exam_id)
        if student_id is not None:
            stmt = stmt.where(models.Attempt.student_id == student_id)
        if exam_ids is not None:
            if not exam_ids:
                return []
            stmt = stmt.where(models.Attempt.exam_id.in_(list(exam_ids)))
        stmt = stmt.order_by(models.Attempt.created_at.desc(), models.Attempt.id.desc())
        return self.session.exec(stmt).all()

    def latest_completed_with_result(self, exam_id: int, student_id: int) -> Optional[models.Attempt]:
        """Newest completed attempt for the pair that has a stored result."""
        stmt = (
            select(models.Attempt)
            .join(models.Result, models.Result.attempt_id == models.Attempt.id)
            .where(
                models.Attempt.exam_id == exam_id,
                models.Attempt.student_id == student_id,
                models.Attempt.status == AttemptStatus.COMPLETED,
            )
            .order_by(models.Attempt.created_at.desc(), models.Attempt.id.desc())
        )
        return self.session.exec(stmt).first()

    def count_for_exam(self, exam_id: int) -> int:
        stmt = select(func.count()).select_from(models.Attempt).where(models.Attempt.exam_id == exam_id)
        return self.session.exec(stmt).one()

    def count_for_student(self, student_id: int) -> int:
        stmt = select(func.count()).select_from(models.Attempt).where(models.Attempt.student_id == student_id)
        return self.session.exec(stmt).one()

    def count(self, since: Optional[datetime] = None) -> int:
        stmt = select(func.count()).select_from(models.Attempt)
        if since is not None:
            stmt = stmt.where(models.Attempt.created_at >= since)
        return self.session.exec(stmt).one()

    def results_for_student(self, student_id: int) -> List[models.Result]:
        stmt = (
            select(models.Result)
            .where(models.Result.student_id == student_id)
            .order_by(models.Result.created_at.desc(), models.Result.id.desc())
        )
        return self.session.exec(stmt).all()

    def recent(self, limit: int = 10) -> List[models.Attempt]:
        """Newest completed attempts across all exams."""
        stmt = (
            select(models.Attempt)
            .where(models.Attempt.status == AttemptStatus.COMPLETED)
            .order_by(models.Attempt.created_at.desc(), models.Attempt.id.desc())
            .limit(limit)
        )
        return self.session.exec(stmt).all()
