"""Business logic services used by HTTP controllers.

This module holds small service classes that coordinate repositories,
permission checks and the pure grading rules. Services are intentionally
thin: they authorize the caller (passed in explicitly as a
`SessionContext`), validate, execute domain logic and persist aggregates
via repositories. They raise `errors.ExamPlatformError` subclasses which
the HTTP layer maps to status codes.
"""

import logging
from datetime import datetime, timedelta
from typing import Iterable, List, Mapping, Optional

from passlib.context import CryptContext
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import Session

from . import models, repositories
from .auth import SessionContext, create_token
from .errors import (
    AuthenticationError, ConflictError, InternalError, MaxAttemptsExceededError,
    NotFoundError, ValidationError,
)
from .exam_views import (
    build_exam_summary, build_exam_view, build_review_view, ordered_questions,
)
from .grading import (
    average_percentage, compute_percentage, count_correct, feedback_for,
    first_answers, grade_of, grade_questions, is_passed,
)
from .models import AttemptStatus, as_utc, utcnow
from .permissions import (
    Permission, Role, authorize, authorize_admin_access, authorize_ownership,
    has_permission, permissions_for, role_display_name,
)
from . import schemas

logger = logging.getLogger("eksetasi.services")

PWD_CTX = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")

# attempts to win the attempt-number race before giving up
MAX_WRITE_RETRIES = 3

# exam settings a PATCH may clear by sending null
NULLABLE_EXAM_FIELDS = {'instructions', 'max_attempts', 'available_from', 'available_until'}

REDIRECTS = {
    Role.ADMIN: '/admin',
    Role.TEACHER: '/teacher/dashboard',
    Role.STUDENT: '/dashboard',
}

# time-up auto-submits may land shortly after an exam window closes
SUBMIT_GRACE = timedelta(minutes=2)


def _require_session(ctx: Optional[SessionContext]) -> SessionContext:
    if ctx is None:
        raise AuthenticationError('Authentication required')
    return ctx


def _iso(value: Optional[datetime]) -> Optional[str]:
    value = as_utc(value)
    return value.isoformat() if value else None


def _minutes_between(start: Optional[datetime], end: Optional[datetime]) -> int:
    if not start or not end:
        return 0
    return round((as_utc(end) - as_utc(start)).total_seconds() / 60)


def is_exam_open(exam: models.Exam, now: Optional[datetime] = None, grace: timedelta = timedelta(0)) -> bool:
    """True when `exam` is active and `now` falls inside its availability window."""
    if not exam.is_active:
        return False
    now = now or utcnow()
    opens, closes = as_utc(exam.available_from), as_utc(exam.available_until)
    if opens and now < opens:
        return False
    return not (closes and now > closes + grace)


def check_exam_available(exam: models.Exam, now: Optional[datetime] = None,
                         grace: timedelta = timedelta(0)) -> None:
    """Raise unless a student may take `exam` right now.

    Inactive exams are reported as missing; a closed window is a
    VALIDATION error so the client can tell the learner why.
    """
    if not exam.is_active:
        raise NotFoundError('Exam not found')
    now = now or utcnow()
    opens, closes = as_utc(exam.available_from), as_utc(exam.available_until)
    if opens and now < opens:
        raise ValidationError.for_field('exam', 'Exam is not open yet')
    if closes and now > closes + grace:
        raise ValidationError.for_field('exam', 'Exam is closed')


def user_to_dict(user: models.User) -> dict:
    return {
        'id': user.id,
        'name': user.name,
        'email': user.email,
        'role': Role(user.role).value,
        'role_display': role_display_name(user.role),
        'created_at': _iso(user.created_at),
        'updated_at': _iso(user.updated_at),
    }


class AuthService:
    """Authentication related operations (register + authenticate)."""
    def __init__(self, session: Session):
        self.session = session
        self.user_repo = repositories.UserRepository(session)

    def register(self, name: str, email: str, password: str, role: Role = Role.STUDENT) -> models.User:
        """Create a new user with a hashed password.

        Self-registration always yields a STUDENT; other roles are only
        used by the seed script and admin tooling.
        """
        email = email.lower()
        if self.user_repo.get_by_email(email):
            raise ConflictError('User with this email already exists')
        hashed = PWD_CTX.hash(password)
        u = models.User(name=name, email=email, password_hash=hashed, role=role)
        user = self.user_repo.create(u)
        logger.info("user registered id=%s role=%s", user.id, user.role.value)
        return user

    def authenticate(self, email: str, password: str):
        """Verify credentials and return `(user, token)`.

        Raises `AuthenticationError` with the same message for an unknown
        email and a wrong password.
        """
        user = self.user_repo.get_by_email(email)
        if not user or not PWD_CTX.verify(password, user.password_hash):
            raise AuthenticationError('Invalid email or password')
        return user, create_token(user)

    @staticmethod
    def redirect_for(role: Role) -> str:
        return REDIRECTS.get(Role(role), '/dashboard')


class UserService:
    """Profile access for everyone, user administration for admins."""
    def __init__(self, session: Session):
        self.session = session
        self.user_repo = repositories.UserRepository(session)
        self.attempt_repo = repositories.AttemptRepository(session)

    def list_users(self, ctx: SessionContext) -> dict:
        authorize(Permission.MANAGE_USERS, ctx.role if ctx else None)
        users = self.user_repo.list_all()
        out = []
        for u in users:
            item = user_to_dict(u)
            item['counts'] = self.user_repo.content_counts(u.id)
            out.append(item)
        return {'users': out, 'total': len(out)}

    def update_role(self, ctx: SessionContext, user_id: int, role: Role) -> dict:
        """Change a user's role. Admins cannot change their own role."""
        authorize(Permission.MANAGE_USERS, ctx.role if ctx else None)
        user = self.user_repo.get(user_id)
        if not user:
            raise NotFoundError('User not found')
        if user.id == ctx.user_id:
            raise ValidationError.for_field('role', 'You cannot change your own role')
        previous = Role(user.role)
        user.role = Role(role)
        self.user_repo.save(user)
        logger.info("role changed user_id=%s %s -> %s by admin_id=%s",
                    user.id, previous.value, user.role.value, ctx.user_id)
        return user_to_dict(user)

    def profile(self, ctx: SessionContext) -> dict:
        """Profile, aggregate statistics and result history of the caller."""
        ctx = _require_session(ctx)
        user = self.user_repo.get(ctx.user_id)
        if not user:
            raise NotFoundError('User not found')
        results = self.attempt_repo.results_for_student(user.id)
        history = []
        total_time = 0
        for r in results:
            attempt = r.attempt
            exam = self.session.get(models.Exam, r.exam_id)
            time_spent = _minutes_between(attempt.start_time, attempt.end_time) if attempt else 0
            total_time += time_spent
            history.append({
                'id': r.id,
                'exam_id': r.exam_id,
                'exam_title': exam.title if exam else None,
                'score': r.percentage,
                'grade': grade_of(r.percentage),
                'passed': r.passed,
                'correct_answers': r.score,
                'time_spent': time_spent,
                'submitted_at': _iso((attempt.end_time if attempt else None) or r.created_at),
            })
        taken = len(results)
        passed = sum(1 for r in results if r.passed)
        return {
            'user': user_to_dict(user),
            'statistics': {
                'total_exams_taken': taken,
                'total_exams_passed': passed,
                'pass_rate': compute_percentage(passed, taken),
                'average_score': average_percentage([r.percentage for r in results]),
                'total_time_spent': total_time,
            },
            'recent_results': history[:5],
            'all_results': history,
        }

    def update_profile(self, ctx: SessionContext, data: schemas.ProfileUpdateIn) -> dict:
        ctx = _require_session(ctx)
        user = self.user_repo.get(ctx.user_id)
        if not user:
            raise NotFoundError('User not found')
        if data.email is not None:
            email = data.email.lower()
            existing = self.user_repo.get_by_email(email)
            if existing and existing.id != user.id:
                raise ConflictError('Email is already taken')
            user.email = email
        if data.name is not None:
            user.name = data.name
        self.user_repo.save(user)
        return user_to_dict(user)


class QuestionService:
    """Question bank management for teachers and admins."""
    def __init__(self, session: Session):
        self.session = session
        self.q_repo = repositories.QuestionRepository(session)

    @staticmethod
    def _build_options(options: Iterable[schemas.OptionIn]) -> List[models.QuestionOption]:
        return [
            models.QuestionOption(key=o.id, text=o.text, is_correct=o.is_correct, position=i)
            for i, o in enumerate(options)
        ]

    def to_dict(self, q: models.Question, reveal_answers: bool = True) -> dict:
        out = {
            'id': q.id,
            'text': q.text,
            'category': q.category,
            'difficulty': models.Difficulty(q.difficulty).value,
            'created_by_id': q.created_by_id,
            'created_at': _iso(q.created_at),
            'exam_count': self.q_repo.exam_count(q.id),
        }
        if reveal_answers:
            out['explanation'] = q.explanation
            out['options'] = [{'id': o.key, 'text': o.text, 'is_correct': o.is_correct} for o in q.options]
        return out

    def create(self, ctx: SessionContext, data: schemas.QuestionIn) -> models.Question:
        authorize(Permission.MANAGE_QUESTIONS, ctx.role if ctx else None)
        q = models.Question(
            text=data.text,
            explanation=data.explanation,
            category=data.category,
            difficulty=data.difficulty,
            created_by_id=ctx.user_id,
        )
        created = self.q_repo.create(q, self._build_options(data.options))
        logger.info("question created id=%s by user_id=%s", created.id, ctx.user_id)
        return created

    def list(self, ctx: SessionContext, category: Optional[str] = None) -> dict:
        """Questions visible to the caller: all for admins, own for teachers."""
        authorize(Permission.MANAGE_QUESTIONS, ctx.role if ctx else None)
        owner = None if ctx.role == Role.ADMIN else ctx.user_id
        questions = self.q_repo.list(created_by_id=owner, category=category)
        return {
            'questions': [self.to_dict(q) for q in questions],
            'categories': self.q_repo.list_categories(),
            'total': len(questions),
        }

    def _get_owned(self, ctx: SessionContext, question_id: int) -> models.Question:
        q = self.q_repo.get(question_id)
        if not q:
            raise NotFoundError('Question not found')
        authorize_ownership(ctx.role, q.created_by_id, ctx.user_id, 'questions')
        return q

    def update(self, ctx: SessionContext, question_id: int, data: schemas.QuestionUpdateIn) -> models.Question:
        """Edit a question that no graded attempt depends on yet."""
        authorize(Permission.MANAGE_QUESTIONS, ctx.role if ctx else None)
        q = self._get_owned(ctx, question_id)
        if self.q_repo.has_attempts(q.id):
            raise ValidationError.for_field(
                'question', 'Question is used by an exam that has attempts and can no longer be edited')
        for field in ('text', 'explanation', 'category', 'difficulty'):
            value = getattr(data, field)
            if value is not None:
                setattr(q, field, value)
        if data.options is not None:
            self.q_repo.replace_options(q, self._build_options(data.options))
        return self.q_repo.save(q)

    def delete(self, ctx: SessionContext, question_id: int) -> None:
        if not (ctx and has_permission(ctx.role, Permission.DELETE_CONTENT)):
            authorize(Permission.MANAGE_QUESTIONS, ctx.role if ctx else None)
        q = self._get_owned(ctx, question_id)
        used_by = self.q_repo.exam_count(q.id)
        if used_by:
            raise ValidationError.for_field('question', f'Question is used by {used_by} exam(s)')
        self.q_repo.delete(q)
        logger.info("question deleted id=%s by user_id=%s", question_id, ctx.user_id)


class ExamService:
    """Exam assembly, listing and the pre-submission exam fetch."""
    def __init__(self, session: Session):
        self.session = session
        self.exam_repo = repositories.ExamRepository(session)
        self.q_repo = repositories.QuestionRepository(session)
        self.attempt_repo = repositories.AttemptRepository(session)

    def get_or_404(self, exam_id: int) -> models.Exam:
        exam = self.exam_repo.get(exam_id)
        if not exam:
            raise NotFoundError('Exam not found')
        return exam

    def create(self, ctx: SessionContext, data: schemas.ExamIn) -> models.Exam:
        """Assemble an exam; every referenced question must exist."""
        authorize(Permission.MANAGE_EXAMS, ctx.role if ctx else None)
        if not data.question_ids:
            raise ValidationError.for_field('question_ids', 'At least one question is required')
        found = {q.id for q in self.q_repo.get_many(data.question_ids)}
        missing = [qid for qid in data.question_ids if qid not in found]
        if missing:
            raise ValidationError.for_field(
                'question_ids', f"One or more question IDs are invalid: {', '.join(map(str, missing))}")
        exam = models.Exam(
            title=data.title,
            description=data.description,
            instructions=data.instructions,
            time_limit=data.time_limit,
            passing_score=data.passing_score,
            max_attempts=data.max_attempts,
            is_active=data.is_active,
            available_from=data.available_from,
            available_until=data.available_until,
            created_by_id=ctx.user_id,
        )
        created = self.exam_repo.create(exam, data.question_ids)
        logger.info("exam created id=%s questions=%d by user_id=%s",
                    created.id, len(data.question_ids), ctx.user_id)
        return created

    def list_managed(self, ctx: SessionContext) -> dict:
        """Exams for the admin area: all for admins, own for teachers."""
        authorize(Permission.MANAGE_EXAMS, ctx.role if ctx else None)
        owner = None if ctx.role == Role.ADMIN else ctx.user_id
        exams = self.exam_repo.list(created_by_id=owner)
        out = []
        for exam in exams:
            item = build_exam_summary(exam, attempt_count=self.attempt_repo.count_for_exam(exam.id))
            item['questions'] = [
                {'id': link.question_id, 'order': link.order}
                for link in sorted(exam.questions, key=lambda link: link.order)
            ]
            out.append(item)
        return {'exams': out, 'total': len(out)}

    def list_available(self, ctx: SessionContext, active: Optional[bool] = None,
                       category: Optional[str] = None) -> dict:
        """Exams a caller may browse.

        Students only see exams they could open right now: active and
        inside the availability window.
        """
        ctx = _require_session(ctx)
        found = self.exam_repo.list(is_active=active)
        if ctx.role == Role.STUDENT:
            now = utcnow()
            found = [e for e in found if is_exam_open(e, now)]
        exams = [build_exam_summary(e) for e in found]
        if category:
            needle = category.lower()
            exams = [e for e in exams if needle in e['category'].lower()]
        return {'exams': exams, 'total': len(exams), 'user': ctx.to_dict()}

    def get_for_taking(self, ctx: SessionContext, exam_id: int, include_answers: bool = False) -> dict:
        """Return the exam for a learner, redacted unless answers are requested.

        Answer keys are only released to exam managers who own the exam,
        and the check runs before anything is serialised.
        """
        ctx = _require_session(ctx)
        exam = self.get_or_404(exam_id)
        if include_answers:
            authorize(Permission.MANAGE_EXAMS, ctx.role)
            authorize_ownership(ctx.role, exam.created_by_id, ctx.user_id, 'exams')
        elif ctx.role == Role.STUDENT:
            check_exam_available(exam)
        view = build_exam_view(exam, reveal_answers=include_answers)
        view['user'] = ctx.to_dict()
        return view

    def get_managed(self, ctx: SessionContext, exam_id: int) -> dict:
        authorize(Permission.MANAGE_EXAMS, ctx.role if ctx else None)
        exam = self.get_or_404(exam_id)
        authorize_ownership(ctx.role, exam.created_by_id, ctx.user_id, 'exams')
        view = build_exam_view(exam, reveal_answers=True)
        view.update({
            'is_active': exam.is_active,
            'available_from': _iso(exam.available_from),
            'available_until': _iso(exam.available_until),
            'created_by_id': exam.created_by_id,
            'attempt_count': self.attempt_repo.count_for_exam(exam.id),
        })
        return view

    def update(self, ctx: SessionContext, exam_id: int, data: schemas.ExamUpdateIn) -> models.Exam:
        """Change exam settings. Stored results are never re-graded."""
        authorize(Permission.MANAGE_EXAMS, ctx.role if ctx else None)
        exam = self.get_or_404(exam_id)
        authorize_ownership(ctx.role, exam.created_by_id, ctx.user_id, 'exams')
        for field, value in data.model_dump(exclude_unset=True).items():
            if value is None and field not in NULLABLE_EXAM_FIELDS:
                continue
            setattr(exam, field, value)
        opens, closes = as_utc(exam.available_from), as_utc(exam.available_until)
        if opens and closes and opens >= closes:
            self.session.rollback()
            raise ValidationError.for_field('available_until', 'available_from must be before available_until')
        return self.exam_repo.save(exam)

    def delete(self, ctx: SessionContext, exam_id: int) -> None:
        if not (ctx and has_permission(ctx.role, Permission.DELETE_CONTENT)):
            authorize(Permission.MANAGE_EXAMS, ctx.role if ctx else None)
        exam = self.get_or_404(exam_id)
        authorize_ownership(ctx.role, exam.created_by_id, ctx.user_id, 'exams')
        if self.attempt_repo.count_for_exam(exam.id):
            raise ValidationError.for_field('exam', 'Exam has attempts and cannot be deleted; deactivate it instead')
        self.exam_repo.delete(exam)
        logger.info("exam deleted id=%s by user_id=%s", exam_id, ctx.user_id)


class SubmissionService:
    """Grade submitted exams, persist attempt + result, serve reviews."""
    def __init__(self, session: Session):
        self.session = session
        self.exam_repo = repositories.ExamRepository(session)
        self.attempt_repo = repositories.AttemptRepository(session)

    def _get_exam(self, exam_id: int) -> models.Exam:
        exam = self.exam_repo.get(exam_id)
        if not exam:
            raise NotFoundError('Exam not found')
        return exam

    def _check_attempts_left(self, exam: models.Exam, student_id: int) -> None:
        if exam.max_attempts is None:
            return
        used = self.attempt_repo.count_completed(exam.id, student_id)
        if used >= exam.max_attempts:
            raise MaxAttemptsExceededError(
                f'Maximum number of attempts ({exam.max_attempts}) reached for this exam')

    def submit(self, ctx: SessionContext, exam_id: int, answers: List[Mapping],
               time_spent: float, submitted_at: Optional[datetime] = None) -> dict:
        """Score a submission and store it as a completed attempt.

        `answers` is a list of `{question_id, selected_option}` mappings.
        Every question of the exam is graded; unanswered ones count as
        wrong and answers for questions outside the exam are dropped.
        Attempt and result are written in one transaction. Calling this
        twice creates two attempts (subject to `exam.max_attempts`).
        Students may only submit to an active exam inside its window, with
        `SUBMIT_GRACE` after closing for time-up auto-submits; the check
        uses server time, never the client-supplied `submitted_at`.
        """
        ctx = _require_session(ctx)
        exam = self._get_exam(exam_id)
        if ctx.role == Role.STUDENT:
            check_exam_available(exam, grace=SUBMIT_GRACE)
        self._check_attempts_left(exam, ctx.user_id)

        questions = ordered_questions(exam)
        selected = first_answers(answers)
        stray = set(selected) - {q.id for q in questions}
        if stray:
            logger.debug("ignoring answers for questions outside exam_id=%s: %s", exam.id, sorted(stray))
        outcomes = grade_questions(questions, selected)
        correct = count_correct(outcomes)
        total = len(questions)
        percentage = compute_percentage(correct, total)
        passed = is_passed(percentage, exam.passing_score)
        grade = grade_of(percentage)

        ended_at = as_utc(submitted_at) or utcnow()
        started_at = ended_at - timedelta(minutes=time_spent)
        answer_map = {str(o.question_id): o.user_answer for o in outcomes if o.user_answer is not None}
        exam_title = exam.title

        result = self._persist(exam, ctx.user_id, answer_map, correct, percentage, passed,
                               started_at, ended_at)
        logger.info("exam submitted exam_id=%s student_id=%s attempt_id=%s percentage=%d passed=%s",
                    exam_id, ctx.user_id, result.attempt_id, percentage, passed)
        return {
            'result_id': result.id,
            'attempt_id': result.attempt_id,
            'exam_id': exam_id,
            'exam_title': exam_title,
            'score': percentage,
            'grade': grade,
            'passed': passed,
            'total_questions': total,
            'correct_answers': correct,
            'time_spent': time_spent,
            'submitted_at': ended_at.isoformat(),
        }

    def _persist(self, exam: models.Exam, student_id: int, answer_map: dict, correct: int,
                 percentage: int, passed: bool, started_at: datetime, ended_at: datetime) -> models.Result:
        """Write attempt + result, retrying when a concurrent submit took our number."""
        exam_id = exam.id
        for _ in range(MAX_WRITE_RETRIES):
            self._check_attempts_left(exam, student_id)
            attempt = models.Attempt(
                student_id=student_id,
                exam_id=exam_id,
                attempt_number=self.attempt_repo.next_attempt_number(exam_id, student_id),
                start_time=started_at,
                end_time=ended_at,
                answers=answer_map,
                score=correct,
                status=AttemptStatus.COMPLETED,
            )
            result = models.Result(
                student_id=student_id,
                exam_id=exam_id,
                score=correct,
                percentage=percentage,
                passed=passed,
                feedback=feedback_for(percentage, passed),
            )
            try:
                return self.attempt_repo.create_completed(attempt, result)
            except IntegrityError:
                logger.warning("attempt number collision exam_id=%s student_id=%s; retrying", exam_id, student_id)
            except SQLAlchemyError as exc:
                logger.exception("failed to store submission exam_id=%s student_id=%s", exam_id, student_id)
                raise InternalError('Could not save the submission') from exc
        raise InternalError('Could not save the submission')

    def review(self, ctx: SessionContext, exam_id: int) -> dict:
        """Reveal the caller's newest completed attempt for `exam_id`."""
        ctx = _require_session(ctx)
        exam = self._get_exam(exam_id)
        attempt = self.attempt_repo.latest_completed_with_result(exam.id, ctx.user_id)
        if not attempt or not attempt.result:
            raise NotFoundError('No exam submission found. You must complete the exam before reviewing it.')
        selected = {int(qid): key for qid, key in (attempt.answers or {}).items()}
        outcomes = grade_questions(ordered_questions(exam), selected)
        view = build_review_view(exam, attempt, attempt.result, outcomes)
        view['user'] = ctx.to_dict()
        return view


class DashboardService:
    """Read-only statistics for the student, teacher and admin dashboards."""
    def __init__(self, session: Session):
        self.session = session
        self.user_repo = repositories.UserRepository(session)
        self.q_repo = repositories.QuestionRepository(session)
        self.exam_repo = repositories.ExamRepository(session)
        self.attempt_repo = repositories.AttemptRepository(session)

    def _attempt_entry(self, attempt: models.Attempt) -> dict:
        exam = self.session.get(models.Exam, attempt.exam_id)
        result = attempt.result
        return {
            'id': attempt.id,
            'exam_id': attempt.exam_id,
            'exam_title': exam.title if exam else None,
            'score': result.percentage if result else 0,
            'passed': result.passed if result else False,
            'completed_at': _iso(attempt.end_time or attempt.created_at),
        }

    def student(self, ctx: SessionContext) -> dict:
        ctx = _require_session(ctx)
        now = utcnow()
        exams = [build_exam_summary(e) for e in self.exam_repo.list(is_active=True) if is_exam_open(e, now)]
        completed = self.attempt_repo.list_completed(student_id=ctx.user_id)
        percentages = [a.result.percentage for a in completed if a.result]
        return {
            'statistics': {
                'available_exams': len(exams),
                'completed_exams': len(completed),
                'average_score': average_percentage(percentages),
            },
            'exams': exams,
            'recent_results': [self._attempt_entry(a) for a in completed[:5]],
            'user': ctx.to_dict(),
        }

    def teacher(self, ctx: SessionContext) -> dict:
        authorize(Permission.VIEW_ANALYTICS, ctx.role if ctx else None)
        exams = self.exam_repo.list(created_by_id=ctx.user_id)
        attempts = self.attempt_repo.list_completed(exam_ids=[e.id for e in exams])
        percentages = [a.result.percentage for a in attempts if a.result]
        recent_attempts = []
        for a in attempts[:10]:
            entry = self._attempt_entry(a)
            student = self.user_repo.get(a.student_id)
            entry['student_name'] = student.name if student else None
            recent_attempts.append(entry)
        return {
            'statistics': {
                'total_exams': len(exams),
                'total_students': len({a.student_id for a in attempts}),
                'total_attempts': len(attempts),
                'average_score': average_percentage(percentages),
            },
            'recent_exams': [
                {
                    'id': e.id,
                    'title': e.title,
                    'total_questions': len(e.questions),
                    'is_active': e.is_active,
                    'created_at': _iso(e.created_at),
                    'attempt_count': self.attempt_repo.count_for_exam(e.id),
                }
                for e in exams[:5]
            ],
            'recent_attempts': recent_attempts,
            'user': ctx.to_dict(),
        }

    def admin(self, ctx: SessionContext) -> dict:
        authorize_admin_access(ctx.role if ctx else None)
        week_ago = utcnow() - timedelta(days=7)
        return {
            'user': ctx.to_dict(),
            'stats': {
                'total_users': self.user_repo.count(),
                'total_questions': self.q_repo.count(),
                'total_exams': self.exam_repo.count(),
                'total_attempts': self.attempt_repo.count(),
                'recent_users': self.user_repo.count(since=week_ago),
                'recent_questions': self.q_repo.count(since=week_ago),
                'recent_exams': self.exam_repo.count(since=week_ago),
                'recent_attempts': self.attempt_repo.count(since=week_ago),
            },
            'permissions': permissions_for(ctx.role).to_dict(),
        }

    def activity(self, ctx: SessionContext, per_kind: int = 10, limit: int = 50) -> dict:
        """Merged feed of recent registrations, content and completed exams.

        Each kind contributes at most `per_kind` entries; the feed is
        sorted newest first and cut to `limit`.
        """
        authorize_admin_access(ctx.role if ctx else None)
        users = {}

        def _person(user_id):
            if user_id not in users:
                users[user_id] = self.user_repo.get(user_id) if user_id is not None else None
            user = users[user_id]
            return {'name': user.name, 'email': user.email} if user else None

        entries = []
        for u in self.user_repo.recent(per_kind):
            entries.append((u.created_at, {
                'id': f'user_{u.id}',
                'type': 'user_registered',
                'description': 'New user registered',
                'user': {'name': u.name, 'email': u.email},
            }))
        for q in self.q_repo.recent(per_kind):
            text = q.text if len(q.text) <= 100 else q.text[:100] + '...'
            entries.append((q.created_at, {
                'id': f'question_{q.id}',
                'type': 'question_created',
                'description': 'New question created',
                'user': _person(q.created_by_id),
                'metadata': {'question_text': text},
            }))
        for e in self.exam_repo.recent(per_kind):
            entries.append((e.created_at, {
                'id': f'exam_{e.id}',
                'type': 'exam_created',
                'description': 'New exam created',
                'user': _person(e.created_by_id),
                'metadata': {'exam_title': e.title},
            }))
        for a in self.attempt_repo.recent(per_kind):
            exam = self.session.get(models.Exam, a.exam_id)
            entries.append((a.created_at, {
                'id': f'attempt_{a.id}',
                'type': 'exam_taken',
                'description': 'Exam completed',
                'user': _person(a.student_id),
                'metadata': {
                    'exam_title': exam.title if exam else None,
                    'score': a.result.percentage if a.result else None,
                },
            }))
        entries.sort(key=lambda pair: as_utc(pair[0]), reverse=True)
        activities = []
        for created_at, entry in entries[:limit]:
            entry['timestamp'] = _iso(created_at)
            activities.append(entry)
        return {'activities': activities, 'total': len(activities)}
