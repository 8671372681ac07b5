"""FastAPI application entrypoint and HTTP controllers.

This module defines the HTTP endpoints of the exam platform. Controllers
are intentionally thin: they resolve the caller's session, delegate to
services, and return JSON responses. Service errors are translated to
status codes by the exception handlers registered below.

Endpoints implemented:
- POST /auth/register, POST /auth/login
- GET /users/me, PUT /users/me
- GET /exams, GET /exams/{id}, POST /exams/{id}/submit, GET /exams/{id}/review
- GET /dashboard, GET /teacher/dashboard, GET /admin/dashboard
- GET /admin/activity
- GET /admin/users, PATCH /admin/users/{id}/role
- GET|POST /admin/questions, PATCH|DELETE /admin/questions/{id}
- GET|POST /admin/exams, GET|PATCH|DELETE /admin/exams/{id}
- GET /health
"""

import json
import logging
import time
import uuid
from typing import Optional

from fastapi import FastAPI, Depends, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session

from . import services
from .auth import SessionContext, create_token, get_current_session
from .config import settings
from .database import create_db_and_tables, get_session
from .errors import ErrorKind, ExamPlatformError, ValidationError
from .schemas import (
    ExamIn, ExamUpdateIn, LoginIn, ProfileUpdateIn, QuestionIn, QuestionUpdateIn,
    RegisterIn, RoleUpdateIn, SubmissionIn,
)
from .utils.rate_limit import InMemoryRateLimiter

app = FastAPI(title="Eksetasi Exam Platform API")
logger = logging.getLogger("eksetasi.api")
if not logger.handlers:
    logging.basicConfig(level=settings.LOG_LEVEL)
_auth_rate_limiter = InMemoryRateLimiter()

# Wide-open CORS keeps local frontends working without extra config in dev.
if settings.ALLOW_DEV_CORS:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

create_db_and_tables()


@app.middleware("http")
async def request_context_middleware(request: Request, call_next):
    req_id = request.headers.get("X-Request-ID", uuid.uuid4().hex)
    request.state.request_id = req_id
    started = time.perf_counter()
    response: Response
    try:
        response = await call_next(request)
    except Exception:
        elapsed_ms = round((time.perf_counter() - started) * 1000.0, 2)
        logger.exception(
            "request_failed %s",
            json.dumps(
                {
                    "request_id": req_id,
                    "path": request.url.path,
                    "method": request.method,
                    "duration_ms": elapsed_ms,
                    "client": request.client.host if request.client else "unknown",
                },
                ensure_ascii=True,
            ),
        )
        raise
    response.headers["X-Request-ID"] = req_id
    elapsed_ms = round((time.perf_counter() - started) * 1000.0, 2)
    logger.info(
        "request_done %s",
        json.dumps(
            {
                "request_id": req_id,
                "path": request.url.path,
                "method": request.method,
                "status_code": response.status_code,
                "duration_ms": elapsed_ms,
                "client": request.client.host if request.client else "unknown",
            },
            ensure_ascii=True,
        ),
    )
    return response


@app.exception_handler(ExamPlatformError)
async def platform_error_handler(request: Request, exc: ExamPlatformError):
    if exc.kind == ErrorKind.INTERNAL:
        logger.error("internal error on %s: %s", request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


def _field_name(loc) -> str:
    parts = [str(p) for p in loc if p not in ("body", "query", "path")]
    return ".".join(parts) or "body"


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    """Report schema failures in the same VALIDATION shape services use."""
    errors = []
    for err in exc.errors():
        message = err.get("msg", "invalid value")
        if message.startswith("Value error, "):
            message = message[len("Value error, "):]
        errors.append({"field": _field_name(err.get("loc", ())), "message": message})
    body = ValidationError("Validation failed", errors)
    return JSONResponse(status_code=body.status_code, content=body.to_dict())


class RateLimited(Exception):
    def __init__(self, retry_after: int):
        super().__init__(retry_after)
        self.retry_after = retry_after


def _enforce_auth_rate_limit(request: Request) -> None:
    key = f"{request.client.host if request.client else 'unknown'}:{request.url.path}"
    allowed, retry_after = _auth_rate_limiter.allow(
        key, settings.AUTH_RATE_LIMIT_PER_MIN, settings.AUTH_RATE_LIMIT_WINDOW_SECONDS)
    if not allowed:
        raise RateLimited(retry_after)


@app.exception_handler(RateLimited)
async def rate_limited_handler(request: Request, exc: RateLimited):
    return JSONResponse(
        status_code=429,
        content={"error": "RATE_LIMITED", "message": f"rate limit exceeded; retry after {exc.retry_after}s"},
        headers={"Retry-After": str(exc.retry_after)},
    )


@app.post('/auth/register', status_code=201)
def register(payload: RegisterIn, request: Request, db: Session = Depends(get_session)):
    """Register a new STUDENT account and return it with an access token."""
    _enforce_auth_rate_limit(request)
    auth = services.AuthService(db)
    user = auth.register(payload.name, payload.email, payload.password)
    token = create_token(user)
    return {
        'message': 'Registration successful',
        'user': services.user_to_dict(user),
        'access_token': token,
        'redirect_url': auth.redirect_for(user.role),
    }


@app.post('/auth/login')
def login(payload: LoginIn, request: Request, db: Session = Depends(get_session)):
    """Authenticate a user and return a signed JWT token.

    The token carries `user_id`, `email`, `name` and `role`; the
    `redirect_url` points the client at the role's landing page.
    """
    _enforce_auth_rate_limit(request)
    auth = services.AuthService(db)
    user, token = auth.authenticate(payload.email, payload.password)
    return {
        'access_token': token,
        'token_type': 'bearer',
        'user': services.user_to_dict(user),
        'redirect_url': auth.redirect_for(user.role),
    }


@app.get('/users/me')
def get_profile(db: Session = Depends(get_session), ctx: SessionContext = Depends(get_current_session)):
    """Profile, statistics and result history of the authenticated user."""
    return services.UserService(db).profile(ctx)


@app.put('/users/me')
def update_profile(payload: ProfileUpdateIn, db: Session = Depends(get_session),
                   ctx: SessionContext = Depends(get_current_session)):
    return {'message': 'Profile updated', 'user': services.UserService(db).update_profile(ctx, payload)}


@app.get('/exams')
def list_exams(active: Optional[bool] = None, category: Optional[str] = None,
               db: Session = Depends(get_session), ctx: SessionContext = Depends(get_current_session)):
    """List exams; students only ever see active ones."""
    return services.ExamService(db).list_available(ctx, active=active, category=category)


@app.get('/exams/{exam_id}')
def get_exam(exam_id: int, include_answers: bool = False, db: Session = Depends(get_session),
             ctx: SessionContext = Depends(get_current_session)):
    """Fetch an exam for taking.

    Options carry no correctness flag and questions no explanation unless
    `include_answers=true` is requested by the exam's owner (or an admin).
    """
    return services.ExamService(db).get_for_taking(ctx, exam_id, include_answers=include_answers)


@app.post('/exams/{exam_id}/submit')
def submit_exam(exam_id: int, submission: SubmissionIn, db: Session = Depends(get_session),
                ctx: SessionContext = Depends(get_current_session)):
    """Grade and store a submission; timed-out exams use the same call."""
    answers = [{'question_id': a.question_id, 'selected_option': a.selected_option} for a in submission.answers]
    result = services.SubmissionService(db).submit(
        ctx, exam_id, answers, submission.time_spent, submission.submitted_at)
    return {'message': 'Exam submitted successfully', 'result': result}


@app.get('/exams/{exam_id}/review')
def review_exam(exam_id: int, db: Session = Depends(get_session),
                ctx: SessionContext = Depends(get_current_session)):
    """Reveal answers for the caller's most recent completed attempt."""
    return services.SubmissionService(db).review(ctx, exam_id)


@app.get('/dashboard')
def student_dashboard(db: Session = Depends(get_session), ctx: SessionContext = Depends(get_current_session)):
    return services.DashboardService(db).student(ctx)


@app.get('/teacher/dashboard')
def teacher_dashboard(db: Session = Depends(get_session), ctx: SessionContext = Depends(get_current_session)):
    return services.DashboardService(db).teacher(ctx)


@app.get('/admin/dashboard')
def admin_dashboard(db: Session = Depends(get_session), ctx: SessionContext = Depends(get_current_session)):
    return services.DashboardService(db).admin(ctx)


@app.get('/admin/activity')
def admin_activity(db: Session = Depends(get_session), ctx: SessionContext = Depends(get_current_session)):
    """Newest registrations, questions, exams and completed attempts in one feed."""
    return services.DashboardService(db).activity(ctx)


@app.get('/admin/users')
def admin_list_users(db: Session = Depends(get_session), ctx: SessionContext = Depends(get_current_session)):
    return services.UserService(db).list_users(ctx)


@app.patch('/admin/users/{user_id}/role')
def admin_update_role(user_id: int, payload: RoleUpdateIn, db: Session = Depends(get_session),
                      ctx: SessionContext = Depends(get_current_session)):
    return {'message': 'Role updated', 'user': services.UserService(db).update_role(ctx, user_id, payload.role)}


@app.get('/admin/questions')
def admin_list_questions(category: Optional[str] = None, db: Session = Depends(get_session),
                         ctx: SessionContext = Depends(get_current_session)):
    return services.QuestionService(db).list(ctx, category=category)


@app.post('/admin/questions', status_code=201)
def admin_create_question(payload: QuestionIn, db: Session = Depends(get_session),
                          ctx: SessionContext = Depends(get_current_session)):
    svc = services.QuestionService(db)
    question = svc.create(ctx, payload)
    return {'message': 'Question created successfully', 'question': svc.to_dict(question)}


@app.patch('/admin/questions/{question_id}')
def admin_update_question(question_id: int, payload: QuestionUpdateIn, db: Session = Depends(get_session),
                          ctx: SessionContext = Depends(get_current_session)):
    svc = services.QuestionService(db)
    question = svc.update(ctx, question_id, payload)
    return {'message': 'Question updated', 'question': svc.to_dict(question)}


@app.delete('/admin/questions/{question_id}', status_code=204)
def admin_delete_question(question_id: int, db: Session = Depends(get_session),
                          ctx: SessionContext = Depends(get_current_session)):
    services.QuestionService(db).delete(ctx, question_id)
    return Response(status_code=204)


@app.get('/admin/exams')
def admin_list_exams(db: Session = Depends(get_session), ctx: SessionContext = Depends(get_current_session)):
    """All exams for admins; teachers only see exams they created."""
    return services.ExamService(db).list_managed(ctx)


@app.post('/admin/exams', status_code=201)
def admin_create_exam(payload: ExamIn, db: Session = Depends(get_session),
                      ctx: SessionContext = Depends(get_current_session)):
    svc = services.ExamService(db)
    exam = svc.create(ctx, payload)
    return {'message': 'Exam created successfully', 'exam': svc.get_managed(ctx, exam.id)}


@app.get('/admin/exams/{exam_id}')
def admin_get_exam(exam_id: int, db: Session = Depends(get_session),
                   ctx: SessionContext = Depends(get_current_session)):
    return services.ExamService(db).get_managed(ctx, exam_id)


@app.patch('/admin/exams/{exam_id}')
def admin_update_exam(exam_id: int, payload: ExamUpdateIn, db: Session = Depends(get_session),
                      ctx: SessionContext = Depends(get_current_session)):
    svc = services.ExamService(db)
    exam = svc.update(ctx, exam_id, payload)
    return {'message': 'Exam updated', 'exam': svc.get_managed(ctx, exam.id)}


@app.delete('/admin/exams/{exam_id}', status_code=204)
def admin_delete_exam(exam_id: int, db: Session = Depends(get_session),
                      ctx: SessionContext = Depends(get_current_session)):
    services.ExamService(db).delete(ctx, exam_id)
    return Response(status_code=204)


@app.get("/health")
def health(db: Session = Depends(get_session)):
    """Health check for uptime monitoring; 503 when the database is down."""
    try:
        db.connection().exec_driver_sql("SELECT 1")
    except SQLAlchemyError:
        logger.exception("health check failed")
        return JSONResponse(status_code=503, content={"status": "unhealthy", "database": "error"})
    return {"status": "healthy", "database": "connected", "environment": settings.ENV}
