"""Serialisation of exams for taking, authoring and review.

`build_exam_view(exam, reveal_answers=False)` is the only shape that may
be sent to a learner before submission: options are reduced to id and
text and no `explanation` key is emitted at all. The revealed shape is
for authors and graders; the review shape is only built from a completed
attempt (see `services.SubmissionService.review`).
"""

from typing import List, Optional

from . import models
from .grading import QuestionOutcome, grade_of


def ordered_questions(exam: models.Exam) -> List[models.Question]:
    """Return the exam's questions sorted by their 1-based `order`.

    `sorted` is stable, so duplicate orders keep insertion order.
    """
    links = sorted(exam.questions, key=lambda link: link.order)
    return [link.question for link in links]


def _question_base(q: models.Question) -> dict:
    return {
        'id': q.id,
        'text': q.text,
        'category': q.category,
        'difficulty': models.Difficulty(q.difficulty).value.lower(),
    }


def build_question_view(q: models.Question, reveal_answers: bool) -> dict:
    out = _question_base(q)
    if reveal_answers:
        out['options'] = [{'id': o.key, 'text': o.text, 'is_correct': bool(o.is_correct)} for o in q.options]
        out['explanation'] = q.explanation
    else:
        out['options'] = [{'id': o.key, 'text': o.text} for o in q.options]
    return out


def _exam_header(exam: models.Exam, total_questions: int) -> dict:
    return {
        'id': exam.id,
        'title': exam.title,
        'description': exam.description,
        'instructions': exam.instructions,
        'duration': exam.time_limit,
        'passing_score': exam.passing_score,
        'max_attempts': exam.max_attempts,
        'total_questions': total_questions,
    }


def build_exam_view(exam: models.Exam, reveal_answers: bool = False) -> dict:
    """Build the exam payload, redacted unless `reveal_answers` is True."""
    questions = ordered_questions(exam)
    out = _exam_header(exam, len(questions))
    out['questions'] = [build_question_view(q, reveal_answers) for q in questions]
    return out


def build_exam_summary(exam: models.Exam, attempt_count: Optional[int] = None) -> dict:
    """Compact listing entry: counts, categories and overall difficulty."""
    questions = ordered_questions(exam)
    categories = list(dict.fromkeys(q.category for q in questions))
    difficulties = {models.Difficulty(q.difficulty) for q in questions}
    out = {
        'id': exam.id,
        'title': exam.title,
        'description': exam.description,
        'duration': exam.time_limit,
        'passing_score': exam.passing_score,
        'max_attempts': exam.max_attempts,
        'total_questions': len(questions),
        'difficulty': difficulties.pop().value.lower() if len(difficulties) == 1 else 'mixed',
        'category': ', '.join(categories),
        'is_active': exam.is_active,
        'available_from': _iso(exam.available_from),
        'available_until': _iso(exam.available_until),
        'created_by_id': exam.created_by_id,
        'created_at': _iso(exam.created_at),
    }
    if attempt_count is not None:
        out['attempt_count'] = attempt_count
    return out


def build_review_view(exam: models.Exam, attempt: models.Attempt, result: models.Result,
                      outcomes: List[QuestionOutcome]) -> dict:
    """Full reveal of a completed attempt next to the stored result.

    The aggregate score and pass flag come from `result`; only the
    per-question flags are derived from `outcomes`.
    """
    by_question = {o.question_id: o for o in outcomes}
    questions = []
    for q in ordered_questions(exam):
        outcome = by_question[q.id]
        view = build_question_view(q, reveal_answers=True)
        for option in view['options']:
            option['is_selected'] = option['id'] == outcome.user_answer
        view['user_answer'] = outcome.user_answer
        view['correct_answer'] = outcome.correct_answer
        view['is_correct'] = outcome.is_correct
        questions.append(view)
    total = len(questions)
    correct = sum(1 for q in questions if q['is_correct'])
    exam_view = _exam_header(exam, total)
    exam_view['questions'] = questions
    return {
        'exam': exam_view,
        'result': {
            'id': result.id,
            'attempt_id': attempt.id,
            'score': result.percentage,
            'grade': grade_of(result.percentage),
            'passed': result.passed,
            'feedback': result.feedback,
            'submitted_at': _iso(attempt.end_time or attempt.created_at),
            'correct_answers': correct,
            'incorrect_answers': total - correct,
            'total_questions': total,
        },
    }


def _iso(value) -> Optional[str]:
    value = models.as_utc(value)
    return value.isoformat() if value else None
