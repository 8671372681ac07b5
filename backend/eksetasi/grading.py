"""Pure scoring rules.

Nothing here touches the database: the functions take questions (with
their options loaded) and a list of submitted answers and return plain
values, so the rules can be tested exhaustively without fixtures.
Percentages are rounded half-up with integer arithmetic, so 12.5 becomes
13 and 62.5 becomes 63 regardless of float representation.
"""

from dataclasses import dataclass
from typing import Iterable, List, Mapping, Optional, Sequence

GRADE_BANDS = ((90, 'A'), (80, 'B'), (70, 'C'), (60, 'D'))

PASSED_FEEDBACK = "Congratulations! You passed with {percentage}%."
FAILED_FEEDBACK = "You scored {percentage}%. Keep studying and try again!"


@dataclass(frozen=True)
class QuestionOutcome:
    question_id: int
    user_answer: Optional[str]
    correct_answer: Optional[str]
    is_correct: bool


def compute_percentage(correct: int, total: int) -> int:
    """Return `round(100 * correct / total)` rounded half-up, 0 when empty."""
    if total <= 0:
        return 0
    if correct < 0 or correct > total:
        raise ValueError("correct must be between 0 and total")
    return (200 * correct + total) // (2 * total)


def average_percentage(values: Sequence[int]) -> int:
    """Mean of integer percentages, rounded half-up; 0 for no values."""
    if not values:
        return 0
    n = len(values)
    return (2 * sum(values) + n) // (2 * n)


def grade_of(percentage: float) -> str:
    """Map a percentage to a letter grade; bands include their lower bound."""
    for threshold, letter in GRADE_BANDS:
        if percentage >= threshold:
            return letter
    return 'F'


def is_passed(percentage: float, passing_score: float) -> bool:
    return percentage >= passing_score


def feedback_for(percentage: int, passed: bool) -> str:
    template = PASSED_FEEDBACK if passed else FAILED_FEEDBACK
    return template.format(percentage=percentage)


def first_answers(answers: Iterable[Mapping]) -> dict:
    """Collapse submitted `{question_id, selected_option}` items to a map.

    The first answer given for a question wins; later duplicates are
    ignored.
    """
    selected = {}
    for a in answers:
        qid = int(a['question_id'])
        if qid not in selected:
            selected[qid] = a.get('selected_option')
    return selected


def grade_questions(questions: Sequence, selected: Mapping[int, Optional[str]]) -> List[QuestionOutcome]:
    """Grade every question of an exam against `selected` option keys.

    `questions` is the exam's own question set, so answers for other
    question ids are never looked at. A missing answer is incorrect.
    """
    outcomes = []
    for q in questions:
        correct = q.correct_option()
        correct_key = correct.key if correct else None
        user_answer = selected.get(q.id)
        outcomes.append(QuestionOutcome(
            question_id=q.id,
            user_answer=user_answer,
            correct_answer=correct_key,
            is_correct=user_answer is not None and user_answer == correct_key,
        ))
    return outcomes


def count_correct(outcomes: Iterable[QuestionOutcome]) -> int:
    return sum(1 for o in outcomes if o.is_correct)
