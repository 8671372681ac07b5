"""CLI script to seed demo users, questions and an exam into the backend DB.
Usage: python scripts/seed.py [--password-suffix SUFFIX]

Running it twice is safe: existing users are reused and the demo exam
is only created when the teacher has no exams yet.
"""
import sys
import argparse
import pathlib
# Ensure `backend/` is on sys.path so `eksetasi` package imports work when running this script directly
ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))
from sqlmodel import Session
from eksetasi.auth import SessionContext
from eksetasi.database import engine, create_db_and_tables
from eksetasi import repositories, schemas, services
from eksetasi.permissions import Role

DEMO_USERS = [
    ('Admin User', 'admin@example.com', 'admin123', Role.ADMIN),
    ('John Teacher', 'teacher@example.com', 'teacher123', Role.TEACHER),
    ('Jane Student', 'student@example.com', 'student123', Role.STUDENT),
]

DEMO_QUESTIONS = [
    {
        'text': 'What is the correct way to declare a variable in JavaScript?',
        'options': [
            {'id': 'a', 'text': 'var myVariable;', 'is_correct': True},
            {'id': 'b', 'text': 'variable myVariable;'},
            {'id': 'c', 'text': 'v myVariable;'},
            {'id': 'd', 'text': 'declare myVariable;'},
        ],
        'explanation': 'Variables are declared with var, let or const.',
        'category': 'Variables',
        'difficulty': 'EASY',
    },
    {
        'text': 'Which of the following is NOT a JavaScript data type?',
        'options': [
            {'id': 'a', 'text': 'String'},
            {'id': 'b', 'text': 'Boolean'},
            {'id': 'c', 'text': 'Float', 'is_correct': True},
            {'id': 'd', 'text': 'Number'},
        ],
        'explanation': 'JavaScript uses a single Number type for integers and floats.',
        'category': 'Data Types',
        'difficulty': 'MEDIUM',
    },
    {
        'text': 'What does `typeof null` evaluate to?',
        'options': [
            {'id': 'a', 'text': '"null"'},
            {'id': 'b', 'text': '"object"', 'is_correct': True},
            {'id': 'c', 'text': '"undefined"'},
        ],
        'explanation': 'A long-standing quirk: typeof null is "object".',
        'category': 'Data Types',
        'difficulty': 'HARD',
    },
]


def _ensure_user(session: Session, name: str, email: str, password: str, role: Role):
    existing = repositories.UserRepository(session).get_by_email(email)
    if existing:
        return existing, False
    return services.AuthService(session).register(name, email, password, role=role), True


def main(password_suffix: str = ''):
    """Create demo accounts and content, printing what was created."""
    create_db_and_tables()
    with Session(engine) as session:
        users = {}
        for name, email, password, role in DEMO_USERS:
            user, created = _ensure_user(session, name, email, password + password_suffix, role)
            users[role] = user
            print(f"{'Created' if created else 'Found'} {role.value.lower()}: {email}")
        teacher = SessionContext.from_user(users[Role.TEACHER])
        if repositories.ExamRepository(session).list(created_by_id=teacher.user_id):
            print('Teacher already has exams; skipping demo content')
            return
        q_svc = services.QuestionService(session)
        question_ids = [q_svc.create(teacher, schemas.QuestionIn(**q)).id for q in DEMO_QUESTIONS]
        exam = services.ExamService(session).create(teacher, schemas.ExamIn(
            title='JavaScript Fundamentals',
            description='Variables and data types.',
            instructions='Choose one answer per question.',
            time_limit=15,
            passing_score=60,
            max_attempts=3,
            question_ids=question_ids,
        ))
        print(f'Created {len(question_ids)} questions and exam {exam.id}: {exam.title}')


if __name__ == '__main__':
    parser = argparse.ArgumentParser()
    parser.add_argument('--password-suffix', default='', help='Append to every demo password')
    args = parser.parse_args()
    main(password_suffix=args.password_suffix)
