from datetime import datetime, timedelta, timezone

from eksetasi.config import settings
from eksetasi.permissions import Role

from conftest import PASSWORD


def _question_payload(**overrides):
    payload = {
        'text': 'What is 2 + 2?',
        'options': [
            {'id': 'a', 'text': '3'},
            {'id': 'b', 'text': '4', 'is_correct': True},
            {'id': 'c', 'text': '5'},
        ],
        'explanation': 'Basic arithmetic.',
        'category': 'Maths',
        'difficulty': 'EASY',
    }
    payload.update(overrides)
    return payload


def _exam_payload(question_ids, **overrides):
    payload = {
        'title': 'Arithmetic',
        'description': 'Warm-up questions',
        'time_limit': 10,
        'passing_score': 50,
        'question_ids': question_ids,
    }
    payload.update(overrides)
    return payload


def test_register_then_login(client):
    resp = client.post('/auth/register', json={
        'name': 'Ada Student', 'email': 'Ada@Example.com', 'password': 'secret1'})
    assert resp.status_code == 201
    body = resp.json()
    assert body['user']['role'] == 'STUDENT'
    assert body['user']['email'] == 'ada@example.com'
    assert body['access_token']

    resp = client.post('/auth/login', json={'email': 'ada@example.com', 'password': 'secret1'})
    assert resp.status_code == 200
    body = resp.json()
    assert body['token_type'] == 'bearer'
    assert body['redirect_url'] == '/dashboard'
    me = client.get('/users/me', headers={'Authorization': f"Bearer {body['access_token']}"})
    assert me.status_code == 200
    assert me.json()['user']['name'] == 'Ada Student'


def test_register_duplicate_email_conflicts(client, factory):
    factory.user(email='taken@example.com')
    resp = client.post('/auth/register', json={
        'name': 'Someone', 'email': 'taken@example.com', 'password': 'secret1'})
    assert resp.status_code == 409
    assert resp.json()['error'] == 'CONFLICT'


def test_register_invalid_payload_reports_fields(client):
    resp = client.post('/auth/register', json={'name': 'X', 'email': 'nope', 'password': '1'})
    assert resp.status_code == 400
    body = resp.json()
    assert body['error'] == 'VALIDATION'
    assert {'name', 'email', 'password'} <= {e['field'] for e in body['errors']}


def test_login_wrong_password(client, factory):
    user = factory.user(Role.TEACHER)
    resp = client.post('/auth/login', json={'email': user.email, 'password': 'wrong-one'})
    assert resp.status_code == 401
    assert resp.json()['error'] == 'AUTHENTICATION'
    resp = client.post('/auth/login', json={'email': user.email, 'password': PASSWORD})
    assert resp.json()['redirect_url'] == '/teacher/dashboard'


def test_invalid_token_rejected(client):
    resp = client.get('/exams', headers={'Authorization': 'Bearer not-a-token'})
    assert resp.status_code == 401
    assert resp.json()['error'] == 'AUTHENTICATION'


def test_teacher_builds_question_and_exam(client, factory):
    teacher = factory.user(Role.TEACHER)
    headers = factory.headers(teacher)
    resp = client.post('/admin/questions', json=_question_payload(), headers=headers)
    assert resp.status_code == 201
    question = resp.json()['question']
    assert [o['is_correct'] for o in question['options']] == [False, True, False]

    resp = client.post('/admin/exams', json=_exam_payload([question['id']]), headers=headers)
    assert resp.status_code == 201
    exam = resp.json()['exam']
    assert exam['total_questions'] == 1
    assert exam['attempt_count'] == 0

    listed = client.get('/admin/exams', headers=headers).json()
    assert [e['id'] for e in listed['exams']] == [exam['id']]


def test_question_needs_exactly_one_correct_option(client, factory):
    headers = factory.headers(factory.user(Role.TEACHER))
    options = [{'id': 'a', 'text': 'x', 'is_correct': True}, {'id': 'b', 'text': 'y', 'is_correct': True}]
    resp = client.post('/admin/questions', json=_question_payload(options=options), headers=headers)
    assert resp.status_code == 400
    errors = resp.json()['errors']
    assert errors[0]['field'] == 'options'
    assert errors[0]['message'] == 'Exactly one option must be marked as correct'


def test_exam_requires_known_questions(client, factory):
    headers = factory.headers(factory.user(Role.TEACHER))
    resp = client.post('/admin/exams', json=_exam_payload([]), headers=headers)
    assert resp.status_code == 400
    assert resp.json()['errors'][0]['field'] == 'question_ids'

    resp = client.post('/admin/exams', json=_exam_payload([4242]), headers=headers)
    assert resp.status_code == 400
    assert resp.json()['errors'] == [
        {'field': 'question_ids', 'message': 'One or more question IDs are invalid: 4242'}]


def test_student_cannot_create_content(client, factory):
    headers = factory.headers(factory.user())
    resp = client.post('/admin/questions', json=_question_payload(), headers=headers)
    assert resp.status_code == 403
    assert resp.json()['error'] == 'AUTHORIZATION'


def test_exam_fetch_redacts_answers_for_students(client, factory):
    teacher = factory.user(Role.TEACHER)
    exam_id = factory.exam(teacher, [factory.question(teacher, correct='b')])
    student = factory.headers(factory.user())

    resp = client.get(f'/exams/{exam_id}', headers=student)
    assert resp.status_code == 200
    question = resp.json()['questions'][0]
    assert 'explanation' not in question
    assert all(set(o) == {'id', 'text'} for o in question['options'])

    resp = client.get(f'/exams/{exam_id}', params={'include_answers': True}, headers=student)
    assert resp.status_code == 403

    resp = client.get(f'/exams/{exam_id}', params={'include_answers': True},
                      headers=factory.headers(teacher))
    assert resp.status_code == 200
    options = resp.json()['questions'][0]['options']
    assert [o['id'] for o in options if o['is_correct']] == ['b']


def test_inactive_exam_hidden_from_students(client, factory):
    teacher = factory.user(Role.TEACHER)
    exam_id = factory.exam(teacher, [factory.question(teacher)], is_active=False)
    student = factory.headers(factory.user())
    assert client.get('/exams', headers=student).json()['exams'] == []
    assert client.get(f'/exams/{exam_id}', headers=student).status_code == 404
    listed = client.get('/exams', headers=factory.headers(teacher)).json()
    assert [e['id'] for e in listed['exams']] == [exam_id]


def test_submit_and_review(client, factory):
    teacher = factory.user(Role.TEACHER)
    q1 = factory.question(teacher, correct='a')
    q2 = factory.question(teacher, correct='c')
    exam_id = factory.exam(teacher, [q1, q2], passing_score=50)
    headers = factory.headers(factory.user())

    resp = client.get(f'/exams/{exam_id}/review', headers=headers)
    assert resp.status_code == 404

    resp = client.post(f'/exams/{exam_id}/submit', headers=headers, json={
        'answers': [{'question_id': q1, 'selected_option': 'a'}, {'question_id': q2, 'selected_option': 'b'}],
        'time_spent': 4.5,
    })
    assert resp.status_code == 200
    result = resp.json()['result']
    assert result['score'] == 50
    assert result['passed'] is True
    assert result['correct_answers'] == 1

    review = client.get(f'/exams/{exam_id}/review', headers=headers).json()
    assert review['result']['id'] == result['result_id']
    assert [q['is_correct'] for q in review['exam']['questions']] == [True, False]
    assert review['exam']['questions'][1]['correct_answer'] == 'c'

    profile = client.get('/users/me', headers=headers).json()
    assert profile['statistics']['total_exams_taken'] == 1
    assert profile['statistics']['total_exams_passed'] == 1
    assert profile['all_results'][0]['grade'] == 'F'


def test_submit_unknown_exam(client, factory):
    headers = factory.headers(factory.user())
    resp = client.post('/exams/999/submit', headers=headers, json={'answers': [], 'time_spent': 1})
    assert resp.status_code == 404
    assert resp.json()['error'] == 'NOT_FOUND'


def test_submit_beyond_max_attempts(client, factory):
    teacher = factory.user(Role.TEACHER)
    exam_id = factory.exam(teacher, [factory.question(teacher)], max_attempts=1)
    headers = factory.headers(factory.user())
    body = {'answers': [], 'time_spent': 1}
    assert client.post(f'/exams/{exam_id}/submit', headers=headers, json=body).status_code == 200
    resp = client.post(f'/exams/{exam_id}/submit', headers=headers, json=body)
    assert resp.status_code == 409
    assert resp.json()['error'] == 'MAX_ATTEMPTS_EXCEEDED'


def test_dashboards_per_role(client, factory):
    admin, teacher, student = factory.user(Role.ADMIN), factory.user(Role.TEACHER), factory.user()
    exam_id = factory.exam(teacher, [factory.question(teacher)])
    client.post(f'/exams/{exam_id}/submit', headers=factory.headers(student),
                json={'answers': [], 'time_spent': 1})

    body = client.get('/dashboard', headers=factory.headers(student)).json()
    assert body['statistics']['completed_exams'] == 1
    assert body['statistics']['available_exams'] == 1

    body = client.get('/teacher/dashboard', headers=factory.headers(teacher)).json()
    assert body['statistics']['total_attempts'] == 1
    assert body['recent_attempts'][0]['student_name'] == student.name
    assert client.get('/teacher/dashboard', headers=factory.headers(student)).status_code == 403

    body = client.get('/admin/dashboard', headers=factory.headers(admin)).json()
    assert body['stats']['total_users'] == 3
    assert body['stats']['total_attempts'] == 1
    assert client.get('/admin/dashboard', headers=factory.headers(teacher)).status_code == 200
    assert client.get('/admin/dashboard', headers=factory.headers(student)).status_code == 403


def test_role_change_applies_to_existing_tokens(client, factory):
    admin, student = factory.user(Role.ADMIN), factory.user()
    student_headers = factory.headers(student)
    assert client.post('/admin/questions', json=_question_payload(), headers=student_headers).status_code == 403

    resp = client.patch(f'/admin/users/{student.user_id}/role', json={'role': 'TEACHER'},
                        headers=factory.headers(admin))
    assert resp.status_code == 200
    assert resp.json()['user']['role_display'] == 'Teacher'
    assert client.post('/admin/questions', json=_question_payload(), headers=student_headers).status_code == 201


def test_admin_cannot_change_own_role(client, factory):
    admin = factory.user(Role.ADMIN)
    resp = client.patch(f'/admin/users/{admin.user_id}/role', json={'role': 'STUDENT'},
                        headers=factory.headers(admin))
    assert resp.status_code == 400
    assert resp.json()['errors'][0]['field'] == 'role'


def test_teacher_cannot_edit_others_question(client, factory):
    owner, other = factory.user(Role.TEACHER), factory.user(Role.TEACHER)
    qid = factory.question(owner)
    resp = client.patch(f'/admin/questions/{qid}', json={'text': 'Changed?'}, headers=factory.headers(other))
    assert resp.status_code == 403
    resp = client.patch(f'/admin/questions/{qid}', json={'text': 'Changed?'}, headers=factory.headers(owner))
    assert resp.status_code == 200
    assert resp.json()['question']['text'] == 'Changed?'


def test_question_locked_after_attempts(client, factory):
    teacher = factory.user(Role.TEACHER)
    qid = factory.question(teacher)
    exam_id = factory.exam(teacher, [qid])
    client.post(f'/exams/{exam_id}/submit', headers=factory.headers(factory.user()),
                json={'answers': [{'question_id': qid, 'selected_option': 'a'}], 'time_spent': 1})
    headers = factory.headers(teacher)
    resp = client.patch(f'/admin/questions/{qid}', json={'text': 'Changed?'}, headers=headers)
    assert resp.status_code == 400
    assert client.delete(f'/admin/questions/{qid}', headers=headers).status_code == 400
    assert client.delete(f'/admin/exams/{exam_id}', headers=headers).status_code == 400


def test_delete_unused_question(client, factory):
    teacher = factory.user(Role.TEACHER)
    qid = factory.question(teacher)
    headers = factory.headers(teacher)
    assert client.delete(f'/admin/questions/{qid}', headers=headers).status_code == 204
    assert client.get('/admin/questions', headers=headers).json()['total'] == 0


def test_health(client):
    resp = client.get('/health')
    assert resp.status_code == 200
    assert resp.json()['database'] == 'connected'
    assert resp.headers['X-Request-ID']


def test_login_rate_limited(client, factory, monkeypatch):
    monkeypatch.setattr(settings, 'AUTH_RATE_LIMIT_PER_MIN', 2)
    user = factory.user()
    body = {'email': user.email, 'password': PASSWORD}
    assert client.post('/auth/login', json=body).status_code == 200
    assert client.post('/auth/login', json=body).status_code == 200
    resp = client.post('/auth/login', json=body)
    assert resp.status_code == 429
    assert int(resp.headers['Retry-After']) >= 1


def _now():
    return datetime.now(timezone.utc)


def _submit(client, exam_id, headers, answers=()):
    return client.post(f'/exams/{exam_id}/submit', headers=headers,
                       json={'answers': list(answers), 'time_spent': 1})


def test_submit_refused_before_exam_opens(client, factory):
    teacher = factory.user(Role.TEACHER)
    qid = factory.question(teacher, correct='b')
    exam_id = factory.exam(teacher, [qid], available_from=_now() + timedelta(days=1))
    headers = factory.headers(factory.user())

    resp = _submit(client, exam_id, headers, [{'question_id': qid, 'selected_option': 'a'}])
    assert resp.status_code == 400
    assert resp.json()['errors'] == [{'field': 'exam', 'message': 'Exam is not open yet'}]
    assert client.get(f'/exams/{exam_id}/review', headers=headers).status_code == 404


def test_submit_refused_for_inactive_exam(client, factory):
    teacher = factory.user(Role.TEACHER)
    exam_id = factory.exam(teacher, [factory.question(teacher)], is_active=False)
    headers = factory.headers(factory.user())
    resp = _submit(client, exam_id, headers)
    assert resp.status_code == 404
    assert resp.json()['error'] == 'NOT_FOUND'
    assert client.get(f'/exams/{exam_id}/review', headers=headers).status_code == 404


def test_submit_lands_within_grace_after_close(client, factory):
    teacher = factory.user(Role.TEACHER)
    exam_id = factory.exam(teacher, [factory.question(teacher)],
                           available_from=_now() - timedelta(days=1),
                           available_until=_now() - timedelta(seconds=30))
    headers = factory.headers(factory.user())
    assert client.get(f'/exams/{exam_id}', headers=headers).status_code == 400
    assert _submit(client, exam_id, headers).status_code == 200


def test_submit_refused_after_grace(client, factory):
    teacher = factory.user(Role.TEACHER)
    exam_id = factory.exam(teacher, [factory.question(teacher)],
                           available_from=_now() - timedelta(days=1),
                           available_until=_now() - timedelta(minutes=10))
    resp = _submit(client, exam_id, factory.headers(factory.user()))
    assert resp.status_code == 400
    assert resp.json()['errors'][0]['message'] == 'Exam is closed'


def test_fetch_outside_window(client, factory):
    teacher = factory.user(Role.TEACHER)
    qid = factory.question(teacher)
    upcoming = factory.exam(teacher, [qid], available_from=_now() + timedelta(hours=1))
    closed = factory.exam(teacher, [qid], available_until=_now() - timedelta(hours=1))
    headers = factory.headers(factory.user())

    resp = client.get(f'/exams/{upcoming}', headers=headers)
    assert resp.status_code == 400
    assert resp.json()['errors'][0]['message'] == 'Exam is not open yet'
    resp = client.get(f'/exams/{closed}', headers=headers)
    assert resp.status_code == 400
    assert resp.json()['errors'][0]['message'] == 'Exam is closed'
    # the owner can still inspect it
    assert client.get(f'/exams/{closed}', headers=factory.headers(teacher)).status_code == 200


def test_exam_window_must_be_ordered(client, factory):
    teacher = factory.user(Role.TEACHER)
    qid = factory.question(teacher)
    headers = factory.headers(teacher)

    resp = client.post('/admin/exams', headers=headers, json=_exam_payload(
        [qid], available_from='2030-02-01T00:00:00Z', available_until='2030-01-01T00:00:00Z'))
    assert resp.status_code == 400
    assert resp.json()['errors'][0]['message'] == 'available_from must be before available_until'

    exam_id = factory.exam(teacher, [qid])
    resp = client.patch(f'/admin/exams/{exam_id}', headers=headers, json={
        'available_from': '2030-02-01T00:00:00Z', 'available_until': '2030-01-01T00:00:00Z'})
    assert resp.status_code == 400


def test_exam_window_mixing_naive_and_aware_times(client, factory):
    teacher = factory.user(Role.TEACHER)
    qid = factory.question(teacher)
    headers = factory.headers(teacher)

    resp = client.post('/admin/exams', headers=headers, json=_exam_payload(
        [qid], available_from='2030-02-01T00:00:00Z', available_until='2030-01-01T00:00:00'))
    assert resp.status_code == 400
    assert resp.json()['error'] == 'VALIDATION'

    resp = client.post('/admin/exams', headers=headers, json=_exam_payload(
        [qid], available_from='2030-01-01T00:00:00Z', available_until='2030-02-01T00:00:00'))
    assert resp.status_code == 201
    exam = resp.json()['exam']
    assert exam['available_from'] == '2030-01-01T00:00:00+00:00'
    assert exam['available_until'] == '2030-02-01T00:00:00+00:00'


def test_patch_null_clears_only_optional_settings(client, factory):
    teacher = factory.user(Role.TEACHER)
    exam_id = factory.exam(teacher, [factory.question(teacher)], max_attempts=3,
                           instructions='No calculators.')
    headers = factory.headers(teacher)

    resp = client.patch(f'/admin/exams/{exam_id}', headers=headers, json={
        'max_attempts': None, 'instructions': None, 'title': None, 'passing_score': None})
    assert resp.status_code == 200
    exam = resp.json()['exam']
    assert exam['max_attempts'] is None
    assert exam['instructions'] is None
    assert exam['title'].startswith('Exam ')
    assert exam['passing_score'] == 60


def test_students_only_list_open_exams(client, factory):
    teacher = factory.user(Role.TEACHER)
    qid = factory.question(teacher)
    open_id = factory.exam(teacher, [qid], available_until=_now() + timedelta(days=1))
    factory.exam(teacher, [qid], available_from=_now() + timedelta(days=1))
    factory.exam(teacher, [qid], available_until=_now() - timedelta(days=1))
    student = factory.headers(factory.user())

    listed = client.get('/exams', headers=student).json()
    assert [e['id'] for e in listed['exams']] == [open_id]
    dashboard = client.get('/dashboard', headers=student).json()
    assert dashboard['statistics']['available_exams'] == 1
    assert client.get('/exams', headers=factory.headers(teacher)).json()['total'] == 3


def test_admin_activity_feed(client, factory):
    admin, teacher, student = factory.user(Role.ADMIN), factory.user(Role.TEACHER), factory.user()
    qid = factory.question(teacher)
    exam_id = factory.exam(teacher, [qid])
    _submit(client, exam_id, factory.headers(student), [{'question_id': qid, 'selected_option': 'a'}])

    body = client.get('/admin/activity', headers=factory.headers(admin)).json()
    activities = body['activities']
    assert body['total'] == len(activities) == 6
    assert {a['type'] for a in activities} == {
        'user_registered', 'question_created', 'exam_created', 'exam_taken'}
    stamps = [a['timestamp'] for a in activities]
    assert stamps == sorted(stamps, reverse=True)
    taken = activities[0]
    assert taken['id'].startswith('attempt_')
    assert taken['user']['name'] == student.name
    assert taken['metadata']['score'] == 100
    created = next(a for a in activities if a['type'] == 'exam_created')
    assert created['user']['email'] == teacher.email

    assert client.get('/admin/activity', headers=factory.headers(teacher)).status_code == 200
    resp = client.get('/admin/activity', headers=factory.headers(student))
    assert resp.status_code == 403
    assert resp.json()['error'] == 'AUTHORIZATION'
