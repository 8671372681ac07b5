"""Run a quick smoke request against the app.

Calls `/health` and, when the demo seed data exists, logs in as the demo
student and lists available exams.
"""

import sys
import os

# Ensure backend folder is on sys.path so `eksetasi` package can be imported
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from fastapi.testclient import TestClient
from eksetasi.main import app


def main():
    client = TestClient(app)
    resp = client.get('/health')
    print('HEALTH:', resp.status_code, resp.json())
    login = client.post('/auth/login', json={'email': 'student@example.com', 'password': 'student123'})
    if login.status_code != 200:
        print('Demo student not found; run scripts/seed.py first')
        return
    headers = {'Authorization': f"Bearer {login.json()['access_token']}"}
    exams = client.get('/exams', headers=headers).json()
    for exam in exams['exams']:
        print(f"- [{exam['id']}] {exam['title']} ({exam['total_questions']} questions)")


if __name__ == '__main__':
    main()
