from pathlib import Path
import os
import tempfile
import uuid
import pytest

# Point the app at a throw-away SQLite file before `lingoquiz` is imported
_DB_DIR = Path(tempfile.mkdtemp(prefix="lingoquiz-tests-"))
os.environ["DATABASE_URL"] = f"sqlite:///{_DB_DIR / 'test.db'}"

from fastapi.testclient import TestClient  # noqa: E402
from lingoquiz.main import app  # noqa: E402

_client = TestClient(app)


@pytest.fixture
def make_user():
    """Register a fresh user and return `(auth_headers, user_json)`."""
    def _make(name: str = "Learner"):
        email = f"{name.lower()}-{uuid.uuid4().hex[:10]}@example.com"
        r = _client.post('/auth/register', json={'name': name, 'email': email, 'password': 'secret123'})
        assert r.status_code == 201, r.text
        body = r.json()
        return {'Authorization': f"Bearer {body['token']}"}, body['user']
    return _make


@pytest.fixture
def quiz_payload():
    """Return a builder for a quiz body; points default to [3, 2] (5 total)."""
    def _build(points=(3, 2), **overrides):
        questions = []
        for i, p in enumerate(points):
            questions.append({
                'question': f'Translate word {i}',
                'options': [
                    {'text': f'right {i}', 'isCorrect': True},
                    {'text': f'wrong {i}', 'isCorrect': False},
                    {'text': f'other {i}', 'isCorrect': False},
                ],
                'explanation': f'Because {i}',
                'points': p,
            })
        body = {
            'title': 'Animals',
            'description': 'Basic animal vocabulary',
            'difficulty': 'beginner',
            'category': 'vocabulary',
            'questions': questions,
            'timeLimit': 10,
        }
        body.update(overrides)
        return body
    return _build
