import uuid

from fastapi.testclient import TestClient
from lingoquiz.main import app

client = TestClient(app)


def _email():
    return f"auth-{uuid.uuid4().hex[:10]}@example.com"


def test_register_login_and_me():
    email = _email()
    r = client.post('/auth/register', json={'name': 'Somchai', 'email': email, 'password': 'pass1234', 'university': 'KU'})
    assert r.status_code == 201
    body = r.json()
    assert body['success'] is True
    assert body['token']
    assert body['user']['email'] == email
    assert 'password' not in body['user'] and 'passwordHash' not in body['user']

    r2 = client.post('/auth/login', json={'email': email, 'password': 'pass1234'})
    assert r2.status_code == 200
    token = r2.json()['token']
    me = client.get('/auth/me', headers={'Authorization': f'Bearer {token}'})
    assert me.status_code == 200
    assert me.json()['data']['university'] == 'KU'


def test_duplicate_email_rejected():
    email = _email()
    client.post('/auth/register', json={'name': 'A', 'email': email, 'password': 'pass1234'})
    r = client.post('/auth/register', json={'name': 'B', 'email': email.upper(), 'password': 'pass1234'})
    assert r.status_code == 400
    assert r.json() == {'success': False, 'message': 'User already exists'}


def test_login_with_wrong_password():
    email = _email()
    client.post('/auth/register', json={'name': 'A', 'email': email, 'password': 'pass1234'})
    r = client.post('/auth/login', json={'email': email, 'password': 'nope'})
    assert r.status_code == 401
    assert r.json()['success'] is False
    assert r.json()['message'] == 'Invalid email or password'


def test_validation_errors_are_listed_together():
    r = client.post('/auth/register', json={'email': 'not-an-email', 'password': '123'})
    assert r.status_code == 400
    body = r.json()
    assert body['success'] is False
    assert body['message'] == 'Validation error'
    assert len(body['errors']) == 3
    assert any(e.startswith('name') for e in body['errors'])


def test_protected_routes_require_token():
    r = client.get('/auth/me')
    assert r.status_code in (401, 403)
    assert r.json()['success'] is False
    r2 = client.get('/quiz/my/attempts', headers={'Authorization': 'Bearer invalid.token.here'})
    assert r2.status_code == 401


def test_request_id_header_exists():
    r = client.get('/health', headers={'X-Request-ID': 'abc123'})
    assert r.status_code == 200
    assert r.headers['X-Request-ID'] == 'abc123'
