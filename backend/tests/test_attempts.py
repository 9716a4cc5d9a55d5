import pytest
from fastapi.testclient import TestClient
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session

from lingoquiz import models, services
from lingoquiz.errors import BadRequestError
from lingoquiz.database import engine
from lingoquiz.main import app

client = TestClient(app)


@pytest.fixture
def quiz_and_learner(make_user, quiz_payload):
    """A 3-question quiz worth 3+2+1 points and a learner who did not create it."""
    owner, _ = make_user('Owner')
    learner, learner_user = make_user('Learner')
    quiz = client.post('/quiz', json=quiz_payload(points=(3, 2, 1)), headers=owner).json()['data']
    return quiz, learner, learner_user


def _start(quiz, headers):
    return client.post(f"/quiz/{quiz['id']}/attempt", headers=headers)


def _answer(attempt_id, headers, question_index, selected_option):
    return client.post(
        f'/quiz/attempt/{attempt_id}/answer',
        json={'questionIndex': question_index, 'selectedOption': selected_option},
        headers=headers,
    )


def _my_attempt(attempt_id, headers):
    data = client.get('/quiz/my/attempts', headers=headers).json()['data']
    return next(a for a in data if a['id'] == attempt_id)


def test_start_twice_resumes_same_attempt(quiz_and_learner):
    quiz, learner, learner_user = quiz_and_learner
    first = _start(quiz, learner)
    assert first.status_code == 201
    assert first.json()['message'] == 'Quiz attempt started'
    attempt = first.json()['data']
    assert attempt['completed'] is False
    assert attempt['score'] == 0 and attempt['percentage'] == 0
    assert attempt['answers'] == []
    assert attempt['user'] == learner_user['id']

    _answer(attempt['id'], learner, 0, 0)
    second = _start(quiz, learner)
    assert second.status_code == 200
    assert second.json()['message'] == 'Resuming existing attempt'
    assert second.json()['data']['id'] == attempt['id']
    # resume keeps recorded answers
    assert len(second.json()['data']['answers']) == 1


def test_start_on_missing_quiz(make_user):
    headers, _ = make_user()
    r = client.post('/quiz/999999/attempt', headers=headers)
    assert r.status_code == 404
    assert r.json() == {'success': False, 'message': 'Quiz not found'}


def test_resubmitting_an_index_replaces_the_answer(quiz_and_learner):
    quiz, learner, _ = quiz_and_learner
    attempt = _start(quiz, learner).json()['data']
    r1 = _answer(attempt['id'], learner, 2, 0)
    assert r1.json()['data'] == {'isCorrect': True, 'points': 1, 'explanation': 'Because 2'}
    r2 = _answer(attempt['id'], learner, 2, 1)
    assert r2.json()['data'] == {'isCorrect': False, 'points': 0, 'explanation': 'Because 2'}

    stored = _my_attempt(attempt['id'], learner)
    for_index_2 = [a for a in stored['answers'] if a['questionIndex'] == 2]
    assert for_index_2 == [{'questionIndex': 2, 'selectedOption': 1, 'isCorrect': False, 'points': 0}]


def test_answer_order_follows_first_submission(quiz_and_learner):
    quiz, learner, _ = quiz_and_learner
    attempt = _start(quiz, learner).json()['data']
    _answer(attempt['id'], learner, 1, 0)
    _answer(attempt['id'], learner, 0, 0)
    _answer(attempt['id'], learner, 1, 2)
    stored = _my_attempt(attempt['id'], learner)
    assert [a['questionIndex'] for a in stored['answers']] == [1, 0]


def test_complete_scores_from_stored_answers(make_user, quiz_payload):
    owner, _ = make_user('Owner')
    learner, _ = make_user('Learner')
    quiz = client.post('/quiz', json=quiz_payload(points=(3, 2)), headers=owner).json()['data']
    attempt = _start(quiz, learner).json()['data']
    _answer(attempt['id'], learner, 0, 0)
    _answer(attempt['id'], learner, 1, 1)

    r = client.post(f"/quiz/attempt/{attempt['id']}/complete", json={'timeSpent': 42}, headers=learner)
    assert r.status_code == 200
    data = r.json()['data']
    assert data['score'] == 3
    assert data['totalPoints'] == 5
    assert data['percentage'] == 60
    assert data['timeSpent'] == 42
    assert len(data['answers']) == 2

    stored = _my_attempt(attempt['id'], learner)
    assert stored['completed'] is True
    assert stored['completedAt'] is not None
    assert stored['quiz']['title'] == 'Animals'


def test_complete_twice_fails_and_keeps_state(quiz_and_learner):
    quiz, learner, _ = quiz_and_learner
    attempt = _start(quiz, learner).json()['data']
    _answer(attempt['id'], learner, 0, 0)
    client.post(f"/quiz/attempt/{attempt['id']}/complete", json={'timeSpent': 10}, headers=learner)
    before = _my_attempt(attempt['id'], learner)

    r = client.post(f"/quiz/attempt/{attempt['id']}/complete", json={'timeSpent': 99}, headers=learner)
    assert r.status_code == 400
    assert r.json() == {'success': False, 'message': 'Quiz attempt already completed'}
    r2 = _answer(attempt['id'], learner, 1, 0)
    assert r2.status_code == 400
    assert _my_attempt(attempt['id'], learner) == before


def test_new_attempt_after_completion(quiz_and_learner):
    quiz, learner, _ = quiz_and_learner
    attempt = _start(quiz, learner).json()['data']
    client.post(f"/quiz/attempt/{attempt['id']}/complete", headers=learner)
    again = _start(quiz, learner)
    assert again.status_code == 201
    assert again.json()['data']['id'] != attempt['id']


@pytest.mark.parametrize('question_index,selected_option,message', [
    (3, 0, 'Invalid question index'),
    (-1, 0, 'Invalid question index'),
    (0, 3, 'Invalid option selected'),
    (0, -1, 'Invalid option selected'),
])
def test_out_of_range_answers_change_nothing(quiz_and_learner, question_index, selected_option, message):
    quiz, learner, _ = quiz_and_learner
    attempt = _start(quiz, learner).json()['data']
    r = _answer(attempt['id'], learner, question_index, selected_option)
    assert r.status_code == 400
    assert r.json()['message'] == message
    assert _my_attempt(attempt['id'], learner)['answers'] == []


def test_attempt_ownership(quiz_and_learner, make_user):
    quiz, learner, _ = quiz_and_learner
    intruder, _ = make_user('Intruder')
    attempt = _start(quiz, learner).json()['data']
    r = _answer(attempt['id'], intruder, 0, 0)
    assert r.status_code == 403
    assert r.json()['message'] == 'Not authorized to submit answer for this attempt'
    r2 = client.post(f"/quiz/attempt/{attempt['id']}/complete", headers=intruder)
    assert r2.status_code == 403
    assert _answer(999999, learner, 0, 0).status_code == 404


def test_zero_point_quiz_completes_at_zero_percent(make_user, quiz_payload):
    owner, _ = make_user('Owner')
    quiz = client.post('/quiz', json=quiz_payload(points=()), headers=owner).json()['data']
    assert quiz['totalPoints'] == 0
    attempt = _start(quiz, owner).json()['data']
    r = client.post(f"/quiz/attempt/{attempt['id']}/complete", headers=owner)
    assert r.status_code == 200
    data = r.json()['data']
    assert data['percentage'] == 0
    assert data['timeSpent'] == 0


def test_negative_time_spent_is_rejected(quiz_and_learner):
    quiz, learner, _ = quiz_and_learner
    attempt = _start(quiz, learner).json()['data']
    r = client.post(f"/quiz/attempt/{attempt['id']}/complete", json={'timeSpent': -5}, headers=learner)
    assert r.status_code == 400
    assert _my_attempt(attempt['id'], learner)['completed'] is False


def test_database_allows_one_open_attempt_per_user_and_quiz(quiz_and_learner):
    quiz, _, learner_user = quiz_and_learner
    with Session(engine) as session:
        session.add(models.QuizAttempt(quiz_id=quiz['id'], user_id=learner_user['id']))
        session.commit()
        session.add(models.QuizAttempt(quiz_id=quiz['id'], user_id=learner_user['id']))
        with pytest.raises(IntegrityError):
            session.commit()


def test_start_recovers_from_concurrent_insert(quiz_and_learner, monkeypatch):
    quiz, learner, learner_user = quiz_and_learner
    existing = _start(quiz, learner).json()['data']
    with Session(engine) as session:
        svc = services.AttemptService(session)
        real_find_open = svc.attempt_repo.find_open
        calls = []

        def racing_find_open(user_id, quiz_id):
            # first lookup misses, as if the other request had not committed yet
            calls.append(quiz_id)
            if len(calls) == 1:
                return None
            return real_find_open(user_id, quiz_id)

        monkeypatch.setattr(svc.attempt_repo, 'find_open', racing_find_open)
        attempt, created = svc.start(quiz['id'], learner_user['id'])
        assert created is False
        assert attempt.id == existing['id']


def test_oversized_time_spent_is_rejected(quiz_and_learner):
    quiz, learner, _ = quiz_and_learner
    attempt = _start(quiz, learner).json()['data']
    r = client.post(f"/quiz/attempt/{attempt['id']}/complete", json={'timeSpent': 10**20}, headers=learner)
    assert r.status_code == 400
    assert r.json()['success'] is False
    assert _my_attempt(attempt['id'], learner)['completed'] is False


def test_complete_counts_answer_stored_after_attempt_was_loaded(quiz_and_learner, monkeypatch):
    quiz, learner, learner_user = quiz_and_learner
    attempt_id = _start(quiz, learner).json()['data']['id']
    _answer(attempt_id, learner, 0, 0)
    with Session(engine) as session:
        svc = services.AttemptService(session)
        real_get_owned = svc._get_owned

        def racing_get_owned(*args):
            attempt = real_get_owned(*args)
            assert len(attempt.answers) == 1
            # another request stores a second answer once this one has read the attempt
            with Session(engine) as other:
                services.AttemptService(other).submit_answer(attempt_id, learner_user['id'], 1, 0)
            return attempt

        monkeypatch.setattr(svc, '_get_owned', racing_get_owned)
        result = svc.complete(attempt_id, learner_user['id'])
        assert result['score'] == 5

    stored = _my_attempt(attempt_id, learner)
    assert len(stored['answers']) == 2
    assert stored['score'] == sum(a['points'] for a in stored['answers']) == 5
    assert stored['percentage'] == 83


def test_answer_refused_when_attempt_completed_meanwhile(quiz_and_learner, monkeypatch):
    quiz, learner, learner_user = quiz_and_learner
    attempt_id = _start(quiz, learner).json()['data']['id']
    with Session(engine) as session:
        svc = services.AttemptService(session)
        real_claim_open = svc.attempt_repo.claim_open

        def completing_claim_open(aid):
            with Session(engine) as other:
                services.AttemptService(other).complete(aid, learner_user['id'])
            return real_claim_open(aid)

        monkeypatch.setattr(svc.attempt_repo, 'claim_open', completing_claim_open)
        with pytest.raises(BadRequestError):
            svc.submit_answer(attempt_id, learner_user['id'], 0, 0)

    stored = _my_attempt(attempt_id, learner)
    assert stored['completed'] is True
    assert stored['answers'] == []
    assert stored['score'] == 0


def test_concurrent_first_answer_is_turned_into_an_update(quiz_and_learner, monkeypatch):
    quiz, learner, learner_user = quiz_and_learner
    attempt_id = _start(quiz, learner).json()['data']['id']
    with Session(engine) as session:
        svc = services.AttemptService(session)
        real_get_owned = svc._get_owned

        def racing_get_owned(*args):
            attempt = real_get_owned(*args)
            assert attempt.answers == []
            # the other request inserts the row for index 0 first
            with Session(engine) as other:
                other.add(models.AttemptAnswer(
                    attempt_id=attempt_id, question_index=0, selected_option=1, is_correct=False, points=0))
                other.commit()
            return attempt

        monkeypatch.setattr(svc, '_get_owned', racing_get_owned)
        result = svc.submit_answer(attempt_id, learner_user['id'], 0, 0)
        assert result['is_correct'] is True
        assert result['points'] == 3

    stored = _my_attempt(attempt_id, learner)
    assert stored['answers'] == [{'questionIndex': 0, 'selectedOption': 0, 'isCorrect': True, 'points': 3}]
