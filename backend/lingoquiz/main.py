"""FastAPI application entrypoint and HTTP controllers.

This module defines the HTTP endpoints of the language-learning quiz
backend. Controllers are intentionally thin: they accept requests,
delegate to services, and render JSON envelopes of the form
`{"success": ..., "message": ..., "data": ...}`.

Endpoints implemented:
- POST /auth/register, POST /auth/login, GET /auth/me
- GET/POST /quiz, GET/PUT/DELETE /quiz/{id}, GET /quiz/my/quizzes
- POST /quiz/{id}/attempt
- POST /quiz/attempt/{attempt_id}/answer
- POST /quiz/attempt/{attempt_id}/complete
- GET /quiz/{id}/stats, GET /quiz/my/attempts
- GET/POST /flashcards, GET/PUT/DELETE /flashcards/{id}
- GET /flashcards/difficulty/{difficulty}, /flashcards/category/{category},
  /flashcards/my/cards, /flashcards/study/random
- GET /health
"""

from fastapi import FastAPI, Depends, HTTPException, Query, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session
from starlette.exceptions import HTTPException as StarletteHTTPException
from typing import Optional
import json
import logging
import time
import uuid
from .database import create_db_and_tables, get_session
from . import services, models
from .auth import get_current_user, get_optional_user
from .config import settings
from .errors import ServiceError
from .schemas import (
    AnswerSubmission,
    AttemptCompletion,
    FlashcardIn,
    FlashcardUpdate,
    LoginIn,
    QuizIn,
    QuizUpdate,
    RegisterIn,
)

app = FastAPI(title="Language Learning Quiz API")
logger = logging.getLogger("lingoquiz.api")
if not logger.handlers:
    logging.basicConfig(level=settings.LOG_LEVEL)

# Wide-open CORS keeps a local SPA dev server working without extra config in dev.
if settings.ALLOW_DEV_CORS:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

create_db_and_tables()


# One JSON log line per request, tagged with the caller's X-Request-ID or a fresh one.
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


@app.exception_handler(ServiceError)
async def service_error_handler(request: Request, exc: ServiceError):
    return JSONResponse(status_code=exc.status_code, content={'success': False, 'message': exc.message})


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={'success': False, 'message': str(exc.detail)},
        headers=getattr(exc, 'headers', None),
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    """Report every violated field constraint at once."""
    errors = []
    for err in exc.errors():
        loc = '.'.join(str(p) for p in err.get('loc', ()) if p != 'body')
        errors.append(f"{loc}: {err.get('msg')}" if loc else err.get('msg'))
    return JSONResponse(status_code=400, content={'success': False, 'message': 'Validation error', 'errors': errors})


@app.exception_handler(SQLAlchemyError)
async def database_error_handler(request: Request, exc: SQLAlchemyError):
    logger.exception("database error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={'success': False, 'message': 'Server error'})


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("unhandled error on %s %s", request.method, request.url.path, exc_info=exc)
    return JSONResponse(status_code=500, content={'success': False, 'message': 'Server error'})


def _iso(value):
    return value.isoformat() if value else None


def _user_out(user: models.User) -> dict:
    return {
        'id': user.id,
        'name': user.name,
        'email': user.email,
        'university': user.university,
        'address': user.address,
    }


def _owner_out(user: Optional[models.User]) -> Optional[dict]:
    return {'id': user.id, 'name': user.name} if user else None


def _quiz_summary(quiz: Optional[models.Quiz]) -> Optional[dict]:
    if quiz is None:
        return None
    return {
        'id': quiz.id,
        'title': quiz.title,
        'difficulty': quiz.difficulty,
        'category': quiz.category,
        'totalPoints': quiz.total_points,
    }


def _quiz_out(quiz: models.Quiz, reveal_answers: bool = False) -> dict:
    """Serialize a quiz; correct flags and explanations only for the owner."""
    questions = []
    for q in quiz.questions:
        options = []
        for o in q.options:
            opt = {'text': o.text}
            if reveal_answers:
                opt['isCorrect'] = o.is_correct
            options.append(opt)
        item = {'question': q.question, 'options': options, 'points': q.points}
        if reveal_answers:
            item['explanation'] = q.explanation
        questions.append(item)
    return {
        'id': quiz.id,
        'title': quiz.title,
        'description': quiz.description,
        'difficulty': quiz.difficulty,
        'category': quiz.category,
        'timeLimit': quiz.time_limit,
        'totalPoints': quiz.total_points,
        'isPublic': quiz.is_public,
        'createdBy': _owner_out(quiz.owner),
        'questions': questions,
        'createdAt': _iso(quiz.created_at),
        'updatedAt': _iso(quiz.updated_at),
    }


def _answer_out(answer: models.AttemptAnswer) -> dict:
    return {
        'questionIndex': answer.question_index,
        'selectedOption': answer.selected_option,
        'isCorrect': answer.is_correct,
        'points': answer.points,
    }


def _attempt_out(attempt: models.QuizAttempt, include_user: bool = False) -> dict:
    out = {
        'id': attempt.id,
        'quiz': _quiz_summary(attempt.quiz),
        'user': attempt.user_id,
        'answers': [_answer_out(a) for a in attempt.answers],
        'score': attempt.score,
        'percentage': attempt.percentage,
        'timeSpent': attempt.time_spent,
        'completed': attempt.completed,
        'completedAt': _iso(attempt.completed_at),
        'createdAt': _iso(attempt.created_at),
        'updatedAt': _iso(attempt.updated_at),
    }
    if include_user:
        out['user'] = _owner_out(attempt.user)
    return out


def _flashcard_out(card: models.Flashcard) -> dict:
    return {
        'id': card.id,
        'englishWord': card.english_word,
        'thaiMeaning': card.thai_meaning,
        'pronunciation': card.pronunciation,
        'partOfSpeech': card.part_of_speech,
        'difficulty': card.difficulty,
        'category': card.category,
        'exampleSentence': card.example_sentence,
        'tags': list(card.tags or []),
        'isPublic': card.is_public,
        'createdBy': _owner_out(card.owner),
        'createdAt': _iso(card.created_at),
        'updatedAt': _iso(card.updated_at),
    }


def _page_out(page: dict, render) -> dict:
    return {
        'success': True,
        'count': len(page['items']),
        'total': page['total'],
        'pagination': {'page': page['page'], 'limit': page['limit'], 'pages': page['pages']},
        'data': [render(item) for item in page['items']],
    }


@app.get("/health")
def health():
    return {'status': 'ok'}


@app.post('/auth/register', status_code=201)
def register(payload: RegisterIn, db: Session = Depends(get_session)):
    """Register a new user and return a token for immediate use.

    Duplicate emails are rejected with 400.
    """
    auth = services.AuthService(db)
    user = auth.register(payload.name, payload.email, payload.password, payload.university, payload.address)
    return {'success': True, 'token': auth.issue_token(user), 'user': _user_out(user)}


@app.post('/auth/login')
def login(payload: LoginIn, db: Session = Depends(get_session)):
    """Authenticate a user and return a signed JWT token.

    The token carries `user_id` and expires after `JWT_EXPIRE_HOURS`.
    """
    auth = services.AuthService(db)
    user = auth.authenticate(payload.email, payload.password)
    if not user:
        raise HTTPException(status_code=401, detail='Invalid email or password')
    return {'success': True, 'token': auth.issue_token(user), 'user': _user_out(user)}


@app.get('/auth/me')
def me(user: models.User = Depends(get_current_user)):
    return {'success': True, 'data': _user_out(user)}


@app.get('/quiz')
def list_quizzes(
    difficulty: Optional[str] = None,
    category: Optional[str] = None,
    search: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(settings.DEFAULT_PAGE_SIZE, ge=1, le=settings.MAX_PAGE_SIZE),
    db: Session = Depends(get_session),
):
    """List public quizzes with optional filters; answers are never revealed."""
    result = services.QuizService(db).list_public(difficulty, category, search, page, limit)
    return _page_out(result, _quiz_out)


@app.post('/quiz', status_code=201)
def create_quiz(payload: QuizIn, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    quiz = services.QuizService(db).create(user.id, payload)
    return {'success': True, 'message': 'Quiz created successfully', 'data': _quiz_out(quiz, reveal_answers=True)}


@app.get('/quiz/my/quizzes')
def my_quizzes(db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    quizzes = services.QuizService(db).list_mine(user.id)
    return {'success': True, 'count': len(quizzes), 'data': [_quiz_out(q, reveal_answers=True) for q in quizzes]}


@app.get('/quiz/my/attempts')
def my_attempts(db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    """List the caller's attempts, newest first, with a quiz summary each."""
    attempts = services.AttemptService(db).list_mine(user.id)
    return {'success': True, 'count': len(attempts), 'data': [_attempt_out(a) for a in attempts]}


@app.get('/quiz/{quiz_id}')
def get_quiz(quiz_id: int, db: Session = Depends(get_session), user: Optional[models.User] = Depends(get_optional_user)):
    """Return one quiz; the owner also sees correct flags and explanations."""
    viewer_id = user.id if user else None
    quiz = services.QuizService(db).get_visible(quiz_id, viewer_id)
    return {'success': True, 'data': _quiz_out(quiz, reveal_answers=quiz.created_by == viewer_id)}


@app.put('/quiz/{quiz_id}')
def update_quiz(quiz_id: int, payload: QuizUpdate, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    quiz = services.QuizService(db).update(quiz_id, user.id, payload)
    return {'success': True, 'message': 'Quiz updated successfully', 'data': _quiz_out(quiz, reveal_answers=True)}


@app.delete('/quiz/{quiz_id}')
def delete_quiz(quiz_id: int, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    """Delete a quiz together with every attempt made against it."""
    services.QuizService(db).delete(quiz_id, user.id)
    return {'success': True, 'message': 'Quiz deleted successfully'}


@app.post('/quiz/{quiz_id}/attempt')
def start_attempt(quiz_id: int, response: Response, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    """Start a new attempt, or resume the caller's incomplete one.

    Responds 201 when a new attempt was created and 200 on resume.
    """
    attempt, created = services.AttemptService(db).start(quiz_id, user.id)
    if created:
        response.status_code = 201
    message = 'Quiz attempt started' if created else 'Resuming existing attempt'
    return {'success': True, 'message': message, 'data': _attempt_out(attempt)}


@app.post('/quiz/attempt/{attempt_id}/answer')
def submit_answer(attempt_id: int, payload: AnswerSubmission, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    result = services.AttemptService(db).submit_answer(attempt_id, user.id, payload.question_index, payload.selected_option)
    return {
        'success': True,
        'message': 'Answer submitted successfully',
        'data': {'isCorrect': result['is_correct'], 'points': result['points'], 'explanation': result['explanation']},
    }


@app.post('/quiz/attempt/{attempt_id}/complete')
def complete_attempt(
    attempt_id: int,
    payload: Optional[AttemptCompletion] = None,
    db: Session = Depends(get_session),
    user: models.User = Depends(get_current_user),
):
    """Finalize an attempt; the score is recomputed from stored answers."""
    time_spent = payload.time_spent if payload else None
    result = services.AttemptService(db).complete(attempt_id, user.id, time_spent)
    return {
        'success': True,
        'message': 'Quiz completed successfully',
        'data': {
            'score': result['score'],
            'totalPoints': result['total_points'],
            'percentage': result['percentage'],
            'timeSpent': result['time_spent'],
            'answers': [_answer_out(a) for a in result['answers']],
        },
    }


@app.get('/quiz/{quiz_id}/stats')
def quiz_stats(quiz_id: int, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    """Score distribution over completed attempts; quiz owner only."""
    stats = services.StatisticsService(db).quiz_statistics(quiz_id, user.id)
    return {
        'success': True,
        'data': {
            'totalAttempts': stats['total_attempts'],
            'averageScore': stats['average_score'],
            'scoreDistribution': stats['score_distribution'],
            'recentAttempts': [_attempt_out(a, include_user=True) for a in stats['recent_attempts']],
        },
    }


@app.get('/flashcards')
def list_flashcards(
    difficulty: Optional[str] = None,
    category: Optional[str] = None,
    search: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(settings.DEFAULT_PAGE_SIZE, ge=1, le=settings.MAX_PAGE_SIZE),
    db: Session = Depends(get_session),
):
    result = services.FlashcardService(db).list_public(difficulty, category, search, page, limit)
    return _page_out(result, _flashcard_out)


@app.post('/flashcards', status_code=201)
def create_flashcard(payload: FlashcardIn, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    card = services.FlashcardService(db).create(user.id, payload)
    return {'success': True, 'message': 'Flashcard created successfully', 'data': _flashcard_out(card)}


@app.get('/flashcards/my/cards')
def my_flashcards(db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    cards = services.FlashcardService(db).list_mine(user.id)
    return {'success': True, 'count': len(cards), 'data': [_flashcard_out(c) for c in cards]}


@app.get('/flashcards/study/random')
def random_flashcards(
    limit: int = Query(10, ge=1, le=settings.MAX_PAGE_SIZE),
    difficulty: Optional[str] = None,
    category: Optional[str] = None,
    db: Session = Depends(get_session),
):
    """Return a random sample of public flashcards for a study session."""
    cards = services.FlashcardService(db).random(limit, difficulty, category)
    return {'success': True, 'count': len(cards), 'data': [_flashcard_out(c) for c in cards]}


@app.get('/flashcards/difficulty/{difficulty}')
def flashcards_by_difficulty(difficulty: str, db: Session = Depends(get_session)):
    cards = services.FlashcardService(db).by_difficulty(difficulty)
    return {'success': True, 'count': len(cards), 'data': [_flashcard_out(c) for c in cards]}


@app.get('/flashcards/category/{category}')
def flashcards_by_category(category: str, db: Session = Depends(get_session)):
    cards = services.FlashcardService(db).by_category(category)
    return {'success': True, 'count': len(cards), 'data': [_flashcard_out(c) for c in cards]}


@app.get('/flashcards/{card_id}')
def get_flashcard(card_id: int, db: Session = Depends(get_session), user: Optional[models.User] = Depends(get_optional_user)):
    card = services.FlashcardService(db).get_visible(card_id, user.id if user else None)
    return {'success': True, 'data': _flashcard_out(card)}


@app.put('/flashcards/{card_id}')
def update_flashcard(card_id: int, payload: FlashcardUpdate, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    card = services.FlashcardService(db).update(card_id, user.id, payload)
    return {'success': True, 'message': 'Flashcard updated successfully', 'data': _flashcard_out(card)}


@app.delete('/flashcards/{card_id}')
def delete_flashcard(card_id: int, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    services.FlashcardService(db).delete(card_id, user.id)
    return {'success': True, 'message': 'Flashcard deleted successfully'}
