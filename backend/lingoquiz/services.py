"""Business logic services used by HTTP controllers.

This module holds small service classes that coordinate repositories
and scoring helpers. Services perform validation and ownership checks
before any write, execute domain logic and persist aggregates via
repositories. Failures are raised as `errors.ServiceError` subclasses.
"""

import logging
import math
from datetime import datetime, timedelta, timezone
from typing import List, Optional, Tuple
from passlib.context import CryptContext
import jwt
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session
from . import models, repositories, schemas
from .config import settings
from .errors import BadRequestError, NotFoundError, ensure_owner
from .utils import scoring

PWD_CTX = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")
RECENT_ATTEMPTS_LIMIT = 10

logger = logging.getLogger("lingoquiz.services")


def _page(items, total: int, page: int, limit: int) -> dict:
    return {
        'items': items,
        'total': total,
        'page': page,
        'limit': limit,
        'pages': math.ceil(total / limit) if limit else 0,
    }


class AuthService:
    """Authentication related operations (register + authenticate)."""
    def __init__(self, session: Session):
        self.session = session
        self.user_repo = repositories.UserRepository(session)

    def register(self, name: str, email: str, password: str, university: Optional[str] = None, address: Optional[str] = None) -> models.User:
        """Create a new user with a hashed password.

        Raises `BadRequestError` when the email is already registered.
        """
        if self.user_repo.get_by_email(email):
            raise BadRequestError('User already exists')
        hashed = PWD_CTX.hash(password)
        u = models.User(name=name, email=email.lower(), password_hash=hashed, university=university, address=address)
        try:
            user = self.user_repo.create(u)
        except IntegrityError:
            # lost a race against a concurrent registration for the same email
            self.session.rollback()
            raise BadRequestError('User already exists')
        logger.info("user registered id=%s", user.id)
        return user

    def authenticate(self, email: str, password: str) -> Optional[models.User]:
        """Verify credentials and return the matching user.

        Returns `None` if authentication fails.
        """
        user = self.user_repo.get_by_email(email)
        if not user:
            return None
        if not PWD_CTX.verify(password, user.password_hash):
            return None
        return user

    def issue_token(self, user: models.User) -> str:
        """Return a signed JWT carrying the user's id."""
        expire = datetime.now(timezone.utc) + timedelta(hours=settings.JWT_EXPIRE_HOURS)
        payload = {"user_id": user.id, "exp": int(expire.timestamp())}
        return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


class QuizService:
    """Quiz catalog: create, list, read, update and delete quiz definitions."""
    def __init__(self, session: Session):
        self.session = session
        self.quiz_repo = repositories.QuizRepository(session)

    @staticmethod
    def _build_questions(questions: List[schemas.QuestionIn]) -> List[models.QuizQuestion]:
        built = []
        for qpos, q in enumerate(questions):
            options = [models.QuizOption(position=opos, text=o.text, is_correct=o.is_correct) for opos, o in enumerate(q.options)]
            built.append(models.QuizQuestion(position=qpos, question=q.question, explanation=q.explanation, points=q.points, options=options))
        return built

    def create(self, owner_id: int, data: schemas.QuizIn) -> models.Quiz:
        quiz = models.Quiz(
            title=data.title,
            description=data.description,
            difficulty=data.difficulty,
            category=data.category,
            time_limit=data.time_limit,
            is_public=data.is_public,
            created_by=owner_id,
        )
        quiz.questions = self._build_questions(data.questions)
        quiz = self.quiz_repo.save(quiz)
        logger.info("quiz created id=%s owner=%s questions=%d", quiz.id, owner_id, len(quiz.questions))
        return quiz

    def list_public(self, difficulty=None, category=None, search=None, page: int = 1, limit: int = 20) -> dict:
        """Return a page dict with public quizzes matching the filters."""
        items, total = self.quiz_repo.list_public(difficulty, category, search, offset=(page - 1) * limit, limit=limit)
        return _page(items, total, page, limit)

    def get_visible(self, quiz_id: int, viewer_id: Optional[int] = None) -> models.Quiz:
        """Return a quiz the viewer may see.

        Private quizzes are reported as missing to anyone but their owner.
        """
        quiz = self.quiz_repo.get(quiz_id)
        if not quiz or (not quiz.is_public and quiz.created_by != viewer_id):
            raise NotFoundError('Quiz not found')
        return quiz

    def get_owned(self, quiz_id: int, user_id: int, action: str) -> models.Quiz:
        quiz = self.quiz_repo.get(quiz_id)
        if not quiz:
            raise NotFoundError('Quiz not found')
        ensure_owner(quiz.created_by, user_id, action)
        return quiz

    def update(self, quiz_id: int, user_id: int, data: schemas.QuizUpdate) -> models.Quiz:
        """Apply a partial update; supplied questions replace the existing list."""
        quiz = self.get_owned(quiz_id, user_id, 'update this quiz')
        changes = data.model_dump(exclude_unset=True, exclude={'questions'})
        for field, value in changes.items():
            if value is None and field != 'description':
                continue
            setattr(quiz, field, value)
        if data.questions is not None:
            quiz.questions = self._build_questions(data.questions)
        quiz = self.quiz_repo.save(quiz)
        logger.info("quiz updated id=%s", quiz.id)
        return quiz

    def delete(self, quiz_id: int, user_id: int):
        quiz = self.get_owned(quiz_id, user_id, 'delete this quiz')
        removed = self.quiz_repo.delete_with_attempts(quiz)
        logger.info("quiz deleted id=%s attempts_removed=%d", quiz_id, removed)

    def list_mine(self, user_id: int) -> List[models.Quiz]:
        return self.quiz_repo.list_by_owner(user_id)


class AttemptService:
    """Start, answer and complete quiz attempts.

    Invariants kept here:
    - at most one incomplete attempt per (user, quiz); starting again
      resumes it
    - one answer per question index; a resubmission replaces the old one
    - a completed attempt never changes again
    """
    def __init__(self, session: Session):
        self.session = session
        self.quiz_repo = repositories.QuizRepository(session)
        self.attempt_repo = repositories.AttemptRepository(session)

    def start(self, quiz_id: int, user_id: int) -> Tuple[models.QuizAttempt, bool]:
        """Return `(attempt, created)` for the user's open attempt on a quiz."""
        if not self.quiz_repo.get(quiz_id):
            raise NotFoundError('Quiz not found')
        existing = self.attempt_repo.find_open(user_id, quiz_id)
        if existing:
            logger.info("attempt resumed id=%s quiz=%s user=%s", existing.id, quiz_id, user_id)
            return existing, False
        try:
            attempt = self.attempt_repo.create(models.QuizAttempt(quiz_id=quiz_id, user_id=user_id))
        except IntegrityError:
            # a concurrent request opened the attempt first; resume that one
            self.session.rollback()
            existing = self.attempt_repo.find_open(user_id, quiz_id)
            if not existing:
                raise
            return existing, False
        logger.info("attempt started id=%s quiz=%s user=%s", attempt.id, quiz_id, user_id)
        return attempt, True

    def _get_owned(self, attempt_id: int, user_id: int, action: str) -> models.QuizAttempt:
        attempt = self.attempt_repo.get(attempt_id)
        if not attempt:
            raise NotFoundError('Quiz attempt not found')
        ensure_owner(attempt.user_id, user_id, action)
        if attempt.completed:
            raise BadRequestError('Quiz attempt already completed')
        return attempt

    def submit_answer(self, attempt_id: int, user_id: int, question_index: int, selected_option: int) -> dict:
        """Score one answer and store it, replacing any earlier one for the index.

        Returns only the outcome for this question; the overall score is
        computed on completion.
        """
        attempt = self._get_owned(attempt_id, user_id, 'submit answer for this attempt')
        questions = attempt.quiz.questions
        if not 0 <= question_index < len(questions):
            raise BadRequestError('Invalid question index')
        question = questions[question_index]
        if not 0 <= selected_option < len(question.options):
            raise BadRequestError('Invalid option selected')
        is_correct = bool(question.options[selected_option].is_correct)
        points = question.points if is_correct else 0
        self._upsert_answer(attempt, question_index, selected_option, is_correct, points)
        return {'is_correct': is_correct, 'points': points, 'explanation': question.explanation}

    def _upsert_answer(self, attempt: models.QuizAttempt, question_index: int, selected_option: int, is_correct: bool, points: int):
        # Two passes at most: a concurrent insert for the same index turns the
        # second pass into an update of the row that won.
        for final_pass in (False, True):
            if not self.attempt_repo.claim_open(attempt.id):
                self.session.rollback()
                raise BadRequestError('Quiz attempt already completed')
            existing = next((a for a in attempt.answers if a.question_index == question_index), None)
            if existing:
                existing.selected_option = selected_option
                existing.is_correct = is_correct
                existing.points = points
                self.session.add(existing)
            else:
                attempt.answers.append(models.AttemptAnswer(
                    question_index=question_index,
                    selected_option=selected_option,
                    is_correct=is_correct,
                    points=points,
                ))
            try:
                self.session.commit()
                return
            except IntegrityError:
                self.session.rollback()
                if final_pass:
                    raise

    def complete(self, attempt_id: int, user_id: int, time_spent: Optional[int] = None) -> dict:
        """Finalize an attempt, recomputing its score from the stored answers."""
        attempt = self._get_owned(attempt_id, user_id, 'complete this attempt')
        # Claim the row before reading answers so a concurrent answer write
        # either lands before the read or is refused by its own claim.
        if not self.attempt_repo.claim_open(attempt.id):
            self.session.rollback()
            raise BadRequestError('Quiz attempt already completed')
        self.session.expire(attempt, ['answers'])
        possible = scoring.total_points(q.points for q in attempt.quiz.questions)
        score = scoring.score_answers(attempt.answers)
        pct = scoring.percentage(score, possible)
        if not self.attempt_repo.mark_completed(attempt.id, score, pct, time_spent or 0, models.utcnow()):
            self.session.rollback()
            raise BadRequestError('Quiz attempt already completed')
        self.session.commit()
        self.session.refresh(attempt)
        logger.info("attempt completed id=%s score=%s/%s", attempt.id, score, possible)
        return {
            'score': attempt.score,
            'total_points': possible,
            'percentage': attempt.percentage,
            'time_spent': attempt.time_spent,
            'answers': list(attempt.answers),
        }

    def list_mine(self, user_id: int) -> List[models.QuizAttempt]:
        return self.attempt_repo.list_for_user(user_id)


class StatisticsService:
    """Aggregate completed attempts of a quiz for its owner."""
    def __init__(self, session: Session):
        self.session = session
        self.quiz_repo = repositories.QuizRepository(session)
        self.attempt_repo = repositories.AttemptRepository(session)

    def quiz_statistics(self, quiz_id: int, requester_id: int) -> dict:
        """Return attempt count, average percentage, grade distribution and
        the most recently completed attempts.
        """
        quiz = self.quiz_repo.get(quiz_id)
        if not quiz:
            raise NotFoundError('Quiz not found')
        ensure_owner(quiz.created_by, requester_id, 'view quiz statistics')
        attempts = self.attempt_repo.list_completed_for_quiz(quiz_id)
        percentages = [a.percentage for a in attempts]
        return {
            'total_attempts': len(attempts),
            'average_score': scoring.average_percentage(percentages),
            'score_distribution': scoring.score_distribution(percentages),
            'recent_attempts': attempts[:RECENT_ATTEMPTS_LIMIT],
        }


class FlashcardService:
    """Flashcard CRUD, listing and study helpers."""
    def __init__(self, session: Session):
        self.session = session
        self.card_repo = repositories.FlashcardRepository(session)

    def list_public(self, difficulty=None, category=None, search=None, page: int = 1, limit: int = 20) -> dict:
        items, total = self.card_repo.list_public(difficulty, category, search, offset=(page - 1) * limit, limit=limit)
        return _page(items, total, page, limit)

    def get_visible(self, card_id: int, viewer_id: Optional[int] = None) -> models.Flashcard:
        card = self.card_repo.get(card_id)
        if not card or (not card.is_public and card.created_by != viewer_id):
            raise NotFoundError('Flashcard not found')
        return card

    def _get_owned(self, card_id: int, user_id: int, action: str) -> models.Flashcard:
        card = self.card_repo.get(card_id)
        if not card:
            raise NotFoundError('Flashcard not found')
        ensure_owner(card.created_by, user_id, action)
        return card

    def create(self, owner_id: int, data: schemas.FlashcardIn) -> models.Flashcard:
        card = models.Flashcard(created_by=owner_id, **data.model_dump())
        card = self.card_repo.save(card)
        logger.info("flashcard created id=%s owner=%s", card.id, owner_id)
        return card

    def update(self, card_id: int, user_id: int, data: schemas.FlashcardUpdate) -> models.Flashcard:
        card = self._get_owned(card_id, user_id, 'update this flashcard')
        nullable = {'pronunciation', 'example_sentence'}
        for field, value in data.model_dump(exclude_unset=True).items():
            if value is None and field not in nullable:
                continue
            setattr(card, field, value)
        return self.card_repo.save(card)

    def delete(self, card_id: int, user_id: int):
        card = self._get_owned(card_id, user_id, 'delete this flashcard')
        self.card_repo.delete(card)
        logger.info("flashcard deleted id=%s", card_id)

    def by_difficulty(self, difficulty: str) -> List[models.Flashcard]:
        if difficulty not in models.DIFFICULTIES:
            raise BadRequestError('Invalid difficulty level')
        items, _ = self.card_repo.list_public(difficulty=difficulty, limit=None)
        return items

    def by_category(self, category: str) -> List[models.Flashcard]:
        items, _ = self.card_repo.list_public(category=category, limit=None)
        return items

    def list_mine(self, user_id: int) -> List[models.Flashcard]:
        return self.card_repo.list_by_owner(user_id)

    def random(self, limit: int = 10, difficulty=None, category=None) -> List[models.Flashcard]:
        return self.card_repo.get_random(limit, difficulty, category)
