"""Repository classes encapsulating database operations.

Each repository is small and focused on a single aggregate (users,
quizzes, attempts, flashcards). Repositories return SQLModel objects and
perform commits/refreshes where appropriate; a service operation never
needs more than one commit.
"""

from datetime import datetime
from typing import List, Optional, Sequence, Tuple
from sqlmodel import Session, select
from sqlalchemy import func, or_, update
from . import models
from .utils import scoring


def _catalog_filters(model, difficulty: Optional[str], category: Optional[str], search: Optional[str], search_fields: Sequence) -> list:
    """Build the shared public-listing WHERE clauses for quizzes and flashcards.

    `difficulty`/`category` equal to "all" mean no filter; `search` is a
    case-insensitive substring match over `search_fields`.
    """
    conds = [model.is_public == True]  # noqa: E712
    if difficulty and difficulty != 'all':
        conds.append(model.difficulty == difficulty)
    if category and category != 'all':
        conds.append(model.category == category)
    if search:
        needle = search.lower()
        conds.append(or_(*[func.lower(f).contains(needle, autoescape=True) for f in search_fields]))
    return conds


class UserRepository:
    """CRUD operations for `User` objects."""
    def __init__(self, session: Session):
        self.session = session

    def create(self, user: models.User) -> models.User:
        """Persist a new user and return the managed instance."""
        self.session.add(user)
        self.session.commit()
        self.session.refresh(user)
        return user

    def get_by_email(self, email: str) -> Optional[models.User]:
        """Return a `User` by email (case-insensitive) or `None` if not found."""
        stmt = select(models.User).where(func.lower(models.User.email) == email.lower())
        return self.session.exec(stmt).first()

    def get(self, user_id: int) -> Optional[models.User]:
        """Get a `User` by primary key."""
        return self.session.get(models.User, user_id)


class QuizRepository:
    """Persist quizzes together with their questions and options."""
    def __init__(self, session: Session):
        self.session = session

    def save(self, quiz: models.Quiz) -> models.Quiz:
        """Insert or update `quiz`, re-deriving `total_points` first."""
        quiz.total_points = scoring.total_points(q.points for q in quiz.questions)
        quiz.updated_at = models.utcnow()
        self.session.add(quiz)
        self.session.commit()
        self.session.refresh(quiz)
        return quiz

    def get(self, quiz_id: int) -> Optional[models.Quiz]:
        """Fetch a quiz by id."""
        return self.session.get(models.Quiz, quiz_id)

    def list_public(self, difficulty=None, category=None, search=None, offset: int = 0, limit: Optional[int] = 20) -> Tuple[List[models.Quiz], int]:
        """Return one page of public quizzes (newest first) and the total count."""
        conds = _catalog_filters(models.Quiz, difficulty, category, search,
                                 (models.Quiz.title, models.Quiz.description, models.Quiz.category))
        total = self.session.exec(select(func.count()).select_from(models.Quiz).where(*conds)).one()
        stmt = (
            select(models.Quiz)
            .where(*conds)
            .order_by(models.Quiz.created_at.desc(), models.Quiz.id.desc())
            .offset(offset)
            .limit(limit)
        )
        return self.session.exec(stmt).all(), total

    def list_by_owner(self, owner_id: int) -> List[models.Quiz]:
        stmt = select(models.Quiz).where(models.Quiz.created_by == owner_id).order_by(models.Quiz.created_at.desc(), models.Quiz.id.desc())
        return self.session.exec(stmt).all()

    def delete_with_attempts(self, quiz: models.Quiz) -> int:
        """Delete `quiz` and every attempt made against it in one commit.

        Returns the number of attempts removed.
        """
        attempts = self.session.exec(select(models.QuizAttempt).where(models.QuizAttempt.quiz_id == quiz.id)).all()
        for attempt in attempts:
            self.session.delete(attempt)
        self.session.delete(quiz)
        self.session.commit()
        return len(attempts)


class AttemptRepository:
    """Queries and guarded writes for `QuizAttempt` records."""
    def __init__(self, session: Session):
        self.session = session

    def get(self, attempt_id: int) -> Optional[models.QuizAttempt]:
        return self.session.get(models.QuizAttempt, attempt_id)

    def find_open(self, user_id: int, quiz_id: int) -> Optional[models.QuizAttempt]:
        """Return the incomplete attempt for this user/quiz pair, if any."""
        stmt = select(models.QuizAttempt).where(
            models.QuizAttempt.user_id == user_id,
            models.QuizAttempt.quiz_id == quiz_id,
            models.QuizAttempt.completed == False,  # noqa: E712
        )
        return self.session.exec(stmt).first()

    def create(self, attempt: models.QuizAttempt) -> models.QuizAttempt:
        """Insert a new attempt.

        Raises `sqlalchemy.exc.IntegrityError` when another incomplete
        attempt for the same user/quiz already exists; the caller decides
        how to recover.
        """
        self.session.add(attempt)
        self.session.commit()
        self.session.refresh(attempt)
        return attempt

    def claim_open(self, attempt_id: int) -> bool:
        """Bump `updated_at` only while the attempt is still incomplete.

        Runs inside the caller's transaction and acts as a compare-and-swap:
        a False return means the attempt was completed concurrently.
        """
        stmt = (
            update(models.QuizAttempt)
            .where(models.QuizAttempt.id == attempt_id, models.QuizAttempt.completed == False)  # noqa: E712
            .values(updated_at=models.utcnow())
        )
        return self.session.execute(stmt).rowcount == 1

    def mark_completed(self, attempt_id: int, score: int, percentage: int, time_spent: int, completed_at: datetime) -> bool:
        """Atomically flip an incomplete attempt to completed.

        Returns False (and writes nothing) if it was already completed.
        """
        stmt = (
            update(models.QuizAttempt)
            .where(models.QuizAttempt.id == attempt_id, models.QuizAttempt.completed == False)  # noqa: E712
            .values(
                score=score,
                percentage=percentage,
                time_spent=time_spent,
                completed=True,
                completed_at=completed_at,
                updated_at=completed_at,
            )
        )
        return self.session.execute(stmt).rowcount == 1

    def list_for_user(self, user_id: int) -> List[models.QuizAttempt]:
        stmt = select(models.QuizAttempt).where(models.QuizAttempt.user_id == user_id).order_by(
            models.QuizAttempt.created_at.desc(), models.QuizAttempt.id.desc())
        return self.session.exec(stmt).all()

    def list_completed_for_quiz(self, quiz_id: int) -> List[models.QuizAttempt]:
        """Completed attempts of a quiz, most recently completed first."""
        stmt = select(models.QuizAttempt).where(
            models.QuizAttempt.quiz_id == quiz_id,
            models.QuizAttempt.completed == True,  # noqa: E712
        ).order_by(models.QuizAttempt.completed_at.desc(), models.QuizAttempt.id.desc())
        return self.session.exec(stmt).all()


class FlashcardRepository:
    """CRUD and listing helpers for `Flashcard` records."""
    def __init__(self, session: Session):
        self.session = session

    def save(self, card: models.Flashcard) -> models.Flashcard:
        card.updated_at = models.utcnow()
        self.session.add(card)
        self.session.commit()
        self.session.refresh(card)
        return card

    def get(self, card_id: int) -> Optional[models.Flashcard]:
        return self.session.get(models.Flashcard, card_id)

    def delete(self, card: models.Flashcard):
        self.session.delete(card)
        self.session.commit()

    def list_public(self, difficulty=None, category=None, search=None, offset: int = 0, limit: Optional[int] = 20) -> Tuple[List[models.Flashcard], int]:
        """Return one page of public flashcards (newest first) and the total count."""
        conds = _catalog_filters(models.Flashcard, difficulty, category, search,
                                 (models.Flashcard.english_word, models.Flashcard.thai_meaning, models.Flashcard.category))
        total = self.session.exec(select(func.count()).select_from(models.Flashcard).where(*conds)).one()
        stmt = (
            select(models.Flashcard)
            .where(*conds)
            .order_by(models.Flashcard.created_at.desc(), models.Flashcard.id.desc())
            .offset(offset)
            .limit(limit)
        )
        return self.session.exec(stmt).all(), total

    def list_by_owner(self, owner_id: int) -> List[models.Flashcard]:
        stmt = select(models.Flashcard).where(models.Flashcard.created_by == owner_id).order_by(
            models.Flashcard.created_at.desc(), models.Flashcard.id.desc())
        return self.session.exec(stmt).all()

    def get_random(self, limit: int = 10, difficulty=None, category=None) -> List[models.Flashcard]:
        """Return up to `limit` random public flashcards."""
        conds = _catalog_filters(models.Flashcard, difficulty, category, None, ())
        stmt = select(models.Flashcard).where(*conds).order_by(func.random()).limit(limit)
        return self.session.exec(stmt).all()
