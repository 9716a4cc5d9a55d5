"""SQLModel data models.

This module defines the application's database tables using SQLModel.
Quizzes own an ordered list of questions which own an ordered list of
options; both are addressed by their zero-based `position`. Attempts own
the answers recorded against those positions.
"""

from typing import Optional
from sqlmodel import SQLModel, Field, Relationship
from sqlalchemy import JSON, Column, Index, UniqueConstraint, text
from datetime import datetime, timezone
from typing import List


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


DIFFICULTIES = ('beginner', 'intermediate', 'advanced')
PARTS_OF_SPEECH = ('noun', 'verb', 'adjective', 'adverb', 'preposition', 'conjunction', 'interjection', 'pronoun')


class User(SQLModel, table=True):
    """A registered learner.

    Fields:
    - `email`: unique login identifier
    - `password_hash`: hashed password string (never store plaintext)
    """
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str
    email: str = Field(index=True, nullable=False, unique=True)
    password_hash: str
    university: Optional[str] = None
    address: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)


class Quiz(SQLModel, table=True):
    """A quiz definition owned by the user who created it.

    `total_points` is derived from the questions and rewritten by the
    repository on every save.
    """
    id: Optional[int] = Field(default=None, primary_key=True)
    title: str
    description: Optional[str] = None
    difficulty: str = Field(default='beginner', index=True)
    category: str = Field(default='vocabulary', index=True)
    time_limit: int = 30
    total_points: int = 0
    is_public: bool = Field(default=True, index=True)
    created_by: int = Field(foreign_key='user.id', index=True)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    owner: Optional[User] = Relationship()
    questions: List['QuizQuestion'] = Relationship(
        back_populates='quiz',
        sa_relationship_kwargs={'order_by': 'QuizQuestion.position', 'cascade': 'all, delete-orphan'},
    )


class QuizQuestion(SQLModel, table=True):
    """A multiple-choice question at `position` inside a `Quiz`."""
    id: Optional[int] = Field(default=None, primary_key=True)
    quiz_id: int = Field(foreign_key='quiz.id', index=True)
    position: int
    question: str
    explanation: Optional[str] = None
    points: int = 1
    quiz: Optional[Quiz] = Relationship(back_populates='questions')
    options: List['QuizOption'] = Relationship(
        back_populates='question',
        sa_relationship_kwargs={'order_by': 'QuizOption.position', 'cascade': 'all, delete-orphan'},
    )


class QuizOption(SQLModel, table=True):
    """Possible answer for a `QuizQuestion`.

    `is_correct` marks whether selecting this option scores the question.
    """
    id: Optional[int] = Field(default=None, primary_key=True)
    question_id: int = Field(foreign_key='quizquestion.id', index=True)
    position: int
    text: str
    is_correct: bool = False
    question: Optional[QuizQuestion] = Relationship(back_populates='options')


class QuizAttempt(SQLModel, table=True):
    """A user's run through a quiz.

    Only one incomplete attempt may exist per user and quiz; the partial
    unique index below enforces that at the database level.
    """
    __table_args__ = (
        Index(
            'uq_quizattempt_open_user_quiz',
            'user_id',
            'quiz_id',
            unique=True,
            sqlite_where=text('completed = 0'),
            postgresql_where=text('completed = false'),
        ),
    )
    id: Optional[int] = Field(default=None, primary_key=True)
    quiz_id: int = Field(foreign_key='quiz.id', index=True)
    user_id: int = Field(foreign_key='user.id', index=True)
    score: int = 0
    percentage: int = 0
    time_spent: int = 0
    completed: bool = Field(default=False, index=True)
    completed_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    quiz: Optional[Quiz] = Relationship()
    user: Optional[User] = Relationship()
    answers: List['AttemptAnswer'] = Relationship(
        back_populates='attempt',
        sa_relationship_kwargs={'order_by': 'AttemptAnswer.id', 'cascade': 'all, delete-orphan'},
    )


class AttemptAnswer(SQLModel, table=True):
    """The latest answer recorded for one question of an attempt."""
    __table_args__ = (UniqueConstraint('attempt_id', 'question_index', name='uq_attemptanswer_question'),)
    id: Optional[int] = Field(default=None, primary_key=True)
    attempt_id: int = Field(foreign_key='quizattempt.id', index=True)
    question_index: int
    selected_option: int
    is_correct: bool = False
    points: int = 0
    attempt: Optional[QuizAttempt] = Relationship(back_populates='answers')


class Flashcard(SQLModel, table=True):
    """An English/Thai vocabulary card."""
    id: Optional[int] = Field(default=None, primary_key=True)
    english_word: str = Field(index=True)
    thai_meaning: str
    pronunciation: Optional[str] = None
    part_of_speech: str = 'noun'
    difficulty: str = Field(default='beginner', index=True)
    category: str = Field(default='general', index=True)
    example_sentence: Optional[str] = None
    tags: List[str] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    is_public: bool = Field(default=True, index=True)
    created_by: int = Field(foreign_key='user.id', index=True)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    owner: Optional[User] = Relationship()
