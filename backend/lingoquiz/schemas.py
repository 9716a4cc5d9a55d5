"""Pydantic request schemas used by the API.

Schemas keep API input shapes stable and provide validation for
controller handlers and tests. Field names are camelCase on the wire;
snake_case is accepted as well so scripts can post Python-style dicts.
"""

from pydantic import BaseModel, ConfigDict, Field, NonNegativeInt, PositiveInt
from pydantic.alias_generators import to_camel
from typing import List, Literal, Optional

# Upper bounds keep values inside a 32-bit INTEGER column.
MAX_POINTS = 1000
MAX_TIME_LIMIT = 24 * 60
MAX_TIME_SPENT = 2**31 - 1

Difficulty = Literal['beginner', 'intermediate', 'advanced']
PartOfSpeech = Literal['noun', 'verb', 'adjective', 'adverb', 'preposition', 'conjunction', 'interjection', 'pronoun']


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, str_strip_whitespace=True)


class RegisterIn(CamelModel):
    """Payload for user registration."""
    name: str = Field(min_length=1, max_length=100)
    email: str = Field(pattern=r'^[^@\s]+@[^@\s]+\.[^@\s]+$', max_length=254)
    password: str = Field(min_length=6)
    university: Optional[str] = None
    address: Optional[str] = None


class LoginIn(CamelModel):
    """Payload for the login endpoint."""
    email: str
    password: str


class OptionIn(CamelModel):
    """Representation of a possible answer in requests."""
    text: str = Field(min_length=1)
    is_correct: bool = False


class QuestionIn(CamelModel):
    """A single quiz question with its ordered options."""
    question: str = Field(min_length=1)
    options: List[OptionIn] = Field(min_length=2)
    explanation: Optional[str] = None
    points: PositiveInt = Field(default=1, le=MAX_POINTS)


class QuizIn(CamelModel):
    """Request model for creating a quiz."""
    title: str = Field(min_length=1, max_length=200)
    description: Optional[str] = None
    difficulty: Difficulty = 'beginner'
    category: str = Field(default='vocabulary', min_length=1)
    questions: List[QuestionIn] = Field(default_factory=list)
    time_limit: PositiveInt = Field(default=30, le=MAX_TIME_LIMIT)
    is_public: bool = True


class QuizUpdate(CamelModel):
    """Partial update; supplied `questions` replace the whole list."""
    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = None
    difficulty: Optional[Difficulty] = None
    category: Optional[str] = Field(default=None, min_length=1)
    questions: Optional[List[QuestionIn]] = None
    time_limit: Optional[PositiveInt] = Field(default=None, le=MAX_TIME_LIMIT)
    is_public: Optional[bool] = None


class AnswerSubmission(CamelModel):
    """One answer for one question of an in-progress attempt."""
    question_index: int
    selected_option: int


class AttemptCompletion(CamelModel):
    """Optional body of the completion call."""
    time_spent: Optional[NonNegativeInt] = Field(default=None, le=MAX_TIME_SPENT)


class FlashcardIn(CamelModel):
    """Request model for creating a flashcard."""
    english_word: str = Field(min_length=1)
    thai_meaning: str = Field(min_length=1)
    pronunciation: Optional[str] = None
    part_of_speech: PartOfSpeech = 'noun'
    difficulty: Difficulty = 'beginner'
    category: str = Field(default='general', min_length=1)
    example_sentence: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    is_public: bool = True


class FlashcardUpdate(CamelModel):
    english_word: Optional[str] = Field(default=None, min_length=1)
    thai_meaning: Optional[str] = Field(default=None, min_length=1)
    pronunciation: Optional[str] = None
    part_of_speech: Optional[PartOfSpeech] = None
    difficulty: Optional[Difficulty] = None
    category: Optional[str] = Field(default=None, min_length=1)
    example_sentence: Optional[str] = None
    tags: Optional[List[str]] = None
    is_public: Optional[bool] = None
