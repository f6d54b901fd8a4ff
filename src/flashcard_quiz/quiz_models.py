"""Quiz data models — flashcard banks, generated questions, session state."""

from __future__ import annotations

import re
import uuid
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

# Record ids are 24-hex object ids
OBJECT_ID_PATTERN = re.compile(r"^[0-9a-fA-F]{24}$")


def is_object_id(value: object) -> bool:
    return isinstance(value, str) and bool(OBJECT_ID_PATTERN.match(value))


class TestMode(str, Enum):
    """Question generation policy for a whole test."""

    multiple_choice = "multiple-choice"
    written = "written"
    mixed = "mixed"  # per-question coin flip


class QuestionType(str, Enum):
    """Type assigned to a single generated question."""

    multiple_choice = "multiple-choice"
    written = "written"


class FeedbackMode(str, Enum):
    """When correctness is revealed to the student."""

    immediate = "immediate"
    end = "end"


class BankItem(BaseModel):
    """A flashcard: one immutable question bank entry.

    Accepts the stored card shape ``{_id, question, answer}`` as well as the
    field names.
    """

    model_config = ConfigDict(populate_by_name=True, coerce_numbers_to_str=True)

    id: str = Field(default_factory=lambda: uuid.uuid4().hex[:24], alias="_id")
    prompt: str = Field(alias="question")
    answer: str
    image: str | None = None


class FlashcardSet(BaseModel):
    """A flashcard set, the question bank of one test."""

    model_config = ConfigDict(populate_by_name=True, coerce_numbers_to_str=True)

    id: str = Field(default_factory=lambda: uuid.uuid4().hex[:24], alias="_id")
    title: str = "Untitled Set"
    user: str | None = None  # owner; None = readable by anyone
    cards: list[BankItem] = Field(default_factory=list)


class GeneratedQuestion(BaseModel):
    """A bank item as presented in one session."""

    bank_item_id: str
    choices: list[str] = Field(default_factory=list)  # empty for written
    assigned_type: QuestionType = QuestionType.multiple_choice


class SessionState(BaseModel):
    """Mutable state of one user's run through one test."""

    mode: TestMode = TestMode.multiple_choice
    feedback_mode: FeedbackMode = FeedbackMode.end
    shuffle_choices: bool = True

    questions: list[GeneratedQuestion] = Field(default_factory=list)
    selected_answers: list[str | None] = Field(default_factory=list)
    written_answers: list[str] = Field(default_factory=list)

    score: int = 0
    completed: bool = False
    wrong_ids: list[str] = Field(default_factory=list)

    has_answered: bool = False
    # Set by any user action; a pending restore must not overwrite it.
    locally_modified: bool = False


class ProgressDocument(BaseModel):
    """The ``test`` namespace of a stored study progress record.

    Every field is optional when read back; all of them are written on sync.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    selected_answers: list[str | None] | None = Field(
        default=None, alias="selectedAnswers"
    )
    written_answers: list[str | None] | None = Field(
        default=None, alias="writtenAnswers"
    )
    question_types: list[QuestionType] | None = Field(
        default=None, alias="questionTypes"
    )
    shuffle_choices: bool | None = Field(default=None, alias="shuffleChoices")
    feedback_mode: FeedbackMode | None = Field(default=None, alias="feedbackMode")
    test_mode: TestMode | None = Field(default=None, alias="testMode")
    score: int | None = None
    done: bool | None = None
    questions_order: list[int] | None = Field(default=None, alias="questionsOrder")
    question_choices: list[list[str] | None] | None = Field(
        default=None, alias="questionChoices"
    )
