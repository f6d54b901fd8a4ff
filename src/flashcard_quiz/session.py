"""Assessment session — the state machine behind taking one flashcard test.

A session owns the generated questions, the student's answers, and the
settings that shaped them. It performs no I/O: every user-visible change is
reported through ``on_change`` so a controller can persist it.

Lifecycle::

    initialize() -> record_answer()* -> finish() -> restart() -> ...

Settings (mode, choice shuffling, type randomization) are locked once any
answer has been recorded; feedback timing can change at any time.
"""

from __future__ import annotations

import logging
import random
from collections.abc import Callable, Sequence
from enum import Enum
from typing import Any

from pydantic import ValidationError

from flashcard_quiz.quiz_engine import (
    assign_random_types,
    generate_question_set,
    is_answer_correct,
    score_answers,
    wrong_item_ids,
)
from flashcard_quiz.quiz_models import (
    BankItem,
    FeedbackMode,
    GeneratedQuestion,
    ProgressDocument,
    QuestionType,
    SessionState,
    TestMode,
)

logger = logging.getLogger(__name__)


class ChangeKind(str, Enum):
    """What kind of mutation a session reports to its listener."""

    answer = "answer"
    settings = "settings"
    finish = "finish"
    restart = "restart"


class AssessmentSession:
    """One user's run through one question bank."""

    def __init__(
        self,
        bank: Sequence[BankItem],
        *,
        mode: TestMode = TestMode.multiple_choice,
        feedback_mode: FeedbackMode = FeedbackMode.end,
        shuffle_choices: bool = True,
        rng: random.Random | None = None,
        on_change: Callable[[ChangeKind], None] | None = None,
    ) -> None:
        if not bank:
            raise ValueError("Question bank is empty")
        self.bank = list(bank)
        self.on_change = on_change
        self._rng = rng or random.Random()
        self._items = {item.id: item for item in self.bank}
        self._positions = {item.id: i for i, item in enumerate(self.bank)}
        self.state = SessionState(
            mode=mode, feedback_mode=feedback_mode, shuffle_choices=shuffle_choices
        )

    # --- Read access ---

    @property
    def questions(self) -> list[GeneratedQuestion]:
        return self.state.questions

    @property
    def selected_answers(self) -> list[str | None]:
        return self.state.selected_answers

    @property
    def written_answers(self) -> list[str]:
        return self.state.written_answers

    @property
    def completed(self) -> bool:
        return self.state.completed

    @property
    def score(self) -> int:
        return self.state.score

    @property
    def has_answered(self) -> bool:
        return self.state.has_answered

    @property
    def locally_modified(self) -> bool:
        return self.state.locally_modified

    def item_for(self, index: int) -> BankItem:
        """Bank item behind the question at ``index``."""
        return self._items[self.state.questions[index].bank_item_id]

    # --- Initialization ---

    def initialize(
        self, restored: ProgressDocument | dict[str, Any] | None = None
    ) -> None:
        """Build the question set, optionally resuming persisted progress.

        Restored question order and choice lists are reused as-is so a student
        sees the exact same distractors again. Question types are recomputed
        from the restored choices, and answers are only restored into slots
        of the matching type.
        """
        doc = _coerce_document(restored)
        state = self.state

        if doc is not None:
            if doc.shuffle_choices is not None:
                state.shuffle_choices = doc.shuffle_choices
            if doc.feedback_mode is not None:
                state.feedback_mode = doc.feedback_mode
            if doc.test_mode is not None:
                state.mode = doc.test_mode

        questions = generate_question_set(
            self.bank, state.mode, state.shuffle_choices, self._rng
        )
        if doc is not None:
            questions = self._restore_questions(doc, questions)

        n = len(questions)
        selected: list[str | None] = [None] * n
        written: list[str] = [""] * n
        if doc is not None:
            if doc.selected_answers is not None and len(doc.selected_answers) == n:
                selected = [
                    doc.selected_answers[i]
                    if q.assigned_type == QuestionType.multiple_choice
                    else None
                    for i, q in enumerate(questions)
                ]
            if doc.written_answers is not None and len(doc.written_answers) == n:
                written = [
                    (doc.written_answers[i] or "")
                    if q.assigned_type == QuestionType.written
                    else ""
                    for i, q in enumerate(questions)
                ]

        state.questions = questions
        state.selected_answers = selected
        state.written_answers = written
        state.has_answered = _any_answer(selected, written)
        state.locally_modified = False

        state.completed = bool(doc is not None and doc.done)
        state.wrong_ids = []
        state.score = 0
        if state.completed:
            state.wrong_ids = wrong_item_ids(questions, self.bank, selected, written)
            if doc.score is not None:
                state.score = doc.score
            else:
                state.score = self.compute_current_score()

        logger.debug(
            "Initialized session: %d questions, restored=%s, answered=%s",
            n,
            doc is not None,
            state.has_answered,
        )

    def _restore_questions(
        self, doc: ProgressDocument, generated: list[GeneratedQuestion]
    ) -> list[GeneratedQuestion]:
        ordered = generated
        order = doc.questions_order
        order_restored = False
        if order is not None:
            if sorted(order) == list(range(len(self.bank))):
                by_id = {q.bank_item_id: q for q in generated}
                ordered = [by_id[self.bank[i].id] for i in order]
                order_restored = True
            else:
                logger.debug("Ignoring persisted question order %s", order)

        # Choice lists are positional: without the saved order they would
        # land on the wrong items.
        saved_choices = doc.question_choices if order_restored else None
        if saved_choices is not None and len(saved_choices) != len(ordered):
            logger.debug("Ignoring persisted choices: length mismatch")
            saved_choices = None

        restored = []
        for i, q in enumerate(ordered):
            choices = list(q.choices)
            saved = saved_choices[i] if saved_choices is not None else None
            answer = self._items[q.bank_item_id].answer
            if saved and answer not in saved:
                logger.debug("Ignoring persisted choices without answer: %s", saved)
            elif saved is not None:
                choices = list(saved)
            qtype = QuestionType.multiple_choice if choices else QuestionType.written
            restored.append(
                GeneratedQuestion(
                    bank_item_id=q.bank_item_id, choices=choices, assigned_type=qtype
                )
            )
        return restored

    # --- Answering ---

    def record_answer(
        self, index: int, value: str | None, kind: QuestionType | None = None
    ) -> None:
        """Store an answer in the slot matching the question's type.

        Calls that break the contract (finished session, index out of range,
        ``kind`` not matching the question, a choice that was not offered)
        are ignored.
        """
        state = self.state
        if state.completed:
            logger.debug("Answer to question %d ignored: session completed", index)
            return
        if not 0 <= index < len(state.questions):
            logger.debug("Answer ignored: question %d out of range", index)
            return

        question = state.questions[index]
        if kind is not None and kind != question.assigned_type:
            logger.debug(
                "Answer ignored: question %d is %s", index, question.assigned_type.value
            )
            return

        if question.assigned_type == QuestionType.multiple_choice:
            if value is None or value not in question.choices:
                logger.debug(
                    "Answer ignored: %r is not a choice of question %d", value, index
                )
                return
            state.selected_answers[index] = value
            state.has_answered = True
        else:
            state.written_answers[index] = value or ""
            if value and value.strip():
                state.has_answered = True

        state.locally_modified = True
        self._notify(ChangeKind.answer)

    def choose(self, index: int, choice: str) -> None:
        self.record_answer(index, choice, QuestionType.multiple_choice)

    def write(self, index: int, text: str) -> None:
        self.record_answer(index, text, QuestionType.written)

    def is_answered(self, index: int) -> bool:
        question = self.state.questions[index]
        if question.assigned_type == QuestionType.multiple_choice:
            return self.state.selected_answers[index] is not None
        return bool(self.state.written_answers[index].strip())

    def answered_count(self) -> int:
        return sum(1 for i in range(len(self.state.questions)) if self.is_answered(i))

    # --- Scoring ---

    def compute_current_score(self) -> int:
        """Score of the answers as they stand; does not mutate anything."""
        return score_answers(
            self.state.questions,
            self.bank,
            self.state.selected_answers,
            self.state.written_answers,
        )

    def question_feedback(self, index: int) -> bool | None:
        """Correctness of one question, or None while it must stay hidden."""
        state = self.state
        reveal = state.completed or (
            state.feedback_mode == FeedbackMode.immediate and self.is_answered(index)
        )
        if not reveal:
            return None
        question = state.questions[index]
        if question.assigned_type == QuestionType.multiple_choice:
            value = state.selected_answers[index]
        else:
            value = state.written_answers[index]
        correct = self.item_for(index).answer
        return is_answer_correct(question.assigned_type, value, correct)

    def finish(self) -> None:
        """Freeze the score and the list of missed items."""
        state = self.state
        if state.completed:
            logger.debug("finish() ignored: session already completed")
            return
        state.wrong_ids = wrong_item_ids(
            state.questions, self.bank, state.selected_answers, state.written_answers
        )
        state.score = self.compute_current_score()
        state.completed = True
        state.locally_modified = True
        logger.info(
            "Session finished: %d/%d correct", state.score, len(state.questions)
        )
        self._notify(ChangeKind.finish)

    def review_items(self) -> list[BankItem]:
        """Bank items missed in a completed session, in bank order."""
        if not self.state.completed:
            return []
        wrong = set(self.state.wrong_ids)
        return [item for item in self.bank if item.id in wrong]

    def restart(self) -> None:
        """Start over with a freshly generated question set."""
        self._reset(
            generate_question_set(
                self.bank, self.state.mode, self.state.shuffle_choices, self._rng
            )
        )
        self.state.locally_modified = True
        self._notify(ChangeKind.restart)

    # --- Settings ---

    def set_mode(self, mode: TestMode | str) -> None:
        if self._locked("set_mode"):
            return
        self.state.mode = TestMode(mode)
        self.state.locally_modified = True
        self._notify(ChangeKind.settings)

    def set_shuffle_choices(self, value: bool) -> None:
        if self._locked("set_shuffle_choices"):
            return
        self.state.shuffle_choices = bool(value)
        self.state.locally_modified = True
        self._notify(ChangeKind.settings)

    def set_feedback_mode(self, mode: FeedbackMode | str) -> None:
        self.state.feedback_mode = FeedbackMode(mode)
        self.state.locally_modified = True
        self._notify(ChangeKind.settings)

    def regenerate(self) -> None:
        """Rebuild the question set from the current settings."""
        if self._locked("regenerate"):
            return
        self._reset(
            generate_question_set(
                self.bank, self.state.mode, self.state.shuffle_choices, self._rng
            )
        )
        self.state.locally_modified = True
        self._notify(ChangeKind.settings)

    def randomize_question_types(self) -> None:
        """Re-flip multiple-choice vs written per question (mixed mode only)."""
        if self.state.mode != TestMode.mixed:
            logger.debug(
                "randomize_question_types ignored: mode is %s", self.state.mode.value
            )
            return
        if self._locked("randomize_question_types"):
            return
        self._reset(
            assign_random_types(
                self.state.questions, self.bank, self.state.shuffle_choices, self._rng
            )
        )
        self.state.locally_modified = True
        self._notify(ChangeKind.settings)

    # --- Persistence ---

    def to_progress_document(self) -> ProgressDocument:
        state = self.state
        return ProgressDocument(
            selected_answers=list(state.selected_answers),
            written_answers=list(state.written_answers),
            question_types=[q.assigned_type for q in state.questions],
            shuffle_choices=state.shuffle_choices,
            feedback_mode=state.feedback_mode,
            test_mode=state.mode,
            score=state.score,
            done=state.completed,
            questions_order=[self._positions[q.bank_item_id] for q in state.questions],
            question_choices=[list(q.choices) for q in state.questions],
        )

    def to_view(self) -> dict[str, Any]:
        """Plain-data rendering of the session for tools and clients."""
        state = self.state
        questions = []
        for i, q in enumerate(state.questions):
            item = self.item_for(i)
            entry: dict[str, Any] = {
                "index": i,
                "prompt": item.prompt,
                "type": q.assigned_type.value,
                "choices": list(q.choices),
                "answer": (
                    state.selected_answers[i]
                    if q.assigned_type == QuestionType.multiple_choice
                    else state.written_answers[i]
                ),
                "correct": self.question_feedback(i),
            }
            if state.completed:
                entry["correct_answer"] = item.answer
            questions.append(entry)
        return {
            "mode": state.mode.value,
            "feedback_mode": state.feedback_mode.value,
            "shuffle_choices": state.shuffle_choices,
            "has_answered": state.has_answered,
            "answered": self.answered_count(),
            "total": len(state.questions),
            "completed": state.completed,
            "score": state.score if state.completed else self.compute_current_score(),
            "wrong_ids": list(state.wrong_ids),
            "questions": questions,
        }

    # --- Internals ---

    def _reset(self, questions: list[GeneratedQuestion]) -> None:
        state = self.state
        state.questions = questions
        state.selected_answers = [None] * len(questions)
        state.written_answers = [""] * len(questions)
        state.score = 0
        state.completed = False
        state.wrong_ids = []
        state.has_answered = False

    def _locked(self, operation: str) -> bool:
        if self.state.has_answered:
            logger.debug("%s ignored: answers already recorded", operation)
            return True
        return False

    def _notify(self, kind: ChangeKind) -> None:
        if self.on_change is not None:
            self.on_change(kind)


def _any_answer(selected: Sequence[str | None], written: Sequence[str]) -> bool:
    return any(s is not None for s in selected) or any(w.strip() for w in written)


def _coerce_document(
    restored: ProgressDocument | dict[str, Any] | None,
) -> ProgressDocument | None:
    if restored is None or isinstance(restored, ProgressDocument):
        return restored
    try:
        return ProgressDocument.model_validate(restored)
    except ValidationError as e:
        logger.warning("Discarding malformed progress document: %s", e)
        return None
