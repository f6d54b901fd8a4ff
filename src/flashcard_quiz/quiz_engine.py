"""Quiz engine — question set generation and answer scoring."""

from __future__ import annotations

import logging
import random
from collections.abc import Sequence

from flashcard_quiz.quiz_models import (
    BankItem,
    GeneratedQuestion,
    QuestionType,
    TestMode,
)

logger = logging.getLogger(__name__)

# Wrong answers offered next to the correct one
MAX_DISTRACTORS = 3


def build_choices(
    item: BankItem,
    bank: Sequence[BankItem],
    shuffle_choices: bool,
    rng: random.Random,
) -> list[str]:
    """Correct answer plus up to three distinct wrong answers from the bank."""
    pool: list[str] = []
    for other in bank:
        if other.answer != item.answer and other.answer not in pool:
            pool.append(other.answer)

    picks = rng.sample(pool, min(MAX_DISTRACTORS, len(pool)))
    choices = [item.answer, *picks]
    if shuffle_choices:
        rng.shuffle(choices)
    return choices


def _pick_type(mode: TestMode, rng: random.Random) -> QuestionType:
    if mode == TestMode.multiple_choice:
        return QuestionType.multiple_choice
    if mode == TestMode.written:
        return QuestionType.written
    # Mixed: unbalanced coin flip per item
    if rng.random() > 0.5:
        return QuestionType.multiple_choice
    return QuestionType.written


def generate_question_set(
    bank: Sequence[BankItem],
    mode: TestMode,
    shuffle_choices: bool,
    rng: random.Random | None = None,
) -> list[GeneratedQuestion]:
    """Build a fresh, shuffled question set for one session."""
    rng = rng or random.Random()

    questions: list[GeneratedQuestion] = []
    for item in bank:
        qtype = _pick_type(mode, rng)
        choices = []
        if qtype == QuestionType.multiple_choice:
            choices = build_choices(item, bank, shuffle_choices, rng)
        questions.append(
            GeneratedQuestion(
                bank_item_id=item.id, choices=choices, assigned_type=qtype
            )
        )

    rng.shuffle(questions)
    logger.debug("Generated %d questions (mode=%s)", len(questions), mode.value)
    return questions


def assign_random_types(
    questions: Sequence[GeneratedQuestion],
    bank: Sequence[BankItem],
    shuffle_choices: bool,
    rng: random.Random | None = None,
) -> list[GeneratedQuestion]:
    """Re-flip the type of every question, keeping order.

    Questions that stay multiple-choice keep their existing choices; only
    questions newly turned multiple-choice get fresh distractors.
    """
    rng = rng or random.Random()
    by_id = {item.id: item for item in bank}

    result: list[GeneratedQuestion] = []
    for q in questions:
        qtype = _pick_type(TestMode.mixed, rng)
        if qtype == QuestionType.written:
            result.append(
                GeneratedQuestion(bank_item_id=q.bank_item_id, assigned_type=qtype)
            )
            continue
        choices = list(q.choices)
        if not choices:
            choices = build_choices(by_id[q.bank_item_id], bank, shuffle_choices, rng)
        result.append(
            GeneratedQuestion(
                bank_item_id=q.bank_item_id, choices=choices, assigned_type=qtype
            )
        )
    return result


def is_answer_correct(qtype: QuestionType, value: str | None, correct: str) -> bool:
    """Multiple-choice answers match exactly; written ones ignore case and padding."""
    if qtype == QuestionType.multiple_choice:
        return value is not None and value == correct
    if not value or not value.strip():
        return False
    return value.strip().lower() == correct.strip().lower()


def _active_answer(
    q: GeneratedQuestion, selected: str | None, written: str
) -> str | None:
    if q.assigned_type == QuestionType.multiple_choice:
        return selected
    return written


def score_answers(
    questions: Sequence[GeneratedQuestion],
    bank: Sequence[BankItem],
    selected_answers: Sequence[str | None],
    written_answers: Sequence[str],
) -> int:
    """Number of questions answered correctly; unanswered ones count zero."""
    by_id = {item.id: item for item in bank}
    score = 0
    for q, sel, wr in zip(questions, selected_answers, written_answers):
        correct = by_id[q.bank_item_id].answer
        if is_answer_correct(q.assigned_type, _active_answer(q, sel, wr), correct):
            score += 1
    return score


def wrong_item_ids(
    questions: Sequence[GeneratedQuestion],
    bank: Sequence[BankItem],
    selected_answers: Sequence[str | None],
    written_answers: Sequence[str],
) -> list[str]:
    """Bank item ids of every question not answered correctly, in question order."""
    by_id = {item.id: item for item in bank}
    return [
        q.bank_item_id
        for q, sel, wr in zip(questions, selected_answers, written_answers)
        if not is_answer_correct(
            q.assigned_type, _active_answer(q, sel, wr), by_id[q.bank_item_id].answer
        )
    ]
