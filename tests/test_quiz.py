"""Tests for question generation, scoring, and the session state machine."""

import random

import pytest

from flashcard_quiz.quiz_engine import (
    assign_random_types,
    build_choices,
    generate_question_set,
    is_answer_correct,
)
from flashcard_quiz.quiz_models import (
    BankItem,
    FeedbackMode,
    ProgressDocument,
    QuestionType,
    TestMode as Mode,
)
from flashcard_quiz.session import AssessmentSession, ChangeKind

MATH = [
    BankItem(id="1", prompt="2+2", answer="4"),
    BankItem(id="2", prompt="3+3", answer="6"),
]

CAPITALS = [
    BankItem(id="fr", prompt="Capital of France", answer="paris"),
    BankItem(id="de", prompt="Capital of Germany", answer="Berlin"),
    BankItem(id="it", prompt="Capital of Italy", answer="Rome"),
    BankItem(id="es", prompt="Capital of Spain", answer="Madrid"),
    BankItem(id="pt", prompt="Capital of Portugal", answer="Lisbon"),
    BankItem(id="at", prompt="Capital of Austria", answer="Vienna"),
]


def make_session(bank=MATH, seed=0, **kwargs):
    session = AssessmentSession(bank, rng=random.Random(seed), **kwargs)
    session.initialize()
    return session


def index_of(session, item_id):
    return next(
        i for i, q in enumerate(session.questions) if q.bank_item_id == item_id
    )


def answer_first(session):
    question = session.questions[0]
    if question.choices:
        session.choose(0, question.choices[0])
    else:
        session.write(0, "Rome")


def assert_lengths(session):
    n = len(session.questions)
    assert len(session.selected_answers) == n
    assert len(session.written_answers) == n


# --- Model tests ---


class TestQuizModels:
    def test_bank_item_from_card(self):
        item = BankItem.model_validate(
            {"_id": "abc", "question": "2+2", "answer": "4"}
        )
        assert item.id == "abc"
        assert item.prompt == "2+2"
        assert item.answer == "4"

    def test_numeric_ids_become_strings(self):
        item = BankItem(id=7, prompt="Q", answer="A")
        assert item.id == "7"

    def test_progress_document_aliases(self):
        doc = ProgressDocument.model_validate(
            {"questionsOrder": [1, 0], "testMode": "mixed", "done": False}
        )
        assert doc.questions_order == [1, 0]
        assert doc.test_mode == Mode.mixed
        assert doc.selected_answers is None
        dumped = doc.model_dump(mode="json", by_alias=True)
        assert dumped["testMode"] == "mixed"
        assert "questionChoices" in dumped


# --- Generation tests ---


class TestGeneration:
    def test_multiple_choice_correct_first(self):
        questions = generate_question_set(
            CAPITALS, Mode.multiple_choice, False, random.Random(1)
        )
        answers = {item.id: item.answer for item in CAPITALS}
        assert sorted(q.bank_item_id for q in questions) == sorted(answers)
        for q in questions:
            assert q.assigned_type == QuestionType.multiple_choice
            assert q.choices[0] == answers[q.bank_item_id]
            assert len(q.choices) == 4

    def test_distractors_distinct(self):
        bank = [
            BankItem(id=str(i), prompt=f"q{i}", answer=a)
            for i, a in enumerate(["a", "a", "b", "c", "c", "d"])
        ]
        rng = random.Random(3)
        for item in bank:
            choices = build_choices(item, bank, True, rng)
            assert len(set(choices)) == len(choices)
            assert choices.count(item.answer) == 1
            assert len(choices) == 4

    def test_small_bank_has_fewer_choices(self):
        questions = generate_question_set(
            MATH, Mode.multiple_choice, True, random.Random(0)
        )
        for q in questions:
            assert sorted(q.choices) == ["4", "6"]

    def test_written_has_no_choices(self):
        questions = generate_question_set(CAPITALS, Mode.written, True)
        for q in questions:
            assert q.assigned_type == QuestionType.written
            assert q.choices == []

    def test_mixed_assigns_both_types(self):
        bank = [
            BankItem(id=str(i), prompt=f"q{i}", answer=f"a{i}") for i in range(40)
        ]
        questions = generate_question_set(bank, Mode.mixed, True, random.Random(5))
        types = {q.assigned_type for q in questions}
        assert types == {QuestionType.multiple_choice, QuestionType.written}
        for q in questions:
            if q.assigned_type == QuestionType.written:
                assert q.choices == []
            else:
                assert f"a{q.bank_item_id}" in q.choices

    def test_seeded_generation_is_reproducible(self):
        first = generate_question_set(CAPITALS, Mode.mixed, True, random.Random(9))
        second = generate_question_set(CAPITALS, Mode.mixed, True, random.Random(9))
        assert first == second

    def test_assign_random_types_keeps_choices(self):
        questions = generate_question_set(
            CAPITALS, Mode.multiple_choice, True, random.Random(2)
        )
        result = assign_random_types(questions, CAPITALS, True, random.Random(4))
        assert [q.bank_item_id for q in result] == [q.bank_item_id for q in questions]
        for before, after in zip(questions, result):
            if after.assigned_type == QuestionType.multiple_choice:
                assert after.choices == before.choices
            else:
                assert after.choices == []

    def test_assign_random_types_builds_missing_choices(self):
        questions = generate_question_set(CAPITALS, Mode.written, True)
        result = assign_random_types(questions, CAPITALS, False, random.Random(4))
        answers = {item.id: item.answer for item in CAPITALS}
        for q in result:
            if q.assigned_type == QuestionType.multiple_choice:
                assert q.choices[0] == answers[q.bank_item_id]


# --- Scoring tests ---


class TestScoring:
    def test_multiple_choice_is_exact(self):
        assert is_answer_correct(QuestionType.multiple_choice, "4", "4")
        assert not is_answer_correct(QuestionType.multiple_choice, " 4", "4")
        assert not is_answer_correct(QuestionType.multiple_choice, None, "4")

    def test_written_ignores_case_and_padding(self):
        assert is_answer_correct(QuestionType.written, "  Paris ", "paris")
        assert not is_answer_correct(QuestionType.written, "Pariss", "paris")
        assert not is_answer_correct(QuestionType.written, "   ", "paris")
        assert not is_answer_correct(QuestionType.written, "", "")


# --- Session tests ---


class TestSessionAnswering:
    def test_first_choice_is_answer_without_shuffle(self):
        session = make_session(mode=Mode.multiple_choice, shuffle_choices=False)
        for i, q in enumerate(session.questions):
            assert q.choices[0] == session.item_for(i).answer

        session.choose(0, "4")
        session.finish()
        expected = 1 if session.questions[0].bank_item_id == "1" else 0
        assert session.score == expected

    def test_written_answer_trimmed_and_case_insensitive(self):
        session = make_session(CAPITALS, mode=Mode.written)
        session.write(index_of(session, "fr"), "  Paris ")
        assert session.compute_current_score() == 1

    def test_written_answer_no_fuzzy_match(self):
        session = make_session(CAPITALS, mode=Mode.written)
        session.write(index_of(session, "fr"), "Pariss")
        assert session.compute_current_score() == 0

    def test_lengths_hold_through_lifecycle(self):
        session = make_session(CAPITALS, mode=Mode.mixed)
        assert_lengths(session)
        answer_first(session)
        assert_lengths(session)
        session.restart()
        assert_lengths(session)

    def test_score_is_idempotent(self):
        session = make_session(shuffle_choices=False)
        session.choose(0, session.questions[0].choices[0])
        assert session.compute_current_score() == session.compute_current_score()

    def test_finish_freezes_score(self):
        session = make_session(shuffle_choices=False)
        session.choose(0, session.item_for(0).answer)
        expected = session.compute_current_score()
        session.finish()
        assert session.completed
        assert session.score == expected == 1

        session.choose(0, session.questions[0].choices[1])
        session.choose(1, session.item_for(1).answer)
        assert session.score == 1
        assert session.selected_answers[1] is None

        session.finish()
        assert session.score == 1

    def test_finish_records_wrong_items(self):
        session = make_session(CAPITALS, mode=Mode.written)
        session.write(index_of(session, "fr"), "Paris")
        session.write(index_of(session, "de"), "Munich")
        session.finish()
        assert session.score == 1
        assert "fr" not in session.state.wrong_ids
        assert len(session.state.wrong_ids) == 5
        assert [item.id for item in session.review_items()] == [
            "de",
            "it",
            "es",
            "pt",
            "at",
        ]

    def test_restart_clears_everything(self):
        session = make_session(CAPITALS, mode=Mode.written)
        session.write(0, "something")
        session.finish()
        session.restart()
        assert not session.has_answered
        assert not session.completed
        assert session.score == 0
        assert session.state.wrong_ids == []
        assert all(a is None for a in session.selected_answers)
        assert all(a == "" for a in session.written_answers)
        assert session.locally_modified

    def test_wrong_slot_is_ignored(self):
        session = make_session(CAPITALS, mode=Mode.written)
        session.record_answer(0, "Paris", QuestionType.multiple_choice)
        assert session.written_answers[0] == ""
        assert not session.has_answered

    def test_choice_not_offered_is_ignored(self):
        session = make_session()
        session.choose(0, "42")
        assert session.selected_answers == [None, None]
        assert not session.has_answered

    def test_out_of_range_is_ignored(self):
        session = make_session()
        session.record_answer(5, "4")
        session.record_answer(-1, "4")
        assert session.selected_answers == [None, None]

    def test_blank_written_answer_does_not_lock(self):
        session = make_session(CAPITALS, mode=Mode.written)
        session.write(0, "   ")
        assert not session.has_answered
        assert session.locally_modified
        session.set_mode(Mode.multiple_choice)
        assert session.state.mode == Mode.multiple_choice


class TestSessionSettings:
    def test_settings_locked_after_answer(self):
        session = make_session(CAPITALS, mode=Mode.mixed, shuffle_choices=True)
        answer_first(session)
        assert session.has_answered

        before = [q.model_copy() for q in session.questions]
        session.set_mode(Mode.written)
        session.set_shuffle_choices(False)
        session.randomize_question_types()
        session.regenerate()
        assert session.state.mode == Mode.mixed
        assert session.state.shuffle_choices is True
        assert session.questions == before

    def test_feedback_mode_changes_any_time(self):
        session = make_session()
        session.choose(0, session.questions[0].choices[0])
        session.set_feedback_mode(FeedbackMode.immediate)
        assert session.state.feedback_mode == FeedbackMode.immediate

    def test_set_mode_then_regenerate(self):
        session = make_session(CAPITALS)
        session.set_mode(Mode.written)
        assert session.questions[0].assigned_type == QuestionType.multiple_choice
        session.regenerate()
        assert all(q.assigned_type == QuestionType.written for q in session.questions)
        assert_lengths(session)

    def test_randomize_only_in_mixed_mode(self):
        session = make_session(CAPITALS, mode=Mode.multiple_choice)
        before = [q.model_copy() for q in session.questions]
        session.randomize_question_types()
        assert session.questions == before

    def test_randomize_preserves_order_and_choices(self):
        session = make_session(CAPITALS, mode=Mode.mixed, seed=11)
        before = {q.bank_item_id: q.choices for q in session.questions}
        order = [q.bank_item_id for q in session.questions]
        session.randomize_question_types()
        assert [q.bank_item_id for q in session.questions] == order
        for i, q in enumerate(session.questions):
            if q.assigned_type == QuestionType.written:
                assert q.choices == []
            else:
                assert session.item_for(i).answer in q.choices
                if before[q.bank_item_id]:
                    assert q.choices == before[q.bank_item_id]
        assert_lengths(session)

    def test_empty_bank_rejected(self):
        with pytest.raises(ValueError):
            AssessmentSession([])


class TestSessionFeedback:
    def test_end_feedback_hidden_until_finish(self):
        session = make_session(shuffle_choices=False)
        session.choose(0, session.item_for(0).answer)
        assert session.question_feedback(0) is None
        session.finish()
        assert session.question_feedback(0) is True
        assert session.question_feedback(1) is False

    def test_immediate_feedback(self):
        session = make_session(
            shuffle_choices=False, feedback_mode=FeedbackMode.immediate
        )
        assert session.question_feedback(0) is None
        session.choose(0, session.questions[0].choices[1])
        assert session.question_feedback(0) is False
        assert session.question_feedback(1) is None

    def test_view(self):
        session = make_session(shuffle_choices=False)
        session.choose(0, session.item_for(0).answer)
        view = session.to_view()
        assert view["total"] == 2
        assert view["answered"] == 1
        assert view["score"] == 1
        assert view["questions"][0]["prompt"] == session.item_for(0).prompt
        assert "correct_answer" not in view["questions"][0]

    def test_change_notifications(self):
        kinds = []
        session = make_session(shuffle_choices=False, on_change=kinds.append)
        session.choose(0, "nope")
        session.choose(0, session.questions[0].choices[0])
        session.set_feedback_mode("immediate")
        session.finish()
        session.finish()
        session.restart()
        assert kinds == [
            ChangeKind.answer,
            ChangeKind.settings,
            ChangeKind.finish,
            ChangeKind.restart,
        ]


class TestSessionRestore:
    def test_restore_order_and_choices(self):
        session = AssessmentSession(MATH)
        session.initialize(
            {
                "questionsOrder": [1, 0],
                "questionChoices": [["6", "4"], ["4", "9", "6"]],
                "selectedAnswers": ["6", None],
            }
        )
        assert session.questions[0].bank_item_id == "2"
        assert session.questions[0].choices == ["6", "4"]
        assert session.questions[1].bank_item_id == "1"
        assert session.questions[1].choices == ["4", "9", "6"]
        assert session.selected_answers == ["6", None]
        assert session.has_answered
        assert not session.locally_modified
        assert session.compute_current_score() == 1

    def test_types_follow_restored_choices(self):
        session = AssessmentSession(MATH, mode=Mode.mixed)
        session.initialize(
            {
                "questionsOrder": [0, 1],
                "questionChoices": [["4", "6"], []],
                "questionTypes": ["written", "multiple-choice"],
                "selectedAnswers": ["4", "6"],
                "writtenAnswers": ["four", "6"],
            }
        )
        assert session.questions[0].assigned_type == QuestionType.multiple_choice
        assert session.questions[1].assigned_type == QuestionType.written
        assert session.selected_answers == ["4", None]
        assert session.written_answers == ["", "6"]
        assert session.compute_current_score() == 2

    def test_invalid_order_falls_back(self):
        session = AssessmentSession(MATH, rng=random.Random(0))
        session.initialize({"questionsOrder": [0, 0], "selectedAnswers": [None, None]})
        assert sorted(q.bank_item_id for q in session.questions) == ["1", "2"]
        assert_lengths(session)
        assert not session.has_answered

    def test_choices_need_a_valid_order(self):
        bank = [
            BankItem(id="1", prompt="first", answer="a"),
            BankItem(id="2", prompt="second", answer="b"),
            BankItem(id="3", prompt="third", answer="c"),
        ]
        for seed in range(20):
            session = AssessmentSession(bank, rng=random.Random(seed))
            session.initialize(
                {
                    "questionsOrder": [0, 0, 0],
                    "questionChoices": [["a", "x"], ["a", "y"], ["a", "z"]],
                }
            )
            for i, question in enumerate(session.questions):
                assert session.item_for(i).answer in question.choices

    def test_choices_without_answer_are_regenerated(self):
        session = AssessmentSession(MATH, shuffle_choices=False)
        session.initialize(
            {"questionsOrder": [0, 1], "questionChoices": [["9", "7"], ["6", "4"]]}
        )
        assert session.questions[0].choices == ["4", "6"]
        assert session.questions[1].choices == ["6", "4"]

    def test_malformed_document_is_ignored(self):
        session = AssessmentSession(MATH)
        session.initialize({"questionsOrder": "first", "done": "maybe"})
        assert not session.completed
        assert not session.has_answered
        assert_lengths(session)

    def test_restore_settings_and_completion(self):
        session = AssessmentSession(MATH)
        session.initialize(
            {
                "testMode": "written",
                "feedbackMode": "immediate",
                "shuffleChoices": False,
                "writtenAnswers": ["4", "5"],
                "questionsOrder": [0, 1],
                "questionChoices": [[], []],
                "done": True,
                "score": 1,
            }
        )
        state = session.state
        assert state.mode == Mode.written
        assert state.feedback_mode == FeedbackMode.immediate
        assert state.shuffle_choices is False
        assert session.completed
        assert session.score == 1
        assert state.wrong_ids == ["2"]

        session.write(1, "6")
        assert session.written_answers[1] == "5"

    def test_resume_from_saved_document(self):
        session = make_session(CAPITALS, mode=Mode.mixed, seed=3)
        answer_first(session)
        saved = session.to_progress_document().model_dump(mode="json", by_alias=True)
        assert saved["questionsOrder"] == [
            [item.id for item in CAPITALS].index(q.bank_item_id)
            for q in session.questions
        ]

        resumed = AssessmentSession(CAPITALS, rng=random.Random(99))
        resumed.initialize(saved)
        assert resumed.questions == session.questions
        assert resumed.selected_answers == session.selected_answers
        assert resumed.written_answers == session.written_answers
        assert resumed.state.mode == Mode.mixed
