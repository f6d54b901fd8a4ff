"""MCP tools for taking a flashcard test."""

from __future__ import annotations

from mcp.server.fastmcp import FastMCP

from flashcard_quiz.client import BankLoadError
from flashcard_quiz.quiz_models import FeedbackMode, TestMode
from flashcard_quiz.sync import SessionController, SessionRegistry


def _not_started(flashcard_id: str) -> dict:
    return {"error": f"No test in progress for flashcard set {flashcard_id}"}


def register(mcp: FastMCP, registry: SessionRegistry) -> None:
    def lookup(flashcard_id: str, user_id: str) -> SessionController | None:
        try:
            return registry.get(flashcard_id, user_id)
        except KeyError:
            return None

    @mcp.tool()
    async def start_test(
        flashcard_id: str,
        user_id: str,
        reload: bool = False,
    ) -> dict:
        """Start (or resume) a test on a flashcard set.

        Loads the set's cards, builds the questions, and restores the user's
        saved progress when there is any, so a resumed test shows the exact
        same questions and choices as before.

        Args:
            flashcard_id: Flashcard set ID
            user_id: User ID (progress is only saved for real account IDs)
            reload: Reload the test even if one is already active
        """
        try:
            controller = await registry.start(flashcard_id, user_id, reload=reload)
        except BankLoadError as e:
            return {"error": str(e)}
        return controller.session.to_view()

    @mcp.tool()
    async def get_test(flashcard_id: str, user_id: str) -> dict:
        """Show the current questions, answers, and score of an active test.

        Correctness per question is only included when feedback is
        "immediate" or the test is finished.

        Args:
            flashcard_id: Flashcard set ID
            user_id: User ID
        """
        controller = lookup(flashcard_id, user_id)
        if controller is None:
            return _not_started(flashcard_id)
        return controller.session.to_view()

    @mcp.tool()
    async def answer_question(
        flashcard_id: str,
        user_id: str,
        index: int,
        answer: str,
    ) -> dict:
        """Answer one question of an active test.

        For multiple-choice questions the answer must be one of the offered
        choices (exactly). Written answers are compared ignoring case and
        surrounding spaces.

        Args:
            flashcard_id: Flashcard set ID
            user_id: User ID
            index: 0-based question index
            answer: The chosen choice or the written answer
        """
        controller = lookup(flashcard_id, user_id)
        if controller is None:
            return _not_started(flashcard_id)
        controller.session.record_answer(index, answer)
        return controller.session.to_view()

    @mcp.tool()
    async def finish_test(flashcard_id: str, user_id: str) -> dict:
        """Finish the test: freeze the score and list the missed cards.

        Args:
            flashcard_id: Flashcard set ID
            user_id: User ID
        """
        controller = lookup(flashcard_id, user_id)
        if controller is None:
            return _not_started(flashcard_id)
        session = controller.session
        session.finish()
        view = session.to_view()
        view["review"] = [item.model_dump() for item in session.review_items()]
        return view

    @mcp.tool()
    async def restart_test(flashcard_id: str, user_id: str) -> dict:
        """Start over with freshly shuffled questions and no answers.

        Args:
            flashcard_id: Flashcard set ID
            user_id: User ID
        """
        controller = lookup(flashcard_id, user_id)
        if controller is None:
            return _not_started(flashcard_id)
        controller.session.restart()
        return controller.session.to_view()

    @mcp.tool()
    async def update_test_settings(
        flashcard_id: str,
        user_id: str,
        mode: str | None = None,
        shuffle_choices: bool | None = None,
        feedback_mode: str | None = None,
    ) -> dict:
        """Change test settings.

        Mode and choice shuffling can only change before the first answer;
        changing either rebuilds the questions. Feedback timing can change
        at any time.

        Args:
            flashcard_id: Flashcard set ID
            user_id: User ID
            mode: "multiple-choice", "written" or "mixed"
            shuffle_choices: Shuffle the order of multiple-choice options
            feedback_mode: "immediate" (show correctness as you go) or "end"
        """
        controller = lookup(flashcard_id, user_id)
        if controller is None:
            return _not_started(flashcard_id)
        session = controller.session
        try:
            new_mode = TestMode(mode) if mode is not None else None
            new_feedback = FeedbackMode(feedback_mode) if feedback_mode else None
        except ValueError as e:
            return {"error": str(e)}

        if new_feedback is not None:
            session.set_feedback_mode(new_feedback)
        if not session.has_answered and (
            new_mode is not None or shuffle_choices is not None
        ):
            if new_mode is not None:
                session.set_mode(new_mode)
            if shuffle_choices is not None:
                session.set_shuffle_choices(shuffle_choices)
            session.regenerate()
        return session.to_view()

    @mcp.tool()
    async def randomize_question_types(flashcard_id: str, user_id: str) -> dict:
        """Re-shuffle which questions are multiple-choice vs written (mixed mode).

        Only possible before the first answer.

        Args:
            flashcard_id: Flashcard set ID
            user_id: User ID
        """
        controller = lookup(flashcard_id, user_id)
        if controller is None:
            return _not_started(flashcard_id)
        controller.session.randomize_question_types()
        return controller.session.to_view()
