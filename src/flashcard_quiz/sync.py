"""Async orchestration — loading, restoring and persisting test sessions.

Two asynchronous boundaries surround an AssessmentSession:

- the initial load (question bank, then saved progress), and
- the persistence sync, a trailing debounce that PATCHes the latest state
  once changes pause.

A restore that arrives after the student has already acted is dropped:
explicit user action always wins over saved progress.
"""

from __future__ import annotations

import asyncio
import logging
import os
import random
from collections.abc import Awaitable, Callable

import httpx

from flashcard_quiz.client import (
    BankLoadError,
    ProgressClient,
    is_persistent_user_id,
)
from flashcard_quiz.session import AssessmentSession, ChangeKind

logger = logging.getLogger(__name__)

SYNC_DEBOUNCE_SECONDS = float(os.environ.get("SYNC_DEBOUNCE_SECONDS", "0.8"))


class Debouncer:
    """Trailing debounce for an async callback.

    Every ``schedule()`` restarts the timer, so the callback only runs once
    calls pause for ``delay`` seconds. A generation counter marks superseded
    timers stale; a callback that already started is left to finish.
    """

    def __init__(self, delay: float, callback: Callable[[], Awaitable[None]]) -> None:
        self.delay = delay
        self._callback = callback
        self._generation = 0
        self._timer: asyncio.Task | None = None
        self._in_flight: set[asyncio.Task] = set()

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def pending(self) -> bool:
        return self._timer is not None and not self._timer.done()

    @property
    def in_flight(self) -> int:
        return len(self._in_flight)

    def schedule(self) -> None:
        self.cancel()
        self._timer = asyncio.get_running_loop().create_task(
            self._wait_then_run(self._generation)
        )

    def cancel(self) -> None:
        self._generation += 1
        if self.pending:
            self._timer.cancel()
        self._timer = None

    def flush(self) -> None:
        """Drop any pending timer and run the callback right away."""
        self.cancel()
        task = asyncio.get_running_loop().create_task(self._run())
        self._in_flight.add(task)
        task.add_done_callback(self._in_flight.discard)

    async def drain(self) -> None:
        """Wait for the pending timer and every started callback."""
        while self.pending or self._in_flight:
            waiting = list(self._in_flight)
            if self.pending:
                waiting.append(self._timer)
            await asyncio.gather(*waiting, return_exceptions=True)

    async def _wait_then_run(self, generation: int) -> None:
        await asyncio.sleep(self.delay)
        if generation != self._generation:
            return
        # Past the timer: cancel() no longer interrupts this run.
        task = asyncio.current_task()
        self._timer = None
        self._in_flight.add(task)
        try:
            await self._run()
        finally:
            self._in_flight.discard(task)

    async def _run(self) -> None:
        await self._callback()


class SessionController:
    """Drives one AssessmentSession against the progress API."""

    def __init__(
        self,
        client: ProgressClient,
        assessment_id: str,
        user_id: str,
        *,
        debounce_seconds: float = SYNC_DEBOUNCE_SECONDS,
        rng: random.Random | None = None,
    ) -> None:
        self.client = client
        self.assessment_id = assessment_id
        self.user_id = user_id
        self.session: AssessmentSession | None = None
        self.restore_task: asyncio.Task | None = None
        self._rng = rng
        self._sync = Debouncer(debounce_seconds, self._persist)
        self._changes = 0
        self._saved = 0

    @property
    def persistent(self) -> bool:
        """Only real accounts get progress restored and saved."""
        return is_persistent_user_id(self.user_id)

    @property
    def dirty(self) -> bool:
        """Local state has changes the progress store has not acknowledged."""
        return self._saved < self._changes

    @property
    def sync(self) -> Debouncer:
        return self._sync

    async def load(self) -> AssessmentSession:
        """Fetch the bank, build a fresh session, and start restoring progress.

        The returned session is usable immediately; saved progress is applied
        later by ``restore_task`` unless the student acts first.
        """
        try:
            bank = await self.client.fetch_bank(self.assessment_id, self.user_id)
        except BankLoadError as e:
            logger.error("Failed to load test %s: %s", self.assessment_id, e)
            raise

        session = AssessmentSession(bank, rng=self._rng, on_change=self._on_change)
        session.initialize()
        self.session = session

        if self.persistent:
            self.restore_task = asyncio.get_running_loop().create_task(self.restore())
        else:
            logger.debug("Skipping progress for anonymous user %s", self.user_id)
        return session

    async def restore(self) -> bool:
        """Apply saved progress; returns True if it was applied."""
        session = self.session
        if session is None or not self.persistent:
            return False
        if session.locally_modified:
            return False

        try:
            document = await self.client.fetch_progress(
                self.assessment_id, self.user_id
            )
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("Failed to restore progress, starting fresh: %s", e)
            return False

        if document is None:
            return False
        if session.locally_modified:
            logger.info(
                "Discarding restored progress for %s: local changes were made",
                self.assessment_id,
            )
            return False

        session.initialize(document)
        logger.info(
            "Restored progress for %s (%d answered)",
            self.assessment_id,
            session.answered_count(),
        )
        return True

    async def sync_now(self) -> None:
        """Persist immediately if anything is unsaved."""
        if self.persistent and self.dirty:
            self._sync.flush()
        await self._sync.drain()

    async def aclose(self) -> None:
        """Stop restoring and wait for outstanding saves."""
        if self.restore_task is not None and not self.restore_task.done():
            self.restore_task.cancel()
            await asyncio.gather(self.restore_task, return_exceptions=True)
        await self._sync.drain()

    def _on_change(self, kind: ChangeKind) -> None:
        if not self.persistent:
            return
        self._changes += 1
        if kind == ChangeKind.finish:
            self._sync.flush()
        else:
            # Rescheduling invalidates any superseded timer (restart included).
            self._sync.schedule()

    async def _persist(self) -> None:
        session = self.session
        if session is None:
            return
        seen = self._changes
        document = session.to_progress_document()
        try:
            await self.client.save_progress(self.assessment_id, self.user_id, document)
        except httpx.HTTPError as e:
            logger.warning("Failed to save progress for %s: %s", self.assessment_id, e)
            return
        self._saved = max(self._saved, seen)
        logger.debug("Saved progress for %s", self.assessment_id)


class SessionRegistry:
    """Active test sessions, one per (assessment, user)."""

    def __init__(
        self,
        client: ProgressClient | None = None,
        debounce_seconds: float = SYNC_DEBOUNCE_SECONDS,
    ) -> None:
        self.client = client or ProgressClient()
        self.debounce_seconds = debounce_seconds
        self._controllers: dict[tuple[str, str], SessionController] = {}

    async def start(
        self, assessment_id: str, user_id: str, reload: bool = False
    ) -> SessionController:
        """Load a session (or reuse the active one) with progress restored."""
        key = (assessment_id, user_id)
        existing = self._controllers.get(key)
        if existing is not None and not reload:
            return existing
        if existing is not None:
            await existing.aclose()
            del self._controllers[key]

        controller = SessionController(
            self.client,
            assessment_id,
            user_id,
            debounce_seconds=self.debounce_seconds,
        )
        await controller.load()
        if controller.restore_task is not None:
            await controller.restore_task
        self._controllers[key] = controller
        return controller

    def get(self, assessment_id: str, user_id: str) -> SessionController:
        """Active controller; raises KeyError when no test was started."""
        return self._controllers[(assessment_id, user_id)]

    async def aclose(self) -> None:
        for controller in self._controllers.values():
            await controller.aclose()
        self._controllers.clear()
        await self.client.aclose()
