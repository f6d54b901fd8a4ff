"""HTTP client for the flashcard bank and study progress endpoints."""

from __future__ import annotations

import logging
import os
import time
from typing import Any

import httpx

from flashcard_quiz.quiz_models import BankItem, ProgressDocument, is_object_id

logger = logging.getLogger(__name__)

FLASHCARD_API_URL = os.environ.get("FLASHCARD_API_URL", "http://localhost:8000")
FLASHCARD_API_KEY = os.environ.get("API_KEY")


def is_persistent_user_id(user_id: str | None) -> bool:
    """Progress is only kept for real accounts, not temporary visitors."""
    return is_object_id(user_id)


def anonymous_user_id() -> str:
    """Temporary identity for visitors without an account."""
    return f"temp-user-{int(time.time() * 1000)}"


class BankLoadError(Exception):
    """The question bank could not be loaded, or is empty."""


class ProgressClient:
    """Async client for ``/api/flashcards`` and its progress sub-resource."""

    def __init__(
        self,
        base_url: str = FLASHCARD_API_URL,
        api_key: str | None = FLASHCARD_API_KEY,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        headers = {"x-api-key": api_key} if api_key else {}
        self._http = httpx.AsyncClient(
            base_url=base_url, headers=headers, timeout=timeout, transport=transport
        )

    async def aclose(self) -> None:
        await self._http.aclose()

    async def fetch_bank(self, assessment_id: str, user_id: str) -> list[BankItem]:
        """Load the cards of a flashcard set.

        Raises BankLoadError on any transport, status or format problem, and
        when the set has no cards.
        """
        try:
            resp = await self._http.get(
                f"/api/flashcards/{assessment_id}", params={"userId": user_id}
            )
            resp.raise_for_status()
            cards = resp.json()["flashcard"]["cards"]
            bank = [BankItem.model_validate(c) for c in cards]
        except httpx.HTTPStatusError as e:
            detail = _error_message(e.response)
            raise BankLoadError(
                detail or f"Failed to load ({e.response.status_code})"
            ) from e
        except (httpx.HTTPError, ValueError, KeyError, TypeError) as e:
            raise BankLoadError(f"Failed to load flashcard set: {e}") from e

        if not bank:
            raise BankLoadError("No cards available for test.")
        return bank

    async def fetch_progress(
        self, assessment_id: str, user_id: str
    ) -> dict[str, Any] | None:
        """Return the stored ``test`` progress, or None when there is none.

        Transport errors propagate; the caller decides how to fall back.
        """
        resp = await self._http.get(
            f"/api/flashcards/{assessment_id}/progress", params={"userId": user_id}
        )
        if resp.status_code == 404:
            return None
        resp.raise_for_status()
        if not resp.content:
            return None
        data = resp.json()
        if not isinstance(data, dict):
            return None
        progress = data.get("progress") or {}
        test = progress.get("test") if isinstance(progress, dict) else None
        if not isinstance(test, dict) or not test:
            return None
        return test

    async def save_progress(
        self, assessment_id: str, user_id: str, document: ProgressDocument
    ) -> None:
        """PATCH the ``test`` progress; only the status code is checked."""
        payload = {"test": document.model_dump(mode="json", by_alias=True)}
        resp = await self._http.patch(
            f"/api/flashcards/{assessment_id}/progress",
            params={"userId": user_id},
            json=payload,
        )
        resp.raise_for_status()


def _error_message(resp: httpx.Response) -> str | None:
    try:
        data = resp.json()
    except ValueError:
        return None
    if not isinstance(data, dict):
        return None
    message = data.get("message") or data.get("detail")
    return message if isinstance(message, str) else None
