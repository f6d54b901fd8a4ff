"""JSON file storage for flashcard sets and study progress."""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any

from flashcard_quiz.quiz_models import FlashcardSet

logger = logging.getLogger(__name__)

# Storage directories (override with FLASHCARD_DIR / PROGRESS_DIR env vars)
DATA_DIR = Path(__file__).parent.parent.parent / "data"
FLASHCARD_DIR = Path(os.environ.get("FLASHCARD_DIR", DATA_DIR / "flashcards"))
PROGRESS_DIR = Path(os.environ.get("PROGRESS_DIR", DATA_DIR / "progress"))

# Progress namespaces a PATCH may update field by field
PROGRESS_NAMESPACES = ("test",)


class FlashcardStore:
    """JSON file-based flashcard set storage."""

    def __init__(self, directory: Path = FLASHCARD_DIR) -> None:
        self.directory = directory
        self.directory.mkdir(parents=True, exist_ok=True)

    def _path(self, flashcard_id: str) -> Path:
        return self.directory / f"{flashcard_id}.json"

    def save(self, flashcard: FlashcardSet) -> FlashcardSet:
        path = self._path(flashcard.id)
        data = flashcard.model_dump(by_alias=True)
        path.write_text(json.dumps(data, indent=2, ensure_ascii=False))
        return flashcard

    def load(self, flashcard_id: str) -> FlashcardSet:
        path = self._path(flashcard_id)
        if not path.exists():
            raise FileNotFoundError(f"Flashcard set not found: {flashcard_id}")
        data = json.loads(path.read_text())
        return FlashcardSet.model_validate(data)

    def delete(self, flashcard_id: str) -> None:
        path = self._path(flashcard_id)
        if path.exists():
            path.unlink()

    def list_all(self) -> list[dict[str, Any]]:
        sets = []
        for p in sorted(self.directory.glob("*.json")):
            try:
                data = json.loads(p.read_text())
                sets.append(
                    {
                        "_id": data.get("_id", p.stem),
                        "title": data.get("title", "Untitled Set"),
                        "cards": len(data.get("cards", [])),
                    }
                )
            except (json.JSONDecodeError, AttributeError):
                continue
        return sets


class ProgressStore:
    """Per-user study progress, one JSON document per (flashcard set, user)."""

    def __init__(self, directory: Path = PROGRESS_DIR) -> None:
        self.directory = directory
        self.directory.mkdir(parents=True, exist_ok=True)

    def _path(self, flashcard_id: str, user_id: str) -> Path:
        return self.directory / flashcard_id / f"{user_id}.json"

    def _write(self, path: Path, progress: dict[str, Any]) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(progress, indent=2, ensure_ascii=False))

    def get(self, flashcard_id: str, user_id: str) -> dict[str, Any]:
        """Load progress, creating an empty record on first access."""
        path = self._path(flashcard_id, user_id)
        if path.exists():
            try:
                return json.loads(path.read_text())
            except json.JSONDecodeError:
                logger.warning("Corrupt progress file %s, resetting", path)
        progress = {"user": user_id, "flashcard": flashcard_id, "test": {}}
        self._write(path, progress)
        return progress

    def patch(
        self, flashcard_id: str, user_id: str, body: dict[str, Any]
    ) -> dict[str, Any]:
        """Set the given fields of each namespace, leaving the others alone.

        Raises ValueError when the body holds nothing updatable.
        """
        updates = {
            key: value
            for key, value in body.items()
            if key in PROGRESS_NAMESPACES and isinstance(value, dict)
        }
        if not updates:
            raise ValueError("No updatable fields provided")

        progress = self.get(flashcard_id, user_id)
        for namespace, fields in updates.items():
            current = progress.get(namespace)
            if not isinstance(current, dict):
                current = {}
            current.update(fields)
            progress[namespace] = current

        self._write(self._path(flashcard_id, user_id), progress)
        logger.debug(
            "Updated progress %s/%s: %s",
            flashcard_id,
            user_id,
            {ns: sorted(f) for ns, f in updates.items()},
        )
        return progress
