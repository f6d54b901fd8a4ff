"""FastAPI HTTP layer — flashcard sets and per-user test progress."""

from __future__ import annotations

import hmac
import logging
import os
from typing import Any

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse

from flashcard_quiz.quiz_models import FlashcardSet, is_object_id
from flashcard_quiz.store import FlashcardStore, ProgressStore

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Flashcard Quiz API",
    description="Flashcard sets and resumable test progress",
    version="0.1.0",
)

API_KEY = os.getenv("API_KEY")
if not API_KEY:
    logger.warning("API_KEY not set. All requests will be allowed.")


@app.middleware("http")
async def verify_api_key(request: Request, call_next):
    if API_KEY and request.url.path != "/health":
        key = request.headers.get("x-api-key", "")
        if not hmac.compare_digest(key, API_KEY):
            return JSONResponse(status_code=401, content={"detail": "Invalid API key"})
    return await call_next(request)


@app.get("/health")
def health():
    """Unauthenticated health check for Railway/Fly.io."""
    return {"status": "ok"}


flashcard_store = FlashcardStore()
progress_store = ProgressStore()


def _validation_error(message: str) -> JSONResponse:
    return JSONResponse(
        status_code=400, content={"code": "VALIDATION_ERROR", "message": message}
    )


# --- Flashcard sets ---


@app.get("/api/flashcards")
def list_flashcards():
    """List all saved flashcard sets."""
    return flashcard_store.list_all()


@app.post("/api/flashcards")
def create_flashcards(flashcard: FlashcardSet):
    """Create a new flashcard set."""
    if not is_object_id(flashcard.id):
        return _validation_error("Flashcard ID must be valid")
    return flashcard_store.save(flashcard).model_dump(by_alias=True)


@app.get("/api/flashcards/{flashcard_id}")
def get_flashcards(flashcard_id: str, userId: str | None = None):  # noqa: N803
    """Load a flashcard set for a user (the question bank of a test)."""
    if not is_object_id(userId):
        return _validation_error("User ID is required and must be valid")
    if not is_object_id(flashcard_id):
        return _validation_error("Flashcard ID is required and must be valid")
    try:
        flashcard = flashcard_store.load(flashcard_id)
    except FileNotFoundError:
        raise HTTPException(status_code=404, detail="Flashcard not found")
    if flashcard.user is not None and flashcard.user != userId:
        raise HTTPException(status_code=404, detail="Flashcard not found")
    return {"flashcard": flashcard.model_dump(by_alias=True)}


@app.delete("/api/flashcards/{flashcard_id}")
def delete_flashcards(flashcard_id: str):
    """Delete a flashcard set."""
    if not is_object_id(flashcard_id):
        return _validation_error("Flashcard ID is required and must be valid")
    flashcard_store.delete(flashcard_id)
    return {"status": "deleted"}


# --- Progress ---


@app.get("/api/flashcards/{flashcard_id}/progress")
def get_progress(flashcard_id: str, userId: str | None = None):  # noqa: N803
    """Return a user's progress on a set, creating an empty record if needed."""
    if not is_object_id(userId) or not is_object_id(flashcard_id):
        return _validation_error("userId and flashcardId required and must be valid")
    return {"progress": progress_store.get(flashcard_id, userId)}


@app.patch("/api/flashcards/{flashcard_id}/progress")
def patch_progress(
    flashcard_id: str, body: dict[str, Any], userId: str | None = None  # noqa: N803
):
    """Update individual fields of a user's progress namespaces."""
    if not is_object_id(userId) or not is_object_id(flashcard_id):
        return _validation_error("userId and flashcardId required and must be valid")
    try:
        progress = progress_store.patch(flashcard_id, userId, body)
    except ValueError as e:
        return _validation_error(str(e))
    return {"progress": progress}


def main():
    """Run the API server."""
    import uvicorn

    port = int(os.environ.get("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)


if __name__ == "__main__":
    main()
