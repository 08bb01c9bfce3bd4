"""FastAPI service answering help desk questions and serving their history."""

from __future__ import annotations

from functools import lru_cache
import logging
import os
from pathlib import Path
import sqlite3

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.staticfiles import StaticFiles

from helpdesk.models.qa import AskRequest, AskResponse, HistoryEntry
from helpdesk.services.assistant import AssistantAgent, create_assistant_llm
from helpdesk.services.desk import HelpDesk
from helpdesk.services.knowledge import DocumentElement, KnowledgeBaseError, load_docx_elements
from helpdesk.services.qa_repository import LocalSQLiteQARepository, QARepository

logger = logging.getLogger(__name__)

IMAGES_DIR = Path(os.getenv("HELPDESK_IMAGES_DIR") or "images")

app = FastAPI(title="Help Desk Assistant")
app.mount("/images", StaticFiles(directory=str(IMAGES_DIR), check_dir=False), name="images")


def _build_debug_detail(exc: Exception) -> dict[str, str]:
    """Return a serialisable mapping describing ``exc`` for debugging."""

    message = str(exc).strip()
    return {
        "type": type(exc).__name__,
        "message": message or "No exception message provided.",
    }


@app.get("/healthz")
def healthz():
    return {"ok": True}


@lru_cache(maxsize=1)
def get_repository() -> QARepository:
    """Resolve the shared SQLite history repository."""

    return LocalSQLiteQARepository.from_env()


@lru_cache(maxsize=1)
def get_document_elements() -> tuple[DocumentElement, ...]:
    """Load the manual configured through ``HELPDESK_KNOWLEDGE_PATH`` once."""

    manual_path = os.getenv("HELPDESK_KNOWLEDGE_PATH")
    if not manual_path:
        logger.warning("HELPDESK_KNOWLEDGE_PATH is not set; every question will go unanswered", extra={"event": "knowledge.missing"})
        return ()
    try:
        return tuple(load_docx_elements(manual_path, IMAGES_DIR))
    except KnowledgeBaseError:
        logger.exception("Manual could not be loaded", extra={"event": "knowledge.load_failed"})
        return ()


@lru_cache(maxsize=1)
def _cached_assistant() -> AssistantAgent:
    return AssistantAgent(llm=create_assistant_llm())


def get_assistant() -> AssistantAgent:
    """FastAPI dependency returning the shared assistant agent."""

    try:
        return _cached_assistant()
    except (RuntimeError, ValueError) as exc:
        logger.exception("Assistant initialisation failed", extra={"event": "assistant.init"})
        raise HTTPException(
            status_code=503,
            detail={
                "message": "Assistant temporarily unavailable",
                "debug": _build_debug_detail(exc),
            },
        ) from exc


def get_desk(
    assistant: AssistantAgent = Depends(get_assistant),
    repository: QARepository = Depends(get_repository),
) -> HelpDesk:
    return HelpDesk(assistant=assistant, repository=repository, elements=get_document_elements())


@app.post("/ask", response_model=AskResponse)
def ask_endpoint(payload: AskRequest, request: Request, desk: HelpDesk = Depends(get_desk)) -> AskResponse:
    """Answer a question and record it in the history."""

    logger.info(
        "Question received",
        extra={"event": "ask.request", "question_length": len(payload.question)},
    )
    try:
        return desk.answer(payload.question, image_base_url=str(request.base_url))
    except (RuntimeError, ValueError, OSError) as exc:
        logger.exception("Assistant language model unavailable", extra={"event": "ask.error", "reason": "llm"})
        raise HTTPException(
            status_code=503,
            detail={
                "message": "Assistant language model unavailable",
                "debug": _build_debug_detail(exc),
            },
        ) from exc


@app.get("/history", response_model=list[HistoryEntry])
def history_endpoint(repository: QARepository = Depends(get_repository)) -> list[HistoryEntry]:
    """Return every recorded exchange, oldest first."""

    try:
        return repository.load()
    except sqlite3.Error as exc:
        logger.exception("History could not be read", extra={"event": "history.read_failed"})
        raise HTTPException(status_code=500, detail="History could not be read") from exc


@app.post("/deleteqa")
def delete_history_endpoint(repository: QARepository = Depends(get_repository)) -> dict[str, str]:
    """Remove every recorded exchange."""

    try:
        repository.clear()
    except sqlite3.Error as exc:
        logger.exception("History could not be cleared", extra={"event": "history.clear_failed"})
        raise HTTPException(status_code=500, detail="History could not be cleared") from exc
    return {"message": "History cleared"}
