"""Answer questions against the manual and record every exchange in history."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
import logging
from pathlib import PurePath
import sqlite3
from typing import Protocol

from helpdesk.models.qa import AskResponse, HistoryEntry
from helpdesk.services.knowledge import DocumentElement, find_relevant_context, is_invalid_question
from helpdesk.services.qa_repository import QARepository

logger = logging.getLogger(__name__)

INVALID_QUESTION_ANSWER = "Вопрос некорректный. Пожалуйста, уточните свой вопрос."
NO_INFORMATION_ANSWER = "Такой информации нет, вы можете обратиться к разработчику."


class SupportsAsk(Protocol):
    def ask(self, question: str, context: str) -> str:  # pragma: no cover - interface
        """Return an answer grounded in ``context``."""


@dataclass(slots=True)
class HelpDesk:
    """Orchestrate validation, context lookup, answering and history recording."""

    assistant: SupportsAsk
    repository: QARepository
    elements: Sequence[DocumentElement] = ()

    def answer(self, question: str, *, image_base_url: str) -> AskResponse:
        """Answer ``question``; image URLs are rooted at ``image_base_url``.

        Assistant failures propagate to the caller; nothing is recorded for them.
        """

        if is_invalid_question(question):
            logger.info("Rejected invalid question", extra={"event": "desk.invalid_question"})
            return self._record(question, AskResponse(answer=INVALID_QUESTION_ANSWER))

        context = find_relevant_context(question, self.elements)
        if not context.found:
            logger.info("No documentation matched question", extra={"event": "desk.no_context"})
            return self._record(question, AskResponse(answer=NO_INFORMATION_ANSWER))

        answer_text = self.assistant.ask(question, context.text)
        images = _image_urls(context.image_paths, image_base_url)
        logger.info(
            "Question answered",
            extra={"event": "desk.answered", "image_count": len(images)},
        )
        return self._record(question, AskResponse(answer=answer_text, images=images))

    def _record(self, question: str, response: AskResponse) -> AskResponse:
        entry = HistoryEntry(question=question, answer=response.answer, images=list(response.images))
        try:
            self.repository.save(entry)
        except sqlite3.Error:
            logger.exception("Failed to record exchange in history", extra={"event": "desk.history_save_failed"})
        return response


def _image_urls(paths: Sequence[str], base_url: str) -> list[str]:
    root = base_url.rstrip("/")
    urls: list[str] = []
    for path in paths:
        url = f"{root}/images/{PurePath(path).name}"
        if url not in urls:
            urls.append(url)
    return urls


__all__ = ["HelpDesk", "INVALID_QUESTION_ANSWER", "NO_INFORMATION_ANSWER"]
