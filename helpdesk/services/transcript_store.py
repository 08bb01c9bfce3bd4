"""Client-side owner of the question/answer transcript.

``TranscriptStore`` keeps the ordered list of exchanges in sync with the remote
Q&A service. Questions are inserted optimistically and reconciled by exchange
id once the service answers, so overlapping submissions and out-of-order
responses always land on the exchange that asked for them.

All operations run on a single ``asyncio`` event loop; awaiting the network is
the only point where other operations may interleave. Failures never escape
the store: each one becomes either a user-visible message or a log entry.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass
import logging

from helpdesk.models.transcript import (
    AnswerFailed,
    AnswerReceived,
    Exchange,
    HistoryCleared,
    QuestionSubmitted,
    Transcript,
    TranscriptEvent,
    apply_event,
    history_loaded,
)
from helpdesk.services.qa_client import (
    AskRequestError,
    HistoryFetchError,
    QAService,
    QAServiceError,
)

logger = logging.getLogger(__name__)

EMPTY_QUESTION_MESSAGE = "Пожалуйста, введите сообщение"
ASK_FAILED_MESSAGE = "Не удалось получить ответ. Попробуйте ещё раз."

Listener = Callable[["TranscriptSnapshot"], None]


@dataclass(frozen=True, slots=True)
class TranscriptSnapshot:
    """Read-only view handed to the presentation layer."""

    exchanges: Transcript
    input_text: str = ""
    error: str | None = None
    selected_image: str | None = None
    history_panel_open: bool = False

    @property
    def modal_open(self) -> bool:
        return self.selected_image is not None


class TranscriptStore:
    """Maintain the transcript and mediate every state transition."""

    def __init__(
        self,
        service: QAService,
        *,
        empty_question_message: str = EMPTY_QUESTION_MESSAGE,
        ask_failed_message: str = ASK_FAILED_MESSAGE,
    ) -> None:
        self._service = service
        self._empty_question_message = empty_question_message
        self._ask_failed_message = ask_failed_message

        self._transcript: Transcript = ()
        self._input_text = ""
        self._error: str | None = None
        self._selected_image: str | None = None
        self._history_panel_open = False

        self._listeners: list[Listener] = []
        self._background: set[asyncio.Task[None]] = set()

    # ------------------------------------------------------------------
    # State access
    # ------------------------------------------------------------------
    @property
    def transcript(self) -> Transcript:
        return self._transcript

    @property
    def input_text(self) -> str:
        return self._input_text

    @property
    def error(self) -> str | None:
        return self._error

    @property
    def selected_image(self) -> str | None:
        return self._selected_image

    @property
    def history_panel_open(self) -> bool:
        return self._history_panel_open

    @property
    def pending_count(self) -> int:
        return sum(1 for exchange in self._transcript if exchange.is_pending)

    @property
    def has_pending(self) -> bool:
        return self.pending_count > 0

    def snapshot(self) -> TranscriptSnapshot:
        return TranscriptSnapshot(
            exchanges=self._transcript,
            input_text=self._input_text,
            error=self._error,
            selected_image=self._selected_image,
            history_panel_open=self._history_panel_open,
        )

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register ``listener`` for change notifications and return an unsubscriber."""

        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------
    async def initialize(self) -> None:
        """Replace the transcript with the history stored on the server."""

        try:
            entries = await self._service.fetch_history()
        except HistoryFetchError as exc:
            logger.warning(
                "History unavailable; starting with an empty transcript: %s",
                exc,
                extra={"event": "history.fetch_failed"},
            )
            return

        self._apply(history_loaded(entries))
        logger.info(
            "Transcript restored from history",
            extra={"event": "history.loaded", "exchange_count": len(self._transcript)},
        )

    async def submit_question(self, text: str) -> Exchange | None:
        """Append ``text`` as a pending exchange and reconcile it with the answer.

        Returns the exchange in its final state, or ``None`` when the input was
        rejected or the exchange was cleared before its answer arrived.
        """

        question = (text or "").strip()
        if not question:
            self._error = self._empty_question_message
            self._notify()
            return None

        self._error = None
        exchange = Exchange(question=question)
        self._transcript = apply_event(self._transcript, QuestionSubmitted(exchange))
        self._input_text = ""
        self._notify()

        try:
            response = await self._service.ask(question)
        except AskRequestError:
            self._error = self._ask_failed_message
            self._apply(AnswerFailed(exchange.id))
        else:
            self._apply(AnswerReceived(exchange.id, response.answer, tuple(response.images)))

        return self._find(exchange.id)

    def clear_history(self, *, confirmed: bool) -> bool:
        """Empty the transcript and schedule deletion of the server history.

        Nothing happens unless ``confirmed`` is true. Must be called from within
        a running event loop; the deletion is not awaited.
        """

        if not confirmed:
            return False

        self._history_panel_open = False
        self._apply(HistoryCleared())

        task = asyncio.get_running_loop().create_task(self._delete_remote_history())
        self._background.add(task)
        task.add_done_callback(self._forget_background_task)
        return True

    def set_input(self, text: str) -> None:
        self._input_text = text
        self._notify()

    def toggle_history_panel(self) -> bool:
        self._history_panel_open = not self._history_panel_open
        self._notify()
        return self._history_panel_open

    def select_image(self, ref: str) -> None:
        self._selected_image = ref
        self._notify()

    def dismiss_image(self) -> None:
        if self._selected_image is None:
            return
        self._selected_image = None
        self._notify()

    async def aclose(self) -> None:
        """Wait for scheduled history deletions to finish."""

        if self._background:
            await asyncio.gather(*tuple(self._background), return_exceptions=True)
        self._listeners.clear()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    async def _delete_remote_history(self) -> None:
        try:
            await self._service.delete_history()
        except QAServiceError as exc:
            logger.warning(
                "Server history could not be deleted: %s",
                exc,
                extra={"event": "history.delete_failed"},
            )

    def _forget_background_task(self, task: asyncio.Task[None]) -> None:
        self._background.discard(task)
        if task.cancelled() or task.exception() is None:
            return
        logger.error(
            "History deletion crashed",
            exc_info=task.exception(),
            extra={"event": "history.delete_crashed"},
        )

    def _apply(self, event: TranscriptEvent) -> None:
        self._transcript = apply_event(self._transcript, event)
        self._notify()

    def _find(self, exchange_id: str) -> Exchange | None:
        return next((item for item in self._transcript if item.id == exchange_id), None)

    def _notify(self) -> None:
        if not self._listeners:
            return
        snapshot = self.snapshot()
        for listener in tuple(self._listeners):
            listener(snapshot)


__all__ = [
    "ASK_FAILED_MESSAGE",
    "EMPTY_QUESTION_MESSAGE",
    "TranscriptSnapshot",
    "TranscriptStore",
]
