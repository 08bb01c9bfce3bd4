"""Transcript records and the pure state transitions applied to them.

The transcript is an immutable tuple of :class:`Exchange` objects. Every change
is expressed as an event and applied through :func:`apply_event`, which never
performs I/O. :class:`~helpdesk.services.transcript_store.TranscriptStore` is
the only caller that pairs these transitions with network requests.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Union
from uuid import uuid4


class ExchangeStatus(str, Enum):
    PENDING = "pending"
    ANSWERED = "answered"
    FAILED = "failed"


def _new_exchange_id() -> str:
    return uuid4().hex


@dataclass(frozen=True, slots=True)
class Exchange:
    """A single question together with the answer and images returned for it."""

    question: str
    answer: str = ""
    images: tuple[str, ...] = ()
    status: ExchangeStatus = ExchangeStatus.PENDING
    id: str = field(default_factory=_new_exchange_id)

    @property
    def is_pending(self) -> bool:
        return self.status is ExchangeStatus.PENDING

    @property
    def is_failed(self) -> bool:
        return self.status is ExchangeStatus.FAILED

    @classmethod
    def from_history_entry(cls, entry: Mapping[str, Any] | Any) -> "Exchange":
        """Build an answered exchange from a history payload or model."""

        if isinstance(entry, Mapping):
            question = entry.get("question") or ""
            answer = entry.get("answer") or ""
            images = entry.get("images") or ()
        else:
            question = getattr(entry, "question", "") or ""
            answer = getattr(entry, "answer", "") or ""
            images = getattr(entry, "images", ()) or ()
        return cls(
            question=str(question),
            answer=str(answer),
            images=tuple(str(image) for image in images),
            status=ExchangeStatus.ANSWERED,
        )

    def as_dict(self) -> dict[str, object]:
        """Serialise the exchange in the shape used by the history endpoint."""

        return {
            "question": self.question,
            "answer": self.answer,
            "images": list(self.images),
        }


Transcript = tuple[Exchange, ...]


@dataclass(frozen=True, slots=True)
class HistoryLoaded:
    exchanges: tuple[Exchange, ...]


@dataclass(frozen=True, slots=True)
class QuestionSubmitted:
    exchange: Exchange


@dataclass(frozen=True, slots=True)
class AnswerReceived:
    exchange_id: str
    answer: str
    images: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class AnswerFailed:
    exchange_id: str


@dataclass(frozen=True, slots=True)
class HistoryCleared:
    pass


TranscriptEvent = Union[HistoryLoaded, QuestionSubmitted, AnswerReceived, AnswerFailed, HistoryCleared]


def history_loaded(entries: Iterable[Mapping[str, Any] | Any]) -> HistoryLoaded:
    """Convenience constructor turning raw history entries into an event."""

    return HistoryLoaded(exchanges=tuple(Exchange.from_history_entry(entry) for entry in entries))


def apply_event(transcript: Transcript, event: TranscriptEvent) -> Transcript:
    """Return the transcript that results from applying ``event``.

    Reconciliation events target an exchange by id. Events that reference an
    exchange which no longer exists, or which already left the pending state,
    leave the transcript untouched.
    """

    if isinstance(event, HistoryLoaded):
        return tuple(event.exchanges)
    if isinstance(event, HistoryCleared):
        return ()
    if isinstance(event, QuestionSubmitted):
        return (*transcript, event.exchange)
    if isinstance(event, AnswerReceived):
        return _resolve(
            transcript,
            event.exchange_id,
            answer=event.answer,
            images=tuple(event.images),
            status=ExchangeStatus.ANSWERED,
        )
    if isinstance(event, AnswerFailed):
        return _resolve(transcript, event.exchange_id, status=ExchangeStatus.FAILED)
    raise TypeError(f"Unsupported transcript event: {type(event).__name__}")


def _resolve(transcript: Transcript, exchange_id: str, **changes: Any) -> Transcript:
    for index, exchange in enumerate(transcript):
        if exchange.id != exchange_id:
            continue
        if not exchange.is_pending:
            return transcript
        updated = replace(exchange, **changes)
        return (*transcript[:index], updated, *transcript[index + 1 :])
    return transcript


__all__ = [
    "AnswerFailed",
    "AnswerReceived",
    "Exchange",
    "ExchangeStatus",
    "HistoryCleared",
    "HistoryLoaded",
    "QuestionSubmitted",
    "Transcript",
    "TranscriptEvent",
    "apply_event",
    "history_loaded",
]
