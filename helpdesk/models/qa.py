"""Wire payloads exchanged between the transcript client and the Q&A service."""

from __future__ import annotations

from pydantic import BaseModel, Field, field_validator


class AskRequest(BaseModel):
    """Body of ``POST /ask``."""

    question: str = Field(..., description="The question typed by the user.")

    @field_validator("question")
    @classmethod
    def _ensure_question_not_empty(cls, value: str) -> str:
        cleaned = value.strip()
        if not cleaned:
            raise ValueError("Question must not be empty.")
        return cleaned


class AskResponse(BaseModel):
    """Answer returned for a single question."""

    answer: str = Field(..., description="The assistant's answer text.")
    images: list[str] = Field(default_factory=list, description="Image URLs that illustrate the answer.")

    @field_validator("images", mode="before")
    @classmethod
    def _coerce_missing_images(cls, value: object) -> object:
        return [] if value is None else value


class HistoryEntry(BaseModel):
    """One persisted question/answer pair as served by ``GET /history``."""

    question: str
    answer: str = ""
    images: list[str] = Field(default_factory=list)
    id: int | None = None
    date: str | None = None

    @field_validator("images", mode="before")
    @classmethod
    def _coerce_missing_images(cls, value: object) -> object:
        return [] if value is None else value


__all__ = ["AskRequest", "AskResponse", "HistoryEntry"]
