"""Asynchronous HTTP client for the remote Q&A and history service."""

from __future__ import annotations

from collections.abc import Mapping
import logging
import os
from typing import Any, Protocol

import httpx
from pydantic import TypeAdapter, ValidationError

from helpdesk.models.qa import AskRequest, AskResponse, HistoryEntry

logger = logging.getLogger(__name__)

_HISTORY_ADAPTER = TypeAdapter(list[HistoryEntry])


class QAServiceError(RuntimeError):
    """Base class for failures talking to the Q&A service."""


class HistoryFetchError(QAServiceError):
    """Raised when the stored history cannot be retrieved."""


class AskRequestError(QAServiceError):
    """Raised when a question could not be answered by the service."""


class HistoryDeleteError(QAServiceError):
    """Raised when the stored history could not be deleted."""


class QAService(Protocol):
    """Contract consumed by :class:`~helpdesk.services.transcript_store.TranscriptStore`."""

    async def fetch_history(self) -> list[HistoryEntry]:
        """Return the stored exchanges in chronological order."""

    async def ask(self, question: str) -> AskResponse:
        """Submit ``question`` and return the service's answer."""

    async def delete_history(self) -> None:
        """Remove every stored exchange."""


class QAServiceClient:
    """Talk to the Q&A service over HTTP using ``httpx``."""

    _DEFAULT_BASE_URL = "http://localhost:8080"
    _BASE_URL_ENV_VAR = "HELPDESK_API_URL"
    _TIMEOUT_ENV_VAR = "HELPDESK_API_TIMEOUT"
    _DEFAULT_HEADERS: Mapping[str, str] = {
        "Accept": "application/json",
        "User-Agent": "HelpDeskTranscript/1.0",
    }

    HISTORY_PATH = "/history"
    ASK_PATH = "/ask"
    DELETE_PATH = "/deleteqa"

    def __init__(
        self,
        base_url: str | None = None,
        *,
        timeout: float | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.base_url = (base_url or os.getenv(self._BASE_URL_ENV_VAR) or self._DEFAULT_BASE_URL).rstrip("/")
        self._timeout = self._resolve_timeout(timeout)
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            base_url=self.base_url,
            headers=dict(self._DEFAULT_HEADERS),
            timeout=httpx.Timeout(self._timeout),
        )

    async def __aenter__(self) -> "QAServiceClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def fetch_history(self) -> list[HistoryEntry]:
        try:
            response = await self._client.get(self._url(self.HISTORY_PATH))
            response.raise_for_status()
            payload = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise HistoryFetchError(f"Failed to fetch history: {exc}") from exc

        # The reference service answers ``null`` when nothing was stored yet.
        if payload is None:
            return []
        try:
            return _HISTORY_ADAPTER.validate_python(payload)
        except ValidationError as exc:
            raise HistoryFetchError(f"History payload is malformed: {exc}") from exc

    async def ask(self, question: str) -> AskResponse:
        try:
            body = AskRequest(question=question)
        except ValidationError as exc:
            raise AskRequestError("Question must not be empty.") from exc

        try:
            response = await self._client.post(self._url(self.ASK_PATH), json=body.model_dump())
            response.raise_for_status()
            payload = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise AskRequestError(f"Failed to ask question: {exc}") from exc

        try:
            return AskResponse.model_validate(payload)
        except ValidationError as exc:
            raise AskRequestError(f"Answer payload is malformed: {exc}") from exc

    async def delete_history(self) -> None:
        try:
            response = await self._client.post(self._url(self.DELETE_PATH))
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise HistoryDeleteError(f"Failed to delete history: {exc}") from exc
        logger.debug("History deleted on server", extra={"event": "history.deleted"})

    def _url(self, path: str) -> str:
        # Injected clients may not carry a base_url of their own.
        if self._owns_client:
            return path
        return f"{self.base_url}{path}"

    def _resolve_timeout(self, timeout: float | None) -> float | None:
        if timeout is not None:
            return timeout if timeout > 0 else None

        raw_timeout = os.getenv(self._TIMEOUT_ENV_VAR)
        if not raw_timeout:
            return None
        try:
            value = float(raw_timeout)
        except ValueError:
            logger.warning(
                "Invalid %s value %r; requests will not time out",
                self._TIMEOUT_ENV_VAR,
                raw_timeout,
                extra={"event": "client.timeout_invalid"},
            )
            return None
        return value if value > 0 else None


__all__ = [
    "AskRequestError",
    "HistoryDeleteError",
    "HistoryFetchError",
    "QAService",
    "QAServiceClient",
    "QAServiceError",
]
