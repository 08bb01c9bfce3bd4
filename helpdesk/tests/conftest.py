"""Shared fixtures and fakes for the test suite."""

from __future__ import annotations

import asyncio
from collections.abc import Iterable

import pytest

from helpdesk.models.qa import AskResponse, HistoryEntry
from helpdesk.services.qa_client import AskRequestError, HistoryDeleteError, HistoryFetchError


class FakeQAService:
    """In-memory stand-in for the remote Q&A service.

    Answers are either returned immediately from ``answers`` or, when
    ``manual`` is set, held until the test resolves the matching future.
    """

    def __init__(
        self,
        *,
        history: Iterable[HistoryEntry] = (),
        answers: dict[str, AskResponse] | None = None,
        manual: bool = False,
    ) -> None:
        self.history = list(history)
        self.answers = dict(answers or {})
        self.manual = manual
        self.asked: list[str] = []
        self.delete_calls = 0
        self.fail_history = False
        self.fail_ask: set[str] = set()
        self.fail_delete = False
        self.pending: dict[str, asyncio.Future[AskResponse]] = {}

    async def fetch_history(self) -> list[HistoryEntry]:
        await asyncio.sleep(0)
        if self.fail_history:
            raise HistoryFetchError("history endpoint unreachable")
        return list(self.history)

    async def ask(self, question: str) -> AskResponse:
        self.asked.append(question)
        if self.manual:
            future: asyncio.Future[AskResponse] = asyncio.get_running_loop().create_future()
            self.pending[question] = future
            return await future
        await asyncio.sleep(0)
        if question in self.fail_ask:
            raise AskRequestError("service returned 500")
        return self.answers.get(question, AskResponse(answer=f"answer to {question}", images=[]))

    async def delete_history(self) -> None:
        self.delete_calls += 1
        await asyncio.sleep(0)
        if self.fail_delete:
            raise HistoryDeleteError("delete endpoint unreachable")
        self.history.clear()

    def resolve(self, question: str, answer: str, images: list[str] | None = None) -> None:
        self.pending.pop(question).set_result(AskResponse(answer=answer, images=images or []))

    def reject(self, question: str) -> None:
        self.pending.pop(question).set_exception(AskRequestError("service returned 502"))


@pytest.fixture()
def service() -> FakeQAService:
    return FakeQAService()


async def settle() -> None:
    """Let scheduled tasks run until they block again."""

    for _ in range(5):
        await asyncio.sleep(0)
