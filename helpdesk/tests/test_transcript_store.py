from __future__ import annotations

import asyncio
import logging

import pytest

from conftest import FakeQAService, settle
from helpdesk.models.qa import AskResponse, HistoryEntry
from helpdesk.models.transcript import Exchange, ExchangeStatus
from helpdesk.services.qa_client import QAServiceError
from helpdesk.services.transcript_store import (
    ASK_FAILED_MESSAGE,
    EMPTY_QUESTION_MESSAGE,
    TranscriptSnapshot,
    TranscriptStore,
)


def _fields(exchanges: tuple[Exchange, ...]) -> list[dict[str, object]]:
    return [exchange.as_dict() for exchange in exchanges]


def test_submit_question_reconciles_answer_and_images() -> None:
    service = FakeQAService(answers={"What is X?": AskResponse(answer="X is Y", images=["a.png"])})
    store = TranscriptStore(service)

    exchange = asyncio.run(store.submit_question("What is X?"))

    assert _fields(store.transcript) == [{"question": "What is X?", "answer": "X is Y", "images": ["a.png"]}]
    assert exchange is not None and exchange.status is ExchangeStatus.ANSWERED
    assert store.error is None
    assert service.asked == ["What is X?"]


def test_sequential_submissions_keep_submission_order() -> None:
    service = FakeQAService()
    store = TranscriptStore(service)
    questions = [f"Question number {index}" for index in range(5)]

    async def scenario() -> None:
        for question in questions:
            await store.submit_question(question)

    asyncio.run(scenario())

    assert [exchange.question for exchange in store.transcript] == questions
    assert [exchange.answer for exchange in store.transcript] == [f"answer to {q}" for q in questions]
    assert all(exchange.status is ExchangeStatus.ANSWERED for exchange in store.transcript)


@pytest.mark.parametrize("text", ["", "   ", "\n\t "])
def test_blank_submission_sets_fixed_error_without_mutation(text: str) -> None:
    service = FakeQAService()
    store = TranscriptStore(service)
    asyncio.run(store.submit_question("Existing question"))

    result = asyncio.run(store.submit_question(text))

    assert result is None
    assert len(store.transcript) == 1
    assert store.error == EMPTY_QUESTION_MESSAGE
    assert service.asked == ["Existing question"]


def test_error_is_cleared_by_next_valid_submission() -> None:
    store = TranscriptStore(FakeQAService())

    async def scenario() -> None:
        await store.submit_question("")
        assert store.error == EMPTY_QUESTION_MESSAGE
        await store.submit_question("How do I log in?")

    asyncio.run(scenario())

    assert store.error is None


def test_question_is_trimmed_before_sending() -> None:
    service = FakeQAService()
    store = TranscriptStore(service)

    asyncio.run(store.submit_question("  How do I export a report?  "))

    assert service.asked == ["How do I export a report?"]
    assert store.transcript[0].question == "How do I export a report?"


def test_initialize_replaces_local_transcript_with_history() -> None:
    history = [
        HistoryEntry(question="Hi", answer="Hello", images=[]),
        HistoryEntry(question="Where is the menu?", answer="Top left", images=["menu.png"]),
    ]
    service = FakeQAService(history=history)
    store = TranscriptStore(service)

    async def scenario() -> None:
        await store.submit_question("Local question")
        await store.initialize()

    asyncio.run(scenario())

    assert _fields(store.transcript) == [
        {"question": "Hi", "answer": "Hello", "images": []},
        {"question": "Where is the menu?", "answer": "Top left", "images": ["menu.png"]},
    ]
    assert all(exchange.status is ExchangeStatus.ANSWERED for exchange in store.transcript)


def test_initialize_with_single_history_entry() -> None:
    store = TranscriptStore(FakeQAService(history=[HistoryEntry(question="Hi", answer="Hello", images=[])]))

    asyncio.run(store.initialize())

    assert _fields(store.transcript) == [{"question": "Hi", "answer": "Hello", "images": []}]


def test_initialize_failure_is_logged_not_surfaced(caplog: pytest.LogCaptureFixture) -> None:
    service = FakeQAService()
    service.fail_history = True
    store = TranscriptStore(service)

    with caplog.at_level(logging.WARNING, logger="helpdesk.services.transcript_store"):
        asyncio.run(store.initialize())

    assert store.transcript == ()
    assert store.error is None
    assert any(getattr(record, "event", None) == "history.fetch_failed" for record in caplog.records)


def test_failed_ask_keeps_question_and_sets_error(caplog: pytest.LogCaptureFixture) -> None:
    service = FakeQAService()
    service.fail_ask.add("Why is it broken?")
    store = TranscriptStore(service)

    with caplog.at_level(logging.DEBUG, logger="helpdesk.services.transcript_store"):
        exchange = asyncio.run(store.submit_question("Why is it broken?"))

    assert _fields(store.transcript) == [{"question": "Why is it broken?", "answer": "", "images": []}]
    assert exchange is not None and exchange.status is ExchangeStatus.FAILED
    assert store.error == ASK_FAILED_MESSAGE
    assert not [record for record in caplog.records if record.name == "helpdesk.services.transcript_store"]


def test_exchange_is_pending_and_input_cleared_before_answer_arrives() -> None:
    service = FakeQAService(manual=True)
    store = TranscriptStore(service)

    async def scenario() -> None:
        store.set_input("How do I print?")
        task = asyncio.create_task(store.submit_question(store.input_text))
        await settle()

        assert store.input_text == ""
        assert len(store.transcript) == 1
        assert store.transcript[0].is_pending
        assert store.has_pending

        service.resolve("How do I print?", "Press Ctrl+P")
        await task

    asyncio.run(scenario())

    assert store.transcript[0].answer == "Press Ctrl+P"
    assert not store.has_pending


def test_overlapping_submissions_reconcile_by_identity() -> None:
    service = FakeQAService(manual=True)
    store = TranscriptStore(service)

    async def scenario() -> None:
        first = asyncio.create_task(store.submit_question("First question"))
        second = asyncio.create_task(store.submit_question("Second question"))
        await settle()
        assert store.pending_count == 2

        service.resolve("Second question", "second answer", ["2.png"])
        await second
        service.resolve("First question", "first answer", ["1.png"])
        await first

    asyncio.run(scenario())

    assert _fields(store.transcript) == [
        {"question": "First question", "answer": "first answer", "images": ["1.png"]},
        {"question": "Second question", "answer": "second answer", "images": ["2.png"]},
    ]


def test_clear_history_requires_confirmation() -> None:
    service = FakeQAService()
    store = TranscriptStore(service)

    async def scenario() -> bool:
        await store.submit_question("Keep me around")
        cleared = store.clear_history(confirmed=False)
        await settle()
        return cleared

    assert asyncio.run(scenario()) is False
    assert len(store.transcript) == 1
    assert service.delete_calls == 0


@pytest.mark.parametrize("delete_fails", [False, True])
def test_clear_history_empties_transcript_immediately(delete_fails: bool) -> None:
    service = FakeQAService()
    service.fail_delete = delete_fails
    store = TranscriptStore(service)

    async def scenario() -> None:
        await store.submit_question("Something to forget")
        store.toggle_history_panel()

        assert store.clear_history(confirmed=True) is True
        assert store.transcript == ()
        assert store.history_panel_open is False

        await store.aclose()

    asyncio.run(scenario())

    assert store.transcript == ()
    assert store.error is None
    assert service.delete_calls == 1


def test_delete_failure_is_logged(caplog: pytest.LogCaptureFixture) -> None:
    service = FakeQAService()
    service.fail_delete = True
    store = TranscriptStore(service)

    async def scenario() -> None:
        store.clear_history(confirmed=True)
        await store.aclose()

    with caplog.at_level(logging.WARNING, logger="helpdesk.services.transcript_store"):
        asyncio.run(scenario())

    assert [getattr(record, "event", None) for record in caplog.records] == ["history.delete_failed"]


class _DeleteRaises(FakeQAService):
    def __init__(self, error: Exception) -> None:
        super().__init__()
        self.error = error

    async def delete_history(self) -> None:
        self.delete_calls += 1
        await asyncio.sleep(0)
        raise self.error


def test_any_service_error_on_delete_is_logged(caplog: pytest.LogCaptureFixture) -> None:
    store = TranscriptStore(_DeleteRaises(QAServiceError("connection reset")))

    async def scenario() -> None:
        store.clear_history(confirmed=True)
        await store.aclose()

    with caplog.at_level(logging.WARNING, logger="helpdesk.services.transcript_store"):
        asyncio.run(scenario())

    assert store.transcript == ()
    assert [getattr(record, "event", None) for record in caplog.records] == ["history.delete_failed"]


def test_unexpected_delete_crash_does_not_break_teardown(caplog: pytest.LogCaptureFixture) -> None:
    service = _DeleteRaises(RuntimeError("transport closed"))
    store = TranscriptStore(service)

    async def scenario() -> None:
        store.clear_history(confirmed=True)
        await store.aclose()

    with caplog.at_level(logging.WARNING, logger="helpdesk.services.transcript_store"):
        asyncio.run(scenario())

    assert service.delete_calls == 1
    crashed = [record for record in caplog.records if getattr(record, "event", None) == "history.delete_crashed"]
    assert len(crashed) == 1
    assert crashed[0].exc_info is not None


def test_answer_arriving_after_clear_is_dropped() -> None:
    service = FakeQAService(manual=True)
    store = TranscriptStore(service)

    async def scenario() -> Exchange | None:
        task = asyncio.create_task(store.submit_question("Slow question"))
        await settle()
        store.clear_history(confirmed=True)
        service.resolve("Slow question", "late answer")
        result = await task
        await store.aclose()
        return result

    assert asyncio.run(scenario()) is None
    assert store.transcript == ()


def test_select_and_dismiss_image_do_not_touch_transcript() -> None:
    service = FakeQAService()
    store = TranscriptStore(service)
    asyncio.run(store.submit_question("Show me the screen"))
    before = store.transcript

    store.dismiss_image()
    assert store.selected_image is None

    store.select_image("http://host/images/screen.png")
    assert store.snapshot().modal_open
    assert store.selected_image == "http://host/images/screen.png"

    store.dismiss_image()
    store.dismiss_image()
    assert store.selected_image is None
    assert store.transcript is before
    assert service.asked == ["Show me the screen"]


def test_subscribers_receive_snapshots_until_unsubscribed() -> None:
    store = TranscriptStore(FakeQAService())
    seen: list[TranscriptSnapshot] = []
    unsubscribe = store.subscribe(seen.append)

    store.set_input("draft")
    store.select_image("a.png")
    unsubscribe()
    store.dismiss_image()

    assert [snapshot.input_text for snapshot in seen] == ["draft", "draft"]
    assert seen[-1].selected_image == "a.png"
