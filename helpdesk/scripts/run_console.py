"""Interactive console front end for the help desk transcript."""

from __future__ import annotations

import argparse
import asyncio
from collections.abc import Awaitable, Callable
import logging
import os
import sys
from typing import Sequence

from helpdesk.models.transcript import Exchange
from helpdesk.services.qa_client import QAServiceClient
from helpdesk.services.transcript_store import TranscriptSnapshot, TranscriptStore

LOGGER = logging.getLogger("helpdesk.console")

ReadLine = Callable[[str], Awaitable[str]]
Write = Callable[[str], None]

PROMPT = "> "
CONFIRM_CLEAR_PROMPT = "Очистить историю? [y/N] "
HELP_TEXT = (
    "Команды: /history: показать или скрыть очистку истории, /clear: очистить историю,\n"
    "/image <номер ответа> <номер изображения>: открыть изображение, /close: закрыть,\n"
    "/quit: выход. Любой другой текст отправляется как вопрос."
)


def _configure_logging() -> None:
    """Configure root logging based on ``HELPDESK_LOG_LEVEL``."""
    level_name = os.getenv("HELPDESK_LOG_LEVEL", "WARNING").upper()
    level = getattr(logging, level_name, logging.WARNING)
    logging.basicConfig(level=level, format="%(asctime)s [%(levelname)s] %(name)s: %(message)s")


def _parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Chat with the help desk assistant from the terminal")
    parser.add_argument(
        "--api-url",
        default=os.getenv("HELPDESK_API_URL"),
        help="Base URL of the Q&A service (default: env or http://localhost:8080)",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=None,
        help="Request timeout in seconds (default: env or no timeout)",
    )
    return parser.parse_args(argv)


def render_exchange(position: int, exchange: Exchange) -> list[str]:
    lines = [f"[{position}] Вопрос: {exchange.question}"]
    if exchange.is_pending:
        lines.append("    … ожидание ответа")
    elif exchange.is_failed:
        lines.append("    ✗ ответ не получен")
    else:
        lines.append(f"    Ответ: {exchange.answer}")
    for index, image in enumerate(exchange.images, start=1):
        lines.append(f"    [{position}.{index}] {image}")
    return lines


def render(snapshot: TranscriptSnapshot) -> str:
    """Render the transcript and transient UI state as plain text."""

    lines: list[str] = []
    for position, exchange in enumerate(snapshot.exchanges, start=1):
        lines.extend(render_exchange(position, exchange))
    if not snapshot.exchanges:
        lines.append("История пуста.")
    if snapshot.modal_open:
        lines.append(f"Открыто изображение: {snapshot.selected_image} (/close: закрыть)")
    if snapshot.history_panel_open:
        lines.append("Чтобы очистить историю, введите /clear")
    if snapshot.error:
        lines.append(f"! {snapshot.error}")
    return "\n".join(lines)


async def _read_stdin(prompt: str) -> str:
    return await asyncio.to_thread(input, prompt)


class ConsoleApp:
    """Translate console commands into transcript store operations."""

    def __init__(
        self,
        store: TranscriptStore,
        *,
        read_line: ReadLine = _read_stdin,
        write: Write = print,
    ) -> None:
        self._store = store
        self._read_line = read_line
        self._write = write
        self._submissions: set[asyncio.Task[None]] = set()

    async def run(self) -> None:
        await self._store.initialize()
        self._write(HELP_TEXT)
        self._write(render(self._store.snapshot()))

        while True:
            try:
                line = await self._read_line(PROMPT)
            except EOFError:
                break
            if not await self.handle(line):
                break

        await self.shutdown()

    async def handle(self, line: str) -> bool:
        """Execute one console line; return ``False`` when the session should end."""

        command, _, argument = line.strip().partition(" ")
        if command == "/quit":
            return False
        if command == "/clear":
            await self._clear()
        elif command == "/history":
            self._store.toggle_history_panel()
        elif command == "/image":
            self._select_image(argument)
        elif command == "/close":
            self._store.dismiss_image()
        elif command == "/help":
            self._write(HELP_TEXT)
            return True
        elif line.strip():
            self._store.set_input(line)
            await self._submit(line)
        else:
            await self._store.submit_question(line)
        self._write(render(self._store.snapshot()))
        return True

    async def wait_for_submissions(self) -> None:
        if self._submissions:
            await asyncio.gather(*tuple(self._submissions))

    async def shutdown(self) -> None:
        for task in tuple(self._submissions):
            task.cancel()
        await asyncio.gather(*tuple(self._submissions), return_exceptions=True)
        await self._store.aclose()

    async def _submit(self, text: str) -> None:
        task = asyncio.get_running_loop().create_task(self._submit_and_render(text))
        self._submissions.add(task)
        task.add_done_callback(self._submissions.discard)
        # Let the task append the pending exchange before the caller renders.
        await asyncio.sleep(0)

    async def _submit_and_render(self, text: str) -> None:
        await self._store.submit_question(text)
        self._write(render(self._store.snapshot()))

    async def _clear(self) -> None:
        try:
            answer = await self._read_line(CONFIRM_CLEAR_PROMPT)
        except EOFError:
            answer = ""
        self._store.clear_history(confirmed=answer.strip().lower() in {"y", "yes", "д", "да"})

    def _select_image(self, argument: str) -> None:
        parts = argument.split()
        try:
            exchange_number, image_number = (int(part) for part in parts)
        except ValueError:
            self._write("Использование: /image <номер ответа> <номер изображения>")
            return

        exchanges = self._store.transcript
        if not 1 <= exchange_number <= len(exchanges):
            self._write("Нет ответа с таким номером.")
            return
        images = exchanges[exchange_number - 1].images
        if not 1 <= image_number <= len(images):
            self._write("Нет изображения с таким номером.")
            return
        self._store.select_image(images[image_number - 1])


async def _run(args: argparse.Namespace) -> None:
    async with QAServiceClient(args.api_url, timeout=args.timeout) as client:
        store = TranscriptStore(client)
        await ConsoleApp(store).run()


def main(argv: Sequence[str] | None = None) -> int:
    _configure_logging()
    args = _parse_args(argv)
    LOGGER.info("Console session starting", extra={"event": "console.start"})

    try:
        asyncio.run(_run(args))
    except KeyboardInterrupt:
        return 130
    return 0


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    sys.exit(main())
