"""Assistant agent that answers questions about the application manual."""
from __future__ import annotations

from dataclasses import dataclass, field
import os
from typing import Any, Sequence

from langchain_community.chat_models import ChatOllama
from langchain_core.prompts import ChatPromptTemplate


_DEFAULT_SYSTEM_INSTRUCTIONS = (
    "Ты — умный ассистент, помогающий пользователям работать с приложением."
    " Отвечай только на вопросы, связанные с документацией. Обрати внимание, что в"
    " документации могут быть изображения, связанные с текстом. Если вопрос не относится"
    " к документации, ответь: \"Такой информации нет, вы можете обратиться к разработчику.\""
)

NO_ANSWER_TEXT = "Ответ не получен"


@dataclass(slots=True)
class AssistantAgent:
    """Answer user questions with a chat model grounded on documentation excerpts."""

    llm: Any
    system_instructions: str = _DEFAULT_SYSTEM_INSTRUCTIONS
    _prompt: ChatPromptTemplate = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self._prompt = ChatPromptTemplate.from_messages(
            [
                ("system", "{system_instructions}"),
                ("human", "Документация:\n{context}"),
                ("human", "Вопрос пользователя: {question}"),
            ]
        )

    def ask(self, question: str, context: str) -> str:
        """Answer ``question`` using ``context`` as the only source of truth."""

        prompt_value = self._prompt.invoke(
            {
                "system_instructions": self.system_instructions,
                "context": context,
                "question": question.strip(),
            }
        )
        response = self._invoke_llm(prompt_value)
        text = self._extract_response_text(response).strip()
        return text or NO_ANSWER_TEXT

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _invoke_llm(self, prompt_value: Any) -> Any:
        messages = prompt_value.to_messages() if hasattr(prompt_value, "to_messages") else prompt_value

        if hasattr(self.llm, "invoke"):
            return self.llm.invoke(messages)
        if callable(self.llm):
            return self.llm(messages)
        raise TypeError("LLM implementation must provide an 'invoke' method or be callable.")

    def _extract_response_text(self, response: Any) -> str:
        if response is None:
            return ""
        content = getattr(response, "content", response)
        if isinstance(content, list):
            return "".join(str(part) for part in content)
        return str(content)


@dataclass(slots=True)
class LocalAssistantResponder:
    """Deterministic responder for offline development and testing."""

    def invoke(self, messages: Any) -> str:
        question = _extract_last_human_message(messages)
        return (
            "Офлайн-ответ ассистента: языковая модель недоступна.\n"
            f"Получен вопрос: {question or 'вопрос не указан'}"
        )

    def __call__(self, messages: Any) -> str:  # pragma: no cover - convenience
        return self.invoke(messages)


def create_assistant_llm() -> Any:
    """Construct the chat model configured through the environment."""

    provider = (os.getenv("HELPDESK_LLM_PROVIDER") or "ollama").strip().lower()

    if provider == "ollama":
        model = os.getenv("HELPDESK_OLLAMA_MODEL") or "llama3.1:8b"
        kwargs: dict[str, Any] = {"model": model, "temperature": _env_float("HELPDESK_MODEL_TEMPERATURE", 0.6)}
        base_url = os.getenv("HELPDESK_OLLAMA_URL")
        if base_url:
            kwargs["base_url"] = base_url.rstrip("/")
        return ChatOllama(**kwargs)

    return LocalAssistantResponder()


def _env_float(variable: str, default: float) -> float:
    raw = os.getenv(variable)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise RuntimeError(f"{variable} must be a number, got {raw!r}") from exc


def _extract_last_human_message(messages: Any) -> str:
    if isinstance(messages, str):
        return messages.strip()

    if hasattr(messages, "to_messages"):
        messages = messages.to_messages()  # type: ignore[assignment]

    if isinstance(messages, Sequence):
        for message in reversed(messages):
            if isinstance(message, dict):
                role = message.get("role") or message.get("type")
                content = message.get("content")
            else:
                role = getattr(message, "type", getattr(message, "role", ""))
                content = getattr(message, "content", "")

            if role in {"human", "user"}:
                if isinstance(content, str):
                    return content.strip()
                if isinstance(content, list):
                    return "".join(str(part) for part in content).strip()
    return ""


__all__ = ["AssistantAgent", "LocalAssistantResponder", "NO_ANSWER_TEXT", "create_assistant_llm"]
