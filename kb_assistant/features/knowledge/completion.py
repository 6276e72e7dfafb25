"""
Knowledge feature: Completion client for the chat assistant.
"""

import logging
import re

from langchain_core.language_models import BaseChatModel
from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage

from kb_assistant.core.exceptions import ExternalServiceError
from kb_assistant.core.llm_provider import create_llm

logger = logging.getLogger(__name__)

EMPTY_ANSWER = "Не удалось получить ответ"  # "Could not get an answer"

# Reasoning models (qwen3, deepseek-r1) prepend their chain of thought
_THINK_BLOCK = re.compile(r"<think>.*?</think>\s*", re.DOTALL)


def extract_text(content) -> str:
    """Flatten LangChain message content (str or list of blocks) into text."""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = []
        for item in content:
            if isinstance(item, dict) and item.get("type", "text") == "text" and "text" in item:
                parts.append(item["text"])
            elif isinstance(item, str):
                parts.append(item)
        return "\n".join(parts)
    return str(content)


def to_langchain_messages(messages: list[dict]) -> list[BaseMessage]:
    converted: list[BaseMessage] = []
    for msg in messages:
        match msg["role"]:
            case "system":
                converted.append(SystemMessage(content=msg["content"]))
            case "assistant":
                converted.append(AIMessage(content=msg["content"]))
            case "user":
                converted.append(HumanMessage(content=msg["content"]))
            case other:
                raise ValueError(f"Unknown message role: {other}")
    return converted


class CompletionClient:
    """Single-shot chat completion: messages in, answer text out."""

    def __init__(self, llm: BaseChatModel | None = None):
        self._llm = llm

    def _get_llm(self, temperature: float, max_tokens: int) -> BaseChatModel:
        if self._llm is not None:
            return self._llm
        return create_llm(temperature=temperature, max_tokens=max_tokens)

    def complete(self, messages: list[dict], temperature: float, max_tokens: int) -> str:
        """Invoke the provider once (no tools, no streaming).

        Raises:
            ExternalServiceError: The provider call failed.
        """
        lc_messages = to_langchain_messages(messages)
        try:
            llm = self._get_llm(temperature, max_tokens)
            response = llm.invoke(lc_messages)
        except Exception as e:
            logger.error(f"❌ Completion request failed: {e}")
            raise ExternalServiceError("completion", str(e)) from e

        text = _THINK_BLOCK.sub("", extract_text(response.content)).strip()
        return text or EMPTY_ANSWER
