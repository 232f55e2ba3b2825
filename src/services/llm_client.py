"""Text generation client for intake persona turns.

Uses the OpenAI chat completions API. The intake engine only needs raw
text back; structure is recovered by src.shared.response_validator.
"""

import logging
from typing import Protocol

from openai import AsyncOpenAI

from src.config.settings import Settings, get_settings
from src.shared.intake_models import ChatTurn
from src.shared.types import MessageRole

logger = logging.getLogger(__name__)

_ROLE_MAP = {
    MessageRole.USER: "user",
    MessageRole.MODEL: "assistant",
}


class TextGenerator(Protocol):
    """Anything that turns a system prompt and chat history into text."""

    async def generate(self, system_prompt: str, messages: list[ChatTurn]) -> str: ...


def build_chat_messages(
    system_prompt: str,
    messages: list[ChatTurn],
) -> list[dict[str, str]]:
    """Build the chat completions message list.

    Args:
        system_prompt: Persona system prompt.
        messages: Conversation so far, oldest first.

    Returns:
        List of {"role", "content"} dicts.
    """
    chat = [{"role": "system", "content": system_prompt}]
    chat.extend(
        {"role": _ROLE_MAP[MessageRole(turn.role)], "content": turn.content}
        for turn in messages
    )
    return chat


class OpenAITextGenerator:
    """TextGenerator backed by the OpenAI async client."""

    def __init__(
        self,
        settings: Settings | None = None,
        client: AsyncOpenAI | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._client = client or AsyncOpenAI(
            api_key=self._settings.openai_api_key,
            base_url=self._settings.openai_base_url,
        )

    async def generate(self, system_prompt: str, messages: list[ChatTurn]) -> str:
        """Request one completion.

        Args:
            system_prompt: Persona system prompt.
            messages: Conversation so far, oldest first.

        Returns:
            Completion text; empty string when the model returned none.
        """
        completion = await self._client.chat.completions.create(
            model=self._settings.openai_model,
            messages=build_chat_messages(system_prompt, messages),
            temperature=self._settings.ai_temperature,
        )
        content = completion.choices[0].message.content
        logger.info(
            "llm_completion_received",
            extra={
                "model": self._settings.openai_model,
                "chars": len(content or ""),
            },
        )
        return content or ""
