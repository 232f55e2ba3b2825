"""Tests for the OpenAI text generation client."""

from unittest.mock import AsyncMock, MagicMock

from src.config.settings import Settings
from src.services.llm_client import OpenAITextGenerator, build_chat_messages
from src.shared.intake_models import ChatTurn
from src.shared.types import MessageRole


def _completion(content: str | None) -> MagicMock:
    completion = MagicMock()
    completion.choices = [MagicMock()]
    completion.choices[0].message.content = content
    return completion


class TestBuildChatMessages:
    """Chat message list construction."""

    def test_system_first_then_history(self) -> None:
        """Roles map to the chat completions vocabulary."""
        messages = build_chat_messages(
            "You are Triage.",
            [
                ChatTurn(role=MessageRole.USER, content="I have a cough"),
                ChatTurn(role=MessageRole.MODEL, content="Since when?"),
            ],
        )
        assert messages == [
            {"role": "system", "content": "You are Triage."},
            {"role": "user", "content": "I have a cough"},
            {"role": "assistant", "content": "Since when?"},
        ]


class TestOpenAITextGenerator:
    """Completion request wiring."""

    async def test_generate_returns_content(self, settings: Settings) -> None:
        """Completion text is returned with configured model and temperature."""
        client = MagicMock()
        client.chat.completions.create = AsyncMock(return_value=_completion('{"reply": "hi"}'))

        generator = OpenAITextGenerator(settings, client=client)
        text = await generator.generate("prompt", [])

        assert text == '{"reply": "hi"}'
        kwargs = client.chat.completions.create.await_args.kwargs
        assert kwargs["model"] == settings.openai_model
        assert kwargs["temperature"] == settings.ai_temperature

    async def test_none_content_becomes_empty(self, settings: Settings) -> None:
        """A completion without content yields an empty string."""
        client = MagicMock()
        client.chat.completions.create = AsyncMock(return_value=_completion(None))

        assert await OpenAITextGenerator(settings, client=client).generate("p", []) == ""
