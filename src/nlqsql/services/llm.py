import logging
from typing import List, Protocol, runtime_checkable

from openai import AsyncOpenAI, OpenAIError

from ..errors import LLMServiceError
from ..settings import get_settings

logger = logging.getLogger(__name__)


@runtime_checkable
class LanguageModelClient(Protocol):
    """Text in, text out. Implementations raise LLMServiceError on failure."""

    async def complete(self, prompt: str, system_prompt: str | None = None) -> str:
        ...


class OpenAIChatClient:
    """LanguageModelClient backed by an OpenAI-compatible chat completions endpoint."""

    def __init__(
        self,
        client: AsyncOpenAI,
        model: str,
        temperature: float = 0.0,
    ) -> None:
        self._client = client
        self._model = model
        self._temperature = temperature

    async def complete(self, prompt: str, system_prompt: str | None = None) -> str:
        """Send ``prompt`` as a single user message and return the reply text.

        Args:
            prompt: Fully composed prompt text.
            system_prompt: Optional system message sent before the prompt.

        Returns:
            str: Completion text (empty string if the model returned none).

        Raises:
            LLMServiceError: The request failed, timed out or returned no choices.
        """
        messages: List[dict] = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": prompt})

        try:
            response = await self._client.chat.completions.create(
                model=self._model,
                messages=messages,
                temperature=self._temperature,
            )
        except (OpenAIError, TimeoutError, ConnectionError) as e:
            logger.error("LLM request failed: %s", e)
            raise LLMServiceError(f"Language model request failed: {e}") from e

        try:
            return response.choices[0].message.content or ""
        except (AttributeError, IndexError) as e:
            logger.error("LLM response parse failed: %s", e)
            raise LLMServiceError(f"Unexpected language model response: {e}") from e


def make_llm_client() -> OpenAIChatClient:
    """Construct the default OpenAI chat client from settings."""
    settings = get_settings()
    return OpenAIChatClient(
        client=AsyncOpenAI(
            api_key=settings.openai_api_key,
            base_url=settings.openai_base_url,
            timeout=settings.llm_request_timeout_seconds,
        ),
        model=settings.model,
        temperature=settings.temperature,
    )
