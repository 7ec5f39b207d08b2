"""
Shared LLM helpers.

This module centralizes the OpenAI-compatible chat completion call so
classification and OCR reuse the same client setup, retry behavior and
logging patterns.
"""

import openai

from .config import Settings
from .utils import retry

RETRYABLE_OPENAI_EXCEPTIONS = (
    openai.APIConnectionError,
    openai.APITimeoutError,
    openai.RateLimitError,
    openai.InternalServerError,
)


def build_openai_client(settings: Settings) -> openai.OpenAI:
    """Create a client for the configured OpenAI-compatible endpoint."""
    return openai.OpenAI(
        api_key=settings.LLM_API_KEY,
        base_url=settings.LLM_BASE_URL,
        timeout=settings.REQUEST_TIMEOUT,
        # Retries are handled by our own decorator.
        max_retries=0,
    )


class OpenAIChatMixin:
    """
    Mixin providing a retried OpenAI-compatible chat completion call.

    The mixin expects ``self.client`` to be an ``openai.OpenAI`` instance and
    ``self.settings`` to expose ``MAX_RETRIES`` and
    ``MAX_RETRY_BACKOFF_SECONDS`` for the retry decorator.
    """

    @retry(retryable_exceptions=RETRYABLE_OPENAI_EXCEPTIONS)
    def _create_completion(self, **kwargs):
        """Call the OpenAI-compatible chat completion API with retries."""
        return self.client.chat.completions.create(**kwargs)
