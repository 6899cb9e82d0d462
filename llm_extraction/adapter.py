"""LLM adapters for structured content extraction.

Provides a base interface and concrete adapters for OpenAI-compatible
APIs and a deterministic mock for testing.
"""

import json
import os
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional, Union


class BaseLLMAdapter(ABC):
    """Abstract base for all text-completion adapters."""

    @property
    def model_identity(self) -> str:
        """Stable identifier mixed into extraction cache keys."""
        return self.__class__.__name__

    @abstractmethod
    def generate(
        self,
        prompt: str,
        *,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        top_p: Optional[float] = None,
        top_k: Optional[int] = None,
    ) -> str:
        """Send a prompt to the LLM and return the raw response text.

        Args:
            prompt: The fully formatted prompt string.
            temperature: Sampling temperature override.
            max_tokens: Completion length override.
            top_p: Nucleus sampling override.
            top_k: Top-k sampling override, ignored by providers without it.

        Returns:
            Raw string response from the model (expected to contain JSON).
        """


class OpenAILLMAdapter(BaseLLMAdapter):
    """Adapter for OpenAI-compatible chat completion APIs.

    Non-streaming, seeded output. OpenAI does not expose top-k sampling,
    so ``top_k`` is accepted and dropped.
    """

    def __init__(
        self,
        model: str = "gpt-4o-mini",
        temperature: float = 0.2,
        max_tokens: int = 1024,
        top_p: float = 0.8,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout_seconds: float = 60.0,
    ) -> None:
        """Initialise the OpenAI adapter.

        Args:
            model: Model identifier.
            temperature: Default sampling temperature.
            max_tokens: Default maximum tokens in the completion.
            top_p: Default nucleus sampling value.
            api_key: API key. Falls back to LLM_API_KEY, then OPENAI_API_KEY.
            base_url: Optional base URL for OpenAI-compatible endpoints.
            timeout_seconds: Request timeout passed to the client.
        """
        try:
            from openai import OpenAI  # type: ignore[import-untyped]
        except ImportError as exc:
            raise ImportError(
                "openai package is required for OpenAILLMAdapter. "
                "Install it with: pip install openai"
            ) from exc

        resolved_key = api_key or os.environ.get("LLM_API_KEY") or os.environ.get("OPENAI_API_KEY", "")
        client_kwargs: dict = {"api_key": resolved_key, "timeout": timeout_seconds}
        if base_url:
            client_kwargs["base_url"] = base_url

        self._client = OpenAI(**client_kwargs)
        self._model = model
        self._temperature = temperature
        self._max_tokens = max_tokens
        self._top_p = top_p

    @property
    def model_identity(self) -> str:
        return f"openai:{self._model}"

    def generate(
        self,
        prompt: str,
        *,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        top_p: Optional[float] = None,
        top_k: Optional[int] = None,
    ) -> str:
        """Call the chat completion API.

        Args:
            prompt: The fully formatted prompt string.

        Returns:
            Raw string content from the model response.
        """
        response = self._client.chat.completions.create(
            model=self._model,
            messages=[{"role": "user", "content": prompt}],
            temperature=self._temperature if temperature is None else temperature,
            top_p=self._top_p if top_p is None else top_p,
            max_tokens=self._max_tokens if max_tokens is None else max_tokens,
            stream=False,
            seed=42,
        )
        return response.choices[0].message.content or ""


# ---------------------------------------------------------------------------
# Fixed mock response used for local testing.
# ---------------------------------------------------------------------------
_MOCK_RESPONSE = {
    "title": "Mock product for testing purposes",
    "price": "R$ 1.999,00",
    "availability": "in_stock",
    "features": ["Feature A", "Feature B"],
    "specs": {"Model": "MOCK-001"},
}

_MOCK_RESPONSE_JSON = json.dumps(_MOCK_RESPONSE, indent=2)


class MockLLMAdapter(BaseLLMAdapter):
    """Deterministic adapter that returns a fixed response.

    Used for local runs and CI pipelines where no LLM API is available.
    Records every prompt it receives in ``prompts``.
    """

    def __init__(self, response: Union[str, Dict[str, Any], None] = None) -> None:
        if response is None:
            self._response = _MOCK_RESPONSE_JSON
        elif isinstance(response, str):
            self._response = response
        else:
            self._response = json.dumps(response)
        self.prompts: list = []

    @property
    def model_identity(self) -> str:
        return "mock"

    def generate(
        self,
        prompt: str,
        *,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        top_p: Optional[float] = None,
        top_k: Optional[int] = None,
    ) -> str:
        """Return the configured response regardless of input.

        Args:
            prompt: Recorded, otherwise ignored.

        Returns:
            The configured response string.
        """
        self.prompts.append(prompt)
        return self._response
