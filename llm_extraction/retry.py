"""Bounded retry around one extraction completion.

Retries transport failures raised by the adapter and shape-hint validation
failures. Content-policy refusals are never retried. Parsing itself never
fails (see ``response_parser``), so salvage does not consume attempts.
"""

import asyncio
import logging
import random
from typing import Any, Awaitable, Callable, List, Optional

from llm_extraction.adapter import BaseLLMAdapter
from llm_extraction.response_parser import (
    LLMOutputValidationError,
    ParsedResponse,
    parse_extraction_response,
    validate_shape,
)

logger = logging.getLogger(__name__)

_NON_RETRYABLE_MARKERS = ("content policy violation", "content_policy_violation")


class LLMRetryExhaustedError(Exception):
    """Raised when all attempts fail.

    Attributes:
        attempts: Total number of attempts made.
        last_error: The error from the final attempt.
        history: Errors from every failed attempt.
    """

    def __init__(
        self,
        attempts: int,
        last_error: Exception,
        history: List[Exception],
    ) -> None:
        self.attempts = attempts
        self.last_error = last_error
        self.history = history
        super().__init__(
            f"LLM extraction failed after {attempts} attempt(s). "
            f"Last error: {last_error}"
        )


def _is_retryable(error: Exception) -> bool:
    message = str(error).lower()
    return not any(marker in message for marker in _NON_RETRYABLE_MARKERS)


async def generate_with_retry(
    adapter: BaseLLMAdapter,
    prompt: str,
    *,
    max_attempts: int = 3,
    shape_hint: Any = None,
    generation_options: Optional[dict] = None,
    initial_delay_seconds: float = 1.0,
    max_delay_seconds: float = 30.0,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> ParsedResponse:
    """Generate and parse one completion with bounded retries.

    The adapter is synchronous and runs in a worker thread.

    Args:
        adapter: An LLM adapter implementing ``generate``.
        prompt: The fully formatted prompt string.
        max_attempts: Total attempts, including the first.
        shape_hint: Optional pydantic model enforced on the parsed output.
        generation_options: temperature / max_tokens / top_p / top_k overrides.

    Returns:
        The parsed response of the first acceptable attempt.

    Raises:
        LLMRetryExhaustedError: If every attempt failed, or a non-retryable
            adapter error occurred.
    """
    options = generation_options or {}
    errors: List[Exception] = []
    total_attempts = max(1, max_attempts)

    for attempt in range(1, total_attempts + 1):
        try:
            raw = await asyncio.to_thread(adapter.generate, prompt, **options)
            parsed = parse_extraction_response(raw)
            validate_shape(parsed.data, shape_hint, raw_response=raw)
            if attempt > 1:
                logger.info(
                    "LLM output accepted on attempt %d/%d",
                    attempt,
                    total_attempts,
                )
            return parsed
        except LLMOutputValidationError as exc:
            errors.append(exc)
            logger.warning(
                "Attempt %d/%d failed at stage '%s': %s",
                attempt,
                total_attempts,
                exc.stage,
                "; ".join(exc.errors),
            )
        except Exception as exc:
            errors.append(exc)
            logger.warning(
                "Attempt %d/%d failed calling the completion service: %s",
                attempt,
                total_attempts,
                exc,
            )
            if not _is_retryable(exc):
                break

        if attempt < total_attempts:
            delay = min(initial_delay_seconds * (2 ** (attempt - 1)), max_delay_seconds)
            await sleep(delay + 0.2 * delay * random.random())

    raise LLMRetryExhaustedError(
        attempts=len(errors),
        last_error=errors[-1],
        history=errors,
    )
