"""Parsing and salvage layer for raw extraction responses.

Completion output is expected to hold a JSON object but frequently arrives
wrapped in prose or markdown fences, truncated, or as loose ``key: value``
lines. ``parse_extraction_response`` never raises: it walks a ladder of
progressively looser strategies and, as a last resort, wraps the raw text.
"""

import json
import re
from dataclasses import dataclass
from typing import Any, List

from pydantic import BaseModel, ValidationError

STAGE_JSON = "json"
STAGE_FENCED = "fenced_json"
STAGE_BRACES = "brace_salvage"
STAGE_KEY_VALUE = "key_value"
STAGE_RAW_TEXT = "raw_text"

_FENCED_BLOCK = re.compile(r"```(?:json)?\s*([\s\S]*?)```", re.IGNORECASE)
_KEY_VALUE = re.compile(r"[\"']?(\w[\w ]{0,48}?)[\"']?\s*[:=]\s*([^,\n]+)")


class LLMOutputValidationError(Exception):
    """Raised when parsed output does not satisfy a shape hint.

    Attributes:
        stage: Which validation step failed ("schema").
        errors: List of human-readable error descriptions.
        raw_response: The original string that failed validation.
    """

    def __init__(
        self,
        stage: str,
        errors: List[str],
        raw_response: str,
    ) -> None:
        self.stage = stage
        self.errors = errors
        self.raw_response = raw_response
        message = (
            f"LLM output validation failed at stage '{stage}': "
            + "; ".join(errors)
        )
        super().__init__(message)


@dataclass(frozen=True)
class ParsedResponse:
    data: Any
    stage: str

    @property
    def salvaged(self) -> bool:
        return self.stage in {STAGE_BRACES, STAGE_KEY_VALUE, STAGE_RAW_TEXT}


def _load_structured(text: str) -> Any:
    value = json.loads(text.strip())
    if not isinstance(value, (dict, list)):
        raise ValueError("top-level JSON must be an object or array")
    return value


def _scan_key_values(text: str) -> dict:
    found = {}
    for key, value in _KEY_VALUE.findall(text):
        cleaned_key = key.strip()
        cleaned_value = value.strip().strip("\"'").strip()
        if cleaned_key and cleaned_value and cleaned_key not in found:
            found[cleaned_key] = cleaned_value
    return found


def parse_extraction_response(raw_response: str) -> ParsedResponse:
    """Turn a raw completion into structured data.

    Steps:
        1. Parse the whole response as JSON.
        2. Parse the first fenced code block.
        3. Parse the widest ``{...}`` substring.
        4. Scan ``key: value`` / ``key = value`` pairs.
        5. Wrap the raw text as ``{"text": raw}``.

    Args:
        raw_response: The raw string returned by the adapter.

    Returns:
        The parsed data and the stage that produced it.
    """
    text = raw_response or ""

    try:
        return ParsedResponse(data=_load_structured(text), stage=STAGE_JSON)
    except ValueError:
        pass

    fenced = _FENCED_BLOCK.search(text)
    if fenced:
        try:
            return ParsedResponse(data=_load_structured(fenced.group(1)), stage=STAGE_FENCED)
        except ValueError:
            pass

    start = text.find("{")
    end = text.rfind("}")
    if start != -1 and end > start:
        try:
            return ParsedResponse(data=_load_structured(text[start : end + 1]), stage=STAGE_BRACES)
        except ValueError:
            pass

    pairs = _scan_key_values(text)
    if pairs:
        return ParsedResponse(data=pairs, stage=STAGE_KEY_VALUE)

    return ParsedResponse(data={"text": text}, stage=STAGE_RAW_TEXT)


def validate_shape(data: Any, shape_hint: Any, raw_response: str = "") -> Any:
    """Check parsed data against a pydantic shape hint.

    Only pydantic model classes are enforced; dict or string hints are prompt
    guidance. Extra keys survive because shape hints allow them.

    Raises:
        LLMOutputValidationError: If the data does not fit the model.
    """
    if not (isinstance(shape_hint, type) and issubclass(shape_hint, BaseModel)):
        return data
    if not isinstance(data, dict):
        raise LLMOutputValidationError(
            stage="schema",
            errors=["top-level JSON must be an object"],
            raw_response=raw_response,
        )
    try:
        shape_hint.model_validate(data)
    except ValidationError as exc:
        errors = [
            f"{'.'.join(str(loc) for loc in e['loc'])}: {e['msg']}"
            for e in exc.errors()
        ]
        raise LLMOutputValidationError(
            stage="schema",
            errors=errors,
            raw_response=raw_response,
        ) from exc
    return data
