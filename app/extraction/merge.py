"""
Type-aware reduction of per-chunk extraction results into one document.

The scalar conflict rule (frequency vote, longer string wins ties, numbers
are averaged) is a heuristic. It lives on `MergePolicy` so callers can swap
in another policy without touching the pipeline.
"""

from __future__ import annotations

import json
from collections.abc import Sequence
from typing import Any

ALL_CHUNKS_FAILED = "All chunks failed to process"


def canonical_key(value: Any) -> str:
    return json.dumps(value, sort_keys=True, default=str, ensure_ascii=False)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _is_error_result(value: Any) -> bool:
    return isinstance(value, dict) and "error" in value


class MergePolicy:
    """
    Default merge policy for chunk extraction results.
    """

    def merge_results(self, results: Sequence[Any]) -> Any:
        present = [result for result in results if result is not None]
        if not present:
            return {}
        if len(present) == 1 and _is_error_result(present[0]):
            return present[0]

        valid = [result for result in present if not _is_error_result(result)]
        if not valid:
            return {"error": ALL_CHUNKS_FAILED}

        if all(isinstance(result, list) for result in valid):
            flattened = [item for result in valid for item in result]
            return self.dedupe_sequence(flattened)

        documents = [result for result in valid if isinstance(result, dict)]
        if documents:
            return self.merge_documents(documents)
        return self.resolve_scalar(valid)

    def merge_documents(self, documents: Sequence[dict[str, Any]]) -> dict[str, Any]:
        keys: list[str] = []
        seen: set[str] = set()
        for document in documents:
            for key in document:
                if key not in seen:
                    seen.add(key)
                    keys.append(key)

        merged: dict[str, Any] = {}
        for key in keys:
            values = [document[key] for document in documents if document.get(key) is not None]
            merged[key] = self.merge_values(values)
        return merged

    def merge_values(self, values: Sequence[Any]) -> Any:
        if not values:
            return None
        if all(isinstance(value, list) for value in values):
            return self.dedupe_sequence([item for value in values for item in value])
        if all(isinstance(value, dict) for value in values):
            return self.merge_documents(values)
        return self.resolve_scalar(values)

    def resolve_scalar(self, values: Sequence[Any]) -> Any:
        if len(values) == 1:
            return values[0]

        first_key = canonical_key(values[0])
        if all(canonical_key(value) == first_key for value in values[1:]):
            return values[0]

        if all(_is_number(value) for value in values):
            return sum(values) / len(values)

        counts: dict[str, int] = {}
        first_seen: dict[str, Any] = {}
        for value in values:
            key = canonical_key(value)
            counts[key] = counts.get(key, 0) + 1
            first_seen.setdefault(key, value)

        best_key = ""
        best_rank: tuple[int, int] | None = None
        for key, value in first_seen.items():
            rank = (counts[key], len(str(value)))
            if best_rank is None or rank > best_rank:
                best_key = key
                best_rank = rank
        return first_seen[best_key]

    @staticmethod
    def dedupe_sequence(items: Sequence[Any]) -> list[Any]:
        seen: set[str] = set()
        deduped: list[Any] = []
        for item in items:
            key = canonical_key(item)
            if key in seen:
                continue
            seen.add(key)
            deduped.append(item)
        return deduped


def shallow_merge(primary: dict[str, Any], secondary: dict[str, Any]) -> dict[str, Any]:
    """
    Combine two documents key by key; non-empty values in `primary` win.
    """

    merged = dict(secondary)
    for key, value in primary.items():
        if value is None or value == "" or value == [] or value == {}:
            merged.setdefault(key, value)
            continue
        merged[key] = value
    return merged
