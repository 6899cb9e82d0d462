"""
Extraction runtime data models.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

METHOD_LLM = "llm"
METHOD_DOM = "dom"
METHOD_HYBRID = "hybrid"


@dataclass(frozen=True)
class ExtractionUnit:
    """
    One bounded slice of reduced text. `index` is 0-based.
    """

    index: int
    total: int
    text: str
    cache_key: str

    @property
    def label(self) -> str:
        return f"[{self.index + 1}/{self.total}]"


@dataclass(frozen=True)
class ReducedContent:
    text: str
    title: str | None
    locator: str
    source_length: int


@dataclass(frozen=True)
class ExtractionOptions:
    chunk_size: int = 4000
    max_parallel_chunks: int = 3
    batch_delay_seconds: float = 2.0
    use_cache: bool = True
    max_attempts: int = 3
    use_llm: bool = True
    use_dom: bool = True
    dom_target: str = "product"
    shape_hint: Any = None
    temperature: float = 0.1
    max_tokens: int = 2048
    top_p: float | None = None
    top_k: int | None = None


@dataclass
class ExtractionDocument:
    """
    Open-ended extraction result tagged with the path that produced it.
    """

    data: Any = field(default_factory=dict)
    method: str = METHOD_LLM
    chunk_count: int = 0
    failed_chunks: int = 0
    cache_hits: int = 0

    @property
    def error(self) -> str | None:
        if isinstance(self.data, dict):
            value = self.data.get("error")
            return str(value) if value is not None else None
        return None

    def to_dict(self) -> dict[str, Any]:
        if isinstance(self.data, dict):
            body: dict[str, Any] = dict(self.data)
        else:
            body = {"items": self.data}
        body["extraction_method"] = self.method
        return body
