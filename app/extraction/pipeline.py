"""
Content extraction pipeline: reduce, chunk, dispatch, extract, merge.

Failures are contained per chunk. Only invalid inputs (empty markup or goal)
raise; every other failure degrades the merged document or ends up as an
`error` key on it.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from app.crawling.errors import ExtractionInputError
from app.crawling.logging_utils import error_fields, log_event
from app.extraction.cache import ExtractionCache
from app.extraction.chunker import Chunker
from app.extraction.dom_fallback import DomFallbackExtractor
from app.extraction.merge import MergePolicy, shallow_merge
from app.extraction.reducer import ContentReducer
from app.extraction.types import (
    METHOD_DOM,
    METHOD_HYBRID,
    METHOD_LLM,
    ExtractionDocument,
    ExtractionOptions,
    ExtractionUnit,
)
from llm_extraction.adapter import BaseLLMAdapter
from llm_extraction.prompt_builder import ExtractionPromptBuilder
from llm_extraction.retry import LLMRetryExhaustedError, generate_with_retry

logger = logging.getLogger(__name__)

NO_CONTENT_ERROR = "No extractable content after reduction"
NO_EXTRACTOR_ERROR = "No extraction path available"


@dataclass(frozen=True)
class UnitOutcome:
    index: int
    data: Any
    cache_hit: bool = False
    failed: bool = False


class ContentExtractionPipeline:
    """
    Compose reducer, chunker, cache, completion dispatch and merge policy.
    """

    def __init__(
        self,
        *,
        adapter: BaseLLMAdapter | None = None,
        cache: ExtractionCache | None = None,
        dom_extractor: DomFallbackExtractor | None = None,
        reducer: ContentReducer | None = None,
        merge_policy: MergePolicy | None = None,
        prompt_builder: ExtractionPromptBuilder | None = None,
        retry_initial_delay_seconds: float = 1.0,
        retry_max_delay_seconds: float = 30.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.adapter = adapter
        self.cache = cache
        self.dom_extractor = dom_extractor
        self.reducer = reducer or ContentReducer()
        self.merge_policy = merge_policy or MergePolicy()
        self.prompt_builder = prompt_builder or ExtractionPromptBuilder()
        self._retry_initial_delay_seconds = retry_initial_delay_seconds
        self._retry_max_delay_seconds = retry_max_delay_seconds
        self._sleep = sleep

    @property
    def llm_available(self) -> bool:
        return self.adapter is not None

    async def extract(
        self,
        raw_markup: str,
        goal: str,
        options: ExtractionOptions | None = None,
        *,
        category: str | None = None,
        base_url: str | None = None,
    ) -> ExtractionDocument:
        """
        Extract one structured document from raw page markup.

        The completion path runs when an adapter is wired and `use_llm` is
        set; the DOM probe path runs when `use_dom` is set and either the
        completion path is off or it failed, or alongside it to fill gaps.
        """

        if not raw_markup or not raw_markup.strip():
            raise ExtractionInputError("Extraction requires non-empty markup.")
        if not goal or not goal.strip():
            raise ExtractionInputError("Extraction requires a non-empty goal.")
        options = options or ExtractionOptions()

        llm_document: ExtractionDocument | None = None
        if options.use_llm and self.llm_available:
            try:
                llm_document = await self.extract_with_llm(raw_markup, goal, options)
            except Exception as exc:
                log_event(logger, logging.ERROR, "llm_extraction_failed", goal=goal[:120], **error_fields(exc))
                llm_document = ExtractionDocument(data={"error": str(exc)}, method=METHOD_LLM)

        dom_data: dict[str, Any] = {}
        if options.use_dom and self.dom_extractor is not None:
            try:
                dom_data = self.dom_extractor.extract(
                    raw_markup,
                    target=options.dom_target,
                    category=category,
                    base_url=base_url,
                )
            except Exception as exc:
                log_event(logger, logging.ERROR, "dom_extraction_failed", target=options.dom_target, **error_fields(exc))

        return self._combine(llm_document, dom_data)

    def prepare_units(self, raw_markup: str, goal: str, options: ExtractionOptions) -> list[ExtractionUnit]:
        """
        Reduce and chunk markup into extraction units.
        """

        reduced = self.reducer.reduce(raw_markup)
        chunker = Chunker(chunk_size=options.chunk_size)
        return chunker.build_units(reduced.text, goal=goal, model_identity=self._model_identity())

    async def extract_with_llm(
        self,
        raw_markup: str,
        goal: str,
        options: ExtractionOptions,
    ) -> ExtractionDocument:
        units = self.prepare_units(raw_markup, goal, options)
        if not units:
            return ExtractionDocument(data={"error": NO_CONTENT_ERROR}, method=METHOD_LLM)

        outcomes = await self.dispatch(units, goal, options)
        outcomes.sort(key=lambda outcome: outcome.index)
        failed = sum(1 for outcome in outcomes if outcome.failed)
        merged = self.merge_policy.merge_results(
            [outcome.data if not outcome.failed else {"error": outcome.data} for outcome in outcomes]
        )
        log_event(
            logger,
            logging.INFO,
            "extraction_merged",
            chunk_count=len(units),
            failed_chunks=failed,
            cache_hits=sum(1 for outcome in outcomes if outcome.cache_hit),
        )
        return ExtractionDocument(
            data=merged,
            method=METHOD_LLM,
            chunk_count=len(units),
            failed_chunks=failed,
            cache_hits=sum(1 for outcome in outcomes if outcome.cache_hit),
        )

    async def dispatch(
        self,
        units: list[ExtractionUnit],
        goal: str,
        options: ExtractionOptions,
    ) -> list[UnitOutcome]:
        """
        Run units in concurrent batches with a pause between batches.
        """

        batch_size = max(1, options.max_parallel_chunks)
        outcomes: list[UnitOutcome] = []
        for start in range(0, len(units), batch_size):
            batch = units[start : start + batch_size]
            results = await asyncio.gather(
                *(self.extract_unit(unit, goal, options) for unit in batch),
                return_exceptions=True,
            )
            for unit, result in zip(batch, results):
                if isinstance(result, BaseException):
                    log_event(
                        logger,
                        logging.ERROR,
                        "chunk_extraction_failed",
                        chunk=unit.label,
                        **error_fields(result),
                    )
                    outcomes.append(UnitOutcome(index=unit.index, data=str(result), failed=True))
                else:
                    outcomes.append(result)

            if start + batch_size < len(units) and options.batch_delay_seconds > 0:
                await self._sleep(options.batch_delay_seconds)
        return outcomes

    async def extract_unit(
        self,
        unit: ExtractionUnit,
        goal: str,
        options: ExtractionOptions,
    ) -> UnitOutcome:
        if options.use_cache and self.cache is not None:
            try:
                cached = await self.cache.get(unit.cache_key)
            except Exception as exc:
                log_event(logger, logging.WARNING, "extraction_cache_read_failed", chunk=unit.label, **error_fields(exc))
                cached = None
            if cached is not None:
                log_event(logger, logging.DEBUG, "extraction_cache_hit", chunk=unit.label)
                return UnitOutcome(index=unit.index, data=cached, cache_hit=True)

        prompt = self.prompt_builder.build_prompt(
            chunk_text=unit.text,
            goal=goal,
            chunk_label=unit.label,
            shape_hint=options.shape_hint,
        )
        try:
            parsed = await generate_with_retry(
                self.adapter,
                prompt,
                max_attempts=options.max_attempts,
                shape_hint=options.shape_hint,
                generation_options={
                    "temperature": options.temperature,
                    "max_tokens": options.max_tokens,
                    "top_p": options.top_p,
                    "top_k": options.top_k,
                },
                initial_delay_seconds=self._retry_initial_delay_seconds,
                max_delay_seconds=self._retry_max_delay_seconds,
                sleep=self._sleep,
            )
        except LLMRetryExhaustedError as exc:
            log_event(
                logger,
                logging.WARNING,
                "chunk_extraction_failed",
                chunk=unit.label,
                attempts=exc.attempts,
                **error_fields(exc.last_error),
            )
            return UnitOutcome(index=unit.index, data=str(exc.last_error), failed=True)

        if parsed.salvaged:
            log_event(logger, logging.INFO, "chunk_response_salvaged", chunk=unit.label, stage=parsed.stage)

        if options.use_cache and self.cache is not None:
            try:
                await self.cache.set(
                    unit.cache_key,
                    parsed.data,
                    goal=goal,
                    model=self._model_identity(),
                )
            except Exception as exc:
                log_event(logger, logging.WARNING, "extraction_cache_write_failed", chunk=unit.label, **error_fields(exc))

        return UnitOutcome(index=unit.index, data=parsed.data)

    def _combine(
        self,
        llm_document: ExtractionDocument | None,
        dom_data: dict[str, Any],
    ) -> ExtractionDocument:
        if llm_document is None:
            if dom_data:
                return ExtractionDocument(data=dom_data, method=METHOD_DOM)
            return ExtractionDocument(data={"error": NO_EXTRACTOR_ERROR}, method=METHOD_DOM)

        if not dom_data:
            return llm_document

        if llm_document.error is not None:
            return ExtractionDocument(
                data=dom_data,
                method=METHOD_DOM,
                chunk_count=llm_document.chunk_count,
                failed_chunks=llm_document.failed_chunks,
                cache_hits=llm_document.cache_hits,
            )
        if not isinstance(llm_document.data, dict):
            return llm_document

        return ExtractionDocument(
            data=shallow_merge(llm_document.data, dom_data),
            method=METHOD_HYBRID,
            chunk_count=llm_document.chunk_count,
            failed_chunks=llm_document.failed_chunks,
            cache_hits=llm_document.cache_hits,
        )

    def _model_identity(self) -> str:
        return self.adapter.model_identity if self.adapter is not None else "none"
