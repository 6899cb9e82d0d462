"""
tests/test_extraction_pipeline.py

Pytest unit tests for the content extraction pipeline and its DOM fallback.

The shipped site configuration is loaded from disk; completion calls go to
MockLLMAdapter or a failing double. Retry and batch sleeps are recorded, not
awaited.

Coverage
--------
- Site config loading, goal fallback and category probe overrides
- DOM probes: detail fields, price cleanup, specs, images, listings, limits
- Pipeline paths: completion only, DOM only, hybrid gap filling, fallback on failure
- Per-chunk cache hits skip the completion service
- Batch pacing between chunk batches
- 10,000 characters of markup at chunk_size 4000 give exactly three units
- Invalid inputs raise ExtractionInputError
- In-memory and SQLAlchemy cache TTL behaviour
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import create_engine

from app.crawling.config.loader import load_site_config, parse_site_config
from app.crawling.config.models import SiteConfig
from app.crawling.errors import ExtractionInputError
from app.extraction.cache import InMemoryExtractionCache, SQLAlchemyExtractionCache
from app.extraction.dom_fallback import DomFallbackExtractor
from app.extraction.pipeline import NO_EXTRACTOR_ERROR, ContentExtractionPipeline
from app.extraction.types import METHOD_DOM, METHOD_HYBRID, METHOD_LLM, ExtractionOptions
from db.base import Base
from db.models import ExtractionCacheEntry
from db.session import build_session_factory
from llm_extraction.adapter import BaseLLMAdapter, MockLLMAdapter

PRODUCT_PAGE = """
<html><body>
  <main>
    <h1 class="product-title">Smart TV 55 OLED</h1>
    <span class="product-price">R$ 2.999,00</span>
    <span itemprop="sku">OLED55C3</span>
    <div class="product-description">Cinematic picture with self-lit pixels.</div>
    <div class="product-images"><img src="/img/front.jpg"><img src="/img/side.jpg"></div>
    <table class="product-specs">
      <tr><th>Panel</th><td>OLED</td></tr>
      <tr><th>Size</th><td>55"</td></tr>
    </table>
    <ul class="product-features"><li>Dolby Vision</li><li>webOS</li></ul>
    <div class="tv-product-name">OLED55C3 Smart TV</div>
  </main>
</body></html>
"""

LISTING_PAGE = """
<html><body><main>
  <div class="product-item">
    <a href="/br/tv/oled55"><img src="/img/oled55.jpg"></a>
    <h3 class="product-name">OLED 55</h3><span class="price">R$ 4.999,00</span>
  </div>
  <div class="product-item">
    <a href="https://www.lge.com/br/tv/nano65"></a>
    <h3 class="product-name">NanoCell 65</h3><span class="price">R$ 3.499,00</span>
  </div>
  <div class="product-item"><span class="price">R$ 1,00</span></div>
</main></body></html>
"""


class FailingAdapter(BaseLLMAdapter):
    def __init__(self) -> None:
        self.calls = 0

    @property
    def model_identity(self) -> str:
        return "failing"

    def generate(self, prompt: str, **kwargs) -> str:
        self.calls += 1
        raise RuntimeError("503 Service Unavailable")


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(scope="module")
def site_config() -> SiteConfig:
    return load_site_config()


@pytest.fixture()
def dom(site_config: SiteConfig) -> DomFallbackExtractor:
    return DomFallbackExtractor(site_config=site_config)


@pytest.fixture()
def sleeps() -> list[float]:
    return []


@pytest.fixture()
def make_pipeline(dom: DomFallbackExtractor, sleeps: list[float]):
    async def record_sleep(seconds: float) -> None:
        sleeps.append(seconds)

    def _make(adapter=None, *, with_dom: bool = True, cache=None) -> ContentExtractionPipeline:
        return ContentExtractionPipeline(
            adapter=adapter,
            cache=cache,
            dom_extractor=dom if with_dom else None,
            sleep=record_sleep,
        )

    return _make


# ---------------------------------------------------------------------------
# Site configuration
# ---------------------------------------------------------------------------


class TestSiteConfig:
    def test_shipped_config_loads(self, site_config: SiteConfig) -> None:
        assert site_config.base_url == "https://www.lge.com/br"
        assert "{query}" in site_config.search_url
        assert "cart" in site_config.navigation.checkout_url_markers
        assert site_config.probe_set("listing").is_listing

    def test_goal_fallback(self, site_config: SiteConfig) -> None:
        assert "TV information" in site_config.goal_for("TV")
        assert site_config.goal_for("washing-machine") == site_config.goal_for(None)

    def test_category_override_layers_on_base(self, site_config: SiteConfig) -> None:
        probe_set = site_config.probe_set("product", "tv")
        fields = [probe.field for probe in probe_set.probes]
        assert fields[0] == "title"
        assert probe_set.probes[0].selectors[0] == ".tv-product-name"
        assert "price" in fields

    def test_missing_base_url_rejected(self) -> None:
        with pytest.raises(ValueError):
            parse_site_config({"site": {"name": "x"}})

    def test_invalid_probe_mode_rejected(self) -> None:
        raw = {
            "site": {"base_url": "https://shop.test"},
            "probe_sets": {"product": {"probes": [{"field": "title", "mode": "magic", "selectors": ["h1"]}]}},
        }
        with pytest.raises(ValueError):
            parse_site_config(raw)

    def test_defaults_filled(self) -> None:
        config = parse_site_config({"site": {"base_url": "https://shop.test/"}})
        assert config.base_url == "https://shop.test"
        assert config.search_url == "https://shop.test/search?q={query}"
        assert config.name == "default"
        assert config.navigation.checkout_url_markers == ("checkout", "cart")


# ---------------------------------------------------------------------------
# DOM fallback
# ---------------------------------------------------------------------------


class TestDomFallback:
    def test_detail_fields(self, dom: DomFallbackExtractor) -> None:
        data = dom.extract(PRODUCT_PAGE, target="product", base_url="https://www.lge.com/br/tv/oled55")
        assert data["title"] == "Smart TV 55 OLED"
        assert data["price"] == "2.999,00"
        assert data["sku"] == "OLED55C3"
        assert data["specs"] == {"Panel": "OLED", "Size": '55"'}
        assert data["features"] == ["Dolby Vision", "webOS"]
        assert data["images"] == ["https://www.lge.com/img/front.jpg", "https://www.lge.com/img/side.jpg"]
        assert "variants" not in data

    def test_category_override(self, dom: DomFallbackExtractor) -> None:
        data = dom.extract(PRODUCT_PAGE, target="product", category="tv")
        assert data["title"] == "OLED55C3 Smart TV"
        assert data["price"] == "2.999,00"

    def test_listing_items(self, dom: DomFallbackExtractor) -> None:
        data = dom.extract(LISTING_PAGE, target="listing", base_url="https://www.lge.com/br/tvs")
        products = data["products"]
        assert [product["title"] for product in products] == ["OLED 55", "NanoCell 65"]
        assert products[0]["url"] == "https://www.lge.com/br/tv/oled55"
        assert products[0]["image_url"] == "https://www.lge.com/img/oled55.jpg"
        assert products[1]["url"] == "https://www.lge.com/br/tv/nano65"
        assert all(product["extraction_method"] == "dom" for product in products)

    def test_listing_limit(self, dom: DomFallbackExtractor) -> None:
        data = dom.extract(LISTING_PAGE, target="listing", limit=1)
        assert len(data["products"]) == 1

    def test_unknown_target(self, dom: DomFallbackExtractor) -> None:
        assert dom.extract(PRODUCT_PAGE, target="reviews") == {}

    def test_exists_and_variants_modes(self) -> None:
        config = parse_site_config(
            {
                "site": {"base_url": "https://shop.test"},
                "probe_sets": {
                    "product": {
                        "probes": [
                            {"field": "on_sale", "mode": "exists", "selectors": [".badge-sale"]},
                            {"field": "variants", "mode": "variants", "selectors": [".variants"]},
                        ]
                    }
                },
            }
        )
        markup = (
            '<div class="badge-sale">-10%</div>'
            '<div class="variants"><fieldset><legend>Size</legend>'
            "<select><option>55</option><option>65</option></select></fieldset></div>"
        )
        data = DomFallbackExtractor(site_config=config).extract(markup)
        assert data["on_sale"] is True
        assert data["variants"] == [{"name": "Size", "options": ["55", "65"]}]


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------


class TestPipeline:
    def test_dom_only_when_no_adapter(self, make_pipeline) -> None:
        document = asyncio.run(make_pipeline().extract(PRODUCT_PAGE, "Extract product"))
        assert document.method == METHOD_DOM
        assert document.data["title"] == "Smart TV 55 OLED"
        assert document.to_dict()["extraction_method"] == METHOD_DOM

    def test_llm_only(self, make_pipeline) -> None:
        adapter = MockLLMAdapter(response={"title": "LLM TV", "price": "R$ 10"})
        pipeline = make_pipeline(adapter, with_dom=False)
        document = asyncio.run(pipeline.extract(PRODUCT_PAGE, "Extract product"))
        assert document.method == METHOD_LLM
        assert document.data == {"title": "LLM TV", "price": "R$ 10"}
        assert document.chunk_count == 1
        assert "Extract product" in adapter.prompts[0]

    def test_hybrid_fills_gaps(self, make_pipeline) -> None:
        adapter = MockLLMAdapter(response={"title": "LLM TV", "price": ""})
        document = asyncio.run(make_pipeline(adapter).extract(PRODUCT_PAGE, "Extract product"))
        assert document.method == METHOD_HYBRID
        assert document.data["title"] == "LLM TV"
        assert document.data["price"] == "2.999,00"
        assert document.data["sku"] == "OLED55C3"

    def test_completion_failure_falls_back_to_dom(self, make_pipeline, sleeps: list[float]) -> None:
        adapter = FailingAdapter()
        options = ExtractionOptions(max_attempts=2)
        document = asyncio.run(make_pipeline(adapter).extract(PRODUCT_PAGE, "Extract product", options))
        assert document.method == METHOD_DOM
        assert document.failed_chunks == 1
        assert document.data["title"] == "Smart TV 55 OLED"
        assert adapter.calls == 2
        assert len(sleeps) == 1

    def test_completion_failure_without_dom_reports_error(self, make_pipeline) -> None:
        pipeline = make_pipeline(FailingAdapter(), with_dom=False)
        document = asyncio.run(pipeline.extract(PRODUCT_PAGE, "goal", ExtractionOptions(max_attempts=1)))
        assert document.error is not None
        assert document.failed_chunks == 1

    def test_no_extraction_path(self, make_pipeline) -> None:
        document = asyncio.run(make_pipeline(with_dom=False).extract(PRODUCT_PAGE, "goal"))
        assert document.error == NO_EXTRACTOR_ERROR

    def test_cache_hit_skips_completion(self, make_pipeline) -> None:
        adapter = MockLLMAdapter(response={"title": "Cached TV"})
        cache = InMemoryExtractionCache()
        pipeline = make_pipeline(adapter, with_dom=False, cache=cache)

        async def run_twice():
            first = await pipeline.extract(PRODUCT_PAGE, "Extract product")
            second = await pipeline.extract(PRODUCT_PAGE, "Extract product")
            return first, second

        first, second = asyncio.run(run_twice())
        assert first.cache_hits == 0
        assert second.cache_hits == 1
        assert second.data == {"title": "Cached TV"}
        assert len(adapter.prompts) == 1
        assert len(cache) == 1

    def test_cache_bypassed_when_disabled(self, make_pipeline) -> None:
        adapter = MockLLMAdapter(response={"title": "TV"})
        pipeline = make_pipeline(adapter, with_dom=False, cache=InMemoryExtractionCache())
        options = ExtractionOptions(use_cache=False)

        async def run_twice() -> None:
            await pipeline.extract(PRODUCT_PAGE, "goal", options)
            await pipeline.extract(PRODUCT_PAGE, "goal", options)

        asyncio.run(run_twice())
        assert len(adapter.prompts) == 2

    def test_batches_are_paced(self, make_pipeline, sleeps: list[float]) -> None:
        markup = "<main>" + "".join(f"<p>Section {i} " + "w" * 60 + "</p>" for i in range(5)) + "</main>"
        adapter = MockLLMAdapter(response={"title": "TV"})
        pipeline = make_pipeline(adapter, with_dom=False)
        options = ExtractionOptions(chunk_size=80, max_parallel_chunks=2, batch_delay_seconds=1.5)

        units = pipeline.prepare_units(markup, "goal", options)
        document = asyncio.run(pipeline.extract(markup, "goal", options))
        assert len(units) == 5
        assert document.chunk_count == 5
        assert document.data == {"title": "TV"}
        assert sleeps == [1.5, 1.5]

    def test_ten_thousand_char_markup_yields_three_units(self, make_pipeline) -> None:
        prefix, suffix = "<html><body><main><p>", "</p></main></body></html>"
        markup = prefix + "x" * (10000 - len(prefix) - len(suffix)) + suffix
        assert len(markup) == 10000

        adapter = MockLLMAdapter(response={"title": "TV"})
        pipeline = make_pipeline(adapter, with_dom=False)
        options = ExtractionOptions(chunk_size=4000, batch_delay_seconds=0)

        units = pipeline.prepare_units(markup, "goal", options)
        assert len(units) == 3
        assert all(len(unit.text) <= 4000 for unit in units)
        assert [unit.total for unit in units] == [3, 3, 3]

        document = asyncio.run(pipeline.extract(markup, "goal", options))
        assert document.chunk_count == 3
        assert len(adapter.prompts) == 3

    def test_empty_markup_rejected(self, make_pipeline) -> None:
        with pytest.raises(ExtractionInputError):
            asyncio.run(make_pipeline().extract("   ", "goal"))

    def test_empty_goal_rejected(self, make_pipeline) -> None:
        with pytest.raises(ExtractionInputError):
            asyncio.run(make_pipeline().extract(PRODUCT_PAGE, ""))


# ---------------------------------------------------------------------------
# Caches
# ---------------------------------------------------------------------------


class TestInMemoryCache:
    def test_ttl_checked_on_read(self) -> None:
        now = [1000.0]
        cache = InMemoryExtractionCache(ttl_seconds=60, clock=lambda: now[0])

        async def scenario():
            await cache.set("k", {"title": "TV"})
            fresh = await cache.get("k")
            now[0] += 61
            stale = await cache.get("k")
            return fresh, stale

        fresh, stale = asyncio.run(scenario())
        assert fresh == {"title": "TV"}
        assert stale is None

    def test_missing_key(self) -> None:
        assert asyncio.run(InMemoryExtractionCache().get("nope")) is None


class TestSQLAlchemyCache:
    @pytest.fixture()
    def session_factory(self, tmp_path):
        engine = create_engine(f"sqlite:///{tmp_path / 'cache.db'}")
        Base.metadata.create_all(engine)
        yield build_session_factory(engine)
        engine.dispose()

    def test_round_trip_and_expiry(self, session_factory) -> None:
        now = [datetime(2026, 1, 1, tzinfo=timezone.utc)]
        cache = SQLAlchemyExtractionCache(session_factory=session_factory, ttl_seconds=3600, clock=lambda: now[0])

        async def scenario():
            await cache.set("abc", {"products": [{"title": "TV"}]}, goal="listing", model="mock")
            fresh = await cache.get("abc")
            now[0] = now[0] + timedelta(hours=2)
            stale = await cache.get("abc")
            return fresh, stale

        fresh, stale = asyncio.run(scenario())
        assert fresh == {"products": [{"title": "TV"}]}
        assert stale is None

    def test_overwrite_same_key(self, session_factory) -> None:
        cache = SQLAlchemyExtractionCache(session_factory=session_factory)

        async def scenario():
            await cache.set("abc", {"v": 1})
            await cache.set("abc", {"v": 2})
            return await cache.get("abc")

        assert asyncio.run(scenario()) == {"v": 2}
        session = session_factory()
        try:
            assert session.query(ExtractionCacheEntry).count() == 1
        finally:
            session.close()
