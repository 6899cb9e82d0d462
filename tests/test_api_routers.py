"""
tests/test_api_routers.py

Pytest tests for the crawl and checkout HTTP routers.

The routers are mounted on a test-local FastAPI app whose state carries a
real CrawlRuntime built from in-memory storage. The task queue is paused
before submissions, so no browser is ever launched.

Coverage
--------
- 503 while the runtime is missing
- Task submission (202), invalid kinds (400), status lookup (200 / 404)
- Queue pause, clear and stats
- Checkout session create (201), lookup (404), info merge, missing fields
- Deep link generation and completion (409 until ready, then 200)
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from app.api.routers import checkout_router, crawl_router
from app.checkout.descriptor import CheckoutProcessDescriptor
from app.checkout.process_store import CheckoutProcessStore
from app.checkout.session_engine import CheckoutSessionEngine
from app.crawling.browser.base import BrowserPool
from app.crawling.config.loader import load_site_config
from app.crawling.manager import CrawlingManager
from app.crawling.storage.base import InMemoryDocumentStorage
from app.extraction.pipeline import ContentExtractionPipeline
from app.services.crawl_runtime import CrawlRuntime


def _no_browser():
    raise RuntimeError("router tests never launch a browser")


def _build_runtime() -> CrawlRuntime:
    storage = InMemoryDocumentStorage()
    site_config = load_site_config()
    process_store = CheckoutProcessStore(storage=storage)
    process_store.save(
        "oled55",
        CheckoutProcessDescriptor.model_validate(
            {
                "product_id": "oled55",
                "steps": [
                    {
                        "index": 0,
                        "name": "cart",
                        "url": "https://shop.test/cart",
                        "forms": [
                            {
                                "fields": [
                                    {"name": "email", "type": "email", "required": True, "label": "E-mail"},
                                    {"name": "password", "type": "password", "required": False},
                                ]
                            }
                        ],
                    }
                ],
            }
        ),
    )
    manager = CrawlingManager(
        pool=BrowserPool(factory=_no_browser),
        pipeline=ContentExtractionPipeline(),
        site_config=site_config,
        storage=storage,
        process_store=process_store,
    )
    engine = CheckoutSessionEngine(process_store=process_store)
    return CrawlRuntime(manager=manager, session_engine=engine, storage=storage)


def _build_app(runtime: CrawlRuntime | None) -> FastAPI:
    @asynccontextmanager
    async def lifespan(application: FastAPI) -> AsyncIterator[None]:
        application.state.runtime = runtime
        if runtime is not None:
            runtime.manager.pause_queue()
        try:
            yield
        finally:
            if runtime is not None:
                await runtime.manager.shutdown()

    application = FastAPI(lifespan=lifespan)
    application.include_router(crawl_router)
    application.include_router(checkout_router)
    return application


@pytest.fixture()
def runtime() -> CrawlRuntime:
    return _build_runtime()


@pytest.fixture()
def client(runtime: CrawlRuntime):
    with TestClient(_build_app(runtime)) as test_client:
        yield test_client


# ---------------------------------------------------------------------------
# Runtime availability
# ---------------------------------------------------------------------------


def test_missing_runtime_returns_503() -> None:
    with TestClient(_build_app(None)) as test_client:
        response = test_client.get("/crawl/stats")
    assert response.status_code == 503


# ---------------------------------------------------------------------------
# Crawl router
# ---------------------------------------------------------------------------


class TestCrawlRouter:
    def test_submit_and_lookup(self, client: TestClient) -> None:
        response = client.post(
            "/crawl/tasks",
            json={"kind": "product", "payload": {"url": "https://shop.test/p/1"}, "priority": 3},
        )
        assert response.status_code == 202
        body = response.json()
        assert body["kind"] == "product"
        assert body["status"] == "pending"

        status_response = client.get(f"/crawl/tasks/{body['task_id']}")
        assert status_response.status_code == 200
        assert status_response.json()["priority"] == 3
        assert status_response.json()["status"] == "pending"

    def test_unknown_kind_rejected(self, client: TestClient) -> None:
        response = client.post("/crawl/tasks", json={"kind": "teleport"})
        assert response.status_code == 400
        assert "unknown kind" in response.json()["detail"]

    def test_missing_kind_is_unprocessable(self, client: TestClient) -> None:
        assert client.post("/crawl/tasks", json={"payload": {}}).status_code == 422

    def test_unknown_task(self, client: TestClient) -> None:
        assert client.get("/crawl/tasks/nope").status_code == 404

    def test_clear_queue(self, client: TestClient) -> None:
        for index in range(3):
            client.post("/crawl/tasks", json={"kind": "search", "payload": {"query": f"tv {index}"}})
        response = client.post("/crawl/queue/clear")
        assert response.status_code == 200
        assert response.json() == {"cleared": 3}

    def test_pause_resume_and_stats(self, client: TestClient) -> None:
        assert client.post("/crawl/queue/pause").status_code == 204
        stats = client.get("/crawl/stats").json()
        assert stats["queue"]["status"] == "paused"
        assert stats["total_requests"] == 0
        assert client.post("/crawl/queue/clear").json() == {"cleared": 0}
        assert client.post("/crawl/queue/resume").status_code == 204


# ---------------------------------------------------------------------------
# Checkout router
# ---------------------------------------------------------------------------


class TestCheckoutRouter:
    def _create(self, client: TestClient) -> str:
        response = client.post("/checkout/sessions", json={"user_id": "u1", "product_id": "oled55"})
        assert response.status_code == 201
        return response.json()["id"]

    def test_create_session(self, client: TestClient) -> None:
        response = client.post("/checkout/sessions", json={"user_id": "u1", "product_id": "oled55"})
        body = response.json()
        assert body["state"] == "created"
        assert body["progress"] == 0
        assert body["collected_info"] == {}

    def test_blank_ids_rejected(self, client: TestClient) -> None:
        assert client.post("/checkout/sessions", json={"user_id": "", "product_id": "x"}).status_code == 422

    def test_unknown_session(self, client: TestClient) -> None:
        assert client.get("/checkout/sessions/nope").status_code == 404
        assert client.patch("/checkout/sessions/nope/info", json={"info": {}}).status_code == 404
        assert client.get("/checkout/sessions/nope/missing-fields").status_code == 404
        assert client.post("/checkout/sessions/nope/deeplink").status_code == 404
        assert client.post("/checkout/sessions/nope/complete").status_code == 404

    def test_collect_then_complete(self, client: TestClient) -> None:
        session_id = self._create(client)

        missing = client.get(f"/checkout/sessions/{session_id}/missing-fields").json()
        assert missing == [{"name": "email", "type": "email", "label": "E-mail"}]
        assert client.post(f"/checkout/sessions/{session_id}/complete").status_code == 409

        response = client.patch(
            f"/checkout/sessions/{session_id}/info",
            json={"info": {"email": "ana@example.com", "password": "hunter2"}},
        )
        assert response.status_code == 200
        assert response.json()["state"] == "ready"
        assert response.json()["progress"] == 100

        deeplink = client.post(f"/checkout/sessions/{session_id}/deeplink").json()
        assert deeplink["success"] is True
        assert deeplink["has_all_required_info"] is True
        assert deeplink["url"].startswith("https://shop.test/cart?")
        assert "hunter2" not in deeplink["url"]

        completed = client.post(f"/checkout/sessions/{session_id}/complete")
        assert completed.status_code == 200
        assert completed.json()["state"] == "completed"

        late = client.patch(f"/checkout/sessions/{session_id}/info", json={"info": {"phone": "1"}})
        assert late.status_code == 409

    def test_deeplink_without_descriptor(self, client: TestClient) -> None:
        response = client.post("/checkout/sessions", json={"user_id": "u1", "product_id": "unknown"})
        deeplink = client.post(f"/checkout/sessions/{response.json()['id']}/deeplink").json()
        assert deeplink == {
            "success": False,
            "url": None,
            "has_all_required_info": None,
            "error": "Checkout process data not available",
        }
