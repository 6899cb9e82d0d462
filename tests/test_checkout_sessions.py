"""
tests/test_checkout_sessions.py

Pytest unit tests for checkout descriptors, field mapping and the session engine.

Descriptors are stored in InMemoryDocumentStorage; the engine runs on a
controllable clock and deterministic session ids.

Coverage
--------
- Synonym matching across languages and camelCase names
- Field mapping strategies, including name splitting and select defaults
- Password fields are never mapped into a deep link
- Process store: round trip, product -> category -> default fallback,
  linked `nextStep` documents, invalid payloads
- Field grouping and required-field extraction
- Session lifecycle: created -> collecting -> ready -> completed
- Missing fields, progress, next step and deep link generation
- Lazy expiry and strict-window cleanup
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from urllib.parse import parse_qs, urlsplit

import pytest

from app.checkout.descriptor import CheckoutProcessDescriptor
from app.checkout.field_mapping import map_field, map_user_info_to_params
from app.checkout.process_store import (
    CheckoutProcessStore,
    analyze_field_mappings,
    extract_required_fields,
    safe_process_id,
)
from app.checkout.session_engine import CheckoutSessionEngine, SessionState, is_field_satisfied
from app.checkout.synonyms import is_concept_satisfied, lookup, match_concept, normalize_text
from app.crawling.storage.base import InMemoryDocumentStorage
from db.models.crawl_document import CrawlDocumentKind

T0 = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def _descriptor(product_id: str = "p1", base_url: str = "https://shop.test/checkout") -> CheckoutProcessDescriptor:
    return CheckoutProcessDescriptor.model_validate(
        {
            "product_id": product_id,
            "url": base_url,
            "steps": [
                {
                    "index": 0,
                    "name": "identification",
                    "url": base_url,
                    "forms": [
                        {
                            "id": "personal",
                            "method": "post",
                            "fields": [
                                {"name": "name", "type": "text", "required": True, "label": "Nome completo"},
                                {"name": "email", "type": "email", "required": True, "label": "E-mail"},
                                {"name": "cep", "type": "text", "required": True, "label": "CEP"},
                                {"name": "password", "type": "password", "label": "Senha"},
                                {"name": "newsletter", "type": "checkbox", "label": "Receber newsletter"},
                            ],
                        }
                    ],
                },
                {
                    "index": 1,
                    "name": "payment",
                    "url": f"{base_url}/payment",
                    "forms": [
                        {
                            "fields": [
                                {
                                    "name": "payment_method",
                                    "type": "select",
                                    "required": True,
                                    "label": "Forma de pagamento",
                                    "options": [
                                        {"value": "", "text": "Selecione"},
                                        {"value": "pix", "text": "Pix"},
                                        {"value": "cc", "text": "Credit card"},
                                    ],
                                },
                                {"name": "terms", "type": "checkbox", "required": False, "label": "Aceito os termos"},
                            ]
                        }
                    ],
                },
            ],
        }
    )


def _field(**data):
    return CheckoutProcessDescriptor.model_validate(
        {"steps": [{"index": 0, "name": "s", "forms": [{"fields": [data]}]}]}
    ).steps[0].forms[0].fields[0]


class Clock:
    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta) -> None:
        self.now = self.now + timedelta(**delta)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def storage() -> InMemoryDocumentStorage:
    return InMemoryDocumentStorage()


@pytest.fixture()
def store(storage: InMemoryDocumentStorage) -> CheckoutProcessStore:
    store = CheckoutProcessStore(storage=storage)
    store.save("p1", _descriptor())
    return store


@pytest.fixture()
def clock() -> Clock:
    return Clock(T0)


@pytest.fixture()
def engine(store: CheckoutProcessStore, clock: Clock) -> CheckoutSessionEngine:
    ids = iter(f"session-{index}" for index in range(100))
    return CheckoutSessionEngine(process_store=store, clock=clock, id_factory=lambda: next(ids))


# ---------------------------------------------------------------------------
# Synonyms
# ---------------------------------------------------------------------------


class TestSynonyms:
    def test_normalize_splits_camel_case_and_accents(self) -> None:
        assert normalize_text("zipCode") == "zip code"
        assert normalize_text("Endereço") == "endereco"

    def test_zip_concepts(self) -> None:
        assert match_concept("cep") == "zip"
        assert match_concept("zipCode") == "zip"
        assert match_concept("billing", "Código postal") == "zip"

    def test_short_tokens_need_whole_words(self) -> None:
        assert match_concept("message") == "comment"
        assert match_concept("user_age") == "age"

    def test_no_concept(self) -> None:
        assert match_concept("xyz123") is None
        assert match_concept(None, "") is None

    def test_lookup_is_case_insensitive(self) -> None:
        assert lookup({"ZipCode": "01001-000"}, "zipcode") == "01001-000"
        assert lookup({}, "zip") is None

    def test_first_name_derived_from_full_name(self) -> None:
        assert is_concept_satisfied("first_name", {"name": "Ana Souza"})
        assert not is_concept_satisfied("first_name", {"name": ""})


# ---------------------------------------------------------------------------
# Field mapping
# ---------------------------------------------------------------------------


class TestFieldMapping:
    def test_full_name_split(self) -> None:
        info = {"name": "Ana Maria Souza"}
        assert map_field(_field(name="firstName", type="text"), info) == "Ana"
        assert map_field(_field(name="lastName", type="text"), info) == "Maria Souza"

    def test_explicit_first_name_wins(self) -> None:
        info = {"name": "Ana Souza", "firstName": "Aninha"}
        assert map_field(_field(name="first_name", type="text"), info) == "Aninha"

    def test_password_never_mapped(self) -> None:
        info = {"password": "hunter2", "senha": "hunter2"}
        assert map_field(_field(name="password", type="password", required=True), info) is None
        assert map_field(_field(name="senha", type="PASSWORD"), info) is None

    def test_country_select_defaults(self) -> None:
        field = _field(
            name="country",
            type="select",
            options=[{"value": "AR", "text": "Argentina"}, {"value": "BR", "text": "Brasil"}],
        )
        assert map_field(field, {}) == "BR"

    def test_required_select_falls_back_to_first_valued_option(self) -> None:
        field = _field(
            name="installments",
            type="select",
            required=True,
            options=[{"value": "", "text": "Choose"}, {"value": "1", "text": "1x"}],
        )
        assert map_field(field, {}) == "1"

    def test_checkbox_rules(self) -> None:
        terms = _field(name="terms", type="checkbox", label="Aceito os termos")
        newsletter = _field(name="newsletter", type="checkbox")
        assert map_field(terms, {}) == "on"
        assert map_field(newsletter, {}) is None
        assert map_field(newsletter, {"subscribeNewsletter": True}) == "on"

    def test_tel_and_quantity(self) -> None:
        assert map_field(_field(name="celular", type="tel"), {"phone": "11 99999-0000"}) == "11 99999-0000"
        assert map_field(_field(name="qty", type="number"), {}) == "1"

    def test_hidden_keeps_value(self) -> None:
        assert map_field(_field(name="csrf", type="hidden", value="tok"), {}) == "tok"

    def test_descriptor_params(self) -> None:
        params = map_user_info_to_params(
            _descriptor(),
            {"name": "Ana Souza", "email": "ana@example.com", "zipCode": "01001-000", "password": "x"},
        )
        assert params["name"] == "Ana Souza"
        assert params["email"] == "ana@example.com"
        assert params["cep"] == "01001-000"
        assert params["payment_method"] == "cc"
        assert params["terms"] == "on"
        assert "password" not in params
        assert "newsletter" not in params


# ---------------------------------------------------------------------------
# Process store
# ---------------------------------------------------------------------------


class TestProcessStore:
    def test_round_trip(self, store: CheckoutProcessStore, storage: InMemoryDocumentStorage) -> None:
        store.clear_cache()
        loaded = store.load("p1")
        assert loaded is not None
        assert [step.name for step in loaded.steps] == ["identification", "payment"]
        assert storage.load(CrawlDocumentKind.CHECKOUT, "p1")["_meta"]["product_id"] == "p1"

    def test_fallback_to_category_then_default(self, store: CheckoutProcessStore) -> None:
        assert store.load("unknown") is None
        store.save("tv", _descriptor(product_id="tv", base_url="https://shop.test/tv-checkout"))
        assert store.load("unknown", category="tv").product_id == "tv"
        store.save("default", _descriptor(product_id="default", base_url="https://shop.test/any"))
        assert store.load("unknown", category="fridge").product_id == "default"

    def test_unsafe_ids_sanitized(self) -> None:
        assert safe_process_id("lg/oled 55") == "lg_oled_55"

    def test_linked_document_format(self, storage: InMemoryDocumentStorage) -> None:
        storage.save(
            CrawlDocumentKind.CHECKOUT,
            "legacy",
            {
                "url": "https://shop.test/cart",
                "productInfo": {"title": "TV"},
                "forms": [{"fields": [{"name": "email", "type": "email", "required": True}]}],
                "nextStep": {"url": "https://shop.test/pay", "forms": []},
            },
        )
        descriptor = CheckoutProcessStore(storage=storage).load("legacy")
        assert [step.name for step in descriptor.walk()] == ["initial", "step-1"]
        assert descriptor.product_info == {"title": "TV"}
        assert [field.name for field in descriptor.required_fields()] == ["email"]

    def test_invalid_payload_skipped(self, storage: InMemoryDocumentStorage) -> None:
        storage.save(CrawlDocumentKind.CHECKOUT, "broken", {"steps": "not-a-list"})
        assert CheckoutProcessStore(storage=storage).load("broken") is None

    def test_recent(self, store: CheckoutProcessStore) -> None:
        store.save("p2", _descriptor(product_id="p2"))
        assert [descriptor.product_id for descriptor in store.recent(limit=1)] == ["p2"]

    def test_field_groups(self) -> None:
        groups = analyze_field_mappings(_descriptor())
        assert [field.name for field in groups["personal"]] == ["name", "email"]
        assert [field.name for field in groups["address"]] == ["cep"]
        assert [field.name for field in groups["payment"]] == ["payment_method"]
        assert [field.name for field in groups["terms"]] == ["terms"]
        assert analyze_field_mappings(None)["other"] == []

    def test_required_fields(self) -> None:
        names = [field.name for field in extract_required_fields(_descriptor())]
        assert names == ["name", "email", "cep", "payment_method"]
        assert extract_required_fields(None) == []


# ---------------------------------------------------------------------------
# Session engine
# ---------------------------------------------------------------------------


class TestSessionLifecycle:
    def test_new_session(self, engine: CheckoutSessionEngine) -> None:
        session_id = engine.create_session("u1", "p1")
        session = engine.get_session(session_id)
        assert session_id == "session-0"
        assert session.state is SessionState.CREATED
        assert session.created_at == T0
        assert len(engine) == 1

    def test_missing_fields_then_ready(self, engine: CheckoutSessionEngine) -> None:
        session_id = engine.create_session("u1", "p1")
        missing = [field.name for field in engine.get_missing_required_fields(session_id)]
        assert missing == ["name", "email", "cep"]

        assert engine.update_session_info(session_id, {"name": "Ana Souza"})
        assert engine.get_session(session_id).state is SessionState.COLLECTING
        missing = [field.name for field in engine.get_missing_required_fields(session_id)]
        assert missing == ["email", "cep"]

        engine.update_session_info(session_id, {"email": "ana@example.com", "zipCode": "01001-000"})
        assert engine.get_missing_required_fields(session_id) == []
        assert engine.get_session(session_id).state is SessionState.READY

    def test_label_first_token_satisfies_field(self) -> None:
        field = _field(name="fld_93", type="text", required=True, label="Bairro de entrega")
        assert is_field_satisfied(field, {"bairro": "Centro"})

    def test_progress_counts_all_steps(self, engine: CheckoutSessionEngine) -> None:
        session_id = engine.create_session("u1", "p1")
        assert engine.calculate_progress(session_id) == 0
        engine.update_session_info(session_id, {"name": "Ana", "email": "a@b.c", "cep": "01001-000"})
        assert engine.calculate_progress(session_id) == 75
        engine.update_session_info(session_id, {"paymentMethod": "pix"})
        assert engine.calculate_progress(session_id) == 100

    def test_next_step_follows_completed_steps(self, engine: CheckoutSessionEngine) -> None:
        session_id = engine.create_session("u1", "p1")
        assert engine.get_next_step(session_id).name == "identification"
        engine.update_session_info(session_id, {"name": "Ana", "email": "a@b.c", "cep": "01001-000"})
        assert engine.get_session(session_id).state is SessionState.READY

        engine.add_completed_step(session_id, "identification")
        assert engine.get_next_step(session_id).name == "payment"
        required = [field.name for field in engine.get_required_fields_for_current_step(session_id)]
        assert required == ["payment_method"]
        assert engine.get_session(session_id).state is SessionState.COLLECTING

    def test_complete_only_from_ready(self, engine: CheckoutSessionEngine) -> None:
        session_id = engine.create_session("u1", "p1")
        assert engine.complete_checkout(session_id) is False
        engine.update_session_info(session_id, {"name": "Ana", "email": "a@b.c", "cep": "01001-000"})
        assert engine.complete_checkout(session_id) is True
        assert engine.get_session(session_id).state is SessionState.COMPLETED
        assert engine.update_session_info(session_id, {"phone": "1"}) is False

    def test_explicit_state_change(self, engine: CheckoutSessionEngine) -> None:
        session_id = engine.create_session("u1", "p1")
        assert engine.update_session_state(session_id, "ready")
        assert engine.get_session(session_id).state is SessionState.READY
        with pytest.raises(ValueError):
            engine.update_session_state(session_id, "teleported")

    def test_unknown_session(self, engine: CheckoutSessionEngine) -> None:
        assert engine.get_session("missing") is None
        assert engine.update_session_info("missing", {"a": 1}) is False
        assert engine.add_completed_step("missing", "x") is False
        assert engine.get_missing_required_fields("missing") == []
        assert engine.calculate_progress("missing") == 0
        assert engine.complete_checkout("missing") is False

    def test_sessions_are_copies(self, engine: CheckoutSessionEngine) -> None:
        session_id = engine.create_session("u1", "p1")
        engine.get_session(session_id).collected_info["email"] = "tampered@example.com"
        assert engine.get_session(session_id).collected_info == {}

    def test_remove_session(self, engine: CheckoutSessionEngine) -> None:
        session_id = engine.create_session("u1", "p1")
        assert engine.remove_session(session_id) is True
        assert engine.remove_session(session_id) is False


class TestDeepLink:
    def test_deeplink_contains_mapped_params(self, engine: CheckoutSessionEngine, clock: Clock) -> None:
        session_id = engine.create_session("u1", "p1")
        engine.update_session_info(
            session_id,
            {"name": "Ana Souza", "email": "ana@example.com", "cep": "01001-000", "password": "hunter2"},
        )
        result = engine.generate_deeplink(session_id)
        assert result["success"] is True
        assert result["has_all_required_info"] is True
        parts = urlsplit(result["url"])
        query = parse_qs(parts.query)
        assert f"{parts.scheme}://{parts.netloc}{parts.path}" == "https://shop.test/checkout"
        assert query["session_id"] == [session_id]
        assert query["email"] == ["ana@example.com"]
        assert query["_t"] == [str(int(T0.timestamp() * 1000))]
        assert "hunter2" not in result["url"]
        assert "password" not in query

    def test_deeplink_reports_missing_info(self, engine: CheckoutSessionEngine) -> None:
        session_id = engine.create_session("u1", "p1")
        result = engine.generate_deeplink(session_id)
        assert result["success"] is True
        assert result["has_all_required_info"] is False

    def test_deeplink_without_descriptor(self, engine: CheckoutSessionEngine) -> None:
        session_id = engine.create_session("u1", "no-such-product")
        assert engine.generate_deeplink(session_id) == {
            "success": False,
            "error": "Checkout process data not available",
        }

    def test_deeplink_unknown_session(self, engine: CheckoutSessionEngine) -> None:
        assert engine.generate_deeplink("missing")["error"] == "Session not found"

    def test_deeplink_invalid_base_url(self, store: CheckoutProcessStore, clock: Clock) -> None:
        store.save("broken-url", _descriptor(product_id="broken-url", base_url="not a url"))
        engine = CheckoutSessionEngine(
            process_store=store,
            clock=clock,
            default_checkout_url="https://shop.test/fallback",
        )
        result = engine.generate_deeplink(engine.create_session("u1", "broken-url"))
        assert result["success"] is False
        assert result["url"] == "https://shop.test/fallback"

    def test_category_descriptor_used(self, engine: CheckoutSessionEngine, store: CheckoutProcessStore) -> None:
        store.save("tv", _descriptor(product_id="tv", base_url="https://shop.test/tv-checkout"))
        session_id = engine.create_session("u1", "oled55", category="tv")
        assert engine.generate_deeplink(session_id)["url"].startswith("https://shop.test/tv-checkout?")


class TestExpiry:
    def test_lazy_expiry_marks_state(self, engine: CheckoutSessionEngine, clock: Clock) -> None:
        session_id = engine.create_session("u1", "p1")
        clock.advance(minutes=31)
        assert engine.get_session(session_id).state is SessionState.EXPIRED
        assert engine.update_session_info(session_id, {"name": "Ana"}) is False

    def test_cleanup_uses_strict_window(self, engine: CheckoutSessionEngine, clock: Clock) -> None:
        stale = engine.create_session("u1", "p1")
        clock.advance(minutes=2)
        fresh = engine.create_session("u2", "p1")
        clock.advance(minutes=29)

        assert engine.cleanup_expired_sessions() == 1
        assert engine.get_session(stale) is None
        assert engine.get_session(fresh) is not None

    def test_activity_extends_session(self, engine: CheckoutSessionEngine, clock: Clock) -> None:
        session_id = engine.create_session("u1", "p1")
        clock.advance(minutes=20)
        engine.update_session_info(session_id, {"name": "Ana"})
        clock.advance(minutes=20)
        assert engine.cleanup_expired_sessions() == 0
        assert engine.get_session(session_id).state is SessionState.COLLECTING

    def test_exact_window_is_kept(self, engine: CheckoutSessionEngine, clock: Clock) -> None:
        engine.create_session("u1", "p1")
        clock.advance(minutes=30)
        assert engine.cleanup_expired_sessions() == 0
        assert engine.cleanup_expired_sessions(window_minutes=10) == 1
