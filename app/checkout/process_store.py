"""
Persistence for captured checkout process descriptors.

Lookup falls back from the product id to its category and then to the
`default` descriptor. Loaded descriptors are cached in-process.
"""

from __future__ import annotations

import logging
import re
import threading
from datetime import datetime, timezone
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from app.checkout.descriptor import CheckoutProcessDescriptor, FieldDescriptor
from app.crawling.logging_utils import error_fields, log_event
from app.crawling.storage.base import DocumentStorage
from db.models.crawl_document import CrawlDocumentKind

logger = logging.getLogger(__name__)

DEFAULT_PROCESS_ID = "default"
_UNSAFE_ID_CHARS = re.compile(r"[^a-zA-Z0-9\-_]")

_FIELD_GROUPS: tuple[tuple[str, tuple[str, ...], tuple[str, ...]], ...] = (
    (
        "personal",
        ("name", "email", "phone", "tel"),
        ("nome", "email", "telefone"),
    ),
    (
        "address",
        ("address", "city", "state", "zip", "cep", "postal"),
        ("endereco", "cidade", "estado", "cep"),
    ),
    (
        "shipping",
        ("shipping", "delivery"),
        ("entrega", "envio"),
    ),
    (
        "payment",
        ("payment", "card", "credit", "cvv"),
        ("pagamento", "cartao"),
    ),
    (
        "terms",
        ("terms", "privacy", "agree", "policy"),
        ("termos", "concordo"),
    ),
)


def safe_process_id(product_id: str) -> str:
    return _UNSAFE_ID_CHARS.sub("_", product_id)


class CheckoutProcessStore:
    """
    Descriptor store backed by crawl document storage (`checkout` kind).
    """

    def __init__(self, *, storage: DocumentStorage) -> None:
        self._storage = storage
        self._cache: dict[str, CheckoutProcessDescriptor] = {}
        self._lock = threading.Lock()

    def save(self, product_id: str, descriptor: CheckoutProcessDescriptor) -> None:
        key = safe_process_id(product_id)
        now = datetime.now(timezone.utc).isoformat()
        payload = descriptor.model_dump(mode="json")
        payload["_meta"] = {"product_id": product_id, "created_at": now, "updated_at": now}
        self._storage.save(CrawlDocumentKind.CHECKOUT, key, payload)
        with self._lock:
            self._cache[key] = descriptor
        log_event(logger, logging.INFO, "checkout_process_saved", product_id=product_id, steps=len(descriptor.steps))

    def load(self, product_id: str, category: str | None = None) -> CheckoutProcessDescriptor | None:
        """
        Load the descriptor for a product, then its category, then `default`.
        """

        for candidate in (product_id, category, DEFAULT_PROCESS_ID):
            if not candidate:
                continue
            descriptor = self._load_one(safe_process_id(candidate))
            if descriptor is not None:
                return descriptor
        return None

    def recent(self, limit: int = 5) -> list[CheckoutProcessDescriptor]:
        descriptors: list[CheckoutProcessDescriptor] = []
        for payload in self._storage.list_recent(CrawlDocumentKind.CHECKOUT, limit=limit):
            descriptor = self._parse(payload, key="recent")
            if descriptor is not None:
                descriptors.append(descriptor)
        return descriptors

    def clear_cache(self) -> None:
        with self._lock:
            self._cache.clear()
        log_event(logger, logging.INFO, "checkout_process_cache_cleared")

    def _load_one(self, key: str) -> CheckoutProcessDescriptor | None:
        with self._lock:
            cached = self._cache.get(key)
        if cached is not None:
            return cached

        payload = self._storage.load(CrawlDocumentKind.CHECKOUT, key)
        if payload is None:
            return None
        descriptor = self._parse(payload, key=key)
        if descriptor is not None:
            with self._lock:
                self._cache[key] = descriptor
        return descriptor

    @staticmethod
    def _parse(payload: dict[str, Any], *, key: str) -> CheckoutProcessDescriptor | None:
        try:
            if "steps" not in payload and ("forms" in payload or "nextStep" in payload):
                return CheckoutProcessDescriptor.from_linked(payload, product_id=key)
            return CheckoutProcessDescriptor.model_validate(payload)
        except PydanticValidationError as exc:
            log_event(logger, logging.ERROR, "checkout_process_invalid", key=key, **error_fields(exc))
            return None


def extract_required_fields(descriptor: CheckoutProcessDescriptor | None) -> list[FieldDescriptor]:
    if descriptor is None:
        return []
    return descriptor.required_fields()


def analyze_field_mappings(descriptor: CheckoutProcessDescriptor | None) -> dict[str, list[FieldDescriptor]]:
    """
    Group every field across all steps by the kind of information it collects.
    """

    groups: dict[str, list[FieldDescriptor]] = {name: [] for name, _, _ in _FIELD_GROUPS}
    groups["other"] = []
    if descriptor is None:
        return groups

    for step in descriptor.walk():
        for field in step.iter_fields():
            name = field.name.lower()
            label = (field.label or "").lower()
            for group, name_tokens, label_tokens in _FIELD_GROUPS:
                if any(token in name for token in name_tokens) or any(token in label for token in label_tokens):
                    groups[group].append(field)
                    break
            else:
                groups["other"].append(field)
    return groups
