"""
Selector-probe extractor used when the completion service is unavailable.

Probes come from the site configuration: each names a field and an ordered
list of CSS selectors, and the first selector that yields a non-empty value
wins.
"""

from __future__ import annotations

import re
from typing import Any
from urllib.parse import urljoin

from bs4 import BeautifulSoup, Tag

from app.crawling.config.models import ProbeSet, ProbeSpec, SiteConfig

PRICE_CLEAN_REGEX = re.compile(r"[^\d,.]")
DEFAULT_LISTING_LIMIT = 50

_VARIANT_GROUP_SELECTORS = (".option-group", "fieldset")
_VARIANT_TITLE_SELECTORS = ("legend", ".option-title", "label")
_VARIANT_OPTION_SELECTORS = ("option", ".option-item")


class DomFallbackExtractor:
    """
    Deterministic field extraction from ordered selector probes.
    """

    def __init__(self, *, site_config: SiteConfig, parser: str = "html.parser") -> None:
        self.site_config = site_config
        self.parser = parser

    def extract(
        self,
        markup: str,
        *,
        target: str = "product",
        category: str | None = None,
        base_url: str | None = None,
        limit: int | None = None,
    ) -> dict[str, Any]:
        """
        Run the probe set named `target` against the page.

        Listing probe sets return `{"products": [...]}`; detail probe sets
        return one flat document holding only the fields that matched.
        """

        probe_set = self.site_config.probe_set(target, category)
        if probe_set is None:
            return {}

        soup = BeautifulSoup(markup or "", self.parser)
        page_url = base_url or self.site_config.base_url
        if probe_set.is_listing:
            return {
                "products": self.extract_listing(
                    soup,
                    probe_set=probe_set,
                    base_url=page_url,
                    limit=limit or DEFAULT_LISTING_LIMIT,
                )
            }
        return self.extract_fields(soup, probe_set=probe_set, base_url=page_url)

    def extract_fields(
        self,
        root: Tag,
        *,
        probe_set: ProbeSet,
        base_url: str,
    ) -> dict[str, Any]:
        document: dict[str, Any] = {}
        for probe in probe_set.probes:
            value = self.run_probe(root, probe, base_url=base_url)
            if _has_value(value):
                document[probe.field] = value
        return document

    def extract_listing(
        self,
        root: Tag,
        *,
        probe_set: ProbeSet,
        base_url: str,
        limit: int = DEFAULT_LISTING_LIMIT,
    ) -> list[dict[str, Any]]:
        items: list[Tag] = []
        for selector in probe_set.item_selectors:
            items = root.select(selector)
            if items:
                break

        products: list[dict[str, Any]] = []
        for item in items:
            product = self.extract_fields(item, probe_set=probe_set, base_url=base_url)
            if not product.get("title"):
                continue
            product["extraction_method"] = "dom"
            products.append(product)
            if len(products) >= limit:
                break
        return products

    def run_probe(self, root: Tag, probe: ProbeSpec, *, base_url: str) -> Any:
        """
        Evaluate one probe; returns None when no selector matched.
        """

        if probe.mode == "exists":
            return any(root.select_one(selector) is not None for selector in probe.selectors)
        if probe.mode in {"list", "attribute_list"}:
            return self._probe_many(root, probe, base_url=base_url)
        if probe.mode == "key_value":
            return self._first_non_empty(root, probe, _read_key_values)
        if probe.mode == "variants":
            return self._first_non_empty(root, probe, _read_variants)

        for selector in probe.selectors:
            node = root.select_one(selector)
            if node is None:
                continue
            if probe.mode == "attribute":
                value = _read_attribute(node, probe.attributes)
                if value:
                    return urljoin(base_url, value) if _looks_like_path(probe, value) else value
                continue

            text = _clean_text(node.get_text(" ", strip=True)) or _read_attribute(node, probe.attributes)
            if not text:
                continue
            if probe.mode == "price":
                cleaned = PRICE_CLEAN_REGEX.sub("", text)
                if cleaned:
                    return cleaned
                continue
            return text
        return None

    def _probe_many(self, root: Tag, probe: ProbeSpec, *, base_url: str) -> list[str]:
        for selector in probe.selectors:
            values: list[str] = []
            for node in root.select(selector):
                if probe.mode == "attribute_list":
                    value = _read_attribute(node, probe.attributes)
                    if value:
                        value = urljoin(base_url, value)
                else:
                    value = _clean_text(node.get_text(" ", strip=True))
                if value and value not in values:
                    values.append(value)
                if probe.limit is not None and len(values) >= probe.limit:
                    break
            if values:
                return values
        return []

    @staticmethod
    def _first_non_empty(root: Tag, probe: ProbeSpec, reader) -> Any:
        for selector in probe.selectors:
            node = root.select_one(selector)
            if node is None:
                continue
            value = reader(node)
            if value:
                return value
        return None


def _read_key_values(node: Tag) -> dict[str, str]:
    specs: dict[str, str] = {}
    for row in node.select("tr"):
        label = row.find("th")
        value = row.find("td")
        if label is None:
            cells = row.find_all("td")
            if len(cells) >= 2:
                label, value = cells[0], cells[1]
        if label is None or value is None:
            continue
        key = _clean_text(label.get_text(" ", strip=True))
        if key:
            specs[key] = _clean_text(value.get_text(" ", strip=True))
    if specs:
        return specs

    for index, item in enumerate(node.select("li")):
        text = _clean_text(item.get_text(" ", strip=True))
        if not text:
            continue
        if ":" in text:
            key, value = text.split(":", 1)
            specs[key.strip()] = value.strip()
        else:
            specs[f"item_{index}"] = text
    return specs


def _read_variants(node: Tag) -> list[dict[str, Any]]:
    groups: list[Tag] = []
    for selector in _VARIANT_GROUP_SELECTORS:
        groups = node.select(selector)
        if groups:
            break
    if not groups:
        groups = [node]

    variants: list[dict[str, Any]] = []
    for group in groups:
        name = ""
        for selector in _VARIANT_TITLE_SELECTORS:
            title = group.select_one(selector)
            if title is not None:
                name = _clean_text(title.get_text(" ", strip=True))
                break

        options: list[str] = []
        for selector in _VARIANT_OPTION_SELECTORS:
            for option in group.select(selector):
                text = _clean_text(option.get_text(" ", strip=True)) or str(option.get("value", "")).strip()
                if text and text not in options:
                    options.append(text)
            if options:
                break
        if options:
            variants.append({"name": name or "option", "options": options})
    return variants


def _read_attribute(node: Tag, attributes: tuple[str, ...]) -> str:
    for attribute in attributes:
        raw = node.get(attribute)
        if isinstance(raw, list):
            raw = " ".join(raw)
        if raw and str(raw).strip():
            return str(raw).strip()
    return ""


def _looks_like_path(probe: ProbeSpec, value: str) -> bool:
    return probe.field in {"url", "link", "image", "image_url"} or value.startswith("/")


def _clean_text(value: str) -> str:
    return re.sub(r"\s+", " ", value).strip()


def _has_value(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, bool):
        return value
    if isinstance(value, (str, list, dict)):
        return len(value) > 0
    return True
