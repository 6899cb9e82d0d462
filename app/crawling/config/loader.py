"""
JSON loader for target-site configuration.
"""

from __future__ import annotations

import json
from pathlib import Path

from app.crawling.config.models import (
    PROBE_MODES,
    NavigationSelectors,
    ProbeSet,
    ProbeSpec,
    SiteConfig,
)

DEFAULT_SITE_CONFIG_PATH = "app/crawling/config/site.json"


def _project_root() -> Path:
    return Path(__file__).resolve().parents[3]


def resolve_config_path(raw_path: str) -> Path:
    candidate = Path(raw_path)
    if candidate.is_absolute():
        return candidate
    return (_project_root() / candidate).resolve()


def load_site_config(*, config_path: str = DEFAULT_SITE_CONFIG_PATH) -> SiteConfig:
    """
    Load the site configuration from a JSON file.
    """

    path = resolve_config_path(config_path)
    if not path.exists():
        raise FileNotFoundError(f"Site config file not found: {path}")

    raw_data = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(raw_data, dict):
        raise ValueError("Invalid site config: top-level value must be an object.")
    return parse_site_config(raw_data)


def parse_site_config(raw_data: dict) -> SiteConfig:
    site = raw_data.get("site", {})
    if not isinstance(site, dict):
        raise ValueError("Invalid site config: 'site' must be an object.")

    base_url = str(site.get("base_url", "")).strip()
    if not base_url:
        raise ValueError("Invalid site config: 'site.base_url' is required.")

    return SiteConfig(
        name=str(site.get("name", "")).strip() or "default",
        base_url=base_url.rstrip("/"),
        search_url=_optional_str(site.get("search_url")) or f"{base_url.rstrip('/')}/search?q={{query}}",
        checkout_url=_optional_str(site.get("checkout_url")),
        locale=_optional_str(site.get("locale")),
        extraction_goals=_normalize_goals(raw_data.get("extraction_goals", {})),
        probe_sets=_normalize_probe_sets(raw_data.get("probe_sets", {})),
        navigation=_normalize_navigation(raw_data.get("navigation", {})),
    )


def _normalize_goals(goals: object) -> dict[str, str]:
    if not isinstance(goals, dict):
        return {}

    normalized: dict[str, str] = {}
    for key, value in goals.items():
        if isinstance(key, str) and isinstance(value, str) and value.strip():
            normalized[key.strip().lower()] = value.strip()
    return normalized


def _normalize_probe_sets(probe_sets: object) -> dict[str, ProbeSet]:
    if not isinstance(probe_sets, dict):
        return {}

    normalized: dict[str, ProbeSet] = {}
    for name, entry in probe_sets.items():
        if not isinstance(name, str) or not isinstance(entry, dict):
            continue
        probes = tuple(
            probe
            for probe in (_normalize_probe(item) for item in entry.get("probes", []))
            if probe is not None
        )
        key = name.strip().lower()
        normalized[key] = ProbeSet(
            name=key,
            probes=probes,
            item_selectors=_selector_tuple(entry.get("item_selectors")),
        )
    return normalized


def _normalize_probe(entry: object) -> ProbeSpec | None:
    if not isinstance(entry, dict):
        return None

    field_name = str(entry.get("field", "")).strip()
    selectors = _selector_tuple(entry.get("selectors"))
    if not field_name or not selectors:
        return None

    mode = str(entry.get("mode", "text")).strip().lower()
    if mode not in PROBE_MODES:
        raise ValueError(f"Invalid probe mode '{mode}' for field '{field_name}'.")

    limit = entry.get("limit")
    return ProbeSpec(
        field=field_name,
        selectors=selectors,
        mode=mode,
        attributes=_selector_tuple(entry.get("attributes")),
        limit=int(limit) if isinstance(limit, int) and limit > 0 else None,
    )


def _normalize_navigation(navigation: object) -> NavigationSelectors:
    if not isinstance(navigation, dict):
        return NavigationSelectors()

    markers = _selector_tuple(navigation.get("checkout_url_markers"))
    return NavigationSelectors(
        next_page=_selector_tuple(navigation.get("next_page")),
        buy_buttons=_selector_tuple(navigation.get("buy_buttons")),
        next_step_buttons=_selector_tuple(navigation.get("next_step_buttons")),
        checkout_url_markers=tuple(marker.lower() for marker in markers) or ("checkout", "cart"),
        checkout_step_indicators=_selector_tuple(navigation.get("checkout_step_indicators")),
    )


def _selector_tuple(value: object) -> tuple[str, ...]:
    if isinstance(value, str):
        return (value.strip(),) if value.strip() else ()
    if isinstance(value, list):
        return tuple(
            item.strip()
            for item in value
            if isinstance(item, str) and item.strip()
        )
    return ()


def _optional_str(value: object) -> str | None:
    if not isinstance(value, str):
        return None
    stripped = value.strip()
    return stripped or None
