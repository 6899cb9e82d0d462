"""
Site configuration models for crawling and DOM fallback extraction.
"""

from __future__ import annotations

from dataclasses import dataclass, field

PROBE_MODES = {
    "text",
    "attribute",
    "price",
    "list",
    "attribute_list",
    "key_value",
    "variants",
    "exists",
}


@dataclass(frozen=True)
class ProbeSpec:
    """
    One field probe: ordered selectors tried until one yields a value.
    """

    field: str
    selectors: tuple[str, ...]
    mode: str = "text"
    attributes: tuple[str, ...] = ()
    limit: int | None = None


@dataclass(frozen=True)
class ProbeSet:
    """
    Named group of probes. `item_selectors` marks a repeated-item listing.
    """

    name: str
    probes: tuple[ProbeSpec, ...]
    item_selectors: tuple[str, ...] = ()

    @property
    def is_listing(self) -> bool:
        return bool(self.item_selectors)


@dataclass(frozen=True)
class NavigationSelectors:
    next_page: tuple[str, ...] = ()
    buy_buttons: tuple[str, ...] = ()
    next_step_buttons: tuple[str, ...] = ()
    checkout_url_markers: tuple[str, ...] = ("checkout", "cart")
    checkout_step_indicators: tuple[str, ...] = ()


@dataclass(frozen=True)
class SiteConfig:
    """
    Target-site configuration loaded from JSON.
    """

    name: str
    base_url: str
    search_url: str
    checkout_url: str | None = None
    locale: str | None = None
    extraction_goals: dict[str, str] = field(default_factory=dict)
    probe_sets: dict[str, ProbeSet] = field(default_factory=dict)
    navigation: NavigationSelectors = field(default_factory=NavigationSelectors)

    def goal_for(self, category: str | None) -> str:
        """
        Extraction goal for a product category, falling back to the default goal.
        """

        if category:
            goal = self.extraction_goals.get(category.strip().lower())
            if goal:
                return goal
        return self.extraction_goals.get("default", "Extract all product information")

    def probe_set(self, target: str, category: str | None = None) -> ProbeSet | None:
        """
        Resolve a probe set, layering `target:category` overrides on top of the base set.
        """

        base = self.probe_sets.get(target)
        if category is None:
            return base
        override = self.probe_sets.get(f"{target}:{category.strip().lower()}")
        if override is None:
            return base
        if base is None:
            return override

        overridden = {probe.field for probe in override.probes}
        merged = override.probes + tuple(
            probe for probe in base.probes if probe.field not in overridden
        )
        return ProbeSet(
            name=override.name,
            probes=merged,
            item_selectors=override.item_selectors or base.item_selectors,
        )
