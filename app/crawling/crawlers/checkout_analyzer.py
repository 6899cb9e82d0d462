"""
Checkout flow analyzer.

Walks from a product page through the buy button into the cart or checkout
and captures each step's forms, fields and buttons as a
`CheckoutProcessDescriptor`.
"""

from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import Any

from bs4 import BeautifulSoup, Tag

from app.checkout.descriptor import (
    ButtonDescriptor,
    CheckoutProcessDescriptor,
    CheckoutStep,
    FieldDescriptor,
    FieldOption,
    FormDescriptor,
)
from app.crawling.browser.base import BrowserCapability
from app.crawling.crawlers.base import CrawlerBase, product_id_from_url
from app.crawling.errors import StructuralMismatchError, ValidationError
from app.crawling.logging_utils import error_fields, log_event
from app.extraction.dom_fallback import DomFallbackExtractor

logger = logging.getLogger(__name__)

DEFAULT_MAX_DEPTH = 3
PRODUCT_INFO_TARGET = "checkout_product"

BUTTON_SELECTOR = 'button, input[type="button"], input[type="submit"], a.btn, .button, [role="button"]'
STEP_ITEM_SELECTOR = "li, .step, .step-item, .progress-step"
_NON_FIELD_INPUT_TYPES = {"submit", "button", "reset", "image"}
_ACTIVE_CLASSES = {"active", "current"}


class CheckoutAnalyzer(CrawlerBase):
    def __init__(
        self,
        *,
        dom_extractor: DomFallbackExtractor | None = None,
        max_depth: int = DEFAULT_MAX_DEPTH,
        screenshot_dir: str | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(**kwargs)
        self.dom_extractor = dom_extractor or DomFallbackExtractor(site_config=self.site_config)
        self.max_depth = max(1, max_depth)
        self.screenshot_dir = screenshot_dir

    async def analyze(
        self,
        product_url: str,
        options: dict[str, Any] | None = None,
    ) -> CheckoutProcessDescriptor:
        """
        Capture the checkout flow reachable from `product_url`.

        Raises:
            ValidationError: If no URL was given.
            StructuralMismatchError: If no buy button is visible or the click
                does not land on a cart or checkout page.
        """

        options = options or {}
        if not product_url:
            raise ValidationError("Product URL is required")
        max_depth = max(1, int(options.get("max_depth") or self.max_depth))
        product_id = options.get("product_id") or product_id_from_url(product_url)
        navigation = self.site_config.navigation

        async with self.pool.session() as browser:
            await browser.navigate(product_url)
            product_info = self.dom_extractor.extract(
                await browser.content(),
                target=PRODUCT_INFO_TARGET,
                base_url=product_url,
            )
            product_info["url"] = product_url

            buy_selector = await self.first_visible(browser, navigation.buy_buttons)
            if buy_selector is None:
                raise StructuralMismatchError("Buy button not found", url=product_url)
            await browser.click(buy_selector)
            await self.settle(browser)

            landed_on = await browser.current_url()
            if not any(marker in landed_on.lower() for marker in navigation.checkout_url_markers):
                raise StructuralMismatchError(
                    f"Not redirected to checkout or cart page: {landed_on}",
                    url=landed_on,
                    selector=buy_selector,
                )

            steps = [await self.capture_step(browser, index=0)]
            while len(steps) < max_depth:
                next_selector = await self.first_visible(browser, navigation.next_step_buttons)
                if next_selector is None:
                    break
                try:
                    await browser.click(next_selector)
                except StructuralMismatchError as exc:
                    log_event(logger, logging.INFO, "checkout_next_step_unreachable", selector=next_selector, **error_fields(exc))
                    break
                await self.settle(browser)
                steps.append(await self.capture_step(browser, index=len(steps), taken=steps))

        descriptor = CheckoutProcessDescriptor(
            product_id=product_id,
            url=steps[0].url,
            product_info=product_info,
            steps=steps,
        )
        log_event(
            logger,
            logging.INFO,
            "checkout_analyzed",
            product_id=product_id,
            steps=len(steps),
            required_fields=len(descriptor.required_fields()),
        )
        return descriptor

    async def capture_step(
        self,
        browser: BrowserCapability,
        *,
        index: int,
        taken: list[CheckoutStep] | None = None,
    ) -> CheckoutStep:
        url = await browser.current_url()
        title = await browser.title()
        step = parse_checkout_page(
            await browser.content(),
            index=index,
            url=url,
            title=title,
            step_indicators=self.site_config.navigation.checkout_step_indicators,
        )
        if taken and any(existing.name == step.name for existing in taken):
            step = step.model_copy(update={"name": f"{step.name}-{index}"})
        if self.screenshot_dir:
            await self._screenshot(browser, index)
        return step

    async def _screenshot(self, browser: BrowserCapability, index: int) -> None:
        path = Path(self.screenshot_dir) / f"checkout-step-{index}-{int(time.time() * 1000)}.png"
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            await browser.screenshot(str(path))
        except Exception as exc:
            log_event(logger, logging.WARNING, "checkout_screenshot_failed", path=str(path), **error_fields(exc))


def parse_checkout_page(
    markup: str,
    *,
    index: int,
    url: str | None = None,
    title: str | None = None,
    step_indicators: tuple[str, ...] = (),
) -> CheckoutStep:
    soup = BeautifulSoup(markup or "", "html.parser")
    name = _active_step_name(soup, step_indicators) or (title or "").strip()
    if not name:
        name = "initial" if index == 0 else f"step-{index}"

    return CheckoutStep(
        index=index,
        name=name,
        url=url,
        title=title,
        forms=[_parse_form(soup, form) for form in soup.find_all("form")],
        buttons=[_parse_button(node) for node in soup.select(BUTTON_SELECTOR)],
    )


def _active_step_name(soup: BeautifulSoup, indicators: tuple[str, ...]) -> str | None:
    for selector in indicators:
        container = soup.select_one(selector)
        if container is None:
            continue
        for item in container.select(STEP_ITEM_SELECTOR):
            classes = set(item.get("class") or [])
            if (
                classes & _ACTIVE_CLASSES
                or item.get("aria-current") == "step"
                or item.get("data-status") == "current"
            ):
                text = item.get_text(" ", strip=True)
                if text:
                    return text
    return None


def _parse_form(soup: BeautifulSoup, form: Tag) -> FormDescriptor:
    fields: list[FieldDescriptor] = []
    for node in form.find_all(["input", "select", "textarea"]):
        field = _parse_field(soup, node)
        if field is not None:
            fields.append(field)
    return FormDescriptor(
        id=form.get("id"),
        name=form.get("name"),
        action=form.get("action"),
        method=(form.get("method") or "get").lower(),
        fields=fields,
    )


def _parse_field(soup: BeautifulSoup, node: Tag) -> FieldDescriptor | None:
    if node.name == "input":
        field_type = (node.get("type") or "text").lower()
        if field_type in _NON_FIELD_INPUT_TYPES:
            return None
    else:
        field_type = node.name

    name = node.get("name") or node.get("id")
    if not name:
        return None

    options: list[FieldOption] = []
    if node.name == "select":
        options = [
            FieldOption(
                value=option.get("value", option.get_text(strip=True)),
                text=option.get_text(" ", strip=True),
                selected=option.has_attr("selected"),
                disabled=option.has_attr("disabled"),
            )
            for option in node.find_all("option")
        ]

    return FieldDescriptor(
        name=name,
        type=field_type,
        required=node.has_attr("required") or node.get("aria-required") == "true",
        id=node.get("id"),
        label=_field_label(soup, node),
        placeholder=node.get("placeholder"),
        value=node.get("value") if node.name == "input" else None,
        options=options,
    )


def _field_label(soup: BeautifulSoup, node: Tag) -> str | None:
    field_id = node.get("id")
    if field_id:
        label = soup.find("label", attrs={"for": field_id})
        if label is not None:
            return label.get_text(" ", strip=True) or None
    parent = node.find_parent("label")
    if parent is not None:
        return parent.get_text(" ", strip=True) or None
    return None


def _parse_button(node: Tag) -> ButtonDescriptor:
    text = node.get_text(" ", strip=True) or node.get("value") or ""
    classes = node.get("class") or []
    return ButtonDescriptor(
        text=text,
        type=node.get("type") or node.name,
        id=node.get("id"),
        class_name=" ".join(classes) or None,
    )
