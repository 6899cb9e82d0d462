"""
Checkout process descriptor: the captured shape of a multi-step purchase form.

Descriptors are read-only once captured. Step order is discovery order.
"""

from __future__ import annotations

from collections.abc import Iterator
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

DEFAULT_CHECKOUT_URL = "https://www.lge.com/br/checkout"


class _Descriptor(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore", populate_by_name=True)


class FieldOption(_Descriptor):
    value: str = ""
    text: str = ""
    selected: bool = False
    disabled: bool = False


class FieldDescriptor(_Descriptor):
    name: str
    type: str = "text"
    required: bool = False
    id: str | None = None
    label: str | None = None
    placeholder: str | None = None
    value: str | None = None
    options: list[FieldOption] = Field(default_factory=list)


class FormDescriptor(_Descriptor):
    id: str | None = None
    name: str | None = None
    action: str | None = None
    method: str | None = None
    fields: list[FieldDescriptor] = Field(default_factory=list)


class ButtonDescriptor(_Descriptor):
    text: str = ""
    type: str | None = None
    id: str | None = None
    class_name: str | None = None


class CheckoutStep(_Descriptor):
    index: int
    name: str
    url: str | None = None
    title: str | None = None
    forms: list[FormDescriptor] = Field(default_factory=list)
    buttons: list[ButtonDescriptor] = Field(default_factory=list)

    def iter_fields(self) -> Iterator[FieldDescriptor]:
        for form in self.forms:
            yield from form.fields

    def required_fields(self) -> list[FieldDescriptor]:
        return [field for field in self.iter_fields() if field.required]


class CheckoutProcessDescriptor(_Descriptor):
    """
    Ordered steps of one product's (or category's) checkout flow.
    """

    product_id: str = "default"
    url: str | None = None
    product_info: dict[str, Any] = Field(default_factory=dict)
    steps: list[CheckoutStep] = Field(default_factory=list)

    @property
    def base_url(self) -> str:
        if self.steps and self.steps[0].url:
            return self.steps[0].url
        return self.url or DEFAULT_CHECKOUT_URL

    def first_step(self) -> CheckoutStep | None:
        return self.steps[0] if self.steps else None

    def next_step(self, step: CheckoutStep) -> CheckoutStep | None:
        """
        Linked view over the ordered steps: step i points at step i + 1.
        """

        position = step.index + 1
        if 0 <= position < len(self.steps) and self.steps[position].index == position:
            return self.steps[position]
        for index, candidate in enumerate(self.steps):
            if candidate.name == step.name and index + 1 < len(self.steps):
                return self.steps[index + 1]
        return None

    def walk(self) -> Iterator[CheckoutStep]:
        """
        Follow the next-step links from the first step.
        """

        step = self.first_step()
        seen: set[int] = set()
        while step is not None and id(step) not in seen:
            seen.add(id(step))
            yield step
            step = self.next_step(step)

    def required_fields(self) -> list[FieldDescriptor]:
        return [field for step in self.walk() for field in step.required_fields()]

    @classmethod
    def from_linked(cls, document: dict[str, Any], *, product_id: str = "default") -> CheckoutProcessDescriptor:
        """
        Build a descriptor from a nested `{url, forms, nextStep}` document.
        """

        steps: list[dict[str, Any]] = []
        node: dict[str, Any] | None = document
        while isinstance(node, dict):
            index = len(steps)
            steps.append(
                {
                    "index": index,
                    "name": node.get("name") or ("initial" if index == 0 else f"step-{index}"),
                    "url": node.get("url"),
                    "title": node.get("title"),
                    "forms": node.get("forms") or [],
                    "buttons": node.get("buttons") or [],
                }
            )
            node = node.get("nextStep") or node.get("next_step")

        return cls.model_validate(
            {
                "product_id": product_id,
                "url": document.get("url"),
                "product_info": document.get("productInfo") or document.get("product_info") or {},
                "steps": steps,
            }
        )
