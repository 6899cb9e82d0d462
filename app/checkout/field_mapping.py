"""
Field mapping strategy table.

Each strategy is a pure function `(field, collected_info) -> value | None`
selected by the field's input type. `None` means the field is left out of
the deep link.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from typing import Any

from app.checkout.descriptor import CheckoutProcessDescriptor, FieldDescriptor
from app.checkout.synonyms import field_concept, lookup, resolve_concept_value

FieldStrategy = Callable[[FieldDescriptor, Mapping[str, Any]], "str | None"]

DEFAULT_COUNTRY = "Brasil"
DEFAULT_SHIPPING_METHOD = "standard"
DEFAULT_PAYMENT_METHOD = "credit"
DEFAULT_QUANTITY = "1"
CHECKED_VALUE = "on"

_TEXT_CONCEPTS = {
    "name",
    "address",
    "number",
    "complement",
    "neighborhood",
    "city",
    "state",
    "zip",
    "email",
    "phone",
    "mobile",
}


def _as_param(value: Any) -> str | None:
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _exact_key(field: FieldDescriptor, info: Mapping[str, Any]) -> str | None:
    return _as_param(lookup(info, field.name))


def _full_name_parts(info: Mapping[str, Any]) -> list[str]:
    full_name = resolve_concept_value("name", info)
    if not isinstance(full_name, str):
        return []
    return full_name.split()


def _select_option(field: FieldDescriptor, wanted: Any) -> str | None:
    """
    Option whose text or value contains `wanted`; required fields fall back
    to the first option carrying a non-empty value.
    """

    needle = str(wanted).strip().lower() if wanted not in (None, "") else ""
    if needle:
        for option in field.options:
            if needle in option.text.lower() or needle in option.value.lower():
                return option.value or None
    if field.required:
        for option in field.options:
            if option.value:
                return option.value
    return None


def map_text(field: FieldDescriptor, info: Mapping[str, Any]) -> str | None:
    concept = field_concept(field)
    if concept == "first_name":
        explicit = resolve_concept_value("first_name", info)
        if explicit:
            return _as_param(explicit)
        parts = _full_name_parts(info)
        return parts[0] if parts else None
    if concept == "last_name":
        explicit = resolve_concept_value("last_name", info)
        if explicit:
            return _as_param(explicit)
        parts = _full_name_parts(info)
        return " ".join(parts[1:]) or None
    if concept == "country":
        return _as_param(resolve_concept_value("country", info) or DEFAULT_COUNTRY)
    if concept in _TEXT_CONCEPTS:
        value = _as_param(resolve_concept_value(concept, info))
        if value is not None:
            return value
    if field.required:
        return _exact_key(field, info)
    return None


def map_email(field: FieldDescriptor, info: Mapping[str, Any]) -> str | None:
    return _as_param(resolve_concept_value("email", info))


def map_tel(field: FieldDescriptor, info: Mapping[str, Any]) -> str | None:
    if field_concept(field) == "mobile":
        return _as_param(resolve_concept_value("mobile", info) or resolve_concept_value("phone", info))
    return _as_param(resolve_concept_value("phone", info))


def map_password(field: FieldDescriptor, info: Mapping[str, Any]) -> str | None:
    return None


def map_number(field: FieldDescriptor, info: Mapping[str, Any]) -> str | None:
    concept = field_concept(field)
    if concept == "quantity":
        return _as_param(resolve_concept_value("quantity", info)) or DEFAULT_QUANTITY
    if concept == "age":
        return _as_param(resolve_concept_value("age", info))
    return _exact_key(field, info)


def _choice_target(field: FieldDescriptor, info: Mapping[str, Any]) -> Any:
    concept = field_concept(field)
    if concept == "country":
        return resolve_concept_value("country", info) or DEFAULT_COUNTRY
    if concept == "shipping":
        return resolve_concept_value("shipping", info) or DEFAULT_SHIPPING_METHOD
    if concept == "payment":
        return resolve_concept_value("payment", info) or DEFAULT_PAYMENT_METHOD
    if concept is not None:
        return resolve_concept_value(concept, info)
    return lookup(info, field.name)


def map_select(field: FieldDescriptor, info: Mapping[str, Any]) -> str | None:
    return _select_option(field, _choice_target(field, info))


def map_radio(field: FieldDescriptor, info: Mapping[str, Any]) -> str | None:
    if field.options:
        return _select_option(field, _choice_target(field, info))

    wanted = _choice_target(field, info)
    if field.value and wanted not in (None, "") and str(wanted).lower() in field.value.lower():
        return field.value
    if field.required:
        return field.value or None
    return None


def map_checkbox(field: FieldDescriptor, info: Mapping[str, Any]) -> str | None:
    checked = field.value or CHECKED_VALUE
    if field.required:
        return checked

    concept = field_concept(field)
    if concept == "terms":
        return checked
    if concept == "newsletter":
        return checked if lookup(info, "subscribeNewsletter") is True else None
    if concept == "remember":
        return None if lookup(info, "saveInformation") is False else checked
    return None


def map_hidden(field: FieldDescriptor, info: Mapping[str, Any]) -> str | None:
    return field.value or None


def map_textarea(field: FieldDescriptor, info: Mapping[str, Any]) -> str | None:
    concept = field_concept(field)
    if concept in {"comment", "address"}:
        value = _as_param(resolve_concept_value(concept, info))
        if value is not None:
            return value
    if field.required:
        return _exact_key(field, info)
    return None


def map_generic(field: FieldDescriptor, info: Mapping[str, Any]) -> str | None:
    value = _exact_key(field, info)
    if value is not None:
        return value
    if field.required:
        return field.value or None
    return None


FIELD_MAPPING_STRATEGIES: dict[str, FieldStrategy] = {
    "text": map_text,
    "email": map_email,
    "tel": map_tel,
    "password": map_password,
    "number": map_number,
    "select": map_select,
    "select-one": map_select,
    "radio": map_radio,
    "checkbox": map_checkbox,
    "hidden": map_hidden,
    "textarea": map_textarea,
    "default": map_generic,
}


def get_strategy(field_type: str | None) -> FieldStrategy:
    key = (field_type or "").strip().lower()
    return FIELD_MAPPING_STRATEGIES.get(key, FIELD_MAPPING_STRATEGIES["default"])


def map_field(field: FieldDescriptor, info: Mapping[str, Any]) -> str | None:
    if not field.name or field.type.lower() == "password":
        return None
    return get_strategy(field.type)(field, info)


def map_user_info_to_params(
    descriptor: CheckoutProcessDescriptor,
    info: Mapping[str, Any],
) -> dict[str, str]:
    """
    Resolve every mappable field across all linked steps.

    Later steps overwrite earlier ones for a repeated field name. Password
    fields are never included.
    """

    params: dict[str, str] = {}
    for step in descriptor.walk():
        for field in step.iter_fields():
            value = map_field(field, info)
            if value is not None:
                params[field.name] = value
    return params
