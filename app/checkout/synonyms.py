"""
Canonical user-info concepts and the tokens that identify them in form fields.

One table serves both field mapping and missing-field resolution. Tokens
cover Portuguese, English and Spanish. Tokens of four or more characters
match anywhere inside the normalized field text; shorter tokens must match
a whole word, so `age` does not fire on `message`.
"""

from __future__ import annotations

import re
import unicodedata
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])")
_WORD_SPLIT = re.compile(r"[^a-z0-9]+")
_SUBSTRING_MIN_LENGTH = 4


@dataclass(frozen=True)
class Concept:
    name: str
    tokens: tuple[str, ...]
    info_keys: tuple[str, ...]


# Order matters: the first matching concept wins.
CONCEPTS: tuple[Concept, ...] = (
    Concept("email", ("email", "e-mail", "correo"), ("email",)),
    Concept(
        "first_name",
        ("firstname", "first-name", "first_name", "primeironome", "primeiro_nome", "first"),
        ("firstName", "first_name"),
    ),
    Concept(
        "last_name",
        ("lastname", "last-name", "last_name", "sobrenome", "apellido", "last"),
        ("lastName", "last_name"),
    ),
    Concept("mobile", ("mobile", "cel", "celular", "movil"), ("mobile", "cellPhone")),
    Concept("phone", ("phone", "tel", "telefone", "telefono", "fone"), ("phone", "telephone", "mobile")),
    Concept(
        "payment",
        ("payment", "pagamento", "pago", "card", "cartao", "credit", "cvv"),
        ("paymentMethod", "payment"),
    ),
    Concept(
        "shipping",
        ("shipping", "entrega", "delivery", "frete", "envio"),
        ("shippingMethod", "shipping"),
    ),
    Concept(
        "zip",
        ("zip", "zipcode", "cep", "postal", "codigopostal"),
        ("zipCode", "postalCode", "cep", "zip"),
    ),
    Concept(
        "complement",
        ("complement", "complemento", "additional", "apto"),
        ("complement", "additionalInfo"),
    ),
    Concept(
        "neighborhood",
        ("neighborhood", "bairro", "district", "barrio"),
        ("neighborhood", "district"),
    ),
    Concept("number", ("number", "num", "numero", "houseNumber"), ("number", "houseNumber")),
    Concept(
        "address",
        ("address", "street", "endereco", "logradouro", "rua", "direccion", "calle"),
        ("address", "street"),
    ),
    Concept("city", ("city", "cidade", "ciudad", "municipio"), ("city",)),
    Concept("state", ("state", "estado", "province", "provincia"), ("state", "province")),
    Concept("country", ("country", "pais"), ("country",)),
    Concept("quantity", ("quantity", "qty", "quantidade", "cantidad"), ("quantity",)),
    Concept("age", ("age", "idade", "edad"), ("age",)),
    Concept("newsletter", ("newsletter", "boletim"), ("subscribeNewsletter",)),
    Concept(
        "terms",
        ("terms", "termos", "agree", "aceito", "concordo", "policy", "politica", "privacy"),
        ("acceptTerms",),
    ),
    Concept("remember", ("remember", "lembrar", "save", "salvar"), ("saveInformation",)),
    Concept("gender", ("gender", "sexo", "genero"), ("gender",)),
    Concept(
        "comment",
        ("comment", "comentario", "notes", "notas", "message", "mensagem", "observacao"),
        ("comment", "notes", "message"),
    ),
    Concept("name", ("name", "nome", "nombre", "fullname"), ("name", "fullName", "nome", "firstName")),
)

CONCEPTS_BY_NAME: dict[str, Concept] = {concept.name: concept for concept in CONCEPTS}

# Concepts that can be derived from another collected value.
DERIVED_FROM: dict[str, tuple[str, ...]] = {
    "first_name": ("name",),
    "last_name": ("name",),
}


def normalize_text(value: str | None) -> str:
    """
    Split camelCase, strip accents and lowercase.
    """

    if not value:
        return ""
    spaced = _CAMEL_BOUNDARY.sub(" ", value)
    decomposed = unicodedata.normalize("NFKD", spaced)
    return "".join(char for char in decomposed if not unicodedata.combining(char)).lower()


def tokenize(value: str | None) -> list[str]:
    return [token for token in _WORD_SPLIT.split(normalize_text(value)) if token]


def _token_matches(token: str, words: list[str], compact: str) -> bool:
    normalized = normalize_text(token).replace(" ", "")
    if normalized in words:
        return True
    if len(normalized) >= _SUBSTRING_MIN_LENGTH:
        return _WORD_SPLIT.sub("", normalized) in compact
    return False


def match_concept(*texts: str | None) -> str | None:
    """
    Return the first concept whose tokens appear in any of the given texts.
    """

    candidates = [text for text in texts if text]
    if not candidates:
        return None

    prepared = []
    for text in candidates:
        words = tokenize(text)
        prepared.append((words, "".join(words)))

    for concept in CONCEPTS:
        for words, compact in prepared:
            if any(_token_matches(token, words, compact) for token in concept.tokens):
                return concept.name
    return None


def field_concept(field: Any) -> str | None:
    return match_concept(getattr(field, "name", None), getattr(field, "label", None))


def concept_matches(field: Any, concept: str) -> bool:
    return field_concept(field) == concept


def lookup(info: Mapping[str, Any], key: str) -> Any:
    """
    Case-insensitive key lookup; returns None when absent.
    """

    if key in info:
        return info[key]
    lowered = key.lower()
    for candidate, value in info.items():
        if candidate.lower() == lowered:
            return value
    return None


def _present(value: Any) -> bool:
    return value is not None and value != ""


def resolve_concept_value(concept: str, info: Mapping[str, Any]) -> Any:
    """
    First non-empty collected value among a concept's candidate keys.
    """

    definition = CONCEPTS_BY_NAME.get(concept)
    if definition is None:
        return None
    for key in definition.info_keys:
        value = lookup(info, key)
        if _present(value):
            return value
    return None


def is_concept_satisfied(concept: str, info: Mapping[str, Any]) -> bool:
    if _present(resolve_concept_value(concept, info)):
        return True
    return any(_present(resolve_concept_value(source, info)) for source in DERIVED_FROM.get(concept, ()))
