"""
Field validation for saved resources.

Callers send either snake_case keys or the camelCase used by the mobile
client; both are folded into the dataclass field names before the per-kind
rules run. Payment payloads are screened for raw card data first.
"""
from __future__ import annotations

import re
from dataclasses import asdict
from typing import Any, Mapping, Optional

from rango_profile.core.errors import ValidationError
from rango_profile.domain.formatting import digits_only, luhn_valid
from rango_profile.domain.resources import (
    AddressFields,
    KindFields,
    PaymentInstrumentFields,
    ResourceKind,
    field_names,
)

DEFAULT_FLAG_KEYS = ("is_default", "isDefault")

ADDRESS_ALIASES = {
    "postalCode": "postal_code",
    "zipCode": "postal_code",
    "zip_code": "postal_code",
    "cep": "postal_code",
    "stateCode": "state",
    "state_code": "state",
}
PAYMENT_ALIASES = {
    "holderName": "holder_name",
    "gatewayToken": "gateway_token",
    "paymentGatewayToken": "gateway_token",
    "gatewayCustomerId": "gateway_customer_id",
    "paymentGatewayCustomerId": "gateway_customer_id",
}
ALIASES = {
    ResourceKind.ADDRESS: ADDRESS_ALIASES,
    ResourceKind.PAYMENT_INSTRUMENT: PAYMENT_ALIASES,
}

# Compared after lower-casing and dropping "_" / "-" / spaces.
FORBIDDEN_CARD_KEYS = {
    "cardnumber",
    "number",
    "pan",
    "primaryaccountnumber",
    "fullnumber",
    "cvv",
    "cvv2",
    "cvc",
    "cvc2",
    "cid",
    "securitycode",
    "cardsecuritycode",
    "trackdata",
    "magstripe",
}

CARD_BRANDS = {"visa", "mastercard", "amex", "elo", "other"}
EXPIRY_PATTERN = re.compile(r"(0[1-9]|1[0-2])/(\d{2}|\d{4})")
LAST4_PATTERN = re.compile(r"\d{4}")
_PAN_CANDIDATE = re.compile(r"[\d \-]{13,23}")


def pop_default_flag(payload: dict) -> Optional[bool]:
    """Remove the default flag from a payload; None when it was not sent."""
    flag: Optional[bool] = None
    for key in DEFAULT_FLAG_KEYS:
        if key in payload:
            value = payload.pop(key)
            if not isinstance(value, bool):
                raise ValidationError("isDefault deve ser booleano", field="is_default")
            flag = value
    return flag


def _squash(key: str) -> str:
    return re.sub(r"[\s_\-]", "", key).lower()


def _looks_like_pan(value: Any) -> bool:
    if not isinstance(value, str) or not _PAN_CANDIDATE.fullmatch(value.strip()):
        return False
    return luhn_valid(value)


def screen_card_data(payload: Mapping[str, Any], kind: Optional[ResourceKind] = None) -> None:
    """Reject anything resembling a raw card number or CVV.

    A "number" key is the street number on addresses, so it only counts as card
    data for payment instruments. With no ``kind`` it is left to ``canonicalize``.
    """
    for key, value in payload.items():
        squashed = _squash(str(key))
        street_number = squashed == "number" and kind is not ResourceKind.PAYMENT_INSTRUMENT
        if squashed in FORBIDDEN_CARD_KEYS and not street_number:
            raise ValidationError("Dados completos do cartão não podem ser armazenados", field=str(key))
        if _looks_like_pan(value):
            raise ValidationError("Dados completos do cartão não podem ser armazenados", field=str(key))


def canonicalize(kind: ResourceKind, payload: Mapping[str, Any]) -> dict:
    """Map aliases to field names and reject unknown or forbidden keys."""
    if not isinstance(payload, Mapping):
        raise ValidationError("Payload deve ser um objeto")
    screen_card_data(payload, kind)
    aliases = ALIASES[kind]
    known = set(field_names(kind))
    out: dict = {}
    for key, value in payload.items():
        name = aliases.get(key, key)
        if name not in known:
            raise ValidationError(f"Campo não permitido: {key}", field=str(key))
        if value is not None and not isinstance(value, str):
            raise ValidationError(f"Campo {key} deve ser texto", field=name)
        out[name] = value
    return out


def _text(data: dict, name: str) -> str:
    return (data.get(name) or "").strip()


def _optional(data: dict, name: str) -> Optional[str]:
    return _text(data, name) or None


def _min_length(data: dict, name: str, minimum: int, message: str) -> str:
    value = _text(data, name)
    if len(value) < minimum:
        raise ValidationError(message, field=name)
    return value


def _address(data: dict) -> AddressFields:
    postal_code = digits_only(data.get("postal_code"))
    if len(postal_code) != 8:
        raise ValidationError("CEP inválido", field="postal_code")
    street = _min_length(data, "street", 3, "Rua/Avenida deve ter pelo menos 3 caracteres")
    number = _min_length(data, "number", 1, "Número é obrigatório")
    neighborhood = _min_length(data, "neighborhood", 3, "Bairro deve ter pelo menos 3 caracteres")
    city = _min_length(data, "city", 3, "Cidade deve ter pelo menos 3 caracteres")
    state = _text(data, "state")
    if len(state) != 2:
        raise ValidationError("Estado deve ter 2 caracteres (ex: SP)", field="state")
    return AddressFields(
        street=street,
        number=number,
        neighborhood=neighborhood,
        city=city,
        state=state.upper(),
        postal_code=postal_code,
        complement=_optional(data, "complement"),
        reference=_optional(data, "reference"),
        label=_optional(data, "label"),
    )


def _payment_instrument(data: dict) -> PaymentInstrumentFields:
    brand = _text(data, "brand").lower()
    if brand not in CARD_BRANDS:
        raise ValidationError("Bandeira inválida", field="brand")
    last4 = _text(data, "last4")
    if not LAST4_PATTERN.fullmatch(last4):
        raise ValidationError("last4 deve conter exatamente 4 dígitos", field="last4")
    holder_name = _min_length(data, "holder_name", 1, "Nome do titular é obrigatório")
    expiry = _text(data, "expiry")
    if not EXPIRY_PATTERN.fullmatch(expiry):
        raise ValidationError("Validade deve estar no formato MM/AA", field="expiry")
    gateway_token = _min_length(data, "gateway_token", 1, "Token do gateway é obrigatório")
    return PaymentInstrumentFields(
        brand=brand,
        last4=last4,
        holder_name=holder_name,
        expiry=expiry,
        gateway_token=gateway_token,
        gateway_customer_id=_optional(data, "gateway_customer_id"),
    )


def parse_fields(kind: ResourceKind, payload: Mapping[str, Any]) -> KindFields:
    data = canonicalize(kind, payload)
    if kind is ResourceKind.ADDRESS:
        return _address(data)
    if kind is ResourceKind.PAYMENT_INSTRUMENT:
        return _payment_instrument(data)
    raise ValidationError(f"Tipo de recurso desconhecido: {kind!r}", field="kind")


def merge_fields(current: KindFields, partial: Mapping[str, Any]) -> KindFields:
    """Overlay a partial payload on the stored fields and re-validate the result."""
    changes = canonicalize(current.kind, partial)
    merged = {**asdict(current), **changes}
    return parse_fields(current.kind, merged)
