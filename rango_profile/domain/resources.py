"""Resource envelope and the per-kind field variants."""
from __future__ import annotations

import uuid
from dataclasses import asdict, dataclass, fields as dataclass_fields
from datetime import datetime, timezone
from enum import Enum
from typing import ClassVar, Iterable, Optional, Union

from rango_profile.core.errors import ValidationError
from rango_profile.domain.formatting import format_cep, mask_card


class ResourceKind(str, Enum):
    ADDRESS = "address"
    PAYMENT_INSTRUMENT = "payment_instrument"


@dataclass(frozen=True)
class AddressFields:
    kind: ClassVar[ResourceKind] = ResourceKind.ADDRESS

    street: str
    number: str
    neighborhood: str
    city: str
    state: str
    postal_code: str
    complement: Optional[str] = None
    reference: Optional[str] = None
    label: Optional[str] = None


@dataclass(frozen=True)
class PaymentInstrumentFields:
    """Tokenized card metadata. The gateway keeps the card itself."""

    kind: ClassVar[ResourceKind] = ResourceKind.PAYMENT_INSTRUMENT

    brand: str
    last4: str
    holder_name: str
    expiry: str
    gateway_token: str
    gateway_customer_id: Optional[str] = None


KindFields = Union[AddressFields, PaymentInstrumentFields]

FIELD_TYPES: dict[ResourceKind, type] = {
    ResourceKind.ADDRESS: AddressFields,
    ResourceKind.PAYMENT_INSTRUMENT: PaymentInstrumentFields,
}


def field_names(kind: ResourceKind) -> tuple[str, ...]:
    return tuple(f.name for f in dataclass_fields(FIELD_TYPES[kind]))


def fields_from_storage(kind: ResourceKind, data: dict | None) -> KindFields:
    """Rebuild the variant from a stored JSON blob, ignoring keys it does not know."""
    data = data or {}
    names = field_names(kind)
    return FIELD_TYPES[kind](**{name: data.get(name) for name in names})


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime:
    if value is None:
        return utcnow()
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def new_resource_id() -> str:
    return uuid.uuid4().hex


@dataclass(frozen=True)
class Resource:
    """Common envelope shared by every saved record.

    ``version`` is 0 for a record that has never been written and is bumped
    by the store on every committed write.
    """

    id: str
    owner_id: str
    fields: KindFields
    is_default: bool
    created_at: datetime
    updated_at: datetime
    version: int = 0

    @property
    def kind(self) -> ResourceKind:
        return self.fields.kind

    def display(self) -> dict:
        """Strings the client renders as-is (formatted CEP, masked card)."""
        if isinstance(self.fields, AddressFields):
            return {"postal_code": format_cep(self.fields.postal_code)}
        return {"masked_number": mask_card(self.fields.last4)}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "owner_id": self.owner_id,
            "kind": self.kind.value,
            "is_default": self.is_default,
            "fields": asdict(self.fields),
            "display": self.display(),
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }


def parse_kind(value: ResourceKind | str) -> ResourceKind:
    if isinstance(value, ResourceKind):
        return value
    try:
        return ResourceKind((value or "").strip().lower())
    except ValueError:
        raise ValidationError(f"Tipo de recurso desconhecido: {value!r}", field="kind") from None


# -------------------------- ordering / queries --------------------------
def order_resources(records: Iterable[Resource]) -> list[Resource]:
    """Default first, then newest ``created_at`` first; ties broken by id."""
    ordered = sorted(records, key=lambda r: r.id)
    ordered.sort(key=lambda r: as_utc(r.created_at), reverse=True)
    ordered.sort(key=lambda r: not r.is_default)
    return ordered


def defaults_in(records: Iterable[Resource]) -> list[Resource]:
    return [r for r in records if r.is_default]


def pick_survivor(records: Iterable[Resource]) -> Optional[Resource]:
    """Record that should hold the flag when a partition needs repair.

    Prefers the most recently updated current default; otherwise the newest record.
    """
    records = list(records)
    if not records:
        return None
    flagged = defaults_in(records)
    if flagged:
        return max(flagged, key=lambda r: (as_utc(r.updated_at), r.id))
    return order_resources(records)[0]
