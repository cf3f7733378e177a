from __future__ import annotations

from dataclasses import replace

import pytest

from payloads import address_payload, card_payload
from rango_profile.core.errors import (
    CannotDeleteDefaultError,
    ConflictError,
    NotFoundError,
    OwnerNotAuthenticatedError,
    UnavailableError,
    ValidationError,
)
from rango_profile.domain.resources import ResourceKind
from rango_profile.repositories.resource_store import (
    CommitConflictError,
    ResourceStore,
    StoreUnavailableError,
    Upsert,
)

ADDRESS = ResourceKind.ADDRESS
CARD = ResourceKind.PAYMENT_INSTRUMENT
OWNER = "user-1"


def _flags(service, owner=OWNER, kind=ADDRESS) -> list[tuple[str, bool]]:
    return [(r.id, r.is_default) for r in service.list(owner, kind)]


def _default_count(service, owner=OWNER, kind=ADDRESS) -> int:
    return sum(1 for r in service.list(owner, kind) if r.is_default)


class InterleavingStore(ResourceStore):
    """Runs ``competitor`` right before this store's first commit."""

    def __init__(self, competitor) -> None:
        self.competitor = competitor
        self.fired = False

    def batch_write(self, ops):
        if not self.fired:
            self.fired = True
            self.competitor()
        return super().batch_write(ops)


class FlakyStore(ResourceStore):
    def __init__(self, failures: int) -> None:
        self.failures = failures
        self.calls = 0

    def list(self, owner_id, kind):
        self.calls += 1
        if self.calls <= self.failures:
            raise StoreUnavailableError("timeout")
        return super().list(owner_id, kind)


class StaleDeleteStore(ResourceStore):
    def batch_write(self, ops):
        raise CommitConflictError("row moved")


class EditBetweenReadsStore(ResourceStore):
    """Runs ``competitor`` after the first ``get``, before the enforcer re-reads the record."""

    def __init__(self, competitor) -> None:
        self.competitor = competitor
        self.reads = 0

    def get(self, owner_id, resource_id):
        self.reads += 1
        if self.reads == 2:
            self.competitor()
        return super().get(owner_id, resource_id)


# -------------------------- scenarios --------------------------
def test_first_record_is_promoted_even_when_not_requested(service):
    created = service.create(OWNER, ADDRESS, address_payload(), is_default=False)

    records = service.list(OWNER, ADDRESS)
    assert len(records) == 1
    assert records[0].id == created
    assert records[0].is_default is True
    assert records[0].fields.postal_code == "01310100"


def test_second_record_is_not_default_unless_requested(service):
    first = service.create(OWNER, ADDRESS, address_payload())
    second = service.create(OWNER, ADDRESS, address_payload(number="20"))

    assert _flags(service) == [(first, True), (second, False)]

    third = service.create(OWNER, ADDRESS, address_payload(number="30"), is_default=True)
    assert _flags(service)[0] == (third, True)
    assert _default_count(service) == 1


def test_default_flag_inside_payload_is_honoured(service):
    service.create(OWNER, CARD, card_payload())
    second = service.create(OWNER, CARD, card_payload(last4="1111", isDefault=True))
    assert service.get_default(OWNER, CARD).id == second


def test_set_default_moves_flag(service):
    a = service.create(OWNER, ADDRESS, address_payload())
    b = service.create(OWNER, ADDRESS, address_payload(number="20"))

    service.set_default(OWNER, b)

    assert _flags(service) == [(b, True), (a, False)]


def test_set_default_is_idempotent(service):
    a = service.create(OWNER, ADDRESS, address_payload())
    b = service.create(OWNER, ADDRESS, address_payload(number="20"))

    service.set_default(OWNER, b)
    once = _flags(service)
    service.set_default(OWNER, b)

    assert _flags(service) == once == [(b, True), (a, False)]


def test_cannot_delete_default(service):
    a = service.create(OWNER, ADDRESS, address_payload())
    before = [r.to_dict() for r in service.list(OWNER, ADDRESS)]

    with pytest.raises(CannotDeleteDefaultError):
        service.delete(OWNER, a)

    assert [r.to_dict() for r in service.list(OWNER, ADDRESS)] == before


def test_delete_after_transferring_default(service):
    a = service.create(OWNER, ADDRESS, address_payload())
    b = service.create(OWNER, ADDRESS, address_payload(number="20"))

    service.set_default(OWNER, b)
    service.delete(OWNER, a)

    assert _flags(service) == [(b, True)]
    with pytest.raises(NotFoundError):
        service.get(OWNER, a)


def test_card_payload_with_full_number_is_rejected(service):
    with pytest.raises(ValidationError):
        service.create(OWNER, CARD, card_payload(cardNumber="4111111111111111"))
    assert service.list(OWNER, CARD) == []


def test_concurrent_set_default_leaves_exactly_one(make_service):
    base = make_service()
    a = base.create(OWNER, ADDRESS, address_payload())
    b = base.create(OWNER, ADDRESS, address_payload(number="20"))
    c = base.create(OWNER, ADDRESS, address_payload(number="30"))

    competitor = make_service()
    racer = make_service(InterleavingStore(lambda: competitor.set_default(OWNER, c)))
    racer.set_default(OWNER, b)

    flags = dict(_flags(base))
    assert flags[a] is False
    assert [flags[b], flags[c]].count(True) == 1
    assert _default_count(base) == 1


def test_concurrent_first_creates_leave_one_default(make_service):
    base = make_service()
    competitor = make_service()
    racer = make_service(InterleavingStore(lambda: competitor.create(OWNER, ADDRESS, address_payload())))

    racer.create(OWNER, ADDRESS, address_payload(number="20"))

    assert len(base.list(OWNER, ADDRESS)) == 2
    assert _default_count(base) == 1


# -------------------------- other operations --------------------------
def test_list_orders_default_first_then_newest(service):
    a = service.create(OWNER, ADDRESS, address_payload())
    b = service.create(OWNER, ADDRESS, address_payload(number="20"))
    c = service.create(OWNER, ADDRESS, address_payload(number="30"))

    assert [rid for rid, _ in _flags(service)] == [a, c, b]


def test_partitions_are_independent(service):
    address = service.create(OWNER, ADDRESS, address_payload())
    card = service.create(OWNER, CARD, card_payload())
    other = service.create("user-2", ADDRESS, address_payload())

    assert service.get_default(OWNER, ADDRESS).id == address
    assert service.get_default(OWNER, CARD).id == card
    assert service.get_default("user-2", ADDRESS).id == other
    with pytest.raises(NotFoundError):
        service.get("user-2", address)


def test_get_default_on_empty_partition(service):
    with pytest.raises(NotFoundError):
        service.get_default(OWNER, CARD)


def test_update_fields_without_touching_flag(service):
    a = service.create(OWNER, ADDRESS, address_payload())
    b = service.create(OWNER, ADDRESS, address_payload(number="20"))

    service.update(OWNER, b, {"complement": "Apto 12", "zipCode": "04538-133"})

    updated = service.get(OWNER, b)
    assert updated.fields.complement == "Apto 12"
    assert updated.fields.postal_code == "04538133"
    assert updated.is_default is False
    assert service.get_default(OWNER, ADDRESS).id == a


def test_update_with_default_flag_applies_both(service):
    service.create(OWNER, ADDRESS, address_payload())
    b = service.create(OWNER, ADDRESS, address_payload(number="20"))

    service.update(OWNER, b, {"isDefault": True, "label": "Trabalho"})

    default = service.get_default(OWNER, ADDRESS)
    assert default.id == b
    assert default.fields.label == "Trabalho"
    assert _default_count(service) == 1


def test_update_with_default_flag_keeps_edit_committed_in_between(make_service):
    base = make_service()
    base.create(OWNER, ADDRESS, address_payload())
    b = base.create(OWNER, ADDRESS, address_payload(number="20"))

    racer = make_service(EditBetweenReadsStore(lambda: base.update(OWNER, b, {"complement": "Apto 12"})))
    racer.update(OWNER, b, {"isDefault": True, "label": "Trabalho"})

    record = base.get(OWNER, b)
    assert record.is_default is True
    assert record.fields.label == "Trabalho"
    assert record.fields.complement == "Apto 12"
    assert _default_count(base) == 1


def test_update_cannot_clear_flag_directly(service):
    a = service.create(OWNER, ADDRESS, address_payload())
    with pytest.raises(ValidationError):
        service.update(OWNER, a, {"is_default": False})
    assert service.get(OWNER, a).is_default is True


def test_update_rejects_invalid_fields(service):
    a = service.create(OWNER, ADDRESS, address_payload())
    with pytest.raises(ValidationError):
        service.update(OWNER, a, {"state": "Sao Paulo"})
    with pytest.raises(ValidationError):
        service.update(OWNER, a, {"cvv": "123"})
    assert service.get(OWNER, a).fields.state == "SP"


def test_operations_respect_kind_filter(service):
    card = service.create(OWNER, CARD, card_payload())
    with pytest.raises(NotFoundError):
        service.set_default(OWNER, card, kind=ADDRESS)
    with pytest.raises(NotFoundError):
        service.delete(OWNER, "missing")


@pytest.mark.parametrize("owner", ["", "   ", None])
def test_missing_owner_is_unauthenticated(service, owner):
    with pytest.raises(OwnerNotAuthenticatedError):
        service.list(owner, ADDRESS)
    with pytest.raises(OwnerNotAuthenticatedError):
        service.create(owner, ADDRESS, address_payload())


def test_unknown_kind(service):
    with pytest.raises(ValidationError):
        service.list(OWNER, "coupon")


def test_store_outage_is_retried(make_service, sleeps):
    svc = make_service(FlakyStore(failures=2))
    assert svc.list(OWNER, ADDRESS) == []
    assert len(sleeps) == 2


def test_store_outage_surfaces_as_unavailable(make_service):
    svc = make_service(FlakyStore(failures=10))
    with pytest.raises(UnavailableError):
        svc.list(OWNER, ADDRESS)


def test_persistent_conflict_surfaces(make_service):
    base = make_service()
    base.create(OWNER, ADDRESS, address_payload())
    b = base.create(OWNER, ADDRESS, address_payload(number="20"))

    svc = make_service(StaleDeleteStore())
    with pytest.raises(ConflictError):
        svc.delete(OWNER, b)
    assert len(base.list(OWNER, ADDRESS)) == 2


def test_repair_partition_with_two_defaults(service):
    a = service.create(OWNER, ADDRESS, address_payload())
    b = service.create(OWNER, ADDRESS, address_payload(number="20"))
    broken = service.get(OWNER, b)
    service.store.batch_write([Upsert(replace(broken, is_default=True), broken.version)])
    assert _default_count(service) == 2

    assert service.repair_partition(OWNER, ADDRESS) == b
    assert _flags(service) == [(b, True), (a, False)]


def test_repair_partition_without_default_promotes_newest(service):
    a = service.create(OWNER, ADDRESS, address_payload())
    b = service.create(OWNER, ADDRESS, address_payload(number="20"))
    flagged = service.get(OWNER, a)
    service.store.batch_write([Upsert(replace(flagged, is_default=False), flagged.version)])
    assert _default_count(service) == 0

    assert service.repair_partition(OWNER, ADDRESS) == b
    assert _flags(service) == [(b, True), (a, False)]


def test_invariant_holds_across_mixed_operations(service):
    ids = [service.create(OWNER, ADDRESS, address_payload(number=str(n))) for n in range(1, 5)]
    for step, target in enumerate([ids[2], ids[0], ids[3], ids[3], ids[1]]):
        service.set_default(OWNER, target)
        assert _default_count(service) == 1
        if step == 2:
            service.delete(OWNER, ids[2])
            assert _default_count(service) == 1
    assert service.get_default(OWNER, ADDRESS).id == ids[1]
