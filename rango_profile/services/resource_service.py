"""Saved addresses / payment instruments: the lifecycle use cases.

Routers and other services call ``ResourceService``; it validates input before
touching the store, delegates every default-flag move to ``DefaultEnforcer``
and turns store failures into the typed errors of ``rango_profile.core.errors``.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Any, Callable, Mapping, Optional, TypeVar

from rango_profile.core.config import Settings, get_settings
from rango_profile.core.errors import (
    CannotDeleteDefaultError,
    ConflictError,
    NotFoundError,
    OwnerNotAuthenticatedError,
    UnavailableError,
    ValidationError,
)
from rango_profile.core.retry import RetryPolicy
from rango_profile.domain.resources import (
    Resource,
    ResourceKind,
    defaults_in,
    new_resource_id,
    order_resources,
    parse_kind,
    pick_survivor,
    utcnow,
)
from rango_profile.domain.validation import (
    merge_fields,
    parse_fields,
    pop_default_flag,
    screen_card_data,
)
from rango_profile.repositories.resource_store import (
    CommitConflictError,
    Delete,
    ResourceStore,
    StoreUnavailableError,
    Upsert,
)
from rango_profile.services.default_enforcer import DefaultEnforcer

logger = logging.getLogger("rango.resources")

T = TypeVar("T")


class ResourceService:
    """List / Create / Update / SetDefault / Delete for one owner's saved resources."""

    def __init__(
        self,
        store: Optional[ResourceStore] = None,
        *,
        settings: Optional[Settings] = None,
        sleep: Optional[Callable[[float], None]] = None,
        rng: Optional[Callable[[], float]] = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.store = store or ResourceStore()
        overrides = {name: fn for name, fn in (("sleep", sleep), ("rng", rng)) if fn is not None}
        self.store_retry = RetryPolicy.from_settings(self.settings, self.settings.store_retry_attempts, **overrides)
        self.conflict_retry = RetryPolicy.from_settings(
            self.settings, self.settings.enforcer_max_attempts, **overrides
        )
        self.enforcer = DefaultEnforcer(
            self.store,
            retry=self.conflict_retry,
            write_policy=self.settings.write_policy,
            cleanup_mode=self.settings.sibling_cleanup_mode,
        )

    # -------------------------------------- helpers --------------------------------------
    def _require_owner(self, owner_id: Optional[str]) -> str:
        owner = (owner_id or "").strip() if isinstance(owner_id, str) else ""
        if not owner:
            raise OwnerNotAuthenticatedError("Sessão inválida ou expirada")
        return owner

    def _call(self, fn: Callable[[], T], *, conflicts: bool = False) -> T:
        """Run ``fn`` retrying store outages and, if asked, optimistic-write conflicts."""

        def guarded() -> T:
            return self.store_retry.run(
                fn,
                retry_on=(StoreUnavailableError,),
                on_retry=lambda attempt, exc: logger.info("store unavailable (attempt %d): %s", attempt, exc),
            )

        try:
            if conflicts:
                return self.conflict_retry.run(guarded, retry_on=(CommitConflictError,))
            return guarded()
        except StoreUnavailableError as exc:
            logger.warning("store still unavailable after retries: %s", exc)
            raise UnavailableError("Serviço temporariamente indisponível. Tente novamente.") from exc
        except CommitConflictError as exc:
            raise ConflictError("O registro foi alterado por outra requisição. Tente novamente.") from exc

    def _load(self, owner_id: str, resource_id: str, kind: Optional[ResourceKind] = None) -> Resource:
        resource = self.store.get(owner_id, (resource_id or "").strip())
        if resource is None or (kind is not None and resource.kind is not kind):
            raise NotFoundError("Registro não encontrado")
        return resource

    # -------------------------------------- reads --------------------------------------
    def list(self, owner_id: str, kind: ResourceKind | str) -> list[Resource]:
        """Default record first, then the newest ones."""
        owner = self._require_owner(owner_id)
        kind = parse_kind(kind)
        return order_resources(self._call(lambda: self.store.list(owner, kind)))

    def get(self, owner_id: str, resource_id: str, kind: ResourceKind | str | None = None) -> Resource:
        owner = self._require_owner(owner_id)
        expected = parse_kind(kind) if kind is not None else None
        return self._call(lambda: self._load(owner, resource_id, expected))

    def get_default(self, owner_id: str, kind: ResourceKind | str) -> Resource:
        records = self.list(owner_id, kind)
        if records and records[0].is_default:
            return records[0]
        raise NotFoundError("Nenhum registro padrão definido")

    # -------------------------------------- writes --------------------------------------
    def create(
        self,
        owner_id: str,
        kind: ResourceKind | str,
        fields: Mapping[str, Any],
        is_default: bool = False,
    ) -> str:
        """Validate and store a new record; the first one in a partition always becomes default."""
        owner = self._require_owner(owner_id)
        kind = parse_kind(kind)
        if not isinstance(fields, Mapping):
            raise ValidationError("Payload deve ser um objeto")
        payload = dict(fields)
        requested = bool(pop_default_flag(payload)) or bool(is_default)
        parsed = parse_fields(kind, payload)
        now = utcnow()
        resource = Resource(
            id=new_resource_id(),
            owner_id=owner,
            fields=parsed,
            is_default=False,
            created_at=now,
            updated_at=now,
        )

        def write() -> Resource:
            if requested or not self.store.list(owner, kind):
                return self.enforcer.promote_new(resource)
            self.store.batch_write([Upsert(resource, expected_version=0)])
            return resource

        created = self._call(write, conflicts=True)
        logger.info(
            "created %s %s for owner=%s (default=%s)",
            kind.value,
            created.id,
            owner,
            created.is_default,
        )
        return created.id

    def update(
        self,
        owner_id: str,
        resource_id: str,
        partial: Mapping[str, Any],
        kind: ResourceKind | str | None = None,
    ) -> None:
        """Apply field changes; ``is_default=True`` moves the flag in the same batch."""
        owner = self._require_owner(owner_id)
        expected = parse_kind(kind) if kind is not None else None
        if not isinstance(partial, Mapping):
            raise ValidationError("Payload deve ser um objeto")
        payload = dict(partial)
        flag = pop_default_flag(payload)
        if flag is False:
            raise ValidationError(
                "Para trocar o padrão, defina outro registro como padrão",
                field="is_default",
            )
        screen_card_data(payload)

        def write() -> None:
            current = self._load(owner, resource_id, expected)
            if flag:
                self.enforcer.promote(owner, current.id, current.kind, changes=payload)
                return
            if not payload:
                return
            fields = merge_fields(current.fields, payload)
            updated = replace(current, fields=fields, updated_at=utcnow())
            self.store.batch_write([Upsert(updated, expected_version=current.version)])

        self._call(write, conflicts=True)
        logger.info("updated resource %s for owner=%s", resource_id, owner)

    def set_default(self, owner_id: str, resource_id: str, kind: ResourceKind | str | None = None) -> None:
        self.update(owner_id, resource_id, {"is_default": True}, kind=kind)

    def delete(self, owner_id: str, resource_id: str, kind: ResourceKind | str | None = None) -> None:
        """Remove a record. The current default must hand its flag over first."""
        owner = self._require_owner(owner_id)
        expected = parse_kind(kind) if kind is not None else None

        def write() -> None:
            current = self._load(owner, resource_id, expected)
            if current.is_default:
                raise CannotDeleteDefaultError(
                    "Não é possível excluir o registro padrão. Defina outro como padrão primeiro."
                )
            self.store.batch_write([Delete(owner, current.id, expected_version=current.version)])

        self._call(write, conflicts=True)
        logger.info("deleted resource %s for owner=%s", resource_id, owner)

    # -------------------------------------- maintenance --------------------------------------
    def repair_partition(self, owner_id: str, kind: ResourceKind | str) -> Optional[str]:
        """Restore exactly one default in a partition; returns the id now flagged, if any."""
        owner = self._require_owner(owner_id)
        kind = parse_kind(kind)
        records = self._call(lambda: self.store.list(owner, kind))
        if len(defaults_in(records)) == 1:
            return defaults_in(records)[0].id
        survivor = pick_survivor(records)
        if survivor is None:
            return None
        self._call(lambda: self.enforcer.promote(owner, survivor.id, kind))
        logger.warning("repaired default flag for owner=%s kind=%s -> %s", owner, kind.value, survivor.id)
        return survivor.id
