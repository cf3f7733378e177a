"""Owner-partitioned storage for saved resources, backed by SQLAlchemy.

Every write goes through ``batch_write``: one SQL transaction whose rows are
checked against the versions the caller read. The store knows nothing about
default flags beyond persisting them.
"""
from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import asdict, dataclass
from typing import Iterator, Optional, Sequence, Union

from sqlalchemy import delete, select, update
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError

from rango_profile.db.models import ResourcePartition, SavedResource
from rango_profile.db.session import get_session
from rango_profile.domain.resources import (
    Resource,
    ResourceKind,
    as_utc,
    fields_from_storage,
    utcnow,
)

logger = logging.getLogger("rango.store")


class StoreError(Exception):
    """Base class for storage failures."""


class CommitConflictError(StoreError):
    """A row changed (or appeared/vanished) since the caller read it."""


class StoreUnavailableError(StoreError):
    """Connectivity or timeout failure; safe to retry."""


@dataclass(frozen=True)
class Upsert:
    """Write ``resource``; ``expected_version`` 0 means the row must not exist yet."""

    resource: Resource
    expected_version: int


@dataclass(frozen=True)
class Delete:
    owner_id: str
    resource_id: str
    expected_version: int


@dataclass(frozen=True)
class PartitionGuard:
    """Bump the partition head, failing the batch if someone else bumped it first."""

    owner_id: str
    kind: ResourceKind
    expected_version: int


WriteOp = Union[Upsert, Delete, PartitionGuard]


def _to_resource(row: SavedResource) -> Resource:
    kind = ResourceKind(row.kind)
    return Resource(
        id=row.id,
        owner_id=row.owner_id,
        fields=fields_from_storage(kind, row.data),
        is_default=bool(row.is_default),
        created_at=as_utc(row.created_at),
        updated_at=as_utc(row.updated_at),
        version=int(row.version or 0),
    )


class ResourceStore:
    """CRUD helpers wrapping the SQLAlchemy session."""

    @contextmanager
    def _translate_errors(self, action: str) -> Iterator[None]:
        try:
            yield
        except IntegrityError as exc:
            raise CommitConflictError(f"{action}: row already exists") from exc
        except OperationalError as exc:
            logger.warning("store unavailable during %s: %s", action, exc.__class__.__name__)
            raise StoreUnavailableError(f"{action}: database unavailable") from exc
        except PoolTimeoutError as exc:
            logger.warning("connection pool timeout during %s", action)
            raise StoreUnavailableError(f"{action}: connection pool timeout") from exc
        except DBAPIError as exc:
            if exc.connection_invalidated:
                raise StoreUnavailableError(f"{action}: connection lost") from exc
            raise

    # -------------------------- reads --------------------------
    def get(self, owner_id: str, resource_id: str) -> Optional[Resource]:
        with self._translate_errors("get"), get_session() as session:
            row = session.get(SavedResource, resource_id)
            if row is None or row.owner_id != owner_id:
                return None
            return _to_resource(row)

    def list(self, owner_id: str, kind: ResourceKind) -> list[Resource]:
        with self._translate_errors("list"), get_session() as session:
            stmt = select(SavedResource).where(
                SavedResource.owner_id == owner_id,
                SavedResource.kind == kind.value,
            )
            return [_to_resource(row) for row in session.execute(stmt).scalars().all()]

    def list_defaults(self, owner_id: str, kind: ResourceKind) -> list[Resource]:
        with self._translate_errors("list_defaults"), get_session() as session:
            stmt = select(SavedResource).where(
                SavedResource.owner_id == owner_id,
                SavedResource.kind == kind.value,
                SavedResource.is_default.is_(True),
            )
            return [_to_resource(row) for row in session.execute(stmt).scalars().all()]

    def partition_version(self, owner_id: str, kind: ResourceKind) -> int:
        with self._translate_errors("partition_version"), get_session() as session:
            head = session.get(ResourcePartition, (owner_id, kind.value))
            return int(head.version) if head else 0

    def list_partitions(self) -> list[tuple[str, ResourceKind]]:
        with self._translate_errors("list_partitions"), get_session() as session:
            stmt = (
                select(SavedResource.owner_id, SavedResource.kind)
                .distinct()
                .order_by(SavedResource.owner_id, SavedResource.kind)
            )
            return [(owner_id, ResourceKind(kind)) for owner_id, kind in session.execute(stmt).all()]

    # -------------------------- writes --------------------------
    def batch_write(self, ops: Sequence[WriteOp]) -> None:
        """Apply every op or none of them."""
        if not ops:
            return
        with self._translate_errors("batch_write"), get_session() as session:
            try:
                for op in ops:
                    if isinstance(op, Upsert):
                        self._apply_upsert(session, op)
                    elif isinstance(op, Delete):
                        self._apply_delete(session, op)
                    elif isinstance(op, PartitionGuard):
                        self._apply_guard(session, op)
                    else:
                        raise TypeError(f"unsupported write op: {op!r}")
                session.commit()
            except Exception:
                session.rollback()
                raise
        logger.debug("committed batch of %d ops", len(ops))

    def _apply_upsert(self, session, op: Upsert) -> None:
        resource = op.resource
        if op.expected_version == 0:
            session.add(
                SavedResource(
                    id=resource.id,
                    owner_id=resource.owner_id,
                    kind=resource.kind.value,
                    data=asdict(resource.fields),
                    is_default=resource.is_default,
                    version=1,
                    created_at=resource.created_at,
                    updated_at=resource.updated_at,
                )
            )
            session.flush()
            return
        stmt = (
            update(SavedResource)
            .where(
                SavedResource.id == resource.id,
                SavedResource.owner_id == resource.owner_id,
                SavedResource.version == op.expected_version,
            )
            .values(
                data=asdict(resource.fields),
                is_default=resource.is_default,
                updated_at=resource.updated_at,
                version=op.expected_version + 1,
            )
            .execution_options(synchronize_session=False)
        )
        if session.execute(stmt).rowcount != 1:
            raise CommitConflictError(f"resource {resource.id} changed since version {op.expected_version}")

    def _apply_delete(self, session, op: Delete) -> None:
        stmt = (
            delete(SavedResource)
            .where(
                SavedResource.id == op.resource_id,
                SavedResource.owner_id == op.owner_id,
                SavedResource.version == op.expected_version,
            )
            .execution_options(synchronize_session=False)
        )
        if session.execute(stmt).rowcount != 1:
            raise CommitConflictError(f"resource {op.resource_id} changed since version {op.expected_version}")

    def _apply_guard(self, session, op: PartitionGuard) -> None:
        now = utcnow()
        if op.expected_version == 0:
            session.add(ResourcePartition(owner_id=op.owner_id, kind=op.kind.value, version=1, updated_at=now))
            session.flush()
            return
        stmt = (
            update(ResourcePartition)
            .where(
                ResourcePartition.owner_id == op.owner_id,
                ResourcePartition.kind == op.kind.value,
                ResourcePartition.version == op.expected_version,
            )
            .values(version=op.expected_version + 1, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        if session.execute(stmt).rowcount != 1:
            raise CommitConflictError(
                f"partition {op.owner_id}/{op.kind.value} changed since version {op.expected_version}"
            )
