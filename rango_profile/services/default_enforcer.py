"""
Keeps at most one default record per (owner, kind) partition.

Each promotion reads the partition head and the currently flagged siblings,
then commits one batch: clear the siblings, flag the target, bump the head.
A concurrent promotion in the same partition makes one of the batches fail
its version checks; the loser re-reads and tries again.
"""
from __future__ import annotations

import logging
import threading
from contextlib import contextmanager, nullcontext
from dataclasses import replace
from typing import Any, Callable, Dict, Iterator, Mapping, Optional, Tuple

from rango_profile.core.config import (
    CLEANUP_ATOMIC,
    CLEANUP_BEST_EFFORT,
    WRITE_POLICY_OPTIMISTIC,
    WRITE_POLICY_OWNER_LOCK,
)
from rango_profile.core.errors import ConflictError, NotFoundError
from rango_profile.core.retry import RetryPolicy
from rango_profile.domain.resources import Resource, ResourceKind, utcnow
from rango_profile.domain.validation import merge_fields
from rango_profile.repositories.resource_store import (
    CommitConflictError,
    PartitionGuard,
    ResourceStore,
    StoreError,
    Upsert,
)

logger = logging.getLogger("rango.enforcer")


class _PartitionLocks:
    """Process-local lock per partition, used by the ``owner_lock`` policy."""

    def __init__(self) -> None:
        self._locks: Dict[Tuple[str, str], threading.Lock] = {}
        self._guard = threading.Lock()

    @contextmanager
    def hold(self, owner_id: str, kind: ResourceKind) -> Iterator[None]:
        key = (owner_id, kind.value)
        with self._guard:
            lock = self._locks.setdefault(key, threading.Lock())
        with lock:
            yield


_partition_locks = _PartitionLocks()


class DefaultEnforcer:
    def __init__(
        self,
        store: ResourceStore,
        *,
        retry: Optional[RetryPolicy] = None,
        write_policy: str = WRITE_POLICY_OPTIMISTIC,
        cleanup_mode: str = CLEANUP_ATOMIC,
    ) -> None:
        self.store = store
        self.retry = retry or RetryPolicy()
        self.write_policy = write_policy
        self.cleanup_mode = cleanup_mode

    # -------------------------------------- public --------------------------------------
    def promote_new(self, resource: Resource) -> Resource:
        """Insert a record that has never been written as the partition default."""

        def target(now):
            flagged = replace(resource, is_default=True, updated_at=now)
            return Upsert(flagged, expected_version=0)

        return self._run(resource.owner_id, resource.kind, target)

    def promote(
        self,
        owner_id: str,
        resource_id: str,
        kind: ResourceKind,
        changes: Optional[Mapping[str, Any]] = None,
    ) -> Resource:
        """Flag an existing record, optionally applying a partial field payload in the same batch.

        ``changes`` is merged onto the record read in each attempt, so edits
        committed by other requests in the meantime are kept.
        """

        def target(now):
            current = self.store.get(owner_id, resource_id)
            if current is None or current.kind is not kind:
                raise NotFoundError("Registro não encontrado")
            flagged = replace(
                current,
                fields=merge_fields(current.fields, changes) if changes else current.fields,
                is_default=True,
                updated_at=now,
            )
            return Upsert(flagged, expected_version=current.version)

        return self._run(owner_id, kind, target)

    # -------------------------------------- internals --------------------------------------
    def _lock(self, owner_id: str, kind: ResourceKind):
        if self.write_policy == WRITE_POLICY_OWNER_LOCK:
            return _partition_locks.hold(owner_id, kind)
        return nullcontext()

    def _run(self, owner_id: str, kind: ResourceKind, target: Callable) -> Resource:
        def on_retry(attempt: int, exc: BaseException) -> None:
            logger.info(
                "default move conflicted for owner=%s kind=%s (attempt %d): %s",
                owner_id,
                kind.value,
                attempt,
                exc,
            )

        with self._lock(owner_id, kind):
            try:
                return self.retry.run(
                    lambda: self._attempt(owner_id, kind, target),
                    retry_on=(CommitConflictError,),
                    on_retry=on_retry,
                )
            except CommitConflictError as exc:
                logger.warning(
                    "giving up default move for owner=%s kind=%s after %d attempts",
                    owner_id,
                    kind.value,
                    self.retry.attempts,
                )
                raise ConflictError("O registro foi alterado por outra requisição. Tente novamente.") from exc

    def _attempt(self, owner_id: str, kind: ResourceKind, target: Callable) -> Resource:
        head_version = self.store.partition_version(owner_id, kind)
        flagged = self.store.list_defaults(owner_id, kind)
        now = utcnow()
        target_op: Upsert = target(now)
        target_id = target_op.resource.id

        stale = [r for r in flagged if r.id != target_id]
        if len(stale) > 1:
            logger.warning(
                "partition owner=%s kind=%s had %d defaults; clearing all but %s",
                owner_id,
                kind.value,
                len(flagged),
                target_id,
            )
        clears = [Upsert(replace(r, is_default=False, updated_at=now), expected_version=r.version) for r in stale]
        guard = PartitionGuard(owner_id, kind, head_version)

        if self.cleanup_mode == CLEANUP_BEST_EFFORT:
            self._clear_best_effort(owner_id, kind, clears)
            self.store.batch_write([target_op, guard])
        else:
            self.store.batch_write([*clears, target_op, guard])

        logger.info("default for owner=%s kind=%s is now %s", owner_id, kind.value, target_id)
        return replace(target_op.resource, version=target_op.expected_version + 1)

    def _clear_best_effort(self, owner_id: str, kind: ResourceKind, clears: list) -> None:
        """Clear siblings in their own batch; a failure here does not stop the target write."""
        if not clears:
            return
        try:
            self.store.batch_write(clears)
        except StoreError as exc:
            logger.warning(
                "could not clear previous default for owner=%s kind=%s; continuing: %s",
                owner_id,
                kind.value,
                exc,
            )
