#!/usr/bin/env python3
"""
Auditar a flag de padrao dos enderecos / cartoes salvos.

Lista particoes (dono + tipo) com mais de um registro padrao ou sem nenhum.
Com --fix, corrige cada uma mantendo o padrao mais recente (ou promovendo o
registro mais novo quando nao houver padrao).

Uso:
  python scripts/audit_defaults.py [--owner user123] [--kind address] [--fix]
"""
from __future__ import annotations

import argparse
import sys

from rango_profile.core.log import configure_logging
from rango_profile.domain.resources import ResourceKind, defaults_in
from rango_profile.repositories.resource_store import ResourceStore
from rango_profile.services.resource_service import ResourceService


def find_problems(store: ResourceStore, owner: str | None, kind: ResourceKind | None) -> list[tuple[str, ResourceKind, int]]:
    problems = []
    for owner_id, partition_kind in store.list_partitions():
        if owner and owner_id != owner:
            continue
        if kind and partition_kind is not kind:
            continue
        count = len(defaults_in(store.list(owner_id, partition_kind)))
        if count != 1:
            problems.append((owner_id, partition_kind, count))
    return problems


def main() -> None:
    ap = argparse.ArgumentParser(description="Auditar registros padrao por dono")
    ap.add_argument("--owner", help="Restringe a um dono")
    ap.add_argument("--kind", choices=[k.value for k in ResourceKind], help="Restringe a um tipo")
    ap.add_argument("--fix", action="store_true", help="Corrige as particoes encontradas")
    args = ap.parse_args()

    configure_logging()
    store = ResourceStore()
    kind = ResourceKind(args.kind) if args.kind else None
    problems = find_problems(store, (args.owner or "").strip() or None, kind)
    if not problems:
        print("OK: nenhuma particao inconsistente")
        return

    service = ResourceService(store)
    for owner_id, partition_kind, count in problems:
        line = f"  {owner_id} / {partition_kind.value}: {count} padrao(oes)"
        if args.fix:
            survivor = service.repair_partition(owner_id, partition_kind)
            line += f" -> corrigido ({survivor})"
        print(line)
    if not args.fix:
        print(f"{len(problems)} particao(oes) inconsistente(s); rode com --fix para corrigir")


if __name__ == "__main__":
    try:
        main()
    except Exception as exc:  # pragma: no cover
        sys.stderr.write(f"Erro: {exc}\n")
        raise SystemExit(1)
