"""Saved addresses and payment methods of the signed-in customer."""
from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Body, Request, Response

from rango_profile.core.errors import NotFoundError, OwnerNotAuthenticatedError
from rango_profile.domain.resources import ResourceKind
from rango_profile.services.resource_service import ResourceService
from rango_profile.services.session_service import current_owner_id

router = APIRouter(prefix="/me", tags=["resources"])

COLLECTIONS = {
    "addresses": ResourceKind.ADDRESS,
    "payment-methods": ResourceKind.PAYMENT_INSTRUMENT,
}


def _get_resource_service(request: Request) -> ResourceService:
    svc = getattr(getattr(request.app, "state", None), "resource_service", None)
    if not svc:
        raise RuntimeError("ResourceService nao configurado")
    return svc


def _owner(request: Request) -> str:
    owner = current_owner_id(request)
    if not owner:
        raise OwnerNotAuthenticatedError("Sessão inválida ou expirada")
    return owner


def _kind(collection: str) -> ResourceKind:
    kind = COLLECTIONS.get(collection)
    if kind is None:
        raise NotFoundError(f"Coleção desconhecida: {collection}")
    return kind


@router.get("/{collection}")
def list_resources(collection: str, request: Request):
    kind = _kind(collection)
    records = _get_resource_service(request).list(_owner(request), kind)
    return {"items": [r.to_dict() for r in records]}


@router.get("/{collection}/default")
def get_default_resource(collection: str, request: Request):
    kind = _kind(collection)
    return _get_resource_service(request).get_default(_owner(request), kind).to_dict()


@router.get("/{collection}/{resource_id}")
def get_resource(collection: str, resource_id: str, request: Request):
    kind = _kind(collection)
    return _get_resource_service(request).get(_owner(request), resource_id, kind).to_dict()


@router.post("/{collection}", status_code=201)
def create_resource(collection: str, request: Request, payload: dict[str, Any] = Body(...)):
    kind = _kind(collection)
    svc = _get_resource_service(request)
    owner = _owner(request)
    resource_id = svc.create(owner, kind, payload)
    return svc.get(owner, resource_id, kind).to_dict()


@router.patch("/{collection}/{resource_id}")
def update_resource(collection: str, resource_id: str, request: Request, payload: dict[str, Any] = Body(...)):
    kind = _kind(collection)
    svc = _get_resource_service(request)
    owner = _owner(request)
    svc.update(owner, resource_id, payload, kind=kind)
    return svc.get(owner, resource_id, kind).to_dict()


@router.post("/{collection}/{resource_id}/default")
def set_default_resource(collection: str, resource_id: str, request: Request):
    kind = _kind(collection)
    svc = _get_resource_service(request)
    owner = _owner(request)
    svc.set_default(owner, resource_id, kind=kind)
    return svc.get(owner, resource_id, kind).to_dict()


@router.delete("/{collection}/{resource_id}", status_code=204)
def delete_resource(collection: str, resource_id: str, request: Request):
    kind = _kind(collection)
    _get_resource_service(request).delete(_owner(request), resource_id, kind=kind)
    return Response(status_code=204)
