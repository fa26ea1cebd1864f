from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Body, Depends, Request
from sqlalchemy.orm import Session

from app.core.deps import require_writer
from app.db.session import get_db

from .service import (
    add_member_service,
    create_row_service,
    delete_row_service,
    get_row_service,
    list_meta_service,
    query_table_service,
    reconcile_members_service,
    remove_member_service,
    update_row_service,
)

router = APIRouter()


@router.get("/meta/lists")
def list_meta():
    return list_meta_service()


@router.put("/events/{event_id}/members")
def reconcile_event_members(
    event_id: str,
    payload: dict[str, Any],
    db: Session = Depends(get_db),
    admin: dict = Depends(require_writer),
):
    return reconcile_members_service(event_id, payload, db, admin)


@router.post("/events/{event_id}/members/{member_id}")
def add_event_member(
    event_id: str,
    member_id: str,
    db: Session = Depends(get_db),
    admin: dict = Depends(require_writer),
):
    return add_member_service(event_id, member_id, db)


@router.delete("/events/{event_id}/members/{member_id}")
def remove_event_member(
    event_id: str,
    member_id: str,
    db: Session = Depends(get_db),
    admin: dict = Depends(require_writer),
):
    return remove_member_service(event_id, member_id, db)


@router.get("/{table_name}")
def query_table(table_name: str, request: Request, db: Session = Depends(get_db)):
    return query_table_service(table_name, request.query_params, db)


@router.get("/{table_name}/{row_id}")
def get_row(table_name: str, row_id: str, db: Session = Depends(get_db)):
    return get_row_service(table_name, row_id, db)


@router.post("/{table_name}", status_code=201)
def create_row(
    table_name: str,
    payload: dict[str, Any],
    db: Session = Depends(get_db),
    admin: dict = Depends(require_writer),
):
    return create_row_service(table_name, payload, db, admin)


@router.patch("/{table_name}/{row_id}")
def update_row(
    table_name: str,
    row_id: str,
    payload: dict[str, Any],
    db: Session = Depends(get_db),
    admin: dict = Depends(require_writer),
):
    return update_row_service(table_name, row_id, payload, db, admin)


@router.delete("/{table_name}/{row_id}")
def delete_row(
    table_name: str,
    row_id: str,
    payload: dict[str, Any] | None = Body(default=None),
    db: Session = Depends(get_db),
    admin: dict = Depends(require_writer),
):
    return delete_row_service(table_name, row_id, payload, db, admin)
