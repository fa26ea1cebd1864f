from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from fastapi import HTTPException
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from app.models.book import Book
from app.models.event import Event
from app.models.event_member import EventMember
from app.models.member import Member
from app.schemas.listing import ListResult
from app.services.event_members import (
    add_event_member,
    commit_or_409,
    conflict_error,
    current_member_ids,
    ensure_members_exist_or_400,
    load_event_or_404,
    normalize_member_ids_or_400,
    reconcile_event_members,
    remove_event_member,
)
from app.services.list_query import execute_list_query, parse_list_params
from app.services.query_state import echo_state_fields, pager_payload, redirect_target, sort_link, split_echoed_state

from .access import TableConfig, _parse_id_or_404, _resolve_table
from .meta import _list_meta_payload, _row_to_dict, _serialize_value
from .payloads import (
    _books_of_author_count,
    _ensure_book_author_or_400,
    _load_row_or_404,
    _prepare_create_payload,
    _prepare_roster_payload,
    _prepare_update_payload,
    _split_relation_fields,
)

logger = logging.getLogger(__name__)

LIST_BASE_PATH = "/api/library"


def _integrity_error(detail: str = "Data constraint violation") -> HTTPException:
    return HTTPException(status_code=400, detail=detail)


def _list_path(config: TableConfig) -> str:
    return f"{LIST_BASE_PATH}/{config.name}"


def _event_member_counts(db: Session, event_ids: list[int]) -> dict[int, int]:
    if not event_ids:
        return {}
    rows = db.execute(
        select(EventMember.event_id, func.count(EventMember.member_id))
        .where(EventMember.event_id.in_(event_ids))
        .group_by(EventMember.event_id)
    ).all()
    return {event_id: count for event_id, count in rows}


def _list_rows_payload(db: Session, config: TableConfig, result: ListResult) -> list[dict[str, Any]]:
    rows = [_row_to_dict(row) for row in result.items]
    if config.name == "books":
        for payload, row in zip(rows, result.items):
            payload["author_name"] = row.author.name if row.author is not None else None
    if config.name == "events":
        counts = _event_member_counts(db, [row.id for row in result.items])
        for payload in rows:
            payload["member_count"] = counts.get(payload["id"], 0)
    return rows


def _filters_payload(config: TableConfig, list_query) -> dict[str, Any]:
    definition = config.definition
    filters = list_query.filters
    payload: dict[str, Any] = {"q": filters.search_text}
    for fk in definition.foreign_keys:
        payload[fk.key] = filters.foreign_key_equals.get(fk.field)
    for rng in definition.ranges:
        bound = filters.field_bounds.get(rng.field)
        payload[rng.lower_key] = _serialize_value(bound.lower) if bound is not None else None
        payload[rng.upper_key] = _serialize_value(bound.upper) if bound is not None else None
    payload.update(
        {
            "sort": list_query.sort.column,
            "dir": list_query.sort.direction,
            "pageSize": list_query.page.page_size,
        }
    )
    return payload


def list_meta_service() -> dict[str, Any]:
    return {"tables": _list_meta_payload()}


def query_table_service(table_name: str, raw_params: Mapping[str, Any], db: Session) -> dict[str, Any]:
    config = _resolve_table(table_name)
    definition = config.definition
    list_query = parse_list_params(raw_params, definition)
    result = execute_list_query(db, list_query, definition)
    return {
        "rows": _list_rows_payload(db, config, result),
        **pager_payload(list_query, result, definition),
        "filters": _filters_payload(config, list_query),
        "sort_links": {column: sort_link(list_query, column, definition) for column in definition.sort_columns},
        "state_fields": echo_state_fields(list_query, page=list_query.page.page, definition=definition),
    }


def _event_detail(db: Session, event: Event) -> dict[str, Any]:
    payload = _row_to_dict(event)
    enrolled = current_member_ids(db, event.id)
    members = db.query(Member).order_by(Member.full_name.asc(), Member.id.asc()).all()
    payload["members"] = [_row_to_dict(m) for m in members if m.id in enrolled]
    payload["available_members"] = [_row_to_dict(m) for m in members if m.id not in enrolled]
    payload["member_ids"] = sorted(enrolled)
    return payload


def get_row_service(table_name: str, row_id: str, db: Session) -> dict[str, Any]:
    config = _resolve_table(table_name)
    row = _load_row_or_404(db, config.model, _parse_id_or_404(row_id))
    if config.name == "events":
        return _event_detail(db, row)
    payload = _row_to_dict(row)
    if config.name == "authors":
        books = db.query(Book).filter(Book.author_id == row.id).order_by(Book.title.asc(), Book.id.asc()).all()
        payload["books"] = [_row_to_dict(book) for book in books]
    if config.name == "books":
        payload["author_name"] = row.author.name if row.author is not None else None
    return payload


def _mutation_response(config: TableConfig, row_payload: dict[str, Any] | None, message: str, echoed: dict[str, Any]) -> dict[str, Any]:
    return {
        "row": row_payload,
        "message": message,
        "redirect_to": redirect_target(_list_path(config), echoed, config.definition),
    }


def create_row_service(table_name: str, payload: dict[str, Any], db: Session, admin: dict) -> dict[str, Any]:
    config = _resolve_table(table_name)
    fields, echoed = split_echoed_state(payload)
    cleaned = _prepare_create_payload(config, fields)
    columns, relations = _split_relation_fields(config, cleaned)
    if config.name == "books":
        _ensure_book_author_or_400(db, columns)
    member_ids = relations.get("member_ids")
    if config.name == "events" and member_ids is not None:
        # Validates ids before anything is written.
        member_ids = normalize_member_ids_or_400(member_ids)
        ensure_members_exist_or_400(db, member_ids)
    row = config.model(**columns)
    try:
        db.add(row)
        db.flush()
        if config.name == "events" and member_ids:
            for member_id in sorted(member_ids):
                db.add(EventMember(event_id=row.id, member_id=member_id))
        db.commit()
        db.refresh(row)
    except IntegrityError:
        db.rollback()
        raise _integrity_error()

    logger.info("record created table=%s id=%s actor=%s", config.name, row.id, admin.get("sub"))
    row_payload = _event_detail(db, row) if config.name == "events" else _row_to_dict(row)
    return _mutation_response(config, row_payload, f"{config.singular} created.", echoed)


def _ensure_expected_version_or_409(row: Any, expected: Any) -> None:
    if expected is None:
        return
    if int(expected) != int(getattr(row, "version")):
        raise conflict_error()


def update_row_service(table_name: str, row_id: str, payload: dict[str, Any], db: Session, admin: dict) -> dict[str, Any]:
    config = _resolve_table(table_name)
    fields, echoed = split_echoed_state(payload)
    row = _load_row_or_404(db, config.model, _parse_id_or_404(row_id))
    cleaned = _prepare_update_payload(config, row, fields)
    columns, relations = _split_relation_fields(config, cleaned)
    if config.name == "books":
        _ensure_book_author_or_400(db, columns)
    if config.name == "events":
        _ensure_expected_version_or_409(row, relations.get("version"))
    for key, value in columns.items():
        setattr(row, key, value)

    delta = None
    try:
        if config.name == "events" and relations.get("member_ids") is not None:
            delta = reconcile_event_members(db, row.id, relations["member_ids"], commit=False)
        if config.name == "events":
            commit_or_409(db, event_id=row.id)
        else:
            db.commit()
        db.refresh(row)
    except StaleDataError:
        db.rollback()
        raise conflict_error()
    except IntegrityError:
        db.rollback()
        raise _integrity_error()
    except HTTPException:
        db.rollback()
        raise

    logger.info("record updated table=%s id=%s actor=%s", config.name, row.id, admin.get("sub"))
    if config.name == "events":
        row_payload = _event_detail(db, row)
        if delta is not None:
            row_payload["roster_change"] = delta.as_dict()
    else:
        row_payload = _row_to_dict(row)
    return _mutation_response(config, row_payload, f"{config.singular} updated.", echoed)


def _ensure_deletable_or_400(db: Session, config: TableConfig, row: Any) -> None:
    # Best-effort pre-check; a concurrent insert is still caught by the store as an IntegrityError.
    if config.name == "authors" and _books_of_author_count(db, row.id) > 0:
        logger.info("delete refused table=authors id=%s reason=books", row.id)
        raise HTTPException(
            status_code=400,
            detail="The author has related books. Reassign those books to another author or delete them first.",
        )
    if config.name == "members":
        enrolled = db.query(EventMember).filter(EventMember.member_id == row.id).count()
        if enrolled > 0:
            logger.info("delete refused table=members id=%s reason=events", row.id)
            raise HTTPException(
                status_code=400,
                detail="The member is enrolled in events. Remove them from those events first.",
            )


def delete_row_service(table_name: str, row_id: str, payload: dict[str, Any] | None, db: Session, admin: dict) -> dict[str, Any]:
    config = _resolve_table(table_name)
    _, echoed = split_echoed_state(payload)
    row = _load_row_or_404(db, config.model, _parse_id_or_404(row_id))
    _ensure_deletable_or_400(db, config, row)
    snapshot = _row_to_dict(row)
    try:
        if config.name == "events":
            db.query(EventMember).filter(EventMember.event_id == row.id).delete(synchronize_session=False)
        db.delete(row)
        db.commit()
    except StaleDataError:
        db.rollback()
        raise conflict_error()
    except IntegrityError:
        db.rollback()
        raise _integrity_error()

    logger.info("record deleted table=%s id=%s actor=%s", config.name, snapshot.get("id"), admin.get("sub"))
    return _mutation_response(config, snapshot, f"{config.singular} deleted.", echoed)


def reconcile_members_service(event_id: str, payload: dict[str, Any], db: Session, admin: dict) -> dict[str, Any]:
    eid = _parse_id_or_404(event_id)
    roster = _prepare_roster_payload(payload)
    _ensure_expected_version_or_409(load_event_or_404(db, eid), roster.version)
    delta = reconcile_event_members(db, eid, roster.member_ids)
    logger.info("event roster saved event_id=%s actor=%s", eid, admin.get("sub"))
    return {
        **delta.as_dict(),
        "message": _roster_message(delta.as_dict()),
        "redirect_to": f"{LIST_BASE_PATH}/events/{eid}",
    }


def _roster_message(delta: dict[str, list[int]]) -> str:
    parts = []
    if delta["added"]:
        parts.append(f"{len(delta['added'])} member(s) added")
    if delta["removed"]:
        parts.append(f"{len(delta['removed'])} member(s) removed")
    if not parts:
        return "Roster unchanged."
    return ", ".join(parts).capitalize() + "."


def add_member_service(event_id: str, member_id: str, db: Session) -> dict[str, Any]:
    eid = _parse_id_or_404(event_id)
    added = add_event_member(db, eid, _parse_id_or_404(member_id))
    return {
        "changed": added,
        "message": "Member added." if added else "Member is already enrolled.",
        "redirect_to": f"{LIST_BASE_PATH}/events/{eid}",
    }


def remove_member_service(event_id: str, member_id: str, db: Session) -> dict[str, Any]:
    eid = _parse_id_or_404(event_id)
    removed = remove_event_member(db, eid, _parse_id_or_404(member_id))
    return {
        "changed": removed,
        "message": "Member removed." if removed else "Member was not enrolled.",
        "redirect_to": f"{LIST_BASE_PATH}/events/{eid}",
    }
