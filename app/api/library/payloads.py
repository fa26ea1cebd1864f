from __future__ import annotations

from typing import Any

from fastapi import HTTPException
from pydantic import ValidationError
from sqlalchemy.orm import Session

from app.models.author import Author
from app.models.book import Book
from app.schemas.library import EventMembersUpdate

from .access import TableConfig
from .meta import _columns_map

# Payload keys handled outside of plain column assignment.
RELATION_FIELDS = {"events": {"member_ids", "version"}}


def _validation_detail(exc: ValidationError) -> str:
    parts = []
    for error in exc.errors():
        location = ".".join(str(item) for item in error.get("loc") or ()) or "payload"
        parts.append(f"{location}: {error.get('msg')}")
    return "Invalid fields: " + "; ".join(parts)


def _sanitize_payload(config: TableConfig, payload: dict[str, Any]) -> dict[str, Any]:
    if not isinstance(payload, dict):
        raise HTTPException(status_code=400, detail="Request body must be a JSON object")
    allowed = set(config.schema.model_fields.keys())
    unknown_fields = sorted(set(payload.keys()) - allowed)
    if unknown_fields:
        raise HTTPException(status_code=400, detail="Unknown fields: " + ", ".join(unknown_fields))
    return dict(payload)


def _validate_or_400(config: TableConfig, data: dict[str, Any]) -> dict[str, Any]:
    try:
        validated = config.schema.model_validate(data)
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=_validation_detail(exc))
    cleaned = validated.model_dump()
    columns = _columns_map(config.model)
    for key in list(cleaned.keys()):
        column = columns.get(key)
        if column is None:
            continue
        # Let column defaults apply instead of writing NULL into NOT NULL columns.
        if cleaned[key] is None and not column.nullable and column.default is not None:
            cleaned.pop(key)
    return cleaned


def _prepare_create_payload(config: TableConfig, payload: dict[str, Any]) -> dict[str, Any]:
    return _validate_or_400(config, _sanitize_payload(config, payload))


def _prepare_update_payload(config: TableConfig, row: Any, payload: dict[str, Any]) -> dict[str, Any]:
    patch = _sanitize_payload(config, payload)
    if not patch:
        raise HTTPException(status_code=400, detail="No fields to update")
    columns = _columns_map(config.model)
    current = {key: getattr(row, key) for key in config.schema.model_fields.keys() if key in columns}
    cleaned = _validate_or_400(config, {**current, **patch})
    relation_fields = RELATION_FIELDS.get(config.name, set())
    # Relation fields are only reconciled when the caller actually sent them.
    for key in relation_fields:
        if key not in patch:
            cleaned.pop(key, None)
    return cleaned


def _split_relation_fields(config: TableConfig, cleaned: dict[str, Any]) -> tuple[dict[str, Any], dict[str, Any]]:
    relation_fields = RELATION_FIELDS.get(config.name, set())
    columns = {k: v for k, v in cleaned.items() if k not in relation_fields}
    relations = {k: v for k, v in cleaned.items() if k in relation_fields}
    return columns, relations


def _load_row_or_404(db: Session, model: type, row_id: int):
    entity = db.get(model, row_id)
    if entity is None:
        raise HTTPException(status_code=404, detail="Record not found")
    return entity


def _ensure_book_author_or_400(db: Session, cleaned: dict[str, Any]) -> None:
    author_id = cleaned.get("author_id")
    if author_id is None:
        return
    if db.get(Author, author_id) is None:
        raise HTTPException(status_code=400, detail=f"Author {author_id} does not exist")


def _books_of_author_count(db: Session, author_id: int) -> int:
    return db.query(Book).filter(Book.author_id == author_id).count()


def _prepare_roster_payload(payload: Any) -> EventMembersUpdate:
    if not isinstance(payload, dict):
        raise HTTPException(status_code=400, detail="Request body must be a JSON object")
    unknown_fields = sorted(set(payload.keys()) - set(EventMembersUpdate.model_fields.keys()))
    if unknown_fields:
        raise HTTPException(status_code=400, detail="Unknown fields: " + ", ".join(unknown_fields))
    try:
        return EventMembersUpdate.model_validate(payload)
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=_validation_detail(exc))
