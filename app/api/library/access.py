from __future__ import annotations

from dataclasses import dataclass

from fastapi import HTTPException
from pydantic import BaseModel

from app.models.author import Author
from app.models.book import Book
from app.models.common import MAX_DB_INT
from app.models.event import Event
from app.models.member import Member
from app.schemas.library import AuthorUpsert, BookUpsert, EventUpsert, MemberUpsert
from app.services.list_query import QueryDefinition, get_query_definition


@dataclass(frozen=True)
class TableConfig:
    name: str
    label: str
    singular: str
    model: type
    schema: type[BaseModel]

    @property
    def definition(self) -> QueryDefinition:
        definition = get_query_definition(self.name)
        if definition is None:
            raise KeyError(self.name)
        return definition


TABLES: dict[str, TableConfig] = {
    "authors": TableConfig("authors", "Authors", "Author", Author, AuthorUpsert),
    "books": TableConfig("books", "Books", "Book", Book, BookUpsert),
    "members": TableConfig("members", "Members", "Member", Member, MemberUpsert),
    "events": TableConfig("events", "Events", "Event", Event, EventUpsert),
}


def _normalize_table_name(table_name: str) -> str:
    return (table_name or "").strip().replace("-", "_").lower()


def _resolve_table(table_name: str) -> TableConfig:
    config = TABLES.get(_normalize_table_name(table_name))
    if config is None:
        raise HTTPException(status_code=404, detail="Table not found")
    return config


def _parse_id_or_404(row_id: str | int) -> int:
    try:
        value = int(str(row_id).strip())
    except ValueError:
        raise HTTPException(status_code=404, detail="Record not found")
    if not 1 <= value <= MAX_DB_INT:
        raise HTTPException(status_code=404, detail="Record not found")
    return value
