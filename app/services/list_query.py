from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from typing import Any

from sqlalchemy import asc, desc, func, or_, select
from sqlalchemy.orm import Query, Session, contains_eager

from app.core.config import settings
from app.models.author import Author
from app.models.book import Book
from app.models.common import MAX_DB_INT
from app.models.event import Event
from app.models.event_member import EventMember
from app.models.member import Member
from app.schemas.listing import FilterSpec, ListQuery, ListResult, PageSpec, RangeBound, SortSpec

# Offsets past this are meaningless and overflow some drivers.
MAX_PAGE = 1_000_000


@dataclass(frozen=True)
class ForeignKeyFilter:
    field: str
    key: str
    column: Any


@dataclass(frozen=True)
class RangeFilter:
    field: str
    lower_key: str
    upper_key: str
    column: Any
    kind: str = "int"  # int | date


@dataclass(frozen=True)
class QueryDefinition:
    """Whitelists what a list request may touch for one table."""

    table: str
    model: type
    search_columns: tuple[Any, ...]
    sort_columns: dict[str, Any]
    default_sort: str
    tiebreak: tuple[Any, ...] = ()
    foreign_keys: tuple[ForeignKeyFilter, ...] = ()
    ranges: tuple[RangeFilter, ...] = ()
    joins: tuple[Any, ...] = ()
    labels: dict[str, str] = field(default_factory=dict)

    @property
    def filter_keys(self) -> list[str]:
        keys = [fk.key for fk in self.foreign_keys]
        for rng in self.ranges:
            keys.extend([rng.lower_key, rng.upper_key])
        return keys


_event_member_count = (
    select(func.count(EventMember.member_id))
    .where(EventMember.event_id == Event.id)
    .correlate(Event)
    .scalar_subquery()
)

QUERY_DEFINITIONS: dict[str, QueryDefinition] = {
    "authors": QueryDefinition(
        table="authors",
        model=Author,
        search_columns=(Author.name,),
        sort_columns={"name": Author.name, "id": Author.id},
        default_sort="name",
        tiebreak=(Author.id,),
        labels={"name": "Name", "id": "Id"},
    ),
    "books": QueryDefinition(
        table="books",
        model=Book,
        search_columns=(Book.title, Book.isbn, Author.name),
        sort_columns={"title": Book.title, "year": Book.year, "author": Author.name},
        default_sort="title",
        tiebreak=(Book.title, Book.id),
        foreign_keys=(ForeignKeyFilter(field="author_id", key="authorId", column=Book.author_id),),
        ranges=(RangeFilter(field="year", lower_key="yearFrom", upper_key="yearTo", column=Book.year),),
        joins=(Book.author,),
        labels={"title": "Title", "year": "Year", "author": "Author"},
    ),
    "members": QueryDefinition(
        table="members",
        model=Member,
        search_columns=(Member.full_name, Member.email),
        sort_columns={"name": Member.full_name, "email": Member.email, "joined": Member.joined_at},
        default_sort="name",
        tiebreak=(Member.full_name, Member.id),
        labels={"name": "Name", "email": "Email", "joined": "Joined"},
    ),
    "events": QueryDefinition(
        table="events",
        model=Event,
        search_columns=(Event.title, Event.description),
        sort_columns={"date": Event.start_at, "title": Event.title, "count": _event_member_count},
        default_sort="date",
        tiebreak=(Event.title, Event.id),
        ranges=(RangeFilter(field="start_at", lower_key="from", upper_key="to", column=Event.start_at, kind="date"),),
        labels={"date": "Date", "title": "Title", "count": "Members"},
    ),
}


def get_query_definition(table_name: str) -> QueryDefinition | None:
    return QUERY_DEFINITIONS.get(str(table_name or "").strip().lower())


def _first(value: Any) -> Any:
    if isinstance(value, (list, tuple)):
        return value[0] if value else None
    return value


def _lowered_params(raw_params: Mapping[str, Any] | None) -> dict[str, Any]:
    lowered: dict[str, Any] = {}
    if not raw_params:
        return lowered
    for key, value in raw_params.items():
        lowered.setdefault(str(key).lower(), _first(value))
    return lowered


def _parse_text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _parse_int(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        number = value
    else:
        text = str(value).strip()
        if not text:
            return None
        try:
            number = int(text)
        except ValueError:
            return None
    # Values the store cannot bind are as unparseable as text.
    if not -MAX_DB_INT - 1 <= number <= MAX_DB_INT:
        return None
    return number


def _parse_date(value: Any) -> date | None:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value or "").strip()
    if not text:
        return None
    try:
        # Accept either YYYY-MM-DD or full ISO datetime and take its date part.
        if "T" in text or " " in text:
            return datetime.fromisoformat(text.replace("Z", "+00:00")).date()
        return date.fromisoformat(text)
    except ValueError:
        return None


def _parse_bound(value: Any, kind: str) -> int | date | None:
    if kind == "date":
        return _parse_date(value)
    return _parse_int(value)


def _parse_direction(value: Any) -> str:
    return "desc" if str(value or "").lower() == "desc" else "asc"


def _clamp_page_size(value: Any) -> int:
    size = _parse_int(value)
    if size is None:
        size = settings.LIST_DEFAULT_PAGE_SIZE
    return max(settings.LIST_MIN_PAGE_SIZE, min(settings.LIST_MAX_PAGE_SIZE, size))


def _clamp_page(value: Any) -> int:
    page = _parse_int(value)
    if page is None or page < 1:
        return 1
    return min(page, MAX_PAGE)


def parse_filter_spec(params: Mapping[str, Any], definition: QueryDefinition) -> FilterSpec:
    foreign_keys: dict[str, int] = {}
    for fk in definition.foreign_keys:
        value = _parse_int(params.get(fk.key.lower()))
        if value is not None:
            foreign_keys[fk.field] = value
    bounds: dict[str, RangeBound] = {}
    for rng in definition.ranges:
        bound = RangeBound(
            lower=_parse_bound(params.get(rng.lower_key.lower()), rng.kind),
            upper=_parse_bound(params.get(rng.upper_key.lower()), rng.kind),
        )
        if not bound.is_empty:
            bounds[rng.field] = bound
    return FilterSpec(
        search_text=_parse_text(params.get("q")),
        field_bounds=bounds,
        foreign_key_equals=foreign_keys,
    )


def parse_sort_spec(params: Mapping[str, Any], definition: QueryDefinition) -> SortSpec:
    column = str(params.get("sort") or "").strip().lower()
    if column not in definition.sort_columns:
        column = definition.default_sort
    return SortSpec(column=column, direction=_parse_direction(params.get("dir")))


def parse_page_spec(params: Mapping[str, Any]) -> PageSpec:
    return PageSpec(page=_clamp_page(params.get("page")), page_size=_clamp_page_size(params.get("pagesize")))


def parse_list_params(raw_params: Mapping[str, Any] | None, definition: QueryDefinition) -> ListQuery:
    """Normalize raw query parameters into a ListQuery.

    Never raises: every malformed or missing value degrades to its default,
    because list URLs are user-editable.
    """
    params = _lowered_params(raw_params)
    return ListQuery(
        table=definition.table,
        filters=parse_filter_spec(params, definition),
        sort=parse_sort_spec(params, definition),
        page=parse_page_spec(params),
    )


def _escape_like(text: str) -> str:
    return text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _range_clauses(rng: RangeFilter, bound: RangeBound) -> list[Any]:
    clauses = []
    if rng.kind == "date":
        # Date bounds on a timestamp column cover the whole day on both ends.
        if bound.lower is not None:
            clauses.append(rng.column >= datetime.combine(bound.lower, time.min))
        if bound.upper == date.max:
            clauses.append(rng.column <= datetime.combine(bound.upper, time.max))
        elif bound.upper is not None:
            clauses.append(rng.column < datetime.combine(bound.upper + timedelta(days=1), time.min))
        return clauses
    if bound.lower is not None:
        clauses.append(rng.column >= bound.lower)
    if bound.upper is not None:
        clauses.append(rng.column <= bound.upper)
    return clauses


def apply_filter_spec(q: Query, definition: QueryDefinition, filters: FilterSpec) -> Query:
    if filters.search_text:
        pattern = f"%{_escape_like(filters.search_text)}%"
        q = q.filter(or_(*[col.ilike(pattern, escape="\\") for col in definition.search_columns]))
    for fk in definition.foreign_keys:
        value = filters.foreign_key_equals.get(fk.field)
        if value is not None:
            q = q.filter(fk.column == value)
    for rng in definition.ranges:
        bound = filters.field_bounds.get(rng.field)
        if bound is None:
            continue
        for clause in _range_clauses(rng, bound):
            q = q.filter(clause)
    return q


def apply_sort_spec(q: Query, definition: QueryDefinition, sort: SortSpec) -> Query:
    column = definition.sort_columns.get(sort.column)
    if column is None:
        column = definition.sort_columns[definition.default_sort]
    order = [asc(column) if sort.direction == "asc" else desc(column)]
    order.extend(asc(col) for col in definition.tiebreak)
    return q.order_by(*order)


def base_list_query(db: Session, definition: QueryDefinition) -> Query:
    q = db.query(definition.model)
    for relationship in definition.joins:
        q = q.outerjoin(relationship)
    return q


def execute_list_query(db: Session, list_query: ListQuery, definition: QueryDefinition | None = None) -> ListResult:
    definition = definition or get_query_definition(list_query.table)
    if definition is None:
        raise KeyError(list_query.table)
    q = apply_filter_spec(base_list_query(db, definition), definition, list_query.filters)
    total = q.count()
    q = apply_sort_spec(q, definition, list_query.sort)
    for relationship in definition.joins:
        q = q.options(contains_eager(relationship))
    rows = q.offset(list_query.page.offset).limit(list_query.page.page_size).all()
    return ListResult(
        items=rows,
        page=list_query.page.page,
        page_size=list_query.page.page_size,
        total_count=total,
    )
