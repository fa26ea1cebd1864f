from __future__ import annotations

from collections.abc import Mapping
from datetime import date
from typing import Any
from urllib.parse import parse_qsl, quote, urlencode

from app.core.config import settings
from app.schemas.listing import ListQuery, ListResult, PageSpec, SortSpec
from app.services.list_query import QueryDefinition, get_query_definition, parse_list_params


def _definition_for(list_query: ListQuery, definition: QueryDefinition | None) -> QueryDefinition:
    resolved = definition or get_query_definition(list_query.table)
    if resolved is None:
        raise KeyError(list_query.table)
    return resolved


def _format_value(value: Any) -> str:
    if isinstance(value, date):
        return value.isoformat()
    return str(value)


def state_pairs(list_query: ListQuery, definition: QueryDefinition | None = None) -> list[tuple[str, str]]:
    """Canonical (key, value) pairs of a list context, without ``page``."""
    definition = _definition_for(list_query, definition)
    filters = list_query.filters
    pairs: list[tuple[str, str]] = []
    if filters.search_text:
        pairs.append(("q", filters.search_text))
    for fk in definition.foreign_keys:
        value = filters.foreign_key_equals.get(fk.field)
        if value is not None:
            pairs.append((fk.key, _format_value(value)))
    for rng in definition.ranges:
        bound = filters.field_bounds.get(rng.field)
        if bound is None:
            continue
        if bound.lower is not None:
            pairs.append((rng.lower_key, _format_value(bound.lower)))
        if bound.upper is not None:
            pairs.append((rng.upper_key, _format_value(bound.upper)))
    pairs.append(("sort", list_query.sort.column))
    pairs.append(("dir", list_query.sort.direction))
    pairs.append(("pageSize", str(list_query.page.page_size)))
    return pairs


def encode_query_state(list_query: ListQuery, definition: QueryDefinition | None = None) -> str:
    return urlencode(state_pairs(list_query, definition), quote_via=quote)


def page_link(list_query: ListQuery, page: int, definition: QueryDefinition | None = None) -> str:
    return f"?{encode_query_state(list_query, definition)}&page={max(1, int(page))}"


def next_sort_spec(current: SortSpec, column: str) -> SortSpec:
    if current.column == column:
        return current.flipped()
    return SortSpec(column=column, direction="asc")


def with_sort(list_query: ListQuery, column: str, definition: QueryDefinition | None = None) -> ListQuery:
    """Return the list context a click on ``column``'s header leads to.

    Changing the order invalidates any page offset, so the page is reset to 1.
    """
    definition = _definition_for(list_query, definition)
    normalized = str(column or "").strip().lower()
    if normalized not in definition.sort_columns:
        normalized = definition.default_sort
    return list_query.model_copy(
        update={
            "sort": next_sort_spec(list_query.sort, normalized),
            "page": PageSpec(page=1, page_size=list_query.page.page_size),
        }
    )


def sort_link(list_query: ListQuery, column: str, definition: QueryDefinition | None = None) -> str:
    return page_link(with_sort(list_query, column, definition), 1, definition)


def echo_state_fields(
    list_query: ListQuery,
    page: int | None = None,
    definition: QueryDefinition | None = None,
) -> dict[str, str]:
    prefix = settings.STATE_FIELD_PREFIX
    fields = {f"{prefix}{key}": value for key, value in state_pairs(list_query, definition)}
    if page is not None:
        fields[f"{prefix}page"] = str(max(1, int(page)))
    return fields


def split_echoed_state(payload: Mapping[str, Any] | None) -> tuple[dict[str, Any], dict[str, Any]]:
    """Separate entity fields from echoed list state in a mutation payload."""
    prefix = settings.STATE_FIELD_PREFIX.lower()
    fields: dict[str, Any] = {}
    echoed: dict[str, Any] = {}
    for key, value in (payload or {}).items():
        if str(key).lower().startswith(prefix):
            echoed[str(key)] = value
        else:
            fields[str(key)] = value
    return fields, echoed


def _unprefixed_state(echoed: Any) -> dict[str, Any]:
    if isinstance(echoed, str):
        return {key: value for key, value in parse_qsl(echoed.lstrip("?"), keep_blank_values=True)}
    if not isinstance(echoed, Mapping):
        return {}
    prefix = settings.STATE_FIELD_PREFIX.lower()
    params: dict[str, Any] = {}
    for key, value in echoed.items():
        lowered = str(key).lower()
        if not lowered.startswith(prefix):
            continue
        name = str(key)[len(prefix):]
        if not name or name.lower() == "id":
            continue
        params[name] = value
    return params


def decode_echoed_state(echoed: Any, definition: QueryDefinition) -> ListQuery:
    """Rebuild the caller's list context from echoed state only.

    ``echoed`` is either the ``state_``-prefixed mapping carried by a mutation
    request or the raw list query string. Anything else, or anything
    unparseable, yields the default context of a fresh list request.
    """
    return parse_list_params(_unprefixed_state(echoed), definition)


def redirect_target(base_path: str, echoed: Any, definition: QueryDefinition) -> str:
    list_query = decode_echoed_state(echoed, definition)
    target = f"{base_path}?{encode_query_state(list_query, definition)}"
    if list_query.page.page > 1:
        target += f"&page={list_query.page.page}"
    return target


def pager_payload(list_query: ListQuery, result: ListResult, definition: QueryDefinition | None = None) -> dict[str, Any]:
    total_pages = result.total_pages
    return {
        "page": result.page,
        "page_size": result.page_size,
        "total": result.total_count,
        "total_pages": total_pages,
        "query_string": f"?{encode_query_state(list_query, definition)}",
        "prev": page_link(list_query, result.page - 1, definition) if result.page > 1 else None,
        "next": page_link(list_query, result.page + 1, definition) if result.page < total_pages else None,
    }
