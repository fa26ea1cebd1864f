from __future__ import annotations

from datetime import date, datetime
from typing import Any

from sqlalchemy.inspection import inspect as sa_inspect

from app.core.config import settings

from .access import TABLES


def _serialize_value(value: Any) -> Any:
    if isinstance(value, dict):
        return {key: _serialize_value(val) for key, val in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [_serialize_value(item) for item in value]
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return value


def _row_to_dict(row: Any) -> dict[str, Any]:
    mapper = sa_inspect(type(row))
    return {column.key: _serialize_value(getattr(row, column.key)) for column in mapper.columns}


def _columns_map(model: type) -> dict[str, Any]:
    mapper = sa_inspect(model)
    return {column.key: column for column in mapper.columns}


def _list_meta_payload() -> list[dict[str, Any]]:
    payload = []
    for name, config in TABLES.items():
        definition = config.definition
        payload.append(
            {
                "table": name,
                "label": config.label,
                "default_sort": {"column": definition.default_sort, "dir": "asc"},
                "sort_columns": [
                    {"name": column, "label": definition.labels.get(column, column)}
                    for column in definition.sort_columns
                ],
                "filter_keys": ["q", *definition.filter_keys],
                "page_size": {
                    "default": settings.LIST_DEFAULT_PAGE_SIZE,
                    "min": settings.LIST_MIN_PAGE_SIZE,
                    "max": settings.LIST_MAX_PAGE_SIZE,
                },
                "state_prefix": settings.STATE_FIELD_PREFIX,
            }
        )
    return payload
