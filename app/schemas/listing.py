from __future__ import annotations

import math
from datetime import date
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

Dir = Literal["asc", "desc"]
Bound = Union[int, date]


class RangeBound(BaseModel):
    model_config = ConfigDict(frozen=True)

    lower: Optional[Bound] = None
    upper: Optional[Bound] = None

    @property
    def is_empty(self) -> bool:
        return self.lower is None and self.upper is None


class FilterSpec(BaseModel):
    model_config = ConfigDict(frozen=True)

    search_text: Optional[str] = None
    field_bounds: Dict[str, RangeBound] = Field(default_factory=dict)
    foreign_key_equals: Dict[str, int] = Field(default_factory=dict)


class SortSpec(BaseModel):
    model_config = ConfigDict(frozen=True)

    column: str
    direction: Dir = "asc"

    def flipped(self) -> "SortSpec":
        return SortSpec(column=self.column, direction="desc" if self.direction == "asc" else "asc")


class PageSpec(BaseModel):
    model_config = ConfigDict(frozen=True)

    page: int = 1
    page_size: int = 10

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.page_size


class ListQuery(BaseModel):
    """Normalized list request for one table.

    Built fresh per request by ``parse_list_params``; immutable afterwards.
    """

    model_config = ConfigDict(frozen=True)

    table: str
    filters: FilterSpec = Field(default_factory=FilterSpec)
    sort: SortSpec
    page: PageSpec = Field(default_factory=PageSpec)


class ListResult(BaseModel):
    items: List[Any]
    page: int
    page_size: int
    total_count: int

    @property
    def total_pages(self) -> int:
        if self.page_size <= 0:
            return 0
        return math.ceil(self.total_count / self.page_size)
