from datetime import datetime

from pydantic import BaseModel, Field, field_validator
from typing import List, Optional

from app.models.common import MAX_DB_INT


def _strip_required(value: str) -> str:
    text = str(value or "").strip()
    if not text:
        raise ValueError("must not be empty")
    return text


class AuthorUpsert(BaseModel):
    name: str = Field(max_length=100)

    @field_validator("name")
    @classmethod
    def _name(cls, value: str) -> str:
        return _strip_required(value)


class BookUpsert(BaseModel):
    title: str = Field(max_length=200)
    isbn: Optional[str] = Field(default=None, max_length=20)
    year: int = Field(ge=0, le=2100)
    author_id: int = Field(ge=1, le=MAX_DB_INT)

    @field_validator("title")
    @classmethod
    def _title(cls, value: str) -> str:
        return _strip_required(value)

    @field_validator("isbn")
    @classmethod
    def _isbn(cls, value: Optional[str]) -> Optional[str]:
        text = str(value or "").strip()
        return text or None


class MemberUpsert(BaseModel):
    full_name: str = Field(max_length=100)
    email: str = Field(max_length=200)
    joined_at: Optional[datetime] = None

    @field_validator("full_name")
    @classmethod
    def _full_name(cls, value: str) -> str:
        return _strip_required(value)

    @field_validator("email")
    @classmethod
    def _email(cls, value: str) -> str:
        text = _strip_required(value).lower()
        local, _, domain = text.partition("@")
        if not local or "." not in domain:
            raise ValueError("is not a valid email address")
        return text


class EventUpsert(BaseModel):
    title: str = Field(max_length=150)
    description: Optional[str] = None
    start_at: datetime
    member_ids: Optional[List[int]] = None
    # Expected current version; a mismatch means someone else saved first.
    version: Optional[int] = None

    @field_validator("title")
    @classmethod
    def _title(cls, value: str) -> str:
        return _strip_required(value)


class EventMembersUpdate(BaseModel):
    member_ids: List[int] = Field(default_factory=list)
    version: Optional[int] = None
