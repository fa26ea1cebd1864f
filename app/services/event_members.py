from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

from fastapi import HTTPException
from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.attributes import flag_modified
from sqlalchemy.orm.exc import StaleDataError

from app.models.common import MAX_DB_INT
from app.models.event import Event
from app.models.event_member import EventMember
from app.models.member import Member

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MemberDelta:
    added: frozenset[int]
    removed: frozenset[int]

    def __bool__(self) -> bool:
        return bool(self.added or self.removed)

    def as_dict(self) -> dict[str, list[int]]:
        return {"added": sorted(self.added), "removed": sorted(self.removed)}


def diff_member_ids(desired: Iterable[int], current: Iterable[int]) -> MemberDelta:
    desired_set = set(desired)
    current_set = set(current)
    return MemberDelta(added=frozenset(desired_set - current_set), removed=frozenset(current_set - desired_set))


def conflict_error() -> HTTPException:
    return HTTPException(status_code=409, detail="The record was changed by someone else, reload and try again")


def normalize_member_ids_or_400(raw: Any) -> set[int]:
    if raw is None:
        return set()
    if isinstance(raw, (str, bytes)) or not isinstance(raw, Iterable):
        raise HTTPException(status_code=400, detail='Field "member_ids" must be a list of ids')
    ids: set[int] = set()
    for item in raw:
        if isinstance(item, bool):
            raise HTTPException(status_code=400, detail=f"Invalid member id: {item}")
        try:
            member_id = int(str(item).strip())
        except ValueError:
            raise HTTPException(status_code=400, detail=f"Invalid member id: {item}")
        if not 1 <= member_id <= MAX_DB_INT:
            raise HTTPException(status_code=400, detail=f"Invalid member id: {item}")
        ids.add(member_id)
    return ids


def load_event_or_404(db: Session, event_id: int) -> Event:
    event = db.query(Event).filter(Event.id == event_id).with_for_update().first()
    if event is None:
        raise HTTPException(status_code=404, detail="Event not found")
    return event


def current_member_ids(db: Session, event_id: int) -> set[int]:
    return set(db.scalars(select(EventMember.member_id).where(EventMember.event_id == event_id)))


def ensure_members_exist_or_400(db: Session, member_ids: set[int]) -> None:
    if not member_ids:
        return
    found = set(db.scalars(select(Member.id).where(Member.id.in_(sorted(member_ids)))))
    missing = sorted(member_ids - found)
    if missing:
        raise HTTPException(status_code=400, detail="Unknown members: " + ", ".join(str(mid) for mid in missing))


def apply_member_delta(db: Session, event: Event, delta: MemberDelta) -> None:
    if not delta:
        return
    if delta.removed:
        db.execute(
            delete(EventMember).where(
                EventMember.event_id == event.id,
                EventMember.member_id.in_(sorted(delta.removed)),
            )
        )
    for member_id in sorted(delta.added):
        db.add(EventMember(event_id=event.id, member_id=member_id))
    # Forces an UPDATE of the event row so its version counter is checked and bumped.
    flag_modified(event, "title")


def commit_or_409(db: Session, *, event_id: int) -> None:
    try:
        db.commit()
    except (StaleDataError, IntegrityError):
        db.rollback()
        logger.warning("event roster conflict event_id=%s", event_id)
        raise conflict_error()


def reconcile_event_members(db: Session, event_id: int, desired_member_ids: Any, *, commit: bool = True) -> MemberDelta:
    """Make the event's roster equal the desired member set.

    Removes ``current - desired`` and inserts ``desired - current`` within one
    transaction. A missing event or unknown member aborts before any write.
    With ``commit=False`` the caller owns the transaction.
    """
    event = load_event_or_404(db, event_id)
    owner_id = event.id
    desired = normalize_member_ids_or_400(desired_member_ids)
    delta = diff_member_ids(desired, current_member_ids(db, owner_id))
    ensure_members_exist_or_400(db, set(delta.added))
    apply_member_delta(db, event, delta)
    if commit:
        commit_or_409(db, event_id=owner_id)
    if delta:
        logger.info(
            "event roster reconciled event_id=%s added=%s removed=%s",
            owner_id,
            sorted(delta.added),
            sorted(delta.removed),
        )
    return delta


def add_event_member(db: Session, event_id: int, member_id: int) -> bool:
    event = load_event_or_404(db, event_id)
    if db.get(Member, member_id) is None:
        raise HTTPException(status_code=404, detail="Member not found")
    if member_id in current_member_ids(db, event.id):
        return False
    apply_member_delta(db, event, MemberDelta(added=frozenset({member_id}), removed=frozenset()))
    commit_or_409(db, event_id=event.id)
    return True


def remove_event_member(db: Session, event_id: int, member_id: int) -> bool:
    event = load_event_or_404(db, event_id)
    if member_id not in current_member_ids(db, event.id):
        return False
    apply_member_delta(db, event, MemberDelta(added=frozenset(), removed=frozenset({member_id})))
    commit_or_409(db, event_id=event.id)
    return True
