from datetime import datetime, timezone
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import Integer

def utcnow():
    return datetime.now(timezone.utc)

class IntIdMixin:
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

# Largest value a signed 64-bit INTEGER column holds.
MAX_DB_INT = 2**63 - 1
