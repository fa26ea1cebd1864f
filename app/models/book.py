from sqlalchemy import ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship
from app.db.session import Base
from app.models.common import IntIdMixin

class Book(Base, IntIdMixin):
    __tablename__ = "books"
    title: Mapped[str] = mapped_column(String(200), nullable=False, index=True)
    isbn: Mapped[str | None] = mapped_column(String(20), nullable=True)
    year: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    author_id: Mapped[int] = mapped_column(ForeignKey("authors.id"), nullable=False, index=True)

    author = relationship("Author", back_populates="books")
