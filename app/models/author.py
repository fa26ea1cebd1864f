from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column, relationship
from app.db.session import Base
from app.models.common import IntIdMixin

class Author(Base, IntIdMixin):
    __tablename__ = "authors"
    name: Mapped[str] = mapped_column(String(100), nullable=False, index=True)

    books = relationship("Book", back_populates="author")
