"""
Book Model

Books are catalogued elsewhere; reading groups only reference them by id
and embed a few display fields (title, authors, cover) in responses.
"""

from datetime import datetime

from sqlalchemy import DateTime, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from readalong.database import Base


class Book(Base):
    """
    Book model representing catalogued books.

    Table: books

    Fields:
    - title: Book title (required)
    - authors: Comma-separated author names
    - isbn: International Standard Book Number (unique, optional)
    - page_count: Number of pages
    - cover_image: URL of the cover image
    """

    __tablename__ = "books"

    id: Mapped[int] = mapped_column(primary_key=True)

    title: Mapped[str] = mapped_column(
        String(500),
        index=True,
        nullable=False,
        comment="Book title"
    )

    authors: Mapped[str | None] = mapped_column(
        String(500),
        nullable=True,
        comment="Comma-separated author names"
    )

    # Optional because older books might not have one
    isbn: Mapped[str | None] = mapped_column(
        String(20),
        unique=True,
        index=True,
        nullable=True,
        comment="International Standard Book Number"
    )

    page_count: Mapped[int | None] = mapped_column(
        Integer,
        nullable=True,
        comment="Number of pages in the book"
    )

    cover_image: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
        comment="URL or path of the cover image"
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    @property
    def author_list(self) -> list[str]:
        """Split the stored author names into a list."""
        if not self.authors:
            return []
        return [name.strip() for name in self.authors.split(",") if name.strip()]

    def __repr__(self) -> str:
        return f"Book(id={self.id}, title='{self.title}')"
