"""
Book Model

The central model of the Book Review API.

Rating Aggregate Fields
=======================
average_rating and total_reviews are denormalized copies of an aggregation
over the book's active reviews. They are written only by
services.ratings.recalculate_book_rating, inside the same transaction as
the review write that triggered it. Reads return the stored values as-is.
"""

from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from bookreview.database import Base

if TYPE_CHECKING:
    from bookreview.models.review import Review
    from bookreview.models.user import User


class Book(Base):
    """
    Book model representing books submitted by users.

    Table: books

    Fields:
    - title, author, genre, description: Required catalogue data
    - publish_year: Year of first publication
    - pages: Page count (optional)
    - language: Defaults to English
    - owner_id: User who submitted the book
    - average_rating: Mean of active review ratings, 1 decimal, 0 with no reviews
    - total_reviews: Count of active reviews
    - is_active: False once the owner deletes the book

    Example:
        book = Book(
            title="1984",
            author="George Orwell",
            genre="Dystopian",
            description="A dystopian novel set in a totalitarian society.",
            publish_year=1949,
            pages=328,
            owner_id=user.id,
        )
    """

    __tablename__ = "books"

    id: Mapped[int] = mapped_column(primary_key=True)

    # -------------------------------------------------------------------------
    # Catalogue Fields
    # -------------------------------------------------------------------------
    title: Mapped[str] = mapped_column(
        String(200),
        index=True,
        nullable=False,
        comment="Book title"
    )

    author: Mapped[str] = mapped_column(
        String(100),
        index=True,
        nullable=False,
        comment="Author name"
    )

    genre: Mapped[str] = mapped_column(
        String(50),
        index=True,
        nullable=False,
    )

    description: Mapped[str] = mapped_column(
        Text,
        nullable=False,
    )

    publish_year: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
    )

    pages: Mapped[int | None] = mapped_column(
        Integer,
        nullable=True,
    )

    language: Mapped[str] = mapped_column(
        String(30),
        default="English",
        nullable=False,
    )

    owner_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("users.id"),
        index=True,
        nullable=False,
        comment="User who submitted the book"
    )

    # -------------------------------------------------------------------------
    # Rating Aggregate (written by the rating aggregator only)
    # -------------------------------------------------------------------------
    # Numeric(2, 1): 0.0 - 5.0, one decimal place
    average_rating: Mapped[Decimal] = mapped_column(
        Numeric(2, 1),
        default=Decimal("0.0"),
        server_default="0",
        index=True,
        nullable=False,
        comment="Mean rating of active reviews, 0 when there are none"
    )

    total_reviews: Mapped[int] = mapped_column(
        Integer,
        default=0,
        server_default="0",
        nullable=False,
        comment="Number of active reviews"
    )

    is_active: Mapped[bool] = mapped_column(
        Boolean,
        default=True,
        nullable=False,
    )

    # -------------------------------------------------------------------------
    # Timestamps
    # -------------------------------------------------------------------------
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        index=True,
        nullable=False,
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    # -------------------------------------------------------------------------
    # Relationships
    # -------------------------------------------------------------------------
    owner: Mapped["User"] = relationship("User", back_populates="books")

    reviews: Mapped[list["Review"]] = relationship(
        "Review",
        back_populates="book",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        CheckConstraint(
            "average_rating >= 0 AND average_rating <= 5",
            name="ck_book_average_rating_range",
        ),
        CheckConstraint("total_reviews >= 0", name="ck_book_total_reviews_positive"),
    )

    def __repr__(self) -> str:
        return f"Book(id={self.id}, title='{self.title}', author='{self.author}')"
