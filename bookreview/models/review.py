"""
Review Model

One user's star rating and comment on one book.

Lifecycle:
- Created by its author; at most one ACTIVE review per (book, user)
- Edited only by its author (rating and/or comment)
- Deleted by clearing is_active (soft) or by removing the row (permanent)

Inactive rows are invisible to the API and excluded from the book's rating
aggregate. The partial unique index only covers active rows, so a user
whose review was soft-deleted may review the same book again.
"""

from datetime import UTC, datetime
from typing import TYPE_CHECKING

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Text,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from bookreview.database import Base

if TYPE_CHECKING:
    from bookreview.models.book import Book
    from bookreview.models.user import User

# Name of the partial unique index on (book_id, user_id) WHERE is_active
ACTIVE_REVIEW_INDEX = "uq_review_active_book_user"
RATING_RANGE_CHECK = "ck_review_rating_range"


def _utcnow() -> datetime:
    return datetime.now(UTC)


class Review(Base):
    """
    A rating of 1-5 stars with a comment.

    Table: reviews

    Fields:
    - book_id, user_id: What was reviewed and by whom
    - rating: Whole stars, 1-5 (CHECK constraint)
    - comment: 10-1000 characters (validated by the API schemas)
    - is_active: False once soft-deleted

    Example:
        review = Review(
            book_id=book.id,
            user_id=user.id,
            rating=4,
            comment="A chilling portrait of surveillance and control.",
        )
    """

    __tablename__ = "reviews"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)

    # -------------------------------------------------------------------------
    # References
    # -------------------------------------------------------------------------
    book_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("books.id", ondelete="CASCADE"),
        index=True,
        nullable=False,
    )

    user_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("users.id", ondelete="CASCADE"),
        index=True,
        nullable=False,
    )

    # -------------------------------------------------------------------------
    # Review Content
    # -------------------------------------------------------------------------
    rating: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        comment="Rating from 1-5 stars"
    )

    comment: Mapped[str] = mapped_column(
        Text,
        nullable=False,
    )

    is_active: Mapped[bool] = mapped_column(
        Boolean,
        default=True,
        nullable=False,
        comment="Only active reviews count toward the book rating"
    )

    # -------------------------------------------------------------------------
    # Timestamps
    # -------------------------------------------------------------------------
    # Set in Python so ordering by created_at is stable within one transaction
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow,
        nullable=False,
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow,
        onupdate=_utcnow,
        nullable=False,
    )

    # -------------------------------------------------------------------------
    # Relationships
    # -------------------------------------------------------------------------
    book: Mapped["Book"] = relationship("Book", back_populates="reviews")

    user: Mapped["User"] = relationship("User", back_populates="reviews")

    __table_args__ = (
        Index(
            ACTIVE_REVIEW_INDEX,
            "book_id",
            "user_id",
            unique=True,
            postgresql_where=text("is_active"),
            sqlite_where=text("is_active = 1"),
        ),
        Index("ix_reviews_book_created", "book_id", "created_at"),
        CheckConstraint("rating BETWEEN 1 AND 5", name=RATING_RANGE_CHECK),
    )

    def __repr__(self) -> str:
        return (
            f"Review(id={self.id}, book_id={self.book_id}, user_id={self.user_id}, "
            f"rating={self.rating}, active={self.is_active})"
        )
