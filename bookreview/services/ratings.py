"""
Ratings Service

Maintains the denormalized rating fields on the Book model:
- average_rating: mean of active review ratings, rounded to 1 decimal
- total_reviews: number of active reviews

recalculate_book_rating() is the only code that writes these fields. It
locks the book row (SELECT ... FOR NO KEY UPDATE), scans the active reviews
and writes the result, all inside the caller's transaction. Two recomputes
for the same book therefore serialize on the row lock, and the scan of the
second always sees the first one's committed reviews. Recomputes for
different books never contend.

The lock is NO KEY UPDATE rather than a plain FOR UPDATE: inserting a review
takes a FOR KEY SHARE lock on the parent book for the foreign key check, and
FOR UPDATE conflicts with it, so two transactions that had each inserted a
review would deadlock waiting for each other's key-share lock.

On SQLite the FOR UPDATE clause is dropped and the database's single
writer lock gives the same ordering.
"""

import logging
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

from sqlalchemy import Select, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from bookreview.models import Book, Review
from bookreview.services.exceptions import BookNotFoundError, StorageError

logger = logging.getLogger(__name__)

ONE_DECIMAL = Decimal("0.1")


def lock_book_statement(book_id: int) -> Select:
    """SELECT the book row FOR NO KEY UPDATE (FOR UPDATE on backends without it)."""
    return select(Book).where(Book.id == book_id).with_for_update(key_share=True)


@dataclass(frozen=True)
class RatingAggregate:
    """Result of a recompute: the values written onto the book."""

    average_rating: Decimal
    total_reviews: int


def compute_rating_aggregate(rating_sum: int, review_count: int) -> RatingAggregate:
    """
    Turn a sum and count of ratings into the stored aggregate.

    Rounds half up (4.25 -> 4.3), computed in Decimal so the result does
    not depend on float representation. No reviews gives (0, 0).

    >>> compute_rating_aggregate(0, 0)
    RatingAggregate(average_rating=Decimal('0.0'), total_reviews=0)
    >>> compute_rating_aggregate(7, 2)
    RatingAggregate(average_rating=Decimal('3.5'), total_reviews=2)
    """
    if not review_count:
        return RatingAggregate(average_rating=Decimal("0.0"), total_reviews=0)

    mean = Decimal(rating_sum) / Decimal(review_count)
    return RatingAggregate(
        average_rating=mean.quantize(ONE_DECIMAL, rounding=ROUND_HALF_UP),
        total_reviews=review_count,
    )


def recalculate_book_rating(db: Session, book_id: int) -> RatingAggregate:
    """
    Recompute a book's rating aggregate from its active reviews.

    Runs inside the caller's transaction and does not commit: the review
    write that triggered it and this aggregate write are committed (or
    rolled back) together by the caller.

    Args:
        db: Database session
        book_id: ID of the book to update (the book may be inactive)

    Returns:
        The aggregate written onto the book

    Raises:
        BookNotFoundError: If the book does not exist
        StorageError: If any query or the flush fails
    """
    try:
        # Pending review changes must be visible to the scan below
        db.flush()

        book = db.execute(lock_book_statement(book_id)).scalar_one_or_none()
        if book is None:
            raise BookNotFoundError(book_id)

        rating_sum, review_count = db.execute(
            select(
                func.coalesce(func.sum(Review.rating), 0),
                func.count(Review.id),
            ).where(
                Review.book_id == book_id,
                Review.is_active == True,  # noqa: E712
            )
        ).one()

        aggregate = compute_rating_aggregate(int(rating_sum), int(review_count))
        book.average_rating = aggregate.average_rating
        book.total_reviews = aggregate.total_reviews
        db.flush()
    except SQLAlchemyError as exc:
        logger.error(f"Rating recompute failed for book {book_id}: {exc}")
        raise StorageError(f"Could not update rating for book {book_id}") from exc

    logger.debug(
        f"Book {book_id} rating recomputed: "
        f"avg={aggregate.average_rating} total={aggregate.total_reviews}"
    )
    return aggregate


def get_rating_distribution(db: Session, book_id: int) -> dict[int, int]:
    """Count a book's active reviews per star value (every value 1-5 present)."""
    rows = db.execute(
        select(Review.rating, func.count(Review.id))
        .where(Review.book_id == book_id, Review.is_active == True)  # noqa: E712
        .group_by(Review.rating)
    ).all()

    distribution = {star: 0 for star in range(1, 6)}
    for rating, count in rows:
        distribution[rating] = count
    return distribution


def refresh_book_rating(db: Session, book_id: int) -> RatingAggregate:
    """
    Recompute one book's aggregate as its own transaction and commit.

    Used by maintenance tasks; review writes use recalculate_book_rating
    within their own transaction instead.

    Raises:
        BookNotFoundError: If the book does not exist
        StorageError: If the recompute or the commit fails
    """
    try:
        aggregate = recalculate_book_rating(db, book_id)
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        raise StorageError(f"Could not update rating for book {book_id}") from exc
    except (BookNotFoundError, StorageError):
        db.rollback()
        raise
    return aggregate


def recalculate_all_book_ratings(db: Session, book_ids: list[int] | None = None) -> int:
    """
    Recalculate rating aggregations for all (or the given) books.

    Each book is its own transaction, so a failure on one book leaves the
    already repaired ones committed.

    Args:
        db: Database session
        book_ids: Restrict to these books; None means every book

    Returns:
        Number of books updated
    """
    if book_ids is None:
        book_ids = list(db.execute(select(Book.id).order_by(Book.id)).scalars().all())

    for book_id in book_ids:
        refresh_book_rating(db, book_id)

    logger.info(f"Recalculated ratings for {len(book_ids)} books")
    return len(book_ids)
