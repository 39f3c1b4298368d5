"""
Review Lifecycle Service

Create, update and delete reviews, keeping the reviewed book's rating
aggregate in step.

Every operation follows the same shape:
1. Load and check (existence, ownership, duplicates) - no writes yet
2. Apply the review write and flush it
3. Call ratings.recalculate_book_rating() for the affected book
4. Commit both writes together

If step 2 or 3 fails the whole unit is rolled back and the error is raised
to the caller, so a review change is never committed without its
recomputed aggregate.

Deletion policy: delete_review() soft-deletes (is_active=False) by default;
permanent=True removes the row. Both recompute the aggregate. Inactive
reviews are treated as absent by every function here.
"""

import logging
from collections.abc import Iterator
from contextlib import contextmanager

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from bookreview.models import Book, Review
from bookreview.models.review import ACTIVE_REVIEW_INDEX
from bookreview.services.exceptions import (
    BookNotFoundError,
    DuplicateReviewError,
    ForbiddenError,
    InvalidReviewError,
    ReviewNotFoundError,
    ReviewServiceError,
    StorageError,
)
from bookreview.services.ratings import lock_book_statement, recalculate_book_rating

logger = logging.getLogger(__name__)

MIN_RATING = 1
MAX_RATING = 5

# What SQLite reports for the partial unique index; it does not name the index
_SQLITE_DUPLICATE_MESSAGE = "UNIQUE constraint failed: reviews.book_id, reviews.user_id"


@contextmanager
def review_transaction(db: Session, action: str) -> Iterator[None]:
    """
    Commit the enclosed review write and recompute as one unit.

    Database errors become StorageError; domain errors raised after a
    write has started are re-raised unchanged. Both roll back first.
    """
    try:
        yield
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error(f"Review {action} failed, rolled back: {exc}")
        raise StorageError(f"Could not {action} review") from exc
    except ReviewServiceError:
        db.rollback()
        raise


# =============================================================================
# Lookups
# =============================================================================


def _check_rating(rating: int) -> None:
    if not MIN_RATING <= rating <= MAX_RATING:
        raise InvalidReviewError(
            f"Rating must be between {MIN_RATING} and {MAX_RATING}, got {rating}"
        )


def _is_duplicate_violation(exc: IntegrityError) -> bool:
    """True only when the one-active-review-per-user index rejected the row."""
    diag = getattr(exc.orig, "diag", None)
    constraint = getattr(diag, "constraint_name", None)
    if constraint is not None:
        return constraint == ACTIVE_REVIEW_INDEX
    return _SQLITE_DUPLICATE_MESSAGE in str(exc.orig)


def _load_review(db: Session, review_id: int, for_update: bool = False) -> Review | None:
    stmt = (
        select(Review)
        .options(selectinload(Review.user), selectinload(Review.book))
        .where(Review.id == review_id, Review.is_active == True)  # noqa: E712
    )
    if for_update:
        # Re-read under the row lock: a concurrent delete makes this None
        stmt = stmt.with_for_update().execution_options(populate_existing=True)
    return db.execute(stmt).scalar_one_or_none()


def get_review(db: Session, review_id: int) -> Review:
    """
    Get an active review with its user and book loaded.

    Raises:
        ReviewNotFoundError: If the review doesn't exist or was deleted
    """
    review = _load_review(db, review_id)
    if review is None:
        raise ReviewNotFoundError(review_id)
    return review


def get_owned_review(db: Session, review_id: int, requester_id: int) -> Review:
    """
    Get and lock an active review the requester is allowed to change.

    The row stays locked until the caller's transaction ends, so the review
    cannot be deleted or edited by another request in between.

    Raises:
        ReviewNotFoundError: If the review doesn't exist or was deleted
        ForbiddenError: If the requester is not the review's author
    """
    review = _load_review(db, review_id, for_update=True)
    if review is None:
        raise ReviewNotFoundError(review_id)
    if review.user_id != requester_id:
        raise ForbiddenError("You can only modify your own reviews")
    return review


# =============================================================================
# Lifecycle Operations
# =============================================================================


def create_review(
    db: Session,
    *,
    book_id: int,
    user_id: int,
    rating: int,
    comment: str,
) -> Review:
    """
    Create a review and recompute the book's rating.

    Args:
        db: Database session
        book_id: Book being reviewed (must exist and be active)
        user_id: Author of the review
        rating: 1-5
        comment: Review text

    Returns:
        The created review with user and book loaded

    Raises:
        BookNotFoundError: If the book doesn't exist or is inactive
        DuplicateReviewError: If the user already has an active review for it
        InvalidReviewError: If the rating is outside 1-5
        StorageError: If the write or the recompute fails
    """
    _check_rating(rating)

    # Creates for the same book queue here, so the duplicate check below
    # sees any review committed by the one ahead
    book = db.execute(
        lock_book_statement(book_id).where(Book.is_active == True)  # noqa: E712
    ).scalar_one_or_none()
    if book is None:
        raise BookNotFoundError(book_id)

    existing = db.execute(
        select(Review.id).where(
            Review.book_id == book_id,
            Review.user_id == user_id,
            Review.is_active == True,  # noqa: E712
        )
    ).scalar_one_or_none()
    if existing is not None:
        raise DuplicateReviewError(book_id, user_id)

    review = Review(
        book_id=book_id,
        user_id=user_id,
        rating=rating,
        comment=comment,
    )

    with review_transaction(db, "create"):
        db.add(review)
        try:
            db.flush()
        except IntegrityError as exc:
            if not _is_duplicate_violation(exc):
                raise
            # Lost a race with a concurrent create for the same user and book
            raise DuplicateReviewError(book_id, user_id) from exc
        recalculate_book_rating(db, book_id)

    logger.info(f"Review {review.id} created by user {user_id} for book {book_id}")
    return get_review(db, review.id)


def update_review(
    db: Session,
    *,
    review_id: int,
    requester_id: int,
    rating: int | None = None,
    comment: str | None = None,
) -> Review:
    """
    Update the rating and/or comment of a review, then recompute.

    Fields left as None are not changed. The aggregate is recomputed even
    when only the comment changes, so the book is always consistent with
    the review set after a successful call.

    Raises:
        ReviewNotFoundError: If the review doesn't exist or was deleted
        ForbiddenError: If the requester is not the review's author
        InvalidReviewError: If the new rating is outside 1-5
        StorageError: If the write or the recompute fails
    """
    if rating is not None:
        _check_rating(rating)

    review = get_owned_review(db, review_id, requester_id)
    book_id = review.book_id

    with review_transaction(db, "update"):
        if rating is not None:
            review.rating = rating
        if comment is not None:
            review.comment = comment
        db.flush()
        recalculate_book_rating(db, book_id)

    logger.info(f"Review {review_id} updated by user {requester_id}")
    return get_review(db, review_id)


def delete_review(
    db: Session,
    *,
    review_id: int,
    requester_id: int,
    permanent: bool = False,
) -> None:
    """
    Delete a review and recompute the book's rating.

    Args:
        db: Database session
        review_id: Review to delete
        requester_id: Must be the review's author
        permanent: Remove the row instead of flagging it inactive

    Raises:
        ReviewNotFoundError: If the review doesn't exist or was deleted
        ForbiddenError: If the requester is not the review's author
        StorageError: If the write or the recompute fails
    """
    review = get_owned_review(db, review_id, requester_id)
    book_id = review.book_id

    with review_transaction(db, "delete"):
        if permanent:
            db.delete(review)
        else:
            review.is_active = False
        db.flush()
        recalculate_book_rating(db, book_id)

    mode = "permanently" if permanent else "soft"
    logger.info(f"Review {review_id} {mode} deleted by user {requester_id}")
