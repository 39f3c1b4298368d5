"""
Review endpoints.

    POST   /books/{book_id}/reviews   write a review (one active per user and book)
    GET    /books/{book_id}/reviews   active reviews plus the book's rating summary
    GET    /books/{book_id}/rating    stored average, count and star distribution
    GET    /reviews/me                the caller's active reviews
    GET    /reviews/{review_id}
    PUT    /reviews/{review_id}       author only
    DELETE /reviews/{review_id}       author only; ?permanent=true removes the row

Mutations are delegated to bookreview.services.reviews, which refreshes the
book's average_rating and total_reviews before committing. Its exceptions
are mapped to status codes in main.py.
"""

import logging
import math
from typing import Literal

from fastapi import APIRouter, Query, Request, status
from sqlalchemy import Select, func, select
from sqlalchemy.orm import Session, selectinload

from bookreview.config import get_settings
from bookreview.dependencies import (
    ActiveUser,
    DbSession,
    Pagination,
    PaginationParams,
    get_book_or_404,
)
from bookreview.models import Review
from bookreview.schemas.review import (
    BookMinimal,
    BookRatingStats,
    BookReviewsResponse,
    ReviewCreate,
    ReviewListResponse,
    ReviewResponse,
    ReviewUpdate,
)
from bookreview.services import reviews as review_service
from bookreview.services.rate_limiter import limiter
from bookreview.services.ratings import get_rating_distribution

logger = logging.getLogger(__name__)
settings = get_settings()

router = APIRouter(tags=["Reviews"], responses={404: {"description": "Book or review not found"}})

AUTHOR_ONLY = {401: {"description": "Not authenticated"}, 403: {"description": "Not the review author"}}


def _active_reviews() -> Select:
    return (
        select(Review)
        .options(selectinload(Review.user), selectinload(Review.book))
        .where(Review.is_active.is_(True))
    )


def _page_of_reviews(db: Session, stmt: Select, pagination: PaginationParams, *order_by) -> dict:
    """Count `stmt`, fetch one page of it and return the list-envelope fields."""
    total = db.execute(
        select(func.count()).select_from(stmt.order_by(None).subquery())
    ).scalar_one()
    rows = db.execute(
        stmt.order_by(*order_by).offset(pagination.skip).limit(pagination.per_page)
    ).scalars().all()

    return {
        "items": [ReviewResponse.model_validate(r) for r in rows],
        "total": total,
        "page": pagination.page,
        "per_page": pagination.per_page,
        "pages": math.ceil(total / pagination.per_page) if total else 0,
    }


@router.post(
    "/books/{book_id}/reviews",
    response_model=ReviewResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Review a book",
    responses={400: {"description": "Already reviewed this book"}},
)
@limiter.limit(settings.rate_limit_write)
def create_review(
    request: Request,
    book_id: int,
    review_data: ReviewCreate,
    db: DbSession,
    current_user: ActiveUser,
) -> ReviewResponse:
    """The embedded book already reflects this review in its rating."""
    review = review_service.create_review(
        db,
        book_id=book_id,
        user_id=current_user.id,
        rating=review_data.rating,
        comment=review_data.comment,
    )
    return ReviewResponse.model_validate(review)


@router.get("/books/{book_id}/reviews", response_model=BookReviewsResponse, summary="Reviews of a book")
@limiter.limit(settings.rate_limit_default)
def list_book_reviews(
    request: Request,
    book_id: int,
    db: DbSession,
    pagination: Pagination,
    sort_by: Literal["created_at", "rating"] = Query("created_at", description="Review date or star rating"),
    sort_order: Literal["asc", "desc"] = Query("desc"),
) -> BookReviewsResponse:
    book = get_book_or_404(db, book_id)

    column = getattr(Review, sort_by)
    page = _page_of_reviews(
        db,
        _active_reviews().where(Review.book_id == book_id),
        pagination,
        column.asc() if sort_order == "asc" else column.desc(),
        Review.id.desc(),
    )
    return BookReviewsResponse(
        **page,
        book=BookMinimal.model_validate(book),
        rating_distribution=get_rating_distribution(db, book_id),
    )


@router.get("/books/{book_id}/rating", response_model=BookRatingStats, summary="Rating summary of a book")
@limiter.limit(settings.rate_limit_default)
def get_book_rating_stats(request: Request, book_id: int, db: DbSession) -> BookRatingStats:
    # Average and count are served as stored; only the distribution is counted here
    book = get_book_or_404(db, book_id)
    return BookRatingStats(
        book_id=book.id,
        average_rating=float(book.average_rating),
        total_reviews=book.total_reviews,
        rating_distribution=get_rating_distribution(db, book_id),
    )


@router.get("/reviews/me", response_model=ReviewListResponse, summary="My reviews, newest first")
@limiter.limit(settings.rate_limit_default)
def list_my_reviews(
    request: Request,
    db: DbSession,
    pagination: Pagination,
    current_user: ActiveUser,
) -> ReviewListResponse:
    page = _page_of_reviews(
        db,
        _active_reviews().where(Review.user_id == current_user.id),
        pagination,
        Review.created_at.desc(),
        Review.id.desc(),
    )
    return ReviewListResponse(**page)


@router.get("/reviews/{review_id}", response_model=ReviewResponse, summary="One review")
@limiter.limit(settings.rate_limit_default)
def get_review(request: Request, review_id: int, db: DbSession) -> ReviewResponse:
    return ReviewResponse.model_validate(review_service.get_review(db, review_id))


@router.put(
    "/reviews/{review_id}",
    response_model=ReviewResponse,
    summary="Edit my review",
    responses=AUTHOR_ONLY,
)
@limiter.limit(settings.rate_limit_write)
def update_review(
    request: Request,
    review_id: int,
    review_data: ReviewUpdate,
    db: DbSession,
    current_user: ActiveUser,
) -> ReviewResponse:
    """Omitted fields keep their value."""
    review = review_service.update_review(
        db,
        review_id=review_id,
        requester_id=current_user.id,
        rating=review_data.rating,
        comment=review_data.comment,
    )
    return ReviewResponse.model_validate(review)


@router.delete(
    "/reviews/{review_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete my review",
    responses=AUTHOR_ONLY,
)
@limiter.limit(settings.rate_limit_write)
def delete_review(
    request: Request,
    review_id: int,
    db: DbSession,
    current_user: ActiveUser,
    permanent: bool = Query(False, description="Remove the row instead of deactivating it"),
) -> None:
    review_service.delete_review(
        db,
        review_id=review_id,
        requester_id=current_user.id,
        permanent=permanent,
    )
