"""
Books Router

CRUD endpoints for the book catalogue.

- Listing with filters (author, genre), sorting and pagination
- Full-text style search over title, author and description
- Book detail with the first page of its active reviews
- Owner-only update and soft delete

The rating fields (average_rating, total_reviews) are read-only here: they
are returned as stored and only ever written by the rating aggregator.
"""

import logging
import math

from fastapi import APIRouter, HTTPException, Query, Request, status
from sqlalchemy import func, or_, select
from sqlalchemy.orm import selectinload

from bookreview.config import get_settings
from bookreview.dependencies import (
    ActiveUser,
    BookFilters,
    DbSession,
    Pagination,
    get_book_or_404,
)
from bookreview.models import Book, Review
from bookreview.schemas import (
    BookCreate,
    BookDetailResponse,
    BookListResponse,
    BookResponse,
    BookUpdate,
    ReviewResponseSimple,
)
from bookreview.services.rate_limiter import limiter

logger = logging.getLogger(__name__)
settings = get_settings()

router = APIRouter(
    prefix="/books",
    tags=["Books"],
    responses={
        404: {"description": "Book not found"},
    },
)


# =============================================================================
# Helper Functions
# =============================================================================
def _active_books():
    return (
        select(Book)
        .options(selectinload(Book.owner))
        .where(Book.is_active == True)  # noqa: E712
    )


def _paginate_books(db: DbSession, stmt, pagination: Pagination, query: str | None = None):
    """Count, page and serialize a book query."""
    count_stmt = select(func.count()).select_from(stmt.order_by(None).subquery())
    total = db.execute(count_stmt).scalar() or 0

    pages = math.ceil(total / pagination.per_page) if total > 0 else 0

    books = db.execute(
        stmt.offset(pagination.skip).limit(pagination.per_page)
    ).scalars().all()

    return BookListResponse(
        items=[BookResponse.model_validate(book) for book in books],
        total=total,
        page=pagination.page,
        per_page=pagination.per_page,
        pages=pages,
        query=query,
    )


def _require_owner(book: Book, user_id: int, action: str) -> None:
    if book.owner_id != user_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"You can only {action} books that you added",
        )


# =============================================================================
# Read Endpoints
# =============================================================================
@router.get(
    "/search",
    response_model=BookListResponse,
    summary="Search books",
    description="Search active books by title, author or description.",
)
@limiter.limit(settings.rate_limit_search)
def search_books(
    request: Request,
    db: DbSession,
    pagination: Pagination,
    q: str = Query(
        ...,
        min_length=1,
        max_length=100,
        description="Search text (case-insensitive partial match)",
        examples=["orwell"],
    ),
) -> BookListResponse:
    """
    Search books, best rated first.

    Matches are ordered by average_rating (highest first), then by most
    recently added.

    Examples:
        GET /api/v1/books/search?q=orwell
        GET /api/v1/books/search?q=dystopia&page=2
    """
    term = q.strip()
    stmt = (
        _active_books()
        .where(
            or_(
                Book.title.icontains(term, autoescape=True),
                Book.author.icontains(term, autoescape=True),
                Book.description.icontains(term, autoescape=True),
            )
        )
        .order_by(Book.average_rating.desc(), Book.created_at.desc())
    )

    return _paginate_books(db, stmt, pagination, query=q)


@router.get(
    "/",
    response_model=BookListResponse,
    summary="List all books",
    description="Get a paginated list of active books with optional filtering and sorting.",
)
@limiter.limit(settings.rate_limit_default)
def list_books(
    request: Request,
    db: DbSession,
    pagination: Pagination,
    filters: BookFilters,
) -> BookListResponse:
    """
    List books with pagination.

    - author / genre: partial, case-insensitive matches
    - sort_by / sort_order: any listed field, newest first by default
    """
    stmt = _active_books()

    if filters.author:
        stmt = stmt.where(Book.author.icontains(filters.author, autoescape=True))
    if filters.genre:
        stmt = stmt.where(Book.genre.icontains(filters.genre, autoescape=True))

    sort_column = getattr(Book, filters.sort_by)
    order = sort_column.asc() if filters.sort_order == "asc" else sort_column.desc()
    stmt = stmt.order_by(order, Book.id)

    return _paginate_books(db, stmt, pagination)


@router.get(
    "/{book_id}",
    response_model=BookDetailResponse,
    summary="Get a book by ID",
    description="Retrieve a book with a page of its active reviews (newest first).",
)
@limiter.limit(settings.rate_limit_default)
def get_book(
    request: Request,
    book_id: int,
    db: DbSession,
    pagination: Pagination,
) -> BookDetailResponse:
    """
    Get a single book with its reviews.

    page/per_page select the page of reviews embedded in the response.

    Raises:
        BookNotFoundError: the book doesn't exist or was deleted (404)
    """
    book = get_book_or_404(db, book_id)

    review_filter = (
        Review.book_id == book_id,
        Review.is_active == True,  # noqa: E712
    )
    review_total = db.execute(
        select(func.count(Review.id)).where(*review_filter)
    ).scalar() or 0

    reviews = db.execute(
        select(Review)
        .options(selectinload(Review.user))
        .where(*review_filter)
        .order_by(Review.created_at.desc(), Review.id.desc())
        .offset(pagination.skip)
        .limit(pagination.per_page)
    ).scalars().all()

    detail = BookResponse.model_validate(book).model_dump()
    return BookDetailResponse(
        **detail,
        reviews=[ReviewResponseSimple.model_validate(r) for r in reviews],
        reviews_page=pagination.page,
        reviews_pages=math.ceil(review_total / pagination.per_page) if review_total else 0,
    )


# =============================================================================
# Write Endpoints
# =============================================================================
@router.post(
    "/",
    response_model=BookResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a new book",
    description="Add a book to the catalogue. The authenticated user becomes its owner.",
)
@limiter.limit(settings.rate_limit_write)
def create_book(
    request: Request,
    book_data: BookCreate,
    db: DbSession,
    current_user: ActiveUser,
) -> BookResponse:
    """
    Create a new book.

    New books start with average_rating=0 and total_reviews=0.
    """
    book = Book(**book_data.model_dump(), owner_id=current_user.id)

    db.add(book)
    db.commit()
    db.refresh(book)

    logger.info(f"Book {book.id} created by user {current_user.id}")

    return BookResponse.model_validate(book)


@router.put(
    "/{book_id}",
    response_model=BookResponse,
    summary="Update a book",
    description="Update a book's catalogue fields. Only the user who added it may do this.",
)
@limiter.limit(settings.rate_limit_write)
def update_book(
    request: Request,
    book_id: int,
    book_data: BookUpdate,
    db: DbSession,
    current_user: ActiveUser,
) -> BookResponse:
    """
    Update an existing book.

    Only provided fields are updated. The rating fields cannot be set
    through this endpoint.

    Raises:
        BookNotFoundError: no such active book (404)
        HTTPException: 403 if the user doesn't own the book
    """
    book = get_book_or_404(db, book_id)
    _require_owner(book, current_user.id, "update")

    update_data = book_data.model_dump(exclude_unset=True)
    for field, value in update_data.items():
        setattr(book, field, value)

    db.commit()
    db.refresh(book)

    logger.info(f"Book {book_id} updated by user {current_user.id}")

    return BookResponse.model_validate(book)


@router.delete(
    "/{book_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete a book",
    description="Soft-delete a book. Only the user who added it may do this.",
)
@limiter.limit(settings.rate_limit_write)
def delete_book(
    request: Request,
    book_id: int,
    db: DbSession,
    current_user: ActiveUser,
) -> None:
    """
    Delete a book.

    The book is flagged inactive and disappears from listings, search and
    detail lookups. Its reviews are kept.

    Raises:
        BookNotFoundError: no such active book (404)
        HTTPException: 403 if the user doesn't own the book
    """
    book = get_book_or_404(db, book_id)
    _require_owner(book, current_user.id, "delete")

    book.is_active = False
    db.commit()

    logger.info(f"Book {book_id} deleted by user {current_user.id}")
