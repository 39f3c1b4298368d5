"""
Dependencies shared by the routers.

    DbSession    request-scoped SQLAlchemy session
    Pagination   ?page=&per_page=
    BookFilters  ?author=&genre=&sort_by=&sort_order= for the book list
    CurrentUser  user named by the bearer token
    ActiveUser   same, but the account must still be active
"""

from typing import Annotated, Literal

from fastapi import Depends, HTTPException, Query, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from bookreview.config import get_settings
from bookreview.database import get_db
from bookreview.models.book import Book
from bookreview.models.user import User
from bookreview.services.exceptions import BookNotFoundError
from bookreview.services.security import verify_token_type

settings = get_settings()

DbSession = Annotated[Session, Depends(get_db)]


class PaginationParams:
    """1-indexed page number and page size."""

    def __init__(
        self,
        page: int = Query(default=1, ge=1, description="Page number, starting at 1"),
        per_page: int = Query(
            default=settings.default_page_size,
            ge=1,
            le=settings.max_page_size,
            description="Items per page",
        ),
    ) -> None:
        self.page = page
        self.per_page = per_page

    @property
    def skip(self) -> int:
        return (self.page - 1) * self.per_page


Pagination = Annotated[PaginationParams, Depends()]


BookSortField = Literal["title", "author", "genre", "publish_year", "average_rating", "created_at"]


class BookListParams:
    """
    Filters and ordering for GET /books/.

        /api/v1/books/?author=le%20guin&genre=fantasy
        /api/v1/books/?sort_by=average_rating&sort_order=desc

    author and genre match case-insensitively anywhere in the field.
    """

    def __init__(
        self,
        author: str | None = Query(default=None, min_length=1, max_length=100, examples=["orwell"]),
        genre: str | None = Query(default=None, min_length=1, max_length=50, examples=["fantasy"]),
        sort_by: BookSortField = Query(default="created_at"),
        sort_order: Literal["asc", "desc"] = Query(default="desc"),
    ) -> None:
        self.author = author
        self.genre = genre
        self.sort_by = sort_by
        self.sort_order = sort_order


BookFilters = Annotated[BookListParams, Depends()]


oauth2_scheme = OAuth2PasswordBearer(tokenUrl=f"/api/{settings.api_version}/auth/login")


def _credentials_error(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def get_current_user(
    token: Annotated[str, Depends(oauth2_scheme)],
    db: DbSession,
) -> User:
    """
    Resolve the user named in an access token's `sub` claim.

    Refresh tokens are rejected here; they are only good for /auth/refresh.
    """
    payload = verify_token_type(token, "access")
    if not payload or not payload.get("sub"):
        raise _credentials_error("Could not validate credentials")

    user = db.get(User, int(payload["sub"]))
    if user is None:
        raise _credentials_error("Could not validate credentials")
    return user


def get_current_active_user(current_user: Annotated[User, Depends(get_current_user)]) -> User:
    if not current_user.is_active:
        raise _credentials_error("Token is invalid or user no longer exists")
    return current_user


CurrentUser = Annotated[User, Depends(get_current_user)]
ActiveUser = Annotated[User, Depends(get_current_active_user)]


def get_book_or_404(db: Session, book_id: int, active_only: bool = True) -> Book:
    """
    Load a book with its owner.

    Raises:
        BookNotFoundError: no such book, or it was soft-deleted and
            active_only is set (answered with 404 by the app)
    """
    stmt = select(Book).options(selectinload(Book.owner)).where(Book.id == book_id)
    if active_only:
        stmt = stmt.where(Book.is_active.is_(True))

    book = db.execute(stmt).scalar_one_or_none()
    if book is None:
        raise BookNotFoundError(book_id)
    return book
