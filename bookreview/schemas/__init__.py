"""
Pydantic Schemas Package

Request/response validation, kept separate from the SQLAlchemy models so
the API controls exactly what is exposed and accepted.

Schema Naming Convention:
- XxxBase: Shared fields between create/update
- XxxCreate: Fields required when creating a new record
- XxxUpdate: Fields allowed when updating (all optional)
- XxxResponse: Fields returned in API responses
"""

from bookreview.schemas.user import (
    RefreshTokenRequest,
    TokenResponse,
    UserCreate,
    UserPublicResponse,
    UserResponse,
)
from bookreview.schemas.review import (
    BookRatingStats,
    BookReviewsResponse,
    ReviewCreate,
    ReviewListResponse,
    ReviewResponse,
    ReviewResponseSimple,
    ReviewUpdate,
)
from bookreview.schemas.book import (
    BookBase,
    BookCreate,
    BookDetailResponse,
    BookListResponse,
    BookResponse,
    BookUpdate,
)

__all__ = [
    # User schemas
    "UserCreate",
    "UserResponse",
    "UserPublicResponse",
    # Auth/Token schemas
    "TokenResponse",
    "RefreshTokenRequest",
    # Book schemas
    "BookBase",
    "BookCreate",
    "BookUpdate",
    "BookResponse",
    "BookDetailResponse",
    "BookListResponse",
    # Review schemas
    "ReviewCreate",
    "ReviewUpdate",
    "ReviewResponse",
    "ReviewResponseSimple",
    "ReviewListResponse",
    "BookReviewsResponse",
    "BookRatingStats",
]
