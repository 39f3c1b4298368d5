"""
Request and response models for reviews and rating summaries.

Ratings are whole stars from 1 to 5. Comments are trimmed, then must be
10-1000 characters. Aggregate fields (`average_rating`, `total_reviews`)
only ever appear in responses; no request model accepts them.
"""

from datetime import datetime
from typing import Annotated

from pydantic import AfterValidator, BaseModel, ConfigDict, Field

from bookreview.schemas.user import UserPublicResponse

COMMENT_MIN_LENGTH = 10
COMMENT_MAX_LENGTH = 1000


def _check_comment(v: str) -> str:
    v = v.strip()
    if len(v) < COMMENT_MIN_LENGTH:
        raise ValueError(f"Review comment must be at least {COMMENT_MIN_LENGTH} characters long")
    if len(v) > COMMENT_MAX_LENGTH:
        raise ValueError(f"Review comment cannot exceed {COMMENT_MAX_LENGTH} characters")
    return v


Rating = Annotated[int, Field(ge=1, le=5, description="Whole stars, 1-5", examples=[4])]
Comment = Annotated[
    str,
    AfterValidator(_check_comment),
    Field(
        description=f"{COMMENT_MIN_LENGTH}-{COMMENT_MAX_LENGTH} characters after trimming",
        examples=["A chilling portrait of surveillance and control."],
    ),
]


def _empty_distribution() -> dict[int, int]:
    return dict.fromkeys(range(1, 6), 0)


class BookMinimal(BaseModel):
    """The reviewed book with its stored rating aggregate."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    title: str
    author: str
    average_rating: float = 0.0
    total_reviews: int = 0


class ReviewCreate(BaseModel):
    rating: Rating
    comment: Comment


class ReviewUpdate(BaseModel):
    """Partial update; a field left out keeps its current value."""

    model_config = ConfigDict(extra="forbid")

    rating: Rating | None = None
    comment: Comment | None = None


class ReviewResponseSimple(BaseModel):
    """A review without its book, as embedded in book detail responses."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    book_id: int
    user_id: int
    rating: int
    comment: str
    user: UserPublicResponse
    created_at: datetime
    updated_at: datetime


class ReviewResponse(ReviewResponseSimple):
    book: BookMinimal

    model_config = ConfigDict(
        from_attributes=True,
        json_schema_extra={
            "example": {
                "id": 1,
                "book_id": 42,
                "user_id": 7,
                "rating": 5,
                "comment": "This book completely changed my perspective.",
                "created_at": "2024-01-15T10:30:00Z",
                "updated_at": "2024-01-15T10:30:00Z",
                "user": {"id": 7, "username": "booklover", "first_name": "Jane", "last_name": "Doe"},
                "book": {
                    "id": 42,
                    "title": "1984",
                    "author": "George Orwell",
                    "average_rating": 4.5,
                    "total_reviews": 2,
                },
            }
        },
    )


class ReviewListResponse(BaseModel):
    items: list[ReviewResponse]
    total: int = Field(..., ge=0)
    page: int = Field(..., ge=1)
    per_page: int = Field(..., ge=1)
    pages: int = Field(..., ge=0)


class BookReviewsResponse(ReviewListResponse):
    """One page of a book's active reviews, with the book's rating summary."""

    book: BookMinimal
    rating_distribution: dict[int, int] = Field(default_factory=_empty_distribution)


class BookRatingStats(BaseModel):
    """
    Rating summary for a book.

    `average_rating` and `total_reviews` are the values stored on the book
    (0.0 and 0 when it has no active reviews). `rating_distribution` maps
    each star value to the number of active reviews giving it.
    """

    book_id: int
    average_rating: float = Field(..., ge=0, le=5)
    total_reviews: int = Field(..., ge=0)
    rating_distribution: dict[int, int] = Field(default_factory=_empty_distribution)

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "book_id": 42,
                "average_rating": 4.2,
                "total_reviews": 125,
                "rating_distribution": {"1": 5, "2": 10, "3": 20, "4": 40, "5": 50},
            }
        },
    )
