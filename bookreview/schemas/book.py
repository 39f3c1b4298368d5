"""
Book Pydantic Schemas

Handles:
- Catalogue field validation (lengths, publish year not in the future)
- Read-only rating aggregate fields in responses
- Pagination for list responses

Clients can never set average_rating or total_reviews: they are absent
from BookCreate and BookUpdate and only appear in BookResponse.
"""

from datetime import date, datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator

from bookreview.schemas.review import ReviewResponseSimple
from bookreview.schemas.user import UserPublicResponse


def _validate_publish_year(v: int | None) -> int | None:
    if v is not None and v > date.today().year:
        raise ValueError("Publish year cannot be in the future")
    return v


def _strip_required(v: str | None) -> str | None:
    if v is None:
        return v
    v = v.strip()
    if not v:
        raise ValueError("Field cannot be empty or whitespace")
    return v


class BookBase(BaseModel):
    """
    Base schema with shared book fields.

    Contains validation for:
    - Required text fields (no whitespace-only values)
    - Publish year range (1000 - current year)
    - Page count (must be positive)
    """

    title: str = Field(
        ...,
        min_length=1,
        max_length=200,
        description="Book title",
        examples=["1984", "Pride and Prejudice"],
    )

    author: str = Field(
        ...,
        min_length=1,
        max_length=100,
        description="Author name",
        examples=["George Orwell"],
    )

    genre: str = Field(
        ...,
        min_length=1,
        max_length=50,
        examples=["Dystopian", "Romance"],
    )

    description: str = Field(
        ...,
        min_length=10,
        max_length=2000,
        description="Book description or summary",
        examples=["A dystopian novel set in a totalitarian society..."],
    )

    publish_year: int = Field(
        ...,
        ge=1000,
        description="Year of publication",
        examples=[1949],
    )

    pages: int | None = Field(
        default=None,
        ge=1,
        description="Number of pages",
        examples=[328],
    )

    language: str = Field(
        default="English",
        max_length=30,
        examples=["English", "Spanish"],
    )

    @field_validator("title", "author", "genre", "description")
    @classmethod
    def text_must_not_be_blank(cls, v: str) -> str:
        return _strip_required(v)

    @field_validator("publish_year")
    @classmethod
    def publish_year_not_in_future(cls, v: int) -> int:
        return _validate_publish_year(v)


class BookCreate(BookBase):
    """
    Schema for creating a new book.

    The owner is the authenticated user; it is never read from the body.

    Example request body:
    {
        "title": "1984",
        "author": "George Orwell",
        "genre": "Dystopian",
        "description": "A dystopian social science fiction novel.",
        "publish_year": 1949,
        "pages": 328
    }
    """

    pass


class BookUpdate(BaseModel):
    """
    Schema for updating an existing book.

    All fields are optional for PATCH-style updates.
    """

    title: str | None = Field(default=None, min_length=1, max_length=200)
    author: str | None = Field(default=None, min_length=1, max_length=100)
    genre: str | None = Field(default=None, min_length=1, max_length=50)
    description: str | None = Field(default=None, min_length=10, max_length=2000)
    publish_year: int | None = Field(default=None, ge=1000)
    pages: int | None = Field(default=None, ge=1)
    language: str | None = Field(default=None, max_length=30)

    model_config = ConfigDict(extra="forbid")

    @field_validator("title", "author", "genre", "description")
    @classmethod
    def text_must_not_be_blank(cls, v: str | None) -> str | None:
        return _strip_required(v)

    @field_validator("publish_year")
    @classmethod
    def publish_year_not_in_future(cls, v: int | None) -> int | None:
        return _validate_publish_year(v)


class BookResponse(BookBase):
    """
    Schema for book responses.

    average_rating and total_reviews are the stored aggregate, exactly as
    last written by the rating aggregator.
    """

    id: int = Field(..., description="Unique identifier")
    owner_id: int = Field(..., description="User who submitted the book")
    owner: UserPublicResponse | None = Field(default=None)

    average_rating: float = Field(
        default=0.0,
        ge=0,
        le=5,
        description="Mean of active review ratings (one decimal), 0 if no reviews",
    )
    total_reviews: int = Field(
        default=0,
        ge=0,
        description="Number of active reviews",
    )

    created_at: datetime = Field(..., description="When the book was created")
    updated_at: datetime = Field(..., description="When the book was last updated")

    model_config = ConfigDict(
        from_attributes=True,
        json_schema_extra={
            "example": {
                "id": 1,
                "title": "1984",
                "author": "George Orwell",
                "genre": "Dystopian",
                "description": "A dystopian novel about totalitarianism",
                "publish_year": 1949,
                "pages": 328,
                "language": "English",
                "owner_id": 7,
                "average_rating": 4.3,
                "total_reviews": 42,
                "created_at": "2024-01-15T10:30:00Z",
                "updated_at": "2024-01-15T10:30:00Z",
            }
        },
    )


class BookDetailResponse(BookResponse):
    """A single book with the first page of its active reviews."""

    reviews: list[ReviewResponseSimple] = Field(
        default=[],
        description="Active reviews, newest first",
    )
    reviews_page: int = Field(default=1, ge=1)
    reviews_pages: int = Field(default=0, ge=0)


class BookListResponse(BaseModel):
    """
    Schema for paginated book list responses.

    - total: Total number of books matching the query
    - page: Current page number
    - per_page: Number of items per page
    - pages: Total number of pages
    """

    items: list[BookResponse] = Field(..., description="List of books for this page")
    total: int = Field(..., ge=0, description="Total number of books")
    page: int = Field(..., ge=1, description="Current page number")
    per_page: int = Field(..., ge=1, description="Number of items per page")
    pages: int = Field(..., ge=0, description="Total number of pages")
    query: str | None = Field(default=None, description="Search query, if any")
