"""
Review Service Exceptions

Domain errors raised by the rating aggregator and the review lifecycle
service. They carry no HTTP knowledge; main.py maps them to responses:

- NotFoundError        → 404
- ForbiddenError       → 403
- DuplicateReviewError → 400
- InvalidReviewError   → 422
- StorageError         → 500
"""


class ReviewServiceError(Exception):
    """Base class for all review/rating domain errors."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class NotFoundError(ReviewServiceError):
    """A referenced book or review does not exist (or is inactive)."""


class BookNotFoundError(NotFoundError):
    def __init__(self, book_id: int) -> None:
        super().__init__(f"Book with id {book_id} not found")
        self.book_id = book_id


class ReviewNotFoundError(NotFoundError):
    def __init__(self, review_id: int) -> None:
        super().__init__(f"Review with id {review_id} not found")
        self.review_id = review_id


class ForbiddenError(ReviewServiceError):
    """The requester does not own the resource."""


class DuplicateReviewError(ReviewServiceError):
    """The user already has an active review for this book."""

    def __init__(self, book_id: int, user_id: int) -> None:
        super().__init__(
            "You have already reviewed this book. Use PUT to update your review."
        )
        self.book_id = book_id
        self.user_id = user_id


class InvalidReviewError(ReviewServiceError):
    """The review values break a rule the database would reject (rating 1-5)."""


class StorageError(ReviewServiceError):
    """The database rejected a read or write; nothing was committed."""
