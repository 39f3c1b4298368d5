"""
SQLAlchemy Models Package

Model Relationships:
- User -> Book: One-to-Many (owner of a submitted book)
- User -> Review: One-to-Many (author of a review)
- Book -> Review: One-to-Many (reviews of a book)

Import all models here so Alembic discovers them for migrations.
"""

from bookreview.models.user import User
from bookreview.models.book import Book
from bookreview.models.review import Review

__all__ = [
    "User",
    "Book",
    "Review",
]
