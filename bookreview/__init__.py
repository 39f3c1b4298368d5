"""
Book Review API Package

Users register, submit books and post ratings/reviews. Every book carries
denormalized rating fields (average_rating, total_reviews) that are kept in
step with its active reviews on every review write.

Package Structure:
- config.py: Application configuration using Pydantic Settings
- database.py: SQLAlchemy database connection and session management
- main.py: FastAPI application factory and exception handlers
- dependencies.py: Dependency injection functions
- models/: SQLAlchemy ORM models
- schemas/: Pydantic request/response schemas
- routers/: API route handlers
- services/: Business logic (rating aggregation, review lifecycle, security)
"""

__version__ = "0.1.0"
