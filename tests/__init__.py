"""
Test Suite for the Book Review API

Test Organization:
- conftest.py: Shared fixtures (test database, client, sample data)
- test_ratings.py: Rating aggregator (arithmetic, recompute, maintenance)
- test_review_service.py: Review lifecycle and aggregate consistency
- test_reviews.py: /api/v1 review endpoints
- test_books.py: /api/v1/books endpoints
- test_auth.py: /api/v1/auth endpoints, health

Running Tests:
    pytest
    pytest tests/test_reviews.py -v
"""
