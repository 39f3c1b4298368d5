"""
Services Package

Business logic kept apart from HTTP handling so it can be tested in
isolation.

- exceptions.py: Domain errors (not found, forbidden, duplicate, storage)
- ratings.py: Book rating aggregation (the only writer of the aggregate fields)
- reviews.py: Review create/update/delete, each followed by a recompute
- rate_limiter.py: Rate limiting with slowapi
- security.py: Password hashing and JWT utilities
"""
