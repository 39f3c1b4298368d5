#!/usr/bin/env python3
"""
Rating Recalculation Script

Recomputes average_rating and total_reviews for books from their active
reviews. Use it to repair aggregates after manual data changes or a bulk
import.

Usage:
    # From project root with venv activated:
    python scripts/recalculate_ratings.py

    # Only some books:
    python scripts/recalculate_ratings.py --book-id 3 --book-id 17
"""

import argparse
import logging
import sys
from pathlib import Path

# Add project root to path for imports
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from bookreview.database import SessionLocal
from bookreview.services.exceptions import ReviewServiceError
from bookreview.services.ratings import recalculate_all_book_ratings

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


def main() -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Recalculate book rating aggregates from active reviews"
    )
    parser.add_argument(
        "--book-id",
        type=int,
        action="append",
        dest="book_ids",
        help="Only recalculate this book (repeatable; default: all books)",
    )

    args = parser.parse_args()

    db = SessionLocal()
    try:
        count = recalculate_all_book_ratings(db, book_ids=args.book_ids)
    except ReviewServiceError as exc:
        logger.error(f"Recalculation stopped: {exc.message}")
        return 1
    finally:
        db.close()

    logger.info(f"Done: {count} books updated")
    return 0


if __name__ == "__main__":
    sys.exit(main())
