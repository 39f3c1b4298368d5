"""
Tests for the review lifecycle service

Each operation must leave the book's stored aggregate equal to a fresh
recompute over its active reviews, or change nothing at all when it fails.
"""

from decimal import ROUND_HALF_UP, Decimal
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest
from sqlalchemy import event, func, select, update
from sqlalchemy.dialects import postgresql
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session, sessionmaker

from bookreview.models import Book, Review, User
from bookreview.services import reviews as review_service
from bookreview.services.exceptions import (
    BookNotFoundError,
    DuplicateReviewError,
    ForbiddenError,
    InvalidReviewError,
    ReviewNotFoundError,
    StorageError,
)
from bookreview.services.ratings import recalculate_book_rating
from tests.conftest import add_review, make_book, make_user


def integrity_error(message: str, constraint_name: str | None = None) -> IntegrityError:
    """An IntegrityError as the driver raises it; psycopg2 adds `diag`, sqlite3 does not."""
    orig = Exception(message)
    if constraint_name is not None:
        orig.diag = SimpleNamespace(constraint_name=constraint_name)
    return IntegrityError("INSERT INTO reviews", {}, orig)


def create_with_failing_flush(error: Exception) -> MagicMock:
    """Run create_review against a session whose INSERT fails with `error`."""
    db = MagicMock(spec=Session)
    db.execute.return_value.scalar_one_or_none.side_effect = [Book(id=1), None]
    db.flush.side_effect = error

    review_service.create_review(
        db,
        book_id=1,
        user_id=2,
        rating=5,
        comment="Would read it again tomorrow.",
    )
    return db


def assert_aggregate_matches_reviews(db_session: Session, book: Book) -> None:
    """The stored aggregate equals what the active reviews say it should be."""
    db_session.refresh(book)
    ratings = db_session.execute(
        select(Review.rating).where(
            Review.book_id == book.id,
            Review.is_active == True,  # noqa: E712
        )
    ).scalars().all()

    assert book.total_reviews == len(ratings)
    if ratings:
        expected = (Decimal(sum(ratings)) / len(ratings)).quantize(
            Decimal("0.1"), rounding=ROUND_HALF_UP
        )
        assert book.average_rating == expected
    else:
        assert book.average_rating == Decimal("0.0")


class TestCreateReview:
    def test_create_first_review(
        self,
        db_session: Session,
        sample_book: Book,
        second_user: User,
    ):
        review = review_service.create_review(
            db_session,
            book_id=sample_book.id,
            user_id=second_user.id,
            rating=4,
            comment="Gripping from start to finish.",
        )

        assert review.id is not None
        assert review.is_active is True
        assert review.user.username == "seconduser"
        assert review.book.average_rating == Decimal("4.0")
        assert review.book.total_reviews == 1

    def test_create_on_missing_book(self, db_session: Session, second_user: User):
        with pytest.raises(BookNotFoundError):
            review_service.create_review(
                db_session,
                book_id=99999,
                user_id=second_user.id,
                rating=4,
                comment="Gripping from start to finish.",
            )

    def test_create_on_deleted_book(
        self,
        db_session: Session,
        sample_book: Book,
        second_user: User,
    ):
        sample_book.is_active = False
        db_session.commit()

        with pytest.raises(BookNotFoundError):
            review_service.create_review(
                db_session,
                book_id=sample_book.id,
                user_id=second_user.id,
                rating=4,
                comment="Gripping from start to finish.",
            )

    def test_duplicate_review_changes_nothing(
        self,
        db_session: Session,
        sample_review: Review,
        sample_book: Book,
        second_user: User,
    ):
        with pytest.raises(DuplicateReviewError) as exc_info:
            review_service.create_review(
                db_session,
                book_id=sample_book.id,
                user_id=second_user.id,
                rating=1,
                comment="Changed my mind about this.",
            )

        assert "already reviewed" in exc_info.value.message
        count = db_session.execute(
            select(func.count(Review.id)).where(Review.book_id == sample_book.id)
        ).scalar()
        assert count == 1
        db_session.refresh(sample_book)
        assert sample_book.average_rating == Decimal("4.0")
        assert sample_book.total_reviews == 1

    def test_review_again_after_soft_delete(
        self,
        db_session: Session,
        sample_review: Review,
        sample_book: Book,
        second_user: User,
    ):
        review_service.delete_review(
            db_session, review_id=sample_review.id, requester_id=second_user.id
        )

        review = review_service.create_review(
            db_session,
            book_id=sample_book.id,
            user_id=second_user.id,
            rating=2,
            comment="Second reading was less kind.",
        )

        assert review.id != sample_review.id
        assert review.book.average_rating == Decimal("2.0")
        assert review.book.total_reviews == 1

    def test_storage_error_rolls_back(self):
        db = MagicMock(spec=Session)
        db.execute.return_value.scalar_one_or_none.side_effect = [Book(id=1), None]

        with patch.object(
            review_service,
            "recalculate_book_rating",
            side_effect=StorageError("Could not update rating for book 1"),
        ):
            with pytest.raises(StorageError):
                review_service.create_review(
                    db,
                    book_id=1,
                    user_id=2,
                    rating=5,
                    comment="Would read it again tomorrow.",
                )

        db.rollback.assert_called_once()
        db.commit.assert_not_called()

    def test_flush_failure_becomes_storage_error(self):
        db = MagicMock(spec=Session)
        db.execute.return_value.scalar_one_or_none.side_effect = [Book(id=1), None]
        db.flush.side_effect = OperationalError("INSERT", {}, Exception("db down"))

        with pytest.raises(StorageError):
            review_service.create_review(
                db,
                book_id=1,
                user_id=2,
                rating=5,
                comment="Would read it again tomorrow.",
            )

        db.rollback.assert_called_once()
        db.commit.assert_not_called()

    @pytest.mark.parametrize("rating", [0, 6, -1])
    def test_rating_out_of_range_is_rejected(
        self,
        db_session: Session,
        sample_book: Book,
        second_user: User,
        rating: int,
    ):
        with pytest.raises(InvalidReviewError) as exc_info:
            review_service.create_review(
                db_session,
                book_id=sample_book.id,
                user_id=second_user.id,
                rating=rating,
                comment="Out of range on purpose.",
            )

        assert "between 1 and 5" in exc_info.value.message
        count = db_session.execute(select(func.count(Review.id))).scalar()
        assert count == 0
        db_session.refresh(sample_book)
        assert sample_book.total_reviews == 0

    def test_sqlite_unique_violation_is_duplicate(self):
        error = integrity_error(
            "UNIQUE constraint failed: reviews.book_id, reviews.user_id"
        )

        with patch.object(review_service, "recalculate_book_rating") as recalc:
            with pytest.raises(DuplicateReviewError):
                create_with_failing_flush(error)

        recalc.assert_not_called()

    def test_postgres_unique_violation_is_duplicate(self):
        error = integrity_error(
            'duplicate key value violates unique constraint "uq_review_active_book_user"',
            constraint_name="uq_review_active_book_user",
        )

        with pytest.raises(DuplicateReviewError):
            create_with_failing_flush(error)

    @pytest.mark.parametrize(
        "error",
        [
            integrity_error("CHECK constraint failed: ck_review_rating_range"),
            integrity_error("FOREIGN KEY constraint failed"),
            integrity_error(
                'insert or update on table "reviews" violates foreign key constraint',
                constraint_name="reviews_user_id_fkey",
            ),
            integrity_error(
                'new row for relation "reviews" violates check constraint',
                constraint_name="ck_review_rating_range",
            ),
        ],
    )
    def test_other_integrity_errors_are_storage_errors(self, error: IntegrityError):
        with pytest.raises(StorageError) as exc_info:
            create_with_failing_flush(error)

        assert exc_info.value.__cause__ is error


class TestConcurrentCreate:
    """
    Two requests creating a review for the same user and book.

    Runs against a database file so each session has its own connection
    and its own transaction.
    """

    @pytest.fixture
    def sessions(self, file_engine) -> sessionmaker:
        return sessionmaker(bind=file_engine, autoflush=False)

    @pytest.fixture
    def seeded(self, sessions: sessionmaker) -> tuple[int, int]:
        """(book_id, reviewer_id) committed to the database file."""
        with sessions() as setup:
            owner = make_user(setup, "bookowner")
            reviewer = make_user(setup, "reviewer")
            book = make_book(setup, owner)
            return book.id, reviewer.id

    def test_duplicate_committed_after_check_is_rejected(
        self,
        sessions: sessionmaker,
        seeded: tuple[int, int],
    ):
        book_id, reviewer_id = seeded
        request = sessions()
        competitor = sessions()

        competed = []

        def commit_competing_review(state):
            if competed or not state.is_select:
                return None
            if state.statement.column_descriptions[0]["entity"] is not Review:
                return None
            # The duplicate check has already read "no review"; the other
            # request commits before this one reaches its INSERT
            competed.append(True)
            checked = state.invoke_statement().freeze()
            competitor.add(
                Review(
                    book_id=book_id,
                    user_id=reviewer_id,
                    rating=2,
                    comment="Submitted from another tab.",
                )
            )
            competitor.flush()
            recalculate_book_rating(competitor, book_id)
            competitor.commit()
            return checked()

        event.listen(request, "do_orm_execute", commit_competing_review)
        try:
            with pytest.raises(DuplicateReviewError):
                review_service.create_review(
                    request,
                    book_id=book_id,
                    user_id=reviewer_id,
                    rating=5,
                    comment="Submitted from the first tab.",
                )
            assert competed == [True]
        finally:
            request.close()
            competitor.close()

        with sessions() as check:
            ratings = check.execute(
                select(Review.rating).where(Review.book_id == book_id)
            ).scalars().all()
            book = check.get(Book, book_id)

            assert ratings == [2]
            assert book.total_reviews == 1
            assert book.average_rating == Decimal("2.0")

    def test_index_rejects_second_active_review(
        self,
        sessions: sessionmaker,
        seeded: tuple[int, int],
    ):
        book_id, reviewer_id = seeded

        with sessions() as db:
            db.add_all(
                [
                    Review(book_id=book_id, user_id=reviewer_id, rating=4, comment="First."),
                    Review(book_id=book_id, user_id=reviewer_id, rating=3, comment="Second."),
                ]
            )
            with pytest.raises(IntegrityError) as exc_info:
                db.commit()
            db.rollback()

            assert review_service._is_duplicate_violation(exc_info.value)
            assert db.execute(select(func.count(Review.id))).scalar() == 0

    def test_index_allows_inactive_and_active_review(
        self,
        sessions: sessionmaker,
        seeded: tuple[int, int],
    ):
        book_id, reviewer_id = seeded

        with sessions() as db:
            db.add_all(
                [
                    Review(
                        book_id=book_id,
                        user_id=reviewer_id,
                        rating=1,
                        comment="Deleted one.",
                        is_active=False,
                    ),
                    Review(book_id=book_id, user_id=reviewer_id, rating=5, comment="Current."),
                ]
            )
            db.commit()

            rows = db.execute(
                select(Review.is_active).where(Review.book_id == book_id)
            ).scalars().all()
            assert sorted(rows) == [False, True]


class TestUpdateReview:
    def test_update_rating(
        self,
        db_session: Session,
        sample_review: Review,
        second_user: User,
    ):
        review = review_service.update_review(
            db_session,
            review_id=sample_review.id,
            requester_id=second_user.id,
            rating=2,
        )

        assert review.rating == 2
        assert review.comment == "A thoughtful and memorable read."
        assert review.book.average_rating == Decimal("2.0")

    def test_update_comment_only_keeps_aggregate(
        self,
        db_session: Session,
        sample_review: Review,
        sample_book: Book,
        second_user: User,
    ):
        review = review_service.update_review(
            db_session,
            review_id=sample_review.id,
            requester_id=second_user.id,
            comment="Even better on the second read.",
        )

        assert review.comment == "Even better on the second read."
        assert_aggregate_matches_reviews(db_session, sample_book)
        assert sample_book.average_rating == Decimal("4.0")

    def test_update_recomputes_even_without_rating_change(
        self,
        db_session: Session,
        sample_review: Review,
        sample_book: Book,
        second_user: User,
    ):
        sample_book.total_reviews = 5
        db_session.commit()

        review_service.update_review(
            db_session,
            review_id=sample_review.id,
            requester_id=second_user.id,
            comment="Even better on the second read.",
        )

        db_session.refresh(sample_book)
        assert sample_book.total_reviews == 1

    def test_update_by_other_user_is_forbidden(
        self,
        db_session: Session,
        sample_review: Review,
        sample_book: Book,
        third_user: User,
    ):
        with pytest.raises(ForbiddenError):
            review_service.update_review(
                db_session,
                review_id=sample_review.id,
                requester_id=third_user.id,
                rating=1,
            )

        db_session.refresh(sample_review)
        db_session.refresh(sample_book)
        assert sample_review.rating == 4
        assert sample_book.average_rating == Decimal("4.0")

    def test_update_missing_review(self, db_session: Session, second_user: User):
        with pytest.raises(ReviewNotFoundError):
            review_service.update_review(
                db_session, review_id=99999, requester_id=second_user.id, rating=3
            )

    def test_update_soft_deleted_review(
        self,
        db_session: Session,
        sample_review: Review,
        second_user: User,
    ):
        review_service.delete_review(
            db_session, review_id=sample_review.id, requester_id=second_user.id
        )

        with pytest.raises(ReviewNotFoundError):
            review_service.update_review(
                db_session, review_id=sample_review.id, requester_id=second_user.id, rating=3
            )

    def test_update_rating_out_of_range_changes_nothing(
        self,
        db_session: Session,
        sample_review: Review,
        sample_book: Book,
        second_user: User,
    ):
        with pytest.raises(InvalidReviewError):
            review_service.update_review(
                db_session, review_id=sample_review.id, requester_id=second_user.id, rating=0
            )

        db_session.refresh(sample_review)
        assert sample_review.rating == 4
        assert_aggregate_matches_reviews(db_session, sample_book)

    def test_review_deleted_by_another_request_is_not_found(
        self,
        db_session: Session,
        sample_review: Review,
        sample_book: Book,
        second_user: User,
    ):
        # This session still holds the review as active
        db_session.execute(
            update(Review)
            .where(Review.id == sample_review.id)
            .values(is_active=False)
            .execution_options(synchronize_session=False)
        )
        assert sample_review.is_active is True

        with pytest.raises(ReviewNotFoundError):
            review_service.update_review(
                db_session, review_id=sample_review.id, requester_id=second_user.id, rating=1
            )

    def test_update_locks_the_review_row(
        self,
        db_session: Session,
        sample_review: Review,
        second_user: User,
    ):
        statements = []

        def record(state):
            if state.is_select and not state.is_relationship_load:
                statements.append(str(state.statement.compile(dialect=postgresql.dialect())))

        event.listen(db_session, "do_orm_execute", record)
        try:
            review_service.update_review(
                db_session,
                review_id=sample_review.id,
                requester_id=second_user.id,
                comment="Better on a second reading.",
            )
        finally:
            event.remove(db_session, "do_orm_execute", record)

        locked = [sql for sql in statements if sql.endswith("FOR UPDATE")]
        assert len(locked) == 1
        assert "FROM reviews" in locked[0]


class TestDeleteReview:
    def test_soft_delete_keeps_row(
        self,
        db_session: Session,
        sample_review: Review,
        sample_book: Book,
        second_user: User,
    ):
        review_service.delete_review(
            db_session, review_id=sample_review.id, requester_id=second_user.id
        )

        row = db_session.get(Review, sample_review.id)
        assert row is not None
        assert row.is_active is False
        db_session.refresh(sample_book)
        assert sample_book.average_rating == Decimal("0.0")
        assert sample_book.total_reviews == 0

    def test_permanent_delete_removes_row(
        self,
        db_session: Session,
        sample_review: Review,
        sample_book: Book,
        second_user: User,
    ):
        review_id = sample_review.id

        review_service.delete_review(
            db_session, review_id=review_id, requester_id=second_user.id, permanent=True
        )

        db_session.expire_all()
        assert db_session.get(Review, review_id) is None
        db_session.refresh(sample_book)
        assert sample_book.total_reviews == 0

    def test_deleted_review_is_not_found(
        self,
        db_session: Session,
        sample_review: Review,
        second_user: User,
    ):
        review_service.delete_review(
            db_session, review_id=sample_review.id, requester_id=second_user.id
        )

        with pytest.raises(ReviewNotFoundError):
            review_service.get_review(db_session, sample_review.id)
        with pytest.raises(ReviewNotFoundError):
            review_service.delete_review(
                db_session, review_id=sample_review.id, requester_id=second_user.id
            )

    def test_delete_by_other_user_is_forbidden(
        self,
        db_session: Session,
        sample_review: Review,
        sample_book: Book,
        sample_user: User,
    ):
        # sample_user owns the book but not the review
        with pytest.raises(ForbiddenError):
            review_service.delete_review(
                db_session, review_id=sample_review.id, requester_id=sample_user.id
            )

        db_session.refresh(sample_book)
        assert sample_book.total_reviews == 1


class TestAggregateScenario:
    """A book's aggregate through a sequence of review changes."""

    def test_create_update_delete_sequence(
        self,
        db_session: Session,
        sample_book: Book,
        second_user: User,
        third_user: User,
    ):
        first = review_service.create_review(
            db_session,
            book_id=sample_book.id,
            user_id=second_user.id,
            rating=4,
            comment="Gripping from start to finish.",
        )
        assert first.book.average_rating == Decimal("4.0")
        assert first.book.total_reviews == 1

        second = review_service.create_review(
            db_session,
            book_id=sample_book.id,
            user_id=third_user.id,
            rating=2,
            comment="Slow in the middle chapters.",
        )
        assert second.book.average_rating == Decimal("3.0")
        assert second.book.total_reviews == 2

        updated = review_service.update_review(
            db_session,
            review_id=first.id,
            requester_id=second_user.id,
            rating=5,
        )
        assert updated.book.average_rating == Decimal("3.5")
        assert updated.book.total_reviews == 2

        review_service.delete_review(
            db_session, review_id=second.id, requester_id=third_user.id
        )
        db_session.refresh(sample_book)
        assert sample_book.average_rating == Decimal("5.0")
        assert sample_book.total_reviews == 1

        review_service.delete_review(
            db_session, review_id=first.id, requester_id=second_user.id, permanent=True
        )
        db_session.refresh(sample_book)
        assert sample_book.average_rating == Decimal("0.0")
        assert sample_book.total_reviews == 0

    def test_count_matches_active_reviews_after_many_operations(
        self,
        db_session: Session,
        sample_user: User,
    ):
        book = make_book(db_session, sample_user, title="Dune", author="Frank Herbert")
        reviewers = [make_user(db_session, f"reader{i}") for i in range(6)]

        reviews = [
            review_service.create_review(
                db_session,
                book_id=book.id,
                user_id=user.id,
                rating=(i % 5) + 1,
                comment=f"Review number {i} of this book.",
            )
            for i, user in enumerate(reviewers)
        ]
        assert_aggregate_matches_reviews(db_session, book)

        review_service.update_review(
            db_session, review_id=reviews[0].id, requester_id=reviewers[0].id, rating=5
        )
        review_service.delete_review(
            db_session, review_id=reviews[1].id, requester_id=reviewers[1].id
        )
        review_service.delete_review(
            db_session, review_id=reviews[2].id, requester_id=reviewers[2].id, permanent=True
        )
        assert_aggregate_matches_reviews(db_session, book)
        assert book.total_reviews == 4

    def test_other_books_are_untouched(
        self,
        db_session: Session,
        sample_user: User,
        second_user: User,
        third_user: User,
    ):
        book_a = make_book(db_session, sample_user, title="Book A")
        book_b = make_book(db_session, sample_user, title="Book B")
        add_review(db_session, book_b, third_user, rating=1)

        review_service.create_review(
            db_session,
            book_id=book_a.id,
            user_id=second_user.id,
            rating=5,
            comment="Gripping from start to finish.",
        )

        db_session.refresh(book_b)
        assert book_b.average_rating == Decimal("1.0")
        assert book_b.total_reviews == 1
