"""Review eligibility and submission.

A participant may rate the other participant once the transaction reached
its success status (``completed``; ``returned`` for loans), and only once
per transaction.
"""

from __future__ import annotations

import structlog
from pydantic import ValidationError as PydanticValidationError

from bookswap.domain.errors import (
    AlreadyReviewedError,
    NotParticipantError,
    SelfReviewForbiddenError,
    StateError,
    ValidationError,
)
from bookswap.domain.models import AnyTransaction, RatingSummary, Review
from bookswap.domain.types import NotificationType, TransactionKind
from bookswap.identity import require_active
from bookswap.notifications.models import RelatedEntity
from bookswap.services import MarketplaceServices
from bookswap.state_machine import SUCCESS_STATES

logger = structlog.get_logger()


def _is_finished(tx: AnyTransaction) -> bool:
    return tx.status == SUCCESS_STATES[TransactionKind(tx.kind)]


class ReviewEligibilityGate:
    """Decide who may review whom, and record reviews."""

    def __init__(self, services: MarketplaceServices) -> None:
        self._s = services

    def is_eligible(self, user_id: str, transaction_id: str) -> bool:
        """Return True if *user_id* may review the other participant now."""
        tx = self._s.transactions.get(transaction_id)
        return (
            _is_finished(tx)
            and tx.is_participant(user_id)
            and not self._s.reviews.exists(user_id, transaction_id)
        )

    def resolve_reviewee(self, transaction_id: str, reviewer_id: str) -> str:
        """Return the participant *reviewer_id* would be reviewing.

        Raises:
            NotParticipantError: If the reviewer took no part.
            SelfReviewForbiddenError: If the reviewee would be the reviewer.
        """
        tx = self._s.transactions.get(transaction_id)
        if not tx.is_participant(reviewer_id):
            raise NotParticipantError("Only participants can review a transaction")
        reviewee = tx.other_participant(reviewer_id)
        if reviewee == reviewer_id:
            raise SelfReviewForbiddenError("You cannot review yourself")
        return reviewee

    def submit_review(
        self, transaction_id: str, rating: int, comment: str | None = None
    ) -> Review:
        """Rate the other participant of a finished transaction.

        Raises:
            StateError: If the transaction has not finished successfully.
            AlreadyReviewedError: If the actor already reviewed it.
            ValidationError: For a rating outside 1-5 or an overlong comment.
        """
        reviewer = require_active(self._s.identity)
        reviewee_id = self.resolve_reviewee(transaction_id, reviewer.user_id)
        tx = self._s.transactions.get(transaction_id)
        if not _is_finished(tx):
            raise StateError("Only finished transactions can be reviewed")
        if self._s.reviews.exists(reviewer.user_id, transaction_id):
            raise AlreadyReviewedError("You have already reviewed this transaction")

        try:
            review = Review(
                transaction_id=transaction_id,
                transaction_kind=TransactionKind(tx.kind),
                reviewer_id=reviewer.user_id,
                reviewee_id=reviewee_id,
                rating=rating,
                comment=comment,
            )
        except PydanticValidationError as exc:
            raise ValidationError.from_pydantic(exc) from exc

        self._s.reviews.insert(review)
        self._s.audit.log_review_submitted(
            review_id=review.review_id,
            transaction_id=transaction_id,
            transaction_kind=tx.kind,
            reviewer_id=reviewer.user_id,
            reviewee_id=reviewee_id,
            rating=review.rating,
        )
        logger.info(
            "review_submitted",
            review_id=review.review_id,
            transaction_id=transaction_id,
            reviewee_id=reviewee_id,
            rating=review.rating,
        )
        self._s.notifier.notify(
            reviewee_id,
            NotificationType.REVIEW_RECEIVED,
            f"You received a {review.rating}-star review",
            RelatedEntity(entity_type="review", entity_id=review.review_id),
        )
        return review

    def rating_summary(self, user_id: str) -> RatingSummary:
        return self._s.reviews.rating_summary(user_id)

    def reviews_for(self, user_id: str) -> list[Review]:
        return self._s.reviews.list_for_reviewee(user_id)
