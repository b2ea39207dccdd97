"""Shared lifecycle for every transaction variant.

``TransactionService`` implements the operations the three variants have in
common: opening a request, accept, reject, cancel and confirm.  Variants
subclass it to add their own creation terms and extra transitions.

Every write is a load/modify/compare-and-set cycle on the transaction
version.  Acceptance additionally reserves the books through the
exclusivity guard before the status write; the loser of a reservation race
is cancelled with reason ``book_unavailable``.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any, ClassVar

import structlog
from pydantic import ValidationError as PydanticValidationError

from bookswap.domain.errors import (
    AuthorizationError,
    BookUnavailableError,
    ConcurrentUpdateError,
    DuplicateRequestError,
    InvalidBookModeError,
    InvalidTransitionError,
    NotFoundError,
    NotParticipantError,
    SelfTradeForbiddenError,
    TransactionDisputedError,
    ValidationError,
)
from bookswap.domain.models import AnyTransaction, BookRecord, Identity
from bookswap.domain.types import (
    CancellationReason,
    NotificationType,
    TransactionKind,
    TransactionStatus,
)
from bookswap.identity import require_active
from bookswap.observability.metrics import RESERVATION_CONFLICTS, TRANSACTIONS_CREATED
from bookswap.resilience.retry import cas_retrying
from bookswap.services import MarketplaceServices
from bookswap.state_machine import TransactionEvent
from bookswap.transactions.completion import CompletionProtocol, Precondition
from bookswap.transactions.events import apply_event, notify, record_transition

logger = structlog.get_logger()

Change = Callable[[AnyTransaction], None]


class TransactionService:
    """Lifecycle operations shared by exchange, sell and borrow."""

    kind: ClassVar[TransactionKind]
    model: ClassVar[type[AnyTransaction]]
    # Whether the lister may cancel (rather than reject) a pending request.
    counterparty_cancels_pending: ClassVar[bool] = False

    def __init__(self, services: MarketplaceServices) -> None:
        self._s = services
        self._completion = CompletionProtocol(services)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, transaction_id: str) -> AnyTransaction:
        """Load a transaction of this service's kind.

        Raises:
            NotFoundError: If missing or of another kind.
        """
        tx = self._s.transactions.get(transaction_id)
        if tx.kind != self.kind:
            raise NotFoundError(f"{self.kind} transaction", transaction_id)
        return tx

    def list_for(
        self,
        user_id: str,
        *,
        role: str | None = None,
        status: TransactionStatus | None = None,
    ) -> list[AnyTransaction]:
        """List a user's transactions of this kind (``role``: sent/received)."""
        return self._s.transactions.list_for_participant(
            user_id, role=role, kind=self.kind, status=status
        )

    # ------------------------------------------------------------------
    # Request creation
    # ------------------------------------------------------------------

    def _actor(self) -> Identity:
        return require_active(self._s.identity)

    def _check_listing(self, book: BookRecord, requester_id: str) -> None:
        if book.mode != self.kind:
            raise InvalidBookModeError(f"Book '{book.book_id}' is not listed for {self.kind}")
        if book.owner_id == requester_id:
            raise SelfTradeForbiddenError("You cannot request your own book")
        if not book.is_available:
            raise BookUnavailableError(f"Book '{book.book_id}' is not available")

    def _build(self, **fields: Any) -> AnyTransaction:
        try:
            return self.model(**fields)
        except PydanticValidationError as exc:
            raise ValidationError.from_pydantic(exc) from exc

    def _check_no_pending_request(self, requester_id: str, book_id: str) -> None:
        if self._s.transactions.find_pending_request(
            self.kind, requester_id, book_id, include_disputed=True
        ):
            raise DuplicateRequestError("You already have a pending request for this book")

    def _open(self, tx: AnyTransaction, book: BookRecord) -> AnyTransaction:
        """Persist a new pending request and announce it to the lister."""
        self._s.transactions.insert(tx)
        self._s.conversations.ensure(tx.transaction_id, self.kind, list(tx.participants))
        self._s.audit.log_transaction_created(
            transaction_id=tx.transaction_id,
            transaction_kind=tx.kind,
            actor_id=tx.initiator_id,
            book_id=book.book_id,
            counterparty_id=tx.counterparty_id,
        )
        TRANSACTIONS_CREATED.labels(kind=tx.kind).inc()
        logger.info(
            "transaction_created",
            transaction_id=tx.transaction_id,
            kind=tx.kind,
            initiator_id=tx.initiator_id,
            counterparty_id=tx.counterparty_id,
            book_id=book.book_id,
        )
        notify(
            self._s,
            tx.counterparty_id,
            NotificationType.REQUEST_RECEIVED,
            f"New {self.kind} request for '{book.title}'",
            tx,
        )
        return tx

    # ------------------------------------------------------------------
    # Guards
    # ------------------------------------------------------------------

    @staticmethod
    def _require_participant(tx: AnyTransaction, user_id: str) -> None:
        if not tx.is_participant(user_id):
            raise NotParticipantError("You are not a participant of this transaction")

    @classmethod
    def _require_counterparty(cls, tx: AnyTransaction, user_id: str, action: str) -> None:
        cls._require_participant(tx, user_id)
        if user_id != tx.counterparty_id:
            raise AuthorizationError(f"Only the receiving party can {action} this request")

    @staticmethod
    def _check_not_disputed(tx: AnyTransaction) -> None:
        if tx.is_disputed:
            raise TransactionDisputedError("The transaction is under dispute")

    def _mutate(
        self, transaction_id: str, change: Change
    ) -> tuple[AnyTransaction, TransactionStatus]:
        """Load, apply *change* and compare-and-set, retrying lost races.

        Returns:
            The saved transaction and the status it had before *change*.
        """
        for attempt in cas_retrying(self._s.cas_max_attempts):
            with attempt:
                tx = self.get(transaction_id)
                from_state = tx.status
                change(tx)
                self._s.transactions.save(tx)
        return tx, from_state

    # ------------------------------------------------------------------
    # Accept
    # ------------------------------------------------------------------

    def accept(self, transaction_id: str) -> AnyTransaction:
        """Accept a pending request as the lister and reserve its books.

        Raises:
            BookUnavailableError: If a book was taken; the request is
                cancelled with reason ``book_unavailable``.
            InvalidTransitionError: If the request is no longer pending.
        """
        return self._accept(transaction_id)

    def _accept(self, transaction_id: str, prepare: Change | None = None) -> AnyTransaction:
        actor = self._actor()
        tx = self.get(transaction_id)
        self._require_counterparty(tx, actor.user_id, "accept")
        self._check_not_disputed(tx)
        if tx.status != TransactionStatus.PENDING:
            if tx.cancellation_reason == CancellationReason.BOOK_UNAVAILABLE:
                raise BookUnavailableError("The book is no longer available")
            raise InvalidTransitionError(tx.status, TransactionEvent.ACCEPT)
        if prepare is not None:
            prepare(tx)

        structlog.contextvars.bind_contextvars(transaction_id=tx.transaction_id)
        try:
            reservation = self._s.guard.try_reserve(tx.book_ids, tx.transaction_id)
            if not reservation.ok:
                conflict_book_id = reservation.conflict_book_id or ""
                self._check_own_reservation(tx, conflict_book_id)
                self._lose_reservation(tx, actor.user_id, conflict_book_id)
                raise BookUnavailableError("The book is no longer available")

            from_state = tx.status
            apply_event(tx, TransactionEvent.ACCEPT)
            try:
                self._s.transactions.save(tx)
            except ConcurrentUpdateError:
                self._s.guard.release(tx.book_ids, tx.transaction_id)
                self._raise_for_lost_accept(transaction_id)
                raise

            record_transition(self._s, tx, from_state, TransactionEvent.ACCEPT, actor.user_id)
            notify(
                self._s,
                tx.initiator_id,
                NotificationType.STATUS_CHANGED,
                f"Your {self.kind} request was accepted",
                tx,
            )
            self._cancel_siblings(tx, actor.user_id)
        finally:
            structlog.contextvars.unbind_contextvars("transaction_id")
        return tx

    def _raise_for_lost_accept(self, transaction_id: str) -> None:
        """Translate a lost status write during accept into a domain error."""
        current = self._s.transactions.get(transaction_id)
        if current.cancellation_reason == CancellationReason.BOOK_UNAVAILABLE:
            raise BookUnavailableError("The book is no longer available") from None
        if current.is_disputed:
            raise TransactionDisputedError("The transaction is under dispute") from None
        if current.status != TransactionStatus.PENDING:
            raise InvalidTransitionError(current.status, TransactionEvent.ACCEPT) from None

    def _check_own_reservation(self, tx: AnyTransaction, book_id: str) -> None:
        """Refuse a second accept racing one that already holds the books."""
        if not book_id or self._s.books.get(book_id).reserved_by != tx.transaction_id:
            return
        self._raise_for_lost_accept(tx.transaction_id)
        raise ConcurrentUpdateError(
            f"Transaction '{tx.transaction_id}' is already being accepted"
        )

    def _lose_reservation(self, tx: AnyTransaction, actor_id: str, book_id: str) -> None:
        self._auto_cancel(tx.transaction_id, actor_id)
        self._s.audit.log_reservation_conflict(
            transaction_id=tx.transaction_id,
            transaction_kind=tx.kind,
            actor_id=actor_id,
            book_id=book_id,
        )
        RESERVATION_CONFLICTS.labels(kind=tx.kind).inc()

    def _auto_cancel(self, transaction_id: str, actor_id: str) -> AnyTransaction | None:
        """Cancel a pending request of any kind because its book is gone.

        Returns:
            The cancelled transaction, or ``None`` if it had already left
            ``pending`` (or is under dispute) by the time it was loaded.
        """
        for attempt in cas_retrying(self._s.cas_max_attempts):
            with attempt:
                tx = self._s.transactions.get(transaction_id)
                if tx.status != TransactionStatus.PENDING or tx.is_disputed:
                    return None
                apply_event(tx, TransactionEvent.AUTO_CANCEL)
                tx.cancellation_reason = CancellationReason.BOOK_UNAVAILABLE
                self._s.transactions.save(tx)

        record_transition(
            self._s,
            tx,
            TransactionStatus.PENDING,
            TransactionEvent.AUTO_CANCEL,
            actor_id,
            reason=CancellationReason.BOOK_UNAVAILABLE,
        )
        notify(
            self._s,
            tx.initiator_id,
            NotificationType.STATUS_CHANGED,
            f"Your {tx.kind} request was cancelled because the book is no longer available",
            tx,
        )
        return tx

    def _cancel_siblings(self, tx: AnyTransaction, actor_id: str) -> None:
        """Cancel every other pending request that references a reserved book."""
        for book_id in tx.book_ids:
            for sibling in self._s.transactions.find_pending_for_book(
                book_id, exclude_id=tx.transaction_id
            ):
                if self._auto_cancel(sibling.transaction_id, actor_id) is not None:
                    logger.info(
                        "sibling_request_cancelled",
                        transaction_id=sibling.transaction_id,
                        accepted_transaction_id=tx.transaction_id,
                        book_id=book_id,
                    )

    # ------------------------------------------------------------------
    # Reject / cancel
    # ------------------------------------------------------------------

    def reject(self, transaction_id: str) -> AnyTransaction:
        """Turn down a pending request as the lister.  Books are untouched."""
        actor = self._actor()

        def change(tx: AnyTransaction) -> None:
            self._require_counterparty(tx, actor.user_id, "reject")
            self._check_not_disputed(tx)
            apply_event(tx, TransactionEvent.REJECT)

        tx, from_state = self._mutate(transaction_id, change)
        record_transition(self._s, tx, from_state, TransactionEvent.REJECT, actor.user_id)
        notify(
            self._s,
            tx.initiator_id,
            NotificationType.STATUS_CHANGED,
            f"Your {self.kind} request was rejected",
            tx,
        )
        return tx

    def cancel(self, transaction_id: str) -> AnyTransaction:
        """Withdraw from a pending or accepted transaction.

        Cancelling an accepted transaction releases its books.

        Raises:
            AuthorizationError: If the lister tries to cancel a pending
                request in a variant where only the requester may.
        """
        actor = self._actor()

        def change(tx: AnyTransaction) -> None:
            self._require_participant(tx, actor.user_id)
            self._check_not_disputed(tx)
            if (
                tx.status == TransactionStatus.PENDING
                and actor.user_id != tx.initiator_id
                and not self.counterparty_cancels_pending
            ):
                raise AuthorizationError(
                    "Only the requester can cancel a pending request; reject it instead"
                )
            apply_event(tx, TransactionEvent.CANCEL)
            tx.cancellation_reason = CancellationReason.BY_PARTICIPANT

        tx, from_state = self._mutate(transaction_id, change)
        if from_state != TransactionStatus.PENDING:
            self._s.guard.release(tx.book_ids, tx.transaction_id)
        record_transition(
            self._s,
            tx,
            from_state,
            TransactionEvent.CANCEL,
            actor.user_id,
            reason=CancellationReason.BY_PARTICIPANT,
        )
        notify(
            self._s,
            tx.other_participant(actor.user_id),
            NotificationType.STATUS_CHANGED,
            f"The {self.kind} transaction was cancelled by the other party",
            tx,
        )
        return tx

    # ------------------------------------------------------------------
    # Completion
    # ------------------------------------------------------------------

    def _confirm_precondition(self) -> Precondition | None:
        return None

    def confirm_completion(self, transaction_id: str) -> AnyTransaction:
        """Record the acting participant's completion confirmation."""
        actor = self._actor()
        return self._completion.confirm(
            transaction_id, actor.user_id, self.kind, self._confirm_precondition()
        )
