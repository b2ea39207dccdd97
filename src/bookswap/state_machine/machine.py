"""TransactionStateMachine class with trigger, history, and valid_events."""

from __future__ import annotations

from bookswap.domain.errors import InvalidTransitionError
from bookswap.domain.types import TransactionKind, TransactionStatus
from bookswap.state_machine.transitions import TERMINAL_STATES, TRANSITIONS

HistoryEntry = tuple[TransactionStatus, str, TransactionStatus]


class TransactionStateMachine:
    """Finite state machine governing one transaction variant's lifecycle.

    Validates transitions against the variant's transition map and records
    the full history of status changes.

    Usage::

        sm = TransactionStateMachine(TransactionKind.BORROW)
        sm.trigger("accept")      # -> ACCEPTED
        sm.trigger("hand_over")   # -> ACTIVE
        sm.trigger("complete")    # -> RETURNED (terminal)
    """

    def __init__(
        self,
        kind: TransactionKind,
        initial_state: TransactionStatus = TransactionStatus.PENDING,
    ) -> None:
        self._kind = TransactionKind(kind)
        self._state: TransactionStatus = initial_state
        self._history: list[HistoryEntry] = []

    @classmethod
    def from_snapshot(
        cls,
        kind: TransactionKind,
        state: TransactionStatus,
        history: list[HistoryEntry],
    ) -> TransactionStateMachine:
        """Reconstruct a state machine from a persisted transaction.

        Args:
            kind: The transaction variant.
            state: The status to restore.
            history: The full transition history as ``(from, event, to)``
                     tuples in chronological order.

        Returns:
            A ``TransactionStateMachine`` positioned at *state*.
        """
        instance = cls(kind, initial_state=state)
        instance._history = list(history)
        return instance

    @property
    def kind(self) -> TransactionKind:
        return self._kind

    @property
    def state(self) -> TransactionStatus:
        """Return the current status."""
        return self._state

    @property
    def is_terminal(self) -> bool:
        """Return True if the machine is in a terminal status."""
        return self._state in TERMINAL_STATES

    @property
    def history(self) -> list[HistoryEntry]:
        """Return a copy of the transition history."""
        return list(self._history)

    def can_trigger(self, event: str) -> bool:
        return not self.is_terminal and (self._state, event) in TRANSITIONS[self._kind]

    def trigger(self, event: str) -> TransactionStatus:
        """Apply an event to the current status and transition.

        Args:
            event: The event string (e.g. ``"accept"``).

        Returns:
            The new status after the transition.

        Raises:
            InvalidTransitionError: If the transition is not allowed from
                the current status, or if the machine is terminal.
        """
        if not self.can_trigger(event):
            raise InvalidTransitionError(self._state, event)

        old_state = self._state
        new_state = TRANSITIONS[self._kind][(old_state, event)]
        self._history.append((old_state, str(event), new_state))
        self._state = new_state
        return new_state

    def get_valid_events(self) -> list[str]:
        """Return a sorted list of events valid from the current status."""
        if self.is_terminal:
            return []
        return sorted(
            str(event) for state, event in TRANSITIONS[self._kind] if state == self._state
        )
