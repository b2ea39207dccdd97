"""Per-variant transition maps defining all valid (state, event) -> state mappings."""

from enum import StrEnum

from bookswap.domain.types import TransactionKind, TransactionStatus


class TransactionEvent(StrEnum):
    """Events that can trigger status transitions on a transaction."""

    ACCEPT = "accept"
    REJECT = "reject"
    CANCEL = "cancel"
    AUTO_CANCEL = "auto_cancel"
    HAND_OVER = "hand_over"
    MARK_OVERDUE = "mark_overdue"
    COMPLETE = "complete"
    OPEN_DISPUTE = "open_dispute"
    FORCE_CANCEL = "force_cancel"
    FORCE_COMPLETE = "force_complete"


_P = TransactionStatus.PENDING
_ACC = TransactionStatus.ACCEPTED
_ACT = TransactionStatus.ACTIVE
_OVD = TransactionStatus.OVERDUE
_DSP = TransactionStatus.DISPUTED

# Exchange and sell share one lifecycle.  A dispute does not change their
# status; the dispute workflow drives them with the FORCE_* events instead.
_TWO_STEP: dict[tuple[TransactionStatus, str], TransactionStatus] = {
    # From PENDING
    (_P, TransactionEvent.ACCEPT): _ACC,
    (_P, TransactionEvent.REJECT): TransactionStatus.REJECTED,
    (_P, TransactionEvent.CANCEL): TransactionStatus.CANCELLED,
    (_P, TransactionEvent.AUTO_CANCEL): TransactionStatus.CANCELLED,
    (_P, TransactionEvent.FORCE_CANCEL): TransactionStatus.CANCELLED,
    # From ACCEPTED
    (_ACC, TransactionEvent.CANCEL): TransactionStatus.CANCELLED,
    (_ACC, TransactionEvent.COMPLETE): TransactionStatus.COMPLETED,
    (_ACC, TransactionEvent.FORCE_CANCEL): TransactionStatus.CANCELLED,
    (_ACC, TransactionEvent.FORCE_COMPLETE): TransactionStatus.COMPLETED,
}

_BORROW: dict[tuple[TransactionStatus, str], TransactionStatus] = {
    # From PENDING
    (_P, TransactionEvent.ACCEPT): _ACC,
    (_P, TransactionEvent.REJECT): TransactionStatus.REJECTED,
    (_P, TransactionEvent.CANCEL): TransactionStatus.CANCELLED,
    (_P, TransactionEvent.AUTO_CANCEL): TransactionStatus.CANCELLED,
    (_P, TransactionEvent.OPEN_DISPUTE): _DSP,
    # From ACCEPTED
    (_ACC, TransactionEvent.CANCEL): TransactionStatus.CANCELLED,
    (_ACC, TransactionEvent.HAND_OVER): _ACT,
    (_ACC, TransactionEvent.OPEN_DISPUTE): _DSP,
    # From ACTIVE
    (_ACT, TransactionEvent.MARK_OVERDUE): _OVD,
    (_ACT, TransactionEvent.COMPLETE): TransactionStatus.RETURNED,
    (_ACT, TransactionEvent.OPEN_DISPUTE): _DSP,
    # From OVERDUE
    (_OVD, TransactionEvent.COMPLETE): TransactionStatus.RETURNED,
    (_OVD, TransactionEvent.OPEN_DISPUTE): _DSP,
    # From DISPUTED
    (_DSP, TransactionEvent.FORCE_CANCEL): TransactionStatus.CANCELLED,
    (_DSP, TransactionEvent.FORCE_COMPLETE): TransactionStatus.RETURNED,
}

TRANSITIONS: dict[TransactionKind, dict[tuple[TransactionStatus, str], TransactionStatus]] = {
    TransactionKind.EXCHANGE: _TWO_STEP,
    TransactionKind.SELL: _TWO_STEP,
    TransactionKind.BORROW: _BORROW,
}

# States that reject all events -- no outgoing transitions allowed.
TERMINAL_STATES: frozenset[TransactionStatus] = frozenset(
    {
        TransactionStatus.COMPLETED,
        TransactionStatus.REJECTED,
        TransactionStatus.CANCELLED,
        TransactionStatus.RETURNED,
    }
)

# The status reached when both participants confirm.
SUCCESS_STATES: dict[TransactionKind, TransactionStatus] = {
    TransactionKind.EXCHANGE: TransactionStatus.COMPLETED,
    TransactionKind.SELL: TransactionStatus.COMPLETED,
    TransactionKind.BORROW: TransactionStatus.RETURNED,
}

# States in which participants may record their completion confirmation.
CONFIRMABLE_STATES: dict[TransactionKind, frozenset[TransactionStatus]] = {
    TransactionKind.EXCHANGE: frozenset({_ACC}),
    TransactionKind.SELL: frozenset({_ACC}),
    TransactionKind.BORROW: frozenset({_ACT, _OVD}),
}
