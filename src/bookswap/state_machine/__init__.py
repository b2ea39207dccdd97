"""Transaction state machines with per-variant transition validation."""

from bookswap.state_machine.machine import TransactionStateMachine
from bookswap.state_machine.transitions import (
    CONFIRMABLE_STATES,
    SUCCESS_STATES,
    TERMINAL_STATES,
    TRANSITIONS,
    TransactionEvent,
)

__all__ = [
    "CONFIRMABLE_STATES",
    "SUCCESS_STATES",
    "TERMINAL_STATES",
    "TRANSITIONS",
    "TransactionEvent",
    "TransactionStateMachine",
]
