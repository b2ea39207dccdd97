"""Retry policies for compare-and-set loops and outbound deliveries."""

from bookswap.resilience.retry import cas_retrying, delivery_retrying

__all__ = [
    "cas_retrying",
    "delivery_retrying",
]
