"""Dispute workflow keyed one-to-one to a transaction."""

from bookswap.disputes.workflow import DisputeWorkflow

__all__ = ["DisputeWorkflow"]
