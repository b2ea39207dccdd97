"""Review eligibility gate and rating summaries."""

from bookswap.reviews.gate import ReviewEligibilityGate

__all__ = ["ReviewEligibilityGate"]
