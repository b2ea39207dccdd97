"""Book listings and the exclusivity guard."""

from bookswap.books.guard import BookExclusivityGuard, Reservation
from bookswap.books.listings import ListingService

__all__ = ["BookExclusivityGuard", "ListingService", "Reservation"]
