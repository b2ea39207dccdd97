"""Transaction services for the exchange, sell and borrow variants."""

from bookswap.transactions.base import TransactionService
from bookswap.transactions.borrow import BorrowService
from bookswap.transactions.completion import CompletionProtocol
from bookswap.transactions.exchange import ExchangeService
from bookswap.transactions.sell import SellService

__all__ = [
    "BorrowService",
    "CompletionProtocol",
    "ExchangeService",
    "SellService",
    "TransactionService",
]
