"""Core module for the idpatourney application."""

from .transactions import get_in_transaction, query_in_transaction, run_transaction
from .types import FirestoreDocument

__all__ = [
    "FirestoreDocument",
    "get_in_transaction",
    "query_in_transaction",
    "run_transaction",
]
