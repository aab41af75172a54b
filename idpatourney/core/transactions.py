"""Helpers for running read-then-write work inside Firestore transactions."""

from __future__ import annotations

import datetime
from typing import TYPE_CHECKING, Any, Callable, TypeVar

from firebase_admin import firestore

if TYPE_CHECKING:
    from google.cloud.firestore_v1.client import Client
    from google.cloud.firestore_v1.document import DocumentReference
    from google.cloud.firestore_v1.transaction import Transaction

T = TypeVar("T")


def run_transaction(
    db: Client, func: Callable[..., T], *args: Any, **kwargs: Any
) -> T:
    """Run ``func(transaction, *args)`` in a Firestore transaction.

    Firestore retries the callback when a document it read was changed by a
    concurrent commit, so the callback must only read through the transaction
    and must do all of its reads before its first write.
    """
    transaction = db.transaction()
    return firestore.transactional(func)(transaction, *args, **kwargs)


def get_in_transaction(transaction: Transaction, ref: DocumentReference) -> Any:
    """Read a single document snapshot through the transaction."""
    return ref.get(transaction=transaction)


def query_in_transaction(transaction: Transaction, query: Any) -> list[Any]:
    """Read every snapshot a query returns through the transaction."""
    return list(transaction.get(query))


def utcnow() -> datetime.datetime:
    """Return the current timezone-aware UTC time."""
    return datetime.datetime.now(datetime.timezone.utc)
