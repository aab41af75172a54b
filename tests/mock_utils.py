"""Common utilities for tests."""

from __future__ import annotations

import copy
import unittest.mock
from typing import Any, Optional

from mockfirestore import CollectionReference, MockFirestore, Query
from mockfirestore.document import DocumentReference


class InlineTransaction:
    """Stands in for a Firestore transaction; writes apply immediately.

    Reads happen before writes in every transaction callback, so applying
    writes straight away gives the same end state as a commit.
    """

    def __init__(self) -> None:
        self.writes: list[tuple[str, Any]] = []

    def get(self, ref_or_query: Any) -> Any:
        if isinstance(ref_or_query, DocumentReference):
            return ref_or_query.get()
        return ref_or_query.stream()

    def set(self, ref: Any, data: Any, merge: bool = False) -> None:
        self.writes.append(("set", ref))
        ref.set(data, merge=merge)

    def update(self, ref: Any, data: Any) -> None:
        self.writes.append(("update", ref))
        ref.update(data)

    def delete(self, ref: Any) -> None:
        self.writes.append(("delete", ref))
        ref.delete()


class MockBatch:
    def __init__(self, db: Any) -> None:
        self.db = db
        self.updates: list[tuple[Any, Any]] = []
        self.commit = unittest.mock.MagicMock(side_effect=self._real_commit)

    def update(self, ref: Any, data: Any) -> None:
        self.updates.append((ref, ("update", data)))

    def set(self, ref: Any, data: Any, merge: bool = False) -> None:
        self.updates.append((ref, ("set", data)))

    def delete(self, ref: Any) -> None:
        self.updates.append((ref, ("delete", None)))

    def _real_commit(self) -> None:
        for ref, (op, data) in self.updates:
            if op == "delete":
                ref.delete()
            elif op == "set":
                ref.set(data)
            else:
                ref.update(data)


def _where_with_filter(
    self: Any,
    field_path: Optional[str] = None,
    op_string: Optional[str] = None,
    value: Any = None,
    filter: Any = None,
) -> Any:
    """Accept ``where(filter=FieldFilter(...))`` as the real client does."""
    if filter is not None:
        return self._where(filter.field_path, filter.op_string, filter.value)
    return self._where(field_path, op_string, value)


def _doc_ref_eq(self: Any, other: Any) -> bool:
    return isinstance(other, DocumentReference) and self._path == other._path


def _doc_ref_get(self: Any, transaction: Any = None) -> Any:
    if isinstance(transaction, OptimisticTransaction):
        return transaction.get(self)
    return self._orig_get()


class MockFirestoreBuilder:
    """Monkeypatches that bring mockfirestore closer to google-cloud-firestore."""

    @staticmethod
    def patch_queries() -> None:
        for cls in (CollectionReference, Query):
            if not hasattr(cls, "_where"):
                cls._where = cls.where
                cls.where = _where_with_filter

    @staticmethod
    def patch_references() -> None:
        if not hasattr(DocumentReference, "_orig_eq"):
            DocumentReference._orig_eq = DocumentReference.__eq__
            DocumentReference.__eq__ = _doc_ref_eq
        if DocumentReference.__hash__ is None:
            DocumentReference.__hash__ = lambda self: hash(tuple(self._path))
        if not hasattr(DocumentReference, "_orig_get"):
            DocumentReference._orig_get = DocumentReference.get
            DocumentReference.get = _doc_ref_get


def patch_mockfirestore() -> None:
    """Apply the mockfirestore monkeypatches once per process."""
    MockFirestoreBuilder.patch_queries()
    MockFirestoreBuilder.patch_references()


def make_db() -> MockFirestore:
    """Return a MockFirestore with inline transactions and real batch writes."""
    patch_mockfirestore()
    db = MockFirestore()
    db.transaction = unittest.mock.MagicMock(
        side_effect=lambda **kwargs: InlineTransaction()
    )
    db.batch = unittest.mock.MagicMock(side_effect=lambda: MockBatch(db))
    return db


def inline_transactions() -> Any:
    """Patch firestore.transactional so callbacks run once, without retries."""
    return unittest.mock.patch(
        "firebase_admin.firestore.transactional", new=lambda func: func
    )


def _doc_state(snap: Any) -> Any:
    return copy.deepcopy(snap.to_dict()) if snap.exists else None


class OptimisticTransaction:
    """Buffers writes until commit and remembers what it read."""

    def __init__(self) -> None:
        self.reads: list[tuple[Any, Any]] = []
        self.writes: list[tuple[str, Any, Any]] = []

    def _read(self, ref_or_query: Any) -> tuple[Any, Any]:
        if isinstance(ref_or_query, DocumentReference):
            snap = ref_or_query._orig_get()
            return snap, _doc_state(snap)
        snaps = list(ref_or_query.stream())
        state = sorted((snap.id, _doc_state(snap)) for snap in snaps)
        return snaps, state

    def get(self, ref_or_query: Any) -> Any:
        result, state = self._read(ref_or_query)
        self.reads.append((ref_or_query, state))
        return result

    def set(self, ref: Any, data: Any, merge: bool = False) -> None:
        self.writes.append(("set", ref, (data, merge)))

    def update(self, ref: Any, data: Any) -> None:
        self.writes.append(("update", ref, data))

    def delete(self, ref: Any) -> None:
        self.writes.append(("delete", ref, None))

    def is_current(self) -> bool:
        return all(self._read(source)[1] == state for source, state in self.reads)

    def commit(self) -> None:
        for op, ref, data in self.writes:
            if op == "set":
                ref.set(data[0], merge=data[1])
            elif op == "update":
                ref.update(data)
            else:
                ref.delete()


class OptimisticTransactions:
    """Runs transaction callbacks with Firestore's optimistic retry.

    A callback commits only when nothing it read changed in the meantime,
    otherwise it runs again. Functions put on ``interleaved`` run one per
    callback attempt, between its reads and its commit, as a concurrent
    writer would.
    """

    max_attempts = 5

    def __init__(self) -> None:
        self.interleaved: list[Any] = []
        self.attempts = 0

    def transactional(self, func: Any) -> Any:
        def run(_transaction: Any, *args: Any, **kwargs: Any) -> Any:
            for _ in range(self.max_attempts):
                self.attempts += 1
                transaction = OptimisticTransaction()
                result = func(transaction, *args, **kwargs)
                if self.interleaved:
                    self.interleaved.pop(0)()
                if transaction.is_current():
                    transaction.commit()
                    return result
            raise RuntimeError("Transaction kept contending")

        return run

    def patch(self) -> Any:
        return unittest.mock.patch(
            "firebase_admin.firestore.transactional", new=self.transactional
        )
