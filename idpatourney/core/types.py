"""Shared document types for the idpatourney application."""

from typing import Any, TypedDict


class _FirestoreDocumentBase(TypedDict):
    id: str
    createdAt: Any


class FirestoreDocument(_FirestoreDocumentBase, total=False):
    """Fields every stored tournament document carries."""

    updatedAt: Any
