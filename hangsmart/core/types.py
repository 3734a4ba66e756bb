"""Core data types for the hangsmart application."""

from __future__ import annotations

import datetime
from typing import Any, TypedDict, Union

# Firestore hands back DatetimeWithNanoseconds, a datetime subclass, or the
# SERVER_TIMESTAMP sentinel on documents that were built locally.
Timestamp = Union[datetime.datetime, Any]


class _FirestoreDocumentBase(TypedDict):
    id: str


class FirestoreDocument(_FirestoreDocumentBase, total=False):
    """Generic Firestore document structure."""

    createdAt: Timestamp
