"""Data models for the user blueprint."""

from __future__ import annotations

from typing import Any

from hangsmart.core.types import FirestoreDocument


class User(FirestoreDocument, total=False):
    """A user profile document in Firestore, keyed by uid."""

    name: str
    email: str
    profilePicture: str
    features: list[str]
    preferences: dict[str, Any]
