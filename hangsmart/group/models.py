"""Data models for the group blueprint."""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import TypedDict

from hangsmart.core.types import FirestoreDocument, Timestamp


class _PreferencesBase(TypedDict):
    interests: str
    availability: str
    specialRequests: str
    location: str


class Preferences(_PreferencesBase, total=False):
    """A member's submitted preferences, embedded in the member map."""

    updatedAt: Timestamp


class _MemberBase(TypedDict):
    uid: str
    name: str


class Member(_MemberBase, total=False):
    """Represents a group member.

    ``preferences`` is absent until the member has submitted.
    """

    photoURL: str
    preferences: Preferences


class Group(FirestoreDocument, total=False):
    """A group document in Firestore, keyed by its join code."""

    name: str
    members: list[Member]
    memberIds: list[str]


class GroupState(str, enum.Enum):
    """Where a group is in its preference-collection lifecycle."""

    COLLECTING = "collecting"
    READY = "ready"


@dataclass(frozen=True)
class PreferenceFields:
    """The free-text fields a member submits. Empty strings are legal."""

    interests: str = ""
    availability: str = ""
    special_requests: str = ""
    location: str = ""

    def to_document(self, updated_at: Timestamp) -> Preferences:
        """Build the complete preferences map stored on the member."""
        return {
            "interests": self.interests,
            "availability": self.availability,
            "specialRequests": self.special_requests,
            "location": self.location,
            "updatedAt": updated_at,
        }
