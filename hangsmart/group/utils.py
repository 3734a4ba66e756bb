"""Utility functions for the group blueprint."""

from __future__ import annotations

import datetime
import secrets
from typing import Any, cast

from hangsmart.core.constants import (
    GROUP_CODE_ALPHABET,
    GROUP_CODE_LENGTH,
    MIN_READY_MEMBERS,
)
from hangsmart.errors import ValidationError
from hangsmart.utils import send_email

from .models import Group


def generate_group_code() -> str:
    """Draw a new join code from a cryptographically strong source."""
    return "".join(
        secrets.choice(GROUP_CODE_ALPHABET) for _ in range(GROUP_CODE_LENGTH)
    )


def normalize_group_code(code: str | None) -> str:
    """Trim and uppercase a user-typed join code."""
    normalized = (code or "").strip().upper()
    if not normalized:
        raise ValidationError("Please enter a group code.")
    return normalized


def group_from_snapshot(snapshot: Any) -> Group:
    """Turn an existing group document snapshot into a Group dict."""
    data = snapshot.to_dict() or {}
    data["id"] = snapshot.id
    data.setdefault("members", [])
    return cast(Group, data)


def evaluate_readiness(group: Group) -> bool:
    """Return True when at least two members exist and all have submitted."""
    members = group.get("members") or []
    if len(members) < MIN_READY_MEMBERS:
        return False
    return all(member.get("preferences") is not None for member in members)


def next_timestamp(previous: Any = None) -> datetime.datetime:
    """Return the current UTC time, nudged to be later than ``previous``."""
    now = datetime.datetime.now(datetime.timezone.utc)
    if isinstance(previous, datetime.datetime) and previous.tzinfo is not None:
        if now <= previous:
            now = previous + datetime.timedelta(microseconds=1)
    return now


def serialize_group(group: Group) -> dict[str, Any]:
    """Make a group JSON-safe and add the derived readiness fields."""

    def convert(value: Any) -> Any:
        if isinstance(value, datetime.datetime):
            return value.isoformat()
        if isinstance(value, dict):
            return {k: convert(v) for k, v in value.items()}
        if isinstance(value, list):
            return [convert(v) for v in value]
        if value is None or isinstance(value, (str, int, float, bool)):
            return value
        # Firestore sentinels that have not been resolved by the server yet
        return None

    data = convert(dict(group))
    for member in data.get("members") or []:
        member["submitted"] = member.get("preferences") is not None
    ready = evaluate_readiness(group)
    data["ready"] = ready
    data["state"] = "ready" if ready else "collecting"
    return data


def send_invite_email(
    to: str, group: Group, inviter_name: str, join_url: str
) -> None:
    """Email a group's join code to someone.

    Raises:
        EmailError: If sending the email fails.
    """
    send_email(
        to=to,
        subject=f"{inviter_name} invited you to {group.get('name', 'a group')}",
        template="email/group_invite.html",
        group=group,
        inviter_name=inviter_name,
        join_url=join_url,
    )
