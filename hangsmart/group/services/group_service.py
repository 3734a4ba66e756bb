"""Service layer for the group membership and readiness state machine."""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import TYPE_CHECKING, Any, Optional, cast

from firebase_admin import firestore
from google.api_core import exceptions as google_exceptions

from hangsmart.core.constants import (
    GROUPS_COLLECTION,
    MAX_CODE_ATTEMPTS,
    MAX_WRITE_ATTEMPTS,
)
from hangsmart.errors import (
    ConflictError,
    NotAMemberError,
    NotFoundError,
    StorageReadError,
    StorageWriteError,
    ValidationError,
)
from hangsmart.group.models import Group, GroupState, Member, PreferenceFields
from hangsmart.group.utils import (
    evaluate_readiness,
    generate_group_code,
    group_from_snapshot,
    next_timestamp,
    normalize_group_code,
)

from .subscription import ErrorCallback, GroupSubscription, UpdateCallback

if TYPE_CHECKING:
    from google.cloud.firestore_v1.base_document import DocumentSnapshot
    from google.cloud.firestore_v1.client import Client
    from google.cloud.firestore_v1.document import DocumentReference

    from hangsmart.auth.session import CallerIdentity

logger = logging.getLogger(__name__)

# Returns the fields to write, or None when the group needs no change.
Mutation = Callable[[Group], Optional[dict[str, Any]]]


class GroupService:
    """Service class for group lifecycle operations."""

    @staticmethod
    def create_group(db: Client, founder: CallerIdentity, name: str) -> str:
        """Create a group with the founder as its only member and return its code."""
        name = (name or "").strip()
        if not name:
            raise ValidationError("Please enter a group name.")

        group_data = {
            "name": name,
            "createdAt": firestore.SERVER_TIMESTAMP,
            "members": [GroupService._new_member(founder)],
            "memberIds": [founder.uid],
        }
        groups = db.collection(GROUPS_COLLECTION)
        for _ in range(MAX_CODE_ATTEMPTS):
            code = generate_group_code()
            try:
                groups.document(code).create(group_data)
            except google_exceptions.AlreadyExists:
                logger.info("Group code %s is taken, drawing another.", code)
                continue
            except google_exceptions.GoogleAPIError as e:
                raise StorageWriteError("Could not create the group.") from e
            logger.info("Group %s created by %s.", code, founder.uid)
            return code
        raise ConflictError("Could not find a free group code. Please try again.")

    @staticmethod
    def get_group(db: Client, code: str) -> Group:
        """Fetch a single group by its code."""
        code = normalize_group_code(code)
        snapshot = GroupService._read(db.collection(GROUPS_COLLECTION).document(code))
        return group_from_snapshot(snapshot)

    @staticmethod
    def list_groups_for_member(db: Client, uid: str) -> list[Group]:
        """Fetch all groups the given user belongs to."""
        query = db.collection(GROUPS_COLLECTION).where(
            filter=firestore.FieldFilter("memberIds", "array_contains", uid)
        )
        try:
            return [group_from_snapshot(doc) for doc in query.stream()]
        except google_exceptions.GoogleAPIError as e:
            raise StorageReadError("Could not load your groups.") from e

    @staticmethod
    def join_group(db: Client, code: str, caller: CallerIdentity) -> Group:
        """Add the caller to a group. Joining twice is a no-op."""
        code = normalize_group_code(code)

        def add_member(group: Group) -> dict[str, Any] | None:
            members = list(group.get("members") or [])
            if any(member.get("uid") == caller.uid for member in members):
                return None
            members.append(GroupService._new_member(caller))
            return {
                "members": members,
                "memberIds": [member["uid"] for member in members],
            }

        return GroupService._apply(db, code, add_member)

    @staticmethod
    def submit_preferences(
        db: Client, code: str, caller: CallerIdentity, fields: PreferenceFields
    ) -> Group:
        """Replace the caller's preferences wholesale and stamp the time."""
        code = normalize_group_code(code)

        def replace_preferences(group: Group) -> dict[str, Any] | None:
            members = [dict(member) for member in group.get("members") or []]
            index = next(
                (i for i, member in enumerate(members) if member.get("uid") == caller.uid),
                None,
            )
            if index is None:
                raise NotAMemberError(
                    "You are not a member of this group. Join it first."
                )

            member = members[index]
            previous = (member.get("preferences") or {}).get("updatedAt")
            member["preferences"] = fields.to_document(next_timestamp(previous))
            if caller.photo_url:
                member["photoURL"] = caller.photo_url
            else:
                member.pop("photoURL", None)
            return {"members": members}

        return GroupService._apply(db, code, replace_preferences)

    @staticmethod
    def evaluate_readiness(group: Group) -> bool:
        """Return True once at least two members have all submitted."""
        return evaluate_readiness(group)

    @staticmethod
    def group_state(group: Group) -> GroupState:
        if evaluate_readiness(group):
            return GroupState.READY
        return GroupState.COLLECTING

    @staticmethod
    def open_subscription(db: Client, code: str) -> GroupSubscription:
        """Open a live stream of snapshots for one group."""
        code = normalize_group_code(code)
        return GroupSubscription(db.collection(GROUPS_COLLECTION).document(code))

    @staticmethod
    def subscribe(
        db: Client,
        code: str,
        on_update: UpdateCallback,
        on_error: ErrorCallback,
    ) -> Callable[[], None]:
        """Push every snapshot of a group to callbacks; return the unsubscribe function."""
        code = normalize_group_code(code)
        subscription = GroupSubscription(
            db.collection(GROUPS_COLLECTION).document(code),
            on_update=on_update,
            on_error=on_error,
        )
        return subscription.close

    @staticmethod
    def _new_member(identity: CallerIdentity) -> Member:
        member: Member = {"uid": identity.uid, "name": identity.display_name}
        if identity.photo_url:
            member["photoURL"] = identity.photo_url
        return member

    @staticmethod
    def _read(group_ref: DocumentReference) -> DocumentSnapshot:
        try:
            snapshot = cast("DocumentSnapshot", group_ref.get())
        except google_exceptions.GoogleAPIError as e:
            raise StorageReadError("Could not load the group.") from e
        if not snapshot.exists:
            raise NotFoundError("Group not found. Check the code and try again.")
        return snapshot

    @staticmethod
    def _apply(db: Client, code: str, mutate: Mutation) -> Group:
        """Run a read-modify-write against a group as a compare-and-swap loop.

        Each write is conditioned on the update time of the snapshot it was
        computed from, so a concurrent writer makes it fail and we start over
        from a fresh read.
        """
        group_ref = db.collection(GROUPS_COLLECTION).document(code)
        for attempt in range(1, MAX_WRITE_ATTEMPTS + 1):
            snapshot = GroupService._read(group_ref)
            group = group_from_snapshot(snapshot)
            updates = mutate(group)
            if updates is None:
                return group

            option = db.write_option(last_update_time=snapshot.update_time)
            try:
                group_ref.update(updates, option=option)
            except google_exceptions.FailedPrecondition:
                logger.info(
                    "Group %s changed underneath us (attempt %d/%d), retrying.",
                    code,
                    attempt,
                    MAX_WRITE_ATTEMPTS,
                )
                continue
            except google_exceptions.NotFound as e:
                raise NotFoundError("Group not found.") from e
            except google_exceptions.GoogleAPIError as e:
                raise StorageWriteError("Could not save your changes.") from e

            updated = cast(Group, {**group, **updates})
            if not evaluate_readiness(group) and evaluate_readiness(updated):
                logger.info("Group %s is ready for recommendations.", code)
            return updated

        logger.warning("Gave up writing group %s after %d attempts.", code, MAX_WRITE_ATTEMPTS)
        raise ConflictError()
