"""Service functions for user profile documents."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, cast

from firebase_admin import auth, firestore
from firebase_admin.exceptions import FirebaseError
from google.api_core import exceptions as google_exceptions

from hangsmart.core.constants import (
    DEFAULT_FEATURES,
    USER_DATA_COLLECTION,
    USERS_COLLECTION,
)
from hangsmart.errors import (
    AuthError,
    NotFoundError,
    StorageReadError,
    StorageWriteError,
    ValidationError,
)

from .models import User

if TYPE_CHECKING:
    from google.cloud.firestore_v1.base_document import DocumentSnapshot
    from google.cloud.firestore_v1.client import Client

logger = logging.getLogger(__name__)


def get_user_by_id(db: Client, user_id: str) -> User | None:
    """Fetch a user profile by uid, or None when there is no profile."""
    user_ref = db.collection(USERS_COLLECTION).document(user_id)
    try:
        user_doc = cast("DocumentSnapshot", user_ref.get())
    except google_exceptions.GoogleAPIError as e:
        raise StorageReadError(f"Could not load profile {user_id}.") from e
    if not user_doc.exists:
        return None
    data = user_doc.to_dict()
    if data is None:
        return None
    data["id"] = user_id
    return cast(User, data)


def create_user_profile(
    db: Client, user_id: str, name: str, email: str, photo_url: str = ""
) -> None:
    """Write a fresh profile document for a newly registered user."""
    profile: dict[str, Any] = {
        "name": name,
        "email": email,
        "createdAt": firestore.SERVER_TIMESTAMP,
        "profilePicture": photo_url or "",
        "features": list(DEFAULT_FEATURES),
        "preferences": {},
    }
    try:
        db.collection(USERS_COLLECTION).document(user_id).set(profile)
    except google_exceptions.GoogleAPIError as e:
        raise StorageWriteError("Could not create your profile.") from e


def ensure_user_profile(db: Client, user_id: str, name: str, email: str) -> User:
    """Return the user's profile, creating a fresh one when it is missing."""
    profile = get_user_by_id(db, user_id)
    if profile is not None:
        return profile
    logger.warning("Profile for %s was missing; creating it.", user_id)
    create_user_profile(db, user_id, name, email)
    created = get_user_by_id(db, user_id)
    if created is None:
        raise StorageWriteError("Could not create your profile.")
    return created


def upsert_provider_profile(
    db: Client, user_id: str, name: str, email: str, photo_url: str = ""
) -> None:
    """Create or refresh the profile of a user who signed in with a provider.

    An existing profile keeps its creation time, features and preferences.
    """
    if get_user_by_id(db, user_id) is None:
        create_user_profile(db, user_id, name, email, photo_url)
        return
    try:
        db.collection(USERS_COLLECTION).document(user_id).set(
            {"name": name, "email": email, "profilePicture": photo_url or ""},
            merge=True,
        )
    except google_exceptions.GoogleAPIError as e:
        raise StorageWriteError("Could not update your profile.") from e


def update_user_profile(db: Client, user_id: str, name: str, email: str) -> User:
    """Update a user's name and email. Both must be non-empty."""
    name = (name or "").strip()
    email = (email or "").strip()
    if not name or not email:
        raise ValidationError("Name and email cannot be empty.")

    if get_user_by_id(db, user_id) is None:
        raise NotFoundError("Profile not found.")
    try:
        db.collection(USERS_COLLECTION).document(user_id).update(
            {"name": name, "email": email}
        )
    except google_exceptions.GoogleAPIError as e:
        raise StorageWriteError("Error updating profile.") from e

    updated = get_user_by_id(db, user_id)
    if updated is None:
        raise NotFoundError("Profile not found.")
    return updated


def delete_user(db: Client, user_id: str) -> None:
    """Delete the auth account and then the user's profile documents.

    A failure part way through never leaves a live account without a profile.
    """
    try:
        auth.delete_user(user_id)
    except auth.UserNotFoundError:
        logger.warning("Auth account %s was already gone.", user_id)
    except FirebaseError as e:
        raise AuthError(f"Error deleting account: {e}") from e

    try:
        db.collection(USERS_COLLECTION).document(user_id).delete()
        db.collection(USER_DATA_COLLECTION).document(user_id).delete()
    except google_exceptions.GoogleAPIError as e:
        logger.error("Profile of deleted account %s was left behind: %s", user_id, e)
        raise StorageWriteError("Error deleting profile.") from e
