"""Caller identity and the session wrapper around Firebase Authentication."""

from __future__ import annotations

import logging
from collections.abc import Callable, MutableMapping
from dataclasses import asdict, dataclass
from typing import TYPE_CHECKING, Any, Optional

import requests
from firebase_admin import auth, firestore
from firebase_admin.exceptions import FirebaseError

from hangsmart.core.constants import DEFAULT_UPSTREAM_TIMEOUT
from hangsmart.errors import AuthError, StorageWriteError, ValidationError
from hangsmart.user.services import (
    create_user_profile,
    ensure_user_profile,
    upsert_provider_profile,
)

if TYPE_CHECKING:
    from google.cloud.firestore_v1.client import Client

logger = logging.getLogger(__name__)

SESSION_KEY = "identity"
SIGN_IN_URL = "https://identitytoolkit.googleapis.com/v1/accounts:signInWithPassword"
INVALID_CREDENTIAL_CODES = {
    "EMAIL_NOT_FOUND",
    "INVALID_PASSWORD",
    "INVALID_LOGIN_CREDENTIALS",
    "INVALID_EMAIL",
    "USER_DISABLED",
}

AuthListener = Callable[[Optional["CallerIdentity"]], None]


@dataclass(frozen=True)
class CallerIdentity:
    """Who is making a call. Passed explicitly into every group operation."""

    uid: str
    display_name: str
    email: Optional[str] = None
    photo_url: Optional[str] = None

    def to_session(self) -> dict[str, Any]:
        """Serialize for storage in the signed session cookie."""
        return asdict(self)

    @classmethod
    def from_session(cls, data: Any) -> CallerIdentity | None:
        """Rebuild an identity from session data, or None if it is unusable."""
        if not isinstance(data, dict) or not data.get("uid"):
            return None
        return cls(
            uid=data["uid"],
            display_name=data.get("display_name") or data["uid"],
            email=data.get("email"),
            photo_url=data.get("photo_url"),
        )


class SessionContext:
    """Wraps the identity provider and the session store for one caller.

    Listeners registered with :meth:`on_auth_state_changed` live as long as
    this object does.
    """

    def __init__(
        self,
        store: MutableMapping[str, Any],
        db: Client | None = None,
        api_key: str | None = None,
        timeout: float = DEFAULT_UPSTREAM_TIMEOUT,
    ) -> None:
        self._store = store
        self._db = db
        self._api_key = api_key
        self._timeout = timeout
        self._listeners: list[AuthListener] = []

    @classmethod
    def from_app(cls, app: Any, store: MutableMapping[str, Any]) -> SessionContext:
        """Build a context from the application's configuration."""
        return cls(
            store,
            api_key=app.config.get("FIREBASE_API_KEY"),
            timeout=app.config.get("UPSTREAM_TIMEOUT", DEFAULT_UPSTREAM_TIMEOUT),
        )

    @property
    def db(self) -> Client:
        if self._db is None:
            self._db = firestore.client()
        return self._db

    @property
    def current_identity(self) -> CallerIdentity | None:
        return CallerIdentity.from_session(self._store.get(SESSION_KEY))

    def require_identity(self) -> CallerIdentity:
        """Return the current identity or raise AuthError when signed out."""
        identity = self.current_identity
        if identity is None:
            raise AuthError("You need to sign in first.")
        return identity

    def on_auth_state_changed(self, callback: AuthListener) -> Callable[[], None]:
        """Register a listener, fire it once now, and return an unregister function."""
        self._listeners.append(callback)
        callback(self.current_identity)

        def unregister() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return unregister

    def sign_in(self, email: str, password: str) -> CallerIdentity:
        """Sign in with email and password through the Identity Toolkit API."""
        if not email or not password:
            raise ValidationError("Please enter both email and password")
        if not self._api_key:
            raise AuthError("Password sign-in is not configured.")

        try:
            response = requests.post(
                SIGN_IN_URL,
                params={"key": self._api_key},
                json={"email": email, "password": password, "returnSecureToken": True},
                timeout=self._timeout,
            )
        except requests.RequestException as e:
            raise AuthError(f"Could not reach the sign-in service: {e}") from e

        if response.status_code != 200:  # noqa: PLR2004
            code = _provider_error_code(response)
            logger.info("Password sign-in rejected for %s: %s", email, code)
            if code in INVALID_CREDENTIAL_CODES:
                raise AuthError(
                    "Invalid Email or Password. Please try again.",
                    reason=AuthError.INVALID_CREDENTIALS,
                )
            raise AuthError(f"Sign-in failed: {code}")

        try:
            payload = response.json()
            uid = payload["localId"]
        except (ValueError, KeyError, TypeError) as e:
            logger.error("Sign-in service returned an unexpected reply: %s", e)
            raise AuthError(
                "The sign-in service returned an unexpected reply.",
                reason=AuthError.PROVIDER,
            ) from e
        if not isinstance(uid, str) or not uid:
            raise AuthError(
                "The sign-in service returned an unexpected reply.",
                reason=AuthError.PROVIDER,
            )

        account_email = payload.get("email") or email
        profile = ensure_user_profile(
            self.db,
            uid,
            name=payload.get("displayName") or account_email,
            email=account_email,
        )
        identity = CallerIdentity(
            uid=uid,
            display_name=profile.get("name") or payload.get("displayName") or email,
            email=account_email,
            photo_url=profile.get("profilePicture") or None,
        )
        self._establish(identity)
        return identity

    def sign_up(self, name: str, email: str, password: str) -> CallerIdentity:
        """Create an account and its profile document, then sign in."""
        if not name or not email or not password:
            raise ValidationError("Please fill in all fields")

        try:
            record = auth.create_user(email=email, password=password, display_name=name)
        except auth.EmailAlreadyExistsError as e:
            raise AuthError(
                "Account already exists, please Sign In Instead.",
                reason=AuthError.ACCOUNT_EXISTS,
            ) from e
        except (FirebaseError, ValueError) as e:
            raise AuthError(f"Could not create account: {e}") from e

        try:
            create_user_profile(self.db, record.uid, name=name, email=email)
        except StorageWriteError:
            self._discard_account(record.uid)
            raise
        identity = CallerIdentity(uid=record.uid, display_name=name, email=email)
        self._establish(identity)
        return identity

    def sign_in_with_provider(self, id_token: str) -> CallerIdentity:
        """Exchange an ID token from a federated sign-in for a session."""
        if not id_token:
            raise ValidationError("Missing ID token.")
        try:
            decoded = auth.verify_id_token(id_token)
        except (FirebaseError, ValueError) as e:
            raise AuthError("Invalid token or expired session.") from e

        uid = decoded["uid"]
        email = decoded.get("email") or ""
        name = decoded.get("name") or email or uid
        photo_url = decoded.get("picture") or ""
        upsert_provider_profile(self.db, uid, name=name, email=email, photo_url=photo_url)

        identity = CallerIdentity(
            uid=uid, display_name=name, email=email or None, photo_url=photo_url or None
        )
        self._establish(identity)
        return identity

    def sign_out(self) -> None:
        """Forget the current identity and notify listeners."""
        self._store.pop(SESSION_KEY, None)
        self._notify(None)

    def _discard_account(self, uid: str) -> None:
        """Remove an account whose profile could not be written."""
        try:
            auth.delete_user(uid)
        except FirebaseError as e:
            logger.error("Could not remove account %s after a failed sign-up: %s", uid, e)
        else:
            logger.info("Removed account %s after a failed sign-up.", uid)

    def _establish(self, identity: CallerIdentity) -> None:
        self._store[SESSION_KEY] = identity.to_session()
        self._notify(identity)

    def _notify(self, identity: CallerIdentity | None) -> None:
        for listener in list(self._listeners):
            listener(identity)


def _provider_error_code(response: requests.Response) -> str:
    """Pull the error code out of an Identity Toolkit error body."""
    try:
        message = response.json()["error"]["message"]
    except (ValueError, KeyError, TypeError):
        return f"HTTP_{response.status_code}"
    # Messages look like "TOO_MANY_ATTEMPTS_TRY_LATER : Access disabled..."
    return str(message).split(" ", 1)[0]
