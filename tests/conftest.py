"""Common utilities for tests."""

import unittest
from typing import Any, Optional
from unittest.mock import MagicMock, patch

from hangsmart import create_app
from hangsmart.auth.session import SESSION_KEY, CallerIdentity
from hangsmart.extensions import recommendation_cache
from tests.mock_utils import FakeFirestore

ALICE = CallerIdentity(uid="alice", display_name="Alice", email="alice@example.com")
BOB = CallerIdentity(
    uid="bob",
    display_name="Bob",
    email="bob@example.com",
    photo_url="https://example.com/bob.png",
)
CAROL = CallerIdentity(uid="carol", display_name="Carol", email="carol@example.com")


def seed_group(
    db: FakeFirestore,
    code: str,
    members: list[dict[str, Any]],
    name: str = "Weekend Plans",
) -> None:
    """Write a group document directly, bypassing the service."""
    db.collection("groups").document(code).set(
        {
            "name": name,
            "members": members,
            "memberIds": [member["uid"] for member in members],
        }
    )


def seed_profile(db: Any, identity: CallerIdentity) -> None:
    db.collection("users").document(identity.uid).set(
        {
            "name": identity.display_name,
            "email": identity.email or "",
            "profilePicture": identity.photo_url or "",
            "features": ["basic"],
            "preferences": {},
        }
    )


class AppTestCase(unittest.TestCase):
    """Base case for route tests: a test app over an in-memory Firestore."""

    firestore_modules = (
        "hangsmart.auth.session.firestore",
        "hangsmart.group.routes.firestore",
        "hangsmart.user.routes.firestore",
    )

    def setUp(self) -> None:
        self.db = FakeFirestore()
        self.mock_firestore = MagicMock()
        self.mock_firestore.client.return_value = self.db

        patchers = [patch("firebase_admin.initialize_app")]
        patchers += [
            patch(target, new=self.mock_firestore) for target in self.firestore_modules
        ]
        for p in patchers:
            p.start()
            self.addCleanup(p.stop)

        recommendation_cache.clear()
        self.app = create_app(
            {
                "TESTING": True,
                "WTF_CSRF_ENABLED": False,
                "SERVER_NAME": "localhost",
                "FIREBASE_API_KEY": "test-web-key",
                "PERPLEXITY_API_KEY": "test-perplexity-key",
            }
        )
        self.client = self.app.test_client()

    def login_as(self, identity: Optional[CallerIdentity], with_profile: bool = True) -> None:
        """Put an identity into the session cookie, seeding its profile."""
        if identity is not None and with_profile:
            seed_profile(self.db, identity)
        with self.client.session_transaction() as sess:
            if identity is None:
                sess.pop(SESSION_KEY, None)
            else:
                sess[SESSION_KEY] = identity.to_session()
