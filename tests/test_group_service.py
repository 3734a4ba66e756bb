"""Tests for the group lifecycle and its compare-and-swap writes."""

from __future__ import annotations

import datetime
import unittest
from unittest.mock import patch

from google.api_core import exceptions as google_exceptions

from hangsmart.core.constants import MAX_CODE_ATTEMPTS, MAX_WRITE_ATTEMPTS
from hangsmart.errors import (
    ConflictError,
    NotAMemberError,
    NotFoundError,
    StorageReadError,
    StorageWriteError,
    ValidationError,
)
from hangsmart.group.models import GroupState, PreferenceFields
from hangsmart.group.services import GroupService
from tests.conftest import ALICE, BOB, CAROL, seed_group
from tests.mock_utils import FakeFirestore

SERVICE = "hangsmart.group.services.group_service"


class CreateGroupTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.db = FakeFirestore()

    def test_create_group_stores_founder_as_only_member(self) -> None:
        code = GroupService.create_group(self.db, ALICE, "  Friday Night  ")

        self.assertEqual(len(code), 6)
        self.assertTrue(code.isalnum())
        self.assertEqual(code, code.upper())
        stored = self.db.data(f"groups/{code}")
        self.assertEqual(stored["name"], "Friday Night")
        self.assertEqual(stored["members"], [{"uid": "alice", "name": "Alice"}])
        self.assertEqual(stored["memberIds"], ["alice"])
        self.assertIsInstance(stored["createdAt"], datetime.datetime)

    def test_founder_photo_is_stored(self) -> None:
        code = GroupService.create_group(self.db, BOB, "Bob's Group")
        member = self.db.data(f"groups/{code}")["members"][0]
        self.assertEqual(member["photoURL"], "https://example.com/bob.png")
        self.assertNotIn("preferences", member)

    def test_blank_name_is_rejected_without_writing(self) -> None:
        with self.assertRaises(ValidationError):
            GroupService.create_group(self.db, ALICE, "   ")
        self.assertEqual(self.db.writes, 0)

    def test_code_collision_draws_a_new_code(self) -> None:
        seed_group(self.db, "TAKEN1", [{"uid": "carol", "name": "Carol"}], name="Old")

        with patch(f"{SERVICE}.generate_group_code", side_effect=["TAKEN1", "FRESH2"]):
            code = GroupService.create_group(self.db, ALICE, "New")

        self.assertEqual(code, "FRESH2")
        self.assertEqual(self.db.data("groups/TAKEN1")["name"], "Old")
        self.assertEqual(self.db.data("groups/FRESH2")["memberIds"], ["alice"])

    def test_persistent_code_collisions_raise_conflict(self) -> None:
        seed_group(self.db, "TAKEN1", [{"uid": "carol", "name": "Carol"}])

        with patch(f"{SERVICE}.generate_group_code", return_value="TAKEN1") as gen:
            with self.assertRaises(ConflictError):
                GroupService.create_group(self.db, ALICE, "New")

        self.assertEqual(gen.call_count, MAX_CODE_ATTEMPTS)

    def test_storage_failure_raises_write_error(self) -> None:
        self.db.fail_on("create", google_exceptions.ServiceUnavailable("offline"))
        with self.assertRaises(StorageWriteError):
            GroupService.create_group(self.db, ALICE, "Trip")


class JoinGroupTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.db = FakeFirestore()
        self.code = GroupService.create_group(self.db, ALICE, "Trip")

    def test_join_appends_member_without_preferences(self) -> None:
        group = GroupService.join_group(self.db, self.code, BOB)

        self.assertEqual([m["uid"] for m in group["members"]], ["alice", "bob"])
        self.assertNotIn("preferences", group["members"][1])
        stored = self.db.data(f"groups/{self.code}")
        self.assertEqual(stored["memberIds"], ["alice", "bob"])

    def test_join_normalizes_the_code(self) -> None:
        group = GroupService.join_group(self.db, f"  {self.code.lower()} ", BOB)
        self.assertEqual(group["id"], self.code)

    def test_join_twice_is_a_no_op(self) -> None:
        GroupService.join_group(self.db, self.code, BOB)
        writes = self.db.writes

        group = GroupService.join_group(self.db, self.code, BOB)

        self.assertEqual(self.db.writes, writes)
        self.assertEqual([m["uid"] for m in group["members"]], ["alice", "bob"])

    def test_founder_joining_is_a_no_op(self) -> None:
        writes = self.db.writes
        GroupService.join_group(self.db, self.code, ALICE)
        self.assertEqual(self.db.writes, writes)

    def test_unknown_code_raises_not_found_without_writing(self) -> None:
        writes = self.db.writes
        with self.assertRaises(NotFoundError):
            GroupService.join_group(self.db, "ZZZZZZ", BOB)
        self.assertEqual(self.db.writes, writes)
        self.assertIsNone(self.db.data("groups/ZZZZZZ"))

    def test_empty_code_is_rejected(self) -> None:
        with self.assertRaises(ValidationError):
            GroupService.join_group(self.db, "   ", BOB)

    def test_interleaved_joins_are_both_kept(self) -> None:
        # Carol's join lands between Bob's read and Bob's guarded write.
        self.db.before_update(
            lambda ref, data: GroupService.join_group(self.db, self.code, CAROL)
        )

        group = GroupService.join_group(self.db, self.code, BOB)

        self.assertEqual(self.db.rejected_updates, 1)
        self.assertEqual(
            [m["uid"] for m in group["members"]], ["alice", "carol", "bob"]
        )
        stored = self.db.data(f"groups/{self.code}")
        self.assertEqual(stored["memberIds"], ["alice", "carol", "bob"])
        self.assertEqual(len({m["uid"] for m in stored["members"]}), 3)

    def test_interleaved_join_of_the_same_user_is_not_duplicated(self) -> None:
        self.db.before_update(
            lambda ref, data: GroupService.join_group(self.db, self.code, BOB)
        )

        group = GroupService.join_group(self.db, self.code, BOB)

        self.assertEqual([m["uid"] for m in group["members"]], ["alice", "bob"])
        self.assertEqual(
            self.db.data(f"groups/{self.code}")["memberIds"], ["alice", "bob"]
        )

    def test_persistent_contention_raises_conflict(self) -> None:
        self.db.before_update(
            lambda ref, data: ref.set({"name": "Renamed"}, merge=True),
            times=MAX_WRITE_ATTEMPTS,
        )

        with self.assertLogs(SERVICE, level="WARNING"):
            with self.assertRaises(ConflictError):
                GroupService.join_group(self.db, self.code, BOB)

        self.assertEqual(self.db.rejected_updates, MAX_WRITE_ATTEMPTS)
        self.assertEqual(self.db.data(f"groups/{self.code}")["memberIds"], ["alice"])

    def test_contention_that_clears_up_is_retried(self) -> None:
        self.db.before_update(
            lambda ref, data: ref.set({"name": "Renamed"}, merge=True),
            times=MAX_WRITE_ATTEMPTS - 1,
        )

        group = GroupService.join_group(self.db, self.code, BOB)

        self.assertEqual(group["name"], "Renamed")
        self.assertEqual(group["memberIds"], ["alice", "bob"])

    def test_group_deleted_before_write_raises_not_found(self) -> None:
        self.db.before_update(lambda ref, data: ref.delete())
        with self.assertRaises(NotFoundError):
            GroupService.join_group(self.db, self.code, BOB)

    def test_write_failure_raises_storage_write_error(self) -> None:
        self.db.fail_on("update", google_exceptions.DeadlineExceeded("slow"))
        with self.assertRaises(StorageWriteError):
            GroupService.join_group(self.db, self.code, BOB)

    def test_read_failure_raises_storage_read_error(self) -> None:
        self.db.fail_on("get", google_exceptions.ServiceUnavailable("offline"))
        with self.assertRaises(StorageReadError):
            GroupService.join_group(self.db, self.code, BOB)


class SubmitPreferencesTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.db = FakeFirestore()
        self.code = GroupService.create_group(self.db, ALICE, "Trip")
        GroupService.join_group(self.db, self.code, BOB)

    def _member(self, uid: str) -> dict:
        members = self.db.data(f"groups/{self.code}")["members"]
        return next(m for m in members if m["uid"] == uid)

    def test_submission_is_stored_on_the_member(self) -> None:
        fields = PreferenceFields(
            interests="hiking",
            availability="Saturday",
            special_requests="vegetarian",
            location="Seattle",
        )
        group = GroupService.submit_preferences(self.db, self.code, ALICE, fields)

        prefs = self._member("alice")["preferences"]
        self.assertEqual(prefs["interests"], "hiking")
        self.assertEqual(prefs["availability"], "Saturday")
        self.assertEqual(prefs["specialRequests"], "vegetarian")
        self.assertEqual(prefs["location"], "Seattle")
        self.assertIsInstance(prefs["updatedAt"], datetime.datetime)
        self.assertFalse(GroupService.evaluate_readiness(group))

    def test_resubmission_replaces_preferences_wholesale(self) -> None:
        GroupService.submit_preferences(
            self.db,
            self.code,
            ALICE,
            PreferenceFields(interests="hiking", location="Seattle"),
        )
        first = self._member("alice")["preferences"]["updatedAt"]

        GroupService.submit_preferences(
            self.db, self.code, ALICE, PreferenceFields(interests="museums")
        )

        prefs = self._member("alice")["preferences"]
        self.assertEqual(prefs["interests"], "museums")
        self.assertEqual(prefs["location"], "")
        self.assertGreater(prefs["updatedAt"], first)

    def test_updated_at_advances_even_when_the_clock_does_not(self) -> None:
        future = datetime.datetime.now(datetime.timezone.utc) + datetime.timedelta(
            days=1
        )
        members = self.db.data(f"groups/{self.code}")["members"]
        members[0]["preferences"] = PreferenceFields().to_document(future)
        self.db.collection("groups").document(self.code).set(
            {"members": members}, merge=True
        )

        GroupService.submit_preferences(self.db, self.code, ALICE, PreferenceFields())

        self.assertGreater(self._member("alice")["preferences"]["updatedAt"], future)

    def test_empty_fields_count_as_a_submission(self) -> None:
        GroupService.submit_preferences(self.db, self.code, ALICE, PreferenceFields())
        group = GroupService.submit_preferences(
            self.db, self.code, BOB, PreferenceFields()
        )
        self.assertTrue(GroupService.evaluate_readiness(group))

    def test_photo_is_refreshed_from_the_caller(self) -> None:
        GroupService.submit_preferences(self.db, self.code, BOB, PreferenceFields())
        self.assertEqual(self._member("bob")["photoURL"], "https://example.com/bob.png")

        members = self.db.data(f"groups/{self.code}")["members"]
        members[0]["photoURL"] = "https://example.com/stale.png"
        self.db.collection("groups").document(self.code).set(
            {"members": members}, merge=True
        )
        GroupService.submit_preferences(self.db, self.code, ALICE, PreferenceFields())
        self.assertNotIn("photoURL", self._member("alice"))

    def test_non_member_is_rejected_without_change(self) -> None:
        before = self.db.data(f"groups/{self.code}")
        writes = self.db.writes

        with self.assertRaises(NotAMemberError):
            GroupService.submit_preferences(
                self.db, self.code, CAROL, PreferenceFields(interests="golf")
            )

        self.assertEqual(self.db.writes, writes)
        self.assertEqual(self.db.data(f"groups/{self.code}"), before)

    def test_unknown_group_raises_not_found(self) -> None:
        with self.assertRaises(NotFoundError):
            GroupService.submit_preferences(
                self.db, "NOPE00", ALICE, PreferenceFields()
            )

    def test_concurrent_submissions_are_merged(self) -> None:
        self.db.before_update(
            lambda ref, data: GroupService.submit_preferences(
                self.db, self.code, BOB, PreferenceFields(interests="bowling")
            )
        )

        group = GroupService.submit_preferences(
            self.db, self.code, ALICE, PreferenceFields(interests="hiking")
        )

        self.assertEqual(self._member("alice")["preferences"]["interests"], "hiking")
        self.assertEqual(self._member("bob")["preferences"]["interests"], "bowling")
        self.assertTrue(GroupService.evaluate_readiness(group))

    def test_transition_to_ready_is_logged(self) -> None:
        GroupService.submit_preferences(self.db, self.code, ALICE, PreferenceFields())
        with self.assertLogs(SERVICE, level="INFO") as logs:
            group = GroupService.submit_preferences(
                self.db, self.code, BOB, PreferenceFields()
            )
        self.assertEqual(GroupService.group_state(group), GroupState.READY)
        self.assertTrue(any("ready" in line for line in logs.output))


class ReadGroupTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.db = FakeFirestore()

    def test_get_group_returns_id_and_members(self) -> None:
        code = GroupService.create_group(self.db, ALICE, "Trip")
        group = GroupService.get_group(self.db, code.lower())
        self.assertEqual(group["id"], code)
        self.assertEqual(group["name"], "Trip")
        self.assertEqual(GroupService.group_state(group), GroupState.COLLECTING)

    def test_get_unknown_group_raises_not_found(self) -> None:
        with self.assertRaises(NotFoundError):
            GroupService.get_group(self.db, "ABCDEF")

    def test_list_groups_for_member(self) -> None:
        first = GroupService.create_group(self.db, ALICE, "One")
        second = GroupService.create_group(self.db, BOB, "Two")
        GroupService.join_group(self.db, second, ALICE)
        GroupService.create_group(self.db, CAROL, "Three")

        groups = GroupService.list_groups_for_member(self.db, "alice")

        self.assertEqual(sorted(g["id"] for g in groups), sorted([first, second]))

    def test_list_groups_read_failure(self) -> None:
        self.db.fail_on("stream", google_exceptions.ServiceUnavailable("offline"))
        with self.assertRaises(StorageReadError):
            GroupService.list_groups_for_member(self.db, "alice")


if __name__ == "__main__":
    unittest.main()
