import unittest
from unittest import mock

from sqlalchemy.exc import SQLAlchemyError

from parkeasy.audit import audit_space, resync_slot_count
from parkeasy.database import unit_of_work
from parkeasy.models import CANCELLED, COMPLETE, PAID, PROCESSING
from parkeasy.renumbering import SlotRenumberer, plan_renumbering
from parkeasy.reservations import ReservationManager
from parkeasy.slots import SlotRef

from support import DatabaseTestCase, at, fixed_clock


class TestPlan(unittest.TestCase):

    def test_only_higher_ordinals_move_down(self):
        self.assertEqual(plan_renumbering([1, 2, 3, 4], 2), {3: 2, 4: 3})
        self.assertEqual(plan_renumbering([1, 2, 3], 3), {})


class TestRemoveSlotWithRenumbering(DatabaseTestCase):

    def setUp(self):
        super().setUp()
        self.seed_space("P66", slots=8)
        self.seed_space("P10", slots=3)
        self.alice = self.seed_user("Alice", "ALICE-1")
        self.renumberer = SlotRenumberer(self.engine)
        self.on = {}
        for ordinal, hour in [(6, 10), (7, 11), (8, 12)]:
            self.on[ordinal] = self.add_reservation("P66", ordinal, "ALICE-1", at(hour), at(hour + 1), PAID)
        self.old_on_5 = self.add_reservation("P66", 5, "ALICE-1", at(6), at(7), COMPLETE)
        self.other_space = self.add_reservation("P10", 1, "ALICE-1", at(14), at(15), PROCESSING)

    def snapshot(self):
        rows = [(r.id, r.space_id, r.slot_ordinal, r.status) for r in self.all_reservations()]
        return self.slot_ordinals("P66"), self.space("P66").slot_count, rows

    def test_higher_slots_and_their_reservations_shift_down(self):
        result = self.renumberer.remove_slot_with_renumbering("5P66")

        self.assertTrue(result.ok, result.message)
        self.assertEqual(result.data["removed"], "5P66")
        self.assertEqual(result.data["renamed"], {"6P66": "5P66", "7P66": "6P66", "8P66": "7P66"})
        self.assertEqual(self.slot_ordinals("P66"), [1, 2, 3, 4, 5, 6, 7])
        self.assertEqual(self.space("P66").slot_count, 7)
        self.assertEqual(self.reservation(self.on[6]).slot_ordinal, 5)
        self.assertEqual(self.reservation(self.on[7]).slot_ordinal, 6)
        self.assertEqual(self.reservation(self.on[8]).slot_ordinal, 7)
        self.assertEqual(audit_space_issues(self.engine, "P66"), [])

    def test_historical_reservations_on_removed_slot_are_detached(self):
        self.renumberer.remove_slot_with_renumbering(SlotRef(5, "P66"))
        detached = self.reservation(self.old_on_5)
        self.assertIsNone(detached.slot_ordinal)
        self.assertEqual(detached.status, COMPLETE)

    def test_other_spaces_are_untouched(self):
        self.renumberer.remove_slot_with_renumbering("5P66")
        self.assertEqual(self.slot_ordinals("P10"), [1, 2, 3])
        self.assertEqual(self.reservation(self.other_space).slot_ordinal, 1)

    def test_removing_last_slot_renames_nothing(self):
        ReservationManager(self.engine, clock=fixed_clock).cancel_reservation(self.on[8], self.alice)
        result = self.renumberer.remove_slot_with_renumbering("8P66")
        self.assertTrue(result.ok, result.message)
        self.assertEqual(result.data["renamed"], {})
        self.assertEqual(self.slot_ordinals("P66"), [1, 2, 3, 4, 5, 6, 7])
        self.assertEqual(self.space("P66").slot_count, 7)
        self.assertIsNone(self.reservation(self.on[8]).slot_ordinal)

    def test_active_reservation_blocks_removal_and_changes_nothing(self):
        for status in (PROCESSING, PAID):
            with self.subTest(status=status):
                blocker = self.add_reservation("P66", 5, "ALICE-1", at(16), at(17), status)
                before = self.snapshot()

                result = self.renumberer.remove_slot_with_renumbering("5P66")

                self.assertFalse(result.ok)
                self.assertEqual(result.kind, "conflict")
                self.assertEqual(result.reason, "active_reservations")
                self.assertEqual(self.snapshot(), before)
                ReservationManager(self.engine, clock=fixed_clock).cancel_reservation(blocker, self.alice)

    def test_store_failure_rolls_back_every_rename(self):
        before = self.snapshot()
        with mock.patch("parkeasy.renumbering._decrement_slot_count",
                        side_effect=SQLAlchemyError("disk I/O error")):
            result = self.renumberer.remove_slot_with_renumbering("5P66")

        self.assertFalse(result.ok)
        self.assertEqual(result.kind, "persistence")
        self.assertEqual(self.snapshot(), before)

    def test_unknown_and_malformed_slots(self):
        self.assertEqual(self.renumberer.remove_slot_with_renumbering("9P66").reason, "slot_not_found")
        self.assertEqual(self.renumberer.remove_slot_with_renumbering("1P99").reason, "space_not_found")
        self.assertEqual(self.renumberer.remove_slot_with_renumbering("P66").reason, "malformed_slot_token")
        self.assertEqual(self.slot_ordinals("P66"), list(range(1, 9)))


class TestForceRemoveAndAudit(DatabaseTestCase):

    def setUp(self):
        super().setUp()
        self.seed_space("P66", slots=4)
        self.seed_user("Alice", "ALICE-1")
        self.renumberer = SlotRenumberer(self.engine)

    def test_force_remove_leaves_a_gap_the_audit_reports(self):
        rid = self.add_reservation("P66", 2, "ALICE-1", at(10), at(11), PROCESSING)
        result = self.renumberer.force_remove("2P66")
        self.assertTrue(result.ok)
        self.assertEqual(self.slot_ordinals("P66"), [1, 3, 4])
        self.assertEqual(self.space("P66").slot_count, 4)

        issues = audit_space_issues(self.engine, "P66")
        self.assertIn({"issue": "ordinal_gap", "ordinal": 2}, issues)
        self.assertIn({"issue": "slot_count_mismatch", "recorded": 4, "actual": 3}, issues)
        self.assertIn({"issue": "dangling_reservation", "reservation_id": rid, "ordinal": 2}, issues)

        with unit_of_work(self.engine) as db:
            self.assertEqual(resync_slot_count(db, "P66"), 3)
        self.assertEqual(self.space("P66").slot_count, 3)

    def test_audit_reports_overlapping_active_reservations(self):
        a = self.add_reservation("P66", 1, "ALICE-1", at(10), at(12), PROCESSING)
        b = self.add_reservation("P66", 1, "ALICE-1", at(11), at(13), PAID)
        self.add_reservation("P66", 1, "ALICE-1", at(11), at(13), CANCELLED)
        issues = audit_space_issues(self.engine, "P66")
        self.assertEqual(issues, [{"issue": "overlapping_reservations", "ordinal": 1, "reservation_ids": [a, b]}])

    def test_renumbering_refuses_to_adopt_dangling_reservations(self):
        dangling = self.add_reservation("P66", 3, "ALICE-1", at(10), at(12), PROCESSING)
        self.renumberer.force_remove("3P66")
        on_4 = self.add_reservation("P66", 4, "ALICE-1", at(11), at(13), PAID)
        before = (self.slot_ordinals("P66"), [(r.id, r.slot_ordinal) for r in self.all_reservations()])

        result = self.renumberer.remove_slot_with_renumbering("2P66")

        self.assertFalse(result.ok)
        self.assertEqual(result.kind, "integrity")
        self.assertEqual(result.reason, "rename_collision")
        after = (self.slot_ordinals("P66"), [(r.id, r.slot_ordinal) for r in self.all_reservations()])
        self.assertEqual(after, before)
        self.assertEqual(self.reservation(dangling).slot_ordinal, 3)
        self.assertEqual(self.reservation(on_4).slot_ordinal, 4)
        self.assertNotIn("overlapping_reservations", [i["issue"] for i in audit_space_issues(self.engine, "P66")])

    def test_renumbering_after_force_remove_without_references(self):
        self.renumberer.force_remove("3P66")
        result = self.renumberer.remove_slot_with_renumbering("2P66")
        self.assertTrue(result.ok, result.message)
        self.assertEqual(result.data["renamed"], {"4P66": "3P66"})
        self.assertEqual(self.slot_ordinals("P66"), [1, 3])

    def test_force_remove_unknown_slot(self):
        self.assertEqual(self.renumberer.force_remove("7P66").reason, "slot_not_found")


def audit_space_issues(engine, space_id):
    with unit_of_work(engine) as db:
        return audit_space(db, space_id)


if __name__ == "__main__":
    unittest.main()
