import tempfile
import threading
import unittest
from datetime import date, datetime
from pathlib import Path
from unittest import mock

import yaml

from stay_booking import (
    RejectionReason,
    Stay,
    StayConflictError,
    StayEventType,
    StayNotFoundError,
    StayStorageError,
    StayValidationError,
    StayYamlRepository,
    book_stay,
    extend_stay,
)

NOW = datetime(2026, 2, 24, 9, 0)


def _events(data_dir: Path) -> list[dict]:
    return yaml.safe_load((data_dir / "stay_events.yaml").read_text(encoding="utf-8"))


class TestStayYamlRepositoryQueries(unittest.TestCase):
    def setUp(self) -> None:
        self._temp_dir = tempfile.TemporaryDirectory()
        self.repo = StayYamlRepository(Path(self._temp_dir.name) / "data")
        self.first = self.repo.create(Stay("GuestA", "1", date(2026, 2, 20), 3), now=NOW)
        self.second = self.repo.create(Stay("GuestB", "1", date(2026, 2, 24), 2), now=NOW)
        self.third = self.repo.create(Stay("GuestC", "2", date(2026, 2, 24), 4), now=NOW)

    def tearDown(self) -> None:
        self._temp_dir.cleanup()

    def test_create_assigns_ids(self) -> None:
        ids = {self.first.id, self.second.id, self.third.id}
        self.assertEqual(len(ids), 3)
        self.assertNotIn(None, ids)

    def test_find_by_guest_and_unit(self) -> None:
        self.assertEqual(self.repo.find_by_guest_and_unit("GuestA", "1"), [self.first])
        self.assertEqual(self.repo.find_by_guest_and_unit("GuestA", "2"), [])

    def test_find_by_guest(self) -> None:
        self.assertEqual(self.repo.find_by_guest("GuestC"), [self.third])

    def test_check_in_on_or_before_is_inclusive(self) -> None:
        found = self.repo.find_by_unit_check_in_on_or_before("1", date(2026, 2, 24))
        self.assertEqual(found, [self.first, self.second])

        found = self.repo.find_by_unit_check_in_on_or_before("1", date(2026, 2, 23))
        self.assertEqual(found, [self.first])

    def test_check_in_on_or_before_honours_exclude_id(self) -> None:
        found = self.repo.find_by_unit_check_in_on_or_before("1", date(2026, 2, 24), exclude_id=self.second.id)
        self.assertEqual(found, [self.first])

    def test_check_in_range_is_inclusive_on_both_ends(self) -> None:
        found = self.repo.find_by_unit_check_in_in_range("1", date(2026, 2, 20), date(2026, 2, 24))
        self.assertEqual(found, [self.first, self.second])

        found = self.repo.find_by_unit_check_in_in_range("1", date(2026, 2, 21), date(2026, 2, 23))
        self.assertEqual(found, [])

    def test_check_in_range_honours_exclude_id(self) -> None:
        found = self.repo.find_by_unit_check_in_in_range(
            "1",
            date(2026, 2, 20),
            date(2026, 2, 24),
            exclude_id=self.first.id,
        )
        self.assertEqual(found, [self.second])

    def test_find_one(self) -> None:
        self.assertEqual(self.repo.find_one("GuestB", "1", date(2026, 2, 24)), self.second)
        self.assertIsNone(self.repo.find_one("GuestB", "1", date(2026, 2, 25)))

    def test_update_nights_keeps_identity(self) -> None:
        updated = self.repo.update_nights(self.second.id, 5, now=datetime(2026, 2, 24, 10, 0))

        self.assertEqual(updated.id, self.second.id)
        self.assertEqual(updated.check_in, self.second.check_in)
        self.assertEqual(updated.nights, 5)

        record = next(row for row in self.repo.get_records() if row.stay_id == self.second.id)
        self.assertEqual(record.created_at, NOW)
        self.assertEqual(record.updated_at, datetime(2026, 2, 24, 10, 0))

    def test_update_nights_unknown_id_raises(self) -> None:
        with self.assertRaises(StayNotFoundError):
            self.repo.update_nights("missing", 3)

    def test_create_enforces_unique_guest_unit(self) -> None:
        with self.assertRaises(StayConflictError):
            self.repo.create(Stay("GuestA", "1", date(2026, 5, 1), 1), now=NOW)


class TestStayYamlRepositoryFiles(unittest.TestCase):
    def test_records_survive_a_new_repository_instance(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            data_dir = Path(temp_dir) / "data"
            created = StayYamlRepository(data_dir).create(Stay("GuestA", "1", date(2026, 2, 24), 5), now=NOW)

            reopened = StayYamlRepository(data_dir)
            self.assertEqual(reopened.get_stays(), [created])

    def test_corrupted_yaml_is_recovered(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            data_dir = Path(temp_dir) / "data"
            repo = StayYamlRepository(data_dir)
            stays_path = data_dir / "stays.yaml"
            stays_path.write_text("this: [is: invalid", encoding="utf-8")

            self.assertEqual(repo.get_stays(), [])
            self.assertIn("[]", stays_path.read_text(encoding="utf-8"))
            self.assertEqual(len(list(data_dir.glob("stays.corrupt.*.yaml"))), 1)
            self.assertIn("YAML_RECOVERED", [event["event_type"] for event in _events(data_dir)])

    def test_non_mapping_rows_are_skipped(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            data_dir = Path(temp_dir) / "data"
            repo = StayYamlRepository(data_dir)
            created = repo.create(Stay("GuestA", "1", date(2026, 2, 24), 5), now=NOW)

            rows = yaml.safe_load((data_dir / "stays.yaml").read_text(encoding="utf-8"))
            rows.append("not a row")
            (data_dir / "stays.yaml").write_text(yaml.safe_dump(rows), encoding="utf-8")

            self.assertEqual(repo.get_stays(), [created])
            self.assertIn("YAML_ROW_SKIPPED", [event["event_type"] for event in _events(data_dir)])

    def _store_with_rewritten_row(self, data_dir: Path, rewrite) -> StayYamlRepository:
        repo = StayYamlRepository(data_dir)
        repo.create(Stay("GuestA", "1", date(2026, 2, 24), 5), now=NOW)
        rows = yaml.safe_load((data_dir / "stays.yaml").read_text(encoding="utf-8"))
        rewrite(rows[0])
        (data_dir / "stays.yaml").write_text(yaml.safe_dump(rows), encoding="utf-8")
        return repo

    def test_row_with_invalid_nights_is_a_storage_fault(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            repo = self._store_with_rewritten_row(Path(temp_dir) / "data", lambda row: row.update(nights=0))

            with self.assertRaises(StayStorageError):
                repo.get_stays()
            with self.assertRaises(StayStorageError):
                book_stay(repo, "GuestB", "2", "2026-03-10", 2, now=NOW)

    def test_row_with_missing_key_is_a_storage_fault(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            repo = self._store_with_rewritten_row(Path(temp_dir) / "data", lambda row: row.pop("nights"))

            with self.assertRaises(StayStorageError):
                repo.find_by_guest("GuestA")


class TestBookAndExtendStay(unittest.TestCase):
    def test_book_stay_creates_and_logs(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            data_dir = Path(temp_dir) / "data"
            repo = StayYamlRepository(data_dir)

            created, result = book_stay(repo, " GuestA ", "1", "2026-02-24", 5, now=NOW)

            self.assertTrue(result.allowed)
            self.assertIsNotNone(created)
            self.assertEqual(created.guest, "GuestA")
            self.assertEqual(created.check_in, date(2026, 2, 24))
            self.assertEqual(repo.get_stays(), [created])

            events = _events(data_dir)
            self.assertEqual(events[-1]["event_type"], "STAY_CREATED")
            self.assertEqual(events[-1]["event_time"], "2026-02-24T09:00:00")

    def test_book_stay_rejection_is_logged_not_stored(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            data_dir = Path(temp_dir) / "data"
            repo = StayYamlRepository(data_dir)
            book_stay(repo, "GuestA", "1", "2026-02-24", 5, now=NOW)

            created, result = book_stay(repo, "GuestB", "1", "2026-02-24", 5, now=NOW)

            self.assertIsNone(created)
            self.assertEqual(result.reason, RejectionReason.UNIT_OCCUPIED)
            self.assertEqual(len(repo.get_stays()), 1)

            last = _events(data_dir)[-1]
            self.assertEqual(last["event_type"], "STAY_REJECTED")
            self.assertEqual(last["payload"]["operation"], "create")
            self.assertEqual(last["payload"]["reason"], "UNIT_OCCUPIED")

    def test_book_stay_validates_before_rules(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            data_dir = Path(temp_dir) / "data"
            repo = StayYamlRepository(data_dir)

            for nights in (0, -1, "5", 2.5, None):
                with self.subTest(nights=nights):
                    with self.assertRaises(StayValidationError):
                        book_stay(repo, "GuestA", "1", "2026-02-24", nights, now=NOW)

            with self.assertRaises(StayValidationError):
                book_stay(repo, "GuestA", "1", "24/02/2026", 5, now=NOW)
            with self.assertRaises(StayValidationError):
                book_stay(repo, "", "1", "2026-02-24", 5, now=NOW)

            self.assertEqual(_events(data_dir), [])

    def test_extend_stay_updates_nights(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            data_dir = Path(temp_dir) / "data"
            repo = StayYamlRepository(data_dir)
            created, _ = book_stay(repo, "GuestA", "1", "2026-02-24", 5, now=NOW)

            updated, result = extend_stay(repo, "GuestA", "1", "2026-02-24", 6, now=NOW)

            self.assertTrue(result.allowed)
            self.assertEqual(updated.id, created.id)
            self.assertEqual(updated.nights, 6)
            self.assertEqual(_events(data_dir)[-1]["event_type"], "STAY_EXTENDED")

    def test_extend_stay_rejections(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            repo = StayYamlRepository(Path(temp_dir) / "data")
            book_stay(repo, "GuestA", "1", "2026-02-24", 5, now=NOW)

            updated, result = extend_stay(repo, "GuestA", "1", "2026-02-24", 5, now=NOW)
            self.assertIsNone(updated)
            self.assertEqual(result.reason, RejectionReason.CANNOT_SHORTEN)

            updated, result = extend_stay(repo, "GuestA", "1", "2026-02-25", 9, now=NOW)
            self.assertIsNone(updated)
            self.assertEqual(result.reason, RejectionReason.NOT_FOUND)

            self.assertEqual(repo.get_stays()[0].nights, 5)

    def test_rejection_survives_event_log_write_failure(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            repo = StayYamlRepository(Path(temp_dir) / "data")
            book_stay(repo, "GuestA", "1", "2026-02-24", 5, now=NOW)

            with mock.patch.object(repo, "_log_event", side_effect=StayStorageError("disk full")):
                created, result = book_stay(repo, "GuestB", "1", "2026-02-24", 5, now=NOW)
                updated, extend_result = extend_stay(repo, "GuestA", "1", "2026-02-24", 5, now=NOW)

            self.assertIsNone(created)
            self.assertEqual(result.reason, RejectionReason.UNIT_OCCUPIED)
            self.assertIsNone(updated)
            self.assertEqual(extend_result.reason, RejectionReason.CANNOT_SHORTEN)

    def test_extend_stay_validates_range_before_lookup(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            data_dir = Path(temp_dir) / "data"
            repo = StayYamlRepository(data_dir)

            with self.assertRaises(StayValidationError):
                extend_stay(repo, "GuestA", "1", "2026-02-24", 10**7, now=NOW)
            self.assertEqual(_events(data_dir), [])

    def test_event_types_are_typed(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            data_dir = Path(temp_dir) / "data"
            repo = StayYamlRepository(data_dir)
            book_stay(repo, "GuestA", "1", "2026-02-24", 5, now=NOW)
            extend_stay(repo, "GuestA", "1", "2026-02-24", 6, now=NOW)
            book_stay(repo, "GuestA", "1", "2026-02-24", 5, now=NOW)

            self.assertEqual(
                [event["event_type"] for event in _events(data_dir)],
                [StayEventType.STAY_CREATED.value, StayEventType.STAY_EXTENDED.value, StayEventType.STAY_REJECTED.value],
            )
            self.assertEqual(_events(data_dir)[0]["payload"]["nights"], 5)

    def test_concurrent_bookings_for_one_unit_admit_one(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            repo = StayYamlRepository(Path(temp_dir) / "data")
            results: list = []
            barrier = threading.Barrier(4)

            def attempt(guest: str) -> None:
                barrier.wait()
                results.append(book_stay(repo, guest, "1", "2026-02-24", 3, now=NOW))

            threads = [threading.Thread(target=attempt, args=(f"Guest{i}",)) for i in range(4)]
            for thread in threads:
                thread.start()
            for thread in threads:
                thread.join()

            admitted = [stay for stay, result in results if result.allowed]
            self.assertEqual(len(admitted), 1)
            self.assertEqual(len(repo.get_stays()), 1)


if __name__ == "__main__":
    unittest.main()
