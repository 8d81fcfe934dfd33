import os
import sys
import json
import datetime
import unittest

sys.path.append(os.path.dirname(os.path.dirname(__file__)))
from local_store import (
    LocalCacheStore,
    MemoryStorage,
    JsonFileStorage,
    make_key,
    parse_storage_key,
    MAX_WEIGHT_CACHE_KEY,
    MAX_WEIGHT_CACHE_VERSION_KEY,
    GUEST_DATA_MIGRATED_KEY,
)
from models import SetRecord, CardioRecord
from scheduler import SynchronousScheduler


class StorageKeyTest(unittest.TestCase):
    def test_parse_keeps_underscores_in_exercise_id(self) -> None:
        parsed = parse_storage_key("workout_2024-01-10_custom_row_1")
        self.assertEqual(parsed.category, "workout")
        self.assertEqual(parsed.date, datetime.date(2024, 1, 10))
        self.assertEqual(parsed.exercise_id, "custom_row_1")

    def test_parse_rejects_invalid_keys(self) -> None:
        for key in [
            "workout_2024-01-10",
            "yoga_2024-01-10_ex1",
            "cardio_20240110_ex1",
            "workout_2024-02-30_ex1",
            "workout_2024-01-10_",
            "max_weights_cache",
        ]:
            self.assertIsNone(parse_storage_key(key), key)

    def test_make_key_validates(self) -> None:
        self.assertEqual(
            make_key("cardio", datetime.date(2024, 3, 1), "run"),
            "cardio_2024-03-01_run",
        )
        with self.assertRaises(ValueError):
            make_key("yoga", "2024-03-01", "run")
        with self.assertRaises(ValueError):
            make_key("workout", "2024/03/01", "bench")


class LocalCacheStoreTest(unittest.TestCase):
    def setUp(self) -> None:
        self.storage = MemoryStorage()
        self.store = LocalCacheStore(self.storage)

    def _raw(self, key: str, value) -> None:
        self.storage.set(key, value if isinstance(value, str) else json.dumps(value))

    def test_put_and_get_round_trip(self) -> None:
        self.store.put("workout", "2024-01-10", "bench", [SetRecord(weight=80, reps=5)])
        sets = self.store.get("workout", "2024-01-10", "bench")
        self.assertEqual(len(sets), 1)
        self.assertEqual(sets[0].weight, 80)
        self.assertIsNone(self.store.get("workout", "2024-01-11", "bench"))

    def test_get_never_raises_on_malformed(self) -> None:
        self._raw("workout_2024-01-10_bench", "{not json")
        self.assertIsNone(self.store.get("workout", "2024-01-10", "bench"))
        self._raw("workout_2024-01-11_bench", {"weight": 80})
        self.assertIsNone(self.store.get("workout", "2024-01-11", "bench"))
        self._raw("workout_2024-01-12_bench", [{"weight": "heavy"}])
        self.assertIsNone(self.store.get("workout", "2024-01-12", "bench"))
        self.assertIsNone(self.store.get("workout", "not-a-date", "bench"))

    def test_compute_max_weights(self) -> None:
        self._raw("workout_2024-01-10_bench", [{"weight": 80, "reps": 5}, {"weight": "82.5", "reps": 3}])
        self._raw("workout_2024-01-12_bench", [{"weight": 75, "reps": 8}])
        self._raw("workout_2024-01-12_squat", [{"weight": 0, "reps": 10}, {"weight": -5, "reps": 1}])
        self._raw("workout_2024-01-13_row", "broken")
        self._raw("workout_2024-01-14_dip", [{"weight": "abc", "reps": 5}, {"weight": 20, "reps": 5}])
        self._raw("cardio_2024-01-10_run", [{"duration": 30, "weight": 500}])
        self.assertEqual(self.store.compute_max_weights(), {"bench": 82.5, "dip": 20.0})

    def test_compute_max_weights_skips_non_finite(self) -> None:
        self._raw("workout_2024-01-10_bench", [{"weight": "inf", "reps": 1}, {"weight": 80, "reps": 5}])
        self._raw("workout_2024-01-11_bench", [{"weight": "1e999", "reps": 1}])
        self._raw("workout_2024-01-12_squat", '[{"weight": Infinity, "reps": 1}]')
        self.assertEqual(self.store.compute_max_weights(), {"bench": 80.0})

    def test_impossible_date_is_rejected(self) -> None:
        with self.assertRaises(ValueError):
            make_key("workout", "2024-02-30", "bench")
        with self.assertRaises(ValueError):
            self.store.put("workout", "2024-02-30", "bench", [SetRecord(weight=100, reps=1)])
        self.assertEqual(self.storage.keys(), [])
        self.assertIsNone(self.store.get("workout", "2024-02-30", "bench"))

    def test_compute_last_trained_uses_valid_entries(self) -> None:
        self._raw("workout_2024-01-10_bench", [{"weight": 80, "reps": 5}])
        self._raw("workout_2024-01-15_bench", [{"weight": None, "reps": 0}])
        self._raw("cardio_2024-01-12_run", [{"date": "2024-01-12T07:00:00.000Z", "duration": 30}])
        self._raw("cardio_2024-01-20_run", [{"duration": 0, "distance": None}])
        self._raw("workout_2024-01-09_plank", [{"weight": None, "reps": 0, "duration": 60}])
        result = self.store.compute_last_trained()
        self.assertEqual(
            result,
            {
                "bench": datetime.date(2024, 1, 10),
                "run": datetime.date(2024, 1, 12),
                "plank": datetime.date(2024, 1, 9),
            },
        )

    def test_previous_record_strictly_before_reference(self) -> None:
        self._raw("workout_2024-02-20_bench", [{"weight": 80, "reps": 5}])
        self._raw("workout_2024-03-01_bench", [{"weight": 85, "reps": 5}])
        self._raw("workout_2024-03-05_bench", [{"weight": 90, "reps": 5}])
        record = self.store.previous_workout_record(datetime.date(2024, 3, 1), "bench")
        self.assertEqual(record.kind, "workout")
        self.assertEqual(record.date, datetime.date(2024, 2, 20))
        self.assertEqual(record.sets[0].weight, 80)
        self.assertIsNone(self.store.previous_workout_record(datetime.date(2024, 2, 20), "bench"))

    def test_previous_cardio_record_skips_invalid(self) -> None:
        self._raw("cardio_2024-02-10_run", [{"duration": 20, "distance": 4}])
        self._raw("cardio_2024-02-15_run", [{"duration": 0}])
        record = self.store.previous_cardio_record(datetime.date(2024, 3, 1), "run")
        self.assertEqual(record.kind, "cardio")
        self.assertEqual(record.date, datetime.date(2024, 2, 10))
        self.assertEqual(record.records[0].distance, 4)

    def test_cache_version_mismatch_is_empty(self) -> None:
        self.storage.set(MAX_WEIGHT_CACHE_KEY, json.dumps({"bench": 80}))
        self.storage.set(MAX_WEIGHT_CACHE_VERSION_KEY, "1")
        self.assertEqual(self.store.load_max_weight_cache(2), {})
        self.storage.set(MAX_WEIGHT_CACHE_VERSION_KEY, "2")
        self.assertEqual(self.store.load_max_weight_cache(2), {"bench": 80.0})

    def test_refresh_max_weight_cache(self) -> None:
        self._raw("workout_2024-01-10_bench", [{"weight": 80, "reps": 5}])
        seen = []
        handle = self.store.refresh_max_weight_cache(SynchronousScheduler(), on_done=seen.append)
        self.assertTrue(handle.done)
        self.assertEqual(seen, [{"bench": 80.0}])
        self.assertEqual(self.store.load_max_weight_cache(), {"bench": 80.0})
        self.assertEqual(self.storage.get(MAX_WEIGHT_CACHE_VERSION_KEY), "2")

    def test_refresh_reports_write_failure(self) -> None:
        class ReadOnlyStorage(MemoryStorage):
            def set(self, key: str, value: str) -> None:
                raise OSError("read-only")

        store = LocalCacheStore(ReadOnlyStorage())
        done, errors = [], []
        store.refresh_max_weight_cache(
            SynchronousScheduler(), on_done=done.append, on_error=errors.append
        )
        self.assertEqual(done, [])
        self.assertIsInstance(errors[0], OSError)

    def test_max_weight_by_date_excludes_warmups(self) -> None:
        self._raw(
            "workout_2024-01-10_bench",
            [{"weight": 100, "reps": 3, "is_warmup": True}, {"weight": 80, "reps": 5}],
        )
        self._raw("workout_2024-01-05_bench", [{"weight": 70, "reps": 5}])
        self.assertEqual(
            self.store.max_weight_by_date("bench"),
            [("2024-01-05", 70.0), ("2024-01-10", 80.0)],
        )
        self.assertEqual(
            self.store.max_weight_by_date("bench", datetime.date(2024, 1, 6)),
            [("2024-01-10", 80.0)],
        )

    def test_entries_for_date_and_recorded_dates(self) -> None:
        self.store.put("workout", "2024-01-10", "bench", [SetRecord(weight=80, reps=5)])
        self.store.put("workout", "2024-01-10", "squat", [SetRecord(reps=0)])
        self.store.put("cardio", "2024-01-10", "run", [CardioRecord(duration=30)])
        self.store.put("cardio", "2024-01-11", "run", [CardioRecord(duration=25)])
        self.assertEqual(self.store.recorded_dates(), ["2024-01-10", "2024-01-11"])
        workouts, cardio = self.store.entries_for_date("2024-01-10")
        self.assertEqual([w[0] for w in workouts], ["bench"])
        self.assertEqual([c[0] for c in cardio], ["run"])

    def test_guest_data_clear_and_marker(self) -> None:
        self.store.put("workout", "2024-01-10", "bench", [SetRecord(weight=80, reps=5)])
        self._raw("exercises", [{"id": "mock-bench-press", "name": "Bench"}, {"id": "c1", "name": "Row", "bodyPart": "back"}])
        self._raw("musclegrow_guest_custom_exercises", [{"id": "c1", "name": "Row"}, {"id": "c2", "name": "Dip", "bodyPart": "arms"}])
        self._raw("musclegrow_guest_settings", {"bench-press": False})
        self.storage.set("theme", "dark")
        self.assertEqual([e["id"] for e in self.store.load_custom_exercises()], ["c1", "c2"])
        self.assertEqual(self.store.load_guest_settings(), {"bench-press": False})
        self.assertEqual(self.store.clear_guest_data(), 4)
        self.assertEqual(self.storage.keys(), ["theme"])
        self.assertFalse(self.store.is_migrated())
        self.store.mark_migrated()
        self.assertEqual(self.storage.get(GUEST_DATA_MIGRATED_KEY), "true")
        self.assertTrue(self.store.is_migrated())

    def test_last_trained_by_body_part(self) -> None:
        self._raw("workout_2024-01-10_bench", [{"weight": 80, "reps": 5}])
        self._raw("workout_2024-01-12_fly", [{"weight": 15, "reps": 12}])
        result = self.store.last_trained_by_body_part(
            {"bench": "chest", "fly": "chest", "squat": "legs"}
        )
        self.assertEqual(result, {"chest": datetime.date(2024, 1, 12), "legs": None})


class JsonFileStorageTest(unittest.TestCase):
    def setUp(self) -> None:
        self.path = "test_guest_store.json"
        if os.path.exists(self.path):
            os.remove(self.path)

    def tearDown(self) -> None:
        if os.path.exists(self.path):
            os.remove(self.path)

    def test_persists_between_instances(self) -> None:
        store = LocalCacheStore(JsonFileStorage(self.path))
        store.put("workout", "2024-01-10", "bench", [SetRecord(weight=80, reps=5)])
        reopened = LocalCacheStore(JsonFileStorage(self.path))
        self.assertEqual(reopened.compute_max_weights(), {"bench": 80.0})
        reopened.storage.remove("workout_2024-01-10_bench")
        self.assertEqual(JsonFileStorage(self.path).keys(), [])

    def test_unreadable_file_is_empty(self) -> None:
        with open(self.path, "w", encoding="utf-8") as f:
            f.write("[1, 2")
        self.assertEqual(JsonFileStorage(self.path).keys(), [])


if __name__ == "__main__":
    unittest.main()
