"""Device-local key-value cache of guest workout and cardio records.

Records live under ``workout_<YYYY-MM-DD>_<exerciseId>`` and
``cardio_<YYYY-MM-DD>_<exerciseId>`` keys as JSON arrays. Reads never raise:
a missing or malformed entry is reported as absent and full scans skip it.
"""

from __future__ import annotations
import datetime
import json
import os
import re
import threading
from typing import Any, Callable, Iterator, NamedTuple, Optional

from loguru import logger
from pydantic import ValidationError

from algorithms import ProgressTools, WeightConverter
from models import CardioRecord, PreviousRecord, SetRecord, valid_cardio, valid_sets

WORKOUT = "workout"
CARDIO = "cardio"
CATEGORIES = (WORKOUT, CARDIO)

MAX_WEIGHT_CACHE_KEY = "max_weights_cache"
MAX_WEIGHT_CACHE_VERSION_KEY = "max_weights_cache_version"
MAX_WEIGHT_CACHE_VERSION = 2

GUEST_DATA_MIGRATED_KEY = "guest_data_migrated"
OLD_EXERCISES_KEY = "exercises"
GUEST_CUSTOM_EXERCISES_KEY = "musclegrow_guest_custom_exercises"
GUEST_SETTINGS_KEY = "musclegrow_guest_settings"
GUEST_PROFILE_KEY = "musclegrow_guest_profile"

_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


class MemoryStorage:
    """In-memory storage provider keeping insertion order."""

    def __init__(self, data: Optional[dict[str, str]] = None) -> None:
        self._data: dict[str, str] = dict(data or {})

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def remove(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self) -> list[str]:
        return list(self._data.keys())

    def snapshot(self) -> dict[str, str]:
        return dict(self._data)


class JsonFileStorage:
    """Storage provider persisting all keys in one JSON object file."""

    def __init__(self, path: str) -> None:
        self.path = path
        self._lock = threading.Lock()

    def _read(self) -> dict[str, str]:
        if not os.path.exists(self.path):
            return {}
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("Unreadable local store {}: {}", self.path, e)
            return {}
        if not isinstance(data, dict):
            return {}
        return {str(k): v for k, v in data.items() if isinstance(v, str)}

    def _write(self, data: dict[str, str]) -> None:
        directory = os.path.dirname(self.path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        tmp_path = f"{self.path}.tmp"
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)
        os.replace(tmp_path, self.path)

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._read().get(key)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            data = self._read()
            data[key] = value
            self._write(data)

    def remove(self, key: str) -> None:
        with self._lock:
            data = self._read()
            if key in data:
                del data[key]
                self._write(data)

    def keys(self) -> list[str]:
        with self._lock:
            return list(self._read().keys())

    def snapshot(self) -> dict[str, str]:
        with self._lock:
            return self._read()


class StorageKey(NamedTuple):
    category: str
    date: datetime.date
    exercise_id: str


def make_key(category: str, date: datetime.date | str, exercise_id: str) -> str:
    if category not in CATEGORIES:
        raise ValueError(f"unknown category: {category}")
    if isinstance(date, datetime.date):
        date = date.isoformat()
    if not _DATE_RE.match(date):
        raise ValueError(f"date must be YYYY-MM-DD: {date}")
    datetime.date.fromisoformat(date)  # rejects impossible days such as 2024-02-30
    if not exercise_id:
        raise ValueError("exercise_id must not be empty")
    return f"{category}_{date}_{exercise_id}"


def parse_storage_key(key: str) -> Optional[StorageKey]:
    """Split ``key`` into category, date and exercise id.

    The exercise id is everything after the second underscore, so it may
    itself contain underscores.
    """
    parts = key.split("_", 2)
    if len(parts) < 3 or parts[0] not in CATEGORIES:
        return None
    category, date_str, exercise_id = parts
    if not exercise_id or not _DATE_RE.match(date_str):
        return None
    try:
        date = datetime.date.fromisoformat(date_str)
    except ValueError:
        return None
    return StorageKey(category, date, exercise_id)


def _cardio_from_raw(item: Any) -> CardioRecord:
    if isinstance(item, dict) and isinstance(item.get("date"), str):
        item = dict(item)
        item["date"] = item["date"][:10]
    return CardioRecord.model_validate(item)


class LocalCacheStore:
    """Typed access to guest records held by a storage provider."""

    def __init__(self, storage=None) -> None:
        self.storage = storage if storage is not None else MemoryStorage()

    # raw entries -----------------------------------------------------

    def _load_array(self, key: str) -> Optional[list]:
        raw = self.storage.get(key)
        if not raw:
            return None
        try:
            data = json.loads(raw)
        except (TypeError, ValueError) as e:
            logger.warning("Failed to parse local entry {}: {}", key, e)
            return None
        if not isinstance(data, list):
            logger.warning("Local entry {} is not an array", key)
            return None
        return data

    def _iter_entries(self, category: str | None = None) -> Iterator[tuple[StorageKey, list]]:
        for key in self.storage.keys():
            parsed = parse_storage_key(key)
            if parsed is None:
                continue
            if category is not None and parsed.category != category:
                continue
            data = self._load_array(key)
            if data is None:
                continue
            yield parsed, data

    # record access ---------------------------------------------------

    def get(
        self, category: str, date: datetime.date | str, exercise_id: str
    ) -> Optional[list[SetRecord] | list[CardioRecord]]:
        """Return the records stored for one key or ``None``."""
        try:
            key = make_key(category, date, exercise_id)
        except ValueError:
            return None
        data = self._load_array(key)
        if data is None:
            return None
        try:
            if category == WORKOUT:
                return [SetRecord.model_validate(item) for item in data]
            return [_cardio_from_raw(item) for item in data]
        except ValidationError as e:
            logger.warning("Malformed records under {}: {}", key, e.error_count())
            return None

    def put(
        self,
        category: str,
        date: datetime.date | str,
        exercise_id: str,
        records: list,
    ) -> None:
        """Overwrite the records stored under one key."""
        key = make_key(category, date, exercise_id)
        payload = [
            r.model_dump(mode="json") if hasattr(r, "model_dump") else r
            for r in records
        ]
        self.storage.set(key, json.dumps(payload))

    def remove(self, category: str, date: datetime.date | str, exercise_id: str) -> None:
        self.storage.remove(make_key(category, date, exercise_id))

    # derived values --------------------------------------------------

    def compute_max_weights(self) -> dict[str, float]:
        """Return the heaviest positive weight per exercise across all dates."""
        result: dict[str, float] = {}
        for parsed, data in self._iter_entries(WORKOUT):
            for item in data:
                if not isinstance(item, dict):
                    continue
                weight = WeightConverter.to_number(item.get("weight"))
                if weight is None or weight <= 0:
                    continue
                current = result.get(parsed.exercise_id)
                if current is None or weight > current:
                    result[parsed.exercise_id] = weight
        return result

    def _valid(self, parsed: StorageKey, data: list) -> bool:
        try:
            if parsed.category == WORKOUT:
                return valid_sets([SetRecord.model_validate(i) for i in data])
            return valid_cardio([_cardio_from_raw(i) for i in data])
        except ValidationError:
            logger.debug("Skipping malformed entry {}", parsed)
            return False

    def compute_last_trained(self) -> dict[str, datetime.date]:
        """Return the latest date with valid data per exercise."""
        result: dict[str, datetime.date] = {}
        for parsed, data in self._iter_entries():
            if not self._valid(parsed, data):
                continue
            current = result.get(parsed.exercise_id)
            if current is None or parsed.date > current:
                result[parsed.exercise_id] = parsed.date
        return result

    def last_trained_by_body_part(
        self, body_parts: dict[str, str]
    ) -> dict[str, datetime.date | None]:
        """Aggregate last-trained dates using an exercise id to body part map."""
        dates = self.compute_last_trained()
        result: dict[str, datetime.date | None] = {
            part: None for part in set(body_parts.values())
        }
        for exercise_id, part in body_parts.items():
            date = dates.get(exercise_id)
            if date is not None and (result[part] is None or date > result[part]):
                result[part] = date
        return result

    def previous_record(
        self, reference_date: datetime.date, exercise_id: str, cardio: bool = False
    ) -> Optional[PreviousRecord]:
        """Return the latest valid record strictly before ``reference_date``."""
        category = CARDIO if cardio else WORKOUT
        best: Optional[PreviousRecord] = None
        for parsed, data in self._iter_entries(category):
            if parsed.exercise_id != exercise_id or parsed.date >= reference_date:
                continue
            if best is not None and parsed.date <= best.date:
                continue
            try:
                if cardio:
                    records = [_cardio_from_raw(i) for i in data]
                    if valid_cardio(records):
                        best = PreviousRecord(kind="cardio", date=parsed.date, records=records)
                else:
                    sets = [SetRecord.model_validate(i) for i in data]
                    if valid_sets(sets):
                        best = PreviousRecord(kind="workout", date=parsed.date, sets=sets)
            except ValidationError as e:
                logger.warning("Failed to parse previous record {}: {}", parsed, e.error_count())
        return best

    def previous_workout_record(
        self, reference_date: datetime.date, exercise_id: str
    ) -> Optional[PreviousRecord]:
        return self.previous_record(reference_date, exercise_id, cardio=False)

    def previous_cardio_record(
        self, reference_date: datetime.date, exercise_id: str
    ) -> Optional[PreviousRecord]:
        return self.previous_record(reference_date, exercise_id, cardio=True)

    def max_weight_by_date(
        self, exercise_id: str, start_date: datetime.date | None = None
    ) -> list[tuple[str, float]]:
        """Return (date, day max weight) rows for one exercise, warmups excluded."""
        by_date: dict[str, float] = {}
        for parsed, data in self._iter_entries(WORKOUT):
            if parsed.exercise_id != exercise_id:
                continue
            if start_date is not None and parsed.date < start_date:
                continue
            day_max = ProgressTools.day_max_weight(i for i in data if isinstance(i, dict))
            key = parsed.date.isoformat()
            if day_max > by_date.get(key, 0.0):
                by_date[key] = day_max
        return sorted(by_date.items())

    # versioned max weight cache ---------------------------------------

    def load_max_weight_cache(
        self, expected_version: int = MAX_WEIGHT_CACHE_VERSION
    ) -> dict[str, float]:
        """Return the cached max weights or ``{}`` when stale or unreadable."""
        version = self.storage.get(MAX_WEIGHT_CACHE_VERSION_KEY)
        if version != str(expected_version):
            if version is not None:
                logger.info(
                    "Discarding max weight cache version {} (expected {})",
                    version,
                    expected_version,
                )
            return {}
        raw = self.storage.get(MAX_WEIGHT_CACHE_KEY)
        if not raw:
            return {}
        try:
            data = json.loads(raw)
        except ValueError:
            return {}
        if not isinstance(data, dict):
            return {}
        result: dict[str, float] = {}
        for exercise_id, value in data.items():
            weight = WeightConverter.to_number(value)
            if weight is not None and weight >= 0:
                result[exercise_id] = weight
        return result

    def save_max_weight_cache(
        self, weights: dict[str, float], version: int = MAX_WEIGHT_CACHE_VERSION
    ) -> None:
        self.storage.set(MAX_WEIGHT_CACHE_KEY, json.dumps(weights))
        self.storage.set(MAX_WEIGHT_CACHE_VERSION_KEY, str(version))

    def refresh_max_weight_cache(
        self,
        scheduler,
        on_done: Callable[[dict[str, float]], None] | None = None,
        version: int = MAX_WEIGHT_CACHE_VERSION,
        on_error: Callable[[Exception], None] | None = None,
    ):
        """Recompute max weights on an idle tick and store them in the cache.

        A storage write failure is logged and handed to ``on_error``.
        """

        def _task() -> None:
            weights = self.compute_max_weights()
            try:
                self.save_max_weight_cache(weights, version)
            except OSError as e:
                logger.warning("Failed to write max weight cache: {}", e)
                if on_error is not None:
                    on_error(e)
                return
            if on_done is not None:
                on_done(weights)

        return scheduler.run_when_idle(_task)

    # guest data --------------------------------------------------------

    def _load_json(self, key: str, default: Any) -> Any:
        raw = self.storage.get(key)
        if not raw:
            return default
        try:
            return json.loads(raw)
        except ValueError:
            logger.warning("Ignoring malformed guest entry {}", key)
            return default

    def recorded_dates(self) -> list[str]:
        dates = {p.date.isoformat() for p in map(parse_storage_key, self.storage.keys()) if p}
        return sorted(dates)

    def entries_for_date(
        self, date: datetime.date | str
    ) -> tuple[list[tuple[str, list[SetRecord]]], list[tuple[str, list[CardioRecord]]]]:
        """Return valid (exercise_id, records) pairs stored for one date."""
        if isinstance(date, str):
            date = datetime.date.fromisoformat(date)
        workouts: list[tuple[str, list[SetRecord]]] = []
        cardio: list[tuple[str, list[CardioRecord]]] = []
        for parsed, _data in self._iter_entries():
            if parsed.date != date:
                continue
            records = self.get(parsed.category, parsed.date, parsed.exercise_id)
            if not records:
                continue
            if parsed.category == WORKOUT and valid_sets(records):
                workouts.append((parsed.exercise_id, records))
            elif parsed.category == CARDIO and valid_cardio(records):
                cardio.append((parsed.exercise_id, records))
        return workouts, cardio

    def load_custom_exercises(self) -> list[dict]:
        """Return guest custom exercises from the legacy and current keys."""
        seen: set[str] = set()
        result: list[dict] = []
        legacy = self._load_json(OLD_EXERCISES_KEY, [])
        current = self._load_json(GUEST_CUSTOM_EXERCISES_KEY, [])
        for source, skip_mock in ((legacy, True), (current, False)):
            if not isinstance(source, list):
                continue
            for ex in source:
                if not isinstance(ex, dict) or not ex.get("id"):
                    continue
                if skip_mock and str(ex["id"]).startswith("mock-"):
                    continue
                if ex["id"] in seen:
                    continue
                seen.add(ex["id"])
                result.append(ex)
        return result

    def load_guest_settings(self) -> dict[str, bool]:
        data = self._load_json(GUEST_SETTINGS_KEY, {})
        if not isinstance(data, dict):
            return {}
        return {str(k): bool(v) for k, v in data.items()}

    def load_guest_profile(self) -> Optional[dict]:
        data = self._load_json(GUEST_PROFILE_KEY, None)
        return data if isinstance(data, dict) else None

    def is_migrated(self) -> bool:
        return self.storage.get(GUEST_DATA_MIGRATED_KEY) == "true"

    def mark_migrated(self) -> None:
        self.storage.set(GUEST_DATA_MIGRATED_KEY, "true")

    def clear_guest_data(self) -> int:
        """Remove guest records and settings; return the number of keys removed."""
        guest_keys = {
            OLD_EXERCISES_KEY,
            GUEST_CUSTOM_EXERCISES_KEY,
            GUEST_SETTINGS_KEY,
            GUEST_PROFILE_KEY,
        }
        to_remove = [
            k
            for k in self.storage.keys()
            if k.startswith(f"{WORKOUT}_") or k.startswith(f"{CARDIO}_") or k in guest_keys
        ]
        for key in to_remove:
            self.storage.remove(key)
        return len(to_remove)
