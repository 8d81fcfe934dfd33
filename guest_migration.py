"""Copy a guest's device-local data into their new account."""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Callable, Optional

from loguru import logger

from db import Database
from local_store import LocalCacheStore
from models import Exercise, Profile
from remote_data import RemoteDataAccessor

# Guest builds ship the exercise master under "mock-" ids.
GUEST_EXERCISE_CATALOG = [
    Exercise(
        id=f"mock-{ex_id}",
        name=name,
        name_en=name,
        body_part=body_part,
        is_big3=bool(is_big3),
        is_cardio=bool(is_cardio),
    )
    for ex_id, name, body_part, is_big3, is_cardio in Database._DEFAULT_EXERCISES
]


@dataclass
class MigrationReport:
    migrated: bool = False
    skipped: bool = False
    exercises_created: int = 0
    dates_migrated: list[str] = field(default_factory=list)
    sets_saved: int = 0
    cardio_saved: int = 0
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "migrated": self.migrated,
            "skipped": self.skipped,
            "exercises_created": self.exercises_created,
            "dates_migrated": list(self.dates_migrated),
            "sets_saved": self.sets_saved,
            "cardio_saved": self.cardio_saved,
            "errors": list(self.errors),
        }


def exercise_id_mapper(
    local_exercises: list[Exercise], remote_exercises: list[Exercise]
) -> Callable[[str], Optional[str]]:
    """Return a function mapping local exercise ids onto remote ids.

    A local id is kept when the remote store knows it and it is not a guest
    catalog id. Otherwise the local exercise is looked up by name and body
    part, then by name alone.
    """
    local_by_id = {ex.id: ex for ex in local_exercises}
    remote_ids = {ex.id for ex in remote_exercises}
    by_name_and_part: dict[tuple[str, str], str] = {}
    for ex in remote_exercises:
        by_name_and_part.setdefault((ex.name, ex.body_part), ex.id)

    def _map(local_id: str) -> Optional[str]:
        if not local_id.startswith("mock-") and local_id in remote_ids:
            return local_id
        local = local_by_id.get(local_id)
        if local is None:
            return None
        mapped = by_name_and_part.get((local.name, local.body_part))
        if mapped:
            return mapped
        for ex in remote_exercises:
            if ex.name == local.name:
                return ex.id
        return None

    return _map


def _exercise_from_guest(raw: dict) -> Optional[Exercise]:
    name = raw.get("name")
    body_part = raw.get("body_part") or raw.get("bodyPart")
    if not name or not body_part:
        return None
    return Exercise(
        id=str(raw["id"]),
        name=name,
        name_en=raw.get("name_en") or raw.get("nameEn"),
        body_part=body_part,
        is_cardio=bool(raw.get("is_cardio") or raw.get("isCardio")),
    )


def _profile_from_guest(raw: dict) -> Profile:
    aliases = {
        "bodyFat": "body_fat",
        "muscleMass": "muscle_mass",
        "big3TargetBenchPress": "big3_target_bench_press",
        "big3TargetSquat": "big3_target_squat",
        "big3TargetDeadlift": "big3_target_deadlift",
    }
    values = {aliases.get(k, k): v for k, v in raw.items()}
    return Profile(**{k: v for k, v in values.items() if k in Profile.model_fields})


class GuestDataMigrator:
    """Copies guest-only local records into the remote store for a user."""

    def __init__(self, local: LocalCacheStore, remote: RemoteDataAccessor) -> None:
        self.local = local
        self.remote = remote

    async def _migrate_custom_exercises(
        self, user_id: str, exercises: list[Exercise], report: MigrationReport
    ) -> None:
        for ex in exercises:
            result = await self.remote.save_exercise(
                user_id, ex.name, ex.body_part, ex.name_en, ex.is_cardio
            )
            if result.success:
                report.exercises_created += 1
            else:
                # a custom exercise that cannot be saved is skipped, not fatal
                logger.warning("Skipping custom exercise {}: {}", ex.name, result.error)

    async def _migrate_settings(self, user_id: str) -> None:
        for exercise_id, visible in self.local.load_guest_settings().items():
            result = await self.remote.set_exercise_visibility(user_id, exercise_id, visible)
            if not result.success:
                logger.warning("Skipping visibility for {}: {}", exercise_id, result.error)

    async def _migrate_profile(self, user_id: str) -> None:
        raw = self.local.load_guest_profile()
        if raw is None:
            return
        try:
            profile = _profile_from_guest(raw)
        except ValueError as e:
            logger.warning("Ignoring malformed guest profile: {}", e)
            return
        result = await self.remote.save_profile(user_id, profile)
        if not result.success:
            logger.warning("Guest profile not migrated: {}", result.error)

    async def _migrate_date(
        self,
        user_id: str,
        date: str,
        map_id: Callable[[str], Optional[str]],
        report: MigrationReport,
    ) -> bool:
        workouts, cardio = self.local.entries_for_date(date)
        if not workouts and not cardio:
            return True
        session = await self.remote.save_workout_session(user_id, date)
        if not session.success:
            report.errors.append(f"{date}: {session.error}")
            return False
        session_id = session.data
        existing = await self.remote.recorded_exercise_ids(session_id)
        workout_ids, cardio_ids = existing.data if existing.success else (set(), set())

        for exercise_id, sets in workouts:
            mapped = map_id(exercise_id)
            if not mapped or mapped in workout_ids:
                logger.debug("Not migrating sets for {} on {}", exercise_id, date)
                continue
            saved = await self.remote.save_sets(session_id, mapped, sets)
            if saved.success:
                report.sets_saved += saved.data
            else:
                report.errors.append(f"{date} {exercise_id}: {saved.error}")
        for exercise_id, records in cardio:
            mapped = map_id(exercise_id)
            if not mapped or mapped in cardio_ids:
                logger.debug("Not migrating cardio for {} on {}", exercise_id, date)
                continue
            saved = await self.remote.save_cardio_records(session_id, mapped, records)
            if saved.success:
                report.cardio_saved += saved.data
            else:
                report.errors.append(f"{date} {exercise_id}: {saved.error}")
        report.dates_migrated.append(date)
        return True

    async def migrate(self, user_id: str) -> MigrationReport:
        """Run the migration once; guest data is cleared only on full success."""
        report = MigrationReport()
        if self.local.is_migrated():
            report.skipped = True
            return report

        local_custom = [
            ex
            for ex in map(_exercise_from_guest, self.local.load_custom_exercises())
            if ex is not None
        ]
        if local_custom:
            await self._migrate_custom_exercises(user_id, local_custom, report)
        await self._migrate_settings(user_id)
        await self._migrate_profile(user_id)

        remote_exercises = await self.remote.fetch_exercises(user_id)
        if not remote_exercises.success or not remote_exercises.data:
            report.errors.append(remote_exercises.error or "no exercises available")
            logger.warning("Guest migration aborted for {}: no remote exercises", user_id)
            return report
        map_id = exercise_id_mapper(
            local_custom + GUEST_EXERCISE_CATALOG, remote_exercises.data
        )

        for date in self.local.recorded_dates():
            await self._migrate_date(user_id, date, map_id, report)

        if report.errors:
            logger.warning(
                "Guest migration for {} finished with {} errors", user_id, len(report.errors)
            )
            return report
        removed = self.local.clear_guest_data()
        self.local.mark_migrated()
        report.migrated = True
        logger.info(
            "Migrated guest data for {}: {} dates, {} keys cleared",
            user_id,
            len(report.dates_migrated),
            removed,
        )
        return report
