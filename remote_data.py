"""Async accessors over the remote store returning ``Result`` values.

Every accessor catches storage errors and reports them through
``Result.fail``; none of them raise to the caller.
"""

from __future__ import annotations
import datetime
import sqlite3
from typing import Optional

from loguru import logger

from db import (
    AsyncCardioRepository,
    AsyncExerciseRepository,
    AsyncProfileRepository,
    AsyncSetRepository,
    AsyncWorkoutSessionRepository,
)
from models import CardioRecord, Exercise, Profile, Result, SetRecord

_ERRORS = (sqlite3.Error, ValueError, OSError)


def _iso(date: datetime.date | str) -> str:
    if isinstance(date, datetime.date):
        return date.isoformat()
    return datetime.date.fromisoformat(date).isoformat()


class RemoteDataAccessor:
    """Typed access to a user's durable records."""

    def __init__(self, db_path: str = "workout.db") -> None:
        self.sessions = AsyncWorkoutSessionRepository(db_path)
        self.sets = AsyncSetRepository(db_path)
        self.cardio = AsyncCardioRepository(db_path)
        self.exercises = AsyncExerciseRepository(db_path)
        self.profiles = AsyncProfileRepository(db_path)

    @staticmethod
    def _fail(operation: str, exc: Exception) -> Result:
        logger.warning("Remote {} failed: {}", operation, exc)
        return Result.fail(f"{operation} failed: {exc}")

    async def fetch_max_weights(self, user_id: str) -> Result[dict[str, float]]:
        try:
            return Result.ok(await self.sets.max_weights(user_id))
        except _ERRORS as e:
            return self._fail("fetch_max_weights", e)

    async def fetch_last_trained(self, user_id: str) -> Result[dict[str, datetime.date]]:
        try:
            return Result.ok(await self.sets.last_trained(user_id))
        except _ERRORS as e:
            return self._fail("fetch_last_trained", e)

    async def fetch_latest_set_record(
        self, user_id: str, exercise_id: str, before_date: datetime.date | str
    ) -> Result[Optional[dict]]:
        """Return ``{"sets", "date"}`` for the latest session before a date."""
        try:
            found = await self.sets.latest_before(user_id, exercise_id, _iso(before_date))
        except _ERRORS as e:
            return self._fail("fetch_latest_set_record", e)
        if found is None:
            return Result.ok(None)
        date, sets = found
        return Result.ok({"sets": sets, "date": date})

    async def fetch_latest_cardio_record(
        self, user_id: str, exercise_id: str, before_date: datetime.date | str
    ) -> Result[Optional[dict]]:
        try:
            found = await self.cardio.latest_before(user_id, exercise_id, _iso(before_date))
        except _ERRORS as e:
            return self._fail("fetch_latest_cardio_record", e)
        if found is None:
            return Result.ok(None)
        date, records = found
        return Result.ok({"records": records, "date": date})

    # writes ------------------------------------------------------------

    async def save_workout_session(
        self,
        user_id: str,
        date: datetime.date | str,
        note: Optional[str] = None,
        duration_minutes: Optional[int] = None,
    ) -> Result[str]:
        try:
            sid = await self.sessions.upsert(user_id, _iso(date), note, duration_minutes)
        except _ERRORS as e:
            return self._fail("save_workout_session", e)
        return Result.ok(sid)

    async def recorded_exercise_ids(self, session_id: str) -> Result[tuple[set[str], set[str]]]:
        try:
            return Result.ok(await self.sessions.recorded_exercise_ids(session_id))
        except _ERRORS as e:
            return self._fail("recorded_exercise_ids", e)

    async def save_sets(
        self, session_id: str, exercise_id: str, sets: list[SetRecord]
    ) -> Result[int]:
        try:
            if await self.exercises.fetch(exercise_id) is None:
                raise ValueError(f"exercise {exercise_id} not found")
            return Result.ok(await self.sets.save(session_id, exercise_id, sets))
        except _ERRORS as e:
            return self._fail("save_sets", e)

    async def save_cardio_records(
        self, session_id: str, exercise_id: str, records: list[CardioRecord]
    ) -> Result[int]:
        try:
            if await self.exercises.fetch(exercise_id) is None:
                raise ValueError(f"exercise {exercise_id} not found")
            return Result.ok(await self.cardio.save(session_id, exercise_id, records))
        except _ERRORS as e:
            return self._fail("save_cardio_records", e)

    async def fetch_exercises(self, user_id: Optional[str] = None) -> Result[list[Exercise]]:
        try:
            return Result.ok(await self.exercises.fetch_for_user(user_id))
        except _ERRORS as e:
            return self._fail("fetch_exercises", e)

    async def save_exercise(
        self,
        user_id: str,
        name: str,
        body_part: str,
        name_en: Optional[str] = None,
        is_cardio: bool = False,
    ) -> Result[str]:
        try:
            return Result.ok(
                await self.exercises.add(user_id, name, body_part, name_en, is_cardio)
            )
        except _ERRORS as e:
            return self._fail("save_exercise", e)

    async def set_exercise_visibility(
        self, user_id: str, exercise_id: str, visible: bool
    ) -> Result[None]:
        try:
            await self.exercises.set_visibility(user_id, exercise_id, visible)
        except _ERRORS as e:
            return self._fail("set_exercise_visibility", e)
        return Result.ok(None)

    async def save_profile(self, user_id: str, profile: Profile) -> Result[Profile]:
        try:
            return Result.ok(await self.profiles.save(user_id, profile))
        except _ERRORS as e:
            return self._fail("save_profile", e)
