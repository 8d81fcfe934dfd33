from __future__ import annotations
import datetime
from typing import Dict, List, Optional

from loguru import logger

from db import (
    AsyncExerciseRepository,
    AsyncProfileRepository,
    AsyncSetRepository,
    SettingsRepository,
)
from local_store import LocalCacheStore
from models import BIG3_KEYS, DEFAULT_BIG3_TARGETS, Exercise
from algorithms import BodyMetrics, ProgressTools, WeightConverter


class StatisticsService:
    """Compute workout and body statistics for analysis."""

    def __init__(
        self,
        set_repo: AsyncSetRepository,
        exercise_repo: AsyncExerciseRepository,
        profile_repo: AsyncProfileRepository,
        settings_repo: SettingsRepository | None = None,
        local_store: LocalCacheStore | None = None,
    ) -> None:
        self.sets = set_repo
        self.exercises = exercise_repo
        self.profiles = profile_repo
        self.settings = settings_repo
        self.local = local_store

    def _weight_unit(self) -> str:
        if self.settings is None:
            return "kg"
        return self.settings.get_text("weight_unit", "kg")

    def _convert(self, weight: float) -> float:
        return WeightConverter.convert(weight, self._weight_unit())

    async def exercise_progress(
        self,
        user_id: Optional[str],
        exercise_id: str,
        preset: str = "month",
        today: datetime.date | None = None,
    ) -> List[Dict[str, float]]:
        """Return the dates where the max weight of an exercise increased."""
        if preset not in ProgressTools.PRESETS:
            raise ValueError(f"unknown preset: {preset}")
        start = ProgressTools.start_date(preset, today)
        if user_id:
            rows = await self.sets.history(user_id, exercise_id, start.isoformat())
            by_date: dict[str, list[dict]] = {}
            for date, weight, reps, warmup in rows:
                by_date.setdefault(date, []).append(
                    {"weight": weight, "reps": reps, "is_warmup": warmup}
                )
            daily = [
                (date, ProgressTools.day_max_weight(sets))
                for date, sets in sorted(by_date.items())
            ]
        elif self.local is not None:
            daily = self.local.max_weight_by_date(exercise_id, start)
        else:
            daily = []
        return [
            {"date": u["date"], "max_weight": self._convert(u["max_weight"])}
            for u in ProgressTools.max_weight_updates(daily)
        ]

    async def big3_progress(
        self, user_id: Optional[str], max_weights: Dict[str, float] | None = None
    ) -> Dict[str, Dict[str, float | str | None]]:
        """Return current max, target and completion per Big3 lift.

        ``max_weights`` may carry reconciled values; otherwise they are read
        from the remote store for users and the local store for guests.
        """
        ids = await self.exercises.big3_ids()
        if max_weights is None:
            if user_id:
                max_weights = await self.sets.max_weights(user_id)
            elif self.local is not None:
                max_weights = self.local.compute_max_weights()
            else:
                max_weights = {}
        targets = (
            await self.profiles.big3_targets(user_id)
            if user_id
            else {k: None for k in BIG3_KEYS}
        )
        result: Dict[str, Dict[str, float | str | None]] = {}
        for key in BIG3_KEYS:
            exercise_id = ids.get(key)
            current = max_weights.get(exercise_id, 0.0) if exercise_id else 0.0
            target = targets.get(key) or DEFAULT_BIG3_TARGETS[key]
            result[key] = {
                "exercise_id": exercise_id,
                "current": self._convert(current),
                "target": self._convert(target),
                "percentage": round(min(current / target * 100, 100.0), 1),
            }
        return result

    async def body_composition_history(
        self,
        user_id: str,
        preset: str = "all",
        today: datetime.date | None = None,
    ) -> List[Dict[str, float | str | None]]:
        if preset not in ProgressTools.PRESETS:
            raise ValueError(f"unknown preset: {preset}")
        start = ProgressTools.start_date(preset, today)
        rows = await self.profiles.history(user_id, start.isoformat())
        for row in rows:
            if row["height"] and row["weight"]:
                row["bmi"] = BodyMetrics.bmi(row["height"], row["weight"])
            else:
                row["bmi"] = None
            if row["weight"] is not None:
                row["weight"] = self._convert(row["weight"])
        return rows

    async def bmi(self, user_id: str) -> Optional[Dict[str, float | str]]:
        profile = await self.profiles.fetch(user_id)
        if profile is None or not profile.height or not profile.weight:
            logger.debug("No height or weight on profile for {}", user_id)
            return None
        return BodyMetrics.bmi_result(profile.height, profile.weight)

    @staticmethod
    def last_trained_by_body_part(
        last_trained: Dict[str, datetime.date], exercises: List[Exercise]
    ) -> Dict[str, Optional[datetime.date]]:
        """Aggregate per-exercise last-trained dates by body part."""
        result: Dict[str, Optional[datetime.date]] = {
            ex.body_part: None for ex in exercises
        }
        for ex in exercises:
            date = last_trained.get(ex.id)
            current = result[ex.body_part]
            if date is not None and (current is None or date > current):
                result[ex.body_part] = date
        return result
