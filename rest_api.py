import datetime
import os
from typing import List, Dict, Optional
from fastapi import FastAPI, HTTPException, Body, Header, APIRouter
from loguru import logger

from db import (
    UserRepository,
    AuthSessionRepository,
    SettingsRepository,
    AsyncExerciseRepository,
    AsyncWorkoutSessionRepository,
    AsyncSetRepository,
    AsyncCardioRepository,
    AsyncProfileRepository,
)
from config import APP_VERSION
from local_store import LocalCacheStore, MemoryStorage
from models import CardioRecord, Profile, SetRecord
from remote_data import RemoteDataAccessor
from reconciliation import Reconciler
from guest_migration import GuestDataMigrator
from stats_service import StatisticsService
from algorithms import ProgressTools


def _parse_date(value: str) -> datetime.date:
    try:
        return datetime.date.fromisoformat(value)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"invalid date: {value}")


class MuscleGrowAPI:
    """Provides REST endpoints for workout logging and record reconciliation."""

    def __init__(
        self,
        db_path: str = "workout.db",
        yaml_path: str = "settings.yaml",
    ) -> None:
        self.db_path = db_path
        self.settings = SettingsRepository(db_path, yaml_path)
        self.users = UserRepository(db_path)
        self.auth_sessions = AuthSessionRepository(db_path)
        self.exercises = AsyncExerciseRepository(db_path)
        self.workout_sessions = AsyncWorkoutSessionRepository(db_path)
        self.sets = AsyncSetRepository(db_path)
        self.cardio = AsyncCardioRepository(db_path)
        self.profiles = AsyncProfileRepository(db_path)
        self.remote = RemoteDataAccessor(db_path)
        self.statistics = StatisticsService(
            self.sets,
            self.exercises,
            self.profiles,
            self.settings,
        )
        self.app = FastAPI(
            title="MuscleGrow API",
            description="REST API for workout logging, statistics and guest data reconciliation",
            version=APP_VERSION,
        )
        self._setup_routes()

    def _current_user(self, authorization: Optional[str]) -> Optional[str]:
        """Return the user id for a bearer token; ``None`` means guest."""
        if not authorization:
            return None
        scheme, _, token = authorization.partition(" ")
        if scheme.lower() != "bearer" or not token:
            raise HTTPException(status_code=401, detail="invalid authorization header")
        user_id = self.auth_sessions.resolve(token.strip())
        if user_id is None:
            raise HTTPException(status_code=401, detail="session expired")
        return user_id

    def _require_user(self, authorization: Optional[str]) -> str:
        user_id = self._current_user(authorization)
        if user_id is None:
            raise HTTPException(status_code=401, detail="authentication required")
        return user_id

    async def _owned_session(self, session_id: str, user_id: str) -> dict:
        detail = await self.workout_sessions.fetch_detail(session_id)
        if detail is None or detail["user_id"] != user_id:
            raise HTTPException(status_code=404, detail="session not found")
        return detail

    def _reconciler(self, snapshot: Dict[str, str]) -> Reconciler:
        return Reconciler(LocalCacheStore(MemoryStorage(snapshot)), self.remote)

    def _setup_routes(self) -> None:
        stats_router = APIRouter(prefix="/stats", tags=["Statistics"])
        reconcile_router = APIRouter(prefix="/reconcile", tags=["Reconciliation"])

        @self.app.get(
            "/health",
            summary="Health check",
            description="Verify API and database connectivity.",
        )
        def health():
            """Return API and database connection status."""
            try:
                self.settings.fetch_all("SELECT 1;")
                return {"status": "ok", "version": APP_VERSION}
            except Exception as e:  # pragma: no cover - connectivity failure
                logger.error("Health check failed: {}", e)
                raise HTTPException(status_code=500, detail=str(e))

        @self.app.post("/sessions")
        def open_session(
            user_id: str,
            email: str | None = None,
            x_provider_secret: str | None = Header(None),
        ):
            secret = self.settings.get_text("identity_provider_secret", "")
            if secret and x_provider_secret != secret:
                raise HTTPException(status_code=403, detail="provider not trusted")
            try:
                self.users.ensure(user_id, email)
            except ValueError as e:
                raise HTTPException(status_code=400, detail=str(e))
            ttl = self.settings.get_int("session_ttl_hours", 720)
            token = self.auth_sessions.create(user_id, ttl)
            logger.info("Opened session for {}", user_id)
            return {"token": token, "user_id": user_id}

        @self.app.delete("/sessions")
        def close_session(authorization: str | None = Header(None)):
            self._require_user(authorization)
            _, _, token = authorization.partition(" ")
            self.auth_sessions.delete(token.strip())
            return {"status": "deleted"}

        @self.app.get("/exercises")
        async def list_exercises(
            include_hidden: bool = False,
            authorization: str | None = Header(None),
        ):
            user_id = self._current_user(authorization)
            exercises = await self.exercises.fetch_for_user(user_id, include_hidden)
            return [ex.model_dump() for ex in exercises]

        @self.app.post("/exercises")
        async def add_exercise(
            name: str,
            body_part: str,
            name_en: str | None = None,
            is_cardio: bool = False,
            authorization: str | None = Header(None),
        ):
            user_id = self._require_user(authorization)
            try:
                ex_id = await self.exercises.add(
                    user_id, name, body_part, name_en, is_cardio
                )
            except ValueError as e:
                raise HTTPException(status_code=400, detail=str(e))
            return {"id": ex_id}

        @self.app.put("/exercises/{exercise_id}/visibility")
        async def set_exercise_visibility(
            exercise_id: str,
            visible: bool,
            authorization: str | None = Header(None),
        ):
            user_id = self._require_user(authorization)
            try:
                await self.exercises.set_visibility(user_id, exercise_id, visible)
            except ValueError as e:
                raise HTTPException(status_code=404, detail=str(e))
            return {"status": "updated"}

        @self.app.post("/workout_sessions")
        async def save_workout_session(
            date: str,
            note: str | None = None,
            duration_minutes: int | None = None,
            authorization: str | None = Header(None),
        ):
            user_id = self._require_user(authorization)
            _parse_date(date)
            try:
                sid = await self.workout_sessions.upsert(
                    user_id, date, note, duration_minutes
                )
            except ValueError as e:
                raise HTTPException(status_code=400, detail=str(e))
            return {"id": sid}

        @self.app.get("/workout_sessions")
        async def list_workout_sessions(
            start_date: str | None = None,
            end_date: str | None = None,
            authorization: str | None = Header(None),
        ):
            user_id = self._require_user(authorization)
            return await self.workout_sessions.fetch_range(user_id, start_date, end_date)

        @self.app.delete("/workout_sessions/{session_id}")
        async def delete_workout_session(
            session_id: str, authorization: str | None = Header(None)
        ):
            user_id = self._require_user(authorization)
            await self._owned_session(session_id, user_id)
            await self.workout_sessions.delete(session_id)
            return {"status": "deleted"}

        @self.app.put("/workout_sessions/{session_id}/exercises/{exercise_id}/sets")
        async def save_sets(
            session_id: str,
            exercise_id: str,
            sets: List[SetRecord] = Body(...),
            authorization: str | None = Header(None),
        ):
            user_id = self._require_user(authorization)
            await self._owned_session(session_id, user_id)
            if await self.exercises.fetch(exercise_id) is None:
                raise HTTPException(status_code=404, detail="exercise not found")
            try:
                count = await self.sets.save(session_id, exercise_id, sets)
            except ValueError as e:
                raise HTTPException(status_code=400, detail=str(e))
            return {"saved": count}

        @self.app.get("/workout_sessions/{session_id}/exercises/{exercise_id}/sets")
        async def get_sets(
            session_id: str,
            exercise_id: str,
            authorization: str | None = Header(None),
        ):
            user_id = self._require_user(authorization)
            await self._owned_session(session_id, user_id)
            return [s.model_dump() for s in await self.sets.fetch(session_id, exercise_id)]

        @self.app.put("/workout_sessions/{session_id}/exercises/{exercise_id}/cardio")
        async def save_cardio(
            session_id: str,
            exercise_id: str,
            records: List[CardioRecord] = Body(...),
            authorization: str | None = Header(None),
        ):
            user_id = self._require_user(authorization)
            await self._owned_session(session_id, user_id)
            if await self.exercises.fetch(exercise_id) is None:
                raise HTTPException(status_code=404, detail="exercise not found")
            count = await self.cardio.save(session_id, exercise_id, records)
            return {"saved": count}

        @self.app.get("/workout_sessions/{session_id}/exercises/{exercise_id}/cardio")
        async def get_cardio(
            session_id: str,
            exercise_id: str,
            authorization: str | None = Header(None),
        ):
            user_id = self._require_user(authorization)
            await self._owned_session(session_id, user_id)
            records = await self.cardio.fetch(session_id, exercise_id)
            return [r.model_dump(mode="json") for r in records]

        @self.app.get("/profile")
        async def get_profile(authorization: str | None = Header(None)):
            user_id = self._require_user(authorization)
            profile = await self.profiles.fetch(user_id)
            return (profile or Profile()).model_dump()

        @self.app.put("/profile")
        async def update_profile(
            profile: Profile = Body(...),
            authorization: str | None = Header(None),
        ):
            user_id = self._require_user(authorization)
            try:
                saved = await self.profiles.save(user_id, profile)
            except ValueError as e:
                raise HTTPException(status_code=400, detail=str(e))
            return saved.model_dump()

        @self.app.get("/profile/history")
        async def profile_history(
            preset: str = "all", authorization: str | None = Header(None)
        ):
            user_id = self._require_user(authorization)
            try:
                return await self.statistics.body_composition_history(user_id, preset)
            except ValueError as e:
                raise HTTPException(status_code=400, detail=str(e))

        @self.app.get("/profile/bmi")
        async def profile_bmi(authorization: str | None = Header(None)):
            user_id = self._require_user(authorization)
            result = await self.statistics.bmi(user_id)
            if result is None:
                raise HTTPException(status_code=404, detail="height and weight required")
            return result

        @stats_router.get("/max_weights")
        async def max_weights(authorization: str | None = Header(None)):
            user_id = self._require_user(authorization)
            result = await self.remote.fetch_max_weights(user_id)
            if not result.success:
                raise HTTPException(status_code=500, detail=result.error)
            return result.data

        @stats_router.get("/last_trained")
        async def last_trained(
            by_body_part: bool = False, authorization: str | None = Header(None)
        ):
            user_id = self._require_user(authorization)
            result = await self.remote.fetch_last_trained(user_id)
            if not result.success:
                raise HTTPException(status_code=500, detail=result.error)
            if by_body_part:
                exercises = await self.exercises.fetch_for_user(user_id)
                return self.statistics.last_trained_by_body_part(result.data, exercises)
            return result.data

        @stats_router.get("/previous_record")
        async def previous_record(
            exercise_id: str,
            reference_date: str,
            cardio: bool = False,
            authorization: str | None = Header(None),
        ):
            user_id = self._require_user(authorization)
            reference = _parse_date(reference_date)
            record = await self._reconciler({}).reconcile_previous_record(
                user_id, exercise_id, reference, cardio
            )
            return record.model_dump(mode="json") if record else None

        @stats_router.get("/exercise_progress")
        async def exercise_progress(
            exercise_id: str,
            preset: str = "month",
            authorization: str | None = Header(None),
        ):
            user_id = self._require_user(authorization)
            try:
                return await self.statistics.exercise_progress(user_id, exercise_id, preset)
            except ValueError as e:
                raise HTTPException(status_code=400, detail=str(e))

        @stats_router.get("/big3")
        async def big3(authorization: str | None = Header(None)):
            user_id = self._require_user(authorization)
            return await self.statistics.big3_progress(user_id)

        @stats_router.get("/presets")
        def progress_presets():
            return list(ProgressTools.PRESETS)

        @reconcile_router.post("/max_weights")
        async def reconcile_max_weights(
            snapshot: Dict[str, str] = Body(...),
            authorization: str | None = Header(None),
        ):
            user_id = self._current_user(authorization)
            return await self._reconciler(snapshot).reconcile_max_weights(user_id)

        @reconcile_router.post("/last_trained")
        async def reconcile_last_trained(
            snapshot: Dict[str, str] = Body(...),
            authorization: str | None = Header(None),
        ):
            user_id = self._current_user(authorization)
            return await self._reconciler(snapshot).reconcile_last_trained(user_id)

        @reconcile_router.post("/previous_record")
        async def reconcile_previous_record(
            exercise_id: str,
            reference_date: str,
            cardio: bool = False,
            snapshot: Dict[str, str] = Body(...),
            authorization: str | None = Header(None),
        ):
            user_id = self._current_user(authorization)
            reference = _parse_date(reference_date)
            record = await self._reconciler(snapshot).reconcile_previous_record(
                user_id, exercise_id, reference, cardio
            )
            return record.model_dump(mode="json") if record else None

        @self.app.post("/migrate")
        async def migrate_guest_data(
            snapshot: Dict[str, str] = Body(...),
            authorization: str | None = Header(None),
        ):
            user_id = self._require_user(authorization)
            storage = MemoryStorage(snapshot)
            migrator = GuestDataMigrator(LocalCacheStore(storage), self.remote)
            report = await migrator.migrate(user_id)
            return {"report": report.to_dict(), "snapshot": storage.snapshot()}

        self.app.include_router(stats_router)
        self.app.include_router(reconcile_router)


api = MuscleGrowAPI(
    db_path=os.environ.get("DB_PATH", "workout.db"),
    yaml_path=os.environ.get("MUSCLEGROW_SETTINGS", "settings.yaml"),
)
app = api.app

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app)
