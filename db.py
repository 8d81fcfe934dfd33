import sqlite3
import aiosqlite
import datetime
import secrets
from contextlib import contextmanager, asynccontextmanager
from typing import List, Tuple, Optional, Iterable

from config import YamlConfig
from settings_schema import validate_settings
from models import (
    BIG3_KEYS,
    CardioRecord,
    Exercise,
    Profile,
    SetRecord,
)

_ID_ALPHABET = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz_-"


def new_id(size: int = 10) -> str:
    """Return a random url-safe identifier."""
    return "".join(secrets.choice(_ID_ALPHABET) for _ in range(size))


def _now() -> str:
    return datetime.datetime.now(datetime.timezone.utc).isoformat(timespec="seconds")


class Database:
    """Provides SQLite connection management and schema initialization."""

    _TABLE_DEFINITIONS = {
        "users": (
            """CREATE TABLE users (
                    id TEXT PRIMARY KEY,
                    email TEXT,
                    created_at TEXT NOT NULL
                );""",
            ["id", "email", "created_at"],
        ),
        "auth_sessions": (
            """CREATE TABLE auth_sessions (
                    token TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    expires_at TEXT NOT NULL,
                    FOREIGN KEY(user_id) REFERENCES users(id) ON DELETE CASCADE
                );""",
            ["token", "user_id", "created_at", "expires_at"],
        ),
        "profiles": (
            """CREATE TABLE profiles (
                    id TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL UNIQUE,
                    height REAL,
                    weight REAL,
                    body_fat REAL,
                    muscle_mass REAL,
                    big3_target_bench_press REAL,
                    big3_target_squat REAL,
                    big3_target_deadlift REAL,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    FOREIGN KEY(user_id) REFERENCES users(id) ON DELETE CASCADE
                );""",
            [
                "id",
                "user_id",
                "height",
                "weight",
                "body_fat",
                "muscle_mass",
                "big3_target_bench_press",
                "big3_target_squat",
                "big3_target_deadlift",
                "created_at",
                "updated_at",
            ],
        ),
        "body_composition_logs": (
            """CREATE TABLE body_composition_logs (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id TEXT NOT NULL,
                    recorded_at TEXT NOT NULL,
                    height REAL,
                    weight REAL,
                    body_fat REAL,
                    muscle_mass REAL,
                    FOREIGN KEY(user_id) REFERENCES users(id) ON DELETE CASCADE
                );""",
            ["id", "user_id", "recorded_at", "height", "weight", "body_fat", "muscle_mass"],
        ),
        "exercises": (
            """CREATE TABLE exercises (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    name_en TEXT,
                    body_part TEXT NOT NULL,
                    is_big3 INTEGER NOT NULL DEFAULT 0,
                    is_cardio INTEGER NOT NULL DEFAULT 0,
                    user_id TEXT,
                    created_at TEXT NOT NULL,
                    FOREIGN KEY(user_id) REFERENCES users(id) ON DELETE CASCADE
                );""",
            ["id", "name", "name_en", "body_part", "is_big3", "is_cardio", "user_id", "created_at"],
        ),
        "user_exercise_settings": (
            """CREATE TABLE user_exercise_settings (
                    user_id TEXT NOT NULL,
                    exercise_id TEXT NOT NULL,
                    is_visible INTEGER NOT NULL DEFAULT 1,
                    PRIMARY KEY (user_id, exercise_id),
                    FOREIGN KEY(user_id) REFERENCES users(id) ON DELETE CASCADE,
                    FOREIGN KEY(exercise_id) REFERENCES exercises(id) ON DELETE CASCADE
                );""",
            ["user_id", "exercise_id", "is_visible"],
        ),
        "workout_sessions": (
            """CREATE TABLE workout_sessions (
                    id TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL,
                    date TEXT NOT NULL,
                    note TEXT,
                    duration_minutes INTEGER,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    UNIQUE (user_id, date),
                    FOREIGN KEY(user_id) REFERENCES users(id) ON DELETE CASCADE
                );""",
            ["id", "user_id", "date", "note", "duration_minutes", "created_at", "updated_at"],
        ),
        "sets": (
            """CREATE TABLE sets (
                    id TEXT PRIMARY KEY,
                    session_id TEXT NOT NULL,
                    exercise_id TEXT NOT NULL,
                    set_order INTEGER NOT NULL,
                    weight REAL NOT NULL,
                    reps INTEGER NOT NULL,
                    rpe REAL,
                    is_warmup INTEGER NOT NULL DEFAULT 0,
                    rest_seconds INTEGER,
                    notes TEXT,
                    failure INTEGER NOT NULL DEFAULT 0,
                    created_at TEXT NOT NULL,
                    FOREIGN KEY(session_id) REFERENCES workout_sessions(id) ON DELETE CASCADE,
                    FOREIGN KEY(exercise_id) REFERENCES exercises(id) ON DELETE RESTRICT
                );""",
            [
                "id",
                "session_id",
                "exercise_id",
                "set_order",
                "weight",
                "reps",
                "rpe",
                "is_warmup",
                "rest_seconds",
                "notes",
                "failure",
                "created_at",
            ],
        ),
        "cardio_records": (
            """CREATE TABLE cardio_records (
                    id TEXT PRIMARY KEY,
                    session_id TEXT NOT NULL,
                    exercise_id TEXT NOT NULL,
                    duration REAL NOT NULL DEFAULT 0,
                    distance REAL,
                    speed REAL,
                    calories INTEGER,
                    heart_rate INTEGER,
                    incline REAL,
                    notes TEXT,
                    created_at TEXT NOT NULL,
                    FOREIGN KEY(session_id) REFERENCES workout_sessions(id) ON DELETE CASCADE,
                    FOREIGN KEY(exercise_id) REFERENCES exercises(id) ON DELETE RESTRICT
                );""",
            [
                "id",
                "session_id",
                "exercise_id",
                "duration",
                "distance",
                "speed",
                "calories",
                "heart_rate",
                "incline",
                "notes",
                "created_at",
            ],
        ),
        "settings": (
            """CREATE TABLE settings (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL
                );""",
            ["key", "value"],
        ),
    }

    _DEFAULT_EXERCISES = [
        ("bench-press", "Bench Press", "chest", 1, 0),
        ("squat", "Squat", "legs", 1, 0),
        ("deadlift", "Deadlift", "back", 1, 0),
        ("incline-bench-press", "Incline Bench Press", "chest", 0, 0),
        ("dumbbell-fly", "Dumbbell Fly", "chest", 0, 0),
        ("lat-pulldown", "Lat Pulldown", "back", 0, 0),
        ("barbell-row", "Barbell Row", "back", 0, 0),
        ("leg-press", "Leg Press", "legs", 0, 0),
        ("overhead-press", "Overhead Press", "shoulders", 0, 0),
        ("lateral-raise", "Lateral Raise", "shoulders", 0, 0),
        ("barbell-curl", "Barbell Curl", "arms", 0, 0),
        ("triceps-pushdown", "Triceps Pushdown", "arms", 0, 0),
        ("plank", "Plank", "core", 0, 0),
        ("running", "Running", "legs", 0, 1),
        ("cycling", "Cycling", "legs", 0, 1),
    ]

    def __init__(self, db_path: str = "workout.db") -> None:
        self._db_path = db_path
        self._ensure_schema()
        self._seed_exercises()
        self._init_settings()

    @contextmanager
    def _connection(self):
        connection = sqlite3.connect(self._db_path)
        connection.execute("PRAGMA foreign_keys=on;")
        try:
            yield connection
            connection.commit()
        finally:
            connection.close()

    def _ensure_schema(self) -> None:
        with self._connection() as conn:
            cursor = conn.cursor()
            cursor.execute("PRAGMA foreign_keys=off;")
            for table, (sql, columns) in self._TABLE_DEFINITIONS.items():
                self._ensure_table(conn, table, sql, columns)
            cursor.execute("PRAGMA foreign_keys=on;")

    def _ensure_table(
        self, conn: sqlite3.Connection, table: str, sql: str, columns: List[str]
    ) -> None:
        cur = conn.execute(
            "SELECT name FROM sqlite_master WHERE type='table' AND name=?;", (table,)
        )
        if cur.fetchone() is None:
            conn.execute(sql)
            return

        cur = conn.execute(f"PRAGMA table_info({table});")
        existing_cols = [row[1] for row in cur.fetchall()]
        if existing_cols == columns:
            return

        conn.execute(f"DROP TABLE IF EXISTS {table}_old;")
        conn.execute(f"ALTER TABLE {table} RENAME TO {table}_old;")
        conn.execute(sql)

        common = [c for c in existing_cols if c in columns]
        if common:
            cols = ", ".join(common)
            missing = [c for c in columns if c not in existing_cols]
            if missing:
                def default_val(col: str) -> str:
                    if col in ("is_big3", "is_cardio", "is_warmup", "failure", "duration"):
                        return "0"
                    if col in ("is_visible", "set_order"):
                        return "1"
                    if col in ("created_at", "updated_at", "recorded_at"):
                        return f"'{_now()}'"
                    return "NULL"

                defaults = ", ".join(default_val(c) for c in missing)
                conn.execute(
                    f"INSERT INTO {table} ({cols}, {', '.join(missing)}) SELECT {cols}, {defaults} FROM {table}_old;"
                )
            else:
                conn.execute(
                    f"INSERT INTO {table} ({cols}) SELECT {cols} FROM {table}_old;"
                )
        conn.execute(f"DROP TABLE {table}_old;")

    def _seed_exercises(self) -> None:
        created = _now()
        with self._connection() as conn:
            for ex_id, name, body_part, is_big3, is_cardio in self._DEFAULT_EXERCISES:
                conn.execute(
                    "INSERT OR IGNORE INTO exercises (id, name, name_en, body_part, is_big3, is_cardio, user_id, created_at) "
                    "VALUES (?, ?, ?, ?, ?, ?, NULL, ?);",
                    (ex_id, name, name, body_part, is_big3, is_cardio, created),
                )

    def _init_settings(self) -> None:
        defaults = {
            "weight_unit": "kg",
            "max_weight_cache_version": "2",
            "idle_delay_ms": "0",
            "log_level": "INFO",
            "session_ttl_hours": "720",
        }
        with self._connection() as conn:
            for key, value in defaults.items():
                conn.execute(
                    "INSERT OR IGNORE INTO settings (key, value) VALUES (?, ?);",
                    (key, value),
                )

    def vacuum(self) -> None:
        """Run SQLite VACUUM to reduce database size."""
        with self._connection() as conn:
            conn.execute("VACUUM;")


class BaseRepository(Database):
    """Base repository providing helper methods."""

    def execute(self, query: str, params: Tuple = ()) -> int:
        with self._connection() as conn:
            cursor = conn.cursor()
            cursor.execute(query, params)
            return cursor.lastrowid

    def fetch_all(self, query: str, params: Tuple = ()) -> List[Tuple]:
        with self._connection() as conn:
            cursor = conn.cursor()
            cursor.execute(query, params)
            return cursor.fetchall()


class AsyncDatabase(Database):
    """Provides asynchronous connection management."""

    @asynccontextmanager
    async def _async_connection(self):
        conn = await aiosqlite.connect(self._db_path)
        try:
            await conn.execute("PRAGMA foreign_keys=on;")
            yield conn
            await conn.commit()
        finally:
            await conn.close()


class AsyncBaseRepository(AsyncDatabase):
    """Asynchronous variant of BaseRepository using aiosqlite."""

    async def execute(self, query: str, params: Tuple = ()) -> int:
        async with self._async_connection() as conn:
            cursor = await conn.execute(query, params)
            await conn.commit()
            return cursor.lastrowid

    async def fetch_all(self, query: str, params: Tuple = ()) -> List[Tuple]:
        async with self._async_connection() as conn:
            cursor = await conn.execute(query, params)
            rows = await cursor.fetchall()
            return list(rows)


class UserRepository(BaseRepository):
    """Repository for users known to this service."""

    def ensure(self, user_id: str, email: str | None = None) -> None:
        if not user_id:
            raise ValueError("user_id required")
        self.execute(
            "INSERT INTO users (id, email, created_at) VALUES (?, ?, ?) "
            "ON CONFLICT(id) DO UPDATE SET email=COALESCE(excluded.email, users.email);",
            (user_id, email, _now()),
        )

    def exists(self, user_id: str) -> bool:
        return bool(self.fetch_all("SELECT 1 FROM users WHERE id = ?;", (user_id,)))

    def delete(self, user_id: str) -> None:
        if not self.exists(user_id):
            raise ValueError("user not found")
        self.execute("DELETE FROM users WHERE id = ?;", (user_id,))


class AuthSessionRepository(BaseRepository):
    """Bearer tokens issued after the identity provider vouches for a user."""

    def create(self, user_id: str, ttl_hours: int = 720) -> str:
        if ttl_hours <= 0:
            raise ValueError("ttl_hours must be positive")
        token = secrets.token_urlsafe(32)
        now = datetime.datetime.now(datetime.timezone.utc)
        expires = now + datetime.timedelta(hours=ttl_hours)
        self.execute(
            "INSERT INTO auth_sessions (token, user_id, created_at, expires_at) VALUES (?, ?, ?, ?);",
            (token, user_id, now.isoformat(timespec="seconds"), expires.isoformat(timespec="seconds")),
        )
        return token

    def resolve(self, token: str) -> Optional[str]:
        """Return the user id for a live token, deleting it when expired."""
        rows = self.fetch_all(
            "SELECT user_id, expires_at FROM auth_sessions WHERE token = ?;", (token,)
        )
        if not rows:
            return None
        user_id, expires_at = rows[0]
        if datetime.datetime.fromisoformat(expires_at) <= datetime.datetime.now(datetime.timezone.utc):
            self.delete(token)
            return None
        return user_id

    def delete(self, token: str) -> None:
        self.execute("DELETE FROM auth_sessions WHERE token = ?;", (token,))


class SettingsRepository(BaseRepository):
    """Repository for general application settings synchronized with YAML."""

    def __init__(
        self, db_path: str = "workout.db", yaml_path: str = "settings.yaml"
    ) -> None:
        super().__init__(db_path)
        self._yaml = YamlConfig(yaml_path)
        self._sync_from_yaml()
        self._sync_to_yaml()

    def _raw_all_settings(self) -> dict:
        rows = self.fetch_all("SELECT key, value FROM settings ORDER BY key;")
        result: dict[str, float | str] = {}
        for k, v in rows:
            try:
                result[k] = float(v)
            except ValueError:
                result[k] = v
        return result

    def _sync_from_yaml(self) -> None:
        data = self._yaml.load()
        if not data:
            return
        validate_settings(data)
        with self._connection() as conn:
            for key, value in data.items():
                conn.execute(
                    "INSERT INTO settings (key, value) VALUES (?, ?) "
                    "ON CONFLICT(key) DO UPDATE SET value=excluded.value;",
                    (key, str(value)),
                )

    def _sync_to_yaml(self) -> None:
        self._yaml.save(self._raw_all_settings())

    def get_text(self, key: str, default: str) -> str:
        self._sync_from_yaml()
        rows = self.fetch_all("SELECT value FROM settings WHERE key = ?;", (key,))
        return rows[0][0] if rows else default

    def get_int(self, key: str, default: int) -> int:
        try:
            return int(float(self.get_text(key, str(default))))
        except ValueError:
            return default

    def get_float(self, key: str, default: float) -> float:
        try:
            return float(self.get_text(key, str(default)))
        except ValueError:
            return default

    def set_text(self, key: str, value: str) -> None:
        data = self._raw_all_settings()
        data[key] = value
        validate_settings({k: v for k, v in data.items() if k == key})
        self.execute(
            "INSERT INTO settings (key, value) VALUES (?, ?) "
            "ON CONFLICT(key) DO UPDATE SET value=excluded.value;",
            (key, value),
        )
        self._sync_to_yaml()

    def set_int(self, key: str, value: int) -> None:
        self.set_text(key, str(value))

    def all_settings(self) -> dict:
        self._sync_from_yaml()
        data = self._raw_all_settings()
        for key in ("max_weight_cache_version", "idle_delay_ms", "session_ttl_hours"):
            if isinstance(data.get(key), float):
                data[key] = int(data[key])
        return data


class AsyncExerciseRepository(AsyncBaseRepository):
    """Async repository for the exercise master and user custom exercises."""

    @staticmethod
    def _row_to_exercise(row: Tuple) -> Exercise:
        return Exercise(
            id=row[0],
            name=row[1],
            name_en=row[2],
            body_part=row[3],
            is_big3=bool(row[4]),
            is_cardio=bool(row[5]),
            user_id=row[6],
        )

    async def fetch_for_user(
        self, user_id: Optional[str] = None, include_hidden: bool = True
    ) -> list[Exercise]:
        """Return shared exercises plus those owned by ``user_id``."""
        query = (
            "SELECT e.id, e.name, e.name_en, e.body_part, e.is_big3, e.is_cardio, e.user_id, "
            "COALESCE(s.is_visible, 1) FROM exercises e "
            "LEFT JOIN user_exercise_settings s ON s.exercise_id = e.id AND s.user_id = ? "
            "WHERE e.user_id IS NULL"
        )
        params: list = [user_id]
        if user_id:
            query += " OR e.user_id = ?"
            params.append(user_id)
        query += " ORDER BY e.is_big3 DESC, e.created_at, e.id;"
        rows = await self.fetch_all(query, tuple(params))
        return [
            self._row_to_exercise(r)
            for r in rows
            if include_hidden or bool(r[7])
        ]

    async def fetch(self, exercise_id: str) -> Optional[Exercise]:
        rows = await self.fetch_all(
            "SELECT id, name, name_en, body_part, is_big3, is_cardio, user_id FROM exercises WHERE id = ?;",
            (exercise_id,),
        )
        return self._row_to_exercise(rows[0]) if rows else None

    async def add(
        self,
        user_id: str,
        name: str,
        body_part: str,
        name_en: Optional[str] = None,
        is_cardio: bool = False,
        exercise_id: Optional[str] = None,
    ) -> str:
        if not name:
            raise ValueError("name required")
        if not body_part:
            raise ValueError("body_part required")
        ex_id = exercise_id or new_id()
        await self.execute(
            "INSERT INTO exercises (id, name, name_en, body_part, is_big3, is_cardio, user_id, created_at) "
            "VALUES (?, ?, ?, ?, 0, ?, ?, ?);",
            (ex_id, name, name_en, body_part, int(is_cardio), user_id, _now()),
        )
        return ex_id

    async def set_visibility(self, user_id: str, exercise_id: str, visible: bool) -> None:
        if await self.fetch(exercise_id) is None:
            raise ValueError("exercise not found")
        await self.execute(
            "INSERT INTO user_exercise_settings (user_id, exercise_id, is_visible) VALUES (?, ?, ?) "
            "ON CONFLICT(user_id, exercise_id) DO UPDATE SET is_visible=excluded.is_visible;",
            (user_id, exercise_id, int(visible)),
        )

    async def big3_ids(self) -> dict[str, str]:
        """Return shared Big3 exercise ids keyed by bench_press/squat/deadlift."""
        rows = await self.fetch_all(
            "SELECT id, name, name_en FROM exercises WHERE is_big3 = 1 AND user_id IS NULL;"
        )
        result: dict[str, str] = {}
        for ex_id, name, name_en in rows:
            label = f"{name} {name_en or ''}".lower()
            if "bench" in label:
                result.setdefault("bench_press", ex_id)
            elif "squat" in label:
                result.setdefault("squat", ex_id)
            elif "deadlift" in label:
                result.setdefault("deadlift", ex_id)
        return result


class AsyncWorkoutSessionRepository(AsyncBaseRepository):
    """Async repository for workout sessions, one per user and date."""

    async def upsert(
        self,
        user_id: str,
        date: str,
        note: Optional[str] = None,
        duration_minutes: Optional[int] = None,
    ) -> str:
        datetime.date.fromisoformat(date)
        if duration_minutes is not None and duration_minutes < 0:
            raise ValueError("duration_minutes must be non-negative")
        rows = await self.fetch_all(
            "SELECT id FROM workout_sessions WHERE user_id = ? AND date = ?;",
            (user_id, date),
        )
        now = _now()
        if rows:
            sid = rows[0][0]
            await self.execute(
                "UPDATE workout_sessions SET note = ?, duration_minutes = ?, updated_at = ? WHERE id = ?;",
                (note, duration_minutes, now, sid),
            )
            return sid
        sid = new_id()
        await self.execute(
            "INSERT INTO workout_sessions (id, user_id, date, note, duration_minutes, created_at, updated_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?);",
            (sid, user_id, date, note, duration_minutes, now, now),
        )
        return sid

    async def fetch_detail(self, session_id: str) -> Optional[dict]:
        rows = await self.fetch_all(
            "SELECT id, user_id, date, note, duration_minutes FROM workout_sessions WHERE id = ?;",
            (session_id,),
        )
        if not rows:
            return None
        sid, user_id, date, note, duration = rows[0]
        return {
            "id": sid,
            "user_id": user_id,
            "date": date,
            "note": note,
            "duration_minutes": duration,
        }

    async def fetch_range(
        self,
        user_id: str,
        start_date: Optional[str] = None,
        end_date: Optional[str] = None,
    ) -> list[dict]:
        query = "SELECT id, date, note, duration_minutes FROM workout_sessions WHERE user_id = ?"
        params: list[str] = [user_id]
        if start_date:
            query += " AND date >= ?"
            params.append(start_date)
        if end_date:
            query += " AND date <= ?"
            params.append(end_date)
        query += " ORDER BY date;"
        rows = await self.fetch_all(query, tuple(params))
        return [
            {"id": r[0], "date": r[1], "note": r[2], "duration_minutes": r[3]}
            for r in rows
        ]

    async def recorded_exercise_ids(self, session_id: str) -> tuple[set[str], set[str]]:
        """Return exercise ids with sets and with cardio records in a session."""
        set_rows = await self.fetch_all(
            "SELECT DISTINCT exercise_id FROM sets WHERE session_id = ?;", (session_id,)
        )
        cardio_rows = await self.fetch_all(
            "SELECT DISTINCT exercise_id FROM cardio_records WHERE session_id = ?;",
            (session_id,),
        )
        return {r[0] for r in set_rows}, {r[0] for r in cardio_rows}

    async def delete(self, session_id: str) -> None:
        if await self.fetch_detail(session_id) is None:
            raise ValueError("session not found")
        await self.execute("DELETE FROM workout_sessions WHERE id = ?;", (session_id,))


class AsyncSetRepository(AsyncBaseRepository):
    """Async repository for resistance sets."""

    async def save(
        self, session_id: str, exercise_id: str, sets: Iterable[SetRecord]
    ) -> int:
        """Replace the sets of one exercise in a session; return rows saved."""
        valid = [s for s in sets if s.has_data()]
        for s in valid:
            if s.reps < 0:
                raise ValueError("reps must be non-negative")
            if (s.weight or 0) < 0:
                raise ValueError("weight must be non-negative")
        created = _now()
        async with self._async_connection() as conn:
            await conn.execute(
                "DELETE FROM sets WHERE session_id = ? AND exercise_id = ?;",
                (session_id, exercise_id),
            )
            for s in valid:
                await conn.execute(
                    "INSERT INTO sets (id, session_id, exercise_id, set_order, weight, reps, rpe, is_warmup, rest_seconds, notes, failure, created_at) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?);",
                    (
                        new_id(),
                        session_id,
                        exercise_id,
                        s.set_order,
                        s.weight if s.weight is not None else 0.0,
                        s.reps,
                        s.rpe,
                        int(s.is_warmup),
                        s.rest_seconds,
                        s.notes,
                        int(s.failure),
                        created,
                    ),
                )
        return len(valid)

    async def fetch(self, session_id: str, exercise_id: str) -> list[SetRecord]:
        rows = await self.fetch_all(
            "SELECT set_order, weight, reps, rpe, is_warmup, rest_seconds, notes, failure "
            "FROM sets WHERE session_id = ? AND exercise_id = ? ORDER BY set_order;",
            (session_id, exercise_id),
        )
        return [
            SetRecord(
                set_order=r[0],
                weight=float(r[1]),
                reps=int(r[2]),
                rpe=float(r[3]) if r[3] is not None else None,
                is_warmup=bool(r[4]),
                rest_seconds=r[5],
                notes=r[6],
                failure=bool(r[7]),
                duration=None,
            )
            for r in rows
        ]

    async def max_weights(self, user_id: str) -> dict[str, float]:
        rows = await self.fetch_all(
            "SELECT s.exercise_id, MAX(s.weight) FROM sets s "
            "JOIN workout_sessions w ON s.session_id = w.id "
            "WHERE w.user_id = ? AND s.weight > 0 GROUP BY s.exercise_id;",
            (user_id,),
        )
        return {r[0]: float(r[1]) for r in rows}

    async def last_trained(self, user_id: str) -> dict[str, datetime.date]:
        """Return the latest session date per exercise across sets and cardio."""
        rows = await self.fetch_all(
            "SELECT s.exercise_id, MAX(w.date) FROM sets s "
            "JOIN workout_sessions w ON s.session_id = w.id "
            "WHERE w.user_id = ? AND (s.weight > 0 OR s.reps > 0) GROUP BY s.exercise_id "
            "UNION ALL "
            "SELECT c.exercise_id, MAX(w.date) FROM cardio_records c "
            "JOIN workout_sessions w ON c.session_id = w.id "
            "WHERE w.user_id = ? AND (c.duration > 0 OR c.distance > 0 OR c.calories > 0 OR c.heart_rate > 0) "
            "GROUP BY c.exercise_id;",
            (user_id, user_id),
        )
        result: dict[str, datetime.date] = {}
        for exercise_id, date_str in rows:
            date = datetime.date.fromisoformat(date_str)
            if exercise_id not in result or date > result[exercise_id]:
                result[exercise_id] = date
        return result

    async def latest_before(
        self, user_id: str, exercise_id: str, before_date: str
    ) -> Optional[tuple[datetime.date, list[SetRecord]]]:
        """Return the most recent session strictly before ``before_date``."""
        rows = await self.fetch_all(
            "SELECT w.id, w.date FROM workout_sessions w "
            "WHERE w.user_id = ? AND w.date < ? AND EXISTS ("
            "SELECT 1 FROM sets s WHERE s.session_id = w.id AND s.exercise_id = ?) "
            "ORDER BY w.date DESC LIMIT 1;",
            (user_id, before_date, exercise_id),
        )
        if not rows:
            return None
        sid, date_str = rows[0]
        return datetime.date.fromisoformat(date_str), await self.fetch(sid, exercise_id)

    async def history(
        self,
        user_id: str,
        exercise_id: str,
        start_date: Optional[str] = None,
    ) -> list[tuple[str, float, int, bool]]:
        query = (
            "SELECT w.date, s.weight, s.reps, s.is_warmup FROM sets s "
            "JOIN workout_sessions w ON s.session_id = w.id "
            "WHERE w.user_id = ? AND s.exercise_id = ?"
        )
        params: list[str] = [user_id, exercise_id]
        if start_date:
            query += " AND w.date >= ?"
            params.append(start_date)
        query += " ORDER BY w.date, s.set_order;"
        rows = await self.fetch_all(query, tuple(params))
        return [(r[0], float(r[1]), int(r[2]), bool(r[3])) for r in rows]


class AsyncCardioRepository(AsyncBaseRepository):
    """Async repository for cardio records."""

    async def save(
        self, session_id: str, exercise_id: str, records: Iterable[CardioRecord]
    ) -> int:
        """Replace the cardio records of one exercise in a session."""
        valid = [r for r in records if r.has_data()]
        created = _now()
        async with self._async_connection() as conn:
            await conn.execute(
                "DELETE FROM cardio_records WHERE session_id = ? AND exercise_id = ?;",
                (session_id, exercise_id),
            )
            for r in valid:
                await conn.execute(
                    "INSERT INTO cardio_records (id, session_id, exercise_id, duration, distance, speed, calories, heart_rate, incline, notes, created_at) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?);",
                    (
                        new_id(),
                        session_id,
                        exercise_id,
                        r.duration,
                        r.distance,
                        r.speed,
                        r.calories,
                        r.heart_rate,
                        r.incline,
                        r.notes,
                        created,
                    ),
                )
        return len(valid)

    async def fetch(self, session_id: str, exercise_id: str) -> list[CardioRecord]:
        rows = await self.fetch_all(
            "SELECT w.date, c.duration, c.distance, c.speed, c.calories, c.heart_rate, c.incline, c.notes "
            "FROM cardio_records c JOIN workout_sessions w ON c.session_id = w.id "
            "WHERE c.session_id = ? AND c.exercise_id = ? ORDER BY c.created_at, c.rowid;",
            (session_id, exercise_id),
        )
        return [
            CardioRecord(
                date=datetime.date.fromisoformat(r[0]),
                duration=float(r[1]),
                distance=r[2],
                speed=r[3],
                calories=r[4],
                heart_rate=r[5],
                incline=r[6],
                notes=r[7],
            )
            for r in rows
        ]

    async def latest_before(
        self, user_id: str, exercise_id: str, before_date: str
    ) -> Optional[tuple[datetime.date, list[CardioRecord]]]:
        rows = await self.fetch_all(
            "SELECT w.id, w.date FROM workout_sessions w "
            "WHERE w.user_id = ? AND w.date < ? AND EXISTS ("
            "SELECT 1 FROM cardio_records c WHERE c.session_id = w.id AND c.exercise_id = ?) "
            "ORDER BY w.date DESC LIMIT 1;",
            (user_id, before_date, exercise_id),
        )
        if not rows:
            return None
        sid, date_str = rows[0]
        return datetime.date.fromisoformat(date_str), await self.fetch(sid, exercise_id)


class AsyncProfileRepository(AsyncBaseRepository):
    """Async repository for profiles and body composition history."""

    _FIELDS = (
        "height",
        "weight",
        "body_fat",
        "muscle_mass",
        "big3_target_bench_press",
        "big3_target_squat",
        "big3_target_deadlift",
    )
    _BODY_FIELDS = ("height", "weight", "body_fat", "muscle_mass")

    async def fetch(self, user_id: str) -> Optional[Profile]:
        rows = await self.fetch_all(
            f"SELECT {', '.join(self._FIELDS)} FROM profiles WHERE user_id = ?;",
            (user_id,),
        )
        if not rows:
            return None
        return Profile(**dict(zip(self._FIELDS, rows[0])))

    async def save(self, user_id: str, profile: Profile) -> Profile:
        """Merge non-null fields into the profile and log body values."""
        values = profile.model_dump()
        for field, value in values.items():
            if value is not None and value < 0:
                raise ValueError(f"{field} must be non-negative")
        if values.get("body_fat") is not None and values["body_fat"] > 100:
            raise ValueError("body_fat must be at most 100")
        current = await self.fetch(user_id)
        merged = current.model_dump() if current else {f: None for f in self._FIELDS}
        merged.update({k: v for k, v in values.items() if v is not None})
        now = _now()
        async with self._async_connection() as conn:
            if current is None:
                await conn.execute(
                    f"INSERT INTO profiles (id, user_id, {', '.join(self._FIELDS)}, created_at, updated_at) "
                    f"VALUES (?, ?, {', '.join('?' for _ in self._FIELDS)}, ?, ?);",
                    (new_id(), user_id, *[merged[f] for f in self._FIELDS], now, now),
                )
            else:
                assignments = ", ".join(f"{f} = ?" for f in self._FIELDS)
                await conn.execute(
                    f"UPDATE profiles SET {assignments}, updated_at = ? WHERE user_id = ?;",
                    (*[merged[f] for f in self._FIELDS], now, user_id),
                )
            if any(values.get(f) is not None for f in self._BODY_FIELDS):
                await conn.execute(
                    "INSERT INTO body_composition_logs (user_id, recorded_at, height, weight, body_fat, muscle_mass) "
                    "VALUES (?, ?, ?, ?, ?, ?);",
                    (user_id, now, *[merged[f] for f in self._BODY_FIELDS]),
                )
        return Profile(**merged)

    async def history(
        self,
        user_id: str,
        start_date: Optional[str] = None,
        end_date: Optional[str] = None,
    ) -> list[dict]:
        query = (
            "SELECT recorded_at, height, weight, body_fat, muscle_mass "
            "FROM body_composition_logs WHERE user_id = ?"
        )
        params: list[str] = [user_id]
        if start_date:
            query += " AND substr(recorded_at, 1, 10) >= ?"
            params.append(start_date)
        if end_date:
            query += " AND substr(recorded_at, 1, 10) <= ?"
            params.append(end_date)
        query += " ORDER BY recorded_at, id;"
        rows = await self.fetch_all(query, tuple(params))
        return [
            {
                "recorded_at": r[0],
                "height": r[1],
                "weight": r[2],
                "body_fat": r[3],
                "muscle_mass": r[4],
            }
            for r in rows
        ]

    async def big3_targets(self, user_id: str) -> dict[str, Optional[float]]:
        profile = await self.fetch(user_id)
        if profile is None:
            return {k: None for k in BIG3_KEYS}
        return {
            "bench_press": profile.big3_target_bench_press,
            "squat": profile.big3_target_squat,
            "deadlift": profile.big3_target_deadlift,
        }
