import sqlite3
import sys

from loguru import logger

_COLUMNS = [
    ("exercises", "is_cardio", "INTEGER NOT NULL DEFAULT 0"),
    ("exercises", "name_en", "TEXT"),
    ("profiles", "big3_target_bench_press", "REAL"),
    ("profiles", "big3_target_squat", "REAL"),
    ("profiles", "big3_target_deadlift", "REAL"),
    ("sets", "failure", "INTEGER NOT NULL DEFAULT 0"),
    ("sets", "rest_seconds", "INTEGER"),
    ("cardio_records", "incline", "REAL"),
    ("workout_sessions", "duration_minutes", "INTEGER"),
]


def migrate(db_path='workout.db'):
    """Add columns introduced after a database was created."""
    conn = sqlite3.connect(db_path)
    cur = conn.cursor()
    added = 0
    for table, column, decl in _COLUMNS:
        cur.execute(f"PRAGMA table_info({table});")
        cols = [r[1] for r in cur.fetchall()]
        if not cols:
            continue
        if column not in cols:
            cur.execute(f"ALTER TABLE {table} ADD COLUMN {column} {decl};")
            logger.info("Added {}.{}", table, column)
            added += 1
    cur.execute("PRAGMA table_info(user_exercise_settings);")
    if not cur.fetchall():
        cur.execute(
            "CREATE TABLE user_exercise_settings (user_id TEXT NOT NULL, exercise_id TEXT NOT NULL, "
            "is_visible INTEGER NOT NULL DEFAULT 1, PRIMARY KEY (user_id, exercise_id));"
        )
        added += 1
    conn.commit()
    conn.close()
    return added


if __name__ == '__main__':
    path = sys.argv[1] if len(sys.argv) > 1 else 'workout.db'
    migrate(path)
