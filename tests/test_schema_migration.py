import os
import sqlite3
import sys

sys.path.append(os.path.dirname(os.path.dirname(__file__)))
from db import Database
import migrate


class TestSchemaMigration:
    def test_drops_existing_backup_table(self, tmp_path):
        db_file = tmp_path / "test.db"
        conn = sqlite3.connect(str(db_file))
        conn.execute(
            "CREATE TABLE sets (id TEXT PRIMARY KEY, session_id TEXT, exercise_id TEXT, weight REAL, reps INTEGER)"
        )
        conn.execute(
            "INSERT INTO sets (id, session_id, exercise_id, weight, reps) VALUES ('s1', 'w1', 'squat', 100, 5)"
        )
        conn.execute("CREATE TABLE sets_old (id INTEGER)")
        conn.commit()
        conn.close()

        Database(str(db_file))

        conn = sqlite3.connect(str(db_file))
        cur = conn.execute(
            "SELECT name FROM sqlite_master WHERE type='table' AND name='sets_old'"
        )
        assert cur.fetchone() is None
        cur = conn.execute("PRAGMA table_info(sets)")
        cols = [row[1] for row in cur.fetchall()]
        assert "failure" in cols
        assert "set_order" in cols
        row = conn.execute(
            "SELECT weight, reps, set_order, is_warmup FROM sets WHERE id = 's1'"
        ).fetchone()
        assert row == (100.0, 5, 1, 0)
        conn.close()

    def test_seeds_shared_exercises_once(self, tmp_path):
        db_file = str(tmp_path / "seed.db")
        Database(db_file)
        Database(db_file)
        conn = sqlite3.connect(db_file)
        count = conn.execute(
            "SELECT COUNT(*) FROM exercises WHERE id = 'bench-press'"
        ).fetchone()[0]
        big3 = conn.execute(
            "SELECT COUNT(*) FROM exercises WHERE is_big3 = 1 AND user_id IS NULL"
        ).fetchone()[0]
        conn.close()
        assert count == 1
        assert big3 == 3

    def test_migrate_adds_missing_columns(self, tmp_path):
        db_file = str(tmp_path / "old.db")
        conn = sqlite3.connect(db_file)
        conn.execute("CREATE TABLE exercises (id TEXT PRIMARY KEY, name TEXT, body_part TEXT)")
        conn.commit()
        conn.close()

        added = migrate.migrate(db_file)
        assert added == 3
        conn = sqlite3.connect(db_file)
        cols = [r[1] for r in conn.execute("PRAGMA table_info(exercises)").fetchall()]
        tables = [r[0] for r in conn.execute("SELECT name FROM sqlite_master WHERE type='table'")]
        conn.close()
        assert "is_cardio" in cols
        assert "name_en" in cols
        assert "user_exercise_settings" in tables
        assert migrate.migrate(db_file) == 0
