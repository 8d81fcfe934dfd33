import os
import sys
import json
import unittest
from fastapi.testclient import TestClient
import yaml

sys.path.append(os.path.dirname(os.path.dirname(__file__)))
from rest_api import MuscleGrowAPI


class APITestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.db_path = "test_workout.db"
        self.yaml_path = "test_settings.yaml"
        for p in [self.db_path, self.yaml_path]:
            if os.path.exists(p):
                os.remove(p)
        self.api = MuscleGrowAPI(db_path=self.db_path, yaml_path=self.yaml_path)
        self.client = TestClient(self.api.app)

    def tearDown(self) -> None:
        for p in [self.db_path, self.yaml_path]:
            if os.path.exists(p):
                os.remove(p)

    def _login(self, user_id: str = "u1") -> dict:
        resp = self.client.post("/sessions", params={"user_id": user_id})
        self.assertEqual(resp.status_code, 200)
        return {"Authorization": f"Bearer {resp.json()['token']}"}

    def test_health(self) -> None:
        resp = self.client.get("/health")
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["status"], "ok")

    def test_sessions_and_auth(self) -> None:
        self.assertEqual(self.client.get("/profile").status_code, 401)
        self.assertEqual(
            self.client.get("/profile", headers={"Authorization": "Bearer nope"}).status_code,
            401,
        )
        self.assertEqual(
            self.client.get("/profile", headers={"Authorization": "Basic abc"}).status_code,
            401,
        )
        headers = self._login()
        self.assertEqual(self.client.get("/profile", headers=headers).status_code, 200)
        self.assertEqual(self.client.delete("/sessions", headers=headers).status_code, 200)
        self.assertEqual(self.client.get("/profile", headers=headers).status_code, 401)

    def test_provider_secret(self) -> None:
        self.api.settings.set_text("identity_provider_secret", "s3cret")
        resp = self.client.post("/sessions", params={"user_id": "u1"})
        self.assertEqual(resp.status_code, 403)
        resp = self.client.post(
            "/sessions",
            params={"user_id": "u1"},
            headers={"X-Provider-Secret": "s3cret"},
        )
        self.assertEqual(resp.status_code, 200)
        with open(self.yaml_path, "r", encoding="utf-8") as f:
            self.assertEqual(yaml.safe_load(f)["identity_provider_secret"], "s3cret")

    def test_workout_flow(self) -> None:
        headers = self._login()
        exercises = self.client.get("/exercises").json()
        self.assertIn("bench-press", [e["id"] for e in exercises])

        resp = self.client.post(
            "/workout_sessions", params={"date": "2024-02-20"}, headers=headers
        )
        self.assertEqual(resp.status_code, 200)
        sid = resp.json()["id"]
        again = self.client.post(
            "/workout_sessions",
            params={"date": "2024-02-20", "note": "heavy"},
            headers=headers,
        ).json()["id"]
        self.assertEqual(sid, again)

        resp = self.client.put(
            f"/workout_sessions/{sid}/exercises/bench-press/sets",
            json=[{"weight": 80, "reps": 5}, {"weight": None, "reps": 0}],
            headers=headers,
        )
        self.assertEqual(resp.json(), {"saved": 1})
        sets = self.client.get(
            f"/workout_sessions/{sid}/exercises/bench-press/sets", headers=headers
        ).json()
        self.assertEqual(sets[0]["weight"], 80.0)

        resp = self.client.put(
            f"/workout_sessions/{sid}/exercises/running/cardio",
            json=[{"duration": 30, "distance": 5}],
            headers=headers,
        )
        self.assertEqual(resp.json(), {"saved": 1})

        resp = self.client.put(
            f"/workout_sessions/{sid}/exercises/unknown/sets",
            json=[{"weight": 80, "reps": 5}],
            headers=headers,
        )
        self.assertEqual(resp.status_code, 404)

        self.assertEqual(
            self.client.get("/stats/max_weights", headers=headers).json(),
            {"bench-press": 80.0},
        )
        self.assertEqual(
            self.client.get("/stats/last_trained", headers=headers).json(),
            {"bench-press": "2024-02-20", "running": "2024-02-20"},
        )
        by_part = self.client.get(
            "/stats/last_trained", params={"by_body_part": True}, headers=headers
        ).json()
        self.assertEqual(by_part["chest"], "2024-02-20")
        self.assertIsNone(by_part["arms"])

        record = self.client.get(
            "/stats/previous_record",
            params={"exercise_id": "bench-press", "reference_date": "2024-03-01"},
            headers=headers,
        ).json()
        self.assertEqual(record["date"], "2024-02-20")

        sessions = self.client.get(
            "/workout_sessions", params={"start_date": "2024-02-01"}, headers=headers
        ).json()
        self.assertEqual([s["note"] for s in sessions], ["heavy"])

        big3 = self.client.get("/stats/big3", headers=headers).json()
        self.assertEqual(big3["bench_press"]["current"], 80.0)
        self.assertEqual(big3["bench_press"]["target"], 100.0)

    def test_other_users_session_is_hidden(self) -> None:
        owner = self._login("u1")
        other = self._login("u2")
        sid = self.client.post(
            "/workout_sessions", params={"date": "2024-02-20"}, headers=owner
        ).json()["id"]
        resp = self.client.get(
            f"/workout_sessions/{sid}/exercises/squat/sets", headers=other
        )
        self.assertEqual(resp.status_code, 404)

    def test_profile_endpoints(self) -> None:
        headers = self._login()
        self.assertEqual(self.client.get("/profile/bmi", headers=headers).status_code, 404)
        resp = self.client.put(
            "/profile", json={"height": 175, "weight": 70}, headers=headers
        )
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["height"], 175)
        self.assertEqual(
            self.client.put("/profile", json={"body_fat": 150}, headers=headers).status_code,
            400,
        )
        bmi = self.client.get("/profile/bmi", headers=headers).json()
        self.assertEqual(bmi["bmi"], 22.9)
        self.assertEqual(bmi["category"], "normal")
        history = self.client.get("/profile/history", headers=headers).json()
        self.assertEqual(len(history), 1)
        self.assertEqual(
            self.client.get(
                "/profile/history", params={"preset": "decade"}, headers=headers
            ).status_code,
            400,
        )

    def test_custom_exercise_and_visibility(self) -> None:
        headers = self._login()
        self.assertEqual(
            self.client.post("/exercises", params={"name": "Row", "body_part": "back"}).status_code,
            401,
        )
        ex_id = self.client.post(
            "/exercises", params={"name": "Cable Row", "body_part": "back"}, headers=headers
        ).json()["id"]
        ids = [e["id"] for e in self.client.get("/exercises", headers=headers).json()]
        self.assertIn(ex_id, ids)
        self.client.put(
            f"/exercises/{ex_id}/visibility", params={"visible": False}, headers=headers
        )
        ids = [e["id"] for e in self.client.get("/exercises", headers=headers).json()]
        self.assertNotIn(ex_id, ids)
        resp = self.client.put(
            "/exercises/missing/visibility", params={"visible": False}, headers=headers
        )
        self.assertEqual(resp.status_code, 404)

    def test_reconcile_endpoints(self) -> None:
        snapshot = {
            "workout_2024-01-10_bench-press": json.dumps([{"weight": 90, "reps": 3}]),
            "workout_2024-01-10_squat": json.dumps([{"weight": 100, "reps": 5}]),
        }
        guest = self.client.post("/reconcile/max_weights", json=snapshot).json()
        self.assertEqual(guest, {"bench-press": 90.0, "squat": 100.0})

        overflow = dict(snapshot)
        overflow["workout_2024-01-11_bench-press"] = json.dumps([{"weight": "1e999", "reps": 1}])
        resp = self.client.post("/reconcile/max_weights", json=overflow)
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json(), guest)

        headers = self._login()
        sid = self.client.post(
            "/workout_sessions", params={"date": "2024-01-09"}, headers=headers
        ).json()["id"]
        self.client.put(
            f"/workout_sessions/{sid}/exercises/bench-press/sets",
            json=[{"weight": 85, "reps": 5}],
            headers=headers,
        )
        self.client.put(
            f"/workout_sessions/{sid}/exercises/squat/sets",
            json=[{"weight": 110, "reps": 5}],
            headers=headers,
        )
        merged = self.client.post(
            "/reconcile/max_weights", json=snapshot, headers=headers
        ).json()
        self.assertEqual(merged, {"bench-press": 90.0, "squat": 110.0})

        trained = self.client.post(
            "/reconcile/last_trained", json=snapshot, headers=headers
        ).json()
        self.assertEqual(trained["bench-press"], "2024-01-10")

        record = self.client.post(
            "/reconcile/previous_record",
            params={"exercise_id": "squat", "reference_date": "2024-01-10"},
            json=snapshot,
            headers=headers,
        ).json()
        self.assertEqual(record["date"], "2024-01-09")
        self.assertEqual(record["sets"][0]["weight"], 110.0)

        resp = self.client.post(
            "/reconcile/previous_record",
            params={"exercise_id": "squat", "reference_date": "tomorrow"},
            json=snapshot,
        )
        self.assertEqual(resp.status_code, 400)

    def test_migrate_endpoint(self) -> None:
        headers = self._login()
        snapshot = {
            "workout_2024-01-10_mock-squat": json.dumps([{"weight": 100, "reps": 5}]),
            "theme": "dark",
        }
        self.assertEqual(self.client.post("/migrate", json=snapshot).status_code, 401)
        body = self.client.post("/migrate", json=snapshot, headers=headers).json()
        self.assertTrue(body["report"]["migrated"])
        self.assertEqual(body["snapshot"], {"theme": "dark", "guest_data_migrated": "true"})
        self.assertEqual(
            self.client.get("/stats/max_weights", headers=headers).json(), {"squat": 100.0}
        )


if __name__ == "__main__":
    unittest.main()
