import requests
from typing import Dict, List, Optional


class MuscleGrowClient:
    """Simple REST client for the MuscleGrow API."""

    def __init__(
        self,
        base_url: str = "http://localhost:8000",
        token: Optional[str] = None,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.http = session or requests.Session()

    def _headers(self) -> dict:
        if not self.token:
            return {}
        return {"Authorization": f"Bearer {self.token}"}

    def _request(self, method: str, path: str, **kwargs):
        resp = self.http.request(
            method, f"{self.base_url}{path}", headers=self._headers(), **kwargs
        )
        resp.raise_for_status()
        return resp.json()

    def open_session(
        self, user_id: str, email: Optional[str] = None, provider_secret: Optional[str] = None
    ) -> str:
        headers = {"X-Provider-Secret": provider_secret} if provider_secret else {}
        resp = self.http.post(
            f"{self.base_url}/sessions",
            params={"user_id": user_id, **({"email": email} if email else {})},
            headers=headers,
        )
        resp.raise_for_status()
        self.token = resp.json()["token"]
        return self.token

    def close_session(self) -> None:
        self._request("DELETE", "/sessions")
        self.token = None

    def list_exercises(self, include_hidden: bool = False) -> List[dict]:
        return self._request("GET", "/exercises", params={"include_hidden": include_hidden})

    def add_exercise(self, name: str, body_part: str, **params) -> str:
        return self._request(
            "POST", "/exercises", params={"name": name, "body_part": body_part, **params}
        )["id"]

    def save_workout_session(self, date: str, **params) -> str:
        return self._request("POST", "/workout_sessions", params={"date": date, **params})["id"]

    def list_workout_sessions(self, **params: str) -> List[dict]:
        return self._request("GET", "/workout_sessions", params=params)

    def save_sets(self, session_id: str, exercise_id: str, sets: List[dict]) -> int:
        return self._request(
            "PUT",
            f"/workout_sessions/{session_id}/exercises/{exercise_id}/sets",
            json=sets,
        )["saved"]

    def save_cardio(self, session_id: str, exercise_id: str, records: List[dict]) -> int:
        return self._request(
            "PUT",
            f"/workout_sessions/{session_id}/exercises/{exercise_id}/cardio",
            json=records,
        )["saved"]

    def get_profile(self) -> dict:
        return self._request("GET", "/profile")

    def update_profile(self, **values) -> dict:
        return self._request("PUT", "/profile", json=values)

    def reconcile_max_weights(self, snapshot: Dict[str, str]) -> Dict[str, float]:
        return self._request("POST", "/reconcile/max_weights", json=snapshot)

    def reconcile_last_trained(self, snapshot: Dict[str, str]) -> Dict[str, str]:
        return self._request("POST", "/reconcile/last_trained", json=snapshot)

    def reconcile_previous_record(
        self,
        snapshot: Dict[str, str],
        exercise_id: str,
        reference_date: str,
        cardio: bool = False,
    ) -> Optional[dict]:
        return self._request(
            "POST",
            "/reconcile/previous_record",
            params={
                "exercise_id": exercise_id,
                "reference_date": reference_date,
                "cardio": cardio,
            },
            json=snapshot,
        )

    def migrate(self, snapshot: Dict[str, str]) -> dict:
        return self._request("POST", "/migrate", json=snapshot)
