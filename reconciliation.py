"""Merge locally cached values with values from the remote store.

The local value set is computed first and synchronously. Without an
authenticated user it is returned as is; otherwise the remote value set is
awaited and both are merged per key. A failed remote fetch degrades to the
local result.
"""

from __future__ import annotations
import datetime
from typing import Any, Awaitable, Callable, Optional, TypeVar

from loguru import logger
from pydantic import ValidationError

from local_store import LocalCacheStore
from models import CardioRecord, PreviousRecord, Result, SetRecord
from remote_data import RemoteDataAccessor

V = TypeVar("V")


def merge_values(
    local: dict[str, V],
    remote: dict[str, V],
    remote_wins: Callable[[V, V], bool],
) -> dict[str, V]:
    """Union of both maps; on shared keys ``remote_wins(local, remote)`` decides."""
    merged = dict(local)
    for key, remote_value in remote.items():
        if key not in merged or remote_wins(merged[key], remote_value):
            merged[key] = remote_value
    return merged


def remote_is_heavier(local: float, remote: float) -> bool:
    return remote > local


def remote_is_not_older(local: datetime.date, remote: datetime.date) -> bool:
    return remote >= local


def merge_max_weights(local: dict[str, float], remote: dict[str, float]) -> dict[str, float]:
    return merge_values(local, remote, remote_is_heavier)


def merge_last_trained(
    local: dict[str, datetime.date], remote: dict[str, datetime.date]
) -> dict[str, datetime.date]:
    return merge_values(local, remote, remote_is_not_older)


def pick_previous_record(
    reference_date: datetime.date,
    local: Optional[PreviousRecord],
    remote: Optional[PreviousRecord],
) -> Optional[PreviousRecord]:
    """Choose between two candidates dated strictly before ``reference_date``."""
    def _eligible(record: Optional[PreviousRecord]) -> dict[str, PreviousRecord]:
        if record is None or record.date >= reference_date:
            return {}
        return {"previous": record}

    merged = merge_values(
        _eligible(local),
        _eligible(remote),
        lambda l, r: remote_is_not_older(l.date, r.date),
    )
    return merged.get("previous")


def _previous_from_payload(data: dict, cardio: bool) -> PreviousRecord:
    if cardio:
        return PreviousRecord(
            kind="cardio",
            date=data["date"],
            records=[CardioRecord.model_validate(r) for r in data["records"]],
        )
    return PreviousRecord(
        kind="workout",
        date=data["date"],
        sets=[SetRecord.model_validate(s) for s in data["sets"]],
    )


class RequestGuard:
    """Drops results that arrive after their requester was torn down."""

    def __init__(self) -> None:
        self.mounted = True

    def unmount(self) -> None:
        self.mounted = False

    def deliver(self, callback: Callable[[Any], None], value: Any) -> bool:
        if not self.mounted:
            logger.debug("Discarding result for unmounted requester")
            return False
        callback(value)
        return True


class Reconciler:
    """Reconciles one user's local cache with their remote records."""

    def __init__(
        self,
        local: LocalCacheStore,
        remote: Optional[RemoteDataAccessor] = None,
    ) -> None:
        self.local = local
        self.remote = remote

    async def _fetch_remote(
        self, name: str, fetch: Callable[[], Awaitable[Result]]
    ) -> Optional[Result]:
        try:
            result = await fetch()
        except Exception as e:
            logger.warning("Remote {} raised, using local values: {}", name, e)
            return None
        if not result.success:
            logger.warning("Remote {} failed, using local values: {}", name, result.error)
            return None
        return result

    async def reconcile_max_weights(self, user_id: Optional[str]) -> dict[str, float]:
        local = self.local.compute_max_weights()
        if not user_id or self.remote is None:
            return local
        result = await self._fetch_remote(
            "max weights", lambda: self.remote.fetch_max_weights(user_id)
        )
        if result is None:
            return local
        return merge_max_weights(local, result.data or {})

    async def reconcile_last_trained(
        self, user_id: Optional[str]
    ) -> dict[str, datetime.date]:
        local = self.local.compute_last_trained()
        if not user_id or self.remote is None:
            return local
        result = await self._fetch_remote(
            "last trained", lambda: self.remote.fetch_last_trained(user_id)
        )
        if result is None:
            return local
        return merge_last_trained(local, result.data or {})

    async def reconcile_previous_record(
        self,
        user_id: Optional[str],
        exercise_id: str,
        reference_date: datetime.date,
        cardio: bool = False,
    ) -> Optional[PreviousRecord]:
        local = self.local.previous_record(reference_date, exercise_id, cardio=cardio)
        if not user_id or self.remote is None:
            return local
        fetch_latest = (
            self.remote.fetch_latest_cardio_record
            if cardio
            else self.remote.fetch_latest_set_record
        )
        result = await self._fetch_remote(
            "previous record",
            lambda: fetch_latest(user_id, exercise_id, reference_date),
        )
        if result is None or result.data is None:
            return pick_previous_record(reference_date, local, None)
        try:
            remote = _previous_from_payload(result.data, cardio)
        except (KeyError, TypeError, ValidationError) as e:
            logger.warning("Malformed remote previous record, using local value: {}", e)
            remote = None
        return pick_previous_record(reference_date, local, remote)
