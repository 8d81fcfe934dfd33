"""Pydantic record models shared by the local cache and the remote store."""

from __future__ import annotations
import datetime
from typing import Any, Generic, Literal, Optional, TypeVar

from pydantic import BaseModel, Field

T = TypeVar("T")

BIG3_KEYS = ("bench_press", "squat", "deadlift")
DEFAULT_BIG3_TARGETS = {"bench_press": 100.0, "squat": 120.0, "deadlift": 140.0}
BODY_PARTS = ("chest", "back", "legs", "shoulders", "arms", "core")


class SetRecord(BaseModel):
    """One resistance set for one exercise on one date."""

    weight: Optional[float] = None
    reps: int = 0
    duration: Optional[float] = None
    set_order: int = 1
    rpe: Optional[float] = None
    is_warmup: bool = False
    rest_seconds: Optional[int] = None
    notes: Optional[str] = None
    failure: bool = False

    def has_data(self) -> bool:
        return (self.weight or 0) > 0 or self.reps > 0 or (self.duration or 0) > 0


class CardioRecord(BaseModel):
    """One cardio session."""

    date: Optional[datetime.date] = None
    duration: float = 0
    distance: Optional[float] = None
    speed: Optional[float] = None
    calories: Optional[int] = None
    heart_rate: Optional[int] = None
    incline: Optional[float] = None
    notes: Optional[str] = None

    def has_data(self) -> bool:
        return (
            self.duration > 0
            or (self.distance or 0) > 0
            or (self.calories or 0) > 0
            or (self.heart_rate or 0) > 0
        )


def valid_sets(sets: list[SetRecord]) -> bool:
    return bool(sets) and any(s.has_data() for s in sets)


def valid_cardio(records: list[CardioRecord]) -> bool:
    return bool(records) and any(r.has_data() for r in records)


class PreviousRecord(BaseModel):
    """Most recent record of an exercise before a reference date."""

    kind: Literal["workout", "cardio"]
    date: datetime.date
    sets: list[SetRecord] = Field(default_factory=list)
    records: list[CardioRecord] = Field(default_factory=list)


class Exercise(BaseModel):
    id: str
    name: str
    name_en: Optional[str] = None
    body_part: str
    is_big3: bool = False
    is_cardio: bool = False
    user_id: Optional[str] = None


class Profile(BaseModel):
    height: Optional[float] = None
    weight: Optional[float] = None
    body_fat: Optional[float] = None
    muscle_mass: Optional[float] = None
    big3_target_bench_press: Optional[float] = None
    big3_target_squat: Optional[float] = None
    big3_target_deadlift: Optional[float] = None


class Result(BaseModel, Generic[T]):
    """Tagged outcome of a remote accessor call."""

    success: bool
    data: Optional[T] = None
    error: Optional[str] = None

    @classmethod
    def ok(cls, data: Any = None) -> "Result":
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, error: str) -> "Result":
        return cls(success=False, error=error)
