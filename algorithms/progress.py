import datetime
from typing import Iterable

from .weight_converter import WeightConverter


class ProgressTools:
    """Helpers for max-weight progression charts."""

    PRESETS = ("week", "month", "3months", "6months", "year", "all")

    @staticmethod
    def _sub_months(day: datetime.date, months: int) -> datetime.date:
        month = day.month - months
        year = day.year
        while month <= 0:
            month += 12
            year -= 1
        last_day = (
            datetime.date(year + (month == 12), month % 12 + 1, 1)
            - datetime.timedelta(days=1)
        ).day
        return datetime.date(year, month, min(day.day, last_day))

    @classmethod
    def start_date(
        cls, preset: str, today: datetime.date | None = None
    ) -> datetime.date:
        """Return the first date covered by ``preset``."""
        today = today or datetime.date.today()
        if preset == "week":
            return today - datetime.timedelta(days=7)
        if preset == "3months":
            return cls._sub_months(today, 3)
        if preset == "6months":
            return cls._sub_months(today, 6)
        if preset == "year":
            return cls._sub_months(today, 12)
        if preset == "all":
            return datetime.date(1970, 1, 1)
        return cls._sub_months(today, 1)

    @staticmethod
    def day_max_weight(sets: Iterable[dict]) -> float:
        """Return the heaviest non-warmup weight in ``sets``."""
        best = 0.0
        for s in sets:
            if s.get("is_warmup"):
                continue
            weight = WeightConverter.to_number(s.get("weight"))
            if weight is not None and weight > best:
                best = weight
        return best

    @staticmethod
    def max_weight_updates(rows: Iterable[tuple[str, float]]) -> list[dict]:
        """Keep only the dates where the running maximum increased.

        ``rows`` must be ordered by date.
        """
        previous = 0.0
        updates: list[dict] = []
        for date, weight in rows:
            value = WeightConverter.to_number(weight) or 0.0
            if value > previous:
                updates.append({"date": date, "max_weight": value})
                previous = value
        return updates
