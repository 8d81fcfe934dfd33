import math
from typing import Any


class WeightConverter:
    """Utility for converting between kg and lb and reading stored weights."""

    KG_TO_LB = 2.20462

    @staticmethod
    def kg_to_lb(kg: float) -> float:
        return round(kg * WeightConverter.KG_TO_LB, 2)

    @staticmethod
    def lb_to_kg(lb: float) -> float:
        return round(lb / WeightConverter.KG_TO_LB, 2)

    @staticmethod
    def to_number(value: Any) -> float | None:
        """Return ``value`` as float, accepting numeric strings.

        ``None``, booleans, non-numeric strings, NaN and infinities yield ``None``.
        """
        if value is None or isinstance(value, bool):
            return None
        if isinstance(value, (int, float)):
            num = float(value)
        elif isinstance(value, str):
            try:
                num = float(value.strip())
            except ValueError:
                return None
        else:
            return None
        if not math.isfinite(num):
            return None
        return num

    @classmethod
    def convert(cls, weight: float, unit: str) -> float:
        """Convert a kg value into ``unit`` ("kg" or "lb")."""
        if unit == "kg":
            return weight
        if unit == "lb":
            return cls.kg_to_lb(weight)
        raise ValueError(f"unknown unit: {unit}")
