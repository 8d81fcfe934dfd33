class BodyMetrics:
    """Body composition helpers."""

    BMI_MIN: float = 18.5
    BMI_MAX: float = 30.0

    @staticmethod
    def bmi(height_cm: float, weight_kg: float) -> float:
        """Return BMI rounded to one decimal, or 0.0 for non-positive inputs."""
        if height_cm <= 0 or weight_kg <= 0:
            return 0.0
        meters = height_cm / 100
        return round(weight_kg / (meters * meters), 1)

    @staticmethod
    def bmi_category(bmi: float) -> str:
        if bmi < 18.5:
            return "underweight"
        if bmi < 25:
            return "normal"
        if bmi < 30:
            return "overweight"
        return "obese"

    @classmethod
    def bmi_percentage(cls, bmi: float) -> float:
        """Map BMI in [18.5, 30] onto 0-100 for progress bars."""
        if bmi < cls.BMI_MIN:
            return 0.0
        if bmi >= cls.BMI_MAX:
            return 100.0
        return (bmi - cls.BMI_MIN) / (cls.BMI_MAX - cls.BMI_MIN) * 100

    @classmethod
    def bmi_result(cls, height_cm: float, weight_kg: float) -> dict:
        value = cls.bmi(height_cm, weight_kg)
        return {
            "bmi": value,
            "category": cls.bmi_category(value),
            "percentage": round(cls.bmi_percentage(value), 1),
        }
