from .weight_converter import WeightConverter
from .body_metrics import BodyMetrics
from .progress import ProgressTools

__all__ = ["WeightConverter", "BodyMetrics", "ProgressTools"]
