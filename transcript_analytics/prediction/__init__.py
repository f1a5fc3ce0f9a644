"""Prediction service and result cache"""

from .cache import PredictionCache, make_cache_key
from .service import (
    PredictionRequest,
    PredictionResult,
    PredictionService,
    ValidationResult,
)

__all__ = [
    'PredictionCache',
    'make_cache_key',
    'PredictionRequest',
    'PredictionResult',
    'PredictionService',
    'ValidationResult',
]
