"""Forecasting models"""

from typing import Optional

from transcript_analytics.utils.config import ConfigLoader

from .base import BaseForecaster
from .baseline_forecasters import (
    LinearTrendForecaster,
    PolynomialTrendForecaster,
    SeasonalNaiveForecaster,
    MovingAverageForecaster
)
from .neural import NeuralForecaster
from .sarimax_model import SARIMAXForecaster
from .xgboost_forecaster import XGBoostForecaster


MODEL_TYPES = (
    'neural',
    'linear',
    'polynomial',
    'arima',
    'xgboost',
    'moving_average',
    'seasonal_naive'
)


def get_model(model_type: str, config: Optional[ConfigLoader] = None) -> BaseForecaster:
    """
    Build an unfitted forecaster by type name

    Args:
        model_type: One of MODEL_TYPES
        config: Configuration loader for model hyperparameters

    Returns:
        Forecaster instance

    Raises:
        ValueError: If the model type is unknown
    """
    config = config if config else ConfigLoader.from_dict({})
    tolerance = config.get('prediction.accuracy_tolerance', 0.10)

    if model_type == 'neural':
        return NeuralForecaster(config, accuracy_tolerance=tolerance)
    if model_type == 'linear':
        return LinearTrendForecaster(accuracy_tolerance=tolerance)
    if model_type == 'polynomial':
        return PolynomialTrendForecaster(
            degree=config.get('models.polynomial.degree', 3),
            accuracy_tolerance=tolerance
        )
    if model_type == 'arima':
        return SARIMAXForecaster(config, accuracy_tolerance=tolerance)
    if model_type == 'xgboost':
        return XGBoostForecaster(config, accuracy_tolerance=tolerance)
    if model_type == 'moving_average':
        return MovingAverageForecaster(
            window=config.get('models.moving_average.window', 3),
            accuracy_tolerance=tolerance
        )
    if model_type == 'seasonal_naive':
        return SeasonalNaiveForecaster(accuracy_tolerance=tolerance)

    raise ValueError(f"Unknown model type '{model_type}', must be one of: {', '.join(MODEL_TYPES)}")


__all__ = [
    'BaseForecaster',
    'LinearTrendForecaster',
    'PolynomialTrendForecaster',
    'SeasonalNaiveForecaster',
    'MovingAverageForecaster',
    'NeuralForecaster',
    'SARIMAXForecaster',
    'XGBoostForecaster',
    'MODEL_TYPES',
    'get_model'
]
