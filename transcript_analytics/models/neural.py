"""Feed-forward neural network forecaster over lag-window features"""

import warnings
from abc import abstractmethod
from typing import List, Optional

import numpy as np
import pandas as pd
from sklearn.exceptions import ConvergenceWarning
from sklearn.neural_network import MLPRegressor

from transcript_analytics.features.engineering import (
    ScaleParams,
    TranscriptFeatureEngine,
    future_dates,
)
from transcript_analytics.models.base import BaseForecaster
from transcript_analytics.utils.config import ConfigLoader
from transcript_analytics.utils.logging_config import get_logger


logger = get_logger(__name__)


class LagWindowForecaster(BaseForecaster):
    """
    Regression over sliding-window features with recursive forecasting

    Features per target point: the previous ``window_size`` values, the
    calendar month and year, and the slope across the window. Monthly
    series are gap-filled and stripped of IQR outliers before training.
    Targets and feature columns are min-max scaled with the training
    ranges; each forecast is fed back as the newest lag.
    """

    def __init__(self, model_name: str, window_size: int = 3, **kwargs):
        super().__init__(model_name=model_name, **kwargs)
        self.window_size = window_size
        self.feature_engine = TranscriptFeatureEngine(window_size=window_size)
        self.target_scale: Optional[ScaleParams] = None
        self.feature_min = None
        self.feature_span = None
        self.last_window: List[float] = []

    @abstractmethod
    def _make_estimator(self):
        """Unfitted scikit-learn style regressor for the scaled lag features."""

    def _scale_features(self, features: np.ndarray) -> np.ndarray:
        safe_span = np.where(self.feature_span > 0, self.feature_span, 1.0)
        return np.where(self.feature_span > 0, (features - self.feature_min) / safe_span, 0.0)

    def _fit(self, values: np.ndarray, dates: List[pd.Timestamp]) -> np.ndarray:
        series = pd.DataFrame({'date': dates, 'value': values})
        if self.period == 'monthly':
            series = self.feature_engine.remove_outliers(self.feature_engine.fill_missing_months(series))

        if len(series) <= self.window_size:
            raise ValueError(
                f"{self.model_name} needs more than {self.window_size} points after cleaning, "
                f"got {len(series)}"
            )

        features, targets = self.feature_engine.create_feature_matrix(series, self.window_size)

        scaled_targets, self.target_scale = self.feature_engine.normalize(targets)
        self.feature_min = features.min(axis=0)
        self.feature_span = features.max(axis=0) - self.feature_min

        self.model = self._make_estimator()
        with warnings.catch_warnings():
            warnings.simplefilter('ignore', category=ConvergenceWarning)
            self.model.fit(self._scale_features(features), scaled_targets)

        self.last_window = list(series['value'].to_numpy(dtype=float)[-self.window_size:])

        # In-sample estimates for the observations that have a full window
        in_sample = self.feature_engine.denormalize(
            self.model.predict(self._scale_features(features)), self.target_scale
        )
        fitted_by_date = dict(zip(pd.to_datetime(series['date']).iloc[self.window_size:], in_sample))
        return np.array([fitted_by_date.get(pd.Timestamp(d), np.nan) for d in dates])

    def _forecast(self, n_periods: int) -> np.ndarray:
        window = list(self.last_window)
        forecasts = []

        for target_date in future_dates(self.history['date'].iloc[-1], n_periods, self.period):
            row = np.asarray([self.feature_engine.feature_row(window, target_date)], dtype=float)
            scaled = self.model.predict(self._scale_features(row))
            value = float(self.feature_engine.denormalize(scaled, self.target_scale)[0])
            value = max(value, 0.0)

            forecasts.append(value)
            window = window[1:] + [value]

        return np.array(forecasts)


class NeuralForecaster(LagWindowForecaster):
    """
    Small multilayer perceptron trained per client

    Uses scikit-learn's MLPRegressor with the L-BFGS solver, which
    converges reliably on the short series typical of monthly counts.
    """

    def __init__(self, config: Optional[ConfigLoader] = None, window_size: int = None, **kwargs):
        """
        Initialize neural forecaster

        Args:
            config: Configuration loader (reads models.neural.*)
            window_size: Lag window (default: prediction.window_size)
        """
        config = config if config else ConfigLoader.from_dict({})
        window_size = window_size or config.get('prediction.window_size', 3)
        super().__init__(model_name='Neural Network', window_size=window_size, **kwargs)

        nn_config = config.get('models.neural', {}) or {}
        self.hidden_layer_sizes = tuple(nn_config.get('hidden_layer_sizes', [16, 8]))
        self.max_iter = nn_config.get('max_iter', 2000)
        self.alpha = nn_config.get('alpha', 1e-3)
        self.learning_rate_init = nn_config.get('learning_rate_init', 0.01)
        self.random_state = nn_config.get('random_state', 42)

    def _make_estimator(self):
        return MLPRegressor(
            hidden_layer_sizes=self.hidden_layer_sizes,
            activation='relu',
            solver='lbfgs',
            alpha=self.alpha,
            learning_rate_init=self.learning_rate_init,
            max_iter=self.max_iter,
            random_state=self.random_state,
        )
