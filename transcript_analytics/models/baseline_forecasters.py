"""Trend and baseline forecasting models"""

from typing import List

import numpy as np
import pandas as pd
from sklearn.linear_model import LinearRegression, Ridge
from sklearn.pipeline import make_pipeline
from sklearn.preprocessing import PolynomialFeatures

from transcript_analytics.features.engineering import future_dates
from transcript_analytics.models.base import BaseForecaster
from transcript_analytics.utils.logging_config import get_logger


logger = get_logger(__name__)


class LinearTrendForecaster(BaseForecaster):
    """
    Linear trend over the period index

    Fits value = a + b·t with t = 0..n-1 and extrapolates t = n, n+1, ...
    """

    def __init__(self, **kwargs):
        super().__init__(model_name='Linear Trend', **kwargs)
        self.n_obs = 0

    def _fit(self, values: np.ndarray, dates: List[pd.Timestamp]) -> np.ndarray:
        self.n_obs = len(values)
        t = np.arange(self.n_obs).reshape(-1, 1)
        self.model = LinearRegression().fit(t, values)
        return self.model.predict(t)

    def _forecast(self, n_periods: int) -> np.ndarray:
        t = np.arange(self.n_obs, self.n_obs + n_periods).reshape(-1, 1)
        return self.model.predict(t)


class PolynomialTrendForecaster(BaseForecaster):
    """
    Polynomial trend (cubic by default) over the period index

    The index is scaled to [0, 1] over the training span and the fit is
    lightly ridge-regularised, which keeps the cubic term from exploding
    on short series.
    """

    def __init__(self, degree: int = 3, alpha: float = 1e-3, **kwargs):
        """
        Initialize polynomial forecaster

        Args:
            degree: Polynomial degree
            alpha: Ridge penalty
        """
        super().__init__(model_name=f'Polynomial-{degree}', **kwargs)
        self.degree = degree
        self.alpha = alpha
        self.n_obs = 0

    def _scaled_index(self, start: int, stop: int) -> np.ndarray:
        span = max(self.n_obs - 1, 1)
        return (np.arange(start, stop) / span).reshape(-1, 1)

    def _fit(self, values: np.ndarray, dates: List[pd.Timestamp]) -> np.ndarray:
        self.n_obs = len(values)
        t = self._scaled_index(0, self.n_obs)
        self.model = make_pipeline(
            PolynomialFeatures(degree=self.degree, include_bias=False),
            Ridge(alpha=self.alpha),
        )
        self.model.fit(t, values)
        return self.model.predict(t)

    def _forecast(self, n_periods: int) -> np.ndarray:
        return self.model.predict(self._scaled_index(self.n_obs, self.n_obs + n_periods))


class SeasonalNaiveForecaster(BaseForecaster):
    """
    Seasonal Naive forecaster

    Uses the average of the same calendar month across the history.
    Months never observed fall back to the overall mean.
    """

    def __init__(self, **kwargs):
        super().__init__(model_name='Seasonal Naive', **kwargs)
        self.monthly_values = {}
        self.overall_mean = 0.0

    def _fit(self, values: np.ndarray, dates: List[pd.Timestamp]) -> np.ndarray:
        months = np.array([d.month for d in dates])
        self.monthly_values = pd.Series(values).groupby(months).mean().to_dict()
        self.overall_mean = float(np.mean(values))
        return np.array([self.monthly_values[m] for m in months])

    def _forecast(self, n_periods: int) -> np.ndarray:
        dates = future_dates(self.history['date'].iloc[-1], n_periods, self.period)
        return np.array([self.monthly_values.get(d.month, self.overall_mean) for d in dates])


class MovingAverageForecaster(BaseForecaster):
    """
    Moving Average forecaster

    Uses the average of the last N periods as a flat forecast.
    """

    def __init__(self, window: int = 3, **kwargs):
        """
        Initialize Moving Average forecaster

        Args:
            window: Number of periods to average
        """
        super().__init__(model_name=f'MA-{window}', **kwargs)
        self.window = window
        self.level = 0.0

    def _fit(self, values: np.ndarray, dates: List[pd.Timestamp]) -> np.ndarray:
        self.level = float(np.mean(values[-self.window:]))
        # In-sample: trailing mean of the previous `window` points
        fitted = pd.Series(values).rolling(self.window).mean().shift(1)
        return fitted.to_numpy()

    def _forecast(self, n_periods: int) -> np.ndarray:
        return np.full(n_periods, self.level)
