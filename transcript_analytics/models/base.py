"""Shared scaffolding for the transcript forecasters"""

from abc import ABC, abstractmethod
import pickle
from pathlib import Path
from typing import Any, Dict, List, Optional

import numpy as np
import pandas as pd
from scipy import stats

from transcript_analytics.features.engineering import future_dates
from transcript_analytics.utils.logging_config import get_logger


logger = get_logger(__name__)

EMPTY_METRICS = {'mse': 0.0, 'mae': 0.0, 'rmse': 0.0, 'r2': 0.0, 'mape': 0.0, 'accuracy': 0.0}


def z_score(confidence_level: float) -> float:
    """Two-sided normal quantile, e.g. 0.95 -> 1.96"""
    return float(stats.norm.ppf(0.5 + confidence_level / 2))


class BaseForecaster(ABC):
    """
    Template for a univariate transcript-count forecaster.

    A concrete model supplies ``_fit`` (train, return in-sample estimates)
    and ``_forecast`` (point values for the next n steps). Everything around
    that lives here: ordering the series, residual spread, widening
    confidence bands, scoring and pickling.

    Args:
        model_name: Identifier used in logs and result payloads
        accuracy_tolerance: Relative error under which a point counts as hit
    """

    def __init__(self, model_name: str, accuracy_tolerance: float = 0.10):
        self.model_name = model_name
        self.accuracy_tolerance = accuracy_tolerance
        self.model = None
        self.is_fitted = False
        self.period = 'monthly'
        self.history: Optional[pd.DataFrame] = None
        self.residual_std = 0.0
        self.training_metrics: Dict[str, float] = {}
        self.validation_metrics: Dict[str, float] = {}

    @abstractmethod
    def _fit(self, values: np.ndarray, dates: List[pd.Timestamp]) -> np.ndarray:
        """
        Train on the series (oldest first).

        Returns:
            In-sample estimates aligned with ``values``; NaN where the model
            has none (e.g. before a moving window fills)
        """

    @abstractmethod
    def _forecast(self, n_periods: int) -> np.ndarray:
        """Point forecasts for the ``n_periods`` steps after the history."""

    def fit(
        self,
        df_train: pd.DataFrame,
        target_col: str = 'value',
        period: str = 'monthly'
    ) -> 'BaseForecaster':
        """
        Train on a ``date`` + ``target_col`` frame spaced by ``period``.

        Returns:
            Self, so ``model.fit(df).predict(3)`` reads naturally
        """
        if 'date' not in df_train.columns:
            raise ValueError(f"{self.model_name}: training frame has no 'date' column")
        if len(df_train) < 2:
            raise ValueError(f"{self.model_name} needs at least 2 observations, got {len(df_train)}")

        series = df_train[['date', target_col]].rename(columns={target_col: 'value'})
        series['date'] = pd.to_datetime(series['date'])
        self.history = series.sort_values('date').reset_index(drop=True)
        self.period = period

        values = self.history['value'].to_numpy(dtype=float)
        fitted = np.asarray(self._fit(values, self.history['date'].to_list()), dtype=float)

        known = ~np.isnan(fitted)
        residuals = values[known] - fitted[known]
        self.residual_std = float(np.std(residuals)) if residuals.size > 1 else 0.0

        self.is_fitted = True
        self.training_metrics = self._calculate_metrics(values, fitted)

        logger.debug(
            f"✅ {self.model_name} fitted on {len(values)} points "
            f"(accuracy: {self.training_metrics['accuracy']:.1f}%)"
        )
        return self

    def _band_sigma(self) -> float:
        for sigma in (self.residual_std, float(self.history['value'].std(ddof=0))):
            if sigma > 0:
                return sigma
        return 1.0

    def predict(self, n_periods: int, confidence_level: float = 0.95) -> pd.DataFrame:
        """
        Forecast ``n_periods`` steps with confidence bands.

        The band half-width is z × σ × √h for step h, where σ is the
        in-sample residual spread (falling back to the series spread, then 1).
        Counts are rounded and floored at zero.

        Returns:
            DataFrame with date, predicted_count, lower, upper
        """
        if not self.is_fitted:
            raise ValueError(f"{self.model_name} has not been fitted")

        last_value = float(self.history['value'].iloc[-1])
        points = np.nan_to_num(np.asarray(self._forecast(n_periods), dtype=float), nan=last_value)

        steps = np.arange(1, n_periods + 1)
        half_width = z_score(confidence_level) * self._band_sigma() * np.sqrt(steps)

        predicted = np.maximum(0, np.round(points)).astype(int)
        lower = np.maximum(0, np.round(points - half_width)).astype(int)
        upper = np.maximum(predicted, np.round(points + half_width)).astype(int)

        return pd.DataFrame({
            'date': future_dates(self.history['date'].iloc[-1], n_periods, self.period),
            'predicted_count': predicted,
            'lower': np.minimum(lower, predicted),
            'upper': upper,
        })

    def validate(self, df_val: pd.DataFrame, target_col: str = 'value') -> Dict[str, float]:
        """Score a forecast of the ``len(df_val)`` periods following the training data."""
        logger.debug(f"Validating {self.model_name} on {len(df_val)} held-out periods")

        forecast = self.predict(len(df_val))
        self.validation_metrics = self._calculate_metrics(
            df_val[target_col].to_numpy(dtype=float),
            forecast['predicted_count'].to_numpy(dtype=float),
        )
        return self.validation_metrics

    def _calculate_metrics(self, actuals: np.ndarray, predicted: np.ndarray) -> Dict[str, float]:
        """
        Error metrics over the pairs where both sides are known.

        ``accuracy`` is the share of points (in percent) whose absolute error
        is within ``accuracy_tolerance`` of the actual value. ``mape`` skips
        zero actuals.
        """
        actuals = np.asarray(actuals, dtype=float)
        predicted = np.asarray(predicted, dtype=float)

        paired = ~(np.isnan(actuals) | np.isnan(predicted))
        actuals, predicted = actuals[paired], predicted[paired]
        if actuals.size == 0:
            return dict(EMPTY_METRICS)

        errors = actuals - predicted
        mse = float(np.mean(errors ** 2))

        nonzero = actuals != 0
        mape = float(np.mean(np.abs(errors[nonzero] / actuals[nonzero])) * 100) if nonzero.any() else 0.0

        ss_tot = np.sum((actuals - actuals.mean()) ** 2)
        r2 = float(1 - np.sum(errors ** 2) / ss_tot) if ss_tot > 0 else 0.0

        hits = np.abs(errors) <= self.accuracy_tolerance * np.abs(actuals)

        return {
            'mse': mse,
            'mae': float(np.mean(np.abs(errors))),
            'rmse': float(np.sqrt(mse)),
            'r2': r2,
            'mape': mape,
            'accuracy': float(np.mean(hits) * 100),
        }

    def save(self, path: str) -> Path:
        """Pickle the fitted forecaster to ``path``, creating parent folders."""
        target = Path(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        with open(target, 'wb') as f:
            pickle.dump(self, f)
        logger.info(f"💾 {self.model_name} written to {target}")
        return target

    @classmethod
    def load(cls, path: str) -> 'BaseForecaster':
        """Unpickle a forecaster written by ``save``."""
        source = Path(path)
        if not source.exists():
            raise FileNotFoundError(f"No saved forecaster at {source}")
        with open(source, 'rb') as f:
            model = pickle.load(f)
        logger.info(f"Loaded {model.model_name} from {source}")
        return model

    def get_metadata(self) -> Dict[str, Any]:
        return {
            'model_name': self.model_name,
            'is_fitted': self.is_fitted,
            'period': self.period,
            'observations': 0 if self.history is None else len(self.history),
            'residual_std': self.residual_std,
            'training_metrics': self.training_metrics,
            'validation_metrics': self.validation_metrics,
        }

    def __repr__(self) -> str:
        state = 'fitted' if self.is_fitted else 'unfitted'
        return f"<{self.__class__.__name__} {self.model_name} ({state})>"
