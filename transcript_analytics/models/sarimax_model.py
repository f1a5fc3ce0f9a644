"""ARIMA / SARIMAX forecaster for transcript series"""

import warnings
from typing import List, Optional, Tuple

import numpy as np
import pandas as pd
from statsmodels.tsa.statespace.sarimax import SARIMAX

from transcript_analytics.models.base import BaseForecaster
from transcript_analytics.utils.config import ConfigLoader
from transcript_analytics.utils.logging_config import get_logger


logger = get_logger(__name__)


class SARIMAXForecaster(BaseForecaster):
    """
    SARIMAX-based time series forecaster

    Seasonal AutoRegressive Integrated Moving Average.

    Features:
    - ARIMA order (p, d, q)
    - Seasonal order (P, D, Q, s), used only when at least two full
      seasons of history are available
    - Falls back to a random walk (0, 1, 0) when the requested order
      cannot be estimated
    """

    def __init__(
        self,
        config: Optional[ConfigLoader] = None,
        order: Tuple[int, int, int] = None,
        seasonal_order: Tuple[int, int, int, int] = None,
        **kwargs
    ):
        """
        Initialize SARIMAX forecaster

        Args:
            config: Configuration loader (reads models.arima.*)
            order: ARIMA order (p, d, q)
                - p: autoregressive order
                - d: differencing order
                - q: moving average order
            seasonal_order: Seasonal order (P, D, Q, s)
                - s: seasonal period (12 for monthly data)
        """
        super().__init__(model_name='ARIMA', **kwargs)

        config = config if config else ConfigLoader.from_dict({})
        self.order = tuple(order or config.get('models.arima.order', [1, 1, 1]))
        self.seasonal_order = tuple(seasonal_order or config.get('models.arima.seasonal_order', [1, 0, 0, 12]))
        self.fitted_order = None
        self.fitted_seasonal_order = None

    def _estimate(self, values: np.ndarray, order, seasonal_order):
        with warnings.catch_warnings():
            warnings.filterwarnings('ignore')
            model = SARIMAX(
                values,
                order=order,
                seasonal_order=seasonal_order,
                enforce_stationarity=False,
                enforce_invertibility=False
            )
            return model.fit(disp=False, maxiter=200)

    def _fit(self, values: np.ndarray, dates: List[pd.Timestamp]) -> np.ndarray:
        season = self.seasonal_order[3]
        seasonal_order = self.seasonal_order if len(values) >= 2 * season else (0, 0, 0, 0)

        logger.debug(f"Fitting ARIMA{self.order} seasonal={seasonal_order} on {len(values)} points")

        try:
            self.model = self._estimate(values, self.order, seasonal_order)
            self.fitted_order, self.fitted_seasonal_order = self.order, seasonal_order
        except (ValueError, np.linalg.LinAlgError) as e:
            logger.warning(f"⚠️  ARIMA{self.order} failed ({e}), falling back to (0, 1, 0)")
            self.model = self._estimate(values, (0, 1, 0), (0, 0, 0, 0))
            self.fitted_order, self.fitted_seasonal_order = (0, 1, 0), (0, 0, 0, 0)

        fitted = np.asarray(self.model.fittedvalues, dtype=float).copy()
        # The first differenced observations have no real one-step estimate
        burn_in = self.fitted_order[1] + self.fitted_seasonal_order[1] * self.fitted_seasonal_order[3]
        fitted[:max(burn_in, 0)] = np.nan
        return fitted

    def _forecast(self, n_periods: int) -> np.ndarray:
        return np.asarray(self.model.forecast(steps=n_periods), dtype=float)
