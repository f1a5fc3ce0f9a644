"""XGBoost forecaster for transcript series"""

from typing import Optional

import xgboost as xgb

from transcript_analytics.models.neural import LagWindowForecaster
from transcript_analytics.utils.config import ConfigLoader
from transcript_analytics.utils.logging_config import get_logger


logger = get_logger(__name__)


class XGBoostForecaster(LagWindowForecaster):
    """
    Gradient-boosted trees over the lag-window features shared with the
    neural model. Multi-step forecasts feed each prediction back in as the
    newest lag.
    """

    def __init__(self, config: Optional[ConfigLoader] = None, window_size: int = None, **kwargs):
        """
        Initialize XGBoost forecaster

        Args:
            config: Configuration loader instance (reads models.xgboost.*)
            window_size: Lag window (default: prediction.window_size)
        """
        config = config if config else ConfigLoader.from_dict({})
        window_size = window_size or config.get('prediction.window_size', 3)
        super().__init__(model_name='XGBoost', window_size=window_size, **kwargs)

        xgb_config = config.get('models.xgboost', {}) or {}
        self.n_estimators = xgb_config.get('n_estimators', 200)
        self.max_depth = xgb_config.get('max_depth', 3)
        self.learning_rate = xgb_config.get('learning_rate', 0.05)
        self.subsample = xgb_config.get('subsample', 1.0)
        self.random_state = xgb_config.get('random_state', 42)

    def _make_estimator(self):
        return xgb.XGBRegressor(
            n_estimators=self.n_estimators,
            max_depth=self.max_depth,
            learning_rate=self.learning_rate,
            subsample=self.subsample,
            random_state=self.random_state,
            objective='reg:squarederror',
            verbosity=0
        )

    def get_feature_importance(self):
        """
        Get feature importance scores

        Returns:
            Dict of feature name -> importance, highest first
        """
        if not self.is_fitted:
            raise ValueError("Model must be fitted first")

        names = self.feature_engine.feature_names(self.window_size)
        scores = dict(zip(names, (float(v) for v in self.model.feature_importances_)))
        return dict(sorted(scores.items(), key=lambda item: item[1], reverse=True))
