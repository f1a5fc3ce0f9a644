"""Feature engineering for transcript volume forecasting"""

from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Tuple

import numpy as np
import pandas as pd

from transcript_analytics.data.models import TranscriptRecord
from transcript_analytics.utils.config import ConfigLoader
from transcript_analytics.utils.logging_config import get_logger


logger = get_logger(__name__)

PERIODS = ('daily', 'weekly', 'monthly')


@dataclass
class ScaleParams:
    min: float
    max: float
    mean: float
    std: float

    @property
    def range(self) -> float:
        return self.max - self.min


def period_offset(period: str, steps: int = 1) -> pd.DateOffset:
    """Calendar offset of ``steps`` periods"""
    if period == 'daily':
        return pd.DateOffset(days=steps)
    if period == 'weekly':
        return pd.DateOffset(weeks=steps)
    if period == 'monthly':
        return pd.DateOffset(months=steps)
    raise ValueError(f"Invalid period '{period}', must be one of: {', '.join(PERIODS)}")


def future_dates(last_date, n_periods: int, period: str = 'monthly') -> List[pd.Timestamp]:
    last_date = pd.Timestamp(last_date)
    return [last_date + period_offset(period, i) for i in range(1, n_periods + 1)]


def iqr_bounds(values: Iterable[float]) -> Tuple[float, float]:
    """
    Outlier fences at 1.5×IQR

    Quartiles are taken by index (floor(n*0.25), floor(n*0.75)) of the
    sorted values rather than interpolated.
    """
    ordered = np.sort(np.asarray(list(values), dtype=float))
    if len(ordered) == 0:
        return -np.inf, np.inf
    q1 = ordered[int(np.floor(len(ordered) * 0.25))]
    q3 = ordered[int(np.floor(len(ordered) * 0.75))]
    iqr = q3 - q1
    return q1 - 1.5 * iqr, q3 + 1.5 * iqr


class TranscriptFeatureEngine:
    """
    Turn transcript records into model-ready time series

    Creates features from a per-client series:
    - Lag features (previous ``window_size`` values)
    - Temporal features (calendar month, year)
    - Trend slope over the lag window
    """

    def __init__(self, config: Optional[ConfigLoader] = None, window_size: int = None):
        """
        Initialize feature engine

        Args:
            config: Configuration loader instance
            window_size: Lag window (default: prediction.window_size, 3)
        """
        self.config = config if config else ConfigLoader.from_dict({})
        self.window_size = window_size or self.config.get('prediction.window_size', 3)

    # ------------------------------------------------------------------
    # Series construction

    def to_time_series(
        self,
        records: List[TranscriptRecord],
        client_name: Optional[str] = None,
        period: str = 'monthly'
    ) -> pd.DataFrame:
        """
        Aggregate records into a sorted series

        Args:
            records: Transcript records
            client_name: Restrict to one client (None sums all clients)
            period: 'daily', 'weekly' (Monday start) or 'monthly'

        Returns:
            DataFrame with 'date' and 'value' columns, ascending by date
        """
        if period not in PERIODS:
            raise ValueError(f"Invalid period '{period}', must be one of: {', '.join(PERIODS)}")

        rows = [
            {'date': pd.Timestamp(r.date), 'value': float(r.transcript_count)}
            for r in records
            if r.date is not None and (client_name is None or r.client_name == client_name)
        ]
        if not rows:
            return pd.DataFrame({'date': pd.to_datetime([]), 'value': pd.Series([], dtype=float)})

        df = pd.DataFrame(rows)
        if period == 'weekly':
            df['date'] = df['date'] - pd.to_timedelta(df['date'].dt.weekday, unit='D')
        elif period == 'monthly':
            df['date'] = df['date'].dt.to_period('M').dt.to_timestamp()

        series = df.groupby('date', as_index=False)['value'].sum().sort_values('date')
        return series.reset_index(drop=True)

    def group_by_client(self, records: List[TranscriptRecord]) -> Dict[str, pd.DataFrame]:
        clients = sorted({r.client_name for r in records})
        return {c: self.to_time_series(records, client_name=c) for c in clients}

    # ------------------------------------------------------------------
    # Cleaning

    def fill_missing_months(self, series: pd.DataFrame) -> pd.DataFrame:
        """
        Insert absent months, linearly interpolated and rounded

        Args:
            series: Monthly series (date, value)

        Returns:
            Gap-free monthly series
        """
        if len(series) < 2:
            return series.copy()

        df = series.sort_values('date').set_index('date')
        full_index = pd.date_range(df.index.min(), df.index.max(), freq='MS')
        if len(full_index) == len(df):
            return series.sort_values('date').reset_index(drop=True)

        filled = df.reindex(full_index)
        missing = filled['value'].isna()
        filled['value'] = filled['value'].interpolate(method='linear')
        filled.loc[missing, 'value'] = filled.loc[missing, 'value'].round()

        logger.debug(f"  ✓ Filled {int(missing.sum())} missing months")
        return filled.rename_axis('date').reset_index()

    def remove_outliers(self, series: pd.DataFrame) -> pd.DataFrame:
        """Drop points outside the IQR fences"""
        if series.empty:
            return series.copy()
        lower, upper = iqr_bounds(series['value'])
        kept = series[(series['value'] >= lower) & (series['value'] <= upper)]
        if len(kept) < len(series):
            logger.debug(f"  ✓ Removed {len(series) - len(kept)} outliers")
        return kept.reset_index(drop=True)

    # ------------------------------------------------------------------
    # Features

    @staticmethod
    def feature_row(lags: List[float], target_date: pd.Timestamp) -> List[float]:
        """
        Feature vector for one target point

        Args:
            lags: The ``window_size`` values preceding the target, oldest first
            target_date: Date of the target point

        Returns:
            [lag_1 .. lag_w, month, year, trend_slope]
        """
        window = len(lags)
        slope = (lags[-1] - lags[0]) / window
        return list(lags) + [float(target_date.month), float(target_date.year), slope]

    def feature_names(self, window_size: int = None) -> List[str]:
        window_size = window_size or self.window_size
        return [f'lag_{window_size - i}' for i in range(window_size)] + ['month', 'year', 'trend_slope']

    def create_feature_matrix(
        self,
        series: pd.DataFrame,
        window_size: int = None
    ) -> Tuple[np.ndarray, np.ndarray]:
        """
        Sliding-window feature matrix

        For each index i >= window: lags v[i-window..i-1], month and year of
        point i, and slope (v[i-1] - v[i-window]) / window. Target is v[i].

        Args:
            series: Series DataFrame (date, value)
            window_size: Lag window

        Returns:
            (features, targets) arrays
        """
        window_size = window_size or self.window_size
        values = series['value'].to_numpy(dtype=float)
        dates = pd.to_datetime(series['date']).to_list()

        features, targets = [], []
        for i in range(window_size, len(values)):
            features.append(self.feature_row(list(values[i - window_size:i]), dates[i]))
            targets.append(values[i])

        n_cols = window_size + 3
        return (
            np.asarray(features, dtype=float).reshape(-1, n_cols),
            np.asarray(targets, dtype=float),
        )

    # ------------------------------------------------------------------
    # Scaling

    @staticmethod
    def normalize(values: Iterable[float]) -> Tuple[np.ndarray, ScaleParams]:
        """
        Min-max scale to [0, 1]; a constant input maps to all zeros

        Returns:
            (normalized values, ScaleParams with population std)
        """
        arr = np.asarray(list(values), dtype=float)
        if arr.size == 0:
            return arr, ScaleParams(0.0, 0.0, 0.0, 0.0)

        params = ScaleParams(
            min=float(arr.min()),
            max=float(arr.max()),
            mean=float(arr.mean()),
            std=float(arr.std()),
        )
        if params.range == 0:
            return np.zeros_like(arr), params
        return (arr - params.min) / params.range, params

    @staticmethod
    def denormalize(values: Iterable[float], params: ScaleParams) -> np.ndarray:
        arr = np.asarray(list(values), dtype=float)
        return arr * params.range + params.min

    @staticmethod
    def normalize_columns(features: np.ndarray) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        """Min-max scale each column; constant columns become 0"""
        if features.size == 0:
            return features, np.zeros(features.shape[1]), np.zeros(features.shape[1])
        col_min = features.min(axis=0)
        col_max = features.max(axis=0)
        span = col_max - col_min
        scaled = np.where(span > 0, (features - col_min) / np.where(span > 0, span, 1), 0.0)
        return scaled, col_min, col_max

    def prepare_for_training(
        self,
        series: pd.DataFrame,
        window_size: int = None,
        test_split: float = 0.2
    ) -> Dict:
        """
        Clean, featurize, scale and split a monthly series chronologically

        Args:
            series: Monthly series (date, value)
            window_size: Lag window
            test_split: Fraction of rows held out at the end

        Returns:
            Dict with train_features, train_targets, test_features,
            test_targets and scale_params
        """
        window_size = window_size or self.window_size
        cleaned = self.remove_outliers(self.fill_missing_months(series))
        features, targets = self.create_feature_matrix(cleaned, window_size)

        norm_targets, scale_params = self.normalize(targets)
        norm_features, _, _ = self.normalize_columns(features)

        split = int(np.floor(len(features) * (1 - test_split)))
        return {
            'train_features': norm_features[:split],
            'train_targets': norm_targets[:split],
            'test_features': norm_features[split:],
            'test_targets': norm_targets[split:],
            'scale_params': scale_params,
        }

    # ------------------------------------------------------------------
    # Diagnostics

    def validate_data_quality(self, series: pd.DataFrame, min_points: int = 6) -> Dict:
        """
        Check a monthly series before modelling

        Returns:
            Dict with is_valid, issues and recommendations
        """
        issues, recommendations = [], []
        values = series['value'].to_numpy(dtype=float)

        if len(series) < min_points:
            issues.append(f'Insufficient data points (minimum {min_points} months required)')
            recommendations.append('Collect more historical data for better predictions')

        dates = pd.to_datetime(series['date']).sort_values()
        month_index = (dates.dt.year * 12 + dates.dt.month).to_numpy()
        if len(month_index) > 1 and (np.diff(month_index) > 1).any():
            issues.append('Data contains gaps in time series')
            recommendations.append('Fill missing months with interpolated values')

        if (values < 0).any():
            issues.append('Data contains negative values')
            recommendations.append('Review data for errors or handle negative values appropriately')

        if len(values) and values.std() > 0 and (np.abs(values - values.mean()) > 3 * values.std()).any():
            issues.append('Data contains extreme outliers')
            recommendations.append('Consider outlier detection and removal')

        return {
            'is_valid': not issues,
            'issues': issues,
            'recommendations': recommendations,
        }

    def decompose_seasonality(self, series: pd.DataFrame, season_length: int = 12) -> Dict[str, np.ndarray]:
        """
        Additive decomposition: centred moving-average trend, mean detrended
        value per season position, and the remainder

        Returns:
            Dict with trend, seasonal and residual arrays
        """
        values = series['value'].astype(float).reset_index(drop=True)
        n = len(values)

        trend = np.array([
            values[max(0, i - season_length // 2):min(n, i + int(np.ceil(season_length / 2)))].mean()
            for i in range(n)
        ])

        detrended = values.to_numpy() - trend
        positions = np.arange(n) % season_length
        season_means = pd.Series(detrended).groupby(positions).mean()
        seasonal = season_means.reindex(positions).to_numpy()

        return {
            'trend': trend,
            'seasonal': seasonal,
            'residual': values.to_numpy() - trend - seasonal,
        }
