"""Prediction service: request validation, caching, training and model comparison"""

import uuid
from dataclasses import dataclass, field, asdict
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from transcript_analytics.data.base import DataService
from transcript_analytics.data.models import TranscriptRecord
from transcript_analytics.features.engineering import PERIODS, TranscriptFeatureEngine, iqr_bounds
from transcript_analytics.models import MODEL_TYPES, get_model
from transcript_analytics.prediction.cache import PredictionCache, make_cache_key
from transcript_analytics.utils.config import ConfigLoader
from transcript_analytics.utils.errors import PredictionError, PredictionValidationError
from transcript_analytics.utils.logging_config import get_logger


logger = get_logger(__name__)

DEFAULT_MIN_POINTS = {'daily': 14, 'weekly': 8, 'monthly': 6}
DEFAULT_COMPARE_MODELS = ('neural', 'linear', 'polynomial', 'arima')


@dataclass
class PredictionRequest:
    client_name: Optional[str] = None
    prediction_type: str = 'monthly'
    periods_ahead: int = 6
    model_type: str = 'neural'
    confidence_level: Optional[float] = 0.95

    def cache_fields(self) -> Dict[str, Any]:
        return {
            'prediction_type': self.prediction_type,
            'periods_ahead': self.periods_ahead,
            'model_type': self.model_type,
            'confidence_level': self.confidence_level,
        }

    def with_model(self, model_type: str) -> 'PredictionRequest':
        return PredictionRequest(**{**asdict(self), 'model_type': model_type})


@dataclass
class ValidationResult:
    is_valid: bool
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class PredictionResult:
    client_name: str
    prediction_type: str
    model_type: str
    predictions: List[Dict[str, Any]]
    confidence: float
    accuracy: float
    metrics: Dict[str, float] = field(default_factory=dict)
    id: str = field(default_factory=lambda: f"pred_{uuid.uuid4().hex[:12]}")
    created_at: datetime = field(default_factory=datetime.now)
    created_by: Optional[str] = None
    cache_key: Optional[str] = None
    cached: bool = False

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['created_at'] = self.created_at.isoformat()
        data['predictions'] = [
            {**p, 'date': pd.Timestamp(p['date']).strftime('%Y-%m-%d')} for p in self.predictions
        ]
        return data


class PredictionService:
    """
    Generate per-client transcript forecasts

    Workflow for a request:
    1. Validate the request against the client's history
    2. Serve from the TTL cache when the same request and data were seen
    3. Otherwise fit the requested model and forecast with confidence bands
    """

    def __init__(
        self,
        config: Optional[ConfigLoader] = None,
        cache: Optional[PredictionCache] = None,
        data_service: Optional[DataService] = None
    ):
        """
        Initialize prediction service

        Args:
            config: Configuration loader
            cache: Shared cache (a new one is built from config when omitted)
            data_service: Backend used to persist predictions (optional)
        """
        self.config = config if config else ConfigLoader.from_dict({})
        self.engine = TranscriptFeatureEngine(self.config)
        self.data_service = data_service
        self.cache_enabled = self.config.get('cache.enabled', True)
        self.cache = cache if cache is not None else PredictionCache(
            ttl_seconds=float(self.config.get('cache.ttl_seconds', 3600)),
            max_entries=int(self.config.get('cache.max_entries', 256)),
        )
        self.min_points = {**DEFAULT_MIN_POINTS, **(self.config.get('prediction.min_data_points', {}) or {})}
        self.max_periods = int(self.config.get('prediction.max_periods_ahead', 365))
        self.stale_after_days = int(self.config.get('prediction.stale_after_days', 30))
        self.cv_folds = int(self.config.get('prediction.cv_folds', 5))

    # ------------------------------------------------------------------
    # Helpers

    @staticmethod
    def _client_records(records: Sequence[TranscriptRecord], client_name: Optional[str]) -> List[TranscriptRecord]:
        if client_name is None:
            return list(records)
        return [r for r in records if r.client_name == client_name]

    def _series(self, records: Sequence[TranscriptRecord], request: PredictionRequest) -> pd.DataFrame:
        return self.engine.to_time_series(records, request.client_name, request.prediction_type)

    def _fit_model(self, series: pd.DataFrame, request: PredictionRequest):
        model = get_model(request.model_type, self.config)
        return model.fit(series, 'value', period=request.prediction_type)

    # ------------------------------------------------------------------
    # Validation

    def validate_request(
        self,
        records: Sequence[TranscriptRecord],
        request: PredictionRequest,
        now: Optional[datetime] = None
    ) -> ValidationResult:
        """
        Check a request and its data before any model is trained

        Args:
            records: All records (filtered to the request's client here)
            request: Prediction request
            now: Reference time for the staleness check

        Returns:
            ValidationResult with errors (blocking) and warnings
        """
        now = now or datetime.now()
        errors, warnings = [], []

        if request.prediction_type not in PERIODS:
            errors.append(f"Invalid prediction type '{request.prediction_type}'.")
            return ValidationResult(False, errors, warnings)

        if request.model_type not in MODEL_TYPES:
            errors.append(
                f"Unsupported model type '{request.model_type}'. "
                f"Must be one of: {', '.join(MODEL_TYPES)}."
            )

        client_records = self._client_records(records, request.client_name)
        series = self._series(client_records, request)

        required = int(self.min_points[request.prediction_type])
        if len(series) < required:
            errors.append(
                f"Insufficient data for {request.prediction_type} predictions. "
                f"Need at least {required} data points, got {len(series)}."
            )

        if not 1 <= request.periods_ahead <= self.max_periods:
            errors.append(f'Periods ahead must be between 1 and {self.max_periods}.')

        if request.confidence_level is not None and not 0.5 <= request.confidence_level <= 0.99:
            errors.append('Confidence level must be between 0.5 and 0.99.')

        counts = np.array([r.transcript_count for r in client_records], dtype=float)
        if (counts < 0).any():
            errors.append('Data contains negative transcript counts.')

        if counts.size:
            if counts.var() < 0.01:
                warnings.append('Data has very low variance, predictions may be less accurate.')

            lower, upper = iqr_bounds(counts)
            outliers = int(((counts < lower) | (counts > upper)).sum())
            if outliers:
                warnings.append(f'Detected {outliers} potential outliers in the data.')

            dates = [r.date for r in client_records if r.date is not None]
            latest = datetime.combine(max(dates), datetime.min.time()) if dates else None
            if latest is not None and (now - latest).days > self.stale_after_days:
                warnings.append(
                    f'Latest data is more than {self.stale_after_days} days old, '
                    f'predictions may be less accurate.'
                )

        return ValidationResult(not errors, errors, warnings)

    # ------------------------------------------------------------------
    # Prediction

    def generate_predictions(
        self,
        records: Sequence[TranscriptRecord],
        request: PredictionRequest,
        created_by: Optional[str] = None,
        persist: bool = False
    ) -> Tuple[PredictionResult, ValidationResult]:
        """
        Validate, consult the cache, and forecast

        Args:
            records: Transcript records
            request: Prediction request
            created_by: User recorded on the result
            persist: Save the forecast through the data service

        Returns:
            (PredictionResult, ValidationResult)

        Raises:
            PredictionValidationError: If the request fails validation
            PredictionError: If model fitting or forecasting fails
        """
        validation = self.validate_request(records, request)
        if not validation.is_valid:
            raise PredictionValidationError(validation.errors, validation.warnings)

        client_records = self._client_records(records, request.client_name)
        key = make_cache_key(request.client_name, request.cache_fields(), client_records)

        if self.cache_enabled:
            cached = self.cache.get(key)
            if cached is not None:
                logger.debug(f"Prediction cache hit for {request.client_name or 'All Clients'}")
                result = PredictionResult(**{**cached.__dict__, 'cached': True})
                return result, validation

        confidence = request.confidence_level or 0.95
        try:
            series = self._series(client_records, request)
            model = self._fit_model(series, request)
            forecast = model.predict(request.periods_ahead, confidence)
        except Exception as e:
            logger.error(f"Prediction failed for {request.client_name}: {e}")
            raise PredictionError(f"Prediction generation failed: {e}") from e

        result = PredictionResult(
            client_name=request.client_name or 'All Clients',
            prediction_type=request.prediction_type,
            model_type=request.model_type,
            predictions=forecast.to_dict('records'),
            confidence=confidence,
            accuracy=round(model.training_metrics.get('accuracy', 0.0), 2),
            metrics=model.training_metrics,
            created_by=created_by,
            cache_key=key,
        )

        if self.cache_enabled:
            self.cache.set(key, result, client_name=request.client_name)

        if persist and self.data_service is not None and request.client_name:
            self.data_service.save_predictions(
                request.client_name, request.model_type, result.predictions, result.accuracy
            )

        logger.info(
            f"✅ {request.model_type} forecast for {result.client_name}: "
            f"{request.periods_ahead} {request.prediction_type} periods"
        )
        return result, validation

    def invalidate_cache(self, client_name: Optional[str] = None) -> int:
        return self.cache.invalidate(client_name)

    # ------------------------------------------------------------------
    # Evaluation

    def _holdout_metrics(self, series: pd.DataFrame, request: PredictionRequest,
                         split_index: int) -> Dict[str, float]:
        train = series.iloc[:split_index]
        test = series.iloc[split_index:]
        model = self._fit_model(train, request)
        return model.validate(test, 'value')

    def cross_validate(self, series: pd.DataFrame, request: PredictionRequest, k: int = None) -> float:
        """
        Forward-chaining k-fold accuracy

        The series is cut into k consecutive folds; each fold is forecast
        by a model trained on every point before it. Folds with fewer
        than 10 training points are skipped, and failing folds are logged
        and skipped.

        Returns:
            Mean fold accuracy (0 when no fold could be scored)
        """
        k = k or self.cv_folds
        fold_size = len(series) // k
        scores = []

        for i in range(k):
            start = i * fold_size
            end = len(series) if i == k - 1 else (i + 1) * fold_size
            if start < 10 or end <= start:
                continue

            try:
                model = self._fit_model(series.iloc[:start], request)
                metrics = model.validate(series.iloc[start:end], 'value')
                scores.append(metrics['accuracy'])
            except Exception as e:
                logger.warning(f"⚠️  Cross-validation fold {i} failed: {e}")

        return float(np.mean(scores)) if scores else 0.0

    def train_and_validate_model(
        self,
        records: Sequence[TranscriptRecord],
        request: PredictionRequest,
        validation_split: float = 0.2
    ) -> Dict[str, Any]:
        """
        Fit on the leading part of the history and score on the rest

        Args:
            records: Transcript records
            request: Prediction request (client, period, model)
            validation_split: Fraction held out at the end, in (0, 1)

        Returns:
            Dict with training_metrics, validation_metrics and
            cross_validation_score
        """
        if not 0 < validation_split < 1:
            raise ValueError('Validation split must be between 0 and 1')

        series = self._series(self._client_records(records, request.client_name), request)
        split_index = int(np.floor(len(series) * (1 - validation_split)))
        if split_index < 2 or split_index >= len(series):
            raise PredictionError(
                f"Not enough data to hold out {validation_split:.0%} of {len(series)} points"
            )

        try:
            model = self._fit_model(series.iloc[:split_index], request)
            validation_metrics = model.validate(series.iloc[split_index:], 'value')
        except Exception as e:
            raise PredictionError(f"Model validation failed: {e}") from e

        cv_score = self.cross_validate(series, request)

        logger.info(
            f"{request.model_type}: validation accuracy {validation_metrics['accuracy']:.1f}%, "
            f"CV {cv_score:.1f}%"
        )
        return {
            'training_metrics': model.training_metrics,
            'validation_metrics': validation_metrics,
            'cross_validation_score': cv_score,
        }

    def compare_models(
        self,
        records: Sequence[TranscriptRecord],
        request: PredictionRequest,
        models: Optional[Sequence[str]] = None
    ) -> Dict[str, Any]:
        """
        Forecast with several models and rank them on an 80/20 hold-out

        Args:
            records: Transcript records
            request: Base request (model_type is overridden per model)
            models: Model types to try (default neural, linear, polynomial, arima)

        Returns:
            Dict with best_model, results {model: {result, metrics}} and a
            recommendation string
        """
        models = list(models or DEFAULT_COMPARE_MODELS)
        series = self._series(self._client_records(records, request.client_name), request)
        split_index = int(np.floor(len(series) * 0.8))

        results: Dict[str, Dict[str, Any]] = {}
        for model_type in models:
            model_request = request.with_model(model_type)
            try:
                result, _ = self.generate_predictions(records, model_request)
                metrics = self._holdout_metrics(series, model_request, split_index)
                results[model_type] = {'result': result, 'metrics': metrics}
            except Exception as e:
                logger.warning(f"⚠️  Model {model_type} failed: {e}")

        if not results:
            raise PredictionError("All models failed")

        best_model = next(iter(results))
        best_accuracy = results[best_model]['metrics']['accuracy']
        for model_type, entry in results.items():
            if entry['metrics']['accuracy'] > best_accuracy:
                best_model, best_accuracy = model_type, entry['metrics']['accuracy']

        return {
            'best_model': best_model,
            'results': results,
            'recommendation': self._recommendation(results, len(series)),
        }

    @staticmethod
    def _recommendation(results: Dict[str, Dict[str, Any]], data_size: int) -> str:
        notes = []

        if data_size < 20:
            notes.append('Consider collecting more data for better predictions.')

        if 'linear' in results and 'polynomial' in results:
            linear = results['linear']['metrics']['accuracy']
            poly = results['polynomial']['metrics']['accuracy']
            if abs(linear - poly) < 5:
                notes.append(
                    'Linear and polynomial models perform similarly. '
                    'Linear model is recommended for simplicity.'
                )
            elif poly > linear + 10:
                notes.append(
                    'Polynomial model shows significantly better performance, '
                    'suggesting non-linear patterns in your data.'
                )

        if 'arima' in results and results['arima']['metrics']['accuracy'] > 80:
            notes.append('ARIMA model shows good performance, indicating strong time series patterns.')

        if 'neural' in results and results['neural']['metrics']['accuracy'] > 80:
            notes.append('Neural network captures the series well at the current horizon.')

        if notes:
            return ' '.join(notes)
        return 'All models show reasonable performance. Consider the linear model for interpretability.'
