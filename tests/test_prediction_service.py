from datetime import datetime

import pytest

from conftest import make_records
from transcript_analytics.data.models import TranscriptRecord
from transcript_analytics.prediction.service import PredictionRequest, PredictionService
from transcript_analytics.utils.config import ConfigLoader
from transcript_analytics.utils.errors import PredictionError, PredictionValidationError


NOW = datetime(2025, 1, 15)


@pytest.fixture
def service(config):
    return PredictionService(config)


def test_valid_request(service, records):
    result = service.validate_request(records, PredictionRequest('Acme Corp', model_type='linear'), now=NOW)
    assert result.is_valid
    assert result.errors == []


def test_insufficient_points_reported_with_counts(service):
    records = make_records('Acme', 4)
    result = service.validate_request(records, PredictionRequest('Acme'), now=NOW)
    assert not result.is_valid
    assert result.errors == [
        'Insufficient data for monthly predictions. Need at least 6 data points, got 4.'
    ]


def test_invalid_type_returns_early(service, records):
    result = service.validate_request(records, PredictionRequest('Acme Corp', prediction_type='hourly'))
    assert result.errors == ["Invalid prediction type 'hourly'."]


@pytest.mark.parametrize("changes,message", [
    ({'model_type': 'prophet'}, "Unsupported model type 'prophet'"),
    ({'periods_ahead': 0}, 'Periods ahead must be between 1 and 365.'),
    ({'periods_ahead': 366}, 'Periods ahead must be between 1 and 365.'),
    ({'confidence_level': 0.4}, 'Confidence level must be between 0.5 and 0.99.'),
    ({'confidence_level': 0.995}, 'Confidence level must be between 0.5 and 0.99.'),
])
def test_request_field_errors(service, records, changes, message):
    request = PredictionRequest(**{'client_name': 'Acme Corp', **changes})
    result = service.validate_request(records, request, now=NOW)
    assert not result.is_valid
    assert any(e.startswith(message) for e in result.errors)


def test_negative_counts_rejected(service):
    records = make_records('Acme', 8)
    records[2].transcript_count = -5
    result = service.validate_request(records, PredictionRequest('Acme'), now=NOW)
    assert 'Data contains negative transcript counts.' in result.errors


def test_warnings_for_flat_outlying_and_stale_data():
    service = PredictionService(ConfigLoader.from_dict({'prediction': {'stale_after_days': 30}}))

    flat = make_records('Acme', 8, base=50, slope=0)
    result = service.validate_request(flat, PredictionRequest('Acme'), now=datetime(2023, 8, 15))
    assert result.is_valid
    assert result.warnings == ['Data has very low variance, predictions may be less accurate.']

    spiky = make_records('Acme', 8, base=50, slope=0)
    spiky[3].transcript_count = 5000
    result = service.validate_request(spiky, PredictionRequest('Acme'), now=datetime(2023, 8, 15))
    assert 'Detected 1 potential outliers in the data.' in result.warnings

    result = service.validate_request(flat, PredictionRequest('Acme'), now=datetime(2024, 6, 1))
    assert any(w.startswith('Latest data is more than 30 days old') for w in result.warnings)


def test_generate_predictions(service, records):
    request = PredictionRequest('Acme Corp', periods_ahead=3, model_type='linear', confidence_level=0.9)
    result, validation = service.generate_predictions(records, request, created_by='analyst')

    assert validation.is_valid
    assert result.client_name == 'Acme Corp'
    assert result.model_type == 'linear'
    assert result.confidence == 0.9
    assert result.created_by == 'analyst'
    assert result.id.startswith('pred_')
    assert len(result.predictions) == 3
    assert 0 <= result.accuracy <= 100
    assert not result.cached

    data = result.to_dict()
    assert data['predictions'][0]['date'] == '2025-01-01'
    assert set(data['predictions'][0]) == {'date', 'predicted_count', 'lower', 'upper'}


def test_all_clients_combined(service, records):
    result, _ = service.generate_predictions(records, PredictionRequest(None, periods_ahead=2, model_type='linear'))
    assert result.client_name == 'All Clients'


def test_cache_hit_and_invalidation(service, records):
    request = PredictionRequest('Acme Corp', periods_ahead=3, model_type='linear')
    first, _ = service.generate_predictions(records, request)
    second, _ = service.generate_predictions(records, request)

    assert second.cached
    assert second.id == first.id
    assert second.predictions == first.predictions

    assert service.invalidate_cache('Acme Corp') == 1
    third, _ = service.generate_predictions(records, request)
    assert not third.cached


def test_changed_data_misses_cache(service, records):
    request = PredictionRequest('Acme Corp', periods_ahead=3, model_type='linear')
    service.generate_predictions(records, request)
    records[0].transcript_count += 1
    result, _ = service.generate_predictions(records, request)
    assert not result.cached


def test_invalid_request_raises_with_details(service):
    with pytest.raises(PredictionValidationError) as exc:
        service.generate_predictions(make_records('Acme', 3), PredictionRequest('Acme'))
    assert exc.value.errors
    assert isinstance(exc.value, ValueError)


def test_persist_saves_through_data_service(config, seeded_workbook, records):
    service = PredictionService(config, data_service=seeded_workbook)
    request = PredictionRequest('Acme Corp', periods_ahead=2, model_type='linear')
    service.generate_predictions(records, request, persist=True)

    stored = seeded_workbook.get_predictions('Acme Corp', 'linear')
    assert [p['month'] for p in stored] == ['2025-01', '2025-02']


def test_train_and_validate_model(service, records):
    report = service.train_and_validate_model(
        records, PredictionRequest('Acme Corp', model_type='linear'), validation_split=0.25
    )
    assert set(report) == {'training_metrics', 'validation_metrics', 'cross_validation_score'}
    assert 0 <= report['validation_metrics']['accuracy'] <= 100
    assert 0 <= report['cross_validation_score'] <= 100

    with pytest.raises(ValueError):
        service.train_and_validate_model(records, PredictionRequest('Acme Corp'), validation_split=1.0)


def test_cross_validation_skips_short_folds(service):
    linear = make_records('Acme', 30, base=100, slope=10)
    series = service.engine.to_time_series(linear, 'Acme')
    score = service.cross_validate(series, PredictionRequest('Acme', model_type='linear'), k=5)
    assert score == 100.0

    short = service.engine.to_time_series(make_records('Acme', 12), 'Acme')
    assert service.cross_validate(short, PredictionRequest('Acme', model_type='linear'), k=5) == 0.0


def test_compare_models(service, records):
    comparison = service.compare_models(
        records, PredictionRequest('Acme Corp', periods_ahead=3), ['linear', 'polynomial', 'moving_average']
    )
    assert comparison['best_model'] in {'linear', 'polynomial', 'moving_average'}
    assert set(comparison['results']) == {'linear', 'polynomial', 'moving_average'}
    best = comparison['results'][comparison['best_model']]['metrics']['accuracy']
    assert all(r['metrics']['accuracy'] <= best for r in comparison['results'].values())
    assert isinstance(comparison['recommendation'], str)


def test_compare_models_all_failing(service):
    records = [TranscriptRecord(client_name='Acme', month=f'2024-{m:02d}', transcript_count=10) for m in range(1, 4)]
    with pytest.raises(PredictionError, match='All models failed'):
        service.compare_models(records, PredictionRequest('Acme'), ['linear'])


def test_recommendation_rules():
    linear_close = {
        'linear': {'metrics': {'accuracy': 80.0}},
        'polynomial': {'metrics': {'accuracy': 83.0}},
    }
    text = PredictionService._recommendation(linear_close, 10)
    assert text.startswith('Consider collecting more data')
    assert 'Linear model is recommended for simplicity' in text

    poly_better = {
        'linear': {'metrics': {'accuracy': 50.0}},
        'polynomial': {'metrics': {'accuracy': 70.0}},
        'arima': {'metrics': {'accuracy': 90.0}},
    }
    text = PredictionService._recommendation(poly_better, 30)
    assert 'non-linear patterns' in text
    assert 'ARIMA model shows good performance' in text

    assert PredictionService._recommendation({'linear': {'metrics': {'accuracy': 50.0}}}, 30).startswith(
        'All models show reasonable performance'
    )
