import numpy as np
import pytest

from transcript_analytics.data.models import TranscriptRecord, records_to_dataframe
from transcript_analytics.data.validators import (
    TranscriptDataValidator,
    ensure_valid_record,
    validate_record_fields,
)
from transcript_analytics.utils.errors import RecordValidationError


def test_valid_fields_have_no_errors():
    assert validate_record_fields('Acme', '2024-01', 5, 'note') == []
    assert validate_record_fields('Acme', '2024-01', np.int64(0)) == []


@pytest.mark.parametrize("args,field", [
    (('', '2024-01', 1), 'client_name'),
    (('   ', '2024-01', 1), 'client_name'),
    (('x' * 256, '2024-01', 1), 'client_name'),
    (('Acme', '2024-13', 1), 'month'),
    (('Acme', '2024/01', 1), 'month'),
    (('Acme', '2024-01', -1), 'transcript_count'),
    (('Acme', '2024-01', 1.5), 'transcript_count'),
    (('Acme', '2024-01', True), 'transcript_count'),
    (('Acme', '2024-01', 1, 'n' * 1001), 'notes'),
])
def test_field_errors(args, field):
    errors = validate_record_fields(*args)
    assert [e['field'] for e in errors] == [field]


def test_ensure_valid_record_raises_with_all_fields():
    with pytest.raises(RecordValidationError) as exc:
        ensure_valid_record(TranscriptRecord(client_name='', month='bad', transcript_count=-2))
    message = str(exc.value)
    assert 'client_name' in message and 'month' in message and 'transcript_count' in message


def _df(counts, client='Acme', months=None):
    months = months or [f"2024-{i + 1:02d}" for i in range(len(counts))]
    return records_to_dataframe(
        TranscriptRecord(client_name=client, month=m, transcript_count=c) for m, c in zip(months, counts)
    )


def test_completeness_reports_gaps():
    validator = TranscriptDataValidator()
    report = validator.validate_monthly_completeness(_df([1, 2, 3], months=['2024-01', '2024-02', '2024-05']))
    assert report['status'] == 'warning'
    assert report['missing_months'] == {'Acme': ['2024-03', '2024-04']}


def test_value_ranges():
    validator = TranscriptDataValidator({'max_transcript_count': 100})
    assert validator.validate_value_ranges(_df([1, 2, 3]))['status'] == 'pass'
    assert validator.validate_value_ranges(_df([1, 200]))['status'] == 'warning'
    assert validator.validate_value_ranges(_df([-1, 2]))['status'] == 'fail'


def test_outliers_and_duplicates():
    validator = TranscriptDataValidator()
    counts = [100] * 11 + [10000]
    report = validator.detect_outliers(_df(counts), std_threshold=3.0)
    assert report['outlier_count'] == 1
    assert report['outliers'][0]['month'] == '2024-12'

    df = _df([1, 2], months=['2024-01', '2024-01'])
    assert validator.detect_duplicates(df)['duplicate_count'] == 1


def test_validate_dataframe_overall_status(records):
    validator = TranscriptDataValidator()
    result = validator.validate_dataframe(records_to_dataframe(records))
    assert result['status'] == 'pass'
    assert set(result['checks']) == {'monthly_completeness', 'value_ranges', 'outliers', 'duplicates'}
    assert list(validator.get_summary()['status']) == ['pass'] * 4

    empty = validator.validate_dataframe(records_to_dataframe([]))
    assert empty['status'] == 'warning'
    assert empty['records'] == 0
