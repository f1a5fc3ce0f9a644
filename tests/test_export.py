import io
from datetime import date, datetime

import pytest
from openpyxl import load_workbook

from transcript_analytics.data.models import TranscriptRecord
from transcript_analytics.export.service import (
    ExportOptions,
    ExportResult,
    ExportService,
    escape_csv_field,
    prediction_rows,
    truncate_notes,
)
from transcript_analytics.utils.errors import ExportError


NOW = datetime(2024, 5, 6, 7, 8, 9)

PREDICTION = {
    'client_name': 'Acme', 'month': '2024-03', 'predicted_count': 260,
    'lower': 240, 'upper': 280, 'model_type': 'linear', 'accuracy': 91.5,
}


@pytest.fixture
def sample():
    return [
        TranscriptRecord(client_name='Acme', month='2024-02', transcript_count=250),
        TranscriptRecord(client_name='Globex', month='2024-01', transcript_count=300),
        TranscriptRecord(client_name='Acme', month='2024-01', transcript_count=100, notes='hello, world'),
    ]


@pytest.fixture
def service():
    return ExportService()


def test_escape_and_truncate():
    assert escape_csv_field('plain') == 'plain'
    assert escape_csv_field('a,b') == '"a,b"'
    assert escape_csv_field('say "hi"') == '"say ""hi"""'
    assert escape_csv_field(None) == ''
    assert truncate_notes('x' * 31) == 'x' * 30 + '...'
    assert truncate_notes(None) == ''


def test_prepare_uses_data_span_without_range(service, sample):
    data = service.prepare_analytics_data(sample, ExportOptions())
    assert [(r.month, r.client_name) for r in data.transcripts] == [
        ('2024-01', 'Acme'), ('2024-01', 'Globex'), ('2024-02', 'Acme'),
    ]
    assert data.summary['date_range'] == {'start': '2024-01-01', 'end': '2024-02-29'}
    assert data.summary['total_transcripts'] == 650
    assert data.summary['peak_day'] == {'date': '2024-01-01', 'count': 400}


def test_prepare_filters_range_clients_and_predictions(service, sample):
    options = ExportOptions(start=date(2024, 2, 1), end=date(2024, 2, 29), clients=['Acme'])
    other = dict(PREDICTION, client_name='Globex')
    data = service.prepare_analytics_data(sample, options, predictions=[PREDICTION, other])
    assert [r.month for r in data.transcripts] == ['2024-02']
    assert data.predictions == [PREDICTION]


def test_csv_sections(service, sample):
    options = ExportOptions(include_predictions=True)
    data = service.prepare_analytics_data(sample, options, predictions=[PREDICTION])
    csv = service.export_data(data, options, now=NOW).data
    lines = csv.split('\n')

    assert lines[0] == '# Transcript Analytics Export'
    assert lines[1] == '# Generated: 2024-05-06 07:08:09'
    assert 'Total Transcripts,650' in lines
    assert 'Peak Day,2024-01-01' in lines
    breakdown = lines.index('Client,Count,Percentage')
    assert lines[breakdown + 1:breakdown + 3] == ['Acme,350,53.8%', 'Globex,300,46.2%']
    assert '2024-01-01,Acme,100,"hello, world"' in lines
    assert lines[-2] == 'Date,Client,Predicted Count,Confidence Lower,Confidence Upper,Model Type,Accuracy'
    assert lines[-1] == '2024-03-01,Acme,260,240,280,linear,91.5'


def test_csv_without_analytics_or_predictions(service, sample):
    options = ExportOptions(include_analytics=False, start=date(2024, 1, 1), end=date(2024, 1, 31))
    data = service.prepare_analytics_data(sample, options, predictions=[PREDICTION])
    csv = service.export_data(data, options, now=NOW).data

    assert '# Date Range: 2024-01-01 to 2024-01-31' in csv
    assert '# Summary Statistics' not in csv
    assert '# Predictions Data' not in csv
    assert csv.endswith('2024-01-01,Globex,300,')


def test_filename(service):
    assert service.generate_filename(ExportOptions(), NOW) == 'transcript-analytics_2024-05-06_07-08-09'

    ranged = ExportOptions(start=date(2024, 1, 1), end=date(2024, 2, 29), clients=['Acme Corp'])
    assert service.generate_filename(ranged, NOW) == (
        'transcript-analytics_2024-05-06_07-08-09_2024-01-01_to_2024-02-29_Acme_Corp'
    )
    several = ExportOptions(clients=['a', 'b', 'c'])
    assert service.generate_filename(several, NOW).endswith('_3_clients')


def test_export_result_metadata(service, sample):
    options = ExportOptions(format='csv')
    result = service.export_data(service.prepare_analytics_data(sample, options), options, now=NOW)
    assert result.success
    assert result.filename == 'transcript-analytics_2024-05-06_07-08-09.csv'
    assert result.mime_type == 'text/csv'


def test_pdf_export(service, sample):
    options = ExportOptions(format='pdf', include_predictions=True)
    data = service.prepare_analytics_data(sample, options, predictions=[PREDICTION])
    result = service.export_data(data, options, now=NOW)
    assert result.success
    assert result.data.startswith(b'%PDF')
    assert result.mime_type == 'application/pdf'


def test_xlsx_export(service, sample):
    options = ExportOptions(format='xlsx', include_predictions=True)
    data = service.prepare_analytics_data(sample, options, predictions=[PREDICTION])
    result = service.export_data(data, options, now=NOW)

    wb = load_workbook(io.BytesIO(result.data))
    assert wb.sheetnames == ['Transcripts', 'Summary', 'Client Breakdown', 'Predictions']
    rows = list(wb['Transcripts'].iter_rows(values_only=True))
    assert rows[0] == ('Date', 'Client', 'Count', 'Notes')
    assert rows[1] == ('2024-01-01', 'Acme', 100, 'hello, world')
    assert wb['Transcripts'].cell(row=1, column=1).font.bold


def test_unsupported_format_fails_softly(service, sample):
    options = ExportOptions(format='doc')
    result = service.export_data(service.prepare_analytics_data(sample, options), options)
    assert not result.success
    assert result.error == 'Unsupported export format: doc'

    with pytest.raises(ExportError):
        result.save('/tmp')


def test_save_writes_file(service, sample, tmp_path):
    options = ExportOptions()
    result = service.export_data(service.prepare_analytics_data(sample, options), options, now=NOW)
    path = result.save(tmp_path / 'out')
    assert path.name == result.filename
    assert path.read_text(encoding='utf-8') == result.data

    binary = ExportResult(success=True, filename='x.pdf', data=b'%PDF-1.4')
    assert binary.save(tmp_path).read_bytes() == b'%PDF-1.4'


def test_prediction_rows_accepts_results_and_dicts():
    class Result:
        client_name = 'Acme'
        model_type = 'arima'
        accuracy = None
        predictions = [{'date': '2024-03-01', 'predicted_count': 1, 'lower': 0, 'upper': 2}]

    rows = prediction_rows([Result(), PREDICTION])
    assert [r['date'] for r in rows] == ['2024-03-01', '2024-03-01']
    assert rows[0]['model_type'] == 'arima'
    assert rows[1]['accuracy'] == 91.5
    assert prediction_rows(None) == []


def test_chart(service, sample, tmp_path):
    data = service.prepare_analytics_data(sample, ExportOptions(), predictions=[PREDICTION])
    fig = service.create_chart(data)
    assert len(fig.data) == 4

    path = service.save_chart(data, tmp_path / 'charts' / 'volume.html')
    assert 'Transcript Volume' in path.read_text(encoding='utf-8')
