import pandas as pd
import pytest

from transcript_analytics.data.loaders import TranscriptFileLoader, import_records
from transcript_analytics.data.models import TranscriptRecord


CSV = """Client Name,Month,Transcript Count,Notes
Acme,2024-01,100,first
Acme,2024-02,"1,200",
Globex,2024-01-15,50,
,2024-01,10,
Acme,sometime,10,
Acme,2024-03,-4,
Acme,2024-01,999,repeat
"""


@pytest.fixture
def csv_file(tmp_path):
    path = tmp_path / 'import.csv'
    path.write_text(CSV)
    return path


def test_parse_csv_collects_errors_and_duplicates(csv_file):
    result = TranscriptFileLoader().load_file(str(csv_file))
    assert result.total_rows == 7
    assert [(r.client_name, r.month, r.transcript_count) for r in result.records] == [
        ('Acme', '2024-01', 100),
        ('Acme', '2024-02', 1200),
        ('Globex', '2024-01', 50),
    ]
    assert result.error_count == 3
    assert result.duplicate_count == 1
    assert {e['field'] for e in result.errors} == {'client_name', 'month', 'transcript_count'}
    assert result.errors[0]['row'] == 4


def test_reads_excel_with_aliases(tmp_path):
    path = tmp_path / 'import.xlsx'
    pd.DataFrame({
        'Customer': ['Acme', 'Acme'],
        'Date': ['2024-01-01', '2024-02-01'],
        'Transcripts': [10, 20],
    }).to_excel(path, index=False)

    result = TranscriptFileLoader().load_file(str(path))
    assert [r.month for r in result.records] == ['2024-01', '2024-02']
    assert [r.transcript_count for r in result.records] == [10, 20]


def test_explicit_column_mapping():
    df = pd.DataFrame({'who': ['Acme'], 'when': ['2024-05'], 'how_many': ['7']})
    loader = TranscriptFileLoader({'client_name': 'who', 'month': 'when', 'transcript_count': 'how_many'})
    result = loader.parse_dataframe(df)
    assert result.records[0].transcript_count == 7


def test_missing_columns_and_bad_files(tmp_path):
    with pytest.raises(ValueError, match='Missing required columns'):
        TranscriptFileLoader().parse_dataframe(pd.DataFrame({'Client': ['Acme']}))

    with pytest.raises(FileNotFoundError):
        TranscriptFileLoader().read_file(str(tmp_path / 'nope.csv'))

    other = tmp_path / 'data.json'
    other.write_text('[]')
    with pytest.raises(ValueError, match='Unsupported file type'):
        TranscriptFileLoader().read_file(str(other))


def _seed(service):
    service.add_transcript(TranscriptRecord(client_name='Acme', month='2024-01', transcript_count=500, notes='old'))


@pytest.mark.parametrize("strategy,count,notes,skipped", [
    ('replace', 100, 'first', 0),
    ('skip', 500, 'old', 1),
    ('merge', 500, 'old | first', 0),
])
def test_import_conflict_strategies(workbook_service, csv_file, strategy, count, notes, skipped):
    _seed(workbook_service)
    result = import_records(
        workbook_service, TranscriptFileLoader().load_file(str(csv_file)), conflict_resolution=strategy
    )
    stored = {r.key: r for r in workbook_service.fetch_transcripts()}
    assert stored[('Acme', '2024-01')].transcript_count == count
    assert stored[('Acme', '2024-01')].notes == notes
    assert result.skipped_count == skipped
    assert result.success_count == 3 - skipped
    assert len(stored) == 3


def test_import_rejects_unknown_strategy(workbook_service, csv_file):
    with pytest.raises(ValueError):
        import_records(workbook_service, TranscriptFileLoader().load_file(str(csv_file)), 'overwrite')


class FailingService:
    """Accepts every record except those for one client"""

    def __init__(self, inner, failing_client):
        self.inner = inner
        self.failing_client = failing_client

    def fetch_transcripts(self):
        return self.inner.fetch_transcripts()

    def add_transcript(self, record):
        if record.client_name == self.failing_client:
            raise OSError('disk full')
        return self.inner.add_transcript(record)


def test_write_errors_report_the_file_row(workbook_service):
    df = pd.DataFrame({
        'Client': ['', 'Acme', 'Boom'],
        'Month': ['2024-01', '2024-01', '2024-02'],
        'Count': ['5', '10', '3'],
    })
    parsed = TranscriptFileLoader().parse_dataframe(df)
    assert parsed.source_rows == [2, 3]

    result = import_records(FailingService(workbook_service, 'Boom'), parsed)
    assert result.success_count == 1
    write_error = result.errors[-1]
    assert write_error['row'] == 3
    assert write_error['message'] == 'disk full'
