import math

import pytest

from transcript_analytics.data.database import DatabaseDataService
from transcript_analytics.data.factory import DataServiceFactory
from transcript_analytics.data.models import TranscriptRecord
from transcript_analytics.data.workbook import WorkbookDataService
from transcript_analytics.utils.config import ConfigLoader


def make_months(start_year: int, start_month: int, n: int):
    months = []
    year, month = start_year, start_month
    for _ in range(n):
        months.append(f"{year:04d}-{month:02d}")
        month += 1
        if month > 12:
            year, month = year + 1, 1
    return months


def make_records(client: str, n: int = 24, base: int = 100, slope: int = 10,
                 start=(2023, 1), seasonal: int = 0):
    return [
        TranscriptRecord(
            client_name=client,
            month=month,
            transcript_count=int(base + slope * i + seasonal * math.sin(2 * math.pi * i / 12)),
        )
        for i, month in enumerate(make_months(start[0], start[1], n))
    ]


@pytest.fixture
def records():
    """Two clients, 24 months each, trending upwards"""
    return make_records('Acme Corp', 24, base=100, slope=10, seasonal=15) + \
        make_records('Globex', 24, base=500, slope=5, seasonal=40)


@pytest.fixture
def config(tmp_path):
    return ConfigLoader.from_dict({
        'data_source': {
            'type': 'workbook',
            'workbook': {'path': str(tmp_path / 'transcripts.xlsx')},
            'database': {'path': str(tmp_path / 'transcripts.db')},
        },
        'prediction': {'stale_after_days': 100000},
        'models': {
            'neural': {'hidden_layer_sizes': [8], 'max_iter': 500, 'random_state': 0},
            'xgboost': {'n_estimators': 50, 'random_state': 0},
        },
        'sync': {'snapshot_path': str(tmp_path / 'snapshot.json')},
        'export': {'output_dir': str(tmp_path / 'exports')},
        'scheduler': {'schedules_file': str(tmp_path / 'schedules.yaml')},
    })


@pytest.fixture
def workbook_service(tmp_path):
    return WorkbookDataService(path=str(tmp_path / 'transcripts.xlsx'))


@pytest.fixture
def database_service(tmp_path):
    return DatabaseDataService(path=str(tmp_path / 'transcripts.db'))


@pytest.fixture
def seeded_workbook(workbook_service, records):
    workbook_service.batch_import(records)
    return workbook_service


@pytest.fixture(autouse=True)
def reset_factory():
    DataServiceFactory.reset_instance()
    yield
    DataServiceFactory.reset_instance()
