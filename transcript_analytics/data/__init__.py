"""Data access, validation and aggregation"""

from .models import TranscriptRecord, Client, records_to_dataframe
from .base import DataService
from .workbook import WorkbookDataService
from .database import DatabaseDataService
from .factory import DataServiceFactory
from .aggregators import DataAggregator

__all__ = [
    'TranscriptRecord',
    'Client',
    'records_to_dataframe',
    'DataService',
    'WorkbookDataService',
    'DatabaseDataService',
    'DataServiceFactory',
    'DataAggregator'
]
