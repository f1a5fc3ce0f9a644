"""Report exports and the export scheduler"""

from .service import AnalyticsData, ExportOptions, ExportResult, ExportService
from .scheduler import (
    ScheduleConfig,
    ScheduledExport,
    ScheduledExportResult,
    ScheduledExportService,
    calculate_next_run,
)

__all__ = [
    'AnalyticsData',
    'ExportOptions',
    'ExportResult',
    'ExportService',
    'ScheduleConfig',
    'ScheduledExport',
    'ScheduledExportResult',
    'ScheduledExportService',
    'calculate_next_run',
]
