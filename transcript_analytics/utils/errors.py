"""Exception hierarchy for the transcript analytics platform"""

from typing import List, Optional


class TranscriptAnalyticsError(Exception):
    """Base class for all platform errors"""


class ConfigurationError(TranscriptAnalyticsError, ValueError):
    """Invalid or incomplete configuration"""

    def __init__(self, message: str, problems: Optional[List[str]] = None):
        self.problems = list(problems or [])
        if self.problems:
            message = f"{message}: {', '.join(self.problems)}"
        super().__init__(message)


class DataSourceError(TranscriptAnalyticsError):
    """A backend operation failed"""

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        self.cause = cause
        if cause is not None:
            message = f"{message}: {cause}"
        super().__init__(message)


class RecordNotFoundError(DataSourceError, LookupError):
    """Client or (client, month) record does not exist"""


class RecordValidationError(TranscriptAnalyticsError, ValueError):
    """A transcript record failed field validation"""


class PredictionError(TranscriptAnalyticsError):
    """Model training or forecasting failed"""


class PredictionValidationError(PredictionError, ValueError):
    """Prediction request rejected by input validation"""

    def __init__(self, errors: List[str], warnings: Optional[List[str]] = None):
        self.errors = list(errors)
        self.warnings = list(warnings or [])
        super().__init__(f"Validation failed: {', '.join(self.errors)}")


class SyncInProgressError(TranscriptAnalyticsError):
    """A sync was requested while another one is running"""

    def __init__(self, message: str = "Sync already in progress"):
        super().__init__(message)


class ExportError(TranscriptAnalyticsError):
    """Export generation failed"""
