"""Select and build the configured data backend"""

import threading
from typing import List, Optional

from transcript_analytics.data.base import DataService
from transcript_analytics.data.database import DatabaseDataService
from transcript_analytics.data.workbook import WorkbookDataService
from transcript_analytics.utils.config import ConfigLoader
from transcript_analytics.utils.errors import ConfigurationError
from transcript_analytics.utils.logging_config import get_logger


logger = get_logger(__name__)

SUPPORTED_SOURCES = ('workbook', 'database')


def validate_data_source_config(config: ConfigLoader) -> List[str]:
    """
    Collect every problem with the data_source section

    Args:
        config: Configuration loader

    Returns:
        List of error messages (empty when valid)
    """
    errors = []
    source = config.get('data_source.type')

    if not source:
        errors.append("data_source.type is required")
    elif source not in SUPPORTED_SOURCES:
        errors.append(
            f"Invalid data_source.type '{source}', must be one of: {', '.join(SUPPORTED_SOURCES)}"
        )
    elif source == 'workbook' and not config.get('data_source.workbook.path'):
        errors.append("data_source.workbook.path is required for workbook data source")
    elif source == 'database' and not config.get('data_source.database.path'):
        errors.append("data_source.database.path is required for database data source")

    return errors


class DataServiceFactory:
    """
    Build DataService instances from configuration

    Keeps a process-wide instance for the API and CLI; tests call
    ``reset_instance()`` between cases.
    """

    _instance: Optional[DataService] = None
    _lock = threading.Lock()

    @staticmethod
    def create_data_service(config: Optional[ConfigLoader] = None) -> DataService:
        """
        Create a new backend for the configured data source

        Args:
            config: Configuration loader (defaults to config/config.yaml)

        Returns:
            WorkbookDataService or DatabaseDataService

        Raises:
            ConfigurationError: If the data_source section is invalid
        """
        config = config if config else ConfigLoader()
        errors = validate_data_source_config(config)
        if errors:
            raise ConfigurationError("Invalid data source configuration", errors)

        source = config.get('data_source.type')
        if source == 'workbook':
            logger.info("Creating workbook data service")
            return WorkbookDataService(
                path=config.get_path('data_source.workbook.path'),
                sheet_name=config.get('data_source.workbook.sheet_name', 'Transcripts'),
                predictions_sheet=config.get('data_source.workbook.predictions_sheet', 'Predictions'),
            )

        logger.info("Creating database data service")
        return DatabaseDataService(
            path=config.get_path('data_source.database.path'),
            timeout=float(config.get('data_source.database.timeout_seconds', 10)),
        )

    @classmethod
    def get_instance(cls, config: Optional[ConfigLoader] = None) -> DataService:
        with cls._lock:
            if cls._instance is None:
                cls._instance = cls.create_data_service(config)
            return cls._instance

    @classmethod
    def reset_instance(cls):
        with cls._lock:
            cls._instance = None

    @staticmethod
    def get_data_source_type(config: Optional[ConfigLoader] = None) -> str:
        config = config if config else ConfigLoader()
        return config.get('data_source.type', 'workbook')

    @classmethod
    def is_data_source_available(cls, config: Optional[ConfigLoader] = None) -> bool:
        """Build the backend and run its health check; never raises"""
        try:
            return cls.create_data_service(config).health_check()
        except Exception as e:
            logger.error(f"Data source availability check failed: {e}")
            return False
