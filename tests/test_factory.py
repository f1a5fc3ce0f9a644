import pytest

from transcript_analytics.data.database import DatabaseDataService
from transcript_analytics.data.factory import DataServiceFactory, validate_data_source_config
from transcript_analytics.data.workbook import WorkbookDataService
from transcript_analytics.utils.config import ConfigLoader
from transcript_analytics.utils.errors import ConfigurationError


def test_creates_workbook_backend(config):
    service = DataServiceFactory.create_data_service(config)
    assert isinstance(service, WorkbookDataService)
    assert service.source_type == 'workbook'


def test_creates_database_backend(config):
    config.set('data_source.type', 'database')
    service = DataServiceFactory.create_data_service(config)
    assert isinstance(service, DatabaseDataService)
    assert service.health_check()


@pytest.mark.parametrize("section,message", [
    ({}, "data_source.type is required"),
    ({'type': 'sheets'}, "Invalid data_source.type 'sheets'"),
    ({'type': 'workbook'}, "data_source.workbook.path is required"),
    ({'type': 'database'}, "data_source.database.path is required"),
])
def test_validation_errors(section, message):
    config = ConfigLoader.from_dict({'data_source': section})
    errors = validate_data_source_config(config)
    assert len(errors) == 1
    assert errors[0].startswith(message)

    with pytest.raises(ConfigurationError):
        DataServiceFactory.create_data_service(config)


def test_singleton_instance_and_reset(config):
    first = DataServiceFactory.get_instance(config)
    assert DataServiceFactory.get_instance(config) is first
    DataServiceFactory.reset_instance()
    assert DataServiceFactory.get_instance(config) is not first


def test_source_type_and_availability(config):
    assert DataServiceFactory.get_data_source_type(config) == 'workbook'
    assert DataServiceFactory.is_data_source_available(config) is True
    assert DataServiceFactory.is_data_source_available(ConfigLoader.from_dict({})) is False
