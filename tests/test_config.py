from pathlib import Path

import pytest
import yaml

from transcript_analytics.utils.config import PROJECT_ROOT, ConfigLoader
from transcript_analytics.utils.errors import ConfigurationError, DataSourceError, RecordNotFoundError


def test_get_supports_dot_notation_and_defaults():
    config = ConfigLoader.from_dict({'prediction': {'window_size': 4}})
    assert config.get('prediction.window_size') == 4
    assert config.get('prediction.missing', default='fallback') == 'fallback'
    assert config.get('nope.deeper') is None


def test_set_creates_sections():
    config = ConfigLoader.from_dict({})
    config.set('cache.ttl_seconds', 10)
    assert config.get('cache') == {'ttl_seconds': 10}


def test_from_dict_copies_input():
    data = {'cache': {'enabled': True}}
    config = ConfigLoader.from_dict(data)
    config.set('cache.enabled', False)
    assert data['cache']['enabled'] is True


def test_loads_yaml_file(tmp_path):
    path = tmp_path / 'config.yaml'
    path.write_text(yaml.safe_dump({'data_source': {'type': 'database'}}))
    config = ConfigLoader(str(path), use_env=False)
    assert config.get('data_source.type') == 'database'


def test_missing_file_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        ConfigLoader(str(tmp_path / 'absent.yaml'))


def test_env_overrides(tmp_path, monkeypatch):
    path = tmp_path / 'config.yaml'
    path.write_text(yaml.safe_dump({'data_source': {'type': 'workbook'}}))
    monkeypatch.setenv('DATA_SOURCE_TYPE', 'database')
    assert ConfigLoader(str(path)).get('data_source.type') == 'database'
    assert ConfigLoader(str(path), use_env=False).get('data_source.type') == 'workbook'


def test_get_path_resolves_relative_to_project_root(tmp_path):
    config = ConfigLoader.from_dict({'a': 'data/x.xlsx', 'b': str(tmp_path / 'y.db')})
    assert config.get_path('a') == PROJECT_ROOT / 'data/x.xlsx'
    assert config.get_path('b') == Path(tmp_path / 'y.db')
    with pytest.raises(ValueError):
        config.get_path('missing')


def test_error_messages_carry_details():
    err = ConfigurationError("Invalid data source configuration", ["a is required", "b is wrong"])
    assert str(err) == "Invalid data source configuration: a is required, b is wrong"
    assert isinstance(err, ValueError)

    wrapped = DataSourceError("Failed", OSError("disk"))
    assert "disk" in str(wrapped)
    assert isinstance(RecordNotFoundError("x"), DataSourceError)


def test_env_override_is_converted(monkeypatch):
    monkeypatch.setenv('PREDICTION_CACHE_TTL', '120')
    monkeypatch.setenv('LOG_LEVEL', 'debug')
    config = ConfigLoader.from_dict({}, use_env=True)
    assert config.get('cache.ttl_seconds') == 120
    assert config.get('logging.level') == 'DEBUG'


def test_bad_env_override_names_the_variable(monkeypatch):
    monkeypatch.setenv('PREDICTION_CACHE_TTL', 'soon')
    with pytest.raises(ValueError, match='PREDICTION_CACHE_TTL'):
        ConfigLoader.from_dict({}, use_env=True)


def test_reload_picks_up_changes(tmp_path):
    path = tmp_path / 'config.yaml'
    path.write_text(yaml.safe_dump({'cache': {'enabled': True}}))
    config = ConfigLoader(str(path), use_env=False)
    path.write_text(yaml.safe_dump({'cache': {'enabled': False}}))
    config.reload()
    assert config.get('cache.enabled') is False
    assert 'env=False' in repr(config)
