"""Unit tests for environment-driven settings."""

import os

import pytest

from routewatch.lib.config import DEFAULT_NOISE_PREFIXES, Settings, load_settings


@pytest.fixture(autouse=True)
def isolated_env(tmp_path, monkeypatch):
    """Run from an empty directory against a private copy of the environment."""
    monkeypatch.chdir(tmp_path)
    environ = {k: v for k, v in os.environ.items() if not k.startswith('ROUTEWATCH_')}
    monkeypatch.setattr(os, 'environ', environ)


def test_defaults():
    settings = load_settings()

    assert settings == Settings()
    assert settings.database_url == 'sqlite:///metrics.db'
    assert settings.retention_days == 7
    assert settings.noise_prefixes == DEFAULT_NOISE_PREFIXES
    assert settings.collector_url == 'http://localhost:3002/api/metrics'


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv('ROUTEWATCH_DATABASE_URL', 'sqlite:////var/lib/routewatch/metrics.db')
    monkeypatch.setenv('ROUTEWATCH_RETENTION_DAYS', '14')
    monkeypatch.setenv('ROUTEWATCH_NOISE_PREFIXES', '/status/, /internal')
    monkeypatch.setenv('ROUTEWATCH_PRESERVE_HOST', 'true')
    monkeypatch.setenv('ROUTEWATCH_SERVICE_NAME', 'orders')
    monkeypatch.setenv('ROUTEWATCH_PROXY_TIMEOUT', '2.5')

    settings = load_settings()

    assert settings.database_url == 'sqlite:////var/lib/routewatch/metrics.db'
    assert settings.retention_days == 14
    assert settings.noise_prefixes == ('/status', '/internal')
    assert settings.preserve_host is True
    assert settings.service_name == 'orders'
    assert settings.proxy_timeout == 2.5


def test_env_local_file_overrides_env_file(tmp_path):
    (tmp_path / '.env').write_text('ROUTEWATCH_RETENTION_DAYS=3\n')
    (tmp_path / '.env.local').write_text('ROUTEWATCH_RETENTION_DAYS=5\n')

    assert load_settings().retention_days == 5


def test_invalid_number_is_rejected(monkeypatch):
    monkeypatch.setenv('ROUTEWATCH_RETENTION_DAYS', 'a week')

    with pytest.raises(ValueError, match='ROUTEWATCH_RETENTION_DAYS'):
        load_settings()
