import pytest
from pydantic import ValidationError

from copyflow.config import EngineOptions, Settings, secret_value


def test_engine_options_follow_settings(monkeypatch):
    monkeypatch.setenv('DRAIN_BATCH_SIZE', '25')
    monkeypatch.setenv('DRAIN_ITEM_DELAY_SECONDS', '0.5')
    monkeypatch.setenv('HTTP_RETRIES', '5')
    monkeypatch.setenv('HTTP_RETRY_NETWORK_ERRORS', 'true')
    monkeypatch.setenv('RUN_LEASE_SECONDS', '120')

    options = EngineOptions.from_settings(Settings())

    assert options.batch_size == 25
    assert options.item_delay_seconds == 0.5
    assert options.retries == 5
    assert options.retry_network_errors is True
    assert options.lease_seconds == 120
    assert options.workflow_name == 'generate-copy'


def test_defaults_match_engine_defaults(monkeypatch):
    for name in ('DRAIN_BATCH_SIZE', 'DRAIN_ITEM_DELAY_SECONDS', 'HTTP_RETRIES', 'RUN_LEASE_SECONDS'):
        monkeypatch.delenv(name, raising=False)

    options = EngineOptions.from_settings(Settings())

    assert options == EngineOptions()


def test_database_url_must_be_postgres_or_sqlite(monkeypatch):
    monkeypatch.setenv('DATABASE_URL', 'mysql://root@localhost/db')

    with pytest.raises(ValidationError):
        Settings()


def test_blank_secrets_and_drive_id_are_unset(monkeypatch):
    monkeypatch.setenv('CLICKUP_WEBHOOK_SECRET', '   ')
    monkeypatch.setenv('SHADE_DRIVE_ID', '')

    settings = Settings()

    assert secret_value(settings.clickup_webhook_secret) is None
    assert settings.shade_drive_id is None


def test_log_level_is_validated(monkeypatch):
    monkeypatch.setenv('LOG_LEVEL', 'chatty')

    with pytest.raises(ValidationError):
        Settings()
