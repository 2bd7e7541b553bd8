"""
Configuration Tests
"""

import pytest
from pydantic import ValidationError

from offline_sync.connectivity import InterfaceType
from offline_sync.models import EntityType


class TestSyncSettings:
    """Tests for settings defaults, env parsing, and validation."""

    @pytest.fixture(autouse=True)
    def clean_env(self, monkeypatch):
        import os
        for name in list(os.environ):
            if name.startswith("OFFLINE_SYNC_"):
                monkeypatch.delenv(name)

    def test_defaults(self):
        from offline_sync.config import SyncSettings

        settings = SyncSettings(_env_file=None)

        assert settings.max_retry_attempts == 5
        assert settings.retry_delays == [1.0, 2.0, 5.0, 10.0, 30.0]
        assert settings.sync_debounce == 2.0
        assert settings.success_reset_delay == 3.0
        assert settings.retry_permanent_failures is False
        assert settings.pull_entity_types == list(EntityType)
        assert settings.probe_url == "http://localhost:54321/rest/v1/"

    def test_env_comma_separated_lists(self, monkeypatch):
        from offline_sync.config import SyncSettings

        monkeypatch.setenv("OFFLINE_SYNC_RETRY_DELAYS", "0.5, 1, 4")
        monkeypatch.setenv("OFFLINE_SYNC_PULL_ENTITY_TYPES", "task,goal")
        monkeypatch.setenv("OFFLINE_SYNC_PROBE_INTERFACE", "cellular")

        settings = SyncSettings(_env_file=None)

        assert settings.retry_delays == [0.5, 1.0, 4.0]
        assert settings.pull_entity_types == [EntityType.TASK, EntityType.GOAL]
        assert settings.probe_interface == InterfaceType.CELLULAR

    def test_explicit_probe_url_kept(self):
        from offline_sync.config import SyncSettings

        settings = SyncSettings(_env_file=None, probe_url="http://health.test/")
        assert settings.probe_url == "http://health.test/"

    @pytest.mark.parametrize("delays", [[], [5, 1], [-1, 2]])
    def test_invalid_retry_delays(self, delays):
        from offline_sync.config import SyncSettings

        with pytest.raises(ValidationError):
            SyncSettings(_env_file=None, retry_delays=delays)

    def test_invalid_max_attempts(self):
        from offline_sync.config import SyncSettings

        with pytest.raises(ValidationError):
            SyncSettings(_env_file=None, max_retry_attempts=0)

    def test_paths(self, tmp_path):
        from offline_sync.config import SyncSettings

        settings = SyncSettings(_env_file=None, data_dir=tmp_path / "data")

        assert settings.queue_db_path == tmp_path / "data" / "sync_queue.db"
        assert settings.local_db_url == f"sqlite:///{tmp_path / 'data' / 'local_entities.db'}"
        assert settings.ensure_data_dir().is_dir()

    def test_get_settings_is_cached(self):
        from offline_sync.config import get_settings

        assert get_settings() is get_settings()
