"""
Tests for settings and driver loading.
"""

import pytest
from pydantic import ValidationError

from reconpipe.collaborators import DriverUnavailableError, UnavailableDriver, load_driver
from reconpipe.settings import PipelineSettings


class TestPipelineSettings:
    """Tests for PipelineSettings."""

    def test_defaults(self):
        settings = PipelineSettings()

        assert settings.poll_interval == 5.0
        assert settings.max_poll_attempts == 150
        assert settings.stale_after_seconds == 120.0
        assert settings.download_timeout == 120.0
        assert settings.download_check_interval == 2.0
        assert settings.min_archive_bytes == 1024
        assert settings.port == 8085
        assert settings.downloads_dir is None

    def test_from_env_converts_strings(self):
        settings = PipelineSettings.from_env({
            "RECONPIPE_POLL_INTERVAL": "2.5",
            "RECONPIPE_MAX_POLL_ATTEMPTS": "10",
            "RECONPIPE_USE_POLLING_OBSERVER": "true",
            "RECONPIPE_INBOUND_DIR": "/data/downloads",
            "UNRELATED": "ignored",
        })

        assert settings.poll_interval == 2.5
        assert settings.max_poll_attempts == 10
        assert settings.use_polling_observer is True
        assert settings.inbound_dir == "/data/downloads"

    def test_overrides_win_and_none_is_skipped(self):
        settings = PipelineSettings.from_env(
            {"RECONPIPE_PORT": "9000", "RECONPIPE_DB_PATH": "env.db"},
            port=9100,
            db_path=None,
        )

        assert settings.port == 9100
        assert settings.db_path == "env.db"

    def test_empty_env_value_ignored(self):
        settings = PipelineSettings.from_env({"RECONPIPE_UPLOAD_BASE_URL": ""})
        assert settings.upload_base_url is None

    @pytest.mark.parametrize("field,value", [
        ("poll_interval", 0),
        ("max_poll_attempts", 0),
        ("port", 70000),
        ("download_timeout", -1),
    ])
    def test_invalid_values_rejected(self, field, value):
        with pytest.raises(ValidationError):
            PipelineSettings(**{field: value})

    def test_unknown_field_rejected(self):
        with pytest.raises(ValidationError):
            PipelineSettings(poll_intervall=1.0)


class TestLoadDriver:
    """Tests for load_driver."""

    def test_no_path_gives_unavailable_driver(self, caplog):
        driver = load_driver(None)

        assert isinstance(driver, UnavailableDriver)
        assert "No web automation driver configured" in caplog.text
        with pytest.raises(DriverUnavailableError):
            driver.login()

    def test_loads_factory(self):
        driver = load_driver("conftest:FakeDriver")
        assert driver.login() is True

    def test_malformed_path(self):
        with pytest.raises(DriverUnavailableError, match="module:callable"):
            load_driver("conftest.FakeDriver")

    def test_import_failure(self):
        with pytest.raises(DriverUnavailableError, match="Cannot load driver"):
            load_driver("reconpipe.no_such_module:factory")
