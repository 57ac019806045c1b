"""
Tests for configuration loading.

Covers environment parsing, derived sub-configurations, the JSON config
file and command line overrides.
"""

import json
import os
from datetime import timedelta
from unittest.mock import patch

import pytest
from pydantic import ValidationError

from copilot_nudger import config
from copilot_nudger.config import Settings, get_settings, load_settings
from copilot_nudger.exceptions import ConfigurationError

BASE_ENV = {"GITHUB_OWNER": "test-org", "GITHUB_REPOSITORY": "test-repo"}


class TestSettingsFromEnvironment:
    """Test Settings populated from environment variables."""

    def test_defaults(self):
        with patch.dict(os.environ, BASE_ENV, clear=True):
            settings = Settings()

        assert settings.scan_interval_minutes == 60
        assert settings.max_retries == 3
        assert settings.max_concurrent_agents == 3
        assert settings.copilot_user_id == 198982749
        assert settings.copilot_usernames == [
            "@copilot",
            "@apps/copilot-pull-request-reviewer",
        ]
        assert settings.log_level == "INFO"
        assert settings.repository_full_name == "test-org/test-repo"

    def test_owner_and_repository_are_required(self):
        with patch.dict(os.environ, {}, clear=True):
            with pytest.raises(ValidationError):
                Settings()

    def test_copilot_usernames_get_at_prefix(self):
        env = {**BASE_ENV, "COPILOT_USERNAMES": "copilot, @copilot-swe-agent ,"}
        with patch.dict(os.environ, env, clear=True):
            settings = Settings()

        assert settings.copilot_usernames == ["@copilot", "@copilot-swe-agent"]

    def test_identity_uses_configured_handles(self):
        env = {**BASE_ENV, "COPILOT_USERNAMES": "@bot", "COPILOT_USER_ID": "42"}
        with patch.dict(os.environ, env, clear=True):
            identity = Settings().identity

        assert identity.matches("bot", None) is True
        assert identity.matches("copilot", 1) is False
        assert identity.matches("anyone", 42) is True

    def test_log_level_is_normalized(self):
        with patch.dict(os.environ, {**BASE_ENV, "LOG_LEVEL": "debug"}, clear=True):
            assert Settings().log_level == "DEBUG"

    @pytest.mark.parametrize(
        "key,value",
        [
            ("LOG_LEVEL", "VERBOSE"),
            ("LOG_FORMAT", "xml"),
            ("MAX_CONCURRENT_AGENTS", "0"),
            ("SCAN_INTERVAL_MINUTES", "0"),
            ("MAX_RETRIES", "-1"),
        ],
    )
    def test_invalid_values_are_rejected(self, key, value):
        with patch.dict(os.environ, {**BASE_ENV, key: value}, clear=True):
            with pytest.raises(ValidationError):
                Settings()


class TestDerivedConfig:
    """Test sub-configurations built from Settings."""

    def test_tracker_config(self, mock_settings):
        tracker_config = mock_settings.tracker_config

        assert tracker_config.max_concurrent_agents == 2
        assert tracker_config.agent_start_validation_delay == timedelta(minutes=5)
        assert tracker_config.backoff_increment == timedelta(minutes=15)
        assert tracker_config.success_reset_delay == timedelta(minutes=2)

    def test_retry_config(self, mock_settings):
        retry_config = mock_settings.retry_config

        assert retry_config.base_delay_seconds == 60
        assert retry_config.backoff_multiplier == 2.0
        assert retry_config.max_delay == timedelta(minutes=60)

    def test_server_config(self, mock_settings):
        server_config = mock_settings.server_config

        assert server_config.enabled is False
        assert server_config.host == "127.0.0.1"
        assert server_config.port == 8000

    def test_app_mode(self):
        with patch.dict(os.environ, {}, clear=True):
            settings = Settings(
                github_owner="test-org",
                github_repository="test-repo",
                github_app_id=12345,
                github_app_private_key_path="/keys/app.pem",
            )

        assert settings.is_app_mode is True
        assert settings.github_app_config.app_id == 12345
        assert settings.github_app_config.owner == "test-org"

    def test_pat_wins_over_app(self, mock_settings):
        settings = mock_settings.model_copy(update={"github_app_id": 12345})

        assert settings.is_app_mode is False


class TestCredentials:
    """Test credential validation."""

    def test_pat_is_enough(self, mock_settings):
        mock_settings.validate_credentials()

    def test_app_needs_key_path(self):
        with patch.dict(os.environ, {}, clear=True):
            settings = Settings(
                github_owner="test-org", github_repository="test-repo", github_app_id=1
            )

        with pytest.raises(ConfigurationError) as exc_info:
            settings.validate_credentials()

        assert exc_info.value.code == "CONFIGURATION_ERROR"

    def test_missing_credentials(self):
        with patch.dict(os.environ, BASE_ENV, clear=True):
            settings = Settings()

        with pytest.raises(ConfigurationError, match="credentials missing"):
            settings.validate_credentials()


class TestLoadSettings:
    """Test the config file and override layering."""

    def test_file_overrides_environment(self, tmp_path):
        config_file = tmp_path / "settings.json"
        config_file.write_text(
            json.dumps({"github_repository": "from-file", "max_retries": 5})
        )

        with patch.dict(os.environ, BASE_ENV, clear=True):
            settings = load_settings(str(config_file))

        assert settings.github_owner == "test-org"
        assert settings.github_repository == "from-file"
        assert settings.max_retries == 5

    def test_overrides_win_over_file(self, tmp_path):
        config_file = tmp_path / "settings.json"
        config_file.write_text(json.dumps({"github_owner": "file-org"}))

        with patch.dict(os.environ, BASE_ENV, clear=True):
            settings = load_settings(
                str(config_file),
                {"github_owner": "cli-org", "github_repository": None},
            )

        assert settings.github_owner == "cli-org"
        assert settings.github_repository == "test-repo"

    def test_empty_override_is_ignored(self):
        with patch.dict(os.environ, BASE_ENV, clear=True):
            settings = load_settings(overrides={"github_personal_access_token": ""})

        assert settings.github_personal_access_token == ""

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError, match="not found"):
            load_settings(str(tmp_path / "missing.json"))

    def test_invalid_json(self, tmp_path):
        config_file = tmp_path / "settings.json"
        config_file.write_text("{not json")

        with pytest.raises(ConfigurationError, match="Invalid configuration file"):
            load_settings(str(config_file))

    def test_non_object_json(self, tmp_path):
        config_file = tmp_path / "settings.json"
        config_file.write_text("[1, 2]")

        with pytest.raises(ConfigurationError, match="must hold an object"):
            load_settings(str(config_file))

    def test_validation_error_is_wrapped(self):
        with patch.dict(os.environ, {}, clear=True):
            with pytest.raises(ConfigurationError, match="Invalid configuration"):
                load_settings()


class TestGetSettings:
    """Test the lazily created global settings."""

    @pytest.fixture(autouse=True)
    def reset_global(self):
        config._settings_instance = None
        yield
        config._settings_instance = None

    def test_is_cached(self):
        with patch.dict(os.environ, BASE_ENV, clear=True):
            first = get_settings()
            second = get_settings()

        assert first is second

    def test_missing_owner_raises_configuration_error(self):
        with patch.dict(os.environ, {}, clear=True):
            with pytest.raises(ConfigurationError):
                get_settings()
