"""
Configuration management for the Copilot PR Nudger.

This module handles environment variables, settings validation, and configuration
management using Pydantic Settings for type safety and validation.
"""

import json
from datetime import timedelta
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .exceptions import ConfigurationError
from .identity import CopilotIdentity


class GitHubAppConfig(BaseModel):
    """GitHub App configuration settings."""

    app_id: int = Field(..., description="GitHub App ID")
    private_key_path: str = Field(..., description="Path to GitHub App private key")
    owner: str = Field(..., description="Account the app is installed on")


class TrackerConfig(BaseModel):
    """Agent concurrency tracker configuration."""

    max_concurrent_agents: int = Field(default=3, ge=1)
    agent_start_validation_delay: timedelta = Field(default=timedelta(minutes=5))
    backoff_increment: timedelta = Field(default=timedelta(minutes=15))
    success_reset_delay: timedelta = Field(default=timedelta(minutes=2))


class RetryConfig(BaseModel):
    """Error retry configuration for the polling service."""

    base_delay_seconds: float = Field(default=60.0, ge=0)
    backoff_multiplier: float = Field(default=2.0, ge=1.0)
    max_delay: timedelta = Field(default=timedelta(minutes=60))


class ServerConfig(BaseModel):
    """Status server configuration settings."""

    enabled: bool = Field(default=False, description="Serve the status API")
    host: str = Field(default="127.0.0.1", description="Server host")
    port: int = Field(default=8000, description="Server port")


class Settings(BaseSettings):
    """Main application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # GitHub configuration
    github_personal_access_token: str = Field(
        default="", description="GitHub Personal Access Token"
    )
    github_app_id: int = Field(default=0, description="GitHub App ID (0 for PAT mode)")
    github_app_private_key_path: str = Field(
        default="", description="GitHub App private key path"
    )
    github_api_url: str = Field(
        default="https://api.github.com", description="GitHub API URL"
    )
    github_owner: str = Field(..., description="Repository owner")
    github_repository: str = Field(..., description="Repository name")

    # Scanning
    scan_interval_minutes: int = Field(
        default=60, ge=1, description="Minutes between pull request scans"
    )
    max_retries: int = Field(
        default=3, ge=0, description="Maximum review requests per pull request"
    )

    # Error retry
    base_delay_seconds: float = Field(
        default=60.0, ge=0, description="First retry delay after a failed scan"
    )
    backoff_multiplier: float = Field(
        default=2.0, ge=1.0, description="Retry delay growth factor"
    )
    max_retry_delay_minutes: int = Field(
        default=60, ge=1, description="Upper bound for the retry delay"
    )

    # Copilot identity
    copilot_usernames: str | list[str] = Field(
        default="@copilot,@apps/copilot-pull-request-reviewer",
        description="Copilot handles including the @ prefix (comma-separated)",
    )
    copilot_user_id: int = Field(default=198982749, description="Copilot account id")

    # Agent tracking
    max_concurrent_agents: int = Field(
        default=3, ge=1, description="Maximum Copilot agents working at once"
    )
    agent_start_validation_minutes: float = Field(
        default=5, ge=0, description="Grace period before a started agent is validated"
    )
    copilot_backoff_increment_minutes: float = Field(
        default=15, ge=0, description="Backoff added per consecutive agent failure"
    )
    copilot_success_reset_minutes: float = Field(
        default=2, ge=0, description="Pause after a single agent success"
    )

    # Logging configuration
    log_level: str = Field(default="INFO", description="Log level")
    log_format: str = Field(default="console", description="Log format")

    # Status server
    enable_status_server: bool = Field(
        default=False, description="Serve /health and /status in service mode"
    )
    host: str = Field(default="127.0.0.1", description="Status server host")
    port: int = Field(default=8000, description="Status server port")

    @field_validator("copilot_usernames", mode="before")
    @classmethod
    def parse_copilot_usernames(cls, v: Any) -> list[str]:
        """Parse Copilot handles from comma-separated string or list."""
        if isinstance(v, str):
            return [name.strip() for name in v.split(",") if name.strip()]
        elif isinstance(v, list):
            return v
        else:
            error_msg = f"copilot_usernames must be a string or list, got {type(v)}"
            raise ValueError(error_msg)

    @field_validator("copilot_usernames")
    @classmethod
    def validate_copilot_usernames(cls, v: list[str]) -> list[str]:
        """Ensure every handle carries the @ prefix."""
        return [name if name.startswith("@") else f"@{name}" for name in v]

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        allowed_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v.upper() not in allowed_levels:
            raise ValueError(f"Invalid log level: {v}")
        return v.upper()

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        """Validate log format."""
        if v not in {"json", "console"}:
            raise ValueError(f"Invalid log format: {v}")
        return v

    @property
    def is_app_mode(self) -> bool:
        """Check if authenticating as a GitHub App rather than with a PAT."""
        return bool(self.github_app_id and not self.github_personal_access_token)

    @property
    def repository_full_name(self) -> str:
        """Get the owner/name form of the monitored repository."""
        return f"{self.github_owner}/{self.github_repository}"

    @property
    def github_app_config(self) -> GitHubAppConfig:
        """Get GitHub App configuration."""
        return GitHubAppConfig(
            app_id=self.github_app_id,
            private_key_path=self.github_app_private_key_path,
            owner=self.github_owner,
        )

    @property
    def tracker_config(self) -> TrackerConfig:
        """Get agent tracker configuration."""
        return TrackerConfig(
            max_concurrent_agents=self.max_concurrent_agents,
            agent_start_validation_delay=timedelta(
                minutes=self.agent_start_validation_minutes
            ),
            backoff_increment=timedelta(minutes=self.copilot_backoff_increment_minutes),
            success_reset_delay=timedelta(minutes=self.copilot_success_reset_minutes),
        )

    @property
    def retry_config(self) -> RetryConfig:
        """Get error retry configuration."""
        return RetryConfig(
            base_delay_seconds=self.base_delay_seconds,
            backoff_multiplier=self.backoff_multiplier,
            max_delay=timedelta(minutes=self.max_retry_delay_minutes),
        )

    @property
    def server_config(self) -> ServerConfig:
        """Get status server configuration."""
        return ServerConfig(
            enabled=self.enable_status_server, host=self.host, port=self.port
        )

    @property
    def identity(self) -> CopilotIdentity:
        """Get the Copilot identity predicate."""
        usernames = self.copilot_usernames
        if isinstance(usernames, str):
            usernames = [name.strip() for name in usernames.split(",") if name.strip()]
        return CopilotIdentity(usernames, self.copilot_user_id)

    def validate_credentials(self) -> None:
        """
        Check that some form of GitHub authentication is configured.

        Raises:
            ConfigurationError: If neither a PAT nor a GitHub App is configured
        """
        if self.github_personal_access_token:
            return
        if self.github_app_id and self.github_app_private_key_path:
            return
        raise ConfigurationError(
            "GitHub credentials missing: set GITHUB_PERSONAL_ACCESS_TOKEN or "
            "GITHUB_APP_ID and GITHUB_APP_PRIVATE_KEY_PATH"
        )


# Global settings instance - initialized lazily to avoid import-time errors
_settings_instance = None


def get_settings() -> Settings:
    """Get the global settings instance, creating it if necessary."""
    global _settings_instance
    if _settings_instance is None:
        try:
            _settings_instance = Settings()  # type: ignore[call-arg,unused-ignore]
        except ValidationError as e:
            raise ConfigurationError(
                "GITHUB_OWNER and GITHUB_REPOSITORY environment variables are "
                f"required: {e}"
            ) from e
    return _settings_instance


def load_settings(
    config_path: str | None = None, overrides: dict[str, Any] | None = None
) -> Settings:
    """
    Build settings from the environment, an optional JSON file and overrides.

    Values from the JSON file take precedence over the environment, and
    non-empty overrides (typically from the command line) win over both.

    Args:
        config_path: Path to a JSON file keyed by setting name
        overrides: Explicit setting values; ``None`` entries are ignored

    Returns:
        Settings instance
    """
    values: dict[str, Any] = {}

    if config_path:
        path = Path(config_path)
        if not path.exists():
            raise ConfigurationError(f"Configuration file not found: {path}")
        try:
            with open(path, encoding="utf-8") as f:
                loaded = json.load(f)
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"Invalid configuration file {path}: {e}") from e
        if not isinstance(loaded, dict):
            raise ConfigurationError(f"Configuration file {path} must hold an object")
        values.update(loaded)

    for key, value in (overrides or {}).items():
        if value is not None and value != "":
            values[key] = value

    try:
        return Settings(**values)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid configuration: {e}") from e
