"""
Custom exceptions for the Copilot PR Nudger.

This module defines custom exception classes for better error handling
and debugging across the application.
"""

from datetime import datetime
from typing import Any


class NudgerError(Exception):
    """Base exception for Copilot PR Nudger errors."""

    def __init__(
        self,
        message: str,
        code: str | None = None,
        context: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.code = code or "NUDGER_ERROR"
        self.context = context or {}


class GitHubAPIError(NudgerError):
    """Exception for GitHub API related errors."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        context: dict[str, Any] | None = None,
    ):
        super().__init__(message, "GITHUB_API_ERROR", context)
        self.status_code = status_code


class AuthenticationError(NudgerError):
    """Exception for authentication related errors."""

    def __init__(self, message: str, context: dict[str, Any] | None = None):
        super().__init__(message, "AUTHENTICATION_ERROR", context)


class RateLimitError(NudgerError):
    """Exception for rate limit related errors."""

    def __init__(
        self,
        message: str,
        reset_time: datetime | None = None,
        context: dict[str, Any] | None = None,
    ):
        super().__init__(message, "RATE_LIMIT_ERROR", context)
        self.reset_time = reset_time


class ConfigurationError(NudgerError):
    """Exception for configuration related errors."""

    def __init__(self, message: str, context: dict[str, Any] | None = None):
        super().__init__(message, "CONFIGURATION_ERROR", context)
