"""
Pytest configuration and fixtures for Copilot PR Nudger tests.
"""

from datetime import UTC, datetime, timedelta

import pytest
from unittest.mock import AsyncMock

from copilot_nudger.config import Settings, TrackerConfig
from copilot_nudger.github_client import GitHubClient
from copilot_nudger.models import Actor
from copilot_nudger.polling.agent_tracker import AgentConcurrencyTracker

COPILOT_USER_ID = 198982749


class FakeTimer:
    """Stands in for threading.Timer so validation can be fired by hand."""

    def __init__(self, delay: float, callback):
        self.delay = delay
        self.callback = callback
        self.cancelled = False

    def fire(self) -> None:
        self.callback()

    def cancel(self) -> None:
        self.cancelled = True


@pytest.fixture
def mock_settings() -> Settings:
    """Mock settings for testing."""
    return Settings(
        github_personal_access_token="test-token",
        github_owner="test-org",
        github_repository="test-repo",
        max_concurrent_agents=2,
        max_retries=3,
        agent_start_validation_minutes=5,
        copilot_backoff_increment_minutes=15,
        copilot_success_reset_minutes=2,
        log_level="DEBUG",
    )


@pytest.fixture
def tracker_config() -> TrackerConfig:
    """Tracker configuration matching the documented defaults."""
    return TrackerConfig(
        max_concurrent_agents=2,
        agent_start_validation_delay=timedelta(minutes=5),
        backoff_increment=timedelta(minutes=15),
        success_reset_delay=timedelta(minutes=2),
    )


@pytest.fixture
def timers() -> list[FakeTimer]:
    """Timers scheduled by the tracker under test."""
    return []


@pytest.fixture
def tracker(tracker_config: TrackerConfig, timers: list[FakeTimer]):
    """Tracker whose validation timers never fire on their own."""

    def timer_factory(delay, callback):
        timer = FakeTimer(delay, callback)
        timers.append(timer)
        return timer

    return AgentConcurrencyTracker(tracker_config, timer_factory=timer_factory)


@pytest.fixture
def mock_github_client() -> AsyncMock:
    """Mock GitHub client for testing."""
    client = AsyncMock(spec=GitHubClient)
    client.get_draft_pull_requests.return_value = []
    client.get_pull_request_comments.return_value = []
    client.get_pull_request_timeline.return_value = []
    client.get_linked_issue.return_value = None
    return client


@pytest.fixture
def now() -> datetime:
    return datetime(2024, 6, 1, 12, 0, tzinfo=UTC)


@pytest.fixture
def copilot() -> Actor:
    return Actor(login="copilot", id=COPILOT_USER_ID)


@pytest.fixture
def copilot_swe_agent() -> Actor:
    """Copilot acting under a login that is not in the handle list."""
    return Actor(login="Copilot", id=COPILOT_USER_ID)


@pytest.fixture
def human() -> Actor:
    return Actor(login="octocat", id=583231)
