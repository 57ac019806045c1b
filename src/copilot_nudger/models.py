"""
Data models for the Copilot PR Nudger.

These are plain value objects built by the GitHub client from PyGithub
objects, so the polling core never touches the API types directly.
"""

from datetime import UTC, datetime
from enum import IntEnum

from pydantic import BaseModel, ConfigDict, Field, field_validator


def ensure_utc(value: datetime) -> datetime:
    """Treat naive timestamps as UTC and convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


class WorkState(IntEnum):
    """Observed state of the Copilot agent on a pull request."""

    UNKNOWN = 0
    STARTED = 1
    IN_PROGRESS = 2
    FINISHED = 3
    FINISHED_WITH_FAILURE = 4


class WorkStatus(BaseModel):
    """Result of classifying one pull request at one point in time."""

    model_config = ConfigDict(frozen=True)

    state: WorkState = WorkState.UNKNOWN
    last_event_time: datetime | None = None
    last_event_source: str | None = None
    has_recent_activity: bool = False

    @classmethod
    def unknown(cls) -> "WorkStatus":
        return cls(state=WorkState.UNKNOWN)


class Actor(BaseModel):
    """A GitHub user reduced to what identity matching needs."""

    model_config = ConfigDict(frozen=True)

    login: str
    id: int


class _Timestamped(BaseModel):
    model_config = ConfigDict(frozen=True)

    created_at: datetime

    @field_validator("created_at")
    @classmethod
    def normalize_created_at(cls, v: datetime) -> datetime:
        return ensure_utc(v)


class CommentRecord(_Timestamped):
    """An issue comment on a pull request."""

    author: Actor | None = None
    body: str = ""


class TimelineEvent(_Timestamped):
    """An issue event on a pull request timeline."""

    actor: Actor | None = None
    kind: str


class PullRequestInfo(BaseModel):
    """A candidate pull request."""

    model_config = ConfigDict(frozen=True)

    number: int
    title: str
    url: str = ""
    body: str | None = None
    draft: bool = False
    author: Actor | None = None
    assignees: list[Actor] = Field(default_factory=list)


class IssueInfo(BaseModel):
    """The issue a pull request claims to fix."""

    model_config = ConfigDict(frozen=True)

    number: int
    title: str
    url: str = ""
