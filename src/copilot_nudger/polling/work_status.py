"""
Copilot work status classification.

The agent reports progress through pull request comments, so the latest
Copilot comment decides the work state. Timeline events only refresh the
recency metadata.
"""

from collections.abc import Sequence
from datetime import UTC, datetime, timedelta
from typing import Protocol

import structlog

from ..identity import CopilotIdentity
from ..models import CommentRecord, TimelineEvent, WorkState, WorkStatus, ensure_utc

logger = structlog.get_logger(__name__)

RECENT_ACTIVITY_WINDOW = timedelta(minutes=30)
EVENT_LOOKBACK = timedelta(hours=24)

# Evaluated top to bottom: failure markers must win over the generic
# completion markers ("finished" also appears in failure reports).
STATE_MARKERS: list[tuple[tuple[str, ...], WorkState]] = [
    (
        ("copilot_work_started", "starting work", "beginning to work"),
        WorkState.STARTED,
    ),
    (
        (
            "copilot_work_finished_failure",
            "copilot_work_finished_error",
            "failed",
            "error",
            "unable",
        ),
        WorkState.FINISHED_WITH_FAILURE,
    ),
    (
        ("copilot_work_finished", "completed", "finished", "done"),
        WorkState.FINISHED,
    ),
]


class WorkActivitySource(Protocol):
    """Anything that can fetch a pull request's comments and timeline."""

    async def get_pull_request_comments(
        self, pr_number: int
    ) -> list[CommentRecord]: ...

    async def get_pull_request_timeline(
        self, pr_number: int
    ) -> list[TimelineEvent]: ...


def classify_comment_body(body: str) -> WorkState:
    """Map a Copilot comment body to a work state."""
    text = body.lower()
    for markers, state in STATE_MARKERS:
        if any(marker in text for marker in markers):
            return state
    return WorkState.IN_PROGRESS


class WorkStatusClassifier:
    """Derives the Copilot work state of a pull request."""

    def __init__(self, identity: CopilotIdentity):
        self.identity = identity

    def classify(
        self,
        comments: Sequence[CommentRecord],
        events: Sequence[TimelineEvent],
        now: datetime | None = None,
    ) -> WorkStatus:
        """
        Classify Copilot's work state from comments and timeline events.

        Args:
            comments: Pull request comments in any order
            events: Timeline events in any order
            now: Reference time, defaults to the current UTC time

        Returns:
            Work status
        """
        now = ensure_utc(now) if now else datetime.now(UTC)

        state = WorkState.UNKNOWN
        last_event_time: datetime | None = None
        last_event_source: str | None = None
        has_recent_activity = False

        copilot_comments = [
            c for c in comments if self.identity.matches_actor(c.author)
        ]
        if copilot_comments:
            latest = max(copilot_comments, key=lambda c: c.created_at)
            state = classify_comment_body(latest.body)
            last_event_time = latest.created_at
            last_event_source = "Comment"
            has_recent_activity = now - latest.created_at < RECENT_ACTIVITY_WINDOW

        for event in events:
            if now - event.created_at > EVENT_LOOKBACK:
                continue
            if not self.identity.matches_actor(event.actor):
                continue
            if last_event_time is None or event.created_at > last_event_time:
                last_event_time = event.created_at
                last_event_source = f"Timeline event: {event.kind}"
                has_recent_activity = now - event.created_at < RECENT_ACTIVITY_WINDOW

        return WorkStatus(
            state=state,
            last_event_time=last_event_time,
            last_event_source=last_event_source,
            has_recent_activity=has_recent_activity,
        )

    async def detect(self, source: WorkActivitySource, pr_number: int) -> WorkStatus:
        """
        Fetch activity for a pull request and classify it.

        Never raises: any failure to fetch or classify yields an UNKNOWN status.
        """
        try:
            comments = await source.get_pull_request_comments(pr_number)
            events = await source.get_pull_request_timeline(pr_number)
            status = self.classify(comments, events)
        except Exception as e:
            logger.warning(
                "Failed to detect Copilot work status",
                pr_number=pr_number,
                error=str(e),
            )
            return WorkStatus.unknown()

        logger.debug(
            "Detected Copilot work status",
            pr_number=pr_number,
            state=status.state.name,
            last_event_source=status.last_event_source,
            has_recent_activity=status.has_recent_activity,
        )
        return status
