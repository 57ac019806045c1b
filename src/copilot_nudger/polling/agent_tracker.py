"""
Copilot agent concurrency and backoff tracking.

Every comment that asks Copilot to do more work starts an agent session.
This module keeps the in-flight sessions, bounds how many may run at once,
and derives a global backoff delay from the run of recent outcomes.

State is in-memory only and resets when the process restarts.
"""

import threading
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import Any

import structlog
from pydantic import BaseModel

from ..config import TrackerConfig

logger = structlog.get_logger(__name__)

TimerFactory = Callable[[float, Callable[[], None]], Any]


def _default_timer(delay: float, callback: Callable[[], None]) -> threading.Timer:
    timer = threading.Timer(delay, callback)
    timer.daemon = True
    timer.start()
    return timer


class TrackedAgent:
    """An in-flight Copilot agent session for one pull request."""

    def __init__(self, pr_number: int, started_at: datetime):
        self.pr_number = pr_number
        self.started_at = started_at
        self.validated = False


class TrackerSnapshot(BaseModel):
    """Point-in-time copy of the tracker state."""

    active_agents: list[int]
    validated_agents: list[int]
    max_concurrent_agents: int
    consecutive_failures: int
    consecutive_successes: int
    last_failure_time: datetime | None
    backoff_seconds: float


class AgentConcurrencyTracker:
    """
    Tracks Copilot agent sessions across pull requests.

    All reads and writes of the active sessions and the outcome counters
    happen under one lock, including the deferred validation callbacks that
    fire on timer threads. The concurrency bound is advisory: callers check
    ``can_start_new_agent`` before posting, and ``track_started`` itself never
    refuses an insertion.
    """

    def __init__(
        self,
        config: TrackerConfig,
        clock: Callable[[], datetime] | None = None,
        timer_factory: TimerFactory | None = None,
    ):
        """
        Initialize the tracker.

        Args:
            config: Concurrency bound and backoff durations
            clock: Source of the current time, UTC by default
            timer_factory: Schedules ``callback`` after ``delay`` seconds
        """
        self.config = config
        self._clock = clock or (lambda: datetime.now(UTC))
        self._timer_factory = timer_factory or _default_timer

        self._lock = threading.Lock()
        self._active: dict[int, TrackedAgent] = {}
        self._consecutive_failures = 0
        self._consecutive_successes = 0
        self._last_failure_time: datetime | None = None
        self._timers: list[Any] = []

    @property
    def consecutive_failures(self) -> int:
        with self._lock:
            return self._consecutive_failures

    @property
    def consecutive_successes(self) -> int:
        with self._lock:
            return self._consecutive_successes

    @property
    def last_failure_time(self) -> datetime | None:
        with self._lock:
            return self._last_failure_time

    def can_start_new_agent(self) -> bool:
        """Check whether another agent session fits under the concurrency bound."""
        with self._lock:
            active_count = len(self._active)
            can_start = active_count < self.config.max_concurrent_agents

        logger.debug(
            "Checking if new agent can start",
            active_agents=active_count,
            max_concurrent_agents=self.config.max_concurrent_agents,
            can_start=can_start,
        )
        return can_start

    def track_started(self, pr_number: int) -> None:
        """
        Record that an agent session was started for a pull request.

        Re-registering a pull request that is already tracked replaces its
        entry. A validation check is scheduled once per call.
        """
        with self._lock:
            self._active[pr_number] = TrackedAgent(pr_number, self._clock())
            active_count = len(self._active)

        logger.info(
            "Started tracking agent",
            pr_number=pr_number,
            active_agents=active_count,
        )

        delay = self.config.agent_start_validation_delay.total_seconds()
        timer = self._timer_factory(delay, lambda: self._validate_agent(pr_number))
        with self._lock:
            self._timers = [
                t for t in self._timers if getattr(t, "is_alive", lambda: True)()
            ]
            self._timers.append(timer)

    def track_finished(self, pr_number: int, success: bool) -> None:
        """
        Record that the agent session for a pull request ended.

        Finishing a pull request that is not tracked is logged and ignored.
        """
        with self._lock:
            agent = self._active.pop(pr_number, None)
            if agent is not None:
                if success:
                    self._consecutive_successes += 1
                    self._consecutive_failures = 0
                else:
                    self._consecutive_failures += 1
                    self._consecutive_successes = 0
                    self._last_failure_time = self._clock()
            active_count = len(self._active)
            failures = self._consecutive_failures
            successes = self._consecutive_successes

        if agent is None:
            logger.warning(
                "Attempted to finish tracking for untracked pull request",
                pr_number=pr_number,
            )
            return

        logger.info(
            "Agent finished",
            pr_number=pr_number,
            success=success,
            active_agents=active_count,
        )
        if success:
            logger.debug("Consecutive agent successes", count=successes)
        else:
            logger.warning(
                "Agent failed",
                pr_number=pr_number,
                consecutive_failures=failures,
            )

    def get_backoff_delay(self) -> timedelta:
        """
        Get the delay to wait before the next polling cycle.

        Each consecutive failure adds one backoff increment. A single success
        after failures or a clean start imposes a short reset delay; a second
        consecutive success clears it.
        """
        with self._lock:
            delay = self._backoff_delay_locked()
            failures = self._consecutive_failures

        if failures > 0:
            logger.info(
                "Calculated backoff delay",
                delay_minutes=delay.total_seconds() / 60,
                consecutive_failures=failures,
            )
        return delay

    def _backoff_delay_locked(self) -> timedelta:
        if self._consecutive_failures > 0:
            return self._consecutive_failures * self.config.backoff_increment

        if self._consecutive_successes == 1:
            return self.config.success_reset_delay

        return timedelta(0)

    def get_active_count(self) -> int:
        """Get the number of tracked agent sessions."""
        with self._lock:
            return len(self._active)

    def is_validated(self, pr_number: int) -> bool:
        """Check whether a tracked session outlived its validation delay."""
        with self._lock:
            return self._is_validated_locked(pr_number)

    def _is_validated_locked(self, pr_number: int) -> bool:
        agent = self._active.get(pr_number)
        return agent is not None and agent.validated

    def snapshot(self) -> TrackerSnapshot:
        """Get a consistent copy of the tracker state."""
        with self._lock:
            return TrackerSnapshot(
                active_agents=sorted(self._active),
                validated_agents=sorted(
                    n for n in self._active if self._is_validated_locked(n)
                ),
                max_concurrent_agents=self.config.max_concurrent_agents,
                consecutive_failures=self._consecutive_failures,
                consecutive_successes=self._consecutive_successes,
                last_failure_time=self._last_failure_time,
                backoff_seconds=self._backoff_delay_locked().total_seconds(),
            )

    def shutdown(self) -> None:
        """Cancel pending validation timers."""
        with self._lock:
            timers, self._timers = self._timers, []
        for timer in timers:
            cancel = getattr(timer, "cancel", None)
            if cancel is not None:
                cancel()

    def _validate_agent(self, pr_number: int) -> None:
        with self._lock:
            agent = self._active.get(pr_number)
            if agent is not None:
                agent.validated = True

        if agent is not None:
            logger.debug(
                "Agent validated",
                pr_number=pr_number,
                after_minutes=self.config.agent_start_validation_delay.total_seconds()
                / 60,
            )
