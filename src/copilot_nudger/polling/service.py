"""
Long-running polling service for the Copilot PR Nudger.

This module repeats polling cycles on a fixed interval, waits out the agent
backoff, and retries failed scans with an exponential delay.
"""

import asyncio
from datetime import datetime, timedelta

import structlog

from ..exceptions import RateLimitError
from .agent_tracker import AgentConcurrencyTracker
from .orchestrator import AutomationOrchestrator
from .retry import RetryBackoff

logger = structlog.get_logger(__name__)


class PollingService:
    """
    Runs polling cycles until stopped.

    Stopping is cooperative: a cycle already in progress runs to completion,
    any wait in between cycles ends immediately, and no new cycle starts.
    """

    def __init__(
        self,
        orchestrator: AutomationOrchestrator,
        tracker: AgentConcurrencyTracker,
        retry_backoff: RetryBackoff,
        scan_interval: timedelta,
    ):
        """
        Initialize the polling service.

        Args:
            orchestrator: Runs individual polling cycles
            tracker: Agent tracker consulted for backoff between cycles
            retry_backoff: Delay policy for failed cycles
            scan_interval: Delay between successful cycles
        """
        self.orchestrator = orchestrator
        self.tracker = tracker
        self.retry_backoff = retry_backoff
        self.scan_interval = scan_interval

        self.is_running_flag = False
        self.cycles_completed = 0
        self.last_cycle_time: datetime | None = None
        self._stop_event = asyncio.Event()

    def is_running(self) -> bool:
        """Check if polling is currently active."""
        return self.is_running_flag

    async def run(self) -> None:
        """Run polling cycles until ``stop`` is called."""
        if self.is_running_flag:
            logger.warning("Polling already running")
            return

        self.is_running_flag = True
        self._stop_event.clear()
        logger.info(
            "Copilot automation service started",
            scan_interval_minutes=self.scan_interval.total_seconds() / 60,
        )

        try:
            await self._polling_loop()
        except asyncio.CancelledError:
            logger.info("Polling cancelled")
            raise
        finally:
            self.is_running_flag = False
            logger.info("Copilot automation service stopped")

    def stop(self) -> None:
        """Stop accepting new cycles and end any pending wait."""
        if not self._stop_event.is_set():
            logger.info("Stopping polling service")
        self._stop_event.set()

    async def _polling_loop(self) -> None:
        """Main polling loop."""
        while not self._stop_event.is_set():
            try:
                backoff = self.tracker.get_backoff_delay()
                if backoff > timedelta(0):
                    logger.info(
                        "Copilot agent backoff in effect, waiting before next scan",
                        delay_minutes=backoff.total_seconds() / 60,
                    )
                    await self._wait(backoff)
                    continue

                logger.info(
                    "Starting pull request scan",
                    active_agents=self.tracker.get_active_count(),
                )
                await self.orchestrator.process_pull_requests(interactive=False)
                self.retry_backoff.reset()
                self.cycles_completed += 1
                self.last_cycle_time = datetime.now()

                logger.info(
                    "Pull request scan completed",
                    next_scan_in_minutes=self.scan_interval.total_seconds() / 60,
                )
                await self._wait(self.scan_interval)

            except asyncio.CancelledError:
                raise
            except RateLimitError as e:
                delay = self.retry_backoff.next_delay()
                logger.warning(
                    "Rate limit exceeded, retrying later",
                    delay_minutes=delay.total_seconds() / 60,
                    reset_time=e.reset_time.isoformat() if e.reset_time else None,
                )
                await self._wait(delay)
            except Exception as e:
                delay = self.retry_backoff.next_delay()
                logger.error(
                    "Error during pull request scan, retrying later",
                    delay_minutes=delay.total_seconds() / 60,
                    error=str(e),
                    exc_info=True,
                )
                await self._wait(delay)

    async def _wait(self, delay: timedelta) -> None:
        """Sleep for ``delay`` unless the service is stopped first."""
        try:
            await asyncio.wait_for(
                self._stop_event.wait(), timeout=delay.total_seconds()
            )
        except asyncio.TimeoutError:
            pass
