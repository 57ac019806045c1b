"""
Command line entry point for the Copilot PR Nudger.

``service`` scans the repository periodically and posts comments without
asking. ``interactive`` runs a single scan and asks before every comment.
"""

import argparse
import asyncio
import logging
import signal
import sys
from datetime import timedelta
from typing import Any

import structlog
import uvicorn

from .api import create_app
from .config import Settings, load_settings
from .exceptions import ConfigurationError
from .github_client import GitHubClient
from .polling.agent_tracker import AgentConcurrencyTracker
from .polling.orchestrator import AutomationOrchestrator
from .polling.retry import RetryBackoff
from .polling.service import PollingService

logger = structlog.get_logger(__name__)


def setup_logging(settings: Settings) -> None:
    """Configure structured logging."""
    logging.basicConfig(
        level=getattr(logging, settings.log_level), format="%(message)s"
    )

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            (
                structlog.processors.JSONRenderer()
                if settings.log_format == "json"
                else structlog.dev.ConsoleRenderer()
            ),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def build_parser() -> argparse.ArgumentParser:
    """Build the command line parser."""
    parser = argparse.ArgumentParser(
        prog="copilot-nudger", description="GitHub Copilot pull request automation"
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--config", help="Path to a JSON configuration file")
    common.add_argument("--token", help="GitHub personal access token")
    common.add_argument("--owner", help="Repository owner")
    common.add_argument("--repo", help="Repository name")

    service = subparsers.add_parser(
        "service", parents=[common], help="Run in service mode (periodic scanning)"
    )
    service.add_argument("--interval", type=int, help="Scan interval in minutes")

    subparsers.add_parser(
        "interactive",
        parents=[common],
        help="Run in interactive mode (manual approval)",
    )
    return parser


def settings_from_args(args: argparse.Namespace) -> Settings:
    """Load settings with command line overrides applied."""
    overrides: dict[str, Any] = {
        "github_personal_access_token": args.token,
        "github_owner": args.owner,
        "github_repository": args.repo,
        "scan_interval_minutes": getattr(args, "interval", None),
    }
    settings = load_settings(args.config, overrides)
    settings.validate_credentials()
    return settings


def setup_signal_handlers(service: PollingService) -> None:
    """Set up signal handlers for graceful shutdown."""
    loop = asyncio.get_running_loop()

    def signal_handler(signum: int, frame) -> None:  # type: ignore
        logger.info("Received signal, initiating shutdown", signal=signum)
        loop.call_soon_threadsafe(service.stop)

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)


async def run_service(settings: Settings) -> None:
    """Run the polling service, and the status server when enabled."""
    github_client = GitHubClient(settings)
    tracker = AgentConcurrencyTracker(settings.tracker_config)
    orchestrator = AutomationOrchestrator(github_client, tracker, settings)
    service = PollingService(
        orchestrator,
        tracker,
        RetryBackoff(settings.retry_config),
        timedelta(minutes=settings.scan_interval_minutes),
    )
    setup_signal_handlers(service)

    logger.info(
        "Configuration loaded",
        repository=settings.repository_full_name,
        max_concurrent_agents=settings.max_concurrent_agents,
        app_mode=settings.is_app_mode,
    )

    server: uvicorn.Server | None = None
    server_task: asyncio.Task[None] | None = None
    server_config = settings.server_config
    if server_config.enabled:
        app = create_app(tracker, service, github_client)
        server = uvicorn.Server(
            uvicorn.Config(
                app,
                host=server_config.host,
                port=server_config.port,
                log_config=None,  # We handle logging ourselves
            )
        )
        server_task = asyncio.create_task(server.serve())
        # Stop polling once the status server exits.
        server_task.add_done_callback(lambda _task: service.stop())
        logger.info(
            "Status server starting", host=server_config.host, port=server_config.port
        )

    try:
        await service.run()
    finally:
        if server is not None and server_task is not None:
            server.should_exit = True
            await server_task
        tracker.shutdown()


async def run_interactive(settings: Settings) -> None:
    """Run a single scan, confirming each comment on the terminal."""
    github_client = GitHubClient(settings)
    tracker = AgentConcurrencyTracker(settings.tracker_config)
    orchestrator = AutomationOrchestrator(github_client, tracker, settings)

    logger.info("Starting interactive mode")
    print("GitHub Copilot Automation - Interactive Mode")
    print(
        "This will scan for draft PRs assigned to Copilot and ask for your "
        "approval before posting comments."
    )
    print()

    try:
        result = await orchestrator.process_pull_requests(interactive=True)
    finally:
        tracker.shutdown()

    if result.skipped:
        print(
            "Agent backoff in effect for "
            f"{result.backoff.total_seconds() / 60:.0f} more minutes."
        )
    print(
        f"Interactive scan completed. Posted {len(result.posted)} comment(s), "
        f"declined {len(result.declined)}."
    )


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)

    try:
        settings = settings_from_args(args)
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2

    setup_logging(settings)

    try:
        if args.command == "service":
            asyncio.run(run_service(settings))
        else:
            asyncio.run(run_interactive(settings))
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
    except Exception as e:
        logger.error("Application failed", error=str(e), exc_info=True)
        if args.command == "interactive":
            print(f"Error: {e}")
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
