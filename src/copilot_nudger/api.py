"""
Status API for the Copilot PR Nudger.

A small FastAPI application served next to the polling service so the
in-memory agent tracker can be inspected while the process runs.
"""

from typing import Any

from fastapi import FastAPI
from fastapi.responses import JSONResponse

from . import __version__
from .github_client import GitHubClient
from .polling.agent_tracker import AgentConcurrencyTracker, TrackerSnapshot
from .polling.service import PollingService


def create_app(
    tracker: AgentConcurrencyTracker,
    service: PollingService | None = None,
    github_client: GitHubClient | None = None,
) -> FastAPI:
    """
    Create the status application.

    Args:
        tracker: Agent tracker to report on
        service: Polling service, reported as running or stopped
        github_client: GitHub client used for rate limit details

    Returns:
        FastAPI application
    """
    app = FastAPI(
        title="Copilot PR Nudger",
        description="Status of the Copilot pull request automation",
        version=__version__,
    )

    @app.get("/")
    async def root() -> dict[str, str]:
        """Root endpoint."""
        return {"message": "Copilot PR Nudger", "version": __version__}

    @app.get("/health")
    async def health_check() -> JSONResponse:
        """Health check endpoint."""
        health_data: dict[str, Any] = {"status": "healthy", "components": {}}

        if service is not None:
            running = service.is_running()
            health_data["components"]["polling_service"] = (
                "running" if running else "stopped"
            )
            if not running:
                health_data["status"] = "unhealthy"
            health_data["cycles_completed"] = service.cycles_completed

        if github_client is not None:
            rate_limit = await github_client.get_rate_limit_info()
            if "error" in rate_limit:
                health_data["components"]["github_client"] = (
                    f"error: {rate_limit['error']}"
                )
                health_data["status"] = "unhealthy"
            else:
                health_data["components"]["github_client"] = "healthy"
                health_data["rate_limit"] = rate_limit

        status_code = 200 if health_data["status"] == "healthy" else 503
        return JSONResponse(health_data, status_code=status_code)

    @app.get("/status", response_model=TrackerSnapshot)
    async def status() -> TrackerSnapshot:
        """Current agent tracker state."""
        return tracker.snapshot()

    return app
