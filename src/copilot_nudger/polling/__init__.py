"""
Polling system for the Copilot PR Nudger.

This package contains the work status classifier, the agent concurrency
tracker, and the orchestrator and service that drive polling cycles.
"""

from .agent_tracker import AgentConcurrencyTracker
from .orchestrator import AutomationOrchestrator
from .service import PollingService
from .work_status import WorkStatusClassifier

__all__ = [
    "AgentConcurrencyTracker",
    "AutomationOrchestrator",
    "PollingService",
    "WorkStatusClassifier",
]
