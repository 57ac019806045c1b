"""
Copilot PR Nudger

Polls a GitHub repository for draft pull requests the Copilot coding agent is
working on and nudges them forward with comments.
"""

__version__ = "0.1.0"

from .config import Settings
from .exceptions import NudgerError
from .github_client import GitHubClient
from .polling import AgentConcurrencyTracker, AutomationOrchestrator

__all__ = [
    "Settings",
    "GitHubClient",
    "AgentConcurrencyTracker",
    "AutomationOrchestrator",
    "NudgerError",
]
