"""
Copilot identity matching and PR body helpers.

The coding agent can act under different display logins, so a user is
treated as Copilot when either its ``@login`` handle is configured or its
numeric account id matches.
"""

import re
from collections.abc import Iterable
from typing import Any

LINKED_ISSUE_PATTERN = re.compile(r"(?:Fixes|Closes|Resolves)\s+#(\d+)", re.IGNORECASE)


class CopilotIdentity:
    """Predicate over GitHub users identifying the Copilot agent."""

    def __init__(self, usernames: Iterable[str], user_id: int):
        self.usernames = frozenset(usernames)
        self.user_id = user_id

    def matches(self, login: str | None, user_id: int | None) -> bool:
        """Check whether a login/id pair belongs to Copilot."""
        if login is not None and f"@{login}" in self.usernames:
            return True
        return user_id is not None and user_id == self.user_id

    def matches_actor(self, actor: Any) -> bool:
        """Check an object exposing ``login`` and ``id`` (``None`` never matches)."""
        if actor is None:
            return False
        return self.matches(actor.login, actor.id)

    def __repr__(self) -> str:
        return (
            f"CopilotIdentity(usernames={sorted(self.usernames)!r}, "
            f"user_id={self.user_id!r})"
        )


def extract_issue_number(text: str | None) -> int | None:
    """
    Extract the linked issue number from a PR body.

    Args:
        text: PR body text

    Returns:
        Issue number referenced by "Fixes #N", "Closes #N" or "Resolves #N"
    """
    if not text:
        return None

    match = LINKED_ISSUE_PATTERN.search(text)
    if match:
        return int(match.group(1))
    return None
