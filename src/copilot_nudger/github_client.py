"""
GitHub API client for the Copilot PR Nudger.

This module provides a GitHub API client with authentication, rate limit
tracking, and error handling. It converts PyGithub objects into the plain
models consumed by the polling core.
"""

import time
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Optional, Union, cast

import httpx
import jwt
import structlog
from github import Auth, Github, GithubException, RateLimitExceededException
from github.NamedUser import NamedUser
from github.Repository import Repository

from .config import Settings
from .exceptions import AuthenticationError, GitHubAPIError, RateLimitError
from .identity import extract_issue_number
from .models import (
    Actor,
    CommentRecord,
    IssueInfo,
    PullRequestInfo,
    TimelineEvent,
)

logger = structlog.get_logger(__name__)

# Requests are refused locally once the remaining quota drops to this level
RATE_LIMIT_RESERVE = 10


def _to_actor(user: Optional[NamedUser]) -> Optional[Actor]:
    if user is None:
        return None
    return Actor(login=user.login, id=user.id)


class GitHubClient:
    """
    GitHub API client scoped to a single repository.

    This client handles PAT and GitHub App authentication, tracks the core
    rate limit, and exposes the read and write operations the polling
    orchestrator needs.
    """

    def __init__(self, settings: Settings) -> None:
        """
        Initialize the GitHub client.

        Args:
            settings: Application settings
        """
        self.settings = settings
        self._github: Optional[Github] = None
        self._repo: Optional[Repository] = None
        self._installation_id: Optional[int] = None
        self._rate_limit_reset_time: Optional[float] = None
        self._rate_limit_remaining: Optional[int] = None

    async def _get_github_instance(self) -> Github:
        """Get authenticated GitHub instance."""
        if self._github is None:
            await self._authenticate()
        if self._github is None:
            raise AuthenticationError("Failed to authenticate with GitHub")
        return self._github

    async def _authenticate(self) -> None:
        """Authenticate with GitHub using a PAT or GitHub App credentials."""
        try:
            pat = self.settings.github_personal_access_token
            if pat:
                self._github = Github(
                    auth=Auth.Token(pat), base_url=self.settings.github_api_url
                )
                logger.info("GitHub authentication successful (PAT mode)")
                return

            app_config = self.settings.github_app_config
            private_key_path = Path(app_config.private_key_path)
            if not private_key_path.exists():
                raise AuthenticationError(f"Private key not found: {private_key_path}")

            with open(private_key_path) as f:
                private_key = f.read()

            jwt_token = self._create_jwt_token(private_key)
            installation_id = await self._get_installation_id(jwt_token)

            # Installation tokens expire after an hour; AppInstallationAuth
            # exchanges a new one whenever the current token is about to expire.
            app_auth = Auth.AppAuth(self.settings.github_app_id, private_key)
            self._github = Github(
                auth=app_auth.get_installation_auth(installation_id),
                base_url=self.settings.github_api_url,
            )
            self._installation_id = installation_id

            logger.info(
                "GitHub authentication successful (GitHub App mode)",
                installation_id=installation_id,
            )

        except AuthenticationError:
            raise
        except Exception as e:
            logger.error("GitHub authentication failed", error=str(e))
            raise AuthenticationError(f"Failed to authenticate with GitHub: {e}") from e

    def _create_jwt_token(self, private_key: str) -> str:
        """Create JWT token for GitHub App authentication."""
        now = int(time.time())
        payload = {
            "iat": now - 60,
            "exp": now + 600,  # 10 minutes
            "iss": str(self.settings.github_app_id),
        }

        token = cast(
            Union[str, bytes], jwt.encode(payload, private_key, algorithm="RS256")
        )
        if isinstance(token, bytes):
            return token.decode("utf-8")
        return token

    async def _get_installation_id(self, jwt_token: str) -> int:
        """Get the installation ID for the repository owner."""
        async with httpx.AsyncClient(base_url=self.settings.github_api_url) as client:
            response = await client.get(
                "/app/installations",
                headers={
                    "Authorization": f"Bearer {jwt_token}",
                    "Accept": "application/vnd.github.v3+json",
                },
            )

            if response.status_code != 200:
                raise AuthenticationError(
                    f"Failed to get installations: {response.text}"
                )

            for installation in response.json():
                if (
                    installation.get("account", {}).get("login")
                    == self.settings.github_owner
                ):
                    installation_id = installation["id"]
                    if isinstance(installation_id, int):
                        return installation_id
                    raise AuthenticationError(
                        f"Invalid installation ID type: {type(installation_id)}"
                    )

            raise AuthenticationError(
                f"No installation found for owner: {self.settings.github_owner}"
            )

    def _check_rate_limit(self) -> None:
        """Refuse to issue requests while the core quota is exhausted."""
        if (
            self._rate_limit_remaining is not None
            and self._rate_limit_remaining <= RATE_LIMIT_RESERVE
            and self._rate_limit_reset_time
            and time.time() < self._rate_limit_reset_time
        ):
            reset_time = datetime.fromtimestamp(self._rate_limit_reset_time, UTC)
            logger.warning(
                "Rate limit nearly exhausted",
                remaining=self._rate_limit_remaining,
                reset_time=reset_time.isoformat(),
            )
            raise RateLimitError(
                "GitHub rate limit nearly exhausted", reset_time=reset_time
            )

    def _update_rate_limit_info(self) -> None:
        """Update rate limit information from the last response headers."""
        if self._github is None:
            return
        try:
            remaining, _limit = self._github.rate_limiting
            self._rate_limit_remaining = remaining
            self._rate_limit_reset_time = float(self._github.rate_limiting_resettime)
        except Exception as e:
            logger.warning("Failed to read rate limit info", error=str(e))

    def _translate_exception(
        self, action: str, e: GithubException, **context: Any
    ) -> Exception:
        """Map a PyGithub exception to the application exception hierarchy."""
        if isinstance(e, RateLimitExceededException):
            reset_header = (e.headers or {}).get("x-ratelimit-reset")
            reset_time = (
                datetime.fromtimestamp(int(reset_header), UTC) if reset_header else None
            )
            logger.warning("GitHub rate limit exceeded", action=action, **context)
            return RateLimitError(
                f"Rate limit exceeded while trying to {action}",
                reset_time=reset_time,
                context=context,
            )

        logger.error(f"Failed to {action}", error=str(e), **context)
        return GitHubAPIError(
            f"Failed to {action}: {e}", status_code=e.status, context=context
        )

    async def get_repo(self) -> Repository:
        """
        Get the configured repository.

        Returns:
            Repository object
        """
        if self._repo is not None:
            return self._repo

        self._check_rate_limit()
        full_name = self.settings.repository_full_name

        try:
            github_instance = await self._get_github_instance()
            self._repo = github_instance.get_repo(full_name)
            self._update_rate_limit_info()
            return self._repo
        except GithubException as e:
            raise self._translate_exception(
                "get repository", e, repo=full_name
            ) from e

    async def get_draft_pull_requests(self) -> list[PullRequestInfo]:
        """
        Get open draft pull requests.

        Returns:
            Draft pull requests in the order GitHub lists them
        """
        repo = await self.get_repo()
        self._check_rate_limit()

        try:
            pull_requests = [
                PullRequestInfo(
                    number=pr.number,
                    title=pr.title,
                    url=pr.html_url,
                    body=pr.body,
                    draft=bool(pr.draft),
                    author=_to_actor(pr.user),
                    assignees=[
                        actor
                        for actor in (_to_actor(user) for user in pr.assignees or [])
                        if actor is not None
                    ],
                )
                for pr in repo.get_pulls(state="open")
                if pr.draft
            ]
            self._update_rate_limit_info()
        except GithubException as e:
            raise self._translate_exception("get draft pull requests", e) from e

        logger.debug("Retrieved draft pull requests", count=len(pull_requests))
        return pull_requests

    async def get_pull_request_comments(self, pr_number: int) -> list[CommentRecord]:
        """
        Get all issue comments on a pull request.

        Args:
            pr_number: Pull request number

        Returns:
            Comments as returned by the API
        """
        repo = await self.get_repo()
        self._check_rate_limit()

        try:
            comments = [
                CommentRecord(
                    author=_to_actor(comment.user),
                    created_at=comment.created_at,
                    body=comment.body or "",
                )
                for comment in repo.get_issue(pr_number).get_comments()
            ]
            self._update_rate_limit_info()
            return comments
        except GithubException as e:
            raise self._translate_exception(
                "get comments", e, pr_number=pr_number
            ) from e

    async def get_pull_request_timeline(self, pr_number: int) -> list[TimelineEvent]:
        """
        Get issue events for a pull request.

        Args:
            pr_number: Pull request number

        Returns:
            Timeline events as returned by the API
        """
        repo = await self.get_repo()
        self._check_rate_limit()

        try:
            events = [
                TimelineEvent(
                    actor=_to_actor(event.actor),
                    created_at=event.created_at,
                    kind=event.event,
                )
                for event in repo.get_issue(pr_number).get_events()
            ]
            self._update_rate_limit_info()
            return events
        except GithubException as e:
            raise self._translate_exception(
                "get timeline", e, pr_number=pr_number
            ) from e

    async def get_linked_issue(self, pr: PullRequestInfo) -> Optional[IssueInfo]:
        """
        Get the issue a pull request links to in its body.

        Args:
            pr: Pull request

        Returns:
            Linked issue, or None when the body links none or lookup fails
        """
        issue_number = extract_issue_number(pr.body)
        if issue_number is None:
            return None

        repo = await self.get_repo()
        self._check_rate_limit()

        try:
            issue = repo.get_issue(issue_number)
            self._update_rate_limit_info()
            return IssueInfo(number=issue.number, title=issue.title, url=issue.html_url)
        except RateLimitExceededException as e:
            raise self._translate_exception(
                "get linked issue", e, pr_number=pr.number
            ) from e
        except GithubException as e:
            logger.error(
                "Failed to get linked issue",
                pr_number=pr.number,
                issue_number=issue_number,
                error=str(e),
            )
            return None

    async def post_comment(self, pr_number: int, body: str) -> None:
        """
        Post a comment on a pull request.

        Args:
            pr_number: Pull request number
            body: Comment text
        """
        repo = await self.get_repo()
        self._check_rate_limit()

        try:
            repo.get_issue(pr_number).create_comment(body)
            self._update_rate_limit_info()
        except GithubException as e:
            raise self._translate_exception(
                "post comment", e, pr_number=pr_number
            ) from e

        logger.info("Posted comment", pr_number=pr_number)

    async def get_rate_limit_info(self) -> dict[str, Any]:
        """
        Get current rate limit information.

        Returns:
            Dictionary with rate limit information
        """
        try:
            github_instance = await self._get_github_instance()
            remaining, limit = github_instance.rate_limiting
            reset = datetime.fromtimestamp(github_instance.rate_limiting_resettime, UTC)

            return {
                "core": {
                    "limit": limit,
                    "remaining": remaining,
                    "reset": reset.isoformat(),
                },
            }
        except Exception as e:
            logger.error("Failed to get rate limit info", error=str(e))
            return {"error": str(e)}
