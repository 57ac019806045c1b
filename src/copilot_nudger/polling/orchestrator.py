"""
Polling orchestrator for the Copilot PR Nudger.

This module runs one scan of the repository: it finds draft pull requests
Copilot is working on, reconciles the agent tracker with what Copilot last
reported, and posts at most one nudge per pull request while respecting the
concurrency bound.
"""

from datetime import timedelta

import structlog

from ..config import Settings
from ..confirmation import ActionContext, Confirmer, ConsoleConfirmer
from ..exceptions import RateLimitError
from ..github_client import GitHubClient
from ..models import (
    CommentRecord,
    IssueInfo,
    PullRequestInfo,
    WorkState,
    WorkStatus,
)
from .agent_tracker import AgentConcurrencyTracker
from .work_status import WorkStatusClassifier

logger = structlog.get_logger(__name__)

CONTINUE_COMMENT = "@copilot please continue"
REVIEW_REQUEST_MARKER = (
    "Please review the code in this PR against the original specification"
)


def review_request_comment(issue_number: int) -> str:
    return (
        f"@copilot {REVIEW_REQUEST_MARKER} in #{issue_number}, "
        "and verify your fix completely satisfies this issue."
    )


class PlannedAction:
    """A comment the orchestrator intends to post."""

    def __init__(self, description: str, comment: str):
        self.description = description
        self.comment = comment


class CycleResult:
    """Outcome of one polling cycle."""

    def __init__(self) -> None:
        self.skipped = False
        self.backoff = timedelta(0)
        self.candidates: list[int] = []
        self.reconciled: dict[int, WorkState] = {}
        self.posted: list[int] = []
        self.declined: list[int] = []
        self.failed: list[int] = []
        self.stopped_at_capacity = False


class AutomationOrchestrator:
    """
    Drives polling cycles over Copilot draft pull requests.

    Candidates are processed in the order GitHub returns them. Once the
    concurrency bound is reached the remaining candidates wait for the next
    cycle.
    """

    def __init__(
        self,
        github_client: GitHubClient,
        tracker: AgentConcurrencyTracker,
        settings: Settings,
        classifier: WorkStatusClassifier | None = None,
        confirmer: Confirmer | None = None,
    ):
        """
        Initialize the orchestrator.

        Args:
            github_client: GitHub API client
            tracker: Agent concurrency tracker
            settings: Application settings
            classifier: Work status classifier, built from settings if omitted
            confirmer: Approves comments in interactive mode
        """
        self.github_client = github_client
        self.tracker = tracker
        self.settings = settings
        self.identity = settings.identity
        self.classifier = classifier or WorkStatusClassifier(self.identity)
        self.confirmer = confirmer or ConsoleConfirmer()

    async def process_pull_requests(self, interactive: bool = False) -> CycleResult:
        """
        Run one polling cycle.

        Args:
            interactive: Ask the confirmer before posting each comment

        Returns:
            Summary of what the cycle did
        """
        result = CycleResult()

        backoff = self.tracker.get_backoff_delay()
        if backoff > timedelta(0):
            logger.info(
                "Agent backoff in effect, skipping cycle",
                delay_minutes=backoff.total_seconds() / 60,
            )
            result.skipped = True
            result.backoff = backoff
            return result

        candidates = await self.get_candidate_pull_requests()
        result.candidates = [pr.number for pr in candidates]
        logger.info(
            "Found draft pull requests assigned to Copilot",
            count=len(candidates),
            active_agents=self.tracker.get_active_count(),
        )

        statuses = await self.update_agent_states(candidates, result)

        for pr in candidates:
            if not self.tracker.can_start_new_agent():
                logger.info(
                    "Maximum concurrent agents reached, deferring remaining PRs",
                    max_concurrent_agents=self.settings.max_concurrent_agents,
                    active_agents=self.tracker.get_active_count(),
                )
                result.stopped_at_capacity = True
                break

            await self.process_single_pull_request(
                pr, statuses.get(pr.number, WorkStatus.unknown()), interactive, result
            )

        return result

    async def get_candidate_pull_requests(self) -> list[PullRequestInfo]:
        """Get open draft pull requests authored by or assigned to Copilot."""
        pull_requests = await self.github_client.get_draft_pull_requests()
        return [pr for pr in pull_requests if pr.draft and self.is_copilot_assigned(pr)]

    def is_copilot_assigned(self, pr: PullRequestInfo) -> bool:
        """Check whether Copilot is the author or one of the assignees."""
        if any(self.identity.matches_actor(assignee) for assignee in pr.assignees):
            return True
        return self.identity.matches_actor(pr.author)

    async def update_agent_states(
        self, candidates: list[PullRequestInfo], result: CycleResult | None = None
    ) -> dict[int, WorkStatus]:
        """
        Classify every candidate and close finished agent sessions.

        Returns:
            Work status per pull request number
        """
        statuses: dict[int, WorkStatus] = {}

        for pr in candidates:
            status = await self.classifier.detect(self.github_client, pr.number)
            statuses[pr.number] = status

            try:
                if status.state == WorkState.FINISHED:
                    self.tracker.track_finished(pr.number, success=True)
                elif status.state == WorkState.FINISHED_WITH_FAILURE:
                    self.tracker.track_finished(pr.number, success=False)
                else:
                    continue
            except Exception as e:
                logger.warning(
                    "Failed to update agent state", pr_number=pr.number, error=str(e)
                )
                continue

            if result is not None:
                result.reconciled[pr.number] = status.state

        return statuses

    async def process_single_pull_request(
        self,
        pr: PullRequestInfo,
        status: WorkStatus,
        interactive: bool = False,
        result: CycleResult | None = None,
    ) -> bool:
        """
        Decide and post the nudge for one pull request.

        Returns:
            True if a comment was posted
        """
        try:
            logger.info("Processing PR", pr_number=pr.number, title=pr.title)

            linked_issue = await self.github_client.get_linked_issue(pr)
            if linked_issue is None:
                logger.warning("No linked issue found", pr_number=pr.number)
                return False

            comments: list[CommentRecord] = []
            if status.state == WorkState.FINISHED:
                comments = await self.github_client.get_pull_request_comments(
                    pr.number
                )

            action = self.decide_action(pr, linked_issue, status, comments)
            if action is None:
                return False

            if interactive:
                context = ActionContext(
                    pull_request=pr,
                    linked_issue=linked_issue,
                    action=action.description,
                    comment=action.comment,
                )
                if not self.confirmer.confirm(context):
                    logger.info("User declined to post comment", pr_number=pr.number)
                    if result is not None:
                        result.declined.append(pr.number)
                    return False

            await self.github_client.post_comment(pr.number, action.comment)
            logger.info(
                "Posted comment to PR", pr_number=pr.number, action=action.description
            )
            if result is not None:
                result.posted.append(pr.number)

            self.tracker.track_started(pr.number)
            return True

        except RateLimitError:
            raise
        except Exception as e:
            logger.error("Error processing PR", pr_number=pr.number, error=str(e))
            if result is not None:
                result.failed.append(pr.number)
            return False

    def decide_action(
        self,
        pr: PullRequestInfo,
        linked_issue: IssueInfo,
        status: WorkStatus,
        comments: list[CommentRecord],
    ) -> PlannedAction | None:
        """
        Pick the comment to post for a pull request's work status.

        Args:
            pr: Pull request
            linked_issue: Issue the pull request fixes
            status: Copilot work status
            comments: Pull request comments, used to count review requests

        Returns:
            The planned action, or None when nothing should be posted
        """
        if status.state == WorkState.FINISHED_WITH_FAILURE:
            return PlannedAction(
                "Request Copilot to continue after failure", CONTINUE_COMMENT
            )

        if status.state == WorkState.FINISHED:
            review_request_count = sum(
                1 for c in comments if REVIEW_REQUEST_MARKER in c.body
            )
            max_retries = self.settings.max_retries
            if review_request_count >= max_retries:
                logger.info(
                    "Review already requested the maximum number of times",
                    pr_number=pr.number,
                    max_retries=max_retries,
                )
                return None

            return PlannedAction(
                f"Request Copilot to review against issue #{linked_issue.number} "
                f"(attempt {review_request_count + 1}/{max_retries})",
                review_request_comment(linked_issue.number),
            )

        logger.info(
            "No actionable Copilot status",
            pr_number=pr.number,
            state=status.state.name,
        )
        return None
