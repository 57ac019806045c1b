"""
Tests for the polling orchestrator.

Covers the backoff gate, candidate filtering, tracker reconciliation, the
concurrency bound, and the choice of comment for each work state.
"""

from datetime import UTC, datetime, timedelta
from unittest.mock import Mock

import pytest

from copilot_nudger.exceptions import GitHubAPIError, RateLimitError
from copilot_nudger.models import (
    CommentRecord,
    IssueInfo,
    PullRequestInfo,
    WorkState,
    WorkStatus,
)
from copilot_nudger.polling.orchestrator import (
    CONTINUE_COMMENT,
    REVIEW_REQUEST_MARKER,
    AutomationOrchestrator,
    review_request_comment,
)

LINKED_ISSUE = IssueInfo(number=42, title="Add dark mode", url="https://x/issues/42")


def recent(minutes: int = 5) -> datetime:
    return datetime.now(UTC) - timedelta(minutes=minutes)


class TestAutomationOrchestrator:
    """Test AutomationOrchestrator polling cycles."""

    @pytest.fixture(autouse=True)
    def setup(self, mock_settings, mock_github_client, tracker, copilot, human):
        self.settings = mock_settings
        self.github_client = mock_github_client
        self.tracker = tracker
        self.copilot = copilot
        self.human = human
        self.comments: dict[int, list[CommentRecord]] = {}
        self.confirmer = Mock()
        self.confirmer.confirm.return_value = True

        self.github_client.get_pull_request_comments.side_effect = (
            lambda number: self.comments.get(number, [])
        )
        self.github_client.get_linked_issue.return_value = LINKED_ISSUE

        self.orchestrator = AutomationOrchestrator(
            self.github_client, self.tracker, self.settings, confirmer=self.confirmer
        )

    def add_pr(self, number: int, copilot_body: str | None = None, **kwargs) -> None:
        kwargs.setdefault("author", self.copilot)
        pr = PullRequestInfo(
            number=number,
            title=f"PR {number}",
            url=f"https://github.com/test-org/test-repo/pull/{number}",
            body="Fixes #42",
            draft=True,
            **kwargs,
        )
        self.github_client.get_draft_pull_requests.return_value = [
            *self.github_client.get_draft_pull_requests.return_value,
            pr,
        ]
        if copilot_body is not None:
            self.comments.setdefault(number, []).append(
                CommentRecord(author=self.copilot, created_at=recent(), body=copilot_body)
            )

    def posted(self) -> list[tuple[int, str]]:
        return [
            call.args for call in self.github_client.post_comment.await_args_list
        ]

    @pytest.mark.asyncio
    async def test_backoff_skips_cycle(self):
        self.tracker.track_started(1)
        self.tracker.track_finished(1, success=False)
        self.add_pr(2, "Build failed")

        result = await self.orchestrator.process_pull_requests()

        assert result.skipped is True
        assert result.backoff == timedelta(minutes=15)
        self.github_client.get_draft_pull_requests.assert_not_awaited()
        self.github_client.post_comment.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_failure_is_nudged_to_continue(self):
        self.add_pr(1, "copilot_work_finished_failure")

        result = await self.orchestrator.process_pull_requests()

        assert self.posted() == [(1, CONTINUE_COMMENT)]
        assert result.posted == [1]
        assert self.tracker.get_active_count() == 1

    @pytest.mark.asyncio
    async def test_finished_requests_review_against_issue(self):
        self.add_pr(1, "All changes completed")

        await self.orchestrator.process_pull_requests()

        assert self.posted() == [(1, review_request_comment(42))]
        assert "#42" in self.posted()[0][1]
        assert self.tracker.get_active_count() == 1

    @pytest.mark.asyncio
    async def test_review_requests_are_capped(self):
        self.add_pr(1, "done")
        self.comments[1] += [
            CommentRecord(
                author=self.human,
                created_at=recent(60 * i),
                body=f"@copilot {REVIEW_REQUEST_MARKER} in #42",
            )
            for i in range(2, 5)
        ]

        result = await self.orchestrator.process_pull_requests()

        self.github_client.post_comment.assert_not_awaited()
        assert result.posted == []
        assert self.tracker.get_active_count() == 0

    @pytest.mark.asyncio
    @pytest.mark.parametrize("body", ["Starting work on it", "Updating tests"])
    async def test_ongoing_work_gets_no_comment(self, body):
        self.add_pr(1, body)

        await self.orchestrator.process_pull_requests()

        self.github_client.post_comment.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unknown_status_gets_no_comment(self):
        self.add_pr(1)

        await self.orchestrator.process_pull_requests()

        self.github_client.post_comment.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_classification_failure_gets_no_comment(self):
        self.add_pr(1, "Build failed")
        self.github_client.get_pull_request_timeline.side_effect = GitHubAPIError(
            "boom"
        )

        result = await self.orchestrator.process_pull_requests()

        self.github_client.post_comment.assert_not_awaited()
        assert result.failed == []

    @pytest.mark.asyncio
    async def test_missing_linked_issue_skips_pr(self):
        self.add_pr(1, "Build failed")
        self.github_client.get_linked_issue.return_value = None

        await self.orchestrator.process_pull_requests()

        self.github_client.post_comment.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_non_copilot_prs_are_ignored(self):
        self.add_pr(1, "Build failed", author=self.human)
        self.add_pr(2, "Build failed", author=self.human, assignees=[self.copilot])

        result = await self.orchestrator.process_pull_requests()

        assert result.candidates == [2]
        assert self.posted() == [(2, CONTINUE_COMMENT)]

    @pytest.mark.asyncio
    async def test_stops_at_concurrency_bound(self):
        self.add_pr(1, "Build failed")
        self.add_pr(2, "Build failed")
        self.add_pr(3, "Build failed")

        result = await self.orchestrator.process_pull_requests()

        assert [number for number, _ in self.posted()] == [1, 2]
        assert result.stopped_at_capacity is True
        assert self.tracker.get_active_count() == 2

    @pytest.mark.asyncio
    async def test_reconciliation_frees_slots_before_acting(self):
        self.tracker.track_started(1)
        self.tracker.track_started(2)
        self.add_pr(1, "copilot_work_finished")
        self.add_pr(2, "Updating tests")

        result = await self.orchestrator.process_pull_requests()

        assert result.reconciled == {1: WorkState.FINISHED}
        assert self.posted() == [(1, review_request_comment(42))]
        assert self.tracker.consecutive_successes == 1

    @pytest.mark.asyncio
    async def test_reconciled_failure_is_counted(self):
        self.tracker.track_started(1)
        self.add_pr(1, "I was unable to fix the tests")

        await self.orchestrator.process_pull_requests()

        assert self.tracker.consecutive_failures == 1
        assert self.posted() == [(1, CONTINUE_COMMENT)]

    @pytest.mark.asyncio
    async def test_interactive_decline_posts_nothing(self):
        self.add_pr(1, "Build failed")
        self.confirmer.confirm.return_value = False

        result = await self.orchestrator.process_pull_requests(interactive=True)

        self.github_client.post_comment.assert_not_awaited()
        assert result.declined == [1]
        assert self.tracker.get_active_count() == 0

        context = self.confirmer.confirm.call_args.args[0]
        assert context.pull_request.number == 1
        assert context.linked_issue == LINKED_ISSUE
        assert context.comment == CONTINUE_COMMENT

    @pytest.mark.asyncio
    async def test_service_mode_never_asks(self):
        self.add_pr(1, "Build failed")

        await self.orchestrator.process_pull_requests(interactive=False)

        self.confirmer.confirm.assert_not_called()
        assert self.posted() == [(1, CONTINUE_COMMENT)]

    @pytest.mark.asyncio
    async def test_post_failure_moves_on(self):
        self.add_pr(1, "Build failed")
        self.add_pr(2, "Build failed")
        self.github_client.post_comment.side_effect = [
            GitHubAPIError("Failed to post comment"),
            None,
        ]

        result = await self.orchestrator.process_pull_requests()

        assert result.failed == [1]
        assert result.posted == [2]
        assert self.tracker.get_active_count() == 1

    @pytest.mark.asyncio
    async def test_rate_limit_propagates(self):
        self.add_pr(1, "Build failed")
        self.github_client.post_comment.side_effect = RateLimitError("slow down")

        with pytest.raises(RateLimitError):
            await self.orchestrator.process_pull_requests()

        assert self.tracker.get_active_count() == 0

    @pytest.mark.asyncio
    async def test_fetch_failure_propagates(self):
        self.github_client.get_draft_pull_requests.side_effect = GitHubAPIError(
            "Failed to get draft pull requests"
        )

        with pytest.raises(GitHubAPIError):
            await self.orchestrator.process_pull_requests()


class TestDecideAction:
    """Test action selection for each work state."""

    @pytest.fixture
    def orchestrator(self, mock_settings, mock_github_client, tracker):
        return AutomationOrchestrator(mock_github_client, tracker, mock_settings)

    @pytest.fixture
    def pr(self) -> PullRequestInfo:
        return PullRequestInfo(number=7, title="Fix bug", body="Closes #42")

    @pytest.mark.parametrize(
        "state",
        [WorkState.UNKNOWN, WorkState.STARTED, WorkState.IN_PROGRESS],
    )
    def test_non_terminal_states_yield_nothing(self, orchestrator, pr, state):
        action = orchestrator.decide_action(
            pr, LINKED_ISSUE, WorkStatus(state=state), []
        )

        assert action is None

    def test_attempt_number_in_description(self, orchestrator, pr, human):
        comments = [
            CommentRecord(
                author=human, created_at=recent(), body=review_request_comment(42)
            )
        ]

        action = orchestrator.decide_action(
            pr, LINKED_ISSUE, WorkStatus(state=WorkState.FINISHED), comments
        )

        assert action is not None
        assert action.description.endswith("(attempt 2/3)")

    def test_zero_max_retries_never_requests_review(
        self, mock_settings, mock_github_client, tracker, pr
    ):
        settings = mock_settings.model_copy(update={"max_retries": 0})
        orchestrator = AutomationOrchestrator(mock_github_client, tracker, settings)

        action = orchestrator.decide_action(
            pr, LINKED_ISSUE, WorkStatus(state=WorkState.FINISHED), []
        )

        assert action is None
