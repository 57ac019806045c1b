"""
Interactive confirmation of comments before they are posted.
"""

from collections.abc import Callable
from typing import Protocol

from pydantic import BaseModel

from .models import IssueInfo, PullRequestInfo


class ActionContext(BaseModel):
    """What the operator is asked to approve."""

    pull_request: PullRequestInfo
    linked_issue: IssueInfo
    action: str
    comment: str


class Confirmer(Protocol):
    """Decides whether a proposed comment may be posted."""

    def confirm(self, context: ActionContext) -> bool: ...


class ConsoleConfirmer:
    """Asks on the terminal, repeating the question until it gets y or n."""

    def __init__(
        self,
        input_func: Callable[[str], str] = input,
        output_func: Callable[[str], None] = print,
    ):
        self._input = input_func
        self._output = output_func

    def confirm(self, context: ActionContext) -> bool:
        pr = context.pull_request
        issue = context.linked_issue

        self._output("")
        self._output("=== Pull Request Review ===")
        self._output(f"PR #{pr.number}: {pr.title}")
        self._output(f"URL: {pr.url}")
        self._output(f"Linked Issue #{issue.number}: {issue.title}")
        self._output(f"Action: {context.action}")
        self._output(f"Comment to post: {context.comment}")
        self._output("")

        while True:
            response = self._input("Do you want to post this comment? (y/n): ")
            answer = response.strip().lower()
            if answer in ("y", "yes"):
                return True
            if answer in ("n", "no"):
                return False
            self._output("Please enter 'y' for yes or 'n' for no.")
