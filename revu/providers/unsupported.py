"""Stand-in provider for backend types that have no adapter."""

from revu.errors import GitHubError
from revu.models import (
    AddDiffCommentParams,
    AddPendingReviewCommentParams,
    CheckRunsResponse,
    Comment,
    Commit,
    FileChange,
    IssueComment,
    ListPRsParams,
    MergeMethod,
    PRListResult,
    PullRequest,
    RepoLabel,
    Review,
    ReviewEvent,
    ReviewThread,
    StateFilter,
    User,
)
from revu.providers.base import Provider, ProviderCapabilities


class UnsupportedProvider(Provider):
    """Every operation fails with status 501 and names the backend type."""

    capabilities = ProviderCapabilities()

    def __init__(self, type_name: str) -> None:
        self.type = type_name

    def _unsupported(self) -> GitHubError:
        return GitHubError(f"Provider '{self.type}' is not yet supported", status=501)

    async def list_prs(self, params: ListPRsParams) -> PRListResult:
        raise self._unsupported()

    async def get_pr(self, number: int) -> PullRequest:
        raise self._unsupported()

    async def get_pr_files(self, number: int) -> list[FileChange]:
        raise self._unsupported()

    async def get_pr_comments(self, number: int) -> list[Comment]:
        raise self._unsupported()

    async def get_issue_comments(self, number: int) -> list[IssueComment]:
        raise self._unsupported()

    async def get_pr_reviews(self, number: int) -> list[Review]:
        raise self._unsupported()

    async def get_pr_commits(self, number: int) -> list[Commit]:
        raise self._unsupported()

    async def get_pr_checks(self, ref: str) -> CheckRunsResponse:
        raise self._unsupported()

    async def get_review_threads(self, pr_number: int) -> list[ReviewThread]:
        raise self._unsupported()

    async def get_commit_diff(self, sha: str) -> list[FileChange]:
        raise self._unsupported()

    async def get_my_prs(self, state: StateFilter | None = None) -> list[PullRequest]:
        raise self._unsupported()

    async def get_review_requests(self, state: StateFilter | None = None) -> list[PullRequest]:
        raise self._unsupported()

    async def get_involved_prs(self, state: StateFilter | None = None) -> list[PullRequest]:
        raise self._unsupported()

    async def submit_review(self, pr_number: int, body: str, event: ReviewEvent) -> None:
        raise self._unsupported()

    async def create_pending_review(self, pr_number: int) -> int:
        raise self._unsupported()

    async def add_pending_review_comment(self, params: AddPendingReviewCommentParams) -> None:
        raise self._unsupported()

    async def submit_pending_review(self, pr_number: int, review_id: int, body: str, event: ReviewEvent) -> None:
        raise self._unsupported()

    async def discard_pending_review(self, pr_number: int, review_id: int) -> None:
        raise self._unsupported()

    async def add_comment(self, issue_number: int, body: str) -> None:
        raise self._unsupported()

    async def add_diff_comment(self, params: AddDiffCommentParams) -> None:
        raise self._unsupported()

    async def reply_to_comment(self, pr_number: int, comment_id: int, body: str) -> None:
        raise self._unsupported()

    async def edit_issue_comment(self, comment_id: int, body: str) -> None:
        raise self._unsupported()

    async def edit_review_comment(self, comment_id: int, body: str) -> None:
        raise self._unsupported()

    async def delete_review_comment(self, comment_id: int) -> None:
        raise self._unsupported()

    async def merge_pr(
        self,
        pr_number: int,
        method: MergeMethod,
        commit_title: str | None = None,
        commit_message: str | None = None,
    ) -> None:
        raise self._unsupported()

    async def close_pr(self, pr_number: int) -> None:
        raise self._unsupported()

    async def reopen_pr(self, pr_number: int) -> None:
        raise self._unsupported()

    async def update_pr_title(self, pr_number: int, title: str) -> None:
        raise self._unsupported()

    async def update_pr_body(self, pr_number: int, body: str) -> None:
        raise self._unsupported()

    async def request_re_review(self, pr_number: int, reviewers: list[str]) -> None:
        raise self._unsupported()

    async def resolve_thread(self, thread_id: str) -> None:
        raise self._unsupported()

    async def unresolve_thread(self, thread_id: str) -> None:
        raise self._unsupported()

    async def convert_to_draft(self, pr_node_id: str) -> None:
        raise self._unsupported()

    async def mark_ready_for_review(self, pr_node_id: str) -> None:
        raise self._unsupported()

    async def get_labels(self) -> list[RepoLabel]:
        raise self._unsupported()

    async def set_labels(self, pr_number: int, labels: list[str]) -> None:
        raise self._unsupported()

    async def get_current_user(self) -> User:
        raise self._unsupported()
