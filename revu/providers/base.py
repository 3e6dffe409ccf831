"""Abstract base class and configuration for code-review providers."""

from abc import ABC, abstractmethod
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, SecretStr, model_validator

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


class ProviderType(StrEnum):
    GITHUB = "github"
    GITLAB = "gitlab"
    BITBUCKET = "bitbucket"
    AZURE = "azure"
    GITEA = "gitea"


DEFAULT_BASE_URLS: dict[str, str] = {
    ProviderType.GITHUB: "https://api.github.com",
    ProviderType.GITLAB: "https://gitlab.com/api/v4",
    ProviderType.BITBUCKET: "https://api.bitbucket.org/2.0",
    ProviderType.AZURE: "https://dev.azure.com",
    ProviderType.GITEA: "https://gitea.com/api/v1",
}


class ProviderConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: str  # a ProviderType value; anything else gets the unsupported stub
    base_url: str = ""  # filled from DEFAULT_BASE_URLS when empty
    token: SecretStr
    owner: str  # "organization/project" for Azure DevOps
    repo: str

    @model_validator(mode="before")
    @classmethod
    def _default_base_url(cls, data: Any) -> Any:
        if isinstance(data, dict) and not data.get("base_url"):
            data = {**data, "base_url": DEFAULT_BASE_URLS.get(data.get("type", ""), "")}
        return data


class ProviderCapabilities(BaseModel):
    model_config = ConfigDict(frozen=True)

    supports_draft_pr: bool = False
    supports_review_threads: bool = False
    supports_graphql: bool = False
    supports_reactions: bool = False
    supports_check_runs: bool = False
    supports_labels: bool = False
    supports_assignees: bool = False
    supports_merge_strategies: tuple[MergeMethod, ...] = ()
    # optional extension surface, filled in by the compatibility adapter
    supports_streaming: bool | None = None
    supports_batch_fetch: bool | None = None
    supports_webhooks: bool | None = None
    supports_suggestions: bool | None = None
    supports_timeline: bool | None = None


class Provider(ABC):
    """One backend's implementation of the review contract.

    ``type`` and ``capabilities`` never change after construction. The only
    mutable state an adapter may hold is its memoized current user.
    """

    type: str
    capabilities: ProviderCapabilities

    async def aclose(self) -> None:
        """Release the underlying HTTP client."""

    async def __aenter__(self) -> "Provider":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    # -- PR reads ------------------------------------------------------------

    @abstractmethod
    async def list_prs(self, params: ListPRsParams) -> PRListResult: ...

    @abstractmethod
    async def get_pr(self, number: int) -> PullRequest: ...

    @abstractmethod
    async def get_pr_files(self, number: int) -> list[FileChange]: ...

    @abstractmethod
    async def get_pr_comments(self, number: int) -> list[Comment]: ...

    @abstractmethod
    async def get_issue_comments(self, number: int) -> list[IssueComment]: ...

    @abstractmethod
    async def get_pr_reviews(self, number: int) -> list[Review]: ...

    @abstractmethod
    async def get_pr_commits(self, number: int) -> list[Commit]: ...

    @abstractmethod
    async def get_pr_checks(self, ref: str) -> CheckRunsResponse: ...

    @abstractmethod
    async def get_review_threads(self, pr_number: int) -> list[ReviewThread]: ...

    @abstractmethod
    async def get_commit_diff(self, sha: str) -> list[FileChange]: ...

    # -- User-scoped queries -------------------------------------------------

    @abstractmethod
    async def get_my_prs(self, state: StateFilter | None = None) -> list[PullRequest]: ...

    @abstractmethod
    async def get_review_requests(self, state: StateFilter | None = None) -> list[PullRequest]: ...

    @abstractmethod
    async def get_involved_prs(self, state: StateFilter | None = None) -> list[PullRequest]: ...

    # -- Review mutations ----------------------------------------------------

    @abstractmethod
    async def submit_review(self, pr_number: int, body: str, event: ReviewEvent) -> None: ...

    @abstractmethod
    async def create_pending_review(self, pr_number: int) -> int: ...

    @abstractmethod
    async def add_pending_review_comment(self, params: AddPendingReviewCommentParams) -> None: ...

    @abstractmethod
    async def submit_pending_review(
        self, pr_number: int, review_id: int, body: str, event: ReviewEvent
    ) -> None: ...

    @abstractmethod
    async def discard_pending_review(self, pr_number: int, review_id: int) -> None: ...

    # -- Comment mutations ---------------------------------------------------

    @abstractmethod
    async def add_comment(self, issue_number: int, body: str) -> None: ...

    @abstractmethod
    async def add_diff_comment(self, params: AddDiffCommentParams) -> None: ...

    @abstractmethod
    async def reply_to_comment(self, pr_number: int, comment_id: int, body: str) -> None: ...

    @abstractmethod
    async def edit_issue_comment(self, comment_id: int, body: str) -> None: ...

    @abstractmethod
    async def edit_review_comment(self, comment_id: int, body: str) -> None: ...

    @abstractmethod
    async def delete_review_comment(self, comment_id: int) -> None: ...

    # -- PR state mutations --------------------------------------------------

    @abstractmethod
    async def merge_pr(
        self,
        pr_number: int,
        method: MergeMethod,
        commit_title: str | None = None,
        commit_message: str | None = None,
    ) -> None: ...

    @abstractmethod
    async def close_pr(self, pr_number: int) -> None: ...

    @abstractmethod
    async def reopen_pr(self, pr_number: int) -> None: ...

    @abstractmethod
    async def update_pr_title(self, pr_number: int, title: str) -> None: ...

    @abstractmethod
    async def update_pr_body(self, pr_number: int, body: str) -> None: ...

    @abstractmethod
    async def request_re_review(self, pr_number: int, reviewers: list[str]) -> None: ...

    # -- Threads, drafts, labels, identity -----------------------------------

    @abstractmethod
    async def resolve_thread(self, thread_id: str) -> None: ...

    @abstractmethod
    async def unresolve_thread(self, thread_id: str) -> None: ...

    @abstractmethod
    async def convert_to_draft(self, pr_node_id: str) -> None: ...

    @abstractmethod
    async def mark_ready_for_review(self, pr_node_id: str) -> None: ...

    @abstractmethod
    async def get_labels(self) -> list[RepoLabel]: ...

    @abstractmethod
    async def set_labels(self, pr_number: int, labels: list[str]) -> None: ...

    @abstractmethod
    async def get_current_user(self) -> User: ...
