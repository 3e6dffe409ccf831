"""Canonical pydantic models shared by every provider and its callers."""

from typing import Literal

from pydantic import BaseModel, ConfigDict

PRState = Literal["open", "closed"]
StateFilter = Literal["open", "closed", "all"]
ReviewState = Literal["APPROVED", "CHANGES_REQUESTED", "COMMENTED", "PENDING", "DISMISSED"]
ReviewEvent = Literal["APPROVE", "REQUEST_CHANGES", "COMMENT"]
MergeMethod = Literal["merge", "squash", "rebase"]
DiffSide = Literal["LEFT", "RIGHT"]
FileStatus = Literal["added", "modified", "removed", "renamed"]
CheckStatus = Literal["queued", "in_progress", "completed"]
CheckConclusion = Literal[
    "success", "failure", "neutral", "cancelled", "skipped", "timed_out", "action_required"
]


class User(BaseModel):
    model_config = ConfigDict(frozen=True)

    login: str
    id: int = 0
    avatar_url: str = ""
    html_url: str = ""
    type: str = "User"


class Label(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int = 0
    name: str
    color: str = ""
    description: str | None = None


class RepoLabel(BaseModel):
    """A label defined on the repository, as offered by the label picker."""

    model_config = ConfigDict(frozen=True)

    name: str
    color: str = ""
    description: str | None = None


class BranchRef(BaseModel):
    model_config = ConfigDict(frozen=True)

    ref: str
    sha: str = ""


class PullRequest(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    node_id: str = ""  # opaque id consumed by convert_to_draft / mark_ready_for_review
    number: int
    title: str
    body: str | None = None
    state: PRState
    draft: bool = False
    merged: bool = False
    user: User
    labels: list[Label] = []
    created_at: str
    updated_at: str
    merged_at: str | None = None
    closed_at: str | None = None
    html_url: str
    head: BranchRef
    base: BranchRef
    additions: int = 0
    deletions: int = 0
    changed_files: int = 0
    comments: int = 0
    review_comments: int = 0
    requested_reviewers: list[User] = []
    assignees: list[User] = []
    mergeable: bool | None = None
    mergeable_state: str | None = None
    merge_commit_sha: str | None = None


class Review(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    user: User
    body: str | None = None
    state: ReviewState
    submitted_at: str | None = None
    html_url: str = ""


class Comment(BaseModel):
    """A comment attached to a diff location."""

    model_config = ConfigDict(frozen=True)

    id: int
    node_id: str = ""
    body: str
    user: User
    created_at: str
    updated_at: str
    html_url: str = ""
    path: str | None = None
    line: int | None = None
    side: DiffSide | None = None
    start_line: int | None = None
    in_reply_to_id: int | None = None


class IssueComment(BaseModel):
    """A general conversation comment, not tied to the diff."""

    model_config = ConfigDict(frozen=True)

    id: int
    node_id: str = ""
    body: str
    user: User
    created_at: str
    updated_at: str
    html_url: str = ""


class CommitAuthor(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    email: str = ""
    date: str = ""


class Commit(BaseModel):
    model_config = ConfigDict(frozen=True)

    sha: str
    message: str
    author: CommitAuthor
    html_url: str = ""


class FileChange(BaseModel):
    model_config = ConfigDict(frozen=True)

    sha: str = ""
    filename: str
    status: FileStatus
    additions: int = 0
    deletions: int = 0
    changes: int = 0
    patch: str | None = None
    previous_filename: str | None = None  # set for renames only


class CheckRun(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    name: str
    status: CheckStatus
    conclusion: CheckConclusion | None = None
    html_url: str | None = None
    details_url: str | None = None


class CheckRunsResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    total_count: int
    check_runs: list[CheckRun] = []


class ReviewThread(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str  # opaque, accepted unchanged by resolve_thread / unresolve_thread
    is_resolved: bool
    comment_ids: list[int] = []


class TimelineEvent(BaseModel):
    """One entry in a pull request's unified activity timeline."""

    model_config = ConfigDict(frozen=True)

    type: Literal["commit", "review", "comment", "label-change", "assignee-change", "status-check", "force-push"]
    id: str
    timestamp: str
    actor: str | None = None
    summary: str = ""


# ---------------------------------------------------------------------------
# Operation inputs and results
# ---------------------------------------------------------------------------


class ListPRsParams(BaseModel):
    model_config = ConfigDict(frozen=True)

    state: StateFilter | None = None
    sort: Literal["created", "updated", "popularity", "long-running"] | None = None
    direction: Literal["asc", "desc"] | None = None
    per_page: int | None = None
    page: int | None = None


class PRListResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    items: list[PullRequest]
    total_count: int | None = None


class AddDiffCommentParams(BaseModel):
    model_config = ConfigDict(frozen=True)

    pr_number: int
    body: str
    commit_id: str
    path: str
    line: int
    side: DiffSide
    start_line: int | None = None
    start_side: DiffSide | None = None


class AddPendingReviewCommentParams(BaseModel):
    model_config = ConfigDict(frozen=True)

    pr_number: int
    review_id: int
    body: str
    path: str
    line: int
    side: DiffSide
    start_line: int | None = None
    start_side: DiffSide | None = None


class SuggestionParams(BaseModel):
    model_config = ConfigDict(frozen=True)

    pr_number: int
    body: str
    path: str
    line: int
    side: DiffSide
    suggestion: str
    start_line: int | None = None
    commit_id: str | None = None


class AcceptSuggestionParams(BaseModel):
    model_config = ConfigDict(frozen=True)

    pr_number: int
    comment_id: int
    commit_message: str | None = None
