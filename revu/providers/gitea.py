"""Gitea / Forgejo REST v1 provider."""

from collections.abc import Callable

import httpx

from revu.errors import GiteaError
from revu.hooks import Hooks
from revu.models import (
    AddDiffCommentParams,
    AddPendingReviewCommentParams,
    BranchRef,
    CheckRunsResponse,
    Comment,
    Commit,
    CommitAuthor,
    DiffSide,
    FileChange,
    IssueComment,
    Label,
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
from revu.providers.base import Provider, ProviderCapabilities, ProviderConfig, ProviderType
from revu.transport import GiteaTransport

CAPABILITIES = ProviderCapabilities(
    supports_reactions=True,
    supports_merge_strategies=("merge", "squash", "rebase"),
)

# "all" sends no state parameter at all
_STATES: dict[str, str | None] = {"open": "open", "closed": "closed", "all": None}
_SORTS = {
    ("created", "asc"): "oldest",
    ("created", "desc"): "newest",
    ("updated", "asc"): "leastupdate",
    ("updated", "desc"): "recentupdate",
}
_REVIEW_STATES = {"APPROVED": "APPROVED", "REQUEST_CHANGES": "CHANGES_REQUESTED", "PENDING": "PENDING"}
_FILE_STATUSES = {"added": "added", "removed": "removed", "renamed": "renamed", "copied": "added"}


def _user_from_node(node: dict | None) -> User:
    if not node:
        return User(login="ghost")
    return User(login=node["login"], id=node.get("id", 0), avatar_url=node.get("avatar_url") or "")


def _pr_from_node(node: dict) -> PullRequest:
    merged = bool(node.get("merged"))
    closed = node.get("state") != "open"
    return PullRequest(
        id=node.get("id") or node["number"],
        node_id=str(node["number"]),
        number=node["number"],
        title=node["title"],
        body=node.get("body") or None,
        state="closed" if closed else "open",
        merged=merged,
        user=_user_from_node(node.get("user")),
        labels=[
            Label(id=label.get("id", 0), name=label["name"], color=label.get("color", ""))
            for label in node.get("labels") or []
        ],
        created_at=node["created_at"],
        updated_at=node["updated_at"],
        merged_at=(node.get("merged_at") or node["updated_at"]) if merged else None,
        closed_at=(node.get("closed_at") or node["updated_at"]) if closed and not merged else None,
        html_url=node.get("html_url") or "",
        head=BranchRef(ref=node["head"]["ref"], sha=node["head"].get("sha", "")),
        base=BranchRef(ref=node["base"]["ref"], sha=node["base"].get("sha", "")),
        comments=node.get("comments") or 0,
        requested_reviewers=[_user_from_node(u) for u in node.get("requested_reviewers") or []],
        assignees=[_user_from_node(u) for u in node.get("assignees") or []],
        mergeable=node.get("mergeable"),
        merge_commit_sha=node.get("merge_commit_sha"),
    )


def _file_from_node(node: dict) -> FileChange:
    return FileChange(
        filename=node["filename"],
        status=_FILE_STATUSES.get(node.get("status", ""), "modified"),
        additions=node.get("additions") or 0,
        deletions=node.get("deletions") or 0,
        changes=node.get("changes") or 0,
        previous_filename=node.get("previous_filename") or None,
    )


def _comment_from_node(node: dict) -> Comment:
    old_line = node.get("old_line_num") or 0
    new_line = node.get("new_line_num") or 0
    # a comment on a removed line carries only the old-side position
    old_side = old_line > 0 and new_line == 0
    return Comment(
        id=node["id"],
        node_id=str(node["id"]),
        body=node.get("body", ""),
        user=_user_from_node(node.get("user")),
        created_at=node["created_at"],
        updated_at=node["updated_at"],
        html_url=node.get("html_url") or "",
        path=node.get("path") or None,
        line=old_line if old_side else (new_line or node.get("line") or None),
        side="LEFT" if old_side else "RIGHT",
    )


def _issue_comment_from_node(node: dict) -> IssueComment:
    return IssueComment(
        id=node["id"],
        node_id=str(node["id"]),
        body=node.get("body", ""),
        user=_user_from_node(node.get("user")),
        created_at=node["created_at"],
        updated_at=node["updated_at"],
        html_url=node.get("html_url") or "",
    )


def _review_from_node(node: dict) -> Review:
    return Review(
        id=node["id"],
        user=_user_from_node(node.get("user")),
        body=node.get("body") or None,
        state=_REVIEW_STATES.get(node.get("state", ""), "COMMENTED"),
        submitted_at=node.get("submitted_at"),
        html_url=node.get("html_url") or "",
    )


def _commit_from_node(node: dict) -> Commit:
    author = node["commit"].get("author") or {}
    return Commit(
        sha=node["sha"],
        message=node["commit"].get("message", ""),
        author=CommitAuthor(name=author.get("name", ""), email=author.get("email", ""), date=author.get("date", "")),
        html_url=node.get("html_url") or "",
    )


def _is_author(pr: PullRequest, login: str) -> bool:
    return pr.user.login == login


def _is_reviewer(pr: PullRequest, login: str) -> bool:
    return any(user.login == login for user in pr.requested_reviewers)


def _is_assignee(pr: PullRequest, login: str) -> bool:
    return any(user.login == login for user in pr.assignees)


class GiteaProvider(Provider):
    """Gitea has no identity search on pull requests, so user-scoped queries
    fetch the repository's PRs and filter them locally."""

    type = ProviderType.GITEA
    capabilities = CAPABILITIES

    def __init__(
        self,
        config: ProviderConfig,
        *,
        client: httpx.AsyncClient | None = None,
        hooks: Hooks | None = None,
    ) -> None:
        self._api = GiteaTransport(config.base_url, config.token.get_secret_value(), client=client, hooks=hooks)
        self._repo_path = f"/repos/{config.owner}/{config.repo}"
        self._username: str | None = None

    async def aclose(self) -> None:
        await self._api.aclose()

    async def _current_username(self) -> str:
        if self._username is None:
            self._username = (await self._api.fetch_json("/user"))["login"]
        return self._username

    async def _filter_prs(
        self, state: StateFilter | None, *relations: Callable[[PullRequest, str], bool]
    ) -> list[PullRequest]:
        login = await self._current_username()
        params: dict[str, str] = {}
        gitea_state = _STATES.get(state or "open", "open")
        if gitea_state:
            params["state"] = gitea_state
        nodes = await self._api.fetch_all_pages(f"{self._repo_path}/pulls", params)
        seen: set[int] = set()
        matches: list[PullRequest] = []
        for pr in map(_pr_from_node, nodes):
            if pr.number in seen or not any(relation(pr, login) for relation in relations):
                continue
            seen.add(pr.number)
            matches.append(pr)
        return matches

    async def _inline_comment(self, pr_number: int, body: str, path: str, line: int, side: DiffSide) -> None:
        comment = {
            "path": path,
            "body": body,
            "new_position": line if side == "RIGHT" else 0,
            "old_position": line if side == "LEFT" else 0,
        }
        await self._api.mutate(
            "POST", f"{self._repo_path}/pulls/{pr_number}/reviews", {"event": "COMMENT", "body": "", "comments": [comment]}
        )

    # -- PR reads ------------------------------------------------------------

    async def list_prs(self, params: ListPRsParams) -> PRListResult:
        query: dict = {"limit": params.per_page or 30, "page": params.page or 1}
        gitea_state = _STATES.get(params.state or "open", "open")
        if gitea_state:
            query["state"] = gitea_state
        sort = _SORTS.get((params.sort, "desc" if params.direction == "desc" else "asc"))
        if sort:
            query["sort"] = sort
        nodes = await self._api.fetch_json(f"{self._repo_path}/pulls", query)
        return PRListResult(items=[_pr_from_node(node) for node in nodes])

    async def get_pr(self, number: int) -> PullRequest:
        return _pr_from_node(await self._api.fetch_json(f"{self._repo_path}/pulls/{number}"))

    async def get_pr_files(self, number: int) -> list[FileChange]:
        nodes = await self._api.fetch_all_pages(f"{self._repo_path}/pulls/{number}/files")
        return [_file_from_node(node) for node in nodes]

    async def get_pr_comments(self, number: int) -> list[Comment]:
        reviews = await self._api.fetch_all_pages(f"{self._repo_path}/pulls/{number}/reviews")
        comments: list[Comment] = []
        for review in reviews:
            nodes = await self._api.fetch_all_pages(f"{self._repo_path}/pulls/{number}/reviews/{review['id']}/comments")
            comments.extend(_comment_from_node(node) for node in nodes)
        return comments

    async def get_issue_comments(self, number: int) -> list[IssueComment]:
        nodes = await self._api.fetch_all_pages(f"{self._repo_path}/issues/{number}/comments")
        return [_issue_comment_from_node(node) for node in nodes]

    async def get_pr_reviews(self, number: int) -> list[Review]:
        nodes = await self._api.fetch_all_pages(f"{self._repo_path}/pulls/{number}/reviews")
        return [_review_from_node(node) for node in nodes]

    async def get_pr_commits(self, number: int) -> list[Commit]:
        nodes = await self._api.fetch_all_pages(f"{self._repo_path}/pulls/{number}/commits")
        return [_commit_from_node(node) for node in nodes]

    async def get_pr_checks(self, ref: str) -> CheckRunsResponse:
        return CheckRunsResponse(total_count=0)

    async def get_review_threads(self, pr_number: int) -> list[ReviewThread]:
        return []

    async def get_commit_diff(self, sha: str) -> list[FileChange]:
        nodes = await self._api.fetch_json(f"{self._repo_path}/git/commits/{sha}/files")
        return [_file_from_node(node) for node in nodes]

    # -- User-scoped queries -------------------------------------------------

    async def get_my_prs(self, state: StateFilter | None = None) -> list[PullRequest]:
        return await self._filter_prs(state, _is_author)

    async def get_review_requests(self, state: StateFilter | None = None) -> list[PullRequest]:
        return await self._filter_prs(state, _is_reviewer)

    async def get_involved_prs(self, state: StateFilter | None = None) -> list[PullRequest]:
        return await self._filter_prs(state, _is_author, _is_reviewer, _is_assignee)

    # -- Review mutations ----------------------------------------------------

    async def submit_review(self, pr_number: int, body: str, event: ReviewEvent) -> None:
        await self._api.mutate(
            "POST",
            f"{self._repo_path}/pulls/{pr_number}/reviews",
            {"body": body or "", "event": "APPROVED" if event == "APPROVE" else event},
        )

    async def create_pending_review(self, pr_number: int) -> int:
        return 0

    async def add_pending_review_comment(self, params: AddPendingReviewCommentParams) -> None:
        await self._inline_comment(params.pr_number, params.body, params.path, params.line, params.side)

    async def submit_pending_review(self, pr_number: int, review_id: int, body: str, event: ReviewEvent) -> None:
        if event == "COMMENT" and not body.strip():
            return
        await self.submit_review(pr_number, body, event)

    async def discard_pending_review(self, pr_number: int, review_id: int) -> None:
        return None

    # -- Comment mutations ---------------------------------------------------

    async def add_comment(self, issue_number: int, body: str) -> None:
        await self._api.mutate("POST", f"{self._repo_path}/issues/{issue_number}/comments", {"body": body})

    async def add_diff_comment(self, params: AddDiffCommentParams) -> None:
        await self._inline_comment(params.pr_number, params.body, params.path, params.line, params.side)

    async def reply_to_comment(self, pr_number: int, comment_id: int, body: str) -> None:
        # no threaded replies in the Gitea API; post to the conversation instead
        await self.add_comment(pr_number, body)

    async def edit_issue_comment(self, comment_id: int, body: str) -> None:
        await self._api.mutate("PATCH", f"{self._repo_path}/issues/comments/{comment_id}", {"body": body})

    async def edit_review_comment(self, comment_id: int, body: str) -> None:
        await self.edit_issue_comment(comment_id, body)

    async def delete_review_comment(self, comment_id: int) -> None:
        await self._api.mutate("DELETE", f"{self._repo_path}/issues/comments/{comment_id}")

    # -- PR state mutations --------------------------------------------------

    async def merge_pr(
        self,
        pr_number: int,
        method: MergeMethod,
        commit_title: str | None = None,
        commit_message: str | None = None,
    ) -> None:
        body: dict = {"Do": method}
        if commit_title:
            body["merge_message_field"] = f"{commit_title}\n\n{commit_message}" if commit_message else commit_title
        await self._api.mutate("POST", f"{self._repo_path}/pulls/{pr_number}/merge", body)

    async def close_pr(self, pr_number: int) -> None:
        await self._api.mutate("PATCH", f"{self._repo_path}/pulls/{pr_number}", {"state": "closed"})

    async def reopen_pr(self, pr_number: int) -> None:
        await self._api.mutate("PATCH", f"{self._repo_path}/pulls/{pr_number}", {"state": "open"})

    async def update_pr_title(self, pr_number: int, title: str) -> None:
        await self._api.mutate("PATCH", f"{self._repo_path}/pulls/{pr_number}", {"title": title})

    async def update_pr_body(self, pr_number: int, body: str) -> None:
        await self._api.mutate("PATCH", f"{self._repo_path}/pulls/{pr_number}", {"body": body})

    async def request_re_review(self, pr_number: int, reviewers: list[str]) -> None:
        if not reviewers:
            raise GiteaError("At least one reviewer is required", status=400)
        await self._api.mutate(
            "POST", f"{self._repo_path}/pulls/{pr_number}/requested_reviewers", {"reviewers": list(reviewers)}
        )

    # -- Threads, drafts, labels, identity -----------------------------------

    async def resolve_thread(self, thread_id: str) -> None:
        raise GiteaError("Gitea does not support thread resolution", status=400)

    async def unresolve_thread(self, thread_id: str) -> None:
        raise GiteaError("Gitea does not support thread resolution", status=400)

    async def convert_to_draft(self, pr_node_id: str) -> None:
        raise GiteaError("Gitea does not support draft pull requests", status=400)

    async def mark_ready_for_review(self, pr_node_id: str) -> None:
        raise GiteaError("Gitea does not support draft pull requests", status=400)

    async def get_labels(self) -> list[RepoLabel]:
        raise GiteaError("Labels are not yet supported for Gitea", status=501)

    async def set_labels(self, pr_number: int, labels: list[str]) -> None:
        raise GiteaError("Labels are not yet supported for Gitea", status=501)

    async def get_current_user(self) -> User:
        return _user_from_node(await self._api.fetch_json("/user"))
