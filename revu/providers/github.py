"""GitHub REST v3 provider, with GraphQL for review threads and drafts."""

import httpx

from revu.hooks import Hooks
from revu.models import (
    AddDiffCommentParams,
    AddPendingReviewCommentParams,
    BranchRef,
    CheckRun,
    CheckRunsResponse,
    Comment,
    Commit,
    CommitAuthor,
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
from revu.transport import GitHubTransport

CAPABILITIES = ProviderCapabilities(
    supports_draft_pr=True,
    supports_review_threads=True,
    supports_graphql=True,
    supports_reactions=True,
    supports_check_runs=True,
    supports_labels=True,
    supports_assignees=True,
    supports_merge_strategies=("merge", "squash", "rebase"),
)

_REVIEW_THREADS = """
query($owner: String!, $repo: String!, $number: Int!, $cursor: String) {
  repository(owner: $owner, name: $repo) {
    pullRequest(number: $number) {
      reviewThreads(first: 100, after: $cursor) {
        pageInfo { hasNextPage endCursor }
        nodes {
          id
          isResolved
          comments(first: 100) { nodes { databaseId } }
        }
      }
    }
  }
}
"""

_RESOLVE_THREAD = """
mutation($threadId: ID!) {
  resolveReviewThread(input: {threadId: $threadId}) { thread { id isResolved } }
}
"""

_UNRESOLVE_THREAD = """
mutation($threadId: ID!) {
  unresolveReviewThread(input: {threadId: $threadId}) { thread { id isResolved } }
}
"""

_CONVERT_TO_DRAFT = """
mutation($id: ID!) {
  convertPullRequestToDraft(input: {pullRequestId: $id}) { pullRequest { id isDraft } }
}
"""

_MARK_READY = """
mutation($id: ID!) {
  markPullRequestReadyForReview(input: {pullRequestId: $id}) { pullRequest { id isDraft } }
}
"""

# Check-run states GitHub reports before a run starts
_QUEUED_STATUSES = {"queued", "requested", "waiting", "pending"}
_CONCLUSIONS = {"success", "failure", "neutral", "cancelled", "skipped", "timed_out", "action_required"}
_FILE_STATUSES = {"added": "added", "removed": "removed", "renamed": "renamed", "copied": "added"}


def _user_from_node(node: dict | None) -> User:
    if not node:
        return User(login="ghost")
    return User(
        login=node["login"],
        id=node.get("id", 0),
        avatar_url=node.get("avatar_url") or "",
        html_url=node.get("html_url") or "",
        type=node.get("type") or "User",
    )


def _ref_from_node(node: dict | None) -> BranchRef:
    if not node:
        return BranchRef(ref="")
    return BranchRef(ref=node.get("ref", ""), sha=node.get("sha", ""))


def _pr_from_node(node: dict) -> PullRequest:
    # search results carry issue-shaped PRs without head/base or merge data
    merged_at = node.get("merged_at") or (node.get("pull_request") or {}).get("merged_at")
    return PullRequest(
        id=node["id"],
        node_id=node.get("node_id", ""),
        number=node["number"],
        title=node["title"],
        body=node.get("body"),
        state="open" if node.get("state") == "open" else "closed",
        draft=bool(node.get("draft")),
        merged=bool(node.get("merged")) or merged_at is not None,
        user=_user_from_node(node.get("user")),
        labels=[
            Label(
                id=label.get("id", 0),
                name=label["name"],
                color=label.get("color") or "",
                description=label.get("description"),
            )
            for label in node.get("labels", [])
        ],
        created_at=node["created_at"],
        updated_at=node["updated_at"],
        merged_at=merged_at,
        closed_at=node.get("closed_at"),
        html_url=node["html_url"],
        head=_ref_from_node(node.get("head")),
        base=_ref_from_node(node.get("base")),
        additions=node.get("additions", 0),
        deletions=node.get("deletions", 0),
        changed_files=node.get("changed_files", 0),
        comments=node.get("comments", 0),
        review_comments=node.get("review_comments", 0),
        requested_reviewers=[_user_from_node(u) for u in node.get("requested_reviewers") or []],
        assignees=[_user_from_node(u) for u in node.get("assignees") or []],
        mergeable=node.get("mergeable"),
        mergeable_state=node.get("mergeable_state"),
        merge_commit_sha=node.get("merge_commit_sha"),
    )


def _file_from_node(node: dict) -> FileChange:
    return FileChange(
        sha=node.get("sha") or "",
        filename=node["filename"],
        status=_FILE_STATUSES.get(node.get("status", ""), "modified"),
        additions=node.get("additions", 0),
        deletions=node.get("deletions", 0),
        changes=node.get("changes", 0),
        patch=node.get("patch"),
        previous_filename=node.get("previous_filename"),
    )


def _comment_from_node(node: dict) -> Comment:
    return Comment(
        id=node["id"],
        node_id=node.get("node_id", ""),
        body=node.get("body") or "",
        user=_user_from_node(node.get("user")),
        created_at=node["created_at"],
        updated_at=node["updated_at"],
        html_url=node.get("html_url", ""),
        path=node.get("path"),
        line=node.get("line") or node.get("original_line"),
        side=node.get("side"),
        start_line=node.get("start_line"),
        in_reply_to_id=node.get("in_reply_to_id"),
    )


def _issue_comment_from_node(node: dict) -> IssueComment:
    return IssueComment(
        id=node["id"],
        node_id=node.get("node_id", ""),
        body=node.get("body") or "",
        user=_user_from_node(node.get("user")),
        created_at=node["created_at"],
        updated_at=node["updated_at"],
        html_url=node.get("html_url", ""),
    )


def _review_from_node(node: dict) -> Review:
    return Review(
        id=node["id"],
        user=_user_from_node(node.get("user")),
        body=node.get("body") or None,
        state=node["state"],
        submitted_at=node.get("submitted_at"),
        html_url=node.get("html_url", ""),
    )


def _commit_from_node(node: dict) -> Commit:
    author = node["commit"].get("author") or {}
    return Commit(
        sha=node["sha"],
        message=node["commit"]["message"],
        author=CommitAuthor(
            name=author.get("name", ""),
            email=author.get("email", ""),
            date=author.get("date", ""),
        ),
        html_url=node.get("html_url", ""),
    )


def _check_from_node(node: dict) -> CheckRun:
    status = node.get("status")
    conclusion = node.get("conclusion")
    return CheckRun(
        id=node["id"],
        name=node["name"],
        status="queued" if status in _QUEUED_STATUSES else status,
        conclusion=conclusion if conclusion in _CONCLUSIONS else None,
        html_url=node.get("html_url"),
        details_url=node.get("details_url"),
    )


class GitHubProvider(Provider):
    type = ProviderType.GITHUB
    capabilities = CAPABILITIES

    def __init__(
        self,
        config: ProviderConfig,
        *,
        client: httpx.AsyncClient | None = None,
        hooks: Hooks | None = None,
    ) -> None:
        self._owner = config.owner
        self._repo = config.repo
        self._api = GitHubTransport(config.base_url, config.token.get_secret_value(), client=client, hooks=hooks)
        self._repo_path = f"/repos/{self._owner}/{self._repo}"

    async def aclose(self) -> None:
        await self._api.aclose()

    async def _search_prs(self, qualifier: str, state: StateFilter | None) -> list[PullRequest]:
        query = f"is:pr repo:{self._owner}/{self._repo} {qualifier}"
        if (state or "open") != "all":
            query += f" is:{state or 'open'}"
        items = await self._api.fetch_all_pages("/search/issues", {"q": query}, items_key="items")
        return [_pr_from_node(item) for item in items]

    # -- PR reads ------------------------------------------------------------

    async def list_prs(self, params: ListPRsParams) -> PRListResult:
        query: dict = {
            "state": params.state or "open",
            "per_page": params.per_page or 30,
            "page": params.page or 1,
        }
        if params.sort:
            query["sort"] = params.sort
        if params.direction:
            query["direction"] = params.direction
        nodes = await self._api.fetch_json(f"{self._repo_path}/pulls", query)
        return PRListResult(items=[_pr_from_node(node) for node in nodes])

    async def get_pr(self, number: int) -> PullRequest:
        node = await self._api.fetch_json(f"{self._repo_path}/pulls/{number}")
        return _pr_from_node(node)

    async def get_pr_files(self, number: int) -> list[FileChange]:
        nodes = await self._api.fetch_all_pages(f"{self._repo_path}/pulls/{number}/files")
        return [_file_from_node(node) for node in nodes]

    async def get_pr_comments(self, number: int) -> list[Comment]:
        nodes = await self._api.fetch_all_pages(f"{self._repo_path}/pulls/{number}/comments")
        return [_comment_from_node(node) for node in nodes]

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
        data = await self._api.fetch_json(f"{self._repo_path}/commits/{ref}/check-runs", {"per_page": 100})
        return CheckRunsResponse(
            total_count=data.get("total_count", 0),
            check_runs=[_check_from_node(node) for node in data.get("check_runs", [])],
        )

    async def get_review_threads(self, pr_number: int) -> list[ReviewThread]:
        threads: list[ReviewThread] = []
        cursor = None
        while True:
            data = await self._api.graphql(
                _REVIEW_THREADS,
                {"owner": self._owner, "repo": self._repo, "number": pr_number, "cursor": cursor},
            )
            connection = data["repository"]["pullRequest"]["reviewThreads"]
            for node in connection["nodes"]:
                threads.append(
                    ReviewThread(
                        id=node["id"],
                        is_resolved=node["isResolved"],
                        comment_ids=[c["databaseId"] for c in node["comments"]["nodes"]],
                    )
                )
            page_info = connection["pageInfo"]
            if not page_info["hasNextPage"]:
                return threads
            cursor = page_info["endCursor"]

    async def get_commit_diff(self, sha: str) -> list[FileChange]:
        node = await self._api.fetch_json(f"{self._repo_path}/commits/{sha}")
        return [_file_from_node(f) for f in node.get("files", [])]

    # -- User-scoped queries -------------------------------------------------

    async def get_my_prs(self, state: StateFilter | None = None) -> list[PullRequest]:
        return await self._search_prs("author:@me", state)

    async def get_review_requests(self, state: StateFilter | None = None) -> list[PullRequest]:
        return await self._search_prs("review-requested:@me", state)

    async def get_involved_prs(self, state: StateFilter | None = None) -> list[PullRequest]:
        return await self._search_prs("involves:@me", state)

    # -- Review mutations ----------------------------------------------------

    async def submit_review(self, pr_number: int, body: str, event: ReviewEvent) -> None:
        await self._api.mutate("POST", f"{self._repo_path}/pulls/{pr_number}/reviews", {"body": body, "event": event})

    async def create_pending_review(self, pr_number: int) -> int:
        # omitting "event" leaves the review in the PENDING state
        data = await self._api.mutate_json("POST", f"{self._repo_path}/pulls/{pr_number}/reviews", {})
        return data["id"]

    async def add_pending_review_comment(self, params: AddPendingReviewCommentParams) -> None:
        body: dict = {"body": params.body, "path": params.path, "line": params.line, "side": params.side}
        if params.start_line is not None:
            body["start_line"] = params.start_line
            body["start_side"] = params.start_side or params.side
        await self._api.mutate(
            "POST", f"{self._repo_path}/pulls/{params.pr_number}/reviews/{params.review_id}/comments", body
        )

    async def submit_pending_review(self, pr_number: int, review_id: int, body: str, event: ReviewEvent) -> None:
        await self._api.mutate(
            "POST",
            f"{self._repo_path}/pulls/{pr_number}/reviews/{review_id}/events",
            {"body": body, "event": event},
        )

    async def discard_pending_review(self, pr_number: int, review_id: int) -> None:
        await self._api.mutate("DELETE", f"{self._repo_path}/pulls/{pr_number}/reviews/{review_id}")

    # -- Comment mutations ---------------------------------------------------

    async def add_comment(self, issue_number: int, body: str) -> None:
        await self._api.mutate("POST", f"{self._repo_path}/issues/{issue_number}/comments", {"body": body})

    async def add_diff_comment(self, params: AddDiffCommentParams) -> None:
        body: dict = {
            "body": params.body,
            "commit_id": params.commit_id,
            "path": params.path,
            "line": params.line,
            "side": params.side,
        }
        if params.start_line is not None:
            body["start_line"] = params.start_line
            body["start_side"] = params.start_side or params.side
        await self._api.mutate("POST", f"{self._repo_path}/pulls/{params.pr_number}/comments", body)

    async def reply_to_comment(self, pr_number: int, comment_id: int, body: str) -> None:
        await self._api.mutate(
            "POST", f"{self._repo_path}/pulls/{pr_number}/comments", {"body": body, "in_reply_to": comment_id}
        )

    async def edit_issue_comment(self, comment_id: int, body: str) -> None:
        await self._api.mutate("PATCH", f"{self._repo_path}/issues/comments/{comment_id}", {"body": body})

    async def edit_review_comment(self, comment_id: int, body: str) -> None:
        await self._api.mutate("PATCH", f"{self._repo_path}/pulls/comments/{comment_id}", {"body": body})

    async def delete_review_comment(self, comment_id: int) -> None:
        await self._api.mutate("DELETE", f"{self._repo_path}/pulls/comments/{comment_id}")

    # -- PR state mutations --------------------------------------------------

    async def merge_pr(
        self,
        pr_number: int,
        method: MergeMethod,
        commit_title: str | None = None,
        commit_message: str | None = None,
    ) -> None:
        body: dict = {"merge_method": method}
        if commit_title:
            body["commit_title"] = commit_title
        if commit_message:
            body["commit_message"] = commit_message
        await self._api.mutate("PUT", f"{self._repo_path}/pulls/{pr_number}/merge", body)

    async def close_pr(self, pr_number: int) -> None:
        await self._api.mutate("PATCH", f"{self._repo_path}/pulls/{pr_number}", {"state": "closed"})

    async def reopen_pr(self, pr_number: int) -> None:
        await self._api.mutate("PATCH", f"{self._repo_path}/pulls/{pr_number}", {"state": "open"})

    async def update_pr_title(self, pr_number: int, title: str) -> None:
        await self._api.mutate("PATCH", f"{self._repo_path}/pulls/{pr_number}", {"title": title})

    async def update_pr_body(self, pr_number: int, body: str) -> None:
        await self._api.mutate("PATCH", f"{self._repo_path}/pulls/{pr_number}", {"body": body})

    async def request_re_review(self, pr_number: int, reviewers: list[str]) -> None:
        await self._api.mutate(
            "POST", f"{self._repo_path}/pulls/{pr_number}/requested_reviewers", {"reviewers": list(reviewers)}
        )

    # -- Threads, drafts, labels, identity -----------------------------------

    async def resolve_thread(self, thread_id: str) -> None:
        await self._api.graphql(_RESOLVE_THREAD, {"threadId": thread_id})

    async def unresolve_thread(self, thread_id: str) -> None:
        await self._api.graphql(_UNRESOLVE_THREAD, {"threadId": thread_id})

    async def convert_to_draft(self, pr_node_id: str) -> None:
        await self._api.graphql(_CONVERT_TO_DRAFT, {"id": pr_node_id})

    async def mark_ready_for_review(self, pr_node_id: str) -> None:
        await self._api.graphql(_MARK_READY, {"id": pr_node_id})

    async def get_labels(self) -> list[RepoLabel]:
        nodes = await self._api.fetch_all_pages(f"{self._repo_path}/labels")
        return [
            RepoLabel(name=n["name"], color=n.get("color") or "", description=n.get("description"))
            for n in nodes
        ]

    async def set_labels(self, pr_number: int, labels: list[str]) -> None:
        await self._api.mutate("PUT", f"{self._repo_path}/issues/{pr_number}/labels", {"labels": list(labels)})

    async def get_current_user(self) -> User:
        node = await self._api.fetch_json("/user")
        return _user_from_node(node)
