"""Bitbucket Cloud REST 2.0 provider."""

import asyncio
import re

import httpx

from revu.errors import BitbucketError
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
from revu.providers.ids import stable_numeric_id
from revu.transport import BitbucketTransport

CAPABILITIES = ProviderCapabilities(
    supports_check_runs=True,
    supports_merge_strategies=("merge", "squash", "rebase"),
)

# sent as a repeated ``state`` query parameter; None means no filter
_STATES: dict[str, list[str] | None] = {
    "open": ["OPEN"],
    "closed": ["MERGED", "DECLINED", "SUPERSEDED"],
    "all": None,
}
MERGE_STRATEGIES: dict[str, str] = {"merge": "merge_commit", "squash": "squash", "rebase": "fast_forward"}
_REVIEW_STATES = {"approved": "APPROVED", "changes_requested": "CHANGES_REQUESTED"}
_FILE_STATUSES = {"added": "added", "removed": "removed", "renamed": "renamed"}
_STEP_STATUS = {
    "COMPLETED": "completed",
    "IN_PROGRESS": "in_progress",
    "RUNNING": "in_progress",
    "PENDING": "queued",
    "PAUSED": "queued",
    "HALTED": "queued",
}
_STEP_RESULT = {
    "SUCCESSFUL": "success",
    "FAILED": "failure",
    "ERROR": "failure",
    "STOPPED": "cancelled",
    "EXPIRED": "timed_out",
    "NOT_RUN": "skipped",
}
_AUTHOR_RAW = re.compile(r"^(.*?)\s*<([^>]*)>\s*$")


def _user_from_node(node: dict | None) -> User:
    if not node:
        return User(login="ghost")
    avatar = ((node.get("links") or {}).get("avatar") or {}).get("href", "")
    return User(
        login=node.get("nickname") or node.get("display_name") or "",
        id=stable_numeric_id(node.get("uuid") or node.get("account_id") or ""),
        avatar_url=avatar,
    )


def _html(node: dict) -> str:
    return ((node.get("links") or {}).get("html") or {}).get("href", "")


def _pr_from_node(node: dict) -> PullRequest:
    state = node.get("state")
    closed = state != "OPEN"
    source = node.get("source") or {}
    destination = node.get("destination") or {}
    return PullRequest(
        id=node["id"],
        node_id=str(node["id"]),
        number=node["id"],
        title=node["title"],
        body=node.get("description") or None,
        state="closed" if closed else "open",
        draft=False,
        merged=state == "MERGED",
        user=_user_from_node(node.get("author")),
        created_at=node["created_on"],
        updated_at=node["updated_on"],
        merged_at=node["updated_on"] if state == "MERGED" else None,
        closed_at=node["updated_on"] if closed else None,
        html_url=_html(node),
        head=BranchRef(
            ref=(source.get("branch") or {}).get("name", ""),
            sha=(source.get("commit") or {}).get("hash", ""),
        ),
        base=BranchRef(
            ref=(destination.get("branch") or {}).get("name", ""),
            sha=(destination.get("commit") or {}).get("hash", ""),
        ),
        comments=node.get("comment_count", 0),
        requested_reviewers=[_user_from_node(u) for u in node.get("reviewers") or []],
        merge_commit_sha=(node.get("merge_commit") or {}).get("hash"),
    )


def _file_from_diffstat(node: dict) -> FileChange:
    old_path = (node.get("old") or {}).get("path")
    new_path = (node.get("new") or {}).get("path")
    # "merge conflict" and anything else unknown reads as modified
    status = _FILE_STATUSES.get(node.get("status", ""), "modified")
    added = node.get("lines_added", 0)
    removed = node.get("lines_removed", 0)
    return FileChange(
        filename=new_path or old_path or "",
        status=status,
        additions=added,
        deletions=removed,
        changes=added + removed,
        previous_filename=old_path if status == "renamed" else None,
    )


def _comment_from_node(node: dict, pr_url: str) -> Comment:
    inline = node.get("inline") or {}
    to_line = inline.get("to")
    return Comment(
        id=node["id"],
        node_id=str(node["id"]),
        body=(node.get("content") or {}).get("raw", ""),
        user=_user_from_node(node.get("user")),
        created_at=node["created_on"],
        updated_at=node.get("updated_on") or node["created_on"],
        html_url=f"{pr_url}#comment-{node['id']}",
        path=inline.get("path"),
        line=to_line if to_line is not None else inline.get("from"),
        side="RIGHT" if to_line is not None else "LEFT",
        in_reply_to_id=(node.get("parent") or {}).get("id"),
    )


def _issue_comment_from_node(node: dict, pr_url: str) -> IssueComment:
    return IssueComment(
        id=node["id"],
        node_id=str(node["id"]),
        body=(node.get("content") or {}).get("raw", ""),
        user=_user_from_node(node.get("user")),
        created_at=node["created_on"],
        updated_at=node.get("updated_on") or node["created_on"],
        html_url=f"{pr_url}#comment-{node['id']}",
    )


def _commit_from_node(node: dict) -> Commit:
    author = node.get("author") or {}
    raw = author.get("raw", "")
    match = _AUTHOR_RAW.match(raw)
    name, email = (match.group(1), match.group(2)) if match else (raw, "")
    if not name and author.get("user"):
        name = author["user"].get("display_name", "")
    return Commit(
        sha=node["hash"],
        message=node.get("message", ""),
        author=CommitAuthor(name=name, email=email, date=node.get("date", "")),
        html_url=_html(node),
    )


def _check_from_step(step: dict) -> CheckRun:
    state = step.get("state") or {}
    status = _STEP_STATUS.get(state.get("name", ""), "queued")
    result = (state.get("result") or {}).get("name")
    return CheckRun(
        id=stable_numeric_id(step["uuid"]),
        name=step.get("name") or step["uuid"],
        status=status,
        conclusion=_STEP_RESULT.get(result) if status == "completed" else None,
    )


class BitbucketProvider(Provider):
    type = ProviderType.BITBUCKET
    capabilities = CAPABILITIES

    def __init__(
        self,
        config: ProviderConfig,
        *,
        client: httpx.AsyncClient | None = None,
        hooks: Hooks | None = None,
    ) -> None:
        self._api = BitbucketTransport(config.base_url, config.token.get_secret_value(), client=client, hooks=hooks)
        self._repo_path = f"/repositories/{config.owner}/{config.repo}"
        self._username: str | None = None

    async def aclose(self) -> None:
        await self._api.aclose()

    def _pr(self, number: int) -> str:
        return f"{self._repo_path}/pullrequests/{number}"

    async def _current_username(self) -> str:
        if self._username is None:
            node = await self._api.fetch_json("/user")
            self._username = node.get("username") or node.get("nickname") or node.get("display_name", "")
        return self._username

    async def _query_prs(self, field: str, state: StateFilter | None) -> list[PullRequest]:
        username = await self._current_username()
        params: dict = {"q": f'{field}.username="{username}"'}
        states = _STATES.get(state or "open", ["OPEN"])
        if states:
            params["state"] = states
        nodes = await self._api.fetch_all_pages(f"{self._repo_path}/pullrequests", params)
        return [_pr_from_node(node) for node in nodes]

    async def _comments_with_pr(self, number: int) -> tuple[list[dict], str]:
        comments, pr = await asyncio.gather(
            self._api.fetch_all_pages(f"{self._pr(number)}/comments"),
            self._api.fetch_json(self._pr(number)),
        )
        return [c for c in comments if not c.get("deleted")], _html(pr)

    async def _post_comment(self, pr_number: int, body: dict) -> None:
        await self._api.mutate("POST", f"{self._pr(pr_number)}/comments", body)

    async def _inline_comment(self, pr_number: int, body: str, path: str, line: int, side: str) -> None:
        anchor = "to" if side == "RIGHT" else "from"
        await self._post_comment(pr_number, {"content": {"raw": body}, "inline": {"path": path, anchor: line}})

    # -- PR reads ------------------------------------------------------------

    async def list_prs(self, params: ListPRsParams) -> PRListResult:
        query: dict = {"pagelen": params.per_page or 30, "page": params.page or 1}
        states = _STATES.get(params.state or "open", ["OPEN"])
        if states:
            query["state"] = states
        if params.sort in ("created", "updated"):
            field = f"{params.sort}_on"
            query["sort"] = field if params.direction == "asc" else f"-{field}"
        data = await self._api.fetch_json(f"{self._repo_path}/pullrequests", query)
        return PRListResult(items=[_pr_from_node(node) for node in data.get("values", [])], total_count=data.get("size"))

    async def get_pr(self, number: int) -> PullRequest:
        return _pr_from_node(await self._api.fetch_json(self._pr(number)))

    async def get_pr_files(self, number: int) -> list[FileChange]:
        nodes = await self._api.fetch_all_pages(f"{self._pr(number)}/diffstat")
        return [_file_from_diffstat(node) for node in nodes]

    async def get_pr_comments(self, number: int) -> list[Comment]:
        comments, pr_url = await self._comments_with_pr(number)
        return [_comment_from_node(c, pr_url) for c in comments if c.get("inline")]

    async def get_issue_comments(self, number: int) -> list[IssueComment]:
        comments, pr_url = await self._comments_with_pr(number)
        return [_issue_comment_from_node(c, pr_url) for c in comments if not c.get("inline")]

    async def get_pr_reviews(self, number: int) -> list[Review]:
        pr = await self._api.fetch_json(self._pr(number))
        reviews = []
        for participant in pr.get("participants", []):
            if participant.get("role") != "REVIEWER":
                continue
            user = _user_from_node(participant.get("user"))
            reviews.append(
                Review(
                    id=user.id,
                    user=user,
                    state=_REVIEW_STATES.get(participant.get("state") or "", "COMMENTED"),
                    submitted_at=participant.get("participated_on") or pr["updated_on"],
                    html_url=_html(pr),
                )
            )
        return reviews

    async def get_pr_commits(self, number: int) -> list[Commit]:
        nodes = await self._api.fetch_all_pages(f"{self._pr(number)}/commits")
        return [_commit_from_node(node) for node in nodes]

    async def get_pr_checks(self, ref: str) -> CheckRunsResponse:
        pipelines = await self._api.fetch_json(
            f"{self._repo_path}/pipelines/", {"target.branch": ref, "pagelen": 1, "sort": "-created_on"}
        )
        values = pipelines.get("values", [])
        if not values:
            return CheckRunsResponse(total_count=0)
        steps = await self._api.fetch_all_pages(f"{self._repo_path}/pipelines/{values[0]['uuid']}/steps/")
        runs = [_check_from_step(step) for step in steps]
        return CheckRunsResponse(total_count=len(runs), check_runs=runs)

    async def get_review_threads(self, pr_number: int) -> list[ReviewThread]:
        return []

    async def get_commit_diff(self, sha: str) -> list[FileChange]:
        nodes = await self._api.fetch_all_pages(f"{self._repo_path}/diffstat/{sha}")
        return [_file_from_diffstat(node) for node in nodes]

    # -- User-scoped queries -------------------------------------------------

    async def get_my_prs(self, state: StateFilter | None = None) -> list[PullRequest]:
        return await self._query_prs("author", state)

    async def get_review_requests(self, state: StateFilter | None = None) -> list[PullRequest]:
        return await self._query_prs("reviewers", state)

    async def get_involved_prs(self, state: StateFilter | None = None) -> list[PullRequest]:
        return await self._query_prs("participants", state)

    # -- Review mutations ----------------------------------------------------
    # No pending reviews on Bitbucket: approvals and comments post immediately.

    async def submit_review(self, pr_number: int, body: str, event: ReviewEvent) -> None:
        match event:
            case "APPROVE":
                await self._api.mutate("POST", f"{self._pr(pr_number)}/approve")
                if body.strip():
                    await self.add_comment(pr_number, body)
            case "REQUEST_CHANGES":
                await self.add_comment(pr_number, body if body.strip() else "Changes requested.")
            case "COMMENT":
                await self.add_comment(pr_number, body if body.strip() else "Review comment.")

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
        await self._post_comment(issue_number, {"content": {"raw": body}})

    async def add_diff_comment(self, params: AddDiffCommentParams) -> None:
        await self._inline_comment(params.pr_number, params.body, params.path, params.line, params.side)

    async def reply_to_comment(self, pr_number: int, comment_id: int, body: str) -> None:
        await self._post_comment(pr_number, {"content": {"raw": body}, "parent": {"id": comment_id}})

    # Comment URLs are nested under the PR, and these calls only carry the comment id
    async def edit_issue_comment(self, comment_id: int, body: str) -> None:
        raise BitbucketError("Bitbucket comment edits need the pull request id", status=400)

    async def edit_review_comment(self, comment_id: int, body: str) -> None:
        raise BitbucketError("Bitbucket comment edits need the pull request id", status=400)

    async def delete_review_comment(self, comment_id: int) -> None:
        raise BitbucketError("Bitbucket comment deletes need the pull request id", status=400)

    # -- PR state mutations --------------------------------------------------

    async def merge_pr(
        self,
        pr_number: int,
        method: MergeMethod,
        commit_title: str | None = None,
        commit_message: str | None = None,
    ) -> None:
        body: dict = {"merge_strategy": MERGE_STRATEGIES[method]}
        if commit_title:
            body["message"] = f"{commit_title}\n\n{commit_message}" if commit_message else commit_title
        await self._api.mutate("POST", f"{self._pr(pr_number)}/merge", body)

    async def close_pr(self, pr_number: int) -> None:
        await self._api.mutate("POST", f"{self._pr(pr_number)}/decline")

    async def reopen_pr(self, pr_number: int) -> None:
        raise BitbucketError(
            "Bitbucket does not support reopening declined pull requests. Create a new PR instead.", status=400
        )

    async def update_pr_title(self, pr_number: int, title: str) -> None:
        await self._api.mutate("PUT", self._pr(pr_number), {"title": title})

    async def update_pr_body(self, pr_number: int, body: str) -> None:
        await self._api.mutate("PUT", self._pr(pr_number), {"description": body})

    async def request_re_review(self, pr_number: int, reviewers: list[str]) -> None:
        if not reviewers:
            raise BitbucketError("At least one reviewer UUID is required", status=400)
        await self._api.mutate("PUT", self._pr(pr_number), {"reviewers": [{"uuid": uuid} for uuid in reviewers]})

    # -- Threads, drafts, labels, identity -----------------------------------

    async def resolve_thread(self, thread_id: str) -> None:
        raise BitbucketError("Bitbucket does not support thread resolution", status=400)

    async def unresolve_thread(self, thread_id: str) -> None:
        raise BitbucketError("Bitbucket does not support thread resolution", status=400)

    async def convert_to_draft(self, pr_node_id: str) -> None:
        raise BitbucketError("Bitbucket does not support draft pull requests", status=400)

    async def mark_ready_for_review(self, pr_node_id: str) -> None:
        raise BitbucketError("Bitbucket does not support draft pull requests", status=400)

    async def get_labels(self) -> list[RepoLabel]:
        raise BitbucketError("Labels are not yet supported for Bitbucket", status=501)

    async def set_labels(self, pr_number: int, labels: list[str]) -> None:
        raise BitbucketError("Labels are not yet supported for Bitbucket", status=501)

    async def get_current_user(self) -> User:
        return _user_from_node(await self._api.fetch_json("/user"))
