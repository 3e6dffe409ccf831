"""Azure DevOps Services provider.

The configured ``owner`` is ``"organization/project"``. A bare organization
name doubles as the project name.
"""

import asyncio
import logging
import re

import httpx

from revu.errors import AzureError
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
from revu.providers.ids import decode_numeric_composite_id, encode_composite_id, stable_numeric_id
from revu.transport import AzureTransport

logger = logging.getLogger(__name__)

CAPABILITIES = ProviderCapabilities(
    supports_draft_pr=True,
    supports_review_threads=True,
    supports_check_runs=True,
    supports_merge_strategies=("merge", "squash", "rebase"),
)

_STATUSES = {"open": "active", "closed": "completed", "all": "all"}
# completionOptions.mergeStrategy: 1 noFastForward, 2 rebase, 3 squash
MERGE_STRATEGIES: dict[str, int] = {"merge": 1, "squash": 3, "rebase": 2}
VOTE_APPROVE = 10
VOTE_WAITING = -5
_THREAD_ACTIVE = 1
_THREAD_FIXED = 2
_RESOLVED_THREAD_STATUSES = {"fixed", "closed", "wontFix", "byDesign"}
_CHANGE_TYPES = {
    "add": "added",
    "1": "added",
    "delete": "removed",
    "16": "removed",
    "rename": "renamed",
    "8": "renamed",
    "edit, rename": "renamed",
    "10": "renamed",
}
_BUILD_STATUS = {"completed": "completed", "inProgress": "in_progress"}
_BUILD_RESULT = {
    "succeeded": "success",
    "partiallySucceeded": "neutral",
    "failed": "failure",
    "canceled": "cancelled",
}
_PR_ID = re.compile(r"^\s*(\d+)")


def parse_azure_owner(owner: str) -> tuple[str, str]:
    """Split ``"org/project"``; the first ``/`` separates the two."""
    org, sep, project = owner.partition("/")
    if not sep:
        return owner, owner
    return org, project


def _strip_heads(ref: str) -> str:
    return ref.removeprefix("refs/heads/")


def _user_from_identity(identity: dict | None) -> User:
    if not identity:
        return User(login="ghost")
    return User(
        login=identity.get("uniqueName") or identity.get("displayName", ""),
        id=stable_numeric_id(identity.get("id", "")),
        avatar_url=identity.get("imageUrl") or "",
    )


def _review_state(vote: int) -> str:
    if vote >= 10 or vote == 5:
        return "APPROVED"
    if vote <= -10 or vote == -5:
        return "CHANGES_REQUESTED"
    return "COMMENTED"


def _pr_from_node(node: dict, pr_url: str) -> PullRequest:
    status = node.get("status")
    merged = status == "completed"
    closed = status != "active"
    finished = node.get("closedDate") or node["creationDate"]
    reviewers = node.get("reviewers") or []
    return PullRequest(
        id=node["pullRequestId"],
        node_id=str(node["pullRequestId"]),
        number=node["pullRequestId"],
        title=node["title"],
        body=node.get("description") or None,
        state="closed" if closed else "open",
        draft=bool(node.get("isDraft")),
        merged=merged,
        user=_user_from_identity(node.get("createdBy")),
        labels=[
            Label(id=stable_numeric_id(label.get("id") or str(index)), name=label["name"])
            for index, label in enumerate(node.get("labels") or [])
        ],
        created_at=node["creationDate"],
        updated_at=finished,
        merged_at=finished if merged else None,
        closed_at=finished if closed and not merged else None,
        html_url=pr_url,
        head=BranchRef(
            ref=_strip_heads(node.get("sourceRefName", "")),
            sha=(node.get("lastMergeSourceCommit") or {}).get("commitId", ""),
        ),
        base=BranchRef(
            ref=_strip_heads(node.get("targetRefName", "")),
            sha=(node.get("lastMergeTargetCommit") or {}).get("commitId", ""),
        ),
        requested_reviewers=[_user_from_identity(r) for r in reviewers if r.get("vote", 0) == 0],
        mergeable_state=node.get("mergeStatus"),
        merge_commit_sha=(node.get("lastMergeCommit") or {}).get("commitId"),
    )


def _file_from_change(change: dict) -> FileChange:
    status = _CHANGE_TYPES.get(str(change.get("changeType", "")).lower(), "modified")
    original = change.get("originalPath")
    return FileChange(
        filename=((change.get("item") or {}).get("path") or "").removeprefix("/"),
        status=status,
        previous_filename=original.removeprefix("/") if status == "renamed" and original else None,
    )


def _is_system(comment: dict) -> bool:
    return comment.get("commentType") == "system"


def _is_live_thread(thread: dict) -> bool:
    if thread.get("isDeleted"):
        return False
    return any(c.get("commentType") not in ("system", "codeChange") for c in thread.get("comments", []))


def _comment_from_node(comment: dict, thread: dict, pr_url: str) -> Comment:
    context = thread.get("threadContext") or {}
    right = context.get("rightFileStart")
    left = context.get("leftFileStart")
    parent = comment.get("parentCommentId") or 0
    published = comment.get("publishedDate", "")
    return Comment(
        id=comment["id"],
        node_id=encode_composite_id(thread["id"], comment["id"]),
        body=comment.get("content", ""),
        user=_user_from_identity(comment.get("author")),
        created_at=published,
        updated_at=comment.get("lastUpdatedDate") or published,
        html_url=f"{pr_url}?_a=files&discussionId={thread['id']}",
        path=context.get("filePath"),
        line=(right or left or {}).get("line"),
        side="RIGHT" if right else "LEFT",
        in_reply_to_id=parent if parent > 0 else None,
    )


def _issue_comment_from_node(comment: dict, thread: dict, pr_url: str) -> IssueComment:
    published = comment.get("publishedDate", "")
    return IssueComment(
        id=comment["id"],
        node_id=encode_composite_id(thread["id"], comment["id"]),
        body=comment.get("content", ""),
        user=_user_from_identity(comment.get("author")),
        created_at=published,
        updated_at=comment.get("lastUpdatedDate") or published,
        html_url=f"{pr_url}?_a=overview&discussionId={thread['id']}",
    )


def _commit_from_node(node: dict) -> Commit:
    author = node.get("author") or {}
    return Commit(
        sha=node["commitId"],
        message=node.get("comment", ""),
        author=CommitAuthor(name=author.get("name", ""), email=author.get("email", ""), date=author.get("date", "")),
        html_url=node.get("remoteUrl") or "",
    )


def _check_from_build(build: dict) -> CheckRun:
    status = _BUILD_STATUS.get(build.get("status", ""), "queued")
    conclusion = _BUILD_RESULT.get(build.get("result") or "") if status == "completed" else None
    return CheckRun(
        id=build["id"],
        name=(build.get("definition") or {}).get("name") or build.get("buildNumber") or str(build["id"]),
        status=status,
        conclusion=conclusion,
        html_url=((build.get("_links") or {}).get("web") or {}).get("href"),
        details_url=build.get("url"),
    )


def _thread_context(path: str, line: int, side: DiffSide) -> dict:
    position = {"line": line, "offset": 1}
    prefix = "right" if side == "RIGHT" else "left"
    return {"filePath": f"/{path}", f"{prefix}FileStart": position, f"{prefix}FileEnd": position}


def _parse_pr_id(pr_node_id: str) -> int:
    match = _PR_ID.match(pr_node_id)
    if not match:
        raise AzureError("Invalid Azure DevOps PR identifier", status=400)
    return int(match.group(1))


class AzureProvider(Provider):
    type = ProviderType.AZURE
    capabilities = CAPABILITIES

    def __init__(
        self,
        config: ProviderConfig,
        *,
        client: httpx.AsyncClient | None = None,
        hooks: Hooks | None = None,
    ) -> None:
        self._api = AzureTransport(config.base_url, config.token.get_secret_value(), client=client, hooks=hooks)
        self._org, self._project = parse_azure_owner(config.owner)
        self._repo = config.repo
        self._repo_path = f"/{self._org}/{self._project}/_apis/git/repositories/{config.repo}"
        self._web_base = config.base_url.rstrip("/")
        self._identity: tuple[str, str] | None = None

    async def aclose(self) -> None:
        await self._api.aclose()

    def _pr(self, number: int) -> str:
        return f"{self._repo_path}/pullrequests/{number}"

    def _pr_url(self, number: int) -> str:
        return f"{self._web_base}/{self._org}/{self._project}/_git/{self._repo}/pullrequest/{number}"

    def _map_pr(self, node: dict) -> PullRequest:
        return _pr_from_node(node, self._pr_url(node["pullRequestId"]))

    async def _current_identity(self) -> tuple[str, str]:
        """(id, display name) of the token owner, fetched once."""
        if self._identity is None:
            data = await self._api.fetch_json(f"/{self._org}/_apis/connectionData")
            user = data["authenticatedUser"]
            self._identity = (user["id"], user.get("providerDisplayName", ""))
        return self._identity

    async def _search_prs(self, state: StateFilter | None, **criteria: str) -> list[PullRequest]:
        params = {"searchCriteria.status": _STATUSES.get(state or "open", "active")}
        params.update({f"searchCriteria.{key}": value for key, value in criteria.items()})
        nodes = await self._api.fetch_all_pages(f"{self._repo_path}/pullrequests", params)
        return [self._map_pr(node) for node in nodes]

    async def _threads(self, number: int) -> list[dict]:
        threads = await self._api.fetch_all_pages(f"{self._pr(number)}/threads")
        return [thread for thread in threads if _is_live_thread(thread)]

    async def _vote(self, pr_number: int, vote: int) -> None:
        user_id, _ = await self._current_identity()
        await self._api.mutate("PUT", f"{self._pr(pr_number)}/reviewers/{user_id}", {"vote": vote})

    async def _create_thread(self, pr_number: int, body: str, context: dict | None = None) -> None:
        thread: dict = {
            "comments": [{"parentCommentId": 0, "content": body, "commentType": 1}],
            "status": _THREAD_ACTIVE,
        }
        if context:
            thread["threadContext"] = context
        await self._api.mutate("POST", f"{self._pr(pr_number)}/threads", thread)

    async def _set_thread_status(self, thread_id: str, status: int) -> None:
        pr_number, thread = decode_numeric_composite_id(thread_id)
        await self._api.mutate("PATCH", f"{self._pr(pr_number)}/threads/{thread}", {"status": status})

    # -- PR reads ------------------------------------------------------------

    async def list_prs(self, params: ListPRsParams) -> PRListResult:
        query: dict = {"searchCriteria.status": _STATUSES.get(params.state or "open", "active")}
        if params.per_page:
            query["$top"] = params.per_page
            if params.page:
                query["$skip"] = (params.page - 1) * params.per_page
        data = await self._api.fetch_json(f"{self._repo_path}/pullrequests", query)
        return PRListResult(items=[self._map_pr(node) for node in data.get("value", [])])

    async def get_pr(self, number: int) -> PullRequest:
        return self._map_pr(await self._api.fetch_json(self._pr(number)))

    async def get_pr_files(self, number: int) -> list[FileChange]:
        iterations = (await self._api.fetch_json(f"{self._pr(number)}/iterations")).get("value", [])
        if not iterations:
            return []
        latest = iterations[-1]["id"]
        data = await self._api.fetch_json(f"{self._pr(number)}/iterations/{latest}/changes")
        return [_file_from_change(change) for change in data.get("changeEntries", [])]

    async def get_pr_comments(self, number: int) -> list[Comment]:
        pr_url = self._pr_url(number)
        return [
            _comment_from_node(comment, thread, pr_url)
            for thread in await self._threads(number)
            if thread.get("threadContext")
            for comment in thread.get("comments", [])
            if not _is_system(comment)
        ]

    async def get_issue_comments(self, number: int) -> list[IssueComment]:
        pr_url = self._pr_url(number)
        return [
            _issue_comment_from_node(comment, thread, pr_url)
            for thread in await self._threads(number)
            if not thread.get("threadContext")
            for comment in thread.get("comments", [])
            if not _is_system(comment)
        ]

    async def get_pr_reviews(self, number: int) -> list[Review]:
        node = await self._api.fetch_json(self._pr(number))
        submitted = node.get("closedDate") or node["creationDate"]
        reviews = []
        for reviewer in node.get("reviewers") or []:
            if not reviewer.get("vote"):
                continue
            user = _user_from_identity(reviewer)
            reviews.append(
                Review(
                    id=user.id,
                    user=user,
                    state=_review_state(reviewer["vote"]),
                    submitted_at=submitted,
                    html_url=self._pr_url(number),
                )
            )
        return reviews

    async def get_pr_commits(self, number: int) -> list[Commit]:
        nodes = await self._api.fetch_all_pages(f"{self._pr(number)}/commits")
        return [_commit_from_node(node) for node in nodes]

    async def get_pr_checks(self, ref: str) -> CheckRunsResponse:
        branch = ref if ref.startswith("refs/heads/") else f"refs/heads/{ref}"
        data = await self._api.fetch_json(
            f"/{self._org}/{self._project}/_apis/build/builds",
            {"branchName": branch, "$top": 50, "queryOrder": "finishTimeDescending"},
        )
        runs = [_check_from_build(build) for build in data.get("value", [])]
        return CheckRunsResponse(total_count=len(runs), check_runs=runs)

    async def get_review_threads(self, pr_number: int) -> list[ReviewThread]:
        return [
            ReviewThread(
                id=encode_composite_id(pr_number, thread["id"]),
                is_resolved=thread.get("status") in _RESOLVED_THREAD_STATUSES,
                comment_ids=[c["id"] for c in thread.get("comments", []) if not _is_system(c)],
            )
            for thread in await self._threads(pr_number)
            if thread.get("threadContext")
        ]

    async def get_commit_diff(self, sha: str) -> list[FileChange]:
        data = await self._api.fetch_json(f"{self._repo_path}/commits/{sha}/changes")
        return [
            _file_from_change(
                {
                    "changeType": change.get("changeType"),
                    "item": change.get("item"),
                    "originalPath": change.get("sourceServerItem"),
                }
            )
            for change in data.get("changes", [])
        ]

    # -- User-scoped queries -------------------------------------------------

    async def get_my_prs(self, state: StateFilter | None = None) -> list[PullRequest]:
        user_id, _ = await self._current_identity()
        return await self._search_prs(state, creatorId=user_id)

    async def get_review_requests(self, state: StateFilter | None = None) -> list[PullRequest]:
        user_id, _ = await self._current_identity()
        return await self._search_prs(state, reviewerId=user_id)

    async def get_involved_prs(self, state: StateFilter | None = None) -> list[PullRequest]:
        user_id, _ = await self._current_identity()
        results = await asyncio.gather(
            self._search_prs(state, creatorId=user_id),
            self._search_prs(state, reviewerId=user_id),
        )
        merged: dict[int, PullRequest] = {}
        for prs in results:
            for pr in prs:
                merged.setdefault(pr.number, pr)
        return list(merged.values())

    # -- Review mutations ----------------------------------------------------
    # Votes and threads take effect immediately; pending reviews are emulated.

    async def submit_review(self, pr_number: int, body: str, event: ReviewEvent) -> None:
        match event:
            case "APPROVE":
                await self._vote(pr_number, VOTE_APPROVE)
                if body.strip():
                    await self._create_thread(pr_number, body)
            case "REQUEST_CHANGES":
                await self._vote(pr_number, VOTE_WAITING)
                await self._create_thread(pr_number, body if body.strip() else "Changes requested.")
            case "COMMENT":
                await self._create_thread(pr_number, body if body.strip() else "Review comment.")

    async def create_pending_review(self, pr_number: int) -> int:
        return 0

    async def add_pending_review_comment(self, params: AddPendingReviewCommentParams) -> None:
        await self._create_thread(params.pr_number, params.body, _thread_context(params.path, params.line, params.side))

    async def submit_pending_review(self, pr_number: int, review_id: int, body: str, event: ReviewEvent) -> None:
        if event == "APPROVE":
            await self._vote(pr_number, VOTE_APPROVE)
        elif event == "REQUEST_CHANGES":
            await self._vote(pr_number, VOTE_WAITING)
        if body.strip():
            await self._create_thread(pr_number, body)

    async def discard_pending_review(self, pr_number: int, review_id: int) -> None:
        return None

    # -- Comment mutations ---------------------------------------------------

    async def add_comment(self, issue_number: int, body: str) -> None:
        await self._create_thread(issue_number, body)

    async def add_diff_comment(self, params: AddDiffCommentParams) -> None:
        await self._create_thread(params.pr_number, params.body, _thread_context(params.path, params.line, params.side))

    async def reply_to_comment(self, pr_number: int, comment_id: int, body: str) -> None:
        # comment_id is the thread id here
        await self._api.mutate(
            "POST",
            f"{self._pr(pr_number)}/threads/{comment_id}/comments",
            {"content": body, "parentCommentId": 0, "commentType": 1},
        )

    # Comment URLs are nested under the PR and thread, and these calls only carry the comment id
    async def edit_issue_comment(self, comment_id: int, body: str) -> None:
        raise AzureError("Azure DevOps comment edits need the pull request and thread ids", status=400)

    async def edit_review_comment(self, comment_id: int, body: str) -> None:
        raise AzureError("Azure DevOps comment edits need the pull request and thread ids", status=400)

    async def delete_review_comment(self, comment_id: int) -> None:
        raise AzureError("Azure DevOps comment deletes need the pull request and thread ids", status=400)

    # -- PR state mutations --------------------------------------------------

    async def merge_pr(
        self,
        pr_number: int,
        method: MergeMethod,
        commit_title: str | None = None,
        commit_message: str | None = None,
    ) -> None:
        options: dict = {"mergeStrategy": MERGE_STRATEGIES[method], "deleteSourceBranch": False}
        if commit_title:
            options["mergeCommitMessage"] = f"{commit_title}\n\n{commit_message}" if commit_message else commit_title
        await self._api.mutate("PATCH", self._pr(pr_number), {"status": "completed", "completionOptions": options})

    async def close_pr(self, pr_number: int) -> None:
        await self._api.mutate("PATCH", self._pr(pr_number), {"status": "abandoned"})

    async def reopen_pr(self, pr_number: int) -> None:
        await self._api.mutate("PATCH", self._pr(pr_number), {"status": "active"})

    async def update_pr_title(self, pr_number: int, title: str) -> None:
        await self._api.mutate("PATCH", self._pr(pr_number), {"title": title})

    async def update_pr_body(self, pr_number: int, body: str) -> None:
        await self._api.mutate("PATCH", self._pr(pr_number), {"description": body})

    async def request_re_review(self, pr_number: int, reviewers: list[str]) -> None:
        if not reviewers:
            raise AzureError("At least one reviewer ID is required", status=400)
        logger.debug("Re-requesting review on PR %d from %d reviewers", pr_number, len(reviewers))
        await asyncio.gather(
            *(
                self._api.mutate("PUT", f"{self._pr(pr_number)}/reviewers/{reviewer}", {"vote": 0})
                for reviewer in reviewers
            )
        )

    # -- Threads, drafts, labels, identity -----------------------------------

    async def resolve_thread(self, thread_id: str) -> None:
        await self._set_thread_status(thread_id, _THREAD_FIXED)

    async def unresolve_thread(self, thread_id: str) -> None:
        await self._set_thread_status(thread_id, _THREAD_ACTIVE)

    async def convert_to_draft(self, pr_node_id: str) -> None:
        await self._api.mutate("PATCH", self._pr(_parse_pr_id(pr_node_id)), {"isDraft": True})

    async def mark_ready_for_review(self, pr_node_id: str) -> None:
        await self._api.mutate("PATCH", self._pr(_parse_pr_id(pr_node_id)), {"isDraft": False})

    async def get_labels(self) -> list[RepoLabel]:
        raise AzureError("Labels are not yet supported for Azure DevOps", status=501)

    async def set_labels(self, pr_number: int, labels: list[str]) -> None:
        raise AzureError("Labels are not yet supported for Azure DevOps", status=501)

    async def get_current_user(self) -> User:
        _, display_name = await self._current_identity()
        return User(login=display_name)
