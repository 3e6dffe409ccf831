"""GitLab REST v4 provider. Merge requests are exposed as pull requests."""

import asyncio
import logging
from urllib.parse import quote

import httpx

from revu.errors import GitLabError
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
from revu.providers.ids import (
    add_draft_prefix,
    decode_composite_id,
    encode_composite_id,
    strip_draft_prefix,
)
from revu.transport import GitLabTransport

logger = logging.getLogger(__name__)

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

_STATES = {"open": "opened", "closed": "closed", "all": "all"}
_ORDER_BY = {"created": "created_at", "updated": "updated_at", "popularity": "popularity"}

_JOB_STATUS = {
    "success": "completed",
    "failed": "completed",
    "canceled": "completed",
    "skipped": "completed",
    "running": "in_progress",
    "created": "queued",
    "pending": "queued",
    "manual": "queued",
}
_JOB_CONCLUSION = {
    "success": "success",
    "failed": "failure",
    "canceled": "cancelled",
    "skipped": "skipped",
    "manual": "action_required",
}


def encode_thread_id(iid: int, discussion_id: str) -> str:
    return encode_composite_id(iid, discussion_id)


def decode_thread_id(thread_id: str) -> tuple[int, str]:
    """Return ``(iid, discussion_id)``; malformed ids give an iid of 0."""
    return decode_composite_id(thread_id)


def _user_from_node(node: dict | None) -> User:
    if not node:
        return User(login="ghost")
    return User(
        login=node["username"],
        id=node.get("id", 0),
        avatar_url=node.get("avatar_url") or "",
        html_url=node.get("web_url") or "",
    )


def _pr_from_node(node: dict) -> PullRequest:
    state = node.get("state")
    diff_refs = node.get("diff_refs") or {}
    return PullRequest(
        id=node["id"],
        # convert_to_draft / mark_ready_for_review need both iid and current title
        node_id=f"{node['iid']}:{node['title']}",
        number=node["iid"],
        title=node["title"],
        body=node.get("description"),
        state="open" if state == "opened" else "closed",
        draft=bool(node.get("draft") or node.get("work_in_progress")),
        merged=state == "merged",
        user=_user_from_node(node.get("author")),
        labels=[Label(name=name) for name in node.get("labels", [])],
        created_at=node["created_at"],
        updated_at=node["updated_at"],
        merged_at=node.get("merged_at"),
        closed_at=node.get("closed_at"),
        html_url=node["web_url"],
        head=BranchRef(ref=node["source_branch"], sha=node.get("sha") or ""),
        base=BranchRef(ref=node["target_branch"], sha=diff_refs.get("base_sha") or ""),
        comments=node.get("user_notes_count", 0),
        requested_reviewers=[_user_from_node(u) for u in node.get("reviewers") or []],
        assignees=[_user_from_node(u) for u in node.get("assignees") or []],
        mergeable_state=node.get("detailed_merge_status") or node.get("merge_status"),
        merge_commit_sha=node.get("merge_commit_sha") or node.get("squash_commit_sha"),
    )


def _count_patch_lines(patch: str) -> tuple[int, int]:
    additions = deletions = 0
    for line in patch.splitlines():
        if line.startswith("+") and not line.startswith("+++"):
            additions += 1
        elif line.startswith("-") and not line.startswith("---"):
            deletions += 1
    return additions, deletions


def _file_from_diff(node: dict) -> FileChange:
    if node.get("new_file"):
        status = "added"
    elif node.get("deleted_file"):
        status = "removed"
    elif node.get("renamed_file"):
        status = "renamed"
    else:
        status = "modified"
    patch = node.get("diff") or ""
    additions, deletions = _count_patch_lines(patch)
    return FileChange(
        filename=node["new_path"],
        status=status,
        additions=additions,
        deletions=deletions,
        changes=additions + deletions,
        patch=patch,
        previous_filename=node.get("old_path") if status == "renamed" else None,
    )


def _comment_from_note(note: dict, mr_url: str) -> Comment:
    position = note.get("position") or {}
    new_line = position.get("new_line")
    side: DiffSide | None = None
    if position:
        side = "RIGHT" if new_line is not None else "LEFT"
    return Comment(
        id=note["id"],
        node_id=str(note["id"]),
        body=note["body"],
        user=_user_from_node(note.get("author")),
        created_at=note["created_at"],
        updated_at=note["updated_at"],
        html_url=f"{mr_url}#note_{note['id']}",
        path=position.get("new_path"),
        line=new_line if new_line is not None else position.get("old_line"),
        side=side,
    )


def _issue_comment_from_note(note: dict, mr_url: str) -> IssueComment:
    return IssueComment(
        id=note["id"],
        node_id=str(note["id"]),
        body=note["body"],
        user=_user_from_node(note.get("author")),
        created_at=note["created_at"],
        updated_at=note["updated_at"],
        html_url=f"{mr_url}#note_{note['id']}",
    )


def _commit_from_node(node: dict) -> Commit:
    return Commit(
        sha=node["id"],
        message=node["message"],
        author=CommitAuthor(
            name=node.get("author_name", ""),
            email=node.get("author_email", ""),
            date=node.get("authored_date", ""),
        ),
        html_url=node.get("web_url", ""),
    )


def _check_from_job(job: dict) -> CheckRun:
    status = job.get("status", "")
    conclusion = _JOB_CONCLUSION.get(status)
    if status == "failed" and job.get("allow_failure"):
        conclusion = "neutral"
    return CheckRun(
        id=job["id"],
        name=f"{job.get('stage', '')} / {job['name']}",
        status=_JOB_STATUS.get(status, "queued"),
        conclusion=conclusion,
        html_url=job.get("web_url"),
        details_url=job.get("web_url"),
    )


def _parse_draft_node_id(pr_node_id: str) -> tuple[int, str]:
    iid_text, sep, title = pr_node_id.partition(":")
    if not sep:
        raise GitLabError('Invalid GitLab draft identifier: expected "iid:title"', status=400)
    try:
        return int(iid_text), title
    except ValueError:
        raise GitLabError("Invalid GitLab draft identifier: iid is not a number", status=400) from None


class GitLabProvider(Provider):
    type = ProviderType.GITLAB
    capabilities = CAPABILITIES

    def __init__(
        self,
        config: ProviderConfig,
        *,
        client: httpx.AsyncClient | None = None,
        hooks: Hooks | None = None,
    ) -> None:
        self._api = GitLabTransport(config.base_url, config.token.get_secret_value(), client=client, hooks=hooks)
        self._project = f"/projects/{quote(f'{config.owner}/{config.repo}', safe='')}"
        self._username: str | None = None

    async def aclose(self) -> None:
        await self._api.aclose()

    def _mr(self, iid: int) -> str:
        return f"{self._project}/merge_requests/{iid}"

    async def _current_username(self) -> str:
        if self._username is None:
            node = await self._api.fetch_json("/user")
            self._username = node["username"]
        return self._username

    async def _list_mrs(self, state: StateFilter | None, **filters: str) -> list[PullRequest]:
        nodes = await self._api.fetch_all_pages(
            f"{self._project}/merge_requests", {**filters, "state": _STATES.get(state or "open", "opened")}
        )
        return [_pr_from_node(node) for node in nodes]

    async def _note(self, pr_number: int, body: str) -> None:
        await self._api.mutate("POST", f"{self._mr(pr_number)}/notes", {"body": body})

    async def _diff_note(self, pr_number: int, body: str, path: str, line: int, side: DiffSide, head_sha: str) -> None:
        # GitLab anchors a diff note on the MR's current diff_refs
        mr = await self._api.fetch_json(self._mr(pr_number))
        refs = mr.get("diff_refs") or {}
        position = {
            "position_type": "text",
            "base_sha": refs.get("base_sha"),
            "head_sha": head_sha or refs.get("head_sha"),
            "start_sha": refs.get("start_sha"),
            "new_path": path,
            "old_path": path,
            "new_line" if side == "RIGHT" else "old_line": line,
        }
        await self._api.mutate("POST", f"{self._mr(pr_number)}/discussions", {"body": body, "position": position})

    # -- PR reads ------------------------------------------------------------

    async def list_prs(self, params: ListPRsParams) -> PRListResult:
        query: dict = {
            "state": _STATES.get(params.state or "open", "opened"),
            "per_page": params.per_page or 30,
            "page": params.page or 1,
        }
        if params.sort in _ORDER_BY:
            query["order_by"] = _ORDER_BY[params.sort]
        if params.direction:
            query["sort"] = params.direction
        nodes, headers = await self._api.fetch_page(f"{self._project}/merge_requests", query)
        total = headers.get("x-total")
        return PRListResult(
            items=[_pr_from_node(node) for node in nodes],
            total_count=int(total) if total and total.isdigit() else None,
        )

    async def get_pr(self, number: int) -> PullRequest:
        return _pr_from_node(await self._api.fetch_json(self._mr(number)))

    async def get_pr_files(self, number: int) -> list[FileChange]:
        diffs = await self._api.fetch_all_pages(f"{self._mr(number)}/diffs")
        return [_file_from_diff(d) for d in diffs]

    async def get_pr_comments(self, number: int) -> list[Comment]:
        notes = await self._api.fetch_all_pages(f"{self._mr(number)}/notes")
        mr = await self._api.fetch_json(self._mr(number))
        return [
            _comment_from_note(note, mr["web_url"]) for note in notes if not note.get("system") and note.get("position")
        ]

    async def get_issue_comments(self, number: int) -> list[IssueComment]:
        notes = await self._api.fetch_all_pages(f"{self._mr(number)}/notes")
        mr = await self._api.fetch_json(self._mr(number))
        return [
            _issue_comment_from_note(note, mr["web_url"])
            for note in notes
            if not note.get("system") and not note.get("position")
        ]

    async def get_pr_reviews(self, number: int) -> list[Review]:
        # GitLab has approvals, not reviews: each approver becomes an APPROVED review
        approvals = await self._api.fetch_json(f"{self._mr(number)}/approvals")
        mr = await self._api.fetch_json(self._mr(number))
        reviews = []
        for entry in approvals.get("approved_by", []):
            user = _user_from_node(entry["user"])
            reviews.append(
                Review(id=user.id, user=user, state="APPROVED", submitted_at=mr["updated_at"], html_url=mr["web_url"])
            )
        return reviews

    async def get_pr_commits(self, number: int) -> list[Commit]:
        nodes = await self._api.fetch_all_pages(f"{self._mr(number)}/commits")
        return [_commit_from_node(node) for node in nodes]

    async def get_pr_checks(self, ref: str) -> CheckRunsResponse:
        pipelines = await self._api.fetch_json(f"{self._project}/pipelines", {"sha": ref, "per_page": 1})
        if not pipelines:
            return CheckRunsResponse(total_count=0)
        jobs = await self._api.fetch_all_pages(f"{self._project}/pipelines/{pipelines[0]['id']}/jobs")
        runs = [_check_from_job(job) for job in jobs]
        return CheckRunsResponse(total_count=len(runs), check_runs=runs)

    async def get_review_threads(self, pr_number: int) -> list[ReviewThread]:
        discussions = await self._api.fetch_all_pages(f"{self._mr(pr_number)}/discussions")
        threads = []
        for discussion in discussions:
            notes = discussion.get("notes") or []
            if discussion.get("individual_note") or not notes:
                continue
            first = notes[0]
            if first.get("system") or not first.get("resolvable"):
                continue
            threads.append(
                ReviewThread(
                    id=encode_thread_id(pr_number, discussion["id"]),
                    is_resolved=bool(first.get("resolved")),
                    comment_ids=[note["id"] for note in notes],
                )
            )
        return threads

    async def get_commit_diff(self, sha: str) -> list[FileChange]:
        diffs = await self._api.fetch_json(f"{self._project}/repository/commits/{quote(sha, safe='')}/diff")
        return [_file_from_diff(d) for d in diffs]

    # -- User-scoped queries -------------------------------------------------

    async def get_my_prs(self, state: StateFilter | None = None) -> list[PullRequest]:
        username = await self._current_username()
        return await self._list_mrs(state, author_username=username)

    async def get_review_requests(self, state: StateFilter | None = None) -> list[PullRequest]:
        username = await self._current_username()
        return await self._list_mrs(state, reviewer_username=username)

    async def get_involved_prs(self, state: StateFilter | None = None) -> list[PullRequest]:
        username = await self._current_username()
        results = await asyncio.gather(
            self._list_mrs(state, author_username=username),
            self._list_mrs(state, reviewer_username=username),
            self._list_mrs(state, assignee_username=username),
        )
        merged: dict[int, PullRequest] = {}
        for prs in results:
            for pr in prs:
                merged.setdefault(pr.number, pr)
        return list(merged.values())

    # -- Review mutations ----------------------------------------------------
    # GitLab has no pending reviews: every call below submits immediately.

    async def submit_review(self, pr_number: int, body: str, event: ReviewEvent) -> None:
        match event:
            case "APPROVE":
                await self._api.mutate("POST", f"{self._mr(pr_number)}/approve")
                if body.strip():
                    await self._note(pr_number, body)
            case "REQUEST_CHANGES":
                await self._note(pr_number, body if body.strip() else "Changes requested.")
            case "COMMENT":
                await self._note(pr_number, body if body.strip() else "Review comment.")

    async def create_pending_review(self, pr_number: int) -> int:
        return 0

    async def add_pending_review_comment(self, params: AddPendingReviewCommentParams) -> None:
        await self._diff_note(params.pr_number, params.body, params.path, params.line, params.side, "")

    async def submit_pending_review(self, pr_number: int, review_id: int, body: str, event: ReviewEvent) -> None:
        if event == "COMMENT" and not body.strip():
            return
        await self.submit_review(pr_number, body, event)

    async def discard_pending_review(self, pr_number: int, review_id: int) -> None:
        return None

    # -- Comment mutations ---------------------------------------------------

    async def add_comment(self, issue_number: int, body: str) -> None:
        await self._note(issue_number, body)

    async def add_diff_comment(self, params: AddDiffCommentParams) -> None:
        await self._diff_note(params.pr_number, params.body, params.path, params.line, params.side, params.commit_id)

    async def reply_to_comment(self, pr_number: int, comment_id: int, body: str) -> None:
        await self._api.mutate("POST", f"{self._mr(pr_number)}/discussions/{comment_id}/notes", {"body": body})

    # Note URLs are nested under the MR, and these calls only carry the note id
    async def edit_issue_comment(self, comment_id: int, body: str) -> None:
        raise GitLabError("GitLab comment edits need the merge request id", status=400)

    async def edit_review_comment(self, comment_id: int, body: str) -> None:
        raise GitLabError("GitLab comment edits need the merge request id", status=400)

    async def delete_review_comment(self, comment_id: int) -> None:
        raise GitLabError("GitLab comment deletes need the merge request id", status=400)

    # -- PR state mutations --------------------------------------------------

    async def merge_pr(
        self,
        pr_number: int,
        method: MergeMethod,
        commit_title: str | None = None,
        commit_message: str | None = None,
    ) -> None:
        squash = method == "squash"
        body: dict = {"squash": squash}
        if commit_title:
            message = f"{commit_title}\n\n{commit_message}" if commit_message else commit_title
            body["squash_commit_message" if squash else "merge_commit_message"] = message
        await self._api.mutate("PUT", f"{self._mr(pr_number)}/merge", body)

    async def close_pr(self, pr_number: int) -> None:
        await self._api.mutate("PUT", self._mr(pr_number), {"state_event": "close"})

    async def reopen_pr(self, pr_number: int) -> None:
        await self._api.mutate("PUT", self._mr(pr_number), {"state_event": "reopen"})

    async def update_pr_title(self, pr_number: int, title: str) -> None:
        await self._api.mutate("PUT", self._mr(pr_number), {"title": title})

    async def update_pr_body(self, pr_number: int, body: str) -> None:
        await self._api.mutate("PUT", self._mr(pr_number), {"description": body})

    async def request_re_review(self, pr_number: int, reviewers: list[str]) -> None:
        reviewer_ids = [int(r) for r in reviewers if r.strip().isdigit() and int(r) > 0]
        if len(reviewer_ids) < len(reviewers):
            logger.debug("Dropping non-numeric GitLab reviewers from %s", reviewers)
        if not reviewer_ids:
            raise GitLabError("GitLab requires numeric user IDs for reviewers", status=400)
        await self._api.mutate("PUT", self._mr(pr_number), {"reviewer_ids": reviewer_ids})

    # -- Threads, drafts, labels, identity -----------------------------------

    async def resolve_thread(self, thread_id: str) -> None:
        iid, discussion_id = decode_thread_id(thread_id)
        await self._api.mutate("PUT", f"{self._mr(iid)}/discussions/{discussion_id}", {"resolved": True})

    async def unresolve_thread(self, thread_id: str) -> None:
        iid, discussion_id = decode_thread_id(thread_id)
        await self._api.mutate("PUT", f"{self._mr(iid)}/discussions/{discussion_id}", {"resolved": False})

    async def convert_to_draft(self, pr_node_id: str) -> None:
        iid, title = _parse_draft_node_id(pr_node_id)
        await self._api.mutate("PUT", self._mr(iid), {"title": add_draft_prefix(title)})

    async def mark_ready_for_review(self, pr_node_id: str) -> None:
        iid, title = _parse_draft_node_id(pr_node_id)
        await self._api.mutate("PUT", self._mr(iid), {"title": strip_draft_prefix(title)})

    async def get_labels(self) -> list[RepoLabel]:
        nodes = await self._api.fetch_all_pages(f"{self._project}/labels")
        return [
            RepoLabel(name=n["name"], color=(n.get("color") or "").lstrip("#"), description=n.get("description"))
            for n in nodes
        ]

    async def set_labels(self, pr_number: int, labels: list[str]) -> None:
        await self._api.mutate("PUT", self._mr(pr_number), {"labels": ",".join(labels)})

    async def get_current_user(self) -> User:
        node = await self._api.fetch_json("/user")
        return _user_from_node(node)
