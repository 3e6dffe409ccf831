"""Tests for BitbucketProvider using pytest-httpx."""

import pytest
from pytest_httpx import HTTPXMock

from revu.errors import BitbucketError
from revu.models import AddDiffCommentParams, AddPendingReviewCommentParams, ListPRsParams
from revu.providers.bitbucket import MERGE_STRATEGIES, BitbucketProvider
from revu.providers.ids import stable_numeric_id
from tests.conftest import api_url, sent_json

API = "https://api.bitbucket.org/2.0"
REPO = f"{API}/repositories/acme/widgets"
PRS = f"{REPO}/pullrequests"
PR_URL = "https://bitbucket.org/acme/widgets/pull-requests/5"


def _pr_node(pr_id: int = 5, **overrides) -> dict:
    node = {
        "id": pr_id,
        "title": "Add widget cache",
        "description": "",
        "state": "OPEN",
        "author": {"uuid": "{u-alice}", "nickname": "alice", "display_name": "Alice"},
        "created_on": "2024-01-01T00:00:00+00:00",
        "updated_on": "2024-01-02T00:00:00+00:00",
        "links": {"html": {"href": f"https://bitbucket.org/acme/widgets/pull-requests/{pr_id}"}},
        "source": {"branch": {"name": "feature/cache"}, "commit": {"hash": "abc123"}},
        "destination": {"branch": {"name": "main"}, "commit": {"hash": "def456"}},
        "comment_count": 2,
        "reviewers": [{"uuid": "{u-bob}", "display_name": "Bob"}],
        "participants": [],
    }
    node.update(overrides)
    return node


def _comment(comment_id: int, **overrides) -> dict:
    node = {
        "id": comment_id,
        "content": {"raw": f"comment {comment_id}"},
        "user": {"uuid": "{u-bob}", "nickname": "bob"},
        "created_on": "2024-01-03T00:00:00+00:00",
    }
    node.update(overrides)
    return node


@pytest.fixture
def provider(make_config, hooks) -> BitbucketProvider:
    return BitbucketProvider(make_config("bitbucket"), hooks=hooks)


class TestReads:
    async def test_list_prs(self, httpx_mock: HTTPXMock, provider: BitbucketProvider) -> None:
        httpx_mock.add_response(
            url=api_url(PRS, "", pagelen=30, page=1, state="OPEN"),
            json={"values": [_pr_node(5)], "size": 12},
        )

        result = await provider.list_prs(ListPRsParams())

        assert result.total_count == 12
        [pr] = result.items
        assert (pr.id, pr.number, pr.node_id) == (5, 5, "5")
        assert pr.body is None
        assert pr.user.login == "alice"
        assert pr.user.id == stable_numeric_id("{u-alice}")
        assert pr.head.sha == "abc123"
        assert pr.draft is False

    async def test_closed_filter_repeats_state(self, httpx_mock: HTTPXMock, provider: BitbucketProvider) -> None:
        httpx_mock.add_response(
            url=api_url(
                PRS, "", pagelen=10, page=2, state=["MERGED", "DECLINED", "SUPERSEDED"], sort="-updated_on"
            ),
            json={"values": [_pr_node(5, state="DECLINED")]},
        )

        result = await provider.list_prs(
            ListPRsParams(state="closed", per_page=10, page=2, sort="updated", direction="desc")
        )

        [pr] = result.items
        assert pr.state == "closed"
        assert pr.merged is False
        assert result.total_count is None

    async def test_all_states_ascending(self, httpx_mock: HTTPXMock, provider: BitbucketProvider) -> None:
        httpx_mock.add_response(
            url=api_url(PRS, "", pagelen=30, page=1, sort="created_on"),
            json={"values": [_pr_node(5, state="MERGED", merge_commit={"hash": "m1"})]},
        )

        [pr] = (await provider.list_prs(ListPRsParams(state="all", sort="created", direction="asc"))).items

        assert pr.merged is True
        assert pr.merge_commit_sha == "m1"

    async def test_files_from_diffstat(self, httpx_mock: HTTPXMock, provider: BitbucketProvider) -> None:
        httpx_mock.add_response(
            url=api_url(PRS, "/5/diffstat", pagelen=100),
            json={
                "values": [
                    {"status": "added", "new": {"path": "a.py"}, "old": None, "lines_added": 5, "lines_removed": 0},
                    {"status": "renamed", "new": {"path": "b.py"}, "old": {"path": "old.py"}},
                    {"status": "merge conflict", "new": {"path": "c.py"}, "old": {"path": "c.py"}},
                    {"status": "removed", "new": None, "old": {"path": "d.py"}, "lines_removed": 3},
                ]
            },
        )

        files = await provider.get_pr_files(5)

        assert [(f.filename, f.status) for f in files] == [
            ("a.py", "added"),
            ("b.py", "renamed"),
            ("c.py", "modified"),
            ("d.py", "removed"),
        ]
        assert files[1].previous_filename == "old.py"
        assert files[3].deletions == 3

    async def test_comments_split_inline_and_general(
        self, httpx_mock: HTTPXMock, provider: BitbucketProvider
    ) -> None:
        httpx_mock.add_response(
            url=api_url(PRS, "/5/comments", pagelen=100),
            json={
                "values": [
                    _comment(1),
                    _comment(2, inline={"path": "a.py", "to": 10, "from": None}),
                    _comment(3, inline={"path": "a.py", "to": None, "from": 4}, parent={"id": 2}),
                    _comment(4, deleted=True),
                ]
            },
            is_reusable=True,
        )
        httpx_mock.add_response(url=f"{PRS}/5", json=_pr_node(5), is_reusable=True)

        comments = await provider.get_pr_comments(5)
        general = await provider.get_issue_comments(5)

        assert [(c.id, c.line, c.side) for c in comments] == [(2, 10, "RIGHT"), (3, 4, "LEFT")]
        assert comments[1].in_reply_to_id == 2
        assert comments[0].html_url == f"{PR_URL}#comment-2"
        assert [c.id for c in general] == [1]
        assert general[0].updated_at == "2024-01-03T00:00:00+00:00"

    async def test_reviews_from_reviewer_participants(
        self, httpx_mock: HTTPXMock, provider: BitbucketProvider
    ) -> None:
        participants = [
            {"role": "REVIEWER", "state": "approved", "user": {"uuid": "{u-bob}", "nickname": "bob"}},
            {"role": "REVIEWER", "state": None, "user": {"uuid": "{u-eve}", "nickname": "eve"}},
            {"role": "PARTICIPANT", "state": "approved", "user": {"uuid": "{u-dan}", "nickname": "dan"}},
        ]
        httpx_mock.add_response(url=f"{PRS}/5", json=_pr_node(5, participants=participants))

        reviews = await provider.get_pr_reviews(5)

        assert [(r.user.login, r.state) for r in reviews] == [("bob", "APPROVED"), ("eve", "COMMENTED")]

    async def test_commits_parse_raw_author(self, httpx_mock: HTTPXMock, provider: BitbucketProvider) -> None:
        httpx_mock.add_response(
            url=api_url(PRS, "/5/commits", pagelen=100),
            json={
                "values": [
                    {"hash": "c1", "message": "init", "date": "d", "author": {"raw": "Alice Smith <alice@example.com>"}},
                    {"hash": "c2", "message": "fix", "author": {"raw": "", "user": {"display_name": "Bob"}}},
                ]
            },
        )

        commits = await provider.get_pr_commits(5)

        assert (commits[0].author.name, commits[0].author.email) == ("Alice Smith", "alice@example.com")
        assert commits[1].author.name == "Bob"

    async def test_checks_from_pipeline_steps(self, httpx_mock: HTTPXMock, provider: BitbucketProvider) -> None:
        httpx_mock.add_response(
            url=api_url(REPO, "/pipelines/", **{"target.branch": "main", "pagelen": 1, "sort": "-created_on"}),
            json={"values": [{"uuid": "{p-1}"}]},
        )
        httpx_mock.add_response(
            url=api_url(REPO, "/pipelines/{p-1}/steps/", pagelen=100),
            json={
                "values": [
                    {"uuid": "{s-1}", "name": "test", "state": {"name": "COMPLETED", "result": {"name": "FAILED"}}},
                    {"uuid": "{s-2}", "name": "deploy", "state": {"name": "PENDING"}},
                ]
            },
        )

        result = await provider.get_pr_checks("main")

        assert result.total_count == 2
        assert [(r.name, r.status, r.conclusion) for r in result.check_runs] == [
            ("test", "completed", "failure"),
            ("deploy", "queued", None),
        ]

    async def test_checks_without_pipelines(self, httpx_mock: HTTPXMock, provider: BitbucketProvider) -> None:
        httpx_mock.add_response(
            url=api_url(REPO, "/pipelines/", **{"target.branch": "x", "pagelen": 1, "sort": "-created_on"}),
            json={"values": []},
        )

        assert (await provider.get_pr_checks("x")).total_count == 0

    async def test_no_review_threads(self, httpx_mock: HTTPXMock, provider: BitbucketProvider) -> None:
        assert await provider.get_review_threads(5) == []
        assert not httpx_mock.get_requests()


class TestUserQueries:
    async def test_my_prs_query_by_username(self, httpx_mock: HTTPXMock, provider: BitbucketProvider) -> None:
        httpx_mock.add_response(url=f"{API}/user", json={"username": "alice", "nickname": "Al"})
        httpx_mock.add_response(
            url=api_url(PRS, "", pagelen=100, q='author.username="alice"', state="OPEN"),
            json={"values": [_pr_node(5)]},
        )

        [pr] = await provider.get_my_prs()

        assert pr.number == 5

    async def test_involved_all_states_reuses_identity(
        self, httpx_mock: HTTPXMock, provider: BitbucketProvider
    ) -> None:
        httpx_mock.add_response(url=f"{API}/user", json={"nickname": "alice"})
        httpx_mock.add_response(
            url=api_url(PRS, "", pagelen=100, q='participants.username="alice"'),
            json={"values": []},
        )
        httpx_mock.add_response(
            url=api_url(PRS, "", pagelen=100, q='reviewers.username="alice"', state="OPEN"),
            json={"values": []},
        )

        assert await provider.get_involved_prs("all") == []
        assert await provider.get_review_requests() == []


class TestReviews:
    async def test_approve_then_comment(self, httpx_mock: HTTPXMock, provider: BitbucketProvider) -> None:
        httpx_mock.add_response(method="POST", url=f"{PRS}/5/approve", json={"approved": True})
        httpx_mock.add_response(method="POST", url=f"{PRS}/5/comments", status_code=201, json={"id": 1})

        await provider.submit_review(5, "LGTM", "APPROVE")

        approve, comment = httpx_mock.get_requests()
        assert approve.url.path.endswith("/approve")
        assert sent_json(comment) == {"content": {"raw": "LGTM"}}

    async def test_request_changes_default_body(self, httpx_mock: HTTPXMock, provider: BitbucketProvider) -> None:
        httpx_mock.add_response(method="POST", url=f"{PRS}/5/comments", status_code=201, json={"id": 1})

        await provider.submit_review(5, "", "REQUEST_CHANGES")

        assert sent_json(httpx_mock.get_request()) == {"content": {"raw": "Changes requested."}}

    async def test_pending_emulation(self, httpx_mock: HTTPXMock, provider: BitbucketProvider) -> None:
        assert await provider.create_pending_review(5) == 0
        await provider.submit_pending_review(5, 0, "   ", "COMMENT")
        await provider.discard_pending_review(5, 0)

        assert not httpx_mock.get_requests()

    async def test_pending_submit_with_body_posts(self, httpx_mock: HTTPXMock, provider: BitbucketProvider) -> None:
        httpx_mock.add_response(method="POST", url=f"{PRS}/5/comments", status_code=201, json={"id": 1})

        await provider.submit_pending_review(5, 0, "Summary", "COMMENT")

        assert sent_json(httpx_mock.get_request()) == {"content": {"raw": "Summary"}}

    async def test_pending_comment_posts_inline(self, httpx_mock: HTTPXMock, provider: BitbucketProvider) -> None:
        httpx_mock.add_response(method="POST", url=f"{PRS}/5/comments", status_code=201, json={"id": 1})

        await provider.add_pending_review_comment(
            AddPendingReviewCommentParams(pr_number=5, review_id=0, body="x", path="a.py", line=3, side="LEFT")
        )

        assert sent_json(httpx_mock.get_request()) == {"content": {"raw": "x"}, "inline": {"path": "a.py", "from": 3}}


class TestComments:
    async def test_diff_comment_right_side(self, httpx_mock: HTTPXMock, provider: BitbucketProvider) -> None:
        httpx_mock.add_response(method="POST", url=f"{PRS}/5/comments", status_code=201, json={"id": 1})

        await provider.add_diff_comment(
            AddDiffCommentParams(pr_number=5, body="nit", commit_id="", path="a.py", line=8, side="RIGHT")
        )

        assert sent_json(httpx_mock.get_request())["inline"] == {"path": "a.py", "to": 8}

    async def test_reply_sets_parent(self, httpx_mock: HTTPXMock, provider: BitbucketProvider) -> None:
        httpx_mock.add_response(method="POST", url=f"{PRS}/5/comments", status_code=201, json={"id": 9})

        await provider.reply_to_comment(5, 2, "thanks")

        assert sent_json(httpx_mock.get_request()) == {"content": {"raw": "thanks"}, "parent": {"id": 2}}

    @pytest.mark.parametrize(
        "call",
        [
            lambda p: p.edit_issue_comment(2, "edited"),
            lambda p: p.edit_review_comment(2, "edited"),
            lambda p: p.delete_review_comment(2),
        ],
    )
    async def test_edits_fail_without_request(self, httpx_mock: HTTPXMock, provider: BitbucketProvider, call) -> None:
        with pytest.raises(BitbucketError) as exc_info:
            await call(provider)

        assert exc_info.value.status == 400
        assert "pull request id" in exc_info.value.message
        assert not httpx_mock.get_requests()


class TestStateMutations:
    @pytest.mark.parametrize("method", ["merge", "squash", "rebase"])
    async def test_merge_strategy_table(
        self, httpx_mock: HTTPXMock, provider: BitbucketProvider, method: str
    ) -> None:
        httpx_mock.add_response(method="POST", url=f"{PRS}/5/merge", json=_pr_node(5, state="MERGED"))

        await provider.merge_pr(5, method)  # type: ignore[arg-type]

        assert sent_json(httpx_mock.get_request()) == {"merge_strategy": MERGE_STRATEGIES[method]}

    def test_strategy_values(self) -> None:
        assert MERGE_STRATEGIES == {"merge": "merge_commit", "squash": "squash", "rebase": "fast_forward"}

    async def test_merge_message(self, httpx_mock: HTTPXMock, provider: BitbucketProvider) -> None:
        httpx_mock.add_response(method="POST", url=f"{PRS}/5/merge", json=_pr_node(5, state="MERGED"))

        await provider.merge_pr(5, "squash", commit_title="Cache", commit_message="Body")

        assert sent_json(httpx_mock.get_request())["message"] == "Cache\n\nBody"

    async def test_close_declines(self, httpx_mock: HTTPXMock, provider: BitbucketProvider) -> None:
        httpx_mock.add_response(method="POST", url=f"{PRS}/5/decline", json=_pr_node(5, state="DECLINED"))

        await provider.close_pr(5)

    async def test_reopen_unsupported(self, httpx_mock: HTTPXMock, provider: BitbucketProvider) -> None:
        with pytest.raises(BitbucketError, match="reopening") as exc_info:
            await provider.reopen_pr(5)

        assert exc_info.value.status == 400
        assert not httpx_mock.get_requests()

    async def test_update_title_and_body(self, httpx_mock: HTTPXMock, provider: BitbucketProvider) -> None:
        httpx_mock.add_response(method="PUT", url=f"{PRS}/5", json=_pr_node(5), is_reusable=True)

        await provider.update_pr_title(5, "T")
        await provider.update_pr_body(5, "B")

        assert [sent_json(r) for r in httpx_mock.get_requests()] == [{"title": "T"}, {"description": "B"}]

    async def test_re_review_sends_uuids(self, httpx_mock: HTTPXMock, provider: BitbucketProvider) -> None:
        httpx_mock.add_response(method="PUT", url=f"{PRS}/5", json=_pr_node(5))

        await provider.request_re_review(5, ["{u-bob}"])

        assert sent_json(httpx_mock.get_request()) == {"reviewers": [{"uuid": "{u-bob}"}]}

    async def test_re_review_requires_reviewers(self, httpx_mock: HTTPXMock, provider: BitbucketProvider) -> None:
        with pytest.raises(BitbucketError, match="At least one reviewer UUID is required"):
            await provider.request_re_review(5, [])

        assert not httpx_mock.get_requests()


class TestUnsupportedFeatures:
    @pytest.mark.parametrize(
        ("call", "status"),
        [
            (lambda p: p.resolve_thread("1:2"), 400),
            (lambda p: p.unresolve_thread("1:2"), 400),
            (lambda p: p.convert_to_draft("5"), 400),
            (lambda p: p.mark_ready_for_review("5"), 400),
            (lambda p: p.get_labels(), 501),
            (lambda p: p.set_labels(5, ["bug"]), 501),
        ],
    )
    async def test_raises_without_request(
        self, httpx_mock: HTTPXMock, provider: BitbucketProvider, call, status: int
    ) -> None:
        with pytest.raises(BitbucketError) as exc_info:
            await call(provider)

        assert exc_info.value.status == status
        assert not httpx_mock.get_requests()

    def test_capabilities(self, provider: BitbucketProvider) -> None:
        caps = provider.capabilities
        assert caps.supports_check_runs is True
        assert caps.supports_draft_pr is False
        assert caps.supports_review_threads is False
        assert caps.supports_labels is False


class TestIdentity:
    async def test_current_user(self, httpx_mock: HTTPXMock, provider: BitbucketProvider) -> None:
        httpx_mock.add_response(url=f"{API}/user", json={"uuid": "{u-alice}", "display_name": "Alice"})

        user = await provider.get_current_user()

        assert user.login == "Alice"
        assert user.id == stable_numeric_id("{u-alice}")
