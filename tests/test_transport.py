"""Tests for the per-backend transports using pytest-httpx."""

import httpx
import pytest
from pytest_httpx import HTTPXMock

from revu.errors import AzureError, BitbucketError, GitHubError, GitLabError, NetworkError
from revu.hooks import Hooks
from revu.transport import (
    AzureTransport,
    BitbucketTransport,
    GiteaTransport,
    GitHubTransport,
    GitLabTransport,
    Transport,
    parse_retry_after,
)
from tests.conftest import api_url

GITHUB = "https://api.github.com"
GITLAB = "https://gitlab.com/api/v4"
BITBUCKET = "https://api.bitbucket.org/2.0"
AZURE = "https://dev.azure.com"
GITEA = "https://gitea.com/api/v1"


class TestParseRetryAfter:
    def test_seconds_to_millis(self) -> None:
        assert parse_retry_after({"retry-after": "120"}) == 120_000

    def test_missing(self) -> None:
        assert parse_retry_after({}) is None

    def test_non_numeric(self) -> None:
        assert parse_retry_after({"retry-after": "abc"}) is None

    def test_zero_and_negative(self) -> None:
        assert parse_retry_after({"retry-after": "0"}) is None
        assert parse_retry_after({"retry-after": "-5"}) is None

    def test_case_insensitive_with_httpx_headers(self) -> None:
        assert parse_retry_after(httpx.Headers({"Retry-After": "2"})) == 2000


class TestGitLabRetryAfter:
    async def test_uses_retry_after_seconds(self, httpx_mock: HTTPXMock, hooks: Hooks) -> None:
        httpx_mock.add_response(
            url=f"{GITLAB}/user", status_code=429, headers={"Retry-After": "30", "RateLimit-Reset": "100"}
        )
        api = GitLabTransport(GITLAB, "tok", hooks=hooks)

        with pytest.raises(GitLabError) as exc_info:
            await api.fetch_json("/user")

        assert exc_info.value.retry_after_ms == 30_000

    async def test_zero_retry_after_gives_no_hint(self, httpx_mock: HTTPXMock, hooks: Hooks) -> None:
        httpx_mock.add_response(
            url=f"{GITLAB}/user", status_code=429, headers={"Retry-After": "0", "RateLimit-Reset": "100"}
        )
        api = GitLabTransport(GITLAB, "tok", hooks=hooks)

        with pytest.raises(GitLabError) as exc_info:
            await api.fetch_json("/user")

        assert exc_info.value.retry_after_ms is None


class TestTransportBase:
    def test_base_class_is_abstract(self) -> None:
        with pytest.raises(TypeError):
            Transport(GITHUB, "tok")


class TestRequestErrors:
    async def test_http_error_becomes_backend_error(self, httpx_mock: HTTPXMock, hooks: Hooks) -> None:
        httpx_mock.add_response(url=f"{GITHUB}/user", status_code=404, json={"message": "Not Found"})
        api = GitHubTransport(GITHUB, "tok", hooks=hooks)

        with pytest.raises(GitHubError) as exc_info:
            await api.fetch_json("/user")

        err = exc_info.value
        assert err.status == 404
        assert err.message.startswith("GitHub API error: 404 Not Found - ")
        assert err.detail == "Not Found"
        assert err.url == f"{GITHUB}/user"
        assert err.retry_after_ms is None

    async def test_429_carries_retry_hint(self, httpx_mock: HTTPXMock, hooks: Hooks) -> None:
        httpx_mock.add_response(url=f"{GITHUB}/user", status_code=429, headers={"Retry-After": "60"}, text="slow down")
        api = GitHubTransport(GITHUB, "tok", hooks=hooks)

        with pytest.raises(GitHubError) as exc_info:
            await api.fetch_json("/user")

        assert exc_info.value.retry_after_ms == 60_000
        assert exc_info.value.detail == "slow down"

    async def test_retry_after_ignored_below_429(self, httpx_mock: HTTPXMock, hooks: Hooks) -> None:
        httpx_mock.add_response(url=f"{GITHUB}/user", status_code=503, headers={"Retry-After": "60"})
        api = GitHubTransport(GITHUB, "tok", hooks=hooks)

        with pytest.raises(GitHubError) as exc_info:
            await api.fetch_json("/user")

        assert exc_info.value.retry_after_ms is None
        assert exc_info.value.detail is None

    async def test_401_notifies_token_expiry(self, httpx_mock: HTTPXMock, hooks: Hooks) -> None:
        httpx_mock.add_response(url=f"{GITLAB}/user", status_code=401, json={"message": "401 Unauthorized"})
        expired: list[bool] = []
        hooks.on_token_expired(lambda: expired.append(True))
        api = GitLabTransport(GITLAB, "tok", hooks=hooks)

        with pytest.raises(GitLabError) as exc_info:
            await api.fetch_json("/user")

        assert expired == [True]
        assert exc_info.value.message == "GitLab API error: 401 Unauthorized"
        assert exc_info.value.detail == "401 Unauthorized"

    async def test_network_failure(self, httpx_mock: HTTPXMock, hooks: Hooks) -> None:
        httpx_mock.add_exception(httpx.ConnectError("connection refused"), url=f"{GITHUB}/user")
        api = GitHubTransport(GITHUB, "tok", hooks=hooks)

        with pytest.raises(NetworkError) as exc_info:
            await api.fetch_json("/user")

        assert exc_info.value.message.startswith("Network request failed:")
        assert isinstance(exc_info.value.cause, httpx.ConnectError)

    async def test_invalid_json_is_network_error(self, httpx_mock: HTTPXMock, hooks: Hooks) -> None:
        httpx_mock.add_response(url=f"{GITHUB}/user", text="<html>proxy</html>")
        api = GitHubTransport(GITHUB, "tok", hooks=hooks)

        with pytest.raises(NetworkError):
            await api.fetch_json("/user")

    async def test_mutate_json_requires_object(self, httpx_mock: HTTPXMock, hooks: Hooks) -> None:
        httpx_mock.add_response(method="POST", url=f"{GITHUB}/things", json=[1, 2])
        api = GitHubTransport(GITHUB, "tok", hooks=hooks)

        with pytest.raises(GitHubError, match="expected JSON object"):
            await api.mutate_json("POST", "/things", {})

    async def test_bitbucket_error_detail(self, httpx_mock: HTTPXMock, hooks: Hooks) -> None:
        httpx_mock.add_response(
            url=f"{BITBUCKET}/repositories/a/b",
            status_code=404,
            json={"type": "error", "error": {"message": "Repository a/b not found"}},
        )
        api = BitbucketTransport(BITBUCKET, "tok", hooks=hooks)

        with pytest.raises(BitbucketError) as exc_info:
            await api.fetch_json("/repositories/a/b")

        assert exc_info.value.detail == "Repository a/b not found"


class TestHooksIntegration:
    async def test_success_updates_rate_limit_and_timestamp(self, httpx_mock: HTTPXMock, hooks: Hooks) -> None:
        httpx_mock.add_response(
            url=f"{GITHUB}/user",
            json={"login": "octocat"},
            headers={"x-ratelimit-limit": "5000", "x-ratelimit-remaining": "4321"},
        )
        api = GitHubTransport(GITHUB, "tok", hooks=hooks)

        await api.fetch_json("/user")

        assert hooks.rate_limit is not None
        assert hooks.rate_limit.remaining == 4321
        assert hooks.last_updated is not None

    async def test_failure_does_not_touch_timestamp(self, httpx_mock: HTTPXMock, hooks: Hooks) -> None:
        httpx_mock.add_response(url=f"{GITHUB}/user", status_code=500)
        api = GitHubTransport(GITHUB, "tok", hooks=hooks)

        with pytest.raises(GitHubError):
            await api.fetch_json("/user")

        assert hooks.last_updated is None


class TestAuthHeaders:
    async def test_github(self, httpx_mock: HTTPXMock, hooks: Hooks) -> None:
        httpx_mock.add_response(url=f"{GITHUB}/user", json={})
        await GitHubTransport(GITHUB, "ghp_x", hooks=hooks).fetch_json("/user")
        request = httpx_mock.get_request()
        assert request.headers["Authorization"] == "Bearer ghp_x"
        assert request.headers["X-GitHub-Api-Version"] == "2022-11-28"

    async def test_gitlab(self, httpx_mock: HTTPXMock, hooks: Hooks) -> None:
        httpx_mock.add_response(url=f"{GITLAB}/user", json={})
        await GitLabTransport(GITLAB, "glpat", hooks=hooks).fetch_json("/user")
        assert httpx_mock.get_request().headers["PRIVATE-TOKEN"] == "glpat"

    async def test_azure_basic_auth_and_api_version(self, httpx_mock: HTTPXMock, hooks: Hooks) -> None:
        httpx_mock.add_response(url=api_url(AZURE, "/org/_apis/connectionData", **{"api-version": "7.0"}), json={})
        await AzureTransport(AZURE, "pat", hooks=hooks).fetch_json("/org/_apis/connectionData")
        # base64(":pat")
        assert httpx_mock.get_request().headers["Authorization"] == "Basic OnBhdA=="

    async def test_gitea(self, httpx_mock: HTTPXMock, hooks: Hooks) -> None:
        httpx_mock.add_response(url=f"{GITEA}/user", json={})
        await GiteaTransport(GITEA, "gt", hooks=hooks).fetch_json("/user")
        assert httpx_mock.get_request().headers["Authorization"] == "token gt"


class TestAzureSignInRedirect:
    async def test_203_is_auth_failure(self, httpx_mock: HTTPXMock, hooks: Hooks) -> None:
        httpx_mock.add_response(
            url=api_url(AZURE, "/org/_apis/connectionData", **{"api-version": "7.0"}),
            status_code=203,
            text="<html>sign in</html>",
        )
        expired: list[bool] = []
        hooks.on_token_expired(lambda: expired.append(True))

        with pytest.raises(AzureError) as exc_info:
            await AzureTransport(AZURE, "pat", hooks=hooks).fetch_json("/org/_apis/connectionData")

        assert exc_info.value.status == 203
        assert expired == [True]


class TestPagination:
    async def test_github_follows_link_header(self, httpx_mock: HTTPXMock, hooks: Hooks) -> None:
        page_two = f"{GITHUB}/repos/a/b/pulls/1/files?per_page=100&page=2"
        httpx_mock.add_response(
            url=api_url(GITHUB, "/repos/a/b/pulls/1/files", per_page=100),
            json=[{"n": 1}, {"n": 2}],
            headers={"Link": f'<{page_two}>; rel="next", <{page_two}>; rel="last"'},
        )
        httpx_mock.add_response(url=page_two, json=[{"n": 3}])
        api = GitHubTransport(GITHUB, "tok", hooks=hooks)

        items = await api.fetch_all_pages("/repos/a/b/pulls/1/files")

        assert [i["n"] for i in items] == [1, 2, 3]

    async def test_github_search_unwraps_items(self, httpx_mock: HTTPXMock, hooks: Hooks) -> None:
        httpx_mock.add_response(
            url=api_url(GITHUB, "/search/issues", per_page=100, q="is:pr"),
            json={"total_count": 1, "items": [{"n": 1}]},
        )
        api = GitHubTransport(GITHUB, "tok", hooks=hooks)

        assert await api.fetch_all_pages("/search/issues", {"q": "is:pr"}, items_key="items") == [{"n": 1}]

    async def test_gitlab_follows_next_page_header(self, httpx_mock: HTTPXMock, hooks: Hooks) -> None:
        httpx_mock.add_response(
            url=api_url(GITLAB, "/projects/1/labels", per_page=100, page=1),
            json=[{"n": 1}],
            headers={"x-next-page": "2"},
        )
        httpx_mock.add_response(
            url=api_url(GITLAB, "/projects/1/labels", per_page=100, page=2),
            json=[{"n": 2}],
            headers={"x-next-page": ""},
        )
        api = GitLabTransport(GITLAB, "tok", hooks=hooks)

        assert await api.fetch_all_pages("/projects/1/labels") == [{"n": 1}, {"n": 2}]

    async def test_bitbucket_follows_next_url(self, httpx_mock: HTTPXMock, hooks: Hooks) -> None:
        next_url = f"{BITBUCKET}/repositories/a/b/pullrequests/1/commits?page=2"
        httpx_mock.add_response(
            url=api_url(BITBUCKET, "/repositories/a/b/pullrequests/1/commits", pagelen=100),
            json={"values": [{"n": 1}], "next": next_url},
        )
        httpx_mock.add_response(url=next_url, json={"values": [{"n": 2}]})
        api = BitbucketTransport(BITBUCKET, "tok", hooks=hooks)

        assert await api.fetch_all_pages("/repositories/a/b/pullrequests/1/commits") == [{"n": 1}, {"n": 2}]

    async def test_azure_continuation_token(self, httpx_mock: HTTPXMock, hooks: Hooks) -> None:
        path = "/org/proj/_apis/git/repositories/r/pullrequests"
        httpx_mock.add_response(
            url=api_url(AZURE, path, **{"api-version": "7.0", "$top": 100}),
            json={"value": [{"n": 1}]},
            headers={"x-ms-continuationtoken": "next-chunk"},
        )
        httpx_mock.add_response(
            url=api_url(AZURE, path, **{"api-version": "7.0", "$top": 100, "continuationToken": "next-chunk"}),
            json={"value": [{"n": 2}]},
        )
        api = AzureTransport(AZURE, "pat", hooks=hooks)

        assert await api.fetch_all_pages(path) == [{"n": 1}, {"n": 2}]

    async def test_gitea_stops_on_short_page(self, httpx_mock: HTTPXMock, hooks: Hooks) -> None:
        httpx_mock.add_response(
            url=api_url(GITEA, "/repos/a/b/pulls", page=1, limit=2),
            json=[{"n": 1}, {"n": 2}],
        )
        httpx_mock.add_response(
            url=api_url(GITEA, "/repos/a/b/pulls", page=2, limit=2),
            json=[{"n": 3}],
        )
        api = GiteaTransport(GITEA, "tok", hooks=hooks)

        assert await api.fetch_all_pages("/repos/a/b/pulls", limit=2) == [{"n": 1}, {"n": 2}, {"n": 3}]

    async def test_gitea_stops_at_total_count(self, httpx_mock: HTTPXMock, hooks: Hooks) -> None:
        httpx_mock.add_response(
            url=api_url(GITEA, "/repos/a/b/pulls", page=1, limit=2),
            json=[{"n": 1}, {"n": 2}],
            headers={"x-total-count": "2"},
        )
        api = GiteaTransport(GITEA, "tok", hooks=hooks)

        assert len(await api.fetch_all_pages("/repos/a/b/pulls", limit=2)) == 2


class TestGraphQL:
    async def test_errors_raise_with_status_200(self, httpx_mock: HTTPXMock, hooks: Hooks) -> None:
        httpx_mock.add_response(
            method="POST",
            url=f"{GITHUB}/graphql",
            json={"data": None, "errors": [{"message": "Could not resolve to a node"}]},
        )
        api = GitHubTransport(GITHUB, "tok", hooks=hooks)

        with pytest.raises(GitHubError) as exc_info:
            await api.graphql("query { viewer { login } }", {})

        assert exc_info.value.status == 200
        assert "Could not resolve to a node" in exc_info.value.message

    async def test_returns_data(self, httpx_mock: HTTPXMock, hooks: Hooks) -> None:
        httpx_mock.add_response(method="POST", url=f"{GITHUB}/graphql", json={"data": {"viewer": {"login": "me"}}})
        api = GitHubTransport(GITHUB, "tok", hooks=hooks)

        assert await api.graphql("query { viewer { login } }", {}) == {"viewer": {"login": "me"}}
