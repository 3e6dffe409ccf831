"""Authenticated HTTP helpers, one transport class per backend.

Every transport exposes the same primitives: ``fetch_json`` (GET),
``mutate`` / ``mutate_json`` (POST/PUT/PATCH/DELETE) and ``fetch_all_pages``.
Non-2xx responses become the backend's ``ApiError`` subclass and httpx
failures become ``NetworkError``; nothing from httpx leaks to callers.
"""

import base64
import json
import logging
from abc import ABC, abstractmethod
from collections.abc import Mapping
from typing import Any

import httpx

from revu.errors import (
    ApiError,
    AzureError,
    BitbucketError,
    GiteaError,
    GitHubError,
    GitLabError,
    NetworkError,
)
from revu.hooks import Hooks, default_hooks

logger = logging.getLogger(__name__)

MAX_PAGES = 20
TIMEOUT = 30


def parse_retry_after(headers: Mapping[str, str]) -> int | None:
    """Convert a ``Retry-After`` header in whole seconds to milliseconds.

    Missing, non-numeric, zero and negative values give no hint at all.
    """
    value = headers.get("retry-after")
    if not value:
        return None
    try:
        seconds = int(value.strip())
    except ValueError:
        return None
    return seconds * 1000 if seconds > 0 else None


class Transport(ABC):
    """Shared request execution; subclasses supply auth, error shape and pagination."""

    error_cls: type[ApiError] = ApiError
    label = "API"
    expired_statuses: tuple[int, ...] = (401,)

    def __init__(
        self,
        base_url: str,
        token: str,
        *,
        client: httpx.AsyncClient | None = None,
        hooks: Hooks | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._token = token
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=TIMEOUT)
        self._hooks = hooks or default_hooks

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    @abstractmethod
    def _headers(self) -> dict[str, str]: ...

    def _default_params(self) -> dict[str, str]:
        return {}

    def _url(self, path: str) -> str:
        if path.startswith(("http://", "https://")):
            return path
        return f"{self.base_url}{path}"

    def _is_failure(self, response: httpx.Response) -> bool:
        return not response.is_success

    async def request(
        self,
        method: str,
        path: str,
        *,
        params: Mapping[str, Any] | None = None,
        body: Any = None,
    ) -> httpx.Response:
        merged = {**self._default_params(), **(params or {})}
        try:
            response = await self._client.request(
                method,
                self._url(path),
                params=merged or None,
                json=body,
                headers=self._headers(),
            )
        except httpx.HTTPError as exc:
            raise NetworkError(f"Network request failed: {exc}", cause=exc) from exc
        logger.debug("%s %s -> %s", method, response.request.url, response.status_code)
        self._hooks.update_rate_limit(response.headers)
        if self._is_failure(response):
            raise self._error_from_response(response)
        self._hooks.touch_last_updated()
        return response

    @staticmethod
    def _json(response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError as exc:
            raise NetworkError(
                f"Network request failed: invalid JSON from {response.request.url}", cause=exc
            ) from exc

    async def fetch_json(self, path: str, params: Mapping[str, Any] | None = None) -> Any:
        response = await self.request("GET", path, params=params)
        return self._json(response)

    async def fetch_page(
        self, path: str, params: Mapping[str, Any] | None = None
    ) -> tuple[Any, httpx.Headers]:
        """GET one page and hand back the headers too (total counts, cursors)."""
        response = await self.request("GET", path, params=params)
        return self._json(response), response.headers

    async def mutate(self, method: str, path: str, body: Any = None) -> None:
        await self.request(method, path, body=body)

    async def mutate_json(self, method: str, path: str, body: Any = None) -> dict:
        response = await self.request(method, path, body=body)
        data = self._json(response)
        if not isinstance(data, dict):
            raise self.error_cls(
                "Unexpected API response: expected JSON object",
                status=response.status_code,
                url=str(response.request.url),
            )
        return data

    @abstractmethod
    async def fetch_all_pages(self, path: str, params: Mapping[str, Any] | None = None) -> list: ...

    # -- error mapping -------------------------------------------------------

    def _error_message(self, response: httpx.Response, body: str) -> str:
        return f"{self.label} API error: {response.status_code} {response.reason_phrase}".strip()

    def _detail_from_json(self, data: Any) -> Any:
        if isinstance(data, dict):
            return data.get("message")
        return None

    def _error_detail(self, body: str) -> str | None:
        if not body:
            return None
        try:
            data = json.loads(body)
        except ValueError:
            return body
        detail = self._detail_from_json(data)
        if detail is None:
            return body
        return detail if isinstance(detail, str) else json.dumps(detail)

    def _error_from_response(self, response: httpx.Response) -> ApiError:
        status = response.status_code
        if status in self.expired_statuses:
            self._hooks.notify_token_expired()
        body = response.text
        retry_after_ms = parse_retry_after(response.headers) if status == 429 else None
        if status == 429:
            logger.warning("%s throttled request, retry after %s ms", self.label, retry_after_ms)
        return self.error_cls(
            self._error_message(response, body),
            status=status,
            detail=self._error_detail(body),
            url=str(response.request.url),
            retry_after_ms=retry_after_ms,
        )


class GitHubTransport(Transport):
    error_cls = GitHubError
    label = "GitHub"

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self._token}",
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
        }

    def _error_message(self, response: httpx.Response, body: str) -> str:
        return f"GitHub API error: {response.status_code} {response.reason_phrase} - {body}"

    async def fetch_all_pages(
        self,
        path: str,
        params: Mapping[str, Any] | None = None,
        items_key: str | None = None,
    ) -> list:
        """Follow ``Link: rel="next"`` headers. ``items_key`` unwraps search results."""
        page_params: dict[str, Any] | None = {"per_page": 100, **(params or {})}
        url = path
        items: list = []
        for _ in range(MAX_PAGES):
            response = await self.request("GET", url, params=page_params)
            data = self._json(response)
            items.extend(data[items_key] if items_key else data)
            next_url = response.links.get("next", {}).get("url")
            if not next_url:
                return items
            url, page_params = next_url, None
        logger.warning("Stopped paginating %s after %d pages", path, MAX_PAGES)
        return items

    async def graphql(self, query: str, variables: dict[str, Any]) -> dict:
        data = await self.mutate_json("POST", "/graphql", {"query": query, "variables": variables})
        if data.get("errors"):
            messages = "; ".join(e.get("message", "unknown error") for e in data["errors"])
            raise GitHubError(f"GraphQL error: {messages}", status=200, url=self._url("/graphql"))
        return data["data"]


class GitLabTransport(Transport):
    error_cls = GitLabError
    label = "GitLab"

    def _headers(self) -> dict[str, str]:
        return {"PRIVATE-TOKEN": self._token, "Content-Type": "application/json"}

    def _detail_from_json(self, data: Any) -> Any:
        if isinstance(data, dict):
            return data.get("message") or data.get("error")
        return None

    async def fetch_all_pages(self, path: str, params: Mapping[str, Any] | None = None) -> list:
        """Walk ``page`` numbers using the ``x-next-page`` response header."""
        page: str | int = 1
        items: list = []
        for _ in range(MAX_PAGES):
            response = await self.request("GET", path, params={**(params or {}), "per_page": 100, "page": page})
            data = self._json(response)
            if not isinstance(data, list) or not data:
                return items
            items.extend(data)
            next_page = response.headers.get("x-next-page")
            if not next_page:
                return items
            page = next_page
        logger.warning("Stopped paginating %s after %d pages", path, MAX_PAGES)
        return items


class BitbucketTransport(Transport):
    error_cls = BitbucketError
    label = "Bitbucket"

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self._token}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    def _detail_from_json(self, data: Any) -> Any:
        if not isinstance(data, dict):
            return None
        error = data.get("error")
        if isinstance(error, dict):
            return error.get("message") or error.get("detail")
        if isinstance(error, str):
            return error
        return data.get("message")

    async def fetch_all_pages(self, path: str, params: Mapping[str, Any] | None = None) -> list:
        """Concatenate ``values`` while the body carries a ``next`` URL."""
        url = path
        page_params: dict[str, Any] | None = {"pagelen": 100, **(params or {})}
        items: list = []
        for _ in range(MAX_PAGES):
            data = await self.fetch_json(url, page_params)
            items.extend(data.get("values", []))
            next_url = data.get("next")
            if not next_url:
                return items
            url, page_params = next_url, None
        logger.warning("Stopped paginating %s after %d pages", path, MAX_PAGES)
        return items


class AzureTransport(Transport):
    error_cls = AzureError
    label = "Azure DevOps"
    # 203 is the sign-in redirect Azure DevOps serves for a rejected PAT
    expired_statuses = (401, 203)
    api_version = "7.0"

    def _headers(self) -> dict[str, str]:
        encoded = base64.b64encode(f":{self._token}".encode()).decode()
        return {"Authorization": f"Basic {encoded}", "Content-Type": "application/json"}

    def _default_params(self) -> dict[str, str]:
        return {"api-version": self.api_version}

    def _is_failure(self, response: httpx.Response) -> bool:
        return response.status_code == 203 or not response.is_success

    def _detail_from_json(self, data: Any) -> Any:
        if not isinstance(data, dict):
            return None
        value = data.get("value")
        nested = value.get("Message") if isinstance(value, dict) else None
        return data.get("message") or data.get("Message") or nested

    async def fetch_all_pages(self, path: str, params: Mapping[str, Any] | None = None) -> list:
        """Page with ``$top``/``$skip``, preferring ``x-ms-continuationtoken`` when sent."""
        top = 100
        skip = 0
        token: str | None = None
        items: list = []
        for _ in range(MAX_PAGES):
            page_params: dict[str, Any] = {**(params or {}), "$top": top}
            if token:
                page_params["continuationToken"] = token
            elif skip:
                page_params["$skip"] = skip
            response = await self.request("GET", path, params=page_params)
            values = self._json(response).get("value", [])
            items.extend(values)
            token = response.headers.get("x-ms-continuationtoken")
            if not token and len(values) < top:
                return items
            skip += len(values)
        logger.warning("Stopped paginating %s after %d pages", path, MAX_PAGES)
        return items


class GiteaTransport(Transport):
    error_cls = GiteaError
    label = "Gitea"

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"token {self._token}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    async def fetch_all_pages(
        self,
        path: str,
        params: Mapping[str, Any] | None = None,
        limit: int = 50,
    ) -> list:
        """Walk ``page``/``limit`` until a short page or ``X-Total-Count`` is reached."""
        items: list = []
        for page in range(1, MAX_PAGES + 1):
            response = await self.request("GET", path, params={**(params or {}), "page": page, "limit": limit})
            data = self._json(response)
            if not isinstance(data, list) or not data:
                return items
            items.extend(data)
            total = response.headers.get("x-total-count")
            if total and total.isdigit() and len(items) >= int(total):
                return items
            if len(data) < limit:
                return items
        logger.warning("Stopped paginating %s after %d pages", path, MAX_PAGES)
        return items
