"""Fill in the optional extension operations for any provider.

``CompatProvider`` forwards the core contract to the wrapped adapter
untouched. For each extension operation it calls the adapter's own method
when the adapter defines one and a generic fallback otherwise.
"""

import asyncio
from collections.abc import AsyncIterator, Callable
from typing import Any

from revu.errors import GitHubError
from revu.models import (
    AcceptSuggestionParams,
    AddDiffCommentParams,
    Comment,
    PullRequest,
    SuggestionParams,
    TimelineEvent,
)
from revu.providers.base import Provider, ProviderCapabilities
from revu.suggestions import format_suggestion_for_provider, parse_suggestion_block

EXTENSION_FLAGS = (
    "supports_streaming",
    "supports_batch_fetch",
    "supports_webhooks",
    "supports_suggestions",
    "supports_timeline",
)


def ensure_v2_capabilities(capabilities: ProviderCapabilities) -> ProviderCapabilities:
    """Return a copy with every undeclared extension flag set to False."""
    missing = {flag: False for flag in EXTENSION_FLAGS if getattr(capabilities, flag) is None}
    return capabilities.model_copy(update=missing) if missing else capabilities


class CompatProvider:
    def __init__(self, provider: Provider) -> None:
        self._provider = provider
        self.type = provider.type
        self.capabilities = ensure_v2_capabilities(provider.capabilities)

    @property
    def wrapped(self) -> Provider:
        return self._provider

    def __getattr__(self, name: str) -> Any:
        # only reached for names not defined here: the core contract
        return getattr(self._provider, name)

    def _native(self, name: str) -> Callable[..., Any] | None:
        return getattr(self._provider, name, None)

    async def aclose(self) -> None:
        await self._provider.aclose()

    async def __aenter__(self) -> "CompatProvider":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def batch_get_prs(self, numbers: list[int]) -> list[PullRequest]:
        if native := self._native("batch_get_prs"):
            return await native(numbers)
        return list(await asyncio.gather(*(self._provider.get_pr(n) for n in numbers)))

    async def stream_file_diff(self, pr_number: int, path: str) -> AsyncIterator[str]:
        if native := self._native("stream_file_diff"):
            async for chunk in native(pr_number, path):
                yield chunk
            return
        files = await self._provider.get_pr_files(pr_number)
        for file in files:
            if file.filename == path and file.patch is not None:
                yield file.patch
                return

    async def get_timeline(self, pr_number: int) -> list[TimelineEvent]:
        if native := self._native("get_timeline"):
            return await native(pr_number)
        return []

    async def submit_suggestion(self, params: SuggestionParams) -> Comment:
        if native := self._native("submit_suggestion"):
            return await native(params)
        await self._provider.add_diff_comment(
            AddDiffCommentParams(
                pr_number=params.pr_number,
                body=format_suggestion_for_provider(self.type, params.body, params.suggestion),
                commit_id=params.commit_id or "",
                path=params.path,
                line=params.line,
                side=params.side,
                start_line=params.start_line,
                start_side=params.side if params.start_line is not None else None,
            )
        )
        # add_diff_comment returns nothing, so read back the newest comment on the path
        # that carries this suggestion
        comments = await self._provider.get_pr_comments(params.pr_number)
        on_path = [comment for comment in comments if comment.path == params.path]
        for comment in reversed(on_path):
            parsed = parse_suggestion_block(comment.body)
            if parsed is not None and parsed.suggestion == params.suggestion:
                return comment
        if on_path:
            return on_path[-1]
        if not comments:
            raise GitHubError("Suggestion was posted but could not be read back", status=404)
        return comments[-1]

    async def accept_suggestion(self, params: AcceptSuggestionParams) -> None:
        if native := self._native("accept_suggestion"):
            return await native(params)
        raise GitHubError("Accepting suggestions is not supported by this provider", status=501)
