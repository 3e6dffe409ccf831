"""Markdown for inline code suggestions, per backend dialect."""

import re

from pydantic import BaseModel, ConfigDict

_SUGGESTION_BLOCK = re.compile(r"```suggestion(?::-\d+\+\d+)?\n(.*?)\n?```", re.DOTALL)


class ParsedSuggestion(BaseModel):
    model_config = ConfigDict(frozen=True)

    comment_text: str
    suggestion: str


def _join(body: str, block: str) -> str:
    return f"{body}\n\n{block}" if body else block


def format_suggestion_body(body: str, suggestion: str) -> str:
    return _join(body, f"```suggestion\n{suggestion}\n```")


def format_gitlab_suggestion_body(body: str, suggestion: str) -> str:
    # -0+0: the suggestion replaces exactly the commented line
    return _join(body, f"```suggestion:-0+0\n{suggestion}\n```")


def format_fallback_suggestion_body(body: str, suggestion: str) -> str:
    return _join(body, f"**Suggested change:**\n```\n{suggestion}\n```")


def format_suggestion_for_provider(provider_type: str, body: str, suggestion: str) -> str:
    """Pick the suggestion syntax the backend renders natively, or a plain fallback."""
    match provider_type:
        case "github":
            return format_suggestion_body(body, suggestion)
        case "gitlab":
            return format_gitlab_suggestion_body(body, suggestion)
        case _:
            return format_fallback_suggestion_body(body, suggestion)


def parse_suggestion_block(body: str) -> ParsedSuggestion | None:
    match = _SUGGESTION_BLOCK.search(body)
    if match is None:
        return None
    return ParsedSuggestion(comment_text=body[: match.start()].strip(), suggestion=match.group(1))
