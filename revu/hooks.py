"""Side-channel notifications emitted by the transport layer.

Callers subscribe to rate-limit updates and credential expiry; the transport
publishes after every response. Nothing here affects request outcomes.
"""

import logging
import time
from collections.abc import Callable, Mapping

from pydantic import BaseModel, ConfigDict

logger = logging.getLogger(__name__)


class RateLimit(BaseModel):
    model_config = ConfigDict(frozen=True)

    limit: int | None = None
    remaining: int | None = None
    reset_at: int | None = None  # epoch seconds


def _header_int(headers: Mapping[str, str], *names: str) -> int | None:
    for name in names:
        value = headers.get(name)
        if value is None:
            continue
        try:
            return int(value)
        except ValueError:
            continue
    return None


def parse_rate_limit(headers: Mapping[str, str]) -> RateLimit | None:
    """Read ``x-ratelimit-*`` (GitHub, Gitea) or ``ratelimit-*`` (GitLab) headers."""
    rate = RateLimit(
        limit=_header_int(headers, "x-ratelimit-limit", "ratelimit-limit"),
        remaining=_header_int(headers, "x-ratelimit-remaining", "ratelimit-remaining"),
        reset_at=_header_int(headers, "x-ratelimit-reset", "ratelimit-reset"),
    )
    if rate.limit is None and rate.remaining is None:
        return None
    return rate


class Hooks:
    def __init__(self) -> None:
        self.rate_limit: RateLimit | None = None
        self.last_updated: float | None = None
        self._rate_limit_listeners: list[Callable[[RateLimit], None]] = []
        self._token_expired_listeners: list[Callable[[], None]] = []

    def on_rate_limit(self, listener: Callable[[RateLimit], None]) -> Callable[[], None]:
        """Subscribe to rate-limit updates. Returns an unsubscribe callable."""
        self._rate_limit_listeners.append(listener)
        return lambda: self._rate_limit_listeners.remove(listener)

    def on_token_expired(self, listener: Callable[[], None]) -> Callable[[], None]:
        self._token_expired_listeners.append(listener)
        return lambda: self._token_expired_listeners.remove(listener)

    def update_rate_limit(self, headers: Mapping[str, str]) -> None:
        rate = parse_rate_limit(headers)
        if rate is None:
            return
        self.rate_limit = rate
        if rate.remaining == 0:
            logger.warning("Rate limit exhausted (limit=%s, reset_at=%s)", rate.limit, rate.reset_at)
        for listener in list(self._rate_limit_listeners):
            listener(rate)

    def touch_last_updated(self) -> None:
        self.last_updated = time.time()

    def notify_token_expired(self) -> None:
        logger.warning("Stored credential was rejected by the server")
        for listener in list(self._token_expired_listeners):
            listener()


default_hooks = Hooks()
