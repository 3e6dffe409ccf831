"""Closed error taxonomy raised by every provider operation."""


class ProviderError(Exception):
    """Root of every error a provider operation may raise."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class NetworkError(ProviderError):
    """The request never produced an HTTP response we could read."""

    def __init__(self, message: str, cause: BaseException | None = None) -> None:
        super().__init__(message)
        self.cause = cause


class ApiError(ProviderError):
    """An HTTP response (or a precondition check) the backend would reject."""

    backend = "api"

    def __init__(
        self,
        message: str,
        status: int,
        detail: str | None = None,
        url: str | None = None,
        retry_after_ms: int | None = None,
    ) -> None:
        super().__init__(message)
        self.status = status
        self.detail = detail
        self.url = url
        self.retry_after_ms = retry_after_ms

    def __str__(self) -> str:
        return f"{self.message} (status {self.status})"


class GitHubError(ApiError):
    backend = "github"


class GitLabError(ApiError):
    backend = "gitlab"


class BitbucketError(ApiError):
    backend = "bitbucket"


class AzureError(ApiError):
    backend = "azure"


class GiteaError(ApiError):
    backend = "gitea"
