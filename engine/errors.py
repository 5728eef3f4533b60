"""Error taxonomy shared by the fetch layer, providers and the search service."""

from __future__ import annotations

from config.settings import HTTP_RETRY_STATUSES


class MediaEngineError(Exception):
    """Base class for every error raised by the engine."""


class ConfigError(MediaEngineError):
    """Missing or invalid credentials. Fatal, never retried."""

    def __init__(self, message: str, *, provider_id: str | None = None) -> None:
        super().__init__(message)
        self.provider_id = provider_id


class UpstreamError(MediaEngineError):
    """Non-2xx upstream response that the retry budget could not resolve."""

    def __init__(self, status: int, body: str = "", *, url: str | None = None) -> None:
        super().__init__(f"Upstream error {status} for {url or '<unknown>'}")
        self.status = int(status)
        self.body = body
        self.url = url

    @property
    def is_rate_limited(self) -> bool:
        return self.status in HTTP_RETRY_STATUSES

    @property
    def is_not_found(self) -> bool:
        return self.status == 404


class ValidationError(MediaEngineError):
    """Upstream payload did not match the expected shape. Never retried."""


class NetworkError(MediaEngineError):
    """DNS, timeout or connection failure that outlived the retry budget."""

    def __init__(self, message: str, *, url: str | None = None) -> None:
        super().__init__(message)
        self.url = url


class UnsupportedTypeError(ValueError):
    """A provider was asked for a media type it does not serve.

    Raised for bad caller input; not a :class:`MediaEngineError`.
    """

    def __init__(self, provider_id: str, media_type: str) -> None:
        super().__init__(f"{provider_id} does not support type {media_type!r}")
        self.provider_id = provider_id
        self.media_type = media_type


def classify_error(exc: BaseException) -> str:
    """Map an error to the banner kind shown to the user."""
    if isinstance(exc, ConfigError):
        return "config"
    if isinstance(exc, UpstreamError) and exc.is_rate_limited:
        return "rate_limited"
    if isinstance(exc, NetworkError):
        return "network"
    return "upstream"


__all__ = [
    "ConfigError",
    "MediaEngineError",
    "NetworkError",
    "UnsupportedTypeError",
    "UpstreamError",
    "ValidationError",
    "classify_error",
]
