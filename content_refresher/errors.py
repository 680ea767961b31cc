# content_refresher/errors.py

from typing import List, Optional


class ContentRefresherError(Exception):
    """Base class for every error raised by the maintenance pipeline."""


class ConfigError(ContentRefresherError):
    pass


# -----------------------------------------------------------------------------
# Generation layer
# -----------------------------------------------------------------------------
class GenerationError(ContentRefresherError):
    """A generation call failed. Aborts the current page only."""


class InvalidParams(GenerationError):
    pass


class AuthFailed(GenerationError):
    pass


class EmptyResponse(GenerationError):
    pass


class RateLimited(GenerationError):
    pass


# -----------------------------------------------------------------------------
# Publish layer
# -----------------------------------------------------------------------------
class PublishError(ContentRefresherError):
    pass


class PostNotFound(PublishError):
    """A refresh was requested but no existing remote post could be resolved."""


class BackendError(PublishError):
    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


# -----------------------------------------------------------------------------
# Network layer
# -----------------------------------------------------------------------------
class NetworkError(ContentRefresherError):
    pass


class FetchTimeout(NetworkError):
    pass


class FetchFailed(NetworkError):
    pass


# -----------------------------------------------------------------------------
# Protection / restoration
# -----------------------------------------------------------------------------
class ProtectionMismatch(ContentRefresherError):
    """Placeholders in the rewritten HTML do not match the protected map one-to-one."""

    def __init__(self, missing: List[str], unexpected: List[str]):
        self.missing = list(missing)
        self.unexpected = list(unexpected)
        parts = []
        if self.missing:
            parts.append(f"missing={self.missing}")
        if self.unexpected:
            parts.append(f"unexpected={self.unexpected}")
        super().__init__("Protected placeholder mismatch: " + ", ".join(parts))
