"""Exception hierarchy shared by the conversational core and its collaborators."""


class ZanaError(Exception):
    """Base class for errors raised by this package."""


class ClassificationError(ZanaError):
    """The intent classifier was unreachable or returned something unusable."""


class ProviderError(ZanaError):
    """An action-provider call failed (network, not found, permission, conflict...)."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class OAuthError(ZanaError):
    """The GitHub authorization handshake could not be completed."""
