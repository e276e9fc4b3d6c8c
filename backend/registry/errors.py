"""
Exception hierarchy for image label resolution.

Caller-side problems (bad pod body, bad image string) and registry-side problems
(a known registry refusing or failing a request) are kept apart so the HTTP layer
can report them differently. Label syntax filtering never raises.
"""

from typing import Optional


class LabelResolutionError(Exception):
    """Base class for all label resolution failures."""
    pass


class ReferenceParseError(LabelResolutionError, ValueError):
    """Raised when an image reference string cannot be parsed"""

    def __init__(self, reference: str, reason: str):
        super().__init__(f"Invalid image reference '{reference}': {reason}")
        self.reference = reference
        self.reason = reason


InvalidReferenceError = ReferenceParseError


class PodFormatError(LabelResolutionError, ValueError):
    """Raised when a request body is not a pod document we can read an image from"""
    pass


class CredentialError(LabelResolutionError):
    """
    A single malformed entry in the registry credentials document.

    Collected as a warning while loading; never aborts the load.
    """

    def __init__(self, host: str, reason: str):
        super().__init__(f"Invalid credential for registry '{host}': {reason}")
        self.host = host
        self.reason = reason


class CredentialsDocumentError(LabelResolutionError):
    """The credentials document as a whole is unreadable or malformed (fatal at startup)."""
    pass


class RegistryError(LabelResolutionError):
    """Error talking to a registry we hold a trust relationship with."""

    def __init__(self, message: str, host: Optional[str] = None, status: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.host = host
        self.status = status


class NotFoundError(RegistryError):
    """Manifest or blob does not exist (404)."""
    pass


class AuthError(RegistryError):
    """Registry rejected our credentials or token (401/403)."""
    pass


class RegistryUnavailableError(RegistryError):
    """Registry unreachable, rate limiting, or answering with a server error."""
    pass


class RegistryTimeoutError(RegistryUnavailableError):
    """Registry request exceeded its network timeout."""
    pass


class BlobTooLargeError(RegistryError):
    """Config blob exceeds the configured buffering limit."""

    def __init__(self, message: str, limit: int, host: Optional[str] = None):
        super().__init__(message, host=host)
        self.limit = limit


class BlobDecodeError(LabelResolutionError):
    """Manifest or config blob does not have the expected JSON shape."""
    pass


ParseError = BlobDecodeError
