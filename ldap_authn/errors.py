"""Exception types for the LDAP authentication webhook."""


class AuthnError(Exception):
    """Base exception for failures that abort a token review.

    ``public_message`` is what the caller sees in the HTTP 500 body. It must
    never carry directory internals or credential material.
    """

    stage = "unknown"
    public_message = "internal error"

    def __init__(self, message: str, stage: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        if stage is not None:
            self.stage = stage


class DecodeError(AuthnError):
    """Request body is not a valid TokenReview document."""

    stage = "extract"
    public_message = "invalid TokenReview request"


class MalformedToken(AuthnError):
    """Token does not have the ``<principal>:<secret>`` form."""

    stage = "extract"
    public_message = "badly formatted token"


class DirectoryError(AuthnError):
    """The directory could not be queried."""

    stage = "validate"
    public_message = "failed LDAP Search request"


class DirectoryConnectError(DirectoryError):
    """Connecting to the directory failed."""


class DirectoryTransportError(DirectoryError):
    """A bind or search failed for reasons other than bad credentials."""


class EncodeError(AuthnError):
    """The response envelope could not be serialized."""

    stage = "respond"
    public_message = "failed to encode TokenReview response"


class ConfigError(Exception):
    """Invalid startup configuration."""
