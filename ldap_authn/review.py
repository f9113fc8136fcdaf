"""TokenReview status objects and response serialization."""

import copy
import json
from dataclasses import dataclass, field
from typing import Any

from .credentials import TokenReview
from .errors import EncodeError


@dataclass
class DirectoryIdentity:
    """User information confirmed by the directory."""

    username: str
    uid: str
    groups: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {"username": self.username, "uid": self.uid, "groups": list(self.groups)}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "DirectoryIdentity | None":
        """Build an identity from a ``status.user`` object; empty means absent."""
        if not data:
            return None
        return cls(
            username=data.get("username", ""),
            uid=data.get("uid", ""),
            groups=list(data.get("groups") or []),
        )


@dataclass
class AuthenticationResult:
    """Outcome of a single token review."""

    authenticated: bool
    identity: DirectoryIdentity | None = None

    @classmethod
    def from_identity(cls, identity: DirectoryIdentity | None) -> "AuthenticationResult":
        return cls(authenticated=identity is not None, identity=identity)

    def to_status(self) -> dict[str, Any]:
        """Render the TokenReview ``status`` object.

        An absent identity is rendered as an empty ``user`` object.
        """
        return {
            "authenticated": self.authenticated,
            "user": self.identity.to_dict() if self.identity else {},
        }

    @classmethod
    def from_status(cls, status: dict[str, Any]) -> "AuthenticationResult":
        return cls(
            authenticated=bool(status.get("authenticated", False)),
            identity=DirectoryIdentity.from_dict(status.get("user") or {}),
        )


def respond(result: AuthenticationResult, review: TokenReview) -> bytes:
    """Serialize the review envelope with its status set from ``result``.

    Every inbound field is passed through except ``spec.token``, which is
    dropped so the credential is never echoed back.
    """
    envelope = copy.deepcopy(review.envelope)
    spec = envelope.get("spec")
    if isinstance(spec, dict):
        spec.pop("token", None)
    envelope["status"] = result.to_status()

    try:
        return json.dumps(envelope).encode()
    except (TypeError, ValueError) as e:
        raise EncodeError(f"failed to encode TokenReview: {e}") from e
