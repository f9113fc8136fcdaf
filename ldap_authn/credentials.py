"""Decoding of TokenReview requests and token splitting."""

import json
from dataclasses import dataclass, field
from typing import Any

from .errors import DecodeError, MalformedToken

TOKEN_SEPARATOR = ":"


@dataclass(frozen=True)
class Credential:
    """Directory principal and secret taken from a review token."""

    principal: str
    secret: str = field(repr=False)


@dataclass
class TokenReview:
    """A decoded TokenReview envelope.

    ``envelope`` is the full inbound document; fields other than
    ``spec.token`` are passed back to the caller untouched.
    """

    envelope: dict[str, Any]

    @property
    def token(self) -> str:
        return (self.envelope.get("spec") or {}).get("token") or ""


def decode_review(raw_body: bytes) -> TokenReview:
    """Parse a request body into a TokenReview envelope."""
    try:
        envelope = json.loads(raw_body)
    except (UnicodeDecodeError, ValueError) as e:
        raise DecodeError(f"request body is not valid JSON: {e.__class__.__name__}") from e

    if not isinstance(envelope, dict):
        raise DecodeError("TokenReview must be a JSON object")

    spec = envelope.get("spec")
    if spec is None:
        spec = {}
    if not isinstance(spec, dict):
        raise DecodeError("TokenReview spec must be an object")

    token = spec.get("token")
    if token is not None and not isinstance(token, str):
        raise DecodeError("TokenReview spec.token must be a string")

    return TokenReview(envelope=envelope)


def split_token(token: str) -> Credential:
    """Split ``<principal>:<secret>`` on the first separator."""
    principal, sep, secret = token.partition(TOKEN_SEPARATOR)
    if not sep:
        raise MalformedToken("badly formatted token: missing separator")
    return Credential(principal=principal, secret=secret)


def extract(raw_body: bytes) -> Credential:
    """Decode a request body and return the credential it carries."""
    return split_token(decode_review(raw_body).token)
