"""
Validation tokens.

Opaque string handed to a caller after a successful admin check so it can
show the admin UI for a short while without re-validating:

    base64url("<user_id>:<issue_ms>:<nonce>")

Tokens are informational. Nothing in this service rejects an expired one;
consumers that care can decode it and call is_expired().
"""

import base64
import binascii
import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional

from pydantic import BaseModel, ConfigDict

from trustcore.common.exceptions import ValidationError


class ValidationTokenClaims(BaseModel):
    """Decoded contents of a validation token."""

    model_config = ConfigDict(frozen=True)

    user_id: str
    issued_at: datetime
    nonce: str

    def is_expired(self, ttl_seconds: float, now: Optional[datetime] = None) -> bool:
        now = now or datetime.now(timezone.utc)
        return now > self.issued_at + timedelta(seconds=ttl_seconds)


def mint_validation_token(
    user_id: str,
    now: Optional[datetime] = None,
    nonce: Optional[str] = None,
) -> str:
    """Create a token for user_id issued at now."""
    now = now or datetime.now(timezone.utc)
    issue_ms = int(now.timestamp() * 1000)
    nonce = nonce or secrets.token_hex(8)
    raw = f"{user_id}:{issue_ms}:{nonce}".encode("utf-8")
    return base64.urlsafe_b64encode(raw).decode("ascii")


def decode_validation_token(token: str) -> ValidationTokenClaims:
    """
    Decode a token produced by mint_validation_token.

    Raises:
        ValidationError: token is not valid base64 or not in the expected layout
    """
    try:
        raw = base64.urlsafe_b64decode(token.encode("ascii")).decode("utf-8")
        user_id, issue_ms, nonce = raw.rsplit(":", 2)
        issued_at = datetime.fromtimestamp(int(issue_ms) / 1000, tz=timezone.utc)
    except (binascii.Error, UnicodeError, ValueError) as e:
        raise ValidationError("Malformed validation token") from e

    if not user_id or not nonce:
        raise ValidationError("Malformed validation token")

    return ValidationTokenClaims(user_id=user_id, issued_at=issued_at, nonce=nonce)
