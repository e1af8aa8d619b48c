"""Tests for validation tokens."""

import base64
from datetime import datetime, timedelta, timezone

import pytest

from trustcore.common.exceptions import ValidationError
from trustcore.decisions.tokens import decode_validation_token, mint_validation_token

ISSUED = datetime(2025, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


class TestValidationToken:

    def test_layout(self):
        token = mint_validation_token("admin-1", now=ISSUED, nonce="abcd")
        raw = base64.urlsafe_b64decode(token).decode()
        assert raw == f"admin-1:{int(ISSUED.timestamp() * 1000)}:abcd"

    def test_decode(self):
        claims = decode_validation_token(mint_validation_token("admin-1", now=ISSUED, nonce="abcd"))
        assert claims.user_id == "admin-1"
        assert claims.issued_at == ISSUED
        assert claims.nonce == "abcd"

    def test_user_id_containing_colon(self):
        claims = decode_validation_token(mint_validation_token("tenant:42", now=ISSUED))
        assert claims.user_id == "tenant:42"

    def test_random_nonce(self):
        assert mint_validation_token("u", now=ISSUED) != mint_validation_token("u", now=ISSUED)

    def test_expiry(self):
        claims = decode_validation_token(mint_validation_token("u", now=ISSUED))
        assert not claims.is_expired(300, now=ISSUED + timedelta(seconds=299))
        assert claims.is_expired(300, now=ISSUED + timedelta(seconds=301))

    @pytest.mark.parametrize("token", ["", "!!!", base64.urlsafe_b64encode(b"no-separators").decode()])
    def test_malformed(self, token):
        with pytest.raises(ValidationError):
            decode_validation_token(token)
