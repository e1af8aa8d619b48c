"""Identity resolution and client classification."""

from trustcore.identity.client import is_ios, is_unreliable_client
from trustcore.identity.verifier import IdentityVerifier

__all__ = ["IdentityVerifier", "is_ios", "is_unreliable_client"]
