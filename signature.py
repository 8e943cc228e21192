#!/usr/bin/env python3
"""Miniflux webhook signature checks (hex HMAC-SHA256 of the raw body)."""

from hashlib import sha256
from hmac import HMAC, compare_digest
from typing import Optional, Union

SIGNATURE_HEADER = "X-Miniflux-Signature"


def _to_bytes(value: Union[str, bytes]) -> bytes:
    return value.encode("utf-8") if isinstance(value, str) else value


def compute_signature(secret: Union[str, bytes], payload: Union[str, bytes]) -> str:
    """Return the lower-case hex HMAC-SHA256 digest of `payload` keyed by `secret`."""
    return HMAC(_to_bytes(secret), _to_bytes(payload), sha256).hexdigest()


def verify_signature(secret: Union[str, bytes], payload: Union[str, bytes], signature: Optional[str]) -> bool:
    """Compare `signature` to the expected digest; exact and case-sensitive."""
    if not signature or not secret:
        return False
    expected = compute_signature(secret, payload)
    return compare_digest(expected.encode("ascii"), signature.encode("utf-8"))
