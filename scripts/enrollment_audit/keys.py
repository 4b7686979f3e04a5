"""Keyed-hash derivation of attestation and per-device symmetric keys."""

from __future__ import annotations

import base64
import hashlib
import hmac


def derive_key(master_key: bytes, message: str) -> str:
    """HMAC-SHA256 of the UTF-8 message keyed by master_key, base64 encoded."""
    digest = hmac.new(master_key, message.encode("utf-8"), hashlib.sha256).digest()
    return base64.b64encode(digest).decode("ascii")


def derive_group_keys(group_id: str, seed: str) -> tuple[str, str]:
    """Return the (primary, secondary) attestation keys for an enrollment group."""
    primary = derive_key(f"{group_id}-myKey1-test".encode("utf-8"), seed)
    secondary = derive_key(f"{group_id}-myKey2-test".encode("utf-8"), seed)
    return primary, secondary


def derive_device_key(group_key: str, device_id: str) -> str:
    """Derive a device's key from its group's base64 primary key."""
    return derive_key(base64.b64decode(group_key), device_id)
