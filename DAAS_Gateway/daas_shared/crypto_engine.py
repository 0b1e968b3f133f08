"""
Ed25519 signing engine for decryption tickets.

The signing key is held by the service only. It is either derived from a
32-byte hex seed (so several processes can share one key) or generated fresh
at construction time, in which case tickets do not survive a restart.

Tokens are compact strings:

    base64url(canonical JSON payload) "." base64url(signature)

Canonical JSON uses sorted keys and tight separators, so the same payload
always serializes to the same bytes.
"""

import base64
import hashlib
import json
from typing import Any, Optional

import nacl.exceptions
import nacl.signing

ED25519_SEED_SIZE = 32
ED25519_SIG_SIZE = 64


def canonical_json_bytes(obj: Any) -> bytes:
    return json.dumps(
        obj,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
    ).encode("utf-8")


def b64url_encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def b64url_decode(text: str) -> bytes:
    padding = "=" * (-len(text) % 4)
    return base64.urlsafe_b64decode(text + padding)


def sha256_hex(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


class CryptoEngine:
    """Holds the ticket signing key and produces / checks detached signatures."""

    def __init__(self, seed_hex: Optional[str] = None):
        if seed_hex:
            seed = bytes.fromhex(seed_hex)
            if len(seed) != ED25519_SEED_SIZE:
                raise ValueError(f"signing seed must be {ED25519_SEED_SIZE} bytes, got {len(seed)}")
            self._signing_key = nacl.signing.SigningKey(seed)
        else:
            self._signing_key = nacl.signing.SigningKey.generate()
        self._verify_key = self._signing_key.verify_key

    @property
    def public_key_hex(self) -> str:
        return bytes(self._verify_key).hex()

    def sign(self, message: bytes) -> bytes:
        return self._signing_key.sign(message).signature

    def verify(self, message: bytes, signature: bytes) -> bool:
        if len(signature) != ED25519_SIG_SIZE:
            return False
        try:
            self._verify_key.verify(message, signature)
        except nacl.exceptions.BadSignatureError:
            return False
        return True

    # ─── Tokens ───

    def sign_token(self, payload: dict) -> str:
        body = canonical_json_bytes(payload)
        return f"{b64url_encode(body)}.{b64url_encode(self.sign(body))}"

    def open_token(self, token: str) -> Optional[dict]:
        """Return the payload when the token is well formed and its signature
        checks out, else None. Never raises on malformed input."""
        if not isinstance(token, str) or token.count(".") != 1:
            return None
        body_b64, sig_b64 = token.split(".")
        try:
            body = b64url_decode(body_b64)
            signature = b64url_decode(sig_b64)
        except (ValueError, UnicodeEncodeError):
            return None

        if not self.verify(body, signature):
            return None

        try:
            payload = json.loads(body.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError):
            return None
        return payload if isinstance(payload, dict) else None
