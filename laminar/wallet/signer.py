"""
Ed25519 signing capability.

The orchestrator only sees the abstract ``Signer``; tests substitute
deterministic doubles.
"""

from __future__ import annotations

import binascii
import hashlib
from abc import ABC, abstractmethod

from nacl.exceptions import BadSignatureError
from nacl.signing import SigningKey, VerifyKey

from ..core.recovery.errors import SigningError

# Authentication key scheme byte for single-key Ed25519 accounts
ED25519_SCHEME = b"\x00"
_KEY_PREFIX = "ed25519-priv-"


class Signer(ABC):
    """Signs canonical transaction bytes for one account."""

    @property
    @abstractmethod
    def public_key(self) -> bytes:
        """Raw 32 byte public key."""

    @abstractmethod
    def sign(self, message: bytes) -> bytes:
        """Return the 64 byte signature over ``message``."""


class Ed25519Signer(Signer):
    """Holds one Ed25519 private key in memory."""

    def __init__(self, private_key: str | bytes):
        self._key = SigningKey(_decode_private_key(private_key))

    @property
    def public_key(self) -> bytes:
        return bytes(self._key.verify_key)

    @property
    def address(self) -> str:
        """Address derived from the public key (valid until the key is rotated)."""
        return "0x" + hashlib.sha3_256(self.public_key + ED25519_SCHEME).hexdigest()

    def sign(self, message: bytes) -> bytes:
        return self._key.sign(message).signature

    def __repr__(self) -> str:
        return f"Ed25519Signer(public_key=0x{self.public_key.hex()})"


def _decode_private_key(private_key: str | bytes) -> bytes:
    if isinstance(private_key, bytes):
        raw = private_key
    else:
        text = private_key.strip()
        if text.startswith(_KEY_PREFIX):
            text = text[len(_KEY_PREFIX):]
        if text.lower().startswith("0x"):
            text = text[2:]
        try:
            raw = bytes.fromhex(text)
        except ValueError as e:
            raise SigningError("private key is not valid hex") from e
    if len(raw) != 32:
        raise SigningError(f"ed25519 private key must be 32 bytes, got {len(raw)}")
    return raw


def verify_signature(public_key: bytes, message: bytes, signature: bytes) -> bool:
    try:
        VerifyKey(public_key).verify(message, signature)
        return True
    except (BadSignatureError, ValueError, binascii.Error):
        return False

