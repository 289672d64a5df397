"""
crypto.py - Ed25519 device identity + the small codecs around it.

Why this exists:
- Keep all key handling in one place so the handshake engine only sees
  `create_identity/sign/verify` and plain strings.
- Use URL-safe Base64 without '=' padding so keys and signatures drop cleanly
  into the connect request JSON.
- Keys are ephemeral: generated per session, held in memory, never written out.

Notes:
- Ed25519 keys are handled as raw 32-byte values (public key and seed), which
  is what the gateway expects on the wire.
- deviceId is the SHA-256 fingerprint of the raw public key, hex encoded.
"""

import base64
import hashlib
import re
from dataclasses import dataclass, field
from typing import Union

from cryptography.exceptions import InvalidSignature, UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import (
    Ed25519PrivateKey,
    Ed25519PublicKey,
)

from .errors import KeyGenerationError, SigningError

_B64URL_RE = re.compile(r"[A-Za-z0-9_-]*")

# -----------------------------
# Base64 URL helpers (no padding)
# -----------------------------

def b64url_encode(data: bytes) -> str:
    """URL-safe Base64 without '=' padding."""
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def b64url_decode(data: str) -> bytes:
    """Decode our URL-safe, no-padding Base64 back to bytes."""
    if not _B64URL_RE.fullmatch(data):
        raise ValueError("invalid base64url alphabet")
    if len(data) % 4 == 1:
        raise ValueError("invalid base64url length")
    # Add the minimal padding back so Python's decoder is happy.
    pad_len = (-len(data)) % 4
    return base64.urlsafe_b64decode(data + "=" * pad_len)


def hex_encode(data: bytes) -> str:
    """Lowercase hex, two digits per byte."""
    return data.hex()


def fingerprint(data: bytes) -> str:
    """SHA-256 of the input as hex. Used as the device id."""
    return hex_encode(hashlib.sha256(data).digest())


# -------------
# Device identity
# -------------

@dataclass(frozen=True)
class Identity:
    device_id: str
    public_key: bytes
    private_key: bytes = field(repr=False)

    @property
    def public_key_b64url(self) -> str:
        return b64url_encode(self.public_key)


def _raw_public(pub: Ed25519PublicKey) -> bytes:
    return pub.public_bytes(
        encoding=serialization.Encoding.Raw,
        format=serialization.PublicFormat.Raw,
    )


def _raw_private(priv: Ed25519PrivateKey) -> bytes:
    return priv.private_bytes(
        encoding=serialization.Encoding.Raw,
        format=serialization.PrivateFormat.Raw,
        encryption_algorithm=serialization.NoEncryption(),
    )


def create_identity() -> Identity:
    """Generate a fresh Ed25519 keypair and derive the device id from it."""
    try:
        priv = Ed25519PrivateKey.generate()
    except UnsupportedAlgorithm as exc:
        raise KeyGenerationError(f"Ed25519 not supported by the crypto backend: {exc}") from exc
    except ValueError as exc:
        raise KeyGenerationError(f"Failed to generate Ed25519 key: {exc}") from exc

    public_raw = _raw_public(priv.public_key())
    return Identity(
        device_id=fingerprint(public_raw),
        public_key=public_raw,
        private_key=_raw_private(priv),
    )


def load_private_key(private_key: Union[bytes, Ed25519PrivateKey]) -> Ed25519PrivateKey:
    """Accept a raw 32-byte seed or an already-loaded key object."""
    if isinstance(private_key, Ed25519PrivateKey):
        return private_key
    if not isinstance(private_key, (bytes, bytearray)):
        raise SigningError(f"Private key must be raw bytes, got {type(private_key).__name__}")
    try:
        return Ed25519PrivateKey.from_private_bytes(bytes(private_key))
    except (ValueError, UnsupportedAlgorithm) as exc:
        raise SigningError(f"Invalid Ed25519 private key: {exc}") from exc


# -------------------------
# Signing & Verification API
# -------------------------

def sign(message: str, private_key: Union[bytes, Ed25519PrivateKey]) -> str:
    """
    Sign the UTF-8 bytes of `message` with Ed25519. Returns Base64url signature.

    Ed25519 is deterministic: same key + same message gives the same signature.
    """
    key = load_private_key(private_key)
    sig = key.sign(message.encode("utf-8"))
    return b64url_encode(sig)


def verify(public_key: bytes, message: str, sig_b64: str) -> bool:
    """
    Verify a Base64url signature produced by `sign()`.
    Returns True on success, False on any failure (bad key, wrong data, etc.).
    """
    try:
        pub = Ed25519PublicKey.from_public_bytes(bytes(public_key))
        sig = b64url_decode(sig_b64)
        pub.verify(sig, message.encode("utf-8"))
        return True
    except (InvalidSignature, ValueError, TypeError):
        return False
