"""
Security utilities for authentication, signatures and encryption.

Provides password hashing, JWT utilities, webhook signature checks and the
AES-256-GCM envelope used for stored clinic credentials.
"""

import base64
import binascii
import hashlib
import hmac
import os
from datetime import datetime, timedelta, timezone
from functools import lru_cache
from typing import Any, Optional

import bcrypt as _bcrypt
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC
from jose import JWTError, jwt

from .config import settings


# =============================================================================
# Password Hashing
# =============================================================================


def hash_password(password: str) -> str:
    """Hash a password using bcrypt."""
    return _bcrypt.hashpw(password.encode("utf-8"), _bcrypt.gensalt()).decode("utf-8")


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a plain-text password against a bcrypt hash."""
    return _bcrypt.checkpw(plain_password.encode("utf-8"), hashed_password.encode("utf-8"))


# =============================================================================
# JWT Token Management
# =============================================================================

ALGORITHM = "HS256"


def create_access_token(
    data: dict[str, Any],
    expires_delta: Optional[timedelta] = None
) -> str:
    """
    Create a JWT access token.

    Args:
        data: Payload data to encode in token
        expires_delta: Optional custom expiration time

    Returns:
        Encoded JWT token string
    """
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(minutes=settings.access_token_expire_minutes)
    )
    to_encode.update({"exp": expire, "type": "access"})
    return jwt.encode(to_encode, settings.secret_key, algorithm=ALGORITHM)


def decode_token(token: str) -> Optional[dict[str, Any]]:
    """
    Decode and verify a JWT token.

    Returns:
        Decoded payload dict or None if invalid
    """
    try:
        return jwt.decode(token, settings.secret_key, algorithms=[ALGORITHM])
    except JWTError:
        return None


# =============================================================================
# Webhook Signatures
# =============================================================================

def compute_signature(body: bytes, secret: str) -> str:
    """HMAC-SHA256 hex digest of a raw request body."""
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def verify_signature(body: bytes, signature: Optional[str], secret: str) -> bool:
    """
    Verify an HMAC-SHA256 hex signature in constant time.

    Args:
        body: Raw request body bytes
        signature: Hex digest sent by the caller
        secret: Shared secret

    Returns:
        True when the signature matches
    """
    if not signature or not secret:
        return False
    expected = compute_signature(body, secret)
    return hmac.compare_digest(expected, signature.strip().lower())


# =============================================================================
# AES-256-GCM Envelope for Stored Secrets
# =============================================================================

ENVELOPE_VERSION = "v1"
NONCE_SIZE = 12
KEY_SIZE = 32


@lru_cache(maxsize=8)
def derive_key(material: str) -> bytes:
    """
    Turn configured key material into a 32-byte AES key.

    64 hex characters are used as the raw key; anything else is stretched
    with PBKDF2-SHA256.
    """
    if len(material) == KEY_SIZE * 2:
        try:
            return bytes.fromhex(material)
        except ValueError:
            pass
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=KEY_SIZE,
        salt=b"vetdesk_credentials_salt",
        iterations=100000,
    )
    return kdf.derive(material.encode("utf-8"))


def _resolve_key(key: Optional[bytes]) -> bytes:
    if key is None:
        return derive_key(settings.credentials_encryption_key)
    if len(key) != KEY_SIZE:
        raise ValueError(f"Encryption key must be {KEY_SIZE} bytes")
    return key


def encrypt_secret(plaintext: str, key: Optional[bytes] = None) -> str:
    """
    Encrypt a secret into a versioned AES-256-GCM envelope.

    The envelope is ``v1:<b64 nonce>:<b64 ciphertext+tag>``. A fresh random
    nonce is used for every call, so equal plaintexts never produce equal
    envelopes.

    Args:
        plaintext: Secret to protect
        key: Optional 32-byte key (defaults to the configured key)

    Returns:
        Envelope string safe to store in a text column
    """
    aesgcm = AESGCM(_resolve_key(key))
    nonce = os.urandom(NONCE_SIZE)
    ciphertext = aesgcm.encrypt(nonce, plaintext.encode("utf-8"), ENVELOPE_VERSION.encode())
    return ":".join([
        ENVELOPE_VERSION,
        base64.b64encode(nonce).decode("ascii"),
        base64.b64encode(ciphertext).decode("ascii"),
    ])


def decrypt_secret(envelope: str, key: Optional[bytes] = None) -> str:
    """
    Decrypt an envelope produced by encrypt_secret.

    Raises:
        ValueError: If the envelope is malformed, the key is wrong or the
            ciphertext was tampered with
    """
    parts = (envelope or "").split(":")
    if len(parts) != 3 or parts[0] != ENVELOPE_VERSION:
        raise ValueError("Malformed encrypted envelope")

    try:
        nonce = base64.b64decode(parts[1], validate=True)
        ciphertext = base64.b64decode(parts[2], validate=True)
    except (binascii.Error, ValueError) as e:
        raise ValueError("Malformed encrypted envelope") from e

    if len(nonce) != NONCE_SIZE:
        raise ValueError("Malformed encrypted envelope")

    try:
        plaintext = AESGCM(_resolve_key(key)).decrypt(
            nonce, ciphertext, ENVELOPE_VERSION.encode()
        )
    except InvalidTag as e:
        raise ValueError("Failed to decrypt secret") from e
    return plaintext.decode("utf-8")

