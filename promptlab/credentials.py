"""
API key encryption and lookup.

Keys are stored as AES-256-GCM ciphertext in the form ``iv:tag:ciphertext``
(each part base64). The key material comes from ENCRYPTION_SECRET, a
64-character hex string.
"""

import base64
import binascii
import os
from typing import Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from promptlab.config import MASK_PREFIX
from promptlab.errors import DecryptionError, PromptLabError

IV_LENGTH = 12
TAG_LENGTH = 16


def _get_key() -> bytes:
    secret = os.environ.get("ENCRYPTION_SECRET")
    if not secret:
        raise PromptLabError("ENCRYPTION_SECRET is not set")
    try:
        key = bytes.fromhex(secret[:64])
    except ValueError as e:
        raise PromptLabError(f"ENCRYPTION_SECRET is not valid hex: {e}")
    if len(key) != 32:
        raise PromptLabError("ENCRYPTION_SECRET must be 64 hex characters")
    return key


def encrypt(plaintext: str) -> str:
    """Encrypt a secret with a fresh random IV."""
    key = _get_key()
    iv = os.urandom(IV_LENGTH)
    sealed = AESGCM(key).encrypt(iv, plaintext.encode("utf-8"), None)
    ciphertext, tag = sealed[:-TAG_LENGTH], sealed[-TAG_LENGTH:]
    return ":".join(
        base64.b64encode(part).decode("ascii") for part in (iv, tag, ciphertext)
    )


def decrypt(encrypted: str) -> str:
    """Decrypt an ``iv:tag:ciphertext`` string.

    Raises:
        DecryptionError: Wrong key material, bad format, or tampered ciphertext
    """
    try:
        key = _get_key()
    except PromptLabError as e:
        raise DecryptionError(e.message)

    parts = encrypted.split(":")
    if len(parts) != 3:
        raise DecryptionError("Malformed ciphertext: expected iv:tag:ciphertext")
    try:
        iv, tag, ciphertext = (base64.b64decode(p, validate=True) for p in parts)
    except (binascii.Error, ValueError) as e:
        raise DecryptionError(f"Malformed ciphertext: {e}")
    if len(iv) != IV_LENGTH or len(tag) != TAG_LENGTH:
        raise DecryptionError("Malformed ciphertext: bad IV or tag length")

    try:
        plaintext = AESGCM(key).decrypt(iv, ciphertext + tag, None)
    except InvalidTag:
        raise DecryptionError("Credential could not be decrypted (wrong key or corrupted data)")
    try:
        return plaintext.decode("utf-8")
    except UnicodeDecodeError as e:
        raise DecryptionError(f"Decrypted credential is not valid UTF-8: {e}")


def mask_secret(secret: str) -> str:
    """Display form of a secret: bullet prefix plus its last four characters."""
    return MASK_PREFIX + secret[-4:]


class CredentialResolver:
    """Returns the plaintext of the most recently stored key for a provider."""

    def __init__(self, repository):
        self.repository = repository

    def resolve(self, provider: str) -> Optional[str]:
        credential = self.repository.get_latest_api_key(provider)
        if credential is None:
            return None
        return decrypt(credential.encrypted_key)
