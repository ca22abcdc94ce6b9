"""AES-256-GCM envelope for integration credentials stored in target config."""

from __future__ import annotations

import base64
import binascii
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from extractify.config import Settings, get_settings
from extractify.errors import ConfigurationError, SecretDecryptionError
from extractify.schemas.integrations import EncryptedSecret

IV_LENGTH = 12
TAG_LENGTH = 16
KEY_LENGTH = 32


def load_secrets_key(settings: Settings | None = None) -> bytes:
    """Decode ``INTEGRATION_SECRETS_KEY`` (base64 of exactly 32 bytes)."""

    active = settings or get_settings()
    if not active.integration_secrets_key:
        raise ConfigurationError("INTEGRATION_SECRETS_KEY is not configured.")
    try:
        key = base64.b64decode(active.integration_secrets_key, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ConfigurationError("INTEGRATION_SECRETS_KEY must be base64 encoded.") from exc
    if len(key) != KEY_LENGTH:
        raise ConfigurationError("INTEGRATION_SECRETS_KEY must decode to 32 bytes.")
    return key


def encrypt_secret(plaintext: str, key: bytes) -> EncryptedSecret:
    if len(key) != KEY_LENGTH:
        raise SecretDecryptionError("Secret key must be 32 bytes")
    iv = os.urandom(IV_LENGTH)
    sealed = AESGCM(key).encrypt(iv, plaintext.encode("utf-8"), None)
    return EncryptedSecret(
        iv=base64.b64encode(iv).decode("ascii"),
        tag=base64.b64encode(sealed[-TAG_LENGTH:]).decode("ascii"),
        data=base64.b64encode(sealed[:-TAG_LENGTH]).decode("ascii"),
    )


def decrypt_secret(secret: EncryptedSecret, key: bytes) -> str:
    if len(key) != KEY_LENGTH:
        raise SecretDecryptionError("Secret key must be 32 bytes")
    try:
        iv = base64.b64decode(secret.iv)
        tag = base64.b64decode(secret.tag)
        data = base64.b64decode(secret.data)
        plaintext = AESGCM(key).decrypt(iv, data + tag, None)
    except (binascii.Error, ValueError, InvalidTag) as exc:
        raise SecretDecryptionError("Unable to decrypt integration secret") from exc
    return plaintext.decode("utf-8")
