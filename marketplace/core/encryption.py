"""Tagged field encryption for stored credentials (account passwords, PINs, license keys).

Every ciphertext carries its algorithm as a prefix:

    v2:<base64(nonce || ciphertext+tag)>   AES-256-GCM, written by encrypt()
    v1:<fernet token>                      legacy Fernet, read only
"""

import base64
import hashlib
import os

from cryptography.exceptions import InvalidTag
from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from marketplace.core.config import get_settings
from marketplace.core.exceptions import BadRequestError
from marketplace.core.logging import get_logger

log = get_logger(__name__)

TAG_AES_GCM = "v2"
TAG_FERNET = "v1"
NONCE_SIZE = 12


def _aes_key() -> bytes:
    settings = get_settings()
    key = settings.encryption_key
    if key:
        try:
            raw = bytes.fromhex(key)
        except ValueError as e:
            raise BadRequestError("ENCRYPTION_KEY must be hex encoded") from e
        if len(raw) != 32:
            raise BadRequestError("ENCRYPTION_KEY must be 64 hex characters")
        return raw
    # Derive from secret_key for dev when ENCRYPTION_KEY not set
    return hashlib.sha256(settings.secret_key.encode()).digest()


def _get_fernet() -> Fernet:
    settings = get_settings()
    key = settings.legacy_fernet_key
    if not key or len(key) != 44:
        digest = hashlib.sha256(settings.secret_key.encode()).digest()
        key = base64.urlsafe_b64encode(digest).decode()
    return Fernet(key.encode())


def encrypt(plain: str) -> str:
    if not plain:
        return ""
    nonce = os.urandom(NONCE_SIZE)
    sealed = AESGCM(_aes_key()).encrypt(nonce, plain.encode("utf-8"), None)
    return f"{TAG_AES_GCM}:" + base64.b64encode(nonce + sealed).decode("ascii")


def encrypt_legacy(plain: str) -> str:
    """Produce a v1 value; only used to exercise the read path for old records."""
    if not plain:
        return ""
    return f"{TAG_FERNET}:" + _get_fernet().encrypt(plain.encode()).decode()


def decrypt(value: str) -> str:
    if not value:
        return ""
    tag, sep, body = value.partition(":")
    if not sep:
        raise BadRequestError("Encrypted value has no algorithm tag")
    if tag == TAG_AES_GCM:
        try:
            raw = base64.b64decode(body, validate=True)
        except ValueError as e:
            raise BadRequestError("Malformed encrypted value") from e
        if len(raw) <= NONCE_SIZE:
            raise BadRequestError("Malformed encrypted value")
        try:
            plain = AESGCM(_aes_key()).decrypt(raw[:NONCE_SIZE], raw[NONCE_SIZE:], None)
        except InvalidTag as e:
            raise BadRequestError("Encrypted value failed authentication") from e
        return plain.decode("utf-8")
    if tag == TAG_FERNET:
        try:
            return _get_fernet().decrypt(body.encode()).decode()
        except InvalidToken as e:
            raise BadRequestError("Encrypted value failed authentication") from e
    raise BadRequestError(f"Unknown encryption tag: {tag}")


def safe_decrypt(value: str) -> str:
    """Like decrypt() but returns "" on failure; for listings that must not break on one bad row."""
    try:
        return decrypt(value)
    except BadRequestError as e:
        log.warning("decrypt_failed", error=e.message)
        return ""
