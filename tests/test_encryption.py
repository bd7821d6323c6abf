import base64

import pytest

from marketplace.core.encryption import decrypt, encrypt, encrypt_legacy, safe_decrypt
from marketplace.core.exceptions import BadRequestError


def test_encrypt_writes_tagged_aes_gcm():
    token = encrypt("hunter2")
    assert token.startswith("v2:")
    assert "hunter2" not in token
    assert decrypt(token) == "hunter2"
    # Fresh nonce per call
    assert encrypt("hunter2") != token


def test_empty_values_pass_through():
    assert encrypt("") == ""
    assert decrypt("") == ""


def test_legacy_fernet_values_still_readable():
    token = encrypt_legacy("old-password")
    assert token.startswith("v1:")
    assert decrypt(token) == "old-password"


def test_tampered_ciphertext_fails_authentication():
    token = encrypt("pin-1234")
    raw = bytearray(base64.b64decode(token[3:]))
    raw[-1] ^= 0x01
    tampered = "v2:" + base64.b64encode(bytes(raw)).decode()
    with pytest.raises(BadRequestError):
        decrypt(tampered)


def test_unknown_or_missing_tag():
    with pytest.raises(BadRequestError):
        decrypt("v9:abcd")
    with pytest.raises(BadRequestError):
        decrypt("no-tag-here")


def test_safe_decrypt_returns_empty_on_failure():
    assert safe_decrypt("v2:not-base64!!") == ""
    assert safe_decrypt(encrypt("ok")) == "ok"
