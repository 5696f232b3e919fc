from __future__ import annotations

import pytest

from crosspost.storage.security import (
    CredentialDecryptError,
    decrypt_secret,
    derive_key,
    encrypt_credential_fields,
    encrypt_secret,
    get_credentials_key,
)
from tests.conftest import configure_test_env, reset_caches


def test_encrypt_round_trip_uses_fresh_iv(monkeypatch) -> None:
    configure_test_env(monkeypatch)
    try:
        first = encrypt_secret("https://discord.com/api/webhooks/1/abc")
        second = encrypt_secret("https://discord.com/api/webhooks/1/abc")

        assert first != second
        iv_hex, body_hex = first.split(":")
        assert len(bytes.fromhex(iv_hex)) == 16
        assert len(bytes.fromhex(body_hex)) % 16 == 0
        assert "discord" not in first
        assert decrypt_secret(first) == "https://discord.com/api/webhooks/1/abc"
        assert decrypt_secret(second) == "https://discord.com/api/webhooks/1/abc"
    finally:
        reset_caches()


def test_decrypt_with_wrong_key_fails() -> None:
    ciphertext = encrypt_secret("a-rather-long-access-token-value-0123456789", key=derive_key("key-one"))

    with pytest.raises(CredentialDecryptError):
        decrypt_secret(ciphertext, key=derive_key("key-two"))


@pytest.mark.parametrize("ciphertext", ["", "not-hex", "zz:00", "abcd:00112233445566778899aabbccddeeff", "00" * 16 + ":"])
def test_decrypt_rejects_malformed_input(ciphertext: str) -> None:
    with pytest.raises(CredentialDecryptError):
        decrypt_secret(ciphertext, key=derive_key("any-key"))


def test_derive_key_pads_and_truncates() -> None:
    short = derive_key("short")
    assert len(short) == 32
    assert short == b"short" + b" " * 27

    long = derive_key("x" * 40)
    assert long == b"x" * 32


def test_configured_key_is_cached_and_used(monkeypatch) -> None:
    configure_test_env(monkeypatch, CREDENTIALS_ENCRYPTION_KEY="vault-key")
    try:
        assert get_credentials_key() == derive_key("vault-key")
        ciphertext = encrypt_secret("secret-value")
        assert decrypt_secret(ciphertext, key=derive_key("vault-key")) == "secret-value"
    finally:
        reset_caches()


def test_credential_fields_are_encrypted_independently(monkeypatch) -> None:
    configure_test_env(monkeypatch)
    try:
        encrypted = encrypt_credential_fields({"access_token": "tok", "bot_token": "bot"})

        assert encrypted["webhook_url_encrypted"] is None
        assert encrypted["refresh_token_encrypted"] is None
        assert decrypt_secret(encrypted["access_token_encrypted"]) == "tok"
        assert decrypt_secret(encrypted["bot_token_encrypted"]) == "bot"
    finally:
        reset_caches()
