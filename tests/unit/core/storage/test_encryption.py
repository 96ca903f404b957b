"""Tests for the FieldEncryptor (Fernet encryption of session notes)."""

from __future__ import annotations

import pytest
from cryptography.fernet import Fernet

from vitalsync.core.storage.encryption import EncryptionError, FieldEncryptor


@pytest.fixture
def key() -> str:
    return Fernet.generate_key().decode()


@pytest.fixture
def encryptor(key: str) -> FieldEncryptor:
    return FieldEncryptor(key)


class TestEncryptDecrypt:
    def test_text_round_trip(self, encryptor: FieldEncryptor):
        token = encryptor.encrypt("woke up twice, felt groggy")
        assert isinstance(token, str)
        assert "groggy" not in token
        assert encryptor.decrypt(token) == "woke up twice, felt groggy"

    def test_unicode_round_trip(self, encryptor: FieldEncryptor):
        assert encryptor.decrypt(encryptor.encrypt("Läufchen 🏃")) == "Läufchen 🏃"

    def test_none_passes_through(self, encryptor: FieldEncryptor):
        assert encryptor.encrypt(None) is None
        assert encryptor.decrypt(None) is None

    def test_tokens_differ_per_call(self, encryptor: FieldEncryptor):
        assert encryptor.encrypt("same") != encryptor.encrypt("same")


class TestKeyValidation:
    def test_empty_key_raises(self):
        with pytest.raises(EncryptionError, match="must not be empty"):
            FieldEncryptor("")

    def test_whitespace_key_raises(self):
        with pytest.raises(EncryptionError, match="must not be empty"):
            FieldEncryptor("   ")

    def test_invalid_key_raises(self):
        with pytest.raises(EncryptionError, match="Invalid encryption key"):
            FieldEncryptor("not-a-fernet-key")

    def test_generate_key_is_usable(self):
        encryptor = FieldEncryptor(FieldEncryptor.generate_key())
        assert encryptor.decrypt(encryptor.encrypt("ok")) == "ok"


class TestWrongKey:
    def test_decrypt_with_other_key_raises(self, encryptor: FieldEncryptor):
        token = encryptor.encrypt("private")
        other = FieldEncryptor(Fernet.generate_key().decode())
        with pytest.raises(EncryptionError, match="wrong key"):
            other.decrypt(token)

    def test_garbage_token_raises(self, encryptor: FieldEncryptor):
        with pytest.raises(EncryptionError):
            encryptor.decrypt("garbage")
