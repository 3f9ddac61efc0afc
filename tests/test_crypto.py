"""Tests for credential encryption at rest."""

import json

import pytest

from shared.crypto import Cipher
from shared.exceptions import EncryptionError
from tests.conftest import TEST_KEY


class TestCipher:
    def test_decrypts_what_it_encrypts(self, cipher):
        stored = cipher.encrypt("hunter2 ünïcode")
        assert cipher.decrypt(stored) == "hunter2 ünïcode"

    def test_storage_format(self, cipher):
        payload = json.loads(cipher.encrypt("secret"))
        assert set(payload) == {"encrypted", "iv", "tag", "salt"}

    def test_fresh_salt_and_iv_per_value(self, cipher):
        assert cipher.encrypt("secret") != cipher.encrypt("secret")

    def test_tampered_ciphertext_rejected(self, cipher):
        payload = json.loads(cipher.encrypt("secret"))
        payload["tag"] = payload["iv"] + payload["iv"][:8]
        with pytest.raises(EncryptionError):
            cipher.decrypt(json.dumps(payload))

    def test_other_key_cannot_decrypt(self, cipher):
        stored = cipher.encrypt("secret")
        with pytest.raises(EncryptionError):
            Cipher("f" * 64).decrypt(stored)

    @pytest.mark.parametrize("stored", ["", None, "not json", '{"encrypted": "x"}'])
    def test_malformed_input(self, cipher, stored):
        with pytest.raises(EncryptionError):
            cipher.decrypt(stored)

    def test_empty_plaintext_rejected(self, cipher):
        with pytest.raises(EncryptionError):
            cipher.encrypt("")


class TestMasterKey:
    @pytest.mark.parametrize("key", ["", "abc", "z" * 64, TEST_KEY[:-2]])
    def test_bad_keys(self, key):
        with pytest.raises(EncryptionError):
            Cipher(key)
