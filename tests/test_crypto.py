import os

import pytest
from cryptography.exceptions import UnsupportedAlgorithm

from gwprobe import crypto
from gwprobe.errors import KeyGenerationError, SigningError


@pytest.mark.parametrize("length", [0, 1, 2, 3, 4, 5, 31, 32, 33, 64])
def test_b64url_round_trip(length):
    data = os.urandom(length)
    text = crypto.b64url_encode(data)
    assert "=" not in text
    assert "+" not in text and "/" not in text
    assert crypto.b64url_decode(text) == data


def test_b64url_uses_url_safe_alphabet():
    assert crypto.b64url_encode(b"\xfb\xff") == "-_8"
    assert crypto.b64url_decode("-_8") == b"\xfb\xff"


@pytest.mark.parametrize("bad", ["abcde", "ab+c", "ab/c", "abc=", "ab c"])
def test_b64url_decode_rejects_malformed(bad):
    with pytest.raises(ValueError):
        crypto.b64url_decode(bad)


def test_hex_encode_is_lowercase_and_zero_padded():
    assert crypto.hex_encode(b"\x00\x0f\xab\xff") == "000fabff"


def test_fingerprint_is_sha256_hex():
    assert crypto.fingerprint(b"") == (
        "e3b0c44298fc1c149afbf4c8996fb92427ae41e4649b934ca495991b7852b855"
    )
    assert crypto.fingerprint(b"key") == crypto.fingerprint(b"key")
    assert crypto.fingerprint(b"key") != crypto.fingerprint(b"kez")


def test_create_identity_derives_device_id_from_public_key():
    identity = crypto.create_identity()
    assert len(identity.public_key) == 32
    assert len(identity.private_key) == 32
    assert identity.device_id == crypto.fingerprint(identity.public_key)
    assert len(identity.device_id) == 64
    assert identity.public_key_b64url == crypto.b64url_encode(identity.public_key)


def test_identities_are_fresh_per_call():
    assert crypto.create_identity().device_id != crypto.create_identity().device_id


def test_identity_repr_hides_private_key():
    identity = crypto.create_identity()
    assert "private_key" not in repr(identity)


def test_create_identity_reports_missing_backend(monkeypatch):
    class NoEd25519:
        @classmethod
        def generate(cls):
            raise UnsupportedAlgorithm("ed25519 is not supported by this backend")

    monkeypatch.setattr(crypto, "Ed25519PrivateKey", NoEd25519)
    with pytest.raises(KeyGenerationError):
        crypto.create_identity()


def test_sign_then_verify():
    identity = crypto.create_identity()
    message = "v2|dev|moltbot-probe|webchat|operator||1700000000000||nonce"
    signature = crypto.sign(message, identity.private_key)

    assert "=" not in signature
    assert len(crypto.b64url_decode(signature)) == 64
    assert crypto.verify(identity.public_key, message, signature)
    assert not crypto.verify(identity.public_key, message[:-1] + "E", signature)


def test_sign_is_deterministic_for_ed25519():
    identity = crypto.create_identity()
    assert crypto.sign("hello", identity.private_key) == crypto.sign("hello", identity.private_key)


def test_verify_with_wrong_key_fails():
    a, b = crypto.create_identity(), crypto.create_identity()
    signature = crypto.sign("hello", a.private_key)
    assert not crypto.verify(b.public_key, "hello", signature)


def test_verify_rejects_garbage_signature_and_key():
    identity = crypto.create_identity()
    assert not crypto.verify(identity.public_key, "hello", "not*base64")
    assert not crypto.verify(b"short", "hello", crypto.sign("hello", identity.private_key))


@pytest.mark.parametrize("bad_key", [b"", b"short", b"\x00" * 33, "not-bytes", None])
def test_sign_rejects_structurally_invalid_key(bad_key):
    with pytest.raises(SigningError):
        crypto.sign("hello", bad_key)
