"""
Tests for payload encryption and envelope key management.
"""
import base64

import pytest

from crypto.cipher import NONCE_SIZE, TAG_SIZE, compute_checksum_b64, open_sealed, seal
from crypto.keyvault import (
    HEADER_SIZE,
    SALT_SIZE,
    KeyVault,
    derive_master_key,
    new_data_key,
    unpack_envelope,
    unwrap_key,
    wrap_key,
)
from errors import FormatError, IntegrityError


def _flip(data: bytes, index: int) -> bytes:
    out = bytearray(data)
    out[index] ^= 0x01
    return bytes(out)


@pytest.mark.parametrize("payload", [b"", b"x", b"Secret Message #1", bytes(range(256)) * 40])
def test_seal_open_round_trip(payload):
    """Sealed payloads open back to the exact plaintext."""
    key = new_data_key()
    ciphertext, nonce, tag = seal(payload, key)
    assert len(nonce) == NONCE_SIZE
    assert len(tag) == TAG_SIZE
    assert open_sealed(ciphertext, key, nonce, tag) == payload


def test_seal_uses_fresh_nonce_each_call():
    key = new_data_key()
    nonces = {seal(b"same payload", key)[1] for _ in range(20)}
    assert len(nonces) == 20


def test_tampering_is_detected():
    """Flipping any single bit of ciphertext, nonce or tag fails authentication."""
    key = new_data_key()
    ciphertext, nonce, tag = seal(b"This is a test message for tamper detection.", key)

    for i in range(len(ciphertext)):
        with pytest.raises(IntegrityError):
            open_sealed(_flip(ciphertext, i), key, nonce, tag)
    for i in range(len(nonce)):
        with pytest.raises(IntegrityError):
            open_sealed(ciphertext, key, _flip(nonce, i), tag)
    for i in range(len(tag)):
        with pytest.raises(IntegrityError):
            open_sealed(ciphertext, key, nonce, _flip(tag, i))


def test_truncation_and_wrong_key_are_detected():
    key = new_data_key()
    ciphertext, nonce, tag = seal(b"truncate me please", key)
    with pytest.raises(IntegrityError):
        open_sealed(ciphertext[:-1], key, nonce, tag)
    with pytest.raises(IntegrityError):
        open_sealed(ciphertext, key, nonce, tag[:-1])
    with pytest.raises(IntegrityError):
        open_sealed(ciphertext, new_data_key(), nonce, tag)


def test_checksum_is_base64_sha256():
    digest = base64.b64decode(compute_checksum_b64(b"abc"))
    assert digest.hex() == "ba7816bf8f01cfea414140de5dae2223b00361a396177a9cb410ff61f20015ad"


def test_derive_master_key_is_deterministic():
    salt = b"s" * SALT_SIZE
    k1 = derive_master_key("password", salt, 100_000)
    k2 = derive_master_key("password", salt, 100_000)
    assert k1 == k2
    assert len(k1) == 32
    assert derive_master_key("password", b"t" * SALT_SIZE, 100_000) != k1


def test_derive_master_key_rejects_low_iteration_count():
    with pytest.raises(ValueError):
        derive_master_key("password", b"s" * SALT_SIZE, 1_000)


def test_data_keys_are_never_reused():
    keys = {new_data_key() for _ in range(50)}
    assert len(keys) == 50
    assert all(len(k) == 32 for k in keys)


def test_envelope_layout_and_round_trip():
    """Envelope is base64(salt32 || nonce16 || tag16 || ciphertext)."""
    data_key = new_data_key()
    envelope = wrap_key(data_key, "master")
    raw = base64.b64decode(envelope)
    assert len(raw) == HEADER_SIZE + len(data_key)

    salt, nonce, tag, ciphertext = unpack_envelope(envelope)
    assert (len(salt), len(nonce), len(tag)) == (32, 16, 16)
    assert salt + nonce + tag + ciphertext == raw
    assert unwrap_key(envelope, "master") == data_key


def test_wrapping_twice_gives_different_envelopes():
    data_key = new_data_key()
    assert wrap_key(data_key, "master") != wrap_key(data_key, "master")


def test_unwrap_with_wrong_password_fails_integrity():
    envelope = wrap_key(new_data_key(), "master")
    with pytest.raises(IntegrityError):
        unwrap_key(envelope, "not the master")


def test_unwrap_tampered_envelope_fails_integrity():
    raw = bytearray(base64.b64decode(wrap_key(new_data_key(), "master")))
    raw[-1] ^= 0xFF
    with pytest.raises(IntegrityError):
        unwrap_key(base64.b64encode(bytes(raw)).decode(), "master")


@pytest.mark.parametrize("envelope", [
    "",
    "not base64 at all!",
    base64.b64encode(b"\x00" * HEADER_SIZE).decode(),
    None,
])
def test_malformed_envelope_is_format_error(envelope):
    with pytest.raises(FormatError):
        unwrap_key(envelope, "master")


def test_keyvault_wraps_under_current_version():
    vault = KeyVault("master", "v1")
    data_key = vault.new_data_key()
    envelope, version = vault.wrap(data_key)
    assert version == "v1"
    assert vault.unwrap(envelope, "v1") == data_key
    # same format as the module-level helpers
    assert unwrap_key(envelope, "master") == data_key


def test_keyvault_rotation_keeps_old_envelopes_readable():
    vault = KeyVault({"v1": "old master"}, "v1")
    old_key = new_data_key()
    old_envelope, old_version = vault.wrap(old_key)

    vault.add_version("v2", "new master", make_current=True)
    new_key = new_data_key()
    new_envelope, new_version = vault.wrap(new_key)

    assert (old_version, new_version) == ("v1", "v2")
    assert vault.unwrap(old_envelope, old_version) == old_key
    assert vault.unwrap(new_envelope, new_version) == new_key
    with pytest.raises(IntegrityError):
        vault.unwrap(old_envelope, "v2")


def test_keyvault_unknown_version_is_format_error():
    vault = KeyVault("master", "v1")
    envelope, _ = vault.wrap(new_data_key())
    with pytest.raises(FormatError):
        vault.unwrap(envelope, "v9")


def test_keyvault_cache_invalidation():
    vault = KeyVault("master", "v1")
    data_key = new_data_key()
    envelope, _ = vault.wrap(data_key)
    vault.invalidate("v1")
    assert vault.unwrap(envelope, "v1") == data_key
    vault.invalidate()
    assert vault.unwrap(envelope, "v1") == data_key


def test_keyvault_rejects_missing_current_version():
    with pytest.raises(ValueError):
        KeyVault({"v1": "master"}, "v2")
