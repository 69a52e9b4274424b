"""
Authenticated payload encryption (AES-256-GCM).

AESGCM.encrypt returns ciphertext||tag; the tag is split off so that the
ciphertext, nonce and tag can be stored separately.
"""

import base64
import os
from typing import Tuple

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.hashes import Hash, SHA256

from errors import IntegrityError

KEY_SIZE = 32    # 256 bits
NONCE_SIZE = 16  # 128 bits
TAG_SIZE = 16


def seal(plaintext: bytes, key: bytes) -> Tuple[bytes, bytes, bytes]:
    """
    Encrypt plaintext under key. Returns (ciphertext, nonce, tag).

    Every call draws a fresh random nonce.
    """
    if len(key) != KEY_SIZE:
        raise ValueError("data key must be 256 bits")
    nonce = os.urandom(NONCE_SIZE)
    ct_with_tag = AESGCM(key).encrypt(nonce, plaintext, None)
    return ct_with_tag[:-TAG_SIZE], nonce, ct_with_tag[-TAG_SIZE:]


def open_sealed(ciphertext: bytes, key: bytes, nonce: bytes, tag: bytes) -> bytes:
    """
    Decrypt and verify. Raises IntegrityError if anything was altered;
    no plaintext is returned in that case.
    """
    if len(key) != KEY_SIZE:
        raise ValueError("data key must be 256 bits")
    if len(tag) != TAG_SIZE or len(nonce) != NONCE_SIZE:
        raise IntegrityError("nonce or tag has the wrong length")
    try:
        return AESGCM(key).decrypt(nonce, ciphertext + tag, None)
    except InvalidTag:
        raise IntegrityError("payload failed authentication") from None


def compute_checksum(data: bytes) -> bytes:
    digest = Hash(SHA256())
    digest.update(data)
    return digest.finalize()


def compute_checksum_b64(data: bytes) -> str:
    """SHA-256 of data, base64-encoded."""
    return base64.b64encode(compute_checksum(data)).decode("ascii")
