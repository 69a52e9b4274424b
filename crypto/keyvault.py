"""
Envelope key management.

Each file gets its own random data key. The data key is stored wrapped
(AES-256-GCM) under a key derived from a master password with
PBKDF2-HMAC-SHA256. The stored envelope is

    base64( salt(32) || nonce(16) || tag(16) || ciphertext )

and must round-trip exactly; consumers never slice it at other offsets.
"""

from __future__ import annotations

import base64
import binascii
import os
import threading
from collections import OrderedDict
from typing import Dict, Optional, Tuple, Union

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from errors import FormatError, IntegrityError

KEY_SIZE = 32
SALT_SIZE = 32
NONCE_SIZE = 16
TAG_SIZE = 16
HEADER_SIZE = SALT_SIZE + NONCE_SIZE + TAG_SIZE
MIN_ITERATIONS = 100_000


# ============================================================================
# Primitives
# ============================================================================

def derive_master_key(password: str, salt: bytes, iterations: int = MIN_ITERATIONS) -> bytes:
    """Derive a 256-bit wrapping key from password and salt. Deterministic."""
    if iterations < MIN_ITERATIONS:
        raise ValueError(f"PBKDF2 needs at least {MIN_ITERATIONS} iterations")
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=KEY_SIZE,
        salt=salt,
        iterations=iterations,
    )
    return kdf.derive(password.encode("utf-8"))


def new_data_key() -> bytes:
    """Fresh random 256-bit key for exactly one file."""
    return os.urandom(KEY_SIZE)


def pack_envelope(salt: bytes, nonce: bytes, tag: bytes, ciphertext: bytes) -> str:
    return base64.b64encode(salt + nonce + tag + ciphertext).decode("ascii")


def unpack_envelope(envelope: str) -> Tuple[bytes, bytes, bytes, bytes]:
    """Split an envelope into (salt, nonce, tag, ciphertext). Raises FormatError."""
    if not isinstance(envelope, str):
        raise FormatError("envelope must be a base64 string")
    try:
        raw = base64.b64decode(envelope.encode("ascii"), validate=True)
    except (binascii.Error, UnicodeEncodeError):
        raise FormatError("envelope is not valid base64") from None
    if len(raw) <= HEADER_SIZE:
        raise FormatError(f"envelope too short ({len(raw)} bytes)")
    salt = raw[:SALT_SIZE]
    nonce = raw[SALT_SIZE:SALT_SIZE + NONCE_SIZE]
    tag = raw[SALT_SIZE + NONCE_SIZE:HEADER_SIZE]
    return salt, nonce, tag, raw[HEADER_SIZE:]


def _seal_key(data_key: bytes, wrapping_key: bytes, salt: bytes) -> str:
    nonce = os.urandom(NONCE_SIZE)
    ct_with_tag = AESGCM(wrapping_key).encrypt(nonce, data_key, None)
    return pack_envelope(salt, nonce, ct_with_tag[-TAG_SIZE:], ct_with_tag[:-TAG_SIZE])


def _open_key(nonce: bytes, tag: bytes, ciphertext: bytes, wrapping_key: bytes) -> bytes:
    try:
        return AESGCM(wrapping_key).decrypt(nonce, ciphertext + tag, None)
    except InvalidTag:
        raise IntegrityError("envelope failed authentication") from None


def wrap_key(data_key: bytes, master_password: str, iterations: int = MIN_ITERATIONS) -> str:
    """Wrap data_key under master_password with a fresh salt and nonce."""
    salt = os.urandom(SALT_SIZE)
    return _seal_key(data_key, derive_master_key(master_password, salt, iterations), salt)


def unwrap_key(envelope: str, master_password: str, iterations: int = MIN_ITERATIONS) -> bytes:
    """
    Recover the data key from an envelope.

    Raises FormatError for a malformed envelope and IntegrityError when the
    tag does not verify (tampering, corruption or a wrong master password).
    """
    salt, nonce, tag, ciphertext = unpack_envelope(envelope)
    return _open_key(nonce, tag, ciphertext, derive_master_key(master_password, salt, iterations))


# ============================================================================
# Versioned keyring
# ============================================================================

class KeyVault:
    """
    Wraps and unwraps data keys under a keyring of versioned master passwords.

    New envelopes are always wrapped under the current version; older
    versions stay readable until they are removed. Derived wrapping keys are
    cached per (version, salt) since PBKDF2 is deliberately slow.
    """

    def __init__(
        self,
        keyring: Union[str, Dict[str, str]],
        current_version: str = "v1",
        *,
        iterations: int = MIN_ITERATIONS,
        cache_size: int = 1024,
    ):
        if iterations < MIN_ITERATIONS:
            raise ValueError(f"PBKDF2 needs at least {MIN_ITERATIONS} iterations")
        if isinstance(keyring, str):
            keyring = {current_version: keyring}
        if current_version not in keyring:
            raise ValueError(f"current key version {current_version!r} is not in the keyring")
        self._keyring = dict(keyring)
        self.current_version = current_version
        self.iterations = iterations
        self._cache: "OrderedDict[Tuple[str, bytes], bytes]" = OrderedDict()
        self._cache_size = cache_size
        self._lock = threading.Lock()

    @property
    def versions(self) -> Tuple[str, ...]:
        return tuple(self._keyring)

    def new_data_key(self) -> bytes:
        return new_data_key()

    def wrap(self, data_key: bytes) -> Tuple[str, str]:
        """Returns (envelope, key_version)."""
        version = self.current_version
        salt = os.urandom(SALT_SIZE)
        envelope = _seal_key(data_key, self._wrapping_key(version, salt), salt)
        return envelope, version

    def unwrap(self, envelope: str, key_version: Optional[str] = None) -> bytes:
        version = key_version or self.current_version
        salt, nonce, tag, ciphertext = unpack_envelope(envelope)
        return _open_key(nonce, tag, ciphertext, self._wrapping_key(version, salt))

    def master_password(self, version: Optional[str] = None) -> str:
        version = version or self.current_version
        try:
            return self._keyring[version]
        except KeyError:
            raise FormatError(f"unknown master key version {version!r}") from None

    def add_version(self, version: str, master_password: str, *, make_current: bool = False) -> None:
        with self._lock:
            self._keyring[version] = master_password
            self._drop_cached(version)
            if make_current:
                self.current_version = version

    def invalidate(self, version: Optional[str] = None) -> None:
        """Forget cached wrapping keys for one version, or for all of them."""
        with self._lock:
            if version is None:
                self._cache.clear()
            else:
                self._drop_cached(version)

    def _drop_cached(self, version: str) -> None:
        for cache_key in [k for k in self._cache if k[0] == version]:
            del self._cache[cache_key]

    def _wrapping_key(self, version: str, salt: bytes) -> bytes:
        password = self.master_password(version)
        cache_key = (version, salt)
        with self._lock:
            cached = self._cache.get(cache_key)
            if cached is not None:
                self._cache.move_to_end(cache_key)
                return cached
        derived = derive_master_key(password, salt, self.iterations)
        with self._lock:
            self._cache[cache_key] = derived
            while len(self._cache) > self._cache_size:
                self._cache.popitem(last=False)
        return derived
