"""Cryptography utilities for the encrypted vault."""

from .cipher import (
    seal,
    open_sealed,
    compute_checksum,
    compute_checksum_b64,
)

from .keyvault import (
    KeyVault,
    derive_master_key,
    new_data_key,
    wrap_key,
    unwrap_key,
    pack_envelope,
    unpack_envelope,
)

__all__ = [
    # Payload encryption
    "seal",
    "open_sealed",
    "compute_checksum",
    "compute_checksum_b64",
    # Envelope keys
    "KeyVault",
    "derive_master_key",
    "new_data_key",
    "wrap_key",
    "unwrap_key",
    "pack_envelope",
    "unpack_envelope",
]
