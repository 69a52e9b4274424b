"""
Error kinds raised by the vault engine.

Transports are expected to turn each kind into user-facing text. An
IntegrityError must never be reported as a NotFound: it means the stored
data or the master secret does not authenticate.
"""


class VaultError(Exception):
    """Base class for every error the engine reports on purpose."""


class NotFound(VaultError):
    """Entity is absent, deleted, or owned by someone else."""


class AccountNotFound(NotFound):
    pass


class BlobNotFound(NotFound):
    pass


class Conflict(VaultError):
    """Name collision, cyclic move or self-parent."""


class QuotaExceeded(VaultError):
    def __init__(self, account_id: str, requested: int, available: int):
        super().__init__(
            f"Storage quota exceeded: requested {requested} bytes, {available} available"
        )
        self.account_id = account_id
        self.requested = requested
        self.available = available


class Expired(VaultError):
    """A file TTL or link TTL has lapsed."""


class InvalidToken(VaultError):
    pass


class IntegrityError(VaultError):
    """Authentication tag or checksum did not verify."""


class MasterKeyMismatch(IntegrityError):
    """The configured master password does not match this vault."""


class FormatError(VaultError):
    """A persisted envelope or locator is malformed."""
