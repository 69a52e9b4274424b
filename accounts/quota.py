"""
Per-account storage accounting.

`admit` is an advisory pre-check. `reserve_and_commit` is the authoritative
increment: the limit check and the write happen inside one conditional
update on the account row, so two concurrent uploads cannot both pass and
jointly overshoot the limit.
"""

import logging
from dataclasses import dataclass, replace

from errors import AccountNotFound, QuotaExceeded
from .models import Account
from .storage import IStorage

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class QuotaSnapshot:
    used: int
    limit: int
    available: int
    percentage: float

    @classmethod
    def of(cls, account: Account) -> "QuotaSnapshot":
        used, limit = account.used_bytes, account.limit_bytes
        percentage = (used / limit) * 100 if limit > 0 else 0.0
        return cls(
            used=used,
            limit=limit,
            available=max(0, limit - used),
            percentage=round(percentage, 2),
        )


class QuotaLedger:
    def __init__(self, storage: IStorage):
        self.storage = storage

    def _account(self, account_id: str) -> Account:
        account = self.storage.get(account_id)
        if account is None:
            raise AccountNotFound(f"Account {account_id} not found")
        return account

    def admit(self, account_id: str, delta_bytes: int) -> bool:
        """Would delta_bytes fit right now? Does not change anything."""
        account = self._account(account_id)
        return account.used_bytes + delta_bytes <= account.limit_bytes

    def reserve_and_commit(self, account_id: str, delta_bytes: int) -> QuotaSnapshot:
        if delta_bytes < 0:
            raise ValueError("delta_bytes cannot be negative")

        def _reserve(account: Account) -> Account:
            if account.used_bytes + delta_bytes > account.limit_bytes:
                raise QuotaExceeded(account_id, delta_bytes, account.available_bytes)
            return replace(account, used_bytes=account.used_bytes + delta_bytes)

        return QuotaSnapshot.of(self.storage.update(account_id, _reserve))

    def release(self, account_id: str, delta_bytes: int) -> QuotaSnapshot:
        """Give back delta_bytes; usage never drops below zero."""
        if delta_bytes < 0:
            raise ValueError("delta_bytes cannot be negative")

        def _release(account: Account) -> Account:
            if delta_bytes > account.used_bytes:
                logger.warning(
                    "Releasing %d bytes from account %s with only %d used; clamping to zero",
                    delta_bytes, account_id, account.used_bytes,
                )
            return replace(account, used_bytes=max(0, account.used_bytes - delta_bytes))

        return QuotaSnapshot.of(self.storage.update(account_id, _release))

    def snapshot(self, account_id: str) -> QuotaSnapshot:
        return QuotaSnapshot.of(self._account(account_id))

    def set_limit(self, account_id: str, limit_bytes: int) -> QuotaSnapshot:
        if limit_bytes < 0:
            raise ValueError("limit_bytes cannot be negative")
        return QuotaSnapshot.of(
            self.storage.update(account_id, lambda a: replace(a, limit_bytes=limit_bytes))
        )


def format_bytes(num_bytes: int) -> str:
    """Human-readable size, e.g. 1536 -> '1.5 KB'."""
    if num_bytes <= 0:
        return "0 Bytes"
    units = ["Bytes", "KB", "MB", "GB", "TB"]
    i = 0
    while num_bytes >= 1024 ** (i + 1) and i < len(units) - 1:
        i += 1
    value = round(num_bytes / (1024 ** i), 2)
    return f"{value:g} {units[i]}"
