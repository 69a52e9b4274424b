from __future__ import annotations
from abc import ABC, abstractmethod
from dataclasses import fields, replace
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional
import hashlib

from errors import AccountNotFound, FormatError
from storage.index import check_id, read_json, write_json_atomic
from storage.locks import KeyedLocks
from .models import Account, _now_iso

# Get valid field names from Account dataclass
_ACCOUNT_FIELDS = {f.name for f in fields(Account)}


def _make_account(data: Dict[str, Any]) -> Account:
    """Create an Account from dict, filtering out unknown fields for backwards compatibility."""
    filtered = {k: v for k, v in data.items() if k in _ACCOUNT_FIELDS}
    return Account(**filtered)


class IStorage(ABC):
    @abstractmethod
    def get(self, account_id: str) -> Optional[Account]: ...
    @abstractmethod
    def get_by_external_id(self, external_id: str) -> Optional[Account]: ...
    @abstractmethod
    def create(self, account: Account) -> Account: ...
    @abstractmethod
    def update(self, account_id: str, mutate: Callable[[Account], Account]) -> Account: ...
    @abstractmethod
    def get_all(self) -> List[Account]: ...


class JSONAccountStore(IStorage):
    """
    One JSON document per account so that updates to different accounts
    never touch the same file or lock. `update` is the conditional-update
    primitive: the callback runs under the account's lock and may raise to
    abort without writing.
    """

    def __init__(self, root: Path, locks: Optional[KeyedLocks] = None):
        self.root = Path(root)
        self.locks = locks or KeyedLocks()
        (self.root / "by_external").mkdir(parents=True, exist_ok=True)

    def _path(self, account_id: str) -> Path:
        return self.root / f"{check_id(account_id)}.json"

    @staticmethod
    def _external_key(external_id: str) -> str:
        return hashlib.sha256(str(external_id).encode("utf-8")).hexdigest()

    def _pointer_path(self, external_id: str) -> Path:
        return self.root / "by_external" / f"{self._external_key(external_id)}.json"

    def get(self, account_id: str) -> Optional[Account]:
        try:
            path = self._path(account_id)
        except FormatError:
            return None
        data = read_json(path)
        return _make_account(data) if data is not None else None

    def get_by_external_id(self, external_id: str) -> Optional[Account]:
        pointer = read_json(self._pointer_path(external_id))
        if pointer is None:
            return None
        return self.get(pointer["account_id"])

    def create(self, account: Account) -> Account:
        ext_lock = "ext:" + self._external_key(account.external_id)
        with self.locks.hold(ext_lock):
            existing = self.get_by_external_id(account.external_id)
            if existing is not None:
                return existing
            write_json_atomic(self._path(account.account_id), account.__dict__)
            write_json_atomic(
                self._pointer_path(account.external_id),
                {"account_id": account.account_id},
            )
        return account

    def update(self, account_id: str, mutate: Callable[[Account], Account]) -> Account:
        with self.locks.hold(account_id):
            current = self.get(account_id)
            if current is None:
                raise AccountNotFound(f"Account {account_id} not found")
            updated = mutate(current)
            if updated is current:
                return current
            updated = replace(updated, updated_at=_now_iso())
            write_json_atomic(self._path(account_id), updated.__dict__)
            return updated

    def get_all(self) -> List[Account]:
        if not self.root.exists():
            return []
        return [
            _make_account(read_json(path))
            for path in sorted(self.root.glob("*.json"))
        ]
