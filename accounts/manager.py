from dataclasses import replace
from typing import List, Optional

from errors import AccountNotFound
from .models import Account, DEFAULT_LIMIT_BYTES
from .storage import IStorage


class AccountManager:
    """
    Maps an external identity (a chat user, say) to an internal Account.
    The external id is opaque here; it is only compared for equality.
    """

    def __init__(self, storage: IStorage, default_limit_bytes: int = DEFAULT_LIMIT_BYTES):
        self.storage = storage
        self.default_limit_bytes = default_limit_bytes

    def get_or_create(
        self,
        external_id: str,
        username: Optional[str] = None,
        first_name: Optional[str] = None,
        last_name: Optional[str] = None,
    ) -> Account:
        """Return the account for external_id, creating it on first contact."""
        external_id = str(external_id).strip()
        if not external_id:
            raise ValueError("external id cannot be empty")

        account = self.storage.get_by_external_id(external_id)
        if account is None:
            account = self.storage.create(Account.new(
                external_id=external_id,
                username=username,
                first_name=first_name,
                last_name=last_name,
                limit_bytes=self.default_limit_bytes,
            ))

        profile = (username, first_name, last_name)
        if profile == (account.username, account.first_name, account.last_name):
            return account
        return self.storage.update(account.account_id, lambda a: replace(
            a, username=username, first_name=first_name, last_name=last_name,
        ))

    def get(self, account_id: str) -> Account:
        account = self.storage.get(account_id)
        if account is None:
            raise AccountNotFound(f"Account {account_id} not found")
        return account

    def get_by_external_id(self, external_id: str) -> Optional[Account]:
        return self.storage.get_by_external_id(str(external_id).strip())

    def get_all_accounts(self) -> List[Account]:
        return self.storage.get_all()
