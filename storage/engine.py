from datetime import datetime
from typing import Callable, Dict, Optional

from accounts.manager import AccountManager
from accounts.quota import QuotaLedger
from accounts.storage import JSONAccountStore
from crypto.hashing import MasterPasswordVerifier
from crypto.keyvault import KeyVault
from settings import Settings, load_settings
from .blobs import BlobStore
from .file_manager import FileRegistry
from .folders import FolderTree
from .index import MetadataIndex
from .links import LinkIssuer
from .models import utcnow
from .reaper import ExpiryReaper


class VaultEngine:
    """Wires every component of the vault from one Settings object."""

    def __init__(
        self,
        settings: Settings,
        *,
        keyring: Optional[Dict[str, str]] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.settings = settings
        keyring = keyring or {settings.master_key_version: settings.master_password}

        data = settings.data_path
        MasterPasswordVerifier(data / "master.json").check(keyring)

        self.keys = KeyVault(
            keyring,
            settings.master_key_version,
            iterations=settings.kdf_iterations,
        )
        account_store = JSONAccountStore(data / "accounts")
        self.accounts = AccountManager(account_store, settings.default_limit_bytes)
        self.quota = QuotaLedger(account_store)
        self.index = MetadataIndex(data / "index")
        self.blobs = BlobStore(settings.storage_path)
        self.files = FileRegistry(self.index, self.blobs, self.keys, self.quota, clock=clock)
        self.folders = FolderTree(self.index, self.files, clock=clock)
        self.links = LinkIssuer(
            self.index,
            self.files,
            default_ttl_minutes=settings.link_ttl_minutes,
            base_url=settings.public_base_url,
            clock=clock,
        )
        self.reaper = ExpiryReaper(self.files, clock=clock)

    @classmethod
    def open(cls, settings: Optional[Settings] = None, **kwargs) -> "VaultEngine":
        return cls(settings or load_settings(), **kwargs)
