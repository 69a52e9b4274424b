"""
Master password verification.

An argon2 hash of every master password version is kept next to the
metadata. On start-up each configured password is checked against it, so a
mistyped MASTER_PASSWORD is reported once and clearly instead of making
every download fail authentication.
"""

from pathlib import Path
from typing import Dict

from argon2 import PasswordHasher
from argon2.exceptions import VerifyMismatchError

from errors import MasterKeyMismatch
from storage.index import read_json, write_json_atomic


class SimpleHasher:
    def __init__(self):
        self._ph = PasswordHasher()

    def hash(self, password: str) -> str:
        """Create a secure hash for a new password."""
        return self._ph.hash(password)

    def verify(self, stored_hash: str, password: str) -> bool:
        """Check a password attempt against the stored hash."""
        try:
            return self._ph.verify(stored_hash, password)
        except VerifyMismatchError:
            return False

    def needs_rehash(self, stored_hash: str) -> bool:
        return self._ph.check_needs_rehash(stored_hash)


class MasterPasswordVerifier:
    def __init__(self, path: Path, hasher: SimpleHasher = None):
        self.path = Path(path)
        self.hasher = hasher or SimpleHasher()

    def _load(self) -> Dict[str, str]:
        data = read_json(self.path)
        return dict(data.get("versions", {})) if data else {}

    def check(self, keyring: Dict[str, str]) -> None:
        """
        Verify every version in keyring, enrolling versions seen for the
        first time. Raises MasterKeyMismatch on the first wrong password.
        """
        stored = self._load()
        changed = False
        for version, password in keyring.items():
            known = stored.get(version)
            if known is None:
                stored[version] = self.hasher.hash(password)
                changed = True
                continue
            if not self.hasher.verify(known, password):
                raise MasterKeyMismatch(
                    f"master password for key version {version!r} does not match this vault"
                )
            if self.hasher.needs_rehash(known):
                stored[version] = self.hasher.hash(password)
                changed = True
        if changed:
            write_json_atomic(self.path, {"versions": stored})
