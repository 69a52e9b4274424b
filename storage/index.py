"""
Per-account metadata documents.

Every account owns one JSON document holding its file and folder rows.
Documents are replaced atomically (temp file + rename), so readers always
see a complete version. Writers go through `transaction()`, which holds the
account's lock for the whole read-modify-write.
"""

from __future__ import annotations

import json
import os
import re
import tempfile
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

from errors import FormatError, NotFound
from .locks import KeyedLocks
from .models import FileRecord, Folder

_ID_RE = re.compile(r"^[A-Za-z0-9_-]{1,64}$")


def check_id(value: str) -> str:
    """Reject anything that is not safe to use as a single path segment."""
    if not isinstance(value, str) or not _ID_RE.match(value):
        raise FormatError(f"invalid identifier: {value!r}")
    return value


def read_json(path: Path) -> Optional[Dict[str, Any]]:
    if not path.exists():
        return None
    with path.open("r", encoding="utf-8") as fh:
        return json.load(fh)


def write_json_atomic(path: Path, payload: Dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(prefix=f".{path.stem}.", suffix=".tmp", dir=str(path.parent))
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            json.dump(payload, fh, indent=2)
            fh.flush()
            os.fsync(fh.fileno())
        Path(tmp).replace(path)
    finally:
        Path(tmp).unlink(missing_ok=True)


@dataclass
class AccountDocument:
    account_id: str
    files: Dict[str, FileRecord] = field(default_factory=dict)
    folders: Dict[str, Folder] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "account_id": self.account_id,
            "files": [f.to_dict() for f in self.files.values()],
            "folders": [f.to_dict() for f in self.folders.values()],
        }

    @classmethod
    def from_dict(cls, account_id: str, data: Dict[str, Any]) -> "AccountDocument":
        files = [FileRecord.from_dict(item) for item in data.get("files", [])]
        folders = [Folder.from_dict(item) for item in data.get("folders", [])]
        return cls(
            account_id=account_id,
            files={f.file_id: f for f in files},
            folders={f.folder_id: f for f in folders},
        )

    def children_of(self, parent_id: Optional[str]) -> List[Folder]:
        return sorted(
            (f for f in self.folders.values() if f.parent_id == parent_id),
            key=lambda f: f.name,
        )

    def files_in(self, folder_id: Optional[str]) -> List[FileRecord]:
        return [f for f in self.files.values() if f.folder_id == folder_id]


class MetadataIndex:
    def __init__(self, root: Path, locks: Optional[KeyedLocks] = None):
        self.root = Path(root)
        self.locks = locks or KeyedLocks()

    def _path(self, account_id: str) -> Path:
        try:
            return self.root / check_id(account_id) / "index.json"
        except FormatError:
            raise NotFound(f"Account {account_id!r} not found") from None

    def load(self, account_id: str) -> AccountDocument:
        """Read-only snapshot of one account's document."""
        data = read_json(self._path(account_id))
        if data is None:
            return AccountDocument(account_id=account_id)
        return AccountDocument.from_dict(account_id, data)

    def save(self, doc: AccountDocument) -> None:
        write_json_atomic(self._path(doc.account_id), doc.to_dict())

    @contextmanager
    def transaction(self, account_id: str) -> Iterator[AccountDocument]:
        """
        Yield the account's document under its lock and write it back on a
        clean exit. An exception discards every change.
        """
        with self.locks.hold(account_id):
            doc = self.load(account_id)
            yield doc
            self.save(doc)

    def account_ids(self) -> List[str]:
        if not self.root.exists():
            return []
        return sorted(
            entry.name for entry in self.root.iterdir()
            if entry.is_dir() and (entry / "index.json").exists()
        )
