from __future__ import annotations

from dataclasses import dataclass, asdict, field, replace
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
import uuid


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(value: Optional[datetime]) -> Optional[str]:
    """ISO-8601 UTC with a trailing Z, or None."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds").replace("+00:00", "Z")


def from_iso(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


_TIME_FIELDS = ("created_at", "updated_at", "expires_at", "link_expires_at")


def _dump(obj) -> Dict[str, Any]:
    d = asdict(obj)
    for name in _TIME_FIELDS:
        if name in d:
            d[name] = to_iso(d[name])
    return d


@dataclass
class Folder:
    """A node in one account's folder forest. parent_id None means root."""

    folder_id: str
    owner_id: str
    name: str
    parent_id: Optional[str]
    created_at: datetime
    updated_at: datetime

    @staticmethod
    def new(owner_id: str, name: str, parent_id: Optional[str], now: datetime) -> "Folder":
        return Folder(
            folder_id=str(uuid.uuid4()),
            owner_id=owner_id,
            name=name,
            parent_id=parent_id,
            created_at=now,
            updated_at=now,
        )

    def to_dict(self) -> Dict[str, Any]:
        return _dump(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Folder":
        return cls(
            folder_id=data["folder_id"],
            owner_id=data["owner_id"],
            name=data["name"],
            parent_id=data.get("parent_id"),
            created_at=from_iso(data["created_at"]),
            updated_at=from_iso(data.get("updated_at") or data["created_at"]),
        )


@dataclass
class FileRecord:
    """
    Catalogue entry for one stored file.

    `stored_name` is the opaque blob name on disk, while `original_name` is
    what the user uploaded and sees. The data key lives only inside
    `envelope`, wrapped under master key `key_version`; `nonce` and `tag`
    (base64) authenticate the stored ciphertext.

    `link_token` / `link_expires_at` are set together while a one-time
    download link is active. `deleted` is only raised while a delete is in
    flight, so concurrent readers stop seeing the row before it is removed.
    """

    file_id: str
    owner_id: str
    original_name: str
    stored_name: str
    mime_type: str
    size: int
    envelope: str
    nonce: str
    tag: str
    checksum: str
    created_at: datetime
    updated_at: datetime
    key_version: str = "v1"
    folder_id: Optional[str] = None
    expires_at: Optional[datetime] = None
    link_token: Optional[str] = None
    link_expires_at: Optional[datetime] = None
    deleted: bool = False

    @property
    def locator(self) -> str:
        return f"{self.owner_id}/{self.stored_name}"

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and self.expires_at <= now

    def is_visible(self, now: datetime) -> bool:
        return not self.deleted and not self.is_expired(now)

    def copy(self, **changes) -> "FileRecord":
        return replace(self, **changes)

    def to_dict(self) -> Dict[str, Any]:
        return _dump(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FileRecord":
        return cls(
            file_id=data["file_id"],
            owner_id=data["owner_id"],
            original_name=data["original_name"],
            stored_name=data["stored_name"],
            mime_type=data.get("mime_type") or "application/octet-stream",
            size=data["size"],
            envelope=data["envelope"],
            nonce=data["nonce"],
            tag=data["tag"],
            checksum=data.get("checksum", ""),
            created_at=from_iso(data["created_at"]),
            updated_at=from_iso(data.get("updated_at") or data["created_at"]),
            key_version=data.get("key_version", "v1"),
            folder_id=data.get("folder_id"),
            expires_at=from_iso(data.get("expires_at")),
            link_token=data.get("link_token"),
            link_expires_at=from_iso(data.get("link_expires_at")),
            deleted=data.get("deleted", False),
        )


@dataclass
class FolderNode:
    folder: Folder
    children: List["FolderNode"] = field(default_factory=list)
    files: List[FileRecord] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        d = self.folder.to_dict()
        d["children"] = [child.to_dict() for child in self.children]
        d["files"] = [
            {"file_id": f.file_id, "original_name": f.original_name, "size": f.size}
            for f in self.files
        ]
        return d
