from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional
import uuid

DEFAULT_LIMIT_BYTES = 100 * 1024 * 1024  # 100 MB


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds").replace("+00:00", "Z")


@dataclass(frozen=True)
class Account:
    # basic account information
    account_id: str
    external_id: str   # opaque id from the identity provider (e.g. a chat user id)
    created_at: str    # ISO8601 "YYYY-MM-DDTHH:MM:SSZ"
    updated_at: str

    # profile, refreshed on every contact
    username: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None

    # quota counters, bytes
    used_bytes: int = 0
    limit_bytes: int = DEFAULT_LIMIT_BYTES
    is_active: bool = True

    # constructor
    @staticmethod
    def new(
        external_id: str,
        username: Optional[str] = None,
        first_name: Optional[str] = None,
        last_name: Optional[str] = None,
        limit_bytes: int = DEFAULT_LIMIT_BYTES,
    ) -> "Account":
        now = _now_iso()
        return Account(
            account_id=str(uuid.uuid4()),
            external_id=str(external_id),
            created_at=now,
            updated_at=now,
            username=username,
            first_name=first_name,
            last_name=last_name,
            limit_bytes=limit_bytes,
        )

    @property
    def available_bytes(self) -> int:
        return max(0, self.limit_bytes - self.used_bytes)

    def display_name(self) -> str:
        return self.first_name or self.username or self.external_id
