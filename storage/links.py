"""
One-time download links.

A link is a random token stored on the file record together with its
expiry. Whoever holds the token can fetch the file once, with no other
credential, so the TTL and the single use are what keep it safe.
"""

from __future__ import annotations

import hmac
import logging
import re
import secrets
from datetime import datetime, timedelta
from typing import Callable, Optional

from errors import Expired, InvalidToken, NotFound
from .file_manager import DownloadedFile, FileRegistry
from .index import MetadataIndex
from .models import FileRecord, utcnow

logger = logging.getLogger(__name__)

TOKEN_BYTES = 32
_TOKEN_RE = re.compile(r"^[0-9a-f]{64}\Z")


class LinkIssuer:
    def __init__(
        self,
        index: MetadataIndex,
        files: FileRegistry,
        *,
        default_ttl_minutes: int = 5,
        base_url: str = "http://localhost:3000",
        clock: Callable[[], datetime] = utcnow,
    ):
        self.index = index
        self.files = files
        self.default_ttl_minutes = default_ttl_minutes
        self.base_url = base_url.rstrip("/")
        self.clock = clock

    def issue(self, file_id: str, account_id: str, ttl_minutes: Optional[int] = None) -> str:
        """
        Create a fresh token for the file. Any earlier token for the same
        file stops working.
        """
        ttl = self.default_ttl_minutes if ttl_minutes is None else ttl_minutes
        if ttl <= 0:
            raise ValueError("ttl_minutes must be positive")

        now = self.clock()
        token = secrets.token_hex(TOKEN_BYTES)
        with self.index.transaction(account_id) as doc:
            record = doc.files.get(file_id)
            if record is None or record.deleted:
                raise NotFound(f"File {file_id} not found")
            if record.is_expired(now):
                raise Expired(f"File {file_id} has expired")
            record.link_token = token
            record.link_expires_at = now + timedelta(minutes=ttl)
            record.updated_at = now
        logger.info("Issued a %d minute link for file %s", ttl, file_id)
        return token

    def revoke(self, file_id: str, account_id: str) -> None:
        with self.index.transaction(account_id) as doc:
            record = doc.files.get(file_id)
            if record is None or record.deleted:
                raise NotFound(f"File {file_id} not found")
            record.link_token = None
            record.link_expires_at = None

    def _find_owner(self, token: str) -> Optional[str]:
        for account_id in self.index.account_ids():
            for record in self.index.load(account_id).files.values():
                if record.link_token and hmac.compare_digest(record.link_token, token):
                    return account_id
        return None

    def redeem_record(self, token: str) -> FileRecord:
        """
        Consume a token and return the file record it pointed at.

        The token is re-checked and cleared under the owner's lock, so of two
        concurrent redemptions only one can succeed. An expired token is
        left alone and keeps reporting Expired.
        """
        if not isinstance(token, str) or not _TOKEN_RE.match(token):
            raise InvalidToken("Invalid token")
        owner_id = self._find_owner(token)
        if owner_id is None:
            raise InvalidToken("Invalid token")

        now = self.clock()
        with self.index.transaction(owner_id) as doc:
            record = next(
                (r for r in doc.files.values()
                 if r.link_token and hmac.compare_digest(r.link_token, token)),
                None,
            )
            if record is None or record.deleted:
                raise InvalidToken("Invalid token")
            if record.link_expires_at is None or record.link_expires_at <= now:
                raise Expired("Token has expired")
            record.link_token = None
            record.link_expires_at = None
            record.updated_at = now
            return record.copy()

    def redeem(self, token: str) -> str:
        return self.redeem_record(token).file_id

    def download_by_token(self, token: str) -> DownloadedFile:
        record = self.redeem_record(token)
        return self.files.download(record.file_id, record.owner_id)

    def build_link(self, token: str) -> str:
        return f"{self.base_url}/files/download/{token}"
