from __future__ import annotations

import base64
import binascii
import logging
import mimetypes
import secrets
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Iterable, List, Optional, Tuple

from accounts.quota import QuotaLedger
from crypto.cipher import compute_checksum_b64, open_sealed, seal
from crypto.keyvault import KeyVault
from errors import Expired, FormatError, IntegrityError, NotFound, QuotaExceeded
from .blobs import BlobStore
from .index import AccountDocument, MetadataIndex
from .models import FileRecord, utcnow

logger = logging.getLogger(__name__)

MAX_NAME_LENGTH = 255
# a delete claim older than this is treated as abandoned and finished by the sweep
STALE_CLAIM_AFTER = timedelta(minutes=10)


@dataclass(frozen=True)
class DownloadedFile:
    file_id: str
    data: bytes
    original_name: str
    mime_type: str


# ============================================================================
# Helper methods
# ============================================================================

def _clean_name(name: str) -> str:
    name = (name or "").strip()
    if not name:
        raise ValueError("file name cannot be empty")
    return name[:MAX_NAME_LENGTH]


def _new_stored_name() -> str:
    return f"enc_{secrets.token_hex(16)}.dat"


def _b64(value: bytes) -> str:
    return base64.b64encode(value).decode("ascii")


def _unb64(value: str, what: str) -> bytes:
    try:
        return base64.b64decode(value.encode("ascii"), validate=True)
    except (binascii.Error, UnicodeEncodeError, AttributeError):
        raise FormatError(f"stored {what} is not valid base64") from None


# ============================================================================
# Registry
# ============================================================================

class FileRegistry:
    """
    Catalogue of stored files and the only code path that creates, reads
    or removes them.

    Upload order: admission check, data key, seal, blob write, key wrap,
    metadata commit, quota commit. Once the blob is written, any later
    failure deletes it again before the error propagates.
    """

    def __init__(
        self,
        index: MetadataIndex,
        blobs: BlobStore,
        keys: KeyVault,
        quota: QuotaLedger,
        *,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.index = index
        self.blobs = blobs
        self.keys = keys
        self.quota = quota
        self.clock = clock

    # ------------------------------------------------------------------
    # Upload
    # ------------------------------------------------------------------

    def upload(
        self,
        account_id: str,
        plaintext: bytes,
        original_name: str,
        mime_type: Optional[str] = None,
        folder_id: Optional[str] = None,
        expires_at: Optional[datetime] = None,
    ) -> FileRecord:
        now = self.clock()
        original_name = _clean_name(original_name)
        mime_type = mime_type or mimetypes.guess_type(original_name)[0] or "application/octet-stream"
        if expires_at is not None and expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        if expires_at is not None and expires_at <= now:
            raise ValueError("expires_at must be in the future")
        size = len(plaintext)

        if not self.quota.admit(account_id, size):
            raise QuotaExceeded(account_id, size, self.quota.snapshot(account_id).available)
        if folder_id is not None:
            self._require_folder(self.index.load(account_id), folder_id)

        data_key = self.keys.new_data_key()
        ciphertext, nonce, tag = seal(plaintext, data_key)

        record_id = str(uuid.uuid4())
        stored_name = _new_stored_name()
        locator = f"{account_id}/{stored_name}"
        self.blobs.put(locator, ciphertext)

        try:
            envelope, key_version = self.keys.wrap(data_key)
            record = FileRecord(
                file_id=record_id,
                owner_id=account_id,
                original_name=original_name,
                stored_name=stored_name,
                mime_type=mime_type,
                size=size,
                envelope=envelope,
                key_version=key_version,
                nonce=_b64(nonce),
                tag=_b64(tag),
                checksum=compute_checksum_b64(plaintext),
                created_at=now,
                updated_at=now,
                folder_id=folder_id,
                expires_at=expires_at,
            )
            with self.index.transaction(account_id) as doc:
                if folder_id is not None:
                    self._require_folder(doc, folder_id)
                doc.files[record.file_id] = record
            try:
                self.quota.reserve_and_commit(account_id, size)
            except Exception:
                self._drop_row(account_id, record.file_id)
                raise
        except Exception:
            self._discard_blob(locator)
            raise

        logger.info("Stored file %s (%d bytes) for account %s", record.file_id, size, account_id)
        return record

    def _drop_row(self, account_id: str, file_id: str) -> None:
        try:
            with self.index.transaction(account_id) as doc:
                doc.files.pop(file_id, None)
        except Exception:
            logger.exception("Could not remove metadata row %s after a failed upload", file_id)

    def _discard_blob(self, locator: str) -> None:
        try:
            self.blobs.delete(locator)
        except Exception:
            logger.exception("Could not remove orphaned blob %s", locator)

    @staticmethod
    def _require_folder(doc: AccountDocument, folder_id: str) -> None:
        if folder_id not in doc.folders:
            raise NotFound(f"Folder {folder_id} not found")

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    def get(self, file_id: str, account_id: str) -> FileRecord:
        record = self.index.load(account_id).files.get(file_id)
        if record is None or record.deleted:
            raise NotFound(f"File {file_id} not found")
        return record

    def download(self, file_id: str, account_id: str) -> DownloadedFile:
        """
        Decrypt a file for its owner. IntegrityError from the envelope, the
        payload or the checksum is passed through as-is.
        """
        record = self.get(file_id, account_id)
        if record.is_expired(self.clock()):
            raise Expired(f"File {file_id} has expired")

        data_key = self.keys.unwrap(record.envelope, record.key_version)
        ciphertext = self.blobs.get(record.locator)
        plaintext = open_sealed(
            ciphertext,
            data_key,
            _unb64(record.nonce, "nonce"),
            _unb64(record.tag, "tag"),
        )
        if record.checksum and compute_checksum_b64(plaintext) != record.checksum:
            raise IntegrityError(f"File {file_id} failed its checksum")

        return DownloadedFile(
            file_id=record.file_id,
            data=plaintext,
            original_name=record.original_name,
            mime_type=record.mime_type,
        )

    def list(self, account_id: str, folder_id: Optional[str] = None) -> List[FileRecord]:
        """Live files directly inside folder_id (None = root), newest first."""
        now = self.clock()
        doc = self.index.load(account_id)
        entries = [f for f in doc.files_in(folder_id) if f.is_visible(now)]
        return sorted(entries, key=lambda f: f.created_at, reverse=True)

    def list_in_folders(self, account_id: str, folder_ids: Iterable[str]) -> List[FileRecord]:
        """Every non-deleted file in any of folder_ids, expired ones included."""
        wanted = set(folder_ids)
        doc = self.index.load(account_id)
        return [f for f in doc.files.values() if f.folder_id in wanted and not f.deleted]

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def move(self, file_id: str, account_id: str, folder_id: Optional[str]) -> FileRecord:
        with self.index.transaction(account_id) as doc:
            record = doc.files.get(file_id)
            if record is None or record.deleted:
                raise NotFound(f"File {file_id} not found")
            if folder_id is not None:
                self._require_folder(doc, folder_id)
            record.folder_id = folder_id
            record.updated_at = self.clock()
            return record.copy()

    def delete(self, file_id: str, account_id: str) -> None:
        """
        Remove a file: claim the row, delete the blob, release the quota by
        the recorded size, drop the row.

        Claiming first means a concurrent second delete sees NotFound and
        the quota is released exactly once.
        """
        with self.index.transaction(account_id) as doc:
            record = doc.files.get(file_id)
            if record is None or record.deleted:
                raise NotFound(f"File {file_id} not found")
            record.deleted = True
            record.updated_at = self.clock()
            claimed = record.copy()

        try:
            self.blobs.delete(claimed.locator)
        except Exception:
            with self.index.transaction(account_id) as doc:
                row = doc.files.get(file_id)
                if row is not None:
                    row.deleted = False
            raise

        self.quota.release(account_id, claimed.size)

        with self.index.transaction(account_id) as doc:
            doc.files.pop(file_id, None)
        logger.info("Deleted file %s (%d bytes) for account %s", file_id, claimed.size, account_id)

    # ------------------------------------------------------------------
    # Expiry
    # ------------------------------------------------------------------

    def expired_files(self, now: Optional[datetime] = None) -> List[Tuple[str, str]]:
        """(owner_id, file_id) of every live file whose expires_at has passed."""
        now = now or self.clock()
        found = []
        for account_id in self.index.account_ids():
            for record in self.index.load(account_id).files.values():
                if not record.deleted and record.is_expired(now):
                    found.append((account_id, record.file_id))
        return found

    def stalled_deletes(self, now: Optional[datetime] = None) -> List[Tuple[str, str]]:
        """(owner_id, file_id) of rows whose delete claim is older than STALE_CLAIM_AFTER."""
        cutoff = (now or self.clock()) - STALE_CLAIM_AFTER
        found = []
        for account_id in self.index.account_ids():
            for record in self.index.load(account_id).files.values():
                if record.deleted and record.updated_at <= cutoff:
                    found.append((account_id, record.file_id))
        return found

    def finish_delete(self, file_id: str, account_id: str) -> bool:
        """
        Complete a delete that stopped after its claim, e.g. because the
        quota release failed. The claim is renewed first so a concurrent
        sweep leaves the row alone. Returns False if the row no longer
        needs finishing.
        """
        now = self.clock()
        with self.index.transaction(account_id) as doc:
            record = doc.files.get(file_id)
            if record is None or not record.deleted or record.updated_at > now - STALE_CLAIM_AFTER:
                return False
            record.updated_at = now
            claimed = record.copy()

        self.blobs.delete(claimed.locator)
        self.quota.release(account_id, claimed.size)
        with self.index.transaction(account_id) as doc:
            doc.files.pop(file_id, None)
        logger.info("Finished stalled delete of file %s for account %s", file_id, account_id)
        return True

    def sweep_expired(
        self,
        on_failure: Optional[Callable[[str, Exception], None]] = None,
    ) -> int:
        """
        Delete every expired file through `delete` and finish stalled
        deletes. One failure never stops the sweep; it is logged (and
        handed to on_failure) instead.
        """
        deleted = 0
        for account_id, file_id in self.expired_files():
            try:
                self.delete(file_id, account_id)
                deleted += 1
            except NotFound:
                logger.debug("Expired file %s was already removed", file_id)
            except Exception as exc:
                logger.exception("Failed to delete expired file %s", file_id)
                if on_failure is not None:
                    on_failure(file_id, exc)

        for account_id, file_id in self.stalled_deletes():
            try:
                if self.finish_delete(file_id, account_id):
                    deleted += 1
            except Exception as exc:
                logger.exception("Failed to finish delete of file %s", file_id)
                if on_failure is not None:
                    on_failure(file_id, exc)
        return deleted
