"""
Command-line interface for the encrypted vault.

Provides a text-based menu for:
- Signing in with an external account id
- File upload (optionally into a folder, optionally self-destructing)
- File download and one-time download links
- Folder management
- Quota overview

`python cli.py sweep` runs one expired-file cleanup and exits, for use
from cron or another scheduler.
"""

import sys
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from typing import List, Optional

from accounts.models import Account
from accounts.quota import format_bytes
from errors import (
    Conflict,
    Expired,
    FormatError,
    IntegrityError,
    InvalidToken,
    MasterKeyMismatch,
    NotFound,
    QuotaExceeded,
    VaultError,
)
from settings import configure_logging, load_settings
from storage.engine import VaultEngine
from storage.file_manager import DownloadedFile
from storage.models import FileRecord, Folder, FolderNode


@dataclass
class Session:
    """What the signed-in operator is looking at right now."""

    account: Account
    folder: Optional[Folder] = None

    @property
    def folder_id(self) -> Optional[str]:
        return self.folder.folder_id if self.folder else None


def describe_error(exc: Exception) -> str:
    """User-facing text for an engine error. Tampering is never hidden."""
    if isinstance(exc, MasterKeyMismatch):
        return "❌ The master password does not match this vault"
    if isinstance(exc, IntegrityError):
        return "⚠️ Integrity check FAILED: stored data was corrupted or tampered with"
    if isinstance(exc, QuotaExceeded):
        return f"❌ Not enough space: {format_bytes(exc.available)} left"
    if isinstance(exc, Expired):
        return f"⌛ {exc}"
    if isinstance(exc, InvalidToken):
        return "❌ This link is invalid or has already been used"
    if isinstance(exc, NotFound):
        return f"❌ Not found: {exc}"
    if isinstance(exc, Conflict):
        return f"❌ {exc}"
    if isinstance(exc, FormatError):
        return f"❌ Stored data is malformed: {exc}"
    if isinstance(exc, (VaultError, ValueError)):
        return f"❌ {exc}"
    return f"❌ Unexpected error: {exc}"


def print_menu(session: Optional[Session]) -> None:
    print("\n" + "=" * 50)
    if session:
        where = session.folder.name if session.folder else "/"
        print(f"  🔐 Encrypted Vault - {session.account.display_name()} [{where}]")
    else:
        print("  🔐 Encrypted Vault")
    print("=" * 50)

    if not session:
        print("  1) Sign in")
        print("  9) Run expired files cleanup")
        print("  0) Quit")
    else:
        print("  1) Upload file")
        print("  2) Download file")
        print("  3) List files")
        print("  4) Create download link")
        print("  5) Download with link")
        print("  6) Delete a file")
        print("  7) Folders")
        print("  8) Quota")
        print("  9) Run expired files cleanup")
        print("  10) Sign out")
        print("  0) Quit")
    print("=" * 50)


def _pick(items: List, label: str):
    try:
        choice = int(input(f"\nSelect {label}: ")) - 1
    except ValueError:
        print("❌ Invalid input")
        return None
    if choice < 0 or choice >= len(items):
        print("❌ Invalid selection")
        return None
    return items[choice]


def _print_files(files: List[FileRecord]) -> None:
    for i, f in enumerate(files, 1):
        ttl = f" ⏳ until {f.expires_at:%Y-%m-%d %H:%M}" if f.expires_at else ""
        link = " 🔗" if f.link_token else ""
        print(f"   {i}. {f.original_name} ({format_bytes(f.size)}){ttl}{link}")


def _save_download(result: DownloadedFile) -> Path:
    target_dir = Path.home() / "Downloads"
    target_dir.mkdir(parents=True, exist_ok=True)
    name = Path(result.original_name).name
    if name in ("", ".", ".."):
        name = result.file_id
    target = target_dir / name
    target.write_bytes(result.data)
    return target


def handle_sign_in(engine: VaultEngine) -> Optional[Session]:
    print("\n🔑 Sign in")
    external_id = input("Account id: ").strip()
    if not external_id:
        print("❌ Account id cannot be empty")
        return None
    username = input("Display name (optional): ").strip() or None
    account = engine.accounts.get_or_create(external_id, username=username)
    print(f"✅ Welcome, {account.display_name()}!")
    return Session(account=account)


def handle_upload(engine: VaultEngine, session: Session) -> None:
    print("\n📤 Upload File")
    path = Path(input("File path: ").strip()).expanduser()
    if not path.is_file():
        print(f"❌ File not found: {path}")
        return

    expires_at = None
    hours = input("Auto-delete after hours (Enter to keep): ").strip()
    if hours:
        try:
            expires_at = engine.files.clock() + timedelta(hours=float(hours))
        except ValueError:
            print("❌ Invalid number")
            return

    try:
        record = engine.files.upload(
            session.account.account_id,
            path.read_bytes(),
            path.name,
            folder_id=session.folder_id,
            expires_at=expires_at,
        )
    except Exception as e:
        print(describe_error(e))
        return
    print(f"\n✅ File uploaded successfully!")
    print(f"   📄 Name: {record.original_name}")
    print(f"   🔑 File ID: {record.file_id}")
    print(f"   📊 Size: {format_bytes(record.size)}")
    print(f"   🔒 Encrypted with AES-256-GCM")


def handle_download(engine: VaultEngine, session: Session) -> None:
    print("\n📥 Download File")
    files = engine.files.list(session.account.account_id, session.folder_id)
    if not files:
        print("   No files here")
        return
    _print_files(files)
    selected = _pick(files, "file")
    if selected is None:
        return
    try:
        result = engine.files.download(selected.file_id, session.account.account_id)
    except Exception as e:
        print(describe_error(e))
        return
    target = _save_download(result)
    print(f"\n✅ File downloaded successfully!")
    print(f"   📁 Saved to: {target}")


def handle_list_files(engine: VaultEngine, session: Session) -> None:
    print("\n📁 Files")
    files = engine.files.list(session.account.account_id, session.folder_id)
    if not files:
        print("   No files here")
        return
    _print_files(files)


def handle_create_link(engine: VaultEngine, session: Session) -> None:
    print("\n🔗 Create Download Link")
    files = engine.files.list(session.account.account_id, session.folder_id)
    if not files:
        print("   No files here")
        return
    _print_files(files)
    selected = _pick(files, "file")
    if selected is None:
        return
    try:
        token = engine.links.issue(selected.file_id, session.account.account_id)
    except Exception as e:
        print(describe_error(e))
        return
    print(f"\n✅ One-time link (valid {engine.links.default_ttl_minutes} minutes):")
    print(f"   {engine.links.build_link(token)}")


def handle_redeem_link(engine: VaultEngine) -> None:
    print("\n📥 Download With Link")
    token = input("Link or token: ").strip().rsplit("/", 1)[-1]
    try:
        result = engine.links.download_by_token(token)
    except Exception as e:
        print(describe_error(e))
        return
    target = _save_download(result)
    print(f"✅ Saved to: {target}")


def handle_delete(engine: VaultEngine, session: Session) -> None:
    print("\n🗑️ Delete a File")
    files = engine.files.list(session.account.account_id, session.folder_id)
    if not files:
        print("   No files to delete")
        return
    _print_files(files)
    selected = _pick(files, "file to delete")
    if selected is None:
        return

    confirm = input(f"Delete '{selected.original_name}'? (yes/no): ").strip().lower()
    if confirm != "yes":
        print("   Cancelled")
        return
    try:
        engine.files.delete(selected.file_id, session.account.account_id)
        print(f"✅ File deleted")
    except Exception as e:
        print(describe_error(e))


def _print_tree(nodes: List[FolderNode], indent: int = 1) -> None:
    stack = [(node, indent) for node in reversed(nodes)]
    while stack:
        node, level = stack.pop()
        print(f"{'   ' * level}📂 {node.folder.name} ({len(node.files)} files)")
        stack.extend((child, level + 1) for child in reversed(node.children))


def handle_folders(engine: VaultEngine, session: Session) -> None:
    account_id = session.account.account_id
    print("\n📂 Folders")
    print("  1) Show tree")
    print("  2) Open folder")
    print("  3) Go to root")
    print("  4) Create folder here")
    print("  5) Rename current folder")
    print("  6) Delete current folder")
    choice = input("> ").strip()

    try:
        if choice == "1":
            tree = engine.folders.tree(account_id)
            if not tree:
                print("   No folders yet")
            _print_tree(tree)
        elif choice == "2":
            children = engine.folders.list_children(account_id, session.folder_id)
            if not children:
                print("   No subfolders here")
                return
            for i, f in enumerate(children, 1):
                print(f"   {i}. {f.name}")
            selected = _pick(children, "folder")
            if selected is not None:
                session.folder = selected
        elif choice == "3":
            session.folder = None
        elif choice == "4":
            name = input("Folder name: ")
            folder = engine.folders.create(account_id, name, session.folder_id)
            print(f"✅ Created {folder.name}")
        elif choice == "5":
            if session.folder is None:
                print("❌ The root cannot be renamed")
                return
            session.folder = engine.folders.update(
                session.folder.folder_id, account_id, new_name=input("New name: ")
            )
            print(f"✅ Renamed to {session.folder.name}")
        elif choice == "6":
            if session.folder is None:
                print("❌ The root cannot be deleted")
                return
            confirm = input(f"Delete '{session.folder.name}' and everything in it? (yes/no): ")
            if confirm.strip().lower() != "yes":
                print("   Cancelled")
                return
            removed = engine.folders.delete(session.folder.folder_id, account_id)
            session.folder = None
            print(f"✅ Deleted {removed} folder(s)")
        else:
            print("❌ Invalid choice")
    except Exception as e:
        print(describe_error(e))


def handle_quota(engine: VaultEngine, session: Session) -> None:
    quota = engine.quota.snapshot(session.account.account_id)
    print("\n💾 Storage")
    print(f"   Used:      {format_bytes(quota.used)} ({quota.percentage}%)")
    print(f"   Limit:     {format_bytes(quota.limit)}")
    print(f"   Available: {format_bytes(quota.available)}")


def handle_sweep(engine: VaultEngine) -> None:
    result = engine.reaper.run_once()
    print(f"\n🧹 Removed {result.deleted} expired file(s), {result.failed} failure(s)")


def main(argv: Optional[List[str]] = None) -> int:
    argv = sys.argv[1:] if argv is None else argv
    settings = load_settings()
    configure_logging(settings.log_level)
    try:
        engine = VaultEngine.open(settings)
    except VaultError as e:
        print(describe_error(e))
        return 1

    if argv[:1] == ["sweep"]:
        handle_sweep(engine)
        return 0

    session: Optional[Session] = None
    print("\n🔐 Encrypted Vault")
    print("   Encrypted • Quota-managed • Self-destructing links\n")

    while True:
        print_menu(session)
        choice = input("> ").strip()

        if choice == "0":
            print("\nGoodbye! 👋")
            return 0
        if choice == "9":
            handle_sweep(engine)
            continue

        if session is None:
            if choice == "1":
                session = handle_sign_in(engine)
            else:
                print("❌ Invalid choice")
            continue

        if choice == "1":
            handle_upload(engine, session)
        elif choice == "2":
            handle_download(engine, session)
        elif choice == "3":
            handle_list_files(engine, session)
        elif choice == "4":
            handle_create_link(engine, session)
        elif choice == "5":
            handle_redeem_link(engine)
        elif choice == "6":
            handle_delete(engine, session)
        elif choice == "7":
            handle_folders(engine, session)
        elif choice == "8":
            handle_quota(engine, session)
        elif choice == "10":
            print(f"\n👋 Signed out from {session.account.display_name()}")
            session = None
        else:
            print("❌ Invalid choice")


if __name__ == "__main__":
    sys.exit(main())
