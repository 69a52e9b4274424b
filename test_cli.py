"""
Tests for the command-line front end.
"""
import pytest

import cli
from errors import (
    AccountNotFound,
    BlobNotFound,
    Conflict,
    Expired,
    IntegrityError,
    InvalidToken,
    MasterKeyMismatch,
    QuotaExceeded,
)


def test_tampering_is_reported_distinctly():
    tampered = cli.describe_error(IntegrityError("tag mismatch"))
    missing = cli.describe_error(BlobNotFound("gone"))
    assert "Integrity check FAILED" in tampered
    assert "Not found" in missing
    assert "Integrity" not in missing


@pytest.mark.parametrize("exc, fragment", [
    (MasterKeyMismatch("v1"), "master password"),
    (QuotaExceeded("a", 50, 40), "40 Bytes left"),
    (Expired("Token has expired"), "Token has expired"),
    (InvalidToken("Invalid token"), "invalid or has already been used"),
    (AccountNotFound("acct"), "Not found"),
    (Conflict("A folder named 'A' already exists here"), "already exists"),
    (ValueError("ttl_minutes must be positive"), "ttl_minutes"),
    (RuntimeError("boom"), "Unexpected error"),
])
def test_describe_error(exc, fragment):
    assert fragment in cli.describe_error(exc)


def test_sweep_command(settings, engine, account, clock, monkeypatch, capsys):
    from datetime import timedelta

    engine.files.upload(account.account_id, b"x", "x.bin", expires_at=clock() + timedelta(minutes=1))
    clock.advance(minutes=2)
    monkeypatch.setattr(cli, "load_settings", lambda: settings)
    monkeypatch.setattr(cli.VaultEngine, "open", classmethod(lambda cls, s=None, **kw: engine))

    assert cli.main(["sweep"]) == 0
    assert "Removed 1 expired file(s)" in capsys.readouterr().out


def test_wrong_master_password_exits_with_message(settings, engine, monkeypatch, capsys):
    from dataclasses import replace

    monkeypatch.setattr(cli, "load_settings", lambda: replace(settings, master_password="nope"))
    assert cli.main(["sweep"]) == 1
    assert "master password" in capsys.readouterr().out


@pytest.mark.parametrize("name", ["..", "."])
def test_download_with_unusable_name_uses_file_id(engine, account, name, tmp_path, monkeypatch):
    monkeypatch.setattr(cli.Path, "home", lambda: tmp_path / "home")
    record = engine.files.upload(account.account_id, b"dots", name)
    result = engine.files.download(record.file_id, account.account_id)

    target = cli._save_download(result)
    assert target == tmp_path / "home" / "Downloads" / record.file_id
    assert target.read_bytes() == b"dots"


def test_download_keeps_only_the_base_name(engine, account, tmp_path, monkeypatch):
    monkeypatch.setattr(cli.Path, "home", lambda: tmp_path / "home")
    record = engine.files.upload(account.account_id, b"nested", "../../etc/report.txt")
    target = cli._save_download(engine.files.download(record.file_id, account.account_id))
    assert target == tmp_path / "home" / "Downloads" / "report.txt"
