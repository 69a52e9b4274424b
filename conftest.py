from datetime import datetime, timedelta, timezone

import pytest

from settings import Settings
from storage.engine import VaultEngine


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self, start: datetime = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta) -> datetime:
        self.now += timedelta(**delta)
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def settings(tmp_path):
    return Settings(
        storage_path=tmp_path / "files",
        data_path=tmp_path / "data",
        master_password="correct horse battery staple",
        default_limit_bytes=100,
    )


@pytest.fixture
def engine(settings, clock):
    return VaultEngine(settings, clock=clock)


@pytest.fixture
def account(engine):
    return engine.accounts.get_or_create("tg:1001", username="alice", first_name="Alice")
