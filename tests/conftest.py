from datetime import datetime, timedelta, timezone
from typing import Optional
from uuid import uuid4

import pytest
import pytest_asyncio

from docforge_core.config import CoreConfig
from docforge_core.db import DatabaseManager
from docforge_core.models import UserModel
from docforge_core.services import FileLifecycleManager, QuotaLedger, UsageRecorder
from docforge_core.storage import LocalFileStorage


class FrozenClock:
    """Clock that only moves when told to."""

    def __init__(self, now: datetime):
        self.current = now

    def now(self) -> datetime:
        return self.current

    def set(self, value: datetime) -> None:
        self.current = value

    def advance(self, **kwargs) -> None:
        self.current = self.current + timedelta(**kwargs)


@pytest.fixture
def clock():
    return FrozenClock(datetime(2026, 3, 15, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def core_config(tmp_path):
    return CoreConfig(
        QUOTA_TIMEZONE="UTC",
        STORAGE_ROOT=str(tmp_path / "uploads"),
        REAPER_INTERVAL_SECONDS=0.05,
        REAPER_BATCH_SIZE=100,
        USAGE_LOG_RETRY_WAIT_SECONDS=0.01,
        USAGE_LOG_RETRY_MAX_WAIT_SECONDS=0.05,
    )


@pytest_asyncio.fixture
async def database(tmp_path):
    manager = DatabaseManager()
    manager.init(f"sqlite+aiosqlite:///{tmp_path / 'docforge.db'}")
    await manager.create_tables()
    yield manager
    await manager.close()


@pytest.fixture
def storage(core_config):
    return LocalFileStorage(core_config.STORAGE_ROOT)


@pytest.fixture
def ledger(database, clock, core_config):
    return QuotaLedger(database=database, clock=clock, config=core_config)


@pytest.fixture
def files(database, storage, clock, core_config):
    return FileLifecycleManager(
        database=database, storage=storage, clock=clock, config=core_config
    )


@pytest.fixture
def recorder(database, core_config):
    return UsageRecorder(database=database, config=core_config)


@pytest.fixture
def make_user(database):
    async def _make_user(
        tier: str = "free",
        credits_used_today: int = 0,
        credits_used_month: int = 0,
        last_credit_reset: Optional[datetime] = None,
    ) -> str:
        user_id = str(uuid4())
        async with database.session() as session:
            session.add(
                UserModel(
                    id=user_id,
                    email=f"{user_id}@example.com",
                    subscription_tier=tier,
                    credits_used_today=credits_used_today,
                    credits_used_month=credits_used_month,
                    last_credit_reset=last_credit_reset,
                )
            )
        return user_id

    return _make_user


@pytest.fixture
def load_user(database):
    async def _load_user(user_id: str) -> UserModel:
        async with database.session() as session:
            return await session.get(UserModel, user_id)

    return _load_user
