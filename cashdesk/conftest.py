"""
Fixtures compartidos para los tests

Los tests del núcleo usan los almacenamientos en memoria; los de SQL usan
SQLite en memoria vía aiosqlite.
"""
import asyncio
import os

os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DEMO_MODE", "true")
os.environ.setdefault("AUTO_CLOSE_ENABLED", "false")

from datetime import datetime
from typing import List, Optional, Tuple

import pytest
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

from cashdesk.common.notifications import Notifier, Severity
from cashdesk.database.database import Base, build_sessionmaker
from cashdesk.modules.cash_register.exceptions import PersistenceError, PermissionDeniedError
from cashdesk.modules.cash_register.ledger import InMemoryMovementLedger
from cashdesk.modules.cash_register.reconciliation import ReconciliationService
from cashdesk.modules.cash_register.repository import InMemoryCashRegisterStore
from cashdesk.modules.cash_register.scheduler import AutoCloseScheduler
from cashdesk.modules.cash_register.services import CashRegisterSession
from cashdesk.modules.sales.service import InMemorySalesQuery
from cashdesk.modules.settings.service import InMemorySettingsStore

import cashdesk.modules.cash_register.models  # noqa: F401
import cashdesk.modules.sales.models  # noqa: F401
import cashdesk.modules.settings.models  # noqa: F401


# ===== TEST DOUBLES =====

class RecordingNotifier(Notifier):
    def __init__(self):
        self.messages: List[Tuple[str, Severity]] = []

    def show(self, message: str, severity: Severity = Severity.INFO) -> None:
        self.messages.append((message, Severity(severity)))

    @property
    def severities(self) -> List[Severity]:
        return [s for _, s in self.messages]

    @property
    def last(self) -> Tuple[str, Severity]:
        return self.messages[-1]


class FlakyRegisterStore(InMemoryCashRegisterStore):
    """In-memory store whose writes can be made to fail"""

    def __init__(self):
        super().__init__()
        self.fail_create = None
        self.fail_close = None
        self.fail_reads = None
        self.create_calls = 0
        self.close_calls = 0

    async def get_current_open(self):
        if self.fail_reads:
            raise self.fail_reads
        return await super().get_current_open()

    async def create(self, opening_balance, opened_by):
        self.create_calls += 1
        if self.fail_create:
            raise self.fail_create
        return await super().create(opening_balance, opened_by)

    async def close(self, register_id, closing):
        self.close_calls += 1
        if self.fail_close:
            raise self.fail_close
        return await super().close(register_id, closing)


class FlakyLedger(InMemoryMovementLedger):
    """
    In-memory ledger whose calls can fail, or pause once on an asyncio.Event
    (append_gate, list_gate) so a test can interleave another operation.
    """

    def __init__(self, registers=None):
        super().__init__(registers)
        self.fail_append = None
        self.fail_list = None
        self.append_gate: Optional[asyncio.Event] = None
        self.list_gate: Optional[asyncio.Event] = None
        self.append_calls = 0

    async def append(self, cash_register_id, type, amount, description, created_by):
        self.append_calls += 1
        if self.fail_append:
            raise self.fail_append
        gate, self.append_gate = self.append_gate, None
        if gate:
            await gate.wait()
        return await super().append(cash_register_id, type, amount, description, created_by)

    async def list_for(self, cash_register_id):
        if self.fail_list:
            raise self.fail_list
        gate, self.list_gate = self.list_gate, None
        if gate:
            await gate.wait()
        return await super().list_for(cash_register_id)


class FixedClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


# ===== FIXTURES =====

@pytest.fixture
def persistence_error():
    return PersistenceError("Could not reach the store")


@pytest.fixture
def permission_error():
    return PermissionDeniedError("Permission denied while trying to close the cash register")


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def register_store():
    return FlakyRegisterStore()


@pytest.fixture
def ledger(register_store):
    return FlakyLedger(register_store)


@pytest.fixture
def sales():
    return InMemorySalesQuery()


@pytest.fixture
def settings_store():
    return InMemorySettingsStore()


@pytest.fixture
def reconciliation(ledger, sales):
    return ReconciliationService(ledger, sales)


@pytest.fixture
def cash_session(register_store, ledger, reconciliation, notifier):
    return CashRegisterSession(register_store, ledger, reconciliation, notifier)


@pytest.fixture
def clock():
    return FixedClock(datetime(2024, 5, 10, 21, 0))


@pytest.fixture
def scheduler(cash_session, reconciliation, settings_store, clock):
    return AutoCloseScheduler(
        cash_session, reconciliation, settings_store, interval=0.01, clock=clock
    )


@pytest.fixture
async def sql_sessionmaker():
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False}
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield build_sessionmaker(engine)
    await engine.dispose()
