"""
Service wiring

Builds the stores, the cash register session and the auto-close scheduler
for one application instance. DEMO_MODE keeps everything in memory.
"""
from dataclasses import dataclass
from typing import Optional
import logging

from sqlalchemy.ext.asyncio import AsyncEngine

from cashdesk.common.notifications import NotificationCenter
from cashdesk.core.config import Settings, settings as default_settings
from cashdesk.modules.cash_register.exceptions import PersistenceError
from cashdesk.modules.cash_register.ledger import MovementLedger, InMemoryMovementLedger, SqlMovementLedger
from cashdesk.modules.cash_register.reconciliation import ReconciliationService
from cashdesk.modules.cash_register.repository import (
    CashRegisterStore, InMemoryCashRegisterStore, SqlCashRegisterStore
)
from cashdesk.modules.cash_register.scheduler import AutoCloseScheduler
from cashdesk.modules.cash_register.services import CashRegisterSession
from cashdesk.modules.sales.service import SalesQuery, InMemorySalesQuery, SqlSalesQuery
from cashdesk.modules.settings.service import SettingsStore, InMemorySettingsStore, SqlSettingsStore

logger = logging.getLogger(__name__)


@dataclass
class Container:
    settings: Settings
    register_store: CashRegisterStore
    ledger: MovementLedger
    sales_query: SalesQuery
    settings_store: SettingsStore
    notifier: NotificationCenter
    reconciliation: ReconciliationService
    session: CashRegisterSession
    scheduler: AutoCloseScheduler
    engine: Optional[AsyncEngine] = None

    async def startup(self) -> None:
        if self.engine is not None and self.settings.ENVIRONMENT == "development":
            from cashdesk.database.database import init_models
            await init_models(self.engine)
        try:
            await self.session.refresh()
        except PersistenceError as e:
            logger.warning(f"Could not load the current cash register on startup: {e}")
        if self.session.current:
            logger.info(f"Resuming open cash register {self.session.current.id}")
        if self.settings.AUTO_CLOSE_ENABLED:
            self.scheduler.start()

    async def shutdown(self) -> None:
        await self.scheduler.stop()
        if self.engine is not None:
            await self.engine.dispose()


def build_container(
    register_store: CashRegisterStore,
    ledger: MovementLedger,
    sales_query: SalesQuery,
    settings_store: SettingsStore,
    app_settings: Optional[Settings] = None,
    engine: Optional[AsyncEngine] = None
) -> Container:
    app_settings = app_settings or default_settings
    notifier = NotificationCenter(max_size=app_settings.NOTIFICATION_HISTORY_SIZE)
    reconciliation = ReconciliationService(ledger, sales_query)
    session = CashRegisterSession(
        register_store,
        ledger,
        reconciliation,
        notifier,
        default_operator=app_settings.DEFAULT_OPERATOR_LABEL
    )
    scheduler = AutoCloseScheduler(
        session,
        reconciliation,
        settings_store,
        interval=app_settings.AUTO_CLOSE_INTERVAL_SECONDS,
        default_cutoff=app_settings.CASH_REGISTER_AUTO_CLOSE_TIME
    )
    return Container(
        settings=app_settings,
        register_store=register_store,
        ledger=ledger,
        sales_query=sales_query,
        settings_store=settings_store,
        notifier=notifier,
        reconciliation=reconciliation,
        session=session,
        scheduler=scheduler,
        engine=engine
    )


def build_in_memory_container(app_settings: Optional[Settings] = None) -> Container:
    register_store = InMemoryCashRegisterStore()
    return build_container(
        register_store,
        InMemoryMovementLedger(register_store),
        InMemorySalesQuery(),
        InMemorySettingsStore(),
        app_settings=app_settings
    )


def build_sql_container(app_settings: Optional[Settings] = None) -> Container:
    from cashdesk.database.database import build_engine, build_sessionmaker

    app_settings = app_settings or default_settings
    engine = build_engine(app_settings.async_database_url)
    sessionmaker = build_sessionmaker(engine)
    return build_container(
        SqlCashRegisterStore(sessionmaker),
        SqlMovementLedger(sessionmaker),
        SqlSalesQuery(sessionmaker),
        SqlSettingsStore(sessionmaker),
        app_settings=app_settings,
        engine=engine
    )


def build_default_container(app_settings: Optional[Settings] = None) -> Container:
    app_settings = app_settings or default_settings
    if app_settings.DEMO_MODE:
        logger.info("Demo mode: using in-memory stores")
        return build_in_memory_container(app_settings)
    return build_sql_container(app_settings)
