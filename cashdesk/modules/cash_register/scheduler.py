"""
Auto-close scheduler

Background task that closes the open cash register once the configured
cutoff time of day has passed. Runs one check right away and then every
`interval` seconds until stopped.

Each register id is auto-closed at most once per scheduler lifetime; the
timer keeps firing after the cutoff, so later ticks for the same id are
ignored.
"""

import asyncio
from datetime import datetime
from typing import Callable, Optional, Set, Tuple
from uuid import UUID
import logging

from cashdesk.common.notifications import Severity
from cashdesk.common.validators import split_time_of_day
from cashdesk.modules.cash_register.exceptions import CashRegisterError, RegisterAlreadyClosedError
from cashdesk.modules.cash_register.reconciliation import ReconciliationService
from cashdesk.modules.cash_register.services import CashRegisterSession
from cashdesk.modules.settings.service import SettingsStore, AUTO_CLOSE_TIME_KEY

logger = logging.getLogger(__name__)

DEFAULT_CUTOFF = "22:00"
DEFAULT_HOUR = 22
DEFAULT_MINUTE = 0
SYSTEM_OPERATOR = "system"


def parse_cutoff(value) -> Tuple[int, int]:
    """
    Parse an "HH:MM" cutoff.

    Malformed strings fall back to 22:00. An out-of-range hour falls back to
    22 and an out-of-range minute to 0, each on its own.
    """
    parts = split_time_of_day(value)
    if parts is None:
        if value not in (None, ""):
            logger.warning(f"Invalid auto-close time {value!r}, using {DEFAULT_CUTOFF}")
        return DEFAULT_HOUR, DEFAULT_MINUTE
    hour, minute = parts
    if not 0 <= hour <= 23:
        hour = DEFAULT_HOUR
    if not 0 <= minute <= 59:
        minute = DEFAULT_MINUTE
    return hour, minute


def format_cutoff(hour: int, minute: int) -> str:
    return f"{hour:02d}:{minute:02d}"


class AutoCloseScheduler:
    """Cancellable asyncio task driving the automatic close"""

    def __init__(
        self,
        session: CashRegisterSession,
        reconciliation: ReconciliationService,
        settings_store: SettingsStore,
        interval: float = 60.0,
        default_cutoff: str = DEFAULT_CUTOFF,
        clock: Callable[[], datetime] = datetime.now
    ):
        self.session = session
        self.reconciliation = reconciliation
        self.settings_store = settings_store
        self.interval = interval
        self.default_cutoff = default_cutoff
        self.clock = clock
        self._processed: Set[UUID] = set()
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def processed(self) -> Set[UUID]:
        return set(self._processed)

    def start(self) -> None:
        """Start ticking on the running event loop (no-op if already running)"""
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._run(), name="cash-register-auto-close")
        logger.info(f"Auto-close scheduler started (interval {self.interval}s)")

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("Auto-close scheduler stopped")

    async def restart(self) -> None:
        await self.stop()
        self.start()

    async def _run(self) -> None:
        while True:
            try:
                await self.tick()
            except Exception as e:
                # The loop outlives a failed tick; the next one retries
                logger.exception(f"Auto-close check failed: {e}")
            await asyncio.sleep(self.interval)

    async def cutoff(self) -> Tuple[int, int]:
        value = await self.settings_store.get(AUTO_CLOSE_TIME_KEY, self.default_cutoff)
        return parse_cutoff(value)

    async def tick(self, now: Optional[datetime] = None) -> bool:
        """
        Run one check. Returns True when this tick closed the register.
        """
        register = self.session.current
        if register is None or register.id is None:
            return False
        if register.id in self._processed:
            return False

        hour, minute = await self.cutoff()
        now = now or self.clock()
        cutoff_at = now.replace(hour=hour, minute=minute, second=0, microsecond=0)
        if now < cutoff_at:
            return False

        cutoff_text = format_cutoff(hour, minute)
        logger.info(f"Cutoff {cutoff_text} reached, closing cash register {register.id}")
        closing_balance = await self.reconciliation.final_balance(register)
        try:
            await self.session.close(
                closing_balance,
                closed_by=SYSTEM_OPERATOR,
                notes=f"Closed automatically at cutoff {cutoff_text}",
                announce=False
            )
        except RegisterAlreadyClosedError:
            logger.info(f"Cash register {register.id} was already closed, skipping automatic close")
            self._processed.add(register.id)
            return False
        except CashRegisterError as e:
            logger.error(f"Automatic close of cash register {register.id} failed: {e}")
            return False

        self._processed.add(register.id)
        self.session.notifier.show(
            f"Cash register closed automatically at {cutoff_text}", Severity.WARNING
        )
        return True
