"""
Almacenamiento de cajas registradoras

CashRegisterStore es el contrato que usa el núcleo de caja; hay una
implementación SQL (producción) y otra en memoria (modo demo y tests).
Todas las operaciones son asíncronas.
"""

from abc import ABC, abstractmethod
from decimal import Decimal
from datetime import datetime, timezone
from typing import Dict, List, Optional
from uuid import UUID, uuid4
import logging

from sqlalchemy import select, desc
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from cashdesk.common.money import quantize_money
from cashdesk.modules.cash_register.exceptions import NotFoundError, RegisterAlreadyClosedError, from_db_error
from cashdesk.modules.cash_register.models import CashRegister, CashRegisterStatus as ModelStatus
from cashdesk.modules.cash_register.schemas import (
    CashRegisterRead, CashRegisterClosing, CashRegisterStatus
)

logger = logging.getLogger(__name__)


async def lock_open_register(db: AsyncSession, register_id: UUID) -> CashRegister:
    """
    Load a register row for update inside the caller's transaction.

    Raises:
        NotFoundError: unknown id
        RegisterAlreadyClosedError: the register is closed
    """
    register = await db.get(CashRegister, register_id, with_for_update=True)
    if not register:
        raise NotFoundError(f"Cash register {register_id} not found")
    if register.status == ModelStatus.CLOSED:
        logger.warning(f"Write refused, cash register {register_id} is closed")
        raise RegisterAlreadyClosedError()
    return register


class CashRegisterStore(ABC):
    """Contrato de persistencia de cajas"""

    @abstractmethod
    async def get_current_open(self) -> Optional[CashRegisterRead]:
        """Most recently opened register with status=open, or None"""

    @abstractmethod
    async def get(self, register_id: UUID) -> Optional[CashRegisterRead]:
        ...

    @abstractmethod
    async def create(self, opening_balance: Decimal, opened_by: str) -> CashRegisterRead:
        """Assign id, status=open and opened_at"""

    @abstractmethod
    async def set_expected_balance(self, register_id: UUID, amount: Decimal) -> None:
        """
        Raises:
            NotFoundError: unknown id
            RegisterAlreadyClosedError: the register is closed
        """

    @abstractmethod
    async def close(self, register_id: UUID, closing: CashRegisterClosing) -> None:
        """
        Raises:
            NotFoundError: unknown id
            RegisterAlreadyClosedError: the register is closed
            PermissionDeniedError: the backend refused the write
        """

    @abstractmethod
    async def history(self, limit: int = 100) -> List[CashRegisterRead]:
        """Closed registers, most recently closed first"""


class SqlCashRegisterStore(CashRegisterStore):

    def __init__(self, sessionmaker: async_sessionmaker):
        self._sessionmaker = sessionmaker

    async def get_current_open(self) -> Optional[CashRegisterRead]:
        async with self._sessionmaker() as db:
            try:
                query = select(CashRegister).where(
                    CashRegister.status == ModelStatus.OPEN
                ).order_by(desc(CashRegister.opened_at)).limit(1)
                result = await db.execute(query)
                register = result.scalar_one_or_none()
            except SQLAlchemyError as e:
                logger.error(f"Error loading current cash register: {e}")
                raise from_db_error(e, "load the current cash register") from e
            return CashRegisterRead.model_validate(register) if register else None

    async def get(self, register_id: UUID) -> Optional[CashRegisterRead]:
        async with self._sessionmaker() as db:
            try:
                register = await db.get(CashRegister, register_id)
            except SQLAlchemyError as e:
                logger.error(f"Error loading cash register {register_id}: {e}")
                raise from_db_error(e, "load the cash register") from e
            return CashRegisterRead.model_validate(register) if register else None

    async def create(self, opening_balance: Decimal, opened_by: str) -> CashRegisterRead:
        async with self._sessionmaker() as db:
            try:
                amount = quantize_money(opening_balance)
                register = CashRegister(
                    status=ModelStatus.OPEN,
                    opening_balance=amount,
                    expected_balance=amount,
                    opened_by=opened_by,
                    opened_at=datetime.now(timezone.utc)
                )
                db.add(register)
                await db.commit()
                await db.refresh(register)
            except SQLAlchemyError as e:
                await db.rollback()
                logger.error(f"Error opening cash register: {e}")
                raise from_db_error(e, "open the cash register") from e
            return CashRegisterRead.model_validate(register)

    async def set_expected_balance(self, register_id: UUID, amount: Decimal) -> None:
        async with self._sessionmaker() as db:
            try:
                register = await lock_open_register(db, register_id)
                register.expected_balance = quantize_money(amount)
                await db.commit()
            except SQLAlchemyError as e:
                await db.rollback()
                logger.error(f"Error updating expected balance of {register_id}: {e}")
                raise from_db_error(e, "update the expected balance") from e

    async def close(self, register_id: UUID, closing: CashRegisterClosing) -> None:
        async with self._sessionmaker() as db:
            try:
                register = await lock_open_register(db, register_id)
                register.status = ModelStatus.CLOSED
                register.closing_balance = quantize_money(closing.closing_balance)
                register.expected_balance = quantize_money(closing.expected_balance)
                register.difference = quantize_money(closing.difference)
                register.closed_by = closing.closed_by
                register.closed_at = datetime.now(timezone.utc)
                register.notes = closing.notes

                await db.commit()
            except SQLAlchemyError as e:
                await db.rollback()
                logger.error(f"Error closing cash register {register_id}: {e}")
                raise from_db_error(e, "close the cash register") from e

    async def history(self, limit: int = 100) -> List[CashRegisterRead]:
        async with self._sessionmaker() as db:
            try:
                query = select(CashRegister).where(
                    CashRegister.status == ModelStatus.CLOSED
                ).order_by(desc(CashRegister.closed_at)).limit(limit)
                result = await db.execute(query)
                registers = result.scalars().all()
            except SQLAlchemyError as e:
                logger.error(f"Error loading cash register history: {e}")
                raise from_db_error(e, "load the cash register history") from e
            return [CashRegisterRead.model_validate(r) for r in registers]


class InMemoryCashRegisterStore(CashRegisterStore):
    """Registers kept in a dict (demo mode)"""

    def __init__(self):
        self._registers: Dict[UUID, CashRegisterRead] = {}

    async def get_current_open(self) -> Optional[CashRegisterRead]:
        open_registers = [r for r in self._registers.values() if r.is_open]
        if not open_registers:
            return None
        return max(open_registers, key=lambda r: r.opened_at)

    async def get(self, register_id: UUID) -> Optional[CashRegisterRead]:
        return self._registers.get(register_id)

    async def create(self, opening_balance: Decimal, opened_by: str) -> CashRegisterRead:
        amount = quantize_money(opening_balance)
        register = CashRegisterRead(
            id=uuid4(),
            status=CashRegisterStatus.OPEN,
            opening_balance=amount,
            expected_balance=amount,
            opened_by=opened_by,
            opened_at=datetime.now(timezone.utc)
        )
        self._registers[register.id] = register
        return register

    def ensure_open(self, register_id: UUID) -> CashRegisterRead:
        """Synchronous open check, also used by the in-memory ledger"""
        register = self._registers.get(register_id)
        if register is None:
            raise NotFoundError(f"Cash register {register_id} not found")
        if not register.is_open:
            logger.warning(f"Write refused, cash register {register_id} is closed")
            raise RegisterAlreadyClosedError()
        return register

    async def set_expected_balance(self, register_id: UUID, amount: Decimal) -> None:
        register = self.ensure_open(register_id)
        self._registers[register_id] = register.model_copy(
            update={"expected_balance": quantize_money(amount)}
        )

    async def close(self, register_id: UUID, closing: CashRegisterClosing) -> None:
        register = self.ensure_open(register_id)
        self._registers[register_id] = register.model_copy(update={
            "status": CashRegisterStatus.CLOSED,
            "closing_balance": quantize_money(closing.closing_balance),
            "expected_balance": quantize_money(closing.expected_balance),
            "difference": quantize_money(closing.difference),
            "closed_by": closing.closed_by,
            "closed_at": datetime.now(timezone.utc),
            "notes": closing.notes,
        })

    async def history(self, limit: int = 100) -> List[CashRegisterRead]:
        closed = [r for r in self._registers.values() if not r.is_open]
        closed.sort(key=lambda r: r.closed_at, reverse=True)
        return closed[:limit]
