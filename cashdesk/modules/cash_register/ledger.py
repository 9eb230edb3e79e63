"""
Movement ledger

Append-only record of cash movements per register. There is no update or
delete: a wrong movement is compensated by another movement.
"""

from abc import ABC, abstractmethod
from decimal import Decimal
from datetime import datetime, timezone
from typing import Dict, List, Optional
from uuid import UUID, uuid4
import logging

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from cashdesk.common.money import quantize_money
from cashdesk.modules.cash_register.exceptions import from_db_error
from cashdesk.modules.cash_register.models import CashMovement, MovementType as ModelMovementType
from cashdesk.modules.cash_register.repository import InMemoryCashRegisterStore, lock_open_register
from cashdesk.modules.cash_register.schemas import CashMovementRead, MovementType

logger = logging.getLogger(__name__)


class MovementLedger(ABC):

    @abstractmethod
    async def append(
        self,
        cash_register_id: UUID,
        type: MovementType,
        amount: Decimal,
        description: str,
        created_by: str
    ) -> CashMovementRead:
        """
        Raises:
            RegisterAlreadyClosedError: the register was closed before the write
        """

    @abstractmethod
    async def list_for(self, cash_register_id: UUID) -> List[CashMovementRead]:
        """Movements of a register in creation order"""


class SqlMovementLedger(MovementLedger):

    def __init__(self, sessionmaker: async_sessionmaker):
        self._sessionmaker = sessionmaker

    async def append(
        self,
        cash_register_id: UUID,
        type: MovementType,
        amount: Decimal,
        description: str,
        created_by: str
    ) -> CashMovementRead:
        async with self._sessionmaker() as db:
            try:
                # Row lock serializes the append with a concurrent close
                await lock_open_register(db, cash_register_id)
                movement = CashMovement(
                    cash_register_id=cash_register_id,
                    type=ModelMovementType(MovementType(type).value),
                    amount=quantize_money(amount),
                    description=description,
                    created_by=created_by,
                    created_at=datetime.now(timezone.utc)
                )
                db.add(movement)
                await db.commit()
                await db.refresh(movement)
            except SQLAlchemyError as e:
                await db.rollback()
                logger.error(f"Error saving cash movement for {cash_register_id}: {e}")
                raise from_db_error(e, "save the cash movement") from e
            return CashMovementRead.model_validate(movement)

    async def list_for(self, cash_register_id: UUID) -> List[CashMovementRead]:
        async with self._sessionmaker() as db:
            try:
                query = select(CashMovement).where(
                    CashMovement.cash_register_id == cash_register_id
                ).order_by(CashMovement.created_at, CashMovement.id)
                result = await db.execute(query)
                movements = result.scalars().all()
            except SQLAlchemyError as e:
                logger.error(f"Error loading movements for {cash_register_id}: {e}")
                raise from_db_error(e, "load cash movements") from e
            return [CashMovementRead.model_validate(m) for m in movements]


class InMemoryMovementLedger(MovementLedger):

    def __init__(self, registers: Optional[InMemoryCashRegisterStore] = None):
        self._movements: Dict[UUID, List[CashMovementRead]] = {}
        self._registers = registers

    async def append(
        self,
        cash_register_id: UUID,
        type: MovementType,
        amount: Decimal,
        description: str,
        created_by: str
    ) -> CashMovementRead:
        if self._registers is not None:
            self._registers.ensure_open(cash_register_id)
        movement = CashMovementRead(
            id=uuid4(),
            cash_register_id=cash_register_id,
            type=MovementType(type),
            amount=quantize_money(amount),
            description=description,
            created_by=created_by,
            created_at=datetime.now(timezone.utc)
        )
        self._movements.setdefault(cash_register_id, []).append(movement)
        return movement

    async def list_for(self, cash_register_id: UUID) -> List[CashMovementRead]:
        return list(self._movements.get(cash_register_id, []))
