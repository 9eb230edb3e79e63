"""
Consulta de ventas por caja

El arqueo solo necesita leer las ventas de una caja; el resto del ciclo de
vida de una venta pertenece al módulo de ventas.
"""
from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Dict, List, Optional
from uuid import UUID, uuid4
from datetime import datetime, timezone
import logging

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from cashdesk.modules.cash_register.exceptions import from_db_error
from cashdesk.modules.sales.models import Sale
from cashdesk.modules.sales.schemas import SaleRead, SaleStatus

logger = logging.getLogger(__name__)


class SalesQuery(ABC):
    """Read-only access to sales by cash register"""

    @abstractmethod
    async def by_register(self, cash_register_id: UUID) -> List[SaleRead]:
        ...


class SqlSalesQuery(SalesQuery):

    def __init__(self, sessionmaker: async_sessionmaker):
        self._sessionmaker = sessionmaker

    async def by_register(self, cash_register_id: UUID) -> List[SaleRead]:
        async with self._sessionmaker() as db:
            try:
                query = select(Sale).where(Sale.cash_register_id == cash_register_id)
                result = await db.execute(query)
                return [SaleRead.model_validate(row) for row in result.scalars().all()]
            except SQLAlchemyError as e:
                logger.error(f"Error loading sales for cash register {cash_register_id}: {e}")
                raise from_db_error(e, "load sales") from e


class InMemorySalesQuery(SalesQuery):
    """Demo-mode sales, also used to seed sales in tests"""

    def __init__(self):
        self._sales: Dict[UUID, SaleRead] = {}

    def record(
        self,
        cash_register_id: Optional[UUID],
        total,
        status: SaleStatus = SaleStatus.COMPLETED,
        payment_method: Optional[str] = "cash"
    ) -> SaleRead:
        sale = SaleRead(
            id=uuid4(),
            cash_register_id=cash_register_id,
            total=Decimal(str(total)),
            status=status,
            payment_method=payment_method,
            created_at=datetime.now(timezone.utc)
        )
        self._sales[sale.id] = sale
        return sale

    def cancel(self, sale_id: UUID) -> SaleRead:
        sale = self._sales[sale_id].model_copy(update={"status": SaleStatus.CANCELLED})
        self._sales[sale_id] = sale
        return sale

    async def by_register(self, cash_register_id: UUID) -> List[SaleRead]:
        return [s for s in self._sales.values() if s.cash_register_id == cash_register_id]
