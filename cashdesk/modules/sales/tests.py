"""
Tests para la consulta de ventas por caja
"""

from decimal import Decimal
from uuid import uuid4

from cashdesk.modules.sales.models import Sale, SaleStatus as ModelSaleStatus
from cashdesk.modules.sales.schemas import SaleStatus
from cashdesk.modules.sales.service import InMemorySalesQuery, SqlSalesQuery


class TestSalesQuery:
    """Tests para ventas por caja"""

    async def test_in_memory_by_register(self, sales):
        """Test solo devuelve las ventas de la caja pedida"""
        register_id = uuid4()
        sale = sales.record(register_id, "10.50")
        sales.record(uuid4(), "99.00")
        sales.record(None, "5.00")

        result = await sales.by_register(register_id)

        assert [s.id for s in result] == [sale.id]
        assert result[0].total == Decimal("10.50")
        assert result[0].payment_method == "cash"

    async def test_in_memory_cancel(self):
        """Test anulación de una venta"""
        sales = InMemorySalesQuery()
        sale = sales.record(uuid4(), 20)

        cancelled = sales.cancel(sale.id)

        assert cancelled.status == SaleStatus.CANCELLED
        assert cancelled.is_cancelled
        assert (await sales.by_register(sale.cash_register_id))[0].is_cancelled

    async def test_sql_by_register(self, sql_sessionmaker):
        """Test lectura de ventas desde SQL con su estado"""
        register_id = uuid4()
        async with sql_sessionmaker() as db:
            db.add(Sale(cash_register_id=register_id, total=Decimal("12.00"), status=ModelSaleStatus.COMPLETED))
            db.add(Sale(cash_register_id=register_id, total=Decimal("3.00"), status=ModelSaleStatus.CANCELLED))
            db.add(Sale(cash_register_id=uuid4(), total=Decimal("7.00")))
            await db.commit()

        result = await SqlSalesQuery(sql_sessionmaker).by_register(register_id)

        assert sorted(s.total for s in result) == [Decimal("3.00"), Decimal("12.00")]
        assert sum(1 for s in result if s.is_cancelled) == 1
