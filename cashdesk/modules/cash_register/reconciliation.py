"""
Cash Register Reconciliation

Turns (opening balance, movements, sales) into the balance the drawer should
hold:

    final = opening + sales + supplies - bleeds - change

Cancelled sales are ignored. The same formula backs the manual close, the
automatic close, the expected balance refresh after each movement and the
history reports.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, List
import logging

from cashdesk.common.money import ZERO, quantize_money, sum_money, to_decimal
from cashdesk.modules.cash_register.ledger import MovementLedger
from cashdesk.modules.cash_register.schemas import (
    CashRegisterRead, CashMovementRead, MovementType, ReconciliationOut
)
from cashdesk.modules.sales.schemas import SaleRead
from cashdesk.modules.sales.service import SalesQuery

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReconciliationSummary:
    opening_balance: Decimal
    total_sales: Decimal
    total_supplies: Decimal
    total_bleeds: Decimal
    total_change: Decimal
    sales_count: int
    cancelled_sales_count: int
    movements_count: int
    degraded: bool = False

    @property
    def final_balance(self) -> Decimal:
        return (
            self.opening_balance
            + self.total_sales
            + self.total_supplies
            - self.total_bleeds
            - self.total_change
        )

    def to_schema(self, register: CashRegisterRead) -> ReconciliationOut:
        """Rounded to cents for presentation"""
        return ReconciliationOut(
            cash_register_id=register.id,
            status=register.status,
            opening_balance=quantize_money(self.opening_balance),
            total_sales=quantize_money(self.total_sales),
            total_supplies=quantize_money(self.total_supplies),
            total_bleeds=quantize_money(self.total_bleeds),
            total_change=quantize_money(self.total_change),
            final_balance=quantize_money(self.final_balance),
            sales_count=self.sales_count,
            cancelled_sales_count=self.cancelled_sales_count,
            movements_count=self.movements_count,
            difference=register.difference,
            degraded=self.degraded
        )


def summarize(
    register: CashRegisterRead,
    movements: Iterable[CashMovementRead],
    sales: Iterable[SaleRead]
) -> ReconciliationSummary:
    totals = {t: ZERO for t in MovementType}
    movements_count = 0
    for movement in movements:
        totals[MovementType(movement.type)] += to_decimal(movement.amount)
        movements_count += 1

    sales = list(sales)
    completed = [s for s in sales if not s.is_cancelled]

    return ReconciliationSummary(
        opening_balance=to_decimal(register.opening_balance),
        total_sales=sum_money(s.total for s in completed),
        total_supplies=totals[MovementType.SUPPLY],
        total_bleeds=totals[MovementType.BLEED],
        total_change=totals[MovementType.CHANGE],
        sales_count=len(completed),
        cancelled_sales_count=len(sales) - len(completed),
        movements_count=movements_count
    )


def compute_closing_balance(
    register: CashRegisterRead,
    movements: Iterable[CashMovementRead],
    sales: Iterable[SaleRead]
) -> Decimal:
    """Final balance of a register. Pure, independent of input order."""
    return summarize(register, movements, sales).final_balance


class ReconciliationService:
    """Loads a register's ledger and sales and reconciles them"""

    def __init__(self, ledger: MovementLedger, sales_query: SalesQuery):
        self.ledger = ledger
        self.sales_query = sales_query

    async def _load(self, register: CashRegisterRead):
        movements: List[CashMovementRead] = await self.ledger.list_for(register.id)
        sales: List[SaleRead] = await self.sales_query.by_register(register.id)
        return movements, sales

    async def summary(self, register: CashRegisterRead) -> ReconciliationSummary:
        """Read errors propagate"""
        movements, sales = await self._load(register)
        return summarize(register, movements, sales)

    async def final_balance(self, register: CashRegisterRead) -> Decimal:
        """Read errors propagate (used on mutating paths)"""
        return (await self.summary(register)).final_balance

    async def preview(self, register: CashRegisterRead) -> ReconciliationSummary:
        """
        Advisory summary for reports. When the ledger or the sales cannot be
        read, the failure is logged and the opening balance is returned as
        the final balance.
        """
        try:
            return await self.summary(register)
        except Exception as e:
            logger.warning(f"Reconciliation preview degraded for cash register {register.id}: {e}")
            return degraded_summary(register)


def degraded_summary(register: CashRegisterRead) -> ReconciliationSummary:
    return ReconciliationSummary(
        opening_balance=to_decimal(register.opening_balance),
        total_sales=ZERO,
        total_supplies=ZERO,
        total_bleeds=ZERO,
        total_change=ZERO,
        sales_count=0,
        cancelled_sales_count=0,
        movements_count=0,
        degraded=True
    )
