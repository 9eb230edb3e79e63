from cashdesk.database.database import Base
from sqlalchemy import Column, String, ForeignKey, Numeric, Enum, Uuid, DateTime
from datetime import datetime, timezone
from cashdesk.common.mixins import BaseMixin
import enum


class SaleStatus(enum.Enum):
    COMPLETED = "completed"  # Venta finalizada
    CANCELLED = "cancelled"  # Anulada, no entra en el arqueo


class Sale(Base, BaseMixin):
    """
    Venta registrada por el punto de venta.

    El módulo de caja solo la lee; el alta la hace el módulo de ventas.
    """
    __tablename__ = "sales"

    cash_register_id = Column(Uuid(as_uuid=True), ForeignKey("cash_registers.id"), nullable=True, index=True)
    total = Column(Numeric(15, 2), nullable=False, default=0)
    status = Column(Enum(SaleStatus), nullable=False, default=SaleStatus.COMPLETED, index=True)
    payment_method = Column(String(50), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
