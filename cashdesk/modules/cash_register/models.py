"""
Modelos SQLAlchemy para el módulo de caja registradora

- CashRegister: sesión de caja (apertura → cierre con arqueo)
- CashMovement: movimientos manuales de efectivo (suprimento, sangría, cambio)

Solo puede existir una caja abierta a la vez.
"""

from cashdesk.database.database import Base
from sqlalchemy import Column, String, DateTime, ForeignKey, Numeric, Enum, Text, Uuid
from sqlalchemy.orm import relationship
from datetime import datetime, timezone
from cashdesk.common.mixins import BaseMixin
import enum


# ===== ENUMS =====

class CashRegisterStatus(enum.Enum):
    """Estados de caja registradora"""
    OPEN = "open"
    CLOSED = "closed"


class MovementType(enum.Enum):
    """Tipos de movimiento de caja"""
    SUPPLY = "supply"   # Entrada de efectivo (suprimento)
    BLEED = "bleed"     # Retiro para resguardo (sangría)
    CHANGE = "change"   # Retiro para dar cambio en otro lugar


def _utcnow():
    return datetime.now(timezone.utc)


# ===== MODELOS =====

class CashRegister(Base, BaseMixin):
    """
    Sesión de caja registradora

    expected_balance se recalcula con cada movimiento; los campos de cierre
    se escriben una sola vez.
    """
    __tablename__ = "cash_registers"

    status = Column(Enum(CashRegisterStatus), nullable=False, default=CashRegisterStatus.OPEN, index=True)

    # Balances
    opening_balance = Column(Numeric(15, 2), nullable=False, default=0)
    expected_balance = Column(Numeric(15, 2), nullable=False, default=0)
    closing_balance = Column(Numeric(15, 2), nullable=True)  # Solo se llena al cerrar
    difference = Column(Numeric(15, 2), nullable=True)

    # Control de apertura/cierre
    opened_by = Column(String(200), nullable=False)
    closed_by = Column(String(200), nullable=True)
    opened_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, index=True)
    closed_at = Column(DateTime(timezone=True), nullable=True, index=True)

    notes = Column(Text, nullable=True)

    movements = relationship(
        "CashMovement",
        back_populates="cash_register",
        order_by="CashMovement.created_at"
    )


class CashMovement(Base, BaseMixin):
    """
    Movimiento de caja. Inmutable una vez creado.

    amount siempre es el valor absoluto; el tipo define el signo.
    """
    __tablename__ = "cash_movements"

    cash_register_id = Column(Uuid(as_uuid=True), ForeignKey("cash_registers.id"), nullable=False, index=True)
    type = Column(Enum(MovementType), nullable=False, index=True)
    amount = Column(Numeric(15, 2), nullable=False)
    description = Column(String(500), nullable=True)
    created_by = Column(String(200), nullable=False)
    # Marca del cliente con microsegundos: define el orden de creación
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, index=True)

    cash_register = relationship("CashRegister", back_populates="movements")
