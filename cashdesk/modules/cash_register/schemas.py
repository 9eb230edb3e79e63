"""
Esquemas Pydantic para el módulo de caja registradora

Define la validación de datos de entrada y salida para:
- CashRegister: apertura, cierre y lectura de la caja
- CashMovement: movimientos manuales de efectivo
- Reconciliation: resumen del arqueo

Los montos de entrada no se restringen aquí: el núcleo de caja valida
y rechaza montos negativos o no finitos con ValidationError.
"""

from pydantic import BaseModel, Field, field_validator
from decimal import Decimal
from typing import Optional, List, Any
from uuid import UUID
from datetime import datetime
from enum import Enum

from cashdesk.common.validators import enum_value


# ===== ENUMS =====

class CashRegisterStatus(str, Enum):
    OPEN = "open"
    CLOSED = "closed"


class MovementType(str, Enum):
    SUPPLY = "supply"
    BLEED = "bleed"
    CHANGE = "change"


MOVEMENT_DEFAULT_DESCRIPTIONS = {
    MovementType.SUPPLY: "Cash supply",
    MovementType.BLEED: "Cash bleed",
    MovementType.CHANGE: "Change withdrawal",
}


# ===== CASH REGISTER SCHEMAS =====

class CashRegisterRead(BaseModel):
    """Caja registradora tal como la devuelve el almacenamiento"""
    id: Optional[UUID] = Field(None, description="ID único de la caja")
    status: CashRegisterStatus = Field(description="Estado de la caja")
    opening_balance: Decimal = Field(description="Saldo de apertura")
    expected_balance: Decimal = Field(description="Saldo esperado según movimientos y ventas")
    closing_balance: Optional[Decimal] = Field(None, description="Saldo de cierre")
    difference: Optional[Decimal] = Field(None, description="Cierre menos esperado")
    opened_by: str = Field(description="Operador que abrió la caja")
    opened_at: datetime = Field(description="Fecha y hora de apertura")
    closed_by: Optional[str] = Field(None, description="Operador que cerró la caja")
    closed_at: Optional[datetime] = Field(None, description="Fecha y hora de cierre")
    notes: Optional[str] = Field(None, description="Notas de cierre")

    model_config = {"from_attributes": True}

    @field_validator('status', mode='before')
    @classmethod
    def unwrap_status(cls, v):
        return enum_value(v)

    @property
    def is_open(self) -> bool:
        return self.status == CashRegisterStatus.OPEN


class CashRegisterOpen(BaseModel):
    """Esquema para abrir caja registradora"""
    opening_balance: Any = Field(None, description="Saldo inicial de apertura")
    opened_by: Optional[str] = Field(None, max_length=200, description="Operador que abre la caja")


class CashRegisterClose(BaseModel):
    """Esquema para cerrar caja registradora"""
    closing_balance: Any = Field(None, description="Saldo final contado")
    closed_by: Optional[str] = Field(None, max_length=200, description="Operador que cierra la caja")
    notes: Optional[str] = Field("", max_length=500, description="Notas de cierre")


class CashRegisterClosing(BaseModel):
    """Campos que se escriben al cerrar una caja"""
    closing_balance: Decimal
    expected_balance: Decimal
    difference: Decimal
    closed_by: str
    notes: str = ""


class CashRegisterHistory(BaseModel):
    """Esquema para historial de cajas cerradas"""
    cash_registers: List[CashRegisterRead] = Field(description="Cajas cerradas, más recientes primero")
    total: int = Field(description="Cantidad devuelta")


# ===== CASH MOVEMENT SCHEMAS =====

class CashMovementRead(BaseModel):
    """Movimiento de caja"""
    id: UUID = Field(description="ID único del movimiento")
    cash_register_id: UUID = Field(description="ID de la caja registradora")
    type: MovementType = Field(description="Tipo de movimiento")
    amount: Decimal = Field(description="Monto (siempre positivo)")
    description: Optional[str] = Field(None, description="Descripción / motivo")
    created_by: str = Field(description="Operador que registró el movimiento")
    created_at: datetime = Field(description="Fecha de creación")

    model_config = {"from_attributes": True}

    @field_validator('type', mode='before')
    @classmethod
    def unwrap_type(cls, v):
        return enum_value(v)


class CashMovementCreate(BaseModel):
    """Esquema para registrar un movimiento en la caja abierta"""
    type: MovementType = Field(..., description="Tipo de movimiento")
    amount: Any = Field(None, description="Monto del movimiento")
    description: Optional[str] = Field(None, max_length=500, description="Descripción / motivo")
    created_by: Optional[str] = Field(None, max_length=200, description="Operador")


class CashMovementList(BaseModel):
    movements: List[CashMovementRead] = Field(description="Movimientos en orden de creación")
    total: int = Field(description="Total de movimientos")


# ===== RECONCILIATION SCHEMAS =====

class ReconciliationOut(BaseModel):
    """Resumen del arqueo de una caja"""
    cash_register_id: Optional[UUID] = Field(None, description="ID de la caja")
    status: CashRegisterStatus = Field(description="Estado de la caja")
    opening_balance: Decimal = Field(description="Saldo de apertura")
    total_sales: Decimal = Field(description="Ventas no anuladas")
    total_supplies: Decimal = Field(description="Total de suprimentos")
    total_bleeds: Decimal = Field(description="Total de sangrías")
    total_change: Decimal = Field(description="Total retirado para cambio")
    final_balance: Decimal = Field(description="Saldo final calculado")
    sales_count: int = Field(description="Ventas consideradas")
    cancelled_sales_count: int = Field(description="Ventas anuladas excluidas")
    movements_count: int = Field(description="Movimientos considerados")
    difference: Optional[Decimal] = Field(None, description="Diferencia registrada al cierre")
    degraded: bool = Field(False, description="True si faltaron datos y se usó el saldo de apertura")


# ===== NOTIFICATION SCHEMAS =====

class NotificationOut(BaseModel):
    message: str
    severity: str
    created_at: datetime

    @field_validator('severity', mode='before')
    @classmethod
    def unwrap_severity(cls, v):
        return enum_value(v)
