from pydantic import BaseModel, Field, field_validator
from decimal import Decimal
from typing import Optional
from uuid import UUID
from datetime import datetime
from enum import Enum

from cashdesk.common.validators import enum_value


class SaleStatus(str, Enum):
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class SaleRead(BaseModel):
    """Venta vista desde el arqueo de caja"""
    id: UUID = Field(description="ID de la venta")
    cash_register_id: Optional[UUID] = Field(None, description="Caja en la que se registró")
    total: Decimal = Field(description="Total de la venta")
    status: SaleStatus = Field(SaleStatus.COMPLETED, description="Estado de la venta")
    payment_method: Optional[str] = Field(None, description="Medio de pago")
    created_at: Optional[datetime] = Field(None, description="Fecha de la venta")

    model_config = {"from_attributes": True}

    @field_validator('status', mode='before')
    @classmethod
    def unwrap_status(cls, v):
        return enum_value(v)

    @property
    def is_cancelled(self) -> bool:
        return self.status == SaleStatus.CANCELLED
