from pydantic import BaseModel, Field, field_validator

from cashdesk.common.validators import validate_time_of_day


class AutoCloseTimeOut(BaseModel):
    """Hora de cierre automático vigente"""
    value: str = Field(description="Hora de corte HH:MM")
    effective_hour: int = Field(description="Hora efectiva tras aplicar valores por defecto")
    effective_minute: int = Field(description="Minuto efectivo tras aplicar valores por defecto")


class AutoCloseTimeUpdate(BaseModel):
    """Esquema para actualizar la hora de cierre automático"""
    value: str = Field(..., description="Hora de corte HH:MM (24h)")

    @field_validator('value')
    @classmethod
    def validate_value(cls, v: str) -> str:
        cleaned = v.strip()
        if not validate_time_of_day(cleaned):
            raise ValueError('La hora debe tener el formato HH:MM (00:00 a 23:59)')
        hour, minute = cleaned.split(':')
        return f"{int(hour):02d}:{int(minute):02d}"
