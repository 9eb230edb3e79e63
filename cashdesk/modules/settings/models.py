from cashdesk.database.database import Base
from sqlalchemy import Column, String, Text, UniqueConstraint
from cashdesk.common.mixins import BaseMixin


class AppSetting(Base, BaseMixin):
    """Configuración clave/valor editable desde la aplicación"""
    __tablename__ = "app_settings"

    key = Column(String(100), nullable=False, index=True)
    value = Column(Text, nullable=True)

    __table_args__ = (
        UniqueConstraint("key", name="uq_app_settings_key"),
    )
