from fastapi import APIRouter, Depends

from cashdesk.core.container import Container
from cashdesk.modules.cash_register.dependencies import get_container
from cashdesk.modules.cash_register.scheduler import parse_cutoff
from cashdesk.modules.settings.schemas import AutoCloseTimeOut, AutoCloseTimeUpdate
from cashdesk.modules.settings.service import AUTO_CLOSE_TIME_KEY

settings_router = APIRouter(prefix="/settings", tags=["Settings"])


async def _auto_close_time(container: Container) -> AutoCloseTimeOut:
    value = await container.settings_store.get(
        AUTO_CLOSE_TIME_KEY, container.settings.CASH_REGISTER_AUTO_CLOSE_TIME
    )
    hour, minute = parse_cutoff(value)
    return AutoCloseTimeOut(value=value or "", effective_hour=hour, effective_minute=minute)


@settings_router.get("/auto-close-time", response_model=AutoCloseTimeOut)
async def get_auto_close_time(container: Container = Depends(get_container)):
    """Hora de cierre automático de caja"""
    return await _auto_close_time(container)


@settings_router.put("/auto-close-time", response_model=AutoCloseTimeOut)
async def update_auto_close_time(
    data: AutoCloseTimeUpdate,
    container: Container = Depends(get_container)
):
    """
    Actualizar la hora de cierre automático.

    El scheduler se reinicia para evaluar la nueva hora de inmediato.
    """
    await container.settings_store.set(AUTO_CLOSE_TIME_KEY, data.value)
    if container.scheduler.running:
        await container.scheduler.restart()
    return await _auto_close_time(container)
