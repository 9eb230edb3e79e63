"""
Routers FastAPI para el módulo de caja registradora

Endpoints REST para:
- Apertura, cierre y estado de la caja actual
- Movimientos de caja (suprimento, sangría, cambio)
- Arqueo e historial de cajas cerradas
- Notificaciones recientes

Los errores del núcleo de caja se traducen a HTTP en cashdesk.main.
"""

from fastapi import APIRouter, Depends, HTTPException, status, Query, Path
from typing import List, Optional
from uuid import UUID

from cashdesk.common.notifications import NotificationCenter
from cashdesk.modules.cash_register.dependencies import (
    get_cash_session, get_register_store, get_reconciliation, get_notifier
)
from cashdesk.modules.cash_register.reconciliation import ReconciliationService
from cashdesk.modules.cash_register.repository import CashRegisterStore
from cashdesk.modules.cash_register.services import CashRegisterSession
from cashdesk.modules.cash_register.schemas import (
    CashRegisterRead, CashRegisterOpen, CashRegisterClose, CashRegisterHistory,
    CashMovementCreate, CashMovementRead, CashMovementList,
    ReconciliationOut, NotificationOut
)


# ===== CASH REGISTERS ROUTER =====

cash_registers_router = APIRouter(prefix="/cash-registers", tags=["Cash Register"])


@cash_registers_router.get("/current", response_model=CashRegisterRead)
async def get_current_cash_register(
    session: CashRegisterSession = Depends(get_cash_session)
):
    """
    Devuelve la caja abierta actual.

    - 404 si no hay caja abierta
    """
    if session.current is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No cash register is open")
    return session.current


@cash_registers_router.post("/open", response_model=CashRegisterRead, status_code=status.HTTP_201_CREATED)
async def open_cash_register(
    register_data: CashRegisterOpen,
    session: CashRegisterSession = Depends(get_cash_session)
):
    """
    Abrir caja registradora.

    - **opening_balance**: saldo inicial (0 es válido; negativo o no numérico → 422)
    - **opened_by**: operador que abre la caja

    Solo una caja abierta a la vez (409 si ya hay una).
    """
    return await session.open(register_data.opening_balance, register_data.opened_by)


@cash_registers_router.post("/current/movements", response_model=CashMovementRead, status_code=status.HTTP_201_CREATED)
async def add_cash_movement(
    movement_data: CashMovementCreate,
    session: CashRegisterSession = Depends(get_cash_session)
):
    """
    Registrar un movimiento en la caja abierta.

    - **type**: supply | bleed | change
    - **amount**: monto no negativo
    - **description**: motivo (opcional)
    """
    return await session.add_movement(
        movement_data.type,
        movement_data.amount,
        movement_data.description,
        movement_data.created_by
    )


@cash_registers_router.get("/current/movements", response_model=CashMovementList)
async def list_current_movements(
    session: CashRegisterSession = Depends(get_cash_session)
):
    """Movimientos de la caja abierta en orden de creación"""
    movements = await session.movements()
    return CashMovementList(movements=movements, total=len(movements))


@cash_registers_router.get("/current/summary", response_model=ReconciliationOut)
async def get_current_summary(
    session: CashRegisterSession = Depends(get_cash_session)
):
    """Vista previa del arqueo de la caja abierta"""
    # La caja puede cerrarse mientras se calcula el resumen
    register = session.current
    summary = await session.summary()
    return summary.to_schema(register)


@cash_registers_router.post("/current/close", response_model=CashRegisterRead)
async def close_cash_register(
    close_data: CashRegisterClose,
    session: CashRegisterSession = Depends(get_cash_session)
):
    """
    Cerrar la caja abierta con arqueo.

    - **closing_balance**: saldo contado
    - **closed_by**: operador que cierra
    - **notes**: observaciones de cierre

    La diferencia se calcula como closing_balance - expected_balance.
    """
    return await session.close(close_data.closing_balance, close_data.closed_by, close_data.notes)


@cash_registers_router.post("/refresh", response_model=Optional[CashRegisterRead])
async def refresh_cash_register(
    session: CashRegisterSession = Depends(get_cash_session)
):
    """Recargar la caja abierta desde el almacenamiento (null si no hay)"""
    return await session.refresh()


@cash_registers_router.get("/history", response_model=CashRegisterHistory)
async def get_cash_register_history(
    limit: int = Query(50, ge=1, le=500, description="Cantidad máxima de cajas"),
    store: CashRegisterStore = Depends(get_register_store)
):
    """Cajas cerradas, más recientes primero"""
    registers = await store.history(limit)
    return CashRegisterHistory(cash_registers=registers, total=len(registers))


@cash_registers_router.get("/{register_id}/report", response_model=ReconciliationOut)
async def get_cash_register_report(
    register_id: UUID = Path(..., description="ID de la caja registradora"),
    store: CashRegisterStore = Depends(get_register_store),
    reconciliation: ReconciliationService = Depends(get_reconciliation)
):
    """
    Arqueo de cualquier caja (abierta o cerrada).

    Si no se pueden leer movimientos o ventas, el saldo final se informa
    igual al de apertura y degraded=true.
    """
    register = await store.get(register_id)
    if register is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Cash register not found")
    summary = await reconciliation.preview(register)
    return summary.to_schema(register)


# ===== NOTIFICATIONS ROUTER =====

notifications_router = APIRouter(prefix="/notifications", tags=["Notifications"])


@notifications_router.get("", response_model=List[NotificationOut])
async def get_notifications(
    limit: int = Query(20, ge=1, le=200),
    notifier: NotificationCenter = Depends(get_notifier)
):
    """Notificaciones recientes, más nuevas primero"""
    return [
        NotificationOut(message=n.message, severity=n.severity, created_at=n.created_at)
        for n in notifier.recent(limit)
    ]
