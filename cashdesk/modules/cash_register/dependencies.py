"""
Dependencias del módulo de caja registradora

Los servicios viven en app.state.container, creados al iniciar la aplicación.
"""

from fastapi import Depends, Request

from cashdesk.common.notifications import NotificationCenter
from cashdesk.core.container import Container
from cashdesk.modules.cash_register.reconciliation import ReconciliationService
from cashdesk.modules.cash_register.repository import CashRegisterStore
from cashdesk.modules.cash_register.services import CashRegisterSession


def get_container(request: Request) -> Container:
    return request.app.state.container


def get_cash_session(container: Container = Depends(get_container)) -> CashRegisterSession:
    return container.session


def get_register_store(container: Container = Depends(get_container)) -> CashRegisterStore:
    return container.register_store


def get_reconciliation(container: Container = Depends(get_container)) -> ReconciliationService:
    return container.reconciliation


def get_notifier(container: Container = Depends(get_container)) -> NotificationCenter:
    return container.notifier
