"""
Servicio de sesión de caja registradora

CashRegisterSession es la máquina de estados de la caja actual:

    NoOpenRegister --open--> OpenRegister --close--> NoOpenRegister
                              |     ^
                              +-----+ add_movement

Reglas de negocio:
- Solo una caja abierta a la vez
- Movimientos y cierre solo con caja abierta
- El estado en memoria cambia únicamente después de que el almacenamiento
  confirma la operación
- Cada operación exitosa o fallida emite una notificación
"""

from decimal import Decimal
from typing import List, Optional
import logging

from cashdesk.common.money import MAX_AMOUNT, ZERO, to_decimal
from cashdesk.common.notifications import Notifier, Severity
from cashdesk.modules.cash_register.exceptions import (
    CashRegisterError, ValidationError, NoOpenRegisterError, RegisterAlreadyOpenError,
    RegisterAlreadyClosedError, PersistenceError, MissingIdentifierError
)
from cashdesk.modules.cash_register.ledger import MovementLedger
from cashdesk.modules.cash_register.reconciliation import ReconciliationService, ReconciliationSummary
from cashdesk.modules.cash_register.repository import CashRegisterStore
from cashdesk.modules.cash_register.schemas import (
    CashRegisterRead, CashRegisterClosing, CashRegisterStatus, CashMovementRead,
    MovementType, MOVEMENT_DEFAULT_DESCRIPTIONS
)

logger = logging.getLogger(__name__)

MSG_OPENED = "Cash register opened"
MSG_OPEN_FAILED = "Error opening the cash register"
MSG_MOVEMENT_SAVED = "Cash movement recorded"
MSG_MOVEMENT_FAILED = "Error saving the cash movement"
MSG_MOVEMENT_NOT_REFRESHED = "Cash movement recorded, but the expected balance could not be updated"
MSG_CLOSED = "Cash register closed"
MSG_CLOSE_FAILED = "Error closing the cash register. Try again."
MSG_CLOSE_DENIED = "Permission denied to close the cash register"
MSG_CLOSE_REJECTED = "Cannot close the cash register"


def validate_amount(value, label: str) -> Decimal:
    """Finite, non-negative amount or ValidationError"""
    try:
        amount = to_decimal(value)
    except ValueError as e:
        raise ValidationError(f"Invalid {label}: {e}")
    if amount < ZERO:
        raise ValidationError(f"The {label} cannot be negative")
    if amount > MAX_AMOUNT:
        raise ValidationError(f"The {label} cannot exceed {MAX_AMOUNT}")
    return amount


class CashRegisterSession:
    """
    Owns the current cash register of one application session.

    Store calls are the only suspension points; no lock serializes
    concurrent calls from the same session.
    """

    def __init__(
        self,
        store: CashRegisterStore,
        ledger: MovementLedger,
        reconciliation: ReconciliationService,
        notifier: Notifier,
        default_operator: str = "Operator"
    ):
        self.store = store
        self.ledger = ledger
        self.reconciliation = reconciliation
        self.notifier = notifier
        self.default_operator = default_operator
        self._current: Optional[CashRegisterRead] = None

    @property
    def current(self) -> Optional[CashRegisterRead]:
        return self._current

    @property
    def is_open(self) -> bool:
        return self._current is not None

    def _operator(self, label: Optional[str]) -> str:
        return (label or "").strip() or self.default_operator

    def _fail(self, message: str, error: CashRegisterError) -> None:
        logger.error(f"{message}: {error}")
        self.notifier.show(f"{message}: {error.message}", Severity.ERROR)

    # ===== TRANSITIONS =====

    async def refresh(self) -> Optional[CashRegisterRead]:
        """Replace the in-memory register with the store's current open one"""
        self._current = await self.store.get_current_open()
        return self._current

    async def open(self, opening_balance, opened_by: Optional[str] = None) -> CashRegisterRead:
        """Abrir caja registradora"""
        try:
            if self._current is not None:
                raise RegisterAlreadyOpenError()
            amount = validate_amount(opening_balance, "opening balance")

            existing = await self.store.get_current_open()
            if existing is not None:
                # Abierta fuera de esta sesión: se adopta y se rechaza la apertura
                self._current = existing
                raise RegisterAlreadyOpenError()

            register = await self.store.create(amount, self._operator(opened_by))
        except CashRegisterError as e:
            self._fail(MSG_OPEN_FAILED, e)
            raise

        self._current = register
        logger.info(f"Cash register {register.id} opened by {register.opened_by} with {register.opening_balance}")
        self.notifier.show(MSG_OPENED, Severity.SUCCESS)
        return register

    async def add_movement(
        self,
        type,
        amount,
        description: Optional[str] = None,
        created_by: Optional[str] = None
    ) -> CashMovementRead:
        """Registrar suprimento, sangría o cambio en la caja abierta"""
        try:
            register = self._current
            if register is None:
                raise NoOpenRegisterError()
            if not register.id:
                raise MissingIdentifierError()
            try:
                movement_type = MovementType(type)
            except ValueError:
                raise ValidationError(f"Unknown movement type: {type!r}")
            value = validate_amount(amount, "movement amount")
            text = (description or "").strip() or MOVEMENT_DEFAULT_DESCRIPTIONS[movement_type]

            movement = await self.ledger.append(
                register.id, movement_type, value, text, self._operator(created_by)
            )
        except RegisterAlreadyClosedError as e:
            self._fail(MSG_MOVEMENT_FAILED, e)
            await self._forget(register.id)
            raise
        except CashRegisterError as e:
            self._fail(MSG_MOVEMENT_FAILED, e)
            raise
        logger.info(f"Movement {movement.type.value} of {movement.amount} recorded on cash register {register.id}")

        # Read-after-write: the ledger may also change outside this session
        try:
            expected = await self.reconciliation.final_balance(register)
            await self.store.set_expected_balance(register.id, expected)
            refreshed = await self.store.get(register.id)
        except CashRegisterError as e:
            # The movement is stored; a retry would record it twice
            logger.warning(f"Expected balance of cash register {register.id} not updated: {e}")
            self.notifier.show(f"{MSG_MOVEMENT_NOT_REFRESHED}: {e.message}", Severity.WARNING)
            if isinstance(e, RegisterAlreadyClosedError):
                await self._forget(register.id)
            return movement

        if self._current is not None and self._current.id == register.id:
            self._current = refreshed if refreshed is not None and refreshed.is_open else None
        self.notifier.show(MSG_MOVEMENT_SAVED, Severity.SUCCESS)
        return movement

    async def close(
        self,
        closing_balance,
        closed_by: Optional[str] = None,
        notes: Optional[str] = "",
        *,
        announce: bool = True
    ) -> CashRegisterRead:
        """
        Cerrar caja registradora con arqueo.

        difference = closing_balance - expected_balance. With announce=False
        the caller emits its own success notification.
        """
        try:
            register = self._current
            if register is None:
                raise NoOpenRegisterError()
            if not register.id:
                logger.error(f"Cash register missing id: {register!r}")
                raise MissingIdentifierError()
            amount = validate_amount(closing_balance, "closing balance")

            expected = await self._expected_balance(register)
            closing = CashRegisterClosing(
                closing_balance=amount,
                expected_balance=expected,
                difference=amount - expected,
                closed_by=self._operator(closed_by),
                notes=notes or ""
            )
            await self.store.close(register.id, closing)
        except PersistenceError as e:
            message = MSG_CLOSE_DENIED if e.permission_denied else MSG_CLOSE_FAILED
            logger.error(f"{message}: {e}")
            self.notifier.show(message, Severity.ERROR)
            raise
        except RegisterAlreadyClosedError as e:
            # Closed elsewhere: drop the stale register
            self._fail(MSG_CLOSE_REJECTED, e)
            await self._forget(register.id)
            raise
        except CashRegisterError as e:
            self._fail(MSG_CLOSE_REJECTED, e)
            raise

        if self._current is not None and self._current.id == register.id:
            self._current = None
        logger.info(
            f"Cash register {register.id} closed by {closing.closed_by}: "
            f"closing={closing.closing_balance} expected={closing.expected_balance} difference={closing.difference}"
        )
        if announce:
            self.notifier.show(MSG_CLOSED, Severity.SUCCESS)
        return await self._closed_record(register, closing)

    # ===== READS =====

    async def movements(self) -> List[CashMovementRead]:
        if self._current is None:
            raise NoOpenRegisterError()
        return await self.ledger.list_for(self._current.id)

    async def summary(self) -> ReconciliationSummary:
        if self._current is None:
            raise NoOpenRegisterError()
        return await self.reconciliation.preview(self._current)

    # ===== HELPERS =====

    async def _forget(self, register_id) -> None:
        """Reload the current register after the store reported it closed"""
        if self._current is None or self._current.id != register_id:
            return
        try:
            await self.refresh()
        except PersistenceError as e:
            logger.warning(f"Could not reload the current cash register: {e}")
            self._current = None

    async def _expected_balance(self, register: CashRegisterRead) -> Decimal:
        try:
            return await self.reconciliation.final_balance(register)
        except PersistenceError as e:
            logger.warning(f"Using cached expected balance for cash register {register.id}: {e}")
            return to_decimal(register.expected_balance)

    async def _closed_record(self, register: CashRegisterRead, closing: CashRegisterClosing) -> CashRegisterRead:
        try:
            stored = await self.store.get(register.id)
        except PersistenceError as e:
            logger.warning(f"Could not re-read closed cash register {register.id}: {e}")
            stored = None
        if stored is not None:
            return stored
        return register.model_copy(update={
            "status": CashRegisterStatus.CLOSED,
            "closing_balance": closing.closing_balance,
            "expected_balance": closing.expected_balance,
            "difference": closing.difference,
            "closed_by": closing.closed_by,
            "notes": closing.notes,
        })
