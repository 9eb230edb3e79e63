"""
Tests para el módulo de Caja Registradora

Cubren:
- Máquina de estados de la sesión (abrir, movimientos, cerrar)
- Validación de montos antes de tocar el almacenamiento
- Manejo de fallas de persistencia y notificaciones
- Arqueo (fórmula, ventas anuladas, independencia del orden)
- Cierre automático por hora de corte
- Endpoints REST y traducción de errores a HTTP
- Almacenamiento SQL (SQLite en memoria)
"""

import asyncio
import pytest
from fastapi.testclient import TestClient
from sqlalchemy.exc import DBAPIError
from uuid import uuid4
from datetime import datetime, timezone
from decimal import Decimal

from cashdesk.conftest import RecordingNotifier
from cashdesk.common.notifications import Severity
from cashdesk.core.config import Settings
from cashdesk.core.container import build_in_memory_container
from cashdesk.main import create_app
from cashdesk.modules.cash_register.exceptions import (
    ValidationError, NoOpenRegisterError, RegisterAlreadyOpenError, PersistenceError,
    PermissionDeniedError, NotFoundError, MissingIdentifierError, RegisterAlreadyClosedError, from_db_error
)
from cashdesk.modules.cash_register.ledger import SqlMovementLedger
from cashdesk.modules.cash_register.reconciliation import (
    ReconciliationService, summarize, compute_closing_balance
)
from cashdesk.modules.cash_register.repository import SqlCashRegisterStore
from cashdesk.modules.cash_register.router import get_current_summary
from cashdesk.modules.cash_register.scheduler import AutoCloseScheduler, parse_cutoff
from cashdesk.modules.cash_register.schemas import (
    CashRegisterRead, CashRegisterClosing, CashRegisterStatus, CashMovementRead, MovementType
)
from cashdesk.modules.cash_register.services import (
    CashRegisterSession, MSG_OPENED, MSG_OPEN_FAILED, MSG_MOVEMENT_SAVED, MSG_MOVEMENT_FAILED,
    MSG_MOVEMENT_NOT_REFRESHED, MSG_CLOSED, MSG_CLOSE_FAILED, MSG_CLOSE_DENIED, MSG_CLOSE_REJECTED
)
from cashdesk.modules.sales.models import Sale, SaleStatus as ModelSaleStatus
from cashdesk.modules.sales.schemas import SaleRead, SaleStatus
from cashdesk.modules.sales.service import SqlSalesQuery
from cashdesk.modules.settings.service import AUTO_CLOSE_TIME_KEY, InMemorySettingsStore


# ===== HELPERS =====

def make_register(opening="100.00", **overrides) -> CashRegisterRead:
    data = dict(
        id=uuid4(),
        status=CashRegisterStatus.OPEN,
        opening_balance=Decimal(opening),
        expected_balance=Decimal(opening),
        opened_by="Ana",
        opened_at=datetime.now(timezone.utc)
    )
    data.update(overrides)
    return CashRegisterRead(**data)


def make_movement(register_id, type, amount) -> CashMovementRead:
    return CashMovementRead(
        id=uuid4(),
        cash_register_id=register_id,
        type=type,
        amount=Decimal(amount),
        description="",
        created_by="Ana",
        created_at=datetime.now(timezone.utc)
    )


def make_sale(register_id, total, status=SaleStatus.COMPLETED) -> SaleRead:
    return SaleRead(id=uuid4(), cash_register_id=register_id, total=Decimal(total), status=status)


def make_closing(amount="100.00", closed_by="Luis") -> CashRegisterClosing:
    value = Decimal(amount)
    return CashRegisterClosing(
        closing_balance=value,
        expected_balance=value,
        difference=Decimal("0"),
        closed_by=closed_by,
        notes=""
    )


async def wait_until(predicate, timeout=1.0) -> bool:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            return False
        await asyncio.sleep(0.01)
    return True


# ===== TESTS DE APERTURA =====

class TestOpenCashRegister:
    """Tests para la apertura de caja"""

    async def test_open_with_zero_balance(self, cash_session, notifier):
        """Test apertura con saldo cero es válida"""
        register = await cash_session.open(0, "Ana")

        assert cash_session.is_open
        assert cash_session.current.id == register.id
        assert register.status == CashRegisterStatus.OPEN
        assert register.opening_balance == Decimal("0")
        assert register.expected_balance == register.opening_balance
        assert register.opened_by == "Ana"
        assert notifier.last == (MSG_OPENED, Severity.SUCCESS)

    async def test_open_accepts_formatted_strings(self, cash_session):
        """Test apertura con montos en texto"""
        register = await cash_session.open("1.234,56")
        assert register.opening_balance == Decimal("1234.56")

    @pytest.mark.parametrize("value", [-1, "-0.01", "abc", None, "", float("nan"), float("inf"), Decimal("NaN"), "Infinity", True])
    async def test_open_rejects_invalid_balance(self, cash_session, register_store, notifier, value):
        """Test saldos inválidos se rechazan sin llamar al almacenamiento"""
        with pytest.raises(ValidationError):
            await cash_session.open(value, "Ana")

        assert register_store.create_calls == 0
        assert not cash_session.is_open
        message, severity = notifier.last
        assert message.startswith(MSG_OPEN_FAILED)
        assert severity == Severity.ERROR

    async def test_open_twice_rejected(self, cash_session, register_store):
        """Test solo una caja abierta a la vez"""
        first = await cash_session.open(100)

        with pytest.raises(RegisterAlreadyOpenError):
            await cash_session.open(50)

        assert register_store.create_calls == 1
        assert cash_session.current.id == first.id

    async def test_open_adopts_register_opened_elsewhere(self, cash_session, register_store):
        """Test caja abierta fuera de la sesión se adopta y la apertura se rechaza"""
        external = await register_store.create(Decimal("10.00"), "Luis")

        with pytest.raises(RegisterAlreadyOpenError):
            await cash_session.open(5)

        assert register_store.create_calls == 1
        assert cash_session.current.id == external.id

    async def test_open_store_failure_leaves_state(self, cash_session, register_store, notifier, persistence_error):
        """Test falla del almacenamiento no cambia el estado"""
        register_store.fail_create = persistence_error

        with pytest.raises(PersistenceError):
            await cash_session.open(100)

        assert not cash_session.is_open
        assert notifier.last == (f"{MSG_OPEN_FAILED}: Could not reach the store", Severity.ERROR)

    async def test_open_default_operator(self, cash_session):
        """Test operador por defecto cuando no se informa"""
        register = await cash_session.open(10, "   ")
        assert register.opened_by == "Operator"

    async def test_refresh_loads_open_register(self, cash_session, register_store):
        """Test refresh toma la caja abierta del almacenamiento"""
        assert await cash_session.refresh() is None

        external = await register_store.create(Decimal("20"), "Luis")

        assert (await cash_session.refresh()).id == external.id
        assert cash_session.is_open


# ===== TESTS DE MOVIMIENTOS =====

class TestCashMovements:
    """Tests para movimientos de caja"""

    async def test_movement_without_register_never_persists(self, cash_session, ledger, notifier):
        """Test movimiento sin caja abierta"""
        with pytest.raises(NoOpenRegisterError):
            await cash_session.add_movement(MovementType.SUPPLY, 10)

        assert ledger.append_calls == 0
        assert notifier.last[1] == Severity.ERROR
        assert notifier.last[0].startswith(MSG_MOVEMENT_FAILED)

    async def test_movement_missing_identifier(self, cash_session, ledger):
        """Test caja en memoria sin id"""
        cash_session._current = make_register(id=None)

        with pytest.raises(MissingIdentifierError) as exc_info:
            await cash_session.add_movement(MovementType.SUPPLY, 10)

        assert exc_info.value.message == "Cash register id not found. Please reload the page."
        assert ledger.append_calls == 0

    async def test_movements_update_expected_balance(self, cash_session, notifier):
        """Test el saldo esperado se relee después de cada movimiento"""
        await cash_session.open(100)

        movement = await cash_session.add_movement("supply", "50.00", "Refuerzo", "Ana")
        assert movement.type == MovementType.SUPPLY
        assert movement.description == "Refuerzo"
        assert cash_session.current.expected_balance == Decimal("150.00")
        assert notifier.last == (MSG_MOVEMENT_SAVED, Severity.SUCCESS)

        await cash_session.add_movement(MovementType.BLEED, 20)
        assert cash_session.current.expected_balance == Decimal("130.00")

        await cash_session.add_movement(MovementType.CHANGE, "30")
        assert cash_session.current.expected_balance == Decimal("100.00")

    async def test_movement_default_description(self, cash_session):
        """Test descripción por defecto según el tipo"""
        await cash_session.open(100)

        supply = await cash_session.add_movement(MovementType.SUPPLY, 1, "  ")
        bleed = await cash_session.add_movement(MovementType.BLEED, 1)
        change = await cash_session.add_movement(MovementType.CHANGE, 1, None)

        assert supply.description == "Cash supply"
        assert bleed.description == "Cash bleed"
        assert change.description == "Change withdrawal"
        assert supply.created_by == "Operator"

    @pytest.mark.parametrize("amount", [-5, "abc", None, float("nan")])
    async def test_movement_rejects_invalid_amount(self, cash_session, ledger, amount):
        """Test montos inválidos no llegan al libro de movimientos"""
        await cash_session.open(100)

        with pytest.raises(ValidationError):
            await cash_session.add_movement(MovementType.SUPPLY, amount)

        assert ledger.append_calls == 0
        assert cash_session.current.expected_balance == Decimal("100.00")

    async def test_movement_rejects_unknown_type(self, cash_session, ledger):
        """Test tipo de movimiento desconocido"""
        await cash_session.open(100)

        with pytest.raises(ValidationError):
            await cash_session.add_movement("refund", 10)

        assert ledger.append_calls == 0

    async def test_movement_ledger_failure(self, cash_session, ledger, notifier, persistence_error):
        """Test falla del libro de movimientos no cambia el saldo esperado"""
        await cash_session.open(100)
        ledger.fail_append = persistence_error

        with pytest.raises(PersistenceError):
            await cash_session.add_movement(MovementType.SUPPLY, 50)

        assert cash_session.current.expected_balance == Decimal("100.00")
        assert await ledger.list_for(cash_session.current.id) == []
        assert notifier.last == (f"{MSG_MOVEMENT_FAILED}: Could not reach the store", Severity.ERROR)

    @pytest.mark.parametrize("amount", ["1e30", 10 ** 30, "10000000000000"])
    async def test_movement_rejects_amount_out_of_range(self, cash_session, ledger, notifier, amount):
        """Test montos mayores que Numeric(15, 2) se rechazan"""
        await cash_session.open(100)

        with pytest.raises(ValidationError):
            await cash_session.add_movement(MovementType.SUPPLY, amount)

        assert ledger.append_calls == 0
        assert notifier.last[0].startswith(MSG_MOVEMENT_FAILED)

    async def test_movement_saved_but_balance_not_refreshed(self, cash_session, ledger, notifier, persistence_error):
        """Test movimiento guardado con relectura fallida avisa sin reportar error"""
        opened = await cash_session.open(100)
        ledger.fail_list = persistence_error

        movement = await cash_session.add_movement(MovementType.SUPPLY, 50)

        assert movement.amount == Decimal("50.00")
        assert notifier.last == (f"{MSG_MOVEMENT_NOT_REFRESHED}: Could not reach the store", Severity.WARNING)
        assert Severity.ERROR not in notifier.severities
        assert cash_session.current.id == opened.id

        ledger.fail_list = None
        assert [m.id for m in await ledger.list_for(opened.id)] == [movement.id]

    async def test_movement_refused_when_closed_while_pending(self, cash_session, scheduler, register_store, ledger, notifier):
        """Test cierre automático durante un movimiento en curso deja la caja cerrada intacta"""
        opened = await cash_session.open(100)
        gate = asyncio.Event()
        ledger.append_gate = gate

        pending = asyncio.create_task(cash_session.add_movement(MovementType.SUPPLY, 50))
        assert await wait_until(lambda: ledger.append_calls == 1)

        assert await scheduler.tick(datetime(2024, 5, 10, 22, 1)) is True
        gate.set()

        with pytest.raises(RegisterAlreadyClosedError):
            await pending

        closed = await register_store.get(opened.id)
        assert closed.status == CashRegisterStatus.CLOSED
        assert closed.expected_balance == Decimal("100.00")
        assert closed.closing_balance == Decimal("100.00")
        assert closed.difference == Decimal("0.00")
        assert await ledger.list_for(opened.id) == []
        assert not cash_session.is_open
        assert notifier.last == (f"{MSG_MOVEMENT_FAILED}: The cash register is already closed", Severity.ERROR)
        assert (MSG_MOVEMENT_SAVED, Severity.SUCCESS) not in notifier.messages

    async def test_movement_on_register_closed_elsewhere(self, cash_session, register_store, ledger):
        """Test caja cerrada fuera de la sesión rechaza movimientos y se descarta"""
        opened = await cash_session.open(100)
        await register_store.close(opened.id, make_closing())

        with pytest.raises(RegisterAlreadyClosedError):
            await cash_session.add_movement(MovementType.BLEED, 10)

        assert await ledger.list_for(opened.id) == []
        assert cash_session.current is None

    async def test_list_movements_in_creation_order(self, cash_session):
        """Test movimientos en orden de creación"""
        await cash_session.open(100)
        await cash_session.add_movement(MovementType.SUPPLY, 1)
        await cash_session.add_movement(MovementType.BLEED, 2)
        await cash_session.add_movement(MovementType.CHANGE, 3)

        movements = await cash_session.movements()

        assert [m.type for m in movements] == [MovementType.SUPPLY, MovementType.BLEED, MovementType.CHANGE]

    async def test_reads_require_open_register(self, cash_session):
        """Test lecturas sin caja abierta"""
        with pytest.raises(NoOpenRegisterError):
            await cash_session.movements()
        with pytest.raises(NoOpenRegisterError):
            await cash_session.summary()


# ===== TESTS DE CIERRE =====

class TestCloseCashRegister:
    """Tests para el cierre de caja"""

    async def test_close_without_register(self, cash_session, register_store, notifier):
        """Test cierre sin caja abierta no llama al almacenamiento"""
        with pytest.raises(NoOpenRegisterError):
            await cash_session.close(100)

        assert register_store.close_calls == 0
        assert notifier.last[0].startswith(MSG_CLOSE_REJECTED)

    async def test_close_missing_identifier(self, cash_session, register_store):
        """Test cierre de caja sin id"""
        cash_session._current = make_register(id=None)

        with pytest.raises(MissingIdentifierError):
            await cash_session.close(100)

        assert register_store.close_calls == 0

    async def test_close_records_difference(self, cash_session, register_store, notifier):
        """Test diferencia = cierre - esperado"""
        opened = await cash_session.open(100)
        await cash_session.add_movement(MovementType.SUPPLY, 50)

        closed = await cash_session.close("140.00", "Luis", "Faltante")

        assert not cash_session.is_open
        assert closed.id == opened.id
        assert closed.status == CashRegisterStatus.CLOSED
        assert closed.expected_balance == Decimal("150.00")
        assert closed.closing_balance == Decimal("140.00")
        assert closed.difference == Decimal("-10.00")
        assert closed.closed_by == "Luis"
        assert closed.notes == "Faltante"
        assert closed.closed_at is not None
        assert notifier.last == (MSG_CLOSED, Severity.SUCCESS)
        assert (await register_store.history())[0].id == opened.id

    async def test_close_rejects_invalid_balance(self, cash_session, register_store, notifier):
        """Test saldo de cierre inválido"""
        await cash_session.open(100)

        with pytest.raises(ValidationError):
            await cash_session.close("abc")

        assert register_store.close_calls == 0
        assert cash_session.is_open
        assert notifier.last[0].startswith(MSG_CLOSE_REJECTED)

    async def test_close_permission_denied(self, cash_session, register_store, notifier, permission_error):
        """Test permiso denegado mantiene la caja abierta"""
        opened = await cash_session.open(100)
        register_store.fail_close = permission_error

        with pytest.raises(PermissionDeniedError):
            await cash_session.close(100)

        assert cash_session.current.id == opened.id
        assert notifier.last == (MSG_CLOSE_DENIED, Severity.ERROR)

    async def test_close_store_failure(self, cash_session, register_store, notifier, persistence_error):
        """Test falla genérica al cerrar"""
        await cash_session.open(100)
        register_store.fail_close = persistence_error

        with pytest.raises(PersistenceError):
            await cash_session.close(100)

        assert cash_session.is_open
        assert notifier.last == (MSG_CLOSE_FAILED, Severity.ERROR)

    async def test_close_register_already_closed_elsewhere(self, cash_session, register_store, notifier):
        """Test caja ya cerrada en el almacenamiento: conflicto y se descarta la caja en memoria"""
        opened = await cash_session.open(100)
        await register_store.close(opened.id, make_closing("90.00"))

        with pytest.raises(RegisterAlreadyClosedError):
            await cash_session.close(100)

        assert cash_session.current is None
        assert notifier.last == (f"{MSG_CLOSE_REJECTED}: The cash register is already closed", Severity.ERROR)
        assert (MSG_CLOSE_DENIED, Severity.ERROR) not in notifier.messages
        assert (await register_store.get(opened.id)).closing_balance == Decimal("90.00")

    @pytest.mark.parametrize("value", ["1e30", 10 ** 30, "10000000000000"])
    async def test_open_rejects_amount_out_of_range(self, cash_session, register_store, notifier, value):
        """Test saldo de apertura fuera de Numeric(15, 2)"""
        with pytest.raises(ValidationError):
            await cash_session.open(value)

        assert register_store.create_calls == 0
        assert notifier.last[0].startswith(MSG_OPEN_FAILED)

    async def test_largest_amount_accepted(self, cash_session):
        """Test el mayor monto representable es válido"""
        register = await cash_session.open("9999999999999.99")
        assert register.opening_balance == Decimal("9999999999999.99")

    async def test_store_refuses_expected_balance_on_closed_register(self, register_store):
        """Test caja cerrada no acepta un nuevo saldo esperado"""
        register = await register_store.create(Decimal("100"), "Ana")
        await register_store.close(register.id, make_closing())

        with pytest.raises(RegisterAlreadyClosedError):
            await register_store.set_expected_balance(register.id, Decimal("150"))
        with pytest.raises(NotFoundError):
            await register_store.set_expected_balance(uuid4(), Decimal("1"))

        assert (await register_store.get(register.id)).expected_balance == Decimal("100.00")

    async def test_close_uses_cached_expected_when_ledger_unreadable(self, cash_session, ledger, persistence_error):
        """Test cierre usa el saldo esperado en memoria si no se puede leer el libro"""
        await cash_session.open(100)
        await cash_session.add_movement(MovementType.SUPPLY, 50)
        ledger.fail_list = persistence_error

        closed = await cash_session.close(150)

        assert closed.expected_balance == Decimal("150.00")
        assert closed.difference == Decimal("0.00")

    async def test_open_again_after_close(self, cash_session):
        """Test nueva apertura después del cierre"""
        first = await cash_session.open(100)
        await cash_session.close(100)

        second = await cash_session.open(50)

        assert second.id != first.id
        assert cash_session.current.id == second.id

    async def test_scenario_balanced_close(self, cash_session, sales):
        """Test arqueo con ventas, suprimento y sangría sin diferencia"""
        opened = await cash_session.open(Decimal("100.00"), "Ana")
        await cash_session.add_movement(MovementType.SUPPLY, "50.00")
        await cash_session.add_movement(MovementType.BLEED, "20.00")
        sales.record(opened.id, "200.00")

        closed = await cash_session.close("330.00", "Ana")

        assert closed.expected_balance == Decimal("330.00")
        assert closed.difference == Decimal("0.00")

    async def test_scenario_cancelled_sale_excluded(self, cash_session, sales):
        """Test venta anulada no entra en el arqueo"""
        opened = await cash_session.open(Decimal("100.00"), "Ana")
        await cash_session.add_movement(MovementType.SUPPLY, "50.00")
        await cash_session.add_movement(MovementType.BLEED, "20.00")
        sales.record(opened.id, "200.00")
        cancelled = sales.record(opened.id, "75.00")
        sales.cancel(cancelled.id)

        summary = await cash_session.summary()
        closed = await cash_session.close("330.00", "Ana")

        assert summary.total_sales == Decimal("200.00")
        assert summary.cancelled_sales_count == 1
        assert closed.expected_balance == Decimal("330.00")
        assert closed.difference == Decimal("0.00")


# ===== TESTS DE ARQUEO =====

class TestReconciliation:
    """Tests para el cálculo del arqueo"""

    def test_formula_subtracts_change(self):
        """Test saldo final = apertura + ventas + suprimentos - sangrías - cambio"""
        register = make_register("100.00")
        movements = [
            make_movement(register.id, MovementType.SUPPLY, "50.00"),
            make_movement(register.id, MovementType.BLEED, "20.00"),
            make_movement(register.id, MovementType.CHANGE, "5.00"),
        ]
        sales = [make_sale(register.id, "200.00")]

        summary = summarize(register, movements, sales)

        assert summary.total_supplies == Decimal("50.00")
        assert summary.total_bleeds == Decimal("20.00")
        assert summary.total_change == Decimal("5.00")
        assert summary.total_sales == Decimal("200.00")
        assert summary.movements_count == 3
        assert summary.final_balance == Decimal("325.00")

    def test_order_independent(self):
        """Test el resultado no depende del orden de las entradas"""
        register = make_register("10.00")
        movements = [
            make_movement(register.id, MovementType.SUPPLY, "0.10"),
            make_movement(register.id, MovementType.CHANGE, "0.20"),
            make_movement(register.id, MovementType.SUPPLY, "0.30"),
            make_movement(register.id, MovementType.BLEED, "1.05"),
        ]
        sales = [
            make_sale(register.id, "3.33"),
            make_sale(register.id, "9.99", SaleStatus.CANCELLED),
            make_sale(register.id, "0.01"),
        ]

        expected = compute_closing_balance(register, movements, sales)

        assert compute_closing_balance(register, movements[::-1], sales[::-1]) == expected
        assert compute_closing_balance(register, movements[2:] + movements[:2], sales[1:] + sales[:1]) == expected
        assert expected == Decimal("12.49")

    def test_cancelled_sales_excluded(self):
        """Test ventas anuladas se cuentan aparte"""
        register = make_register("0")
        sales = [make_sale(register.id, "75.00", SaleStatus.CANCELLED), make_sale(register.id, "25.00")]

        summary = summarize(register, [], sales)

        assert summary.total_sales == Decimal("25.00")
        assert summary.sales_count == 1
        assert summary.cancelled_sales_count == 1

    def test_schema_rounds_to_cents(self):
        """Test presentación redondeada a centavos"""
        register = make_register("100.005")

        out = summarize(register, [], []).to_schema(register)

        assert out.opening_balance == Decimal("100.01")
        assert out.final_balance == Decimal("100.01")
        assert out.cash_register_id == register.id
        assert out.degraded is False

    async def test_preview_degrades_on_read_failure(self, reconciliation, ledger, persistence_error):
        """Test vista previa con libro ilegible devuelve el saldo de apertura"""
        register = make_register("80.00")
        ledger.fail_list = persistence_error

        summary = await reconciliation.preview(register)

        assert summary.degraded is True
        assert summary.final_balance == Decimal("80.00")

    async def test_final_balance_propagates_read_failure(self, reconciliation, ledger, persistence_error):
        """Test el cálculo para cierre no oculta errores de lectura"""
        ledger.fail_list = persistence_error

        with pytest.raises(PersistenceError):
            await reconciliation.final_balance(make_register())

    async def test_session_summary_preview(self, cash_session, ledger, persistence_error):
        """Test resumen de la caja abierta degradado"""
        await cash_session.open(100)
        ledger.fail_list = persistence_error

        summary = await cash_session.summary()

        assert summary.degraded
        assert summary.final_balance == Decimal("100.00")

    async def test_summary_endpoint_survives_close_while_computing(self, cash_session, ledger):
        """Test el resumen usa la caja vigente al pedirlo aunque se cierre mientras se calcula"""
        opened = await cash_session.open(100)
        await cash_session.add_movement(MovementType.SUPPLY, 50)
        gate = asyncio.Event()
        ledger.list_gate = gate

        pending = asyncio.create_task(get_current_summary(session=cash_session))
        assert await wait_until(lambda: ledger.list_gate is None)
        await cash_session.close(150)
        assert not cash_session.is_open
        gate.set()

        out = await pending
        assert out.cash_register_id == opened.id
        assert out.final_balance == Decimal("150.00")


# ===== TESTS DE CIERRE AUTOMÁTICO =====

class TestParseCutoff:
    """Tests para la hora de corte"""

    @pytest.mark.parametrize("value,expected", [
        ("22:00", (22, 0)),
        ("7:05", (7, 5)),
        (" 08:15 ", (8, 15)),
        ("00:00", (0, 0)),
        ("23:59", (23, 59)),
        ("abc", (22, 0)),
        ("", (22, 0)),
        (None, (22, 0)),
        ("25:00", (22, 0)),
        ("24:30", (22, 30)),
        ("10:75", (10, 0)),
        ("99:99", (22, 0)),
        ("10:5", (22, 0)),
    ])
    def test_parse_cutoff(self, value, expected):
        """Test valores por defecto independientes para hora y minuto"""
        assert parse_cutoff(value) == expected


class TestAutoCloseScheduler:
    """Tests para el cierre automático"""

    async def test_no_register_no_close(self, scheduler, register_store):
        """Test sin caja abierta no hace nada"""
        assert await scheduler.tick(datetime(2024, 5, 10, 23, 0)) is False
        assert register_store.close_calls == 0

    async def test_before_cutoff_no_close(self, scheduler, cash_session):
        """Test antes de la hora de corte la caja sigue abierta"""
        await cash_session.open(100)

        assert await scheduler.tick(datetime(2024, 5, 10, 21, 59)) is False
        assert cash_session.is_open

    async def test_closes_after_cutoff_once(self, scheduler, cash_session, register_store, notifier, sales):
        """Test cierre a las 22:01 y ningún segundo cierre a las 22:02"""
        opened = await cash_session.open(100)
        await cash_session.add_movement(MovementType.SUPPLY, 50)
        sales.record(opened.id, "25.00")

        assert await scheduler.tick(datetime(2024, 5, 10, 22, 1)) is True

        closed = await register_store.get(opened.id)
        assert closed.status == CashRegisterStatus.CLOSED
        assert closed.closed_by == "system"
        assert closed.closing_balance == Decimal("175.00")
        assert closed.expected_balance == Decimal("175.00")
        assert closed.difference == Decimal("0.00")
        assert closed.notes == "Closed automatically at cutoff 22:00"
        assert not cash_session.is_open
        assert opened.id in scheduler.processed
        assert notifier.last == ("Cash register closed automatically at 22:00", Severity.WARNING)
        assert (MSG_CLOSED, Severity.SUCCESS) not in notifier.messages

        assert await scheduler.tick(datetime(2024, 5, 10, 22, 2)) is False
        assert register_store.close_calls == 1

    async def test_processed_register_never_closed_twice(self, scheduler, cash_session, register_store):
        """Test una caja ya procesada se ignora aunque vuelva a estar en memoria"""
        opened = await cash_session.open(100)
        await scheduler.tick(datetime(2024, 5, 10, 22, 1))

        cash_session._current = opened

        assert await scheduler.tick(datetime(2024, 5, 10, 22, 5)) is False
        assert register_store.close_calls == 1

    async def test_malformed_cutoff_behaves_as_default(self, cash_session, reconciliation):
        """Test hora de corte inválida se comporta como 22:00"""
        scheduler = AutoCloseScheduler(
            cash_session, reconciliation, InMemorySettingsStore({AUTO_CLOSE_TIME_KEY: "abc"})
        )
        await cash_session.open(100)

        assert await scheduler.cutoff() == (22, 0)
        assert await scheduler.tick(datetime(2024, 5, 10, 21, 59)) is False
        assert await scheduler.tick(datetime(2024, 5, 10, 22, 0)) is True

    async def test_custom_cutoff(self, scheduler, settings_store, cash_session, register_store):
        """Test hora de corte configurada"""
        await settings_store.set(AUTO_CLOSE_TIME_KEY, "18:30")
        opened = await cash_session.open(100)

        assert await scheduler.tick(datetime(2024, 5, 10, 18, 29)) is False
        assert await scheduler.tick(datetime(2024, 5, 10, 18, 30)) is True
        assert (await register_store.get(opened.id)).notes == "Closed automatically at cutoff 18:30"

    async def test_failed_close_retried_next_tick(self, scheduler, cash_session, register_store, persistence_error):
        """Test un cierre fallido no marca la caja como procesada"""
        opened = await cash_session.open(100)
        register_store.fail_close = persistence_error

        assert await scheduler.tick(datetime(2024, 5, 10, 22, 1)) is False
        assert opened.id not in scheduler.processed
        assert cash_session.is_open

        register_store.fail_close = None
        assert await scheduler.tick(datetime(2024, 5, 10, 22, 2)) is True

    async def test_register_closed_elsewhere_not_retried(self, scheduler, cash_session, register_store, notifier):
        """Test caja cerrada fuera del scheduler se marca procesada sin reintentos"""
        opened = await cash_session.open(100)
        await register_store.close(opened.id, make_closing())

        assert await scheduler.tick(datetime(2024, 5, 10, 22, 1)) is False
        assert opened.id in scheduler.processed
        assert cash_session.current is None

        assert await scheduler.tick(datetime(2024, 5, 10, 22, 2)) is False
        cash_session._current = opened
        assert await scheduler.tick(datetime(2024, 5, 10, 22, 3)) is False

        assert register_store.close_calls == 2
        assert not any(message.startswith(MSG_CLOSE_DENIED) for message, _ in notifier.messages)
        assert [m for m, _ in notifier.messages].count(f"{MSG_CLOSE_REJECTED}: The cash register is already closed") == 1

    async def test_start_and_stop(self, scheduler, cash_session, clock):
        """Test la tarea revisa de inmediato y se cancela al detener"""
        await cash_session.open(100)
        clock.now = datetime(2024, 5, 10, 22, 1)

        scheduler.start()
        scheduler.start()
        assert scheduler.running

        assert await wait_until(lambda: not cash_session.is_open)
        assert scheduler.running

        await scheduler.stop()
        assert not scheduler.running
        await scheduler.stop()

    async def test_loop_survives_failed_tick(self, scheduler, cash_session, ledger, clock, persistence_error):
        """Test una revisión con error no detiene la tarea"""
        await cash_session.open(100)
        clock.now = datetime(2024, 5, 10, 22, 1)
        ledger.fail_list = persistence_error

        scheduler.start()
        await asyncio.sleep(0.05)
        assert scheduler.running
        assert cash_session.is_open

        ledger.fail_list = None
        assert await wait_until(lambda: not cash_session.is_open)
        await scheduler.stop()

    async def test_restart(self, scheduler):
        """Test reinicio del scheduler"""
        scheduler.start()
        first = scheduler._task

        await scheduler.restart()

        assert scheduler.running
        assert scheduler._task is not first
        assert first.cancelled()
        await scheduler.stop()


# ===== TESTS DE ENDPOINTS =====

@pytest.fixture
def container():
    app_settings = Settings(DEMO_MODE=True, AUTO_CLOSE_ENABLED=False, ENVIRONMENT="test")
    return build_in_memory_container(app_settings)


@pytest.fixture
def client(container):
    return TestClient(create_app(container))


class TestCashRegisterEndpoints:
    """Tests para los endpoints de caja"""

    def test_current_without_register(self, client):
        """Test 404 sin caja abierta"""
        response = client.get("/api/v1/cash-registers/current")
        assert response.status_code == 404

    def test_open_and_get_current(self, client):
        """Test apertura por API"""
        response = client.post("/api/v1/cash-registers/open", json={"opening_balance": 100, "opened_by": "Ana"})

        assert response.status_code == 201
        data = response.json()
        assert data["status"] == "open"
        assert Decimal(data["opening_balance"]) == Decimal("100")
        assert data["opened_by"] == "Ana"

        current = client.get("/api/v1/cash-registers/current").json()
        assert current["id"] == data["id"]

    @pytest.mark.parametrize("value", [-5, "abc", "NaN", None])
    def test_open_invalid_balance(self, client, value):
        """Test 422 para saldos inválidos"""
        response = client.post("/api/v1/cash-registers/open", json={"opening_balance": value})
        assert response.status_code == 422
        assert "detail" in response.json()

    def test_open_twice_conflict(self, client):
        """Test 409 con caja ya abierta"""
        client.post("/api/v1/cash-registers/open", json={"opening_balance": 10})
        response = client.post("/api/v1/cash-registers/open", json={"opening_balance": 10})

        assert response.status_code == 409
        assert response.json()["detail"] == "A cash register is already open"

    def test_movement_without_register_conflict(self, client):
        """Test 409 para movimiento sin caja"""
        response = client.post("/api/v1/cash-registers/current/movements", json={"type": "supply", "amount": 10})
        assert response.status_code == 409

    def test_movement_unknown_type(self, client):
        """Test 422 para tipo desconocido"""
        client.post("/api/v1/cash-registers/open", json={"opening_balance": 10})
        response = client.post("/api/v1/cash-registers/current/movements", json={"type": "refund", "amount": 10})
        assert response.status_code == 422

    def test_full_cycle(self, client, container):
        """Test apertura, movimientos, arqueo, cierre e historial"""
        opened = client.post("/api/v1/cash-registers/open", json={"opening_balance": "100.00"}).json()
        container.sales_query.record(container.session.current.id, "200.00")

        supply = client.post(
            "/api/v1/cash-registers/current/movements",
            json={"type": "supply", "amount": "50.00", "description": "Refuerzo"}
        )
        assert supply.status_code == 201
        assert supply.json()["description"] == "Refuerzo"
        client.post("/api/v1/cash-registers/current/movements", json={"type": "bleed", "amount": 20})

        movements = client.get("/api/v1/cash-registers/current/movements").json()
        assert movements["total"] == 2
        assert [m["type"] for m in movements["movements"]] == ["supply", "bleed"]

        summary = client.get("/api/v1/cash-registers/current/summary").json()
        assert Decimal(summary["final_balance"]) == Decimal("330.00")
        assert summary["movements_count"] == 2
        assert summary["degraded"] is False

        closed = client.post(
            "/api/v1/cash-registers/current/close",
            json={"closing_balance": "325.00", "closed_by": "Luis", "notes": "Faltante"}
        )
        assert closed.status_code == 200
        closed_data = closed.json()
        assert closed_data["status"] == "closed"
        assert Decimal(closed_data["difference"]) == Decimal("-5.00")

        assert client.get("/api/v1/cash-registers/current").status_code == 404

        history = client.get("/api/v1/cash-registers/history", params={"limit": 10}).json()
        assert history["total"] == 1
        assert history["cash_registers"][0]["id"] == opened["id"]

        report = client.get(f"/api/v1/cash-registers/{opened['id']}/report").json()
        assert report["status"] == "closed"
        assert Decimal(report["final_balance"]) == Decimal("330.00")
        assert Decimal(report["difference"]) == Decimal("-5.00")

    def test_close_without_register_conflict(self, client):
        """Test 409 para cierre sin caja"""
        response = client.post("/api/v1/cash-registers/current/close", json={"closing_balance": 10})
        assert response.status_code == 409
        assert response.json()["detail"] == "No cash register is open"

    def test_close_register_already_closed_conflict(self, client, container):
        """Test 409 cuando la caja ya fue cerrada en el almacenamiento"""
        client.post("/api/v1/cash-registers/open", json={"opening_balance": 10})
        registers = container.register_store._registers
        for register_id, register in list(registers.items()):
            registers[register_id] = register.model_copy(update={"status": CashRegisterStatus.CLOSED})

        response = client.post("/api/v1/cash-registers/current/close", json={"closing_balance": 10})

        assert response.status_code == 409
        assert response.json()["detail"] == "The cash register is already closed"
        notifications = client.get("/api/v1/notifications").json()
        assert notifications[0]["message"].startswith(MSG_CLOSE_REJECTED)
        assert notifications[0]["severity"] == "error"
        assert not container.session.is_open
        assert client.get("/api/v1/cash-registers/current").status_code == 404

    @pytest.mark.parametrize("value", ["1e30", "10000000000000"])
    def test_open_amount_out_of_range(self, client, value):
        """Test 422 para montos fuera de rango"""
        response = client.post("/api/v1/cash-registers/open", json={"opening_balance": value})
        assert response.status_code == 422

    def test_report_unknown_register(self, client):
        """Test 404 para arqueo de caja inexistente"""
        response = client.get(f"/api/v1/cash-registers/{uuid4()}/report")
        assert response.status_code == 404

    def test_refresh(self, client, container):
        """Test recarga desde el almacenamiento"""
        assert client.post("/api/v1/cash-registers/refresh").json() is None

        client.post("/api/v1/cash-registers/open", json={"opening_balance": 10})
        response = client.post("/api/v1/cash-registers/refresh")

        assert response.json()["id"] == str(container.session.current.id)

    def test_notifications_newest_first(self, client):
        """Test notificaciones más recientes primero"""
        client.post("/api/v1/cash-registers/open", json={"opening_balance": 10})
        client.post("/api/v1/cash-registers/open", json={"opening_balance": 10})

        notifications = client.get("/api/v1/notifications", params={"limit": 2}).json()

        assert len(notifications) == 2
        assert notifications[0]["severity"] == "error"
        assert notifications[1]["message"] == MSG_OPENED

    def test_health(self, client):
        """Test health check"""
        data = client.get("/health").json()
        assert data["status"] == "healthy"
        assert data["cash_register_open"] is False
        assert data["auto_close_running"] is False


# ===== TESTS DE ALMACENAMIENTO SQL =====

class TestSqlStores:
    """Tests para los almacenamientos SQL"""

    async def test_create_and_current_open(self, sql_sessionmaker):
        """Test creación y lectura de caja abierta"""
        store = SqlCashRegisterStore(sql_sessionmaker)
        assert await store.get_current_open() is None

        created = await store.create(Decimal("100.004"), "Ana")

        assert created.id is not None
        assert created.status == CashRegisterStatus.OPEN
        assert created.opening_balance == Decimal("100.00")
        assert created.expected_balance == Decimal("100.00")
        assert (await store.get_current_open()).id == created.id

    async def test_close_and_history(self, sql_sessionmaker):
        """Test cierre, doble cierre e historial"""
        store = SqlCashRegisterStore(sql_sessionmaker)
        first = await store.create(Decimal("10"), "Ana")
        closing = CashRegisterClosing(
            closing_balance=Decimal("12"),
            expected_balance=Decimal("10"),
            difference=Decimal("2"),
            closed_by="Ana",
            notes="Sobrante"
        )
        await store.close(first.id, closing)
        second = await store.create(Decimal("20"), "Luis")
        await store.close(second.id, closing)

        closed = await store.get(first.id)
        assert closed.status == CashRegisterStatus.CLOSED
        assert closed.difference == Decimal("2.00")
        assert closed.notes == "Sobrante"
        assert await store.get_current_open() is None

        history = await store.history()
        assert [r.id for r in history] == [second.id, first.id]
        assert len(await store.history(limit=1)) == 1

        with pytest.raises(RegisterAlreadyClosedError):
            await store.close(first.id, closing)
        with pytest.raises(RegisterAlreadyClosedError):
            await store.set_expected_balance(first.id, Decimal("99"))
        assert (await store.get(first.id)).expected_balance == Decimal("10.00")
        with pytest.raises(NotFoundError):
            await store.close(uuid4(), closing)
        with pytest.raises(NotFoundError):
            await store.set_expected_balance(uuid4(), Decimal("1"))

    async def test_ledger_order(self, sql_sessionmaker):
        """Test el libro devuelve los movimientos en orden"""
        store = SqlCashRegisterStore(sql_sessionmaker)
        ledger = SqlMovementLedger(sql_sessionmaker)
        register = await store.create(Decimal("0"), "Ana")

        for movement_type in (MovementType.CHANGE, MovementType.SUPPLY, MovementType.BLEED):
            await ledger.append(register.id, movement_type, Decimal("1"), "x", "Ana")

        movements = await ledger.list_for(register.id)
        assert [m.type for m in movements] == [MovementType.CHANGE, MovementType.SUPPLY, MovementType.BLEED]
        assert await ledger.list_for(uuid4()) == []

    async def test_ledger_refuses_closed_register(self, sql_sessionmaker):
        """Test el libro no acepta movimientos de cajas cerradas o inexistentes"""
        store = SqlCashRegisterStore(sql_sessionmaker)
        ledger = SqlMovementLedger(sql_sessionmaker)
        register = await store.create(Decimal("50"), "Ana")
        await store.close(register.id, make_closing("50.00"))

        with pytest.raises(RegisterAlreadyClosedError):
            await ledger.append(register.id, MovementType.SUPPLY, Decimal("5"), "x", "Ana")
        with pytest.raises(NotFoundError):
            await ledger.append(uuid4(), MovementType.SUPPLY, Decimal("5"), "x", "Ana")

        assert await ledger.list_for(register.id) == []

    async def test_session_on_sql(self, sql_sessionmaker):
        """Test ciclo completo sobre SQL con ventas anuladas"""
        store = SqlCashRegisterStore(sql_sessionmaker)
        ledger = SqlMovementLedger(sql_sessionmaker)
        sales = SqlSalesQuery(sql_sessionmaker)
        notifier = RecordingNotifier()
        session = CashRegisterSession(store, ledger, ReconciliationService(ledger, sales), notifier)

        opened = await session.open("100.00", "Ana")
        await session.add_movement(MovementType.SUPPLY, "50.00")
        await session.add_movement(MovementType.BLEED, "20.00")
        async with sql_sessionmaker() as db:
            db.add(Sale(cash_register_id=opened.id, total=Decimal("200.00"), status=ModelSaleStatus.COMPLETED))
            db.add(Sale(cash_register_id=opened.id, total=Decimal("75.00"), status=ModelSaleStatus.CANCELLED))
            await db.commit()

        assert session.current.expected_balance == Decimal("130.00")
        closed = await session.close("330.00", "Ana")

        assert closed.expected_balance == Decimal("330.00")
        assert closed.difference == Decimal("0.00")
        assert closed.status == CashRegisterStatus.CLOSED
        assert notifier.severities == [Severity.SUCCESS] * 4


# ===== TESTS DE ERRORES DE BASE DE DATOS =====

class _PgError(Exception):
    def __init__(self, message, pgcode=None):
        super().__init__(message)
        self.pgcode = pgcode


class TestFromDbError:
    """Tests para la traducción de errores SQLAlchemy"""

    def test_permission_denied_by_sqlstate(self):
        """Test SQLSTATE 42501 se traduce a permiso denegado"""
        error = DBAPIError("UPDATE cash_registers", {}, _PgError("insufficient privilege", pgcode="42501"))

        translated = from_db_error(error, "close the cash register")

        assert isinstance(translated, PermissionDeniedError)
        assert translated.permission_denied
        assert translated.message == "Permission denied while trying to close the cash register"

    def test_permission_denied_by_message(self):
        """Test texto 'permission denied' se traduce a permiso denegado"""
        error = DBAPIError("UPDATE cash_registers", {}, _PgError("ERROR: permission denied for table cash_registers"))
        assert isinstance(from_db_error(error, "close the cash register"), PermissionDeniedError)

    def test_other_errors(self):
        """Test otros errores quedan como falla de persistencia"""
        translated = from_db_error(DBAPIError("SELECT 1", {}, _PgError("connection refused")), "load sales")

        assert type(translated) is PersistenceError
        assert not translated.permission_denied
        assert translated.message == "Could not load sales: connection refused"
