"""
Tests para utilidades comunes: montos, horas del día y notificaciones
"""

import pytest
from decimal import Decimal

from cashdesk.common.money import to_decimal, quantize_money, sum_money
from cashdesk.common.notifications import NotificationCenter, Severity
from cashdesk.common.validators import split_time_of_day, validate_time_of_day
from cashdesk.core.config import Settings


class TestMoney:
    """Tests para conversión de montos"""

    @pytest.mark.parametrize("value,expected", [
        (10, Decimal("10")),
        (0.1, Decimal("0.1")),
        ("12.50", Decimal("12.50")),
        ("R$ 1.234,56", Decimal("1234.56")),
        ("12,5", Decimal("12.5")),
        ("1,234.56", Decimal("1234.56")),
        ("1.500", Decimal("1.500")),
        (Decimal("3.333"), Decimal("3.333")),
    ])
    def test_to_decimal(self, value, expected):
        """Test entradas numéricas y de texto"""
        assert to_decimal(value) == expected

    @pytest.mark.parametrize("value", [None, "", "abc", True, float("nan"), float("-inf"), Decimal("sNaN"), [1]])
    def test_to_decimal_invalid(self, value):
        """Test entradas faltantes, no numéricas o no finitas"""
        with pytest.raises(ValueError):
            to_decimal(value)

    def test_quantize_half_up(self):
        """Test redondeo a centavos"""
        assert quantize_money("2.345") == Decimal("2.35")
        assert quantize_money("2.344") == Decimal("2.34")
        assert quantize_money(0) == Decimal("0.00")

    def test_sum_money(self):
        """Test suma exacta sin errores de punto flotante"""
        assert sum_money([0.1, 0.2]) == Decimal("0.3")
        assert sum_money([], start=Decimal("5")) == Decimal("5")


class TestTimeOfDay:
    """Tests para horas HH:MM"""

    def test_split(self):
        assert split_time_of_day("22:00") == (22, 0)
        assert split_time_of_day("99:99") == (99, 99)
        assert split_time_of_day("22h00") is None
        assert split_time_of_day(None) is None

    def test_validate(self):
        assert validate_time_of_day("00:00")
        assert validate_time_of_day("23:59")
        assert not validate_time_of_day("24:00")
        assert not validate_time_of_day("10:60")


class TestNotificationCenter:
    """Tests para el historial de notificaciones"""

    def test_recent_newest_first(self):
        """Test orden y límite"""
        center = NotificationCenter(max_size=3)
        for i in range(5):
            center.show(f"message {i}", Severity.INFO)

        recent = center.recent(10)

        assert [n.message for n in recent] == ["message 4", "message 3", "message 2"]
        assert [n.message for n in center.recent(1)] == ["message 4"]
        assert center.recent(0) == []

    def test_severity_from_string(self):
        """Test severidad indicada como texto"""
        center = NotificationCenter()
        center.show("Cash register opened", "success")

        assert center.recent()[0].severity == Severity.SUCCESS

        center.clear()
        assert center.recent() == []


class TestSettings:
    """Tests para la configuración de la aplicación"""

    def test_bool_parsing(self):
        """Test booleanos en texto"""
        assert Settings(DEMO_MODE="yes", AUTO_CLOSE_ENABLED="'false'").DEMO_MODE is True
        assert Settings(AUTO_CLOSE_ENABLED="'false'").AUTO_CLOSE_ENABLED is False

    def test_interval_must_be_positive(self):
        """Test intervalo del scheduler"""
        with pytest.raises(ValueError):
            Settings(AUTO_CLOSE_INTERVAL_SECONDS=0)

    def test_database_url(self):
        """Test URL armada desde POSTGRES_* o tomada de DATABASE_URL"""
        built = Settings(POSTGRES_USER="u", POSTGRES_PASSWORD="p", POSTGRES_HOST="db", POSTGRES_PORT=5433, POSTGRES_DB="cash")
        assert built.async_database_url == "postgresql+asyncpg://u:p@db:5433/cash"

        explicit = Settings(DATABASE_URL="sqlite+aiosqlite:///./cashdesk.db")
        assert explicit.async_database_url == "sqlite+aiosqlite:///./cashdesk.db"
