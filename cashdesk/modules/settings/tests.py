"""
Tests para el módulo de Configuración

- Hora de cierre automático (lectura, actualización, validación)
- Almacenamientos de configuración en memoria y SQL
"""

import pytest
from fastapi.testclient import TestClient
from pydantic import ValidationError

from cashdesk.core.config import Settings
from cashdesk.core.container import build_in_memory_container
from cashdesk.main import create_app
from cashdesk.modules.settings.schemas import AutoCloseTimeUpdate
from cashdesk.modules.settings.service import AUTO_CLOSE_TIME_KEY, InMemorySettingsStore, SqlSettingsStore


@pytest.fixture
def container():
    return build_in_memory_container(Settings(DEMO_MODE=True, AUTO_CLOSE_ENABLED=False, ENVIRONMENT="test"))


@pytest.fixture
def client(container):
    return TestClient(create_app(container))


class TestAutoCloseTimeSchema:
    """Tests para la validación de la hora de corte"""

    @pytest.mark.parametrize("value,expected", [("22:00", "22:00"), ("7:05", "07:05"), (" 23:59 ", "23:59")])
    def test_valid_values_normalized(self, value, expected):
        """Test normalización a HH:MM"""
        assert AutoCloseTimeUpdate(value=value).value == expected

    @pytest.mark.parametrize("value", ["abc", "24:00", "12:60", "12", "12:5", ""])
    def test_invalid_values(self, value):
        """Test valores fuera de formato o de rango"""
        with pytest.raises(ValidationError):
            AutoCloseTimeUpdate(value=value)


class TestAutoCloseTimeEndpoints:
    """Tests para /settings/auto-close-time"""

    def test_default_value(self, client):
        """Test sin configurar se usa el valor de la aplicación"""
        data = client.get("/api/v1/settings/auto-close-time").json()

        assert data == {"value": "22:00", "effective_hour": 22, "effective_minute": 0}

    def test_update_value(self, client, container):
        """Test actualización persistida"""
        response = client.put("/api/v1/settings/auto-close-time", json={"value": "7:05"})

        assert response.status_code == 200
        assert response.json() == {"value": "07:05", "effective_hour": 7, "effective_minute": 5}
        assert container.settings_store._values[AUTO_CLOSE_TIME_KEY] == "07:05"

    def test_update_rejects_invalid(self, client):
        """Test 422 para hora inválida"""
        response = client.put("/api/v1/settings/auto-close-time", json={"value": "25:00"})
        assert response.status_code == 422

    def test_stored_malformed_value_reports_default(self, client, container):
        """Test valor almacenado inválido se informa con la hora efectiva por defecto"""
        container.settings_store._values[AUTO_CLOSE_TIME_KEY] = "abc"

        data = client.get("/api/v1/settings/auto-close-time").json()

        assert data == {"value": "abc", "effective_hour": 22, "effective_minute": 0}

    def test_update_restarts_running_scheduler(self):
        """Test el scheduler sigue activo después de cambiar la hora"""
        container = build_in_memory_container(Settings(DEMO_MODE=True, AUTO_CLOSE_ENABLED=True, ENVIRONMENT="test"))

        with TestClient(create_app(container)) as client:
            assert client.get("/health").json()["auto_close_running"] is True
            first_task = container.scheduler._task

            client.put("/api/v1/settings/auto-close-time", json={"value": "18:30"})

            assert container.scheduler.running
            assert container.scheduler._task is not first_task

        assert not container.scheduler.running


class TestSettingsStores:
    """Tests para los almacenamientos de configuración"""

    async def test_in_memory_default(self):
        """Test valor por defecto cuando la clave no existe"""
        store = InMemorySettingsStore({"other": "1"})

        assert await store.get(AUTO_CLOSE_TIME_KEY) is None
        assert await store.get(AUTO_CLOSE_TIME_KEY, "22:00") == "22:00"
        assert await store.get("other") == "1"

    async def test_sql_upsert(self, sql_sessionmaker):
        """Test alta y actualización de una clave"""
        store = SqlSettingsStore(sql_sessionmaker)

        assert await store.get(AUTO_CLOSE_TIME_KEY, "22:00") == "22:00"

        await store.set(AUTO_CLOSE_TIME_KEY, "21:00")
        await store.set(AUTO_CLOSE_TIME_KEY, "20:30")

        assert await store.get(AUTO_CLOSE_TIME_KEY) == "20:30"
