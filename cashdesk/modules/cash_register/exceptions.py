"""
Errores del módulo de caja registradora

CashRegisterError
├── ValidationError           entrada inválida (nunca se reintenta)
├── IllegalStateError         operación en el estado equivocado
│   ├── NoOpenRegisterError
│   ├── RegisterAlreadyOpenError
│   └── RegisterAlreadyClosedError
├── PersistenceError          falla del almacenamiento
│   ├── PermissionDeniedError
│   └── NotFoundError
└── MissingIdentifierError    la caja en memoria no tiene id
"""


class CashRegisterError(Exception):
    """Base error for the cash register core"""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(CashRegisterError):
    pass


class IllegalStateError(CashRegisterError):
    pass


class NoOpenRegisterError(IllegalStateError):
    def __init__(self, message: str = "No cash register is open"):
        super().__init__(message)


class RegisterAlreadyOpenError(IllegalStateError):
    def __init__(self, message: str = "A cash register is already open"):
        super().__init__(message)


class RegisterAlreadyClosedError(IllegalStateError):
    """The register was closed in the store (closed registers are immutable)"""

    def __init__(self, message: str = "The cash register is already closed"):
        super().__init__(message)


class PersistenceError(CashRegisterError):
    """A store call failed. State in memory is left as it was."""

    permission_denied = False


class PermissionDeniedError(PersistenceError):
    permission_denied = True


class NotFoundError(PersistenceError):
    pass


class MissingIdentifierError(CashRegisterError):
    def __init__(self, message: str = "Cash register id not found. Please reload the page."):
        super().__init__(message)


# SQLSTATE insufficient_privilege
_PG_PERMISSION_DENIED = "42501"


def from_db_error(exc: Exception, action: str) -> PersistenceError:
    """Translate a SQLAlchemy error into the persistence taxonomy"""
    orig = getattr(exc, "orig", None)
    code = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
    text = str(orig if orig is not None else exc)
    if code == _PG_PERMISSION_DENIED or "permission denied" in text.lower():
        return PermissionDeniedError(f"Permission denied while trying to {action}")
    return PersistenceError(f"Could not {action}: {text}")
