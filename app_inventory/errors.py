# ==============================================================================
# ERRORES DEL DOMINIO
# ==============================================================================
# Taxonomía única de errores del núcleo de transacciones.
# Todo lo que se lanza debajo del servicio de transacciones es una de estas
# clases; las rutas las traducen a JSON con su código y status HTTP.
# ==============================================================================

from typing import Any, Dict, Optional


class InventoryError(Exception):
    """Clase base de todos los errores del dominio."""

    code = 'INVENTORY_ERROR'
    http_status = 400
    retryable = False

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details = {k: v for k, v in details.items() if v is not None}

    def to_dict(self) -> Dict[str, Any]:
        """Cuerpo JSON de la respuesta de error."""
        body = {
            'ok': False,
            'error': self.message,
            'code': self.code,
        }
        body.update(self.details)
        return body


class ValidationError(InventoryError):
    """Entrada mal formada (campo faltante, cantidad inválida, etc.)."""

    code = 'VALIDATION_ERROR'
    http_status = 400

    def __init__(self, message: str, field: Optional[str] = None, **details: Any):
        super().__init__(message, field=field, **details)
        self.field = field


class NotFoundError(ValidationError):
    """El registro referenciado no existe."""

    code = 'NOT_FOUND'
    http_status = 404


class InvalidStateError(InventoryError):
    """
    La transición pedida no es legal desde el estado actual.
    Incluye la carrera perdida: otro request cambió el estado primero.
    """

    code = 'INVALID_STATE'
    http_status = 409

    def __init__(
        self,
        message: str,
        current_status: Optional[str] = None,
        target_status: Optional[str] = None
    ):
        super().__init__(
            message,
            current_status=current_status,
            target_status=target_status
        )
        self.current_status = current_status
        self.target_status = target_status


class AuthorizationError(InventoryError):
    """El actor no tiene el rol o capacidad requerida."""

    code = 'FORBIDDEN'
    http_status = 403


class StoreMismatchError(InventoryError):
    """El ítem se intenta devolver a una tienda distinta de la de origen."""

    code = 'STORE_MISMATCH'
    http_status = 422

    def __init__(self, expected_store_id: str, actual_store_id: str):
        message = (
            f"El ítem debe devolverse a la tienda {expected_store_id} "
            f"(donde fue prestado), no a {actual_store_id}"
        )
        super().__init__(
            message,
            expected_store_id=expected_store_id,
            actual_store_id=actual_store_id
        )
        self.expected_store_id = expected_store_id
        self.actual_store_id = actual_store_id


class NoOpenBorrowError(InventoryError):
    """No existe un préstamo activo que justifique la devolución."""

    code = 'NO_OPEN_BORROW'
    http_status = 422


class PersistenceError(InventoryError):
    """
    Falla del almacenamiento durante la transición principal.
    Es seguro reintentar: la unidad de trabajo no deja estado parcial.
    """

    code = 'PERSISTENCE_ERROR'
    http_status = 500
    retryable = True
