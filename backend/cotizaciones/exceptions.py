from typing import Iterable, Optional


class CotizacionError(Exception):
    """Errores base del modulo de cotizaciones."""

    code = "cotizacion_error"


class ValidationError(CotizacionError):
    """Entrada invalida; se rechaza antes de cualquier escritura."""

    code = "validation_error"

    def __init__(self, message: str, fields: Optional[Iterable[str]] = None):
        super().__init__(message)
        self.fields = list(fields or [])


class AllocationError(CotizacionError):
    """No se pudo reservar un numero de secuencia tras agotar los reintentos."""

    code = "allocation_error"


class PersistenceError(CotizacionError):
    """Fallo la escritura del documento despues de reservar el numero."""

    code = "persistence_error"


class NotificationError(CotizacionError):
    """Fallo el envio de una notificacion (no afecta al registro guardado)."""

    code = "notification_error"


class CotizacionNotFoundError(CotizacionError):
    """La cotizacion no existe."""

    code = "not_found"


class InvalidTransition(CotizacionError):
    """Transicion de estado o workflow no permitida."""

    code = "invalid_transition"


class StoreUnavailableError(CotizacionError):
    """El almacen de documentos no esta inicializado o no respondio a tiempo."""

    code = "store_unavailable"


class TransactionConflict(CotizacionError):
    """La transaccion fue abortada por conflicto y puede reintentarse."""

    code = "transaction_conflict"
