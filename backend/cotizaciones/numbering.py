from __future__ import annotations

import asyncio
import logging
import re
from datetime import datetime, timezone
from typing import Optional, Tuple

from .enums import NumberingScheme
from .exceptions import AllocationError, TransactionConflict
from .store import SERVER_TIMESTAMP, Transaction

logger = logging.getLogger("cotizaciones.numbering")

COUNTERS_COLLECTION = "contadores"
COUNTER_PREFIX = "cotizaciones"

_MENSUAL_RE = re.compile(r"^COT-(\d{4})-(\d{2})-(\d{3,})$")
_ANUAL_RE = re.compile(r"^(\d{4})-(\d{4,})$")


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


def period_key(now: datetime, scheme: NumberingScheme) -> str:
    if scheme == NumberingScheme.ANUAL:
        return f"{now.year:04d}"
    return f"{now.year:04d}-{now.month:02d}"


def counter_id(period: str) -> str:
    return f"{COUNTER_PREFIX}-{period}"


def format_numero(period: str, seq: int, scheme: NumberingScheme) -> str:
    if seq < 1:
        raise ValueError("La secuencia debe ser positiva")
    if scheme == NumberingScheme.ANUAL:
        return f"{period}-{seq:04d}"
    return f"COT-{period}-{seq:03d}"


def parse_numero(numero: str) -> Tuple[NumberingScheme, str, int]:
    """Devuelve (esquema, periodo, secuencia) de un numero de cotizacion."""
    value = (numero or "").strip()
    match = _MENSUAL_RE.match(value)
    if match:
        year, month, seq = match.groups()
        return NumberingScheme.MENSUAL, f"{year}-{month}", int(seq)
    match = _ANUAL_RE.match(value)
    if match:
        year, seq = match.groups()
        return NumberingScheme.ANUAL, year, int(seq)
    raise ValueError(f"Numero de cotizacion con formato desconocido: {numero!r}")


class SequenceAllocator:
    """Reserva secuencias por periodo con un read-modify-write transaccional.

    Cada intento lee `seq` (0 si el contador no existe), escribe `seq + 1` y
    devuelve el valor solo despues del COMMIT. Un conflicto o fallo transitorio
    reintenta la operacion completa; al agotar los intentos se lanza
    `AllocationError` sin haber entregado ningun numero.
    """

    def __init__(
        self,
        store,
        *,
        scheme: NumberingScheme = NumberingScheme.MENSUAL,
        max_attempts: int = 10,
        backoff_seconds: float = 0.02,
    ):
        self._store = store
        self.scheme = scheme
        self._max_attempts = max(1, max_attempts)
        self._backoff = backoff_seconds

    async def allocate(self, period: str) -> int:
        doc_id = counter_id(period)

        async def _increment(tx: Transaction) -> int:
            snapshot = await tx.get(COUNTERS_COLLECTION, doc_id)
            current = int((snapshot.data.get("seq") if snapshot else 0) or 0)
            next_seq = current + 1
            await tx.set(
                COUNTERS_COLLECTION,
                doc_id,
                {"seq": next_seq, "updatedAt": SERVER_TIMESTAMP},
                merge=True,
            )
            return next_seq

        last_error: Optional[Exception] = None
        for attempt in range(1, self._max_attempts + 1):
            try:
                return await self._store.run_transaction(_increment)
            except TransactionConflict as exc:
                last_error = exc
                logger.debug(
                    "Conflicto reservando secuencia %s (intento %d/%d): %s",
                    period,
                    attempt,
                    self._max_attempts,
                    exc,
                )
                if attempt < self._max_attempts and self._backoff > 0:
                    await asyncio.sleep(self._backoff * attempt)
        logger.error("Reintentos agotados reservando secuencia para %s", period)
        raise AllocationError(
            f"No se pudo reservar un numero para el periodo {period}"
        ) from last_error

    async def next_numero(self, now: Optional[datetime] = None) -> str:
        period = period_key(now or _now_utc(), self.scheme)
        seq = await self.allocate(period)
        return format_numero(period, seq, self.scheme)
