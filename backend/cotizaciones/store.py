from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional, TypeVar

import asyncpg

from .exceptions import TransactionConflict

T = TypeVar("T")


class _ServerTimestamp:
    """Marcador que el almacen sustituye por NOW() de la transaccion que escribe."""

    def __repr__(self) -> str:
        return "SERVER_TIMESTAMP"


SERVER_TIMESTAMP = _ServerTimestamp()

# Errores tras los cuales la transaccion completa puede reintentarse.
_CONFLICT_ERRORS = (
    asyncpg.SerializationError,
    asyncpg.DeadlockDetectedError,
    asyncpg.UniqueViolationError,
)
_TRANSIENT_ERRORS = (
    asyncpg.PostgresConnectionError,
    asyncpg.InterfaceError,
    ConnectionError,
    OSError,
    asyncio.TimeoutError,
)


@dataclass(slots=True)
class DocumentSnapshot:
    id: str
    data: Dict[str, Any]


def resolve_server_timestamps(value: Any, now: datetime) -> Any:
    if value is SERVER_TIMESTAMP:
        return now
    if isinstance(value, dict):
        return {key: resolve_server_timestamps(item, now) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [resolve_server_timestamps(item, now) for item in value]
    return value


async def _fetch_document(
    conn: asyncpg.Connection,
    coleccion: str,
    doc_id: str,
) -> Optional[DocumentSnapshot]:
    row = await conn.fetchrow(
        "SELECT doc_id, data FROM documentos WHERE coleccion = $1 AND doc_id = $2",
        coleccion,
        doc_id,
    )
    if row is None:
        return None
    return DocumentSnapshot(id=row["doc_id"], data=row["data"])


async def _write_document(
    conn: asyncpg.Connection,
    coleccion: str,
    doc_id: str,
    value: Dict[str, Any],
    *,
    merge: bool,
) -> None:
    now = await conn.fetchval("SELECT NOW()")
    data = resolve_server_timestamps(value, now)
    if merge:
        sql = """
            INSERT INTO documentos (coleccion, doc_id, data)
            VALUES ($1, $2, $3)
            ON CONFLICT (coleccion, doc_id) DO UPDATE
            SET data = documentos.data || EXCLUDED.data,
                updated_at = NOW()
        """
    else:
        sql = """
            INSERT INTO documentos (coleccion, doc_id, data)
            VALUES ($1, $2, $3)
            ON CONFLICT (coleccion, doc_id) DO UPDATE
            SET data = EXCLUDED.data,
                updated_at = NOW()
        """
    await conn.execute(sql, coleccion, doc_id, data)


class Transaction:
    """Vista transaccional del almacen entregada a `run_transaction`."""

    def __init__(self, conn: asyncpg.Connection):
        self._conn = conn

    async def get(self, coleccion: str, doc_id: str) -> Optional[DocumentSnapshot]:
        return await _fetch_document(self._conn, coleccion, doc_id)

    async def set(
        self,
        coleccion: str,
        doc_id: str,
        value: Dict[str, Any],
        *,
        merge: bool = False,
    ) -> None:
        await _write_document(self._conn, coleccion, doc_id, value, merge=merge)


class DocumentStore:
    """Almacen de documentos JSONB sobre PostgreSQL, con claves (coleccion, id)."""

    def __init__(self, pool: asyncpg.pool.Pool):
        self._pool = pool

    async def get(self, coleccion: str, doc_id: str) -> Optional[DocumentSnapshot]:
        async with self._pool.acquire() as conn:
            return await _fetch_document(conn, coleccion, doc_id)

    async def set(
        self,
        coleccion: str,
        doc_id: str,
        value: Dict[str, Any],
        *,
        merge: bool = False,
    ) -> None:
        async with self._pool.acquire() as conn:
            await _write_document(conn, coleccion, doc_id, value, merge=merge)

    async def add(self, coleccion: str, value: Dict[str, Any]) -> str:
        doc_id = uuid.uuid4().hex
        async with self._pool.acquire() as conn:
            async with conn.transaction():
                now = await conn.fetchval("SELECT NOW()")
                await conn.execute(
                    "INSERT INTO documentos (coleccion, doc_id, data) VALUES ($1, $2, $3)",
                    coleccion,
                    doc_id,
                    resolve_server_timestamps(value, now),
                )
        return doc_id

    async def query(
        self,
        coleccion: str,
        *,
        where: Optional[Dict[str, Any]] = None,
        limit: int = 100,
    ) -> List[DocumentSnapshot]:
        """Documentos de la coleccion que contienen `where` (igualdad JSONB), mas recientes primero."""
        sql = """
            SELECT doc_id, data
            FROM documentos
            WHERE coleccion = $1 AND data @> $2::jsonb
            ORDER BY created_at DESC, doc_id ASC
            LIMIT $3
        """
        async with self._pool.acquire() as conn:
            rows = await conn.fetch(sql, coleccion, where or {}, limit)
        return [DocumentSnapshot(id=row["doc_id"], data=row["data"]) for row in rows]

    async def run_transaction(
        self,
        fn: Callable[[Transaction], Awaitable[T]],
        *,
        isolation: str = "serializable",
    ) -> T:
        """Ejecuta `fn` en una transaccion aislada; un solo intento.

        Conflictos de serializacion y fallos transitorios de conexion se
        reportan como `TransactionConflict` para que el llamador reintente.
        El resultado de `fn` solo se devuelve si el COMMIT tuvo exito.
        """
        try:
            async with self._pool.acquire() as conn:
                async with conn.transaction(isolation=isolation):
                    result = await fn(Transaction(conn))
        except _CONFLICT_ERRORS as exc:
            raise TransactionConflict(f"Conflicto en transaccion: {exc}") from exc
        except _TRANSIENT_ERRORS as exc:
            raise TransactionConflict(f"Fallo transitorio en transaccion: {exc}") from exc
        return result
