from __future__ import annotations

import asyncio
import json
import logging
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Optional

import asyncpg

from .exceptions import StoreUnavailableError

logger = logging.getLogger("cotizaciones.db")

cotizaciones_db_pool: Optional[asyncpg.pool.Pool] = None
_init_lock: Optional[asyncio.Lock] = None
_ready: Optional[asyncio.Future] = None


SCHEMA_SQL = """
    CREATE TABLE IF NOT EXISTS documentos (
        coleccion TEXT NOT NULL,
        doc_id TEXT NOT NULL,
        data JSONB NOT NULL,
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        PRIMARY KEY (coleccion, doc_id)
    );
    CREATE INDEX IF NOT EXISTS documentos_coleccion_created_idx
        ON documentos (coleccion, created_at DESC);
"""


def _json_default(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return float(value)
    raise TypeError(f"Tipo no serializable en documento: {type(value).__name__}")


def dumps(value: Any) -> str:
    return json.dumps(value, default=_json_default, ensure_ascii=False)


async def _init_connection(conn: asyncpg.Connection) -> None:
    await conn.set_type_codec("jsonb", encoder=dumps, decoder=json.loads, schema="pg_catalog")


def _ready_future() -> asyncio.Future:
    global _ready
    if _ready is None or _ready.get_loop() is not asyncio.get_running_loop():
        _ready = asyncio.get_running_loop().create_future()
    return _ready


async def ensure_schema(pool: asyncpg.pool.Pool) -> None:
    async with pool.acquire() as conn:
        await conn.execute(SCHEMA_SQL)


async def init_pool(
    database_url: str,
    *,
    min_size: int = 1,
    max_size: int = 5,
    timeout: int = 10,
) -> Optional[asyncpg.pool.Pool]:
    """Inicializa una unica vez el pool del cotizador; llamadas repetidas lo reutilizan."""
    global cotizaciones_db_pool, _init_lock, _ready
    if _init_lock is None:
        _init_lock = asyncio.Lock()
    ready = _ready_future()
    async with _init_lock:
        if cotizaciones_db_pool is not None:
            return cotizaciones_db_pool
        if not database_url:
            return None
        try:
            pool = await asyncpg.create_pool(
                database_url,
                min_size=min_size,
                max_size=max_size,
                timeout=timeout,
                init=_init_connection,
            )
            await ensure_schema(pool)
        except Exception as exc:
            if not ready.done():
                ready.set_exception(StoreUnavailableError(f"No se pudo inicializar el pool: {exc}"))
                # evita "Future exception was never retrieved" si nadie espera
                ready.exception()
            _ready = None
            raise
        cotizaciones_db_pool = pool
        if not ready.done():
            ready.set_result(pool)
        logger.info("Pool de cotizaciones inicializado (min=%d, max=%d).", min_size, max_size)
        return pool


async def close_pool() -> None:
    """Cierra el pool del cotizador si existe y reinicia la senal de disponibilidad."""
    global cotizaciones_db_pool, _ready
    pool = cotizaciones_db_pool
    if pool is not None:
        try:
            await pool.close()
        finally:
            cotizaciones_db_pool = None
            _ready = None


async def wait_for_pool(timeout: float) -> asyncpg.pool.Pool:
    """Espera a que el pool este listo, como maximo `timeout` segundos."""
    if cotizaciones_db_pool is not None:
        return cotizaciones_db_pool
    try:
        return await asyncio.wait_for(asyncio.shield(_ready_future()), timeout=timeout)
    except asyncio.TimeoutError as exc:
        raise StoreUnavailableError("El almacen de cotizaciones no estuvo listo a tiempo") from exc
