from __future__ import annotations

from typing import Any, Dict, List, Optional

from .schemas import CotizacionRecord
from .store import SERVER_TIMESTAMP

COTIZACIONES_COLLECTION = "cotizaciones"


def to_record(doc_id: str, data: Dict[str, Any]) -> CotizacionRecord:
    return CotizacionRecord.model_validate({**data, "id": doc_id})


async def fetch_cotizacion(store, cotizacion_id: str) -> Optional[Dict[str, Any]]:
    snapshot = await store.get(COTIZACIONES_COLLECTION, cotizacion_id)
    if snapshot is None:
        return None
    return {**snapshot.data, "id": snapshot.id}


async def insert_cotizacion(store, data: Dict[str, Any]) -> str:
    document = {
        **data,
        "fechaCreacion": SERVER_TIMESTAMP,
        "updatedAt": SERVER_TIMESTAMP,
    }
    return await store.add(COTIZACIONES_COLLECTION, document)


async def update_cotizacion(store, cotizacion_id: str, fields: Dict[str, Any]) -> None:
    """Actualiza campos de primer nivel; el ultimo en escribir gana."""
    await store.set(
        COTIZACIONES_COLLECTION,
        cotizacion_id,
        {**fields, "updatedAt": SERVER_TIMESTAMP},
        merge=True,
    )


async def list_cotizaciones(
    store,
    *,
    vendedor_uid: Optional[str] = None,
    limit: int = 100,
) -> List[Dict[str, Any]]:
    where: Dict[str, Any] = {}
    if vendedor_uid:
        where["vendedor"] = {"uid": vendedor_uid}
    snapshots = await store.query(COTIZACIONES_COLLECTION, where=where, limit=limit)
    return [{**snapshot.data, "id": snapshot.id} for snapshot in snapshots]
