import asyncio
import itertools
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

import pytest

from cotizaciones.enums import NumberingScheme, PriceSchema
from cotizaciones.exceptions import TransactionConflict
from cotizaciones.notifications import NotificationRouter
from cotizaciones.numbering import SequenceAllocator
from cotizaciones.schemas import Actor, NotificationResult
from cotizaciones.service import CotizacionService
from cotizaciones.store import DocumentSnapshot, resolve_server_timestamps

SUPERVISOR = "supervisor@comercial.test"
COMPRAS = "compras@comercial.test"
VENDEDOR = "vendedor@comercial.test"


def _contains(data: Any, expected: Any) -> bool:
    if isinstance(expected, dict):
        return isinstance(data, dict) and all(
            key in data and _contains(data[key], value) for key, value in expected.items()
        )
    return data == expected


class InMemoryTransaction:
    def __init__(self, store: "InMemoryDocumentStore"):
        self._store = store
        self.reads: Dict[Tuple[str, str], int] = {}
        self.writes: List[Tuple[str, str, Dict[str, Any], bool]] = []

    async def get(self, coleccion: str, doc_id: str) -> Optional[DocumentSnapshot]:
        # cede el control para que transacciones concurrentes se intercalen
        await asyncio.sleep(0)
        key = (coleccion, doc_id)
        version, data = self._store.docs.get(key, (0, None))
        self.reads[key] = version
        if data is None:
            return None
        return DocumentSnapshot(id=doc_id, data=dict(data))

    async def set(self, coleccion: str, doc_id: str, value: Dict[str, Any], *, merge: bool = False) -> None:
        self.writes.append((coleccion, doc_id, value, merge))


class InMemoryDocumentStore:
    """Almacen en memoria con deteccion optimista de conflictos al confirmar."""

    def __init__(self):
        self.docs: Dict[Tuple[str, str], Tuple[int, Dict[str, Any]]] = {}
        self._order: Dict[Tuple[str, str], int] = {}
        self._counter = itertools.count()
        self._commit_lock = asyncio.Lock()
        self.conflicts_to_inject = 0
        self.always_conflict = False
        self.fail_writes_for: set = set()
        self.transactions_committed = 0

    def _apply(self, coleccion: str, doc_id: str, value: Dict[str, Any], merge: bool) -> None:
        key = (coleccion, doc_id)
        version, current = self.docs.get(key, (0, None))
        data = resolve_server_timestamps(value, datetime.now(timezone.utc))
        if merge and current is not None:
            data = {**current, **data}
        self.docs[key] = (version + 1, data)
        self._order.setdefault(key, next(self._counter))

    def _check_writable(self, coleccion: str) -> None:
        if coleccion in self.fail_writes_for:
            raise ConnectionError(f"escritura rechazada en {coleccion}")

    async def get(self, coleccion: str, doc_id: str) -> Optional[DocumentSnapshot]:
        _, data = self.docs.get((coleccion, doc_id), (0, None))
        if data is None:
            return None
        return DocumentSnapshot(id=doc_id, data=dict(data))

    async def set(self, coleccion: str, doc_id: str, value: Dict[str, Any], *, merge: bool = False) -> None:
        self._check_writable(coleccion)
        self._apply(coleccion, doc_id, value, merge)

    async def add(self, coleccion: str, value: Dict[str, Any]) -> str:
        self._check_writable(coleccion)
        doc_id = f"doc{next(self._counter):04d}"
        self._apply(coleccion, doc_id, value, merge=False)
        return doc_id

    async def query(self, coleccion: str, *, where: Optional[Dict[str, Any]] = None, limit: int = 100):
        keys = [key for key in self.docs if key[0] == coleccion and _contains(self.docs[key][1], where or {})]
        keys.sort(key=lambda key: self._order[key], reverse=True)
        return [DocumentSnapshot(id=key[1], data=dict(self.docs[key][1])) for key in keys[:limit]]

    async def run_transaction(self, fn, *, isolation: str = "serializable"):
        tx = InMemoryTransaction(self)
        result = await fn(tx)
        async with self._commit_lock:
            if self.always_conflict:
                raise TransactionConflict("conflicto simulado")
            if self.conflicts_to_inject > 0:
                self.conflicts_to_inject -= 1
                raise TransactionConflict("conflicto simulado")
            for key, version in tx.reads.items():
                if self.docs.get(key, (0, None))[0] != version:
                    raise TransactionConflict(f"{key} cambio durante la transaccion")
            for coleccion, doc_id, value, merge in tx.writes:
                self._apply(coleccion, doc_id, value, merge)
            self.transactions_committed += 1
        return result

    def data(self, coleccion: str, doc_id: str) -> Optional[Dict[str, Any]]:
        return self.docs.get((coleccion, doc_id), (0, None))[1]


class RecordingNotifier:
    def __init__(self):
        self.messages = []

    async def send(self, message):
        self.messages.append(message)
        return NotificationResult(ok=True)


class FailingNotifier(RecordingNotifier):
    async def send(self, message):
        self.messages.append(message)
        raise ConnectionError("SMTP no disponible")


@pytest.fixture
def store():
    return InMemoryDocumentStore()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def router(notifier):
    return NotificationRouter(notifier, supervisor_email=SUPERVISOR, compras_email=COMPRAS)


@pytest.fixture
def allocator(store):
    return SequenceAllocator(store, scheme=NumberingScheme.MENSUAL, max_attempts=5, backoff_seconds=0)


@pytest.fixture
def fixed_now():
    return datetime(2025, 9, 15, 10, 30, tzinfo=timezone.utc)


@pytest.fixture
def service(store, allocator, router, fixed_now):
    return CotizacionService(
        store,
        allocator,
        router,
        price_schema=PriceSchema.SOLICITADO,
        clock=lambda: fixed_now,
    )


@pytest.fixture
def actor():
    return Actor(uid="vend-1", email=VENDEDOR, display_name="Vendedora Uno")


@pytest.fixture
def solicitud():
    return {
        "cliente": "  Ferreteria Norte ",
        "tarifa": "Mayorista",
        "articulos": [
            {"articulo": "Taladro", "url": "https://example.test/taladro", "unidades": 3, "precioCliente": 120, "precioSolicitado": 99.5},
            {"articulo": "Broca", "unidades": "10", "precioCliente": "4.5"},
        ],
        "stockDisponible": True,
        "licitacion": False,
    }
