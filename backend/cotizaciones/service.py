from __future__ import annotations

import logging
from datetime import datetime, timezone, tzinfo
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple, Union

from pydantic import ValidationError as PydanticValidationError

from . import repository
from .enums import (
    TERMINAL_ESTADOS,
    WORKFLOW_ORDER,
    Bucket,
    Estado,
    PriceSchema,
    TransitionKind,
    Workflow,
)
from .exceptions import (
    CotizacionError,
    CotizacionNotFoundError,
    InvalidTransition,
    PersistenceError,
    ValidationError,
)
from .normalization import assert_no_missing, normalize_cotizacion, parse_payload
from .notifications import NotificationRouter
from .numbering import SequenceAllocator
from .projection import filter_by_bucket, project
from .schemas import (
    Actor,
    CotizacionCreatePayload,
    CotizacionListResponse,
    CotizacionView,
    NotificationResult,
    OperationResult,
    TransitionRequest,
)
from .store import SERVER_TIMESTAMP

# La categoria no se guarda; para filtrar por ella se revisa esta ventana.
BUCKET_SCAN_LIMIT = 2000


def _failure(exc: CotizacionError, **context: Any) -> OperationResult:
    return OperationResult(
        ok=False,
        error=str(exc),
        error_code=exc.code,
        fields=getattr(exc, "fields", []),
        **context,
    )


def _warning(notification: NotificationResult) -> Optional[str]:
    if notification.ok:
        return None
    return f"Aviso no enviado: {notification.error or 'error desconocido'}"


def _current_estado(doc: Mapping[str, Any]) -> Estado:
    raw = str(doc.get("estado") or Estado.PENDIENTE.value).strip().lower()
    try:
        return Estado(raw)
    except ValueError as exc:
        raise InvalidTransition(f"Estado almacenado desconocido: {raw!r}") from exc


def _current_workflow(doc: Mapping[str, Any]) -> Optional[Workflow]:
    raw = str(doc.get("workflow") or "").strip().lower()
    if not raw:
        return None
    try:
        return Workflow(raw)
    except ValueError as exc:
        raise InvalidTransition(f"Workflow almacenado desconocido: {raw!r}") from exc


def _check_indexes(indexes, total: int, field: str) -> None:
    out_of_range = [f"{field}[{index}]" for index in indexes if not 0 <= index < total]
    if out_of_range:
        raise ValidationError("Indice de articulo fuera de rango", out_of_range)


class CotizacionService:
    """Orquesta la creacion y las transiciones de las cotizaciones."""

    def __init__(
        self,
        store,
        allocator: SequenceAllocator,
        router: NotificationRouter,
        *,
        price_schema: PriceSchema = PriceSchema.SOLICITADO,
        tz: tzinfo = timezone.utc,
        clock: Optional[Callable[[], datetime]] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self._store = store
        self._allocator = allocator
        self._router = router
        self._price_schema = price_schema
        self._clock = clock or (lambda: datetime.now(tz))
        self._logger = logger or logging.getLogger("cotizaciones.service")

    # ---- creacion ----

    async def create(
        self,
        payload: Union[CotizacionCreatePayload, Mapping[str, Any]],
        actor: Actor,
    ) -> OperationResult:
        try:
            return await self._create(payload, actor)
        except ValidationError as exc:
            self._logger.warning("Solicitud de cotizacion rechazada: %s %s", exc, exc.fields)
            return _failure(exc)
        except CotizacionError as exc:
            self._logger.error("No se pudo crear la cotizacion: %s", exc)
            return _failure(exc)
        except Exception as exc:  # noqa: BLE001
            self._logger.exception("Fallo inesperado al crear cotizacion: %s", exc)
            return OperationResult(ok=False, error="No se pudo crear la cotizacion", error_code="internal_error")

    async def _create(
        self,
        payload: Union[CotizacionCreatePayload, Mapping[str, Any]],
        actor: Actor,
    ) -> OperationResult:
        if not isinstance(payload, CotizacionCreatePayload):
            payload = parse_payload(payload)
        data = normalize_cotizacion(payload, self._price_schema)
        document: Dict[str, Any] = {
            **data,
            "vendedor": {
                "uid": actor.uid,
                "nombre": actor.display_name or None,
                "email": actor.email or None,
            },
            "estado": Estado.PENDIENTE.value,
            "workflow": None,
        }
        assert_no_missing(document)

        # A partir de aqui el numero queda consumido aunque falle la escritura.
        numero = await self._allocator.next_numero(self._clock())
        document["numero"] = numero
        try:
            doc_id = await repository.insert_cotizacion(self._store, document)
        except Exception as exc:  # noqa: BLE001
            self._logger.error("Fallo la escritura de la cotizacion %s: %s", numero, exc)
            raise PersistenceError(
                f"No se pudo guardar la cotizacion {numero}; reintente la solicitud"
            ) from exc

        self._logger.info("Cotizacion %s creada (%s) por %s", numero, doc_id, actor.uid)
        total_solicitado = sum(
            item["unidades"] * item.get("precioSolicitado", item.get("precioCotizado", 0))
            for item in data["articulos"]
        )
        notification = await self._router.dispatch(
            TransitionKind.SOLICITUD,
            {**document, "id": doc_id},
            {
                "stockDisponible": data["stockDisponible"],
                "licitacion": data["licitacion"],
                "clienteFinal": data["clienteFinal"],
                "totalSolicitado": round(total_solicitado, 2),
            },
        )
        return OperationResult(
            ok=True,
            id=doc_id,
            numero=numero,
            estado=Estado.PENDIENTE,
            notification=notification,
            warning=_warning(notification),
        )

    # ---- transiciones ----

    async def transition(
        self,
        cotizacion_id: str,
        request: Union[TransitionRequest, Mapping[str, Any]],
        actor: Actor,
    ) -> OperationResult:
        try:
            return await self._transition(cotizacion_id, request, actor)
        except (ValidationError, InvalidTransition, CotizacionNotFoundError) as exc:
            self._logger.warning("Transicion rechazada para %s: %s", cotizacion_id, exc)
            return _failure(exc, id=cotizacion_id)
        except CotizacionError as exc:
            self._logger.error("Fallo la transicion de %s: %s", cotizacion_id, exc)
            return _failure(exc, id=cotizacion_id)
        except Exception as exc:  # noqa: BLE001
            self._logger.exception("Fallo inesperado en transicion de %s: %s", cotizacion_id, exc)
            return OperationResult(
                ok=False,
                id=cotizacion_id,
                error="No se pudo actualizar la cotizacion",
                error_code="internal_error",
            )

    def _plan_workflow(
        self,
        doc: Dict[str, Any],
        request: TransitionRequest,
    ) -> Tuple[Dict[str, Any], TransitionKind, Dict[str, Any]]:
        target = request.workflow
        current = _current_workflow(doc)
        if current is not None and WORKFLOW_ORDER.index(target) <= WORKFLOW_ORDER.index(current):
            raise InvalidTransition(
                f"El workflow solo avanza: {current.value} -> {target.value} no permitido"
            )
        updates: Dict[str, Any] = {"workflow": target.value}
        if request.precios_cotizados:
            if target != Workflow.COTIZADO:
                raise ValidationError(
                    "Los precios cotizados solo se registran al cotizar",
                    ["preciosCotizados"],
                )
            articulos = [dict(item) for item in doc.get("articulos") or []]
            _check_indexes(request.precios_cotizados, len(articulos), "preciosCotizados")
            for index, precio in request.precios_cotizados.items():
                articulos[index]["precioCotizado"] = float(precio)
            updates["articulos"] = articulos
        if target == Workflow.COTIZADO:
            return updates, TransitionKind.COTIZADA, {}
        return updates, TransitionKind.REVISION, {}

    def _plan_estado(
        self,
        doc: Dict[str, Any],
        request: TransitionRequest,
    ) -> Tuple[Dict[str, Any], TransitionKind, Dict[str, Any]]:
        target = request.estado
        updates: Dict[str, Any] = {"estado": target.value}
        extra: Dict[str, Any] = {}
        if request.comprados is not None and target != Estado.GANADA:
            raise ValidationError("Solo una cotizacion ganada registra articulos comprados", ["comprados"])
        if target == Estado.REABIERTA:
            return updates, TransitionKind.REABIERTA, extra

        articulos = [dict(item) for item in doc.get("articulos") or []]
        if target == Estado.GANADA:
            if request.comprados is None:
                comprados = set(range(len(articulos)))
            else:
                _check_indexes(request.comprados, len(articulos), "comprados")
                comprados = set(request.comprados)
        else:
            comprados = set()
        for index, item in enumerate(articulos):
            item["comprado"] = index in comprados
        updates["articulos"] = articulos
        if request.motivo:
            updates["motivoCierre"] = request.motivo.strip()
            extra["motivo"] = updates["motivoCierre"]
        kind = TransitionKind.GANADA if target == Estado.GANADA else TransitionKind.PERDIDA
        return updates, kind, extra

    async def _transition(
        self,
        cotizacion_id: str,
        request: Union[TransitionRequest, Mapping[str, Any]],
        actor: Actor,
    ) -> OperationResult:
        if not isinstance(request, TransitionRequest):
            try:
                request = TransitionRequest.model_validate(request)
            except PydanticValidationError as exc:
                raise ValidationError(
                    "Transicion invalida",
                    [".".join(str(part) for part in error.get("loc", ())) or "__root__" for error in exc.errors()],
                ) from exc

        doc = await repository.fetch_cotizacion(self._store, cotizacion_id)
        if doc is None:
            raise CotizacionNotFoundError("Cotizacion no encontrada")
        estado = _current_estado(doc)
        if estado in TERMINAL_ESTADOS:
            raise InvalidTransition(f"La cotizacion esta cerrada ({estado.value})")

        if request.workflow is not None:
            updates, kind, extra = self._plan_workflow(doc, request)
        else:
            updates, kind, extra = self._plan_estado(doc, request)
        assert_no_missing(updates)

        try:
            await repository.update_cotizacion(self._store, cotizacion_id, updates)
        except Exception as exc:  # noqa: BLE001
            self._logger.error("Fallo la escritura de la transicion de %s: %s", cotizacion_id, exc)
            raise PersistenceError("No se pudo guardar el cambio de la cotizacion") from exc

        merged = {**doc, **updates, "id": cotizacion_id}
        self._logger.info(
            "Cotizacion %s: %s por %s",
            merged.get("numero", cotizacion_id),
            kind.value,
            actor.uid,
        )
        notification = await self._router.dispatch(kind, merged, extra)
        return OperationResult(
            ok=True,
            id=cotizacion_id,
            numero=merged.get("numero"),
            estado=_current_estado(merged),
            workflow=_current_workflow(merged),
            notification=notification,
            warning=_warning(notification),
        )

    async def add_private_comment(self, cotizacion_id: str, texto: str, actor: Actor) -> OperationResult:
        try:
            texto = (texto or "").strip()
            if not texto:
                raise ValidationError("El comentario no puede estar vacio", ["texto"])
            doc = await repository.fetch_cotizacion(self._store, cotizacion_id)
            if doc is None:
                raise CotizacionNotFoundError("Cotizacion no encontrada")
            estado, workflow = _current_estado(doc), _current_workflow(doc)
            comentarios: List[Dict[str, Any]] = list(doc.get("comentariosPrivados") or [])
            comentarios.append(
                {
                    "autor": actor.email or actor.display_name or actor.uid,
                    "texto": texto,
                    "fecha": SERVER_TIMESTAMP,
                }
            )
            try:
                await repository.update_cotizacion(
                    self._store, cotizacion_id, {"comentariosPrivados": comentarios}
                )
            except Exception as exc:  # noqa: BLE001
                raise PersistenceError("No se pudo guardar el comentario") from exc
        except CotizacionError as exc:
            self._logger.warning("Comentario privado rechazado para %s: %s", cotizacion_id, exc)
            return _failure(exc, id=cotizacion_id)
        except Exception as exc:  # noqa: BLE001
            self._logger.exception("Fallo inesperado al comentar %s: %s", cotizacion_id, exc)
            return OperationResult(
                ok=False,
                id=cotizacion_id,
                error="No se pudo guardar el comentario",
                error_code="internal_error",
            )

        merged = {**doc, "comentariosPrivados": comentarios, "id": cotizacion_id}
        notification = await self._router.dispatch(
            TransitionKind.COMENTARIO_PRIVADO,
            merged,
            {"comentario": texto},
        )
        return OperationResult(
            ok=True,
            id=cotizacion_id,
            numero=doc.get("numero"),
            estado=estado,
            workflow=workflow,
            notification=notification,
            warning=_warning(notification),
        )

    # ---- lectura ----

    async def get(self, cotizacion_id: str) -> CotizacionView:
        doc = await repository.fetch_cotizacion(self._store, cotizacion_id)
        if doc is None:
            raise CotizacionNotFoundError("Cotizacion no encontrada")
        return self._view(doc)

    async def list(
        self,
        *,
        bucket: Optional[Bucket] = None,
        vendedor_uid: Optional[str] = None,
        limit: int = 100,
    ) -> CotizacionListResponse:
        """Mas recientes primero. Con `bucket`, se filtra sobre las ultimas
        `BUCKET_SCAN_LIMIT` cotizaciones y se devuelven hasta `limit`."""
        scan = max(limit, BUCKET_SCAN_LIMIT) if bucket is not None else limit
        docs = await repository.list_cotizaciones(self._store, vendedor_uid=vendedor_uid, limit=scan)
        views = [self._view(doc) for doc in docs]
        if bucket is not None:
            views = filter_by_bucket(views, bucket)[:limit]
        return CotizacionListResponse(results=views, total=len(views))

    @staticmethod
    def _view(doc: Dict[str, Any]) -> CotizacionView:
        record = repository.to_record(doc["id"], doc)
        return CotizacionView(**record.model_dump(), lifecycle=project(record))
