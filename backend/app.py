import json
import logging
from datetime import timezone
from typing import Any, Dict, Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import firebase_admin
from firebase_admin import auth as firebase_auth
from firebase_admin import credentials

from cotizaciones import db as cotizaciones_db
from cotizaciones.config import load_settings
from cotizaciones.exceptions import CotizacionNotFoundError, StoreUnavailableError
from cotizaciones.mailer import EmailNotifier
from cotizaciones.notifications import CompositeNotifier, NotificationRouter
from cotizaciones.numbering import SequenceAllocator
from cotizaciones.projection import parse_bucket
from cotizaciones.schemas import (
    Actor,
    CotizacionListResponse,
    CotizacionView,
    OperationResult,
    PrivateCommentPayload,
)
from cotizaciones.service import CotizacionService
from cotizaciones.slack import SlackNotifier
from cotizaciones.store import DocumentStore

logger = logging.getLogger("cotizaciones")
if not logger.handlers:
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter("[COTIZACIONES] %(message)s"))
    logger.addHandler(handler)
logger.setLevel(logging.INFO)

settings = load_settings()

try:
    SERVICE_TZ = ZoneInfo(settings.tz_name)
except ZoneInfoNotFoundError:
    logger.warning("Zona horaria '%s' no valida; los periodos se calcularan en UTC.", settings.tz_name)
    SERVICE_TZ = timezone.utc

# Un estado de error -> codigo HTTP; lo no listado responde 500.
ERROR_STATUS = {
    "validation_error": 400,
    "not_found": 404,
    "invalid_transition": 409,
    "allocation_error": 503,
    "store_unavailable": 503,
    "persistence_error": 500,
}

FIREBASE_APP_NAME = "cotizaciones-app"
firebase_app = None
notifier = EmailNotifier(settings.mail, logger.getChild("mailer"))
if settings.slack is not None:
    notifier = CompositeNotifier(
        [notifier, SlackNotifier(settings.slack, logger.getChild("slack"))],
        logger=logger.getChild("notifications"),
    )
    logger.info("Avisos por Slack habilitados.")
router = NotificationRouter(
    notifier,
    supervisor_email=settings.supervisor_email,
    compras_email=settings.compras_email,
    logger=logger.getChild("notifications"),
)


def get_firebase_app():
    """Inicializa Firebase Admin una sola vez por proceso."""
    global firebase_app
    if firebase_app is not None:
        return firebase_app
    try:
        firebase_app = firebase_admin.get_app(FIREBASE_APP_NAME)
        return firebase_app
    except ValueError:
        pass
    if settings.firebase_service_account:
        cred = credentials.Certificate(json.loads(settings.firebase_service_account))
        firebase_app = firebase_admin.initialize_app(cred, name=FIREBASE_APP_NAME)
        logger.info("FB initialized with service account")
    else:
        firebase_app = firebase_admin.initialize_app(
            options={"projectId": settings.firebase_project_id},
            name=FIREBASE_APP_NAME,
        )
        logger.info("FB initialized with projectId=%s", settings.firebase_project_id)
    return firebase_app


def verify_bearer_token(authorization: Optional[str]) -> Dict[str, Any]:
    if not authorization or not authorization.lower().startswith("bearer "):
        raise HTTPException(status_code=401, detail="Missing Bearer token")
    id_token = authorization.split(" ", 1)[1].strip()
    try:
        return firebase_auth.verify_id_token(id_token, check_revoked=False, app=get_firebase_app())
    except Exception as exc:
        logger.warning("HTTP token invalid: %s", exc)
        raise HTTPException(status_code=401, detail="Invalid token") from exc


def actor_from_claims(decoded: Dict[str, Any]) -> Actor:
    uid = decoded.get("uid") or decoded.get("user_id") or decoded.get("sub")
    if not uid:
        raise HTTPException(status_code=401, detail="Token sin uid")
    return Actor(uid=uid, email=decoded.get("email"), display_name=decoded.get("name"))


async def get_actor(authorization: Optional[str] = Header(None)) -> Actor:
    return actor_from_claims(verify_bearer_token(authorization))


async def get_service() -> CotizacionService:
    try:
        pool = await cotizaciones_db.wait_for_pool(settings.db_ready_timeout)
    except StoreUnavailableError as exc:
        raise HTTPException(status_code=503, detail="Servicio de cotizaciones no disponible") from exc
    store = DocumentStore(pool)
    allocator = SequenceAllocator(
        store,
        scheme=settings.numeracion,
        max_attempts=settings.allocator_max_attempts,
    )
    return CotizacionService(
        store,
        allocator,
        router,
        price_schema=settings.esquema_precios,
        tz=SERVICE_TZ,
        logger=logger.getChild("service"),
    )


def raise_for_result(result: OperationResult) -> OperationResult:
    if result.ok:
        return result
    status = ERROR_STATUS.get(result.error_code or "", 500)
    raise HTTPException(status_code=status, detail=result.model_dump(mode="json"))


app = FastAPI(title="Cotizaciones", version="1.0.0")
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
async def init_cotizaciones_database_pool():
    if not settings.database_url:
        logger.warning("DATABASE_URL no definido. Endpoints de cotizaciones permaneceran deshabilitados.")
        return
    try:
        await cotizaciones_db.init_pool(
            settings.database_url,
            min_size=settings.db_min_pool_size,
            max_size=max(settings.db_min_pool_size, settings.db_max_pool_size),
            timeout=settings.db_timeout,
        )
    except Exception as exc:
        logger.error("No se pudo inicializar el pool de cotizaciones: %s", exc)


@app.on_event("shutdown")
async def shutdown_cotizaciones_database_pool():
    await cotizaciones_db.close_pool()
    logger.info("Pool de base de datos para cotizaciones cerrado.")


@app.get("/api/health")
def health():
    return {"status": "ok"}


@app.post("/api/cotizaciones", response_model=OperationResult, status_code=201)
async def create_cotizacion_endpoint(
    payload: Dict[str, Any],
    actor: Actor = Depends(get_actor),
    service: CotizacionService = Depends(get_service),
):
    return raise_for_result(await service.create(payload, actor))


@app.get("/api/cotizaciones", response_model=CotizacionListResponse)
async def list_cotizaciones_endpoint(
    bucket: Optional[str] = Query(None),
    vendedor: Optional[str] = Query(None),
    limit: int = Query(100, ge=1, le=500),
    actor: Actor = Depends(get_actor),
    service: CotizacionService = Depends(get_service),
):
    try:
        wanted = parse_bucket(bucket)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    try:
        return await service.list(bucket=wanted, vendedor_uid=vendedor, limit=limit)
    except Exception as exc:
        logger.exception("Fallo inesperado al listar cotizaciones: %s", exc)
        raise HTTPException(status_code=500, detail="No se pudieron listar las cotizaciones") from exc


@app.get("/api/cotizaciones/{cotizacion_id}", response_model=CotizacionView)
async def get_cotizacion_endpoint(
    cotizacion_id: str,
    actor: Actor = Depends(get_actor),
    service: CotizacionService = Depends(get_service),
):
    try:
        return await service.get(cotizacion_id)
    except CotizacionNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except Exception as exc:
        logger.exception("Fallo inesperado al obtener cotizacion %s: %s", cotizacion_id, exc)
        raise HTTPException(status_code=500, detail="No se pudo obtener la cotizacion") from exc


@app.patch("/api/cotizaciones/{cotizacion_id}/estado", response_model=OperationResult)
async def change_estado_endpoint(
    cotizacion_id: str,
    payload: Dict[str, Any],
    actor: Actor = Depends(get_actor),
    service: CotizacionService = Depends(get_service),
):
    body = {key: value for key, value in payload.items() if key != "workflow"}
    return raise_for_result(await service.transition(cotizacion_id, body, actor))


@app.patch("/api/cotizaciones/{cotizacion_id}/workflow", response_model=OperationResult)
async def change_workflow_endpoint(
    cotizacion_id: str,
    payload: Dict[str, Any],
    actor: Actor = Depends(get_actor),
    service: CotizacionService = Depends(get_service),
):
    body = {key: value for key, value in payload.items() if key != "estado"}
    return raise_for_result(await service.transition(cotizacion_id, body, actor))


@app.post("/api/cotizaciones/{cotizacion_id}/comentarios-privados", response_model=OperationResult)
async def add_private_comment_endpoint(
    cotizacion_id: str,
    payload: PrivateCommentPayload,
    actor: Actor = Depends(get_actor),
    service: CotizacionService = Depends(get_service),
):
    return raise_for_result(await service.add_private_comment(cotizacion_id, payload.texto, actor))
