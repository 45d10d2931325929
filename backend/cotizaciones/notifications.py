from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping, Optional, Protocol, Sequence, Set, Union

from pydantic import BaseModel

from .enums import NotificationKind, TransitionKind
from .schemas import NotificationMessage, NotificationResult, NotificationRoute


class Notifier(Protocol):
    async def send(self, message: NotificationMessage) -> NotificationResult:
        ...


_KIND_BY_TRANSITION = {
    TransitionKind.SOLICITUD.value: NotificationKind.SOLICITUD,
    TransitionKind.COTIZADA.value: NotificationKind.COTIZADA,
    TransitionKind.GANADA.value: NotificationKind.GANADA,
    TransitionKind.PERDIDA.value: NotificationKind.PERDIDA,
    TransitionKind.COMENTARIO_PRIVADO.value: NotificationKind.COMENTARIO_PRIVADO,
}

SUBJECTS = {
    NotificationKind.SOLICITUD: "Solicitud de cotización #{numero}",
    NotificationKind.COTIZADA: "Cotización #{numero} cotizada",
    NotificationKind.GANADA: "Cotización #{numero} ganada",
    NotificationKind.PERDIDA: "Cotización #{numero} perdida",
    NotificationKind.COMENTARIO_PRIVADO: "Comentario privado en #{numero}",
    NotificationKind.ACTUALIZACION: "Actualización de cotización #{numero}",
}

_CLOSED_KINDS = {NotificationKind.GANADA, NotificationKind.PERDIDA}


def _yes_no(value: Any) -> str:
    return "Sí" if value else "No"


def _money(value: Any) -> str:
    try:
        return f"€ {float(value or 0):.2f}"
    except (TypeError, ValueError):
        return "—"


def render_text(message: NotificationMessage) -> str:
    """Resumen en texto plano comun a todos los canales."""
    payload: Dict[str, Any] = message.payload
    lines = [
        message.subject,
        "",
        f"Cliente: {payload.get('cliente') or '—'}",
        f"Tarifa: {payload.get('tarifa') or '—'}",
        f"Vendedor: {payload.get('vendedor') or '—'}",
    ]
    if "stockDisponible" in payload:
        lines.append(f"Stock disponible: {_yes_no(payload.get('stockDisponible'))}")
    if payload.get("comentario"):
        lines += ["", f"Comentario: {payload['comentario']}"]
    if payload.get("motivo"):
        lines += ["", f"Motivo: {payload['motivo']}"]
    articulos = payload.get("articulos") or []
    if articulos:
        lines += ["", "Articulos:"]
        for item in articulos:
            precio = item.get("precioCotizado", item.get("precioSolicitado"))
            lines.append(
                f"  - {item.get('articulo') or '—'} x{item.get('unidades', 0)}"
                f" | cliente {_money(item.get('precioCliente'))}"
                f" | cotizado {_money(precio)}"
            )
    return "\n".join(lines)


class CompositeNotifier:
    """Entrega el mismo aviso por cada canal configurado, un intento por canal."""

    def __init__(self, notifiers: Sequence[Notifier], logger: Optional[logging.Logger] = None):
        self._notifiers = list(notifiers)
        self._logger = logger or logging.getLogger("cotizaciones.notifications")

    async def send(self, message: NotificationMessage) -> NotificationResult:
        errors: List[str] = []
        for notifier in self._notifiers:
            channel = type(notifier).__name__
            try:
                result = await notifier.send(message)
            except Exception as exc:  # noqa: BLE001
                self._logger.warning("Canal %s fallo: %s", channel, exc)
                result = NotificationResult(ok=False, error=str(exc) or exc.__class__.__name__)
            if not result.ok:
                errors.append(f"{channel}: {result.error or 'error desconocido'}")
        if errors:
            return NotificationResult(ok=False, error="; ".join(errors))
        return NotificationResult(ok=True)


def _as_document(record: Union[Mapping[str, Any], BaseModel]) -> Mapping[str, Any]:
    if isinstance(record, BaseModel):
        return record.model_dump(by_alias=True)
    return record


def notification_kind_for(kind: Union[TransitionKind, str]) -> NotificationKind:
    key = str(getattr(kind, "value", kind) or "").strip().lower()
    return _KIND_BY_TRANSITION.get(key, NotificationKind.ACTUALIZACION)


class NotificationRouter:
    """Decide destinatarios y tipo de aviso para cada transicion y hace un unico intento de envio."""

    def __init__(
        self,
        notifier: Notifier,
        *,
        supervisor_email: str,
        compras_email: str,
        logger: Optional[logging.Logger] = None,
    ):
        self._notifier = notifier
        self._supervisor = supervisor_email
        self._compras = compras_email
        self._logger = logger or logging.getLogger("cotizaciones.notifications")

    def route(
        self,
        kind: Union[TransitionKind, str],
        record: Union[Mapping[str, Any], BaseModel],
    ) -> NotificationRoute:
        doc = _as_document(record)
        notification_kind = notification_kind_for(kind)
        if notification_kind == NotificationKind.COMENTARIO_PRIVADO:
            return NotificationRoute(recipients={self._compras}, notification_kind=notification_kind)

        recipients: Set[str] = {self._supervisor}
        vendedor_email = ((doc.get("vendedor") or {}).get("email") or "").strip()
        if vendedor_email:
            recipients.add(vendedor_email)
        if notification_kind == NotificationKind.SOLICITUD and not doc.get("stockDisponible", False):
            recipients.add(self._compras)
        return NotificationRoute(recipients=recipients, notification_kind=notification_kind)

    def build_message(
        self,
        route: NotificationRoute,
        record: Union[Mapping[str, Any], BaseModel],
        extra: Optional[Dict[str, Any]] = None,
    ) -> NotificationMessage:
        doc = _as_document(record)
        numero = doc.get("numero") or "—"
        articulos: List[Dict[str, Any]] = list(doc.get("articulos") or [])
        if route.notification_kind in _CLOSED_KINDS:
            articulos = [item for item in articulos if item.get("comprado")]
        vendedor = doc.get("vendedor") or {}
        payload: Dict[str, Any] = {
            "id": doc.get("id"),
            "numero": numero,
            "cliente": doc.get("cliente"),
            "tarifa": doc.get("tarifa"),
            "vendedor": vendedor.get("nombre") or vendedor.get("email") or "Desconocido",
            "estado": doc.get("estado"),
            "workflow": doc.get("workflow"),
            "articulos": articulos,
        }
        if extra:
            payload.update(extra)
        return NotificationMessage(
            to=sorted(route.recipients),
            subject=SUBJECTS[route.notification_kind].format(numero=numero),
            kind=route.notification_kind,
            payload=payload,
        )

    async def dispatch(
        self,
        kind: Union[TransitionKind, str],
        record: Union[Mapping[str, Any], BaseModel],
        extra: Optional[Dict[str, Any]] = None,
    ) -> NotificationResult:
        try:
            route = self.route(kind, record)
            message = self.build_message(route, record, extra)
        except Exception as exc:  # noqa: BLE001
            self._logger.warning("No se pudo preparar el aviso %s: %s", getattr(kind, "value", kind), exc)
            return NotificationResult(ok=False, error=str(exc) or exc.__class__.__name__)
        try:
            result = await self._notifier.send(message)
        except Exception as exc:  # noqa: BLE001
            self._logger.warning(
                "Fallo envio de aviso %s (%s) a %s: %s",
                message.kind.value,
                message.subject,
                ", ".join(message.to),
                exc,
            )
            return NotificationResult(ok=False, error=str(exc) or exc.__class__.__name__)
        if not result.ok:
            self._logger.warning(
                "Aviso %s no entregado a %s: %s",
                message.kind.value,
                ", ".join(message.to),
                result.error,
            )
        return result
