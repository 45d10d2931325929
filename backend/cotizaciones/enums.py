from __future__ import annotations

from enum import Enum


class Estado(str, Enum):
    PENDIENTE = "pendiente"
    GANADA = "ganada"
    PERDIDA = "perdida"
    REABIERTA = "reabierta"


TERMINAL_ESTADOS = {Estado.GANADA, Estado.PERDIDA}


class Workflow(str, Enum):
    EN_REVISION = "en_revision"
    CONSULTANDO = "consultando"
    ESPERA_CLIENTE = "espera_cliente"
    COTIZADO = "cotizado"


# Orden de avance del eje workflow; solo se permite avanzar.
WORKFLOW_ORDER = (
    Workflow.EN_REVISION,
    Workflow.CONSULTANDO,
    Workflow.ESPERA_CLIENTE,
    Workflow.COTIZADO,
)


class TransitionKind(str, Enum):
    SOLICITUD = "solicitud"
    REVISION = "revision"
    COTIZADA = "cotizada"
    REABIERTA = "reabierta"
    GANADA = "ganada"
    PERDIDA = "perdida"
    COMENTARIO_PRIVADO = "comentario_privado"


class NotificationKind(str, Enum):
    SOLICITUD = "solicitud"
    COTIZADA = "cotizada"
    GANADA = "ganada"
    PERDIDA = "perdida"
    COMENTARIO_PRIVADO = "comentario_privado"
    ACTUALIZACION = "actualizacion"


class Bucket(str, Enum):
    WON = "Won"
    LOST = "Lost"
    QUOTED = "Quoted"
    REOPENED = "Reopened"
    UNREVIEWED = "Unreviewed"


PENDING_BUCKETS = {Bucket.REOPENED, Bucket.UNREVIEWED}


class NumberingScheme(str, Enum):
    MENSUAL = "mensual"
    ANUAL = "anual"


class PriceSchema(str, Enum):
    SOLICITADO = "solicitado"
    COTIZADO = "cotizado"
