from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional, Set

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from .enums import Bucket, Estado, NotificationKind, Workflow


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def _blank_to_none(value: Any) -> Any:
    # los formularios envian "" en los campos numericos que se dejan vacios
    if isinstance(value, str) and not value.strip():
        return None
    return value


class Actor(BaseModel):
    uid: str = Field(min_length=1)
    email: Optional[str] = None
    display_name: Optional[str] = None


class ArticuloInput(CamelModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    articulo: Optional[str] = Field(default=None, max_length=300)
    url: Optional[str] = Field(default=None, max_length=2000)
    unidades: Optional[int] = Field(default=None, ge=0)
    precio_cliente: Optional[float] = Field(default=None, ge=0)
    precio_solicitado: Optional[float] = Field(default=None, ge=0)
    precio_cotizado: Optional[float] = Field(default=None, ge=0)
    precio_competencia: Optional[float] = Field(default=None, ge=0)

    @field_validator(
        "unidades",
        "precio_cliente",
        "precio_solicitado",
        "precio_cotizado",
        "precio_competencia",
        mode="before",
    )
    @classmethod
    def _blank_number(cls, value: Any) -> Any:
        return _blank_to_none(value)


class CotizacionCreatePayload(CamelModel):
    """Esquema canonico de entrada para crear una cotizacion."""

    cliente: Optional[str] = Field(default=None, max_length=200)
    tarifa: Optional[str] = Field(default=None, max_length=120)
    articulos: List[ArticuloInput] = Field(default_factory=list)
    stock_disponible: Optional[bool] = None
    comprado_antes: Optional[bool] = None
    precio_anterior: Optional[float] = Field(default=None, ge=0)
    fecha_decision: Optional[str] = Field(default=None, max_length=40)
    plazo_entrega: Optional[str] = Field(default=None, max_length=200)
    lugar_entrega: Optional[str] = Field(default=None, max_length=200)
    comentario_stock: Optional[str] = Field(default=None, max_length=1000)
    licitacion: Optional[bool] = None
    cliente_final: Optional[str] = Field(default=None, max_length=200)
    precio_competencia: Optional[float] = Field(default=None, ge=0)
    forma_pago_actual: Optional[str] = Field(default=None, max_length=200)
    forma_pago_solicitada: Optional[str] = Field(default=None, max_length=200)
    comentarios_cliente: Optional[str] = Field(default=None, max_length=2000)

    @field_validator("precio_anterior", "precio_competencia", mode="before")
    @classmethod
    def _blank_number(cls, value: Any) -> Any:
        return _blank_to_none(value)


class Vendedor(CamelModel):
    uid: str
    nombre: Optional[str] = None
    email: Optional[str] = None


class Articulo(CamelModel):
    articulo: str = ""
    url: str = ""
    unidades: int = 0
    precio_cliente: float = 0
    precio_solicitado: Optional[float] = None
    precio_cotizado: Optional[float] = None
    precio_competencia: Optional[float] = None
    comprado: Optional[bool] = None


class ComentarioPrivado(CamelModel):
    autor: Optional[str] = None
    texto: str
    fecha: Optional[datetime] = None


class CotizacionRecord(CamelModel):
    id: str
    numero: str
    cliente: str
    tarifa: str
    articulos: List[Articulo] = Field(default_factory=list)
    estado: Estado = Estado.PENDIENTE
    workflow: Optional[Workflow] = None
    vendedor: Vendedor
    stock_disponible: bool = False
    comprado_antes: bool = False
    precio_anterior: Optional[float] = None
    fecha_decision: Optional[str] = None
    plazo_entrega: str = ""
    lugar_entrega: str = ""
    comentario_stock: str = ""
    licitacion: bool = False
    cliente_final: str = ""
    precio_competencia: Optional[float] = None
    forma_pago_actual: str = ""
    forma_pago_solicitada: str = ""
    comentarios_cliente: str = ""
    comentarios_privados: List[ComentarioPrivado] = Field(default_factory=list)
    motivo_cierre: Optional[str] = None
    fecha_creacion: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator("estado", mode="before")
    @classmethod
    def _estado_lowercase(cls, value: Any) -> Any:
        if value is None:
            return Estado.PENDIENTE
        if isinstance(value, str):
            return value.strip().lower() or Estado.PENDIENTE
        return value

    @field_validator("workflow", mode="before")
    @classmethod
    def _workflow_lowercase(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip().lower() or None
        return value


class LifecycleView(CamelModel):
    progress: int
    color_tag: str
    bucket: Bucket
    hide_pending: bool


class CotizacionView(CotizacionRecord):
    lifecycle: LifecycleView


class CotizacionListResponse(BaseModel):
    results: List[CotizacionView]
    total: int


class TransitionRequest(CamelModel):
    estado: Optional[Estado] = None
    workflow: Optional[Workflow] = None
    # indice del articulo -> precio cotizado (solo para workflow=cotizado)
    precios_cotizados: Dict[int, float] = Field(default_factory=dict)
    # indices de articulos comprados (solo para estado=ganada)
    comprados: Optional[List[int]] = None
    motivo: Optional[str] = Field(default=None, max_length=1000)

    @field_validator("estado", "workflow", mode="before")
    @classmethod
    def _lowercase(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip().lower()
        return value

    @field_validator("precios_cotizados")
    @classmethod
    def _non_negative(cls, value: Dict[int, float]) -> Dict[int, float]:
        for index, precio in value.items():
            if index < 0 or precio < 0:
                raise ValueError("indices y precios cotizados deben ser no negativos")
        return value

    @model_validator(mode="after")
    def _exactly_one_axis(self) -> "TransitionRequest":
        if (self.estado is None) == (self.workflow is None):
            raise ValueError("Indique exactamente uno de estado o workflow")
        if self.estado == Estado.PENDIENTE:
            raise ValueError("No se puede volver al estado pendiente")
        return self


class PrivateCommentPayload(BaseModel):
    texto: str = Field(min_length=1, max_length=4000)

    @field_validator("texto")
    @classmethod
    def _strip(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("El comentario no puede estar vacio")
        return value


class NotificationRoute(BaseModel):
    recipients: Set[str]
    notification_kind: NotificationKind


class NotificationMessage(BaseModel):
    to: List[str]
    subject: str
    kind: NotificationKind
    payload: Dict[str, Any] = Field(default_factory=dict)


class NotificationResult(BaseModel):
    ok: bool
    error: Optional[str] = None


class OperationResult(BaseModel):
    ok: bool
    id: Optional[str] = None
    numero: Optional[str] = None
    estado: Optional[Estado] = None
    workflow: Optional[Workflow] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    fields: List[str] = Field(default_factory=list)
    notification: Optional[NotificationResult] = None
    warning: Optional[str] = None
