from __future__ import annotations

from typing import Any, Dict, List, Mapping

from pydantic import ValidationError as PydanticValidationError
from pydantic_core import PydanticUndefined

from .enums import PriceSchema
from .exceptions import ValidationError
from .schemas import ArticuloInput, CotizacionCreatePayload


class _Missing:
    def __repr__(self) -> str:
        return "MISSING"

    def __bool__(self) -> bool:
        return False


# Marcador de "valor sin resolver"; nunca debe llegar a una escritura.
MISSING = _Missing()

_LEGACY_ALIASES = {
    "precioCompet": "precioCompetencia",
    "comentarios": "comentariosCliente",
}

_ITEM_OPTIONAL_PRICES = {
    PriceSchema.SOLICITADO: ("precio_solicitado", "precio_competencia"),
    PriceSchema.COTIZADO: ("precio_cotizado", "precio_competencia"),
}

_ITEM_PRICE_ALIASES = {
    "precio_solicitado": "precioSolicitado",
    "precio_cotizado": "precioCotizado",
    "precio_competencia": "precioCompetencia",
}


def adapt_legacy_payload(raw: Mapping[str, Any]) -> Dict[str, Any]:
    """Lleva las formas antiguas de la solicitud al esquema canonico.

    Acepta el envoltorio `resumen` y los alias `precioCompet`/`comentarios`.
    Las claves canonicas tienen prioridad sobre los alias.
    """
    if not isinstance(raw, Mapping):
        raise ValidationError("La solicitud debe ser un objeto")
    data: Dict[str, Any] = {}
    resumen = raw.get("resumen")
    if isinstance(resumen, Mapping):
        data.update(resumen)
    data.update({key: value for key, value in raw.items() if key != "resumen"})
    for legacy, canonical in _LEGACY_ALIASES.items():
        if legacy in data:
            legacy_value = data.pop(legacy)
            if data.get(canonical) is None:
                data[canonical] = legacy_value
    return data


def _clean(value: Any) -> str:
    return (value or "").strip()


def _number(value: Any) -> float:
    return float(value or 0)


def _normalize_item(item: ArticuloInput, index: int, price_schema: PriceSchema) -> Dict[str, Any]:
    allowed = _ITEM_OPTIONAL_PRICES[price_schema]
    rejected = [
        f"articulos[{index}].{_ITEM_PRICE_ALIASES[field]}"
        for field in _ITEM_PRICE_ALIASES
        if field not in allowed and getattr(item, field) is not None
    ]
    if rejected:
        raise ValidationError(
            f"Campos de precio no admitidos por el esquema '{price_schema.value}'",
            rejected,
        )
    out: Dict[str, Any] = {
        "articulo": _clean(item.articulo),
        "url": _clean(item.url),
        "unidades": int(item.unidades or 0),
        "precioCliente": _number(item.precio_cliente),
    }
    for field in allowed:
        value = getattr(item, field)
        if value is not None:
            out[_ITEM_PRICE_ALIASES[field]] = float(value)
    return out


def _validation_fields(exc: PydanticValidationError) -> List[str]:
    fields = []
    for error in exc.errors():
        path = ""
        for part in error.get("loc", ()):
            path += f"[{part}]" if isinstance(part, int) else (f".{part}" if path else str(part))
        fields.append(path or "__root__")
    return fields


def parse_payload(raw: Mapping[str, Any]) -> CotizacionCreatePayload:
    data = adapt_legacy_payload(raw)
    try:
        return CotizacionCreatePayload.model_validate(data)
    except PydanticValidationError as exc:
        raise ValidationError("Datos de cotizacion invalidos", _validation_fields(exc)) from exc


def normalize_cotizacion(
    payload: CotizacionCreatePayload,
    price_schema: PriceSchema = PriceSchema.SOLICITADO,
) -> Dict[str, Any]:
    """Valida y completa la entrada; todo campo opcional sale con su valor por defecto."""
    cliente = _clean(payload.cliente)
    tarifa = _clean(payload.tarifa)
    missing = [name for name, value in (("cliente", cliente), ("tarifa", tarifa)) if not value]
    if missing:
        raise ValidationError("Cliente y tarifa son obligatorios", missing)

    articulos = [
        _normalize_item(item, index, price_schema)
        for index, item in enumerate(payload.articulos)
    ]
    licitacion = bool(payload.licitacion)
    data: Dict[str, Any] = {
        "cliente": cliente,
        "tarifa": tarifa,
        "articulos": articulos,
        "stockDisponible": bool(payload.stock_disponible),
        "compradoAntes": bool(payload.comprado_antes),
        "precioAnterior": payload.precio_anterior,
        "fechaDecision": payload.fecha_decision or None,
        "plazoEntrega": _clean(payload.plazo_entrega),
        "lugarEntrega": _clean(payload.lugar_entrega),
        "comentarioStock": _clean(payload.comentario_stock),
        "formaPagoActual": _clean(payload.forma_pago_actual),
        "formaPagoSolicitada": _clean(payload.forma_pago_solicitada),
        "licitacion": licitacion,
        "clienteFinal": _clean(payload.cliente_final) if licitacion else "",
        "comentariosCliente": _clean(payload.comentarios_cliente),
    }
    if payload.precio_competencia is not None:
        data["precioCompetencia"] = float(payload.precio_competencia)
    return data


def find_missing_paths(value: Any, base: str = "root") -> List[str]:
    """Rutas de todos los valores que resuelven al marcador de valor ausente."""
    if value is MISSING or value is PydanticUndefined:
        return [base]
    paths: List[str] = []
    if isinstance(value, Mapping):
        for key, item in value.items():
            paths.extend(find_missing_paths(item, f"{base}.{key}"))
    elif isinstance(value, (list, tuple)):
        for index, item in enumerate(value):
            paths.extend(find_missing_paths(item, f"{base}[{index}]"))
    return paths


def assert_no_missing(document: Mapping[str, Any]) -> None:
    paths = find_missing_paths(document)
    if paths:
        raise ValidationError("Hay campos sin resolver en el documento", paths)
