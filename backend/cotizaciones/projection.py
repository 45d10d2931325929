"""Vista derivada del ciclo de vida de una cotizacion.

Todo se calcula a partir de `estado` y `workflow`; nada de esto se persiste.
"""
from __future__ import annotations

from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from pydantic import BaseModel

from .enums import PENDING_BUCKETS, Bucket, Estado, Workflow
from .schemas import LifecycleView

_WORKFLOW_PROGRESS: Tuple[Tuple[str, int, str], ...] = (
    (Workflow.COTIZADO.value, 80, "blue-darken-2"),
    (Workflow.ESPERA_CLIENTE.value, 60, "lime-darken-2"),
    (Workflow.CONSULTANDO.value, 40, "yellow-darken-2"),
    (Workflow.EN_REVISION.value, 20, "amber-darken-2"),
)
DEFAULT_COLOR = "amber-darken-2"


def _axis(value: Any) -> str:
    if value is None:
        return ""
    return str(getattr(value, "value", value)).strip().lower()


def _axes(record: Any) -> Tuple[str, str]:
    if isinstance(record, BaseModel):
        return _axis(getattr(record, "estado", None)), _axis(getattr(record, "workflow", None))
    if isinstance(record, Mapping):
        return _axis(record.get("estado")), _axis(record.get("workflow"))
    raise TypeError(f"No se puede proyectar un {type(record).__name__}")


def project(record: Any) -> LifecycleView:
    estado, workflow = _axes(record)

    if estado == Estado.GANADA.value:
        progress, color = 100, "green-darken-2"
    elif estado == Estado.PERDIDA.value:
        progress, color = 100, "red-darken-2"
    else:
        progress, color = 0, DEFAULT_COLOR
        for stage, stage_progress, stage_color in _WORKFLOW_PROGRESS:
            if workflow == stage:
                progress, color = stage_progress, stage_color
                break

    if estado == Estado.GANADA.value:
        bucket = Bucket.WON
    elif estado == Estado.PERDIDA.value:
        bucket = Bucket.LOST
    elif workflow == Workflow.COTIZADO.value:
        bucket = Bucket.QUOTED
    elif estado == Estado.REABIERTA.value:
        bucket = Bucket.REOPENED
    else:
        bucket = Bucket.UNREVIEWED

    return LifecycleView(
        progress=progress,
        color_tag=color,
        bucket=bucket,
        hide_pending=progress == 100,
    )


def filter_by_bucket(records: Iterable[Any], bucket: Bucket) -> List[Any]:
    return [record for record in records if project(record).bucket == bucket]


def pending(records: Iterable[Any]) -> List[Any]:
    """Reabiertas y sin revisar: lo que aun espera accion del equipo."""
    return [record for record in records if project(record).bucket in PENDING_BUCKETS]


def group_by_bucket(records: Iterable[Any]) -> Dict[Bucket, List[Any]]:
    groups: Dict[Bucket, List[Any]] = {bucket: [] for bucket in Bucket}
    for record in records:
        groups[project(record).bucket].append(record)
    return groups


def parse_bucket(value: Optional[str]) -> Optional[Bucket]:
    if not value:
        return None
    wanted = value.strip().lower()
    for bucket in Bucket:
        if bucket.value.lower() == wanted:
            return bucket
    raise ValueError(f"Categoria desconocida: {value!r}")
