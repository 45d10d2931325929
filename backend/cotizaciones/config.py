from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Any, Optional

from dotenv import load_dotenv

from .enums import NumberingScheme, PriceSchema


def coerce_bool(value: Any, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return bool(value)
    return str(value).strip().lower() in {"1", "true", "yes", "y", "on"}


def coerce_int(value: Any, default: int) -> int:
    if value is None:
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def coerce_float(value: Any, default: float) -> float:
    if value is None:
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def coerce_str(value: Any, default: str) -> str:
    if value is None:
        return default
    return str(value).strip()


@dataclass(slots=True)
class MailSettings:
    host: str
    port: int
    username: str
    password: str
    from_address: str
    from_name: Optional[str] = None
    use_tls: bool = True
    use_starttls: bool = False
    timeout: float = 10.0
    tz_name: Optional[str] = None


@dataclass(slots=True)
class SlackSettings:
    token: str
    cc_email: Optional[str] = None
    timeout: float = 10.0
    base_url: str = "https://slack.com/api"


@dataclass(slots=True)
class Settings:
    database_url: str
    db_min_pool_size: int
    db_max_pool_size: int
    db_timeout: int
    db_ready_timeout: float
    numeracion: NumberingScheme
    esquema_precios: PriceSchema
    allocator_max_attempts: int
    supervisor_email: str
    compras_email: str
    mail: MailSettings
    tz_name: str = "Europe/Madrid"
    firebase_project_id: str = ""
    firebase_service_account: str = ""
    slack: Optional[SlackSettings] = None


def _numbering_scheme(raw: Optional[str]) -> NumberingScheme:
    value = coerce_str(raw, NumberingScheme.MENSUAL.value).lower()
    try:
        return NumberingScheme(value)
    except ValueError as exc:
        raise ValueError(f"COTIZACIONES_NUMERACION invalido: {value!r}") from exc


def _price_schema(raw: Optional[str]) -> PriceSchema:
    value = coerce_str(raw, PriceSchema.SOLICITADO.value).lower()
    try:
        return PriceSchema(value)
    except ValueError as exc:
        raise ValueError(f"COTIZACIONES_ESQUEMA_PRECIOS invalido: {value!r}") from exc


def _slack_settings(env) -> Optional[SlackSettings]:
    token = coerce_str(env.get("SLACK_BOT_TOKEN"), "")
    if not token:
        return None
    return SlackSettings(
        token=token,
        cc_email=coerce_str(env.get("SLACK_CC_EMAIL"), "") or None,
        timeout=coerce_float(env.get("SLACK_TIMEOUT"), 10.0),
    )


def load_settings() -> Settings:
    """Lee la configuracion del entorno (y de un .env local si existe)."""
    load_dotenv()
    env = os.environ
    mail_user = coerce_str(env.get("MAIL_USER"), "")
    mail = MailSettings(
        host=coerce_str(env.get("MAIL_HOST"), "localhost"),
        port=coerce_int(env.get("MAIL_PORT"), 465),
        username=mail_user,
        password=env.get("MAIL_PASS", ""),
        from_address=coerce_str(env.get("MAIL_FROM"), mail_user),
        from_name=coerce_str(env.get("MAIL_FROM_NAME"), "Cotizaciones Comercial") or None,
        use_tls=coerce_bool(env.get("MAIL_USE_TLS"), True),
        use_starttls=coerce_bool(env.get("MAIL_STARTTLS"), False),
        timeout=coerce_float(env.get("MAIL_TIMEOUT"), 10.0),
        tz_name=env.get("COTIZACIONES_TZ"),
    )
    return Settings(
        database_url=coerce_str(env.get("DATABASE_URL"), ""),
        db_min_pool_size=coerce_int(env.get("COTIZACIONES_DB_MIN_POOL_SIZE"), 1),
        db_max_pool_size=coerce_int(env.get("COTIZACIONES_DB_MAX_POOL_SIZE"), 5),
        db_timeout=coerce_int(env.get("COTIZACIONES_DB_TIMEOUT"), 10),
        db_ready_timeout=coerce_float(env.get("COTIZACIONES_DB_READY_TIMEOUT"), 15.0),
        numeracion=_numbering_scheme(env.get("COTIZACIONES_NUMERACION")),
        esquema_precios=_price_schema(env.get("COTIZACIONES_ESQUEMA_PRECIOS")),
        allocator_max_attempts=max(1, coerce_int(env.get("COTIZACIONES_ALLOCATOR_MAX_ATTEMPTS"), 10)),
        supervisor_email=coerce_str(env.get("COTIZACIONES_SUPERVISOR_EMAIL"), "vanessa@comercialav.com"),
        compras_email=coerce_str(env.get("COTIZACIONES_COMPRAS_EMAIL"), "compras@comercialav.com"),
        mail=mail,
        tz_name=coerce_str(env.get("COTIZACIONES_TZ"), "Europe/Madrid") or "Europe/Madrid",
        firebase_project_id=coerce_str(env.get("FIREBASE_PROJECT_ID"), ""),
        firebase_service_account=coerce_str(env.get("FIREBASE_SERVICE_ACCOUNT"), ""),
        slack=_slack_settings(env),
    )
