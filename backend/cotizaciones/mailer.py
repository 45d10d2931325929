from __future__ import annotations

import logging
import os
from datetime import datetime, timezone
from email.message import EmailMessage
from email.utils import format_datetime, formataddr
from typing import Optional

import aiosmtplib
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .config import MailSettings
from .exceptions import NotificationError
from .notifications import render_text
from .schemas import NotificationMessage, NotificationResult

FOOTER = "Este correo es generado automaticamente por el sistema de cotizaciones."


class EmailNotifier:
    """Notificador SMTP: un intento de envio por mensaje, sin reintentos."""

    def __init__(self, settings: MailSettings, logger: Optional[logging.Logger] = None):
        self._settings = settings
        self._logger = logger or logging.getLogger("cotizaciones.mailer")
        self._tz = self._resolve_timezone(settings.tz_name)

    def _resolve_timezone(self, tz_name: Optional[str]):
        name = (tz_name or os.environ.get("COTIZACIONES_TZ") or "Europe/Madrid").strip()
        try:
            return ZoneInfo(name)
        except ZoneInfoNotFoundError:
            self._logger.warning("Zona horaria '%s' no valida; usando UTC.", name)
        except Exception as exc:  # noqa: BLE001
            self._logger.warning("No se pudo cargar zona horaria '%s': %s. Se usara UTC.", name, exc)
        return timezone.utc

    def _format_from(self) -> str:
        if self._settings.from_name:
            return formataddr((self._settings.from_name, self._settings.from_address))
        return self._settings.from_address

    def build_message(self, message: NotificationMessage) -> EmailMessage:
        if not message.to:
            raise NotificationError("Sin destinatarios validos")
        local_dt = datetime.now(timezone.utc).astimezone(self._tz)
        msg = EmailMessage()
        msg["From"] = self._format_from()
        msg["To"] = ", ".join(message.to)
        msg["Subject"] = message.subject
        msg["Date"] = format_datetime(local_dt)
        msg.set_content(render_text(message) + "\n\n" + FOOTER)
        return msg

    async def send(self, message: NotificationMessage) -> NotificationResult:
        try:
            email = self.build_message(message)
            await aiosmtplib.send(
                email,
                hostname=self._settings.host,
                port=self._settings.port,
                username=self._settings.username or None,
                password=self._settings.password or None,
                start_tls=self._settings.use_starttls,
                use_tls=self._settings.use_tls,
                timeout=self._settings.timeout,
            )
            return NotificationResult(ok=True)
        except Exception as exc:  # noqa: BLE001
            self._logger.error("Fallo envio de correo a %s: %s", ", ".join(message.to), exc)
            return NotificationResult(ok=False, error=str(exc))
