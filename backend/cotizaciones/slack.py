from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import httpx

from .config import SlackSettings
from .notifications import render_text
from .schemas import NotificationMessage, NotificationResult


class SlackError(Exception):
    """Respuesta de la API de Slack con ok=false."""


class SlackNotifier:
    """Mensaje directo de Slack a cada destinatario, buscado por su email.

    Un unico intento por destinatario. El CC configurado es opcional y su
    fallo solo se registra.
    """

    def __init__(
        self,
        settings: SlackSettings,
        logger: Optional[logging.Logger] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._settings = settings
        self._logger = logger or logging.getLogger("cotizaciones.slack")
        self._transport = transport

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self._settings.token}",
            "Content-Type": "application/json; charset=utf-8",
        }

    @staticmethod
    def _check(resp: httpx.Response, method: str) -> Dict[str, Any]:
        resp.raise_for_status()
        data = resp.json()
        if not data.get("ok"):
            raise SlackError(f"{method}: {data.get('error') or 'error desconocido'}")
        return data

    async def _direct_message(self, client: httpx.AsyncClient, email: str, text: str) -> None:
        lookup = self._check(
            await client.get("/users.lookupByEmail", params={"email": email}),
            "users.lookupByEmail",
        )
        opened = self._check(
            await client.post("/conversations.open", json={"users": lookup["user"]["id"]}),
            "conversations.open",
        )
        self._check(
            await client.post("/chat.postMessage", json={"channel": opened["channel"]["id"], "text": text}),
            "chat.postMessage",
        )

    async def send(self, message: NotificationMessage) -> NotificationResult:
        if not message.to:
            return NotificationResult(ok=False, error="Sin destinatarios validos")
        text = render_text(message)
        errors: List[str] = []
        async with httpx.AsyncClient(
            base_url=self._settings.base_url,
            headers=self._headers(),
            timeout=self._settings.timeout,
            transport=self._transport,
        ) as client:
            for email in message.to:
                try:
                    await self._direct_message(client, email, text)
                except (SlackError, httpx.HTTPError, KeyError, ValueError) as exc:
                    self._logger.error("Fallo mensaje de Slack a %s: %s", email, exc)
                    errors.append(f"{email}: {exc}")

            cc = (self._settings.cc_email or "").strip()
            if cc and cc not in message.to:
                try:
                    await self._direct_message(client, cc, text)
                except (SlackError, httpx.HTTPError, KeyError, ValueError) as exc:
                    self._logger.warning("CC de Slack a %s fallo: %s", cc, exc)

        if errors:
            return NotificationResult(ok=False, error="; ".join(errors))
        return NotificationResult(ok=True)
