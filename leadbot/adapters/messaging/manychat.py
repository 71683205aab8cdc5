"""
ManyChat messaging adapter for admin notifications.

Sends text via POST {MANYCHAT_API_BASE}/whatsapp/sending/sendText
Falls back to stub mode when MESSAGING_STUB env var is set.
"""
from __future__ import annotations

import json
import logging
import os
from typing import Any, Optional

import httpx

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.manychat.com"
SEND_TEXT_PATH = "/whatsapp/sending/sendText"
MESSAGING_STUB_ENABLED_KEY = "MESSAGING_STUB"


class NotificationError(RuntimeError):
    """Raised when the provider rejects or fails a send."""


class ManyChatNotifier:
    def __init__(
        self,
        api_key: str,
        *,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = 20.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.api_key = api_key
        self.base_url = (base_url or DEFAULT_BASE_URL).rstrip("/")
        self.timeout = timeout
        self.transport = transport

    @property
    def configured(self) -> bool:
        return bool(self.api_key) or bool(os.getenv(MESSAGING_STUB_ENABLED_KEY))

    async def send(self, target_id: str, text: str) -> dict[str, Any]:
        """
        Send one WhatsApp text to a ManyChat subscriber.

        Raises NotificationError on a non-2xx response; transport errors
        (timeouts, connection failures) propagate as httpx exceptions.
        """
        if os.getenv(MESSAGING_STUB_ENABLED_KEY):
            logger.info(json.dumps({
                "event": "manychat_send_stub",
                "subscriber_id": target_id,
                "chars": len(text),
            }))
            return {"status": "success", "stub": True}

        try:
            subscriber_id: Any = int(target_id)
        except (TypeError, ValueError):
            subscriber_id = target_id

        url = f"{self.base_url}{SEND_TEXT_PATH}"
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        body = {"subscriber_id": subscriber_id, "message": text.strip()}

        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            resp = await client.post(url, json=body, headers=headers)

        logger.info(json.dumps({
            "event": "manychat_send_response",
            "subscriber_id": target_id,
            "status": resp.status_code,
            "body": resp.text[:300],
        }))

        if resp.status_code not in (200, 201):
            raise NotificationError(f"manychat_api_error:{resp.status_code}")

        try:
            return resp.json()
        except ValueError:
            return {"status": "success"}
