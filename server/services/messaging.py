"""Outbound message sender backed by the messaging service HTTP API."""

from typing import Any, Dict, Optional

import httpx

from core.config import Settings
from core.logging import get_logger

logger = get_logger(__name__)


class MessagingError(Exception):
    """Messaging service rejected or failed to accept a message."""


class MessagingClient:
    """Messaging collaborator: ``send`` returns the created message as a dict with an ``id``."""

    def __init__(self, settings: Settings):
        self.base_url = settings.messaging_service_url.rstrip("/")
        self.timeout = settings.messaging_timeout

    async def send(
        self,
        account_id: str,
        contact_id: str,
        message_type: str,
        content: str,
        media_url: Optional[str] = None,
        idempotency_key: Optional[str] = None,
    ) -> Dict[str, Any]:
        payload = {
            "accountId": account_id,
            "contactId": contact_id,
            "type": message_type,
            "content": content,
        }
        if media_url:
            payload["mediaUrl"] = media_url

        headers = {"Idempotency-Key": idempotency_key} if idempotency_key else {}

        async with httpx.AsyncClient(timeout=self.timeout) as client:
            response = await client.post(f"{self.base_url}/api/messages", json=payload, headers=headers)

        if response.status_code >= 400:
            logger.error("Message send rejected",
                        contact_id=contact_id,
                        status_code=response.status_code)
            raise MessagingError(f"HTTP {response.status_code}: {response.text}")

        data = response.json()
        message = data.get("data", data) if isinstance(data, dict) else {}
        logger.debug("Message sent", contact_id=contact_id, message_id=message.get("id"))
        return message
