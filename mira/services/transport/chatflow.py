from typing import Optional

import httpx

from mira.logging_config import get_logger, mask_sender
from mira.services.alert_service import alert_critical
from mira.services.transport.base import Transport

logger = get_logger("transport.chatflow")


class ChatFlowTransport(Transport):
    """WhatsApp delivery through the ChatFlow HTTP gateway."""

    def __init__(
        self,
        token: Optional[str],
        instance_id: Optional[str],
        base_url: str = "https://app.chatflow.kz/api/v1",
        timeout_seconds: float = 30.0,
    ):
        self.token = token
        self.instance_id = instance_id
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds

    @property
    def is_ready(self) -> bool:
        return bool(self.token and self.instance_id)

    async def _get(self, endpoint: str, params: dict) -> httpx.Response:
        async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
            return await client.get(f"{self.base_url}/{endpoint}", params=params)

    async def send_text(self, recipient: str, text: str) -> bool:
        """Send message via ChatFlow API."""
        if not self.is_ready:
            logger.error("ChatFlow token or instance_id is missing")
            await alert_critical("WhatsApp send failed", {"jid": mask_sender(recipient), "error": "missing_chatflow_config"})
            return False

        if not recipient or not text:
            logger.warning("send_text: missing recipient or text")
            return False

        params = {
            "token": self.token,
            "instance_id": self.instance_id,
            "jid": recipient,
            "msg": text,
        }
        try:
            response = await self._get("send-text", params)
            logger.info(
                f"ChatFlow response: status={response.status_code}, jid={mask_sender(recipient)}, body={response.text[:200]}"
            )
            return response.status_code == 200
        except httpx.HTTPError as e:
            logger.error(f"Error sending WhatsApp message: {e}")
            await alert_critical("WhatsApp send failed", {"jid": mask_sender(recipient), "error": str(e)})
            return False

    async def send_document(self, recipient: str, url: str, caption: Optional[str] = None) -> bool:
        """Send document via ChatFlow API."""
        if not self.is_ready:
            logger.error("ChatFlow token or instance_id is missing")
            return False

        if not recipient or not url:
            logger.warning("send_document: missing recipient or url")
            return False

        params = {
            "token": self.token,
            "instance_id": self.instance_id,
            "jid": recipient,
            "docurl": url,
            # ChatFlow rejects document requests without a non-empty caption.
            "caption": caption.strip() if caption and caption.strip() else " ",
        }
        try:
            response = await self._get("send-doc", params)
            logger.info(
                f"ChatFlow media response: status={response.status_code}, jid={mask_sender(recipient)}, body={response.text[:200]}"
            )
            if response.status_code != 200:
                return False
            try:
                payload = response.json()
            except ValueError:
                return False
            return bool(payload.get("success"))
        except httpx.HTTPError as e:
            logger.error(f"Error sending WhatsApp document: {e}")
            await alert_critical("WhatsApp document send failed", {"jid": mask_sender(recipient), "error": str(e)})
            return False
