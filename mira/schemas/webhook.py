from typing import Any, Optional

from pydantic import AliasChoices, BaseModel, Field

from mira.services.pipeline import InboundMessage


class WebhookMetadata(BaseModel):
    sender: Optional[str] = None
    timestamp: Optional[int] = None
    messageId: Optional[str] = None
    remoteJid: Optional[str] = None
    fromMe: bool = Field(default=False, validation_alias=AliasChoices("fromMe", "from_me"))
    quotedMessage: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("quotedMessage", "quoted_message", "quotedText", "quoted_text"),
    )


class WebhookBody(BaseModel):
    messageType: Optional[str] = "text"
    message: Optional[str] = None
    metadata: Optional[WebhookMetadata] = None
    mediaData: Optional[Any] = None

    def to_inbound(self) -> Optional[InboundMessage]:
        """Normalize to an InboundMessage; None when there is no chat id."""
        metadata = self.metadata
        if metadata is None or not metadata.remoteJid:
            return None
        return InboundMessage(
            sender=metadata.remoteJid,
            text=self.message or "",
            timestamp=metadata.timestamp,
            message_id=metadata.messageId,
            has_quote=bool(metadata.quotedMessage),
            quoted_text=metadata.quotedMessage,
            is_group=metadata.remoteJid.endswith("@g.us"),
            is_self=metadata.fromMe,
            display_name=metadata.sender,
        )


class WebhookRequest(BaseModel):
    body: WebhookBody


class WebhookResponse(BaseModel):
    success: bool
    message: str
    status: Optional[str] = None
    intent: Optional[str] = None
