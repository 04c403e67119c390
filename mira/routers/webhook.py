from fastapi import APIRouter, HTTPException, Request, status
from pydantic import ValidationError
from starlette.requests import ClientDisconnect

from mira.logging_config import get_logger, mask_sender
from mira.schemas.webhook import WebhookBody, WebhookResponse
from mira.services.pipeline import MessagePipeline

logger = get_logger("webhook")

router = APIRouter()


def _get_request_webhook_secret(request: Request) -> str | None:
    header_secret = request.headers.get("X-Webhook-Secret")
    if header_secret:
        return header_secret.strip()
    query_secret = request.query_params.get("webhook_secret")
    if query_secret:
        return query_secret.strip()
    return None


def _normalize_chatflow_payload(payload: dict) -> dict:
    """Accept both the wrapped {"body": {...}} form and the bare ChatFlow body."""
    body = payload.get("body")
    if not isinstance(body, dict):
        body = payload

    body = dict(body)
    metadata = dict(body.get("metadata")) if isinstance(body.get("metadata"), dict) else {}
    for target, keys in (
        ("remoteJid", ("remoteJid", "remote_jid", "jid", "from", "chatId")),
        ("messageId", ("messageId", "message_id", "id")),
        ("timestamp", ("timestamp", "t", "time")),
        ("sender", ("sender", "pushName", "name")),
    ):
        if metadata.get(target):
            continue
        for key in keys:
            value = payload.get(key)
            if value:
                metadata[target] = value
                break
    body["metadata"] = metadata
    return body


def get_pipeline(request: Request) -> MessagePipeline:
    return request.app.state.pipeline


@router.post("/webhook", response_model=WebhookResponse)
async def handle_webhook(request: Request):
    """Inbound ChatFlow event."""
    expected_secret = request.app.state.context.settings.webhook_secret
    if expected_secret and _get_request_webhook_secret(request) != expected_secret:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid webhook secret")

    try:
        payload = await request.json()
    except ClientDisconnect:
        return WebhookResponse(success=True, message="Client disconnected")
    except ValueError as exc:
        logger.warning("Webhook payload is not valid JSON", extra={"context": {"error": str(exc)}})
        return WebhookResponse(success=False, message="Invalid JSON payload")

    if not isinstance(payload, dict):
        return WebhookResponse(success=False, message="Invalid payload format")

    try:
        body = WebhookBody.model_validate(_normalize_chatflow_payload(payload))
    except ValidationError as exc:
        logger.warning("Webhook payload rejected", extra={"context": {"error": str(exc)}})
        return WebhookResponse(success=False, message="Invalid payload format")

    message = body.to_inbound()
    if message is None:
        return WebhookResponse(success=False, message="Missing metadata.remoteJid")
    if not message.text.strip():
        return WebhookResponse(success=False, message="Empty message")

    logger.info(
        "Webhook received",
        extra={"context": {"sender": mask_sender(message.sender), "message_id": message.message_id}},
    )
    outcome = await get_pipeline(request).handle(message)
    return WebhookResponse(success=True, message="OK", status=outcome.status, intent=outcome.intent)
