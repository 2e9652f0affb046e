"""Evolution gateway webhook: connection events and message events."""

from datetime import datetime, timezone
from uuid import UUID

import httpx
from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy import or_
from sqlalchemy.orm import Session

from botengine.config import settings
from botengine.database import get_db
from botengine.logging_config import get_logger, mask_phone
from botengine.models import TrialIntegrationConfig, WhatsAppInstance
from botengine.schemas.webhook import MessageOutcome, WebhookResponse
from botengine.services.alert_service import alert_critical, alert_warning
from botengine.services.command_dispatcher import dispatch_command
from botengine.services.evolution_service import fetch_connected_phone, send_text
from botengine.services.input_parser import COMMAND_PREFIXES
from botengine.services.intercept_service import intercept_message
from botengine.services.wire_extractor import (
    WireMessage,
    extract_inbound_messages,
    extract_instance_name,
    normalize_event_name,
)

logger = get_logger("webhook")

router = APIRouter(prefix="/webhook", tags=["webhook"])

EVENT_MESSAGES_UPSERT = "messages.upsert"
CONNECTION_EVENTS = {"connection.update", "qrcode.updated", "instance.ready", "connection.lost", "logout"}
DEFAULT_RENEWAL_KEYWORDS = [
    "renovado",
    "renovação",
    "renovacao",
    "renewed",
    "prorrogado",
    "estendido",
    "renovou",
    "extensão",
]
RENEWAL_MIN_LENGTH = 10


def _error(status_code: int, error: str, detail: str | None = None) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": error, "detail": detail})


def find_instance(db: Session, instance_name: str) -> WhatsAppInstance | None:
    return (
        db.query(WhatsAppInstance)
        .filter(
            or_(
                WhatsAppInstance.instance_name == instance_name,
                WhatsAppInstance.original_instance_name == instance_name,
            )
        )
        .first()
    )


def _connection_state(body: dict) -> str | None:
    data = body.get("data") if isinstance(body.get("data"), dict) else body
    state = data.get("state")
    if not state and isinstance(data.get("connection"), dict):
        state = data["connection"].get("state")
    return state


def apply_connection_event(db: Session, instance: WhatsAppInstance, event: str, body: dict) -> None:
    """Track gateway connection state on the instance row."""
    alert_message = None
    if event == "connection.update":
        state = _connection_state(body)
        instance.is_connected = state == "open"
        if state == "close":
            alert_message = "Conexão com WhatsApp perdida"
    elif event == "qrcode.updated":
        instance.is_connected = False
        instance.session_valid = True
    elif event == "instance.ready":
        instance.is_connected = True
        instance.session_valid = True
    else:
        instance.is_connected = False
        instance.session_valid = False
        alert_message = "Sessão do WhatsApp encerrada"

    instance.last_heartbeat_at = datetime.now(timezone.utc)
    db.commit()
    logger.info(
        f"Connection event {event}",
        extra={"context": {"instance": instance.instance_name, "connected": instance.is_connected}},
    )
    if alert_message:
        alert_warning(alert_message, {"instance": instance.instance_name, "tenant_id": str(instance.tenant_id)})


async def _resolve_own_phone(db: Session, instance: WhatsAppInstance) -> str | None:
    if instance.own_phone:
        return instance.own_phone
    phone = await fetch_connected_phone(instance.instance_name)
    if phone:
        instance.connected_phone = phone
        db.commit()
    return phone


async def detect_renewal(db: Session, tenant_id: UUID, phone: str, text: str) -> bool:
    """Forward our own outbound renewal confirmations to the renewal sync collaborator."""
    if not text or len(text) < RENEWAL_MIN_LENGTH or not settings.renewal_sync_url:
        return False
    config = (
        db.query(TrialIntegrationConfig)
        .filter(TrialIntegrationConfig.tenant_id == tenant_id, TrialIntegrationConfig.is_active.is_(True))
        .first()
    )
    if not config or not config.detect_renewal_enabled:
        return False

    keywords = config.detect_renewal_keywords
    if not isinstance(keywords, list) or not keywords:
        keywords = DEFAULT_RENEWAL_KEYWORDS
    lowered = text.lower()
    if not any(str(keyword).lower() in lowered for keyword in keywords):
        return False

    headers = {}
    if settings.collaborator_token:
        headers["Authorization"] = f"Bearer {settings.collaborator_token}"
    payload = {
        "tenant_id": str(tenant_id),
        "client_phone": phone,
        "message_content": text,
        "source": "message_detection",
    }
    try:
        async with httpx.AsyncClient(timeout=settings.send_timeout_seconds) as client:
            response = await client.post(settings.renewal_sync_url, json=payload, headers=headers)
    except httpx.HTTPError as e:
        logger.error(f"Renewal sync failed: {e}")
        return False
    if not response.is_success:
        logger.error(f"Renewal sync returned {response.status_code}")
        return False
    logger.info("Renewal message synced", extra={"context": {"phone": mask_phone(phone)}})
    return True


async def deliver_reply(instance: WhatsAppInstance, phone: str, text: str, own_phone: str | None) -> bool:
    """Send through the gateway unless the destination is the instance itself."""
    if own_phone and phone == own_phone:
        logger.error(
            "BLOCKED reply to the instance's own number",
            extra={"context": {"instance": instance.instance_name, "phone": mask_phone(phone)}},
        )
        alert_critical(
            "Reply to instance's own number blocked",
            {"instance": instance.instance_name, "phone": mask_phone(phone)},
        )
        return False
    return await send_text(instance.instance_name, phone, text)


async def handle_message(
    db: Session,
    instance: WhatsAppInstance,
    message: WireMessage,
    own_phone: str | None,
) -> MessageOutcome:
    outcome = MessageOutcome(phone=mask_phone(message.sender_phone), from_me=message.from_me)

    if message.from_me:
        await detect_renewal(db, instance.tenant_id, message.sender_phone, message.text)
        outcome.reason = "outbound"
        return outcome

    if not message.text.strip():
        logger.info(f"Empty message text from {mask_phone(message.sender_phone)}")
        outcome.reason = "empty_text"
        return outcome

    result = await intercept_message(
        db,
        tenant_id=instance.tenant_id,
        sender_phone=message.sender_phone,
        message_text=message.text,
        instance_name=instance.instance_name,
        message_id=message.message_id,
    )
    outcome.intercepted = result.intercepted
    outcome.deduplicated = result.deduplicated
    outcome.reason = result.reason

    reply = result.response if result.intercepted else None
    is_command = message.text.lstrip().startswith(COMMAND_PREFIXES)
    if not result.intercepted and result.should_continue and is_command:
        reply = await dispatch_command(instance.tenant_id, message.sender_phone, message.text, instance.instance_name)

    if reply:
        outcome.sent = await deliver_reply(instance, message.sender_phone, reply, own_phone)
    return outcome


@router.post("/evolution", response_model=WebhookResponse)
async def evolution_webhook(request: Request, db: Session = Depends(get_db)):
    try:
        body = await request.json()
    except ValueError:
        return _error(400, "invalid_json")
    if not isinstance(body, dict):
        return _error(400, "invalid_json")

    event = normalize_event_name(body.get("event") or body.get("type"))
    instance_name = extract_instance_name(body)
    if not instance_name:
        logger.warning("Webhook without instance name", extra={"context": {"event": event}})
        return _error(400, "missing_instance", "No instance name found in payload")

    instance = find_instance(db, instance_name)
    if not instance:
        logger.warning(f"Webhook for unknown instance {instance_name}")
        return _error(404, "instance_not_found", instance_name)

    response = WebhookResponse(success=True, event=event, instance=instance.instance_name)

    if event in CONNECTION_EVENTS:
        apply_connection_event(db, instance, event, body)
        return response
    if event != EVENT_MESSAGES_UPSERT:
        return response

    own_phone = await _resolve_own_phone(db, instance)
    for message in extract_inbound_messages(body, own_phone):
        try:
            outcome = await handle_message(db, instance, message, own_phone)
        except Exception:
            db.rollback()
            logger.exception(
                "Webhook message handling failed",
                extra={"context": {"instance": instance.instance_name, "phone": mask_phone(message.sender_phone)}},
            )
            outcome = MessageOutcome(phone=mask_phone(message.sender_phone), from_me=message.from_me, reason="error")
        response.results.append(outcome)
    return response
