"""Client for the out-of-core command dispatcher.

The bot never interprets commands; it forwards them by name and relays back
whatever text the dispatcher answers with.
"""

from uuid import UUID

import httpx

from botengine.config import settings
from botengine.logging_config import get_logger, mask_phone

logger = get_logger("command_dispatcher")


async def dispatch_command(
    tenant_id: UUID,
    contact: str,
    command_text: str,
    instance_name: str | None = None,
) -> str | None:
    if not settings.command_dispatcher_url:
        logger.info(f"Command dispatcher not configured, dropping command {command_text!r}")
        return None

    payload = {
        "tenant_id": str(tenant_id),
        "command_text": command_text.strip(),
        "sender_phone": contact,
        "instance_name": instance_name,
    }
    headers = {}
    if settings.collaborator_token:
        headers["Authorization"] = f"Bearer {settings.collaborator_token}"

    try:
        async with httpx.AsyncClient(timeout=settings.send_timeout_seconds) as client:
            response = await client.post(settings.command_dispatcher_url, json=payload, headers=headers)
    except httpx.HTTPError as e:
        logger.error(
            f"Command dispatch failed: {e}",
            extra={"context": {"tenant_id": str(tenant_id), "contact": mask_phone(contact)}},
        )
        return None

    try:
        body = response.json() if response.content else {}
    except ValueError:
        logger.warning(f"Command dispatcher returned invalid JSON: {response.text[:200]}")
        return None
    if not response.is_success:
        logger.warning(
            "Command dispatcher returned an error",
            extra={"context": {"status": response.status_code, "command": command_text}},
        )
    if not isinstance(body, dict):
        return None
    reply = body.get("response") or body.get("user_message")
    return str(reply) if reply else None
