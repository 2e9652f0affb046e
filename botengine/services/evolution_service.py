"""Outbound messages and instance probes against the Evolution WhatsApp gateway."""

import re

import httpx

from botengine.config import settings
from botengine.logging_config import get_logger, mask_phone
from botengine.services.alert_service import alert_critical

logger = get_logger("evolution_service")

JID_SUFFIX = "@s.whatsapp.net"
MOBILE_DDD_MIN = 11


def normalize_api_url(url: str | None) -> str:
    cleaned = (url or "").strip()
    cleaned = re.sub(r"/manager/?$", "", cleaned, flags=re.IGNORECASE)
    return cleaned.rstrip("/")


def format_phone(phone: str | None) -> str:
    """Canonical Brazilian mobile format: country code 55 plus the ninth digit."""
    formatted = re.sub(r"\D", "", (phone or "").split("@")[0])

    if formatted.startswith("550"):
        formatted = "55" + formatted[3:]
    if not formatted.startswith("55") and len(formatted) in (10, 11):
        formatted = f"55{formatted}"
    if formatted.startswith("55") and len(formatted) == 12:
        ddd, number = formatted[2:4], formatted[4:]
        if not number.startswith("9") and int(ddd) >= MOBILE_DDD_MIN:
            formatted = f"55{ddd}9{number}"
    return formatted


def get_phone_variations(phone: str | None) -> list[str]:
    """Ordered candidate destinations tried one after another on send failure."""
    base = format_phone(phone)
    if not base:
        return []
    variations = [base, f"{base}{JID_SUFFIX}"]
    if base.startswith("55") and len(base) >= 12:
        variations.append(base[2:])
    if base.startswith("55") and len(base) == 13:
        variations.append(base[:4] + base[5:])
    elif base.startswith("55") and len(base) == 12 and not base[4:].startswith("9"):
        variations.append(f"55{base[2:4]}9{base[4:]}")
    return list(dict.fromkeys(variations))


def _should_try_next_format(status_code: int) -> bool:
    return status_code == 400 or status_code >= 500


async def send_text(instance_name: str, phone: str, text: str) -> bool:
    """Send a text message, walking the phone variations until one is accepted."""
    base_url = normalize_api_url(settings.evolution_api_url)
    if not base_url or not instance_name or not text:
        logger.warning(f"send_text: missing api url, instance={instance_name} or text")
        return False

    variations = get_phone_variations(phone)
    url = f"{base_url}/message/sendText/{instance_name}"
    headers = {"Content-Type": "application/json", "apikey": settings.evolution_api_key}

    async with httpx.AsyncClient(timeout=settings.send_timeout_seconds) as client:
        for number in variations:
            try:
                response = await client.post(url, json={"number": number, "text": text}, headers=headers)
            except httpx.HTTPError as e:
                logger.warning(f"Send network error for {mask_phone(number)}: {e}")
                continue

            if response.is_success:
                logger.info(
                    "Message sent",
                    extra={"context": {"instance": instance_name, "number": mask_phone(number)}},
                )
                return True
            logger.info(
                f"Send rejected: status={response.status_code}, number={mask_phone(number)}, "
                f"body={response.text[:100]}"
            )
            if not _should_try_next_format(response.status_code):
                return False

    alert_critical(
        "WhatsApp send failed for every phone format",
        {"instance": instance_name, "phone": mask_phone(phone), "formats": len(variations)},
    )
    return False


async def fetch_connected_phone(instance_name: str) -> str | None:
    """Ask the gateway which number the instance is logged in with."""
    base_url = normalize_api_url(settings.evolution_api_url)
    if not base_url or not instance_name:
        return None
    try:
        async with httpx.AsyncClient(timeout=settings.probe_timeout_seconds) as client:
            response = await client.get(
                f"{base_url}/instance/fetchInstances",
                params={"instanceName": instance_name},
                headers={"apikey": settings.evolution_api_key},
            )
    except httpx.HTTPError as e:
        logger.warning(f"Instance probe failed for {instance_name}: {e}")
        return None
    if not response.is_success:
        logger.warning(f"Instance probe returned {response.status_code} for {instance_name}")
        return None

    try:
        data = response.json()
    except ValueError:
        return None
    if isinstance(data, list):
        data = data[0] if data else None
    if not isinstance(data, dict):
        return None
    nested = data.get("instance") if isinstance(data.get("instance"), dict) else {}
    owner = data.get("ownerJid") or data.get("owner") or nested.get("owner")
    if not owner:
        return None
    digits = re.sub(r"\D", "", str(owner).split("@")[0])
    return digits or None
