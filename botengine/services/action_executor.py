"""Side-effecting actions triggered from menus and states: trial generation and plan listing."""

import asyncio
import re
import secrets
import string
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any
from uuid import UUID

import httpx
from sqlalchemy import update
from sqlalchemy.orm import Session

from botengine.config import settings
from botengine.logging_config import get_logger, mask_phone
from botengine.models import Plan, TrialIntegrationConfig
from botengine.services.alert_service import send_alert
from botengine.services.result import Result

logger = get_logger("action_executor")

PLAN_LIST_LIMIT = 5
PASSWORD_LENGTH = 8
NO_PLANS_MESSAGE = "Nenhum plano disponível no momento."

BR_DATE_PATTERN = re.compile(r"^(\d{2})/(\d{2})/(\d{4})(?:\s+(\d{2}):(\d{2}))?")
ISO_DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}")

# Strong references to fire-and-forget tasks until they finish.
_background_tasks: set[asyncio.Task] = set()


@dataclass
class TrialCredentials:
    username: str
    password: str
    expires_at: datetime
    client_name: str
    dns: str | None = None
    raw: dict = field(default_factory=dict)

    def format_expiration(self) -> str:
        return self.expires_at.strftime("%d/%m/%Y %H:%M")


def extract_by_path(data: Any, path: str | None) -> Any:
    """Follow a dot path (``data.user.login``) through nested dicts; None when absent."""
    if not path or not isinstance(data, dict):
        return None
    current: Any = data
    for part in path.split("."):
        if isinstance(current, dict):
            current = current.get(part)
        elif isinstance(current, list) and part.isdigit() and int(part) < len(current):
            current = current[int(part)]
        else:
            return None
        if current is None:
            return None
    return current


def parse_expiration(value: Any) -> datetime | None:
    """Parse ``dd/mm/yyyy[ HH:MM]`` or ISO dates returned by providers."""
    if not value:
        return None
    text = str(value).strip()
    match = BR_DATE_PATTERN.match(text)
    if match:
        day, month, year, hour, minute = match.groups()
        try:
            return datetime(
                int(year),
                int(month),
                int(day),
                int(hour) if hour else 12,
                int(minute) if minute else 0,
                tzinfo=timezone.utc,
            )
        except ValueError:
            return None
    if ISO_DATE_PATTERN.match(text):
        try:
            parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError:
            return None
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    return None


def normalize_phone_with_country_code(phone: str | None) -> str | None:
    digits = re.sub(r"\D", "", phone or "")
    if len(digits) < 8:
        return None
    if digits.startswith("55") and 12 <= len(digits) <= 13:
        return digits
    if 10 <= len(digits) <= 11:
        return f"55{digits}"
    return digits


def generate_password(length: int = PASSWORD_LENGTH) -> str:
    alphabet = string.ascii_lowercase + string.digits
    return "".join(secrets.choice(alphabet) for _ in range(length))


def _get_trial_config(db: Session, tenant_id: UUID) -> TrialIntegrationConfig | None:
    return (
        db.query(TrialIntegrationConfig)
        .filter(
            TrialIntegrationConfig.tenant_id == tenant_id,
            TrialIntegrationConfig.is_active.is_(True),
        )
        .first()
    )


def reserve_trial_counter(db: Session, config: TrialIntegrationConfig) -> int:
    """Atomically increment and commit the tenant's trial counter."""
    counter = db.execute(
        update(TrialIntegrationConfig)
        .where(TrialIntegrationConfig.id == config.id)
        .values(test_counter=TrialIntegrationConfig.test_counter + 1)
        .returning(TrialIntegrationConfig.test_counter)
    ).scalar_one()
    db.commit()
    return counter


def _build_provider_headers(config: TrialIntegrationConfig) -> dict:
    headers = {"Content-Type": "application/json"}
    if config.api_key:
        headers["Authorization"] = f"Bearer {config.api_key}"
        headers["apikey"] = config.api_key
    return headers


def _schedule_background(coro) -> None:
    task = asyncio.create_task(coro)
    _background_tasks.add(task)
    task.add_done_callback(_background_tasks.discard)


async def notify_client_registration(tenant_id: UUID, contact: str, credentials: TrialCredentials, category: str | None) -> bool:
    """Tell the client-registration collaborator about a new trial. Failures are only logged."""
    if not settings.client_registration_url:
        return False
    payload = {
        "tenant_id": str(tenant_id),
        "name": credentials.client_name,
        "phone": normalize_phone_with_country_code(contact),
        "username": credentials.username,
        "password": credentials.password,
        "dns": credentials.dns,
        "expires_at": credentials.expires_at.isoformat(),
        "category": category,
        "is_test": True,
    }
    headers = {}
    if settings.collaborator_token:
        headers["Authorization"] = f"Bearer {settings.collaborator_token}"
    try:
        async with httpx.AsyncClient(timeout=settings.trial_timeout_seconds) as client:
            response = await client.post(settings.client_registration_url, json=payload, headers=headers)
        if response.status_code >= 400:
            logger.warning(
                "Client registration rejected",
                extra={"context": {"status": response.status_code, "body": response.text[:200]}},
            )
            return False
        return True
    except httpx.HTTPError as e:
        logger.warning(f"Client registration failed: {e}")
        return False


async def generate_trial(
    db: Session,
    tenant_id: UUID,
    contact: str,
    device_type: str,
    device_info: str | None = None,
    *,
    now: datetime | None = None,
) -> Result[TrialCredentials]:
    """Provision a trial account through the tenant's configured endpoint.

    The counter is committed before the provider call, so a repeated call (for
    example after a lost lock race) issues a second, distinct trial instead of
    reusing a username.
    """
    now = now or datetime.now(timezone.utc)
    config = _get_trial_config(db, tenant_id)
    if not config or not config.endpoint_url:
        logger.warning(f"Trial generation not configured for tenant {tenant_id}")
        return Result.failure("Trial integration is not configured", "not_configured")

    counter = reserve_trial_counter(db, config)
    username = f"{config.username_prefix or 'teste'}{counter}"
    password = generate_password()
    payload = {
        "username": username,
        "password": password,
        "phone": normalize_phone_with_country_code(contact),
        "device_type": device_type,
        "device_info": device_info,
        "category": config.category,
        "duration_hours": config.default_duration_hours,
    }

    log_context = {"tenant_id": str(tenant_id), "contact": mask_phone(contact), "counter": counter}
    try:
        async with httpx.AsyncClient(timeout=settings.trial_timeout_seconds) as client:
            response = await client.request(
                (config.http_method or "POST").upper(),
                config.endpoint_url,
                json=payload,
                headers=_build_provider_headers(config),
            )
    except httpx.TimeoutException:
        logger.error("Trial provider timed out", extra={"context": log_context})
        return Result.failure("Trial provider timed out", "timeout")
    except httpx.HTTPError as e:
        logger.error(f"Trial provider request failed: {e}", extra={"context": log_context})
        return Result.failure(str(e), "http_error")

    if response.status_code >= 400:
        logger.error(
            "Trial provider returned an error",
            extra={"context": {**log_context, "status": response.status_code, "body": response.text[:200]}},
        )
        return Result.failure(f"Provider returned HTTP {response.status_code}", "provider_error")

    try:
        body = response.json()
    except ValueError:
        logger.error("Trial provider returned invalid JSON", extra={"context": log_context})
        return Result.failure("Provider returned invalid JSON", "invalid_response")
    if not isinstance(body, dict):
        body = {"data": body}

    def _field(path: str | None) -> Any:
        value = extract_by_path(body, path)
        if value is None and isinstance(body.get("data"), dict):
            value = extract_by_path(body["data"], path)
        return value

    final_username = str(_field(config.map_login_path) or username)
    final_password = str(_field(config.map_password_path) or password)
    dns = _field(config.map_dns_path)
    expires_at = parse_expiration(_field(config.map_expiration_path)) or (
        now + timedelta(hours=config.default_duration_hours or 2)
    )
    credentials = TrialCredentials(
        username=final_username,
        password=final_password,
        expires_at=expires_at,
        client_name=f"{config.client_name_prefix or 'Teste'}{counter} - {final_username}",
        dns=str(dns) if dns else None,
        raw=body,
    )
    logger.info("Trial generated", extra={"context": {**log_context, "username": final_username}})

    _schedule_background(notify_client_registration(tenant_id, contact, credentials, config.category))
    return Result.success(credentials)


def _format_price(price: Decimal | float | None) -> str:
    value = Decimal(str(price or 0)).quantize(Decimal("0.01"))
    return f"{value:.2f}".replace(".", ",")


def fetch_plan_list(db: Session, tenant_id: UUID, limit: int = PLAN_LIST_LIMIT) -> str:
    plans = (
        db.query(Plan)
        .filter(Plan.tenant_id == tenant_id, Plan.is_active.is_(True))
        .order_by(Plan.price.asc())
        .limit(limit)
        .all()
    )
    if not plans:
        return NO_PLANS_MESSAGE

    lines = []
    for plan in plans:
        line = f"• *{plan.name}* - R$ {_format_price(plan.price)}"
        if plan.duration_days:
            line += f" ({plan.duration_days} dias)"
        lines.append(line)
        if plan.description:
            lines.append(f"  {plan.description}")
    return "\n".join(lines)


def request_human_handoff(tenant_id: UUID, contact: str, reason: str | None = None) -> None:
    """Flag the conversation for a human operator; the bot stops answering this contact."""
    context = {"tenant_id": str(tenant_id), "contact": mask_phone(contact), "reason": reason or "requested"}
    logger.info("Human handoff requested", extra={"context": context})
    send_alert("INFO", "Cliente aguardando atendente", context)
