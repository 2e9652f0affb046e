"""Normalize heterogeneous Evolution gateway webhook payloads.

Payload shapes drift between gateway versions and event types, so every
accessor here walks a list of candidate paths and returns ``None`` (or an empty
string for text) instead of raising when nothing matches.
"""

import re
from dataclasses import dataclass
from typing import Any, Iterator

from botengine.logging_config import get_logger, mask_phone

logger = get_logger("wire_extractor")

EVENT_ALIASES = {
    "messages_upsert": "messages.upsert",
    "connection_update": "connection.update",
    "qrcode_updated": "qrcode.updated",
    "instance_ready": "instance.ready",
    "connection_lost": "connection.lost",
    "logout": "logout",
}

INSTANCE_NAME_PATHS = (
    ("instance",),
    ("instance", "instanceName"),
    ("instance", "name"),
    ("data", "instance", "instanceName"),
    ("data", "instance", "name"),
    ("data", "instance"),
    ("instanceName",),
    ("data", "instanceName"),
    ("sender", "instance"),
    ("server", "instanceName"),
    ("destination", "instanceName"),
    ("source", "instance"),
)

ENVELOPE_KEYS = (
    "ephemeralMessage",
    "viewOnceMessage",
    "viewOnceMessageV2",
    "viewOnceMessageV2Extension",
    "documentWithCaptionMessage",
)

CONTENT_TEXT_PATHS = (
    ("conversation",),
    ("extendedTextMessage", "text"),
    ("imageMessage", "caption"),
    ("videoMessage", "caption"),
    ("documentMessage", "caption"),
    ("buttonsResponseMessage", "selectedDisplayText"),
    ("buttonsResponseMessage", "selectedButtonId"),
    ("listResponseMessage", "singleSelectReply", "selectedRowId"),
    ("listResponseMessage", "title"),
    ("templateButtonReplyMessage", "selectedDisplayText"),
    ("templateButtonReplyMessage", "selectedId"),
)

FLAT_TEXT_KEYS = ("messageBody", "body", "text")

JID_SUFFIXES = ("@s.whatsapp.net", "@c.us", "@lid")
GROUP_MARKER = "@g.us"
MIN_PHONE_DIGITS = 10
MAX_PHONE_DIGITS = 15


@dataclass
class WireMessage:
    sender_phone: str
    text: str
    from_me: bool
    remote_jid: str
    message_id: str | None = None


def _dig(data: Any, path: tuple[str, ...]) -> Any:
    current = data
    for key in path:
        if not isinstance(current, dict):
            return None
        current = current.get(key)
    return current


def normalize_event_name(raw: Any) -> str:
    """Map gateway event names (``MESSAGES_UPSERT``, ``messages-upsert``...) to dot-lowercase."""
    event = str(raw or "").strip()
    if not event:
        return ""
    lowered = event.lower()
    if "." in lowered:
        return lowered
    key = re.sub(r"\s+", "", lowered).replace("-", "_")
    return EVENT_ALIASES.get(key, key.replace("_", "."))


def extract_instance_name(body: Any) -> str | None:
    for path in INSTANCE_NAME_PATHS:
        value = _dig(body, path)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


def _is_message_record(value: Any) -> bool:
    return isinstance(value, dict) and ("key" in value or "remoteJid" in value)


def extract_message_records(body: Any) -> list[dict]:
    """Return the message records carried by a ``messages.upsert`` event."""
    if not isinstance(body, dict):
        return []
    event_data = body.get("data") if isinstance(body.get("data"), dict) else body
    if _is_message_record(event_data):
        return [event_data]

    candidates = (
        _dig(event_data, ("messages",)),
        _dig(event_data, ("data", "messages")),
        _dig(event_data, ("message",)),
        _dig(event_data, ("data", "message")),
        body.get("messages"),
        body.get("message"),
    )
    for raw in candidates:
        if isinstance(raw, list):
            return [item for item in raw if isinstance(item, dict)]
        if _is_message_record(raw):
            return [raw]
    return []


def unwrap_message(content: Any) -> Any:
    """Peel one ephemeral/view-once/document-with-caption envelope."""
    if not isinstance(content, dict):
        return content
    for key in ENVELOPE_KEYS:
        inner = _dig(content, (key, "message"))
        if isinstance(inner, dict):
            return inner
    return content


def extract_message_text(record: Any) -> str:
    if not isinstance(record, dict):
        return ""

    nested = unwrap_message(record.get("message"))
    direct = unwrap_message(record)
    for source in (nested, direct):
        for path in CONTENT_TEXT_PATHS:
            value = _dig(source, path)
            if isinstance(value, str) and value:
                return value

    for key in FLAT_TEXT_KEYS:
        value = record.get(key)
        if isinstance(value, str) and value:
            return value
    if isinstance(record.get("message"), str):
        return record["message"]
    return ""


def normalize_jid_to_phone(jid: Any) -> str | None:
    """Strip WhatsApp JID suffixes and accept only 10-15 digit phone numbers."""
    if not jid:
        return None
    raw = str(jid)
    for suffix in JID_SUFFIXES:
        raw = raw.replace(suffix, "")
    digits = re.sub(r"\D", "", raw)
    if MIN_PHONE_DIGITS <= len(digits) <= MAX_PHONE_DIGITS:
        return digits
    return None


def get_remote_jid(record: dict) -> str:
    return str(_dig(record, ("key", "remoteJid")) or record.get("remoteJid") or "")


def is_from_me(record: dict) -> bool:
    return _dig(record, ("key", "fromMe")) is True or record.get("fromMe") is True


def is_group_jid(jid: str | None) -> bool:
    return bool(jid) and GROUP_MARKER in jid


def extract_sender_phone(record: dict, body: Any = None, instance_phone: str | None = None) -> str | None:
    """Resolve the contact's phone for a one-to-one message record.

    For inbound messages the conversation JID names the contact and is tried
    first; for our own outbound messages it names the recipient, which is the
    contact as well. The instance's own number is never returned.
    """
    remote_jid = get_remote_jid(record)
    if is_group_jid(remote_jid):
        return None

    if is_from_me(record):
        candidates = [_dig(record, ("key", "remoteJid")), record.get("remoteJid")]
    else:
        candidates = [
            _dig(record, ("key", "remoteJid")),
            record.get("remoteJid"),
            _dig(record, ("key", "participantAlt")),
            record.get("participantAlt"),
            _dig(body, ("data", "sender")),
            _dig(body, ("sender",)),
        ]

    for candidate in candidates:
        phone = normalize_jid_to_phone(candidate)
        if not phone:
            continue
        if instance_phone and phone == instance_phone:
            logger.info(
                "Skipping phone candidate equal to instance phone",
                extra={"context": {"phone": mask_phone(phone)}},
            )
            continue
        return phone
    return None


def extract_inbound_messages(body: Any, instance_phone: str | None = None) -> Iterator[WireMessage]:
    """Yield normalized one-to-one messages; groups and unresolvable senders are dropped."""
    for record in extract_message_records(body):
        remote_jid = get_remote_jid(record)
        if is_group_jid(remote_jid):
            logger.debug(f"Ignoring group message from {remote_jid}")
            continue

        phone = extract_sender_phone(record, body, instance_phone)
        if not phone:
            logger.warning(
                "Could not extract sender phone",
                extra={
                    "context": {
                        "remote_jid": remote_jid[:30],
                        "participant_alt": str(_dig(record, ("key", "participantAlt")) or "")[:30],
                        "from_me": is_from_me(record),
                    }
                },
            )
            continue

        yield WireMessage(
            sender_phone=phone,
            text=extract_message_text(record),
            from_me=is_from_me(record),
            remote_jid=remote_jid,
            message_id=_dig(record, ("key", "id")),
        )
