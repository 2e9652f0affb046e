from typing import Optional

from pydantic import BaseModel


class MessageOutcome(BaseModel):
    phone: str
    from_me: bool = False
    intercepted: bool = False
    sent: bool = False
    deduplicated: bool = False
    reason: Optional[str] = None


class WebhookResponse(BaseModel):
    success: bool
    event: str
    instance: Optional[str] = None
    results: list[MessageOutcome] = []
