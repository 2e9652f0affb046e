from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel


class SessionResponse(BaseModel):
    contact_id: str
    tenant_id: str
    state: str
    previous_state: Optional[str] = None
    stack: list[str] = []
    context: dict[str, Any] = {}
    locked: bool
    last_interaction: Optional[datetime] = None
