from typing import Optional

from pydantic import AliasChoices, BaseModel, Field


class InterceptRequest(BaseModel):
    tenant_id: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("tenant_id", "tenantId", "seller_id"),
    )
    sender_phone: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("sender_phone", "senderPhone", "phone"),
    )
    message_text: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("message_text", "messageText", "message"),
    )
    instance_name: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("instance_name", "instanceName"),
    )
    message_id: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("message_id", "messageId"),
    )


class InterceptResponse(BaseModel):
    intercepted: bool
    should_continue: bool
    response: Optional[str] = None
    new_state: Optional[str] = None
    deduplicated: bool = False
    reason: Optional[str] = None


class ErrorResponse(BaseModel):
    error: str
    detail: Optional[str] = None
