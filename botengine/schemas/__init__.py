from botengine.schemas.admin import SessionResponse
from botengine.schemas.intercept import ErrorResponse, InterceptRequest, InterceptResponse
from botengine.schemas.webhook import MessageOutcome, WebhookResponse

__all__ = [
    "InterceptRequest",
    "InterceptResponse",
    "ErrorResponse",
    "MessageOutcome",
    "WebhookResponse",
    "SessionResponse",
]
