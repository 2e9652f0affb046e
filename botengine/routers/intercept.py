from uuid import UUID

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from sqlalchemy.orm import Session

from botengine.database import get_db
from botengine.logging_config import get_logger
from botengine.schemas.intercept import ErrorResponse, InterceptRequest, InterceptResponse
from botengine.services.intercept_service import intercept_message

logger = get_logger("intercept_router")

router = APIRouter(prefix="/bot-engine", tags=["bot-engine"])


def _bad_request(error: str, detail: str | None = None) -> JSONResponse:
    logger.warning(f"Intercept request rejected: {error}", extra={"context": {"detail": detail}})
    return JSONResponse(status_code=400, content=ErrorResponse(error=error, detail=detail).model_dump())


@router.post("/intercept", response_model=InterceptResponse, responses={400: {"model": ErrorResponse}})
async def intercept(request: Request, db: Session = Depends(get_db)):
    try:
        payload = await request.json()
    except ValueError:
        return _bad_request("invalid_json")
    if not isinstance(payload, dict):
        return _bad_request("invalid_json")

    try:
        data = InterceptRequest.model_validate(payload)
    except ValidationError as exc:
        return _bad_request("invalid_payload", str(exc.errors()[:1]))

    if not data.tenant_id:
        return _bad_request("missing_tenant_id")
    try:
        tenant_id = UUID(str(data.tenant_id))
    except ValueError:
        return _bad_request("invalid_tenant_id", "tenant_id must be a UUID")
    if not data.sender_phone or data.message_text is None:
        return _bad_request("missing_fields", "sender_phone and message_text are required")

    result = await intercept_message(
        db,
        tenant_id=tenant_id,
        sender_phone=data.sender_phone,
        message_text=data.message_text,
        instance_name=data.instance_name,
        message_id=data.message_id,
    )
    return InterceptResponse(**result.to_dict())
