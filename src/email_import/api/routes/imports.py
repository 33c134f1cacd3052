"""Email import endpoints."""

import structlog
from fastapi import APIRouter, Depends, Header, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from email_import.clients.gmail_client import GmailClient
from email_import.errors import ImportSourceError, is_known_source_error
from email_import.manager import DefaultImportManager
from email_import.models.message import ImportResponse
from email_import.repository import StagingRepository
from email_import.stages.manager_map import manager_map_factory

from ..auth import verify_worker_token

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/email/import")

SOURCE_ERROR_STATUS = {
    "unauthorized": 401,
    "invalid-args": 400,
    "email-not-found": 404,
    "source-not-found": 404,
    "email-exists": 409,
    "gmail-failure": 500,
    "unknown-error": 500,
}


class ImportEmailRequest(BaseModel):
    email_id: str = Field(..., min_length=1, description="Provider message id or RFC 822 Message-ID")
    user_id: int | None = None


def status_for_error(error: BaseException | None) -> int:
    """HTTP status for a failed import."""
    if error is not None and is_known_source_error(error):
        return SOURCE_ERROR_STATUS[error.cause]
    return 500


def _error_response(error: ImportSourceError) -> JSONResponse:
    response = ImportResponse(success=False, message=error.message, error=error)
    return JSONResponse(status_code=status_for_error(error), content=response.to_dict())


@router.post("/{provider}")
async def import_email(
    provider: str,
    body: ImportEmailRequest,
    request: Request,
    x_provider_token: str | None = Header(default=None),
    _auth: None = Depends(verify_worker_token),
):
    """Import one provider message for a user."""
    log = logger.bind(provider=provider, email_id=body.email_id, user_id=body.user_id)
    log.info("import.received")

    try:
        gmail = GmailClient(access_token=x_provider_token or "")
    except ImportSourceError as e:
        return _error_response(e)

    async with gmail:
        try:
            manager = DefaultImportManager(
                provider,
                postgres_client=request.app.state.postgres,
                gmail_client=gmail,
            )
        except ImportSourceError as e:
            return _error_response(e)
        result = await manager.import_email(body.email_id, user_id=body.user_id)

    if result.success:
        log.info("import.succeeded")
        return result.to_dict()

    status_code = status_for_error(result.error)
    log.error("import.failed", status_code=status_code, error=result.message)
    return JSONResponse(status_code=status_code, content=result.to_dict())


@router.get("/{provider}/{email_id}/status")
async def import_status(
    provider: str,
    email_id: str,
    request: Request,
    _auth: None = Depends(verify_worker_token),
):
    """Whether a provider message is pending, being imported, or imported."""
    try:
        manager_map_factory(provider)
    except ImportSourceError as e:
        return _error_response(e)
    status, imported_id = await StagingRepository(request.app.state.postgres).get_import_status(email_id)
    return {"provider": provider, "providerId": email_id, "status": status.value, "emailId": imported_id}
