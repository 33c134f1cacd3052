"""AI rate-retry endpoints."""

import structlog
from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse

from rate_retry.processor import RateRetryProcessor

from ..auth import verify_worker_token

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/ai/chat/rate-retry")


@router.get("")
async def process_rate_retry(
    request: Request,
    _auth: None = Depends(verify_worker_token),
):
    """Drain the rate-retry queues once (called on a schedule)."""
    processor = RateRetryProcessor(queue=request.app.state.rate_retry_queue)
    result = await processor.process()
    if not result.success:
        return JSONResponse(status_code=500, content=result.to_dict())
    return result.to_dict()


@router.get("/{request_id}")
async def get_retry_response(
    request_id: str,
    request: Request,
    _auth: None = Depends(verify_worker_token),
):
    """Fetch the stored outcome of a retried request."""
    response = await request.app.state.rate_retry_queue.get_response(request_id)
    if response is None:
        raise HTTPException(status_code=404, detail="No response stored for this request")
    return response.model_dump(mode="json", by_alias=True, exclude_none=True)
