"""Replay support for mutating endpoints sent with an Idempotency-Key header."""

import logging
from collections.abc import Awaitable, Callable
from typing import Any

from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.config import settings
from ..core.exceptions import ProblemDetailsException
from ..services.idempotency_service import IdempotencyService

logger = logging.getLogger(__name__)


async def handle_idempotent_operation(
    operation: str,
    idempotency_key: str | None,
    user_id: str,
    request_body: dict[str, Any],
    operation_func: Callable[[], Awaitable[dict[str, Any]]],
    db: AsyncSession,
) -> JSONResponse:
    """
    Run ``operation_func`` once per idempotency key.

    Without a key the operation simply runs. With one, a stored response is
    replayed as-is; business rejections are stored too, while retryable
    failures are not so the client can try again with the same key.
    """
    if not idempotency_key:
        return JSONResponse(status_code=200, content=await operation_func())

    idempotency_service = IdempotencyService(db)

    cached_response = await idempotency_service.check_idempotency(
        idempotency_key=idempotency_key,
        operation=operation,
        user_id=user_id,
        request_body=request_body,
    )
    if cached_response:
        status_code, response_body = cached_response
        media_type = "application/problem+json" if status_code >= 400 else "application/json"
        return JSONResponse(status_code=status_code, content=response_body, media_type=media_type)

    try:
        response_body = await operation_func()
    except ProblemDetailsException as e:
        if not e.retryable and e.status_code < 500:
            await idempotency_service.store_response(
                idempotency_key=idempotency_key,
                operation=operation,
                user_id=user_id,
                request_body=request_body,
                status_code=e.status_code,
                response_body=e.problem_details,
                ttl_hours=settings.idempotency_ttl_hours,
            )
        raise

    await idempotency_service.store_response(
        idempotency_key=idempotency_key,
        operation=operation,
        user_id=user_id,
        request_body=request_body,
        status_code=200,
        response_body=response_body,
        ttl_hours=settings.idempotency_ttl_hours,
    )
    return JSONResponse(status_code=200, content=response_body)
