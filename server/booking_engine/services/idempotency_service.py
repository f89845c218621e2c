"""Idempotency service for replaying mutating booking requests."""

import hashlib
import json
import logging
from datetime import timedelta
from typing import Any

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.clock import utcnow
from ..core.database import datastore_guard
from ..core.exceptions import PROBLEM_BASE_URI, ProblemDetailsException
from ..models.idempotency import IdempotencyRecord

logger = logging.getLogger(__name__)


class IdempotencyMismatchError(ProblemDetailsException):
    """Exception when idempotency key is reused with different request body."""

    def __init__(self, idempotency_key: str, operation: str):
        super().__init__(
            status_code=422,
            title="Idempotency Key Mismatch",
            detail=f"Idempotency key '{idempotency_key}' was already used for '{operation}' with a different request body",
            type_uri=f"{PROBLEM_BASE_URI}/idempotency-key-mismatch",
            extensions={
                "code": "IDEMPOTENCY_KEY_MISMATCH",
                "retryable": False,
                "idempotency_key": idempotency_key,
                "operation": operation,
            },
        )


class IdempotencyService:
    """Stores and replays responses keyed by (Idempotency-Key, operation, user)."""

    def __init__(self, db: AsyncSession):
        self.db = db

    def _compute_request_hash(self, request_body: dict[str, Any]) -> str:
        """Compute SHA-256 hash of normalized request body."""
        normalized = json.dumps(request_body, sort_keys=True, separators=(',', ':'), default=str)
        return hashlib.sha256(normalized.encode('utf-8')).hexdigest()

    async def check_idempotency(
        self,
        idempotency_key: str,
        operation: str,
        user_id: str,
        request_body: dict[str, Any],
    ) -> tuple[int, dict[str, Any]] | None:
        """
        Return the stored response for a replayed request.

        Returns:
            Tuple of (status_code, response_body) if a response was stored,
            None if this is a new request

        Raises:
            IdempotencyMismatchError: If key exists with different request body
        """
        request_hash = self._compute_request_hash(request_body)

        stmt = select(IdempotencyRecord).where(
            IdempotencyRecord.idempotency_key == idempotency_key,
            IdempotencyRecord.operation == operation,
            IdempotencyRecord.user_id == user_id,
            IdempotencyRecord.expires_at > utcnow(),
        )

        async with datastore_guard("load idempotency record"):
            existing_record = (await self.db.execute(stmt)).scalar_one_or_none()

        if existing_record is None:
            return None

        if existing_record.request_body_hash != request_hash:
            logger.warning(
                "Idempotency key mismatch",
                extra={
                    "idempotency_key": idempotency_key,
                    "operation": operation,
                    "existing_hash": existing_record.request_body_hash[:8],
                    "new_hash": request_hash[:8]
                }
            )
            raise IdempotencyMismatchError(idempotency_key, operation)

        logger.info(
            "Returning cached idempotent response",
            extra={
                "idempotency_key": idempotency_key,
                "operation": operation,
                "status_code": existing_record.response_status_code,
            }
        )

        return existing_record.response_status_code, json.loads(existing_record.response_body)

    async def store_response(
        self,
        idempotency_key: str,
        operation: str,
        user_id: str,
        request_body: dict[str, Any],
        status_code: int,
        response_body: dict[str, Any],
        ttl_hours: int = 24
    ) -> None:
        """Store the response of a completed operation for later replays."""
        expires_at = utcnow() + timedelta(hours=ttl_hours)

        record = IdempotencyRecord(
            idempotency_key=idempotency_key,
            operation=operation,
            user_id=user_id,
            request_body_hash=self._compute_request_hash(request_body),
            response_status_code=status_code,
            response_body=json.dumps(response_body, sort_keys=True, separators=(',', ':'), default=str),
            expires_at=expires_at
        )

        try:
            async with datastore_guard("store idempotency record"):
                self.db.add(record)
                await self.db.commit()

            logger.info(
                "Stored idempotency record",
                extra={
                    "idempotency_key": idempotency_key,
                    "operation": operation,
                    "status_code": status_code,
                    "expires_at": expires_at.isoformat()
                }
            )

        except IntegrityError as e:
            # A concurrent request stored the same key first
            await self.db.rollback()
            logger.info(
                "Idempotency record already exists (race condition)",
                extra={
                    "idempotency_key": idempotency_key,
                    "operation": operation,
                    "error": str(e)
                }
            )

    async def cleanup_expired_records(self) -> int:
        """
        Delete expired idempotency records.

        Returns:
            Number of records deleted
        """
        stmt = delete(IdempotencyRecord).where(IdempotencyRecord.expires_at <= utcnow())

        async with datastore_guard("purge idempotency records"):
            result = await self.db.execute(stmt)
            await self.db.commit()

        deleted_count = result.rowcount or 0
        if deleted_count > 0:
            logger.info(
                "Cleaned up expired idempotency records",
                extra={"deleted_count": deleted_count}
            )

        return deleted_count
