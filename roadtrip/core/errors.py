"""Engine error taxonomy and FastAPI handlers for it."""

import logging
from typing import Any, Dict, Optional
from uuid import uuid4

from fastapi import FastAPI
from fastapi.responses import JSONResponse
from starlette.requests import Request

from roadtrip.core.logging import get_request_id


class AppError(Exception):
    code = "app_error"
    status_code = 500

    def __init__(
        self,
        message: str,
        *,
        code: Optional[str] = None,
        status_code: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
        request_id: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        if status_code:
            self.status_code = status_code
        self.details = dict(details or {})
        self.request_id = request_id

    def to_payload(self, request_id: Optional[str] = None) -> dict:
        error = {
            "code": self.code,
            "message": self.message,
            "request_id": request_id or self.request_id,
        }
        if self.details:
            error["details"] = self.details
        return {"error": error, "detail": self.message}


class ValidationError(AppError, ValueError):
    code = "validation_error"
    status_code = 400


class InvalidPlanError(ValidationError):
    code = "invalid_plan"

    def __init__(self, plan: Any, **kwargs):
        super().__init__(f"Unknown plan: {plan!r}", details={"field": "plan", "value": str(plan)}, **kwargs)
        self.plan = plan


class NotFoundError(AppError, LookupError):
    code = "not_found"
    status_code = 404


class NoActiveSubscriptionError(NotFoundError):
    code = "no_active_subscription"

    def __init__(self, user_id: str, **kwargs):
        super().__init__(f"No active subscription for user {user_id}", details={"user_id": user_id}, **kwargs)
        self.user_id = user_id


class ConflictError(AppError):
    code = "conflict"
    status_code = 409


class NotActiveError(ConflictError):
    """Operation requires an active subscription record."""
    code = "subscription_not_active"


class QuotaExceededError(AppError):
    code = "quota_exceeded"
    status_code = 403

    def __init__(self, message: str, *, feature: str, limit: int, current: int, plan: Optional[str] = None, **kwargs):
        details = {"feature": feature, "limit": limit, "current": current, "plan": plan}
        super().__init__(message, details=details, **kwargs)
        self.feature = feature
        self.limit = limit
        self.current = current
        self.plan = plan


class SubscriptionRequiredError(AppError):
    code = "subscription_required"
    status_code = 402


class TransactionAbortedError(AppError):
    """Storage failed mid-unit; nothing from the unit was written."""
    code = "transaction_aborted"
    status_code = 500


def _extract_request_id(request: Request, fallback: Optional[str] = None) -> str:
    return (
        getattr(request.state, "request_id", None)
        or request.headers.get("x-request-id")
        or get_request_id()
        or fallback
        or str(uuid4())
    )


async def app_error_handler(request: Request, exc: AppError):
    rid = exc.request_id or _extract_request_id(request)
    logger = logging.getLogger("roadtrip")
    log_level = logging.ERROR if exc.status_code >= 500 else logging.WARNING
    logger.log(
        log_level,
        "app.error",
        extra={"request_id": rid, "error_code": exc.code, "error_message": exc.message, "status": exc.status_code},
    )
    response = JSONResponse(status_code=exc.status_code, content=exc.to_payload(rid))
    response.headers["x-request-id"] = rid
    return response


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AppError, app_error_handler)
