"""Password recovery router.

Public endpoints for the three recovery steps. Workflow errors are raised
as ``RecoveryError`` and rendered by the handler registered in
``recovery_api.main``.
"""

from fastapi import APIRouter, Depends, Request

from recovery_api.dependencies import get_workflow
from recovery_api.middleware.rate_limit import limiter, recovery_rate_limit
from recovery_api.schemas.recovery import (
    ErrorResponse,
    RequestCodeRequest,
    RequestCodeResponse,
    ResetPasswordRequest,
    ResetPasswordResponse,
    VerifyCodeRequest,
    VerifyCodeResponse,
)
from recovery_api.services.recovery import RecoveryWorkflow

router = APIRouter(prefix="/api/recovery", tags=["recovery"])


@router.post(
    "/request-code",
    response_model=RequestCodeResponse,
    response_model_exclude_none=True,
    responses={
        200: {"description": "Code sent, or identifier not found"},
        400: {"model": ErrorResponse, "description": "Invalid input or account state"},
        429: {"model": ErrorResponse, "description": "Rate limit exceeded"},
        500: {"model": ErrorResponse, "description": "Delivery or internal failure"},
    },
)
@limiter.shared_limit(recovery_rate_limit, scope="recovery")
async def request_code(
    request: Request,
    body: RequestCodeRequest,
    workflow: RecoveryWorkflow = Depends(get_workflow),
) -> RequestCodeResponse:
    """Send a 6-digit verification code to the user's WhatsApp number.

    Unknown identifiers get ``sent: false`` with a 200 so the response does
    not reveal whether the account exists.
    """
    result = await workflow.request_code(body.identifier)
    return RequestCodeResponse(
        message=result.message,
        sent=result.sent,
        expires_in=result.expires_in,
    )


@router.post(
    "/verify-code",
    response_model=VerifyCodeResponse,
    responses={
        400: {"model": ErrorResponse, "description": "Invalid, incorrect or expired code"},
        429: {"model": ErrorResponse, "description": "Attempts exhausted"},
        500: {"model": ErrorResponse, "description": "Internal failure"},
    },
)
@limiter.shared_limit(recovery_rate_limit, scope="recovery")
async def verify_code(
    request: Request,
    body: VerifyCodeRequest,
    workflow: RecoveryWorkflow = Depends(get_workflow),
) -> VerifyCodeResponse:
    """Exchange a valid code for a short-lived reset token."""
    result = await workflow.verify_code(body.identifier, body.code)
    return VerifyCodeResponse(
        message=result.message,
        reset_token=result.reset_token,
        expires_in=result.expires_in,
    )


@router.post(
    "/reset-password",
    response_model=ResetPasswordResponse,
    responses={
        400: {"model": ErrorResponse, "description": "Invalid input or token"},
        429: {"model": ErrorResponse, "description": "Rate limit exceeded"},
        500: {"model": ErrorResponse, "description": "Password update failed"},
    },
)
@limiter.shared_limit(recovery_rate_limit, scope="recovery")
async def reset_password(
    request: Request,
    body: ResetPasswordRequest,
    workflow: RecoveryWorkflow = Depends(get_workflow),
) -> ResetPasswordResponse:
    """Set a new password using the reset token from verify-code.

    All sessions of the user are closed after a successful change.
    """
    result = await workflow.reset_password(
        body.identifier, body.reset_token, body.new_password
    )
    return ResetPasswordResponse(message=result.message, success=result.success)
