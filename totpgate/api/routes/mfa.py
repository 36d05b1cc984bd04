"""
MFA Endpoints.

Provides TOTP enrollment, challenge issuance, response verification and
challenge completion. Handlers are plain functions because the stores block.
"""
import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Response, status

from ..models import (
    EnrollRequest,
    EnrollResponse,
    ChallengeResponse,
    VerifyRequest,
    VerifyResponse,
    CompleteRequest,
    ErrorResponse,
)
from ..deps import get_engine, get_session_context, get_owned_config
from ...auth.engine import MFAEngine
from ...auth.models import SessionContext, ValidationResult
from ...auth.validator import PROPERTY_TIMESTEP

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/mfa", tags=["MFA"])


def _raise_for_result(result: ValidationResult) -> None:
    """Map wait and error results onto HTTP errors."""
    if result.is_wait:
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail=result.error_message,
            headers={"Retry-After": str(result.wait_seconds)},
        )

    if not result.is_valid:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=result.error_message,
        )


@router.post(
    "/totp/enroll",
    response_model=EnrollResponse,
    responses={
        201: {"model": EnrollResponse, "description": "Factor enrolled"},
        401: {"model": ErrorResponse, "description": "Session required"},
    },
)
def enroll_totp(
    request: EnrollRequest,
    response: Response,
    session: SessionContext = Depends(get_session_context),
    engine: MFAEngine = Depends(get_engine),
):
    """
    Start or finish TOTP enrollment.

    Without a code, returns a secret (the submitted one if we issued it,
    otherwise a new one) and the QR code to scan. With a code, enrolls the
    factor if the code matches the secret.
    """
    if request.code is None:
        state = engine.begin_enrollment(session.user_id, request.secret)
        secret, provenance, error = state.secret, state.provenance, None
    else:
        result = engine.complete_enrollment(
            session.user_id,
            request.secret,
            request.code,
            factor_name=request.factor_name,
        )
        if result.config is not None:
            response.status_code = status.HTTP_201_CREATED
            return EnrollResponse(
                enrolled=True,
                config_id=result.config.config_id,
                factor_name=result.config.factor_name,
                provenance=result.provenance,
            )
        secret, provenance, error = result.secret, result.provenance, result.error_message

    hint = engine.enrollment_hint(request.account_name or session.user_id, secret)

    return EnrollResponse(
        enrolled=False,
        secret=secret.get_secret_value(),
        provenance=provenance,
        provisioning_uri=hint["provisioning_uri"],
        qr_code_base64=hint["qr_code_base64"],
        error=error,
    )


@router.post(
    "/factors/{config_id}/challenges",
    response_model=List[ChallengeResponse],
    responses={404: {"model": ErrorResponse, "description": "Factor not found"}},
)
def issue_challenges(
    config_id: str,
    session: SessionContext = Depends(get_session_context),
    engine: MFAEngine = Depends(get_engine),
):
    """
    Issue a challenge for the factor unless one is already live.

    Returns the newly issued challenges (empty if one was live).
    """
    config = get_owned_config(config_id, session, engine.store)
    issued = engine.issue_challenges(config, session)

    return [
        ChallengeResponse(
            challenge_id=challenge.challenge_id,
            timestep=challenge.challenge_key,
            expires_at=challenge.challenge_ttl,
            workflow_key=challenge.workflow_key,
        )
        for challenge in issued
    ]


@router.post(
    "/factors/{config_id}/verify",
    response_model=VerifyResponse,
    responses={
        400: {"model": ErrorResponse, "description": "Code required or invalid"},
        404: {"model": ErrorResponse, "description": "Factor not found"},
        429: {"model": ErrorResponse, "description": "Wait for the code to cycle"},
    },
)
def verify_response(
    request: VerifyRequest,
    config_id: str,
    session: SessionContext = Depends(get_session_context),
    engine: MFAEngine = Depends(get_engine),
):
    """
    Verify a TOTP code against the live challenge.

    On success, returns a response token that proves the answer for 60
    seconds (e.g. across a form re-post).
    """
    config = get_owned_config(config_id, session, engine.store)
    result = engine.validate_response(config, session, request.code, request.response_token)
    _raise_for_result(result)

    challenge = result.answered_challenge
    return VerifyResponse(
        challenge_id=challenge.challenge_id,
        response_token=result.response_token,
        timestep=challenge.properties.get(PROPERTY_TIMESTEP),
    )


@router.post(
    "/factors/{config_id}/complete",
    status_code=status.HTTP_204_NO_CONTENT,
    responses={
        400: {"model": ErrorResponse, "description": "No answered challenge"},
        429: {"model": ErrorResponse, "description": "Response already used"},
    },
)
def complete_challenge(
    request: CompleteRequest,
    config_id: str,
    session: SessionContext = Depends(get_session_context),
    engine: MFAEngine = Depends(get_engine),
):
    """
    Consume an answered challenge.

    After completion the same response can not be used again.
    """
    config = get_owned_config(config_id, session, engine.store)
    result = engine.complete_challenge(config, session, request.response_token)
    _raise_for_result(result)

    return Response(status_code=status.HTTP_204_NO_CONTENT)
