"""
Pydantic Models for the TOTPGATE API.

Request and response models for the MFA endpoints.
"""
from datetime import datetime
from typing import Optional, Dict
from pydantic import BaseModel, Field, ConfigDict


# ============================================
# Enrollment Models
# ============================================

class EnrollRequest(BaseModel):
    """
    TOTP enrollment request.

    Send without ``code`` to start enrollment and receive a secret. Send the
    secret back together with the code shown by the authenticator app to
    finish enrollment.
    """
    secret: Optional[str] = Field(None, description="Secret returned by a previous enroll call")
    code: Optional[str] = Field(None, max_length=16, description="6-digit code from the authenticator app")
    factor_name: Optional[str] = Field(None, max_length=255, description="Label for the enrolled factor")
    account_name: Optional[str] = Field(None, max_length=255, description="Account label shown in the app")

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "secret": "JBSWY3DPEHPK3PXPJBSWY3DPEHPK3PXP",
                "code": "123456",
                "factor_name": "Work phone"
            }
        }
    )


class EnrollResponse(BaseModel):
    """Enrollment state, or the enrolled factor on success."""
    enrolled: bool
    config_id: Optional[str] = None
    factor_name: Optional[str] = None
    secret: Optional[str] = Field(None, description="Secret to add to the authenticator app")
    provenance: Optional[str] = Field(None, description="verified or generated")
    provisioning_uri: Optional[str] = None
    qr_code_base64: Optional[str] = None
    error: Optional[str] = Field(None, description="Required or Invalid")


# ============================================
# Challenge Models
# ============================================

class ChallengeResponse(BaseModel):
    """An issued challenge."""
    challenge_id: str
    timestep: int
    expires_at: int = Field(..., description="Epoch seconds")
    workflow_key: str


class VerifyRequest(BaseModel):
    """Response to the live challenge."""
    code: Optional[str] = Field(None, max_length=16, description="6-digit code from the authenticator app")
    response_token: Optional[str] = Field(None, max_length=128, description="Token from an earlier successful verify")


class VerifyResponse(BaseModel):
    """Successful verification."""
    challenge_id: str
    response_token: str = Field(..., description="Proof of answer, valid for 60 seconds")
    timestep: Optional[int] = None


class CompleteRequest(BaseModel):
    """Consume an answered challenge."""
    response_token: str = Field(..., min_length=1, max_length=128)


# ============================================
# Health Models
# ============================================

class HealthStatus(BaseModel):
    """Health check response."""
    status: str = Field(..., description="healthy or unhealthy")
    version: str
    services: Dict[str, str]
    timestamp: datetime


# ============================================
# Error Models
# ============================================

class ErrorResponse(BaseModel):
    """
    Standard error response.

    All API errors return this format with an error message,
    optional detail, and error code for programmatic handling.
    """
    error: str = Field(..., description="Error type/summary")
    detail: Optional[str] = Field(None, description="Detailed error message")
    code: Optional[str] = Field(None, description="Error code for programmatic handling")
