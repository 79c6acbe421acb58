from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from heatcare.models.heatmeter import VerificationMethod

class HeatmeterClaimRequest(BaseModel):
    heatmeter_id: str = Field(..., min_length=1, max_length=100)
    is_owner: bool = True

class HeatmeterResponse(BaseModel):
    id: int
    heatmeter_id: str
    is_owner: bool
    is_primary: bool
    is_verified: bool
    verified_at: Optional[datetime] = None
    verification_method: Optional[VerificationMethod] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)

class HeatmeterClaimResponse(BaseModel):
    message: str
    status: str  # created or already_exists
    heatmeter: HeatmeterResponse
    requires_verification: bool
    verification_methods: List[str] = []

class HeatmeterListResponse(BaseModel):
    heatmeters: List[HeatmeterResponse]

class HeatmeterActionResponse(BaseModel):
    message: str
    heatmeter: HeatmeterResponse

class OTPVerifyRequest(BaseModel):
    code: str = Field(..., pattern=r"^\d{6}$")

class OTPSentResponse(BaseModel):
    message: str
    status: str = "sent"
    expires_in_minutes: int

class OTPVerifiedResponse(BaseModel):
    message: str
    status: str = "verified"
    heatmeter: HeatmeterResponse

class InvoiceUploadResponse(BaseModel):
    message: str
    status: str  # auto_verified or pending_review
    heatmeter: HeatmeterResponse
