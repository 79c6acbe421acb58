from fastapi import APIRouter, Depends, File, Response, UploadFile, status

from heatcare.core.config.settings import get_settings
from heatcare.core.exceptions import (
    AlreadyVerified, Exhausted, InvalidCode, InvalidUpload, NoActiveChallenge, PhoneRequired,
)
from heatcare.core.security.auth import get_current_user
from heatcare.dependencies.engines import get_invoice_engine, get_otp_engine, get_registry
from heatcare.models.heatmeter import HeatmeterClaim
from heatcare.models.user import User
from heatcare.schemas.heatmeter import (
    HeatmeterActionResponse, HeatmeterClaimRequest, HeatmeterClaimResponse, HeatmeterListResponse,
    HeatmeterResponse, InvoiceUploadResponse, OTPSentResponse, OTPVerifiedResponse, OTPVerifyRequest,
)
from heatcare.services.invoice import InvoiceOutcome, InvoiceVerificationEngine
from heatcare.services.otp import OTPChallengeEngine, OTPState
from heatcare.services.registry import HeatmeterRegistry
from heatcare.utils.helpers import is_valid_phone

router = APIRouter(prefix="/heatmeters", tags=["heatmeters"])

VERIFICATION_METHODS = ["otp", "invoice"]


def _unverified_claim(registry: HeatmeterRegistry, user: User, claim_id: int) -> HeatmeterClaim:
    claim = registry.get(user.id, claim_id)
    if claim.is_verified:
        raise AlreadyVerified(heatmeter=HeatmeterResponse.model_validate(claim).model_dump(mode="json"))
    return claim


def _require_phone(user: User) -> str:
    if not is_valid_phone(user.phone):
        raise PhoneRequired()
    return user.phone


@router.post("", response_model=HeatmeterClaimResponse)
def claim_heatmeter(
    request: HeatmeterClaimRequest,
    response: Response,
    current_user: User = Depends(get_current_user),
    registry: HeatmeterRegistry = Depends(get_registry),
):
    result = registry.claim(current_user.id, request.heatmeter_id.strip(), request.is_owner)
    if result.created:
        response.status_code = status.HTTP_201_CREATED
        message = "Heatmeter added successfully. Verification required."
    else:
        message = "Heatmeter already associated with your account"
    return {
        "message": message,
        "status": result.outcome.value,
        "heatmeter": result.claim,
        "requires_verification": not result.claim.is_verified,
        "verification_methods": [] if result.claim.is_verified else VERIFICATION_METHODS,
    }


@router.get("", response_model=HeatmeterListResponse)
def list_heatmeters(
    current_user: User = Depends(get_current_user),
    registry: HeatmeterRegistry = Depends(get_registry),
):
    return {"heatmeters": registry.list(current_user.id)}


@router.post("/{claim_id}/verify/otp/send", response_model=OTPSentResponse)
def send_otp(
    claim_id: int,
    current_user: User = Depends(get_current_user),
    registry: HeatmeterRegistry = Depends(get_registry),
    engine: OTPChallengeEngine = Depends(get_otp_engine),
):
    claim = _unverified_claim(registry, current_user, claim_id)
    phone = _require_phone(current_user)
    engine.send(current_user.id, claim.heatmeter_id, phone)
    return {"message": "OTP sent successfully", "expires_in_minutes": engine.expiry_minutes}


@router.post("/{claim_id}/verify/otp/resend", response_model=OTPSentResponse)
def resend_otp(
    claim_id: int,
    current_user: User = Depends(get_current_user),
    registry: HeatmeterRegistry = Depends(get_registry),
    engine: OTPChallengeEngine = Depends(get_otp_engine),
):
    claim = _unverified_claim(registry, current_user, claim_id)
    phone = _require_phone(current_user)
    engine.resend(current_user.id, claim.heatmeter_id, phone)
    return {"message": "OTP resent successfully", "expires_in_minutes": engine.expiry_minutes}


@router.post("/{claim_id}/verify/otp/verify", response_model=OTPVerifiedResponse)
def verify_otp(
    claim_id: int,
    request: OTPVerifyRequest,
    current_user: User = Depends(get_current_user),
    registry: HeatmeterRegistry = Depends(get_registry),
    engine: OTPChallengeEngine = Depends(get_otp_engine),
):
    claim = _unverified_claim(registry, current_user, claim_id)
    if engine.verify(current_user.id, claim.heatmeter_id, request.code):
        return {
            "message": "Heatmeter verified successfully",
            "heatmeter": registry.get(current_user.id, claim_id),
        }

    state = engine.challenge_state(current_user.id, claim.heatmeter_id)
    if state is OTPState.EXHAUSTED:
        raise Exhausted()
    if state is OTPState.SENT:
        raise InvalidCode(
            remaining_attempts=engine.remaining_attempts(current_user.id, claim.heatmeter_id)
        )
    raise NoActiveChallenge()


@router.post("/{claim_id}/verify/invoice", response_model=InvoiceUploadResponse)
def upload_invoice(
    claim_id: int,
    invoice: UploadFile = File(...),
    current_user: User = Depends(get_current_user),
    registry: HeatmeterRegistry = Depends(get_registry),
    engine: InvoiceVerificationEngine = Depends(get_invoice_engine),
):
    claim = _unverified_claim(registry, current_user, claim_id)

    max_size = get_settings().MAX_UPLOAD_SIZE
    # Read one byte past the limit so oversized files are caught without buffering them whole
    content = invoice.file.read(max_size + 1)
    if len(content) > max_size:
        raise InvalidUpload(f"File exceeds the {max_size // (1024 * 1024)}MB limit")

    result = engine.upload(
        current_user.id, claim.heatmeter_id, content, invoice.filename or "", invoice.content_type
    )
    if result.outcome is InvoiceOutcome.AUTO_VERIFIED:
        message = "Invoice verified successfully"
    else:
        message = "Invoice uploaded and queued for manual review"
    return {
        "message": message,
        "status": result.outcome.value,
        "heatmeter": registry.get(current_user.id, claim_id),
    }


@router.post("/{claim_id}/set-primary", response_model=HeatmeterActionResponse)
def set_primary(
    claim_id: int,
    current_user: User = Depends(get_current_user),
    registry: HeatmeterRegistry = Depends(get_registry),
):
    claim = registry.set_primary(current_user.id, claim_id)
    return {"message": "Primary heatmeter updated", "heatmeter": claim}


@router.delete("/{claim_id}")
def remove_heatmeter(
    claim_id: int,
    current_user: User = Depends(get_current_user),
    registry: HeatmeterRegistry = Depends(get_registry),
):
    registry.remove(current_user.id, claim_id)
    return {"message": "Heatmeter removed successfully", "status": "removed"}
