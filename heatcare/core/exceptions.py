from typing import Any, Dict, Optional

from fastapi import status


class VerificationError(Exception):
    """Base for every outcome the verification core reports as an error.

    ``code`` is the machine readable outcome echoed to API clients,
    ``status_code`` the HTTP status the API layer answers with.
    """

    code = "verification_error"
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Verification failed"

    def __init__(self, message: Optional[str] = None, **extra: Any):
        self.message = message or self.default_message
        self.extra = extra
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {"detail": self.message, "code": self.code, **self.extra}


class NotFound(VerificationError):
    code = "not_found"
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Heatmeter not found"


class AlreadyVerified(VerificationError):
    # Benign: the API layer answers 200 so repeated requests stay idempotent
    code = "already_verified"
    status_code = status.HTTP_200_OK
    default_message = "Heatmeter already verified"


class RateLimited(VerificationError):
    code = "rate_limited"
    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    default_message = "Please wait before requesting a new code"

    def __init__(self, retry_after: int, message: Optional[str] = None):
        self.retry_after = retry_after
        super().__init__(
            message or f"Please wait {retry_after} seconds before requesting a new code.",
            retry_after=retry_after,
        )


class DeliveryFailed(VerificationError):
    code = "delivery_failed"
    status_code = status.HTTP_502_BAD_GATEWAY
    default_message = "Failed to send OTP. Please try again."


class NotVerified(VerificationError):
    code = "not_verified"
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    default_message = "Heatmeter must be verified first"


class PrimaryClaimProtected(VerificationError):
    code = "primary_claim_protected"
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    default_message = "Cannot remove primary heatmeter. Set another as primary first."


class Exhausted(VerificationError):
    code = "exhausted"
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    default_message = "Too many attempts. Please request a new code."


class InvalidCode(VerificationError):
    code = "invalid_code"
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    default_message = "Invalid OTP code"


class NoActiveChallenge(VerificationError):
    code = "no_active_challenge"
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    default_message = "Invalid or expired OTP code. Please request a new one."


class PhoneRequired(VerificationError):
    code = "phone_required"
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    default_message = "Phone number required for OTP verification"


class InvalidUpload(VerificationError):
    code = "invalid_upload"
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    default_message = "File type not allowed"


class UploadFailed(VerificationError):
    code = "upload_failed"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message = "Failed to store the uploaded invoice"


# Raised by collaborators; engines translate these and never let them escape.

class SMSDeliveryError(Exception):
    pass


class OCRError(Exception):
    pass
