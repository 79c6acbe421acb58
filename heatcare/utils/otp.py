import secrets

OTP_MIN = 100000
OTP_MAX = 999999


def generate_otp_code() -> str:
    """Generate a six digit numeric code, uniformly drawn from 100000-999999"""
    return f"{OTP_MIN + secrets.randbelow(OTP_MAX - OTP_MIN + 1):06d}"

def generate_reference_token(length: int = 32) -> str:
    """Random opaque token used to reference invoice verifications"""
    return secrets.token_urlsafe(length)[:length]

def create_otp_message(otp: str, expiry_minutes: int = 10) -> str:
    """
    Create the SMS text carrying a verification code

    Args:
        otp: The one-time password
        expiry_minutes: Validity period in minutes

    Returns:
        Message body as string
    """
    return (
        f"Your verification code is: {otp}. "
        f"This code will expire in {expiry_minutes} minutes."
    )
