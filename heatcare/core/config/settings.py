from pydantic_settings import BaseSettings
from functools import lru_cache
from typing import Optional

class Settings(BaseSettings):
    # Database settings
    DATABASE_URL: str = "sqlite:///./heatcare.db"

    # JWT settings
    SECRET_KEY: str = "change-me"
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60

    # Heatmeter verification settings
    OTP_EXPIRY_MINUTES: int = 10
    OTP_MAX_ATTEMPTS: int = 3
    OTP_RESEND_COOLDOWN_SECONDS: int = 60
    INVOICE_VERIFICATION_EXPIRY_DAYS: int = 7

    # SMS settings
    SMS_ENABLED: bool = True
    SMS_PROVIDER: str = "log"  # log or twilio
    SMS_TIMEOUT_SECONDS: int = 10
    TWILIO_ACCOUNT_SID: Optional[str] = None
    TWILIO_AUTH_TOKEN: Optional[str] = None
    TWILIO_FROM_NUMBER: Optional[str] = None

    # OCR settings
    OCR_PROVIDER: str = "tesseract"  # tesseract or disabled
    TESSERACT_CMD: Optional[str] = None
    OCR_LANGUAGES: str = "sqi+eng"
    OCR_TIMEOUT_SECONDS: int = 30

    # File upload settings
    UPLOAD_DIR: str = "uploads"
    MAX_UPLOAD_SIZE: int = 5_242_880  # 5MB in bytes
    ALLOWED_EXTENSIONS: set = {'.pdf', '.png', '.jpg', '.jpeg'}
    ALLOWED_CONTENT_TYPES: set = {'application/pdf', 'image/png', 'image/jpeg'}

    # API settings
    API_V1_PREFIX: str = "/api/v1"
    PROJECT_NAME: str = "Heatcare Self-Care API"
    DEBUG: bool = False
    CORS_ORIGINS: list = ["*"]
    LOG_DIR: str = "logs"

    # Global request limiting (per client IP), active only with Redis
    REDIS_URL: Optional[str] = None
    REQUESTS_PER_MINUTE: int = 100

    class Config:
        env_file = ".env"
        case_sensitive = True

@lru_cache()
def get_settings() -> Settings:
    """
    Get settings instance with caching
    Returns:
        Settings instance
    """
    return Settings()
