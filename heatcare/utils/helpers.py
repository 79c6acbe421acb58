from datetime import datetime, timezone
import re

# Kosovo: +383 followed by 8-9 digits, Albania: +355 followed by 9 digits
PHONE_PATTERN = re.compile(r'^(\+383[0-9]{8,9}|\+355[0-9]{9})$')

def get_utc_now() -> datetime:
    """Get current UTC datetime, naive, as stored in the database"""
    return datetime.now(timezone.utc).replace(tzinfo=None)

def is_valid_phone(phone: str) -> bool:
    """Check a phone number against the Kosovo/Albania formats"""
    return bool(phone and PHONE_PATTERN.match(phone))

def sanitize_filename(filename: str) -> str:
    """
    Sanitize a filename by removing invalid characters

    Args:
        filename: Original filename

    Returns:
        Sanitized filename
    """
    # Drop any directory part the client sent
    filename = filename.replace("\\", "/").rsplit("/", 1)[-1]
    # Remove invalid characters
    filename = re.sub(r'[<>:"/\\|?*]', '', filename)
    # Remove control characters
    filename = "".join(char for char in filename if ord(char) >= 32)
    return filename.strip()
