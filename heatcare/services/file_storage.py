import logging
import os
import uuid
from typing import Optional, Tuple

from heatcare.core.config.settings import get_settings
from heatcare.utils.helpers import sanitize_filename

logger = logging.getLogger(__name__)

class FileStorage:
    def __init__(self, upload_dir: Optional[str] = None, max_size: Optional[int] = None):
        settings = get_settings()
        self.upload_dir = upload_dir or settings.UPLOAD_DIR
        self.max_size = max_size or settings.MAX_UPLOAD_SIZE
        self.allowed_extensions = settings.ALLOWED_EXTENSIONS
        self.allowed_content_types = settings.ALLOWED_CONTENT_TYPES

        # Create upload directory if it doesn't exist
        os.makedirs(self.upload_dir, exist_ok=True)

    def _get_file_extension(self, filename: str) -> str:
        return os.path.splitext(filename)[1].lower()

    def is_allowed_file(self, filename: str) -> bool:
        return self._get_file_extension(filename) in self.allowed_extensions

    def validate(self, content: bytes, filename: str, content_type: Optional[str]) -> Optional[str]:
        """Return why the upload is rejected, or None when it is acceptable"""
        if not filename or not self.is_allowed_file(filename):
            return "File type not allowed"
        if content_type and content_type.split(";")[0].strip().lower() not in self.allowed_content_types:
            return "File type not allowed"
        if not content:
            return "File is empty"
        if len(content) > self.max_size:
            return f"File exceeds the {self.max_size // (1024 * 1024)}MB limit"
        return None

    def save_bytes(self, content: bytes, filename: str, content_type: Optional[str] = None,
                   subfolder: Optional[str] = None) -> Tuple[bool, str]:
        """
        Validate and save an uploaded file to the storage system

        Args:
            content: The file body
            filename: Name the client uploaded it under
            content_type: MIME type the client declared
            subfolder: Optional subfolder within uploads directory

        Returns:
            Tuple of (success, stored path relative to the upload dir or error message)
        """
        error = self.validate(content, filename, content_type)
        if error:
            return False, error

        # Generate unique filename
        unique_filename = f"{uuid.uuid4()}_{sanitize_filename(filename)}"
        relative_path = os.path.join(subfolder, unique_filename) if subfolder else unique_filename

        try:
            full_path = self.full_path(relative_path)
            os.makedirs(os.path.dirname(full_path), exist_ok=True)
            with open(full_path, "wb") as buffer:
                buffer.write(content)
        except OSError as e:
            logger.error(f"Failed to store upload {relative_path}: {e}")
            return False, str(e)

        return True, relative_path

    def full_path(self, relative_path: str) -> str:
        return os.path.join(self.upload_dir, relative_path)

    def delete_file(self, relative_path: str) -> bool:
        """
        Delete a file from storage

        Args:
            relative_path: Path returned by save_bytes

        Returns:
            True if deletion was successful, False otherwise
        """
        try:
            file_path = self.full_path(relative_path)
            if os.path.exists(file_path):
                os.remove(file_path)
                return True
            return False
        except OSError as e:
            logger.error(f"Failed to delete upload {relative_path}: {e}")
            return False
