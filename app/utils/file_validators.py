"""
File validation utilities for XRay Report Assistant.

Handles validation of uploaded radiographs:
- Declared MIME type category
- File size limits
- Decodability check before preview generation
"""

import io
from typing import Optional

from PIL import Image, UnidentifiedImageError

from app.config import settings
from app.core.exceptions import IngestionError

IMAGE_MIME_PREFIX = "image/"


class FileValidator:
    """
    Validates uploaded files for the report engine.

    Ensures files are:
    - Declared as an image type
    - Within size limits
    """

    def __init__(self, max_file_size: Optional[int] = None):
        self.max_file_size = max_file_size or settings.max_file_size_bytes

    def is_image_type(self, content_type: Optional[str]) -> bool:
        """
        Check whether a declared MIME type belongs to the image category.

        Args:
            content_type: Declared MIME type, may be None

        Returns:
            True for ``image/*`` types
        """
        return bool(content_type) and content_type.lower().startswith(IMAGE_MIME_PREFIX)

    def validate_file_size(self, file_content: bytes, filename: str) -> bool:
        """
        Check if file is within size limits.

        Raises:
            IngestionError: If file is empty or exceeds the size limit
        """
        if not file_content:
            raise IngestionError(
                f"File '{filename}' is empty",
                error_code="EMPTY_FILE"
            )
        if len(file_content) > self.max_file_size:
            raise IngestionError(
                f"File '{filename}' exceeds maximum size of "
                f"{self.max_file_size // (1024 * 1024)}MB",
                error_code="FILE_TOO_LARGE"
            )
        return True

    def can_decode_image(self, file_content: bytes) -> bool:
        """Return True if Pillow can identify and verify the image bytes."""
        try:
            img = Image.open(io.BytesIO(file_content))
            img.verify()
            return True
        except (UnidentifiedImageError, Image.DecompressionBombError, OSError, SyntaxError, ValueError):
            return False


# Singleton instance for easy access
file_validator = FileValidator()
