"""
Photo validation for student-submitted complaint evidence.

Uses Pillow (PIL) to make sure uploads are real images of sane size.
"""

from PIL import Image, UnidentifiedImageError
import io
from typing import Tuple, Optional
import logging

logger = logging.getLogger("grievance.photo_utils")

# Configuration
MAX_UPLOAD_SIZE = 10 * 1024 * 1024  # 10 MB
MAX_IMAGE_DIMENSION = 8000  # pixels
ALLOWED_EXTENSIONS = {".jpg", ".jpeg", ".png", ".gif", ".webp"}
_FORMAT_MIME = {
    "JPEG": "image/jpeg",
    "PNG": "image/png",
    "GIF": "image/gif",
    "WEBP": "image/webp",
}


def validate_image(file_data: bytes, file_name: Optional[str]) -> Tuple[bool, Optional[str]]:
    """
    Validate image file.

    Returns:
        Tuple of (is_valid, error_message)
    """
    if not file_data:
        return False, "Uploaded photo is empty"

    if len(file_data) > MAX_UPLOAD_SIZE:
        return False, f"File size exceeds {MAX_UPLOAD_SIZE / (1024*1024):.1f} MB limit"

    name = file_name or ""
    ext = "." + name.rsplit(".", 1)[-1].lower() if "." in name else ""
    if ext and ext not in ALLOWED_EXTENSIONS:
        return False, f"File type not allowed. Allowed: {', '.join(sorted(ALLOWED_EXTENSIONS))}"

    try:
        img = Image.open(io.BytesIO(file_data))
        img.verify()

        # verify() leaves the image unusable; re-open to read dimensions
        img = Image.open(io.BytesIO(file_data))
        width, height = img.size
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError, SyntaxError) as e:
        logger.warning("Image validation failed: %s", e)
        return False, "Invalid image file"

    if width > MAX_IMAGE_DIMENSION or height > MAX_IMAGE_DIMENSION:
        return False, f"Image dimensions exceed {MAX_IMAGE_DIMENSION}px"

    return True, None


def detect_mime_type(file_data: bytes, fallback: Optional[str] = None) -> str:
    """Content type from the decoded image format, not the client header."""
    try:
        fmt = Image.open(io.BytesIO(file_data)).format
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError):
        fmt = None
    return _FORMAT_MIME.get(fmt or "", fallback or "image/jpeg")
