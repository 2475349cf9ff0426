"""
Validation for user-uploaded page illustrations.
"""

import io
import logging
from typing import Tuple, Optional

from PIL import Image, UnidentifiedImageError

ALLOWED_EXTENSIONS = {"png", "jpg", "jpeg", "webp"}
ALLOWED_FORMATS = {"PNG", "JPEG", "WEBP"}
MIN_DIMENSION = 200


def allowed_file(filename: str) -> bool:
    return "." in filename and filename.rsplit(".", 1)[1].lower() in ALLOWED_EXTENSIONS


def validate_image(data: bytes) -> Tuple[bool, Optional[str]]:
    """
    Validate an uploaded illustration.

    Returns:
        Tuple of (is_valid, error_message)
    """
    if not data:
        return False, "Uploaded file is empty"

    try:
        with Image.open(io.BytesIO(data)) as img:
            img.verify()
        # verify() leaves the image unusable; reopen for size/format
        with Image.open(io.BytesIO(data)) as img:
            fmt = img.format
            width, height = img.size
    except (UnidentifiedImageError, OSError, SyntaxError) as e:
        logging.info(f"[image_validator] Rejected unreadable image: {e}")
        return False, "File is not a readable image"

    if fmt not in ALLOWED_FORMATS:
        return False, f"Unsupported image format: {fmt}. Use PNG, JPEG or WEBP"

    if width < MIN_DIMENSION or height < MIN_DIMENSION:
        return False, f"Image is too small ({width}x{height}). Minimum is {MIN_DIMENSION}x{MIN_DIMENSION}"

    return True, None
