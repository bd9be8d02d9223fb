import io
import base64
import binascii
import re
import imagehash
from PIL import Image, UnidentifiedImageError
from civic_reports.exceptions import ReportValidationError

ALLOWED_IMAGE_TYPES = {
    "image/jpeg",
    "image/jpg",
    "image/png",
    "image/gif",
    "image/webp",
}

DATA_URL_PATTERN = re.compile(r"^data:image/([a-zA-Z+]+);base64,(.+)$", re.DOTALL)


def parse_base64_image(image: str) -> dict:
    """
    Decode a submitted image (data URL or bare base64).

    Returns:
        dict: {"data": bytes, "content_type": "image/png", "extension": "png"}
              bare base64 is assumed to be JPEG

    Raises:
        ReportValidationError: the payload is not valid base64 or the type is not allowed
    """
    if not image:
        raise ReportValidationError("Photo is required")

    match = DATA_URL_PATTERN.match(image.strip())
    if match:
        subtype, payload = match.group(1).lower(), match.group(2)
        content_type = f"image/{subtype}"
        extension = subtype.replace("+", "")
    else:
        payload, content_type, extension = image, "image/jpeg", "jpg"

    if content_type not in ALLOWED_IMAGE_TYPES:
        raise ReportValidationError("Invalid image type. Allowed types: JPEG, PNG, GIF, WebP")

    try:
        data = base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError):
        raise ReportValidationError("Photo is not valid base64 data")

    return {"data": data, "content_type": content_type, "extension": extension}


def compute_image_hash(image_data: bytes) -> str:
    """
    Perceptual hash (pHash) of an image as a 16-character hex string.

    Raises:
        ReportValidationError: empty or undecodable image
    """
    if not image_data:
        raise ReportValidationError("Image is empty")

    try:
        with Image.open(io.BytesIO(image_data)) as image:
            return str(imagehash.phash(image))
    except (UnidentifiedImageError, OSError) as e:
        raise ReportValidationError(f"Image could not be decoded: {e}")
