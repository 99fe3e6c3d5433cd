import base64
import binascii
import io
import logging

from PIL import Image, ImageOps, UnidentifiedImageError

from .errors import ImageValidationError

logger = logging.getLogger(__name__)

# Pillow format name -> MIME type accepted by the disease detection form.
SUPPORTED_FORMATS = {
    "PNG": "image/png",
    "JPEG": "image/jpeg",
    "WEBP": "image/webp",
}


def to_data_uri(image_bytes: bytes, max_bytes: int, max_side: int) -> str:
    """Check an uploaded plant photo and return it as a base64 data URI.

    Photos with a side longer than ``max_side`` are downscaled so that the
    data URI stays small enough to be stored with the diagnosis history.
    """
    if not image_bytes:
        raise ImageValidationError("The uploaded file is empty.")
    if len(image_bytes) > max_bytes:
        raise ImageValidationError(
            f"The image is too large. Please upload a file under {max_bytes / 1024 / 1024:g} MB.",
            status_code=413,
        )

    try:
        with Image.open(io.BytesIO(image_bytes)) as candidate:
            candidate.verify()
        img = Image.open(io.BytesIO(image_bytes))
        img.load()
    except (UnidentifiedImageError, OSError, SyntaxError, Image.DecompressionBombError) as e:
        raise ImageValidationError("Could not read the selected file as an image.") from e

    mime_type = SUPPORTED_FORMATS.get(img.format)
    if mime_type is None:
        raise ImageValidationError(
            f"Unsupported image type '{img.format}'. Please upload a PNG, JPG, or WEBP image."
        )

    if max(img.size) > max_side:
        original_size = img.size
        fmt = img.format
        img = ImageOps.exif_transpose(img)
        img.thumbnail((max_side, max_side))
        if fmt == "JPEG" and img.mode not in ("RGB", "L"):
            img = img.convert("RGB")
        buffer = io.BytesIO()
        img.save(buffer, format=fmt, quality=85)
        image_bytes = buffer.getvalue()
        logger.info("Downscaled uploaded image from %s to %s.", original_size, img.size)

    return f"data:{mime_type};base64,{base64.b64encode(image_bytes).decode('ascii')}"


def from_data_uri(data_uri: str) -> bytes:
    _, _, payload = data_uri.partition(",")
    try:
        return base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ImageValidationError("The photo data URI is not valid base64.") from e
