from io import BytesIO

from PIL import Image, UnidentifiedImageError


def detect_image_format(data: bytes) -> str | None:
    """Return the Pillow format name (e.g. "PNG") or None if `data` is not a readable image.

    Images over Pillow's pixel limit raise Image.DecompressionBombError.
    """
    if not data:
        return None
    try:
        with Image.open(BytesIO(data)) as img:
            fmt = img.format
            img.verify()
    except (UnidentifiedImageError, OSError, SyntaxError, ValueError):
        return None
    return fmt


def guess_content_type(fmt: str | None) -> str:
    if not fmt:
        return "application/octet-stream"
    return Image.MIME.get(fmt.upper(), f"image/{fmt.lower()}")
