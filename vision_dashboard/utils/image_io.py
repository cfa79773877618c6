from io import BytesIO

from PIL import Image

from vision_dashboard.core.errors import ResourceError, ResourceErrorKind


def load_image_from_bytes(image_bytes: bytes, max_bytes: int):
    if not image_bytes:
        raise ResourceError(ResourceErrorKind.EMPTY_INPUT, 'Missing image upload (field name: file).')
    if len(image_bytes) > max_bytes:
        raise ResourceError(ResourceErrorKind.INPUT_TOO_LARGE, f'Image too large. Max {max_bytes} bytes.')

    try:
        image = Image.open(BytesIO(image_bytes))
        image.load()
    except Exception as exc:
        raise ResourceError(ResourceErrorKind.DECODE_FAILED, 'Could not decode image.') from exc

    if image.mode != 'RGB':
        image = image.convert('RGB')
    return image


def to_jpeg_bytes(image) -> bytes:
    buffer = BytesIO()
    image.save(buffer, format='JPEG', quality=92)
    return buffer.getvalue()
