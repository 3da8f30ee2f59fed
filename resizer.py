"""
Resizer/Encoder - decode an image, scale it to an exact size and
re-encode it as JPEG.
"""

from io import BytesIO

from PIL import Image

from errors import DecodeError, EncodeError

DEFAULT_QUALITY = 75


def decode(data):
    """
    Decode raw image bytes into a Pillow image in a mode JPEG can hold
    (RGB or L). Transparency is flattened onto white.

    Raises:
        DecodeError: If the bytes are not a recognisable image
    """
    try:
        img = Image.open(BytesIO(data))
        img.load()
        return _to_jpeg_mode(img)
    except (Image.UnidentifiedImageError, Image.DecompressionBombError,
            OSError, ValueError) as e:
        raise DecodeError('err: failed to decode image') from e


def resize(img, width, height):
    """
    Scale to exactly width x height, ignoring the source aspect ratio.

    Expects a decoded RGB or L image; Pillow falls back to nearest-neighbour
    sampling for palette and bilevel images.
    """
    return img.resize((width, height), Image.Resampling.BICUBIC)


def _to_jpeg_mode(img):
    if img.mode in ('RGBA', 'LA', 'PA'):
        # Composite onto a white background using the alpha channel
        if img.mode != 'RGBA':
            img = img.convert('RGBA')
        background = Image.new('RGB', img.size, (255, 255, 255))
        background.paste(img, mask=img.split()[3])
        return background
    if img.mode not in ('RGB', 'L'):
        # P, CMYK, I;16 etc.
        return img.convert('RGB')
    return img


def encode(img, quality=DEFAULT_QUALITY):
    """
    Encode a decoded image as JPEG bytes.

    Raises:
        EncodeError: If Pillow cannot write the image
    """
    output = BytesIO()
    try:
        img.save(output, format='JPEG', quality=quality)
    except (OSError, ValueError) as e:
        raise EncodeError('err: failed to encode response') from e
    return output.getvalue()


def render(data, width, height, quality=DEFAULT_QUALITY):
    """Decode, resize and encode in one go."""
    with decode(data) as img:
        return encode(resize(img, width, height), quality=quality)
