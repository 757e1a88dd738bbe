import base64
import binascii
import io

import cv2
from PIL import Image

from .errors import MalformedFrame


def data_url_to_image(data_url: str) -> Image.Image:
    """Converts a base64 data URL or raw base64 string to a PIL Image (RGB)."""
    if "," in data_url and data_url.strip().lower().startswith("data:"):
        base64_part = data_url.split(",", 1)[1]
    else:
        base64_part = data_url
    try:
        binary = base64.b64decode(base64_part, validate=True)
        return Image.open(io.BytesIO(binary)).convert("RGB")
    except (binascii.Error, ValueError, OSError, Image.DecompressionBombError) as e:
        raise MalformedFrame(f"could not decode image: {e}") from e


def bgr_to_image(frame_bgr) -> Image.Image:
    """OpenCV BGR frame to PIL RGB image."""
    return Image.fromarray(cv2.cvtColor(frame_bgr, cv2.COLOR_BGR2RGB))
