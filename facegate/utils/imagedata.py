# facegate/utils/imagedata.py
import base64
import binascii
import re

from facegate.core.exceptions import ValidationError

_DATA_URI_RE = re.compile(r"^data:image/[a-zA-Z0-9.+-]+;base64,")


def strip_data_uri(image_data: str) -> str:
    """Drop a ``data:image/...;base64,`` prefix if present"""
    return _DATA_URI_RE.sub("", image_data.strip(), count=1)


def decode_image_data(image_data: str, name: str = "imageData") -> bytes:
    """Decode base64 (optionally a data URI) into raw image bytes"""
    raw = strip_data_uri(image_data or "")
    if not raw:
        raise ValidationError(f"{name} is empty", {"field": name})
    try:
        return base64.b64decode(raw, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ValidationError(f"{name} is not valid base64", {"field": name}) from exc


def to_data_uri(content: bytes, content_type: str = "image/jpeg") -> str:
    return f"data:{content_type};base64,{base64.b64encode(content).decode('ascii')}"
