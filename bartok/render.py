# bartok/render.py
"""
Scannable image rendering for barcode values. Pure: no store access.
"""
from __future__ import annotations
import base64
import io

import qrcode
from qrcode.exceptions import DataOverflowError
from PIL import Image, ImageDraw, ImageFont

from .errors import RenderError

_CAPTION_PAD = 6


def _with_caption(img: Image.Image, text: str) -> Image.Image:
    """Print the code under the symbol so it can be typed in by hand."""
    font = ImageFont.load_default()
    left, top, right, bottom = ImageDraw.Draw(img).textbbox((0, 0), text, font=font)
    text_w, text_h = right - left, bottom - top

    width = max(img.width, text_w + 2 * _CAPTION_PAD)
    canvas = Image.new("RGB", (width, img.height + text_h + 2 * _CAPTION_PAD), "white")
    canvas.paste(img, ((width - img.width) // 2, 0))
    ImageDraw.Draw(canvas).text(
        ((width - text_w) // 2, img.height + _CAPTION_PAD - top), text, fill="black", font=font
    )
    return canvas


def render_png(code: str, caption: bool = True, box_size: int = 8, border: int = 4) -> bytes:
    """
    Render ``code`` as a QR code PNG, optionally captioned with the code itself.

    The symbol is 2-D: it needs an image or 2-D capable scanner, a linear
    (1-D only) barcode reader cannot decode it.
    """
    if not code:
        raise RenderError("Cannot render an empty code")
    try:
        qr = qrcode.QRCode(
            error_correction=qrcode.constants.ERROR_CORRECT_M,
            box_size=box_size,
            border=border,
        )
        qr.add_data(code)
        qr.make(fit=True)
        img = qr.make_image(fill_color="black", back_color="white").get_image().convert("RGB")
        if caption:
            img = _with_caption(img, code)
        buf = io.BytesIO()
        img.save(buf, format="PNG")
    except (DataOverflowError, ValueError, OSError) as e:
        raise RenderError(f"Failed to render barcode: {e}") from e
    return buf.getvalue()


def render_base64(code: str, **kwargs) -> str:
    return base64.b64encode(render_png(code, **kwargs)).decode("ascii")


def render_data_uri(code: str, **kwargs) -> str:
    return f"data:image/png;base64,{render_base64(code, **kwargs)}"
