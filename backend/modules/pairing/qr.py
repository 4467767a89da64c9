"""
QR rendering for pairing tag URLs.

Plain QR PNGs for the tag list, and printable labels (QR on the left,
caption on the right) for sticking next to an NFC tag.
"""

import base64
import io

import qrcode
from PIL import Image, ImageDraw, ImageFont

LABEL_SIZES = {
    "small": (600, 300),   # 2" x 1"
    "medium": (900, 600),  # 3" x 2"
}


def _qr_image(data: str):
    qr = qrcode.QRCode(
        version=1,
        error_correction=qrcode.constants.ERROR_CORRECT_M,
        box_size=10,
        border=2,
    )
    qr.add_data(data)
    qr.make(fit=True)
    return qr.make_image(fill_color="black", back_color="white").convert("RGB")


def render_qr_png(data: str) -> bytes:
    buf = io.BytesIO()
    _qr_image(data).save(buf, format="PNG")
    return buf.getvalue()


def render_qr_base64(data: str) -> str:
    return base64.b64encode(render_qr_png(data)).decode("ascii")


def render_label_png(data: str, title: str, subtitle: str = "", size: str = "small") -> bytes:
    """A printable label: QR code plus a one- or two-line caption."""
    width, height = LABEL_SIZES.get(size, LABEL_SIZES["small"])
    img = Image.new("RGB", (width, height), "white")
    draw = ImageDraw.Draw(img)

    qr_size = min(height - 20, width // 2 - 20)
    qr_img = _qr_image(data).resize((qr_size, qr_size), Image.Resampling.LANCZOS)
    img.paste(qr_img, (10, (height - qr_size) // 2))

    try:
        font_large = ImageFont.truetype("/usr/share/fonts/truetype/dejavu/DejaVuSans-Bold.ttf", 36)
        font_small = ImageFont.truetype("/usr/share/fonts/truetype/dejavu/DejaVuSans.ttf", 24)
    except OSError:
        font_large = font_small = ImageFont.load_default()

    text_x = qr_size + 30
    draw.text((text_x, height // 3 - 18), title[:40], fill="black", font=font_large)
    if subtitle:
        draw.text((text_x, height // 3 + 36), subtitle[:60], fill="black", font=font_small)

    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()
