# drawing.py
import base64
import binascii
import io
import logging
from functools import lru_cache

import numpy as np
from PIL import Image, ImageChops, ImageDraw, ImageFont
import qrcode

from endlesscard.errors import ImageLoadError

logger = logging.getLogger(__name__)


# ====== Font & Utils ======

@lru_cache(maxsize=128)
def load_font(size, weight="regular", family="sans"):
    candidates = {
        "regular": ["Inter-Regular.ttf", "Arial.ttf", "DejaVuSans.ttf", "arial.ttf"],
        "semibold": ["Inter-SemiBold.ttf", "Arial-Bold.ttf", "DejaVuSans-Bold.ttf", "arialbd.ttf"],
        "bold": ["Inter-Bold.ttf", "Arial-Bold.ttf", "DejaVuSans-Bold.ttf", "arialbd.ttf"],
        "mono": ["DejaVuSansMono.ttf", "Courier New.ttf", "cour.ttf"],
        "mono-bold": ["DejaVuSansMono-Bold.ttf", "Courier New Bold.ttf", "courbd.ttf"],
    }
    key = weight if family == "sans" else ("mono-bold" if weight == "bold" else "mono")
    for name in candidates.get(key, []) + candidates["regular"]:
        try:
            return ImageFont.truetype(name, size)
        except OSError:
            continue
    return ImageFont.load_default(size)


def parse_color(hexstr: str, default=(59, 130, 246)):
    try:
        s = hexstr.strip().lstrip("#")
        if len(s) == 3:
            r, g, b = [int(c * 2, 16) for c in s]
        elif len(s) == 6:
            r, g, b = int(s[0:2], 16), int(s[2:4], 16), int(s[4:6], 16)
        else:
            return default
        return (r, g, b)
    except (AttributeError, ValueError):
        return default


def rgba(color, alpha: float = 1.0):
    if isinstance(color, str):
        color = parse_color(color, default=(0, 0, 0))
    return tuple(color[:3]) + (int(round(255 * alpha)),)


def fit_logo(img: Image.Image, max_w: int, max_h: int) -> Image.Image:
    iw, ih = img.size
    scale = min(max_w / iw, max_h / ih, 1.0)
    nw, nh = max(1, int(iw * scale)), max(1, int(ih * scale))
    return img.resize((nw, nh), Image.LANCZOS)


def make_qr(data: str, fill=(0, 0, 0), back=(255, 255, 255), box_size=10, border=1,
            error_correction=qrcode.constants.ERROR_CORRECT_M):
    qr = qrcode.QRCode(
        version=None,
        error_correction=error_correction,
        box_size=box_size,
        border=border,
    )
    qr.add_data(data)
    qr.make(fit=True)
    img = qr.make_image(fill_color=fill, back_color=back).convert("RGBA")
    return img


def fit_text(draw: ImageDraw.ImageDraw, text: str, max_width: int, max_size: int, min_size: int, weight="regular", family="sans"):
    size = max_size
    while size >= min_size:
        font = load_font(size, weight=weight, family=family)
        bbox = draw.textbbox((0, 0), text or "", font=font)
        if (bbox[2] - bbox[0]) <= max_width:
            return font, size
        size -= max(1, size // 40)
    return load_font(min_size, weight=weight, family=family), min_size


def ellipsize(draw, text, font, max_width):
    if draw.textlength(text, font=font) <= max_width:
        return text
    while text and draw.textlength(text + "…", font=font) > max_width:
        text = text[:-1]
    return text + "…"


def composite_at(base: Image.Image, layer: Image.Image, x: int, y: int):
    """alpha_composite that tolerates layers hanging off any edge."""
    x, y = int(x), int(y)
    left, top = max(0, -x), max(0, -y)
    right = min(layer.width, base.width - x)
    bottom = min(layer.height, base.height - y)
    if right <= left or bottom <= top:
        return
    if (left, top, right, bottom) != (0, 0, layer.width, layer.height):
        layer = layer.crop((left, top, right, bottom))
    base.alpha_composite(layer, dest=(x + left, y + top))


def draw_text_alpha(canvas: Image.Image, xy, text: str, font, color, alpha: float = 1.0, anchor="la"):
    """Draw text at the given opacity onto an RGBA canvas (canvas globalAlpha)."""
    if not text:
        return
    measure = ImageDraw.Draw(canvas)
    x0, y0, x1, y1 = measure.textbbox(xy, text, font=font, anchor=anchor)
    if x1 <= x0 or y1 <= y0:
        return
    layer = Image.new("RGBA", (x1 - x0, y1 - y0), (0, 0, 0, 0))
    ImageDraw.Draw(layer).text((xy[0] - x0, xy[1] - y0), text, font=font, fill=rgba(color, alpha), anchor=anchor)
    composite_at(canvas, layer, x0, y0)


def draw_embossed_text(canvas: Image.Image, xy, text: str, font, passes, anchor="la"):
    """Relief text: repeat the string at small offsets, shadows first, highlights last.

    ``passes`` is a sequence of ``(dx, dy, color, alpha)``; positive offsets are the
    dark down-right layers, negative ones the light up-left layers.
    """
    x, y = xy
    for dx, dy, color, alpha in passes:
        draw_text_alpha(canvas, (x + dx, y + dy), text, font, color, alpha, anchor=anchor)


def circle_mask(diameter: int, supersample: int = 4) -> Image.Image:
    big = Image.new("L", (diameter * supersample, diameter * supersample), 0)
    ImageDraw.Draw(big).ellipse([0, 0, big.width - 1, big.height - 1], fill=255)
    return big.resize((diameter, diameter), Image.LANCZOS)


def cover_circle(img: Image.Image, diameter: int) -> Image.Image:
    """Scale ``img`` to cover a ``diameter`` square (no stretching) and clip it to a circle."""
    img = img.convert("RGBA")
    aspect = img.width / img.height
    if aspect > 1:
        draw_h = diameter
        draw_w = int(round(diameter * aspect))
    else:
        draw_w = diameter
        draw_h = int(round(diameter / aspect))
    scaled = img.resize((max(draw_w, 1), max(draw_h, 1)), Image.LANCZOS)
    left = (scaled.width - diameter) // 2
    top = (scaled.height - diameter) // 2
    square = scaled.crop((left, top, left + diameter, top + diameter))
    out = Image.new("RGBA", (diameter, diameter), (0, 0, 0, 0))
    out.paste(square, (0, 0), circle_mask(diameter))
    return out


def paste_photo_circle(canvas: Image.Image, img: Image.Image, center, diameter: int, ring="#cccccc", ring_width=8):
    cx, cy = center
    circ = cover_circle(img, diameter)
    composite_at(canvas, circ, cx - diameter // 2, cy - diameter // 2)
    r = diameter / 2
    ImageDraw.Draw(canvas).ellipse([cx - r, cy - r, cx + r, cy + r], outline=ring, width=ring_width)


def make_tile(size: int, fill) -> Image.Image:
    return Image.new("RGBA", (size, size), rgba(fill))


def ring_tile(size: int, color, spacing: int = 6, width: int = 1) -> Image.Image:
    """Concentric rings around (30%, 30%), the topographic look of the identity glyph."""
    tile = Image.new("RGBA", (size, size), (0, 0, 0, 0))
    d = ImageDraw.Draw(tile)
    cx, cy = size * 0.3, size * 0.3
    r = spacing
    while r < size * 1.5:
        d.ellipse([cx - r, cy - r, cx + r, cy + r], outline=rgba(color), width=width)
        r += spacing
    return tile


def fill_pattern(size, tile: Image.Image) -> Image.Image:
    w, h = size
    out = Image.new("RGBA", (w, h), (0, 0, 0, 0))
    for y in range(0, h, tile.height):
        for x in range(0, w, tile.width):
            out.paste(tile, (x, y))
    return out


def draw_pattern_text(canvas: Image.Image, xy, text: str, font, tile: Image.Image, anchor="mm", opacity: float = 1.0):
    """Fill glyph outlines with a repeating tile (canvas pattern fillStyle)."""
    measure = ImageDraw.Draw(canvas)
    x0, y0, x1, y1 = measure.textbbox(xy, text, font=font, anchor=anchor)
    if x1 <= x0 or y1 <= y0:
        return
    mask = Image.new("L", (x1 - x0, y1 - y0), 0)
    ImageDraw.Draw(mask).text((xy[0] - x0, xy[1] - y0), text, font=font, fill=int(255 * opacity), anchor=anchor)
    # pattern is anchored to the canvas origin, like a repeat pattern on a 2D context
    layer = fill_pattern((canvas.width, canvas.height), tile).crop((x0, y0, x1, y1))
    layer.putalpha(ImageChops.multiply(layer.getchannel("A"), mask))
    composite_at(canvas, layer, x0, y0)


def radial_overlay(size, stops, radius=None, center=None) -> Image.Image:
    """RGBA radial gradient; ``stops`` are ``(offset, (r, g, b, a_float))`` pairs."""
    w, h = size
    cx, cy = center or (w / 2, h / 2)
    radius = radius or max(w, h) / 1.5
    # 0 at the center, 255 at and beyond radius
    xx = np.arange(w, dtype=np.float32)[None, :]
    yy = np.arange(h, dtype=np.float32)[:, None]
    dist = np.hypot(xx + 0.5 - cx, yy + 0.5 - cy) / radius
    canvas = Image.fromarray(np.clip(np.rint(dist * 255), 0, 255).astype(np.uint8))

    def lut(channel):
        table = []
        for v in range(256):
            t = v / 255.0
            for (o0, c0), (o1, c1) in zip(stops, stops[1:]):
                if o0 <= t <= o1:
                    u = 0.0 if o1 == o0 else (t - o0) / (o1 - o0)
                    val = c0[channel] + (c1[channel] - c0[channel]) * u
                    break
            else:
                val = stops[-1][1][channel] if t > stops[-1][0] else stops[0][1][channel]
            table.append(int(round(val * 255)) if channel == 3 else int(round(val)))
        return table

    bands = [canvas.point(lut(i)) for i in range(4)]
    return Image.merge("RGBA", bands)


# ====== Image payloads ======

def decode_data_uri(source: str) -> bytes:
    if not source:
        raise ImageLoadError("empty image source")
    payload = source.split(",", 1)[1] if source.startswith("data:") and "," in source else source
    try:
        return base64.b64decode(payload + "=" * (-len(payload) % 4))
    except (binascii.Error, ValueError) as e:
        raise ImageLoadError(f"invalid base64 image payload: {e}") from e


def open_image(data: bytes) -> Image.Image:
    try:
        img = Image.open(io.BytesIO(data))
        img.load()
        return img
    except (OSError, Image.DecompressionBombError) as e:
        raise ImageLoadError(f"undecodable image: {e}") from e


def pil_to_png_bytes(img: Image.Image) -> bytes:
    bio = io.BytesIO()
    img.save(bio, format="PNG")
    return bio.getvalue()


def pil_to_data_uri(img: Image.Image, fmt="PNG") -> str:
    bio = io.BytesIO()
    if fmt == "JPEG" and img.mode != "RGB":
        img = img.convert("RGB")
    img.save(bio, format=fmt)
    mime = "image/jpeg" if fmt == "JPEG" else "image/png"
    return f"data:{mime};base64," + base64.b64encode(bio.getvalue()).decode("ascii")
