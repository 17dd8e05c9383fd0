# export.py
import base64
import io
import logging
import os
import tempfile
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from contextlib import ExitStack
from dataclasses import dataclass
from typing import Optional, Tuple

from PIL import Image, ImageDraw

from endlesscard.config import Config
from endlesscard.drawing import (
    composite_at, decode_data_uri, draw_text_alpha, fit_logo, load_font, make_qr, open_image,
    pil_to_data_uri, pil_to_png_bytes,
)
from endlesscard.errors import ExportError, ImageLoadError
from endlesscard.models import Card, normalize_style
from endlesscard.preview import render_face
from endlesscard.sharelink import share_url
from endlesscard.template import render_layout, resolve_url

logger = logging.getLogger(__name__)

# 400x550 layout rendered at 2x
EXPORT_SCALE = 2
EXPORT_SIZE = (400 * EXPORT_SCALE, 550 * EXPORT_SCALE)
FACE_WIDTH = 360 * EXPORT_SCALE
FACE_SIZE = (FACE_WIDTH, int(FACE_WIDTH / 1.75))
BRAND_WORDMARK = "ENDLESS"
SCAN_PROMPT = "Scan to save my card"
NOTE_TEXT = "Create your own here ;)"


# ====== vCard ======

def split_name(name: str) -> Tuple[str, str]:
    """Last word is the surname; a single word is all first name."""
    parts = (name or "").strip().split()
    if not parts:
        return "", ""
    if len(parts) == 1:
        return parts[0], ""
    return " ".join(parts[:-1]), parts[-1]


def _photo_base64(source: str) -> Optional[str]:
    try:
        img = open_image(load_image(source))
    except ImageLoadError as e:
        logger.warning("Skipping vCard photo: %s", e)
        return None
    bio = io.BytesIO()
    img.convert("RGB").save(bio, format="JPEG", quality=90)
    return base64.b64encode(bio.getvalue()).decode("ascii")


def build_vcard(card: Card, note_url: Optional[str] = None) -> str:
    first, last = split_name(card.name)
    lines = [
        "BEGIN:VCARD",
        "VERSION:3.0",
        f"N:{last};{first};;;",
        f"FN:{card.name}",
        f"TITLE:{card.title}",
        f"ORG:{card.company}",
        f"TEL:{card.phone}",
        f"EMAIL:{card.email}",
        f"URL:{card.website}",
        "ADR:;;" + card.address.replace("\r\n", "\n").replace("\n", ";") + ";;;;",
    ]
    if card.photo:
        photo = _photo_base64(card.photo)
        if photo:
            lines.append(f"PHOTO;ENCODING=b;TYPE=JPEG:{photo}")
    for social in card.socials:
        lines.append(f"X-SOCIALPROFILE;type={social.platform}:{resolve_url(social.platform, social.handle)}")
    if note_url:
        lines.append(f"NOTE:{NOTE_TEXT} {note_url}")
    lines.append("END:VCARD")
    return "\n".join(lines)


def _safe_stem(name: str, fallback: str) -> str:
    stem = (name or "").strip().replace("/", "-").replace("\\", "-")
    return stem or fallback


def vcard_filename(card: Card) -> str:
    return f"{_safe_stem(card.name, 'contact')}.vcf"


def png_filename(card: Card) -> str:
    return f"{_safe_stem(card.name, 'business-card')}-qr.png"


# ====== Images ======

def load_image(source: str) -> bytes:
    """Raw bytes of a data-URI image. Paths and URLs are refused."""
    if not source:
        raise ImageLoadError("empty image source")
    if not source.startswith("data:"):
        raise ImageLoadError(f"not a data URI image: {source[:40]!r}")
    return decode_data_uri(source)


def _inline(source: Optional[str]) -> Optional[str]:
    if not source:
        return None
    try:
        return pil_to_data_uri(open_image(load_image(source)).convert("RGBA"))
    except ImageLoadError as e:
        logger.warning("Exporting without image: %s", e)
        return None


def inline_images(card: Card, timeout: float = 5.0) -> Card:
    """Resolve photo/logo to data URIs; anything slower than ``timeout`` is dropped."""
    if not card.photo and not card.logo:
        return card
    pool = ThreadPoolExecutor(max_workers=2, thread_name_prefix="export-image")
    try:
        futures = {key: pool.submit(_inline, getattr(card, key)) for key in ("photo", "logo")}
        resolved = {}
        for key, fut in futures.items():
            try:
                resolved[key] = fut.result(timeout=timeout)
            except FutureTimeout:
                logger.warning("Image %s timed out after %ss, exporting without it", key, timeout)
                resolved[key] = None
    finally:
        pool.shutdown(wait=False)
    return card.model_copy(update=resolved)


# ====== Composite PNG ======

def qr_image(url: str, size: int) -> Image.Image:
    qr = make_qr(url, fill=(0, 0, 0), back=(255, 255, 255), box_size=10, border=1)
    return qr.resize((size, size), Image.NEAREST)


def _chunk(draw, text: str, font, max_width: int):
    lines, line = [], ""
    for ch in text:
        if line and draw.textlength(line + ch, font=font) > max_width:
            lines.append(line)
            line = ""
        line += ch
    if line:
        lines.append(line)
    return lines


@dataclass
class ExportResult:
    png: bytes
    url: str
    qr_box: Tuple[int, int, int, int]
    filename: str = "business-card-qr.png"

    def save(self, directory: str) -> str:
        os.makedirs(directory, exist_ok=True)
        path = os.path.join(directory, self.filename)
        with open(path, "wb") as f:
            f.write(self.png)
        return path


def _compose(card: Card, style: str, url: str, scaffold: str, brand: Optional[str]):
    W, H = EXPORT_SIZE
    s = EXPORT_SCALE
    canvas = Image.new("RGBA", (W, H), (0, 0, 0, 255))
    draw = ImageDraw.Draw(canvas)
    layout = render_layout(card, style)
    left = (W - FACE_SIZE[0]) // 2

    # brand mark
    logo = None
    if card.logo:
        try:
            logo = open_image(decode_data_uri(card.logo)).convert("RGBA")
        except ImageLoadError as e:
            logger.warning("Brand logo unusable, using wordmark: %s", e)
    if logo is not None:
        mark = fit_logo(logo, 160 * s, 32 * s)
        composite_at(canvas, mark, (W - mark.width) // 2, 24 * s - mark.height // 2)
    else:
        draw.text((W // 2, 24 * s), brand or BRAND_WORDMARK, font=load_font(14 * s, "bold"), fill=(255, 255, 255), anchor="mm")

    front_y = 48 * s
    front = render_face(layout, "front", size=FACE_SIZE)
    front.save(os.path.join(scaffold, "front.png"))
    canvas.alpha_composite(front, dest=(left, front_y))

    back_y = front_y + FACE_SIZE[1] + 10 * s
    back = render_face(layout, "back", size=FACE_SIZE, exclude=("contact_block", "social_block"))
    pad = int(FACE_SIZE[0] * 0.058)
    qr_size = int(FACE_SIZE[1] * 0.5)
    qr_x = left + pad
    # where the contact columns sit on screen
    qr_y = back_y + pad + int(FACE_SIZE[1] * 0.165)
    qr = qr_image(url, qr_size)
    qr.save(os.path.join(scaffold, "qr.png"))
    back.save(os.path.join(scaffold, "back.png"))
    canvas.alpha_composite(back, dest=(left, back_y))
    canvas.alpha_composite(qr, dest=(qr_x, qr_y))
    prompt_font = load_font(11 * s, "bold")
    fg = (255, 255, 255) if layout.style == "kosma" else (17, 17, 17)
    draw.text((qr_x + qr_size + pad // 2, qr_y + qr_size // 2), SCAN_PROMPT, font=prompt_font, fill=fg, anchor="lm")

    # url footer
    url_font = load_font(5 * s)
    y = back_y + FACE_SIZE[1] + 8 * s
    for line in _chunk(draw, url, url_font, FACE_SIZE[0])[:8]:
        draw_text_alpha(canvas, (left, y), line, url_font, (255, 255, 255), 0.7, anchor="la")
        y += 7 * s

    return canvas, (qr_x, qr_y, qr_x + qr_size, qr_y + qr_size)


def export_png(card: Card, style: Optional[str] = None, base_url: Optional[str] = None, card_id: Optional[str] = None,
               brand: Optional[str] = None, timeout: Optional[float] = None) -> ExportResult:
    """
    Render the portrait share image: brand mark, front face, then the back face
    with its contact columns replaced by a QR code pointing at the viewer.
    """
    style = normalize_style(style if style is not None else card.style)
    base_url = base_url or Config.PUBLIC_BASE_URL
    timeout = Config.IMAGE_TIMEOUT if timeout is None else timeout
    try:
        with ExitStack() as stack:
            scaffold = stack.enter_context(tempfile.TemporaryDirectory(prefix="endlesscard-export-"))
            card = inline_images(card.model_copy(update={"style": style}), timeout=timeout)
            url = share_url(card.snapshot(), base_url, card_id)
            img, qr_box = _compose(card, style, url, scaffold, brand)
            png = pil_to_png_bytes(img.convert("RGB"))
    except ExportError:
        raise
    except Exception as e:
        logger.exception("PNG export failed")
        raise ExportError() from e
    logger.info("Exported card PNG (%d bytes)", len(png))
    return ExportResult(png=png, url=url, qr_box=qr_box, filename=png_filename(card))
