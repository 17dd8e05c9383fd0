# preview.py
import logging
import math
import time

from PIL import Image, ImageDraw

from endlesscard.drawing import (
    composite_at, decode_data_uri, draw_pattern_text, ellipsize,
    fit_logo, fit_text, load_font, open_image, paste_photo_circle, radial_overlay,
    ring_tile, rgba,
)
from endlesscard.errors import ImageLoadError
from endlesscard.models import STYLES, Card
from endlesscard.template import CardLayout, Region, render_layout
from endlesscard.themes import theme

logger = logging.getLogger(__name__)

DEFAULT_SIZE = (1050, 600)
SWIPE_THRESHOLD = 50
DOUBLE_TAP_WINDOW = 0.3
AUTO_FLIP_PERIOD = 4.0
ZOOM_SCALE = 1.5


class FaceContext:
    """Drawing context for one face."""

    def __init__(self, canvas: Image.Image, style: str):
        self.canvas = canvas
        self.draw = ImageDraw.Draw(canvas)
        self.style = style
        self.t = theme(style)
        self.W, self.H = canvas.size
        self.pad = int(self.W * 0.058)
        self.family = self.t["family"]

    def font(self, frac, weight="regular"):
        return load_font(max(6, int(self.H * frac)), weight=weight, family=self.family)


def load_region_image(region: Region):
    if not region.image:
        return None
    try:
        return open_image(decode_data_uri(region.image)).convert("RGBA")
    except ImageLoadError as e:
        logger.warning("Falling back to glyph for %s: %s", region.name, e)
        return None


# ====== Backgrounds ======

def _paint_background(f: FaceContext, face: str):
    f.canvas.paste(f.t["bg"] + (255,), [0, 0, f.W, f.H])
    if face == "back":
        color, stop = f.t["back_glow"]
        glow = radial_overlay((f.W, f.H), [(0.0, color), (stop, color[:3] + (0.0,)), (1.0, color[:3] + (0.0,))],
                              radius=max(f.W, f.H))
        f.canvas.alpha_composite(glow)


# ====== Region painters ======

def _company_header(f: FaceContext, region: Region):
    text = region.text.upper() if region.extra.get("uppercase") else region.text
    if f.style == "techno":
        font = f.font(0.03)
        text = ellipsize(f.draw, text, font, f.W - 2 * f.pad)
        f.draw.text((f.W - f.pad, f.pad), text, font=font, fill=f.t["fg"], anchor="ra")
        y = f.pad + int(f.H * 0.03) + int(f.H * 0.03)
        f.draw.line([(f.pad, y), (f.W - f.pad, y)], fill=f.t["rule"], width=max(1, f.H // 300))
        return
    font = f.font(0.045)
    text = ellipsize(f.draw, text, font, f.W - 2 * f.pad)
    f.draw.text((f.pad, f.pad), text, font=font, fill=f.t["sub"], anchor="la")


def _identity_mark(f: FaceContext, region: Region):
    if f.style == "techno":
        d = int(f.H * 0.14)
        cx, cy = f.pad + d // 2, f.pad + int(f.H * 0.09) + d // 2
    else:
        d = int(f.H * 0.32)
        cx, cy = f.W // 2, f.H // 2

    img = load_region_image(region)
    if img is not None and region.image_kind == "logo":
        logo = fit_logo(img, int(d * 1.4), d)
        composite_at(f.canvas, logo, cx - logo.width // 2, cy - logo.height // 2)
        return
    if img is not None:
        paste_photo_circle(f.canvas, img, (cx, cy), d, ring=rgba(f.t["fg"], 0.2), ring_width=max(2, d // 50))
        return

    if f.style == "techno":
        f.draw.ellipse([cx - d // 2, cy - d // 2, cx + d // 2, cy + d // 2], outline=f.t["fg"], width=max(1, f.H // 250))
        f.draw.text((cx, cy), region.glyph, font=f.font(0.08, "bold"), fill=f.t["fg"], anchor="mm")
        return
    font = load_font(int(f.H * 0.55), weight="bold")
    tile = ring_tile(max(24, int(f.H * 0.1)), f.t["glyph_pattern"], spacing=max(3, int(f.H * 0.012)), width=max(1, f.H // 300))
    draw_pattern_text(f.canvas, (cx, cy), region.glyph, font, tile, anchor="mm", opacity=0.6)


def _name_line(f: FaceContext, region: Region):
    if f.style == "techno":
        name = region.lines[0]
        font, size = fit_text(f.draw, name, f.W - 2 * f.pad, int(f.H * 0.075), int(f.H * 0.04), "bold", f.family)
        cy = int(f.H * 0.42)
        f.draw.text((f.W // 2, cy), name, font=font, fill=f.t["fg"], anchor="ms")
        title = region.lines[1] if len(region.lines) > 1 else ""
        accent = region.extra.get("accent", "")
        role_font = f.font(0.036)
        sep = "  @  " if title and accent else ""
        total = f.draw.textlength(title + sep + accent, font=role_font)
        x = f.W // 2 - total / 2
        y = cy + int(f.H * 0.06)
        f.draw.text((x, y), title + sep, font=role_font, fill=f.t["sub"], anchor="ls")
        x += f.draw.textlength(title + sep, font=role_font)
        f.draw.text((x, y), accent, font=role_font, fill=f.t["accent"], anchor="ls")
        return
    font, _ = fit_text(f.draw, region.text, f.W - 2 * f.pad, int(f.H * 0.08), int(f.H * 0.045), "bold")
    f.draw.text((f.pad, f.H - f.pad), region.text, font=font, fill=f.t["fg"], anchor="ld")


def _social_line(f: FaceContext, region: Region):
    font = f.font(0.032)
    text = ellipsize(f.draw, region.text, font, f.W - 2 * f.pad)
    f.draw.text((f.W // 2, int(f.H * 0.6)), text, font=font, fill=f.t["sub"], anchor="ms")


def _headline(f: FaceContext, region: Region):
    frac = 0.09 if f.style == "techno" else 0.11
    font, _ = fit_text(f.draw, region.text, int(f.W * 0.8), int(f.H * frac), int(f.H * 0.05), "bold", f.family)
    f.draw.text((f.pad, f.pad), region.text, font=font, fill=f.t["fg"], anchor="la")


def _columns(f: FaceContext):
    top = f.pad + int(f.H * 0.11 * 1.5)
    gap = int(f.W * 0.03)
    col_w = (f.W - 2 * f.pad - gap) // 2
    return top, col_w, (f.pad, f.pad + col_w + gap)


def _rows(f: FaceContext, x: int, y: int, col_w: int, lines, bold_prefix=True):
    font = f.font(0.035)
    bold = f.font(0.035, "bold")
    step = int(f.H * 0.035 * 1.6)
    color = f.t["fg"] if f.style == "techno" else f.t["muted"]
    for line in lines:
        label, sep, value = line.partition(": ")
        if bold_prefix and sep:
            f.draw.text((x, y), label + ":", font=bold, fill=color, anchor="la")
            offset = f.draw.textlength(label + ": ", font=bold)
            f.draw.text((x + offset, y), ellipsize(f.draw, value, font, col_w - offset), font=font, fill=color, anchor="la")
        else:
            f.draw.text((x, y), ellipsize(f.draw, line, bold if line.endswith(":") else font, col_w), font=bold if line.endswith(":") else font, fill=color, anchor="la")
        y += step
    return y


def _contact_block(f: FaceContext, region: Region):
    top, col_w, (left, _) = _columns(f)
    _rows(f, left, top, col_w, region.lines)


def _social_block(f: FaceContext, region: Region):
    top, col_w, (_, right) = _columns(f)
    _rows(f, right, top, col_w, region.lines)


def _signature(f: FaceContext, region: Region):
    name, company = (region.lines + ["", ""])[:2]
    small = f.font(0.035)
    strong = f.font(0.042, "bold")
    f.draw.text((f.W - f.pad, f.H - f.pad), company, font=small, fill=f.t["sub"], anchor="rd")
    f.draw.text((f.W - f.pad, f.H - f.pad - int(f.H * 0.035 * 1.6)), name, font=strong, fill=f.t["signature"], anchor="rd")


def _swatches(f: FaceContext, region: Region):
    colors = region.extra.get("colors", [])
    pill_h = int(f.H * 0.0667)
    inner = max(2, int(f.H * 0.007))
    d = pill_h - 2 * inner
    overlap = int(d * 0.31)
    pill_w = inner * 2 + len(colors) * (d - overlap) + overlap
    x0, y0 = f.pad, f.H - f.pad - pill_h
    f.draw.rounded_rectangle([x0, y0, x0 + pill_w, y0 + pill_h], radius=pill_h // 2, fill=(255, 255, 255))
    # first swatch sits on top, so paint right to left
    for i in reversed(range(len(colors))):
        sx = x0 + inner + i * (d - overlap)
        f.draw.ellipse([sx, y0 + inner, sx + d, y0 + inner + d], fill=colors[i], outline=(255, 255, 255), width=max(1, f.H // 300))


def _knobs(f: FaceContext, region: Region):
    angles = region.extra.get("angles", [])
    front = region.extra.get("wave", False)
    d = int(f.H * (0.146 if front else 0.09))
    gap = int(f.H * 0.058)
    total = len(angles) * d + (len(angles) - 1) * gap
    x = (f.W - total) // 2 if front else f.pad
    y = f.H - f.pad - d
    if front:
        wave_y = f.H - int(f.H * 0.087) - d // 2
        pts = [(px, wave_y + math.sin(px / max(1, f.W) * math.pi * 6) * f.H * 0.02) for px in range(0, f.W + 1, 6)]
        f.draw.line(pts, fill=f.t["rule"], width=max(1, f.H // 250))
    for angle in angles:
        f.draw.rectangle([x - gap // 3, y - 2, x + d + gap // 3, y + d + 2], fill=f.t["bg"])
        f.draw.ellipse([x, y, x + d, y + d], outline=f.t["fg"], width=max(1, f.H // 250))
        cx, cy = x + d / 2, y + d / 2
        rad = math.radians(angle)
        # indicator from the rim toward the center, rotated about the knob center
        r0, r1 = d * 0.42, d * 0.12
        f.draw.line([(cx + math.sin(rad) * r0, cy - math.cos(rad) * r0), (cx + math.sin(rad) * r1, cy - math.cos(rad) * r1)],
                    fill=f.t["accent"], width=max(2, d // 20))
        x += d + gap
    if front and len(region.lines) >= 2:
        font = f.font(0.026)
        f.draw.text((f.pad, f.H - f.pad), region.lines[0].upper(), font=font, fill=f.t["fg"], anchor="ld")
        f.draw.text((f.W - f.pad, f.H - f.pad), region.lines[1].upper(), font=font, fill=f.t["fg"], anchor="rd")


PAINTERS = {
    "company_header": _company_header,
    "identity_mark": _identity_mark,
    "name_line": _name_line,
    "social_line": _social_line,
    "headline": _headline,
    "contact_block": _contact_block,
    "social_block": _social_block,
    "signature": _signature,
    "swatches": _swatches,
    "knobs": _knobs,
}


def render_face(layout: CardLayout, face: str = "front", size=DEFAULT_SIZE, exclude=()) -> Image.Image:
    """
    Rasterize one face of a layout, drawing regions in z-order.
    """
    canvas = Image.new("RGBA", size, (0, 0, 0, 0))
    f = FaceContext(canvas, layout.style)
    _paint_background(f, face)
    for region in layout.face(face).ordered_regions():
        if region.name in exclude:
            continue
        painter = PAINTERS.get(region.name) or PAINTERS.get(region.kind)
        if painter is None:
            logger.debug("No painter for region %s", region.name)
            continue
        painter(f, region)
    return canvas


def render_preview(card: Card, style=None, flipped=False, zoomed=False, pan=(0, 0), size=DEFAULT_SIZE) -> Image.Image:
    layout = render_layout(card, style)
    img = render_face(layout, "back" if flipped else "front", size=size)
    if not zoomed:
        return img
    W, H = size
    big = img.resize((int(W * ZOOM_SCALE), int(H * ZOOM_SCALE)), Image.LANCZOS)
    left = int((big.width - W) / 2 - pan[0] * ZOOM_SCALE)
    top = int((big.height - H) / 2 - pan[1] * ZOOM_SCALE)
    return big.crop((left, top, left + W, top + H))


def render_at_angle(layout: CardLayout, angle_deg: float, size=DEFAULT_SIZE, faces=None) -> Image.Image:
    """Frame of the flip animation: the face is squashed horizontally by cos(angle)."""
    W, H = size
    c = math.cos(math.radians(angle_deg))
    name = "front" if c >= 0 else "back"
    face = (faces or {}).get(name) or render_face(layout, name, size=size)
    width = max(1, int(round(abs(c) * W)))
    out = Image.new("RGBA", size, (0, 0, 0, 0))
    out.alpha_composite(face.resize((width, H), Image.BILINEAR), dest=((W - width) // 2, 0))
    return out


# ====== Idle auto-flip ======

def cubic_bezier(p1x, p1y, p2x, p2y):
    def sample(a, b, t):
        return 3 * a * (1 - t) ** 2 * t + 3 * b * (1 - t) * t ** 2 + t ** 3

    def ease(x):
        if x <= 0:
            return 0.0
        if x >= 1:
            return 1.0
        lo, hi = 0.0, 1.0
        for _ in range(40):
            mid = (lo + hi) / 2
            if sample(p1x, p2x, mid) < x:
                lo = mid
            else:
                hi = mid
        return sample(p1y, p2y, (lo + hi) / 2)

    return ease


EASE_IN_OUT = cubic_bezier(0.42, 0.0, 0.58, 1.0)


class AutoFlip:
    # (fraction of period, rotateY degrees)
    KEYFRAMES = [(0.0, 0.0), (0.2, 20.0), (0.5, 180.0), (0.7, 200.0), (1.0, 360.0)]

    def __init__(self, period: float = AUTO_FLIP_PERIOD, easing=EASE_IN_OUT):
        self.period = period
        self.easing = easing

    def angle(self, elapsed: float) -> float:
        u = (elapsed % self.period) / self.period
        for (u0, a0), (u1, a1) in zip(self.KEYFRAMES, self.KEYFRAMES[1:]):
            if u0 <= u <= u1:
                local = (u - u0) / (u1 - u0)
                return a0 + (a1 - a0) * self.easing(local)
        return 0.0


class PreviewController:
    """
    Gesture state for the flippable 2D preview.

    One tap flips once the double-tap window closes, a second tap inside the
    window toggles zoom instead, and a horizontal swipe past the threshold
    cycles templates. The idle auto-flip only drives the angle while the user
    has neither flipped nor zoomed and has been idle for ``idle_resume`` seconds.
    """

    def __init__(self, styles=STYLES, style=None, clock=time.monotonic, idle_resume: float = 3.0,
                 auto_flip: AutoFlip = None):
        self.styles = tuple(styles)
        self.style_index = self.styles.index(style) if style in self.styles else 0
        self.clock = clock
        self.idle_resume = idle_resume
        self.auto_flip = auto_flip or AutoFlip()
        self.flipped = False
        self.zoomed = False
        self.pan = (0.0, 0.0)
        self._start = None
        self._last_point = None
        self._tap_count = 0
        self._flip_due = None
        self._last_interaction = None
        self._idle_since = clock()

    @property
    def style(self) -> str:
        return self.styles[self.style_index]

    def next_style(self):
        self.style_index = (self.style_index + 1) % len(self.styles)

    def prev_style(self):
        self.style_index = (self.style_index - 1 + len(self.styles)) % len(self.styles)

    def _touch(self, now):
        self._last_interaction = now

    def pointer_down(self, x: float, y: float = 0.0, now: float = None):
        now = self.clock() if now is None else now
        self._touch(now)
        self._start = (x, y)
        self._last_point = (x, y)

    def pointer_move(self, x: float, y: float = 0.0, now: float = None):
        now = self.clock() if now is None else now
        if self._last_point is None:
            return
        self._touch(now)
        if self.zoomed:
            dx, dy = x - self._last_point[0], y - self._last_point[1]
            self.pan = (self.pan[0] + dx / 2, self.pan[1] + dy / 2)
        self._last_point = (x, y)

    def pointer_up(self, x: float, y: float = 0.0, now: float = None):
        now = self.clock() if now is None else now
        if self._start is None:
            return
        self._touch(now)
        diff = self._start[0] - x
        self._start = None
        self._last_point = None
        if abs(diff) > SWIPE_THRESHOLD and not self.zoomed:
            if diff > 0:
                self.next_style()
            else:
                self.prev_style()
            return
        self.tap(now)

    def tap(self, now: float = None):
        now = self.clock() if now is None else now
        self._touch(now)
        self._tap_count += 1
        if self._tap_count == 1:
            self._flip_due = now + DOUBLE_TAP_WINDOW
        elif self._tap_count == 2:
            self._flip_due = None
            self._tap_count = 0
            self.zoomed = not self.zoomed
            self.pan = (0.0, 0.0)

    def tick(self, now: float = None):
        now = self.clock() if now is None else now
        if self._flip_due is not None and now >= self._flip_due:
            self._flip_due = None
            self._tap_count = 0
            self.flipped = not self.flipped
            self._touch(now)

    def user_active(self, now: float) -> bool:
        if self.flipped or self.zoomed or self._flip_due is not None:
            return True
        return self._last_interaction is not None and now - self._last_interaction < self.idle_resume

    def display_angle(self, now: float = None) -> float:
        now = self.clock() if now is None else now
        self.tick(now)
        if self.user_active(now):
            self._idle_since = None
            return 180.0 if self.flipped else 0.0
        if self._idle_since is None:
            self._idle_since = now
        return self.auto_flip.angle(now - self._idle_since)

    def visible_face(self, now: float = None) -> str:
        angle = self.display_angle(now)
        return "front" if math.cos(math.radians(angle)) >= 0 else "back"

    def render(self, card: Card, now: float = None, size=DEFAULT_SIZE) -> Image.Image:
        angle = self.display_angle(now)
        if self.zoomed or angle in (0.0, 180.0):
            return render_preview(card, self.style, flipped=self.flipped, zoomed=self.zoomed, pan=self.pan, size=size)
        return render_at_angle(render_layout(card, self.style), angle, size=size)
