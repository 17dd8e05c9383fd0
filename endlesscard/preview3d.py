# preview3d.py
import logging
import math
import threading
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from dataclasses import dataclass, replace

import numpy as np
from PIL import Image, ImageDraw

from endlesscard.drawing import (
    decode_data_uri, draw_embossed_text, draw_pattern_text, draw_text_alpha, ellipsize,
    fit_logo, composite_at, load_font, make_tile, open_image, paste_photo_circle, radial_overlay,
)
from endlesscard.errors import ImageLoadError
from endlesscard.loop import RenderLoop
from endlesscard.models import Card
from endlesscard.preview import PAINTERS, FaceContext
from endlesscard.template import CardLayout, Region, render_layout
from endlesscard.themes import emboss, theme

logger = logging.getLogger(__name__)

TEXTURE_SIZE = (4096, 2340)
CARD_W, CARD_H, CARD_D = 1.75, 1.0, 0.02
FOV = 50

PHOTO_DIAMETER = 800
GLYPH_SIZE = 1360
MARGIN = 240

AUTO_ROTATE_SPEED = 0.002
SHOWROOM_STEP = 0.005
WOBBLE_FREQ = 0.3
WOBBLE_AMPLITUDE = 0.1

ZOOM_MIN, ZOOM_MAX = 0.5, 8.0
WHEEL_STEP = 0.05
ZOOM_RATE = 0.1

DRAG_THRESHOLD = 5
DRAG_SCALE = 0.01
TAP_WINDOW = 0.3
TAP_SLOP = 10
TOUCH_HOLD = 0.15
RESUME_DELAY = 1.0

BACK_GRADIENT = [(0.0, (20, 20, 20, 0.3)), (0.5, (0, 0, 0, 0.1)), (1.0, (0, 0, 0, 0.6))]
EDGE_COLOR = (85, 85, 85)


# ====== Textures ======

def _texture_header(f: FaceContext, region: Region):
    text = region.text.upper() if region.extra.get("uppercase") else region.text
    font = load_font(96, weight="bold", family=f.family)
    text = ellipsize(f.draw, text, font, f.W - 2 * MARGIN)
    draw_embossed_text(f.canvas, (MARGIN, 160), text, font, emboss(f.style, "header"), anchor="ls")


def _texture_name(f: FaceContext, region: Region):
    font = load_font(100, weight="bold", family=f.family)
    text = ellipsize(f.draw, region.text, font, f.W - 2 * MARGIN)
    draw_embossed_text(f.canvas, (MARGIN, f.H - 140), text, font, emboss(f.style, "name"), anchor="ld")


def _texture_glyph(f: FaceContext, region: Region):
    font = load_font(GLYPH_SIZE, weight="bold")
    center = (f.W // 2, f.H // 2)
    tile = make_tile(40, f.t["glyph_pattern"])
    draw_pattern_text(f.canvas, center, region.glyph, font, tile, anchor="mm")
    color, alpha = f.t["glyph_fill"]
    draw_text_alpha(f.canvas, center, region.glyph, font, color, alpha, anchor="mm")


def _texture_identity(f: FaceContext, region: Region, image):
    if image is None:
        _texture_glyph(f, region)
        return
    if region.image_kind == "logo":
        logo = fit_logo(image, int(PHOTO_DIAMETER * 1.5), PHOTO_DIAMETER)
        composite_at(f.canvas, logo, (f.W - logo.width) // 2, (f.H - logo.height) // 2)
        return
    paste_photo_circle(f.canvas, image, (f.W // 2, f.H // 2), PHOTO_DIAMETER, ring="#cccccc", ring_width=8)


def _texture_headline(f: FaceContext, region: Region):
    font = load_font(260, weight="bold", family=f.family)
    text = ellipsize(f.draw, region.text, font, f.W - 2 * MARGIN)
    draw_embossed_text(f.canvas, (MARGIN, 300), text, font, emboss(f.style, "headline"), anchor="la")


def _texture_rows(f: FaceContext, x: int, lines, max_width: int):
    font = load_font(80, family=f.family)
    y = 800
    for line in lines:
        f.draw.text((x, y), ellipsize(f.draw, line, font, max_width), font=font, fill=f.t["muted"], anchor="ls")
        y += 100


def _texture_contact(f: FaceContext, region: Region):
    _texture_rows(f, MARGIN, region.lines, f.W // 2 - MARGIN)


def _texture_social(f: FaceContext, region: Region):
    x = f.W // 2 + 140
    _texture_rows(f, x, region.lines, f.W - MARGIN - x)


def _texture_signature(f: FaceContext, region: Region):
    name, company = (region.lines + ["", ""])[:2]
    f.draw.text((f.W - MARGIN, f.H - 240), name, font=load_font(96, "bold", f.family), fill=f.t["signature"], anchor="rs")
    f.draw.text((f.W - MARGIN, f.H - 140), company, font=load_font(80, family=f.family), fill=f.t["sub"], anchor="rs")


TEXTURE_PAINTERS = {
    "company_header": _texture_header,
    "name_line": _texture_name,
    "headline": _texture_headline,
    "contact_block": _texture_contact,
    "social_block": _texture_social,
    "signature": _texture_signature,
}


def _paint(f: FaceContext, region: Region):
    painter = TEXTURE_PAINTERS.get(region.name) or PAINTERS.get(region.name) or PAINTERS.get(region.kind)
    if painter is not None:
        painter(f, region)


def draw_front_texture(layout: CardLayout, identity_image=None, pending=False, size=TEXTURE_SIZE) -> Image.Image:
    """
    Rasterize the front face at texture resolution.

    ``pending`` leaves the identity slot empty while an image is still decoding;
    with no ``identity_image`` the pattern-filled glyph is drawn instead.
    """
    canvas = Image.new("RGBA", size, theme(layout.style)["bg"] + (255,))
    f = FaceContext(canvas, layout.style)
    for region in layout.front.ordered_regions():
        if region.name == "identity_mark":
            if not pending:
                _texture_identity(f, region, identity_image)
            continue
        _paint(f, region)
    return canvas


def draw_back_texture(layout: CardLayout, size=TEXTURE_SIZE) -> Image.Image:
    canvas = Image.new("RGBA", size, theme(layout.style)["bg"] + (255,))
    canvas.alpha_composite(radial_overlay(size, BACK_GRADIENT, radius=max(size) / 1.5))
    f = FaceContext(canvas, layout.style)
    for region in layout.back.ordered_regions():
        _paint(f, region)
    return canvas


def _decode(source: str) -> Image.Image:
    return open_image(decode_data_uri(source)).convert("RGBA")


class CardTextures:
    """Front/back textures for one card; owns the pending image decode."""

    def __init__(self, card: Card, executor=None, size=TEXTURE_SIZE):
        self.card = card
        self.size = size
        self.layout = render_layout(card)
        self.alive = True
        self.dirty = {"front": True, "back": True}
        self._lock = threading.Lock()
        self._own_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(max_workers=1, thread_name_prefix="texture")
        self._future = None
        self._scaled = {}

        identity = self.layout.front.get("identity_mark")
        self.source = identity.image if identity is not None else None
        self.front = draw_front_texture(self.layout, pending=bool(self.source), size=size)
        self.back = draw_back_texture(self.layout, size=size)
        if self.source:
            self.load_image(self.source)

    def load_image(self, source: str):
        self._future = self._executor.submit(self._load, source)
        return self._future

    def _load(self, source: str) -> bool:
        try:
            image = _decode(source)
        except ImageLoadError as e:
            logger.warning("Failed to load card image: %s", e)
            image = None
        front = draw_front_texture(self.layout, identity_image=image, size=self.size)
        with self._lock:
            if not self.alive:
                logger.debug("Ignoring image that arrived after dispose")
                front.close()
                return False
            self.front = front
            self.dirty["front"] = True
        return True

    def wait(self, timeout: float = None) -> bool:
        """Block until the pending image has been drawn; on timeout draw the glyph."""
        if self._future is None:
            return True
        try:
            return self._future.result(timeout=timeout)
        except FutureTimeout:
            logger.warning("Card image still loading after %ss, drawing glyph", timeout)
            with self._lock:
                if self.alive:
                    self.front = draw_front_texture(self.layout, size=self.size)
                    self.dirty["front"] = True
            return False

    def take(self, face: str, scale: float = 1.0):
        """Return the texture (optionally downscaled) and clear its dirty flag, as an upload would."""
        with self._lock:
            img = self.front if face == "front" else self.back
            if img is None:
                return None
            if self.dirty[face]:
                self._scaled = {k: v for k, v in self._scaled.items() if k[0] != face}
                self.dirty[face] = False
            key = (face, scale)
            if key not in self._scaled:
                size = (max(1, int(img.width * scale)), max(1, int(img.height * scale)))
                self._scaled[key] = (img if scale == 1 else img.resize(size, Image.BILINEAR)).convert("RGB")
            return self._scaled[key]

    def dispose(self):
        with self._lock:
            if not self.alive:
                return
            self.alive = False
            if self._future is not None:
                self._future.cancel()
            for img in (self.front, self.back):
                if img is not None:
                    img.close()
            self.front = self.back = None
            self._scaled.clear()
        if self._own_executor:
            self._executor.shutdown(wait=False)


# ====== Interaction ======

@dataclass
class InteractionState:
    rotation_x: float = 0.0
    rotation_y: float = 0.0
    target_rotation_x: float = 0.0
    target_rotation_y: float = 0.0
    position_x: float = 0.0
    position_y: float = 0.0
    target_position_x: float = 0.0
    target_position_y: float = 0.0
    zoom: float = 3.0
    target_zoom: float = 3.0
    auto_rotate: bool = True
    dragging: bool = False
    showroom_time: float = 0.0


def smooth(state: InteractionState, rate: float, zoom_rate: float = ZOOM_RATE) -> InteractionState:
    """One exponential smoothing step of every current value toward its target."""
    def step(cur, tgt, r):
        return cur + (tgt - cur) * r

    return replace(
        state,
        rotation_x=step(state.rotation_x, state.target_rotation_x, rate),
        rotation_y=step(state.rotation_y, state.target_rotation_y, rate),
        position_x=step(state.position_x, state.target_position_x, rate),
        position_y=step(state.position_y, state.target_position_y, rate),
        zoom=step(state.zoom, state.target_zoom, zoom_rate),
    )


def step_showroom(state: InteractionState) -> InteractionState:
    if not state.auto_rotate or state.dragging:
        return state
    t = state.showroom_time + SHOWROOM_STEP
    return replace(
        state,
        showroom_time=t,
        target_rotation_y=state.target_rotation_y + AUTO_ROTATE_SPEED,
        target_rotation_x=math.sin(t * WOBBLE_FREQ) * WOBBLE_AMPLITUDE,
    )


def compute_flip_target(current_y: float) -> float:
    """Target Y rotation half a turn past the flat face nearest to ``current_y``."""
    normalized = current_y % (2 * math.pi)
    nearest = math.floor(normalized / math.pi + 0.5) * math.pi
    return current_y + (nearest + math.pi - normalized)


def flip(state: InteractionState) -> InteractionState:
    return replace(state, target_rotation_y=compute_flip_target(state.rotation_y), auto_rotate=False, dragging=False)


def clamp_zoom(z: float) -> float:
    return max(ZOOM_MIN, min(ZOOM_MAX, z))


def _distance(a, b) -> float:
    return math.hypot(b[0] - a[0], b[1] - a[1])


class GestureTracker:
    """
    Mouse and touch handling for the 3D preview.

    Every handler takes the event timestamp (seconds) so timers can be driven
    deterministically; ``update(now)`` fires the ones that are due.
    """

    def __init__(self, state: InteractionState = None):
        self.state = state or InteractionState()
        self._mouse_down = None
        self._last = None
        self._resume_at = []
        self._touch_start = None
        self._touch_start_time = 0.0
        self._hold_due = None
        self._tap_count = 0
        self._tap_expires = None
        self._pinch_distance = 0.0
        self._pinch_zoom = self.state.zoom

    def _set(self, **changes):
        self.state = replace(self.state, **changes)

    def _schedule_resume(self, now: float):
        self._resume_at.append(now + RESUME_DELAY)

    def update(self, now: float):
        due = [t for t in self._resume_at if t <= now]
        if due:
            self._resume_at = [t for t in self._resume_at if t > now]
            self._set(auto_rotate=True)
        if self._hold_due is not None and now >= self._hold_due:
            self._hold_due = None
            self._set(dragging=True, auto_rotate=False)
            self._last = self._touch_start
        if self._tap_expires is not None and now >= self._tap_expires:
            self._tap_expires = None
            self._tap_count = 0

    def _drag_to(self, x: float, y: float):
        dx, dy = x - self._last[0], y - self._last[1]
        self._set(
            target_position_x=self.state.target_position_x + dx * DRAG_SCALE,
            target_position_y=self.state.target_position_y - dy * DRAG_SCALE,
        )
        self._last = (x, y)

    def flip(self, now: float):
        self.state = flip(self.state)
        self._mouse_down = None
        self._schedule_resume(now)

    # mouse

    def mouse_down(self, x: float, y: float, now: float):
        self._mouse_down = (x, y)
        self._last = (x, y)

    def mouse_move(self, x: float, y: float, now: float):
        if self._mouse_down is not None and not self.state.dragging:
            if _distance(self._mouse_down, (x, y)) > DRAG_THRESHOLD:
                self._set(dragging=True, auto_rotate=False)
        if not self.state.dragging:
            return
        self._drag_to(x, y)

    def mouse_up(self, x: float = 0.0, y: float = 0.0, now: float = 0.0):
        was_dragging = self.state.dragging
        self._mouse_down = None
        self._set(dragging=False)
        if was_dragging:
            self._schedule_resume(now)

    def mouse_leave(self, now: float = 0.0):
        self._mouse_down = None
        self._set(dragging=False, auto_rotate=True)

    def wheel(self, delta_y: float, now: float = 0.0):
        step = WHEEL_STEP if delta_y > 0 else -WHEEL_STEP
        self._set(target_zoom=clamp_zoom(self.state.target_zoom + step))

    def double_click(self, x: float = 0.0, y: float = 0.0, now: float = 0.0):
        self.flip(now)

    # touch

    def touch_start(self, points, now: float):
        if len(points) == 1:
            self._touch_start = tuple(points[0])
            self._touch_start_time = now
            self._hold_due = now + TOUCH_HOLD
        elif len(points) == 2:
            self._hold_due = None
            self._set(dragging=False, auto_rotate=False)
            self._pinch_distance = _distance(points[0], points[1])
            self._pinch_zoom = self.state.zoom

    def touch_move(self, points, now: float):
        self.update(now)
        if len(points) == 1 and self.state.dragging:
            self._drag_to(*points[0])
        elif len(points) == 2 and self._pinch_distance > 0:
            scale = _distance(points[0], points[1]) / self._pinch_distance
            if scale > 0:
                self._set(target_zoom=clamp_zoom(self._pinch_zoom / scale))

    def touch_end(self, changed, remaining, now: float):
        if len(changed) == 1 and self._touch_start is not None:
            duration = now - self._touch_start_time
            moved = _distance(self._touch_start, changed[0])
            if duration < TAP_WINDOW and moved < TAP_SLOP and not self.state.dragging:
                self._tap_count += 1
                if self._tap_count == 1:
                    self._tap_expires = now + TAP_WINDOW
                elif self._tap_count == 2:
                    self._tap_count = 0
                    self._tap_expires = None
                    self.flip(now)
        if not remaining:
            self._hold_due = None
            self._touch_start = None
            self._set(dragging=False)
            self._schedule_resume(now)
        elif len(remaining) == 1:
            self._last = tuple(remaining[0])


# ====== Projection ======

def _rotate(v, rx, ry):
    # Euler XYZ: v' = Rx(Ry(v))
    x, y, z = v
    cy, sy = math.cos(ry), math.sin(ry)
    x, z = x * cy + z * sy, -x * sy + z * cy
    cx, sx = math.cos(rx), math.sin(rx)
    y, z = y * cx - z * sx, y * sx + z * cx
    return x, y, z


# texture corners TL, TR, BR, BL in card space
FACE_CORNERS = {
    "front": [(-CARD_W / 2, CARD_H / 2, CARD_D / 2), (CARD_W / 2, CARD_H / 2, CARD_D / 2),
              (CARD_W / 2, -CARD_H / 2, CARD_D / 2), (-CARD_W / 2, -CARD_H / 2, CARD_D / 2)],
    "back": [(CARD_W / 2, CARD_H / 2, -CARD_D / 2), (-CARD_W / 2, CARD_H / 2, -CARD_D / 2),
             (-CARD_W / 2, -CARD_H / 2, -CARD_D / 2), (CARD_W / 2, -CARD_H / 2, -CARD_D / 2)],
}


def visible_face(state: InteractionState) -> str:
    nx, ny, nz = _rotate((0.0, 0.0, 1.0), state.rotation_x, state.rotation_y)
    center = (state.position_x, state.position_y, 0.0)
    to_camera = (-center[0], -center[1], state.zoom - center[2])
    facing = nx * to_camera[0] + ny * to_camera[1] + nz * to_camera[2]
    return "front" if facing >= 0 else "back"


def project_card(state: InteractionState, viewport, fov: float = FOV):
    """
    Screen-space quad (TL, TR, BR, BL) of the face turned toward the camera.

    Returns ``(face, quad)``, or ``(face, None)`` when a corner falls behind
    the camera.
    """
    w, h = viewport
    focal = (h / 2) / math.tan(math.radians(fov) / 2)
    face = visible_face(state)
    quad = []
    for corner in FACE_CORNERS[face]:
        x, y, z = _rotate(corner, state.rotation_x, state.rotation_y)
        x += state.position_x
        y += state.position_y
        depth = state.zoom - z
        if depth <= 1e-3:
            return face, None
        quad.append((w / 2 + focal * x / depth, h / 2 - focal * y / depth))
    return face, quad


def perspective_coefficients(dst, src):
    """Coefficients for ``Image.transform(PERSPECTIVE)`` mapping ``dst`` quad onto ``src`` quad."""
    rows, rhs = [], []
    for (x, y), (u, v) in zip(dst, src):
        rows.append([x, y, 1, 0, 0, 0, -u * x, -u * y])
        rows.append([0, 0, 0, x, y, 1, -v * x, -v * y])
        rhs.extend([u, v])
    return np.linalg.solve(np.array(rows, dtype=float), np.array(rhs, dtype=float)).tolist()


def render_frame(textures: CardTextures, state: InteractionState, viewport=(400, 200),
                 background=(0, 0, 0), texture_scale: float = 0.25) -> Image.Image:
    frame = Image.new("RGB", viewport, background)
    face, quad = project_card(state, viewport)
    if quad is None:
        return frame
    texture = textures.take(face, texture_scale)
    if texture is None:
        return frame
    tw, th = texture.size
    try:
        coeffs = perspective_coefficients(quad, [(0, 0), (tw, 0), (tw, th), (0, th)])
    except np.linalg.LinAlgError:
        # edge-on
        coeffs = None
    if coeffs is not None:
        warped = texture.transform(viewport, Image.PERSPECTIVE, coeffs, Image.BICUBIC)
        mask = Image.new("L", viewport, 0)
        ImageDraw.Draw(mask).polygon(quad, fill=255)
        frame.paste(warped, (0, 0), mask)
    ImageDraw.Draw(frame).line(quad + [quad[0]], fill=EDGE_COLOR, width=1)
    return frame


# ====== Render loop ======

class CardPreview3D(RenderLoop):
    EVENTS = ("mousedown", "mousemove", "mouseup", "mouseleave", "wheel", "dblclick",
              "touchstart", "touchmove", "touchend")

    def __init__(self, card: Card, compact=False, fullscreen=False, scheduler=None, viewport=None, executor=None):
        super().__init__(scheduler)
        self.compact = compact
        self.fullscreen = fullscreen
        if viewport is None:
            viewport = (1280, 720) if fullscreen else (400, 200)
        self.viewport = viewport
        zoom = 5.0 if fullscreen else 3.0
        self.gestures = GestureTracker(InteractionState(zoom=zoom, target_zoom=zoom))
        self.rate = 0.1 if compact else 0.05
        self._executor = executor
        self.textures = CardTextures(card, executor=executor)
        self.last_frame = None

    @property
    def state(self) -> InteractionState:
        return self.gestures.state

    def update_card(self, card: Card):
        textures = CardTextures(card, executor=self._executor)
        with self.lock:
            old, self.textures = self.textures, textures
        old.dispose()

    def resize(self, width: int, height: int):
        self.viewport = (width, height)

    def attach(self, surface):
        g = self.gestures
        handlers = {
            "mousedown": g.mouse_down,
            "mousemove": g.mouse_move,
            "mouseup": g.mouse_up,
            "mouseleave": g.mouse_leave,
            "wheel": g.wheel,
            "dblclick": g.double_click,
            "touchstart": g.touch_start,
            "touchmove": g.touch_move,
            "touchend": g.touch_end,
        }
        for event in self.EVENTS:
            self.listen(surface, event, handlers[event])

    def frame(self, now: float = 0.0) -> Image.Image:
        with self.lock:
            self.gestures.update(now)
            self.gestures.state = smooth(step_showroom(self.gestures.state), self.rate)
            self.last_frame = render_frame(self.textures, self.state, self.viewport)
            return self.last_frame

    def on_frame(self, now: float):
        self.frame(now)

    def release(self):
        self.textures.dispose()
        self.last_frame = None
