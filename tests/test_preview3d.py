import math
import threading
from concurrent.futures import Future

import pytest

from endlesscard.loop import EventSurface, ManualScheduler
from endlesscard.models import Card
from endlesscard.preview3d import (
    AUTO_ROTATE_SPEED, SHOWROOM_STEP, ZOOM_MAX, ZOOM_MIN, CardPreview3D, CardTextures, GestureTracker,
    InteractionState, clamp_zoom, compute_flip_target, flip, project_card, render_frame, smooth, step_showroom,
    visible_face,
)

SMALL = (410, 234)


class DeferredExecutor:
    """Holds submitted work until ``run_all`` so load timing is under test control."""

    def __init__(self):
        self.jobs = []

    def submit(self, fn, *args):
        future = Future()
        self.jobs.append((future, fn, args))
        return future

    def run_all(self):
        for future, fn, args in self.jobs:
            if future.set_running_or_notify_cancel():
                future.set_result(fn(*args))
            else:
                # cancelled handles still complete their work, like a decode already in flight
                fn(*args)
        self.jobs = []


@pytest.mark.parametrize("r", [0.0, 0.3, 1.0, math.pi / 2 - 0.01, math.pi / 2 + 0.01, math.pi, 2.5, 4.0, 6.2,
                               7.1, 20.0, -0.4, -3.0, -10.0])
def test_flip_target_is_half_turn_from_nearest_face(r):
    target = compute_flip_target(r)
    turns = target / math.pi
    assert turns == pytest.approx(round(turns), abs=1e-9)
    assert abs((target - r) - math.pi) <= math.pi / 2 + 1e-9
    normalized = r % (2 * math.pi)
    nearest = math.floor(normalized / math.pi + 0.5) * math.pi
    assert (target - r) == pytest.approx(nearest + math.pi - normalized)


def test_flip_from_rest():
    state = flip(InteractionState(auto_rotate=True, dragging=True))
    assert state.target_rotation_y == pytest.approx(math.pi)
    assert not state.auto_rotate
    assert not state.dragging
    assert compute_flip_target(math.pi) == pytest.approx(2 * math.pi)


def test_smooth_moves_toward_targets():
    state = InteractionState(target_rotation_y=1.0, target_position_x=2.0, zoom=3.0, target_zoom=5.0)
    nxt = smooth(state, 0.1)
    assert nxt.rotation_y == pytest.approx(0.1)
    assert nxt.position_x == pytest.approx(0.2)
    assert nxt.zoom == pytest.approx(3.2)
    assert state.rotation_y == 0.0
    for _ in range(200):
        nxt = smooth(nxt, 0.1)
    assert nxt.rotation_y == pytest.approx(1.0, abs=1e-6)
    assert nxt.zoom == pytest.approx(5.0, abs=1e-6)


def test_showroom_rotation():
    state = step_showroom(InteractionState())
    assert state.target_rotation_y == pytest.approx(AUTO_ROTATE_SPEED)
    assert state.showroom_time == pytest.approx(SHOWROOM_STEP)
    assert state.target_rotation_x == pytest.approx(math.sin(SHOWROOM_STEP * 0.3) * 0.1)
    paused = InteractionState(auto_rotate=False)
    assert step_showroom(paused) == paused
    dragging = InteractionState(dragging=True)
    assert step_showroom(dragging) == dragging


def test_clamp_zoom():
    assert clamp_zoom(0.1) == ZOOM_MIN
    assert clamp_zoom(100) == ZOOM_MAX
    assert clamp_zoom(2.0) == 2.0


def test_mouse_drag_pans_and_resumes_later():
    g = GestureTracker()
    g.mouse_down(0, 0, now=0.0)
    g.mouse_move(3, 0, now=0.01)
    assert not g.state.dragging
    g.mouse_move(10, 0, now=0.02)
    assert g.state.dragging
    assert not g.state.auto_rotate
    assert g.state.target_position_x == pytest.approx(0.1)
    g.mouse_move(10, 10, now=0.03)
    assert g.state.target_position_y == pytest.approx(-0.1)

    g.mouse_up(10, 10, now=5.0)
    assert not g.state.dragging
    g.update(5.5)
    assert not g.state.auto_rotate
    g.update(6.0)
    assert g.state.auto_rotate


def test_mouse_leave_resumes_immediately():
    g = GestureTracker()
    g.mouse_down(0, 0, now=0.0)
    g.mouse_move(50, 0, now=0.1)
    g.mouse_leave(now=0.2)
    assert g.state.auto_rotate
    assert not g.state.dragging


def test_wheel_zoom_is_clamped():
    g = GestureTracker()
    g.wheel(1.0)
    assert g.state.target_zoom == pytest.approx(3.05)
    g.wheel(-1.0)
    g.wheel(-1.0)
    assert g.state.target_zoom == pytest.approx(2.95)
    g.state.target_zoom = 7.99
    g.wheel(1.0)
    g.wheel(1.0)
    assert g.state.target_zoom == ZOOM_MAX


def test_double_click_flips_then_resumes():
    g = GestureTracker()
    g.double_click(now=2.0)
    assert g.state.target_rotation_y == pytest.approx(math.pi)
    assert not g.state.auto_rotate
    g.update(2.9)
    assert not g.state.auto_rotate
    g.update(3.0)
    assert g.state.auto_rotate


def test_double_tap_flips():
    g = GestureTracker()
    g.touch_start([(10, 10)], 0.0)
    g.touch_end([(11, 10)], [], 0.1)
    assert g.state.target_rotation_y == 0.0
    g.touch_start([(10, 10)], 0.2)
    g.touch_end([(10, 12)], [], 0.25)
    assert g.state.target_rotation_y == pytest.approx(math.pi)


def test_slow_taps_do_not_flip():
    g = GestureTracker()
    g.touch_start([(10, 10)], 0.0)
    g.touch_end([(10, 10)], [], 0.1)
    g.update(0.5)
    g.touch_start([(10, 10)], 0.6)
    g.touch_end([(10, 10)], [], 0.7)
    assert g.state.target_rotation_y == 0.0


def test_touch_hold_then_drag():
    g = GestureTracker()
    g.touch_start([(0, 0)], 0.0)
    g.touch_move([(5, 0)], 0.1)
    assert not g.state.dragging
    g.touch_move([(10, 0)], 0.2)
    assert g.state.dragging
    assert g.state.target_position_x == pytest.approx(0.1)
    g.touch_end([(10, 0)], [], 0.5)
    assert not g.state.dragging
    g.update(1.5)
    assert g.state.auto_rotate


def test_pinch_zoom():
    g = GestureTracker()
    g.touch_start([(0, 0), (100, 0)], 0.0)
    assert not g.state.auto_rotate
    g.touch_move([(0, 0), (200, 0)], 0.1)
    assert g.state.target_zoom == pytest.approx(1.5)
    g.touch_move([(0, 0), (50, 0)], 0.2)
    assert g.state.target_zoom == pytest.approx(6.0)
    g.touch_move([(0, 0), (5, 0)], 0.3)
    assert g.state.target_zoom == ZOOM_MAX


def test_visible_face_and_projection():
    front = InteractionState()
    assert visible_face(front) == "front"
    face, quad = project_card(front, (400, 200))
    assert face == "front"
    tl, tr, br, bl = quad
    assert tl[0] < tr[0] and tl[1] < bl[1]
    assert br[0] == pytest.approx(tr[0]) and br[1] == pytest.approx(bl[1])
    # card is centred
    assert (tl[0] + tr[0]) / 2 == pytest.approx(200)

    back = InteractionState(rotation_y=math.pi)
    face, quad = project_card(back, (400, 200))
    assert face == "back"
    tl, tr, _, bl = quad
    # back texture is not mirrored
    assert tl[0] < tr[0] and tl[1] < bl[1]


def test_zoom_changes_projected_size():
    _, near = project_card(InteractionState(zoom=2.0), (400, 200))
    _, far = project_card(InteractionState(zoom=6.0), (400, 200))
    assert (near[1][0] - near[0][0]) > (far[1][0] - far[0][0])


def test_camera_inside_card_gives_no_quad():
    face, quad = project_card(InteractionState(zoom=0.0), (400, 200))
    assert quad is None


def test_textures_and_render_frame():
    textures = CardTextures(Card(name="Ada", company="Engine Works"), size=SMALL)
    try:
        assert textures.wait()
        front = textures.take("front")
        assert front.mode == "RGB"
        assert not textures.dirty["front"]
        assert textures.take("front") is front
        half = textures.take("back", 0.5)
        assert half.size == (SMALL[0] // 2, SMALL[1] // 2)

        frame = render_frame(textures, InteractionState(), (200, 100), background=(255, 0, 255), texture_scale=1.0)
        assert frame.size == (200, 100)
        assert frame.getpixel((100, 50)) != (255, 0, 255)
        assert frame.getpixel((1, 1)) == (255, 0, 255)

        edge = render_frame(textures, InteractionState(rotation_y=math.pi / 2), (200, 100), texture_scale=1.0)
        assert edge.size == (200, 100)
    finally:
        textures.dispose()


def test_image_is_drawn_after_decode(png_data_uri):
    executor = DeferredExecutor()
    textures = CardTextures(Card(name="Ada", photo=png_data_uri), executor=executor, size=SMALL)
    pending = textures.take("front").copy()
    assert textures.source == png_data_uri
    executor.run_all()
    assert textures.dirty["front"]
    assert textures.wait()
    loaded = textures.take("front")
    assert loaded.tobytes() != pending.tobytes()
    textures.dispose()


def test_late_image_after_dispose_is_ignored(png_data_uri):
    executor = DeferredExecutor()
    textures = CardTextures(Card(name="Ada", photo=png_data_uri), executor=executor, size=SMALL)
    textures.dispose()
    assert not textures.alive
    executor.run_all()
    assert textures.front is None
    assert textures.take("front") is None


def test_wait_timeout_draws_glyph(png_data_uri):
    executor = DeferredExecutor()
    textures = CardTextures(Card(name="Ada", photo=png_data_uri), executor=executor, size=SMALL)
    pending = textures.take("front").copy()
    assert textures.wait(0.01) is False
    glyph = textures.take("front")
    assert glyph.tobytes() != pending.tobytes()
    textures.dispose()


def test_broken_image_falls_back_to_glyph():
    executor = DeferredExecutor()
    textures = CardTextures(Card(name="Ada", photo="data:image/png;base64,AAAA"), executor=executor, size=SMALL)
    executor.run_all()
    broken = textures.take("front").tobytes()
    plain = CardTextures(Card(name="Ada"), size=SMALL)
    assert broken == plain.take("front").tobytes()
    textures.dispose()
    plain.dispose()


def test_preview_loop_lifecycle():
    scheduler = ManualScheduler()
    surface = EventSurface()
    preview = CardPreview3D(Card(name="Ada"), scheduler=scheduler)
    preview.attach(surface)
    assert surface.listener_count() == 9
    assert preview.state.zoom == 3.0
    assert preview.rate == 0.05

    preview.start()
    scheduler.step(3)
    assert preview.frames == 3
    assert preview.last_frame.size == (400, 200)
    assert preview.state.rotation_y > 0

    surface.emit("wheel", 1.0)
    assert preview.state.target_zoom == pytest.approx(3.05)

    textures = preview.textures
    preview.dispose()
    assert surface.listener_count() == 0
    assert scheduler.pending == 0
    assert not textures.alive
    assert preview.last_frame is None
    with pytest.raises(RuntimeError):
        preview.start()


def test_preview_variants_and_update_card():
    fullscreen = CardPreview3D(Card(), fullscreen=True, compact=True, scheduler=ManualScheduler())
    assert fullscreen.state.zoom == 5.0
    assert fullscreen.rate == 0.1
    old = fullscreen.textures
    fullscreen.update_card(Card(name="Grace"))
    assert not old.alive
    assert fullscreen.textures.alive
    assert fullscreen.textures.card.name == "Grace"
    fullscreen.dispose()


def test_gesture_events_wait_for_the_frame_lock():
    preview = CardPreview3D(Card(name="Ada"), scheduler=ManualScheduler(), viewport=(80, 40))
    surface = EventSurface()
    preview.attach(surface)
    done = threading.Event()

    def scroll():
        surface.emit("wheel", 1.0)
        done.set()

    with preview.lock:
        worker = threading.Thread(target=scroll)
        worker.start()
        assert not done.wait(0.1)
        assert preview.state.target_zoom == 3.0
    worker.join(2.0)
    assert done.is_set()
    assert preview.state.target_zoom == pytest.approx(3.05)
    preview.dispose()
