# loop.py
import itertools
import logging
import threading
import time

logger = logging.getLogger(__name__)

FRAME_INTERVAL = 1 / 60


# ====== Schedulers ======

class ManualScheduler:
    """Deterministic scheduler: frames only run when the caller advances time."""

    def __init__(self, start: float = 0.0, interval: float = FRAME_INTERVAL):
        self.now = start
        self.interval = interval
        self._pending = {}
        self._ids = itertools.count(1)

    def request(self, callback):
        handle = next(self._ids)
        self._pending[handle] = callback
        return handle

    def cancel(self, handle):
        self._pending.pop(handle, None)

    @property
    def pending(self) -> int:
        return len(self._pending)

    def step(self, frames: int = 1):
        for _ in range(frames):
            self.now += self.interval
            due, self._pending = self._pending, {}
            for callback in due.values():
                callback(self.now)

    def advance(self, seconds: float):
        self.step(max(1, int(round(seconds / self.interval))))


class ThreadScheduler:
    """Wall-clock scheduler backed by ``threading.Timer`` (~60 fps)."""

    def __init__(self, interval: float = FRAME_INTERVAL, clock=time.monotonic):
        self.interval = interval
        self.clock = clock
        self._timers = {}
        self._lock = threading.Lock()
        self._ids = itertools.count(1)

    def request(self, callback):
        handle = next(self._ids)

        def fire():
            with self._lock:
                if self._timers.pop(handle, None) is None:
                    return
            callback(self.clock())

        timer = threading.Timer(self.interval, fire)
        timer.daemon = True
        with self._lock:
            self._timers[handle] = timer
        timer.start()
        return handle

    def cancel(self, handle):
        with self._lock:
            timer = self._timers.pop(handle, None)
        if timer is not None:
            timer.cancel()

    @property
    def pending(self) -> int:
        with self._lock:
            return len(self._timers)


# ====== Render loop ======

class EventSurface:
    """Minimal listener registry standing in for a canvas element."""

    def __init__(self):
        self._handlers = {}

    def bind(self, event: str, handler):
        self._handlers.setdefault(event, []).append(handler)

    def unbind(self, event: str, handler):
        handlers = self._handlers.get(event, [])
        if handler in handlers:
            handlers.remove(handler)
        if not handlers:
            self._handlers.pop(event, None)

    def listener_count(self, event: str = None) -> int:
        if event is not None:
            return len(self._handlers.get(event, []))
        return sum(len(h) for h in self._handlers.values())

    def emit(self, event: str, *args, **kwargs):
        for handler in list(self._handlers.get(event, [])):
            handler(*args, **kwargs)


class RenderLoop:
    """Requests one frame at a time from its scheduler. A disposed loop cannot be restarted."""

    def __init__(self, scheduler=None):
        self.scheduler = scheduler or ThreadScheduler()
        self.running = False
        self.disposed = False
        self.frames = 0
        self._handle = None
        self._listeners = []
        # frames and event handlers never run at the same time
        self.lock = threading.RLock()

    def start(self):
        if self.disposed:
            raise RuntimeError(f"{type(self).__name__} was disposed")
        if self.running:
            return
        self.running = True
        self._schedule()

    def stop(self):
        self.running = False
        if self._handle is not None:
            self.scheduler.cancel(self._handle)
            self._handle = None

    def dispose(self):
        if self.disposed:
            return
        self.stop()
        for surface, event, handler in self._listeners:
            surface.unbind(event, handler)
        self._listeners.clear()
        with self.lock:
            self.release()
        self.disposed = True

    def listen(self, surface, event: str, handler):
        def locked(*args, **kwargs):
            with self.lock:
                return handler(*args, **kwargs)

        surface.bind(event, locked)
        self._listeners.append((surface, event, locked))

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def release(self):
        """Free renderer-owned resources; called once from ``dispose()``."""

    def on_frame(self, now: float):
        raise NotImplementedError

    def _schedule(self):
        self._handle = self.scheduler.request(self._tick)

    def _tick(self, now: float):
        self._handle = None
        if not self.running:
            return
        try:
            with self.lock:
                self.on_frame(now)
        except Exception:
            logger.exception("Frame failed in %s; stopping loop", type(self).__name__)
            self.running = False
            return
        self.frames += 1
        if self.running:
            self._schedule()
