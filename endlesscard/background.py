# background.py
import logging
import math
import random
from dataclasses import dataclass

from PIL import Image, ImageDraw

from endlesscard.drawing import parse_color
from endlesscard.loop import EventSurface, RenderLoop

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FluidConfig:
    line_count: int = 3
    segment_length: int = 10
    amplitude: float = 100
    frequency: float = 0.002
    speed: float = 0.0005
    line_width: int = 2
    color: str = "#FFFFFF"
    background: str = "#000000"


class FluidLine:
    """One vertical line made of three stacked sine waves."""

    def __init__(self, index: int, total: int, width: int, rng: random.Random, config: FluidConfig = FluidConfig()):
        self.index = index
        self.total = total
        self.config = config
        self.random_offset = rng.random() * 1000
        self.speed_mod = 0.8 + rng.random() * 0.4
        self.amp_mod = 0.8 + rng.random() * 0.5
        self.update_base_x(width)

    def update_base_x(self, width: int):
        self.base_x = (width / (self.total + 1)) * (self.index + 1)

    def points(self, t: float, height: int):
        c = self.config
        out = []
        for y in range(-50, height + 50, c.segment_length):
            wave1 = math.sin(y * c.frequency + t * self.speed_mod + self.random_offset)
            wave2 = math.sin(y * c.frequency * 2.5 + t * self.speed_mod * 1.5 + self.random_offset)
            wave3 = math.sin(y * c.frequency * 5 + t * 0.5)
            x_offset = (wave1 * c.amplitude * self.amp_mod
                        + wave2 * c.amplitude * 0.5
                        + wave3 * c.amplitude * 0.1)
            out.append((self.base_x + x_offset, y))
        return out


class FluidBackground(RenderLoop):
    def __init__(self, width: int, height: int, scheduler=None, seed=None, config: FluidConfig = FluidConfig()):
        super().__init__(scheduler)
        self.config = config
        self.width = width
        self.height = height
        self.time = 0.0
        self.rng = random.Random(seed)
        self.last_frame = None
        self.init_lines()

    def init_lines(self):
        self.lines = [FluidLine(i, self.config.line_count, self.width, self.rng, self.config)
                      for i in range(self.config.line_count)]

    def resize(self, width: int, height: int):
        self.width, self.height = width, height
        for line in self.lines:
            line.update_base_x(width)
        self.init_lines()

    def attach(self, surface: EventSurface):
        self.listen(surface, "resize", self.resize)

    def render(self, t: float = None) -> Image.Image:
        t = self.time if t is None else t
        img = Image.new("RGB", (self.width, self.height), parse_color(self.config.background, (0, 0, 0)))
        draw = ImageDraw.Draw(img)
        color = parse_color(self.config.color, (255, 255, 255))
        for line in self.lines:
            draw.line(line.points(t * 5, self.height), fill=color, width=self.config.line_width, joint="curve")
        return img

    def on_frame(self, now: float):
        self.time += self.config.speed
        self.last_frame = self.render()

    def release(self):
        self.last_frame = None
        self.lines = []
