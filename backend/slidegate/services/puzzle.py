import io
import math
import secrets
from dataclasses import dataclass
from pathlib import Path
from random import Random
from typing import List, Optional, Tuple, Union

from PIL import Image, ImageDraw

from ..config import Size

SIDE_OUT = "out"
SIDE_IN = "in"
SIDE_FLAT = "flat"
SIDE_KINDS = (SIDE_OUT, SIDE_IN, SIDE_FLAT)

KNOB_MIN_RATIO = 0.16
KNOB_MAX_RATIO = 0.20
KNOB_ARC_STEPS = 16
SHAPE_MARGIN = 2
SUPERSAMPLE = 4

CANVAS_FILL = (238, 238, 238)
HOLE_FILL_ALPHA = 0.7
BORDER_COLOR = (255, 255, 255, 180)
BORDER_WIDTH = 1
BG_WEBP_QUALITY = 86

BACKGROUND_MIME = "image/webp"
PIECE_MIME = "image/png"

Point = Tuple[float, float]
RandomSource = Union[Random, secrets.SystemRandom]


def _rand_int(rng: RandomSource, min_value: int, max_value: int) -> int:
    if max_value <= min_value:
        return int(min_value)
    return rng.randint(int(min_value), int(max_value))


def clamp_offset_x(x: float, bg_width: int, piece_width: int) -> int:
    """Clamp a horizontal offset into ``[0, bg_width - piece_width]``."""
    max_x = max(0, int(bg_width) - int(piece_width))
    return int(min(max(0, int(round(x))), max_x))


def choose_offset_x(bg_width: int, piece_width: int, rng: RandomSource, x: Optional[float] = None) -> int:
    if x is None:
        x = _rand_int(rng, piece_width, max(piece_width, bg_width - piece_width))
    return clamp_offset_x(x, bg_width, piece_width)


def choose_offset_y(bg_height: int, piece_height: int, rng: RandomSource) -> int:
    return _rand_int(rng, 0, max(0, bg_height - piece_height))


@dataclass(frozen=True)
class JigsawShape:
    """Jigsaw outline: a rectangular body with a lobe on each side.

    ``sides`` lists top, right, bottom and left in clockwise order.
    """

    sides: Tuple[str, str, str, str]
    knob_ratio: float

    @classmethod
    def random(cls, rng: RandomSource) -> "JigsawShape":
        sides = tuple(rng.choice(SIDE_KINDS) for _ in range(4))
        if all(side == SIDE_FLAT for side in sides):
            index = _rand_int(rng, 0, 3)
            sides = sides[:index] + (rng.choice((SIDE_OUT, SIDE_IN)),) + sides[index + 1:]
        knob_ratio = KNOB_MIN_RATIO + rng.random() * (KNOB_MAX_RATIO - KNOB_MIN_RATIO)
        return cls(sides=sides, knob_ratio=knob_ratio)

    def outline(self, width: float, height: float, scale: float = 1.0) -> List[Point]:
        """Closed polygon for a ``width`` x ``height`` box anchored at the origin."""
        w = width * scale
        h = height * scale
        radius = self.knob_ratio * min(w, h)
        inset = SHAPE_MARGIN * scale + radius
        left, top, right, bottom = inset, inset, w - inset, h - inset

        corners = [(left, top), (right, top), (right, bottom), (left, bottom)]
        normals = [(0.0, -1.0), (1.0, 0.0), (0.0, 1.0), (-1.0, 0.0)]
        points: List[Point] = []
        for index, side in enumerate(self.sides):
            start = corners[index]
            end = corners[(index + 1) % 4]
            points.append(start)
            if side == SIDE_FLAT:
                continue
            length = math.hypot(end[0] - start[0], end[1] - start[1])
            if length <= 0:
                continue
            dx = (end[0] - start[0]) / length
            dy = (end[1] - start[1]) / length
            nx, ny = normals[index]
            direction = 1.0 if side == SIDE_OUT else -1.0
            mid_x = (start[0] + end[0]) / 2.0
            mid_y = (start[1] + end[1]) / 2.0
            for step in range(KNOB_ARC_STEPS + 1):
                angle = math.pi - math.pi * step / KNOB_ARC_STEPS
                along = radius * math.cos(angle)
                across = direction * radius * math.sin(angle)
                points.append((mid_x + dx * along + nx * across, mid_y + dy * along + ny * across))
        return points


@dataclass(frozen=True)
class PuzzleResult:
    background_bytes: bytes
    piece_bytes: bytes
    x: int
    y: int
    background_mime: str = BACKGROUND_MIME
    piece_mime: str = PIECE_MIME


def compute_draw_rect(orig_w: int, orig_h: int, target_w: int, target_h: int) -> Tuple[int, int, int, int]:
    """Fit ``orig`` into ``target`` keeping aspect ratio, never upscaling, centred."""
    scale = min(1.0, target_w / orig_w, target_h / orig_h)
    dw = max(1, int(round(orig_w * scale)))
    dh = max(1, int(round(orig_h * scale)))
    dx = int(round((target_w - dw) / 2))
    dy = int(round((target_h - dh) / 2))
    return dx, dy, dw, dh


def compose_background(source_path: Path, bg_width: int, bg_height: int) -> Image.Image:
    with Image.open(source_path) as image:
        source = image.convert("RGB")
    dx, dy, dw, dh = compute_draw_rect(source.width, source.height, bg_width, bg_height)
    if (dw, dh) != source.size:
        source = source.resize((dw, dh), Image.Resampling.LANCZOS)
    canvas = Image.new("RGB", (bg_width, bg_height), CANVAS_FILL)
    canvas.paste(source, (dx, dy))
    return canvas


def _build_shape_assets(shape: JigsawShape, width: int, height: int) -> Tuple[Image.Image, Image.Image]:
    # Drawn oversized and downsampled so the outline is antialiased.
    big = (width * SUPERSAMPLE, height * SUPERSAMPLE)
    points = shape.outline(width, height, scale=SUPERSAMPLE)

    mask = Image.new("L", big, 0)
    ImageDraw.Draw(mask).polygon(points, fill=255)

    border = Image.new("RGBA", big, (255, 255, 255, 0))
    ImageDraw.Draw(border).line(points + [points[0]], fill=BORDER_COLOR, width=BORDER_WIDTH * SUPERSAMPLE)

    size = (width, height)
    return (
        mask.resize(size, Image.Resampling.LANCZOS),
        border.resize(size, Image.Resampling.LANCZOS),
    )


class PuzzleGenerator:
    """Cuts a jigsaw piece out of a source image.

    Shape and offset randomness come from two independent sources so either
    can be pinned (for golden images, say) while the other stays random.
    """

    def __init__(self, shape_rng: Optional[RandomSource] = None, offset_rng: Optional[RandomSource] = None):
        self._shape_rng = shape_rng or secrets.SystemRandom()
        self._offset_rng = offset_rng or secrets.SystemRandom()

    def generate(
        self,
        source_path: Path,
        background_size: Size,
        piece_size: Size,
        x: Optional[float] = None,
    ) -> PuzzleResult:
        bg_width, bg_height = int(background_size.width), int(background_size.height)
        piece_width, piece_height = int(piece_size.width), int(piece_size.height)

        offset_x = choose_offset_x(bg_width, piece_width, self._offset_rng, x)
        offset_y = choose_offset_y(bg_height, piece_height, self._offset_rng)
        shape = JigsawShape.random(self._shape_rng)

        background = compose_background(source_path, bg_width, bg_height)
        shape_mask, shape_border = _build_shape_assets(shape, piece_width, piece_height)

        piece_crop = background.crop(
            (offset_x, offset_y, offset_x + piece_width, offset_y + piece_height)
        ).convert("RGBA")
        piece_strip = Image.new("RGBA", (piece_width, bg_height), (255, 255, 255, 0))
        piece_alpha = Image.new("L", (piece_width, bg_height), 0)
        piece_strip.paste(piece_crop, (0, offset_y))
        piece_alpha.paste(shape_mask, (0, offset_y))
        piece_strip.putalpha(piece_alpha)

        piece_border_canvas = Image.new("RGBA", (piece_width, bg_height), (255, 255, 255, 0))
        piece_border_canvas.paste(shape_border, (0, offset_y), shape_border)
        piece_strip.alpha_composite(piece_border_canvas)

        shaded_bg = background.convert("RGBA")
        hole_overlay = Image.new("RGBA", (piece_width, piece_height), (255, 255, 255, 0))
        hole_overlay.putalpha(shape_mask.point(lambda value: int(value * HOLE_FILL_ALPHA)))
        shaded_bg.alpha_composite(hole_overlay, (offset_x, offset_y))
        shaded_bg.alpha_composite(shape_border, (offset_x, offset_y))

        bg_buffer = io.BytesIO()
        shaded_bg.convert("RGB").save(bg_buffer, format="WEBP", quality=BG_WEBP_QUALITY, method=6)
        piece_buffer = io.BytesIO()
        piece_strip.save(piece_buffer, format="PNG", optimize=True)

        return PuzzleResult(
            background_bytes=bg_buffer.getvalue(),
            piece_bytes=piece_buffer.getvalue(),
            x=offset_x,
            y=offset_y,
        )


__all__ = [
    "JigsawShape",
    "PuzzleGenerator",
    "PuzzleResult",
    "choose_offset_x",
    "choose_offset_y",
    "clamp_offset_x",
    "compose_background",
    "compute_draw_rect",
]
