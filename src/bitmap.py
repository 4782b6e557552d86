"""Bitmap rendering module.

This module renders sparse vectors and continuous-valued grids as PNG
images. Every renderer returns the encoded PNG as ``bytes`` so callers can
forward it straight to storage; nothing is written to disk here.

Grids follow the ``[x, y]`` convention: :func:`to_grid` fills a vector
row-major into a ``height x width`` array and transposes it, so the first
index is the image column.
"""

import io
import math
from collections.abc import Sequence

import numpy as np
from PIL import Image, ImageDraw, ImageFont

from src.errors import ConfigurationError, ShapeError

Color = tuple[int, int, int]

BLACK: Color = (0, 0, 0)
WHITE: Color = (255, 255, 255)
YELLOW: Color = (255, 255, 0)
BLUE: Color = (0, 0, 255)

# Heatmap color stops
HEAT_GREEN: Color = (99, 190, 123)
HEAT_YELLOW: Color = (254, 255, 132)
HEAT_RED: Color = (255, 0, 0)

LABEL_FONT_SIZE: int = 20


def _to_png_bytes(img: Image.Image) -> bytes:
    """Encode a Pillow image as PNG bytes in memory."""
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


def near_square_shape(length: int) -> tuple[int, int]:
    """Return the most square ``(width, height)`` with ``width * height == length``.

    ``height`` is the largest divisor not exceeding ``sqrt(length)``, so
    perfect squares map onto ``(side, side)``.
    """
    if length <= 0:
        msg = f"Cannot shape an empty vector (length {length})"
        raise ShapeError(msg)
    height = math.isqrt(length)
    while length % height != 0:
        height -= 1
    return length // height, height


def to_grid(
    vector: Sequence[float] | np.ndarray,
    width: int | None = None,
    height: int | None = None,
) -> np.ndarray:
    """Reshape a vector into a transposed 2D grid.

    Without explicit dimensions the vector length must be a perfect
    square. With one dimension given, the other is derived from the
    vector length.

    Args:
        vector: Flat sequence of cell values
        width: Number of columns of the row-major fill
        height: Number of rows of the row-major fill

    Returns:
        Array of shape ``(width, height)`` indexed ``[x, y]``

    Raises:
        ShapeError: If the vector cannot be laid out with the given dimensions
    """
    arr = np.asarray(vector)
    if arr.ndim != 1 or arr.size == 0:
        msg = f"Expected a non-empty 1D vector, got shape {arr.shape}"
        raise ShapeError(msg)
    length = arr.size

    if width is None and height is None:
        side = math.isqrt(length)
        if side * side != length:
            msg = (
                f"Vector of length {length} is not a perfect square; "
                f"an explicit width/height is required"
            )
            raise ShapeError(msg)
        width = height = side
    elif width is None:
        if height <= 0 or length % height != 0:
            msg = f"Vector of length {length} cannot be split into {height} rows"
            raise ShapeError(msg)
        width = length // height
    elif height is None:
        if width <= 0 or length % width != 0:
            msg = f"Vector of length {length} cannot be split into {width} columns"
            raise ShapeError(msg)
        height = length // width

    if width <= 0 or height <= 0 or width * height != length:
        msg = f"Grid {width}x{height} does not match vector length {length}"
        raise ShapeError(msg)

    return arr.reshape(height, width).T


def _paint_cells(mask: np.ndarray, active: Color, inactive: Color) -> np.ndarray:
    """Map a ``[y, x]`` boolean mask to an RGB pixel array."""
    return np.where(
        mask[..., None],
        np.array(active, dtype=np.uint8),
        np.array(inactive, dtype=np.uint8),
    ).astype(np.uint8)


def _upscale(pixels: np.ndarray, scale_y: int, scale_x: int) -> np.ndarray:
    return np.repeat(np.repeat(pixels, scale_y, axis=0), scale_x, axis=1)


def _as_grid(grid: np.ndarray | Sequence[Sequence[float]]) -> np.ndarray:
    arr = np.asarray(grid)
    if arr.ndim != 2 or arr.size == 0:
        msg = f"Expected a non-empty 2D grid, got shape {arr.shape}"
        raise ShapeError(msg)
    return arr


def draw_bitmap(
    grid: np.ndarray | Sequence[Sequence[int]],
    target_width: int = 1024,
    inactive_color: Color = BLACK,
    active_color: Color = YELLOW,
    text: str | None = None,
) -> bytes:
    """Render a binary grid as a PNG image.

    Each cell becomes a ``scale x scale`` block with
    ``scale = ceil(target_width / grid_width)``.

    Args:
        grid: Binary grid indexed ``[x, y]`` (see :func:`to_grid`)
        target_width: Requested image width in pixels
        inactive_color: Color of cells with value other than 1
        active_color: Color of cells with value 1
        text: Optional label drawn in white at the top-left corner

    Returns:
        PNG bytes

    Raises:
        ShapeError: If the grid is wider than the requested image
    """
    arr = _as_grid(grid)
    grid_width = arr.shape[0]
    if target_width <= 0 or grid_width > target_width:
        msg = f"Requested width {target_width} is smaller than grid width {grid_width}"
        raise ShapeError(msg)

    scale = math.ceil(target_width / grid_width)
    pixels = _upscale(_paint_cells(arr.T == 1, active_color, inactive_color), scale, scale)
    img = Image.fromarray(pixels)

    if text:
        draw = ImageDraw.Draw(img)
        draw.text((0, 0), text, fill=WHITE, font=ImageFont.load_default(size=LABEL_FONT_SIZE))

    return _to_png_bytes(img)


def draw_1d_bitmap(
    vector: Sequence[int] | np.ndarray,
    scale: int = 200,
    height: int = 50,
    inactive_color: Color = WHITE,
    active_color: Color = BLACK,
) -> bytes:
    """Render a vector as a single strip of ``scale``-pixel wide cells."""
    arr = np.asarray(vector)
    if arr.ndim != 1 or arr.size == 0:
        msg = f"Expected a non-empty 1D vector, got shape {arr.shape}"
        raise ShapeError(msg)
    if scale <= 0 or height <= 0:
        msg = f"Strip scale and height must be positive, got {scale} and {height}"
        raise ConfigurationError(msg)

    pixels = _upscale(_paint_cells(arr[None, :] == 1, active_color, inactive_color), height, scale)
    return _to_png_bytes(Image.fromarray(pixels))


def draw_bitmaps(
    grids: Sequence[np.ndarray],
    width: int,
    height: int,
    inactive_color: Color = BLACK,
    active_color: Color = YELLOW,
) -> bytes:
    """Render several binary grids side by side in one image.

    The image width is split evenly between the grids; each grid is
    scaled to fit its slot horizontally and the full height vertically.

    Raises:
        ShapeError: If there are no grids or a grid does not fit its slot
    """
    if not grids:
        msg = "draw_bitmaps needs at least one grid"
        raise ShapeError(msg)

    slot = width // len(grids)
    canvas = np.empty((height, width, 3), dtype=np.uint8)
    canvas[:, :] = np.array(inactive_color, dtype=np.uint8)

    for index, grid in enumerate(grids):
        arr = _as_grid(grid)
        grid_width, grid_height = arr.shape
        scale_w = slot // grid_width
        scale_h = height // grid_height
        if scale_w == 0 or scale_h == 0:
            msg = (
                f"Grid {index} ({grid_width}x{grid_height}) does not fit into a "
                f"{slot}x{height} slot"
            )
            raise ShapeError(msg)

        block = _upscale(_paint_cells(arr.T == 1, active_color, inactive_color), scale_h, scale_w)
        x0 = index * slot
        canvas[: block.shape[0], x0 : x0 + block.shape[1]] = block

    return _to_png_bytes(Image.fromarray(canvas))


def _validate_thresholds(red_start: float, yellow_middle: float, green_start: float) -> None:
    if not green_start <= yellow_middle <= red_start:
        msg = (
            f"Heatmap thresholds must satisfy green_start <= yellow_middle <= red_start, "
            f"got {green_start}, {yellow_middle}, {red_start}"
        )
        raise ConfigurationError(msg)


def _heat_pixels(
    values: np.ndarray | float,
    red_start: float,
    yellow_middle: float,
    green_start: float,
) -> np.ndarray:
    """Color every value at once; the result gains a trailing RGB axis."""
    values = np.asarray(values, dtype=np.float64)
    green = np.array(HEAT_GREEN, dtype=np.float64)
    yellow = np.array(HEAT_YELLOW, dtype=np.float64)
    red = np.array(HEAT_RED, dtype=np.float64)

    upper = values > yellow_middle
    # collapsed bands divide by zero, but those cells are all clamped below
    with np.errstate(divide="ignore", invalid="ignore"):
        low = np.where(upper, yellow_middle, green_start)
        high = np.where(upper, red_start, yellow_middle)
        ratio = ((values - low) / (high - low))[..., None]
        low_color = np.where(upper[..., None], yellow, green)
        high_color = np.where(upper[..., None], red, yellow)
        pixels = low_color + np.round((high_color - low_color) * ratio)

    pixels = np.where((values >= red_start)[..., None], red, pixels)
    pixels = np.where((values <= green_start)[..., None], green, pixels)
    return pixels.astype(np.uint8)


def heat_color(
    value: float,
    red_start: float = 200,
    yellow_middle: float = 127,
    green_start: float = 20,
) -> Color:
    """Map a value onto the green-yellow-red color scale.

    Values at or below ``green_start`` are green, values at or above
    ``red_start`` are red; in between, the color is blended linearly
    between the two neighbouring stops.
    """
    r, g, b = (int(c) for c in _heat_pixels(value, red_start, yellow_middle, green_start))
    return (r, g, b)


def draw_heatmaps(
    grids: Sequence[np.ndarray],
    width: int = 1024,
    height: int = 1024,
    red_start: float = 200,
    yellow_middle: float = 127,
    green_start: float = 20,
) -> bytes:
    """Render continuous-valued grids side by side as heatmaps.

    Args:
        grids: Grids indexed ``[x, y]`` holding arbitrary numeric values
        width: Image width in pixels
        height: Image height in pixels
        red_start: Values at or above this are red
        yellow_middle: Values around this are yellow
        green_start: Values at or below this are green

    Returns:
        PNG bytes

    Raises:
        ConfigurationError: If the thresholds are out of order
        ShapeError: If the grids do not fit into the image
    """
    _validate_thresholds(red_start, yellow_middle, green_start)
    if not grids:
        msg = "draw_heatmaps needs at least one grid"
        raise ShapeError(msg)

    arrays = [_as_grid(grid) for grid in grids]
    total_width = sum(arr.shape[0] for arr in arrays)
    max_height = max(arr.shape[1] for arr in arrays)
    if total_width > width or max_height > height:
        msg = f"Grids ({total_width}x{max_height}) do not fit into a {width}x{height} image"
        raise ShapeError(msg)

    slot = width // len(arrays)
    canvas = np.zeros((height, width, 3), dtype=np.uint8)

    for index, arr in enumerate(arrays):
        grid_width, grid_height = arr.shape
        # one spare cell per slot keeps neighbouring heatmaps apart
        scale = max(1, slot // (grid_width + 1))
        scale = min(scale, height // grid_height)

        colors = _heat_pixels(arr.T, red_start, yellow_middle, green_start)

        block = _upscale(colors, scale, scale)
        x0 = index * slot
        if x0 + block.shape[1] > width:
            msg = f"Heatmap {index} ({grid_width} cells wide) overflows its {slot}px slot"
            raise ShapeError(msg)
        canvas[: block.shape[0], x0 : x0 + block.shape[1]] = block

    return _to_png_bytes(Image.fromarray(canvas))
