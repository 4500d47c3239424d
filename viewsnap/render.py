"""Renderer interface and a reference renderer for pixel arrays."""

from __future__ import annotations

import logging
from typing import Any, Callable, NamedTuple, Protocol

import numpy as np
from skimage.transform import resize

from viewsnap.buffer import PixelBuffer, PixelFormat
from viewsnap.errors import EmptyDimensionError

log = logging.getLogger(__name__)


class Size(NamedTuple):
    """Width and height in points (before the scale factor is applied)."""

    width: float
    height: float


class Renderer(Protocol):
    """Turns a UI element into a bitmap.

    Implementations must raise EmptyDimensionError instead of producing a
    degenerate buffer when *size* has no area.
    """

    def render(self, element: Any, size: Size) -> PixelBuffer: ...


def check_size(size: Size, element: Any = None) -> Size:
    """Validate a capture size, raising EmptyDimensionError for zero area."""
    size = Size(*size)
    what = f" for {type(element).__name__}" if element is not None else ""
    # Written as "not > 0" so NaN is rejected too.
    if not size.width > 0:
        raise EmptyDimensionError(f"Zero width{what}")
    if not size.height > 0:
        raise EmptyDimensionError(f"Zero height{what}")
    return size


def render_element(renderer: Renderer, element: Any, size: Size) -> PixelBuffer:
    """Render *element* at *size* through *renderer*."""
    size = check_size(size, element)
    buffer = renderer.render(element, size)
    log.debug(
        "Rendered %s at %sx%s -> %dx%d %s",
        type(element).__name__,
        size.width,
        size.height,
        buffer.width,
        buffer.height,
        buffer.pixel_format.value,
    )
    return buffer


class ArrayRenderer:
    """Renders elements that already know how to produce pixels.

    An element is either a ``draw(width_px, height_px)`` callable returning
    a uint8 array, or a uint8 array itself. Arrays whose size differs from
    the requested pixel size are rescaled with nearest-neighbour sampling,
    so no new colours are introduced.

    *settle* runs before every capture; UI integrations use it to pump
    their event loop (with a short timeout) so layout can finish.
    """

    def __init__(
        self,
        scale: float = 1,
        pixel_format: PixelFormat | None = None,
        settle: Callable[[], None] | None = None,
    ) -> None:
        self.scale = scale
        self.pixel_format = pixel_format
        self.settle = settle

    def pixel_size(self, size: Size) -> tuple[int, int]:
        """Return the (width, height) in pixels for a size in points."""
        return round(size.width * self.scale), round(size.height * self.scale)

    def render(self, element: Any, size: Size) -> PixelBuffer:
        size = check_size(size, element)
        width, height = self.pixel_size(size)
        if width == 0 or height == 0:
            raise EmptyDimensionError(
                f"{size.width}x{size.height} at scale {self.scale} is under one pixel"
            )

        if self.settle is not None:
            self.settle()

        if callable(element):
            pixels = np.asarray(element(width, height))
        else:
            pixels = np.asarray(element)

        if pixels.shape[:2] != (height, width):
            log.debug("Rescaling %s to %dx%d", pixels.shape, width, height)
            pixels = resize(
                pixels,
                (height, width) + pixels.shape[2:],
                order=0,
                anti_aliasing=False,
                preserve_range=True,
            ).astype(np.uint8)

        return PixelBuffer.from_array(pixels, self.pixel_format)
