"""In-memory bitmaps and their lossless PNG encoding."""

from __future__ import annotations

import enum
import io
import logging
from dataclasses import dataclass, field

import numpy as np
from PIL import Image
from PIL.PngImagePlugin import PngInfo

from viewsnap.errors import DecodeError, EmptyDimensionError

log = logging.getLogger(__name__)

# PNG text chunk that carries the pixel-format tag across a round trip.
_FORMAT_KEY = "viewsnap:pixel-format"
_COMPRESS_LEVEL = 6


class PixelFormat(enum.Enum):
    """Channel layout and alpha convention, named after Pillow modes."""

    GRAY = "L"
    GRAY_ALPHA = "LA"
    RGB = "RGB"
    RGBA = "RGBA"
    RGBA_PREMULTIPLIED = "RGBa"

    @property
    def channels(self) -> int:
        return len(self.value)

    @property
    def bits_per_pixel(self) -> int:
        return self.channels * 8

    @property
    def png_mode(self) -> str:
        """Pillow mode used when the bytes are written to a PNG."""
        # PNG has no premultiplied mode; the bytes are stored untouched.
        return "RGBA" if self is PixelFormat.RGBA_PREMULTIPLIED else self.value

    @classmethod
    def for_channels(cls, channels: int) -> PixelFormat:
        """Default format for an array with *channels* channels.

        Four channels map to premultiplied RGBA, which is what renderers
        produce.
        """
        formats = {
            1: cls.GRAY,
            2: cls.GRAY_ALPHA,
            3: cls.RGB,
            4: cls.RGBA_PREMULTIPLIED,
        }
        try:
            return formats[channels]
        except KeyError:
            raise ValueError(f"Unsupported channel count: {channels}") from None


@dataclass(frozen=True)
class PixelBuffer:
    """An immutable bitmap.

    ``data`` holds ``height`` rows of ``bytes_per_row`` bytes each. Rows may
    carry trailing padding beyond ``width * bits_per_pixel / 8``.
    """

    width: int
    height: int
    bytes_per_row: int
    bits_per_pixel: int
    pixel_format: PixelFormat
    data: bytes = field(repr=False)

    def __post_init__(self) -> None:
        # Copy so a caller's bytearray or memoryview cannot change the pixels.
        object.__setattr__(self, "data", bytes(self.data))
        if self.width <= 0 or self.height <= 0:
            raise EmptyDimensionError(
                f"Pixel buffer must not be empty: {self.width}x{self.height}"
            )
        if self.bits_per_pixel != self.pixel_format.bits_per_pixel:
            raise ValueError(
                f"{self.pixel_format.name} needs {self.pixel_format.bits_per_pixel} "
                f"bits per pixel, got {self.bits_per_pixel}"
            )
        if self.bytes_per_row < self.width * self.bytes_per_pixel:
            raise ValueError(
                f"bytes_per_row {self.bytes_per_row} is too small for "
                f"{self.width} pixels of {self.bytes_per_pixel} bytes"
            )
        if self.bytes_per_row * self.height != len(self.data):
            raise ValueError(
                f"Expected {self.bytes_per_row * self.height} bytes "
                f"({self.bytes_per_row} x {self.height}), got {len(self.data)}"
            )

    @property
    def bytes_per_pixel(self) -> int:
        return self.bits_per_pixel // 8

    @property
    def size(self) -> tuple[int, int]:
        return self.width, self.height

    @property
    def is_packed(self) -> bool:
        """True when rows carry no trailing padding."""
        return self.bytes_per_row == self.width * self.bytes_per_pixel

    def packed(self) -> PixelBuffer:
        """Return this buffer with row padding removed.

        Decoded PNGs are always tightly packed, so a freshly rendered
        buffer has to be packed before it can be compared with one.
        """
        if self.is_packed:
            return self
        return PixelBuffer.from_array(self.to_array(), self.pixel_format)

    # ── construction ──────────────────────────────────────────────────

    @classmethod
    def from_array(
        cls,
        array: np.ndarray,
        pixel_format: PixelFormat | None = None,
    ) -> PixelBuffer:
        """Wrap a uint8 array of shape (h, w) or (h, w, c).

        The format is inferred from the channel count when not given.
        """
        array = np.asarray(array)
        if array.dtype != np.uint8:
            raise ValueError(f"Expected a uint8 array, got {array.dtype}")
        if array.ndim == 2:
            array = array[:, :, np.newaxis]
        if array.ndim != 3:
            raise ValueError(f"Expected a 2D or 3D array, got shape {array.shape}")

        height, width, channels = array.shape
        if pixel_format is None:
            pixel_format = PixelFormat.for_channels(channels)
        elif pixel_format.channels != channels:
            raise ValueError(
                f"{pixel_format.name} needs {pixel_format.channels} channels, "
                f"array has {channels}"
            )
        return cls(
            width=width,
            height=height,
            bytes_per_row=width * channels,
            bits_per_pixel=pixel_format.bits_per_pixel,
            pixel_format=pixel_format,
            data=np.ascontiguousarray(array).tobytes(),
        )

    @classmethod
    def from_encoded_bytes(cls, data: bytes) -> PixelBuffer:
        """Decode a PNG.

        The pixel format is restored from the embedded tag when present,
        otherwise it follows the PNG's own mode. Palette and high bit-depth
        images are converted to RGBA.

        Raises:
            DecodeError: If *data* is not a readable image.
        """
        try:
            image = Image.open(io.BytesIO(data))
            image.load()
        except (OSError, SyntaxError, ValueError, Image.DecompressionBombError) as exc:
            raise DecodeError(f"Unable to decode image data: {exc}") from exc

        tag = image.info.get(_FORMAT_KEY)
        try:
            pixel_format = PixelFormat(tag) if tag is not None else None
        except ValueError:
            log.warning("Ignoring unknown pixel format tag %r", tag)
            pixel_format = None

        if pixel_format is None:
            if image.mode not in ("L", "LA", "RGB", "RGBA"):
                log.debug("Converting %s image to RGBA", image.mode)
                image = image.convert("RGBA")
            pixel_format = PixelFormat(image.mode)
        elif image.mode != pixel_format.png_mode:
            image = image.convert(pixel_format.png_mode)

        width, height = image.size
        return cls(
            width=width,
            height=height,
            bytes_per_row=width * pixel_format.channels,
            bits_per_pixel=pixel_format.bits_per_pixel,
            pixel_format=pixel_format,
            data=image.tobytes(),
        )

    # ── conversion ────────────────────────────────────────────────────

    def to_array(self) -> np.ndarray:
        """Return the pixels as a read-only (h, w, c) uint8 array, without padding."""
        rows = np.frombuffer(self.data, dtype=np.uint8).reshape(
            self.height, self.bytes_per_row
        )
        used = rows[:, : self.width * self.bytes_per_pixel]
        return used.reshape(self.height, self.width, self.pixel_format.channels)

    def to_rgba_array(self) -> np.ndarray:
        """Return the pixels expanded to (h, w, 4) RGBA, for diagnostics."""
        arr = self.to_array()
        channels = self.pixel_format.channels
        if channels == 4:
            return arr.copy()
        alpha = np.full(arr.shape[:2] + (1,), 255, dtype=np.uint8)
        if channels == 1:
            return np.concatenate([arr, arr, arr, alpha], axis=-1)
        if channels == 2:
            gray = arr[:, :, :1]
            return np.concatenate([gray, gray, gray, arr[:, :, 1:]], axis=-1)
        return np.concatenate([arr, alpha], axis=-1)

    def to_encoded_bytes(self) -> bytes:
        """Encode as PNG. The same buffer always yields the same bytes."""
        packed = np.ascontiguousarray(self.to_array()).tobytes()
        image = Image.frombytes(self.pixel_format.png_mode, self.size, packed)

        info = PngInfo()
        info.add_text(_FORMAT_KEY, self.pixel_format.value)

        out = io.BytesIO()
        image.save(out, format="PNG", pnginfo=info, compress_level=_COMPRESS_LEVEL)
        return out.getvalue()


def solid(
    width: int,
    height: int,
    color: tuple[int, ...],
    pixel_format: PixelFormat = PixelFormat.RGBA_PREMULTIPLIED,
) -> PixelBuffer:
    """Create a buffer filled with a single colour."""
    if len(color) != pixel_format.channels:
        raise ValueError(
            f"{pixel_format.name} colour needs {pixel_format.channels} components, "
            f"got {color!r}"
        )
    if width <= 0 or height <= 0:
        raise EmptyDimensionError(f"Pixel buffer must not be empty: {width}x{height}")
    arr = np.empty((height, width, pixel_format.channels), dtype=np.uint8)
    arr[:, :] = color
    return PixelBuffer.from_array(arr, pixel_format)
