"""Tests for viewsnap.buffer — pixel buffers and PNG encoding."""

from __future__ import annotations

import io

import numpy as np
import pytest
from PIL import Image

from viewsnap.buffer import PixelBuffer, PixelFormat, solid
from viewsnap.errors import DecodeError, EmptyDimensionError, ReferenceMissingError


# ── helpers ──────────────────────────────────────────────────────────


def _png_bytes(mode: str, size: tuple[int, int], color) -> bytes:
    """Encode a plain Pillow image without any viewsnap metadata."""
    out = io.BytesIO()
    Image.new(mode, size, color).save(out, format="PNG")
    return out.getvalue()


def _noise(shape: tuple[int, ...], seed: int = 7) -> np.ndarray:
    rng = np.random.default_rng(seed)
    return rng.integers(0, 256, size=shape, dtype=np.uint8)


# ── construction ─────────────────────────────────────────────────────


class TestConstruction:
    """Tests for PixelBuffer invariants."""

    def test_valid_buffer(self):
        buf = PixelBuffer(
            width=2,
            height=3,
            bytes_per_row=8,
            bits_per_pixel=32,
            pixel_format=PixelFormat.RGBA,
            data=bytes(24),
        )
        assert buf.size == (2, 3)
        assert buf.bytes_per_pixel == 4

    @pytest.mark.parametrize("width,height", [(0, 3), (3, 0), (0, 0)])
    def test_zero_dimension_rejected(self, width, height):
        with pytest.raises(EmptyDimensionError):
            PixelBuffer(
                width=width,
                height=height,
                bytes_per_row=width * 4,
                bits_per_pixel=32,
                pixel_format=PixelFormat.RGBA,
                data=b"",
            )

    def test_data_length_must_match_rows(self):
        with pytest.raises(ValueError, match="Expected 24 bytes"):
            PixelBuffer(
                width=2,
                height=3,
                bytes_per_row=8,
                bits_per_pixel=32,
                pixel_format=PixelFormat.RGBA,
                data=bytes(23),
            )

    def test_bits_per_pixel_must_match_format(self):
        with pytest.raises(ValueError, match="bits per pixel"):
            PixelBuffer(
                width=2,
                height=2,
                bytes_per_row=6,
                bits_per_pixel=24,
                pixel_format=PixelFormat.RGBA,
                data=bytes(12),
            )

    def test_rows_too_short(self):
        with pytest.raises(ValueError, match="too small"):
            PixelBuffer(
                width=4,
                height=1,
                bytes_per_row=8,
                bits_per_pixel=32,
                pixel_format=PixelFormat.RGBA,
                data=bytes(8),
            )

    def test_padded_rows_allowed(self):
        buf = PixelBuffer(
            width=1,
            height=2,
            bytes_per_row=8,
            bits_per_pixel=32,
            pixel_format=PixelFormat.RGBA,
            data=bytes([1, 2, 3, 4, 0, 0, 0, 0, 5, 6, 7, 8, 0, 0, 0, 0]),
        )
        arr = buf.to_array()
        assert arr.shape == (2, 1, 4)
        assert arr[1, 0].tolist() == [5, 6, 7, 8]

    def test_data_is_copied_from_mutable_source(self):
        raw = bytearray(16)
        buf = PixelBuffer(
            width=2,
            height=2,
            bytes_per_row=8,
            bits_per_pixel=16,
            pixel_format=PixelFormat.GRAY_ALPHA,
            data=raw,
        )
        raw[0] = 9
        assert isinstance(buf.data, bytes)
        assert buf.data[0] == 0

    def test_memoryview_source_is_copied(self):
        raw = bytearray(4)
        buf = PixelBuffer(1, 1, 4, 32, PixelFormat.RGBA, memoryview(raw))
        raw[:] = b"\xff\xff\xff\xff"
        assert buf.data == bytes(4)


class TestPacked:
    """Tests for PixelBuffer.packed()."""

    def test_padding_removed(self):
        buf = PixelBuffer(
            width=1,
            height=2,
            bytes_per_row=8,
            bits_per_pixel=32,
            pixel_format=PixelFormat.RGBA,
            data=bytes([1, 2, 3, 4, 9, 9, 9, 9, 5, 6, 7, 8, 9, 9, 9, 9]),
        )
        assert not buf.is_packed

        packed = buf.packed()

        assert packed.is_packed
        assert packed.bytes_per_row == 4
        assert packed.pixel_format is PixelFormat.RGBA
        assert packed.data == bytes([1, 2, 3, 4, 5, 6, 7, 8])

    def test_tight_buffer_returned_as_is(self):
        buf = solid(3, 3, (1, 2, 3, 4))
        assert buf.packed() is buf


class TestFromArray:
    """Tests for PixelBuffer.from_array()."""

    def test_four_channels_default_to_premultiplied(self):
        buf = PixelBuffer.from_array(np.zeros((3, 5, 4), dtype=np.uint8))
        assert buf.pixel_format is PixelFormat.RGBA_PREMULTIPLIED
        assert buf.width == 5
        assert buf.height == 3
        assert buf.bytes_per_row == 20
        assert buf.bits_per_pixel == 32

    def test_two_dimensional_is_gray(self):
        buf = PixelBuffer.from_array(np.zeros((3, 5), dtype=np.uint8))
        assert buf.pixel_format is PixelFormat.GRAY
        assert buf.bytes_per_row == 5

    def test_explicit_format(self):
        buf = PixelBuffer.from_array(
            np.zeros((2, 2, 4), dtype=np.uint8), PixelFormat.RGBA
        )
        assert buf.pixel_format is PixelFormat.RGBA

    def test_format_channel_mismatch(self):
        with pytest.raises(ValueError, match="channels"):
            PixelBuffer.from_array(np.zeros((2, 2, 3), dtype=np.uint8), PixelFormat.RGBA)

    def test_rejects_non_uint8(self):
        with pytest.raises(ValueError, match="uint8"):
            PixelBuffer.from_array(np.zeros((2, 2, 4), dtype=np.float32))

    def test_rejects_empty_array(self):
        with pytest.raises(EmptyDimensionError):
            PixelBuffer.from_array(np.zeros((0, 4, 4), dtype=np.uint8))

    def test_to_array_round_trip(self):
        arr = _noise((6, 7, 3))
        assert np.array_equal(PixelBuffer.from_array(arr).to_array(), arr)


class TestSolid:
    """Tests for solid()."""

    def test_fills_every_pixel(self):
        buf = solid(44, 44, (255, 0, 0, 255))
        arr = buf.to_array()
        assert buf.size == (44, 44)
        assert (arr == [255, 0, 0, 255]).all()

    def test_colour_must_match_channels(self):
        with pytest.raises(ValueError, match="components"):
            solid(2, 2, (255, 0, 0), PixelFormat.RGBA)

    def test_zero_size(self):
        with pytest.raises(EmptyDimensionError):
            solid(0, 10, (0, 0, 0, 255))


# ── encoding ─────────────────────────────────────────────────────────


class TestEncoding:
    """Tests for to_encoded_bytes() / from_encoded_bytes()."""

    @pytest.mark.parametrize("pixel_format", list(PixelFormat))
    def test_round_trip_keeps_pixels_and_format(self, pixel_format):
        arr = _noise((9, 11, pixel_format.channels))
        buf = PixelBuffer.from_array(arr, pixel_format)

        decoded = PixelBuffer.from_encoded_bytes(buf.to_encoded_bytes())

        assert decoded == buf

    def test_encoding_is_deterministic(self):
        buf = PixelBuffer.from_array(_noise((16, 16, 4)))
        assert buf.to_encoded_bytes() == buf.to_encoded_bytes()

    def test_output_is_png(self):
        data = solid(4, 4, (1, 2, 3, 4)).to_encoded_bytes()
        assert data.startswith(b"\x89PNG\r\n\x1a\n")

    def test_padding_is_dropped(self):
        buf = PixelBuffer(
            width=1,
            height=2,
            bytes_per_row=8,
            bits_per_pixel=32,
            pixel_format=PixelFormat.RGBA,
            data=bytes([1, 2, 3, 4, 9, 9, 9, 9, 5, 6, 7, 8, 9, 9, 9, 9]),
        )
        decoded = PixelBuffer.from_encoded_bytes(buf.to_encoded_bytes())
        assert decoded.bytes_per_row == 4
        assert np.array_equal(decoded.to_array(), buf.to_array())

    def test_untagged_png_uses_its_mode(self):
        decoded = PixelBuffer.from_encoded_bytes(_png_bytes("RGB", (3, 2), (10, 20, 30)))
        assert decoded.pixel_format is PixelFormat.RGB
        assert decoded.to_array()[0, 0].tolist() == [10, 20, 30]

    def test_untagged_rgba_is_straight_alpha(self):
        decoded = PixelBuffer.from_encoded_bytes(
            _png_bytes("RGBA", (2, 2), (10, 20, 30, 40))
        )
        assert decoded.pixel_format is PixelFormat.RGBA

    def test_palette_png_converted_to_rgba(self):
        image = Image.new("P", (2, 2), 0)
        image.putpalette([200, 100, 50] * 256)
        out = io.BytesIO()
        image.save(out, format="PNG")

        decoded = PixelBuffer.from_encoded_bytes(out.getvalue())

        assert decoded.pixel_format is PixelFormat.RGBA
        assert decoded.to_array()[0, 0].tolist() == [200, 100, 50, 255]

    def test_malformed_bytes(self):
        with pytest.raises(DecodeError):
            PixelBuffer.from_encoded_bytes(b"definitely not a png")

    def test_truncated_png(self):
        data = PixelBuffer.from_array(_noise((32, 32, 4))).to_encoded_bytes()
        with pytest.raises(DecodeError):
            PixelBuffer.from_encoded_bytes(data[: len(data) // 2])

    def test_decode_error_is_a_missing_reference(self):
        with pytest.raises(ReferenceMissingError):
            PixelBuffer.from_encoded_bytes(b"")

    def test_oversized_image_is_a_decode_error(self, monkeypatch):
        data = _png_bytes("RGBA", (4, 4), (1, 2, 3, 4))
        monkeypatch.setattr(Image, "MAX_IMAGE_PIXELS", 1)
        with pytest.raises(DecodeError):
            PixelBuffer.from_encoded_bytes(data)
