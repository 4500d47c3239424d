"""Pixel comparison of a candidate against its reference, and diff images."""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass

import numpy as np
from skimage.color import rgb2gray
from skimage.transform import resize
from skimage.util import compare_images

from viewsnap.buffer import PixelBuffer, PixelFormat
from viewsnap.errors import IncompatibleBufferError

log = logging.getLogger(__name__)

_DIFF_COLOR = (255, 0, 0, 255)


class Verdict(enum.Enum):
    """Outcome of verifying a snapshot."""

    MATCH = "match"
    MISMATCH = "mismatch"
    REFERENCE_MISSING = "reference-missing"
    DIMENSION_MISMATCH = "dimension-mismatch"
    FORMAT_MISMATCH = "format-mismatch"

    @property
    def passed(self) -> bool:
        return self is Verdict.MATCH


@dataclass(frozen=True)
class FuzzyPolicy:
    """Tolerance for premultiplied RGBA comparisons.

    A pixel counts as different when any channel differs by more than
    *channel_tolerance*. The images still match when the fraction of
    different pixels is at most *pixel_tolerance*. Both default to zero,
    which means exact matching only.
    """

    channel_tolerance: int = 0
    pixel_tolerance: float = 0.0

    def __post_init__(self) -> None:
        if not 0 <= self.channel_tolerance <= 255:
            raise ValueError(
                f"channel_tolerance must be within 0..255, got {self.channel_tolerance}"
            )
        if not 0.0 <= self.pixel_tolerance <= 1.0:
            raise ValueError(
                f"pixel_tolerance must be within 0..1, got {self.pixel_tolerance}"
            )

    @property
    def enabled(self) -> bool:
        return self.channel_tolerance > 0 or self.pixel_tolerance > 0


def count_differing_pixels(
    a: PixelBuffer,
    b: PixelBuffer,
    channel_tolerance: int = 0,
) -> int:
    """Count pixels where any channel differs by more than *channel_tolerance*.

    Both buffers must have the same size and channel count.
    """
    diff = np.abs(a.to_array().astype(np.int16) - b.to_array().astype(np.int16))
    mask = np.any(diff > channel_tolerance, axis=-1)
    return int(np.count_nonzero(mask))


def _fuzzy_eligible(buffer: PixelBuffer) -> bool:
    return (
        buffer.pixel_format is PixelFormat.RGBA_PREMULTIPLIED
        and buffer.bytes_per_row == buffer.width * 4
    )


def compare(
    candidate: PixelBuffer,
    reference: PixelBuffer,
    fuzzy: FuzzyPolicy | None = None,
) -> Verdict:
    """Compare *candidate* with *reference*.

    Checks run in order and the first one that applies decides: pixel
    format, dimensions, exact bytes, then the optional fuzzy tolerance.

    Raises:
        IncompatibleBufferError: If format and size agree but the row
            layout does not, meaning the reference came from an
            incompatible renderer configuration.
    """
    if candidate.pixel_format is not reference.pixel_format:
        return Verdict.FORMAT_MISMATCH
    if candidate.size != reference.size:
        return Verdict.DIMENSION_MISMATCH

    # Callers pack both sides first; a difference left here is a harness fault.
    if candidate.bytes_per_row != reference.bytes_per_row:
        raise IncompatibleBufferError(
            f"bytes-per-row mismatch: {candidate.bytes_per_row} != {reference.bytes_per_row}"
        )
    if candidate.bits_per_pixel != reference.bits_per_pixel:
        raise IncompatibleBufferError(
            f"bits-per-pixel mismatch: {candidate.bits_per_pixel} != {reference.bits_per_pixel}"
        )

    if candidate.data == reference.data:
        return Verdict.MATCH

    if fuzzy is not None and fuzzy.enabled and _fuzzy_eligible(candidate):
        differing = count_differing_pixels(
            candidate, reference, fuzzy.channel_tolerance
        )
        ratio = differing / (candidate.width * candidate.height)
        log.debug(
            "Fuzzy compare: %d pixels beyond tolerance %d (%.4f, allowed %.4f)",
            differing,
            fuzzy.channel_tolerance,
            ratio,
            fuzzy.pixel_tolerance,
        )
        if ratio <= fuzzy.pixel_tolerance:
            return Verdict.MATCH

    return Verdict.MISMATCH


def describe_mismatch(
    verdict: Verdict,
    candidate: PixelBuffer,
    reference: PixelBuffer,
) -> str:
    """Explain a verdict with the expected and actual values."""
    if verdict is Verdict.FORMAT_MISMATCH:
        return (
            f"Pixel format does not match: expected {reference.pixel_format.value}, "
            f"got {candidate.pixel_format.value}"
        )
    if verdict is Verdict.DIMENSION_MISMATCH:
        return (
            f"Size does not match: expected {reference.width}x{reference.height}, "
            f"got {candidate.width}x{candidate.height}"
        )
    if verdict is Verdict.MISMATCH:
        differing = count_differing_pixels(candidate, reference)
        total = candidate.width * candidate.height
        return (
            f"Image data does not match reference: "
            f"{differing} of {total} pixels differ"
        )
    return f"Image {verdict.value}"


def generate_diff_image(candidate: PixelBuffer, reference: PixelBuffer) -> PixelBuffer:
    """Build an RGBA image highlighting where *candidate* differs.

    Differing pixels are painted red on top of a grayscale copy of the
    candidate. A reference of another size is resized to the candidate
    first, and both sides are expanded to RGBA so formats can differ.
    """
    img_candidate = candidate.to_rgba_array()
    img_ref = reference.to_rgba_array()

    if img_candidate.shape != img_ref.shape:
        log.info(
            "Resizing reference %s to match candidate %s for the diff",
            img_ref.shape,
            img_candidate.shape,
        )
        img_ref = resize(
            img_ref,
            img_candidate.shape,
            anti_aliasing=True,
            preserve_range=True,
        ).astype(np.uint8)

    delta = compare_images(img_candidate, img_ref, method="diff")
    mask = np.any(delta > 0, axis=-1)

    gray = np.round(rgb2gray(img_candidate[:, :, :3]) * 255).astype(np.uint8)
    result = np.empty_like(img_candidate)
    result[:, :, :3] = gray[:, :, np.newaxis]
    result[:, :, 3] = 255
    result[mask] = _DIFF_COLOR

    log.debug("Diff image has %d differing pixels", int(mask.sum()))
    return PixelBuffer.from_array(result, PixelFormat.RGBA)
