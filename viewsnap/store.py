"""Reading and writing snapshot images on disk."""

from __future__ import annotations

import logging
from pathlib import Path

from viewsnap.buffer import PixelBuffer
from viewsnap.errors import DecodeError, ReferenceMissingError

log = logging.getLogger(__name__)


class SnapshotStore:
    """Persists pixel buffers as PNG files."""

    def write(self, buffer: PixelBuffer, path: Path) -> Path:
        """Encode *buffer* and write it to *path*, replacing any existing file.

        Parent directories are created on every call since nothing else
        guarantees they exist. OSError propagates to the caller.
        """
        path = Path(path)
        data = buffer.to_encoded_bytes()
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
        log.info(
            "Wrote %dx%d %s image to %s",
            buffer.width,
            buffer.height,
            buffer.pixel_format.value,
            path,
        )
        return path

    def read(self, path: Path) -> PixelBuffer:
        """Load the image at *path*.

        Raises:
            ReferenceMissingError: If the file does not exist or cannot be read.
            DecodeError: If the file is not a decodable PNG.
        """
        path = Path(path)
        try:
            data = path.read_bytes()
        except FileNotFoundError:
            raise ReferenceMissingError(f"No image at {path}") from None
        except OSError as exc:
            raise ReferenceMissingError(f"Unable to read {path}: {exc}") from exc

        try:
            buffer = PixelBuffer.from_encoded_bytes(data)
        except DecodeError as exc:
            raise DecodeError(f"Unable to decode {path}: {exc}") from exc

        log.debug("Read %dx%d image from %s", buffer.width, buffer.height, path)
        return buffer
