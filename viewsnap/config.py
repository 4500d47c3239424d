"""Snapshot configuration from a TOML file and the environment."""

from __future__ import annotations

import logging
import os
import tempfile
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping

from viewsnap.compare import FuzzyPolicy
from viewsnap.errors import ConfigurationError

log = logging.getLogger(__name__)

CONFIG_FILENAME = "viewsnap.toml"

REFERENCE_DIR_VAR = "SNAPSHOT_REFERENCE_IMAGES"
SCRATCH_DIR_VAR = "SNAPSHOT_SCRATCH_DIR"
SCALE_VAR = "SNAPSHOT_SCALE"


@dataclass(frozen=True)
class SnapshotConfig:
    """Settings read once per test run and handed to the engine."""

    reference_dir: Path
    scratch_dir: Path = field(default_factory=lambda: Path(tempfile.gettempdir()))
    scale: float = 1
    fuzzy: FuzzyPolicy = field(default_factory=FuzzyPolicy)


def find_config(start: Path) -> Path | None:
    """Return the nearest viewsnap.toml in *start* or one of its parents."""
    start = Path(start).resolve()
    for d in (start, *start.parents):
        candidate = d / CONFIG_FILENAME
        if candidate.is_file():
            return candidate
    return None


def _parse_scale(value: object, source: str) -> float:
    try:
        scale = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        raise ConfigurationError(f"Invalid scale in {source}: {value!r}") from None
    if not scale > 0:
        raise ConfigurationError(f"Scale must be positive in {source}, got {value!r}")
    return scale


def _load_file(path: Path) -> dict:
    """Load the [snapshot] table of a config file.

    Relative directories are resolved against the file's directory.
    """
    try:
        with open(path, "rb") as f:
            data = tomllib.load(f)
    except tomllib.TOMLDecodeError as exc:
        raise ConfigurationError(f"Invalid config file {path}: {exc}") from exc

    section = data.get("snapshot")
    if not isinstance(section, dict):
        raise ConfigurationError(f"Missing required section [snapshot] in {path}")

    settings: dict = {}
    for key in ("reference_dir", "scratch_dir"):
        if key in section:
            if not isinstance(section[key], str):
                raise ConfigurationError(
                    f"{key} must be a string in {path}, got {section[key]!r}"
                )
            settings[key] = path.parent / Path(section[key]).expanduser()
    if "scale" in section:
        settings["scale"] = _parse_scale(section["scale"], str(path))

    fuzzy = section.get("fuzzy", {})
    if not isinstance(fuzzy, dict):
        raise ConfigurationError(f"[snapshot.fuzzy] must be a table in {path}")
    try:
        settings["fuzzy"] = FuzzyPolicy(
            channel_tolerance=int(fuzzy.get("channel_tolerance", 0)),
            pixel_tolerance=float(fuzzy.get("pixel_tolerance", 0.0)),
        )
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"Invalid [snapshot.fuzzy] in {path}: {exc}") from exc

    return settings


def load_config(
    path: Path | None = None,
    environ: Mapping[str, str] | None = None,
) -> SnapshotConfig:
    """Build the snapshot configuration.

    Settings come from the optional TOML file at *path* first; the
    environment variables SNAPSHOT_REFERENCE_IMAGES, SNAPSHOT_SCRATCH_DIR
    and SNAPSHOT_SCALE override them.

    Raises:
        ConfigurationError: If no reference directory is configured or a
            value is invalid.
    """
    env = os.environ if environ is None else environ
    settings: dict = {}

    if path is not None:
        settings.update(_load_file(Path(path)))
        log.debug("Loaded snapshot config from %s", path)

    if env.get(REFERENCE_DIR_VAR):
        settings["reference_dir"] = Path(env[REFERENCE_DIR_VAR]).expanduser()
    if env.get(SCRATCH_DIR_VAR):
        settings["scratch_dir"] = Path(env[SCRATCH_DIR_VAR]).expanduser()
    if env.get(SCALE_VAR):
        settings["scale"] = _parse_scale(env[SCALE_VAR], SCALE_VAR)

    if "reference_dir" not in settings:
        raise ConfigurationError(
            f"Set the {REFERENCE_DIR_VAR} environment variable to point to the "
            f"reference image directory (or set reference_dir in {CONFIG_FILENAME})."
        )

    config = SnapshotConfig(**settings)
    log.debug(
        "Reference images in %s, scratch in %s, scale %s",
        config.reference_dir,
        config.scratch_dir,
        config.scale,
    )
    return config
