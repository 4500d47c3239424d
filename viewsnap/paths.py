"""Naming of reference and diagnostic image files."""

from __future__ import annotations

import enum
import platform
from dataclasses import dataclass
from pathlib import Path


class ArtifactKind(enum.Enum):
    """What an image file on disk is for."""

    REFERENCE = "reference"
    FAILED = "failed"
    DIFF = "diff"


@dataclass(frozen=True)
class SnapshotIdentity:
    """Names a snapshot: the test case, test method and an optional identifier.

    The triple must be unique within a test run, otherwise snapshots
    overwrite each other's reference files.
    """

    test_case_name: str
    test_method_name: str
    identifier: str = ""


def format_scale(scale: float) -> str:
    """Format a scale factor the way it appears in file names (``2``, ``1.5``)."""
    if float(scale).is_integer():
        return str(int(scale))
    return f"{scale:g}"


def artifact_filename(
    identity: SnapshotIdentity,
    kind: ArtifactKind,
    scale: float = 1,
) -> str:
    """Return ``<method>-<identifier>[%<kind>][@<scale>x].png``.

    Reference files never carry a kind suffix.
    """
    kind_suffix = "" if kind is ArtifactKind.REFERENCE else f"%{kind.value}"
    scale_suffix = "" if scale == 1 else f"@{format_scale(scale)}x"
    return (
        f"{identity.test_method_name}-{identity.identifier}"
        f"{kind_suffix}{scale_suffix}.png"
    )


def artifact_path(
    identity: SnapshotIdentity,
    kind: ArtifactKind,
    scale: float,
    base_dir: Path,
) -> Path:
    """Compute where an artifact lives: ``<base_dir>/<test case>/<filename>``.

    Pure path arithmetic; nothing is created or checked on disk.
    """
    return Path(base_dir) / identity.test_case_name / artifact_filename(
        identity, kind, scale
    )


def major_os_version() -> str:
    """Short OS tag such as ``Linux6`` or ``Darwin23``.

    Handy as a snapshot identifier when system fonts or widgets differ
    between OS releases.
    """
    major = platform.release().split(".", 1)[0]
    return f"{platform.system()}{major}"
