"""Argparse-based CLI for viewsnap — inspect and compare snapshot images."""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

from viewsnap.compare import FuzzyPolicy, compare, describe_mismatch, generate_diff_image
from viewsnap.config import find_config, load_config
from viewsnap.errors import SnapshotError
from viewsnap.paths import ArtifactKind, SnapshotIdentity, artifact_path
from viewsnap.store import SnapshotStore

log = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Subcommand handlers
# ---------------------------------------------------------------------------


def cmd_compare(args: argparse.Namespace) -> None:
    """Compare a candidate image with a reference image."""
    store = SnapshotStore()
    candidate = store.read(Path(args.candidate))
    reference = store.read(Path(args.reference))
    fuzzy = FuzzyPolicy(
        channel_tolerance=args.channel_tolerance,
        pixel_tolerance=args.pixel_tolerance,
    )

    verdict = compare(candidate, reference, fuzzy)
    if verdict.passed:
        print(f"{verdict.value}: {args.candidate} matches {args.reference}")
        return

    print(f"{verdict.value}: {describe_mismatch(verdict, candidate, reference)}")
    if args.diff:
        diff_path = store.write(generate_diff_image(candidate, reference), Path(args.diff))
        print(f"  Diff image: {diff_path}")
    sys.exit(1)


def cmd_path(args: argparse.Namespace) -> None:
    """Print where an artifact for a snapshot identity lives."""
    kind = ArtifactKind(args.kind)
    identity = SnapshotIdentity(args.case, args.method, args.identifier)

    base_dir = Path(args.base_dir) if args.base_dir else None
    scale = args.scale
    if base_dir is None or scale is None:
        config = load_config(find_config(Path.cwd()))
        if base_dir is None:
            base_dir = (
                config.reference_dir
                if kind is ArtifactKind.REFERENCE
                else config.scratch_dir
            )
        if scale is None:
            scale = config.scale

    print(artifact_path(identity, kind, scale, base_dir))


def cmd_info(args: argparse.Namespace) -> None:
    """Describe the pixel layout of an image file."""
    buffer = SnapshotStore().read(Path(args.image))
    print(f"{args.image}")
    print(f"  Size:           {buffer.width}x{buffer.height}")
    print(f"  Bytes per row:  {buffer.bytes_per_row}")
    print(f"  Bits per pixel: {buffer.bits_per_pixel}")
    print(f"  Pixel format:   {buffer.pixel_format.value}")


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    """Build and return the argument parser for viewsnap."""
    parser = argparse.ArgumentParser(
        prog="viewsnap",
        description="Snapshot testing for rendered UI views",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        default=False,
        help="Enable debug logging",
    )

    sub = parser.add_subparsers(dest="command")

    # compare
    p_compare = sub.add_parser("compare", help="Compare two snapshot images")
    p_compare.add_argument("candidate", help="Freshly rendered image")
    p_compare.add_argument("reference", help="Reference image")
    p_compare.add_argument("--diff", default=None, help="Write a diff image here on mismatch")
    p_compare.add_argument(
        "--channel-tolerance",
        type=int,
        default=0,
        help="Per-channel difference ignored by fuzzy matching (0-255)",
    )
    p_compare.add_argument(
        "--pixel-tolerance",
        type=float,
        default=0.0,
        help="Fraction of differing pixels allowed by fuzzy matching (0-1)",
    )

    # path
    p_path = sub.add_parser("path", help="Print the path of a snapshot artifact")
    p_path.add_argument("case", help="Test case name")
    p_path.add_argument("method", help="Test method name")
    p_path.add_argument("identifier", nargs="?", default="", help="Snapshot identifier")
    p_path.add_argument(
        "--kind",
        choices=[k.value for k in ArtifactKind],
        default=ArtifactKind.REFERENCE.value,
        help="Artifact kind",
    )
    p_path.add_argument("--scale", type=float, default=None, help="Device scale factor")
    p_path.add_argument("--base-dir", default=None, help="Base directory")

    # info
    p_info = sub.add_parser("info", help="Describe an image file")
    p_info.add_argument("image", help="Path to a PNG image")

    return parser


# ---------------------------------------------------------------------------
# Main
# ---------------------------------------------------------------------------


def main(argv: list[str] | None = None) -> None:
    """Parse arguments and dispatch to the appropriate command handler."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.verbose:
        logging.basicConfig(level=logging.DEBUG)

    dispatch = {
        "compare": cmd_compare,
        "path": cmd_path,
        "info": cmd_info,
    }

    handler = dispatch.get(args.command)
    if handler is None:
        parser.print_help()
        sys.exit(1)

    try:
        handler(args)
    except (SnapshotError, ValueError) as exc:
        print(f"error: {exc}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
