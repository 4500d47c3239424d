"""Record-or-verify workflow for a single snapshot."""

from __future__ import annotations

import enum
import logging
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol

from viewsnap.buffer import PixelBuffer
from viewsnap.compare import Verdict, compare, describe_mismatch, generate_diff_image
from viewsnap.config import SnapshotConfig
from viewsnap.errors import DecodeError, EmptyDimensionError, ReferenceMissingError
from viewsnap.paths import ArtifactKind, SnapshotIdentity, artifact_path
from viewsnap.render import Renderer, Size, render_element
from viewsnap.store import SnapshotStore

log = logging.getLogger(__name__)


class Mode(enum.Enum):
    """Whether a snapshot call writes the reference or checks against it."""

    RECORD = "record"
    VERIFY = "verify"


@dataclass(frozen=True)
class SourceLocation:
    """A file and line in test code that failures are attributed to."""

    file: str
    line: int

    def __str__(self) -> str:
        return f"{self.file}:{self.line}"

    @classmethod
    def of_caller(cls, depth: int = 1) -> SourceLocation:
        """Location of the frame *depth* levels above the caller."""
        frame = sys._getframe(depth + 1)
        return cls(frame.f_code.co_filename, frame.f_lineno)


class Reporter(Protocol):
    """Surfaces snapshot outcomes to the test framework."""

    def report_failure(self, message: str, location: SourceLocation | None) -> None: ...

    def report_success(self, location: SourceLocation | None) -> None: ...


@dataclass(frozen=True)
class SnapshotResult:
    """What a single snapshot call did.

    ``verdict`` is None in record mode, and when nothing could be
    rendered.
    """

    mode: Mode
    verdict: Verdict | None
    reference_path: Path
    failed_path: Path | None = None
    diff_path: Path | None = None
    message: str = ""


class SnapshotEngine:
    """Renders, then records or verifies, one snapshot per call.

    The engine keeps no state between calls. Two calls for different
    identities never touch the same files; two concurrent calls for the
    same identity race on the reference file.
    """

    def __init__(
        self,
        config: SnapshotConfig,
        renderer: Renderer,
        reporter: Reporter,
        store: SnapshotStore | None = None,
    ) -> None:
        self.config = config
        self.renderer = renderer
        self.reporter = reporter
        self.store = store if store is not None else SnapshotStore()

    # ── paths ─────────────────────────────────────────────────────────

    def reference_path(self, identity: SnapshotIdentity) -> Path:
        return artifact_path(
            identity, ArtifactKind.REFERENCE, self.config.scale, self.config.reference_dir
        )

    def scratch_path(self, identity: SnapshotIdentity, kind: ArtifactKind) -> Path:
        return artifact_path(identity, kind, self.config.scale, self.config.scratch_dir)

    # ── public API ────────────────────────────────────────────────────

    def snapshot(
        self,
        element: Any,
        size: Size,
        identity: SnapshotIdentity,
        mode: Mode,
        location: SourceLocation | None = None,
    ) -> SnapshotResult:
        """Render *element* at *size*, then record or verify it.

        A zero-sized capture is reported as a failure of the calling test.
        """
        __tracebackhide__ = True
        try:
            buffer = render_element(self.renderer, element, size)
        except EmptyDimensionError as exc:
            message = f"Unable to snapshot {identity.test_method_name}: {exc}"
            self.reporter.report_failure(message, location)
            return SnapshotResult(
                mode=mode,
                verdict=None,
                reference_path=self.reference_path(identity),
                message=message,
            )
        return self.run(buffer, identity, mode, location)

    def run(
        self,
        buffer: PixelBuffer,
        identity: SnapshotIdentity,
        mode: Mode,
        location: SourceLocation | None = None,
    ) -> SnapshotResult:
        """Record or verify an already rendered *buffer*.

        Row padding is dropped first, so a padded render lays out exactly
        like the reference it was recorded as.
        """
        __tracebackhide__ = True
        buffer = buffer.packed()
        if mode is Mode.RECORD:
            return self._record(buffer, identity, location)
        return self._verify(buffer, identity, location)

    # ── record ────────────────────────────────────────────────────────

    def _record(
        self,
        buffer: PixelBuffer,
        identity: SnapshotIdentity,
        location: SourceLocation | None,
    ) -> SnapshotResult:
        __tracebackhide__ = True
        path = self.reference_path(identity)
        self.store.write(buffer, path)

        # Recording never passes; the test has to run again in verify mode.
        message = f'Recorded new reference image at "{path}"'
        result = SnapshotResult(
            mode=Mode.RECORD, verdict=None, reference_path=path, message=message
        )
        self.reporter.report_failure(message, location)
        return result

    # ── verify ────────────────────────────────────────────────────────

    def _verify(
        self,
        buffer: PixelBuffer,
        identity: SnapshotIdentity,
        location: SourceLocation | None,
    ) -> SnapshotResult:
        __tracebackhide__ = True
        ref_path = self.reference_path(identity)

        try:
            reference = self.store.read(ref_path)
        except DecodeError as exc:
            reference = None
            verdict = Verdict.REFERENCE_MISSING
            headline = f'Unable to load reference image "{ref_path}": {exc}'
        except ReferenceMissingError:
            reference = None
            verdict = Verdict.REFERENCE_MISSING
            headline = (
                f'No reference image at "{ref_path}". This snapshot was never '
                f"recorded; run the test in record mode to create it."
            )
        else:
            verdict = compare(buffer, reference, self.config.fuzzy)
            if verdict.passed:
                log.debug("Snapshot %s matches %s", identity, ref_path)
                self.reporter.report_success(location)
                return SnapshotResult(
                    mode=Mode.VERIFY, verdict=verdict, reference_path=ref_path
                )
            headline = describe_mismatch(verdict, buffer, reference)

        failed_path, diff_path, problems = self._write_diagnostics(
            identity, buffer, reference
        )

        lines = [headline]
        if failed_path is not None:
            lines.append(f'Failed image: "{failed_path}"')
        if diff_path is not None:
            lines.append(f'Diff image: "{diff_path}"')
        if reference is not None and failed_path is not None:
            lines.append(
                f"To compare with Kaleidoscope run: ksdiff '{ref_path}' '{failed_path}'"
            )
        lines.extend(problems)
        message = "\n".join(lines)

        log.info("Snapshot %s failed: %s", identity, verdict.value)
        result = SnapshotResult(
            mode=Mode.VERIFY,
            verdict=verdict,
            reference_path=ref_path,
            failed_path=failed_path,
            diff_path=diff_path,
            message=message,
        )
        self.reporter.report_failure(message, location)
        return result

    def _write_diagnostics(
        self,
        identity: SnapshotIdentity,
        candidate: PixelBuffer,
        reference: PixelBuffer | None,
    ) -> tuple[Path | None, Path | None, list[str]]:
        """Write the failed (and, given a reference, diff) images to scratch.

        Write errors are logged and returned as messages so they never hide
        the comparison failure itself.
        """
        problems: list[str] = []
        failed_path: Path | None = None
        diff_path: Path | None = None

        try:
            failed_path = self.store.write(
                candidate, self.scratch_path(identity, ArtifactKind.FAILED)
            )
        except OSError as exc:
            log.warning("Could not write failed image for %s: %s", identity, exc)
            problems.append(f"Could not write failed image: {exc}")

        if reference is not None:
            try:
                diff_path = self.store.write(
                    generate_diff_image(candidate, reference),
                    self.scratch_path(identity, ArtifactKind.DIFF),
                )
            except OSError as exc:
                log.warning("Could not write diff image for %s: %s", identity, exc)
                problems.append(f"Could not write diff image: {exc}")

        return failed_path, diff_path, problems
