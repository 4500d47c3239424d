"""unittest integration: the snapshot capability contract and a TestCase mixin."""

from __future__ import annotations

import logging
import unittest
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

from viewsnap.buffer import PixelBuffer
from viewsnap.config import SnapshotConfig, find_config, load_config
from viewsnap.engine import Mode, SnapshotEngine, SnapshotResult, SourceLocation
from viewsnap.paths import SnapshotIdentity
from viewsnap.render import ArrayRenderer, Renderer, Size

log = logging.getLogger(__name__)


@runtime_checkable
class NamedTestCase(Protocol):
    """Anything that can name the test it is running."""

    @property
    def test_case_name(self) -> str: ...

    @property
    def test_method_name(self) -> str: ...


@runtime_checkable
class SnapshotRecording(Protocol):
    """Anything that knows whether snapshots should be recorded or verified."""

    @property
    def snapshot_mode(self) -> Mode: ...


def identity_for(test_case: NamedTestCase, identifier: str = "") -> SnapshotIdentity:
    """Build the snapshot identity for *identifier* within *test_case*."""
    return SnapshotIdentity(
        test_case_name=test_case.test_case_name,
        test_method_name=test_case.test_method_name,
        identifier=identifier,
    )


class SnapshotFailure(AssertionError):
    """A snapshot did not verify, or was just recorded."""

    def __init__(self, message: str, location: SourceLocation | None = None) -> None:
        text = f"{location}: {message}" if location is not None else message
        super().__init__(text)
        self.message = message
        self.location = location


class AssertionReporter:
    """Reports failures by raising SnapshotFailure."""

    def report_failure(self, message: str, location: SourceLocation | None) -> None:
        raise SnapshotFailure(message, location)

    def report_success(self, location: SourceLocation | None) -> None:
        log.debug("Snapshot verified at %s", location)


class SnapshotTestCase(unittest.TestCase):
    """TestCase with snapshot assertions.

    Set ``snapshot_mode`` to ``Mode.RECORD`` in ``setUp`` to (re)create the
    reference images, then back to ``Mode.VERIFY`` to compare against them::

        class ButtonTests(SnapshotTestCase):
            def test_button(self):
                self.assert_snapshot(make_button(), Size(44, 44), "normal")

    The configuration is loaded once per class; a missing reference
    directory fails the class setup before any of its tests run.
    """

    snapshot_mode: Mode = Mode.VERIFY
    snapshot_config_path: Path | None = None

    _snapshot_config: SnapshotConfig | None = None

    @classmethod
    def setUpClass(cls) -> None:
        super().setUpClass()
        path = cls.snapshot_config_path
        if path is None:
            path = find_config(Path.cwd())
        cls._snapshot_config = load_config(path)

    @property
    def test_case_name(self) -> str:
        return type(self).__name__

    @property
    def test_method_name(self) -> str:
        return self._testMethodName

    def make_snapshot_renderer(self, config: SnapshotConfig) -> Renderer:
        """Return the renderer for this test. Override for real UI toolkits."""
        return ArrayRenderer(scale=config.scale)

    def _snapshot_engine(self) -> SnapshotEngine:
        config = type(self)._snapshot_config
        if config is None:
            raise RuntimeError(
                f"{type(self).__name__}.setUpClass() did not run; "
                "call super().setUpClass() when overriding it"
            )
        return SnapshotEngine(
            config, self.make_snapshot_renderer(config), AssertionReporter()
        )

    def assert_snapshot(
        self,
        element: Any,
        size: Size | tuple[float, float],
        identifier: str = "",
    ) -> SnapshotResult:
        """Check that *element* rendered at *size* matches its reference image."""
        __tracebackhide__ = True
        return self._snapshot_engine().snapshot(
            element,
            Size(*size),
            identity_for(self, identifier),
            self.snapshot_mode,
            SourceLocation.of_caller(),
        )

    def assert_snapshot_buffer(
        self,
        buffer: PixelBuffer,
        identifier: str = "",
    ) -> SnapshotResult:
        """Check an already rendered *buffer* against its reference image."""
        __tracebackhide__ = True
        return self._snapshot_engine().run(
            buffer,
            identity_for(self, identifier),
            self.snapshot_mode,
            SourceLocation.of_caller(),
        )
