"""pytest plugin providing the ``snapshot`` fixture."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any

import pytest

from viewsnap.buffer import PixelBuffer
from viewsnap.config import SnapshotConfig, find_config, load_config
from viewsnap.engine import Mode, SnapshotEngine, SnapshotResult, SourceLocation
from viewsnap.errors import ConfigurationError
from viewsnap.paths import SnapshotIdentity
from viewsnap.render import ArrayRenderer, Renderer, Size

log = logging.getLogger(__name__)


def pytest_addoption(parser: pytest.Parser) -> None:
    group = parser.getgroup("viewsnap", "view snapshot testing")
    group.addoption(
        "--snapshot-record",
        action="store_true",
        default=False,
        help="Record reference images instead of verifying them",
    )
    group.addoption(
        "--snapshot-config",
        default=None,
        help="Path to a viewsnap.toml file",
    )


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line(
        "markers",
        "snapshot_record: record reference images for this test instead of verifying",
    )


# ---------------------------------------------------------------------------
# Identity
# ---------------------------------------------------------------------------


def _safe_component(name: str) -> str:
    """Make a node name usable as a single path component."""
    return name.replace("/", "_").replace(os.sep, "_")


def identity_for_node(node: pytest.Item, identifier: str = "") -> SnapshotIdentity:
    """Identity of a test item: its class (or module) and its name.

    Parametrized tests keep their parameter id so each case gets its own
    reference image.
    """
    cls = getattr(node, "cls", None)
    if cls is not None:
        case = cls.__name__
    else:
        case = Path(node.path).stem
    return SnapshotIdentity(
        test_case_name=_safe_component(case),
        test_method_name=_safe_component(node.name),
        identifier=identifier,
    )


def mode_for_node(config: pytest.Config, node: pytest.Item) -> Mode:
    """Record for the whole run with --snapshot-record, or per test by marker."""
    if config.getoption("snapshot_record"):
        return Mode.RECORD
    if node.get_closest_marker("snapshot_record") is not None:
        return Mode.RECORD
    return Mode.VERIFY


# ---------------------------------------------------------------------------
# Reporter and fixture object
# ---------------------------------------------------------------------------


class PytestReporter:
    """Fails the current test through pytest."""

    def report_failure(self, message: str, location: SourceLocation | None) -> None:
        __tracebackhide__ = True
        text = f"{location}: {message}" if location is not None else message
        pytest.fail(text, pytrace=False)

    def report_success(self, location: SourceLocation | None) -> None:
        log.debug("Snapshot verified at %s", location)


class SnapshotFixture:
    """Snapshot assertions bound to one test item."""

    def __init__(
        self,
        engine: SnapshotEngine,
        node: pytest.Item,
        mode: Mode,
    ) -> None:
        self.engine = engine
        self.node = node
        self.mode = mode

    def identity(self, identifier: str = "") -> SnapshotIdentity:
        return identity_for_node(self.node, identifier)

    def assert_match(
        self,
        element: Any,
        size: Size | tuple[float, float],
        identifier: str = "",
    ) -> SnapshotResult:
        """Check that *element* rendered at *size* matches its reference image."""
        __tracebackhide__ = True
        return self.engine.snapshot(
            element,
            Size(*size),
            self.identity(identifier),
            self.mode,
            SourceLocation.of_caller(),
        )

    def assert_buffer(self, buffer: PixelBuffer, identifier: str = "") -> SnapshotResult:
        """Check an already rendered *buffer* against its reference image."""
        __tracebackhide__ = True
        return self.engine.run(
            buffer,
            self.identity(identifier),
            self.mode,
            SourceLocation.of_caller(),
        )


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(scope="session")
def snapshot_config(pytestconfig: pytest.Config) -> SnapshotConfig:
    """Snapshot configuration, loaded once per run.

    A missing reference directory stops the whole run.
    """
    option = pytestconfig.getoption("snapshot_config")
    path = Path(option) if option else find_config(pytestconfig.rootpath)
    try:
        return load_config(path)
    except ConfigurationError as exc:
        pytest.exit(f"viewsnap: {exc}", returncode=pytest.ExitCode.USAGE_ERROR)


@pytest.fixture
def snapshot_mode(request: pytest.FixtureRequest) -> Mode:
    """Record when --snapshot-record or the snapshot_record marker is given."""
    return mode_for_node(request.config, request.node)


@pytest.fixture
def snapshot_renderer(snapshot_config: SnapshotConfig) -> Renderer:
    """Renderer used by ``snapshot``. Override this for a real UI toolkit."""
    return ArrayRenderer(scale=snapshot_config.scale)


@pytest.fixture
def snapshot(
    request: pytest.FixtureRequest,
    snapshot_config: SnapshotConfig,
    snapshot_renderer: Renderer,
    snapshot_mode: Mode,
) -> SnapshotFixture:
    engine = SnapshotEngine(snapshot_config, snapshot_renderer, PytestReporter())
    return SnapshotFixture(engine, request.node, snapshot_mode)
