"""
Shared test fixtures for codetunnel tests.

This module provides common fixtures used across all test types:
- An ordered event log shared by the fakes
- A recording command runner
- Local VS Code directories under tmp_path
"""

from pathlib import Path

import pytest

from codetunnel.sync import SyncCoordinator, extensions_spec, settings_spec
from tests.mocks.subprocess_mock import FakeRunner


@pytest.fixture
def events():
    """Shared, ordered log of side effects across fakes."""
    return []


@pytest.fixture
def fake_runner(events):
    """FakeRunner writing into the shared event log."""
    return FakeRunner(events=events)


@pytest.fixture
def local_vscode_dirs(tmp_path) -> tuple[Path, Path]:
    """Local settings and extensions directories."""
    settings_dir = tmp_path / "Code" / "User"
    extensions_dir = tmp_path / ".vscode" / "extensions"
    return settings_dir, extensions_dir


@pytest.fixture
def sync_coordinator(fake_runner, local_vscode_dirs):
    """SyncCoordinator over tmp_path directories and the fake runner."""
    settings_dir, extensions_dir = local_vscode_dirs
    return SyncCoordinator(
        runner=fake_runner,
        settings=settings_spec(settings_dir),
        extensions=extensions_spec(extensions_dir),
    )
