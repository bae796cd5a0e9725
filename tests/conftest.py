"""Shared pytest fixtures for atomic-apply tests."""

import io
import sys
from pathlib import Path

import pytest

# Add src and tests to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))
sys.path.insert(0, str(Path(__file__).parent))

from fakes import FakeCluster, FakeResolver  # noqa: E402
from transaction.printer import ProgressPrinter  # noqa: E402


@pytest.fixture
def cluster():
    """Empty in-memory cluster with the default endpoints."""
    return FakeCluster()


@pytest.fixture
def resolver(cluster):
    return FakeResolver(cluster)


@pytest.fixture
def output():
    """Captured progress output."""
    return io.StringIO()


@pytest.fixture
def printer(output):
    return ProgressPrinter(stream=output)


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch, tmp_path):
    """Keep tests independent of the caller's settings and kubeconfig."""
    for var in ('ATOMIC_APPLY_CONFIG', 'ATOMIC_APPLY_TIMEOUT', 'ATOMIC_APPLY_NAMESPACE',
                'ATOMIC_APPLY_POLL_INTERVAL', 'KUBECONFIG'):
        monkeypatch.delenv(var, raising=False)
    monkeypatch.setenv('XDG_CONFIG_HOME', str(tmp_path / 'xdg'))
