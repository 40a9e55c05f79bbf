"""Shared test fixtures for kbb8 tests.

- isolated_kubeconfig: points $KUBECONFIG (and $HOME) into tmp_path so no
  test ever touches the real ~/.kube/config
- fake_apiserver: in-memory API server (see tests/mocks)
"""

from __future__ import annotations

import os
from pathlib import Path

import pytest

from tests.mocks import FakeAPIServer


@pytest.fixture(autouse=True)
def isolated_kubeconfig(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Kubeconfig path inside tmp_path, exported as $KUBECONFIG."""
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    for name in [k for k in os.environ if k.startswith("KBB8_")]:
        monkeypatch.delenv(name)

    path = tmp_path / "kube" / "config"
    monkeypatch.setenv("KUBECONFIG", str(path))
    return path


@pytest.fixture
def fake_apiserver() -> FakeAPIServer:
    """Fresh in-memory API server."""
    return FakeAPIServer()


@pytest.fixture
def work_dir(tmp_path: Path) -> Path:
    """Work directory for service dirs and logs."""
    path = tmp_path / "work"
    path.mkdir()
    return path
