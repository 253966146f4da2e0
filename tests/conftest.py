from __future__ import annotations

import pytest

from buildaudit.model import RunContext
from buildaudit.ui.console import Console, set_console


@pytest.fixture(autouse=True)
def console():
    c = Console(debug=True)
    set_console(c)
    return c


@pytest.fixture
def home(tmp_path, monkeypatch):
    """Point ~ at a scratch directory so ~/.cargo paths stay inside tmp_path."""
    h = tmp_path / "home"
    h.mkdir()
    monkeypatch.setenv("HOME", str(h))
    return h


@pytest.fixture
def workspace(tmp_path):
    ws = tmp_path / "ws"
    ws.mkdir()
    return ws


@pytest.fixture
def ctx(workspace, tmp_path):
    return RunContext(
        root=workspace,
        runner_os="Linux",
        matrix={"os": "ubuntu-latest"},
        cache_root=tmp_path / "cache",
    )
