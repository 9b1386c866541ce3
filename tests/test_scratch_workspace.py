import logging
import sys
from pathlib import Path

import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from toolrun import workspace as workspace_module  # noqa: E402
from toolrun.errors import WorkspaceError  # noqa: E402
from toolrun.workspace import ScratchWorkspace  # noqa: E402


def test_acquire_creates_unique_directories(tmp_path: Path) -> None:
    first = ScratchWorkspace.acquire(root=tmp_path)
    second = ScratchWorkspace.acquire(root=tmp_path)
    try:
        assert first.path.is_dir()
        assert second.path.is_dir()
        assert first.path != second.path
        assert first.path.parent == tmp_path
    finally:
        first.release()
        second.release()


def test_release_removes_tree_and_is_idempotent(tmp_path: Path) -> None:
    ws = ScratchWorkspace.acquire(root=tmp_path)
    nested = ws.path / "output" / "deep"
    nested.mkdir(parents=True)
    (nested / "file.txt").write_text("x", encoding="utf-8")

    ws.release()
    ws.release()

    assert ws.released
    assert not ws.path.exists()


def test_context_manager_releases_on_error(tmp_path: Path) -> None:
    with pytest.raises(RuntimeError):
        with ScratchWorkspace.acquire(root=tmp_path) as ws:
            path = ws.path
            raise RuntimeError("boom")
    assert not path.exists()


def test_acquire_failure_raises_workspace_error(tmp_path: Path) -> None:
    missing_root = tmp_path / "does-not-exist"
    with pytest.raises(WorkspaceError):
        ScratchWorkspace.acquire(root=missing_root)


def test_release_swallows_filesystem_errors(
    tmp_path: Path, caplog: pytest.LogCaptureFixture, monkeypatch: pytest.MonkeyPatch
) -> None:
    ws = ScratchWorkspace.acquire(root=tmp_path)

    def _fail(path) -> None:
        raise PermissionError("denied")

    monkeypatch.setattr(workspace_module.shutil, "rmtree", _fail)
    with caplog.at_level(logging.WARNING, logger="toolrun.workspace"):
        ws.release()

    assert ws.released
    assert "Failed to remove workspace" in caplog.text
