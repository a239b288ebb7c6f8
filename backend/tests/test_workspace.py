import os

import pytest

from utils.workspace import WorkspaceManager


def test_acquire_creates_and_removes_directory(tmp_path):
    manager = WorkspaceManager(str(tmp_path))

    with manager.acquire() as workspace:
        assert os.path.isdir(workspace.path)
        with open(workspace.input_path, "wb") as f:
            f.write(b"partial download")

    assert not os.path.exists(workspace.path)


def test_workspace_is_removed_when_the_body_raises(tmp_path):
    manager = WorkspaceManager(str(tmp_path))

    with pytest.raises(RuntimeError):
        with manager.acquire() as workspace:
            raise RuntimeError("stage failed")

    assert not os.path.exists(workspace.path)
    assert os.listdir(tmp_path) == []


def test_workspace_names_are_unique_and_random(tmp_path):
    manager = WorkspaceManager(str(tmp_path))

    names = {os.path.basename(manager.create().path) for _ in range(50)}

    assert len(names) == 50
    assert all(len(name) == 32 for name in names)


def test_destroy_tolerates_already_removed_workspace(tmp_path):
    manager = WorkspaceManager(str(tmp_path))
    workspace = manager.create()

    manager.destroy(workspace)
    manager.destroy(workspace)

    assert not os.path.exists(workspace.path)
