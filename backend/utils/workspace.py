import os
import logging
import secrets
import shutil
from contextlib import contextmanager

logger = logging.getLogger(__name__)


class Workspace:
    """Exclusively owned scratch directory holding one job's input and output files."""

    def __init__(self, path):
        self.path = path
        self.input_path = os.path.join(path, "input.mp4")
        self.output_path = os.path.join(path, "output.mp4")

    def __repr__(self):
        return f"Workspace({self.path!r})"


class WorkspaceManager:
    def __init__(self, root):
        self.root = root
        os.makedirs(self.root, exist_ok=True)

    def create(self) -> Workspace:
        # 16 random bytes, same width as the original temp dir names
        path = os.path.join(self.root, secrets.token_hex(16))
        os.makedirs(path)
        logger.info(f"Created workspace: {path}")
        return Workspace(path)

    def destroy(self, workspace: Workspace):
        """Remove the workspace directory; a failure here is logged, never raised."""
        if not os.path.exists(workspace.path):
            return
        try:
            shutil.rmtree(workspace.path)
            logger.info(f"Removed workspace: {workspace.path}")
        except OSError as e:
            logger.error(f"Failed to clean up workspace {workspace.path}: {str(e)}")

    @contextmanager
    def acquire(self):
        workspace = self.create()
        try:
            yield workspace
        finally:
            self.destroy(workspace)
