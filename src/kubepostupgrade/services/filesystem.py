"""Filesystem helpers for kube-postupgrade."""

import logging
import os
import shutil
import tempfile

from rich.console import Console

from kubepostupgrade.errors import PostUpgradeError


class FileSystemService:
    """Encapsulates directory side effects of a run."""

    def __init__(self, logger: logging.Logger, console: Console):
        self.logger = logger
        self.console = console

    def make_temp_dir(self, prefix: str) -> str:
        try:
            path = tempfile.mkdtemp(prefix=prefix)
        except OSError as exc:
            raise PostUpgradeError(f"couldn't create a temporary directory: {exc}") from exc
        self.logger.debug("Created temporary directory: %s", path)
        return path

    def write_file(self, path: str, content: str, mode: int = 0o644):
        os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
        try:
            with open(path, "w", encoding="utf-8", newline="\n") as file_obj:
                file_obj.write(content)
            os.chmod(path, mode)
        except OSError as exc:
            raise PostUpgradeError(f"failed to write {path}: {exc}") from exc
        self.logger.debug("Wrote %s", path)

    def cleanup_dir(self, path: str) -> bool:
        """Remove a scratch directory; failures are reported, never raised."""
        if not os.path.isdir(path):
            return False
        try:
            shutil.rmtree(path)
        except OSError as exc:
            self.console.print(f"[yellow]Could not remove temporary directory {path}: {exc}[/yellow]")
            self.logger.warning("Could not remove temporary directory %s: %s", path, exc)
            return False
        self.logger.debug("Removed temporary directory %s", path)
        return True
