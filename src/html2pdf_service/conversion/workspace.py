import logging
import shutil
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

from .errors import ResourceError, ValidationError

logger = logging.getLogger(__name__)


class Workspace:
    """Private temporary directory owned by exactly one conversion request."""

    def __init__(self, path: Path) -> None:
        self._path = path
        self._released = False

    @property
    def path(self) -> Path:
        return self._path

    @property
    def released(self) -> bool:
        return self._released

    @classmethod
    @contextmanager
    def acquire(cls, root: str | Path | None = None, prefix: str = "kwk") -> Iterator["Workspace"]:
        """Create a fresh workspace and remove it when the block exits.

        Release happens on every exit path, including exceptions and task
        cancellation, so callers cannot leak the directory.
        """
        try:
            if root is not None:
                Path(root).mkdir(parents=True, exist_ok=True)
            path = Path(tempfile.mkdtemp(prefix=prefix, dir=root))
        except OSError as e:
            raise ResourceError(f"failed to create temp directory: {e}", kind="tempdir_creation_failed") from e
        workspace = cls(path)
        logger.debug("Temporary directory created: %s", path)
        try:
            yield workspace
        finally:
            workspace.release()

    def write_part(self, name: str, content: bytes) -> Path:
        # Only the base name is honoured so uploads cannot escape the workspace.
        base = Path(name.replace("\\", "/")).name
        if base in ("", ".", ".."):
            raise ValidationError(f"invalid file name: {name!r}")
        target = self._path / base
        try:
            target.write_bytes(content)
        except OSError as e:
            raise ResourceError(f"failed to write {base}: {e}", kind="file_write_failed") from e
        return target

    def release(self) -> None:
        if self._released:
            return
        self._released = True
        try:
            shutil.rmtree(self._path)
        except FileNotFoundError:
            pass
        except OSError:
            logger.exception("Failed to remove temporary directory %s", self._path)
