from __future__ import annotations

import logging
import shutil
import tempfile
from pathlib import Path
from types import TracebackType

from toolrun.errors import WorkspaceError

log = logging.getLogger(__name__)

DEFAULT_PREFIX = "toolrun_"


class ScratchWorkspace:
    """Private temp directory for a single tool invocation.

    ``release()`` removes the whole tree. It is idempotent and never raises,
    so it is safe to call from ``finally`` blocks and error handlers.
    """

    def __init__(self, path: Path) -> None:
        self._path = path
        self._released = False

    @classmethod
    def acquire(
        cls, *, prefix: str = DEFAULT_PREFIX, root: Path | None = None
    ) -> ScratchWorkspace:
        try:
            raw = tempfile.mkdtemp(prefix=prefix, dir=str(root) if root else None)
        except OSError as e:
            raise WorkspaceError(f"Could not create scratch directory: {e}") from e
        path = Path(raw)
        log.debug("Acquired workspace %s", path)
        return cls(path)

    @property
    def path(self) -> Path:
        return self._path

    @property
    def released(self) -> bool:
        return self._released

    def release(self) -> None:
        if self._released:
            return
        self._released = True
        try:
            shutil.rmtree(self._path)
        except FileNotFoundError:
            pass
        except OSError:
            log.warning("Failed to remove workspace %s", self._path, exc_info=True)
            return
        log.debug("Released workspace %s", self._path)

    def __enter__(self) -> ScratchWorkspace:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.release()

    def __repr__(self) -> str:
        state = "released" if self._released else "active"
        return f"<ScratchWorkspace {self._path} ({state})>"
