"""Files written into the build workspace (label snapshot, flash logs)."""

from __future__ import annotations

import logging
import os
from pathlib import Path

import aiofiles  # type: ignore[import-untyped]

from devlease.shared.exceptions import WorkspaceError

logger = logging.getLogger(__name__)


class WorkspaceWriter:
    """Write text files below a fixed workspace root."""

    def __init__(self, root: str | os.PathLike[str]) -> None:
        self._root = Path(root).resolve()

    @property
    def root(self) -> Path:
        return self._root

    async def write(self, relative_path: str, content: str, encoding: str = "utf-8") -> Path:
        """Write ``content`` to ``relative_path`` inside the workspace.

        Returns:
            Absolute path of the written file.

        Raises:
            WorkspaceError: If the path escapes the workspace or the write fails.
        """
        target = (self._root / relative_path).resolve()
        if self._root not in target.parents:
            raise WorkspaceError(f"refusing to write outside workspace: {relative_path}")

        try:
            os.makedirs(target.parent, exist_ok=True)
            async with aiofiles.open(target, "w", encoding=encoding) as f:
                await f.write(content)
        except OSError as exc:
            raise WorkspaceError(f"failed to write {target}: {exc}") from exc

        logger.info("wrote workspace file %s (%d chars)", target, len(content))
        return target
