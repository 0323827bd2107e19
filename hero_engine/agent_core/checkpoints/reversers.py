from __future__ import annotations

"""Reversers applied by a rollback.

A rollback undoes side effects newest-first. File effects are undone by a
``FileRestorer``; database effects by a ``DbChangeReverser`` supplied by the
embedding application, since only it knows how its tables are keyed.
"""

import asyncio
import logging
from pathlib import Path
from typing import Protocol

from ..capabilities.builtin import resolve_in_workspace
from ..schemas.domain import DbChange, FileAction, FileSnapshot

logger = logging.getLogger(__name__)


class FileRestorer(Protocol):
    async def restore(self, snapshot: FileSnapshot) -> None:
        """
        Undo what a step did to one file.

        Args:
            snapshot: The file's prior state and the action the step took.
        """
        ...


class DbChangeReverser(Protocol):
    async def reverse(self, change: DbChange) -> None:
        """
        Undo one recorded database change.

        Args:
            change: The table, key and prior row values.
        """
        ...


class LocalFileRestorer:
    """Restore files under a workspace root.

    - ``create`` is undone by deleting the file.
    - ``modify`` and ``delete`` are undone by writing the prior bytes back.
    """

    def __init__(self, root: Path) -> None:
        self._root = Path(root)

    async def restore(self, snapshot: FileSnapshot) -> None:
        target = resolve_in_workspace(self._root, snapshot.path)

        def _apply() -> None:
            if snapshot.action == FileAction.create or snapshot.content is None:
                if target.exists():
                    target.unlink()
                return
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(snapshot.raw_content())

        await asyncio.to_thread(_apply)
        logger.debug("Restored %s (undo %s)", snapshot.path, snapshot.action.value)
