"""Scoped change of the process working directory."""
from __future__ import annotations

import logging
import os
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Iterator, Optional

logger = logging.getLogger("kodrdriv_mcp.workdir")


@dataclass
class DirectoryScope:
    original: str
    target: Optional[str] = None
    restore_error: Optional[OSError] = None

    @property
    def directory(self) -> str:
        return self.target or self.original


@contextmanager
def working_directory(path: Optional[str]) -> Iterator[DirectoryScope]:
    """chdir into *path* (if given) and always chdir back on exit.

    If restoring fails while another exception is propagating, the
    failure is logged and kept on ``scope.restore_error`` and the original
    exception wins. On a clean exit the restore failure is raised.
    """
    scope = DirectoryScope(original=os.getcwd(), target=path or None)
    if scope.target:
        os.chdir(scope.target)
    try:
        yield scope
    except BaseException:
        _restore(scope, quiet=True)
        raise
    _restore(scope, quiet=False)


def _restore(scope: DirectoryScope, *, quiet: bool) -> None:
    if not scope.target:
        return
    try:
        if os.getcwd() == scope.original:
            return
    except OSError:
        # cwd itself was removed; fall through and chdir back
        pass
    try:
        os.chdir(scope.original)
    except OSError as exc:
        scope.restore_error = exc
        if not quiet:
            raise
        logger.warning("Failed to restore working directory to %s: %s", scope.original, exc)
