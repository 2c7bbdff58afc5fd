"""Exceptions raised by pve-faster."""

from __future__ import annotations

from typing import Sequence


class PveFasterError(Exception):
    """Base class for every error the CLI reports to the user."""


class CommandError(PveFasterError):
    def __init__(self, cmd: Sequence[str], returncode: int, stderr: str = "") -> None:
        self.cmd = list(cmd)
        self.returncode = returncode
        self.stderr = stderr
        super().__init__(f"{' '.join(self.cmd)} exited {returncode}")


class DependencyError(PveFasterError):
    pass


class InvalidUupUrl(PveFasterError):
    pass


class DownloadError(PveFasterError):
    pass


class StorageError(PveFasterError):
    pass
