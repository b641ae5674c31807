"""File-system primitives used by the reconciliation cycle."""

from __future__ import annotations

import logging
import os
import stat
from abc import ABC, abstractmethod
from pathlib import Path

logger = logging.getLogger(__name__)


class HostsStorage(ABC):
    """Abstract backing store for a hosts file."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Return a label for logging."""
        pass

    @abstractmethod
    def stat(self) -> int:
        """Return the file's change time; raises OSError."""
        pass

    @abstractmethod
    def read(self) -> str:
        """Return the raw file text without newline translation.

        Bytes that are not valid UTF-8 must survive a read followed by write().
        """
        pass

    @abstractmethod
    def write(self, contents: str) -> None:
        """Replace the file body with ``contents``."""
        pass


class LocalHostsStorage(HostsStorage):
    def __init__(self, path: str, *, atomic: bool = True):
        self.path = Path(path)
        self.atomic = atomic

    @property
    def name(self) -> str:
        return str(self.path)

    def stat(self) -> int:
        return os.stat(self.path).st_ctime_ns

    def read(self) -> str:
        return self.path.read_bytes().decode("utf-8", errors="surrogateescape")

    def write(self, contents: str) -> None:
        data = contents.encode("utf-8", errors="surrogateescape")
        if not self.atomic:
            self.path.write_bytes(data)
            return

        tmp_path = self.path.with_name(f".{self.path.name}.tmp")
        try:
            mode = stat.S_IMODE(os.stat(self.path).st_mode)
        except FileNotFoundError:
            mode = None

        try:
            with open(tmp_path, "wb") as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
            if mode is not None:
                os.chmod(tmp_path, mode)
            tmp_path.replace(self.path)
        except OSError:
            logger.debug(f"Atomic write to {self.path} failed, removing {tmp_path}")
            tmp_path.unlink(missing_ok=True)
            raise
