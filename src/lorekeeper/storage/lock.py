"""Per-repository run lock.

Only one analysis may run against a repository at a time: concurrent runs
would race on reading the last completed step and insert duplicate
in-progress rows. The lock is an exclusively created file holding the
owner's pid. A lock whose owner is no longer alive is reclaimed; a lock
without a pid is only reclaimed once it is older than a short grace period.
"""

from __future__ import annotations

import logging
import os
import time
from pathlib import Path

logger = logging.getLogger(__name__)

LOCK_FILE_NAME = "analyze.lock"

# Seconds a lock file may exist without a pid before it counts as abandoned
PID_WRITE_GRACE_SECONDS = 10.0


class LockError(Exception):
    """Exception raised when another analysis holds the repository lock."""

    pass


def _pid_alive(pid: int) -> bool:
    if pid <= 0:
        return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        # Process exists but belongs to another user
        return True
    except OSError:
        return False
    return True


def _identity(stat: os.stat_result) -> tuple[int, int, int]:
    return (stat.st_dev, stat.st_ino, stat.st_mtime_ns)


class RepositoryLock:
    """Exclusive lock file guarding one repository's state directory.

    Usage:
        with RepositoryLock(state_dir):
            pipeline.analyze()
    """

    def __init__(self, directory: Path) -> None:
        self.path = directory / LOCK_FILE_NAME
        self._held = False

    def acquire(self) -> None:
        """Take the lock.

        Raises:
            LockError: If a live process already holds it
        """
        self.path.parent.mkdir(parents=True, exist_ok=True)

        for _ in range(3):
            try:
                fd = os.open(self.path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
            except FileExistsError:
                self._reclaim_if_stale()
                continue

            with os.fdopen(fd, "w") as f:
                f.write(str(os.getpid()))
            self._held = True
            logger.debug("Acquired lock %s", self.path)
            return

        raise LockError(f"Could not acquire lock {self.path}")

    def release(self) -> None:
        if self._held:
            self.path.unlink(missing_ok=True)
            self._held = False
            logger.debug("Released lock %s", self.path)

    @property
    def held(self) -> bool:
        return self._held

    def _reclaim_if_stale(self) -> None:
        """Move a dead owner's lock file out of the way.

        Raises:
            LockError: If the lock belongs to a live or still-starting owner
        """
        try:
            checked = self.path.stat()
        except FileNotFoundError:
            return

        owner = self._read_owner()
        if owner is None:
            # The owner writes its pid right after creating the file
            age = time.time() - checked.st_mtime
            if age < PID_WRITE_GRACE_SECONDS:
                raise LockError(
                    f"Another analysis is acquiring {self.path}. Try again shortly."
                )
        elif _pid_alive(owner):
            raise LockError(
                f"Another analysis (pid {owner}) is running for this repository. "
                f"Remove {self.path} if that process no longer exists."
            )

        aside = self.path.with_name(f"{self.path.name}.{os.getpid()}.stale")
        try:
            os.rename(self.path, aside)
        except FileNotFoundError:
            # Another process reclaimed it first
            return

        if _identity(aside.stat()) != _identity(checked):
            # Replaced by a new owner after the check: put it back
            try:
                os.link(aside, self.path)
            except FileExistsError:
                pass
            finally:
                aside.unlink(missing_ok=True)
            raise LockError(f"Another analysis took the lock {self.path}.")

        logger.warning("Removed stale lock %s (owner pid %s)", self.path, owner)
        aside.unlink(missing_ok=True)

    def _read_owner(self) -> int | None:
        try:
            return int(self.path.read_text().strip())
        except (OSError, ValueError):
            return None

    def __enter__(self) -> RepositoryLock:
        self.acquire()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.release()
