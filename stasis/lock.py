"""File-based build lock.

Two builds writing the same cache directory would clobber each other's
manifest, so every build (and ``stasis invalidate``) runs under a lock file
``<cache_dir>/.build-lock`` holding the owner's pid, timestamp and hostname.

Usage:
    with BuildLock(cache_dir):
        ...
"""

from __future__ import annotations

import json
import os
import socket
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import structlog

from .utils import to_iso

log = structlog.get_logger()

LOCK_FILENAME = ".build-lock"
DEFAULT_TIMEOUT = 30.0
DEFAULT_POLL_INTERVAL = 1.0


class BuildLockError(Exception):
    """The build lock could not be acquired."""

    def __init__(self, lock_path: Path, message: str):
        self.lock_path = lock_path
        self.message = message
        super().__init__(message)


def is_process_running(pid: int) -> bool:
    """Check whether a process with ``pid`` exists on this machine."""
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        # Exists, owned by someone else.
        return True
    except (OverflowError, ValueError):
        return False
    return True


class BuildLock:
    """Exclusive lock on a cache directory.

    Args:
        cache_dir: Cache directory to lock; created if missing.
        force: Remove any existing lock instead of waiting for it.
        timeout: Seconds to wait for a live lock before giving up.
        poll_interval: Seconds between acquisition attempts.
    """

    def __init__(
        self,
        cache_dir: Path,
        force: bool = False,
        timeout: float = DEFAULT_TIMEOUT,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
    ):
        self.lock_path = Path(cache_dir) / LOCK_FILENAME
        self.force = force
        self.timeout = timeout
        self.poll_interval = poll_interval
        self.held = False

    def __enter__(self) -> BuildLock:
        self.acquire()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()

    def read_info(self) -> dict[str, Any] | None:
        """Return the current lock file contents, or None if absent or unreadable."""
        try:
            payload = json.loads(self.lock_path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None
        except (OSError, ValueError):
            return None
        return payload if isinstance(payload, dict) else None

    def acquire(self) -> None:
        """Take the lock, waiting for a live holder up to ``timeout`` seconds.

        Raises:
            BuildLockError: On timeout or when the lock file cannot be created.
        """
        deadline = time.monotonic() + self.timeout
        while True:
            if self.lock_path.exists():
                self._clear_existing()
            try:
                self._create()
            except FileExistsError:
                pass
            except OSError as exc:
                raise BuildLockError(
                    self.lock_path, f"Failed to acquire build lock: {exc}"
                ) from exc
            else:
                self.held = True
                log.debug("build_lock_acquired", path=str(self.lock_path))
                return

            if time.monotonic() >= deadline:
                raise BuildLockError(
                    self.lock_path,
                    f"Build lock acquisition timed out after {self.timeout:g}s. "
                    f"Another build may be running; remove {self.lock_path} if it is stale.",
                )
            time.sleep(self.poll_interval)

    def release(self) -> None:
        """Remove the lock file if this process still owns it."""
        if not self.held:
            return
        self.held = False
        info = self.read_info()
        if info and info.get("pid") != os.getpid():
            log.warning("build_lock_not_owned", path=str(self.lock_path), pid=info.get("pid"))
            return
        try:
            self.lock_path.unlink()
        except FileNotFoundError:
            pass
        except OSError as exc:
            log.warning("build_lock_release_failed", path=str(self.lock_path), error=str(exc))
        else:
            log.debug("build_lock_released", path=str(self.lock_path))

    def _clear_existing(self) -> None:
        info = self.read_info()
        if self.force:
            log.warning("build_lock_forced", path=str(self.lock_path), holder=info)
            self._remove()
            return
        pid = info.get("pid") if info else None
        if not isinstance(pid, int):
            log.warning("build_lock_unreadable", path=str(self.lock_path))
            self._remove()
        elif not is_process_running(pid):
            log.warning("build_lock_stale", path=str(self.lock_path), pid=pid)
            self._remove()

    def _remove(self) -> None:
        try:
            self.lock_path.unlink()
        except FileNotFoundError:
            pass

    def _create(self) -> None:
        self.lock_path.parent.mkdir(parents=True, exist_ok=True)
        info = {
            "pid": os.getpid(),
            "timestamp": to_iso(datetime.now(timezone.utc)),
            "hostname": socket.gethostname(),
        }
        with open(self.lock_path, "x", encoding="utf-8") as handle:
            json.dump(info, handle, indent=2)
