"""Advisory lock serializing writers of the rules file across processes."""

from __future__ import annotations

import os
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, TextIO


class LockTimeout(RuntimeError):
    """The lock stayed held by another writer for the whole wait."""

    def __init__(self, lock_path: Path, holder: str | None, waited_sec: float) -> None:
        self.lock_path = lock_path
        self.holder = holder
        self.waited_sec = waited_sec
        held_by = f" by {holder}" if holder else ""
        super().__init__(f"{lock_path.name} held{held_by}; gave up after {waited_sec:.1f}s")


class RulesWriteLock:
    """Exclusive lock on a lock file, waiting up to `timeout_sec` for it.

    The holder writes ``pid@acquired_at`` into the file so a timed-out writer
    can report who it was waiting on. The OS drops the lock when the holding
    process dies, so a stale file never blocks.
    """

    def __init__(
        self,
        path: str | Path,
        timeout_sec: float = 2.0,
        poll_interval_sec: float = 0.05,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.path = Path(path)
        self.timeout_sec = max(0.0, timeout_sec)
        self.poll_interval_sec = poll_interval_sec
        self._clock = clock
        self._sleep = sleep
        self._fh: TextIO | None = None

    @property
    def held(self) -> bool:
        return self._fh is not None

    def acquire(self) -> None:
        if self._fh is not None:
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fh = open(self.path, "a+", encoding="utf-8")
        started = self._clock()
        while not _try_lock(fh):
            waited = self._clock() - started
            if waited >= self.timeout_sec:
                holder = _read_holder(fh)
                fh.close()
                raise LockTimeout(self.path, holder, waited)
            self._sleep(min(self.poll_interval_sec, self.timeout_sec - waited))

        fh.seek(0)
        fh.truncate()
        acquired_at = datetime.now(timezone.utc).isoformat(timespec="seconds")
        fh.write(f"{os.getpid()}@{acquired_at}\n")
        fh.flush()
        self._fh = fh

    def release(self) -> None:
        fh = self._fh
        if fh is None:
            return
        self._fh = None
        try:
            fh.seek(0)
            fh.truncate()
            _unlock(fh)
        finally:
            fh.close()

    def __enter__(self) -> "RulesWriteLock":
        self.acquire()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:  # type: ignore[no-untyped-def]
        self.release()


def _read_holder(fh: TextIO) -> str | None:
    try:
        fh.seek(0)
        text = fh.read().strip()
    except OSError:
        return None
    return text or None


def _try_lock(fh: TextIO) -> bool:
    try:
        if os.name == "nt":
            import msvcrt

            fh.seek(0)
            msvcrt.locking(fh.fileno(), msvcrt.LK_NBLCK, 1)
        else:
            import fcntl

            fcntl.flock(fh.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
    except OSError:
        return False
    return True


def _unlock(fh: TextIO) -> None:
    if os.name == "nt":
        import msvcrt

        fh.seek(0)
        msvcrt.locking(fh.fileno(), msvcrt.LK_UNLCK, 1)
        return

    import fcntl

    fcntl.flock(fh.fileno(), fcntl.LOCK_UN)
