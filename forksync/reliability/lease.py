"""
Session Lease — One mutating forksync command per repository at a time.

The lease is a small file inside the git directory recording who holds it
and until when. The record is written to a private temp file and then
hard-linked into place, so the lease file never exists without its
contents and two processes cannot both believe they won. A lease past its expiry, or one whose owner pid is gone
on this host, is broken with a warning.

Not a distributed lock: two machines with separate clones of the fork
still race on the shared remote.

## Usage

    from forksync.reliability.lease import SessionLease

    with SessionLease(git_dir / "forksync.lease", command="sync"):
        pipeline.run()
"""

from __future__ import annotations

import getpass
import json
import logging
import os
import socket
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

from ..errors import LeaseHeldError

logger = logging.getLogger(__name__)

LEASE_FILENAME = "forksync.lease"
# An unparsable lease younger than this is assumed to be mid-write
UNREADABLE_GRACE = 5.0


def _pid_alive(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    return True


class SessionLease:
    """File-based lease with owner and expiry."""

    def __init__(self, path: Path, *, command: str = "sync", ttl: int = 3600):
        self.path = Path(path)
        self.command = command
        self.ttl = ttl
        self.acquired = False

    def read(self) -> Optional[Dict[str, Any]]:
        """Current lease record, or None if no lease file exists."""
        try:
            return json.loads(self.path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None
        except (OSError, ValueError):
            try:
                mtime = self.path.stat().st_mtime
            except OSError:
                return {"expires_at": 0}
            return {"expires_at": mtime + UNREADABLE_GRACE}

    def is_stale(self, record: Dict[str, Any]) -> bool:
        if float(record.get("expires_at", 0)) < time.time():
            return True
        pid = record.get("pid")
        if record.get("host") == socket.gethostname() and isinstance(pid, int):
            return not _pid_alive(pid)
        return False

    def _record(self) -> Dict[str, Any]:
        try:
            user = getpass.getuser()
        except Exception:
            user = "unknown"
        now = time.time()
        return {
            "pid": os.getpid(),
            "user": user,
            "host": socket.gethostname(),
            "command": self.command,
            "acquired_at": datetime.fromtimestamp(now, timezone.utc).isoformat(),
            "expires_at": now + self.ttl,
        }

    def acquire(self) -> None:
        """Take the lease or raise LeaseHeldError immediately."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_name(f"{self.path.name}.{os.getpid()}.tmp")
        tmp.write_text(json.dumps(self._record()), encoding="utf-8")
        try:
            self._link(tmp)
        finally:
            tmp.unlink()

    def _link(self, tmp: Path) -> None:
        for _ in range(2):
            try:
                os.link(tmp, self.path)
                self.acquired = True
                logger.debug(f"Lease acquired: {self.path}")
                return
            except FileExistsError:
                record = self.read()
                if record is None:
                    continue
                if self.is_stale(record):
                    logger.warning(
                        f"Breaking stale lease held by pid {record.get('pid')} "
                        f"({record.get('command', 'unknown')})"
                    )
                    try:
                        self.path.unlink()
                    except FileNotFoundError:
                        pass
                    continue
                raise LeaseHeldError(
                    f"Another forksync session holds the lease: "
                    f"{record.get('command')} by {record.get('user')}@{record.get('host')} "
                    f"(pid {record.get('pid')}, since {record.get('acquired_at')})",
                    remediation=[
                        "Wait for the other session to finish",
                        f"If it is gone, remove {self.path}",
                    ],
                )
        raise LeaseHeldError(f"Could not acquire lease {self.path}")

    def release(self) -> None:
        if self.acquired:
            try:
                self.path.unlink()
            except FileNotFoundError:
                pass
            self.acquired = False

    def __enter__(self) -> "SessionLease":
        self.acquire()
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        self.release()
        return False
