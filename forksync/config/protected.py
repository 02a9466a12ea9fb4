"""
Protected Paths — The ``.sync-protected`` list.

One pattern per line; ``#`` starts a comment line; a trailing ``/`` marks a
directory. Entries are advisory: the health check reports missing ones and
the conflict resolver flags them, nothing blocks a merge.
"""

from __future__ import annotations

import fnmatch
from dataclasses import dataclass
from pathlib import Path
from typing import List, Literal

PathKind = Literal["file", "dir"]


@dataclass(frozen=True)
class ProtectedPathEntry:
    pattern: str
    kind: PathKind

    def matches(self, path: str) -> bool:
        """True if a repository-relative ``path`` falls under this entry."""
        if path.startswith("./"):
            path = path[2:]
        if self.kind == "dir":
            prefix = self.pattern.rstrip("/") + "/"
            return path.startswith(prefix) or fnmatch.fnmatch(path, prefix + "*")
        return path == self.pattern or fnmatch.fnmatch(path, self.pattern)

    def exists_in(self, root: Path) -> bool:
        target = root / self.pattern.rstrip("/")
        if self.kind == "dir":
            return target.is_dir()
        return target.exists()


def parse_protected(text: str) -> List[ProtectedPathEntry]:
    entries = []
    for raw in text.splitlines():
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        kind: PathKind = "dir" if line.endswith("/") else "file"
        entries.append(ProtectedPathEntry(pattern=line, kind=kind))
    return entries


def load_protected(path: Path) -> List[ProtectedPathEntry]:
    """Read the protected-paths list; a missing file means no entries."""
    if not path.exists():
        return []
    return parse_protected(path.read_text(encoding="utf-8"))


def is_protected(path: str, entries: List[ProtectedPathEntry]) -> bool:
    return any(e.matches(path) for e in entries)


PROTECTED_TEMPLATE = """\
# Files and directories that should never be overwritten by upstream sync
# These trigger warnings if missing after a merge

# Custom code directories
src/custom/
config/custom/

# Custom configuration files
config/production.yaml
.env.local

# Documentation
CUSTOM_CHANGES.md
"""
