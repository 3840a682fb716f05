"""
On-disk persistence for downloaded image assets.
"""
from __future__ import annotations

from pathlib import Path
from typing import Optional, Protocol


class AssetStore(Protocol):
    """What the probe engine needs from a persistence backend."""

    def exists(self, name: str) -> Optional[int]:
        """Return the stored size in bytes, or None if nothing is stored."""
        ...

    def write(self, name: str, data: bytes) -> Path:
        ...


class DiskStore:
    """Store assets as flat files under one directory."""

    def __init__(self, root: Path) -> None:
        self.root = Path(root)

    def path_for(self, name: str) -> Path:
        return self.root / name

    def exists(self, name: str) -> Optional[int]:
        path = self.path_for(name)
        if not path.is_file():
            return None
        return path.stat().st_size

    def write(self, name: str, data: bytes) -> Path:
        self.root.mkdir(parents=True, exist_ok=True)
        path = self.path_for(name)
        path.write_bytes(data)
        return path
