"""Local filesystem blob store for attachment bytes."""

from __future__ import annotations

import re
import shutil
from pathlib import Path
from typing import BinaryIO, Optional

# Opaque names only: "<digits>_<hex>" with an optional short alphanumeric extension.
STORED_NAME_PATTERN = re.compile(r"^[0-9]+_[0-9a-f]{32}(\.[a-z0-9]{1,10})?$")


def is_stored_name(name: str) -> bool:
    return bool(STORED_NAME_PATTERN.match(name or ""))


class LocalBlobStore:
    """Stores files flat under ``root``; keep ``root`` outside any served directory."""

    def __init__(self, root):
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)

    def _path(self, name: str) -> Optional[Path]:
        if not is_stored_name(name):
            return None
        return self.root / name

    def exists(self, name: str) -> bool:
        path = self._path(name)
        return path is not None and path.exists()

    def write(self, name: str, stream: BinaryIO) -> None:
        path = self._path(name)
        if path is None:
            raise ValueError("Refusing to write a non-opaque storage name")
        # "xb" fails with FileExistsError instead of overwriting a concurrent upload.
        target = open(path, "xb")
        try:
            with target:
                shutil.copyfileobj(stream, target)
        except Exception:
            path.unlink(missing_ok=True)
            raise

    def open(self, name: str) -> Optional[BinaryIO]:
        path = self._path(name)
        if path is None or not path.is_file():
            return None
        return open(path, "rb")

    def delete(self, name: str) -> bool:
        path = self._path(name)
        if path is None:
            return False
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        return True
