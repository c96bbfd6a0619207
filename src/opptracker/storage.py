from __future__ import annotations

import logging
import os
from pathlib import Path

logger = logging.getLogger(__name__)

SUFFIX = ".json"


class KeyStore:
    """
    Key/value text store backed by one file per key:
    - <directory>/<key>.json
    - missing or blank file -> None
    - writes are atomic-ish (temp file + fsync + os.replace)
    A failed write raises OSError; the previous file is left untouched.
    """

    def __init__(self, directory: Path) -> None:
        self.directory = Path(directory)

    def path_for(self, key: str) -> Path:
        if not key or "/" in key or "\\" in key or key.startswith("."):
            raise ValueError(f"bad storage key {key!r}")
        return self.directory / f"{key}{SUFFIX}"

    def has(self, key: str) -> bool:
        # bytes, so an undecodable file still counts as present
        try:
            return bool(self.path_for(key).read_bytes().strip())
        except FileNotFoundError:
            return False

    def get(self, key: str) -> str | None:
        path = self.path_for(key)
        try:
            txt = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        return txt if txt.strip() else None

    def set(self, key: str, text: str) -> None:
        path = self.path_for(key)
        path.parent.mkdir(parents=True, exist_ok=True)

        tmp = path.with_name(path.name + ".tmp")
        try:
            with open(tmp, "w", encoding="utf-8") as f:
                f.write(text)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp, path)
        except OSError:
            try:
                tmp.unlink()
            except OSError:
                pass
            raise

        try:
            os.chmod(path, 0o600)
        except OSError:
            logger.debug("could not chmod %s", path)

    def remove(self, key: str) -> None:
        try:
            self.path_for(key).unlink()
        except FileNotFoundError:
            pass

    def keys(self) -> list[str]:
        if not self.directory.is_dir():
            return []
        return sorted(p.stem for p in self.directory.glob(f"*{SUFFIX}") if p.is_file())
