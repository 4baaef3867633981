"""
Durable file store.

All persistent state (checkpoint, per-lead artifacts, daily aggregates, job
records, cooldown state) lives as JSON documents under one data directory.
Names passed to FileStore are relative to that root.
"""

import json
import logging
import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, List, Optional, Union

from leadsmith.config import resolve_data_dir
from leadsmith.errors import PersistenceError

logger = logging.getLogger(__name__)


def now_z() -> str:
    """Current UTC time as ISO-8601 with millisecond precision and a Z suffix."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_z(value: str) -> Optional[datetime]:
    """Parse a timestamp written by now_z (or any ISO-8601 string). None if invalid."""
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class FileStore:
    """Read/write/exists over named paths under a root directory."""

    def __init__(self, root: Optional[Union[str, Path]] = None):
        self.root = Path(root or resolve_data_dir())

    def __repr__(self) -> str:
        return f"FileStore({str(self.root)!r})"

    def path(self, name: str) -> Path:
        return self.root / name

    def exists(self, name: str) -> bool:
        return self.path(name).exists()

    def read_text(self, name: str) -> Optional[str]:
        """Return file contents, or None if the file does not exist."""
        try:
            return self.path(name).read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as e:
            raise PersistenceError(f"Failed to read {name}: {e}")

    def read_json(self, name: str, strict: bool = False) -> Optional[Any]:
        """
        Load a JSON document.

        Args:
            name: Path relative to the root
            strict: Raise PersistenceError on corrupt JSON instead of returning None

        Returns:
            Parsed document, or None if missing (or corrupt when not strict)
        """
        content = self.read_text(name)
        if content is None:
            return None
        try:
            return json.loads(content)
        except json.JSONDecodeError as e:
            if strict:
                raise PersistenceError(f"Corrupt JSON in {name}: {e}")
            logger.warning(f"Ignoring corrupt JSON document {name}: {e}")
            return None

    def write_text(self, name: str, text: str) -> Path:
        """
        Atomically write text (temp file in the same directory, then rename).

        Raises:
            PersistenceError: If the write fails
        """
        target = self.path(name)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(
                dir=str(target.parent), prefix=f".{target.name}.", suffix=".tmp"
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    f.write(text)
                os.replace(tmp_path, target)
            except BaseException:
                if os.path.exists(tmp_path):
                    os.remove(tmp_path)
                raise
        except OSError as e:
            raise PersistenceError(f"Failed to write to {target}: {e}")
        return target

    def write_json(self, name: str, data: Any) -> Path:
        return self.write_text(name, json.dumps(data, indent=2, default=str))

    def delete(self, name: str) -> bool:
        """Delete a file. Returns False if it did not exist."""
        try:
            self.path(name).unlink()
            return True
        except FileNotFoundError:
            return False

    def list(self, directory: str = "", suffix: Optional[str] = None) -> List[str]:
        """List file names (not paths) directly inside ``directory``."""
        base = self.path(directory) if directory else self.root
        if not base.is_dir():
            return []
        names = [p.name for p in base.iterdir() if p.is_file()]
        if suffix:
            names = [n for n in names if n.endswith(suffix)]
        return names

    def mtime(self, name: str) -> float:
        return self.path(name).stat().st_mtime
