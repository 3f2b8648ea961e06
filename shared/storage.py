# fshare/shared/storage.py

import json
import os
import tempfile
import threading
from pathlib import Path
from typing import Any

from shared.exceptions import MarshalError, StorageIOError
from shared.logging_config import setup_logger

# Set up logger
logger = setup_logger(__name__)


class JsonStorage:
    """
    Key/value store backed by a single JSON document on disk.

    Every set_item rewrites the whole document. The lock serialises callers
    inside this process only; other processes writing the same file are not
    coordinated with.
    """

    def __init__(self, path: Path):
        self.path = Path(path)
        self._lock = threading.RLock()

    def _ensure_dir(self):
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageIOError(f"Failed to create storage directory: {e}") from e

    def _read(self) -> dict:
        if not self.path.exists():
            return {}
        try:
            raw = self.path.read_text(encoding="utf-8")
        except OSError as e:
            raise StorageIOError(f"Failed to read storage file {self.path}: {e}") from e
        if not raw.strip():
            return {}
        try:
            data = json.loads(raw)
        except ValueError as e:
            raise MarshalError(f"Failed to parse storage file {self.path}: {e}") from e
        if not isinstance(data, dict):
            raise MarshalError(f"Storage file {self.path} does not hold a JSON object")
        return data

    def _write(self, data: dict):
        try:
            payload = json.dumps(data, indent=2, ensure_ascii=False)
        except (TypeError, ValueError) as e:
            raise MarshalError(f"Failed to marshal storage data: {e}") from e

        # Temp file in the same directory so os.replace stays on one filesystem
        fd, tmp_name = tempfile.mkstemp(dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(payload)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, self.path)
        except OSError as e:
            try:
                os.unlink(tmp_name)
            except OSError as cleanup_error:
                logger.warning(f"Failed to remove temporary storage file {tmp_name}: {cleanup_error}")
            raise StorageIOError(f"Failed to write storage file {self.path}: {e}") from e

    def get_item(self, key: str, default: Any = None) -> Any:
        with self._lock:
            self._ensure_dir()
            return self._read().get(key, default)

    def set_item(self, key: str, value: Any) -> None:
        with self._lock:
            self._ensure_dir()
            data = self._read()
            data[key] = value
            self._write(data)
        logger.debug(f"Stored key {key} in {self.path}")

