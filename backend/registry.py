# fshare/backend/registry.py

import os
import stat
import threading
from enum import Enum
from typing import Callable, Dict, List, Optional

from pydantic import BaseModel, ValidationError

from shared.exceptions import InvalidPath, MarshalError, StatTargetMissing
from shared.logging_config import setup_logger
from shared.storage import JsonStorage

# Set up logger
logger = setup_logger(__name__)

TEXT_NAME_LIMIT = 20
TEXT_SUMMARY_LIMIT = 100


class EntryKind(str, Enum):
    FILE = "file"
    DIRECTORY = "directory"
    TEXT = "text"


class Entry(BaseModel):
    kind: EntryKind = EntryKind.FILE
    name: str
    path: Optional[str] = None # Absolute filesystem path, unset for text entries
    owner: str = ""
    content: Optional[str] = None
    summary: Optional[str] = None


def text_entry_name(text: str) -> str:
    if len(text) > TEXT_NAME_LIMIT:
        return text[:TEXT_NAME_LIMIT] + "..."
    return text


def clean_path(path: str) -> str:
    return os.path.abspath(os.path.expanduser(path))


class RegistryStore:
    """
    Persisted name -> Entry mapping.

    Each mutation is a full read-modify-write of the registry document under
    one lock, so concurrent add/remove calls in this process never lose an
    update. The registry lives under a single storage key scoped to the machine.
    """

    def __init__(self, storage: JsonStorage, machine_id: str,
                 on_change: Optional[Callable[[str, Entry], None]] = None):
        self.storage = storage
        self.key = f"FileDb:{machine_id}"
        self.on_change = on_change
        self._lock = threading.Lock()

    def _load(self) -> Dict[str, Entry]:
        raw = self.storage.get_item(self.key, {})
        if not isinstance(raw, dict):
            raise MarshalError(f"Registry under {self.key} is not a mapping")
        try:
            return {name: Entry.model_validate(value) for name, value in raw.items()}
        except ValidationError as e:
            raise MarshalError(f"Failed to parse registry entries: {e}") from e

    def _save(self, db: Dict[str, Entry]):
        self.storage.set_item(
            self.key,
            {name: entry.model_dump(mode="json", exclude_none=True) for name, entry in db.items()},
        )

    def _notify(self, action: str, entry: Entry):
        if self.on_change is None:
            return
        try:
            self.on_change(action, entry)
        except Exception as e:
            logger.error(f"Registry change listener failed: {e}", exc_info=True)

    def _put(self, entry: Entry, name: Optional[Callable[[Dict[str, Entry]], str]] = None) -> Entry:
        with self._lock:
            db = self._load()
            if name is not None:
                entry = entry.model_copy(update={"name": name(db)})
            db[entry.name] = entry
            self._save(db)
        logger.info(f"Registered {entry.kind.value} entry: {entry.name}")
        self._notify("add", entry)
        return entry

    def add(self, entry: Entry) -> Entry:
        """
        Registers a file, directory or text entry and returns what was stored.

        Directories get a unique name: "<basename>", then "<basename>_1",
        "<basename>_2"... skipping names held by a different path. Re-adding
        the same directory reuses its key. Files and texts are stored under
        entry.name as given and overwrite any previous entry of that name.
        """
        if entry.kind == EntryKind.TEXT:
            return self._put(entry.model_copy(update={"path": None}))

        if not entry.path:
            raise InvalidPath(f"No filesystem path given for entry {entry.name!r}")

        path = clean_path(entry.path)
        try:
            st = os.stat(path)
        except (OSError, ValueError) as e:
            raise StatTargetMissing(f"Failed to stat {path}: {e}") from e

        if stat.S_ISDIR(st.st_mode):
            base = os.path.basename(path) or path

            def unique_name(db: Dict[str, Entry]) -> str:
                final_name = base
                suffix = 1
                while True:
                    existing = db.get(final_name)
                    if existing is None or existing.path == path:
                        return final_name
                    final_name = f"{base}_{suffix}"
                    suffix += 1

            directory = Entry(kind=EntryKind.DIRECTORY, name=base, path=path, owner=entry.owner)
            return self._put(directory, name=unique_name)

        name = entry.name or os.path.basename(path)
        return self._put(Entry(kind=EntryKind.FILE, name=name, path=path, owner=entry.owner))

    def add_text(self, text: str, owner: str) -> Entry:
        summary = text[:TEXT_SUMMARY_LIMIT]
        return self.add(Entry(
            kind=EntryKind.TEXT,
            name=text_entry_name(text),
            owner=owner,
            content=text,
            summary=summary,
        ))

    def remove(self, name: str) -> None:
        with self._lock:
            db = self._load()
            entry = db.pop(name, None)
            if entry is None:
                logger.debug(f"Remove requested for unknown entry: {name}")
                return
            self._save(db)
        logger.info(f"Removed entry: {name}")
        self._notify("remove", entry)

    def get(self, name: str) -> Optional[Entry]:
        return self._load().get(name)

    def list(self) -> List[Entry]:
        return list(self._load().values())
