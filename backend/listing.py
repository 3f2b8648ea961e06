# fshare/backend/listing.py

import os
from typing import List, Optional

from pydantic import BaseModel

from backend.registry import EntryKind, RegistryStore
from shared.exceptions import InvalidPath, StatTargetMissing
from shared.logging_config import setup_logger

# Set up logger
logger = setup_logger(__name__)


class ListingItem(BaseModel):
    kind: EntryKind
    name: str
    path: Optional[str] = None
    owner: Optional[str] = None
    summary: Optional[str] = None
    size: Optional[int] = None
    modified: Optional[float] = None


def list_top(registry: RegistryStore) -> List[ListingItem]:
    """Every registry entry; text entries carry their summary, never the full content."""
    return [
        ListingItem(
            kind=entry.kind,
            name=entry.name,
            path=entry.path,
            owner=entry.owner,
            summary=entry.summary if entry.kind == EntryKind.TEXT else None,
        )
        for entry in registry.list()
    ]


def list_path(path: str) -> List[ListingItem]:
    """Immediate children of a live directory, classified from filesystem metadata."""
    if not os.path.exists(path):
        raise StatTargetMissing(f"File not exists: {path}")
    if not os.path.isdir(path):
        raise InvalidPath(f"File is not directory: {path}")

    try:
        with os.scandir(path) as it:
            children = sorted(it, key=lambda e: e.name)
    except FileNotFoundError as e:
        raise StatTargetMissing(f"File not exists: {path}") from e
    except NotADirectoryError as e:
        raise InvalidPath(f"File is not directory: {path}") from e
    except OSError as e:
        logger.warning(f"Could not read directory {path}: {e}")
        raise InvalidPath(f"Directory cannot be read: {path}") from e

    items = []
    for child in children:
        try:
            is_dir = child.is_dir()
            st = child.stat()
        except OSError as e:
            logger.warning(f"Could not stat {child.path}, skipping: {e}")
            continue
        items.append(ListingItem(
            kind=EntryKind.DIRECTORY if is_dir else EntryKind.FILE,
            name=child.name,
            path=child.path,
            size=None if is_dir else st.st_size,
            modified=st.st_mtime,
        ))
    logger.debug(f"Listed {len(items)} items in {path}")
    return items


def extract_file_name(path: str) -> str:
    words = [w for w in path.split(os.sep) if w]
    return words[-1] if words else ""


def convert_bytes(size: int) -> str:
    if size == 0:
        return "n/a"
    sizes = ["Bytes", "KB", "MB", "GB", "TB"]
    value = float(size)
    i = 0
    while value >= 1024 and i < len(sizes) - 1:
        value /= 1024
        i += 1
    if i == 0:
        return f"{size} {sizes[i]}"
    return f"{value:.1f} {sizes[i]}"
