# fshare/backend/resolver.py

"""
Turns a client path such as "photos/2024/img.png" into a registry lookup.

The first segment names a registry entry; the remaining segments address
something inside that entry when it is a directory.
"""

import os
from dataclasses import dataclass
from typing import Tuple

from backend.registry import RegistryStore
from shared.exceptions import EntryNotFound, InvalidPath, StatTargetMissing
from shared.logging_config import setup_logger

# Set up logger
logger = setup_logger(__name__)

SEPARATOR = "/"


@dataclass(frozen=True)
class ResolvedPath:
    segments: Tuple[str, ...] = ()
    root_name: str = ""
    resolved_path: str = ""

    @property
    def is_root(self) -> bool:
        """True when the request addresses the registry itself."""
        return not self.segments

    @property
    def sub_segments(self) -> Tuple[str, ...]:
        return self.segments[1:]

    def target(self) -> str:
        """Registered path joined with the residual segments."""
        if not self.sub_segments:
            return self.resolved_path
        for segment in self.sub_segments:
            if segment in (".", "..") or os.sep in segment or (os.altsep and os.altsep in segment):
                raise InvalidPath(f"Invalid path segment: {segment!r}")
        return os.path.join(self.resolved_path, *self.sub_segments)


def split_path(raw: str) -> Tuple[str, ...]:
    return tuple(part for part in raw.split(SEPARATOR) if part)


def resolve_path(registry: RegistryStore, raw: str) -> ResolvedPath:
    if raw == "":
        return ResolvedPath()

    segments = split_path(raw)
    if not segments:
        raise InvalidPath(f"Invalid path: {raw!r}")

    root_name = segments[0]
    entry = registry.get(root_name)
    if entry is None:
        raise EntryNotFound(f"Entry not found in share list: {root_name}")

    return ResolvedPath(segments=segments, root_name=root_name, resolved_path=entry.path or "")


def resolve_download_target(registry: RegistryStore, raw: str) -> Tuple[ResolvedPath, str]:
    """
    Resolves a download request to an existing filesystem path.

    A registered entry whose backing path has vanished is pruned from the
    registry before StatTargetMissing is raised.
    """
    resolved = resolve_path(registry, raw)
    if not resolved.resolved_path:
        raise InvalidPath("Nothing to download at this path")

    if not os.path.exists(resolved.resolved_path):
        logger.warning(f"Backing path for {resolved.root_name} is gone, pruning: {resolved.resolved_path}")
        registry.remove(resolved.root_name)
        raise StatTargetMissing(f"File no longer exists: {resolved.root_name}")

    target = resolved.target()
    if not os.path.exists(target):
        raise StatTargetMissing(f"File not found: {SEPARATOR.join(resolved.segments)}")
    return resolved, target
