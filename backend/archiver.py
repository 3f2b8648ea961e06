# fshare/backend/archiver.py

import os
import tempfile
import zipfile

from shared.exceptions import ArchiveIOError
from shared.logging_config import setup_logger

# Set up logger
logger = setup_logger(__name__)


def _raise_walk_error(error: OSError):
    raise error


def archive_directory(source_dir: str, dest_path: str) -> None:
    """
    Zips every descendant of source_dir into dest_path.

    Archive names are relative to source_dir, which itself gets no entry.
    Directories are stored as "name/" markers. Files dated before 1980 are
    stored with the earliest ZIP timestamp. On failure the partial archive
    is left at dest_path and ArchiveIOError is raised.
    """
    source_dir = os.path.abspath(source_dir)
    try:
        with zipfile.ZipFile(dest_path, "w", zipfile.ZIP_DEFLATED, strict_timestamps=False) as zipf:
            for root, dirs, files in os.walk(source_dir, onerror=_raise_walk_error):
                dirs.sort()
                relative_root = os.path.relpath(root, source_dir)
                for name in dirs + sorted(files):
                    item_path = os.path.join(root, name)
                    if os.path.abspath(item_path) == os.path.abspath(dest_path):
                        continue
                    arcname = name if relative_root == os.curdir else os.path.join(relative_root, name)
                    # ZipFile.write appends the trailing "/" for directories
                    zipf.write(item_path, arcname.replace(os.sep, "/"))
                    logger.debug(f"Added to zip: {item_path} as {arcname}")
    except (OSError, ValueError, zipfile.BadZipFile, zipfile.LargeZipFile) as e:
        logger.error(f"Error creating zip file {dest_path} from {source_dir}: {e}")
        raise ArchiveIOError(f"Error creating zip file: {e}") from e
    logger.info(f"Zip file created: {dest_path}")


def archive_name_for(source_dir: str) -> str:
    """Download name of a directory archive: "<dirname>.zip"."""
    return f"{os.path.basename(os.path.abspath(source_dir)) or 'archive'}.zip"


def remove_archive(archive_path: str) -> None:
    try:
        if os.path.exists(archive_path):
            os.remove(archive_path)
            logger.debug(f"Cleaned up archive: {archive_path}")
    except OSError as e:
        logger.warning(f"Failed to clean up archive {archive_path}: {e}")


def build_archive(source_dir: str) -> str:
    """
    Zips source_dir into a fresh hidden file next to it and returns its path.

    Each call gets its own file, so existing files and concurrent downloads
    of the same directory are never overwritten. The caller removes the
    archive with remove_archive once it has been sent. On any failure the
    partial archive is removed before the error propagates.
    """
    source_dir = os.path.abspath(source_dir)
    name = os.path.basename(source_dir) or "archive"
    try:
        fd, archive_path = tempfile.mkstemp(dir=os.path.dirname(source_dir), prefix=f".{name}.", suffix=".zip")
    except OSError as e:
        raise ArchiveIOError(f"Error creating zip file next to {source_dir}: {e}") from e
    os.close(fd)
    try:
        archive_directory(source_dir, archive_path)
    except BaseException:
        remove_archive(archive_path)
        raise
    return archive_path
