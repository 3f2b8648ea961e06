# fshare/shared/exceptions.py

"""Error kinds raised by the registry, resolver, archiver and storage layers"""


class FileShareError(Exception):
    """Base exception for fshare"""

    pass


class InvalidPath(FileShareError):
    """Malformed path, or a path that resolves to nothing usable"""

    pass


class EntryNotFound(FileShareError):
    """No registry entry under the requested name"""

    pass


class StatTargetMissing(FileShareError):
    """Filesystem target does not exist"""

    pass


class ArchiveIOError(FileShareError):
    """Read/write failure while building a directory archive"""

    pass


class StorageIOError(FileShareError):
    """Storage file could not be read or written"""

    pass


class MarshalError(FileShareError):
    """Storage document could not be parsed or serialised"""

    pass


class ConfigurationError(FileShareError):
    """Invalid or unreadable settings"""

    pass
