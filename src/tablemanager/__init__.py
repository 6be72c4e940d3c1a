"""tablemanager - An in-memory engine for browsing and editing database tables."""

from importlib.metadata import version, PackageNotFoundError

try:
    __version__ = version("tablemanager")
except PackageNotFoundError:
    __version__ = "unknown"

__all__ = ["__version__"]
