"""Batch binding-affinity prediction backend for DrugBind."""

from importlib.metadata import version, PackageNotFoundError

__all__ = ["__version__"]

try:
    __version__ = version("drugbind")
except PackageNotFoundError:  # pragma: no cover - local dev
    __version__ = "0.1.0"
