"""kbb8 - bootstrap a local Kubernetes control plane with Cluster API providers."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("kbb8")
except PackageNotFoundError:
    __version__ = "0.0.0.dev0"  # Fallback for editable installs without metadata

from .main import main

__all__ = ["main", "__version__"]
