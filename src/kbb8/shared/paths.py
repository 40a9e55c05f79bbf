"""Path management for kbb8.

Every supervised service gets its own directory under the work directory:
``<work_dir>/<subsystem>/<name>/`` holding ``<name>.log`` and whatever state
the service needs (data dir, certificates).
"""

from pathlib import Path

from ..errors import ResourceAllocationError

# Work directory relative to the current directory
DEFAULT_WORK_DIR = Path(".tmp")

# Subsystems
KUBERNETES_SUBSYSTEM = "kubernetes"
PROVIDER_SUBSYSTEM = "provider"


def service_dir(work_dir: Path, subsystem: str, name: str) -> Path:
    """Create (if missing) and return the directory of one service.

    Args:
        work_dir: Base work directory (e.g. ./.tmp)
        subsystem: Subsystem name (kubernetes, provider)
        name: Service name (etcd, api-server, capi, ...)

    Returns:
        Absolute path to the service directory

    Raises:
        ResourceAllocationError: If the directory cannot be created
    """
    path = (work_dir / subsystem / name).absolute()
    try:
        path.mkdir(mode=0o744, parents=True, exist_ok=True)
    except OSError as e:
        raise ResourceAllocationError(f"unable to create directory {path}: {e}") from e
    return path


def log_file(directory: Path, name: str) -> Path:
    """Get path to the log file of a service.

    Args:
        directory: Service directory
        name: Log file name (without extension)

    Returns:
        Path to the log file
    """
    return directory / f"{name}.log"


def open_log(directory: Path, name: str):
    """Open the append-only log file of a service.

    Raises:
        ResourceAllocationError: If the file cannot be opened
    """
    path = log_file(directory, name)
    try:
        return open(path, "ab")
    except OSError as e:
        raise ResourceAllocationError(f"unable to open log file {path}: {e}") from e


def ensure_dir(path: Path, mode: int = 0o744) -> Path:
    """Create a directory (and parents) if missing.

    Raises:
        ResourceAllocationError: If the directory cannot be created
    """
    try:
        path.mkdir(mode=mode, parents=True, exist_ok=True)
    except OSError as e:
        raise ResourceAllocationError(f"unable to create directory {path}: {e}") from e
    return path
