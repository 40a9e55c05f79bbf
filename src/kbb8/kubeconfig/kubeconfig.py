"""Kubeconfig credentials management.

Merges a kbb8 cluster entry (cluster, user and context, all keyed from the
cluster name) into a possibly pre-existing kubeconfig file, and removes it
again. Entries kbb8 did not derive are never touched.

Every read-modify-write of a file holds a process-wide lock and an advisory
``flock`` on ``.<file>.kbb8.lock``, which is deleted again on release, and
the new content replaces the old one atomically.
"""

from __future__ import annotations

import base64
import fcntl
import os
import tempfile
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from ..certs import ClientInfo, TinyCA
from ..errors import ConfigurationError, ResourceAllocationError
from ..shared.logging import get_logger

logger = get_logger(__name__)

DEFAULT_KEY_PREFIX = "kbb8"
SYSTEM_PRIVILEGED_GROUP = "system:masters"
KUBECONFIG_ENV = "KUBECONFIG"

_write_lock = threading.Lock()


def cluster_key(cluster_name: str, prefix: str = DEFAULT_KEY_PREFIX) -> str:
    return f"{prefix}-{cluster_name}"


def context_key(cluster_name: str, prefix: str = DEFAULT_KEY_PREFIX) -> str:
    return f"{prefix}-{cluster_name}"


def user_key(cluster_name: str, prefix: str = DEFAULT_KEY_PREFIX) -> str:
    return f"{prefix}-{cluster_name}-admin"


@dataclass
class CredentialsEntry:
    """Connection details of one kbb8 cluster."""

    cluster_name: str
    server: str
    ca_data: bytes
    client_cert: bytes
    client_key: bytes
    prefix: str = DEFAULT_KEY_PREFIX

    @property
    def cluster_key(self) -> str:
        return cluster_key(self.cluster_name, self.prefix)

    @property
    def user_key(self) -> str:
        return user_key(self.cluster_name, self.prefix)

    @property
    def context_key(self) -> str:
        return context_key(self.cluster_name, self.prefix)


@dataclass
class ClusterCredentials:
    """Credentials resolved from a kubeconfig context."""

    context: str
    server: str
    ca_data: bytes | None
    client_cert: bytes | None
    client_key: bytes | None


def _b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def _unb64(value: str | None) -> bytes | None:
    return base64.b64decode(value) if value else None


# =============================================================================
# In-memory config manipulation
# =============================================================================


def new_config() -> dict[str, Any]:
    """An empty kubeconfig document."""
    return {
        "apiVersion": "v1",
        "kind": "Config",
        "preferences": {},
        "clusters": [],
        "users": [],
        "contexts": [],
        "current-context": "",
    }


def _entries(config: dict[str, Any], section: str) -> list[dict[str, Any]]:
    entries = config.get(section)
    if entries is None:
        entries = []
        config[section] = entries
    if not isinstance(entries, list):
        raise ConfigurationError(f"kubeconfig section '{section}' is not a list")
    return entries


def _upsert(config: dict[str, Any], section: str, name: str, field: str, value: dict) -> None:
    entries = _entries(config, section)
    for entry in entries:
        if isinstance(entry, dict) and entry.get("name") == name:
            entry[field] = value
            return
    entries.append({"name": name, field: value})


def _drop(config: dict[str, Any], section: str, name: str) -> bool:
    entries = config.get(section)
    if not isinstance(entries, list):
        return False
    kept = [e for e in entries if not (isinstance(e, dict) and e.get("name") == name)]
    if len(kept) == len(entries):
        return False
    config[section] = kept
    return True


def _lookup(config: dict[str, Any], section: str, name: str, field: str) -> dict[str, Any] | None:
    for entry in config.get(section) or []:
        if isinstance(entry, dict) and entry.get("name") == name:
            return entry.get(field) or {}
    return None


def merge_entry(config: dict[str, Any], entry: CredentialsEntry) -> None:
    """Upsert the entry's cluster, user and context, and select its context."""
    _upsert(
        config,
        "clusters",
        entry.cluster_key,
        "cluster",
        {"server": entry.server, "certificate-authority-data": _b64(entry.ca_data)},
    )
    _upsert(
        config,
        "users",
        entry.user_key,
        "user",
        {
            "client-certificate-data": _b64(entry.client_cert),
            "client-key-data": _b64(entry.client_key),
        },
    )
    _upsert(
        config,
        "contexts",
        entry.context_key,
        "context",
        {"cluster": entry.cluster_key, "user": entry.user_key},
    )
    config["current-context"] = entry.context_key


def remove_entry(
    config: dict[str, Any], cluster_name: str, prefix: str = DEFAULT_KEY_PREFIX
) -> bool:
    """Remove a cluster's entries from the config.

    Returns:
        True if anything was removed or the current context was cleared.
    """
    mutated = _drop(config, "clusters", cluster_key(cluster_name, prefix))
    mutated = _drop(config, "users", user_key(cluster_name, prefix)) or mutated
    mutated = _drop(config, "contexts", context_key(cluster_name, prefix)) or mutated

    if config.get("current-context") == context_key(cluster_name, prefix):
        config["current-context"] = ""
        mutated = True
    return mutated


# =============================================================================
# Files
# =============================================================================


def loading_precedence(explicit_path: str | Path | None = None) -> list[Path]:
    """Kubeconfig files in loading order.

    An explicit path wins; otherwise the entries of $KUBECONFIG, otherwise
    ~/.kube/config.
    """
    if explicit_path:
        return [Path(explicit_path).expanduser()]
    env = os.environ.get(KUBECONFIG_ENV, "")
    paths = [Path(p).expanduser() for p in env.split(os.pathsep) if p]
    if paths:
        return paths
    return [Path.home() / ".kube" / "config"]


def default_path(explicit_path: str | Path | None = None) -> Path:
    """File that merges are written to: the first existing one in precedence, else the first."""
    paths = loading_precedence(explicit_path)
    for path in paths:
        if path.exists():
            return path
    return paths[0]


def load_file(path: Path) -> dict[str, Any]:
    """Load a kubeconfig file; a missing or empty file yields an empty config.

    Raises:
        ConfigurationError: If the file is not a valid kubeconfig document.
    """
    if not path.exists():
        return new_config()
    try:
        with open(path) as f:
            data = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        raise ConfigurationError(f"unable to read kubeconfig {path}: {e}") from e
    if data is None:
        return new_config()
    if not isinstance(data, dict):
        raise ConfigurationError(f"invalid kubeconfig {path}: not a mapping")
    return data


def write_file(path: Path, config: dict[str, Any]) -> None:
    """Atomically replace the kubeconfig file (mode 0600)."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=str(path.parent))
    try:
        with os.fdopen(fd, "w") as f:
            yaml.safe_dump(config, f, default_flow_style=False, sort_keys=False)
        os.chmod(tmp_name, 0o600)
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


def lock_path(path: Path) -> Path:
    """Lock file guarding a kubeconfig; kept apart from kubectl's own ``<file>.lock``."""
    return path.with_name(f".{path.name}.kbb8.lock")


def _acquire(lock: Path) -> int:
    # Another writer may unlink the lock file between open and flock; only a
    # lock held on the inode currently at the path counts.
    while True:
        try:
            fd = os.open(lock, os.O_RDWR | os.O_CREAT, 0o600)
        except OSError as e:
            raise ResourceAllocationError(f"unable to create lock file {lock}: {e}") from e
        fcntl.flock(fd, fcntl.LOCK_EX)
        try:
            if os.stat(lock).st_ino == os.fstat(fd).st_ino:
                return fd
        except FileNotFoundError:
            pass
        os.close(fd)


@contextmanager
def locked_file(path: Path) -> Iterator[None]:
    """Hold the single-writer lock of a kubeconfig file.

    The lock file is removed on release, so nothing is left next to the
    kubeconfig once kbb8 is done with it.
    """
    lock = lock_path(path)
    with _write_lock:
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise ResourceAllocationError(f"unable to lock kubeconfig {path}: {e}") from e
        fd = _acquire(lock)
        try:
            yield
        finally:
            lock.unlink(missing_ok=True)
            fcntl.flock(fd, fcntl.LOCK_UN)
            os.close(fd)


def create_or_merge(
    ca: TinyCA,
    url: str,
    cluster_name: str,
    explicit_path: str | Path | None = None,
    prefix: str = DEFAULT_KEY_PREFIX,
) -> tuple[Path, str]:
    """Issue an admin identity and merge the cluster into the kubeconfig.

    Args:
        ca: CA of the API server; also signs the admin client certificate.
        url: API server URL.
        cluster_name: Cluster name the keys are derived from.
        explicit_path: Kubeconfig file override.
        prefix: Key prefix.

    Returns:
        Tuple of (kubeconfig path, current context).
    """
    client = ca.new_client_cert(
        ClientInfo(name=user_key(cluster_name, prefix), groups=[SYSTEM_PRIVILEGED_GROUP])
    )
    cert_data, key_data = client.as_bytes()
    entry = CredentialsEntry(
        cluster_name=cluster_name,
        server=url,
        ca_data=ca.cert_bytes(),
        client_cert=cert_data,
        client_key=key_data,
        prefix=prefix,
    )
    return merge(entry, explicit_path)


def merge(entry: CredentialsEntry, explicit_path: str | Path | None = None) -> tuple[Path, str]:
    """Merge an entry into the kubeconfig file.

    Returns:
        Tuple of (kubeconfig path, current context).
    """
    path = default_path(explicit_path)
    with locked_file(path):
        config = load_file(path)
        merge_entry(config, entry)
        write_file(path, config)

    logger.info("kubeconfig_merged", path=str(path), context=entry.context_key)
    return path, config["current-context"]


def remove(
    cluster_name: str,
    explicit_path: str | Path | None = None,
    prefix: str = DEFAULT_KEY_PREFIX,
) -> list[Path]:
    """Remove a cluster's entries from every kubeconfig file in precedence.

    Files that do not exist or hold no matching entries are left untouched.

    Returns:
        Files that were rewritten.
    """
    mutated_paths = []
    for path in loading_precedence(explicit_path):
        if not path.exists():
            continue
        with locked_file(path):
            config = load_file(path)
            if remove_entry(config, cluster_name, prefix):
                write_file(path, config)
                mutated_paths.append(path)

    if mutated_paths:
        logger.info(
            "kubeconfig_removed",
            context=context_key(cluster_name, prefix),
            paths=[str(p) for p in mutated_paths],
        )
    return mutated_paths


def load_credentials(path: str | Path, context: str | None = None) -> ClusterCredentials:
    """Resolve server and credentials of a context (default: current context).

    Raises:
        ConfigurationError: If the context, cluster or user cannot be resolved.
    """
    path = Path(path)
    if not path.exists():
        raise ConfigurationError(f"kubeconfig {path} does not exist")
    config = load_file(path)

    name = context or config.get("current-context")
    if not name:
        raise ConfigurationError(f"kubeconfig {path} has no current context")

    ctx = _lookup(config, "contexts", name, "context")
    if ctx is None:
        raise ConfigurationError(f"context {name} not found in {path}")
    cluster = _lookup(config, "clusters", ctx.get("cluster", ""), "cluster")
    if cluster is None or not cluster.get("server"):
        raise ConfigurationError(f"cluster of context {name} not found in {path}")
    user = _lookup(config, "users", ctx.get("user", ""), "user") or {}

    return ClusterCredentials(
        context=name,
        server=cluster["server"],
        ca_data=_unb64(cluster.get("certificate-authority-data")),
        client_cert=_unb64(user.get("client-certificate-data")),
        client_key=_unb64(user.get("client-key-data")),
    )
