"""Kubeconfig credentials store."""

from .kubeconfig import (
    DEFAULT_KEY_PREFIX,
    ClusterCredentials,
    CredentialsEntry,
    cluster_key,
    context_key,
    create_or_merge,
    default_path,
    load_credentials,
    load_file,
    loading_precedence,
    lock_path,
    merge,
    merge_entry,
    new_config,
    remove,
    remove_entry,
    user_key,
)

__all__ = [
    "DEFAULT_KEY_PREFIX",
    "ClusterCredentials",
    "CredentialsEntry",
    "cluster_key",
    "context_key",
    "create_or_merge",
    "default_path",
    "load_credentials",
    "load_file",
    "loading_precedence",
    "lock_path",
    "merge",
    "merge_entry",
    "new_config",
    "remove",
    "remove_entry",
    "user_key",
]
