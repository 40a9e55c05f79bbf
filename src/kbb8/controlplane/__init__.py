"""Control plane package.

Starts the minimal control plane providers need:
1. etcd with an ephemeral data directory
2. kube-apiserver backed by it, with a freshly generated PKI
3. A kubeconfig entry (cluster, admin user, context) pointing at it
"""

from .apiserver import APIServer, APIServerPKI
from .controlplane import ControlPlane, ControlPlaneState
from .etcd import Etcd
from .stages import Stage, StageSequence

__all__ = [
    "APIServer",
    "APIServerPKI",
    "ControlPlane",
    "ControlPlaneState",
    "Etcd",
    "Stage",
    "StageSequence",
]
