"""Test doubles for kbb8.

Provides:
- FakeAPIServer: in-memory API server behind an httpx.MockTransport
- fake_binaries: fake etcd / kube-apiserver / manager executables
"""

from .fake_apiserver import FakeAPIServer

__all__ = ["FakeAPIServer"]
