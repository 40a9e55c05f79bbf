"""Minimal async client for the Kubernetes API server.

Only what reconciliation needs: get, create and update of cluster-scoped
objects, authenticated with the client certificate from a kubeconfig.
"""

from __future__ import annotations

import shutil
import ssl
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import httpx

from ..errors import ConfigurationError, Kbb8Error
from ..kubeconfig import load_credentials

DEFAULT_TIMEOUT = 30.0


@dataclass(frozen=True)
class ResourceKind:
    """REST mapping of a cluster-scoped kind."""

    kind: str
    group: str
    version: str
    plural: str

    @property
    def api_version(self) -> str:
        return f"{self.group}/{self.version}" if self.group else self.version

    @property
    def collection_path(self) -> str:
        if self.group:
            return f"/apis/{self.group}/{self.version}/{self.plural}"
        return f"/api/{self.version}/{self.plural}"

    def object_path(self, name: str) -> str:
        return f"{self.collection_path}/{name}"


CUSTOM_RESOURCE_DEFINITION = ResourceKind(
    kind="CustomResourceDefinition",
    group="apiextensions.k8s.io",
    version="v1",
    plural="customresourcedefinitions",
)
MUTATING_WEBHOOK_CONFIGURATION = ResourceKind(
    kind="MutatingWebhookConfiguration",
    group="admissionregistration.k8s.io",
    version="v1",
    plural="mutatingwebhookconfigurations",
)
VALIDATING_WEBHOOK_CONFIGURATION = ResourceKind(
    kind="ValidatingWebhookConfiguration",
    group="admissionregistration.k8s.io",
    version="v1",
    plural="validatingwebhookconfigurations",
)


class ApiError(Kbb8Error):
    """Error response (or transport failure) from the API server."""

    def __init__(self, message: str, status_code: int | None = None, reason: str | None = None):
        self.status_code = status_code
        self.reason = reason
        super().__init__(message)


class KubeClient:
    """Async REST client bound to one API server."""

    def __init__(
        self,
        server: str,
        ca_data: bytes | None = None,
        cert_file: str | Path | None = None,
        key_file: str | Path | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize client.

        Args:
            server: API server URL (e.g., https://127.0.0.1:6443)
            ca_data: PEM CA bundle used to verify the server
            cert_file: Client certificate file
            key_file: Client key file
            timeout: Request timeout in seconds
            transport: Custom transport (tests)
        """
        self.server = server.rstrip("/")
        self.timeout = timeout
        self._cleanup_dir: str | None = None

        verify: ssl.SSLContext | bool = True
        if transport is None and (ca_data or cert_file):
            try:
                context = (
                    ssl.create_default_context(cadata=ca_data.decode())
                    if ca_data
                    else ssl.create_default_context()
                )
                if cert_file and key_file:
                    context.load_cert_chain(str(cert_file), str(key_file))
            except (ssl.SSLError, OSError) as e:
                raise ConfigurationError(f"invalid TLS material for {server}: {e}") from e
            verify = context

        self._client = httpx.AsyncClient(
            base_url=self.server,
            timeout=timeout,
            verify=verify,
            transport=transport,
            trust_env=False,
            headers={"Accept": "application/json"},
        )

    @classmethod
    def from_kubeconfig(cls, path: str | Path, context: str | None = None) -> KubeClient:
        """Build a client from a kubeconfig context.

        The client certificate and key are materialized in a private
        temporary directory that is removed by ``aclose()``.
        """
        creds = load_credentials(path, context)
        cert_file = key_file = None
        cleanup_dir = None
        if creds.client_cert and creds.client_key:
            cleanup_dir = tempfile.mkdtemp(prefix="kbb8-client-")
            cert_file = Path(cleanup_dir) / "client.crt"
            key_file = Path(cleanup_dir) / "client.key"
            cert_file.write_bytes(creds.client_cert)
            key_file.write_bytes(creds.client_key)
            key_file.chmod(0o600)

        try:
            client = cls(creds.server, ca_data=creds.ca_data, cert_file=cert_file, key_file=key_file)
        except ConfigurationError:
            if cleanup_dir:
                shutil.rmtree(cleanup_dir, ignore_errors=True)
            raise
        client._cleanup_dir = cleanup_dir
        return client

    async def __aenter__(self) -> KubeClient:
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()
        if self._cleanup_dir:
            shutil.rmtree(self._cleanup_dir, ignore_errors=True)
            self._cleanup_dir = None

    async def _request(self, method: str, path: str, body: dict[str, Any] | None = None) -> httpx.Response:
        try:
            return await self._client.request(method, path, json=body)
        except httpx.HTTPError as e:
            raise ApiError(f"{method} {path} failed: {e}") from e

    @staticmethod
    def _raise_for_status(response: httpx.Response, action: str) -> None:
        if response.is_success:
            return
        reason = None
        message = response.text
        try:
            status = response.json()
            message = status.get("message", message)
            reason = status.get("reason")
        except ValueError:
            pass
        raise ApiError(
            f"{action} failed (HTTP {response.status_code}): {message}",
            status_code=response.status_code,
            reason=reason,
        )

    async def get(self, kind: ResourceKind, name: str) -> dict[str, Any] | None:
        """Get an object by name.

        Returns:
            The object, or None if it does not exist.

        Raises:
            ApiError: On any other error.
        """
        response = await self._request("GET", kind.object_path(name))
        if response.status_code == 404:
            return None
        self._raise_for_status(response, f"get {kind.kind} {name}")
        return response.json()

    async def create(self, kind: ResourceKind, obj: dict[str, Any]) -> dict[str, Any]:
        """Create an object. Raises ApiError on failure (including 409 AlreadyExists)."""
        name = obj.get("metadata", {}).get("name", "")
        response = await self._request("POST", kind.collection_path, obj)
        self._raise_for_status(response, f"create {kind.kind} {name}")
        return response.json()

    async def update(self, kind: ResourceKind, obj: dict[str, Any]) -> dict[str, Any]:
        """Replace an object; metadata.resourceVersion must be set."""
        name = obj.get("metadata", {}).get("name", "")
        response = await self._request("PUT", kind.object_path(name), obj)
        self._raise_for_status(response, f"update {kind.kind} {name}")
        return response.json()
