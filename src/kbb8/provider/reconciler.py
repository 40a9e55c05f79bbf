"""Create-or-update of manifest objects against the API server."""

from __future__ import annotations

import copy
from pathlib import Path
from typing import Any

from ..errors import ReconciliationError
from ..kube import CUSTOM_RESOURCE_DEFINITION, ApiError, KubeClient, ResourceKind
from ..process.wait import DEFAULT_POLL_INTERVAL, poll_immediate
from ..shared.logging import get_logger
from .manifest import ManifestObjects, WebhookTarget, read_and_adapt

logger = get_logger(__name__)


def is_crd_established(crd: dict[str, Any]) -> bool:
    """Whether the CRD reports the Established condition as True."""
    for condition in (crd.get("status") or {}).get("conditions") or []:
        if condition.get("type") == "Established":
            return condition.get("status") == "True"
    return False


def is_ready(kind: ResourceKind, obj: dict[str, Any]) -> bool:
    """Kind-specific readiness; webhook configurations are ready once they exist."""
    if kind is CUSTOM_RESOURCE_DEFINITION:
        return is_crd_established(obj)
    return True


class ManifestReconciler:
    """Apply a provider's managed objects and wait until they are ready."""

    def __init__(
        self,
        client: KubeClient,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        timeout: float | None = None,
    ):
        """Initialize reconciler.

        Args:
            client: Client bound to the running API server.
            poll_interval: Seconds between readiness checks.
            timeout: Readiness timeout per object (None = until cancelled).
        """
        self.client = client
        self.poll_interval = poll_interval
        self.timeout = timeout

    async def reconcile(self, manifest_path: str | Path, target: WebhookTarget) -> ManifestObjects:
        """Read, adapt and apply a manifest.

        Nothing reaches the API server if the manifest is invalid.
        """
        objects = read_and_adapt(manifest_path, target)
        await self.apply(objects)
        return objects

    async def apply(self, objects: ManifestObjects) -> None:
        """Apply objects one by one in application order."""
        for kind, obj in objects.ordered():
            await self.apply_object(kind, obj)

    async def apply_object(self, kind: ResourceKind, obj: dict[str, Any]) -> None:
        """Get-or-create-then-update one object, then wait for it to be ready.

        Raises:
            ReconciliationError: If the API server rejects the object or the
                object disappears while waiting.
        """
        name = obj["metadata"]["name"]
        desired = copy.deepcopy(obj)

        try:
            existing = await self.client.get(kind, name)
            if existing is None:
                await self.client.create(kind, desired)
                logger.debug("object_created", kind=kind.kind, name=name)
            else:
                desired["metadata"]["resourceVersion"] = existing["metadata"]["resourceVersion"]
                await self.client.update(kind, desired)
                logger.debug("object_updated", kind=kind.kind, name=name)
        except ApiError as e:
            raise ReconciliationError(f"error applying {kind.kind} {name}: {e}") from e

        async def ready() -> bool:
            try:
                actual = await self.client.get(kind, name)
            except ApiError as e:
                raise ReconciliationError(f"error fetching {kind.kind} {name}: {e}") from e
            if actual is None:
                raise ReconciliationError(f"{kind.kind} {name} was deleted before becoming ready")
            return is_ready(kind, actual)

        await poll_immediate(
            ready,
            interval=self.poll_interval,
            timeout=self.timeout,
            description=f"{kind.kind} {name}",
        )
