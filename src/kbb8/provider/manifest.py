"""Provider manifest parsing and adaptation.

A provider manifest (``components.yaml``) is a multi-document YAML file.
Only CustomResourceDefinitions and admission webhook configurations are
picked out of it; their webhook callbacks are rewritten to point at the
provider process running on the local machine.
"""

from __future__ import annotations

import base64
import copy
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any
from urllib.parse import urlparse

import yaml

from ..errors import ConfigurationError
from ..kube import (
    CUSTOM_RESOURCE_DEFINITION,
    MUTATING_WEBHOOK_CONFIGURATION,
    VALIDATING_WEBHOOK_CONFIGURATION,
    ResourceKind,
)
from ..process.addr import ServiceEndpoint

MANAGED_KINDS: dict[str, ResourceKind] = {
    k.kind: k
    for k in (
        CUSTOM_RESOURCE_DEFINITION,
        MUTATING_WEBHOOK_CONFIGURATION,
        VALIDATING_WEBHOOK_CONFIGURATION,
    )
}

CONVERSION_REVIEW_VERSIONS = ["v1", "v1beta1"]


@dataclass(frozen=True)
class WebhookTarget:
    """Local endpoint serving a provider's webhooks, and the CA that signed it."""

    endpoint: ServiceEndpoint
    ca_data: bytes

    @property
    def url(self) -> str:
        return self.endpoint.url

    @property
    def ca_bundle(self) -> str:
        return base64.b64encode(self.ca_data).decode("ascii")

    def client_config(self, path: str) -> dict[str, Any]:
        """clientConfig calling ``<url>/<path>`` directly, without a service reference."""
        return {"url": f"{self.url}/{path.lstrip('/')}", "caBundle": self.ca_bundle}


@dataclass
class ManifestObjects:
    """Managed objects of a manifest, grouped in application order."""

    crds: list[dict[str, Any]] = field(default_factory=list)
    mutating_webhooks: list[dict[str, Any]] = field(default_factory=list)
    validating_webhooks: list[dict[str, Any]] = field(default_factory=list)

    def ordered(self) -> list[tuple[ResourceKind, dict[str, Any]]]:
        """CRDs first, then mutating, then validating configurations."""
        return (
            [(CUSTOM_RESOURCE_DEFINITION, o) for o in self.crds]
            + [(MUTATING_WEBHOOK_CONFIGURATION, o) for o in self.mutating_webhooks]
            + [(VALIDATING_WEBHOOK_CONFIGURATION, o) for o in self.validating_webhooks]
        )

    def __len__(self) -> int:
        return len(self.crds) + len(self.mutating_webhooks) + len(self.validating_webhooks)


def read_documents(path: str | Path) -> list[dict[str, Any]]:
    """Read the YAML documents of a manifest, skipping empty ones.

    Raises:
        ConfigurationError: If the file cannot be read or parsed.
    """
    try:
        with open(path) as f:
            docs = list(yaml.safe_load_all(f))
    except OSError as e:
        raise ConfigurationError(f"unable to read manifest {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigurationError(f"unable to parse manifest {path}: {e}") from e

    return [d for d in docs if d]


def classify(docs: list[dict[str, Any]]) -> ManifestObjects:
    """Pick the managed objects out of a list of documents.

    Raises:
        ConfigurationError: If a managed object has no name or declares an
            unsupported apiVersion.
    """
    objects = ManifestObjects()
    for doc in docs:
        if not isinstance(doc, dict):
            continue
        kind = MANAGED_KINDS.get(doc.get("kind", ""))
        if kind is None:
            continue

        metadata = doc.get("metadata")
        name = metadata.get("name") if isinstance(metadata, dict) else None
        if not isinstance(name, str) or not name:
            raise ConfigurationError(f"{kind.kind} without metadata.name in manifest")
        if doc.get("apiVersion") != kind.api_version:
            raise ConfigurationError(
                f"only {kind.api_version} is supported for {kind.kind} "
                f"(name: {name}, apiVersion: {doc.get('apiVersion')})"
            )

        obj = copy.deepcopy(doc)
        if kind is CUSTOM_RESOURCE_DEFINITION:
            objects.crds.append(obj)
        elif kind is MUTATING_WEBHOOK_CONFIGURATION:
            objects.mutating_webhooks.append(obj)
        else:
            objects.validating_webhooks.append(obj)
    return objects


def adapt_crd(crd: dict[str, Any], target: WebhookTarget) -> None:
    """Point the CRD conversion webhook at the local provider.

    A CRD without a conversion strategy gets a webhook conversion; one that
    already converts through a webhook gets its clientConfig rewritten.
    """
    spec = crd.setdefault("spec", {})
    conversion = spec.get("conversion")
    if conversion and conversion.get("strategy") != "Webhook":
        return

    webhook = (conversion or {}).get("webhook") or {}
    spec["conversion"] = {
        "strategy": "Webhook",
        "webhook": {
            "conversionReviewVersions": webhook.get(
                "conversionReviewVersions", list(CONVERSION_REVIEW_VERSIONS)
            ),
            "clientConfig": target.client_config("convert"),
        },
    }


def adapt_webhook_configuration(config: dict[str, Any], target: WebhookTarget) -> None:
    """Rewrite every webhook of a configuration to call the local provider."""
    for webhook in config.get("webhooks") or []:
        client_config = webhook.get("clientConfig") or {}
        service = client_config.get("service") or {}
        path = service.get("path")
        if path is None and client_config.get("url"):
            path = urlparse(client_config["url"]).path
        webhook["clientConfig"] = target.client_config(path or "")


def read_and_adapt(path: str | Path, target: WebhookTarget) -> ManifestObjects:
    """Read a manifest and adapt its managed objects to the local webhook target."""
    objects = classify(read_documents(path))
    for crd in objects.crds:
        adapt_crd(crd, target)
    for config in objects.mutating_webhooks + objects.validating_webhooks:
        adapt_webhook_configuration(config, target)
    return objects
