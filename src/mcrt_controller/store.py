"""Access to ManagedCertificate custom resources.

The controller reads declared state and writes observed state through a
ManagedCertificateStore. The Kubernetes implementation talks to the API
server through CustomObjectsApi and writes status via the status
subresource.
"""

from __future__ import annotations

import logging
from typing import Any, Protocol

from kubernetes import client, config
from kubernetes.client.rest import ApiException
from kubernetes.config.config_exception import ConfigException
from pydantic import ValidationError

from .models import (
    MANAGED_CERTIFICATE_GROUP,
    MANAGED_CERTIFICATE_PLURAL,
    MANAGED_CERTIFICATE_VERSION,
    ManagedCertificate,
    ResourceId,
)

logger = logging.getLogger(__name__)


class ManagedCertificateLister(Protocol):
    def list(self) -> list[ManagedCertificate]:
        """Return every ManagedCertificate in the cluster."""
        ...


class ManagedCertificateStore(ManagedCertificateLister, Protocol):
    def get(self, resource_id: ResourceId) -> ManagedCertificate | None:
        """Return the ManagedCertificate, or None if it does not exist."""
        ...

    def update_status(self, managed_certificate: ManagedCertificate) -> None:
        """Persist the status of the ManagedCertificate, replacing the old one."""
        ...


def load_kube_config() -> None:
    """Load in-cluster configuration, falling back to the local kubeconfig."""
    try:
        config.load_incluster_config()
        logger.info("Loaded in-cluster Kubernetes configuration")
    except ConfigException:
        config.load_kube_config()
        logger.info("Loaded Kubernetes configuration from kubeconfig")


class KubernetesManagedCertificateStore:
    """ManagedCertificateStore backed by the Kubernetes API server."""

    def __init__(self, api: client.CustomObjectsApi | None = None) -> None:
        self._api = api or client.CustomObjectsApi()

    def list(self) -> list[ManagedCertificate]:
        """List ManagedCertificates across all namespaces.

        Objects that fail validation are logged and skipped so one broken
        resource does not hide all others from the resync.

        Raises:
            ApiException: If the API server rejects the request.
        """
        result = self._api.list_cluster_custom_object(
            group=MANAGED_CERTIFICATE_GROUP,
            version=MANAGED_CERTIFICATE_VERSION,
            plural=MANAGED_CERTIFICATE_PLURAL,
        )

        managed_certificates: list[ManagedCertificate] = []
        for item in result.get("items", []):
            parsed = self._parse(item)
            if parsed is not None:
                managed_certificates.append(parsed)
        return managed_certificates

    def get(self, resource_id: ResourceId) -> ManagedCertificate | None:
        """Fetch one ManagedCertificate.

        Raises:
            ApiException: On any API error except 404.
            ValidationError: If the object is malformed.
        """
        try:
            result = self._api.get_namespaced_custom_object(
                group=MANAGED_CERTIFICATE_GROUP,
                version=MANAGED_CERTIFICATE_VERSION,
                namespace=resource_id.namespace,
                plural=MANAGED_CERTIFICATE_PLURAL,
                name=resource_id.name,
            )
        except ApiException as e:
            if e.status == 404:
                return None
            raise

        return ManagedCertificate.model_validate(result)

    def update_status(self, managed_certificate: ManagedCertificate) -> None:
        """Replace the status of a ManagedCertificate.

        Raises:
            ApiException: If the API server rejects the patch.
        """
        resource_id = managed_certificate.id
        self._api.patch_namespaced_custom_object_status(
            group=MANAGED_CERTIFICATE_GROUP,
            version=MANAGED_CERTIFICATE_VERSION,
            namespace=resource_id.namespace,
            plural=MANAGED_CERTIFICATE_PLURAL,
            name=resource_id.name,
            body={"status": managed_certificate.status.to_wire()},
        )
        logger.debug(
            "ManagedCertificate status updated",
            extra={
                "managed_certificate": resource_id.key,
                "certificate_status": managed_certificate.status.certificate_status.value,
            },
        )

    @staticmethod
    def _parse(item: dict[str, Any]) -> ManagedCertificate | None:
        try:
            return ManagedCertificate.model_validate(item)
        except ValidationError as e:
            metadata = item.get("metadata") or {}
            logger.warning(
                "Skipping malformed ManagedCertificate",
                extra={
                    "namespace": metadata.get("namespace"),
                    "name": metadata.get("name"),
                    "error": str(e),
                },
            )
            return None
