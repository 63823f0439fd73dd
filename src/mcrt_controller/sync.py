"""Synchronization of one ManagedCertificate with its SslCertificate.

Every step is safe to repeat. The work queue guarantees that a given
ManagedCertificate is never synchronized by two workers at once, so the
check-then-act sequences below cannot race with themselves.

Steps of a synchronization:
1. ManagedCertificate gone: delete its SslCertificate if it still exists
2. Pick the SslCertificate name and remember it before any cloud call, so a
   retry after a partial failure reuses the same name
3. Create the SslCertificate if it does not exist
4. Replace it when its domains no longer match the declared domains
5. Translate its statuses and write them to the ManagedCertificate
"""

from __future__ import annotations

import logging
import threading
import uuid
from typing import Protocol

from azure.core.exceptions import ResourceExistsError

from .config import SSL_CERTIFICATE_NAME_PREFIX
from .models import ManagedCertificate, ManagedCertificateStatus, ResourceId, SslCertificate
from .ssl import SslCertificateClient
from .status import translate_certificate_status, translate_domain_statuses
from .store import ManagedCertificateStore

logger = logging.getLogger(__name__)


class Reconciler(Protocol):
    def reconcile(self, resource_id: ResourceId) -> None:
        """Bring the resource in line with its declared state.

        Must be idempotent. Raising means "retry later".
        """
        ...


class CertificateSynchronizer:
    """Reconciler keeping SslCertificates in line with ManagedCertificates.

    The ManagedCertificate to SslCertificate name mapping is tracked in
    memory and recovered from ManagedCertificate status after a restart.
    Only names carrying the name prefix are ever recovered, so certificates
    the controller did not create are never replaced or deleted.
    """

    def __init__(
        self,
        store: ManagedCertificateStore,
        ssl_client: SslCertificateClient,
        name_prefix: str = SSL_CERTIFICATE_NAME_PREFIX,
    ) -> None:
        self._store = store
        self._ssl = ssl_client
        self._name_prefix = name_prefix
        self._names: dict[ResourceId, str] = {}
        # Workers run in threads; different keys touch the map concurrently
        self._lock = threading.Lock()

    def certificate_name(self, resource_id: ResourceId) -> str | None:
        """Name of the SslCertificate tracked for a ManagedCertificate."""
        with self._lock:
            return self._names.get(resource_id)

    def reconcile(self, resource_id: ResourceId) -> None:
        managed_certificate = self._store.get(resource_id)

        if managed_certificate is None:
            self._delete_orphan(resource_id)
            return

        name = self._resolve_name(managed_certificate)
        self._ensure_exists(name, managed_certificate.domains)
        certificate = self._ssl.get(name)

        if certificate.domains != managed_certificate.domains:
            logger.info(
                "SslCertificate domains differ from ManagedCertificate, replacing",
                extra={
                    "managed_certificate": resource_id.key,
                    "certificate": name,
                    "actual_domains": certificate.domains,
                    "declared_domains": managed_certificate.domains,
                },
            )
            self._delete_if_exists(name)
            name = self._track(resource_id, self._new_name())
            self._ensure_exists(name, managed_certificate.domains)
            certificate = self._ssl.get(name)

        managed_certificate.status = build_status(certificate)
        self._store.update_status(managed_certificate)

        logger.info(
            "ManagedCertificate synchronized",
            extra={
                "managed_certificate": resource_id.key,
                "certificate": name,
                "certificate_status": managed_certificate.status.certificate_status.value,
            },
        )

    def _delete_orphan(self, resource_id: ResourceId) -> None:
        with self._lock:
            name = self._names.get(resource_id)

        if name is None:
            logger.debug(
                "ManagedCertificate gone and no SslCertificate tracked",
                extra={"managed_certificate": resource_id.key},
            )
            return

        self._delete_if_exists(name)
        with self._lock:
            self._names.pop(resource_id, None)

    def _resolve_name(self, managed_certificate: ManagedCertificate) -> str:
        resource_id = managed_certificate.id
        with self._lock:
            name = self._names.get(resource_id)
        if name is not None:
            return name

        recovered = managed_certificate.status.certificate_name
        if recovered and not self.owns(recovered):
            logger.warning(
                "Ignoring SslCertificate not owned by the controller",
                extra={
                    "managed_certificate": resource_id.key,
                    "certificate": recovered,
                    "name_prefix": self._name_prefix,
                },
            )
            recovered = ""

        return self._track(resource_id, recovered or self._new_name())

    def owns(self, name: str) -> bool:
        """Whether an SslCertificate name belongs to this controller."""
        return name.startswith(self._name_prefix)

    def _track(self, resource_id: ResourceId, name: str) -> str:
        with self._lock:
            self._names[resource_id] = name
        return name

    def _new_name(self) -> str:
        return f"{self._name_prefix}{uuid.uuid4()}"

    def _ensure_exists(self, name: str, domains: list[str]) -> None:
        if self._ssl.exists(name):
            return

        try:
            self._ssl.create(name, domains)
        except ResourceExistsError:
            # A create for this name is still pending on the cloud side
            logger.info("SslCertificate already being created", extra={"certificate": name})

    def _delete_if_exists(self, name: str) -> None:
        if not self._ssl.exists(name):
            return
        self._ssl.delete(name)


def build_status(certificate: SslCertificate) -> ManagedCertificateStatus:
    """Translate the cloud state of a certificate into ManagedCertificate status.

    Raises:
        StatusMappingError: If a status has no mapping.
    """
    return ManagedCertificateStatus(
        certificate_name=certificate.name,
        certificate_status=translate_certificate_status(certificate.status),
        domain_status=translate_domain_statuses(certificate.domain_status),
    )
