"""Translation of SslCertificate statuses into ManagedCertificate statuses.

Compute Engine reports certificate and domain statuses in its own
vocabulary. ManagedCertificate resources expose a separate, smaller
vocabulary. Two independent tables keep the certificate-level and
domain-level vocabularies apart:

- Certificate level: whole-certificate lifecycle, including renewal and
  permanent provisioning failures.
- Domain level: per-domain validation outcome (CAA checks, visibility,
  rate limiting). Domains never reach the permanent or renewal failures.

A cloud status missing from a table is a data-integrity defect and raises
StatusMappingError. Values are never defaulted.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Generic, TypeVar


class StatusMappingError(Exception):
    """Raised when a cloud status has no entry in a translation table."""

    def __init__(self, table: str, cloud_status: str) -> None:
        super().__init__(f"No {table} status mapping for cloud status {cloud_status!r}")
        self.table = table
        self.cloud_status = cloud_status


class SslCertificateStatus(str, Enum):
    """Certificate-level statuses reported by Compute Engine."""

    ACTIVE = "ACTIVE"
    EMPTY = ""
    UNSPECIFIED = "MANAGED_CERTIFICATE_STATUS_UNSPECIFIED"
    PROVISIONING = "PROVISIONING"
    PROVISIONING_FAILED = "PROVISIONING_FAILED"
    PROVISIONING_FAILED_PERMANENTLY = "PROVISIONING_FAILED_PERMANENTLY"
    RENEWAL_FAILED = "RENEWAL_FAILED"


class SslDomainStatus(str, Enum):
    """Domain-level statuses reported by Compute Engine."""

    ACTIVE = "ACTIVE"
    FAILED_CAA_CHECKING = "FAILED_CAA_CHECKING"
    FAILED_CAA_FORBIDDEN = "FAILED_CAA_FORBIDDEN"
    FAILED_NOT_VISIBLE = "FAILED_NOT_VISIBLE"
    FAILED_RATE_LIMITED = "FAILED_RATE_LIMITED"
    PROVISIONING = "PROVISIONING"


class CertificateStatus(str, Enum):
    """Certificate-level statuses exposed on ManagedCertificate resources."""

    ACTIVE = "Active"
    EMPTY = ""
    PROVISIONING = "Provisioning"
    PROVISIONING_FAILED = "ProvisioningFailed"
    PROVISIONING_FAILED_PERMANENTLY = "ProvisioningFailedPermanently"
    RENEWAL_FAILED = "RenewalFailed"


class DomainStatus(str, Enum):
    """Domain-level statuses exposed on ManagedCertificate resources."""

    ACTIVE = "Active"
    FAILED_CAA_CHECKING = "FailedCaaChecking"
    FAILED_CAA_FORBIDDEN = "FailedCaaForbidden"
    FAILED_NOT_VISIBLE = "FailedNotVisible"
    FAILED_RATE_LIMITED = "FailedRateLimited"
    PROVISIONING = "Provisioning"


StatusT = TypeVar("StatusT", CertificateStatus, DomainStatus)


@dataclass(frozen=True)
class StatusTable(Generic[StatusT]):
    """Immutable lookup table from cloud status strings to controller statuses.

    Attributes:
        name: Human-readable table name used in error messages.
        entries: Read-only mapping keyed by the raw cloud status string.
    """

    name: str
    entries: Mapping[str, StatusT]

    def __contains__(self, cloud_status: object) -> bool:
        return cloud_status in self.entries

    def translate(self, cloud_status: str) -> StatusT:
        """Translate one cloud status.

        Raises:
            StatusMappingError: If the status has no entry in this table.
        """
        try:
            return self.entries[cloud_status]
        except KeyError:
            raise StatusMappingError(
                self.name, getattr(cloud_status, "value", cloud_status)
            ) from None


def _table(name: str, entries: dict[str, StatusT]) -> StatusTable[StatusT]:
    return StatusTable(name=name, entries=MappingProxyType(dict(entries)))


CERTIFICATE_STATUS_TABLE: StatusTable[CertificateStatus] = _table(
    "certificate",
    {
        SslCertificateStatus.ACTIVE.value: CertificateStatus.ACTIVE,
        SslCertificateStatus.EMPTY.value: CertificateStatus.EMPTY,
        SslCertificateStatus.UNSPECIFIED.value: CertificateStatus.EMPTY,
        SslCertificateStatus.PROVISIONING.value: CertificateStatus.PROVISIONING,
        SslCertificateStatus.PROVISIONING_FAILED.value: CertificateStatus.PROVISIONING_FAILED,
        SslCertificateStatus.PROVISIONING_FAILED_PERMANENTLY.value: (
            CertificateStatus.PROVISIONING_FAILED_PERMANENTLY
        ),
        SslCertificateStatus.RENEWAL_FAILED.value: CertificateStatus.RENEWAL_FAILED,
    },
)

DOMAIN_STATUS_TABLE: StatusTable[DomainStatus] = _table(
    "domain",
    {
        SslDomainStatus.ACTIVE.value: DomainStatus.ACTIVE,
        SslDomainStatus.FAILED_CAA_CHECKING.value: DomainStatus.FAILED_CAA_CHECKING,
        SslDomainStatus.FAILED_CAA_FORBIDDEN.value: DomainStatus.FAILED_CAA_FORBIDDEN,
        SslDomainStatus.FAILED_NOT_VISIBLE.value: DomainStatus.FAILED_NOT_VISIBLE,
        SslDomainStatus.FAILED_RATE_LIMITED.value: DomainStatus.FAILED_RATE_LIMITED,
        SslDomainStatus.PROVISIONING.value: DomainStatus.PROVISIONING,
    },
)


def translate(cloud_status: str, table: StatusTable[StatusT]) -> StatusT:
    """Translate a cloud status with the given table."""
    return table.translate(cloud_status)


def translate_certificate_status(cloud_status: str) -> CertificateStatus:
    return CERTIFICATE_STATUS_TABLE.translate(cloud_status)


def translate_domain_statuses(domain_statuses: Mapping[str, str]) -> dict[str, DomainStatus]:
    """Translate every per-domain status of a certificate.

    Raises:
        StatusMappingError: On the first domain status without a mapping.
    """
    return {
        domain: DOMAIN_STATUS_TABLE.translate(status)
        for domain, status in domain_statuses.items()
    }
