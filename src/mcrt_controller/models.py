"""Data model for ManagedCertificate resources and Compute SslCertificates.

These models provide:
1. Type-safe parsing of Kubernetes custom objects and Compute API payloads
2. Validation at the boundary (fail fast, fail loudly)
3. Serialization back to the wire shapes both APIs expect
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Annotated, Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .status import CertificateStatus, DomainStatus

# ManagedCertificate custom resource coordinates
MANAGED_CERTIFICATE_GROUP = "networking.gke.io"
MANAGED_CERTIFICATE_VERSION = "v1beta1"
MANAGED_CERTIFICATE_PLURAL = "managedcertificates"
MANAGED_CERTIFICATE_KIND = "ManagedCertificate"

# Compute API limit on domains per managed certificate
MAX_DOMAINS_PER_CERTIFICATE = 100

SSL_CERTIFICATE_TYPE_MANAGED = "MANAGED"


class InvalidKeyError(ValueError):
    """Raised when a queue key cannot be parsed into a ResourceId."""

    pass


@dataclass(frozen=True)
class ResourceId:
    """Identity of a ManagedCertificate: its namespace and name.

    Serializes to the queue key "namespace/name", or just "name" for
    cluster-scoped identities with an empty namespace.
    """

    namespace: str
    name: str

    @property
    def key(self) -> str:
        if self.namespace:
            return f"{self.namespace}/{self.name}"
        return self.name

    @classmethod
    def from_key(cls, key: str) -> ResourceId:
        """Parse a queue key.

        Raises:
            InvalidKeyError: If the key has more than one "/" or no name.
        """
        parts = key.split("/")
        if len(parts) == 1:
            namespace, name = "", parts[0]
        elif len(parts) == 2:
            namespace, name = parts
        else:
            raise InvalidKeyError(f"Unexpected key format: {key!r}")

        if not name:
            raise InvalidKeyError(f"Key has an empty name: {key!r}")

        return cls(namespace=namespace, name=name)

    def __str__(self) -> str:
        return self.key


# =============================================================================
# ManagedCertificate (Kubernetes custom resource)
# =============================================================================


class ObjectMeta(BaseModel):
    """Subset of Kubernetes object metadata the controller needs."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    name: Annotated[str, Field(min_length=1)]
    namespace: str = ""
    resource_version: str | None = Field(None, alias="resourceVersion")


class ManagedCertificateSpec(BaseModel):
    """Declared state: the domains the certificate must cover."""

    model_config = ConfigDict(extra="ignore")

    domains: Annotated[list[str], Field(min_length=1, max_length=MAX_DOMAINS_PER_CERTIFICATE)]

    @field_validator("domains")
    @classmethod
    def validate_domains(cls, v: list[str]) -> list[str]:
        seen: set[str] = set()
        for domain in v:
            if not domain:
                raise ValueError("domains must not contain empty entries")
            if domain in seen:
                raise ValueError(f"duplicate domain: {domain}")
            seen.add(domain)
        return v


class ManagedCertificateStatus(BaseModel):
    """Observed state, written only by the reconciliation engine.

    Every value belongs to the controller vocabulary; raw Compute statuses
    never reach this model.
    """

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    certificate_name: str = Field("", alias="certificateName")
    certificate_status: CertificateStatus = Field(
        CertificateStatus.EMPTY, alias="certificateStatus"
    )
    domain_status: dict[str, DomainStatus] = Field(default_factory=dict, alias="domainStatus")

    @field_validator("domain_status", mode="before")
    @classmethod
    def parse_domain_status_list(cls, v: Any) -> Any:
        # The custom resource stores domain statuses as a list of
        # {"domain": ..., "status": ...} objects.
        if isinstance(v, list):
            parsed: dict[str, Any] = {}
            for item in v:
                if not isinstance(item, dict) or "domain" not in item or "status" not in item:
                    raise ValueError(
                        f"domainStatus entries need 'domain' and 'status' keys: {item!r}"
                    )
                parsed[item["domain"]] = item["status"]
            return parsed
        if v is None:
            return {}
        return v

    def to_wire(self) -> dict[str, Any]:
        """Render in the custom resource's status shape."""
        return {
            "certificateName": self.certificate_name,
            "certificateStatus": self.certificate_status.value,
            "domainStatus": [
                {"domain": domain, "status": status.value}
                for domain, status in self.domain_status.items()
            ],
        }


class ManagedCertificate(BaseModel):
    """A ManagedCertificate custom resource."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    api_version: str = Field(
        f"{MANAGED_CERTIFICATE_GROUP}/{MANAGED_CERTIFICATE_VERSION}", alias="apiVersion"
    )
    kind: str = MANAGED_CERTIFICATE_KIND
    metadata: ObjectMeta
    spec: ManagedCertificateSpec
    status: ManagedCertificateStatus = Field(default_factory=ManagedCertificateStatus)

    @field_validator("status", mode="before")
    @classmethod
    def default_missing_status(cls, v: Any) -> Any:
        return {} if v is None else v

    @property
    def id(self) -> ResourceId:
        return ResourceId(namespace=self.metadata.namespace, name=self.metadata.name)

    @property
    def domains(self) -> list[str]:
        return self.spec.domains


# =============================================================================
# SslCertificate (Compute Engine resource)
# =============================================================================


class ManagedSslCertificate(BaseModel):
    """The "managed" block of an SslCertificate."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    domains: list[str] = Field(default_factory=list)
    status: str = ""
    domain_status: dict[str, str] = Field(default_factory=dict, alias="domainStatus")


class SslCertificate(BaseModel):
    """An SslCertificate as returned by the Compute API.

    Statuses stay in the cloud vocabulary here; see status.py for the
    translation into ManagedCertificate statuses.
    """

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    name: str
    type: str = SSL_CERTIFICATE_TYPE_MANAGED
    managed: ManagedSslCertificate | None = None
    id: str | None = None
    self_link: str | None = Field(None, alias="selfLink")
    creation_timestamp: str | None = Field(None, alias="creationTimestamp")
    expire_time: str | None = Field(None, alias="expireTime")
    subject_alternative_names: list[str] = Field(
        default_factory=list, alias="subjectAlternativeNames"
    )

    @property
    def is_managed(self) -> bool:
        return self.type == SSL_CERTIFICATE_TYPE_MANAGED

    @property
    def domains(self) -> list[str]:
        return list(self.managed.domains) if self.managed else []

    @property
    def status(self) -> str:
        return self.managed.status if self.managed else ""

    @property
    def domain_status(self) -> dict[str, str]:
        return dict(self.managed.domain_status) if self.managed else {}
