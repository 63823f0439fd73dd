"""Compute Engine SslCertificate client.

Thin CRUD wrapper over the global sslCertificates collection of one
project. Every call is synchronous, authenticated with a bearer token and
bounded by the configured timeout.

Error classification at this boundary is binary:
- ResourceNotFoundError: the certificate does not exist
- HttpResponseError: anything else the API rejected

Finer-grained detail (quota, CAA, rate limits) is reported by Compute
through certificate status fields, not through call errors. A conflict on
create surfaces as ResourceExistsError, a plain HttpResponseError subclass.

The API offers no conditional create, so exists() is the primitive callers
use to make create-if-absent and delete-if-present flows idempotent.
"""

from __future__ import annotations

import logging
from typing import Any
from urllib.parse import quote

from azure.core import PipelineClient
from azure.core.credentials import TokenCredential
from azure.core.exceptions import (
    HttpResponseError,
    ResourceExistsError,
    ResourceNotFoundError,
    map_error,
)
from azure.core.pipeline.policies import (
    BearerTokenCredentialPolicy,
    HeadersPolicy,
    HttpLoggingPolicy,
    UserAgentPolicy,
)
from azure.core.pipeline.transport import HttpTransport, RequestsTransport
from azure.core.rest import HttpRequest, HttpResponse

from .config import DEFAULT_CLOUD_TIMEOUT_SECONDS, DEFAULT_COMPUTE_ENDPOINT, Config
from .models import SSL_CERTIFICATE_TYPE_MANAGED, SslCertificate
from .security import COMPUTE_SCOPE

logger = logging.getLogger(__name__)

USER_AGENT = "mcrt-controller/0.1.0"

SSL_CERTIFICATES_PATH = "/projects/{project}/global/sslCertificates"

_ERROR_MAP: dict[int, type[HttpResponseError]] = {
    404: ResourceNotFoundError,
    409: ResourceExistsError,
}


class SslCertificateClient:
    """CRUD operations on SslCertificate resources of a single project.

    Names are used as given. Callers are responsible for passing names that
    carry the controller's certificate name prefix.
    """

    def __init__(
        self,
        credential: TokenCredential,
        project_id: str,
        *,
        timeout_seconds: int = DEFAULT_CLOUD_TIMEOUT_SECONDS,
        endpoint: str = DEFAULT_COMPUTE_ENDPOINT,
        transport: HttpTransport | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            credential: Token source for the bearer token policy.
            project_id: Project owning the certificates.
            timeout_seconds: Connect and read timeout of every call.
            endpoint: Compute API root URL.
            transport: HTTP transport override (tests).
        """
        self._project_id = project_id
        self._timeout_seconds = timeout_seconds
        self._client = PipelineClient(
            base_url=endpoint.rstrip("/"),
            policies=[
                HeadersPolicy({"Accept": "application/json"}),
                UserAgentPolicy(base_user_agent=USER_AGENT),
                BearerTokenCredentialPolicy(credential, COMPUTE_SCOPE),
                HttpLoggingPolicy(),
            ],
            transport=transport
            or RequestsTransport(connection_timeout=timeout_seconds, read_timeout=timeout_seconds),
        )

    @classmethod
    def from_config(
        cls, config: Config, credential: TokenCredential, project_id: str
    ) -> SslCertificateClient:
        return cls(
            credential,
            project_id,
            timeout_seconds=config.cloud_timeout_seconds,
            endpoint=config.compute_endpoint,
        )

    @property
    def project_id(self) -> str:
        return self._project_id

    def create(self, name: str, domains: list[str]) -> None:
        """Create a managed SslCertificate for the given domains.

        Compute provisions the certificate asynchronously; it is not
        necessarily active when this returns.

        Raises:
            ResourceExistsError: If a certificate with this name exists.
            HttpResponseError: If the API rejects the request (quota,
                invalid domain, ...).
        """
        body = {
            "name": name,
            "type": SSL_CERTIFICATE_TYPE_MANAGED,
            "managed": {"domains": list(domains)},
        }
        response = self._send("POST", self._collection_url(), json=body)
        logger.info(
            "SslCertificate creation requested",
            extra={
                "certificate": name,
                "domains": list(domains),
                "operation": _operation_name(response),
            },
        )

    def delete(self, name: str) -> None:
        """Delete an SslCertificate.

        Not idempotent: use exists() first when the certificate may be gone.

        Raises:
            ResourceNotFoundError: If the certificate does not exist.
            HttpResponseError: On any other API error.
        """
        response = self._send("DELETE", self._certificate_url(name))
        logger.info(
            "SslCertificate deletion requested",
            extra={"certificate": name, "operation": _operation_name(response)},
        )

    def get(self, name: str) -> SslCertificate:
        """Fetch the full state of an SslCertificate.

        Raises:
            ResourceNotFoundError: If the certificate does not exist.
            HttpResponseError: On any other API error.
        """
        response = self._send("GET", self._certificate_url(name))
        return SslCertificate.model_validate(response.json())

    def exists(self, name: str) -> bool:
        """Check whether an SslCertificate exists.

        Not-found is an answer, not an error. Every other error propagates.

        Raises:
            HttpResponseError: On any API error except not-found.
        """
        try:
            self.get(name)
        except ResourceNotFoundError:
            return False
        return True

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> SslCertificateClient:
        self._client.__enter__()
        return self

    def __exit__(self, *args: Any) -> None:
        self._client.__exit__(*args)

    def _collection_url(self) -> str:
        return self._client.format_url(
            SSL_CERTIFICATES_PATH, project=quote(self._project_id, safe="")
        )

    def _certificate_url(self, name: str) -> str:
        return f"{self._collection_url()}/{quote(name, safe='')}"

    def _send(self, method: str, url: str, json: dict[str, Any] | None = None) -> HttpResponse:
        request = HttpRequest(method, url, json=json)
        response = self._client.send_request(
            request,
            connection_timeout=self._timeout_seconds,
            read_timeout=self._timeout_seconds,
        )
        if response.status_code >= 400:
            map_error(status_code=response.status_code, response=response, error_map=_ERROR_MAP)
            raise HttpResponseError(response=response)
        return response


def _operation_name(response: HttpResponse) -> str | None:
    """Name of the Compute operation returned by a mutating call, if any."""
    try:
        body = response.json()
    except ValueError:
        return None
    return body.get("name") if isinstance(body, dict) else None
