"""In-memory mock of the Compute Engine sslCertificates API.

MockComputeState holds certificates per project. MockComputeAdapter is a
requests transport adapter serving the REST API from that state, so the
real SslCertificateClient runs unchanged over azure-core's RequestsTransport.
"""

from __future__ import annotations

import io
import itertools
import json
import re
from dataclasses import dataclass, field
from datetime import UTC, datetime
from http import HTTPStatus
from typing import Any
from urllib.parse import unquote, urlparse

import requests
from requests.adapters import HTTPAdapter
from urllib3.response import HTTPResponse

from mcrt_controller.config import DEFAULT_COMPUTE_ENDPOINT

_PATH_PATTERN = re.compile(
    r"/projects/(?P<project>[^/]+)/global/sslCertificates(?:/(?P<name>[^/]+))?$"
)

_REASONS = {
    400: "invalid",
    403: "forbidden",
    404: "notFound",
    409: "alreadyExists",
    429: "rateLimitExceeded",
    500: "backendError",
    503: "backendError",
}


@dataclass
class RecordedRequest:
    """A request served by the mock."""

    method: str
    project: str
    name: str | None
    authorization: str | None
    body: dict[str, Any] | None = None


@dataclass
class InjectedError:
    method: str
    status: int
    remaining: int


@dataclass
class MockComputeState:
    """Certificates and request history of the mock API."""

    certificates: dict[tuple[str, str], dict[str, Any]] = field(default_factory=dict)
    requests: list[RecordedRequest] = field(default_factory=list)
    errors: list[InjectedError] = field(default_factory=list)
    # Names whose next create answers 409, simulating a pending create
    pending_creates: set[str] = field(default_factory=set)
    _ids: Any = field(default_factory=lambda: itertools.count(1000))

    def put_certificate(
        self,
        project: str,
        name: str,
        domains: list[str],
        status: str = "PROVISIONING",
        domain_status: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        certificate = {
            "kind": "compute#sslCertificate",
            "id": str(next(self._ids)),
            "name": name,
            "type": "MANAGED",
            "creationTimestamp": datetime.now(UTC).isoformat(),
            "selfLink": (
                f"{DEFAULT_COMPUTE_ENDPOINT}/projects/{project}/global/sslCertificates/{name}"
            ),
            "managed": {
                "domains": list(domains),
                "status": status,
                "domainStatus": (
                    dict(domain_status)
                    if domain_status is not None
                    else {domain: "PROVISIONING" for domain in domains}
                ),
            },
        }
        self.certificates[(project, name)] = certificate
        return certificate

    def get_certificate(self, project: str, name: str) -> dict[str, Any] | None:
        return self.certificates.get((project, name))

    def set_status(
        self,
        project: str,
        name: str,
        status: str,
        domain_status: dict[str, str] | None = None,
    ) -> None:
        managed = self.certificates[(project, name)]["managed"]
        managed["status"] = status
        if domain_status is not None:
            managed["domainStatus"] = dict(domain_status)

    def names(self, project: str) -> list[str]:
        return [name for (p, name) in self.certificates if p == project]

    def inject_error(self, method: str, status: int, times: int = 1) -> None:
        """Make the next `times` requests with `method` fail with `status`."""
        self.errors.append(InjectedError(method=method, status=status, remaining=times))

    def count(self, method: str) -> int:
        return sum(1 for request in self.requests if request.method == method)

    def take_error(self, method: str) -> int | None:
        for error in self.errors:
            if error.method == method and error.remaining > 0:
                error.remaining -= 1
                return error.status
        return None


class MockComputeAdapter(HTTPAdapter):
    """requests adapter answering sslCertificates calls from MockComputeState."""

    def __init__(self, state: MockComputeState) -> None:
        super().__init__()
        self.state = state

    def send(self, request: requests.PreparedRequest, **kwargs: Any) -> requests.Response:
        path = urlparse(request.url).path
        match = _PATH_PATTERN.search(path)
        if match is None:
            return self._respond(request, 404, _error_body(404, f"Unknown path {path}"))

        project = unquote(match.group("project"))
        name = unquote(match.group("name")) if match.group("name") else None
        body = json.loads(request.body) if request.body else None
        method = request.method or "GET"

        self.state.requests.append(
            RecordedRequest(
                method=method,
                project=project,
                name=name,
                authorization=request.headers.get("Authorization"),
                body=body,
            )
        )

        injected = self.state.take_error(method)
        if injected is not None:
            return self._respond(request, injected, _error_body(injected, "Injected error"))

        if method == "POST" and name is None:
            return self._insert(request, project, body or {})
        if method == "GET" and name is not None:
            return self._get(request, project, name)
        if method == "DELETE" and name is not None:
            return self._delete(request, project, name)

        return self._respond(request, 400, _error_body(400, f"Unsupported {method} {path}"))

    def _insert(
        self, request: requests.PreparedRequest, project: str, body: dict[str, Any]
    ) -> requests.Response:
        name = body.get("name", "")
        if name in self.state.pending_creates:
            self.state.pending_creates.discard(name)
            self.state.put_certificate(project, name, body["managed"]["domains"])
            return self._respond(request, 409, _already_exists(project, name))

        if self.state.get_certificate(project, name) is not None:
            return self._respond(request, 409, _already_exists(project, name))

        domains = body.get("managed", {}).get("domains", [])
        if not domains:
            return self._respond(request, 400, _error_body(400, "Invalid value for domains"))

        self.state.put_certificate(project, name, domains)
        return self._respond(request, 200, _operation(project, name, "insert"))

    def _get(
        self, request: requests.PreparedRequest, project: str, name: str
    ) -> requests.Response:
        certificate = self.state.get_certificate(project, name)
        if certificate is None:
            return self._respond(request, 404, _not_found(project, name))
        return self._respond(request, 200, certificate)

    def _delete(
        self, request: requests.PreparedRequest, project: str, name: str
    ) -> requests.Response:
        if self.state.certificates.pop((project, name), None) is None:
            return self._respond(request, 404, _not_found(project, name))
        return self._respond(request, 200, _operation(project, name, "delete"))

    def _respond(
        self, request: requests.PreparedRequest, status: int, body: dict[str, Any]
    ) -> requests.Response:
        content = json.dumps(body).encode("utf-8")
        raw = HTTPResponse(
            body=io.BytesIO(content),
            headers={
                "Content-Type": "application/json; charset=UTF-8",
                "Content-Length": str(len(content)),
            },
            status=status,
            reason=HTTPStatus(status).phrase,
            preload_content=False,
        )
        return self.build_response(request, raw)


def _operation(project: str, name: str, operation_type: str) -> dict[str, Any]:
    return {
        "kind": "compute#operation",
        "name": f"operation-{operation_type}-{name}",
        "operationType": operation_type,
        "status": "RUNNING",
        "targetLink": (
            f"{DEFAULT_COMPUTE_ENDPOINT}/projects/{project}/global/sslCertificates/{name}"
        ),
    }


def _error_body(status: int, message: str) -> dict[str, Any]:
    reason = _REASONS.get(status, "error")
    return {
        "error": {
            "code": status,
            "message": message,
            "errors": [{"message": message, "domain": "global", "reason": reason}],
        }
    }


def _not_found(project: str, name: str) -> dict[str, Any]:
    return _error_body(
        404, f"The resource 'projects/{project}/global/sslCertificates/{name}' was not found"
    )


def _already_exists(project: str, name: str) -> dict[str, Any]:
    return _error_body(
        409, f"The resource 'projects/{project}/global/sslCertificates/{name}' already exists"
    )


def create_mock_session(state: MockComputeState) -> requests.Session:
    session = requests.Session()
    session.mount("https://", MockComputeAdapter(state))
    return session
