"""Compute Engine mock for tests.

Provides an in-memory implementation of the sslCertificates REST API that
the real SslCertificateClient talks to through azure-core's
RequestsTransport, plus a mock token credential and an in-memory
ManagedCertificate store.

Usage:
    from gce_mock import MockComputeState, create_mock_ssl_client

    state = MockComputeState()
    client = create_mock_ssl_client(state)
    client.create("mcrt-1", ["example.com"])
    assert state.get_certificate(TEST_PROJECT, "mcrt-1") is not None
"""

from __future__ import annotations

from azure.core.pipeline.transport import RequestsTransport

from mcrt_controller.ssl import SslCertificateClient

from .compute import MockComputeAdapter, MockComputeState, create_mock_session
from .credential import MockCredentialError, MockTokenCredential, create_mock_credential
from .store import InMemoryManagedCertificateStore, MockStoreError, make_managed_certificate

TEST_PROJECT = "test-project-123"


def create_mock_ssl_client(
    state: MockComputeState,
    credential: MockTokenCredential | None = None,
    project_id: str = TEST_PROJECT,
) -> SslCertificateClient:
    """SslCertificateClient wired to the mock API."""
    transport = RequestsTransport(session=create_mock_session(state))
    return SslCertificateClient(
        credential or create_mock_credential(),
        project_id,
        timeout_seconds=5,
        transport=transport,
    )


__all__ = [
    "TEST_PROJECT",
    "InMemoryManagedCertificateStore",
    "MockComputeAdapter",
    "MockComputeState",
    "MockCredentialError",
    "MockStoreError",
    "MockTokenCredential",
    "create_mock_credential",
    "create_mock_session",
    "create_mock_ssl_client",
    "make_managed_certificate",
]
