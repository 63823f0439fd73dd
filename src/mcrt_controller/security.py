"""Credentials for Compute API calls.

The controller never stores credentials. Access tokens come from Google
Application Default Credentials:
- GOOGLE_APPLICATION_CREDENTIALS when set (workload identity federation,
  local development)
- the metadata server otherwise (GKE node or workload identity)

Tokens are exposed through the azure-core TokenCredential protocol so the
HTTP pipeline's bearer token policy can refresh and attach them.
"""

from __future__ import annotations

import logging
import threading
import time
from datetime import UTC
from typing import Any

import google.auth
from azure.core.credentials import AccessToken
from google.auth.credentials import Credentials
from google.auth.transport.requests import Request

logger = logging.getLogger(__name__)

COMPUTE_SCOPE = "https://www.googleapis.com/auth/compute"

# Used when the credentials do not report an expiry
DEFAULT_TOKEN_LIFETIME_SECONDS = 3600


class GoogleTokenCredential:
    """azure-core TokenCredential backed by google-auth credentials.

    Thread-safe: worker threads share one instance.
    """

    def __init__(self, credentials: Credentials) -> None:
        self._credentials = credentials
        self._lock = threading.Lock()

    def get_token(
        self,
        *scopes: str,
        claims: str | None = None,
        tenant_id: str | None = None,
        **kwargs: Any,
    ) -> AccessToken:
        """Return a valid access token, refreshing it when expired.

        Scopes are fixed when the credentials are created; the requested
        scopes are accepted for protocol compatibility only.
        """
        with self._lock:
            if not self._credentials.valid:
                logger.debug("Refreshing access token", extra={"scopes": list(scopes)})
                self._credentials.refresh(Request())

            token = self._credentials.token
            expiry = self._credentials.expiry

        if expiry is None:
            expires_on = int(time.time()) + DEFAULT_TOKEN_LIFETIME_SECONDS
        else:
            # google-auth reports naive UTC datetimes
            expires_on = int(expiry.replace(tzinfo=UTC).timestamp())

        return AccessToken(token, expires_on)

    def close(self) -> None:
        pass

    def __enter__(self) -> GoogleTokenCredential:
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()


def get_compute_credential() -> tuple[GoogleTokenCredential, str | None]:
    """Resolve Application Default Credentials with the compute scope.

    Returns:
        The credential and the project id the credentials belong to, if known.

    Raises:
        google.auth.exceptions.DefaultCredentialsError: If no credentials
            can be found.
    """
    credentials, project_id = google.auth.default(scopes=[COMPUTE_SCOPE])

    logger.info(
        "Using application default credentials",
        extra={
            "credential_type": type(credentials).__name__,
            "project_id": project_id,
        },
    )
    return GoogleTokenCredential(credentials), project_id
