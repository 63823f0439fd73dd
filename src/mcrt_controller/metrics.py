"""Metrics boundary of the controller.

Recorders are fire-and-forget: they must neither block nor fail the caller.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Protocol

logger = logging.getLogger(__name__)


class MetricsRecorder(Protocol):
    def observe_statuses(self, statuses: Mapping[str, int]) -> None:
        """Record how many ManagedCertificates are in each certificate status."""
        ...


class LoggingMetricsRecorder:
    """Emits status histograms as structured log records."""

    def observe_statuses(self, statuses: Mapping[str, int]) -> None:
        logger.info(
            "ManagedCertificate statuses",
            extra={
                # The empty status is reported under an explicit label
                "statuses": {status or "None": count for status, count in statuses.items()},
                "total": sum(statuses.values()),
            },
        )
