"""Main entry point for the ManagedCertificate controller.

Wires configuration, credentials, the Compute client, the Kubernetes store
and the controller together, then runs until SIGTERM or SIGINT.
"""

from __future__ import annotations

import asyncio
import json
import logging
import signal
import sys
from datetime import UTC, datetime

from google.auth.exceptions import DefaultCredentialsError
from kubernetes.config.config_exception import ConfigException

from .config import Config, ConfigurationError
from .controller import Controller
from .security import get_compute_credential
from .ssl import SslCertificateClient
from .store import KubernetesManagedCertificateStore, load_kube_config
from .sync import CertificateSynchronizer

# Attributes every LogRecord carries; anything else came in through `extra`
_RESERVED_LOG_RECORD_ATTRS = frozenset(
    (
        "name",
        "msg",
        "args",
        "created",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "module",
        "msecs",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "stack_info",
        "exc_info",
        "exc_text",
        "thread",
        "threadName",
        "taskName",
        "message",
    )
)


class JsonFormatter(logging.Formatter):
    """Format logs as JSON for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(UTC).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "message": record.getMessage(),
            "logger": record.name,
        }

        for key, value in record.__dict__.items():
            if key not in _RESERVED_LOG_RECORD_ATTRS:
                log_data[key] = value

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def setup_logging(json_logging: bool = True, level: int = logging.INFO) -> None:
    """Configure root logging, JSON on stdout unless disabled."""
    handler = logging.StreamHandler(sys.stdout)
    if json_logging:
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
        )

    root_logger = logging.getLogger()
    root_logger.addHandler(handler)
    root_logger.setLevel(level)

    # Reduce noise from client libraries
    for noisy in ("azure", "urllib3", "kubernetes", "google"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def build_controller(config: Config) -> tuple[Controller, SslCertificateClient]:
    """Create the controller and the clients it depends on.

    Raises:
        ConfigurationError: If no project id is configured or discoverable.
        DefaultCredentialsError: If no Google credentials are available.
        ConfigException: If no Kubernetes configuration is available.
    """
    credential, discovered_project_id = get_compute_credential()
    project_id = config.project_id or discovered_project_id
    if not project_id:
        raise ConfigurationError(
            "GCP_PROJECT_ID is required when the credentials do not name a project"
        )

    load_kube_config()
    store = KubernetesManagedCertificateStore()

    ssl_client = SslCertificateClient.from_config(config, credential, project_id)
    synchronizer = CertificateSynchronizer(store, ssl_client, config.certificate_name_prefix)
    controller = Controller.from_config(config, synchronizer, store)
    return controller, ssl_client


async def main() -> int:
    """Run the controller.

    Returns:
        Exit code (0 for success, non-zero for failure).
    """
    try:
        config = Config.from_env()
    except ConfigurationError as e:
        setup_logging()
        logging.getLogger(__name__).error("Configuration error", extra={"error": str(e)})
        return 1

    setup_logging(config.json_logging, config.log_level_number)
    logger = logging.getLogger(__name__)

    logger.info(
        "Starting ManagedCertificate controller",
        extra={
            "project_id": config.project_id,
            "certificate_name_prefix": config.certificate_name_prefix,
            "workers": config.workers,
            "resync_interval_seconds": config.resync_interval_seconds,
        },
    )

    try:
        controller, ssl_client = build_controller(config)
    except ConfigurationError as e:
        logger.error("Configuration error", extra={"error": str(e)})
        return 1
    except DefaultCredentialsError as e:
        logger.error("No Google credentials available", extra={"error": str(e)})
        return 1
    except ConfigException as e:
        logger.error("No Kubernetes configuration available", extra={"error": str(e)})
        return 1

    loop = asyncio.get_running_loop()

    def signal_handler(sig: signal.Signals) -> None:
        logger.info("Received signal", extra={"signal": sig.name})
        controller.shutdown()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, lambda s=sig: signal_handler(s))

    try:
        with ssl_client:
            await controller.run(config.workers, config.resync_interval_seconds)
    except Exception as e:
        logger.exception("Unhandled exception", extra={"error": str(e)})
        return 1

    logger.info("Controller stopped")
    return 0


def run() -> None:
    """Entry point for the controller process."""
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    run()
