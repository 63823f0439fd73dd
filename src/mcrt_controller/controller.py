"""ManagedCertificate controller: work queue, worker loops and full resync.

Resource events enqueue a key. A fixed pool of worker tasks takes one key
at a time and runs the reconciler in a thread, since reconciliation and
cloud calls are synchronous. Success clears the key's backoff; failure
queues the key again with a growing delay. Nothing that happens while
processing a key stops the controller.

A periodic full resync lists every ManagedCertificate, reports the status
histogram and then enqueues every key. The histogram therefore shows the
state before the resync heals any drift the event stream missed.
"""

from __future__ import annotations

import asyncio
import logging
from collections import Counter
from concurrent.futures import ThreadPoolExecutor
from typing import Any

from .config import DEFAULT_RESYNC_INTERVAL_SECONDS, DEFAULT_WORKERS, Config
from .metrics import LoggingMetricsRecorder, MetricsRecorder
from .models import InvalidKeyError, ManagedCertificate, ResourceId
from .queue import RateLimitingQueue, rate_limiter_from_config
from .store import ManagedCertificateLister
from .sync import Reconciler

logger = logging.getLogger(__name__)


class Controller:
    """Drives reconciliation of ManagedCertificates.

    The controller owns its queue and worker tasks. It is bound to the event
    loop it runs on; enqueue methods must be called from that loop.
    """

    def __init__(
        self,
        reconciler: Reconciler,
        lister: ManagedCertificateLister,
        *,
        queue: RateLimitingQueue | None = None,
        metrics: MetricsRecorder | None = None,
    ) -> None:
        self._reconciler = reconciler
        self._lister = lister
        self._queue = queue or RateLimitingQueue()
        self._metrics: MetricsRecorder = metrics or LoggingMetricsRecorder()
        self._shutdown_event = asyncio.Event()
        # Owned by run(); the loop's default executor is used outside it
        self._executor: ThreadPoolExecutor | None = None

    @classmethod
    def from_config(
        cls,
        config: Config,
        reconciler: Reconciler,
        lister: ManagedCertificateLister,
        metrics: MetricsRecorder | None = None,
    ) -> Controller:
        return cls(
            reconciler,
            lister,
            queue=RateLimitingQueue(rate_limiter_from_config(config)),
            metrics=metrics,
        )

    @property
    def queue(self) -> RateLimitingQueue:
        return self._queue

    def enqueue(self, resource: ManagedCertificate | ResourceId | str) -> None:
        """Queue a ManagedCertificate for reconciliation, rate limited."""
        key = _key_of(resource)
        logger.debug("Enqueuing ManagedCertificate", extra={"key": key})
        self._queue.add_rate_limited(key)

    async def enqueue_all(self) -> None:
        """Queue every ManagedCertificate in the cluster.

        Lister failures are reported to the error sink; the next resync
        tries again.
        """
        loop = asyncio.get_running_loop()
        try:
            managed_certificates = await loop.run_in_executor(self._executor, self._lister.list)
        except Exception as e:
            self.handle_error(e)
            return

        if not managed_certificates:
            logger.info("No ManagedCertificates found in cluster")
            return

        statuses = Counter(
            mcrt.status.certificate_status.value for mcrt in managed_certificates
        )
        self._observe_statuses(dict(statuses))

        for managed_certificate in managed_certificates:
            self.enqueue(managed_certificate)

        logger.info(
            "Enqueued all ManagedCertificates",
            extra={"count": len(managed_certificates)},
        )

    async def process_next(self) -> bool:
        """Process one key from the queue.

        Returns:
            False once the queue is shutting down, True otherwise.
        """
        key, shutting_down = await self._queue.get()
        if shutting_down or key is None:
            return False

        try:
            await self._handle(key)
        finally:
            self._queue.done(key)

        return True

    async def run_worker(self) -> None:
        """Process keys until the queue shuts down."""
        while await self.process_next():
            pass

    async def run(
        self,
        workers: int = DEFAULT_WORKERS,
        resync_interval_seconds: float = DEFAULT_RESYNC_INTERVAL_SECONDS,
    ) -> None:
        """Run worker loops and periodic resyncs until shutdown() is called.

        Reconciliations run on a thread pool sized to the number of workers,
        so every worker can reconcile at the same time. Keys being processed
        when shutdown is requested run to completion.
        """
        logger.info(
            "Starting controller",
            extra={"workers": workers, "resync_interval_seconds": resync_interval_seconds},
        )

        # One thread per worker plus one for the resync listing
        self._executor = ThreadPoolExecutor(
            max_workers=workers + 1, thread_name_prefix="mcrt-reconcile"
        )
        try:
            worker_tasks = [
                asyncio.create_task(self.run_worker(), name=f"worker-{i}")
                for i in range(workers)
            ]
            resync_task = asyncio.create_task(
                self._resync_loop(resync_interval_seconds), name="resync"
            )

            await self._shutdown_event.wait()

            self._queue.shutdown()
            resync_task.cancel()
            await asyncio.gather(*worker_tasks)
            try:
                await resync_task
            except asyncio.CancelledError:
                pass
        finally:
            # Workers are done; only a cancelled resync listing may still run
            self._executor.shutdown(wait=False, cancel_futures=True)
            self._executor = None

        logger.info("Controller shutdown complete")

    def shutdown(self) -> None:
        """Signal the controller to stop."""
        logger.info("Shutdown requested")
        self._shutdown_event.set()

    def handle_error(self, error: BaseException, key: str | None = None) -> None:
        """Non-fatal error sink: report and carry on."""
        logger.error(
            "Error processing ManagedCertificate",
            extra={
                "key": key,
                "error": str(error),
                "error_type": type(error).__name__,
            },
        )

    async def _handle(self, key: str) -> None:
        try:
            resource_id = ResourceId.from_key(key)
        except InvalidKeyError as e:
            # Retrying can never make the key parsable
            self._queue.forget(key)
            self.handle_error(e, key)
            return

        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(self._executor, self._reconciler.reconcile, resource_id)
        except Exception as e:
            self._queue.add_rate_limited(key)
            self.handle_error(e, key)
            logger.info(
                "ManagedCertificate requeued",
                extra={"key": key, "requeues": self._queue.num_requeues(key)},
            )
            return

        self._queue.forget(key)

    async def _resync_loop(self, interval_seconds: float) -> None:
        while not self._shutdown_event.is_set():
            await self.enqueue_all()
            try:
                await asyncio.wait_for(self._shutdown_event.wait(), timeout=interval_seconds)
            except TimeoutError:
                # Normal timeout, resync again
                pass

    def _observe_statuses(self, statuses: dict[str, int]) -> None:
        try:
            self._metrics.observe_statuses(statuses)
        except Exception as e:
            logger.warning("Failed to record status metrics", extra={"error": str(e)})


def _key_of(resource: Any) -> str:
    if isinstance(resource, ManagedCertificate):
        return resource.id.key
    if isinstance(resource, ResourceId):
        return resource.key
    return str(resource)
