"""
Delivery Reliability Layer.

Hands samples to the Breadcrumb Store with bounded retry. Each tracking
session owns one DeliveryChannel: a bounded FIFO queue drained by a single
worker task, so samples reach storage in sequence order and a slow store
never blocks the acquisition loop.

Retry policy: a timeout or lost connection is retried once after a short
delay, then the sample is dropped. A rejected sample is dropped at once.
"""

import asyncio
import logging
from typing import Optional

from sqlalchemy.exc import DBAPIError, InterfaceError, OperationalError

from trip_telemetry.app.core.exceptions import DeliveryPermanentFailure, DeliveryTimeout
from trip_telemetry.app.schemas.telemetry import PositionSample
from trip_telemetry.app.services.breadcrumb_store import BreadcrumbStore

logger = logging.getLogger(__name__)


def is_transient_store_error(exc: BaseException) -> bool:
    """Connection-level failures are worth one more try; everything else is final."""
    if isinstance(exc, (OperationalError, InterfaceError, ConnectionError, OSError)):
        return True
    if isinstance(exc, DBAPIError) and exc.connection_invalidated:
        return True
    return False


class DeliveryChannel:

    def __init__(
        self,
        trip_id: str,
        breadcrumbs: BreadcrumbStore,
        timeout_seconds: float = 5.0,
        retry_delay_seconds: float = 1.0,
        queue_size: int = 256,
    ):
        self.trip_id = trip_id
        self._breadcrumbs = breadcrumbs
        self.timeout_seconds = timeout_seconds
        self.retry_delay_seconds = retry_delay_seconds
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=queue_size)
        self._closing = asyncio.Event()
        self._worker: Optional[asyncio.Task] = None
        self.closed = False

        self.delivered = 0
        self.retried = 0
        self.dropped = 0

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def start(self) -> None:
        if self._worker is None:
            self._worker = asyncio.create_task(self._drain(), name=f"delivery:{self.trip_id}")

    def submit(self, sample: PositionSample) -> bool:
        """
        Queue a sample for persistence without waiting.

        Returns:
            False if the channel is closed or the queue is full (sample dropped)
        """
        if self.closed:
            logger.debug("Channel for trip %s closed, refusing sample %s", self.trip_id, sample.sequence_number)
            return False
        try:
            self._queue.put_nowait(sample)
        except asyncio.QueueFull:
            self.dropped += 1
            logger.warning(
                "Delivery queue full for trip %s, dropping sample %s",
                self.trip_id, sample.sequence_number,
                extra={"trip_id": self.trip_id, "queue_size": self._queue.maxsize}
            )
            return False
        return True

    async def _drain(self) -> None:
        while True:
            sample = await self._queue.get()
            try:
                await self.deliver(sample)
            finally:
                self._queue.task_done()

    async def deliver(self, sample: PositionSample) -> bool:
        """Persist one sample with at most one retry. Never raises."""
        try:
            await self._attempt(sample)
        except DeliveryPermanentFailure as exc:
            self._drop(sample, exc)
            return False
        except DeliveryTimeout as exc:
            self.retried += 1
            logger.info("Retrying sample %s of trip %s: %s", sample.sequence_number, self.trip_id, exc.message)
            await self._retry_delay()
            try:
                await self._attempt(sample)
            except (DeliveryTimeout, DeliveryPermanentFailure) as retry_exc:
                self._drop(sample, retry_exc)
                return False
        self.delivered += 1
        return True

    async def _attempt(self, sample: PositionSample) -> None:
        try:
            await asyncio.wait_for(self._breadcrumbs.append(sample), timeout=self.timeout_seconds)
        except asyncio.TimeoutError:
            raise DeliveryTimeout(self.trip_id, sample.sequence_number, f"timed out after {self.timeout_seconds}s")
        except Exception as exc:
            if is_transient_store_error(exc):
                raise DeliveryTimeout(self.trip_id, sample.sequence_number, str(exc)) from exc
            raise DeliveryPermanentFailure(self.trip_id, sample.sequence_number, str(exc)) from exc

    async def _retry_delay(self) -> None:
        # Closing the channel cancels the wait so the retry runs immediately
        try:
            await asyncio.wait_for(self._closing.wait(), timeout=self.retry_delay_seconds)
        except asyncio.TimeoutError:
            pass

    def _drop(self, sample: PositionSample, exc) -> None:
        self.dropped += 1
        logger.warning(
            "Dropped sample %s of trip %s: %s",
            sample.sequence_number, self.trip_id, exc.message,
            extra={"trip_id": self.trip_id, "error_code": exc.error_code}
        )

    async def close(self, flush_timeout: float = 10.0) -> None:
        """
        Refuse new samples, flush what is queued, stop the worker.

        Samples still queued after flush_timeout are counted as dropped.
        """
        self.closed = True
        self._closing.set()
        if self._worker is None:
            return
        try:
            await asyncio.wait_for(self._queue.join(), timeout=flush_timeout)
        except asyncio.TimeoutError:
            stranded = self._queue.qsize()
            self.dropped += stranded
            logger.warning("Flush timed out for trip %s, %s sample(s) not delivered", self.trip_id, stranded)
        finally:
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
            self._worker = None
