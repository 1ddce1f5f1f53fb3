"""Worker pool that runs scan tasks, with metrics and a request rate limiter."""

from __future__ import annotations

import logging
import math
import queue
import threading
import time
from dataclasses import dataclass, replace
from typing import Any, Callable, Protocol, Union

from scanhub.models import ScanRequest, ScanResponse, ScanStatus

logger = logging.getLogger(__name__)

_POLL_INTERVAL = 0.1


class _ScanBackend(Protocol):
    def update_scan_status(
        self, scan_id: str, status: Union[ScanStatus, str], error: BaseException | None = None
    ) -> None: ...

    def update_scan_result(self, scan_id: str, result: Any) -> None: ...

    def run_docker_scan(self, scan_id: str, request: ScanRequest) -> Any: ...


@dataclass
class ScanTask:
    """A queued scan together with the server that carries it out."""

    id: str
    request: ScanRequest
    server: _ScanBackend
    response: ScanResponse

    def execute(self) -> None:
        """Run the scan and record its outcome on the server."""
        self.server.update_scan_status(self.id, ScanStatus.RUNNING, None)
        try:
            result = self.server.run_docker_scan(self.id, self.request)
        except Exception as exc:  # any failure marks the scan as failed
            self.server.update_scan_status(self.id, ScanStatus.FAILED, exc)
        else:
            self.server.update_scan_status(self.id, ScanStatus.COMPLETED, None)
            self.server.update_scan_result(self.id, result)


@dataclass
class QueueMetrics:
    """Counters describing the work done by a task queue."""

    running_tasks: int = 0
    completed_tasks: int = 0
    failed_tasks: int = 0
    queued_tasks: int = 0


class TaskQueue:
    """Fixed pool of worker threads with a cap on concurrently running tasks."""

    def __init__(
        self,
        worker_num: int,
        max_running: int,
        queue_size: int,
        metrics_interval: float = 30.0,
    ) -> None:
        self._tasks: queue.Queue[ScanTask] = queue.Queue(maxsize=max(queue_size, 0))
        self._semaphore = threading.Semaphore(max_running)
        self._stop = threading.Event()
        self._metrics = QueueMetrics()
        self._metrics_lock = threading.Lock()
        self._metrics_interval = metrics_interval
        self._workers = [
            threading.Thread(target=self._worker, args=(index,), name=f"scan-worker-{index}", daemon=True)
            for index in range(worker_num)
        ]
        for worker in self._workers:
            worker.start()
        self._reporter = threading.Thread(target=self._report_metrics, name="queue-metrics", daemon=True)
        self._reporter.start()

    def _count(self, name: str, delta: int) -> None:
        with self._metrics_lock:
            setattr(self._metrics, name, getattr(self._metrics, name) + delta)

    def _worker(self, index: int) -> None:
        logger.info("worker #%d started", index)
        while not self._stop.is_set():
            try:
                task = self._tasks.get(timeout=_POLL_INTERVAL)
            except queue.Empty:
                continue
            with self._semaphore:
                logger.info("worker #%d running task %s", index, task.id)
                self._count("running_tasks", 1)
                start = time.monotonic()
                try:
                    task.execute()
                except Exception:
                    logger.exception("worker #%d: task %s raised", index, task.id)
                elapsed = time.monotonic() - start
                status = task.response.status
                if status == ScanStatus.COMPLETED:
                    self._count("completed_tasks", 1)
                elif status == ScanStatus.FAILED:
                    self._count("failed_tasks", 1)
                self._count("running_tasks", -1)
            logger.info("worker #%d finished task %s in %.3fs", index, task.id, elapsed)
        logger.info("worker #%d shutting down", index)

    def _report_metrics(self) -> None:
        while not self._stop.wait(self._metrics_interval):
            metrics = self.get_metrics()
            logger.info(
                "queue: running=%d completed=%d failed=%d queued=%d",
                metrics.running_tasks,
                metrics.completed_tasks,
                metrics.failed_tasks,
                metrics.queued_tasks,
            )

    def add_task(self, task: ScanTask) -> None:
        """Put a task on the queue, blocking while the queue is full."""
        if self._stop.is_set():
            raise RuntimeError("task queue is shut down")
        self._count("queued_tasks", 1)
        self._tasks.put(task)

    def shutdown(self) -> None:
        """Stop the workers; tasks still waiting in the queue are dropped."""
        if self._stop.is_set():
            return
        self._stop.set()
        for worker in self._workers:
            worker.join()
        self._reporter.join()
        logger.info("task queue shut down")

    def get_metrics(self) -> QueueMetrics:
        """Return a snapshot of the queue counters."""
        with self._metrics_lock:
            return replace(self._metrics)


class RateLimiter:
    """Token bucket admitting rps requests per second with bursts of up to burst."""

    def __init__(self, rps: float, burst: int, clock: Callable[[], float] = time.monotonic) -> None:
        self._rps = float(rps)
        self._burst = int(burst)
        self._clock = clock
        self._tokens = float(self._burst)
        self._last = clock()
        self._lock = threading.Lock()

    @property
    def _unlimited(self) -> bool:
        return math.isinf(self._rps) and self._rps > 0

    def _advance(self) -> None:
        now = self._clock()
        elapsed = now - self._last
        if elapsed > 0:
            self._last = now
            if self._rps > 0:
                self._tokens = min(float(self._burst), self._tokens + elapsed * self._rps)

    def allow(self) -> bool:
        """Take a token if one is available and report whether it was."""
        if self._unlimited:
            return True
        with self._lock:
            self._advance()
            if self._tokens >= 1:
                self._tokens -= 1
                return True
            return False

    def wait(self) -> None:
        """Block until a token is available, then take it."""
        if self._unlimited:
            return
        with self._lock:
            self._advance()
            if self._burst < 1:
                raise ValueError("rate limiter with burst 0 can never admit a request")
            if self._tokens < 1 and self._rps <= 0:
                raise ValueError("rate limiter with no refill can never admit another request")
            self._tokens -= 1
            delay = -self._tokens / self._rps if self._tokens < 0 else 0.0
        if delay > 0:
            time.sleep(delay)