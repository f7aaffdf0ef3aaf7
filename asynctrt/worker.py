"""
Background worker for blocking native calls.

Every blocking call of the asynchronous API runs on one dedicated thread,
one call at a time, in submission order. Native calls never run
concurrently from the asynchronous API, so the per-thread current device
of the worker is never contended.
"""

from __future__ import annotations

import asyncio
import atexit
import concurrent.futures
import logging
import threading
import time
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import TYPE_CHECKING, Any, TypeVar

from asynctrt.config import AsyncTrtConfig, get_config
from asynctrt.exceptions import QueueFullError, WorkerStateError

if TYPE_CHECKING:
    from asynctrt.device import DeviceContext, DeviceId

logger = logging.getLogger(__name__)

T = TypeVar("T")


class WorkerState(Enum):
    """State of a device worker."""

    CREATED = auto()
    RUNNING = auto()
    STOPPING = auto()
    STOPPED = auto()


@dataclass
class WorkerTelemetry:
    """
    Telemetry data for a device worker.

    Tracks task counts, queue latency and failures.
    """

    worker_name: str = ""
    tasks_submitted: int = 0
    tasks_completed: int = 0
    tasks_failed: int = 0
    total_latency_ns: int = 0
    max_latency_ns: int = 0
    min_latency_ns: int = 0
    last_error: str | None = None
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    @property
    def tasks_finished(self) -> int:
        """Get the number of tasks that completed or failed."""
        return self.tasks_completed + self.tasks_failed

    @property
    def avg_latency_ns(self) -> float:
        """Get average submit-to-finish latency in nanoseconds."""
        if self.tasks_finished == 0:
            return 0.0
        return self.total_latency_ns / self.tasks_finished

    @property
    def avg_latency_ms(self) -> float:
        """Get average submit-to-finish latency in milliseconds."""
        return self.avg_latency_ns / 1_000_000

    def record_submit(self) -> None:
        with self._lock:
            self.tasks_submitted += 1

    def record_completion(self, latency_ns: int) -> None:
        """
        Record a task that returned normally.

        Args:
            latency_ns: Time from submission to completion in nanoseconds.
        """
        with self._lock:
            self.tasks_completed += 1
            self._record_latency(latency_ns)

    def record_failure(self, error: str, latency_ns: int) -> None:
        """
        Record a task that raised.

        Args:
            error: Error message.
            latency_ns: Time from submission to failure in nanoseconds.
        """
        with self._lock:
            self.tasks_failed += 1
            self.last_error = error
            self._record_latency(latency_ns)

    def _record_latency(self, latency_ns: int) -> None:
        self.total_latency_ns += latency_ns
        if self.min_latency_ns == 0 or latency_ns < self.min_latency_ns:
            self.min_latency_ns = latency_ns
        if latency_ns > self.max_latency_ns:
            self.max_latency_ns = latency_ns

    def reset(self) -> None:
        """Reset all telemetry counters."""
        with self._lock:
            self.tasks_submitted = 0
            self.tasks_completed = 0
            self.tasks_failed = 0
            self.total_latency_ns = 0
            self.max_latency_ns = 0
            self.min_latency_ns = 0
            self.last_error = None

    def to_dict(self) -> dict[str, object]:
        """Convert to dictionary."""
        return {
            "worker_name": self.worker_name,
            "tasks_submitted": self.tasks_submitted,
            "tasks_completed": self.tasks_completed,
            "tasks_failed": self.tasks_failed,
            "avg_latency_ms": self.avg_latency_ms,
            "max_latency_ns": self.max_latency_ns,
            "min_latency_ns": self.min_latency_ns,
            "last_error": self.last_error,
        }


@dataclass
class _Task:
    fn: Callable[..., Any]
    args: tuple[Any, ...]
    future: concurrent.futures.Future[Any]
    submitted_ns: int = field(default_factory=time.perf_counter_ns)


class TaskQueue:
    """
    FIFO task queue using threading.Condition.

    After :meth:`shutdown`, :meth:`put` is refused but :meth:`get` keeps
    returning queued tasks until the queue is drained, then ``None``.

    Example:
        >>> queue = TaskQueue(maxsize=0)
        >>> queue.put(task)
        >>> queue.get() is task
        True
    """

    __slots__ = ("_maxsize", "_queue", "_lock", "_not_empty", "_not_full", "_shutdown")

    def __init__(self, maxsize: int = 0) -> None:
        """
        Initialize the task queue.

        Args:
            maxsize: Maximum queue size. 0 means unlimited.
        """
        self._maxsize = maxsize
        self._queue: deque[_Task] = deque()
        self._lock = threading.Lock()
        self._not_empty = threading.Condition(self._lock)
        self._not_full = threading.Condition(self._lock)
        self._shutdown = False

    @property
    def maxsize(self) -> int:
        return self._maxsize

    @property
    def qsize(self) -> int:
        """Get current queue size (thread-safe)."""
        with self._lock:
            return len(self._queue)

    @property
    def is_shutdown(self) -> bool:
        with self._lock:
            return self._shutdown

    def put(self, task: _Task, timeout: float | None = None) -> None:
        """
        Enqueue a task, blocking while the queue is full.

        Args:
            task: Task to enqueue.
            timeout: Maximum time to wait. None means wait forever.
                     0 means don't wait (raise immediately if full).

        Raises:
            QueueFullError: If the queue is full and the timeout expires.
            RuntimeError: If the queue is shut down.
        """
        with self._not_full:
            if self._shutdown:
                raise RuntimeError("Queue is shutdown")
            if self._maxsize > 0 and len(self._queue) >= self._maxsize:
                if timeout == 0:
                    raise QueueFullError("task_queue", self._maxsize)
                if not self._not_full.wait_for(
                    lambda: len(self._queue) < self._maxsize or self._shutdown,
                    timeout=timeout,
                ):
                    raise QueueFullError("task_queue", self._maxsize)
                if self._shutdown:
                    raise RuntimeError("Queue is shutdown")
            self._queue.append(task)
            self._not_empty.notify()

    def get(self) -> _Task | None:
        """
        Dequeue the oldest task, blocking while the queue is empty.

        Returns:
            The task, or ``None`` once the queue is shut down and drained.
        """
        with self._not_empty:
            self._not_empty.wait_for(lambda: len(self._queue) > 0 or self._shutdown)
            if not self._queue:
                return None
            task = self._queue.popleft()
            self._not_full.notify()
            return task

    def shutdown(self) -> None:
        """Refuse new tasks and wake all waiters."""
        with self._lock:
            self._shutdown = True
            self._not_empty.notify_all()
            self._not_full.notify_all()


class DeviceWorker:
    """
    A single dedicated thread that runs blocking calls in FIFO order.

    Example:
        >>> worker = DeviceWorker()
        >>> worker.start()
        >>> future = worker.submit(sum, [1, 2, 3])
        >>> future.result()
        6
        >>> worker.stop()
    """

    def __init__(self, config: AsyncTrtConfig | None = None) -> None:
        """
        Initialize the worker.

        Args:
            config: Worker settings (default: the global configuration).
        """
        self._config = config or get_config()
        self._name = self._config.worker_thread_name
        self._queue = TaskQueue(maxsize=self._config.worker_queue_size)
        self._state = WorkerState.CREATED
        self._state_lock = threading.Lock()
        self._thread: threading.Thread | None = None
        self._telemetry = WorkerTelemetry(worker_name=self._name)
        # Waits for queue space on behalf of run() when the queue is full.
        self._overflow: concurrent.futures.ThreadPoolExecutor | None = None
        self._overflow_pending = 0
        self._overflow_lock = threading.Lock()

    @property
    def name(self) -> str:
        return self._name

    @property
    def state(self) -> WorkerState:
        """Get current worker state."""
        with self._state_lock:
            return self._state

    @property
    def is_running(self) -> bool:
        """Check if the worker accepts tasks."""
        return self.state == WorkerState.RUNNING

    @property
    def telemetry(self) -> WorkerTelemetry:
        return self._telemetry

    @property
    def queue_depth(self) -> int:
        """Get the number of tasks waiting to run."""
        return self._queue.qsize

    def is_worker_thread(self) -> bool:
        """Check whether the calling thread is this worker's thread."""
        return self._thread is not None and threading.current_thread() is self._thread

    def start(self) -> None:
        """
        Start the worker thread.

        Raises:
            WorkerStateError: If the worker is not in CREATED state.
        """
        with self._state_lock:
            if self._state != WorkerState.CREATED:
                raise WorkerStateError(self._name, self._state.name, "start")
            self._thread = threading.Thread(
                target=self._run_loop,
                name=self._name,
                daemon=self._config.worker_daemon,
            )
            self._state = WorkerState.RUNNING
            self._thread.start()
        logger.debug(f"Worker '{self._name}' started")

    def stop(self, timeout: float | None = None) -> None:
        """
        Stop the worker after every queued task has run.

        Args:
            timeout: Maximum time to wait for the thread (default: from config).
        """
        with self._state_lock:
            if self._state in (WorkerState.CREATED, WorkerState.STOPPED):
                self._state = WorkerState.STOPPED
                return
            self._state = WorkerState.STOPPING

        self._queue.shutdown()
        with self._overflow_lock:
            overflow, self._overflow = self._overflow, None
        if overflow is not None:
            overflow.shutdown(wait=False)
        if self._thread is not None and not self.is_worker_thread():
            self._thread.join(timeout=timeout or self._config.worker_stop_timeout)
            if self._thread.is_alive():
                logger.warning(f"Worker '{self._name}' did not stop within the timeout")

        with self._state_lock:
            self._state = WorkerState.STOPPED
        logger.debug(f"Worker '{self._name}' stopped")

    def submit(self, fn: Callable[..., T], *args: Any) -> concurrent.futures.Future[T]:
        """
        Queue ``fn(*args)`` to run on the worker thread.

        Calls made from the worker thread itself run inline, since queueing
        them behind the running task would deadlock.

        Returns:
            A future resolved with the call's result or exception.

        Raises:
            WorkerStateError: If the worker is not running.
        """
        return self._submit(fn, args)

    def _submit(
        self, fn: Callable[..., T], args: tuple[Any, ...], timeout: float | None = None
    ) -> concurrent.futures.Future[T]:
        future: concurrent.futures.Future[T] = concurrent.futures.Future()
        if self.is_worker_thread():
            future.set_running_or_notify_cancel()
            try:
                future.set_result(fn(*args))
            except BaseException as e:
                future.set_exception(e)
            return future

        if not self.is_running:
            raise WorkerStateError(self._name, self.state.name, "submit task")
        try:
            self._queue.put(_Task(fn, args, future), timeout=timeout)
        except RuntimeError as e:
            raise WorkerStateError(self._name, self.state.name, "submit task") from e
        self._telemetry.record_submit()
        return future

    async def run(self, fn: Callable[..., T], *args: Any) -> T:
        """
        Run ``fn(*args)`` on the worker thread and await its result.

        Cancelling the awaiting coroutine does not cancel the call; once
        submitted, it runs to completion.

        When the task queue is full, the event loop is not blocked: the task
        is handed to an overflow thread that waits for space. Overflowing
        tasks keep their submission order, and later calls queue behind them.
        """
        with self._overflow_lock:
            overflowing = self._overflow_pending > 0
        future = None
        if not overflowing:
            try:
                future = self._submit(fn, args, timeout=0)
            except QueueFullError:
                logger.debug(f"Worker '{self._name}' queue is full; waiting for space")
        if future is None:
            future = await self._submit_overflow(fn, args)
        return await asyncio.shield(asyncio.wrap_future(future))

    async def _submit_overflow(
        self, fn: Callable[..., T], args: tuple[Any, ...]
    ) -> concurrent.futures.Future[T]:
        with self._overflow_lock:
            if self._overflow is None:
                if not self.is_running:
                    raise WorkerStateError(self._name, self.state.name, "submit task")
                self._overflow = concurrent.futures.ThreadPoolExecutor(
                    max_workers=1, thread_name_prefix=f"{self._name}-overflow"
                )
            self._overflow_pending += 1
            overflow = self._overflow

        def put() -> concurrent.futures.Future[T]:
            try:
                return self._submit(fn, args)
            finally:
                with self._overflow_lock:
                    self._overflow_pending -= 1

        try:
            pending = overflow.submit(put)
        except RuntimeError as e:
            with self._overflow_lock:
                self._overflow_pending -= 1
            raise WorkerStateError(self._name, self.state.name, "submit task") from e
        return await asyncio.shield(asyncio.wrap_future(pending))

    async def run_on_device(
        self, context: DeviceContext, device: DeviceId, fn: Callable[..., T], *args: Any
    ) -> T:
        """Like :meth:`run`, with ``device`` current on the worker for the call."""

        def call() -> T:
            with context.use(device):
                return fn(*args)

        return await self.run(call)

    def _run_loop(self) -> None:
        """Main worker loop (runs in the worker thread)."""
        while True:
            task = self._queue.get()
            if task is None:
                break
            if not task.future.set_running_or_notify_cancel():
                continue
            try:
                result = task.fn(*task.args)
            except BaseException as e:
                latency = time.perf_counter_ns() - task.submitted_ns
                self._telemetry.record_failure(f"{type(e).__name__}: {e}", latency)
                logger.debug(f"Worker task {getattr(task.fn, '__qualname__', task.fn)!r} failed: {e}")
                task.future.set_exception(e)
            else:
                latency = time.perf_counter_ns() - task.submitted_ns
                self._telemetry.record_completion(latency)
                task.future.set_result(result)

    def __enter__(self) -> DeviceWorker:
        """Context manager entry."""
        self.start()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> None:
        """Context manager exit."""
        self.stop()

    def __repr__(self) -> str:
        """String representation."""
        return (
            f"DeviceWorker(name={self._name!r}, state={self.state.name}, "
            f"queued={self.queue_depth})"
        )


_worker: DeviceWorker | None = None
_worker_lock = threading.Lock()
_atexit_registered = False


def get_worker() -> DeviceWorker:
    """
    Get the process-wide worker, starting it on first use.

    A new worker is started if the previous one was shut down.
    """
    global _worker, _atexit_registered
    with _worker_lock:
        if _worker is None or _worker.state in (WorkerState.STOPPING, WorkerState.STOPPED):
            _worker = DeviceWorker()
            _worker.start()
            if not _atexit_registered:
                atexit.register(shutdown_worker)
                _atexit_registered = True
        return _worker


def shutdown_worker() -> None:
    """Stop the process-wide worker after its queued tasks have run."""
    global _worker
    with _worker_lock:
        worker, _worker = _worker, None
    if worker is not None:
        worker.stop()
