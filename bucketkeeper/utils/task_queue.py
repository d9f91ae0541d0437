"""
Bounded concurrent task queue.

Runs a worker function over a batch of tasks with a fixed number of worker
threads. Every task's outcome is recorded on its own, so one failing task
never stops its siblings. The queue drains once every submitted task has
finished, including tasks pushed by a running worker.
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, List, Optional


logger = logging.getLogger(__name__)


@dataclass
class TaskOutcome:
    task: Any
    result: Any = None
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class QueueResult:
    succeeded: List[TaskOutcome] = field(default_factory=list)
    failed: List[TaskOutcome] = field(default_factory=list)
    timed_out: bool = False

    @property
    def total(self) -> int:
        return len(self.succeeded) + len(self.failed)


class TaskQueue:
    """
    Work queue with a fixed concurrency cap.

    Example:
        queue = TaskQueue(delete_one, concurrency=100, name='delete')
        queue.push(tasks)
        result = queue.join()
    """

    def __init__(self, worker: Callable[[Any], Any], concurrency: int, name: str = 'queue',
                 on_drain: Optional[Callable[[QueueResult], None]] = None):
        """
        Args:
            worker: Called once per task; its return value is kept as the result
            concurrency: Maximum number of tasks running at the same time
            name: Used for thread names and log lines
            on_drain: Called exactly once, after every task has finished
        """
        if concurrency < 1:
            raise ValueError(f"concurrency must be at least 1, got {concurrency}")

        self.worker = worker
        self.concurrency = concurrency
        self.name = name
        self.on_drain = on_drain

        self._executor = ThreadPoolExecutor(max_workers=concurrency, thread_name_prefix=name)
        self._cond = threading.Condition()
        self._pending = 0
        self._closed = False
        self._result = QueueResult()

    def push(self, tasks: Iterable[Any]):
        """
        Submit a batch of tasks.

        Raises:
            RuntimeError: If the queue has already drained
        """
        for task in tasks:
            with self._cond:
                if self._closed:
                    raise RuntimeError(f"Task queue '{self.name}' has already drained")
                self._pending += 1
            self._executor.submit(self._run, task)

    def _run(self, task):
        outcome = TaskOutcome(task=task)
        try:
            outcome.result = self.worker(task)
        except Exception as e:
            outcome.error = e
            logger.debug(f"Task failed in queue '{self.name}': {e}")
        finally:
            with self._cond:
                if outcome.error is None:
                    self._result.succeeded.append(outcome)
                else:
                    self._result.failed.append(outcome)
                self._pending -= 1
                self._cond.notify_all()

    def join(self, timeout: Optional[float] = None) -> QueueResult:
        """
        Wait for the queue to drain.

        Args:
            timeout: Seconds to wait before abandoning unfinished tasks

        Returns:
            QueueResult; timed_out is set when unfinished tasks were abandoned
            and on_drain is not called
        """
        with self._cond:
            finished = self._cond.wait_for(lambda: self._pending == 0, timeout=timeout)
            first_join = not self._closed
            self._closed = True
            result = QueueResult(
                succeeded=list(self._result.succeeded),
                failed=list(self._result.failed),
                timed_out=not finished,
            )

        if not first_join:
            return result

        if finished:
            self._executor.shutdown(wait=True)
        else:
            logger.warning(
                f"Task queue '{self.name}' timed out with {self._pending} task(s) still running"
            )
            self._executor.shutdown(wait=False, cancel_futures=True)

        # Abandoned tasks may still be running, so the queue never drained
        if finished and self.on_drain:
            self.on_drain(result)

        return result


def run_batch(worker: Callable[[Any], Any], tasks: Iterable[Any], concurrency: int,
              name: str = 'queue', timeout: Optional[float] = None) -> QueueResult:
    """Push every task onto a fresh queue and wait for it to drain."""
    queue = TaskQueue(worker, concurrency, name=name)
    queue.push(tasks)
    return queue.join(timeout=timeout)
