"""
Task Serializer for the GCode driver.

This module provides the Task class and TaskSerializer, which admit operations
from many concurrent callers onto the single device channel one at a time,
in the order they were submitted.
"""

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from gcode_driver.core.logging import get_logger
from gcode_driver.core.utils import TransportError

logger = get_logger()

Operation = Callable[[], Awaitable[Any]]


@dataclass
class Task:
    """
    Encapsulates one caller's operation and the future to report back on.

    Attributes:
        operation: Zero-argument coroutine function run with exclusive
            ownership of the channel.
        name: Short description used in log messages.
        result_future: Future that will be set with the operation's outcome.
    """

    operation: Operation
    name: str = ""
    result_future: asyncio.Future = field(
        default_factory=lambda: asyncio.get_running_loop().create_future()
    )
    started: bool = False

    def set_result(self, result: Any) -> None:
        """
        Set the result for this task.

        Args:
            result: The value returned by the operation.
        """
        if not self.result_future.done():
            self.result_future.set_result(result)

    def set_error(self, error: BaseException) -> None:
        """
        Set an error for this task.

        Args:
            error: The exception raised by the operation.
        """
        if not self.result_future.done():
            self.result_future.set_exception(error)

    @property
    def abandoned(self) -> bool:
        """Whether the caller stopped waiting before the task was admitted."""
        return self.result_future.cancelled()

    async def wait_for_result(self, timeout: float | None = None) -> Any:
        """
        Wait for the operation to finish.

        A timeout only stops this caller from waiting; the operation itself
        is shielded and keeps the channel until it completes.

        Args:
            timeout: Optional timeout in seconds.

        Returns:
            The value returned by the operation.

        Raises:
            asyncio.TimeoutError: If the timeout is exceeded.
        """
        if timeout is None:
            return await self.result_future

        try:
            return await asyncio.wait_for(asyncio.shield(self.result_future), timeout=timeout)
        except asyncio.TimeoutError:
            # Not admitted yet, so it will never run
            if not self.started:
                self.result_future.cancel()
            raise


# Type alias for the task queue
TaskQueue = asyncio.Queue[Task]


def create_task_queue(maxsize: int = 0) -> TaskQueue:
    """
    Create a new task queue.

    Args:
        maxsize: Maximum size of the queue (0 for unlimited).

    Returns:
        A new TaskQueue instance.
    """
    return asyncio.Queue(maxsize=maxsize)


def empty_queue(q: TaskQueue) -> list[Task]:
    drained = []
    while not q.empty():
        try:
            drained.append(q.get_nowait())
            q.task_done()
        except asyncio.QueueEmpty:
            break
    return drained


class TaskSerializer:
    """
    First-come-first-served admission of operations onto the channel.

    A single worker takes tasks from the queue and runs them to completion
    one after the other. An operation that issues several commands keeps
    the channel for its whole duration.
    """

    def __init__(self, queue_size: int = 0):
        """
        Initialize the serializer.

        Args:
            queue_size: Maximum number of waiting operations (0 for unlimited).
        """
        self.queue_size_limit = queue_size
        self.task_queue = create_task_queue(maxsize=queue_size)

        self._worker_task: asyncio.Task | None = None
        self._current: Task | None = None
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running and self._worker_task is not None

    @property
    def busy(self) -> bool:
        """Whether an operation currently owns the channel."""
        return self._current is not None

    def queue_size(self) -> int:
        """Get the number of operations waiting for admission."""
        return self.task_queue.qsize()

    def start(self) -> None:
        """Start the worker loop. Starting a running serializer is a no-op."""
        if self.is_running:
            return

        self._running = True
        self._worker_task = asyncio.create_task(self._task_loop())

    async def stop(self) -> None:
        """
        Stop the worker loop.

        Operations still waiting for admission fail with TransportError.
        """
        self._running = False

        if self._worker_task:
            self._worker_task.cancel()
            try:
                await self._worker_task
            except asyncio.CancelledError:
                pass
            self._worker_task = None

        for task in empty_queue(self.task_queue):
            task.set_error(TransportError(f"Driver stopped before running '{task.name}'"))

    async def execute(
        self,
        operation: Operation,
        name: str = "",
        timeout: float | None = None,
    ) -> Any:
        """
        Run an operation once every earlier operation has finished.

        Args:
            operation: Zero-argument coroutine function to run.
            name: Short description used in log messages.
            timeout: Optional time in seconds this caller is willing to wait,
                queueing included.

        Returns:
            The value returned by the operation.

        Raises:
            Whatever the operation raises.
            asyncio.TimeoutError: If the caller's timeout is exceeded.
        """
        self.start()

        task = Task(operation=operation, name=name or getattr(operation, "__name__", "operation"))
        logger.verbose(f"Queueing task: {task.name} (waiting: {self.queue_size()})")
        await self.task_queue.put(task)

        return await task.wait_for_result(timeout=timeout)

    async def _task_loop(self) -> None:
        """
        Main loop that runs tasks from the queue.

        Continuously awaits tasks from the queue and runs them one by one.
        """
        logger.debug("Task serializer loop started")

        try:
            while self._running:
                task = await self.task_queue.get()

                try:
                    if task.abandoned:
                        logger.debug(f"Skipping abandoned task: {task.name}")
                        continue

                    self._current = task
                    task.started = True
                    logger.verbose(f"Running task: {task.name}")
                    result = await task.operation()
                    task.set_result(result)
                except asyncio.CancelledError:
                    task.set_error(TransportError(f"Driver stopped while running '{task.name}'"))
                    raise
                except Exception as e:
                    logger.debug(f"Task '{task.name}' failed: {e}")
                    task.set_error(e)
                finally:
                    self._current = None
                    self.task_queue.task_done()

        except asyncio.CancelledError:
            logger.debug("Task serializer loop stopped")
