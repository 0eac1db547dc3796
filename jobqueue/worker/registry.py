"""
Task handler registry.

Maps a task type name to the handler that executes it. Handlers are
validated when they are registered so that dispatch is a plain lookup.
"""

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable, Iterator
from dataclasses import dataclass
from typing import Any

from jobqueue.errors import DuplicateTaskType, UnknownTaskType
from jobqueue.types.task import TaskContext, TaskResult

logger = logging.getLogger(__name__)

# Type alias for task handler functions. Plain functions are accepted too
# and run in a worker thread.
TaskHandler = Callable[[TaskContext, bytes], Awaitable[TaskResult | None] | TaskResult | None]


def _is_async(func: Callable[..., Any]) -> bool:
    if inspect.iscoroutinefunction(func):
        return True
    call = getattr(func, "__call__", None)
    return call is not None and inspect.iscoroutinefunction(call)


@dataclass(frozen=True)
class RegisteredHandler:
    """A validated handler bound to its task type."""

    task_type: str
    func: TaskHandler
    is_async: bool

    async def __call__(self, context: TaskContext, payload: bytes) -> TaskResult | None:
        if self.is_async:
            return await self.func(context, payload)
        # The thread keeps running if the awaiting task is cancelled.
        return await asyncio.to_thread(self.func, context, payload)


class HandlerRegistry:
    """
    Registry of task handlers keyed by task type.

    Example:
        registry = HandlerRegistry()

        @registry.handler("send_email")
        async def handle_send_email(context: TaskContext, payload: bytes) -> TaskResult:
            ...
    """

    def __init__(self) -> None:
        self._handlers: dict[str, RegisteredHandler] = {}

    def register(self, task_type: str, handler: TaskHandler) -> RegisteredHandler:
        """
        Register a handler for a task type.

        Raises:
            DuplicateTaskType: If the type already has a handler.
            TypeError: If the handler is not callable.
            ValueError: If the task type is empty.
        """
        if not task_type:
            raise ValueError("task type must be a non-empty string")
        if not callable(handler):
            raise TypeError(f"handler for {task_type!r} is not callable")
        if task_type in self._handlers:
            raise DuplicateTaskType(task_type)

        registered = RegisteredHandler(
            task_type=task_type,
            func=handler,
            is_async=_is_async(handler),
        )
        self._handlers[task_type] = registered
        logger.debug(f"Registered handler for task type: {task_type}")
        return registered

    def handler(self, task_type: str) -> Callable[[TaskHandler], TaskHandler]:
        """Decorator form of ``register``."""

        def decorator(func: TaskHandler) -> TaskHandler:
            self.register(task_type, func)
            return func

        return decorator

    def lookup(self, task_type: str) -> RegisteredHandler:
        """
        Get the handler for a task type.

        Raises:
            UnknownTaskType: If no handler is registered.
        """
        try:
            return self._handlers[task_type]
        except KeyError:
            raise UnknownTaskType(task_type) from None

    def types(self) -> list[str]:
        """List all registered task types."""
        return list(self._handlers)

    def __contains__(self, task_type: object) -> bool:
        return task_type in self._handlers

    def __iter__(self) -> Iterator[str]:
        return iter(self._handlers)

    def __len__(self) -> int:
        return len(self._handlers)
