"""Task graph for Kiln.

Named tasks declare prerequisites and an action. :meth:`TaskGraph.run` takes
a sequence whose elements are either a task name or a group of names that run
concurrently, which is how the build is expressed::

    graph.run(["clean", "copy", ["render", "styles"]])

Key classes:
- Task: A registered unit of work.
- TaskGraph: Registry and scheduler for tasks.
- TaskError and subclasses: Failures raised by ``run``.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from collections.abc import Awaitable, Callable, Iterable, Sequence
from dataclasses import dataclass, field
from typing import Any, Union

from .utils import format_elapsed

logger = logging.getLogger(__name__)

TaskAction = Callable[[], Union[Awaitable[Any], Any]]
Step = Union[str, Iterable[str]]


class TaskError(Exception):
    """Base class for task graph errors."""


class TaskNotFoundError(TaskError):
    """A referenced task name was never registered.

    Attributes:
        name: The unknown task name.
    """

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Task '{name}' is not registered")


class TaskCycleError(TaskError):
    """Prerequisites form a cycle.

    Attributes:
        cycle: Task names along the cycle, first name repeated at the end.
    """

    def __init__(self, cycle: list[str]):
        self.cycle = cycle
        super().__init__(f"Task prerequisites form a cycle: {' -> '.join(cycle)}")


class TaskFailedError(TaskError):
    """A task's action raised.

    Attributes:
        name: Name of the failing task.
        error: The exception raised by the action.
    """

    def __init__(self, name: str, error: BaseException):
        self.name = name
        self.error = error
        super().__init__(f"Task '{name}' failed: {error}")


@dataclass
class Task:
    """A named unit of work.

    Attributes:
        name: Task identifier.
        prerequisites: Tasks that must complete before the action starts.
        action: Callable producing the work; awaited when it returns an awaitable.
    """

    name: str
    prerequisites: list[str] = field(default_factory=list)
    action: TaskAction | None = None


class TaskGraph:
    """Registry of named tasks and a dependency-ordered runner."""

    def __init__(self) -> None:
        self._tasks: dict[str, Task] = {}

    def register(
        self,
        name: str,
        prerequisites: Sequence[str] = (),
        action: TaskAction | None = None,
    ) -> Task:
        """Register (or replace) a task.

        Args:
            name: Task identifier.
            prerequisites: Names of tasks to complete first.
            action: Work to run once prerequisites are done.

        Returns:
            The registered task.
        """
        task = Task(name=name, prerequisites=list(prerequisites), action=action)
        self._tasks[name] = task
        return task

    @property
    def names(self) -> list[str]:
        return sorted(self._tasks)

    async def run(self, sequence: Sequence[Step]) -> None:
        """Run a sequence of steps.

        Each step is a task name or a group of names run concurrently. A step
        starts only after every task of the previous step completed. Each task
        runs at most once per call, prerequisites included.

        Args:
            sequence: Steps, e.g. ``["a", ["b", "c"], "d"]``.

        Raises:
            TaskNotFoundError: A name (or prerequisite) is not registered.
            TaskCycleError: Prerequisites form a cycle.
            TaskFailedError: An action raised. Started siblings in a parallel
                step still finish; later steps never start.
        """
        steps = [_as_group(step) for step in sequence]
        self._validate(name for group in steps for name in group)
        completions: dict[str, asyncio.Future[None]] = {}
        for group in steps:
            if len(group) == 1:
                await self._ensure(group[0], completions)
            else:
                await self._run_parallel(group, completions)

    async def _run_parallel(
        self, names: list[str], completions: dict[str, asyncio.Future[None]]
    ) -> None:
        pending = [asyncio.ensure_future(self._ensure(name, completions)) for name in names]
        first_error: BaseException | None = None
        for next_done in asyncio.as_completed(pending):
            try:
                await next_done
            except TaskError as exc:
                if first_error is None:
                    first_error = exc
        if first_error is not None:
            raise first_error

    async def _ensure(self, name: str, completions: dict[str, asyncio.Future[None]]) -> None:
        existing = completions.get(name)
        if existing is not None:
            await asyncio.shield(existing)
            return
        done: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        completions[name] = done
        try:
            await self._execute(self._tasks[name], completions)
        except asyncio.CancelledError:
            done.cancel()
            raise
        except Exception as exc:
            done.set_exception(exc)
            # Waiters on this future re-raise; mark it retrieved for the owner.
            done.exception()
            raise
        done.set_result(None)

    async def _execute(self, task: Task, completions: dict[str, asyncio.Future[None]]) -> None:
        for prerequisite in task.prerequisites:
            await self._ensure(prerequisite, completions)
        if task.action is None:
            return
        logger.info("Starting '%s'...", task.name)
        started = time.perf_counter()
        try:
            result = task.action()
            if inspect.isawaitable(result):
                await result
        except TaskFailedError:
            # Nested graph runs already carry the failing task's name.
            raise
        except Exception as exc:
            logger.error("'%s' errored after %s: %s", task.name, _elapsed(started), exc)
            raise TaskFailedError(task.name, exc) from exc
        logger.info("Finished '%s' after %s", task.name, _elapsed(started))

    def _validate(self, names: Iterable[str]) -> None:
        visiting: list[str] = []
        visited: set[str] = set()

        def visit(name: str) -> None:
            if name in visited:
                return
            if name in visiting:
                raise TaskCycleError(visiting[visiting.index(name) :] + [name])
            task = self._tasks.get(name)
            if task is None:
                raise TaskNotFoundError(name)
            visiting.append(name)
            for prerequisite in task.prerequisites:
                visit(prerequisite)
            visiting.pop()
            visited.add(name)

        for name in names:
            visit(name)


def _as_group(step: Step) -> list[str]:
    if isinstance(step, str):
        return [step]
    group = list(step)
    if not group:
        raise ValueError("A parallel step must name at least one task")
    return group


def _elapsed(started: float) -> str:
    return format_elapsed(time.perf_counter() - started)
