"""Bounded worker pool shared by all subprocess-backed build work.

Submitted work always runs exactly once, whether or not its :class:`Task`
is joined, and :meth:`Executor.shutdown` waits for in-flight work to
drain. Ordering between tasks is the caller's job: join where a stage
depends on another.
"""

from __future__ import annotations

import os
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from types import TracebackType
from typing import Generic, ParamSpec, Self, TypeVar

T = TypeVar("T")
P = ParamSpec("P")


def default_workers() -> int:
    """One worker per logical CPU, minus one for the orchestrating thread."""
    return max(1, (os.cpu_count() or 1) - 1)


@dataclass(frozen=True, slots=True)
class Task(Generic[T]):
    future: Future[T]

    def join(self) -> T:
        """Block until the work finishes; re-raise its exception if it failed."""
        return self.future.result()

    @property
    def done(self) -> bool:
        return self.future.done()


class Executor:
    def __init__(self, workers: int | None = None) -> None:
        self.workers = workers if workers is not None else default_workers()
        if self.workers < 1:
            raise ValueError("executor needs at least one worker")
        self._pool = ThreadPoolExecutor(max_workers=self.workers, thread_name_prefix="nxmod")

    def submit(self, fn: Callable[P, T], *args: P.args, **kwargs: P.kwargs) -> Task[T]:
        return Task(self._pool.submit(fn, *args, **kwargs))

    def shutdown(self) -> None:
        self._pool.shutdown(wait=True)

    def __enter__(self) -> Self:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.shutdown()
