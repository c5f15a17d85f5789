"""
Settle-all fan-out for independent sub-fetches

``settle_all`` launches one task per job and waits for every task to finish,
whatever happens to its siblings. Each job yields a ``TaskOutcome`` holding
either its value or the exception that ended it, in submission order. A
failing task never cancels the others; the caller decides what a failure
means for its own record.
"""

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Generic, Hashable, Iterable, List, Optional, Tuple, TypeVar


T = TypeVar('T')


@dataclass(frozen=True)
class TaskOutcome(Generic[T]):
    """
    Result of one settled task

    Attributes:
        key: Caller-supplied identifier of the job (e.g. a playlist id)
        value: Return value when the task succeeded
        error: Exception that ended the task, None on success
    """
    key: Hashable
    value: Optional[T] = None
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.error is None


async def settle_all(jobs: Iterable[Tuple[Hashable, Awaitable[T]]]) -> List[TaskOutcome[T]]:
    """
    Run every job concurrently and collect one outcome per job

    No concurrency cap is applied: all jobs are scheduled at once.

    Args:
        jobs: ``(key, awaitable)`` pairs

    Returns:
        Outcomes in the order the jobs were given
    """
    jobs = list(jobs)
    if not jobs:
        return []

    keys = [key for key, _ in jobs]
    results: List[Any] = await asyncio.gather(*(job for _, job in jobs), return_exceptions=True)

    outcomes = []
    for key, result in zip(keys, results):
        if isinstance(result, BaseException):
            outcomes.append(TaskOutcome(key=key, error=result))
        else:
            outcomes.append(TaskOutcome(key=key, value=result))
    return outcomes
