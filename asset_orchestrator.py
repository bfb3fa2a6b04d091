"""
Windowed async scheduler for independent asset generation tasks (scene images,
character portraits).

Tasks are split into consecutive windows of at most `window_size`. Windows run
one after another; inside a window every task is dispatched at once and the
window only closes when all of them have settled. A failing task never cancels
its siblings and is never retried inline: call resubmit_failed() for that.
"""
import asyncio
import os
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Hashable, Iterable, Optional

from config import Config

ASSETS_DEBUG = os.getenv("DEBUG", "").lower() in ("1", "true", "yes")


def _log(msg: str, verbose_only: bool = False) -> None:
    if verbose_only and not ASSETS_DEBUG:
        return
    print(f"[ASSETS] {msg}")


class TaskStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class GenerationTask:
    """One unit of asset work. Status is only changed by the orchestrator that owns it."""

    key: Hashable
    request: Any
    status: TaskStatus = TaskStatus.PENDING
    result: Any = None
    error: Optional[str] = None
    error_kind: Optional[str] = None    # "timeout" | "error"
    attempts: int = 0

    def to_dict(self) -> dict:
        return {
            "key": self.key,
            "status": self.status.value,
            "result": str(self.result) if self.result is not None else None,
            "error": self.error,
            "error_kind": self.error_kind,
            "attempts": self.attempts,
        }


@dataclass(frozen=True)
class Progress:
    completed: int
    total: int
    percent: float


@dataclass
class OrchestrationReport:
    windows: int = 0
    completed: int = 0
    failed: int = 0
    cancelled: bool = False


def partition_windows(items: list, size: int) -> list[list]:
    """Split items into consecutive windows of at most `size`, preserving order."""
    if size < 1:
        raise ValueError(f"Window size must be >= 1, got {size}")
    return [items[i:i + size] for i in range(0, len(items), size)]


class AssetOrchestrator:
    """
    Runs GenerationTasks through an async worker in bounded windows.

    Args:
        tasks: Ordered tasks; keys must be unique
        worker: async callable(request) -> result
        window_size: Max tasks in flight at once (default: Config.window_size)
        timeout: Per-task timeout in seconds; None disables it
        is_alive: Liveness check; once it returns False nothing is committed
        on_progress: Called with Progress after every committed task
        on_window_settled: Called with (window_number, Progress) after each window settles
    """

    def __init__(
        self,
        tasks: Iterable[GenerationTask],
        worker: Callable[[Any], Awaitable[Any]],
        window_size: Optional[int] = None,
        timeout: Optional[float] = None,
        is_alive: Optional[Callable[[], bool]] = None,
        on_progress: Optional[Callable[[Progress], None]] = None,
        on_window_settled: Optional[Callable[[int, Progress], None]] = None,
    ):
        self._tasks: dict[Hashable, GenerationTask] = {}
        for task in tasks:
            if task.key in self._tasks:
                raise ValueError(f"Duplicate task key: {task.key!r}")
            self._tasks[task.key] = task
        self.worker = worker
        self.window_size = window_size if window_size is not None else Config().window_size
        if self.window_size < 1:
            raise ValueError(f"window_size must be >= 1, got {self.window_size}")
        self.timeout = timeout
        self.is_alive = is_alive or (lambda: True)
        self.on_progress = on_progress
        self.on_window_settled = on_window_settled
        self._lock = asyncio.Lock()

    @property
    def tasks(self) -> list[GenerationTask]:
        return list(self._tasks.values())

    def get_task(self, key: Hashable) -> GenerationTask:
        return self._tasks[key]

    def failed_keys(self) -> list:
        return [t.key for t in self._tasks.values() if t.status is TaskStatus.FAILED]

    def progress(self) -> Progress:
        total = len(self._tasks)
        completed = sum(1 for t in self._tasks.values() if t.status is TaskStatus.COMPLETED)
        percent = round(100.0 * completed / total, 1) if total else 100.0
        return Progress(completed=completed, total=total, percent=percent)

    async def run(self) -> OrchestrationReport:
        """Process every pending task, window by window."""
        async with self._lock:
            pending = [t for t in self._tasks.values() if t.status is TaskStatus.PENDING]
            return await self._process(pending)

    async def resubmit_failed(self, keys: Optional[Iterable[Hashable]] = None) -> OrchestrationReport:
        """
        Re-run failed tasks through the same windowed path.

        `keys` only narrows the selection: a task is re-run only if its status is
        still FAILED when this call gets to run, so a stale list can't re-run a
        task that has since completed.
        """
        async with self._lock:
            wanted = None if keys is None else set(keys)
            retry = [
                t for t in self._tasks.values()
                if t.status is TaskStatus.FAILED and (wanted is None or t.key in wanted)
            ]
            skipped = 0 if wanted is None else len(wanted) - len(retry)
            if skipped:
                _log(f"{skipped} requested task(s) are no longer failed, skipping them")
            _log(f"Re-submitting {len(retry)} failed task(s)")
            return await self._process(retry, eligible=TaskStatus.FAILED)

    def complete_task(self, key: Hashable, result: Any) -> bool:
        """
        Commit a result produced outside the orchestrator (e.g. a manually supplied image).

        Returns False if the task was already completed; completed tasks are never overwritten.
        """
        task = self._tasks[key]
        if task.status is TaskStatus.COMPLETED:
            return False
        task.status = TaskStatus.COMPLETED
        task.result = result
        task.error = None
        task.error_kind = None
        self._notify_progress()
        return True

    async def _process(
        self, tasks: list[GenerationTask], eligible: TaskStatus = TaskStatus.PENDING
    ) -> OrchestrationReport:
        report = OrchestrationReport()
        windows = partition_windows(tasks, self.window_size)
        for number, window in enumerate(windows, 1):
            if not self.is_alive():
                _log(f"Stopped before window {number}/{len(windows)}: consumer is gone")
                report.cancelled = True
                break
            # A task may have been completed externally while earlier windows ran
            window = [t for t in window if t.status is eligible]
            if not window:
                continue
            for task in window:
                task.status = TaskStatus.PENDING
                task.error = None
                task.error_kind = None

            _log(f"Window {number}/{len(windows)}: {len(window)} task(s)")
            outcomes = await asyncio.gather(
                *(self._execute(task) for task in window), return_exceptions=True
            )
            for task, outcome in zip(window, outcomes):
                if isinstance(outcome, BaseException):
                    _log(f"WARNING: {task.key} raised {type(outcome).__name__} outside the worker: {outcome}")
                    if task.status is TaskStatus.IN_PROGRESS and self.is_alive():
                        task.status = TaskStatus.FAILED
                        task.error = str(outcome) or type(outcome).__name__
                        task.error_kind = "error"
            report.windows += 1

            if not self.is_alive():
                report.cancelled = True
                break
            progress = self.progress()
            _log(f"Window {number} settled: {progress.completed}/{progress.total} complete ({progress.percent}%)")
            if self.on_window_settled:
                self.on_window_settled(number, progress)

        report.completed = sum(1 for t in tasks if t.status is TaskStatus.COMPLETED)
        report.failed = sum(1 for t in tasks if t.status is TaskStatus.FAILED)
        if report.failed:
            _log(f"WARNING: {report.failed} task(s) failed: {', '.join(str(t.key) for t in tasks if t.status is TaskStatus.FAILED)}")
        return report

    async def _execute(self, task: GenerationTask) -> None:
        task.status = TaskStatus.IN_PROGRESS
        task.attempts += 1
        result = None
        error = None
        error_kind = None
        try:
            call = self.worker(task.request)
            if self.timeout is not None:
                result = await asyncio.wait_for(call, timeout=self.timeout)
            else:
                result = await call
        except asyncio.TimeoutError:
            error = f"Timed out after {self.timeout}s"
            error_kind = "timeout"
        except Exception as e:
            error = str(e) or type(e).__name__
            error_kind = "error"

        if not self.is_alive():
            _log(f"Discarding result for {task.key!r}: consumer is gone", verbose_only=True)
            return
        if task.status is TaskStatus.COMPLETED:
            # complete_task() got there first
            return

        if error_kind is None:
            task.status = TaskStatus.COMPLETED
            task.result = result
            _log(f"{task.key}: completed", verbose_only=True)
        else:
            task.status = TaskStatus.FAILED
            task.error = error
            task.error_kind = error_kind
            _log(f"WARNING: {task.key} failed ({error_kind}): {error}")
        self._notify_progress()

    def _notify_progress(self):
        if self.on_progress:
            self.on_progress(self.progress())
