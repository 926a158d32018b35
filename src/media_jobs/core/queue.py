"""Durable at-least-once task queue with bounded concurrency and retry/backoff."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable

from ..errors import InvalidTransition, JobNotFound, PipelineError
from ..models import (
    ExportResult,
    JobKind,
    JobStatus,
    Task,
    TaskState,
    TranscriptionResult,
    utcnow,
)
from .store import DocumentStore, JobStore

logger = logging.getLogger(__name__)

QueueListener = Callable[[str, Task, dict[str, Any]], None]


class AttemptContext:
    """Handed to the handler for one attempt of one task."""

    def __init__(self, queue: TaskQueue, task: Task):
        self.queue = queue
        self.task = task

    @property
    def job_id(self) -> str:
        return self.task.job_id

    @property
    def attempt(self) -> int:
        return self.task.attempts_made

    def report_progress(self, progress: float) -> None:
        """Write job progress and refresh the task heartbeat."""
        try:
            job = self.queue.jobs.report_progress(self.task.job_id, int(progress))
        except InvalidTransition as e:
            logger.debug(f"Ignoring progress for task {self.task.task_id}: {e}")
            return
        self.queue.heartbeat(self.task.task_id)
        self.queue._emit("progress", self.task, progress=job.progress)


Handler = Callable[[Task, AttemptContext], Awaitable["TranscriptionResult | ExportResult"]]


class TaskQueue:
    """
    Task queue persisted in the "tasks" collection of a DocumentStore.

    Lifecycle:
    - enqueue(): persist a waiting task and wake the workers
    - start(): recover tasks orphaned by a previous process, spawn workers
    - stop(): cancel workers; interrupted tasks are recovered on next start

    A task is claimed by exactly one worker at a time. Failed attempts are
    retried after an exponential backoff until max_attempts is reached, then
    the job is failed and the task record is kept for inspection.
    """

    COLLECTION = "tasks"

    def __init__(
        self,
        documents: DocumentStore,
        jobs: JobStore,
        handler: Handler | None = None,
        *,
        concurrency: int = 2,
        max_attempts: int = 3,
        backoff_seconds: float = 1.0,
        poll_interval: float = 1.0,
        stall_timeout: float = 300,
        completed_retention: timedelta = timedelta(hours=1),
        failed_retention: timedelta = timedelta(hours=24),
    ):
        self.documents = documents
        self.jobs = jobs
        self.handler = handler
        self.concurrency = concurrency
        self.max_attempts = max_attempts
        self.backoff_seconds = backoff_seconds
        self.poll_interval = poll_interval
        self.stall_timeout = stall_timeout
        self.completed_retention = completed_retention
        self.failed_retention = failed_retention

        self._listeners: dict[str, list[QueueListener]] = {}
        self._active: set[str] = set()
        self._workers: list[asyncio.Task] = []
        self._wakeup = asyncio.Event()
        self._paused = False

    @classmethod
    def from_config(
        cls,
        documents: DocumentStore,
        jobs: JobStore,
        config: dict[str, Any],
        handler: Handler | None = None,
    ) -> TaskQueue:
        return cls(
            documents,
            jobs,
            handler,
            concurrency=int(config["concurrency"]),
            max_attempts=int(config["max_attempts"]),
            backoff_seconds=float(config["backoff_seconds"]),
            poll_interval=float(config["poll_interval"]),
            stall_timeout=float(config["stall_timeout"]),
            completed_retention=timedelta(hours=config["completed_retention_hours"]),
            failed_retention=timedelta(hours=config["failed_retention_hours"]),
        )

    # ── Events ────────────────────────────────────────────────────────

    def on(self, event: str, listener: QueueListener) -> None:
        """Register a listener for completed/failed/retrying/progress/stalled/cleaned."""
        self._listeners.setdefault(event, []).append(listener)

    def _emit(self, event: str, task: Task, **detail: Any) -> None:
        if event == "progress":
            level = logging.DEBUG
        elif event in ("failed", "stalled"):
            level = logging.WARNING
        else:
            level = logging.INFO

        logger.log(
            level,
            f"Task {task.task_id} ({task.kind.value}) {event}",
            extra={
                "queue_event": event,
                "task_id": task.task_id,
                "job_id": task.job_id,
                "attempt": task.attempts_made,
                **detail,
            },
        )

        for listener in self._listeners.get(event, []):
            try:
                listener(event, task, detail)
            except Exception:
                logger.exception(f"Queue listener for '{event}' failed")

    # ── Task records ──────────────────────────────────────────────────

    def _save(self, task: Task) -> None:
        self.documents.put(self.COLLECTION, task.task_id, task.model_dump(mode="json"))

    def _modify(self, task_id: str, change: Callable[[Task], bool]) -> Task:
        def mutate(data: dict[str, Any]) -> dict[str, Any] | None:
            task = Task.model_validate(data)
            if not change(task):
                return None
            return task.model_dump(mode="json")

        return Task.model_validate(self.documents.update(self.COLLECTION, task_id, mutate))

    def get(self, task_id: str) -> Task | None:
        data = self.documents.get(self.COLLECTION, task_id)
        return Task.model_validate(data) if data else None

    def tasks(self, state: TaskState | None = None) -> list[Task]:
        tasks = []
        for data in self.documents.list(self.COLLECTION):
            try:
                task = Task.model_validate(data)
            except ValueError as e:
                logger.warning(f"Skipping invalid task record: {e}")
                continue
            if state is None or task.state == state:
                tasks.append(task)
        return sorted(tasks, key=lambda t: t.created_at)

    def heartbeat(self, task_id: str) -> None:
        def change(task: Task) -> bool:
            task.heartbeat_at = utcnow()
            return True

        self._modify(task_id, change)

    # ── Queue management ──────────────────────────────────────────────

    def enqueue(self, job_id: str, kind: JobKind, payload: dict[str, Any] | None = None) -> Task:
        """Persist a task for a job and make it visible to workers."""
        task = Task(
            job_id=job_id,
            kind=kind,
            payload=payload or {},
            max_attempts=self.max_attempts,
        )
        self._save(task)
        self._wakeup.set()
        logger.info(f"Enqueued task {task.task_id} for job {job_id}")
        return task

    def pause(self) -> None:
        """Stop claiming new tasks. Attempts already running finish."""
        self._paused = True
        logger.info("Queue paused")

    def resume(self) -> None:
        self._paused = False
        self._wakeup.set()
        logger.info("Queue resumed")

    @property
    def paused(self) -> bool:
        return self._paused

    @property
    def running(self) -> bool:
        return any(not w.done() for w in self._workers)

    def backoff_delay(self, attempt: int) -> float:
        """Delay before retrying after the given (1-based) failed attempt."""
        return self.backoff_seconds * (2 ** (attempt - 1))

    def status(self) -> dict[str, Any]:
        now = utcnow()
        counts = {"waiting": 0, "active": 0, "completed": 0, "failed": 0, "delayed": 0}
        for task in self.tasks():
            if task.state == TaskState.WAITING and task.available_at > now:
                counts["delayed"] += 1
            else:
                counts[task.state.value] += 1
        return {**counts, "paused": self._paused}

    # ── Worker pool ───────────────────────────────────────────────────

    async def start(self) -> None:
        """Recover orphaned tasks and start the worker coroutines."""
        if self.running:
            return
        if self.handler is None:
            raise RuntimeError("TaskQueue has no handler")

        self.recover()
        self._workers = [
            asyncio.create_task(self._worker_loop(n), name=f"media-jobs-worker-{n}")
            for n in range(self.concurrency)
        ]
        logger.info(f"Queue started with {self.concurrency} workers")

    async def stop(self) -> None:
        """Cancel the workers and wait for them to exit."""
        for worker in self._workers:
            worker.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []
        logger.info("Queue stopped")

    async def join(self, timeout: float | None = None) -> None:
        """Wait until no task is waiting, delayed or active."""
        async def _idle() -> None:
            while any(
                t.state in (TaskState.WAITING, TaskState.ACTIVE) for t in self.tasks()
            ):
                await asyncio.sleep(0.01)

        await asyncio.wait_for(_idle(), timeout)

    def _claim_next(self) -> tuple[Task | None, float | None]:
        """
        Claim the oldest due waiting task.

        Returns (task, None) on success, or (None, seconds until the next
        delayed task is due).
        """
        now = utcnow()
        due = []
        next_due: datetime | None = None
        for task in self.tasks(TaskState.WAITING):
            if task.task_id in self._active:
                continue
            if task.available_at <= now:
                due.append(task)
            elif next_due is None or task.available_at < next_due:
                next_due = task.available_at

        for candidate in due:
            claimed = False

            def change(task: Task) -> bool:
                nonlocal claimed
                if task.state != TaskState.WAITING:
                    return False
                task.state = TaskState.ACTIVE
                task.attempts_made += 1
                task.started_at = utcnow()
                task.heartbeat_at = task.started_at
                claimed = True
                return True

            task = self._modify(candidate.task_id, change)
            if claimed:
                self._active.add(task.task_id)
                return task, None

        wait = (next_due - now).total_seconds() if next_due else None
        return None, wait

    async def _worker_loop(self, n: int) -> None:
        while True:
            # Any enqueue from here on leaves the event set for the wait below
            self._wakeup.clear()
            task = None
            wait = None
            if not self._paused:
                try:
                    task, wait = self._claim_next()
                except Exception:
                    logger.error(f"Worker {n} failed to claim a task", exc_info=True)

            if task is None:
                timeout = self.poll_interval if wait is None else max(0.0, min(wait, self.poll_interval))
                try:
                    await asyncio.wait_for(self._wakeup.wait(), timeout)
                except asyncio.TimeoutError:
                    pass
                continue

            try:
                await self._process(task)
            except Exception:
                logger.error(f"Worker {n} failed to record the outcome of task {task.task_id}", exc_info=True)
            finally:
                self._active.discard(task.task_id)

    async def _process(self, task: Task) -> None:
        """Run one attempt of a claimed task and record its outcome."""
        try:
            self.jobs.start_attempt(task.job_id)
        except (JobNotFound, InvalidTransition) as e:
            logger.warning(f"Dropping task {task.task_id}: {e}")
            self._finish(task.task_id, TaskState.FAILED, str(e))
            return

        context = AttemptContext(self, task)
        try:
            result = await self.handler(task, context)
            self.jobs.complete(task.job_id, result)
        except PipelineError as e:
            self._handle_failure(task, e.kind, e.message, e.retryable)
            return
        except asyncio.CancelledError:
            # Stays active; recover() requeues it on the next start
            logger.info(f"Task {task.task_id} interrupted by shutdown")
            raise
        except Exception as e:
            logger.error(f"Task {task.task_id} raised unexpectedly: {e}", exc_info=True)
            self._handle_failure(task, type(e).__name__, str(e), retryable=True)
            return

        task = self._finish(task.task_id, TaskState.COMPLETED)
        self._emit("completed", task)

    def _finish(self, task_id: str, state: TaskState, error: str | None = None) -> Task:
        def change(task: Task) -> bool:
            task.state = state
            task.finished_at = utcnow()
            task.last_error = error
            return True

        return self._modify(task_id, change)

    def _handle_failure(self, task: Task, kind: str, message: str, retryable: bool) -> None:
        task = self.get(task.task_id) or task
        error = f"{kind}: {message}"

        if retryable and task.attempts_made < task.max_attempts:
            delay = self.backoff_delay(task.attempts_made)

            def change(t: Task) -> bool:
                t.state = TaskState.WAITING
                t.available_at = utcnow() + timedelta(seconds=delay)
                t.last_error = error
                return True

            self.jobs.requeue(task.job_id)
            task = self._modify(task.task_id, change)
            self._emit("retrying", task, delay=delay, error=error)
            return

        try:
            self.jobs.fail(task.job_id, kind, message)
        except (JobNotFound, InvalidTransition) as e:
            logger.error(f"Could not mark job {task.job_id} failed: {e}")
        task = self._finish(task.task_id, TaskState.FAILED, error)
        self._emit("failed", task, error=error)

    # ── Housekeeping ──────────────────────────────────────────────────

    def recover(self) -> int:
        """
        Return tasks left active by a dead process to the queue.

        Tasks whose attempts are spent fail their job instead. Returns the
        number of tasks recovered or failed.
        """
        recovered = 0
        for task in self.tasks(TaskState.ACTIVE):
            if task.task_id in self._active:
                continue
            job = self.jobs.get(task.job_id)

            if task.attempts_made >= task.max_attempts:
                if job and not job.status.is_terminal:
                    self.jobs.fail(task.job_id, "WorkerLost", "Worker stopped during the final attempt")
                self._finish(task.task_id, TaskState.FAILED, "WorkerLost")
            else:
                if job and job.status == JobStatus.PROCESSING:
                    self.jobs.requeue(task.job_id)

                def change(t: Task) -> bool:
                    t.state = TaskState.WAITING
                    t.available_at = utcnow()
                    return True

                self._modify(task.task_id, change)
            recovered += 1

        if recovered:
            logger.info(f"Recovered {recovered} orphaned tasks")
        return recovered

    def check_stalled(self, now: datetime | None = None) -> list[Task]:
        """Emit 'stalled' for active tasks without a recent heartbeat. They are not failed."""
        now = now or utcnow()
        limit = timedelta(seconds=self.stall_timeout)
        stalled = []
        for task in self.tasks(TaskState.ACTIVE):
            last_seen = task.heartbeat_at or task.started_at or task.created_at
            if now - last_seen > limit:
                stalled.append(task)
                self._emit("stalled", task, silent_seconds=int((now - last_seen).total_seconds()))
        return stalled

    def purge(self, now: datetime | None = None) -> dict[str, int]:
        """Delete old completed and failed task records. Job records are untouched."""
        now = now or utcnow()
        removed = {"completed": 0, "failed": 0}
        retention = {
            TaskState.COMPLETED: self.completed_retention,
            TaskState.FAILED: self.failed_retention,
        }

        for task in self.tasks():
            if task.state not in retention or task.finished_at is None:
                continue
            if now - task.finished_at > retention[task.state]:
                if self.documents.delete(self.COLLECTION, task.task_id):
                    removed[task.state.value] += 1
                    self._emit("cleaned", task, state=task.state.value)

        for state, count in removed.items():
            if count:
                logger.info(f"Cleaned {count} {state} tasks")
        return removed
