"""Durable records: a JSON-file document store and the job state store on top of it."""

from __future__ import annotations

import json
import logging
import os
import re
import tempfile
import threading
from datetime import timedelta
from pathlib import Path
from typing import Any, Callable

from ..errors import InvalidTransition, JobNotFound, StorageError
from ..models import (
    ExportResult,
    Job,
    JobSnapshot,
    JobStatus,
    TranscriptionResult,
    utcnow,
)

logger = logging.getLogger(__name__)

_DOC_ID_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]*$")


class DocumentStore:
    """
    Key-value store of JSON documents, one file per document.

    Layout: {root}/{collection}/{doc_id}.json

    update() is an atomic read-modify-write per document: writers of the same
    collection are serialized and files are replaced in one rename, so a
    reader never sees a half-written record.
    """

    def __init__(self, root: str | Path):
        self.root = Path(root)
        self._locks: dict[str, threading.RLock] = {}
        self._locks_guard = threading.Lock()

    def _lock(self, collection: str) -> threading.RLock:
        with self._locks_guard:
            return self._locks.setdefault(collection, threading.RLock())

    def _path(self, collection: str, doc_id: str) -> Path:
        if not _DOC_ID_RE.match(doc_id) or ".." in doc_id:
            raise ValueError(f"Invalid document id: {doc_id!r}")
        return self.root / collection / f"{doc_id}.json"

    def _read(self, path: Path) -> dict[str, Any] | None:
        if not path.exists():
            return None
        try:
            with open(path, encoding="utf-8") as f:
                return json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise StorageError(f"Failed to read {path}: {e}") from e

    def _write(self, path: Path, data: dict[str, Any]) -> None:
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=f".{path.stem}-", suffix=".tmp")
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2, ensure_ascii=False, default=str)
            os.replace(tmp, path)
        except OSError as e:
            raise StorageError(f"Failed to write {path}: {e}") from e

    def get(self, collection: str, doc_id: str) -> dict[str, Any] | None:
        """Load a document, or None if it does not exist."""
        with self._lock(collection):
            return self._read(self._path(collection, doc_id))

    def put(self, collection: str, doc_id: str, data: dict[str, Any]) -> None:
        """Create or overwrite a document."""
        with self._lock(collection):
            self._write(self._path(collection, doc_id), data)

    def update(
        self,
        collection: str,
        doc_id: str,
        mutate: Callable[[dict[str, Any]], dict[str, Any] | None],
    ) -> dict[str, Any]:
        """
        Atomically apply mutate to a stored document.

        mutate receives the current document and returns the new one, or None
        to leave it untouched. Returns the document as stored afterwards.
        Raises KeyError if the document does not exist.
        """
        path = self._path(collection, doc_id)
        with self._lock(collection):
            current = self._read(path)
            if current is None:
                raise KeyError(f"{collection}/{doc_id}")
            updated = mutate(current)
            if updated is None:
                return current
            self._write(path, updated)
            return updated

    def delete(self, collection: str, doc_id: str) -> bool:
        """Delete a document. Returns False if it did not exist."""
        path = self._path(collection, doc_id)
        with self._lock(collection):
            try:
                path.unlink()
                return True
            except FileNotFoundError:
                return False
            except OSError as e:
                raise StorageError(f"Failed to delete {path}: {e}") from e

    def list(self, collection: str) -> list[dict[str, Any]]:
        """Load every readable document of a collection."""
        directory = self.root / collection
        if not directory.exists():
            return []

        documents = []
        with self._lock(collection):
            for doc_file in sorted(directory.glob("*.json")):
                try:
                    with open(doc_file, encoding="utf-8") as f:
                        documents.append(json.load(f))
                except (OSError, json.JSONDecodeError) as e:
                    logger.warning(f"Skipping unreadable document {doc_file}: {e}")
        return documents


# Allowed status changes. Completed and failed are terminal.
_TRANSITIONS: dict[JobStatus, set[JobStatus]] = {
    JobStatus.PENDING: {JobStatus.PROCESSING, JobStatus.FAILED},
    JobStatus.PROCESSING: {JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.PENDING},
    JobStatus.COMPLETED: set(),
    JobStatus.FAILED: set(),
}

JobListener = Callable[[JobSnapshot], None]


class JobStore:
    """
    Single source of truth for job status, progress, result and error.

    Every write goes through DocumentStore.update, so progress and status
    written from different call sites of one attempt cannot lose each other.
    Listeners receive a snapshot after every change.
    """

    COLLECTION = "jobs"

    def __init__(self, documents: DocumentStore):
        self.documents = documents
        self._listeners: list[JobListener] = []

    def add_listener(self, listener: JobListener) -> None:
        self._listeners.append(listener)

    def _notify(self, job: Job) -> None:
        snapshot = job.snapshot()
        for listener in self._listeners:
            try:
                listener(snapshot)
            except Exception:
                logger.exception(f"Job listener failed for {job.id}")

    def create(self, job: Job) -> Job:
        """Persist a new pending job."""
        if job.status != JobStatus.PENDING:
            raise InvalidTransition(f"New jobs must be pending, got {job.status.value}")
        self.documents.put(self.COLLECTION, job.id, job.model_dump(mode="json"))
        logger.info(f"Created {job.kind.value} job {job.id} for video {job.video_id}")
        self._notify(job)
        return job

    def get(self, job_id: str) -> Job | None:
        data = self.documents.get(self.COLLECTION, job_id)
        return Job.model_validate(data) if data else None

    def require(self, job_id: str) -> Job:
        job = self.get(job_id)
        if job is None:
            raise JobNotFound(job_id)
        return job

    def list(self, status: JobStatus | None = None) -> list[Job]:
        jobs = []
        for data in self.documents.list(self.COLLECTION):
            try:
                job = Job.model_validate(data)
            except ValueError as e:
                logger.warning(f"Skipping invalid job record: {e}")
                continue
            if status and job.status != status:
                continue
            jobs.append(job)
        return sorted(jobs, key=lambda j: j.created_at)

    def _apply(self, job_id: str, change: Callable[[Job], bool]) -> Job:
        """Run change on the stored job; persist and notify if it reports a modification."""
        changed = False

        def mutate(data: dict[str, Any]) -> dict[str, Any] | None:
            nonlocal changed
            job = Job.model_validate(data)
            if not change(job):
                return None
            now = utcnow()
            # updated_at must move forward even on a coarse clock
            job.updated_at = max(now, job.updated_at + timedelta(microseconds=1))
            changed = True
            return job.model_dump(mode="json")

        try:
            data = self.documents.update(self.COLLECTION, job_id, mutate)
        except KeyError:
            raise JobNotFound(job_id) from None

        job = Job.model_validate(data)
        if changed:
            self._notify(job)
        return job

    @staticmethod
    def _move(job: Job, target: JobStatus) -> None:
        if target not in _TRANSITIONS[job.status]:
            raise InvalidTransition(
                f"Job {job.id}: {job.status.value} -> {target.value} is not allowed"
            )
        job.status = target

    def start_attempt(self, job_id: str) -> Job:
        """pending -> processing for a new attempt."""
        def change(job: Job) -> bool:
            self._move(job, JobStatus.PROCESSING)
            job.attempts += 1
            job.progress = 0
            job.error = None
            job.error_kind = None
            return True

        return self._apply(job_id, change)

    def report_progress(self, job_id: str, progress: int) -> Job:
        """
        Record attempt progress.

        Values are clamped to 0..100 and never move backwards; a report that
        does not raise progress leaves the record untouched.
        """
        value = max(0, min(100, int(progress)))

        def change(job: Job) -> bool:
            if job.status != JobStatus.PROCESSING:
                raise InvalidTransition(
                    f"Job {job.id}: progress reported while {job.status.value}"
                )
            if value <= job.progress:
                return False
            job.progress = value
            return True

        return self._apply(job_id, change)

    def complete(self, job_id: str, result: TranscriptionResult | ExportResult) -> Job:
        """processing -> completed with the attempt's result."""
        def change(job: Job) -> bool:
            self._move(job, JobStatus.COMPLETED)
            job.progress = 100
            job.result = result
            job.error = None
            job.error_kind = None
            return True

        job = self._apply(job_id, change)
        logger.info(f"Job {job_id} completed")
        return job

    def requeue(self, job_id: str) -> Job:
        """processing -> pending ahead of a queue retry."""
        def change(job: Job) -> bool:
            self._move(job, JobStatus.PENDING)
            job.progress = 0
            return True

        return self._apply(job_id, change)

    def fail(self, job_id: str, kind: str, message: str) -> Job:
        """Move a job to failed, keeping the error kind and message verbatim."""
        def change(job: Job) -> bool:
            self._move(job, JobStatus.FAILED)
            job.error = message
            job.error_kind = kind
            job.result = None
            return True

        job = self._apply(job_id, change)
        logger.warning(f"Job {job_id} failed ({kind}): {message}")
        return job
