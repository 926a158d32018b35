"""Tests for the progress notifier."""

from __future__ import annotations

import asyncio
import threading

import pytest

from media_jobs.core.notifier import ProgressNotifier
from media_jobs.models import Job, JobKind, JobStatus


def snapshot(job_id="job1", status=JobStatus.PROCESSING, progress=0):
    job = Job(id=job_id, kind=JobKind.EXPORT, video_id="video1", status=status, progress=progress)
    return job.snapshot()


async def collect(subscription):
    return [s async for s in subscription]


@pytest.mark.asyncio
async def test_subscriber_receives_changes_until_terminal():
    notifier = ProgressNotifier()
    subscription = notifier.subscribe("job1")
    consumer = asyncio.create_task(collect(subscription))

    notifier.publish(snapshot(progress=10))
    notifier.publish(snapshot(progress=55))
    notifier.publish(snapshot(status=JobStatus.COMPLETED, progress=100))
    notifier.publish(snapshot(status=JobStatus.COMPLETED, progress=100))

    received = await asyncio.wait_for(consumer, 1)

    assert [(s.status, s.progress) for s in received] == [
        (JobStatus.PROCESSING, 10),
        (JobStatus.PROCESSING, 55),
        (JobStatus.COMPLETED, 100),
    ]


@pytest.mark.asyncio
async def test_other_jobs_are_not_delivered():
    notifier = ProgressNotifier()
    subscription = notifier.subscribe("job1")

    notifier.publish(snapshot(job_id="job2", progress=50))
    notifier.publish(snapshot(job_id="job1", status=JobStatus.FAILED))

    received = await asyncio.wait_for(collect(subscription), 1)
    assert [s.id for s in received] == ["job1"]


@pytest.mark.asyncio
async def test_no_replay_before_subscribe():
    notifier = ProgressNotifier()
    notifier.publish(snapshot(progress=10))

    subscription = notifier.subscribe("job1")
    notifier.publish(snapshot(status=JobStatus.COMPLETED, progress=100))

    received = await asyncio.wait_for(collect(subscription), 1)
    assert [s.progress for s in received] == [100]


@pytest.mark.asyncio
async def test_malformed_update_is_dropped(caplog):
    notifier = ProgressNotifier()
    subscription = notifier.subscribe("job1")

    assert notifier.publish({"id": "job1", "status": "exploded"}) is False
    assert notifier.publish({"id": "job1", "progress": 150}) is False

    valid = snapshot(status=JobStatus.COMPLETED, progress=100).model_dump(mode="json")
    assert notifier.publish(valid) is True

    received = await asyncio.wait_for(collect(subscription), 1)
    assert [s.status for s in received] == [JobStatus.COMPLETED]
    assert "Dropping malformed job update" in caplog.text


@pytest.mark.asyncio
async def test_close_releases_subscription():
    notifier = ProgressNotifier()
    async with notifier.subscribe("job1") as subscription:
        assert notifier.subscriber_count("job1") == 1

    assert notifier.subscriber_count("job1") == 0
    assert await asyncio.wait_for(collect(subscription), 1) == []

    subscription.close()
    notifier.publish(snapshot(progress=10))


@pytest.mark.asyncio
async def test_publish_from_another_thread():
    notifier = ProgressNotifier()
    subscription = notifier.subscribe("job1")

    def publisher():
        notifier.publish(snapshot(progress=40))
        notifier.publish(snapshot(status=JobStatus.COMPLETED, progress=100))

    thread = threading.Thread(target=publisher)
    thread.start()
    received = await asyncio.wait_for(collect(subscription), 1)
    thread.join()

    assert [s.progress for s in received] == [40, 100]


@pytest.mark.asyncio
async def test_notifier_as_job_store_listener(jobs):
    notifier = ProgressNotifier()
    jobs.add_listener(notifier)
    job = jobs.create(Job(kind=JobKind.TRANSCRIPTION, video_id="video1"))
    subscription = notifier.subscribe(job.id)

    jobs.start_attempt(job.id)
    jobs.report_progress(job.id, 50)
    jobs.fail(job.id, "FetchError", "unreachable")

    received = await asyncio.wait_for(collect(subscription), 1)
    assert [(s.status, s.progress) for s in received] == [
        (JobStatus.PROCESSING, 0),
        (JobStatus.PROCESSING, 50),
        (JobStatus.FAILED, 50),
    ]
    assert received[-1].error_kind == "FetchError"
