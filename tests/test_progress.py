"""Tests for the progress broadcaster."""

import asyncio

import pytest

from docintake.core.progress import (
    ProgressBroadcaster,
    ProgressEvent,
    ProgressReporter,
    ProgressStep,
)


def _event(step=ProgressStep.ANALYZING, upload_id="u1"):
    return ProgressEvent(intake_id="i1", customer_id="c1", upload_id=upload_id, step=step, message="...")


def test_publish_without_listeners_is_noop():
    broadcaster = ProgressBroadcaster()
    assert broadcaster.publish("nobody", _event()) == 0


@pytest.mark.asyncio
async def test_subscribe_receives_events():
    broadcaster = ProgressBroadcaster()
    with broadcaster.subscribe("c1") as subscription:
        assert broadcaster.publish("c1", _event()) == 1
        event = await asyncio.wait_for(subscription.get(), timeout=1)
        assert event.step == ProgressStep.ANALYZING


@pytest.mark.asyncio
async def test_disposal_removes_listener_and_key():
    broadcaster = ProgressBroadcaster()
    first = broadcaster.subscribe("c1")
    second = broadcaster.subscribe("c1")
    assert broadcaster.listener_count("c1") == 2

    first.close()
    assert broadcaster.listener_count("c1") == 1
    assert "c1" in broadcaster.keys()

    second.close()
    second.close()
    assert "c1" not in broadcaster.keys()


@pytest.mark.asyncio
async def test_full_listener_is_dropped_without_blocking_others():
    broadcaster = ProgressBroadcaster(queue_size=1)
    slow = broadcaster.subscribe("c1")
    fast = broadcaster.subscribe("c1")

    broadcaster.publish("c1", _event(upload_id="a"))
    await fast.get()

    delivered = broadcaster.publish("c1", _event(upload_id="b"))

    assert delivered == 1
    assert slow.closed
    assert broadcaster.listener_count("c1") == 1
    assert (await fast.get()).upload_id == "b"


@pytest.mark.asyncio
async def test_iteration_ends_on_close():
    broadcaster = ProgressBroadcaster()
    subscription = broadcaster.subscribe("i1")
    broadcaster.publish("i1", _event(step=ProgressStep.COMPLETE))
    subscription.close()

    seen = [event async for event in subscription]
    assert [e.step for e in seen] == [ProgressStep.COMPLETE]


@pytest.mark.asyncio
async def test_reporter_publishes_to_intake_and_customer_with_fixed_progress():
    broadcaster = ProgressBroadcaster()
    by_intake = broadcaster.subscribe("i1")
    by_customer = broadcaster.subscribe("c1")

    reporter = ProgressReporter(broadcaster, "i1", "c1", "upload-9")
    reporter.step(ProgressStep.MATCHING, "Matching documents to requests...")
    reporter.error("boom")

    for subscription in (by_intake, by_customer):
        matching = await subscription.get()
        error = await subscription.get()
        assert (matching.step, matching.progress, matching.upload_id) == (ProgressStep.MATCHING, 60, "upload-9")
        assert (error.step, error.progress) == (ProgressStep.ERROR, 0)
        assert error.is_terminal
