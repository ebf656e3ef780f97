import asyncio

from coach_review.bot.services.live_query import LiveQueryHub, comments_topic
from coach_review.bot.services.submission import SubmissionService


class Counter:
    def __init__(self) -> None:
        self.value = 0

    async def load(self) -> int:
        self.value += 1
        return self.value


async def test_subscribe_delivers_initial_snapshot_then_every_publish():
    hub = LiveQueryHub()
    counter = Counter()
    seen: list[int] = []

    unsubscribe = await hub.subscribe("submissions", counter.load, seen.append)
    assert seen == [1]

    assert await hub.publish("submissions") == 1
    assert await hub.publish("other") == 0
    await hub.drain()
    assert seen == [1, 2]

    unsubscribe()
    unsubscribe()
    await hub.publish("submissions")
    await hub.drain()
    assert seen == [1, 2]
    assert hub.subscription_count == 0


async def test_keyed_subscriptions_only_hear_their_key():
    hub = LiveQueryHub()
    a, b = Counter(), Counter()
    seen_a: list[int] = []
    seen_b: list[int] = []
    await hub.subscribe("submissions", a.load, seen_a.append, key="a")
    await hub.subscribe("submissions", b.load, seen_b.append, key="b")

    await hub.publish("submissions", "a")
    await hub.drain()
    assert seen_a == [1, 2]
    assert seen_b == [1]

    # an unkeyed publish reaches everyone
    await hub.publish("submissions")
    await hub.drain()
    assert seen_a == [1, 2, 3]
    assert seen_b == [1, 2]


async def test_failing_loader_or_callback_does_not_break_other_subscribers():
    hub = LiveQueryHub()
    healthy = Counter()
    seen: list[int] = []

    async def broken_loader():
        raise RuntimeError("query failed")

    def broken_callback(_value):
        raise RuntimeError("render failed")

    await hub.subscribe(comments_topic("x"), broken_loader, seen.append)
    await hub.subscribe(comments_topic("x"), healthy.load, broken_callback)
    await hub.subscribe(comments_topic("x"), healthy.load, seen.append)

    assert await hub.publish(comments_topic("x")) == 3
    await hub.drain()
    assert seen == [2, 4]


async def test_async_callbacks_are_awaited():
    hub = LiveQueryHub()
    counter = Counter()
    seen: list[int] = []

    async def on_change(value: int) -> None:
        seen.append(value)

    await hub.subscribe("t", counter.load, on_change)
    await hub.publish("t")
    await hub.drain()
    assert seen == [1, 2]


async def test_publish_does_not_wait_for_slow_listeners():
    hub = LiveQueryHub()
    counter = Counter()
    release = asyncio.Event()
    seen: list[int] = []

    async def slow_redraw(value: int) -> None:
        if value > 1:
            await release.wait()
        seen.append(value)

    await hub.subscribe("submissions", counter.load, slow_redraw)
    await asyncio.wait_for(hub.publish("submissions"), timeout=0.5)
    assert seen == [1]

    release.set()
    await hub.drain()
    assert seen == [1, 2]


async def test_burst_of_publishes_is_delivered_in_order():
    hub = LiveQueryHub()
    counter = Counter()
    seen: list[int] = []
    gate = asyncio.Event()

    async def redraw(value: int) -> None:
        if value == 2:
            await gate.wait()
        seen.append(value)

    await hub.subscribe("submissions", counter.load, redraw)
    await hub.publish("submissions")
    await asyncio.sleep(0)
    # these land while the first refresh is still drawing
    for _ in range(3):
        await hub.publish("submissions")

    gate.set()
    await hub.drain()
    assert seen == [1, 2, 3]
    assert seen == sorted(seen)


async def test_writes_return_before_listeners_finish(athlete, coach, make_submission):
    submission = await make_submission(athlete)
    release = asyncio.Event()
    redraws: list[str] = []

    async def hung_redraw(rows) -> None:
        if redraws:
            await release.wait()
        redraws.append("drawn")

    await SubmissionService().subscribe(SubmissionService().queue_scope(coach), hung_redraw)
    claimed = await asyncio.wait_for(SubmissionService().claim(submission.id, coach), timeout=0.5)
    assert claimed.claimed_by == coach.id

    release.set()
    await LiveQueryHub().drain()
    assert redraws == ["drawn", "drawn"]
