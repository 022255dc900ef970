import asyncio

import pytest

from genbridge.core.execution import CancellationToken, guarded, run_batch


def test_token_external_cancelled_trips_check():
    cancelled = False

    def external_cancelled() -> bool:
        return cancelled

    token = CancellationToken(external_cancelled=external_cancelled)

    token.check_cancelled()  # ok

    cancelled = True
    with pytest.raises(asyncio.CancelledError):
        token.check_cancelled()
    assert token.is_cancelled


def test_token_run_aborts_slow_call():
    async def scenario():
        token = CancellationToken()
        finished = False

        async def slow():
            nonlocal finished
            await asyncio.sleep(10)
            finished = True

        async def stop_soon():
            await asyncio.sleep(0.01)
            token.cancel()

        stopper = asyncio.create_task(stop_soon())
        with pytest.raises(asyncio.CancelledError):
            await token.run(slow())
        await stopper
        return finished

    assert asyncio.run(scenario()) is False


def test_token_run_refuses_when_already_cancelled():
    async def scenario():
        token = CancellationToken()
        token.cancel()

        async def work():
            return 1

        with pytest.raises(asyncio.CancelledError):
            await token.run(work())

    asyncio.run(scenario())


def test_guarded_without_token():
    async def work():
        return "done"

    assert asyncio.run(guarded(None, work())) == "done"


def test_run_batch_stops_and_keeps_results():
    async def scenario():
        token = CancellationToken()
        progress = []

        async def worker(item, tok):
            if item == 3:
                tok.cancel()
            return item * 10

        batch = await run_batch(
            [1, 2, 3, 4, 5], worker, token,
            on_progress=lambda done, total: progress.append((done, total)),
        )
        return batch, progress

    batch, progress = asyncio.run(scenario())

    assert batch.cancelled
    assert batch.results == [10, 20, 30]
    assert batch.completed == 3
    assert batch.total == 5
    assert progress == [(1, 5), (2, 5), (3, 5)]


def test_run_batch_cancel_during_item():
    async def scenario():
        token = CancellationToken()

        async def worker(item, tok):
            if item == 2:
                tok.cancel()
                await tok.run(asyncio.sleep(10))
            return item

        return await run_batch([1, 2, 3], worker, token)

    batch = asyncio.run(scenario())

    assert batch.cancelled
    assert batch.results == [1]


def test_run_batch_records_item_errors():
    async def scenario():
        async def worker(item, tok):
            if item == "bad":
                raise RuntimeError("boom")
            return item.upper()

        return await run_batch(["a", "bad", "c"], worker, CancellationToken())

    batch = asyncio.run(scenario())

    assert not batch.cancelled
    assert batch.results == ["A", "C"]
    assert batch.errors == [(1, "boom")]


def test_run_batch_stop_on_error():
    async def scenario():
        async def worker(item, tok):
            raise ValueError(f"bad {item}")

        return await run_batch([1, 2], worker, CancellationToken(), stop_on_error=True)

    batch = asyncio.run(scenario())

    assert batch.results == []
    assert batch.errors == [(0, "bad 1")]
