import asyncio

import pytest

from examflow.dedup import RequestDeduplicator


def test_concurrent_loads_share_one_call():
    async def main():
        dedup = RequestDeduplicator()
        calls = []

        async def produce():
            calls.append(1)
            await asyncio.sleep(0.01)
            return "session"

        results = await asyncio.gather(*(dedup.load_once("exam_1", produce) for _ in range(3)))
        assert results == ["session"] * 3
        assert len(calls) == 1
        assert not dedup.in_flight("exam_1")

        # finished entries are gone, so the next call goes out again
        assert await dedup.load_once("exam_1", produce) == "session"
        assert len(calls) == 2

    asyncio.run(main())


def test_different_keys_do_not_share():
    async def main():
        dedup = RequestDeduplicator()
        calls = []

        async def produce(key):
            calls.append(key)
            await asyncio.sleep(0.01)
            return key

        results = await asyncio.gather(
            dedup.load_once("exam_a", lambda: produce("a")),
            dedup.load_once("exam_b", lambda: produce("b")),
        )
        assert results == ["a", "b"]
        assert sorted(calls) == ["a", "b"]

    asyncio.run(main())


def test_failed_shared_request_does_not_poison_waiters():
    async def main():
        dedup = RequestDeduplicator()
        calls = []
        gate = asyncio.Event()

        async def flaky():
            calls.append(1)
            if len(calls) == 1:
                await gate.wait()
                raise RuntimeError("boom")
            return "fresh"

        first = asyncio.ensure_future(dedup.load_once("exam_1", flaky))
        await asyncio.sleep(0)
        second = asyncio.ensure_future(dedup.load_once("exam_1", flaky))
        await asyncio.sleep(0)
        assert dedup.in_flight("exam_1")
        gate.set()

        results = await asyncio.gather(first, second, return_exceptions=True)
        assert isinstance(results[0], RuntimeError)
        assert results[1] == "fresh"
        assert len(calls) == 2
        assert len(dedup) == 0

    asyncio.run(main())


def test_failure_clears_entry_for_next_caller():
    async def main():
        dedup = RequestDeduplicator()

        async def broken():
            raise ConnectionError("down")

        with pytest.raises(ConnectionError):
            await dedup.load_once("exam_1", broken)
        assert not dedup.in_flight("exam_1")

        async def ok():
            return "back"

        assert await dedup.load_once("exam_1", ok) == "back"

    asyncio.run(main())


def test_cancelled_waiter_does_not_cancel_shared_request():
    async def main():
        dedup = RequestDeduplicator()

        async def produce():
            await asyncio.sleep(0.02)
            return "session"

        first = asyncio.ensure_future(dedup.load_once("exam_1", produce))
        second = asyncio.ensure_future(dedup.load_once("exam_1", produce))
        await asyncio.sleep(0)
        first.cancel()
        assert await second == "session"
        assert first.cancelled()

    asyncio.run(main())


def test_clear_forgets_in_flight_entries():
    async def main():
        dedup = RequestDeduplicator()
        gate = asyncio.Event()

        async def produce():
            await gate.wait()
            return "late"

        task = asyncio.ensure_future(dedup.load_once("exam_1", produce))
        await asyncio.sleep(0)
        dedup.clear()
        assert not dedup.in_flight("exam_1")
        gate.set()
        assert await task == "late"

    asyncio.run(main())


def test_empty_registry_is_still_truthy():
    dedup = RequestDeduplicator()
    assert len(dedup) == 0
    assert (dedup or RequestDeduplicator()) is dedup
