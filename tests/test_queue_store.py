import asyncio

import pytest

from core.exceptions import InvalidTransition
from core.infra.db import Database
from core.models import ItemStatus
from core.queue import QueueStore, RemoveResult

from conftest import run

URL = "https://shopee.vn/x-i.555.777"
OTHER = "https://shopee.vn/y-i.1.2"


def with_queue(db_path, body):
    async def scenario():
        async with Database(db_path) as db:
            queue = QueueStore(db)
            await queue.ensure_schema()
            return await body(queue)

    return run(scenario())


def test_enqueue_creates_pending_item(db_path):
    async def body(queue):
        result = await queue.enqueue(URL, [5])
        assert result.accepted
        assert result.reason == "Added to queue successfully"
        stored = await queue.get(result.item.id)
        assert stored.product_id == "777"
        assert stored.shop_id == "555"
        assert stored.status is ItemStatus.PENDING
        assert stored.target_ratings == [5]

    with_queue(db_path, body)


def test_enqueue_rejects_malformed_input(db_path):
    async def body(queue):
        bad_url = await queue.enqueue("https://shopee.vn/no-ids-here", [5])
        assert not bad_url.accepted
        assert bad_url.reason == "Invalid Shopee URL format"

        no_ratings = await queue.enqueue(URL, [0, 9])
        assert not no_ratings.accepted
        assert "valid rating" in no_ratings.reason

        assert (await queue.status_counts())["total"] == 0

    with_queue(db_path, body)


def test_duplicate_rating_set_is_rejected_while_active(db_path):
    async def body(queue):
        first = await queue.enqueue(URL, [5, 4])
        dup = await queue.enqueue(URL, [4, 5])
        assert not dup.accepted
        assert dup.reason == "URL already in queue with the same ratings"

        # a different rating set for the same url is a separate item
        assert (await queue.enqueue(URL, [3])).accepted

        # once the first item is finished the same set may be queued again
        item = await queue.get(first.item.id)
        assert await queue.mark_processing(item)
        item.record_rating(5)
        item.record_rating(4)
        item.complete()
        await queue.save(item)
        assert (await queue.enqueue(URL, [5, 4])).accepted

    with_queue(db_path, body)


def test_enqueue_many_splits_results_and_errors(db_path):
    async def body(queue):
        await queue.enqueue(URL, [5])
        out = await queue.enqueue_many([URL, OTHER, "garbage"], [5])
        assert [r.url for r in out.results] == [URL, OTHER]
        assert [r.accepted for r in out.results] == [False, True]
        assert [r.url for r in out.errors] == ["garbage"]

    with_queue(db_path, body)


def test_claim_batch_filters_by_rating_and_limit_in_creation_order(db_path):
    async def body(queue):
        ids = []
        for i in range(4):
            res = await queue.enqueue(f"https://shopee.vn/p-i.{i}.{i + 10}", [5] if i != 1 else [1])
            ids.append(res.item.id)

        claimed = await queue.claim_batch(2, [5])
        assert [c.id for c in claimed] == [ids[0], ids[2]]

        only_one = await queue.claim_batch(10, [1])
        assert [c.id for c in only_one] == [ids[1]]

        # claiming alone does not change status
        assert (await queue.get(ids[0])).status is ItemStatus.PENDING
        assert await queue.claim_batch(10, [0]) == []

    with_queue(db_path, body)


def test_mark_processing_is_compare_and_set(db_path):
    async def body(queue):
        await queue.enqueue(URL, [5])
        first = (await queue.claim_batch(1, [5]))[0]
        second = (await queue.claim_batch(1, [5]))[0]

        assert await queue.mark_processing(first)
        assert not await queue.mark_processing(second)

        stored = await queue.get(first.id)
        assert stored.status is ItemStatus.PROCESSING
        assert stored.last_attempted_at is not None
        assert await queue.claim_batch(10, [5]) == []

    with_queue(db_path, body)


def test_concurrent_claimers_never_share_an_item(db_path):
    async def body(queue):
        for i in range(5):
            await queue.enqueue(f"https://shopee.vn/p-i.{i}.{i + 100}", [5])

        async def worker():
            won = []
            for item in await queue.claim_batch(5, [5]):
                if await queue.mark_processing(item):
                    won.append(item.id)
            return won

        a, b = await asyncio.gather(worker(), worker())
        assert not set(a) & set(b)
        assert sorted(a + b) == sorted(i.id for i in await queue.list_items())

    with_queue(db_path, body)


def test_remove_only_pending(db_path):
    async def body(queue):
        pending = (await queue.enqueue(URL, [5])).item
        busy = (await queue.enqueue(OTHER, [5])).item
        await queue.mark_processing(busy)

        assert await queue.remove(busy.id) is RemoveResult.REJECTED
        assert await queue.remove(pending.id) is RemoveResult.REMOVED
        assert await queue.remove(pending.id) is RemoveResult.NOT_FOUND
        assert await queue.get(busy.id) is not None

    with_queue(db_path, body)


def test_requeue_error_item(db_path):
    async def body(queue):
        item = (await queue.enqueue(URL, [5, 4])).item
        await queue.mark_processing(item)
        item.record_rating(5)
        item.fail("boom")
        await queue.save(item)

        again = await queue.requeue(item.id)
        assert again.status is ItemStatus.PENDING
        stored = await queue.get(item.id)
        assert stored.error_message is None
        # progress survives the reset
        assert stored.completed_ratings == [5]
        assert await queue.requeue(9999) is None

    with_queue(db_path, body)


def test_requeue_completed_is_rejected(db_path):
    async def body(queue):
        item = (await queue.enqueue(URL, [5])).item
        await queue.mark_processing(item)
        item.record_rating(5)
        item.complete()
        await queue.save(item)
        with pytest.raises(InvalidTransition):
            await queue.requeue(item.id)

    with_queue(db_path, body)


def test_list_items_and_counts(db_path):
    async def body(queue):
        a = (await queue.enqueue(URL, [5])).item
        await queue.enqueue(OTHER, [1, 2])
        await queue.mark_processing(a)

        assert [i.url for i in await queue.list_items(status="pending")] == [OTHER]
        assert [i.url for i in await queue.list_items(rating=2)] == [OTHER]
        assert len(await queue.list_items(limit=1)) == 1

        counts = await queue.status_counts()
        assert counts == {"pending": 1, "processing": 1, "completed": 0, "error": 0, "total": 2}

    with_queue(db_path, body)
