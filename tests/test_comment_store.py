import json

from core.infra.db import Database
from plugins.shopee_ratings import CommentStore, StoreResult, derive_comment_id, parse_ratings_page, to_comment
from plugins.shopee_ratings.export import export_comments

from conftest import page, record, run

URL = "https://shopee.vn/x-i.555.777"


def with_store(db_path, body):
    async def scenario():
        async with Database(db_path) as db:
            store = CommentStore(db)
            await store.ensure_schema()
            return await body(store)

    return run(scenario())


def test_comment_id_fallbacks():
    assert derive_comment_id({"cmtid": 42, "order_id": 7}) == "42"
    assert derive_comment_id({"cmtid": None, "order_id": 7}) == "7"
    # zero is a real provider id
    assert derive_comment_id({"cmtid": 0, "order_id": 7}) == "0"
    assert derive_comment_id({"cmtid": "", "order_id": 0}) == "0"
    generated = derive_comment_id({})
    assert generated.startswith("unknown-")
    assert generated != derive_comment_id({})


def test_parse_page_shapes():
    records, has_next = parse_ratings_page(page([record(1)], has_next_page=True))
    assert len(records) == 1 and has_next is True

    # a short page still continues when the provider says so
    assert parse_ratings_page({"data": {"ratings": [], "has_next_page": True}}) == ([], True)
    assert parse_ratings_page({"error": "x"}) == ([], False)
    assert parse_ratings_page(None) == ([], False)


def test_to_comment_maps_fields():
    raw = record(
        99,
        star=4,
        rating_imgs=["img1"],
        rating_videos=[{"url": "v"}],
        author_userid="123",
        anonymous=True,
    )
    comment = to_comment(raw, product_id="777", url=URL, rating=4)
    assert comment.comment_id == "99"
    assert comment.rating_star == 4
    assert comment.comment_text == "comment 99"
    assert comment.commenter_username == "user99"
    assert comment.author_user_id == 123
    assert comment.rating_images == ["img1"]
    assert comment.anonymous is True
    assert comment.comment_timestamp.year == 2023
    assert comment.raw_data == raw
    assert comment.saved_to_sheet is False


def test_to_comment_falls_back_to_requested_rating():
    comment = to_comment({"cmtid": 1, "rating_star": 0}, product_id="777", url=URL, rating=2)
    assert comment.rating_star == 2
    assert comment.commenter_username == "Unknown"


def test_to_comment_tolerates_odd_like_count():
    for raw_count in ("n/a", None, [3]):
        comment = to_comment(record(1, like_count=raw_count), product_id="777", url=URL, rating=5)
        assert comment.like_count == 0
    assert to_comment(record(1, like_count="7"), product_id="777", url=URL, rating=5).like_count == 7


def test_store_is_idempotent(db_path):
    async def body(store):
        comment = to_comment(record(1), product_id="777", url=URL, rating=5)
        assert await store.store("777", comment) is StoreResult.INSERTED

        changed = comment.model_copy(update={"comment_text": "edited"})
        assert await store.store("777", changed) is StoreResult.ALREADY_PRESENT

        stored = await store.get("777", "1")
        assert stored.comment_text == "comment 1"
        assert await store.count() == 1

        # same comment id under another product is a different record
        other = to_comment(record(1), product_id="888", url=URL, rating=5)
        assert await store.store("888", other) is StoreResult.INSERTED
        assert await store.count() == 2

    with_store(db_path, body)


def test_uniqueness_is_enforced_by_the_table(db_path):
    async def body(store):
        comment = to_comment(record(5), product_id="777", url=URL, rating=5)
        await store.store("777", comment)
        cursor = await store.db.execute(
            "SELECT sql FROM sqlite_master WHERE name = ?", (store.TABLE,)
        )
        ddl = (await cursor.fetchone())[0]
        assert "UNIQUE (product_id, comment_id)" in ddl

    with_store(db_path, body)


def test_round_trip_keeps_json_columns(db_path):
    async def body(store):
        raw = record(7, rating_imgs=["a", "b"], rating_star_detail={"quality": 5})
        await store.store("777", to_comment(raw, product_id="777", url=URL, rating=5))
        stored = await store.get("777", "7")
        assert stored.rating_images == ["a", "b"]
        assert stored.rating_star_detail == {"quality": 5}
        assert stored.raw_data["cmtid"] == 7

    with_store(db_path, body)


def test_listing_and_pagination(db_path):
    async def body(store):
        for i in range(5):
            raw = record(i, star=5 if i % 2 == 0 else 1, ctime=1700000000 + i)
            await store.store("777", to_comment(raw, product_id="777", url=URL, rating=raw["rating_star"]))

        first = await store.list_comments("777", limit=2, page=1)
        assert [c.comment_id for c in first] == ["4", "3"]
        third = await store.list_comments("777", limit=2, page=3)
        assert [c.comment_id for c in third] == ["0"]

        assert await store.count("777", 5) == 3
        assert {c.rating_star for c in await store.list_comments(rating=1, limit=None)} == {1}

    with_store(db_path, body)


def test_sync_boundary(db_path):
    async def body(store):
        for i in range(3):
            await store.store("777", to_comment(record(i), product_id="777", url=URL, rating=5))

        assert await store.sync_counts() == {"total": 3, "synced": 0, "pending": 3}
        assert await store.mark_synced("777", "1", row_index=12)
        assert not await store.mark_synced("777", "nope")

        assert [c.comment_id for c in await store.unsynced("777")] == ["0", "2"]
        assert (await store.get("777", "1")).sheet_row_index == 12
        assert await store.sync_counts() == {"total": 3, "synced": 1, "pending": 2}

    with_store(db_path, body)


def test_export_csv_and_json(db_path, tmp_path):
    async def body(store):
        for i in range(2):
            await store.store("777", to_comment(record(i, rating_imgs=["x"]), product_id="777", url=URL, rating=5))
        csv_rows = await export_comments(store, str(tmp_path / "out" / "c.csv"), "csv")
        json_rows = await export_comments(store, str(tmp_path / "c.json"), "json", product_id="777")
        return csv_rows, json_rows

    assert with_store(db_path, body) == (2, 2)

    csv_text = (tmp_path / "out" / "c.csv").read_text(encoding="utf-8-sig")
    assert csv_text.splitlines()[0].startswith("product_id,comment_id,rating_star")
    data = json.loads((tmp_path / "c.json").read_text(encoding="utf-8"))
    assert {row["comment_id"] for row in data} == {"0", "1"}
    assert data[0]["rating_images"] == "x"
