from datetime import datetime, timedelta, timezone

from civic_feed.models import ContentItem, EngagementCounters
from civic_feed.pipeline.dedupe import dedupe_items
from civic_feed.pipeline.normalizer import normalize_items


def make_item(item_id: str, created_at: datetime | None = None, author_id: str = "author", likes: int = 0) -> ContentItem:
    return ContentItem(
        id=item_id,
        author_id=author_id,
        created_at=created_at or datetime.now(timezone.utc),
        counters=EngagementCounters(likes=likes),
    )


def test_dedupe_keeps_first_copy_in_first_position():
    items = [make_item("1", author_id="first"), make_item("2"), make_item("1", author_id="second")]
    deduped = dedupe_items(items)
    assert [item.id for item in deduped] == ["1", "2"]
    assert deduped[0].author_id == "first"


def test_dedupe_prefers_the_fresher_engagement_snapshot():
    items = [make_item("1", author_id="stale", likes=3), make_item("2"), make_item("1", author_id="fresh", likes=9)]
    deduped = dedupe_items(items)
    assert [item.id for item in deduped] == ["1", "2"]
    assert deduped[0].author_id == "fresh"
    assert deduped[0].counters.likes == 9


def test_normalize_items_makes_timestamps_utc():
    naive = make_item("naive", datetime(2026, 3, 1, 12, 0))
    offset = make_item("offset", datetime(2026, 3, 1, 14, 0, tzinfo=timezone(timedelta(hours=2))))
    offset.tags = [" Public Post ", ""]

    normalized = normalize_items([naive, offset])

    assert normalized[0].created_at == datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
    assert normalized[1].created_at.tzinfo == timezone.utc
    assert normalized[1].created_at.hour == 12
    assert normalized[1].tags == ["Public Post"]
