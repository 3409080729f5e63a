from datetime import datetime, timedelta

import pytest

from errors import ErrorKind, ServiceError
from models import PostingTracker, Review
from tracking import (
    FeedHub,
    PostingFeed,
    check_transition,
    load_recent_trackers,
    mark_shared,
    report_outcome,
    start_tracking,
)

T0 = datetime(2024, 5, 1, 12, 0)


def _snap(tracker_id, status, platform="naver", engagement=None, minutes=0, user_id="u1"):
    return {
        "id": tracker_id,
        "user_id": user_id,
        "review_id": 1,
        "platform_id": platform,
        "status": status,
        "shared_at": None,
        "posted_at": None,
        "engagement": engagement,
        "created_at": T0 + timedelta(minutes=minutes),
    }


@pytest.mark.parametrize(
    "current,new",
    [("pending", "shared"), ("pending", "failed"), ("shared", "posted"), ("shared", "failed")],
)
def test_allowed_transitions(current, new):
    check_transition(current, new)


@pytest.mark.parametrize(
    "current,new",
    [("pending", "posted"), ("posted", "failed"), ("failed", "shared"), ("shared", "pending"), ("posted", "posted")],
)
def test_rejected_transitions(current, new):
    with pytest.raises(ServiceError) as exc:
        check_transition(current, new)
    assert exc.value.kind == ErrorKind.INVALID_TRANSITION


def test_feed_ignores_stale_events():
    feed = PostingFeed()
    feed.apply(_snap(1, "pending"))
    feed.apply(_snap(1, "posted"))

    assert feed.apply(_snap(1, "shared")) is False
    assert feed.apply(_snap(1, "failed")) is False
    assert feed.rows()[0]["status"] == "posted"


def test_feed_orders_newest_first_and_trims():
    feed = PostingFeed(limit=3)
    for i in range(5):
        feed.apply(_snap(i, "pending", minutes=i))

    assert [r["id"] for r in feed.rows()] == [4, 3, 2]


def test_feed_stats():
    feed = PostingFeed()
    feed.apply(_snap(1, "posted", engagement={"likes": 10, "comments": 4}))
    feed.apply(_snap(2, "shared", platform="instagram"))
    feed.apply(_snap(3, "failed", platform="instagram"))
    feed.apply(_snap(4, "posted", engagement={"likes": 2, "shares": 2}))

    stats = feed.stats()

    assert stats["total_shares"] == 3
    assert stats["total_posts"] == 2
    assert stats["success_rate"] == pytest.approx(200 / 3)
    assert stats["avg_engagement"] == 9.0
    assert stats["platform_breakdown"] == {"naver": 2, "instagram": 2}


def test_empty_feed_stats():
    stats = PostingFeed().stats()
    assert stats["success_rate"] == 0.0
    assert stats["avg_engagement"] == 0.0
    assert stats["recent_activity"] == []


def test_hub_only_updates_loaded_feeds():
    hub = FeedHub()
    hub.publish(_snap(1, "pending"))

    feed = hub.feed_for("u1", lambda: [_snap(2, "pending")])
    hub.publish(_snap(2, "shared"))
    hub.publish(_snap(3, "pending", user_id="u2"))
    hub.publish(_snap(4, "pending", user_id=None))

    assert [(r["id"], r["status"]) for r in feed.rows()] == [(2, "shared")]
    assert hub.feed_for("u1", lambda: []) is feed


def test_hub_keeps_at_most_max_users():
    hub = FeedHub(max_users=2)
    loads = []

    def loader(user_id):
        def load():
            loads.append(user_id)
            return [_snap(1, "pending", user_id=user_id)]
        return load

    for user_id in ("u1", "u2", "u1", "u3", "u4"):
        hub.feed_for(user_id, loader(user_id))
        assert len(hub) <= 2

    # u1 был запрошен недавно, но u3 и u4 новее
    hub.feed_for("u1", loader("u1"))
    assert loads == ["u1", "u2", "u3", "u4", "u1"]
    assert len(hub) == 2


def test_hub_recently_used_feed_survives():
    hub = FeedHub(max_users=2)
    first = hub.feed_for("u1", lambda: [])
    hub.feed_for("u2", lambda: [])
    hub.feed_for("u1", lambda: [])
    hub.feed_for("u3", lambda: [])

    assert hub.feed_for("u1", lambda: [_snap(9, "pending")]) is first
    assert first.rows() == []


def test_hub_keeps_events_published_during_load():
    hub = FeedHub()

    def loader():
        # событие приходит, пока идёт запрос к БД
        hub.publish(_snap(1, "shared"))
        return [_snap(1, "pending")]

    feed = hub.feed_for("u1", loader)

    assert [(r["id"], r["status"]) for r in feed.rows()] == [(1, "shared")]


def test_hub_drops_buffer_when_load_fails():
    hub = FeedHub()

    def loader():
        raise RuntimeError("db down")

    with pytest.raises(RuntimeError):
        hub.feed_for("u1", loader)

    hub.publish(_snap(1, "pending"))
    assert len(hub) == 0
    assert hub.feed_for("u1", lambda: []).rows() == []


def test_tracker_service_flow(db_session, branch):
    review = Review(branch_id=branch.id, user_id="u1", rating=5, keywords=["맛있음"], final_content="좋아요")
    db_session.add(review)
    db_session.commit()

    tracker = start_tracking(db_session, review, "naver")
    assert tracker.status == "pending"

    tracker = mark_shared(db_session, tracker)
    assert tracker.shared_at is not None

    tracker = report_outcome(db_session, tracker, True, {"likes": 3, "views": -5, "unknown": 1})
    assert tracker.status == "posted"
    assert tracker.engagement == {"likes": 3, "views": 0}
    assert review.status == "published"
    assert review.published_at is not None

    rows = load_recent_trackers(db_session, "u1")
    assert [r["status"] for r in rows] == ["posted"]
    assert db_session.query(PostingTracker).count() == 1
