"""
Учёт публикаций на внешних платформах.

Статус трекера двигается только вперёд: pending -> shared -> posted | failed
(failed допустим и из pending). Результат публикации сообщает сам пользователь.
"""

import enum
import logging
import os
import threading
from collections import OrderedDict
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional

from sqlalchemy.orm import Session

from errors import ErrorKind, ServiceError
from models import PostingTracker, Review

logger = logging.getLogger(__name__)

FEED_MAX_USERS = int(os.getenv("FEED_MAX_USERS", "1000"))


class TrackerStatus(str, enum.Enum):
    PENDING = "pending"
    SHARED = "shared"
    POSTED = "posted"
    FAILED = "failed"


ALLOWED_TRANSITIONS = {
    TrackerStatus.PENDING: {TrackerStatus.SHARED, TrackerStatus.FAILED},
    TrackerStatus.SHARED: {TrackerStatus.POSTED, TrackerStatus.FAILED},
    TrackerStatus.POSTED: set(),
    TrackerStatus.FAILED: set(),
}

STATUS_RANK = {
    TrackerStatus.PENDING: 0,
    TrackerStatus.SHARED: 1,
    TrackerStatus.POSTED: 2,
    TrackerStatus.FAILED: 2,
}

ENGAGEMENT_FIELDS = ("likes", "comments", "shares", "views")


def check_transition(current: str, new: str) -> None:
    current_status = TrackerStatus(current)
    new_status = TrackerStatus(new)
    if new_status not in ALLOWED_TRANSITIONS[current_status]:
        raise ServiceError(
            ErrorKind.INVALID_TRANSITION,
            f"게시 상태를 {current_status.value}에서 {new_status.value}(으)로 바꿀 수 없습니다.",
        )


def tracker_snapshot(tracker: PostingTracker) -> dict:
    return {
        "id": tracker.id,
        "user_id": tracker.user_id,
        "review_id": tracker.review_id,
        "platform_id": tracker.platform_id,
        "status": tracker.status,
        "shared_at": tracker.shared_at,
        "posted_at": tracker.posted_at,
        "engagement": tracker.engagement,
        "created_at": tracker.created_at,
    }


def _clean_engagement(engagement: Optional[dict]) -> Optional[dict]:
    if not engagement:
        return None
    cleaned = {}
    for key in ENGAGEMENT_FIELDS:
        value = engagement.get(key)
        if value is None:
            continue
        cleaned[key] = max(int(value), 0)
    return cleaned or None


def start_tracking(db: Session, review: Review, platform_id: str) -> PostingTracker:
    tracker = PostingTracker(
        user_id=review.user_id,
        review_id=review.id,
        platform_id=platform_id,
        status=TrackerStatus.PENDING.value,
    )
    db.add(tracker)
    db.commit()
    db.refresh(tracker)
    hub.publish(tracker_snapshot(tracker))
    return tracker


def mark_shared(db: Session, tracker: PostingTracker) -> PostingTracker:
    check_transition(tracker.status, TrackerStatus.SHARED)
    tracker.status = TrackerStatus.SHARED.value
    tracker.shared_at = datetime.utcnow()
    db.commit()
    db.refresh(tracker)
    hub.publish(tracker_snapshot(tracker))
    return tracker


def report_outcome(
    db: Session,
    tracker: PostingTracker,
    success: bool,
    engagement: Optional[dict] = None,
) -> PostingTracker:
    new_status = TrackerStatus.POSTED if success else TrackerStatus.FAILED
    check_transition(tracker.status, new_status)

    tracker.status = new_status.value
    if success:
        tracker.posted_at = datetime.utcnow()
        tracker.engagement = _clean_engagement(engagement)

    _refresh_review_status(tracker.review)
    db.commit()
    db.refresh(tracker)
    hub.publish(tracker_snapshot(tracker))
    return tracker


def _refresh_review_status(review: Review) -> None:
    statuses = [t.status for t in review.trackers]
    if TrackerStatus.POSTED.value in statuses:
        if review.status != "published":
            review.status = "published"
            review.published_at = datetime.utcnow()
    elif statuses and all(s == TrackerStatus.FAILED.value for s in statuses):
        review.status = "failed"


class PostingFeed:
    """
    Лента трекеров одного пользователя со статистикой.

    События применяются по одному: новая строка добавляется, изменённая
    заменяет старую. Событие с более ранним статусом, чем уже известный,
    игнорируется, поэтому порядок доставки не может откатить статус назад.
    """

    def __init__(self, limit: int = 50):
        self.limit = limit
        self._rows: Dict[int, dict] = {}

    def apply(self, snapshot: dict) -> bool:
        current = self._rows.get(snapshot["id"])
        if current is not None:
            old_rank = STATUS_RANK[TrackerStatus(current["status"])]
            new_rank = STATUS_RANK[TrackerStatus(snapshot["status"])]
            if new_rank < old_rank:
                return False
            if new_rank == old_rank and current["status"] != snapshot["status"]:
                return False

        self._rows[snapshot["id"]] = snapshot
        if len(self._rows) > self.limit:
            for row in self._ordered()[self.limit:]:
                del self._rows[row["id"]]
        return True

    def _ordered(self) -> List[dict]:
        return sorted(
            self._rows.values(),
            key=lambda r: (r["created_at"] or datetime.min, r["id"]),
            reverse=True,
        )

    def rows(self) -> List[dict]:
        return self._ordered()

    def stats(self) -> dict:
        rows = self._ordered()
        total_shares = sum(1 for r in rows if r["status"] in ("shared", "posted"))
        total_posts = sum(1 for r in rows if r["status"] == "posted")
        success_rate = (total_posts / total_shares) * 100 if total_shares else 0.0

        platform_breakdown: Dict[str, int] = {}
        for r in rows:
            platform_breakdown[r["platform_id"]] = platform_breakdown.get(r["platform_id"], 0) + 1

        with_engagement = [r["engagement"] for r in rows if r["engagement"]]
        engagement_total = sum(
            (e.get("likes") or 0) + (e.get("comments") or 0) + (e.get("shares") or 0)
            for e in with_engagement
        )
        avg_engagement = engagement_total / max(len(with_engagement), 1)

        return {
            "total_shares": total_shares,
            "total_posts": total_posts,
            "success_rate": success_rate,
            "avg_engagement": avg_engagement,
            "platform_breakdown": platform_breakdown,
            "recent_activity": rows[:10],
        }


class FeedHub:
    """
    Ленты в памяти процесса. Лента заполняется из БД один раз,
    дальше её обновляют события от start_tracking/mark_shared/report_outcome.
    Хранится не больше max_users лент, давно не запрошенные вытесняются.
    """

    def __init__(self, max_users: int = FEED_MAX_USERS):
        self.max_users = max_users
        self._feeds: "OrderedDict[str, PostingFeed]" = OrderedDict()
        # события, пришедшие пока лента пользователя грузится из БД
        self._pending: Dict[str, List[dict]] = {}
        self._lock = threading.Lock()

    def feed_for(self, user_id: str, loader: Callable[[], Iterable[dict]]) -> PostingFeed:
        with self._lock:
            feed = self._feeds.get(user_id)
            if feed is not None:
                self._feeds.move_to_end(user_id)
                return feed
            self._pending.setdefault(user_id, [])

        # запрос к БД без блокировки, чтобы не задерживать publish других пользователей
        try:
            snapshots = list(loader())
        except Exception:
            with self._lock:
                if user_id not in self._feeds:
                    self._pending.pop(user_id, None)
            raise

        with self._lock:
            feed = self._feeds.get(user_id)
            if feed is None:
                feed = PostingFeed()
                for snapshot in snapshots:
                    feed.apply(snapshot)
                self._feeds[user_id] = feed
            for snapshot in self._pending.pop(user_id, []):
                feed.apply(snapshot)
            self._feeds.move_to_end(user_id)
            while len(self._feeds) > self.max_users:
                evicted, _ = self._feeds.popitem(last=False)
                logger.debug("Posting feed for %s evicted", evicted)
            return feed

    def publish(self, snapshot: dict) -> None:
        user_id = snapshot.get("user_id")
        if not user_id:
            return
        with self._lock:
            feed = self._feeds.get(user_id)
            if feed is not None:
                feed.apply(snapshot)
            elif user_id in self._pending:
                self._pending[user_id].append(snapshot)

    def __len__(self) -> int:
        with self._lock:
            return len(self._feeds)

    def reset(self) -> None:
        with self._lock:
            self._feeds.clear()
            self._pending.clear()


hub = FeedHub()


def load_recent_trackers(db: Session, user_id: str, limit: int = 50) -> List[dict]:
    rows = (
        db.query(PostingTracker)
        .filter(PostingTracker.user_id == user_id)
        .order_by(PostingTracker.created_at.desc())
        .limit(limit)
        .all()
    )
    return [tracker_snapshot(t) for t in rows]


def posting_stats(db: Session, user_id: str) -> dict:
    feed = hub.feed_for(user_id, lambda: load_recent_trackers(db, user_id))
    return feed.stats()
