from datetime import date, datetime, timedelta, timezone
from types import SimpleNamespace

import pytest

from gamification import (
    award_streak_bonus,
    calculate_streak_bonus,
    calculate_user_level,
    check_badges,
)
from models import PostingTracker, Review, UserPoints, to_local

TODAY = datetime(2024, 5, 10, 10, 0)


def _days_ago(*offsets):
    return [TODAY - timedelta(days=d) for d in offsets]


def test_empty_streak():
    assert calculate_streak_bonus([]) == {
        "current_streak": 0,
        "max_streak": 0,
        "next_bonus": 1,
        "bonus_multiplier": 1.0,
    }


def test_streak_counts_distinct_days():
    posted = _days_ago(0, 0, 1, 2, 5, 6)

    streak = calculate_streak_bonus(posted)

    assert streak["current_streak"] == 3
    assert streak["max_streak"] == 3
    assert streak["next_bonus"] == 3
    assert streak["bonus_multiplier"] == 1.1


def test_streak_current_run_is_latest():
    streak = calculate_streak_bonus(_days_ago(0, 3, 4, 5, 6))

    assert streak["current_streak"] == 1
    assert streak["max_streak"] == 4
    assert streak["next_bonus"] == 3
    assert streak["bonus_multiplier"] == 1.0


def test_streak_multiplier_is_capped():
    streak = calculate_streak_bonus(_days_ago(*range(40)))

    assert streak["current_streak"] == 40
    assert streak["bonus_multiplier"] == 2.0


@pytest.mark.parametrize(
    "points,level,progress",
    [(0, 1, 0.0), (150, 2, 25.0), (300, 3, 0.0), (999, 4, 99.75), (5000, 5, 100.0)],
)
def test_user_level(points, level, progress):
    result = calculate_user_level(points)

    assert result["level"] == level
    assert result["progress"] == pytest.approx(progress)
    assert result["points"] == points


def test_badges_progress():
    reviews = [SimpleNamespace(rating=5), SimpleNamespace(rating=5), SimpleNamespace(rating=3)]
    # время в UTC: 23:30 UTC = 08:30 по Сеулу
    postings = [
        SimpleNamespace(platform_id="naver", posted_at=datetime(2024, 4, 30, 23, 30)),
        SimpleNamespace(platform_id="instagram", posted_at=datetime(2024, 5, 2, 5, 0)),
        SimpleNamespace(platform_id="kakao", posted_at=datetime(2024, 5, 3, 11, 0)),
    ]

    badges = {b["id"]: b for b in check_badges(1200, reviews, postings, 3)}

    assert badges["first_review"]["earned"] is True
    assert badges["review_master"]["progress"] == 3
    assert badges["review_master"]["earned"] is False
    assert badges["platform_explorer"]["earned"] is True
    assert badges["point_collector"]["earned"] is True
    assert badges["quality_reviewer"]["progress"] == 2
    assert badges["early_bird"]["progress"] == 1
    assert badges["early_bird"]["earned"] is True
    assert badges["streak_keeper"]["max_progress"] == 7


def test_early_bird_uses_local_hour():
    morning_kst = SimpleNamespace(platform_id="naver", posted_at=datetime(2026, 10, 18, 23, 30))
    afternoon_kst = SimpleNamespace(platform_id="naver", posted_at=datetime(2026, 10, 18, 8, 30))

    early = {b["id"] for b in check_badges(0, [], [morning_kst], 0)}
    late = {b["id"] for b in check_badges(0, [], [afternoon_kst], 0)}

    assert "early_bird" in early
    assert "early_bird" not in late


def test_streak_days_split_at_local_midnight():
    # 16:00 UTC 9 мая = 01:00 10 мая по Сеулу, 14:00 UTC 10 мая = 23:00 10 мая
    same_local_day = calculate_streak_bonus([datetime(2024, 5, 9, 16, 0), datetime(2024, 5, 10, 14, 0)])
    # 14:00 UTC 9 мая = 23:00 9 мая, 16:00 UTC 9 мая = 01:00 10 мая
    consecutive = calculate_streak_bonus([datetime(2024, 5, 9, 14, 0), datetime(2024, 5, 9, 16, 0)])

    assert same_local_day["current_streak"] == 1
    assert consecutive["current_streak"] == 2


def test_local_time_of_aware_timestamp():
    ts = datetime(2024, 5, 9, 16, 0, tzinfo=timezone.utc)

    assert to_local(ts) == to_local(datetime(2024, 5, 9, 16, 0))
    assert to_local(ts).hour == 1


def test_badges_without_progress_are_hidden():
    assert check_badges(0, [], [], 0) == []


def test_award_streak_bonus_once_per_day(db_session, branch):
    review = Review(branch_id=branch.id, user_id="u1", rating=5, keywords=[], final_content="x")
    db_session.add(review)
    db_session.flush()
    for posted_at in _days_ago(0, 1, 2):
        db_session.add(
            PostingTracker(
                user_id="u1",
                review_id=review.id,
                platform_id="naver",
                status="posted",
                posted_at=posted_at,
            )
        )
    db_session.commit()

    first = award_streak_bonus(db_session, "u1", 100, today=date(2024, 5, 10))
    second = award_streak_bonus(db_session, "u1", 100, today=date(2024, 5, 10))

    assert first["bonus_points"] == 10
    assert first["total_points"] == 110
    assert second["bonus_points"] == 0
    assert db_session.query(UserPoints).filter(UserPoints.source == "streak_bonus").count() == 1
