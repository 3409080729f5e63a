import logging
import math
from datetime import date, datetime
from typing import Iterable, List, Optional

from sqlalchemy.orm import Session

from models import PostingTracker, Review, UserPoints, to_local
from points_utils import award_points

logger = logging.getLogger(__name__)

BADGES = [
    {"id": "first_review", "name": "첫 리뷰", "description": "첫 번째 리뷰를 작성했어요", "icon": "🌟", "target": 1},
    {"id": "review_master", "name": "리뷰 마스터", "description": "10개의 리뷰를 작성했어요", "icon": "👑", "target": 10},
    {"id": "platform_explorer", "name": "플랫폼 탐험가", "description": "3개 플랫폼에 모두 게시했어요", "icon": "🚀", "target": 3},
    {"id": "social_butterfly", "name": "소셜 나비", "description": "20개의 리뷰를 게시했어요", "icon": "🦋", "target": 20},
    {"id": "point_collector", "name": "포인트 수집가", "description": "1000포인트를 획득했어요", "icon": "💰", "target": 1000},
    {"id": "streak_keeper", "name": "연속 게시왕", "description": "7일 연속으로 게시했어요", "icon": "🔥", "target": 7},
    {"id": "quality_reviewer", "name": "품질 리뷰어", "description": "평점 5점 리뷰를 5개 작성했어요", "icon": "⭐", "target": 5},
    {"id": "early_bird", "name": "일찍 일어나는 새", "description": "오전 9시 이전에 리뷰를 게시했어요", "icon": "🐦", "target": 1},
]

LEVELS = [
    {"level": 1, "name": "리뷰 초보", "points": 0, "benefits": ["기본 포인트 획득"]},
    {"level": 2, "name": "리뷰 애호가", "points": 100, "benefits": ["+10% 보너스 포인트", "특별 배지"]},
    {"level": 3, "name": "리뷰 전문가", "points": 300, "benefits": ["+20% 보너스 포인트", "우선 지원"]},
    {"level": 4, "name": "리뷰 마스터", "points": 600, "benefits": ["+30% 보너스 포인트", "VIP 혜택"]},
    {"level": 5, "name": "리뷰 레전드", "points": 1000, "benefits": ["+50% 보너스 포인트", "전용 기능"]},
]

MAX_STREAK_MULTIPLIER = 2.0
MAX_BONUS_STEPS = 10    # +0.1 за каждые 3 дня, максимум x2.0


def calculate_user_level(total_points: int) -> dict:
    current = LEVELS[0]
    following = LEVELS[1]
    for i, level in enumerate(LEVELS):
        if total_points >= level["points"]:
            current = level
            following = LEVELS[i + 1] if i + 1 < len(LEVELS) else level

    if following["points"] > current["points"]:
        progress = (total_points - current["points"]) / (following["points"] - current["points"]) * 100
    else:
        progress = 100.0

    return {
        "level": current["level"],
        "name": current["name"],
        "points": total_points,
        "next_level_points": following["points"],
        "progress": min(progress, 100.0),
        "benefits": current["benefits"],
    }


def _posting_days(posted_at: Iterable[datetime]) -> List[date]:
    return sorted({to_local(ts).date() for ts in posted_at if ts}, reverse=True)


def calculate_streak_bonus(posted_at: Iterable[datetime]) -> dict:
    """
    Серия = подряд идущие календарные дни (APP_TIMEZONE), в которые был хотя бы один пост.
    current_streak считается от последнего дня публикации назад.
    """
    days = _posting_days(posted_at)
    if not days:
        return {"current_streak": 0, "max_streak": 0, "next_bonus": 1, "bonus_multiplier": 1.0}

    runs = []
    run = 1
    for newer, older in zip(days, days[1:]):
        if (newer - older).days == 1:
            run += 1
        else:
            runs.append(run)
            run = 1
    runs.append(run)

    current_streak = runs[0]
    max_streak = max(runs)
    multiplier = 1 + (current_streak // 3) * 0.1

    return {
        "current_streak": current_streak,
        "max_streak": max_streak,
        "next_bonus": math.ceil(current_streak / 3) * 3,
        "bonus_multiplier": round(min(multiplier, MAX_STREAK_MULTIPLIER), 2),
    }


def check_badges(
    total_points: int,
    reviews: List[Review],
    postings: List[PostingTracker],
    current_streak: int,
) -> List[dict]:
    """
    Все значки с прогрессом. earned=True, когда прогресс дошёл до цели.
    Значки без прогресса не возвращаются.
    """
    progress_by_badge = {
        "first_review": len(reviews),
        "review_master": len(reviews),
        "platform_explorer": len({p.platform_id for p in postings}),
        "social_butterfly": len(postings),
        "point_collector": total_points,
        "streak_keeper": current_streak,
        "quality_reviewer": sum(1 for r in reviews if r.rating == 5),
        "early_bird": sum(1 for p in postings if p.posted_at and to_local(p.posted_at).hour < 9),
    }

    result = []
    for badge in BADGES:
        progress = progress_by_badge[badge["id"]]
        if progress <= 0:
            continue
        result.append(
            dict(
                badge,
                progress=progress,
                max_progress=badge["target"],
                earned=progress >= badge["target"],
            )
        )
    return result


def load_gamification(db: Session, user_id: str) -> dict:
    # всё пересчитывается на каждый запрос, кеша нет
    points = db.query(UserPoints).filter(UserPoints.user_id == user_id).all()
    reviews = db.query(Review).filter(Review.user_id == user_id).all()
    postings = (
        db.query(PostingTracker)
        .filter(PostingTracker.user_id == user_id, PostingTracker.status == "posted")
        .order_by(PostingTracker.posted_at.desc())
        .all()
    )

    total_points = sum(p.points for p in points)
    streak = calculate_streak_bonus(p.posted_at for p in postings)

    return {
        "badges": check_badges(total_points, reviews, postings, streak["current_streak"]),
        "level": calculate_user_level(total_points),
        "streak": streak,
    }


def award_streak_bonus(
    db: Session,
    user_id: str,
    base_points: int,
    today: Optional[date] = None,
) -> dict:
    """
    Бонус за серию: base * (multiplier - 1), не больше одного раза в день.
    """
    postings = (
        db.query(PostingTracker)
        .filter(PostingTracker.user_id == user_id, PostingTracker.status == "posted")
        .all()
    )
    streak = calculate_streak_bonus(p.posted_at for p in postings)
    # целочисленно, чтобы 1.2 - 1 не превращалось в 0.1999...
    steps = min(streak["current_streak"] // 3, MAX_BONUS_STEPS)
    bonus = base_points * steps // 10

    awarded = 0
    if bonus > 0:
        today = today or to_local(datetime.utcnow()).date()
        _, created = award_points(
            db,
            user_id=user_id,
            points=bonus,
            source="streak_bonus",
            description=f"연속 게시 보너스 ({streak['current_streak']}일)",
            idempotency_key=f"streak_bonus:{today.isoformat()}",
        )
        awarded = bonus if created else 0

    return {
        "base_points": base_points,
        "bonus_points": awarded,
        "total_points": base_points + awarded,
        "streak": streak,
    }
