"""
Персональные подписи для платформ: анализ истории пользователя,
сборка промпта и эвристические оценки готовой подписи.
"""

import logging
import re
from collections import Counter
from typing import List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from models import CaptionHistory, Review, UserPoints, to_local
from platforms import PlatformConfig

logger = logging.getLogger(__name__)

EMOTION_WORDS = ["좋아요", "맛있어요", "추천", "최고", "완벽", "대박"]

EMOJI_RE = re.compile(
    "[\U0001F600-\U0001F64F\U0001F300-\U0001F5FF\U0001F680-\U0001F6FF\U0001F1E0-\U0001F1FF]"
)
CHINESE_HASHTAG_RE = re.compile("#[\u4e00-\u9fff]")
SENTENCE_SPLIT_RE = re.compile(r"[.!?]")


def default_patterns() -> dict:
    return {
        "caption_style": "balanced",
        "engagement_level": "medium",
        "review_patterns": {"average_rating": 4, "common_keywords": []},
        "platform_preference": "neutral",
        "optimal_posting_time": "anytime",
    }


def analyze_caption_style(captions: List[str]) -> str:
    if not captions:
        return "balanced"

    avg_length = sum(len(c or "") for c in captions) / len(captions)
    if avg_length < 100:
        return "concise"
    if avg_length > 300:
        return "detailed"
    return "balanced"


def analyze_engagement_level(points: List[int]) -> str:
    if not points:
        return "medium"

    avg_points = sum(points) / len(points)
    if avg_points > 25:
        return "high"
    if avg_points < 15:
        return "low"
    return "medium"


def analyze_review_patterns(reviews: List[dict]) -> dict:
    if not reviews:
        return {"average_rating": 4, "common_keywords": []}

    avg_rating = sum(r["rating"] for r in reviews) / len(reviews)
    counts = Counter(k for r in reviews for k in (r.get("keywords") or []))
    common = [keyword for keyword, _ in counts.most_common(5)]
    return {"average_rating": avg_rating, "common_keywords": common}


def analyze_platform_preference(sources: List[str]) -> str:
    if not sources:
        return "neutral"

    counts = Counter(source.split("_")[0] for source in sources)
    return counts.most_common(1)[0][0]


def analyze_posting_time(hours: List[int]) -> str:
    if not hours:
        return "anytime"

    avg_hour = sum(hours) / len(hours)
    if 6 <= avg_hour < 12:
        return "morning"
    if 12 <= avg_hour < 18:
        return "afternoon"
    if 18 <= avg_hour < 22:
        return "evening"
    return "anytime"


def build_user_patterns(db: Session, user_id: Optional[str], platform_id: str) -> dict:
    """
    История пользователя: 10 последних подписей, 20 начислений за эту платформу,
    10 последних отзывов. При ошибке БД возвращаем паттерны по умолчанию.
    """
    if not user_id:
        return default_patterns()

    try:
        past_captions = (
            db.query(CaptionHistory)
            .filter(CaptionHistory.user_id == user_id, CaptionHistory.platform_id == platform_id)
            .order_by(CaptionHistory.created_at.desc())
            .limit(10)
            .all()
        )
        point_history = (
            db.query(UserPoints)
            .filter(UserPoints.user_id == user_id, UserPoints.source.like(f"{platform_id}_%"))
            .order_by(UserPoints.created_at.desc())
            .limit(20)
            .all()
        )
        review_history = (
            db.query(Review)
            .filter(Review.user_id == user_id)
            .order_by(Review.created_at.desc())
            .limit(10)
            .all()
        )
    except SQLAlchemyError as e:
        logger.error("User pattern lookup failed for %s: %s", user_id, e)
        return default_patterns()

    return {
        "caption_style": analyze_caption_style([c.content for c in past_captions]),
        "engagement_level": analyze_engagement_level([p.points for p in point_history]),
        "review_patterns": analyze_review_patterns(
            [{"rating": r.rating, "keywords": r.keywords} for r in review_history]
        ),
        "platform_preference": analyze_platform_preference([p.source for p in point_history]),
        "optimal_posting_time": analyze_posting_time(
            [to_local(p.created_at).hour for p in point_history if p.created_at]
        ),
    }


def build_personalized_prompt(
    review: dict,
    branch: dict,
    platform: PlatformConfig,
    patterns: dict,
    preferences: Optional[dict] = None,
    previous_captions: Optional[List[str]] = None,
) -> str:
    preferences = preferences or {}
    previous_captions = previous_captions or []
    rating = int(review.get("rating") or 0)
    keywords = review.get("keywords") or []

    requirements = "\n".join(f"- {req}" for req in platform.caption_requirements)
    previous = "\n".join(f"- {caption[:50]}..." for caption in previous_captions[:3])

    return f"""{platform.caption_brief}

리뷰 정보:
- 가게명: {branch.get('name', '')}
- 평점: {'⭐' * rating} ({rating}/5점)
- 리뷰 내용: {review.get('content', '')}
- 키워드: {', '.join(keywords) if keywords else '없음'}

사용자 패턴 분석:
- 캡션 스타일: {patterns['caption_style']}
- 참여도 수준: {patterns['engagement_level']}
- 평균 평점: {patterns['review_patterns']['average_rating']}
- 선호도: {patterns['platform_preference']}

요구사항:
{requirements}

사용자 선호사항:
- 톤: {preferences.get('tone') or '자연스러운'}
- 길이: {preferences.get('length') or '적당한'}
- 스타일: {preferences.get('style') or '균형잡힌'}

이전 캡션 참고 (피해야 할 반복):
{previous}

위 정보를 바탕으로 개인화되고 최적화된 캡션을 생성해주세요."""


def save_caption_for_learning(
    db: Session,
    user_id: Optional[str],
    platform_id: str,
    caption: str,
    review: dict,
) -> None:
    # ошибка сохранения не должна ломать ответ с подписью
    try:
        db.add(
            CaptionHistory(
                user_id=user_id,
                platform_id=platform_id,
                content=caption,
                review_id=review.get("id"),
                rating=review.get("rating"),
                keywords=review.get("keywords") or [],
            )
        )
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error("Could not store caption history: %s", e)


def _in_range(value: int, bounds) -> bool:
    return bounds is not None and bounds[0] <= value <= bounds[1]


def calculate_engagement_score(caption: str, platform: PlatformConfig) -> int:
    score = 0

    if _in_range(len(caption), platform.ideal_length):
        score += 20

    if _in_range(caption.count("#"), platform.ideal_hashtags):
        score += 15

    score += 5 * sum(1 for word in EMOTION_WORDS if word in caption)

    if "?" in caption:
        score += 10

    return min(score, 100)


def calculate_readability_score(caption: str) -> int:
    if not caption.strip():
        return 0

    sentences = [s for s in SENTENCE_SPLIT_RE.split(caption) if s.strip()]
    avg_sentence_length = len(caption) / max(len(sentences), 1)

    score = 100
    if avg_sentence_length < 10:
        score -= 20
    if avg_sentence_length > 30:
        score -= 30
    if "\n" in caption:
        score += 10

    return max(score, 0)


OPTIMIZATION_RULES = {
    "naver": [
        (lambda c: "📍" in c, 20),
        (lambda c: "⭐" in c, 15),
        (lambda c: "영수증" in c or "결제" in c, 25),
        (lambda c: 200 <= len(c) <= 400, 20),
    ],
    "instagram": [
        (lambda c: c.count("#") >= 6, 25),
        (lambda c: EMOJI_RE.search(c) is not None, 15),
        (lambda c: "?" in c, 20),
        (lambda c: 80 <= len(c) <= 140, 20),
    ],
    "xiaohongshu": [
        (lambda c: "今天" in c and "真的" in c, 30),
        (lambda c: "📍" in c, 20),
        (lambda c: len(CHINESE_HASHTAG_RE.findall(c)) >= 3, 25),
        (lambda c: 400 <= len(c) <= 800, 25),
    ],
}


def get_platform_optimization(caption: str, platform_id: str) -> int:
    rules = OPTIMIZATION_RULES.get(platform_id)
    if not rules:
        return 0
    return sum(points for check, points in rules if check(caption))


def score_caption(caption: str, platform: PlatformConfig) -> dict:
    return {
        "engagement": calculate_engagement_score(caption, platform),
        "readability": calculate_readability_score(caption),
        "platform_optimization": get_platform_optimization(caption, platform.id),
    }
