from datetime import datetime

from captions import (
    analyze_caption_style,
    analyze_engagement_level,
    analyze_platform_preference,
    analyze_posting_time,
    analyze_review_patterns,
    build_personalized_prompt,
    build_user_patterns,
    calculate_engagement_score,
    calculate_readability_score,
    default_patterns,
    get_platform_optimization,
    save_caption_for_learning,
)
from models import CaptionHistory, Review, UserPoints
from platforms import registry


def test_caption_style_thresholds():
    assert analyze_caption_style([]) == "balanced"
    assert analyze_caption_style(["a" * 50, "b" * 80]) == "concise"
    assert analyze_caption_style(["a" * 200]) == "balanced"
    assert analyze_caption_style(["a" * 301]) == "detailed"


def test_engagement_level_thresholds():
    assert analyze_engagement_level([]) == "medium"
    assert analyze_engagement_level([100, 20]) == "high"
    assert analyze_engagement_level([10, 10]) == "low"
    assert analyze_engagement_level([20]) == "medium"


def test_review_patterns():
    assert analyze_review_patterns([]) == {"average_rating": 4, "common_keywords": []}

    patterns = analyze_review_patterns(
        [
            {"rating": 5, "keywords": ["맛있음", "친절"]},
            {"rating": 3, "keywords": ["맛있음"]},
        ]
    )
    assert patterns["average_rating"] == 4.0
    assert patterns["common_keywords"][0] == "맛있음"


def test_platform_preference_and_time():
    assert analyze_platform_preference([]) == "neutral"
    assert analyze_platform_preference(["naver_share", "naver_posting", "instagram_share"]) == "naver"
    assert analyze_posting_time([]) == "anytime"
    assert analyze_posting_time([8, 10]) == "morning"
    assert analyze_posting_time([13, 15]) == "afternoon"
    assert analyze_posting_time([19]) == "evening"
    assert analyze_posting_time([23, 23]) == "anytime"


def test_engagement_score_instagram_example():
    tags = " ".join(f"#t{i}" for i in range(8))
    head = "맛있어요 최고? "
    caption = head + "가" * (140 - len(head) - len(tags)) + tags
    assert len(caption) == 140

    assert calculate_engagement_score(caption, registry.get("instagram")) == 55


def test_engagement_score_is_capped():
    caption = "좋아요 맛있어요 추천 최고 완벽 대박?" * 20
    assert calculate_engagement_score(caption, registry.get("kakao")) <= 100


def test_readability_score():
    assert calculate_readability_score("") == 0
    assert calculate_readability_score("짧다.\n짧다.") == 90
    assert calculate_readability_score("가" * 40) == 70
    assert calculate_readability_score("가" * 20 + ".") == 100


def test_platform_optimization():
    assert get_platform_optimization("📍 Cafe X ⭐⭐⭐⭐⭐ 영수증 인증", "naver") == 60
    assert get_platform_optimization("今天真的 #好吃 #推荐 #探店 📍", "xiaohongshu") == 75
    assert get_platform_optimization("anything", "facebook") == 0


def test_prompt_includes_platform_requirements():
    platform = registry.get("naver")
    prompt = build_personalized_prompt(
        {"rating": 4, "keywords": ["맛있음"], "content": "맛있었어요"},
        {"name": "Cafe X"},
        platform,
        default_patterns(),
        {"tone": "유쾌한"},
        ["a" * 80, "두번째", "세번째", "네번째"],
    )

    assert prompt.startswith(platform.caption_brief)
    assert "- 200-400자 내외" in prompt
    assert "⭐⭐⭐⭐ (4/5점)" in prompt
    assert "- 톤: 유쾌한" in prompt
    assert "- 길이: 적당한" in prompt
    assert f"- {'a' * 50}..." in prompt
    assert "네번째" not in prompt


def test_user_patterns_defaults_without_user(db_session):
    assert build_user_patterns(db_session, None, "naver") == default_patterns()


def test_user_patterns_from_history(db_session, branch):
    db_session.add(CaptionHistory(user_id="u1", platform_id="naver", content="x" * 400))
    db_session.add(CaptionHistory(user_id="u1", platform_id="instagram", content="짧음"))
    # created_at в UTC: 00:00 и 02:00 UTC = 09:00 и 11:00 по Сеулу
    db_session.add(UserPoints(user_id="u1", points=100, source="naver_posting", created_at=datetime(2024, 5, 1, 0)))
    db_session.add(UserPoints(user_id="u1", points=20, source="naver_share", created_at=datetime(2024, 5, 1, 2)))
    db_session.add(UserPoints(user_id="u1", points=50, source="review_creation", created_at=datetime(2024, 5, 1, 23)))
    db_session.add(Review(branch_id=branch.id, user_id="u1", rating=5, keywords=["강력 추천"], final_content=""))
    db_session.commit()

    patterns = build_user_patterns(db_session, "u1", "naver")

    assert patterns["caption_style"] == "detailed"
    assert patterns["engagement_level"] == "high"
    assert patterns["platform_preference"] == "naver"
    assert patterns["optimal_posting_time"] == "morning"
    assert patterns["review_patterns"] == {"average_rating": 5.0, "common_keywords": ["강력 추천"]}


def test_save_caption_for_learning(db_session):
    save_caption_for_learning(db_session, "u1", "instagram", "캡션", {"id": None, "rating": 4, "keywords": ["맛있음"]})

    row = db_session.query(CaptionHistory).one()
    assert (row.user_id, row.platform_id, row.rating, row.keywords) == ("u1", "instagram", 4, ["맛있음"])
