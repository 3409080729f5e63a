import pytest

from errors import ErrorKind, ServiceError
from points_utils import award_action, award_points, get_balance, list_transactions


def test_award_without_key_always_inserts(db_session):
    award_points(db_session, "u1", 10, "manual")
    award_points(db_session, "u1", 10, "manual")

    assert get_balance(db_session, "u1") == 20


def test_award_with_key_is_idempotent(db_session):
    first, created = award_points(db_session, "u1", 50, "review_creation", idempotency_key="review_creation:1")
    again, created_again = award_points(db_session, "u1", 50, "review_creation", idempotency_key="review_creation:1")

    assert created is True
    assert created_again is False
    assert again.id == first.id
    assert get_balance(db_session, "u1") == 50


def test_same_key_for_other_user(db_session):
    award_points(db_session, "u1", 50, "review_creation", idempotency_key="k")
    _, created = award_points(db_session, "u2", 50, "review_creation", idempotency_key="k")

    assert created is True


def test_award_requires_user(db_session):
    with pytest.raises(ServiceError) as exc:
        award_points(db_session, "", 10, "manual")
    assert exc.value.kind == ErrorKind.MISSING_FIELD


def test_award_action_amounts_and_sources(db_session):
    share, _ = award_action(db_session, "u1", "share", platform_id="instagram")
    copy, _ = award_action(db_session, "u1", "caption_copy", platform_id="naver")
    posting, _ = award_action(db_session, "u1", "posting", platform_id="naver", points=100)

    assert (share.points, share.source) == (20, "instagram_share")
    assert (copy.points, copy.source) == (10, "naver_caption_copy")
    assert (posting.points, posting.source) == (100, "naver_posting")
    assert posting.description == "naver 플랫폼 게시 포인트"


def test_award_action_unknown(db_session):
    with pytest.raises(ServiceError):
        award_action(db_session, "u1", "posting", platform_id="naver")


def test_transactions_newest_first(db_session):
    award_points(db_session, "u1", 1, "a")
    award_points(db_session, "u1", 2, "b")
    award_points(db_session, "u2", 3, "c")

    rows = list_transactions(db_session, "u1")

    assert [r.source for r in rows] == ["b", "a"]
    assert get_balance(db_session, "nobody") == 0
